import logging
import threading

from vsphere_fleet.clients.vsphere import VSphereGateway
from vsphere_fleet.errors import (
    FleetError,
    PartialTeardownError,
    TaskFailure,
    raise_if_cancelled,
)
from vsphere_fleet.metrics import metrics
from vsphere_fleet.models import POWERED_OFF
from vsphere_fleet.naming import instance_path


logger = logging.getLogger(__name__)

ALREADY_OFF_FAULTS = {"InvalidPowerState"}


def _power_off(
    gateway: VSphereGateway, vm, name: str, cancel: threading.Event | None
) -> None:
    if gateway.power_state(vm) == POWERED_OFF:
        logger.info("power off skipped name=%s reason=already_off", name)
        return
    try:
        task = gateway.power_off(vm, name)
        gateway.wait_for_task(task, operation="power off", target=name, cancel=cancel)
    except TaskFailure as exc:
        if exc.fault not in ALREADY_OFF_FAULTS:
            raise
        logger.info("power off skipped name=%s reason=%s", name, exc.fault)
        return
    logger.info("instance powered off name=%s", name)


def teardown_instance(
    gateway: VSphereGateway,
    folder: str,
    name: str,
    cancel: threading.Event | None = None,
) -> None:
    raise_if_cancelled(cancel, "teardown")
    vm = gateway.find_vm(instance_path(folder, name))
    _power_off(gateway, vm, name, cancel)
    raise_if_cancelled(cancel, "teardown")
    task = gateway.destroy(vm, name)
    gateway.wait_for_task(task, operation="destroy", target=name, cancel=cancel)
    logger.info("instance destroyed name=%s", name)


def teardown_all(
    gateway: VSphereGateway,
    folder: str,
    names: list[str],
    cancel: threading.Event | None = None,
) -> list[str]:
    """Tear instances down one at a time, halting at the first failure."""
    processed: list[str] = []
    for index, name in enumerate(names):
        try:
            teardown_instance(gateway, folder, name, cancel=cancel)
        except FleetError as exc:
            metrics.inc("teardown_failed_total")
            logger.error(
                "teardown failed name=%s processed=%s error=%s",
                name,
                len(processed),
                exc,
            )
            raise PartialTeardownError(
                instance=name,
                processed=processed,
                remaining=list(names[index:]),
                detail=str(exc),
            ) from exc
        metrics.inc("teardown_succeeded_total")
        processed.append(name)
    return processed
