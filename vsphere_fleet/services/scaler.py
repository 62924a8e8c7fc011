import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from vsphere_fleet.clients.vsphere import VSphereGateway
from vsphere_fleet.models import ProvisionOutcome
from vsphere_fleet.naming import generate_instance_name
from vsphere_fleet.services.provisioning import ProvisionStrategy, provision_one


logger = logging.getLogger(__name__)


def _launch(
    gateway: VSphereGateway,
    strategy: ProvisionStrategy,
    source: Any,
    folder: Any,
    name: str,
    cancel: threading.Event | None,
) -> ProvisionOutcome:
    try:
        provision_one(gateway, strategy, source, folder, name, cancel=cancel)
    except Exception as exc:  # noqa: BLE001
        logger.exception("launch failed name=%s error=%s", name, exc)
        return ProvisionOutcome(name=name, ok=False, error=str(exc))
    return ProvisionOutcome(name=name, ok=True)


def scale_out(
    gateway: VSphereGateway,
    strategy: ProvisionStrategy,
    source: Any,
    folder: Any,
    prefix: str,
    count: int,
    *,
    max_workers: int | None = None,
    cancel: threading.Event | None = None,
) -> list[ProvisionOutcome]:
    """Provision ``count`` instances concurrently and wait for all of them.

    Without ``max_workers`` every clone starts at once. Individual failures
    are logged and reported in the outcome list, never raised.
    """
    if count <= 0:
        return []
    names = [generate_instance_name(prefix) for _ in range(count)]
    workers = min(count, max_workers or count)
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="clone") as pool:
        futures = [
            pool.submit(_launch, gateway, strategy, source, folder, name, cancel)
            for name in names
        ]
    outcomes = [future.result() for future in futures]

    failed = [outcome for outcome in outcomes if not outcome.ok]
    logger.info(
        "scale out finished requested=%s succeeded=%s failed=%s",
        count,
        count - len(failed),
        len(failed),
    )
    return outcomes
