import logging
import threading
import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_delay,
    stop_when_event_set,
    wait_exponential,
)

from vsphere_fleet.clients.vsphere import VSphereGateway
from vsphere_fleet.errors import AddressNotReady, raise_if_cancelled
from vsphere_fleet.metrics import metrics
from vsphere_fleet.models import ConnectInfo
from vsphere_fleet.naming import instance_path
from vsphere_fleet.state_machine import first_ipv4


logger = logging.getLogger(__name__)

CONNECT_INFO_TTL = timedelta(minutes=5)


def resolve_address(gateway: VSphereGateway, folder: str, name: str) -> str:
    vm = gateway.find_vm(instance_path(folder, name))
    address = first_ipv4(gateway.guest_nics(vm))
    if address is None:
        metrics.inc("connect_info_not_ready_total")
        raise AddressNotReady(name)
    return address


def connect_info(
    gateway: VSphereGateway,
    folder: str,
    name: str,
    connector_config: dict[str, Any] | None = None,
    cancel: threading.Event | None = None,
) -> ConnectInfo:
    raise_if_cancelled(cancel, "connect info")
    address = resolve_address(gateway, folder, name)
    return ConnectInfo(
        id=name,
        internal_addr=address,
        expires=datetime.now(UTC) + CONNECT_INFO_TTL,
        connector_config=dict(connector_config or {}),
    )


def await_ready(
    probe: Callable[[], ConnectInfo],
    *,
    timeout: float,
    max_interval: float = 10.0,
    initial_interval: float = 0.5,
    cancel: threading.Event | None = None,
) -> ConnectInfo:
    """Repeat a single-shot address probe until it succeeds.

    Raises AddressNotReady when ``timeout`` elapses and OperationCancelled
    when ``cancel`` is set first.
    """
    stop = stop_after_delay(timeout)
    if cancel is not None:
        stop = stop | stop_when_event_set(cancel)
    retrying = Retrying(
        stop=stop,
        wait=wait_exponential(
            multiplier=initial_interval, min=initial_interval, max=max_interval
        ),
        retry=retry_if_exception_type(AddressNotReady),
        sleep=cancel.wait if cancel is not None else time.sleep,
        reraise=True,
    )
    try:
        return retrying(probe)
    except AddressNotReady as exc:
        raise_if_cancelled(cancel, "await ready")
        logger.warning("address not ready after timeout=%s instance=%s", timeout, exc.instance)
        raise
