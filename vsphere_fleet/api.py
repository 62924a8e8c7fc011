from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException

from vsphere_fleet.controller import InstanceGroup
from vsphere_fleet.errors import (
    AddressNotReady,
    ConfigurationError,
    FleetError,
    LookupFailure,
    OperationCancelled,
    PartialTeardownError,
)
from vsphere_fleet.metrics import metrics
from vsphere_fleet.models import InstanceState
from vsphere_fleet.schemas import (
    AwaitReadyRequest,
    ConnectInfoRead,
    DecreaseRequest,
    DecreaseResponse,
    IncreaseRequest,
    IncreaseResponse,
    InstanceRead,
    ProviderInfoRead,
)


router = APIRouter()
_state: dict = {"group": None, "provider_info": None}


def install_instance_group(group: InstanceGroup | None, provider_info=None) -> None:
    _state["group"] = group
    _state["provider_info"] = provider_info


def get_instance_group() -> InstanceGroup:
    group = _state["group"]
    if group is None or not group.initialized:
        raise HTTPException(status_code=503, detail="instance group not initialized")
    return group


def _http_error(exc: FleetError) -> HTTPException:
    if isinstance(exc, PartialTeardownError):
        return HTTPException(
            status_code=404 if isinstance(exc.__cause__, LookupFailure) else 502,
            detail={
                "error": str(exc),
                "instance": exc.instance,
                "processed": exc.processed,
                "remaining": exc.remaining,
            },
        )
    if isinstance(exc, ConfigurationError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, LookupFailure):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, AddressNotReady):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, OperationCancelled):
        return HTTPException(status_code=499, detail=str(exc))
    return HTTPException(status_code=502, detail=str(exc))


@router.get("/healthz")
def healthz() -> dict:
    group = _state["group"]
    return {"status": "ok", "initialized": bool(group and group.initialized)}


@router.get("/metrics")
def get_metrics() -> dict[str, int]:
    return metrics.snapshot()


@router.get("/v1/provider", response_model=ProviderInfoRead)
def provider_info(_group: InstanceGroup = Depends(get_instance_group)):
    info = _state["provider_info"]
    if info is None:
        raise HTTPException(status_code=503, detail="provider info unavailable")
    return ProviderInfoRead(**asdict(info))


@router.get("/v1/instances", response_model=list[InstanceRead])
def list_instances(group: InstanceGroup = Depends(get_instance_group)):
    found: list[InstanceRead] = []

    def collect(name: str, state: InstanceState) -> None:
        found.append(InstanceRead(name=name, state=state.value))

    try:
        group.update(collect)
    except FleetError as exc:
        raise _http_error(exc) from exc
    return found


@router.post("/v1/instances/increase", response_model=IncreaseResponse)
def increase(
    payload: IncreaseRequest, group: InstanceGroup = Depends(get_instance_group)
):
    try:
        requested = group.increase(payload.count)
    except FleetError as exc:
        raise _http_error(exc) from exc
    return IncreaseResponse(requested=requested)


@router.post("/v1/instances/decrease", response_model=DecreaseResponse)
def decrease(
    payload: DecreaseRequest, group: InstanceGroup = Depends(get_instance_group)
):
    try:
        processed = group.decrease(payload.instances)
    except FleetError as exc:
        raise _http_error(exc) from exc
    return DecreaseResponse(processed=processed)


@router.get("/v1/instances/{name}/connect-info", response_model=ConnectInfoRead)
def connect_info(name: str, group: InstanceGroup = Depends(get_instance_group)):
    try:
        info = group.connect_info(name)
    except FleetError as exc:
        raise _http_error(exc) from exc
    return ConnectInfoRead(**asdict(info))


@router.post("/v1/instances/{name}/await-ready", response_model=ConnectInfoRead)
def await_ready(
    name: str,
    payload: AwaitReadyRequest,
    group: InstanceGroup = Depends(get_instance_group),
):
    try:
        info = group.await_ready(name, timeout_sec=payload.timeout_sec)
    except FleetError as exc:
        raise _http_error(exc) from exc
    return ConnectInfoRead(**asdict(info))
