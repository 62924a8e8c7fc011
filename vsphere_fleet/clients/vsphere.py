import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from urllib.parse import unquote, urlparse

from pyVim.connect import Disconnect, SmartConnect
from pyVmomi import vim, vmodl

from vsphere_fleet.clients.content_library import (
    ContentLibraryClient,
    automation_base_url,
)
from vsphere_fleet.config import GroupSettings
from vsphere_fleet.errors import FleetError, LookupFailure, TaskFailure, raise_if_cancelled
from vsphere_fleet.models import GuestNic, VMObservation


logger = logging.getLogger(__name__)

VM_PROPERTIES = ["name", "runtime.powerState", "guest.net"]


@dataclass
class CloneSpec:
    resource_pool: Any
    datastore: Any
    host: Any | None = None
    cpu: int | None = None
    memory_mb: int | None = None
    power_on: bool = True


def parse_endpoint(url: str) -> tuple[str, int, str, str]:
    parsed = urlparse(url)
    if not parsed.hostname:
        raise FleetError(f"vsphere url missing hostname url={url}")
    return (
        parsed.hostname,
        parsed.port or 443,
        unquote(parsed.username or ""),
        unquote(parsed.password or ""),
    )


def to_guest_nics(net: Any) -> list[GuestNic]:
    nics: list[GuestNic] = []
    for nic in net or []:
        nics.append(
            GuestNic(
                mac_address=getattr(nic, "macAddress", None) or "",
                has_ip_config=getattr(nic, "ipConfig", None) is not None,
                ip_addresses=[str(ip) for ip in (getattr(nic, "ipAddress", None) or [])],
            )
        )
    return nics


def fault_name(error: Any) -> str | None:
    if error is None:
        return None
    return type(error).__name__.rsplit(".", 1)[-1]


def read_failure(exc: Exception, *, operation: str, target: str) -> FleetError:
    """Translate a fault raised while reading inventory into a FleetError."""
    detail = getattr(exc, "msg", None) or str(exc)
    if isinstance(exc, vmodl.fault.ManagedObjectNotFound):
        return LookupFailure(kind="managed object", path=target, detail=detail)
    return TaskFailure(
        operation=operation,
        phase="submit",
        target=target,
        detail=detail,
        fault=fault_name(exc),
    )


class VSphereGateway:
    """Session and object access to vCenter through pyVmomi."""

    def __init__(
        self,
        url: str,
        *,
        insecure: bool = True,
        poll_interval: float = 0.5,
        request_timeout: float = 30.0,
    ):
        self.url = url
        self.insecure = insecure
        self.poll_interval = poll_interval
        self.request_timeout = request_timeout
        self.service_instance: Any | None = None
        self._library: ContentLibraryClient | None = None
        self._library_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: GroupSettings) -> "VSphereGateway":
        return cls(
            settings.vsphere_url,
            insecure=settings.insecure,
            poll_interval=settings.task_poll_interval_sec,
            request_timeout=settings.request_timeout_sec,
        )

    def connect(self) -> None:
        host, port, user, password = parse_endpoint(self.url)
        try:
            self.service_instance = SmartConnect(
                host=host,
                user=user,
                pwd=password,
                port=port,
                disableSslCertValidation=self.insecure,
            )
        except Exception as exc:  # noqa: BLE001
            raise FleetError(f"could not connect to vSphere host={host}: {exc}") from exc
        logger.info("vsphere session established host=%s port=%s", host, port)

    def close(self) -> None:
        if self._library is not None:
            self._library.close()
            self._library = None
        if self.service_instance is not None:
            Disconnect(self.service_instance)
            self.service_instance = None
            logger.info("vsphere session released")

    @property
    def content(self) -> Any:
        if self.service_instance is None:
            raise FleetError("vsphere session is not established")
        return self.service_instance.RetrieveContent()

    def library_client(self) -> ContentLibraryClient:
        with self._library_lock:
            if self._library is None:
                _, _, user, password = parse_endpoint(self.url)
                self._library = ContentLibraryClient(
                    automation_base_url(self.url),
                    user,
                    password,
                    verify=not self.insecure,
                    timeout=self.request_timeout,
                )
            return self._library

    def _find(self, kind: str, path: str, expected: type) -> Any:
        try:
            found = self.content.searchIndex.FindByInventoryPath(
                inventoryPath=path.strip("/")
            )
        except vmodl.MethodFault as exc:
            raise read_failure(exc, operation=f"{kind} lookup", target=path) from exc
        if found is None:
            raise LookupFailure(kind=kind, path=path)
        if not isinstance(found, expected):
            raise LookupFailure(
                kind=kind, path=path, detail=f"found {type(found).__name__}"
            )
        return found

    def find_folder(self, path: str) -> Any:
        return self._find("folder", path, vim.Folder)

    def find_vm(self, path: str) -> Any:
        return self._find("virtual machine", path, vim.VirtualMachine)

    def find_resource_pool(self, path: str) -> Any:
        return self._find("resource pool", path, vim.ResourcePool)

    def find_datastore(self, path: str) -> Any:
        return self._find("datastore", path, vim.Datastore)

    def find_host(self, path: str) -> Any:
        return self._find("host", path, vim.HostSystem)

    def object_name(self, obj: Any) -> str:
        return obj.name

    def object_id(self, obj: Any) -> str:
        return obj._moId

    def _retrieve(self, objects: list[Any], obj_type: type, paths: list[str]) -> list[dict]:
        if not objects:
            return []
        collector = vmodl.query.PropertyCollector
        filter_spec = collector.FilterSpec(
            objectSet=[collector.ObjectSpec(obj=obj, skip=False) for obj in objects],
            propSet=[collector.PropertySpec(type=obj_type, pathSet=paths, all=False)],
        )
        pc = self.content.propertyCollector
        try:
            result = pc.RetrievePropertiesEx(
                specSet=[filter_spec], options=collector.RetrieveOptions()
            )
            contents = list(result.objects) if result else []
            token = result.token if result else None
            while token:
                result = pc.ContinueRetrievePropertiesEx(token=token)
                contents.extend(result.objects or [])
                token = result.token
        except vmodl.MethodFault as exc:
            target = ",".join(obj._moId for obj in objects)
            raise read_failure(exc, operation="property read", target=target) from exc
        by_id = {
            oc.obj._moId: {prop.name: prop.val for prop in (oc.propSet or [])}
            for oc in contents
        }
        # Keep the order the objects were handed in.
        return [by_id.get(obj._moId, {}) for obj in objects]

    def list_folder_vms(self, folder: Any) -> list[VMObservation]:
        children = self._retrieve([folder], vim.Folder, ["childEntity"])[0]
        vms = [
            child
            for child in children.get("childEntity") or []
            if isinstance(child, vim.VirtualMachine)
        ]
        observations = []
        for props in self._retrieve(vms, vim.VirtualMachine, VM_PROPERTIES):
            observations.append(
                VMObservation(
                    name=str(props.get("name", "")),
                    power_state=str(props.get("runtime.powerState", "")),
                    nics=to_guest_nics(props.get("guest.net")),
                )
            )
        return observations

    def power_state(self, vm: Any) -> str:
        props = self._retrieve([vm], vim.VirtualMachine, ["runtime.powerState"])[0]
        return str(props.get("runtime.powerState", ""))

    def guest_nics(self, vm: Any) -> list[GuestNic]:
        props = self._retrieve([vm], vim.VirtualMachine, ["guest.net"])[0]
        return to_guest_nics(props.get("guest.net"))

    def _submit(self, operation: str, target: str, call: Callable[[], Any]) -> Any:
        try:
            return call()
        except Exception as exc:  # noqa: BLE001
            raise TaskFailure(
                operation=operation,
                phase="submit",
                target=target,
                detail=getattr(exc, "msg", None) or str(exc),
                fault=fault_name(exc),
            ) from exc

    def instant_clone(self, source: Any, name: str, folder: Any) -> Any:
        spec = vim.vm.InstantCloneSpec(
            name=name, location=vim.vm.RelocateSpec(folder=folder)
        )
        return self._submit(
            "instant clone", name, lambda: source.InstantClone_Task(spec=spec)
        )

    def clone(self, source: Any, folder: Any, name: str, spec: CloneSpec) -> Any:
        location = vim.vm.RelocateSpec(
            folder=folder, pool=spec.resource_pool, datastore=spec.datastore
        )
        if spec.host is not None:
            location.host = spec.host
        config = vim.vm.ConfigSpec(name=name)
        if spec.cpu:
            config.numCPUs = spec.cpu
        if spec.memory_mb:
            config.memoryMB = spec.memory_mb
        clone_spec = vim.vm.CloneSpec(
            location=location, powerOn=spec.power_on, template=False, config=config
        )
        return self._submit(
            "clone",
            name,
            lambda: source.CloneVM_Task(folder=folder, name=name, spec=clone_spec),
        )

    def power_off(self, vm: Any, name: str) -> Any:
        return self._submit("power off", name, vm.PowerOffVM_Task)

    def destroy(self, vm: Any, name: str) -> Any:
        return self._submit("destroy", name, vm.Destroy_Task)

    def wait_for_task(
        self,
        task: Any,
        *,
        operation: str,
        target: str,
        cancel: threading.Event | None = None,
    ) -> Any:
        while True:
            raise_if_cancelled(cancel, operation)
            try:
                info = task.info
            except vmodl.MethodFault as exc:
                raise TaskFailure(
                    operation=operation,
                    phase="wait",
                    target=target,
                    detail=getattr(exc, "msg", None) or str(exc),
                    fault=fault_name(exc),
                ) from exc
            state = str(info.state)
            if state == "success":
                return info.result
            if state == "error":
                error = info.error
                raise TaskFailure(
                    operation=operation,
                    phase="wait",
                    target=target,
                    detail=getattr(error, "msg", None) or str(error),
                    fault=fault_name(error),
                )
            if cancel is not None:
                cancel.wait(self.poll_interval)
            else:
                time.sleep(self.poll_interval)
