import logging
import threading
from typing import Any, Protocol, runtime_checkable

from vsphere_fleet.clients.content_library import LibraryDeploySpec
from vsphere_fleet.clients.http import RequestFailure
from vsphere_fleet.clients.vsphere import CloneSpec, VSphereGateway
from vsphere_fleet.config import DeployType, GroupSettings
from vsphere_fleet.errors import (
    ConfigurationError,
    FleetError,
    LookupFailure,
    TaskFailure,
    raise_if_cancelled,
)
from vsphere_fleet.metrics import metrics
from vsphere_fleet.naming import inventory_path


logger = logging.getLogger(__name__)


class ProvisioningError(FleetError):
    def __init__(self, *, instance: str, strategy: str, stage: str, detail: str):
        self.instance = instance
        self.strategy = strategy
        self.stage = stage
        self.detail = detail
        super().__init__(
            f"provisioning failed instance={instance} strategy={strategy} stage={stage}: {detail}"
        )


@runtime_checkable
class ProvisionStrategy(Protocol):
    deploy_type: DeployType

    def provision(
        self,
        gateway: VSphereGateway,
        source: Any,
        folder: Any,
        name: str,
        cancel: threading.Event | None = None,
    ) -> None: ...


class InstantCloneStrategy:
    """Live-memory clone; inherits resources and placement from the source."""

    deploy_type = DeployType.INSTANT_CLONE

    def __init__(self, settings: GroupSettings):
        self.settings = settings

    def provision(
        self,
        gateway: VSphereGateway,
        source: Any,
        folder: Any,
        name: str,
        cancel: threading.Event | None = None,
    ) -> None:
        task = gateway.instant_clone(source, name, folder)
        gateway.wait_for_task(task, operation="instant clone", target=name, cancel=cancel)


class FullCloneStrategy:
    deploy_type = DeployType.FULL_CLONE

    def __init__(self, settings: GroupSettings):
        self.settings = settings

    def sizing(self) -> tuple[int, int]:
        if not self.settings.cpu:
            raise ConfigurationError("cpu", "invalid CPU count")
        if not self.settings.memory:
            raise ConfigurationError("memory", "invalid memory size")
        return self.settings.cpu, self.settings.memory

    def placement(self, gateway: VSphereGateway) -> CloneSpec:
        s = self.settings
        pool = gateway.find_resource_pool(
            inventory_path("resource_pool", s.resource_pool, s.datacenter, s.cluster)
        )
        datastore = gateway.find_datastore(
            inventory_path("datastore", s.datastore, s.datacenter)
        )
        host = None
        if s.host:
            host_path = inventory_path("host", s.host, s.datacenter, s.cluster)
            try:
                host = gateway.find_host(host_path)
            except LookupFailure as exc:
                # Host pinning is optional; DRS places the clone instead.
                logger.warning("host placement skipped path=%s error=%s", host_path, exc)
        cpu, memory = self.sizing()
        return CloneSpec(
            resource_pool=pool,
            datastore=datastore,
            host=host,
            cpu=cpu,
            memory_mb=memory,
            power_on=True,
        )

    def provision(
        self,
        gateway: VSphereGateway,
        source: Any,
        folder: Any,
        name: str,
        cancel: threading.Event | None = None,
    ) -> None:
        spec = self.placement(gateway)
        raise_if_cancelled(cancel, "clone")
        task = gateway.clone(source, folder, name, spec)
        gateway.wait_for_task(task, operation="clone", target=name, cancel=cancel)


class LibraryDeployStrategy(FullCloneStrategy):
    """Deploys the library item named after the source template."""

    deploy_type = DeployType.LIBRARY_DEPLOY

    def provision(
        self,
        gateway: VSphereGateway,
        source: Any,
        folder: Any,
        name: str,
        cancel: threading.Event | None = None,
    ) -> None:
        library = gateway.library_client()
        library_id = library.find_library(self.settings.content_library)
        item_id = library.find_item(library_id, gateway.object_name(source))
        placement = self.placement(gateway)
        raise_if_cancelled(cancel, "library deploy")
        spec = LibraryDeploySpec(
            name=name,
            folder_id=gateway.object_id(folder),
            resource_pool_id=gateway.object_id(placement.resource_pool),
            datastore_id=gateway.object_id(placement.datastore),
            host_id=gateway.object_id(placement.host) if placement.host else None,
            cpu=placement.cpu,
            memory_mb=placement.memory_mb,
            powered_on=True,
        )
        library.deploy_template(item_id, spec)


STRATEGIES = {
    DeployType.INSTANT_CLONE: InstantCloneStrategy,
    DeployType.FULL_CLONE: FullCloneStrategy,
    DeployType.LIBRARY_DEPLOY: LibraryDeployStrategy,
}


def build_strategy(settings: GroupSettings) -> ProvisionStrategy:
    strategy_cls = STRATEGIES.get(settings.deploy_type)
    if strategy_cls is None:
        raise ConfigurationError(
            "deploy_type", f"unsupported deploy_type {settings.deploy_type}"
        )
    return strategy_cls(settings)


def provision_one(
    gateway: VSphereGateway,
    strategy: ProvisionStrategy,
    source: Any,
    folder: Any,
    name: str,
    cancel: threading.Event | None = None,
) -> str:
    strategy_name = strategy.deploy_type.value
    metrics.inc("provision_attempts_total")
    try:
        raise_if_cancelled(cancel, "provision")
        strategy.provision(gateway, source, folder, name, cancel=cancel)
    except ConfigurationError as exc:
        stage, detail = "config", str(exc)
        cause: Exception = exc
    except (LookupFailure, RequestFailure) as exc:
        stage, detail = "lookup", str(exc)
        cause = exc
    except TaskFailure as exc:
        stage, detail = exc.phase, str(exc)
        cause = exc
    else:
        metrics.inc("provision_succeeded_total")
        logger.info("instance provisioned name=%s strategy=%s", name, strategy_name)
        return name

    metrics.inc("provision_failed_total")
    raise ProvisioningError(
        instance=name, strategy=strategy_name, stage=stage, detail=detail
    ) from cause
