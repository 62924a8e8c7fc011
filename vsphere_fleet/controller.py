import logging
import threading
from collections.abc import Callable, Iterable

from vsphere_fleet.clients.vsphere import VSphereGateway
from vsphere_fleet.config import (
    PROVIDER_ID,
    PROVIDER_MAX_SIZE,
    GroupSettings,
    ProviderSettings,
    get_build_settings,
)
from vsphere_fleet.errors import ConfigurationError, FleetError, raise_if_cancelled
from vsphere_fleet.metrics import metrics
from vsphere_fleet.models import ConnectInfo, InstanceState, ProviderInfo
from vsphere_fleet.naming import folder_path, has_prefix, inventory_path
from vsphere_fleet.services import readiness
from vsphere_fleet.services.provisioning import ProvisionStrategy, build_strategy
from vsphere_fleet.services.scaler import scale_out
from vsphere_fleet.services.teardown import teardown_all
from vsphere_fleet.state_machine import classify


logger = logging.getLogger(__name__)

GatewayFactory = Callable[[GroupSettings], VSphereGateway]
UpdateCallback = Callable[[str, InstanceState], None]


class InstanceGroup:
    """Keeps a folder of VMs at the size the host runtime asks for.

    Nothing about the fleet is cached between calls. Every operation resolves
    the template, folder and instances by inventory path, so vCenter stays
    the only record of which instances exist.
    """

    def __init__(
        self,
        settings: GroupSettings,
        gateway_factory: GatewayFactory = VSphereGateway.from_settings,
    ):
        self.settings = settings
        self.gateway_factory = gateway_factory
        self.gateway: VSphereGateway | None = None
        self.strategy: ProvisionStrategy | None = None
        self.provider_settings = ProviderSettings()

    def init(self, provider_settings: ProviderSettings) -> ProviderInfo:
        if not provider_settings.use_static_credentials:
            raise ConfigurationError(
                "use_static_credentials", "this plugin cannot provision credentials"
            )
        self.settings.require_fields()
        strategy = build_strategy(self.settings)

        gateway = self.gateway_factory(self.settings)
        gateway.connect()
        self.gateway = gateway
        self.strategy = strategy
        self.provider_settings = provider_settings

        build = get_build_settings()
        logger.info(
            "instance group initialized folder=%s prefix=%s deploy_type=%s version=%s",
            self.settings.folder,
            self.settings.prefix,
            strategy.deploy_type.value,
            build.version,
        )
        return ProviderInfo(
            id=PROVIDER_ID,
            max_size=PROVIDER_MAX_SIZE,
            version=build.version,
            build_info=build.build_info,
        )

    @property
    def initialized(self) -> bool:
        return self.gateway is not None

    def _require_gateway(self) -> VSphereGateway:
        if self.gateway is None:
            raise FleetError("instance group is not initialized")
        return self.gateway

    def _folder(self) -> str:
        return folder_path(
            inventory_path("folder", self.settings.folder, self.settings.datacenter)
        )

    def update(
        self, fn: UpdateCallback, cancel: threading.Event | None = None
    ) -> None:
        gateway = self._require_gateway()
        raise_if_cancelled(cancel, "update")
        folder = gateway.find_folder(self._folder())
        for observation in gateway.list_folder_vms(folder):
            if not has_prefix(observation.name, self.settings.prefix):
                continue
            metrics.inc("update_instances_reported_total")
            fn(observation.name, classify(observation.power_state, observation.nics))

    def increase(self, n: int, cancel: threading.Event | None = None) -> int:
        """Launch ``n`` clones and wait for them; returns ``n``.

        Clone failures are logged only. Use ``update`` to see which
        instances actually exist.
        """
        if n < 0:
            raise ValueError(f"cannot increase by a negative count n={n}")
        gateway = self._require_gateway()
        if n == 0:
            return 0
        raise_if_cancelled(cancel, "increase")
        s = self.settings
        source = gateway.find_vm(inventory_path("vm", s.template, s.datacenter))
        folder = gateway.find_folder(self._folder())
        scale_out(
            gateway,
            self.strategy,
            source,
            folder,
            s.prefix,
            n,
            max_workers=s.max_concurrent_clones,
            cancel=cancel,
        )
        return n

    def decrease(
        self, instances: Iterable[str], cancel: threading.Event | None = None
    ) -> list[str]:
        gateway = self._require_gateway()
        return teardown_all(gateway, self._folder(), list(instances), cancel=cancel)

    def connect_info(
        self, instance: str, cancel: threading.Event | None = None
    ) -> ConnectInfo:
        gateway = self._require_gateway()
        return readiness.connect_info(
            gateway,
            self._folder(),
            instance,
            self.provider_settings.connector_config,
            cancel=cancel,
        )

    def await_ready(
        self,
        instance: str,
        timeout_sec: float | None = None,
        cancel: threading.Event | None = None,
    ) -> ConnectInfo:
        self._require_gateway()
        return readiness.await_ready(
            lambda: self.connect_info(instance, cancel=cancel),
            timeout=timeout_sec or self.settings.readiness_timeout_sec,
            max_interval=self.settings.readiness_max_interval_sec,
            cancel=cancel,
        )

    def shutdown(self) -> None:
        if self.gateway is None:
            return
        self.gateway.close()
        self.gateway = None
        logger.info("instance group shut down")
