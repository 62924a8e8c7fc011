import logging

from fastapi import FastAPI

from vsphere_fleet.api import install_instance_group, router
from vsphere_fleet.config import ProviderSettings, get_settings
from vsphere_fleet.controller import InstanceGroup
from vsphere_fleet.logging_config import configure_logging


logger = logging.getLogger(__name__)
instance_group: InstanceGroup | None = None


app = FastAPI(title="vSphere Instance Group")
app.include_router(router)


@app.on_event("startup")
def startup() -> None:
    configure_logging()
    global instance_group
    instance_group = InstanceGroup(get_settings())
    provider_info = instance_group.init(ProviderSettings())
    install_instance_group(instance_group, provider_info)
    logger.info(
        "instance group service startup complete id=%s version=%s build=%s",
        provider_info.id,
        provider_info.version,
        provider_info.build_info,
    )


@app.on_event("shutdown")
def shutdown() -> None:
    install_instance_group(None)
    if instance_group is not None:
        instance_group.shutdown()
