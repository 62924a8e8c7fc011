from enum import Enum
from functools import lru_cache
from typing import Any

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from vsphere_fleet.errors import ConfigurationError


PROVIDER_ID = "vSphere"
PROVIDER_MAX_SIZE = 50

# Keys accepted from older plugin configurations.
LEGACY_KEYS = {
    "vsphereurl": "vsphere_url",
    "deploytype": "deploy_type",
    "resourcepool": "resource_pool",
    "contentlibrary": "content_library",
}


class DeployType(str, Enum):
    INSTANT_CLONE = "instantclone"
    FULL_CLONE = "clone"
    LIBRARY_DEPLOY = "librarydeploy"

    @classmethod
    def _missing_(cls, value: object) -> "DeployType | None":
        aliases = {
            "instant-clone": cls.INSTANT_CLONE,
            "full-clone": cls.FULL_CLONE,
            "contentlibrary": cls.LIBRARY_DEPLOY,
            "content-library-deploy": cls.LIBRARY_DEPLOY,
        }
        if isinstance(value, str):
            return aliases.get(value.strip().lower())
        return None


COMMON_REQUIRED_FIELDS = ("vsphere_url", "template", "folder", "prefix", "deploy_type")
PLACEMENT_REQUIRED_FIELDS = (
    "datacenter",
    "host",
    "cluster",
    "resource_pool",
    "datastore",
    "content_library",
    "network",
    "cpu",
    "memory",
)


class GroupSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="VSPHERE_FLEET_",
        env_file=".env",
        extra="ignore",
        frozen=True,
    )

    vsphere_url: str = Field(default="")
    deploy_type: DeployType | None = Field(default=None)
    datacenter: str = Field(default="")
    host: str = Field(default="")
    cluster: str = Field(default="")
    resource_pool: str = Field(default="")
    datastore: str = Field(default="")
    content_library: str = Field(default="")
    network: str = Field(default="")
    template: str = Field(default="")
    folder: str = Field(default="")
    prefix: str = Field(default="")
    cpu: int | None = Field(default=None, gt=0)
    memory: int | None = Field(default=None, gt=0)

    insecure: bool = Field(default=True)
    max_concurrent_clones: int | None = Field(default=None, ge=1)
    task_poll_interval_sec: float = Field(default=0.5, gt=0)
    readiness_timeout_sec: float = Field(default=300, gt=0)
    readiness_max_interval_sec: float = Field(default=10, gt=0)
    request_timeout_sec: float = Field(default=30, gt=0)

    def required_fields(self) -> tuple[str, ...]:
        if self.deploy_type in (None, DeployType.INSTANT_CLONE):
            return COMMON_REQUIRED_FIELDS
        placement = PLACEMENT_REQUIRED_FIELDS
        if self.deploy_type != DeployType.LIBRARY_DEPLOY:
            placement = tuple(f for f in placement if f != "content_library")
        return COMMON_REQUIRED_FIELDS + placement

    def require_fields(self) -> None:
        for field in self.required_fields():
            value = getattr(self, field)
            if value is None or value == "":
                raise ConfigurationError(
                    field, f"please provide {field} in plugin config"
                )


class ProviderSettings(BaseSettings):
    """Settings handed over by the host runtime when the group is initialized."""

    model_config = SettingsConfigDict(env_prefix="VSPHERE_FLEET_", extra="ignore")

    use_static_credentials: bool = Field(default=True)
    connector_config: dict[str, Any] = Field(default_factory=dict)


class BuildSettings(BaseSettings):
    model_config = SettingsConfigDict(extra="ignore", env_ignore_empty=True)

    version: str = Field(default="0.1.0")
    build_info: str = Field(default="HEAD")


def load_group_settings(raw: dict[str, Any] | None = None) -> GroupSettings:
    values = {LEGACY_KEYS.get(key, key): value for key, value in (raw or {}).items()}
    try:
        return GroupSettings(**values)
    except ValidationError as exc:
        first = exc.errors()[0]
        location = first.get("loc") or ("settings",)
        field = str(location[0])
        raise ConfigurationError(
            field, f"invalid {field} in plugin config: {first.get('msg')}"
        ) from exc


def get_build_settings() -> BuildSettings:
    return BuildSettings()


@lru_cache(maxsize=1)
def get_settings() -> GroupSettings:
    return load_group_settings()
