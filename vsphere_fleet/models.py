from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


POWERED_ON = "poweredOn"
POWERED_OFF = "poweredOff"
SUSPENDED = "suspended"


class InstanceState(str, Enum):
    CREATING = "creating"
    RUNNING = "running"
    DELETING = "deleting"


@dataclass
class GuestNic:
    mac_address: str
    has_ip_config: bool
    ip_addresses: list[str] = field(default_factory=list)


@dataclass
class VMObservation:
    name: str
    power_state: str
    nics: list[GuestNic] = field(default_factory=list)


@dataclass
class ProviderInfo:
    id: str
    max_size: int
    version: str
    build_info: str


@dataclass
class ConnectInfo:
    id: str
    internal_addr: str
    expires: datetime
    connector_config: dict[str, Any] = field(default_factory=dict)


@dataclass
class ProvisionOutcome:
    name: str
    ok: bool
    error: str | None = None
