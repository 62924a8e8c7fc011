from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class ProviderInfoRead(BaseModel):
    id: str
    max_size: int
    version: str
    build_info: str


class InstanceRead(BaseModel):
    name: str
    state: str


class IncreaseRequest(BaseModel):
    count: int = Field(ge=0)


class IncreaseResponse(BaseModel):
    requested: int


class DecreaseRequest(BaseModel):
    instances: list[str] = Field(default_factory=list)


class DecreaseResponse(BaseModel):
    processed: list[str]


class AwaitReadyRequest(BaseModel):
    timeout_sec: float | None = Field(default=None, gt=0)


class ConnectInfoRead(BaseModel):
    id: str
    internal_addr: str
    expires: datetime
    connector_config: dict[str, Any] = Field(default_factory=dict)
