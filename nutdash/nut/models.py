"""
Data models for NUT (Network UPS Tools) integration.

This module defines the Pydantic models for the servers that are polled
and the per-device snapshots produced from their variables. All models are
frozen: a snapshot is superseded by the next poll, never updated.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DEFAULT_PORT = 3493


class ServerEndpoint(BaseModel):
    """
    Identifies one NUT server.

    ``id`` is the identity of the server record in the configuration store,
    used downstream to correlate snapshots with registered devices.
    """

    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    host: str
    port: int = DEFAULT_PORT
    username: Optional[str] = None
    password: Optional[str] = Field(None, repr=False)

    @property
    def key(self) -> str:
        """Connection cache key."""
        return f"{self.host}:{self.port}"

    @property
    def has_credentials(self) -> bool:
        return bool(self.username)

    @classmethod
    def parse(cls, value: str, **kwargs) -> "ServerEndpoint":
        """Build an endpoint from ``host`` or ``host:port``."""
        host, sep, port = value.rpartition(":")
        if not sep or not port.isdigit():
            return cls(host=value, **kwargs)
        return cls(host=host, port=int(port), **kwargs)


class DeviceSnapshot(BaseModel):
    """
    Typed reading of one UPS device at one point in time.

    Numeric fields are None when the source variable was absent or could
    not be parsed. Zero is a real reading and never stands in for missing.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    name: str = Field(description="Protocol device name")
    display_name: str
    model: Optional[str] = None
    manufacturer: Optional[str] = None
    serial: Optional[str] = None
    status: str = Field("Unknown", description="Raw NUT status, or Unknown/Error")
    status_label: str = Field("Unknown", description="Human readable status")
    battery_charge: Optional[int] = Field(None, description="Percent, 0-100")
    battery_voltage: Optional[float] = None
    input_voltage: Optional[float] = None
    output_voltage: Optional[float] = None
    load: Optional[int] = Field(None, description="Percent of nominal")
    runtime_remaining: Optional[int] = Field(None, description="Minutes")
    temperature: Optional[float] = None
    details: Dict[str, Dict[str, str]] = Field(default_factory=dict)
    error: Optional[str] = None


class ServerSnapshot(BaseModel):
    """A DeviceSnapshot tagged with the server it was read from."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    server_id: Optional[int] = None
    server: str = Field(description="host:port of the originating server")
    device: DeviceSnapshot


class PollResult(BaseModel):
    """
    Every snapshot from one poll cycle.

    Devices of the same server are contiguous and in the order the server
    listed them.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    entries: List[ServerSnapshot] = Field(default_factory=list)

    def __len__(self) -> int:
        return len(self.entries)

    def for_server(self, server: str) -> List[DeviceSnapshot]:
        return [entry.device for entry in self.entries if entry.server == server]

    def find(self, server_id: Optional[int], device_name: str) -> Optional[DeviceSnapshot]:
        for entry in self.entries:
            if entry.server_id == server_id and entry.device.name == device_name:
                return entry.device
        return None
