"""
Data models for warmstack

Defines the persisted instance record, runtime command results and the
status rows reported for instances.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RuntimeStatus(Enum):
    """Observed status of an instance's container."""

    RUNNING = "Running"
    STOPPED = "Stopped"


@dataclass
class RuntimeResult:
    """Result of a single container runtime command."""

    command: List[str] = field(default_factory=list)
    exit_code: int = 0
    output: str = ""
    error_output: str = ""
    runtime_seconds: float = 0.0
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def combined_output(self) -> str:
        """Stdout followed by stderr, as a terminal would show them."""
        return "\n".join(part for part in (self.output, self.error_output) if part)


class InstanceRecord(BaseModel):
    """
    Persisted state of one named server instance.

    Serialized with camelCase keys; one JSON file per instance.
    """

    model_config = ConfigDict(populate_by_name=True)

    instance_name: str = Field(..., alias="instanceName")
    container_handle: str = Field(..., alias="containerHandle")
    container_label: str = Field(..., alias="containerLabel")
    port: int = Field(0, alias="port")
    model: Optional[str] = Field(None, alias="model")
    log_level: str = Field("info", alias="logLevel")
    started_at: datetime = Field(..., alias="startedAt")
    workspace_path: str = Field(..., alias="workspacePath")
    aux_config_path: Optional[str] = Field(None, alias="auxConfigPath")

    @field_validator("started_at")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        """Naive timestamps are treated as UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if v < 0 or v > 65535:
            raise ValueError("port must be between 0 and 65535")
        return v

    @property
    def short_handle(self) -> str:
        return self.container_handle[:12]

    def to_json(self) -> str:
        """Serialize the record to its on-disk JSON form."""
        return self.model_dump_json(by_alias=True, indent=2)

    @classmethod
    def from_json(cls, data: str) -> "InstanceRecord":
        """Parse a record from its on-disk JSON form."""
        return cls.model_validate_json(data)


def format_uptime(uptime: timedelta) -> str:
    """Format an uptime as its two most significant units."""
    total_seconds = max(int(uptime.total_seconds()), 0)
    days, remainder = divmod(total_seconds, 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes, seconds = divmod(remainder, 60)

    if days:
        return f"{days}d {hours}h"
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


@dataclass
class InstanceStatus:
    """Freshly observed status of an instance."""

    record: InstanceRecord
    status: RuntimeStatus
    uptime: Optional[timedelta] = None

    @property
    def running(self) -> bool:
        return self.status == RuntimeStatus.RUNNING

    @property
    def uptime_display(self) -> str:
        if self.uptime is None:
            return "-"
        return format_uptime(self.uptime)


@dataclass
class StartResult:
    """Result of a successful instance start."""

    record: InstanceRecord
    discovered_port: bool = False
    runtime_seconds: float = 0.0

    @property
    def container_handle(self) -> str:
        return self.record.container_handle

    @property
    def port(self) -> int:
        return self.record.port

