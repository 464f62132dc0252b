"""
Error types for warmstack

Every failure the instance manager reports derives from WarmstackError and
carries a short message plus, where one exists, the next command to try.
"""

from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .models import InstanceRecord


class WarmstackError(Exception):
    """Base exception for all user-facing warmstack errors."""

    def __init__(self, message: str, suggestion: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.suggestion = suggestion


class InvalidInstanceNameError(WarmstackError, ValueError):
    """Raised when an instance name cannot be used as a key."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(
            f"Invalid instance name '{name}'",
            "Use letters, digits, '.', '_' or '-' (starting with a letter or digit)",
        )


class AlreadyRunningError(WarmstackError):
    """Raised when starting an instance whose container is still live."""

    def __init__(self, record: "InstanceRecord"):
        self.record = record
        super().__init__(
            f"Server instance '{record.instance_name}' is already running "
            f"(port {record.port}, container {record.short_handle})",
            f"Use 'warmstack stop --name {record.instance_name}' to stop it first",
        )


class InstanceNotFoundError(WarmstackError):
    """Raised when no state record exists for an instance."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(
            f"Server instance '{name}' not found",
            "Use 'warmstack list' to see available instances",
        )


class InstanceNotRunningError(WarmstackError):
    """Raised when an instance has a record but no live container."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(
            f"Server instance '{name}' is not running",
            f"Start it with: warmstack start --name {name}",
        )


class CredentialUnavailableError(WarmstackError):
    """Raised when the worker's credentials cannot be resolved."""

    def __init__(
        self,
        message: str = "Failed to retrieve GitHub token",
        suggestion: str = "Run 'gh auth login' or set GITHUB_TOKEN",
    ):
        super().__init__(message, suggestion)


class RuntimeUnavailableError(WarmstackError):
    """Raised when the selected container runtime is not usable."""

    def __init__(self, runtime_name: str, message: Optional[str] = None):
        self.runtime_name = runtime_name
        super().__init__(
            message or f"Container runtime '{runtime_name}' is not available",
            "Use 'warmstack runtime list' to see installed runtimes",
        )


class ImageUnavailableError(WarmstackError):
    """Raised when the worker image is missing and cannot be pulled."""

    def __init__(self, image_name: str, output: str = ""):
        self.image_name = image_name
        self.output = output
        super().__init__(
            f"Failed to pull image {image_name}",
            "Pull it manually or start with --no-pull to skip the image check",
        )


class LaunchFailedError(WarmstackError):
    """Raised when the runtime refuses to create the worker container."""

    def __init__(self, container_name: str, output: str = ""):
        self.container_name = container_name
        self.output = output
        detail = f": {output.strip()}" if output and output.strip() else ""
        super().__init__(f"Failed to start container {container_name}{detail}")


class PortDiscoveryFailureReason(Enum):
    """Why port discovery gave up."""

    TIMEOUT = "timeout"
    CONTAINER_EXITED = "container_exited"


class PortDiscoveryFailedError(WarmstackError):
    """Raised when a worker never announced its port."""

    def __init__(self, reason: PortDiscoveryFailureReason, logs: str = ""):
        self.reason = reason
        self.logs = logs
        if reason == PortDiscoveryFailureReason.CONTAINER_EXITED:
            message = "Container stopped unexpectedly before announcing a port"
        else:
            message = "Timeout waiting for port announcement"
        super().__init__(
            message,
            "Pass --port to start the server on a fixed port",
        )


class StopFailedError(WarmstackError):
    """Raised when the runtime fails to stop an instance's container."""

    def __init__(self, name: str, output: str = ""):
        self.name = name
        self.output = output
        detail = f": {output.strip()}" if output and output.strip() else ""
        super().__init__(
            f"Failed to stop server instance '{name}'{detail}",
            f"The instance record was kept; retry with 'warmstack stop --name {name}'",
        )


class StateCorruptError(WarmstackError):
    """Raised when a state file exists but cannot be parsed."""

    def __init__(self, path: str, detail: str = ""):
        self.path = path
        super().__init__(
            f"State file {path} is corrupt{': ' + detail if detail else ''}",
            f"Inspect or remove {path} manually",
        )
