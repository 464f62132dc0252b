"""
Mock container runtime for testing

Simulates a container engine in memory so the instance manager can be
exercised without a real container runtime.
"""

import itertools
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from warmstack.container_runtime import ContainerRuntime
from warmstack.models import RuntimeResult

DEFAULT_ANNOUNCEMENT = "Server listening on 0.0.0.0:41777"


@dataclass
class MockContainer:
    """A simulated container."""

    handle: str
    name: str
    image: str
    command: List[str]
    environment: Dict[str, str] = field(default_factory=dict)
    volumes: Dict[str, str] = field(default_factory=dict)
    ports: Dict[str, str] = field(default_factory=dict)
    running: bool = True
    log_lines: List[str] = field(default_factory=list)


class MockContainerRuntime(ContainerRuntime):
    """In-memory container runtime for testing."""

    name = "mock"
    display_name = "Mock Runtime"
    command_name = "mock-runtime"
    install_hint = "nothing to install"

    def __init__(self, log_handler=None):
        super().__init__(log_handler)
        self.containers: Dict[str, MockContainer] = {}
        self.images = {"ghcr.io/cympak2/copilot-in-container:latest"}
        self._ids = itertools.count(1)

        # Lines a container started without --port writes to its log
        self.announcement_lines = [
            "Starting copilot server...",
            DEFAULT_ANNOUNCEMENT,
        ]
        self.exit_on_start = False  # Containers die right after starting
        self.crash_with_port = False  # Containers started with --port die right away
        self.port_conflict = False  # Runs publishing ports fail after creating the container
        self.run_failures: List[str] = []  # Container names that fail to start
        self.stop_failures: List[str] = []  # Handles that fail to stop
        self.pull_fails = False
        self.attached_output = "installed"  # Output of non-detached runs
        self.exec_output = "mock response"
        self.exec_exit_code = 0
        self.logs_exit_code = 0

        self.run_calls: List[dict] = []
        self.exec_calls: List[dict] = []
        self.logs_calls: List[dict] = []
        self.stopped: List[str] = []
        self.removed: List[str] = []
        self.pulled: List[str] = []

    def set_run_failure(self, container_name: str):
        """Force a specific container name to fail starting."""
        self.run_failures.append(container_name)

    def set_stop_failure(self, container_handle: str):
        """Force a specific container to fail stopping."""
        self.stop_failures.append(container_handle)

    def kill(self, container_handle: str):
        """Simulate a container dying on its own."""
        self.containers[container_handle].running = False

    def by_name(self, container_name: str) -> Optional[MockContainer]:
        for container in self.containers.values():
            if container.name == container_name:
                return container
        return None

    def is_available(self) -> bool:
        return True

    def version(self) -> str:
        return "mock-runtime version 1.0"

    def run(
        self,
        image_name: str,
        container_name: str,
        environment: Optional[Dict[str, str]] = None,
        volumes: Optional[Dict[str, str]] = None,
        working_dir: Optional[str] = None,
        interactive: bool = False,
        remove_on_exit: bool = False,
        ports: Optional[Dict[str, str]] = None,
        detached: bool = True,
        dns_server: Optional[str] = None,
        command: Optional[Sequence[str]] = None,
        timeout: Optional[int] = None,
    ) -> RuntimeResult:
        """Mock run implementation."""
        command = list(command or [])
        self.run_calls.append({
            "image": image_name,
            "name": container_name,
            "environment": dict(environment or {}),
            "volumes": dict(volumes or {}),
            "working_dir": working_dir,
            "ports": dict(ports or {}),
            "detached": detached,
            "remove_on_exit": remove_on_exit,
            "command": command,
        })
        cmd = [self.command_name, "run", container_name]

        if container_name in self.run_failures:
            return RuntimeResult(command=cmd, exit_code=125, error_output="mock launch failure")

        if self.by_name(container_name) is not None:
            return RuntimeResult(
                command=cmd,
                exit_code=125,
                error_output=f'Conflict. The container name "/{container_name}" is already in use',
            )

        if not detached:
            return RuntimeResult(command=cmd, output=self.attached_output)

        handle = f"{next(self._ids):012d}{'f' * 52}"
        if "--port" in command:
            port = command[command.index("--port") + 1]
            log_lines = [f"Server listening on 0.0.0.0:{port}"]
        else:
            log_lines = list(self.announcement_lines)

        self.containers[handle] = MockContainer(
            handle=handle,
            name=container_name,
            image=image_name,
            command=command,
            environment=dict(environment or {}),
            volumes=dict(volumes or {}),
            ports=dict(ports or {}),
            running=not (self.exit_on_start or (self.crash_with_port and "--port" in command)),
            log_lines=log_lines,
        )
        if self.port_conflict and ports:
            # Created but never started, as docker does for a taken host port
            self.containers[handle].running = False
            host_port = next(iter(ports))
            return RuntimeResult(
                command=cmd,
                exit_code=125,
                error_output=f"Bind for 0.0.0.0:{host_port} failed: port is already allocated",
            )
        return RuntimeResult(command=cmd, output=handle)

    def exec(
        self,
        container_handle: str,
        working_dir: Optional[str],
        interactive: bool,
        command: Sequence[str],
        timeout: Optional[int] = None,
    ) -> RuntimeResult:
        """Mock exec implementation."""
        self.exec_calls.append({
            "handle": container_handle,
            "working_dir": working_dir,
            "interactive": interactive,
            "command": list(command),
            "timeout": timeout,
        })
        output = "" if interactive else self.exec_output
        return RuntimeResult(
            command=[self.command_name, "exec", container_handle],
            exit_code=self.exec_exit_code,
            output=output,
        )

    def logs(
        self,
        container_handle: str,
        tail: Optional[int] = None,
        follow: bool = False,
    ) -> RuntimeResult:
        """Mock logs implementation."""
        self.logs_calls.append({"handle": container_handle, "tail": tail, "follow": follow})
        cmd = [self.command_name, "logs", container_handle]

        container = self.containers.get(container_handle)
        if container is None:
            return RuntimeResult(
                command=cmd, exit_code=1, error_output=f"No such container: {container_handle}"
            )

        lines = container.log_lines
        if tail is not None:
            lines = lines[-tail:] if tail else []
        return RuntimeResult(
            command=cmd,
            exit_code=self.logs_exit_code,
            output="" if follow else "\n".join(lines),
        )

    def stop(self, container_handle: str, timeout: int = 30) -> RuntimeResult:
        """Mock stop implementation."""
        cmd = [self.command_name, "stop", container_handle]
        if container_handle in self.stop_failures:
            return RuntimeResult(command=cmd, exit_code=1, error_output="mock stop failure")

        container = self.containers.get(container_handle)
        if container is None:
            return RuntimeResult(command=cmd, exit_code=1, error_output="No such container")

        container.running = False
        self.stopped.append(container_handle)
        return RuntimeResult(command=cmd, output=container_handle)

    def remove(self, container_handle: str) -> RuntimeResult:
        """Mock remove implementation, by handle or by name."""
        cmd = [self.command_name, "rm", "-f", container_handle]
        by_name = self.by_name(container_handle)
        if by_name is not None:
            container_handle = by_name.handle
        if self.containers.pop(container_handle, None) is None:
            return RuntimeResult(command=cmd, exit_code=1, error_output="No such container")
        self.removed.append(container_handle)
        return RuntimeResult(command=cmd, output=container_handle)

    def is_running(self, container_handle: str) -> bool:
        container = self.containers.get(container_handle)
        return container is not None and container.running

    def image_exists(self, image_name: str) -> bool:
        return image_name in self.images

    def pull_image(self, image_name: str) -> RuntimeResult:
        cmd = [self.command_name, "pull", image_name]
        if self.pull_fails:
            return RuntimeResult(command=cmd, exit_code=1, error_output="manifest unknown")
        self.images.add(image_name)
        self.pulled.append(image_name)
        return RuntimeResult(command=cmd, output=f"Pulled {image_name}")
