"""
Container runtime adapters for warmstack

Provides a uniform interface over the Docker, Podman and Apple Container
command-line tools. Every operation shells out to the runtime's CLI and
returns a RuntimeResult; nothing is cached between calls.
"""

import logging
import shutil
import signal
import subprocess
import sys
import time
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Sequence, Tuple

from .config import WarmstackConfig
from .errors import RuntimeUnavailableError
from .logging_config import SubprocessLogHandler
from .models import RuntimeResult

logger = logging.getLogger(__name__)

# Exit codes of an attached child that was cancelled with Ctrl+C
INTERRUPTED_EXIT_CODES = (130, -signal.SIGINT)


class ContainerRuntime(ABC):
    """
    Base class for container runtime adapters.

    Subclasses provide the runtime-specific command names and the few
    commands whose syntax differs between engines.
    """

    name: str = ""
    display_name: str = ""
    command_name: str = ""
    install_hint: str = ""

    # Allocate a pseudo-TTY for detached containers
    detached_tty: bool = True
    # Pass an explicit --dns to run
    supports_dns: bool = True
    # Lowercased fragments of errors for a handle or name the engine does not know
    missing_container_markers: Tuple[str, ...] = ("no such container",)
    # Lowercased fragments of errors for a container name that is already taken
    name_conflict_markers: Tuple[str, ...] = ("already in use",)

    def __init__(
        self,
        log_handler: Optional[SubprocessLogHandler] = None,
        timeout: int = 60,
    ):
        """Initialize the runtime adapter."""
        self.log_handler = log_handler
        self.timeout = timeout

    def _run_command(
        self, args: Sequence[str], timeout: Optional[int] = None
    ) -> RuntimeResult:
        """Run a runtime command to completion, capturing its output."""
        cmd = [self.command_name, *args]
        timeout = timeout or self.timeout

        if self.log_handler:
            self.log_handler.log_command(cmd)

        start_time = time.time()
        try:
            process = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            elapsed = time.time() - start_time
            error_msg = f"{cmd[0]} {args[0] if args else ''} timed out after {timeout} seconds"
            logger.error(error_msg)
            if self.log_handler:
                self.log_handler.log_output(error_msg, logging.ERROR)
                self.log_handler.log_completion(124, elapsed)
            return RuntimeResult(
                command=cmd,
                exit_code=124,  # Standard timeout exit code
                error_output=error_msg,
                runtime_seconds=elapsed,
            )
        except OSError as e:
            elapsed = time.time() - start_time
            logger.debug(f"Failed to execute {cmd[0]}: {e}")
            return RuntimeResult(
                command=cmd,
                exit_code=127,
                error_output=str(e),
                runtime_seconds=elapsed,
            )

        elapsed = time.time() - start_time
        result = RuntimeResult(
            command=cmd,
            exit_code=process.returncode,
            output=(process.stdout or "").strip(),
            error_output=(process.stderr or "").strip(),
            runtime_seconds=elapsed,
        )

        if self.log_handler:
            self.log_handler.log_output(result.output)
            self.log_handler.log_output(result.error_output, logging.WARNING)
            self.log_handler.log_completion(result.exit_code, elapsed)

        return result

    def _run_attached(self, args: Sequence[str]) -> RuntimeResult:
        """
        Run a runtime command attached to the current terminal.

        Ctrl+C is left to the child: while it runs the wrapper swallows
        SIGINT instead of dying, and the child's exit code is returned.
        """
        cmd = [self.command_name, *args]

        if self.log_handler:
            self.log_handler.log_command(cmd)

        start_time = time.time()
        # A Python-level handler (unlike SIG_IGN) is reset to the default
        # in the child on exec, so the child still receives Ctrl+C.
        previous_handler = signal.signal(signal.SIGINT, lambda signum, frame: None)
        try:
            process = subprocess.run(cmd)
            exit_code = process.returncode
        except OSError as e:
            logger.error(f"Failed to execute {cmd[0]}: {e}")
            return RuntimeResult(command=cmd, exit_code=127, error_output=str(e))
        finally:
            signal.signal(signal.SIGINT, previous_handler)

        elapsed = time.time() - start_time
        if self.log_handler:
            self.log_handler.log_completion(exit_code, elapsed)

        return RuntimeResult(command=cmd, exit_code=exit_code, runtime_seconds=elapsed)

    def is_available(self) -> bool:
        """Check if the runtime CLI is installed and responds."""
        if shutil.which(self.command_name) is None:
            return False
        return self._run_command(["--version"], timeout=10).success

    def version(self) -> str:
        """Get the version string of the runtime."""
        result = self._run_command(["--version"], timeout=10)
        if not result.success or not result.output:
            return "unknown"
        return result.output.splitlines()[0]

    def build_run_arguments(
        self,
        image_name: str,
        container_name: str,
        environment: Optional[Dict[str, str]] = None,
        volumes: Optional[Dict[str, str]] = None,
        working_dir: Optional[str] = None,
        interactive: bool = True,
        remove_on_exit: bool = True,
        ports: Optional[Dict[str, str]] = None,
        detached: bool = False,
        dns_server: Optional[str] = None,
        command: Optional[Sequence[str]] = None,
    ) -> List[str]:
        """
        Build container run arguments for the given parameters.

        Args:
            image_name: Image to run
            container_name: Name for the container
            environment: Environment variables
            volumes: Volume mappings (host path -> container path[:mode])
            working_dir: Working directory inside the container
            interactive: Attach stdin and allocate a TTY
            remove_on_exit: Remove container when it exits
            ports: Port mappings (host -> container)
            detached: Run in detached mode
            dns_server: DNS server for the container
            command: Command and arguments to run instead of the image default

        Returns:
            Argument list, without the runtime executable
        """
        args = ["run"]

        if detached:
            args.append("-d")

        if remove_on_exit:
            args.append("--rm")

        args.extend(["--name", container_name])

        if interactive:
            args.append("-it")
        elif detached and self.detached_tty:
            args.append("-t")

        if dns_server and self.supports_dns:
            args.extend(["--dns", dns_server])

        for env_name, env_value in (environment or {}).items():
            args.extend(["-e", f"{env_name}={env_value}"])

        for host_port, container_port in (ports or {}).items():
            args.extend(["-p", f"{host_port}:{container_port}"])

        for host_path, container_path in (volumes or {}).items():
            args.extend(["-v", f"{host_path}:{container_path}"])

        if working_dir:
            args.extend(["-w", working_dir])

        args.append(image_name)
        args.extend(command or [])

        return args

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
        """
        Start a container.

        Detached runs return the container handle as their output. Attached
        runs hand the terminal to the container until it exits.
        """
        args = self.build_run_arguments(
            image_name,
            container_name,
            environment=environment,
            volumes=volumes,
            working_dir=working_dir,
            interactive=interactive,
            remove_on_exit=remove_on_exit,
            ports=ports,
            detached=detached,
            dns_server=dns_server,
            command=command,
        )

        logger.info(f"Starting container: {container_name} from {image_name}")

        if not detached and interactive:
            return self._run_attached(args)

        result = self._run_command(args, timeout=timeout)
        if result.success and detached:
            # Some engines print pull progress before the id
            lines = result.output.splitlines()
            result.output = lines[-1].strip() if lines else ""
            logger.info(f"Container {container_name} started: {result.output[:12]}")
        elif not result.success:
            logger.error(f"Failed to start {container_name}: {result.combined_output}")

        return result

    def build_exec_arguments(
        self,
        container_handle: str,
        working_dir: Optional[str],
        interactive: bool,
        command: Sequence[str],
    ) -> List[str]:
        """Build container exec arguments for the given parameters."""
        args = ["exec"]

        if interactive:
            args.append("-it")

        if working_dir:
            args.extend(["-w", working_dir])

        args.append(container_handle)
        args.extend(command)

        return args

    def exec(
        self,
        container_handle: str,
        working_dir: Optional[str],
        interactive: bool,
        command: Sequence[str],
        timeout: Optional[int] = None,
    ) -> RuntimeResult:
        """Execute a command inside a running container."""
        args = self.build_exec_arguments(container_handle, working_dir, interactive, command)
        if interactive:
            return self._run_attached(args)
        return self._run_command(args, timeout=timeout)

    def build_logs_arguments(
        self,
        container_handle: str,
        tail: Optional[int] = None,
        follow: bool = False,
    ) -> List[str]:
        """Build container logs arguments."""
        args = ["logs"]

        if tail is not None:
            args.extend(["--tail", str(tail)])

        if follow:
            args.append("--follow")

        args.append(container_handle)

        return args

    def logs(
        self,
        container_handle: str,
        tail: Optional[int] = None,
        follow: bool = False,
    ) -> RuntimeResult:
        """Fetch container logs, or stream them to the terminal when following."""
        args = self.build_logs_arguments(container_handle, tail, follow)
        if follow:
            return self._run_attached(args)
        return self._run_command(args, timeout=30)

    def stop(self, container_handle: str, timeout: int = 30) -> RuntimeResult:
        """Stop a running container."""
        logger.info(f"Stopping container: {container_handle[:12]}")
        return self._run_command(["stop", container_handle], timeout=timeout + 10)

    def remove(self, container_handle: str) -> RuntimeResult:
        """Remove a container by handle or name, stopping it first if needed."""
        return self._run_command(["rm", "-f", container_handle], timeout=30)

    def reports_missing_container(self, result: RuntimeResult) -> bool:
        """Check if a failed command failed because the container does not exist."""
        if result.success:
            return False
        output = result.combined_output.lower()
        return any(marker in output for marker in self.missing_container_markers)

    def reports_name_conflict(self, result: RuntimeResult) -> bool:
        """Check if a failed run failed because the container name is taken."""
        if result.success:
            return False
        output = result.combined_output.lower()
        return any(marker in output for marker in self.name_conflict_markers)

    def is_running(self, container_handle: str) -> bool:
        """Check if a container is currently running."""
        result = self._run_command(
            ["ps", "--filter", f"id={container_handle}", "--format", "{{.State}}"],
            timeout=10,
        )
        if not result.success:
            return False
        return result.output.strip().lower() == "running"

    def image_exists(self, image_name: str) -> bool:
        """Check if an image exists locally."""
        return self._run_command(["image", "inspect", image_name], timeout=30).success

    def pull_image(self, image_name: str) -> RuntimeResult:
        """Pull an image from its registry."""
        logger.info(f"Pulling image: {image_name}")
        return self._run_command(["pull", image_name], timeout=900)


class DockerRuntime(ContainerRuntime):
    """Docker engine via the docker CLI."""

    name = "docker"
    display_name = "Docker"
    command_name = "docker"
    install_hint = "Docker: https://docs.docker.com/get-docker/"


class PodmanRuntime(ContainerRuntime):
    """Podman via the podman CLI (common on Linux systems)."""

    name = "podman"
    display_name = "Podman"
    command_name = "podman"
    install_hint = "Podman: https://podman.io/docs/installation"

    detached_tty = False
    supports_dns = False
    name_conflict_markers = ("already in use", "already exists")

    def image_exists(self, image_name: str) -> bool:
        return self._run_command(["image", "exists", image_name], timeout=30).success


class AppleContainerRuntime(ContainerRuntime):
    """Apple's container CLI (macOS 15+)."""

    name = "container"
    display_name = "Apple Container"
    command_name = "container"
    install_hint = "Apple Container: https://github.com/apple/container/releases (requires macOS 15+)"

    missing_container_markers = ("not found",)
    name_conflict_markers = ("already exists",)

    def remove(self, container_handle: str) -> RuntimeResult:
        return self._run_command(["delete", "--force", container_handle], timeout=30)

    def is_running(self, container_handle: str) -> bool:
        # container list only shows running containers, one per line
        result = self._run_command(["list"], timeout=10)
        if not result.success:
            return False
        for line in result.output.splitlines():
            if container_handle in line and "running" in line.lower():
                return True
        return False

    def image_exists(self, image_name: str) -> bool:
        result = self._run_command(["image", "list"], timeout=30)
        if not result.success:
            return False

        name, _, tag = image_name.partition(":")
        tag = tag or "latest"
        for line in result.output.splitlines()[1:]:  # Skip header
            parts = line.split()
            if len(parts) >= 2 and parts[0] == name and parts[1] == tag:
                return True
        return False

    def pull_image(self, image_name: str) -> RuntimeResult:
        logger.info(f"Pulling image: {image_name}")
        return self._run_command(["image", "pull", image_name], timeout=900)


RUNTIME_CLASSES = {
    "docker": DockerRuntime,
    "podman": PodmanRuntime,
    "container": AppleContainerRuntime,
}


def create_runtime(
    name: str, log_handler: Optional[SubprocessLogHandler] = None
) -> ContainerRuntime:
    """Instantiate the adapter for a runtime name without checking availability."""
    try:
        runtime_class = RUNTIME_CLASSES[name.lower()]
    except KeyError:
        raise RuntimeUnavailableError(
            name,
            f"Unknown runtime: {name} (choose from {', '.join(RUNTIME_CLASSES)})",
        )
    return runtime_class(log_handler)


def detection_order() -> List[str]:
    """Runtime names in the order auto-detection tries them."""
    if sys.platform == "darwin":
        return ["container", "docker", "podman"]
    return ["docker", "podman", "container"]


def get_runtime(
    config: WarmstackConfig, log_handler: Optional[SubprocessLogHandler] = None
) -> ContainerRuntime:
    """
    Resolve the runtime to use for this invocation.

    Args:
        config: Configuration carrying the runtime preference
        log_handler: Optional subprocess log handler for runtime commands

    Returns:
        An available runtime adapter

    Raises:
        RuntimeUnavailableError: If the requested runtime (or, for 'auto',
            every runtime) is not installed
    """
    if config.container_runtime != "auto":
        runtime = create_runtime(config.container_runtime, log_handler)
        if not runtime.is_available():
            raise RuntimeUnavailableError(
                runtime.name,
                f"{runtime.display_name} is not available on this system",
            )
        logger.debug(f"Using configured runtime: {runtime.display_name}")
        return runtime

    for name in detection_order():
        runtime = create_runtime(name, log_handler)
        if runtime.is_available():
            logger.debug(f"Auto-detected runtime: {runtime.display_name}")
            return runtime

    raise RuntimeUnavailableError(
        "auto", "No container runtime found (tried docker, podman, container)"
    )
