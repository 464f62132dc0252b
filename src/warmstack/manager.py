"""
Server instance lifecycle management

Starts, tracks, inspects and stops named worker instances. Each instance is
one long-lived container plus one state record. Starting without a port uses
a two-phase bring-up: the container is launched once without published
ports to learn which port the worker picks, then relaunched with that port
published, since port publishing must be declared when a container is
created.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

from .config import WarmstackConfig
from .container_runtime import ContainerRuntime
from .credentials import GitHubCredentialProvider, get_host_ids, resolve_workspace
from .errors import (
    AlreadyRunningError,
    ImageUnavailableError,
    InstanceNotFoundError,
    InstanceNotRunningError,
    LaunchFailedError,
    PortDiscoveryFailedError,
    StopFailedError,
)
from .mcp import MCP_CONFIG_FILE, MCP_CONTAINER_PATH, McpDependencyInstaller, get_effective_mcp_config_path
from .models import InstanceRecord, InstanceStatus, RuntimeResult, RuntimeStatus, StartResult
from .port_discovery import PortDiscovery, PortDiscoveryResult
from .state import StateStore, validate_instance_name
from .worker_models import resolve_default_model

logger = logging.getLogger(__name__)

WORKER_CONFIG_MOUNT = "/home/appuser/.copilot"


@dataclass
class StartOptions:
    """Options for starting a server instance."""

    port: Optional[int] = None
    model: Optional[str] = None
    log_level: str = "info"
    mcp_config: Optional[str] = None
    install_mcp_deps: bool = True
    workspace: Optional[str] = None
    pull_image: bool = True


@dataclass
class LaunchSpec:
    """Everything needed to (re)create an instance's container."""

    container_name: str
    environment: Dict[str, str]
    volumes: Dict[str, str]
    workspace: str
    options: StartOptions
    model: Optional[str] = None
    mcp_config_path: Optional[str] = None


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class InstanceManager:
    """
    Lifecycle manager for named server instances.

    The runtime is chosen once per invocation by the caller and passed in;
    every liveness and log read goes back to the runtime.
    """

    def __init__(
        self,
        config: WarmstackConfig,
        runtime: ContainerRuntime,
        store: Optional[StateStore] = None,
        credentials: Optional[GitHubCredentialProvider] = None,
        installer: Optional[McpDependencyInstaller] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize the instance manager with its collaborators."""
        self.config = config
        self.runtime = runtime
        self.store = store or StateStore(config.get_state_dir_path())
        self.credentials = credentials or GitHubCredentialProvider(config)
        self.installer = installer or McpDependencyInstaller(runtime, config)
        self.clock = clock

    # Helpers

    def _require_record(self, instance_name: str) -> InstanceRecord:
        validate_instance_name(instance_name)
        record = self.store.read(instance_name)
        if record is None:
            raise InstanceNotFoundError(instance_name)
        return record

    def _observe(self, record: InstanceRecord) -> InstanceStatus:
        running = self.runtime.is_running(record.container_handle)
        if not running:
            return InstanceStatus(record=record, status=RuntimeStatus.STOPPED)
        return InstanceStatus(
            record=record,
            status=RuntimeStatus.RUNNING,
            uptime=self.clock() - record.started_at,
        )

    def _worker_command(self, spec: LaunchSpec, port: Optional[int]) -> List[str]:
        command = [
            self.config.worker_command,
            "--server",
            "--log-level",
            spec.options.log_level,
        ]
        if port is not None:
            command.extend(["--port", str(port)])
        if spec.model:
            command.extend(["--model", spec.model])
        if spec.mcp_config_path:
            command.extend(["--additional-mcp-config", f"{MCP_CONTAINER_PATH}/{MCP_CONFIG_FILE}"])
        return command

    def _launch(self, spec: LaunchSpec, port: Optional[int]) -> str:
        """Create the instance container, publishing port:port when given."""
        ports = {str(port): str(port)} if port is not None else None
        result = self.runtime.run(
            self.config.image_name,
            spec.container_name,
            environment=spec.environment,
            volumes=spec.volumes,
            working_dir=self.config.container_workdir,
            interactive=False,
            remove_on_exit=False,
            ports=ports,
            detached=True,
            dns_server=self.config.dns_server,
            command=self._worker_command(spec, port),
        )
        if not result.success or not result.output:
            # The engine may have created the container before failing to start it
            if not self.runtime.reports_name_conflict(result):
                cleanup = self.runtime.remove(spec.container_name)
                if cleanup.success:
                    logger.info(f"Removed half-created container {spec.container_name}")
            raise LaunchFailedError(spec.container_name, result.combined_output)
        return result.output

    def _confirm_running(self, spec: LaunchSpec, container_handle: str) -> None:
        """Fail the launch if the container died right after being created."""
        if self.runtime.is_running(container_handle):
            return

        logs = self._fetch_logs(container_handle) or ""
        self._discard(container_handle)
        raise LaunchFailedError(
            spec.container_name,
            f"container exited right after starting\n{logs}".rstrip(),
        )

    def _discard(self, container_handle: str) -> None:
        """Stop and remove a container, logging rather than raising on failure."""
        stop_result = self.runtime.stop(container_handle)
        if not stop_result.success:
            logger.warning(
                f"Failed to stop container {container_handle[:12]}: {stop_result.combined_output}"
            )
        remove_result = self.runtime.remove(container_handle)
        if not remove_result.success:
            logger.warning(
                f"Failed to remove container {container_handle[:12]}: {remove_result.combined_output}"
            )

    def _fetch_logs(self, container_handle: str) -> Optional[str]:
        result = self.runtime.logs(container_handle)
        if not result.success:
            return None
        return result.combined_output

    def discover_port(self, container_handle: str) -> PortDiscoveryResult:
        """Poll a container's logs for the port its worker listens on."""
        discovery = PortDiscovery(
            is_alive=lambda: self.runtime.is_running(container_handle),
            fetch_logs=lambda: self._fetch_logs(container_handle),
            timeout=self.config.port_discovery_timeout,
            interval=self.config.port_discovery_interval,
        )
        return discovery.run()

    def _ensure_image(self) -> None:
        image = self.config.image_name
        if self.runtime.image_exists(image):
            logger.debug(f"Image found locally: {image}")
            return

        logger.info(f"Image not found locally, pulling: {image}")
        result = self.runtime.pull_image(image)
        if not result.success:
            raise ImageUnavailableError(image, result.combined_output)

    def _build_launch_spec(self, instance_name: str, options: StartOptions) -> LaunchSpec:
        token = self.credentials.get_token()
        workspace = resolve_workspace(options.workspace)
        user_id, group_id = get_host_ids()
        container_name = self.config.get_container_name(instance_name)

        worker_config_dir = Path(self.config.worker_config_dir).expanduser()
        worker_config_dir.mkdir(parents=True, exist_ok=True)

        environment = {
            "PUID": user_id,
            "PGID": group_id,
            "GITHUB_TOKEN": token,
        }
        volumes = {
            workspace: f"{self.config.container_workdir}:rw",
            str(worker_config_dir): f"{WORKER_CONFIG_MOUNT}:rw",
        }

        model = options.model or resolve_default_model(self.config, Path(workspace))

        mcp_config_path = get_effective_mcp_config_path(
            self.config, options.mcp_config, Path(workspace)
        )
        if mcp_config_path:
            volumes[str(Path(mcp_config_path).parent)] = f"{MCP_CONTAINER_PATH}:ro"
            logger.info(f"MCP config: {mcp_config_path}")

        return LaunchSpec(
            container_name=container_name,
            environment=environment,
            volumes=volumes,
            workspace=workspace,
            options=options,
            model=model,
            mcp_config_path=mcp_config_path,
        )

    # Operations

    def start(self, instance_name: str, options: Optional[StartOptions] = None) -> StartResult:
        """
        Start a named server instance.

        Args:
            instance_name: Name of the instance
            options: Start options; a missing port triggers port discovery

        Returns:
            StartResult carrying the persisted record

        Raises:
            AlreadyRunningError: If the instance's container is live
            CredentialUnavailableError: If no GitHub token can be found
            ImageUnavailableError: If the image is missing and cannot be pulled
            LaunchFailedError: If the runtime fails to create a container or
                the container exits right after starting
            PortDiscoveryFailedError: If the worker never announces its port
            StateCorruptError: If the existing record cannot be parsed
        """
        options = options or StartOptions()
        validate_instance_name(instance_name)
        start_time = time.time()

        existing = self.store.read(instance_name)
        if existing is not None:
            if self.runtime.is_running(existing.container_handle):
                raise AlreadyRunningError(existing)
            logger.info(
                f"Found stale record for {instance_name}, removing container {existing.short_handle}"
            )
            remove_result = self.runtime.remove(existing.container_handle)
            if not remove_result.success:
                logger.debug(f"Stale container removal failed: {remove_result.combined_output}")

        logger.info(f"Starting server instance: {instance_name}")
        spec = self._build_launch_spec(instance_name, options)

        if options.pull_image:
            self._ensure_image()

        if spec.mcp_config_path and options.install_mcp_deps:
            self.installer.install(spec.mcp_config_path, spec.environment, spec.container_name)

        if options.port is None:
            probe_handle = self._launch(spec, None)
            logger.info(f"Waiting for server {instance_name} to announce its port...")
            discovery = self.discover_port(probe_handle)

            if not discovery.succeeded:
                self._discard(probe_handle)
                raise PortDiscoveryFailedError(discovery.reason, discovery.logs)

            port = discovery.port
            logger.info(
                f"Server started on internal port {port}, reconfiguring with published port..."
            )
            self._discard(probe_handle)
        else:
            port = options.port

        container_handle = self._launch(spec, port)
        self._confirm_running(spec, container_handle)

        record = InstanceRecord(
            instance_name=instance_name,
            container_handle=container_handle,
            container_label=spec.container_name,
            port=port,
            model=spec.model,
            log_level=options.log_level,
            started_at=self.clock(),
            workspace_path=spec.workspace,
            aux_config_path=spec.mcp_config_path,
        )
        self.store.save(record)

        logger.info(f"Server instance '{instance_name}' started on port {port}")
        return StartResult(
            record=record,
            discovered_port=options.port is None,
            runtime_seconds=time.time() - start_time,
        )

    def stop(self, instance_name: str) -> InstanceRecord:
        """
        Stop a server instance and delete its record.

        A container the runtime no longer knows about counts as stopped.

        Raises:
            InstanceNotFoundError: If there is no record
            StateCorruptError: If the record cannot be parsed
            StopFailedError: If the runtime fails to stop the container;
                the record is kept so the stop can be retried
        """
        record = self._require_record(instance_name)

        result = self.runtime.stop(record.container_handle)
        if not result.success:
            if not self.runtime.reports_missing_container(result):
                raise StopFailedError(instance_name, result.combined_output)
            logger.info(f"Container for {instance_name} no longer exists, cleaning up record")
            self.store.delete(instance_name)
            return record

        remove_result = self.runtime.remove(record.container_handle)
        if not remove_result.success:
            logger.debug(f"Container removal after stop failed: {remove_result.combined_output}")

        self.store.delete(instance_name)
        logger.info(f"Server instance '{instance_name}' stopped")
        return record

    def list_instances(self) -> List[InstanceStatus]:
        """Report every recorded instance with freshly queried liveness."""
        return [self._observe(record) for record in self.store.list_records()]

    def status(self, instance_name: str) -> InstanceStatus:
        """Report one instance with freshly queried liveness."""
        return self._observe(self._require_record(instance_name))

    def connect(
        self,
        instance_name: str,
        interactive: bool = True,
        prompt: Sequence[str] = (),
    ) -> RuntimeResult:
        """
        Run the worker client inside a running instance.

        Interactive sessions get the terminal until they exit; otherwise the
        prompt is joined and passed with -p, and output is captured.

        Raises:
            InstanceNotFoundError: If there is no record
            InstanceNotRunningError: If the container is not live
        """
        record = self._require_record(instance_name)
        if not self.runtime.is_running(record.container_handle):
            raise InstanceNotRunningError(instance_name)

        command = [self.config.worker_command]
        if prompt:
            if interactive:
                command.extend(prompt)
            else:
                command.extend(["-p", " ".join(prompt)])

        return self.runtime.exec(
            record.container_handle,
            self.config.container_workdir,
            interactive,
            command,
            timeout=None if interactive else self.config.prompt_timeout,
        )

    def logs(
        self,
        instance_name: str,
        tail: Optional[int] = None,
        follow: bool = False,
    ) -> RuntimeResult:
        """
        Fetch an instance's logs; following streams them to the terminal.

        Raises:
            InstanceNotFoundError: If there is no record
        """
        record = self._require_record(instance_name)
        return self.runtime.logs(record.container_handle, tail=tail, follow=follow)
