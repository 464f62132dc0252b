"""
MCP (Model Context Protocol) configuration support

Resolves which mcp-config.json a server instance should mount, parses it,
and pre-installs the Node/Python dependencies of the MCP servers it lists
by running throwaway containers.
"""

import json
import logging
from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .config import WarmstackConfig, expand_path
from .container_runtime import ContainerRuntime

logger = logging.getLogger(__name__)

MCP_CONFIG_FILE = "mcp-config.json"
LOCAL_MCP_DIR = Path(".copilot-in-container") / "mcp"
# Where the MCP config directory is mounted inside worker containers
MCP_CONTAINER_PATH = "/mcp/readonly"

SAMPLE_MCP_CONFIG = {
    "mcpServers": {
        "example-server": {
            "command": "node",
            "args": ["path/to/your/mcp-server.js"],
            "cwd": "path/to/server/directory",
            "env": {"API_KEY": "your-api-key-here"},
        }
    }
}

SCRIPT_SUFFIXES = (".js", ".mjs", ".py")


class McpServer(BaseModel):
    """A single MCP server entry."""

    model_config = ConfigDict(extra="ignore")

    command: Optional[str] = None
    args: List[str] = Field(default_factory=list)
    cwd: Optional[str] = None
    env: Dict[str, str] = Field(default_factory=dict)

    def _command_basename(self) -> str:
        return PurePosixPath((self.command or "").lower()).name

    def is_node_server(self) -> bool:
        return self._command_basename() in ("node", "nodejs")

    def is_python_server(self) -> bool:
        return self._command_basename() in ("python", "python3")

    def get_directory(self) -> Optional[str]:
        """Directory holding the server's code: cwd, then command dir, then script dir."""
        if self.cwd:
            return self.cwd

        if self.command:
            command_dir = str(PurePosixPath(self.command).parent)
            if command_dir not in ("", "."):
                return command_dir

        if self.args:
            first_arg = self.args[0]
            if first_arg.endswith(SCRIPT_SUFFIXES) or "/" in first_arg:
                arg_dir = str(PurePosixPath(first_arg).parent)
                if arg_dir not in ("", "."):
                    return arg_dir

        return None


class McpConfig(BaseModel):
    """Contents of an mcp-config.json file."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    mcp_servers: Dict[str, McpServer] = Field(default_factory=dict, alias="mcpServers")

    def get_server_directories(self) -> List[str]:
        """Unique directories referenced by the configured servers, in order."""
        directories: List[str] = []
        for server in self.mcp_servers.values():
            directory = server.get_directory()
            if directory and directory not in directories:
                directories.append(directory)
        return directories


def load_mcp_config(path: Path) -> Optional[McpConfig]:
    """Parse an MCP config file, returning None if it is missing or invalid."""
    if not path.exists():
        return None

    try:
        return McpConfig.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValidationError) as e:
        logger.warning(f"Failed to parse MCP config {path}: {e}")
        return None


def get_local_mcp_config_path(cwd: Optional[Path] = None) -> Path:
    return (cwd or Path.cwd()) / LOCAL_MCP_DIR / MCP_CONFIG_FILE


def get_effective_mcp_config_path(
    config: WarmstackConfig,
    override: Optional[str] = None,
    cwd: Optional[Path] = None,
) -> Optional[str]:
    """
    Find the MCP config file a server instance should use.

    Checked in order: the CLI override (a file, or a directory holding
    mcp-config.json), the global MCP path, then the local default under
    the current directory.

    Returns:
        Absolute path to mcp-config.json, or None if none exists
    """
    if override:
        override_path = Path(expand_path(override))
        if override_path.is_dir():
            override_path = override_path / MCP_CONFIG_FILE
        if override_path.is_file():
            return str(override_path)
        logger.warning(f"MCP config override not found: {override_path}")

    if config.mcp_path:
        global_path = Path(expand_path(config.mcp_path)) / MCP_CONFIG_FILE
        if global_path.is_file():
            return str(global_path)

    local_path = get_local_mcp_config_path(cwd)
    if local_path.is_file():
        return str(local_path.resolve())

    return None


def init_local_mcp_config(cwd: Optional[Path] = None) -> Optional[Path]:
    """
    Create a sample local MCP config.

    Returns:
        Path of the created file, or None if one already exists
    """
    local_path = get_local_mcp_config_path(cwd)
    if local_path.exists():
        return None

    local_path.parent.mkdir(parents=True, exist_ok=True)
    local_path.write_text(json.dumps(SAMPLE_MCP_CONFIG, indent=2) + "\n", encoding="utf-8")
    logger.info(f"Created sample MCP config at {local_path}")
    return local_path


class McpDependencyInstaller:
    """
    Installs MCP server dependencies before a worker starts.

    Each server directory with a package.json or requirements.txt gets a
    throwaway container that runs npm/pip against the mounted directory.
    Failures are logged and never abort the start.
    """

    def __init__(self, runtime: ContainerRuntime, config: WarmstackConfig):
        self.runtime = runtime
        self.config = config

    def _host_directory(self, config_dir: Path, directory: str) -> Path:
        if directory.startswith(MCP_CONTAINER_PATH):
            directory = directory[len(MCP_CONTAINER_PATH):].lstrip("/")
        path = Path(directory).expanduser()
        if not path.is_absolute():
            path = config_dir / path
        return path

    def _install_command(self, host_dir: Path) -> Optional[List[str]]:
        if (host_dir / "package.json").is_file():
            return ["npm", "install", "--no-audit", "--no-fund"]
        if (host_dir / "requirements.txt").is_file():
            return ["pip", "install", "--user", "-r", "requirements.txt"]
        return None

    def install(
        self,
        mcp_config_path: str,
        environment: Dict[str, str],
        container_name: str,
    ) -> List[str]:
        """
        Install dependencies for every server in an MCP config.

        Args:
            mcp_config_path: Path to mcp-config.json on the host
            environment: Environment passed to the install containers
            container_name: Name of the instance container, used to name installers

        Returns:
            Host directories whose installation succeeded
        """
        config_path = Path(mcp_config_path)
        mcp_config = load_mcp_config(config_path)
        if mcp_config is None or not mcp_config.mcp_servers:
            logger.debug(f"No MCP servers to install for {mcp_config_path}")
            return []

        installed = []
        for index, directory in enumerate(mcp_config.get_server_directories()):
            host_dir = self._host_directory(config_path.parent, directory)
            if not host_dir.is_dir():
                logger.warning(f"MCP server directory not found: {host_dir}")
                continue

            command = self._install_command(host_dir)
            if command is None:
                logger.debug(f"No dependency manifest in {host_dir}")
                continue

            logger.info(f"Installing MCP dependencies in {host_dir}: {' '.join(command)}")
            result = self.runtime.run(
                self.config.image_name,
                f"{container_name}-mcp-install-{index}",
                environment=environment,
                volumes={str(host_dir): "/mcp/install:rw"},
                working_dir="/mcp/install",
                interactive=False,
                remove_on_exit=True,
                detached=False,
                dns_server=self.config.dns_server,
                command=command,
                timeout=600,
            )

            if result.success:
                installed.append(str(host_dir))
            else:
                logger.warning(
                    f"MCP dependency installation failed in {host_dir}: {result.combined_output}"
                )

        return installed
