"""
Credential and host identity lookup for worker containers
"""

import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Optional, Tuple

from .config import WarmstackConfig
from .errors import CredentialUnavailableError, WarmstackError

logger = logging.getLogger(__name__)

TOKEN_ENV_VARS = ("GITHUB_TOKEN", "GH_TOKEN")


class GitHubCredentialProvider:
    """
    Resolves the GitHub token handed to worker containers.

    Lookup order: configured token, GITHUB_TOKEN / GH_TOKEN, `gh auth token`.
    """

    def __init__(self, config: WarmstackConfig, timeout: int = 15):
        self.config = config
        self.timeout = timeout

    def gh_available(self) -> bool:
        """Check if the GitHub CLI is on PATH."""
        return shutil.which("gh") is not None

    def _run_gh(self, *args: str) -> Optional[subprocess.CompletedProcess]:
        try:
            return subprocess.run(
                ["gh", *args],
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug(f"gh {' '.join(args)} failed: {e}")
            return None

    def gh_authenticated(self) -> bool:
        """Check if the GitHub CLI has a logged-in account."""
        if not self.gh_available():
            return False
        result = self._run_gh("auth", "status")
        return result is not None and result.returncode == 0

    def _token_from_gh(self) -> Optional[str]:
        result = self._run_gh("auth", "token")
        if result is None:
            return None

        if result.returncode != 0:
            logger.debug(f"gh auth token exited with {result.returncode}: {result.stderr.strip()}")
            return None

        return result.stdout.strip() or None

    def get_token(self) -> str:
        """
        Get the GitHub token.

        Raises:
            CredentialUnavailableError: If no source yields a token
        """
        if self.config.github_token:
            logger.debug("Using GitHub token from configuration")
            return self.config.github_token

        for var in TOKEN_ENV_VARS:
            token = os.environ.get(var, "").strip()
            if token:
                logger.debug(f"Using GitHub token from {var}")
                return token

        if not self.gh_available():
            raise CredentialUnavailableError(
                "GitHub CLI (gh) is not installed and GITHUB_TOKEN is not set",
                "Install gh from https://cli.github.com/ and run 'gh auth login', or set GITHUB_TOKEN",
            )

        token = self._token_from_gh()
        if token:
            logger.debug("Using GitHub token from gh auth token")
            return token

        raise CredentialUnavailableError()


def resolve_workspace(path: Optional[str] = None) -> str:
    """
    Resolve the host directory bound into the container as the workspace.

    Raises:
        WarmstackError: If the path is not an existing directory
    """
    workspace = Path(path).expanduser() if path else Path.cwd()
    workspace = workspace.resolve()
    if not workspace.is_dir():
        raise WarmstackError(f"Workspace is not a directory: {workspace}")
    return str(workspace)


def get_host_ids() -> Tuple[str, str]:
    """Get the host user and group ids passed as PUID/PGID."""
    getuid = getattr(os, "getuid", None)
    getgid = getattr(os, "getgid", None)
    if getuid is None or getgid is None:
        return "1000", "1000"
    return str(getuid()), str(getgid())
