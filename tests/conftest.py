"""
Pytest configuration and fixtures for warmstack tests.

Provides common fixtures and test utilities across all test modules.
"""

import os
from collections.abc import Generator
from datetime import datetime, timezone
from pathlib import Path

import pytest

from warmstack.config import WarmstackConfig
from warmstack.logging_config import setup_logging
from warmstack.manager import InstanceManager
from warmstack.models import InstanceRecord
from warmstack.state import StateStore

from .mock_containers import MockContainerRuntime

FIXED_NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def isolated_test_env(tmp_path: Path) -> Generator[dict[str, str], None, None]:
    """
    Create isolated test environment with clean environment variables.

    Yields:
        Dictionary of original environment variables
    """
    original_env = os.environ.copy()

    for key in list(os.environ.keys()):
        if key.startswith("WARMSTACK_") or key in ("GITHUB_TOKEN", "GH_TOKEN"):
            del os.environ[key]

    os.environ.update({
        "WARMSTACK_LOG_DIR": str(tmp_path / "logs"),
        "WARMSTACK_STATE_DIR": str(tmp_path / "servers"),
        "WARMSTACK_SETTINGS_FILE": str(tmp_path / "settings" / "config.yml"),
        "WARMSTACK_WORKER_CONFIG_DIR": str(tmp_path / "worker-config"),
    })

    yield original_env

    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def temp_workspace(tmp_path: Path) -> Path:
    """Create a workspace directory bound into test containers."""
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    return workspace


@pytest.fixture
def test_config(isolated_test_env: dict[str, str], tmp_path: Path) -> WarmstackConfig:
    """
    Create test configuration with safe defaults.

    Discovery timings are tiny so timeouts resolve quickly.
    """
    return WarmstackConfig(
        log_level="DEBUG",
        verbose=True,
        container_runtime="docker",
        github_token="ghp_testtoken123",
        port_discovery_timeout=0.2,
        port_discovery_interval=0.01,
    )


@pytest.fixture
def test_logger(test_config: WarmstackConfig):
    """Configure logging for tests."""
    return setup_logging(
        log_dir=test_config.log_dir,
        verbose=test_config.verbose,
        log_level=test_config.log_level,
        enable_file_logging=False,
    )


@pytest.fixture
def mock_runtime() -> MockContainerRuntime:
    return MockContainerRuntime()


@pytest.fixture
def state_store(test_config: WarmstackConfig) -> StateStore:
    return StateStore(test_config.get_state_dir_path())


@pytest.fixture
def manager(
    test_config: WarmstackConfig,
    mock_runtime: MockContainerRuntime,
    state_store: StateStore,
    temp_workspace: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> InstanceManager:
    """Instance manager wired to the in-memory runtime, run from the workspace."""
    monkeypatch.chdir(temp_workspace)
    return InstanceManager(
        test_config,
        mock_runtime,
        store=state_store,
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def sample_record(temp_workspace: Path) -> InstanceRecord:
    return InstanceRecord(
        instance_name="alpha",
        container_handle="abc123def4567890",
        container_label="copilot-server-alpha",
        port=41777,
        model="gpt-5",
        log_level="info",
        started_at=FIXED_NOW,
        workspace_path=str(temp_workspace),
    )


# Pytest configuration
def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers automatically."""
    for item in items:
        if "integration" in item.nodeid:
            item.add_marker(pytest.mark.integration)

        if any(keyword in item.nodeid for keyword in ["slow", "timeout"]):
            item.add_marker(pytest.mark.slow)
