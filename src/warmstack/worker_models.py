"""
Default worker model selection

The model handed to new instances comes from ``start --model``, then the
project's ``.copilot-in-container/model.conf``, then the global default in
the user settings file. The keyword ``default`` at either level means "let
the worker choose".
"""

import logging
import re
from pathlib import Path
from typing import List, Optional

from .config import WarmstackConfig
from .container_runtime import ContainerRuntime
from .errors import WarmstackError

logger = logging.getLogger(__name__)

LOCAL_MODEL_FILE = Path(".copilot-in-container") / "model.conf"
DEFAULT_KEYWORD = "default"

# The worker rejects an unknown --model with the list of valid choices
INVALID_MODEL = "invalid-model-to-trigger-list"
MODEL_CHOICES_PATTERN = re.compile(
    r"Allowed choices are\s+(.+?)\.(?:\s|$)", re.IGNORECASE | re.DOTALL
)


def normalize_model(value: Optional[str]) -> Optional[str]:
    """Map empty values and the ``default`` keyword to None."""
    if value is None:
        return None
    value = value.strip()
    if not value or value.lower() == DEFAULT_KEYWORD:
        return None
    return value


def get_local_model_path(cwd: Optional[Path] = None) -> Path:
    return (cwd or Path.cwd()) / LOCAL_MODEL_FILE


def read_local_model(cwd: Optional[Path] = None) -> Optional[str]:
    """Read the project-level model, or None if unset."""
    path = get_local_model_path(cwd)
    if not path.is_file():
        return None
    return normalize_model(path.read_text(encoding="utf-8"))


def write_local_model(model: str, cwd: Optional[Path] = None) -> Path:
    path = get_local_model_path(cwd)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(model.strip() + "\n", encoding="utf-8")
    logger.info(f"Saved local model {model} to {path}")
    return path


def clear_local_model(cwd: Optional[Path] = None) -> bool:
    """Delete the project-level model file. Returns True if one existed."""
    path = get_local_model_path(cwd)
    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True


def resolve_default_model(config: WarmstackConfig, cwd: Optional[Path] = None) -> Optional[str]:
    """Model to use when none is given: local file first, then the global default."""
    local_model = read_local_model(cwd)
    if local_model:
        logger.debug(f"Using local model: {local_model}")
        return local_model

    global_model = normalize_model(config.default_model)
    if global_model:
        logger.debug(f"Using global model: {global_model}")
    return global_model


def parse_model_choices(output: str) -> List[str]:
    """Extract model ids from the worker's invalid-model error message."""
    match = MODEL_CHOICES_PATTERN.search(output)
    if not match:
        return []
    return [part.strip() for part in match.group(1).split(",") if part.strip()]


def list_available_models(
    runtime: ContainerRuntime, config: WarmstackConfig, token: str
) -> List[str]:
    """
    Ask the worker image which models it accepts.

    Raises:
        WarmstackError: If the worker's output has no list of models
    """
    result = runtime.run(
        config.image_name,
        f"{config.container_prefix}-list-models",
        environment={"GITHUB_TOKEN": token},
        interactive=False,
        remove_on_exit=True,
        detached=False,
        command=[config.worker_command, "--model", INVALID_MODEL],
    )

    models = parse_model_choices(result.combined_output)
    if not models:
        raise WarmstackError(
            "Could not parse the model list from the worker output",
            f"Raw output:\n{result.combined_output or '(empty)'}",
        )
    return models
