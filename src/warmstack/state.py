"""
Instance state store for warmstack

Keeps one JSON record per named instance in a per-user directory. Writes
replace the whole file; there is no locking, so concurrent starts of the
same instance name are last-writer-wins.
"""

import logging
import re
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from .errors import InvalidInstanceNameError, StateCorruptError
from .models import InstanceRecord

logger = logging.getLogger(__name__)

INSTANCE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


def validate_instance_name(name: str) -> str:
    """Ensure an instance name is usable as a file and container name."""
    if not name or not INSTANCE_NAME_PATTERN.match(name):
        raise InvalidInstanceNameError(name)
    return name


class StateStore:
    """Key-value store of instance records backed by one file per key."""

    def __init__(self, state_dir: Path):
        self.state_dir = Path(state_dir).expanduser()

    def path_for(self, instance_name: str) -> Path:
        validate_instance_name(instance_name)
        return self.state_dir / f"{instance_name}.json"

    def save(self, record: InstanceRecord) -> Path:
        """Write a record, replacing any previous record for the same name."""
        path = self.path_for(record.instance_name)
        self.state_dir.mkdir(parents=True, exist_ok=True)

        if path.exists():
            logger.debug(f"Overwriting existing state file: {path}")

        path.write_text(record.to_json() + "\n", encoding="utf-8")
        logger.debug(f"Saved state for {record.instance_name} to {path}")
        return path

    def read(self, instance_name: str) -> Optional[InstanceRecord]:
        """
        Read a record, raising if the file exists but cannot be parsed.

        Returns:
            The record, or None if no file exists for the name

        Raises:
            StateCorruptError: If the file is present but unparsable
        """
        path = self.path_for(instance_name)
        if not path.exists():
            return None

        try:
            record = InstanceRecord.from_json(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, ValidationError) as e:
            raise StateCorruptError(str(path), str(e).splitlines()[0]) from e

        if record.instance_name != instance_name:
            raise StateCorruptError(
                str(path), f"record is for '{record.instance_name}'"
            )

        return record

    def load(self, instance_name: str) -> Optional[InstanceRecord]:
        """
        Load a record, treating a corrupt file as absent.

        The corrupt file is left on disk for the user to inspect.
        """
        try:
            return self.read(instance_name)
        except StateCorruptError as e:
            logger.warning(e.message)
            return None

    def delete(self, instance_name: str) -> bool:
        """Delete a record. Returns True if a file was removed."""
        path = self.path_for(instance_name)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        logger.debug(f"Deleted state file: {path}")
        return True

    def list_names(self) -> List[str]:
        """List the instance names that have a state file."""
        if not self.state_dir.is_dir():
            return []
        return sorted(
            path.stem
            for path in self.state_dir.glob("*.json")
            if INSTANCE_NAME_PATTERN.match(path.stem)
        )

    def list_records(self) -> List[InstanceRecord]:
        """Load every parsable record, sorted by instance name."""
        records = []
        for name in self.list_names():
            record = self.load(name)
            if record is not None:
                records.append(record)
        return records
