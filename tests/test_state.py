"""
Tests for the instance state store
"""

import json

import pytest

from warmstack.errors import InvalidInstanceNameError, StateCorruptError
from warmstack.state import StateStore, validate_instance_name


class TestInstanceNames:
    """Test instance name validation."""

    @pytest.mark.parametrize("name", ["default", "alpha", "a", "web-1", "my_server.v2", "9lives"])
    def test_valid_names(self, name):
        assert validate_instance_name(name) == name

    @pytest.mark.parametrize("name", ["", "-dash", ".hidden", "../etc", "has space", "a/b"])
    def test_invalid_names(self, name):
        with pytest.raises(InvalidInstanceNameError):
            validate_instance_name(name)

    def test_invalid_name_is_value_error(self):
        with pytest.raises(ValueError):
            validate_instance_name("bad/name")


class TestStateStore:
    """Test StateStore persistence."""

    def test_save_and_load(self, state_store, sample_record):
        path = state_store.save(sample_record)

        assert path == state_store.state_dir / "alpha.json"
        assert state_store.load("alpha") == sample_record

    def test_record_json_uses_camel_case_keys(self, state_store, sample_record):
        path = state_store.save(sample_record)

        data = json.loads(path.read_text())

        assert data["instanceName"] == "alpha"
        assert data["containerHandle"] == "abc123def4567890"
        assert data["containerLabel"] == "copilot-server-alpha"
        assert data["port"] == 41777
        assert data["logLevel"] == "info"
        assert data["startedAt"].startswith("2024-05-01T12:00:00")
        assert data["auxConfigPath"] is None

    def test_load_missing(self, state_store):
        assert state_store.load("ghost") is None

    def test_save_overwrites(self, state_store, sample_record):
        state_store.save(sample_record)
        updated = sample_record.model_copy(update={"port": 9001})

        state_store.save(updated)

        assert state_store.load("alpha").port == 9001
        assert state_store.list_names() == ["alpha"]

    def test_delete(self, state_store, sample_record):
        state_store.save(sample_record)

        assert state_store.delete("alpha") is True
        assert state_store.delete("alpha") is False
        assert state_store.load("alpha") is None

    def test_corrupt_file_read_raises(self, state_store):
        state_store.state_dir.mkdir(parents=True, exist_ok=True)
        (state_store.state_dir / "broken.json").write_text("{not json")

        with pytest.raises(StateCorruptError):
            state_store.read("broken")

    def test_corrupt_file_load_returns_none_and_keeps_file(self, state_store):
        state_store.state_dir.mkdir(parents=True, exist_ok=True)
        path = state_store.state_dir / "broken.json"
        path.write_text(json.dumps({"instanceName": "broken"}))

        assert state_store.load("broken") is None
        assert path.exists()

    def test_mismatched_name_is_corrupt(self, state_store, sample_record):
        state_store.state_dir.mkdir(parents=True, exist_ok=True)
        (state_store.state_dir / "other.json").write_text(sample_record.to_json())

        with pytest.raises(StateCorruptError, match="record is for 'alpha'"):
            state_store.read("other")

    def test_list_records_sorted(self, state_store, sample_record):
        for name in ["zeta", "alpha", "mid"]:
            state_store.save(sample_record.model_copy(update={"instance_name": name}))

        assert state_store.list_names() == ["alpha", "mid", "zeta"]
        assert [r.instance_name for r in state_store.list_records()] == ["alpha", "mid", "zeta"]

    def test_list_without_directory(self, tmp_path):
        store = StateStore(tmp_path / "missing")

        assert store.list_names() == []
        assert store.list_records() == []

    def test_list_ignores_foreign_files(self, state_store, sample_record):
        state_store.save(sample_record)
        (state_store.state_dir / "notes.txt").write_text("hello")
        (state_store.state_dir / ".hidden.json").write_text("{}")

        assert state_store.list_names() == ["alpha"]
