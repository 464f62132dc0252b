"""
Tests for data models
"""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from warmstack.models import (
    InstanceRecord,
    InstanceStatus,
    RuntimeResult,
    RuntimeStatus,
    format_uptime,
)


class TestInstanceRecord:
    """Test the persisted instance record."""

    def test_naive_timestamp_treated_as_utc(self, sample_record):
        record = sample_record.model_copy(update={"started_at": datetime(2024, 1, 1, 8, 30)})
        reparsed = InstanceRecord.from_json(record.to_json())

        assert reparsed.started_at == datetime(2024, 1, 1, 8, 30, tzinfo=timezone.utc)

    def test_offset_timestamp_normalized(self):
        record = InstanceRecord.model_validate({
            "instanceName": "alpha",
            "containerHandle": "abc",
            "containerLabel": "copilot-server-alpha",
            "startedAt": "2024-05-01T14:00:00+02:00",
            "workspacePath": "/srv/project",
        })

        assert record.started_at == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        assert record.port == 0
        assert record.log_level == "info"

    def test_port_range(self, sample_record):
        data = sample_record.model_dump()
        data["port"] = 70000

        with pytest.raises(ValidationError):
            InstanceRecord(**data)

    def test_short_handle(self, sample_record):
        assert sample_record.short_handle == "abc123def456"


@pytest.mark.parametrize(
    "uptime,expected",
    [
        (timedelta(seconds=42), "42s"),
        (timedelta(minutes=5, seconds=3), "5m 3s"),
        (timedelta(hours=2, minutes=5, seconds=9), "2h 5m"),
        (timedelta(days=3, hours=4, minutes=1), "3d 4h"),
        (timedelta(seconds=-5), "0s"),
    ],
)
def test_format_uptime(uptime, expected):
    assert format_uptime(uptime) == expected


class TestResults:
    """Test result helpers."""

    def test_runtime_result_combined_output(self):
        result = RuntimeResult(command=["docker", "run"], exit_code=1, output="out", error_output="err")

        assert not result.success
        assert result.combined_output == "out\nerr"

    def test_stopped_status_has_no_uptime(self, sample_record):
        status = InstanceStatus(record=sample_record, status=RuntimeStatus.STOPPED)

        assert not status.running
        assert status.uptime_display == "-"

