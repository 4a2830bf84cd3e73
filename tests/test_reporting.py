"""Tests for the daily summary report."""

from datetime import datetime, timedelta
from pathlib import Path

import pytest

from devpulse.db import ActivityStore
from devpulse.models import ActivityLog, ActivityType, Project
from devpulse.reporting import (
    SummaryPrinter,
    aggregate_by_activity,
    aggregate_by_project,
    format_duration,
)

DAY = datetime(2026, 3, 2, 9, 0, 0)


def add_log(store: ActivityStore, log_id: str, activity_type: ActivityType, seconds: int, project_id=None) -> None:
    store.insert_activity_log(
        ActivityLog(
            id=log_id,
            app_name="app",
            activity_type=activity_type,
            duration_seconds=seconds,
            started_at=DAY,
            ended_at=DAY + timedelta(seconds=seconds),
            project_id=project_id,
        )
    )


def test_print_daily_summary(store: ActivityStore, db_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    store.insert_project(Project("p1", "devpulse", "/src/devpulse", None, ["git"], None, DAY, DAY))
    add_log(store, "a", ActivityType.CODE, 3600, project_id="p1")
    add_log(store, "b", ActivityType.RESEARCH, 600)

    SummaryPrinter(db_path).print_daily_summary(DAY)

    output = capsys.readouterr().out
    assert "Summary for 2026-03-02" in output
    assert "Tracked time: 01:10:00" in output
    assert "code" in output
    assert "devpulse" in output


def test_aggregations() -> None:
    rows = [
        {"activity_type": "code", "project_name": "api", "seconds": 30},
        {"activity_type": "code", "project_name": None, "seconds": 20},
        {"activity_type": "browsing", "project_name": "api", "seconds": 10},
    ]

    assert aggregate_by_activity(rows) == [("code", 50), ("browsing", 10)]
    assert aggregate_by_project(rows) == [("api", 40)]


@pytest.mark.parametrize(("seconds", "expected"), [(0, "00:00:00"), (59.6, "00:01:00"), (3725, "01:02:05")])
def test_format_duration(seconds: float, expected: str) -> None:
    assert format_duration(seconds) == expected
