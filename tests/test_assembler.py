"""Tests for turning resolved activities into persisted sessions."""

from datetime import datetime, timedelta
from typing import Optional

import pytest

from devpulse.assembler import SessionAssembler, SessionState
from devpulse.db import (
    ActivityStore,
    DuplicateRecordError,
    StoreBusyError,
    StoreCorruptedError,
    StoreError,
)
from devpulse.models import ActivityLog, ActivityType, Project, ResolvedActivity, WindowSample

START = datetime(2026, 3, 2, 9, 0, 0)


class FlakyStore:
    """Store double that fails the next inserts with queued errors."""

    def __init__(self, store: ActivityStore) -> None:
        self._store = store
        self.errors: list[StoreError] = []

    def insert_activity_log(self, log: ActivityLog) -> None:
        if self.errors:
            raise self.errors.pop(0)
        self._store.insert_activity_log(log)


def make_sample(app_name: str, window_title: str, sampled_at: datetime) -> WindowSample:
    return WindowSample(app_name=app_name, window_title=window_title, sampled_at=sampled_at)


def at(seconds: float) -> datetime:
    return START + timedelta(seconds=seconds)


def activity(
    app_name: str = "Visual Studio Code",
    title: str = "main.ts - proj - Visual Studio Code",
    activity_type: ActivityType = ActivityType.CODE,
    project: Optional[Project] = None,
    seconds: float = 0,
) -> ResolvedActivity:
    return ResolvedActivity(
        sample=make_sample(app_name, title, at(seconds)),
        activity_type=activity_type,
        file_path="main.ts",
        project=project,
    )


def test_short_session_is_discarded(store: ActivityStore) -> None:
    assembler = SessionAssembler(store)
    assembler.observe(activity(), at(0))

    assert assembler.close(at(4.9), reason="idle") is None
    assert store.count_activity_logs() == 0
    assert assembler.state is SessionState.IDLE


def test_session_at_minimum_duration_is_kept(store: ActivityStore) -> None:
    assembler = SessionAssembler(store)
    assembler.observe(activity(), at(0))

    log = assembler.close(at(5), reason="idle")

    assert log is not None
    assert log.duration_seconds == 5
    assert store.count_activity_logs() == 1


def test_identical_samples_extend_one_session(store: ActivityStore) -> None:
    assembler = SessionAssembler(store)
    for seconds in range(0, 12, 2):
        assert assembler.observe(activity(seconds=seconds), at(seconds)) is None

    assert assembler.current_session is not None
    assert assembler.current_session.started_at == at(0)

    log = assembler.close(at(12), reason="stop")
    assert log is not None
    assert log.duration_seconds == 12
    assert store.count_activity_logs() == 1


def test_changed_activity_closes_previous_session(store: ActivityStore) -> None:
    assembler = SessionAssembler(store)
    assembler.observe(activity(), at(0))

    closed = assembler.observe(
        activity("Google Chrome", "localhost:3000", ActivityType.BROWSING, seconds=7), at(7)
    )

    assert closed is not None
    assert closed.app_name == "Visual Studio Code"
    assert closed.started_at == at(0)
    assert closed.ended_at == at(7)
    assert closed.metadata["close_reason"] == "changed"
    session = assembler.current_session
    assert session is not None
    assert session.app_name == "Google Chrome"
    assert session.started_at == at(7)


def test_title_change_alone_starts_new_session(store: ActivityStore) -> None:
    assembler = SessionAssembler(store)
    assembler.observe(activity(title="a.ts - proj"), at(0))

    closed = assembler.observe(activity(title="b.ts - proj"), at(6))

    assert closed is not None
    assert closed.window_title == "a.ts - proj"


def test_project_change_starts_new_session(store: ActivityStore) -> None:
    first = Project("p1", "one", "/src/one", None, ["git"], None, START, START)
    second = Project("p2", "two", "/src/two", None, ["git"], None, START, START)
    store.insert_projects([first, second])
    assembler = SessionAssembler(store)
    assembler.observe(activity(project=first), at(0))

    closed = assembler.observe(activity(project=second), at(6))

    assert closed is not None
    assert closed.project_id == "p1"
    assert closed.metadata["project_path"] == "/src/one"
    assert assembler.current_session.project_id == "p2"


def test_duration_is_floored(store: ActivityStore) -> None:
    assembler = SessionAssembler(store)
    assembler.observe(activity(), at(0))

    log = assembler.close(at(9.99), reason="stop")

    assert log is not None
    assert log.duration_seconds == 9


def test_close_without_session_is_noop(store: ActivityStore) -> None:
    assembler = SessionAssembler(store)
    assert assembler.close(at(10), reason="idle") is None
    assert assembler.state is SessionState.IDLE


def test_persisted_log_carries_metadata(store: ActivityStore) -> None:
    assembler = SessionAssembler(store)
    sample = WindowSample("Visual Studio Code", "main.ts - proj", at(0), pid=4242)
    assembler.observe(
        ResolvedActivity(
            sample=sample,
            activity_type=ActivityType.CODE,
            file_path="main.ts",
        ),
        at(0),
    )
    assembler.close(at(30), reason="lock")

    (log,) = store.fetch_recent_activity_logs()
    assert log.file_path == "main.ts"
    assert log.is_idle is False
    assert log.metadata == {
        "project_path": None,
        "detected_at": at(0).isoformat(),
        "pid": 4242,
        "close_reason": "lock",
    }


def test_busy_store_keeps_log_for_next_tick(store: ActivityStore) -> None:
    flaky = FlakyStore(store)
    flaky.errors.append(StoreBusyError("database is locked"))
    assembler = SessionAssembler(flaky)
    assembler.observe(activity(), at(0))

    log = assembler.close(at(10), reason="idle")

    assert log is not None
    assert assembler.pending_logs == [log]
    assert store.count_activity_logs() == 0

    assembler.retry_pending()

    assert assembler.pending_logs == []
    assert store.fetch_recent_activity_logs() == [log]


def test_pending_logs_are_written_in_order(store: ActivityStore) -> None:
    flaky = FlakyStore(store)
    assembler = SessionAssembler(flaky)
    flaky.errors.append(StoreBusyError("database is locked"))
    assembler.observe(activity(title="a.ts"), at(0))
    first = assembler.observe(activity(title="b.ts"), at(10))
    flaky.errors.append(StoreBusyError("database is locked"))
    second = assembler.close(at(20), reason="stop")

    assert assembler.pending_logs == [first, second]

    assembler.retry_pending()
    assert [log.id for log in store.fetch_activity_logs(at(0), at(30))] == [first.id, second.id]


def test_duplicate_log_is_dropped(store: ActivityStore) -> None:
    flaky = FlakyStore(store)
    flaky.errors.append(DuplicateRecordError("UNIQUE constraint failed: activity_logs.id"))
    assembler = SessionAssembler(flaky)
    assembler.observe(activity(), at(0))

    assembler.close(at(10), reason="stop")

    assert assembler.pending_logs == []
    assert store.count_activity_logs() == 0


def test_corrupted_store_propagates(store: ActivityStore) -> None:
    flaky = FlakyStore(store)
    flaky.errors.append(StoreCorruptedError("database disk image is malformed"))
    assembler = SessionAssembler(flaky)
    assembler.observe(activity(), at(0))

    with pytest.raises(StoreCorruptedError):
        assembler.close(at(10), reason="stop")
    assert assembler.state is SessionState.IDLE


def test_minimum_duration_cannot_go_below_store_floor(store: ActivityStore) -> None:
    assembler = SessionAssembler(store, min_duration=timedelta(seconds=1))
    assembler.observe(activity(), at(0))

    assert assembler.close(at(3), reason="stop") is None
    assert store.count_activity_logs() == 0
