"""Pytest configuration and fixtures for devpulse tests."""

from collections.abc import Iterator
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

import pytest

from devpulse.config import MonitorSettings
from devpulse.db import ActivityStore
from devpulse.idle import IdleTracker
from devpulse.monitor import ActivityMonitor
from devpulse.probe import WindowProbe

START = datetime(2026, 3, 2, 9, 0, 0)


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


class FakeProbe(WindowProbe):
    """Probe that reports whatever window the test sets."""

    def __init__(self, clock: FakeClock) -> None:
        super().__init__(timeout=1.0, clock=clock)
        self.window: Optional[tuple[str, str, Optional[int]]] = None
        self.calls = 0

    def show(self, app_name: str, window_title: str, pid: Optional[int] = None) -> None:
        self.window = (app_name, window_title, pid)

    def _query(self) -> Optional[tuple[str, str, Optional[int]]]:
        self.calls += 1
        return self.window


class FakeIdleTracker(IdleTracker):
    def __init__(self) -> None:
        self.idle_ms = 0

    def _query_idle_ms(self) -> int:
        return self.idle_ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "activity.sqlite3"


@pytest.fixture
def store(db_path: Path) -> Iterator[ActivityStore]:
    """Open activity store backed by a temporary database."""
    activity_store = ActivityStore.open(db_path)
    try:
        yield activity_store
    finally:
        activity_store.close()


@pytest.fixture
def probe(clock: FakeClock) -> FakeProbe:
    return FakeProbe(clock)


@pytest.fixture
def idle_tracker() -> FakeIdleTracker:
    return FakeIdleTracker()


@pytest.fixture
def monitor(
    store: ActivityStore,
    probe: FakeProbe,
    idle_tracker: FakeIdleTracker,
    clock: FakeClock,
) -> ActivityMonitor:
    """Monitor wired to fakes; tests drive it with ``tick()``."""
    return ActivityMonitor(
        store,
        MonitorSettings(),
        probe=probe,
        idle_tracker=idle_tracker,
        clock=clock,
    )
