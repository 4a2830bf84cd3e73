"""Configuration models and helpers for the activity monitor."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta


@dataclass(slots=True)
class MonitorSettings:
    """Runtime configuration for the activity monitor."""

    sample_interval: timedelta = timedelta(seconds=2)
    idle_threshold: timedelta = timedelta(minutes=5)
    min_session_duration: timedelta = timedelta(seconds=5)
    sleep_gap: timedelta = timedelta(minutes=2)
    store_busy_retries: int = 3
    store_busy_backoff: timedelta = timedelta(milliseconds=50)

    @property
    def probe_timeout(self) -> float:
        """Seconds an OS query may take before its tick is skipped."""
        return self.sample_interval.total_seconds() / 2

    @property
    def idle_threshold_ms(self) -> int:
        return int(self.idle_threshold.total_seconds() * 1000)

    @classmethod
    def from_intervals(
        cls,
        sample_seconds: float,
        idle_minutes: float,
        sleep_gap_minutes: float | None = None,
    ) -> "MonitorSettings":
        # A gap worth at least 30 missed ticks means the machine was asleep.
        sleep_gap = (
            sleep_gap_minutes
            if sleep_gap_minutes is not None
            else max(sample_seconds * 30 / 60.0, 2.0)
        )
        return cls(
            sample_interval=timedelta(seconds=sample_seconds),
            idle_threshold=timedelta(minutes=idle_minutes),
            sleep_gap=timedelta(minutes=sleep_gap),
        )
