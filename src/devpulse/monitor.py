"""Activity monitor: samples the foreground window on a fixed tick and records sessions."""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from .assembler import SessionAssembler, SessionState
from .classifier import classify, extract_file_path
from .config import MonitorSettings
from .db import ActivityStore, StoreCorruptedError, StoreError
from .idle import IdleTracker, create_idle_tracker
from .models import OpenSession, Project, ResolvedActivity, WindowSample
from .probe import WindowProbe, create_window_probe
from .projects import ProjectResolver, default_scan_roots, remember_scan_roots

logger = logging.getLogger(__name__)


class ActivityMonitor:
    """Drives probe, idle tracker, classifier, resolver and assembler once per tick.

    The host constructs one monitor per store and controls it with
    ``start_monitoring`` and ``stop_monitoring``. Ticks run on a single
    background thread and never overlap; ``stop_monitoring`` returns only
    after the open session has been flushed.
    """

    def __init__(
        self,
        store: ActivityStore,
        settings: Optional[MonitorSettings] = None,
        *,
        probe: Optional[WindowProbe] = None,
        idle_tracker: Optional[IdleTracker] = None,
        resolver: Optional[ProjectResolver] = None,
        clock: Callable[[], datetime] = datetime.now,
        on_fatal_error: Optional[Callable[[StoreError], None]] = None,
    ) -> None:
        self.settings = settings or MonitorSettings()
        self._store = store
        self._clock = clock
        self._probe = probe or create_window_probe(
            timeout=self.settings.probe_timeout, clock=clock
        )
        self._idle_tracker = idle_tracker or create_idle_tracker(
            timeout=self.settings.probe_timeout
        )
        self._resolver = resolver or ProjectResolver(store, clock=clock)
        self._assembler = SessionAssembler(store, self.settings.min_session_duration)
        self._on_fatal_error = on_fatal_error
        self._lock = threading.RLock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None
        self._monitoring = False
        self._last_activity_time = clock()
        self._last_tick_time: Optional[datetime] = None
        self._fatal_error: Optional[StoreError] = None

    @classmethod
    def open(cls, db_path: Path, settings: Optional[MonitorSettings] = None) -> "ActivityMonitor":
        settings = settings or MonitorSettings()
        return cls(ActivityStore.open(db_path, settings), settings)

    # Host-facing state -------------------------------------------------

    @property
    def store(self) -> ActivityStore:
        return self._store

    @property
    def resolver(self) -> ProjectResolver:
        return self._resolver

    @property
    def state(self) -> SessionState:
        return self._assembler.state

    @property
    def fatal_error(self) -> Optional[StoreError]:
        return self._fatal_error

    def get_current_activity(self) -> Optional[OpenSession]:
        return self._assembler.current_session

    def is_currently_monitoring(self) -> bool:
        return self._monitoring

    def get_last_activity_time(self) -> datetime:
        """Time of the last tick that recorded a window, or of the last start or resume.

        Idle ticks and ticks without a sample leave it unchanged, so it marks
        when the user was last seen active rather than when the monitor last ran.
        """
        return self._last_activity_time

    # Lifecycle ----------------------------------------------------------

    def start_monitoring(self) -> None:
        with self._lock:
            if self._monitoring:
                logger.info("Activity monitoring already started")
                return
            if self._fatal_error is not None:
                raise self._fatal_error
            stop_event = threading.Event()
            thread = threading.Thread(
                target=self._run_loop,
                args=(stop_event,),
                name="devpulse-monitor",
                daemon=True,
            )
            self._stop_event = stop_event
            self._thread = thread
            self._monitoring = True
            self._last_activity_time = self._clock()
            self._last_tick_time = None
            thread.start()
        logger.info(
            "Activity monitoring started; sampling every %ss",
            self.settings.sample_interval.total_seconds(),
        )

    def stop_monitoring(self) -> None:
        """Stop the ticker and flush the open session before returning."""
        with self._lock:
            thread = self._thread
            stop_event = self._stop_event
            self._thread = None
            self._stop_event = None
            was_monitoring = self._monitoring
            self._monitoring = False
        if stop_event is not None:
            stop_event.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join()
        with self._lock:
            if self._fatal_error is None:
                self._close_session(self._clock(), "stop")
        if was_monitoring:
            logger.info("Activity monitoring stopped")

    def run_until_stopped(self, stop_event: threading.Event) -> None:
        """Tick on the calling thread until the event is set, then flush."""
        with self._lock:
            self._monitoring = True
        try:
            self._run_loop(stop_event)
        finally:
            with self._lock:
                self._monitoring = False
                if self._fatal_error is None:
                    self._close_session(self._clock(), "stop")

    def cleanup(self) -> None:
        self.stop_monitoring()

    # Power events ----------------------------------------------------

    def handle_suspend(self) -> None:
        logger.info("System suspended, pausing activity tracking")
        with self._lock:
            self._close_session(self._clock(), "suspend")

    def handle_resume(self) -> None:
        logger.info("System resumed")
        with self._lock:
            self._last_activity_time = self._clock()
            self._last_tick_time = None

    def handle_lock_screen(self) -> None:
        logger.info("Screen locked")
        with self._lock:
            self._close_session(self._clock(), "lock")

    def handle_unlock_screen(self) -> None:
        logger.info("Screen unlocked")
        self.handle_resume()

    # Projects ----------------------------------------------------------

    def scan_for_projects(self, roots: Optional[list[Path]] = None) -> list[Project]:
        """Scan ``roots`` and remember them; without roots, rescan the remembered ones."""
        with self._lock:
            if roots is None:
                return self._resolver.scan(default_scan_roots(self._store))
            projects = self._resolver.scan(roots)
            remember_scan_roots(self._store, roots)
            return projects

    def refresh_project_cache(self) -> None:
        with self._lock:
            self._resolver.refresh_cache()

    # Pipeline ----------------------------------------------------------

    def tick(self) -> None:
        """Run the pipeline once."""
        with self._lock:
            now = self._clock()
            self._check_sleep_gap(now)
            self._last_tick_time = now
            self._assembler.retry_pending()

            sample = self._probe.sample()
            idle_ms = self._idle_tracker.idle_duration()
            if idle_ms > self.settings.idle_threshold_ms:
                if self._assembler.state is SessionState.TRACKING:
                    logger.info("User idle for %ss; closing session", idle_ms // 1000)
                    self._close_session(now, "idle")
                return
            if sample is None:
                logger.debug("No window sample this tick")
                return

            activity = self.resolve_sample(sample)
            self._assembler.observe(activity, now)
            self._last_activity_time = now

    def resolve_sample(self, sample: WindowSample) -> ResolvedActivity:
        activity_type = classify(sample.app_name, sample.window_title)
        file_path = extract_file_path(sample.window_title)
        project: Optional[Project] = None
        if file_path:
            try:
                project = self._resolver.resolve(file_path)
            except StoreCorruptedError:
                raise
            except StoreError as exc:
                logger.warning("Project lookup failed for %s: %s", file_path, exc)
        return ResolvedActivity(
            sample=sample,
            activity_type=activity_type,
            file_path=file_path,
            project=project,
        )

    def _check_sleep_gap(self, now: datetime) -> None:
        last = self._last_tick_time
        if last is None or now - last <= self.settings.sleep_gap:
            return
        logger.info("No tick for %s; treating as suspend", now - last)
        self._close_session(last, "sleep")

    def _close_session(self, at: datetime, reason: str) -> None:
        self._assembler.close(at, reason)

    def _run_loop(self, stop_event: threading.Event) -> None:
        interval = self.settings.sample_interval.total_seconds()
        while not stop_event.is_set():
            try:
                self.tick()
            except StoreCorruptedError as exc:
                self._escalate(exc)
                return
            except Exception:
                logger.exception("Error in activity monitoring cycle")
            # Sleep in an interruptible manner.
            stop_event.wait(interval)

    def _escalate(self, error: StoreError) -> None:
        logger.critical("Activity store is corrupted; monitoring halted: %s", error)
        self._fatal_error = error
        self._monitoring = False
        if self._on_fatal_error is not None:
            self._on_fatal_error(error)
