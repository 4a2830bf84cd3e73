"""Turns a stream of resolved activities into closed, persisted intervals."""

from __future__ import annotations

import logging
import math
import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from .db import (
    MIN_LOG_DURATION_SECONDS,
    ActivityStore,
    StoreBusyError,
    StoreCorruptedError,
    StoreError,
)
from .models import ActivityLog, OpenSession, ResolvedActivity

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    TRACKING = "tracking"


class SessionAssembler:
    """Owns the open session and decides when it becomes an ActivityLog.

    A new activity whose identity ``(app, title, type, project path)``
    differs from the open session closes it and opens a new one. Identical
    activities leave the session untouched; its duration is measured from
    its start when it is closed. Closed sessions shorter than the minimum
    duration are discarded.
    """

    def __init__(
        self,
        store: ActivityStore,
        min_duration: timedelta = timedelta(seconds=MIN_LOG_DURATION_SECONDS),
    ) -> None:
        self._store = store
        self._min_seconds = max(MIN_LOG_DURATION_SECONDS, int(min_duration.total_seconds()))
        self._session: Optional[OpenSession] = None
        self._detected_at: Optional[datetime] = None
        self._pending: list[ActivityLog] = []

    @property
    def state(self) -> SessionState:
        return SessionState.TRACKING if self._session else SessionState.IDLE

    @property
    def current_session(self) -> Optional[OpenSession]:
        return self._session

    @property
    def pending_logs(self) -> list[ActivityLog]:
        return list(self._pending)

    def observe(self, activity: ResolvedActivity, now: datetime) -> Optional[ActivityLog]:
        """Feed one tick's activity. Returns the log closed by this call, if any."""
        current = self._session
        if current is not None and current.identity == activity.identity:
            return None

        closed = self._close_current(now, reason="changed")
        self._session = OpenSession.from_activity(activity, started_at=now)
        self._detected_at = activity.sample.sampled_at
        logger.debug(
            "Opened session: app=%s type=%s project=%s",
            activity.app_name,
            activity.activity_type.value,
            activity.project_path,
        )
        return closed

    def close(self, now: datetime, reason: str) -> Optional[ActivityLog]:
        """Close the open session (idle, suspend, lock, stop) and go idle."""
        return self._close_current(now, reason=reason)

    def retry_pending(self) -> None:
        """Write logs left over from an earlier busy database."""
        if self._pending:
            self._flush_pending()

    def _close_current(self, now: datetime, reason: str) -> Optional[ActivityLog]:
        session = self._session
        detected_at = self._detected_at
        self._session = None
        self._detected_at = None
        if session is None:
            return None

        duration = math.floor(session.elapsed_seconds(now))
        if duration < self._min_seconds:
            logger.debug(
                "Discarding %ss session for %s (%s)", duration, session.app_name, reason
            )
            return None

        log = ActivityLog(
            id=uuid.uuid4().hex,
            project_id=session.project_id,
            app_name=session.app_name,
            window_title=session.window_title,
            file_path=session.file_path,
            activity_type=session.activity_type,
            duration_seconds=duration,
            started_at=session.started_at,
            ended_at=now,
            is_idle=False,
            metadata={
                "project_path": session.project_path,
                "detected_at": (detected_at or session.started_at).isoformat(),
                "pid": session.pid,
                "close_reason": reason,
            },
        )
        self._pending.append(log)
        self._flush_pending()
        return log

    def _flush_pending(self) -> None:
        while self._pending:
            log = self._pending[0]
            try:
                self._store.insert_activity_log(log)
            except StoreBusyError as exc:
                logger.warning(
                    "Database busy; keeping %d activity logs for the next flush: %s",
                    len(self._pending),
                    exc,
                )
                return
            except StoreCorruptedError:
                raise
            except StoreError as exc:
                logger.warning("Dropping activity log %s: %s", log.id, exc)
                self._pending.pop(0)
                continue
            self._pending.pop(0)
            logger.info("Saved activity: %s (%ss)", log.app_name, log.duration_seconds)
