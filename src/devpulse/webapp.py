"""FastAPI application that lets a local host process observe and control the monitor."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict

from . import __version__
from .config import MonitorSettings
from .models import ActivityLog, OpenSession, Project
from .monitor import ActivityMonitor

logger = logging.getLogger(__name__)


class ScanRequest(BaseModel):
    roots: Optional[list[str]] = None

    model_config = ConfigDict(extra="forbid")


def create_app(
    *,
    monitor: Optional[ActivityMonitor] = None,
    db_path: Optional[Path] = None,
    settings: Optional[MonitorSettings] = None,
    autostart: bool = True,
) -> FastAPI:
    """Instantiate the FastAPI application around one monitor."""
    if monitor is None:
        from .paths import get_db_path

        monitor = ActivityMonitor.open(Path(db_path or get_db_path()), settings)

    app = FastAPI(title="DevPulse Monitor", version=__version__)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://127.0.0.1", "http://localhost"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.monitor = monitor

    @app.on_event("startup")
    async def _startup() -> None:
        if autostart:
            monitor.start_monitoring()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        monitor.stop_monitoring()

    @app.get("/api/status")
    def status(request: Request) -> Dict[str, Any]:
        current: ActivityMonitor = request.app.state.monitor
        fatal = current.fatal_error
        return {
            "monitoring": current.is_currently_monitoring(),
            "state": current.state.value,
            "last_activity_time": current.get_last_activity_time().isoformat(),
            "sample_seconds": current.settings.sample_interval.total_seconds(),
            "idle_minutes": current.settings.idle_threshold.total_seconds() / 60.0,
            "fatal_error": str(fatal) if fatal else None,
        }

    @app.get("/api/current")
    def current_activity(request: Request) -> Dict[str, Any]:
        session = request.app.state.monitor.get_current_activity()
        return {"activity": _session_payload(session) if session else None}

    @app.post("/api/monitoring/start")
    def start_monitoring(request: Request) -> Dict[str, Any]:
        current: ActivityMonitor = request.app.state.monitor
        if current.fatal_error is not None:
            raise HTTPException(status_code=503, detail=str(current.fatal_error))
        current.start_monitoring()
        return {"monitoring": current.is_currently_monitoring()}

    @app.post("/api/monitoring/stop")
    def stop_monitoring(request: Request) -> Dict[str, Any]:
        current: ActivityMonitor = request.app.state.monitor
        current.stop_monitoring()
        return {"monitoring": current.is_currently_monitoring()}

    @app.get("/api/projects")
    def list_projects(request: Request) -> Dict[str, Any]:
        projects = request.app.state.monitor.store.get_all_projects()
        return {"projects": [_project_payload(project) for project in projects]}

    @app.post("/api/projects/scan")
    def scan_projects(payload: ScanRequest, request: Request) -> Dict[str, Any]:
        roots = [Path(root) for root in payload.roots] if payload.roots is not None else None
        projects = request.app.state.monitor.scan_for_projects(roots)
        return {"projects": [_project_payload(project) for project in projects]}

    @app.post("/api/projects/refresh")
    def refresh_projects(request: Request) -> Dict[str, Any]:
        current: ActivityMonitor = request.app.state.monitor
        current.refresh_project_cache()
        return {"cached_paths": current.resolver.cached_paths}

    @app.get("/api/activity")
    def activity(
        request: Request,
        start: Optional[str] = Query(
            default=None,
            description="Start date in YYYY-MM-DD format (inclusive).",
        ),
        end: Optional[str] = Query(
            default=None,
            description="End date in YYYY-MM-DD format (inclusive).",
        ),
    ) -> Dict[str, Any]:
        start_day = _parse_date(start)
        end_day = _parse_date(end) if end else start_day
        if end_day < start_day:
            raise HTTPException(
                status_code=400, detail="end date must be on or after start date"
            )
        logs = request.app.state.monitor.store.fetch_activity_logs(
            start_day, end_day + timedelta(days=1)
        )
        return {
            "start": start_day.strftime("%Y-%m-%d"),
            "end": end_day.strftime("%Y-%m-%d"),
            "activities": [_log_payload(log) for log in logs],
        }

    return app


def _parse_date(value: Optional[str]) -> datetime:
    if not value:
        return _start_of_day(datetime.now())
    try:
        parsed = datetime.strptime(value, "%Y-%m-%d")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid date format") from exc
    return _start_of_day(parsed)


def _start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def _session_payload(session: OpenSession) -> Dict[str, Any]:
    return {
        "app_name": session.app_name,
        "window_title": session.window_title,
        "activity_type": session.activity_type.value,
        "file_path": session.file_path,
        "project_path": session.project_path,
        "started_at": session.started_at.isoformat(),
    }


def _project_payload(project: Project) -> Dict[str, Any]:
    return {
        "id": project.id,
        "name": project.name,
        "path": project.path,
        "git_remote_url": project.git_remote_url,
        "tags": project.tags,
        "color": project.color,
        "created_at": project.created_at.isoformat(),
        "updated_at": project.updated_at.isoformat(),
    }


def _log_payload(log: ActivityLog) -> Dict[str, Any]:
    return {
        "id": log.id,
        "project_id": log.project_id,
        "app_name": log.app_name,
        "window_title": log.window_title,
        "file_path": log.file_path,
        "activity_type": log.activity_type.value,
        "duration_seconds": log.duration_seconds,
        "started_at": log.started_at.isoformat(),
        "ended_at": log.ended_at.isoformat(),
        "is_idle": log.is_idle,
        "metadata": log.metadata,
    }
