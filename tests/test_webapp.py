"""Tests for the local control API."""

from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from devpulse.db import StoreCorruptedError
from devpulse.webapp import create_app

VSCODE = ("Visual Studio Code", "main.ts - proj - Visual Studio Code")


@pytest.fixture
def client(monitor) -> Iterator[TestClient]:
    app = create_app(monitor=monitor, autostart=False)
    with TestClient(app) as test_client:
        yield test_client


def test_status_reports_settings(client: TestClient) -> None:
    response = client.get("/api/status")

    assert response.status_code == 200
    body = response.json()
    assert body["monitoring"] is False
    assert body["state"] == "idle"
    assert body["sample_seconds"] == 2.0
    assert body["idle_minutes"] == 5.0
    assert body["fatal_error"] is None


def test_current_activity(client: TestClient, monitor, probe) -> None:
    assert client.get("/api/current").json() == {"activity": None}

    probe.show(*VSCODE)
    monitor.tick()

    activity = client.get("/api/current").json()["activity"]
    assert activity["app_name"] == "Visual Studio Code"
    assert activity["activity_type"] == "code"
    assert activity["file_path"] == "main.ts"
    assert activity["project_path"] is None


def test_start_and_stop_monitoring(client: TestClient, monitor) -> None:
    assert client.post("/api/monitoring/start").json() == {"monitoring": True}
    assert monitor.is_currently_monitoring()

    assert client.post("/api/monitoring/stop").json() == {"monitoring": False}
    assert not monitor.is_currently_monitoring()


def test_start_refused_after_corruption(client: TestClient, monitor) -> None:
    monitor._escalate(StoreCorruptedError("database disk image is malformed"))

    response = client.post("/api/monitoring/start")

    assert response.status_code == 503
    assert "malformed" in response.json()["detail"]
    assert "malformed" in client.get("/api/status").json()["fatal_error"]


def test_scan_and_list_projects(client: TestClient, tmp_path: Path) -> None:
    (tmp_path / "repos" / "api" / ".git").mkdir(parents=True)
    (tmp_path / "repos" / "web").mkdir()
    (tmp_path / "repos" / "web" / "package.json").write_text('{"name": "web-ui"}')

    scanned = client.post("/api/projects/scan", json={"roots": [str(tmp_path / "repos")]})

    assert scanned.status_code == 200
    assert sorted(project["name"] for project in scanned.json()["projects"]) == ["api", "web-ui"]
    listed = client.get("/api/projects").json()["projects"]
    assert {project["path"] for project in listed} == {
        str(tmp_path / "repos" / "api"),
        str(tmp_path / "repos" / "web"),
    }


def test_scan_rejects_unknown_fields(client: TestClient) -> None:
    response = client.post("/api/projects/scan", json={"roots": [], "depth": 9})
    assert response.status_code == 422


def test_refresh_returns_cached_paths(client: TestClient, store, tmp_path: Path) -> None:
    (tmp_path / "api" / ".git").mkdir(parents=True)
    client.post("/api/projects/scan", json={"roots": [str(tmp_path)]})

    response = client.post("/api/projects/refresh")

    assert response.json() == {"cached_paths": [str(tmp_path / "api")]}


def test_activity_for_day(client: TestClient, monitor, probe, clock) -> None:
    probe.show(*VSCODE)
    monitor.tick()
    clock.advance(30)
    monitor.handle_lock_screen()

    response = client.get("/api/activity", params={"start": "2026-03-02"})

    body = response.json()
    assert body["start"] == body["end"] == "2026-03-02"
    (entry,) = body["activities"]
    assert entry["duration_seconds"] == 30
    assert entry["metadata"]["close_reason"] == "lock"

    other_day = client.get("/api/activity", params={"start": "2026-03-03"}).json()
    assert other_day["activities"] == []


@pytest.mark.parametrize(
    "params",
    [
        {"start": "02/03/2026"},
        {"start": "2026-03-05", "end": "2026-03-01"},
    ],
)
def test_activity_rejects_bad_ranges(client: TestClient, params) -> None:
    assert client.get("/api/activity", params=params).status_code == 400


def test_shutdown_flushes_open_session(monitor, probe, clock, store) -> None:
    app = create_app(monitor=monitor, autostart=False)
    with TestClient(app):
        probe.show(*VSCODE)
        monitor.tick()
        clock.advance(15)

    (log,) = store.fetch_recent_activity_logs()
    assert log.metadata["close_reason"] == "stop"
