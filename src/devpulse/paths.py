"""Where DevPulse keeps its database and log file."""

from __future__ import annotations

import os
from pathlib import Path

from platformdirs import PlatformDirs

APP_NAME = "DevPulse"
DATA_DIR_ENV = "DEVPULSE_DATA_DIR"


def get_data_dir() -> Path:
    """Per-user data directory, created on first use.

    ``DEVPULSE_DATA_DIR`` overrides the platform default.
    """
    override = os.environ.get(DATA_DIR_ENV)
    if override:
        path = Path(override).expanduser()
    else:
        path = PlatformDirs(appname=APP_NAME, appauthor=False, roaming=True).user_data_path
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_db_path() -> Path:
    return get_data_dir() / "devpulse.sqlite3"


def get_log_path() -> Path:
    return get_data_dir() / "monitor.log"
