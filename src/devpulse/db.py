"""SQLite activity store: schema, migrations and the persistence boundary."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, Optional, TypeVar

from .config import MonitorSettings
from .models import ACTIVITY_TYPE_VALUES, ActivityLog, ActivityType, Project

logger = logging.getLogger(__name__)

DATETIME_FMT = "%Y-%m-%d %H:%M:%S.%f"

SCHEMA_VERSION = 2
MIN_LOG_DURATION_SECONDS = 5

T = TypeVar("T")


class StoreError(Exception):
    """Base class for activity store failures."""


class StoreUnavailableError(StoreError):
    """The database location cannot be created, opened or written."""


class StoreBusyError(StoreError):
    """Another connection holds the database lock."""


class StoreCorruptedError(StoreError):
    """The database file is damaged and needs user remediation."""


class StoreConstraintError(StoreError):
    """A write was rejected by a schema constraint."""


class DuplicateRecordError(StoreConstraintError):
    """A row with the same primary or unique key already exists."""


class UnknownActivityTypeError(StoreError, ValueError):
    """An activity type outside the fixed enumeration was submitted."""


_ACTIVITY_TYPE_CHECK = ", ".join(f"'{value}'" for value in ACTIVITY_TYPE_VALUES)

_ACTIVITY_LOGS_DDL = f"""
    CREATE TABLE {{table}} (
        id TEXT PRIMARY KEY,
        project_id TEXT,
        app_name TEXT NOT NULL,
        window_title TEXT,
        file_path TEXT,
        activity_type TEXT NOT NULL CHECK(activity_type IN ({_ACTIVITY_TYPE_CHECK})),
        duration_seconds INTEGER NOT NULL,
        started_at TEXT NOT NULL,
        ended_at TEXT NOT NULL,
        is_idle INTEGER NOT NULL DEFAULT 0,
        metadata TEXT NOT NULL DEFAULT '{{{{}}}}',
        FOREIGN KEY (project_id) REFERENCES projects(id)
    )
"""

_ACTIVITY_LOG_COLUMNS = (
    "id",
    "project_id",
    "app_name",
    "window_title",
    "file_path",
    "activity_type",
    "duration_seconds",
    "started_at",
    "ended_at",
    "is_idle",
    "metadata",
)


def open_database(
    path: Path, *, check_same_thread: bool = True, timeout: float = 0.25
) -> sqlite3.Connection:
    """Open (and migrate) the SQLite database.

    Raises StoreUnavailableError when the location is not writable and
    StoreCorruptedError when the file is not a usable SQLite database.
    """
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise StoreUnavailableError(f"Cannot create data directory {path.parent}: {exc}") from exc

    try:
        conn = sqlite3.connect(
            path,
            isolation_level=None,
            check_same_thread=check_same_thread,
            timeout=timeout,
        )
    except sqlite3.Error as exc:
        raise StoreUnavailableError(f"Cannot open database {path}: {exc}") from exc

    conn.row_factory = sqlite3.Row
    try:
        enable_foreign_keys(conn)
        migrate(conn)
    except sqlite3.Error as exc:
        conn.close()
        error = translate_error(exc)
        if isinstance(error, (StoreCorruptedError, StoreBusyError)):
            raise error from exc
        raise StoreUnavailableError(f"Cannot initialize database {path}: {exc}") from exc
    return conn


@contextmanager
def database_connection(
    path: Path, *, check_same_thread: bool = True
) -> Iterator[sqlite3.Connection]:
    conn = open_database(path, check_same_thread=check_same_thread)
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Run the enclosed statements atomically on an autocommit connection."""
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    else:
        conn.execute("COMMIT")


def enable_foreign_keys(conn: sqlite3.Connection) -> None:
    conn.execute("PRAGMA foreign_keys = ON;")


def translate_error(exc: sqlite3.Error) -> StoreError:
    """Map a sqlite3 exception onto the store's error taxonomy."""
    message = str(exc)
    lowered = message.lower()
    if isinstance(exc, sqlite3.IntegrityError):
        if "unique" in lowered or "primary key" in lowered:
            return DuplicateRecordError(message)
        return StoreConstraintError(message)
    if "locked" in lowered or "busy" in lowered:
        return StoreBusyError(message)
    if "malformed" in lowered or "not a database" in lowered or "corrupt" in lowered:
        return StoreCorruptedError(message)
    return StoreError(message)


# ---------------------------------------------------------------------------
# Schema and migrations


def migrate(conn: sqlite3.Connection) -> None:
    """Bring the schema up to date. Safe to run on every start."""
    initialize_schema(conn)
    widen_activity_types(conn)
    ensure_project_activity_column(conn)
    create_indexes(conn)
    conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION};")


def initialize_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS projects (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            path TEXT NOT NULL UNIQUE,
            git_remote_url TEXT,
            tags TEXT NOT NULL DEFAULT '[]',
            color TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            last_active_at TEXT
        )
        """
    )
    if not _table_exists(conn, "activity_logs"):
        conn.execute(_ACTIVITY_LOGS_DDL.format(table="activity_logs"))
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS user_settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )


def create_indexes(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE INDEX IF NOT EXISTS idx_activity_logs_started_at
            ON activity_logs(started_at DESC);
        CREATE INDEX IF NOT EXISTS idx_activity_logs_project_id
            ON activity_logs(project_id);
        CREATE INDEX IF NOT EXISTS idx_activity_logs_app_name
            ON activity_logs(app_name);
        CREATE INDEX IF NOT EXISTS idx_projects_path
            ON projects(path);
        """
    )


def widen_activity_types(conn: sqlite3.Connection) -> bool:
    """Rebuild ``activity_logs`` when its CHECK constraint predates the full enumeration.

    Returns True when the table was rebuilt. The rebuild runs in one
    transaction and is rolled back unless every row was copied; when existing
    rows hold a value the new constraint would reject, nothing is changed.
    """
    table_sql = _table_sql(conn, "activity_logs")
    if table_sql is None or all(f"'{value}'" in table_sql for value in ACTIVITY_TYPE_VALUES):
        return False

    stored_types = {
        row[0] for row in conn.execute("SELECT DISTINCT activity_type FROM activity_logs")
    }
    unknown = stored_types - set(ACTIVITY_TYPE_VALUES)
    if unknown:
        logger.warning(
            "Skipping activity type migration; rows contain unknown types %s",
            sorted(str(value) for value in unknown),
        )
        return False

    columns = ", ".join(_ACTIVITY_LOG_COLUMNS)
    logger.info("Migrating activity_logs to support all activity types.")
    try:
        with transaction(conn):
            (expected,) = conn.execute("SELECT COUNT(*) FROM activity_logs").fetchone()
            conn.execute("DROP TABLE IF EXISTS activity_logs_new")
            conn.execute(_ACTIVITY_LOGS_DDL.format(table="activity_logs_new"))
            conn.execute(
                f"INSERT INTO activity_logs_new ({columns}) "
                f"SELECT {columns} FROM activity_logs"
            )
            (copied,) = conn.execute("SELECT COUNT(*) FROM activity_logs_new").fetchone()
            if copied != expected:
                raise sqlite3.DatabaseError(
                    f"copied {copied} of {expected} activity rows"
                )
            conn.execute("DROP TABLE activity_logs")
            conn.execute("ALTER TABLE activity_logs_new RENAME TO activity_logs")
    except sqlite3.DatabaseError as exc:
        if isinstance(translate_error(exc), StoreCorruptedError):
            raise
        logger.warning("Activity type migration rolled back: %s", exc)
        return False
    logger.info("Activity type migration completed.")
    return True


def ensure_project_activity_column(conn: sqlite3.Connection) -> bool:
    columns = {row["name"] for row in conn.execute("PRAGMA table_info(projects)")}
    if "last_active_at" in columns:
        return False
    conn.execute("ALTER TABLE projects ADD COLUMN last_active_at TEXT")
    return True


def schema_version(conn: sqlite3.Connection) -> int:
    (version,) = conn.execute("PRAGMA user_version").fetchone()
    return int(version)


def _table_sql(conn: sqlite3.Connection, name: str) -> Optional[str]:
    row = conn.execute(
        "SELECT sql FROM sqlite_master WHERE type = 'table' AND name = ?", (name,)
    ).fetchone()
    return row[0] if row else None


def _table_exists(conn: sqlite3.Connection, name: str) -> bool:
    return _table_sql(conn, name) is not None


# ---------------------------------------------------------------------------
# Row helpers


def format_timestamp(value: datetime) -> str:
    return value.strftime(DATETIME_FMT)


def parse_timestamp(value: str) -> datetime:
    """Parse a stored timestamp into naive local time.

    Besides DATETIME_FMT this accepts ISO 8601 with a space or ``T``
    separator and an optional ``Z`` or offset, as written by SQLite's
    ``CURRENT_TIMESTAMP`` and by older DevPulse releases.
    """
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        parsed = datetime.strptime(value, DATETIME_FMT)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def validate_activity_type(value: object) -> ActivityType:
    try:
        return ActivityType(value)
    except ValueError as exc:
        raise UnknownActivityTypeError(f"Unknown activity type: {value!r}") from exc


def _row_to_project(row: sqlite3.Row) -> Project:
    return Project(
        id=row["id"],
        name=row["name"],
        path=row["path"],
        git_remote_url=row["git_remote_url"],
        tags=list(json.loads(row["tags"] or "[]")),
        color=row["color"],
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
    )


def _row_to_activity_log(row: sqlite3.Row) -> ActivityLog:
    return ActivityLog(
        id=row["id"],
        project_id=row["project_id"],
        app_name=row["app_name"],
        window_title=row["window_title"],
        file_path=row["file_path"],
        activity_type=ActivityType(row["activity_type"]),
        duration_seconds=int(row["duration_seconds"]),
        started_at=parse_timestamp(row["started_at"]),
        ended_at=parse_timestamp(row["ended_at"]),
        is_idle=bool(row["is_idle"]),
        metadata=json.loads(row["metadata"] or "{}"),
    )


def _project_params(project: Project) -> tuple[Any, ...]:
    return (
        project.id,
        project.name,
        project.path,
        project.git_remote_url,
        json.dumps(project.tags),
        project.color,
        format_timestamp(project.created_at),
        format_timestamp(project.updated_at),
    )


_INSERT_PROJECT_SQL = """
    INSERT INTO projects (
        id, name, path, git_remote_url, tags, color, created_at, updated_at
    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
"""


# ---------------------------------------------------------------------------
# Statements


def insert_activity_log(conn: sqlite3.Connection, log: ActivityLog) -> None:
    activity_type = validate_activity_type(log.activity_type)
    if log.duration_seconds < MIN_LOG_DURATION_SECONDS:
        raise StoreConstraintError(
            f"Activity log {log.id} is shorter than {MIN_LOG_DURATION_SECONDS}s"
        )
    conn.execute(
        f"""
        INSERT INTO activity_logs ({", ".join(_ACTIVITY_LOG_COLUMNS)})
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            log.id,
            log.project_id,
            log.app_name,
            log.window_title,
            log.file_path,
            activity_type.value,
            log.duration_seconds,
            format_timestamp(log.started_at),
            format_timestamp(log.ended_at),
            1 if log.is_idle else 0,
            json.dumps(log.metadata),
        ),
    )


def insert_project(conn: sqlite3.Connection, project: Project) -> None:
    conn.execute(_INSERT_PROJECT_SQL, _project_params(project))


def insert_projects(conn: sqlite3.Connection, projects: Iterable[Project]) -> None:
    """Insert all projects or none of them."""
    params = [_project_params(project) for project in projects]
    if not params:
        return
    with transaction(conn):
        conn.executemany(_INSERT_PROJECT_SQL, params)


def touch_project(conn: sqlite3.Connection, project_id: str, at: datetime) -> None:
    conn.execute(
        "UPDATE projects SET last_active_at = ? WHERE id = ?",
        (format_timestamp(at), project_id),
    )


def get_project_by_path(conn: sqlite3.Connection, path: str) -> Optional[Project]:
    row = conn.execute("SELECT * FROM projects WHERE path = ?", (path,)).fetchone()
    return _row_to_project(row) if row else None


def get_project_by_id(conn: sqlite3.Connection, project_id: str) -> Optional[Project]:
    row = conn.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
    return _row_to_project(row) if row else None


def get_all_projects(conn: sqlite3.Connection) -> list[Project]:
    rows = conn.execute(
        """
        SELECT * FROM projects
        ORDER BY COALESCE(last_active_at, updated_at) DESC, name
        """
    )
    projects: list[Project] = []
    for row in rows:
        try:
            projects.append(_row_to_project(row))
        except (TypeError, ValueError) as exc:
            logger.warning("Skipping unreadable project row %s: %s", row["id"], exc)
    return projects


def fetch_activity_logs(
    conn: sqlite3.Connection, start: datetime, end: datetime
) -> list[ActivityLog]:
    """Return logs that lie entirely within ``[start, end]``, oldest first."""
    rows = conn.execute(
        """
        SELECT * FROM activity_logs
        WHERE started_at >= ? AND ended_at <= ?
        ORDER BY started_at
        """,
        (format_timestamp(start), format_timestamp(end)),
    )
    return [_row_to_activity_log(row) for row in rows]


def fetch_recent_activity_logs(conn: sqlite3.Connection, limit: int = 100) -> list[ActivityLog]:
    rows = conn.execute(
        "SELECT * FROM activity_logs ORDER BY started_at DESC LIMIT ?", (limit,)
    )
    return [_row_to_activity_log(row) for row in rows]


def fetch_activity_totals(
    conn: sqlite3.Connection, start: datetime, end: datetime
) -> list[sqlite3.Row]:
    """Total seconds per activity type and project for logs starting in ``[start, end)``."""
    return list(
        conn.execute(
            """
            SELECT
                logs.activity_type AS activity_type,
                projects.name AS project_name,
                SUM(logs.duration_seconds) AS seconds
            FROM activity_logs AS logs
            LEFT JOIN projects ON projects.id = logs.project_id
            WHERE logs.started_at >= ? AND logs.started_at < ?
            GROUP BY logs.activity_type, projects.name
            ORDER BY seconds DESC;
            """,
            (format_timestamp(start), format_timestamp(end)),
        )
    )


def count_activity_logs(conn: sqlite3.Connection) -> int:
    (count,) = conn.execute("SELECT COUNT(*) FROM activity_logs").fetchone()
    return int(count)


def get_setting(conn: sqlite3.Connection, key: str) -> Optional[str]:
    row = conn.execute("SELECT value FROM user_settings WHERE key = ?", (key,)).fetchone()
    return row["value"] if row else None


def set_setting(conn: sqlite3.Connection, key: str, value: str, at: datetime) -> None:
    conn.execute(
        """
        INSERT INTO user_settings (key, value, updated_at) VALUES (?, ?, ?)
        ON CONFLICT(key) DO UPDATE SET
            value = excluded.value,
            updated_at = excluded.updated_at
        """,
        (key, value, format_timestamp(at)),
    )


# ---------------------------------------------------------------------------
# Store


class ActivityStore:
    """The monitor's single persistence boundary.

    Wraps one connection and retries operations that fail because another
    process holds the database lock.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        *,
        busy_retries: int = 3,
        busy_backoff: float = 0.05,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._conn = conn
        self._busy_retries = busy_retries
        self._busy_backoff = busy_backoff
        self._sleep = sleep
        self._lock = threading.RLock()

    @classmethod
    def open(
        cls, path: Path, settings: Optional[MonitorSettings] = None
    ) -> "ActivityStore":
        settings = settings or MonitorSettings()
        conn = open_database(path, check_same_thread=False)
        return cls(
            conn,
            busy_retries=settings.store_busy_retries,
            busy_backoff=settings.store_busy_backoff.total_seconds(),
        )

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    def close(self) -> None:
        self._conn.close()

    def _call(self, func: Callable[..., T], *args: Any) -> T:
        attempt = 0
        while True:
            try:
                with self._lock:
                    return func(self._conn, *args)
            except sqlite3.Error as exc:
                error = translate_error(exc)
                if isinstance(error, StoreBusyError) and attempt < self._busy_retries:
                    delay = self._busy_backoff * (2**attempt)
                    attempt += 1
                    logger.debug(
                        "Database busy during %s; retry %d in %.3fs",
                        func.__name__,
                        attempt,
                        delay,
                    )
                    self._sleep(delay)
                    continue
                raise error from exc

    def insert_activity_log(self, log: ActivityLog) -> None:
        self._call(insert_activity_log, log)

    def insert_project(self, project: Project) -> None:
        self._call(insert_project, project)

    def insert_projects(self, projects: Iterable[Project]) -> None:
        self._call(insert_projects, list(projects))

    def touch_project(self, project_id: str, at: datetime) -> None:
        self._call(touch_project, project_id, at)

    def get_project_by_path(self, path: str) -> Optional[Project]:
        return self._call(get_project_by_path, path)

    def get_project_by_id(self, project_id: str) -> Optional[Project]:
        return self._call(get_project_by_id, project_id)

    def get_all_projects(self) -> list[Project]:
        return self._call(get_all_projects)

    def fetch_activity_logs(self, start: datetime, end: datetime) -> list[ActivityLog]:
        return self._call(fetch_activity_logs, start, end)

    def fetch_recent_activity_logs(self, limit: int = 100) -> list[ActivityLog]:
        return self._call(fetch_recent_activity_logs, limit)

    def fetch_activity_totals(self, start: datetime, end: datetime) -> list[sqlite3.Row]:
        return self._call(fetch_activity_totals, start, end)

    def count_activity_logs(self) -> int:
        return self._call(count_activity_logs)

    def get_setting(self, key: str) -> Optional[str]:
        return self._call(get_setting, key)

    def set_setting(self, key: str, value: str, at: Optional[datetime] = None) -> None:
        self._call(set_setting, key, value, at or datetime.now())
