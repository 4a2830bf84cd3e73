"""Domain models for sampled and recorded activity."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class ActivityType(str, Enum):
    """Closed set of activity categories stored in ``activity_logs``."""

    CODE = "code"
    BUILD = "build"
    TEST = "test"
    DEBUG = "debug"
    BROWSING = "browsing"
    RESEARCH = "research"
    COMMUNICATION = "communication"
    DESIGN = "design"
    DOCUMENT = "document"
    OTHER = "other"


ACTIVITY_TYPE_VALUES: tuple[str, ...] = tuple(member.value for member in ActivityType)


@dataclass(frozen=True, slots=True)
class WindowSample:
    """Foreground window as seen by a probe during one tick."""

    app_name: str
    window_title: str
    sampled_at: datetime
    pid: Optional[int] = None


@dataclass(slots=True)
class Project:
    """A directory recognised as the root of a software project."""

    id: str
    name: str
    path: str
    git_remote_url: Optional[str]
    tags: list[str]
    color: Optional[str]
    created_at: datetime
    updated_at: datetime

    @property
    def kind(self) -> Optional[str]:
        return self.tags[0] if self.tags else None


@dataclass(frozen=True, slots=True)
class ResolvedActivity:
    """A window sample enriched with classification and project context."""

    sample: WindowSample
    activity_type: ActivityType
    file_path: Optional[str] = None
    project: Optional[Project] = None

    @property
    def app_name(self) -> str:
        return self.sample.app_name

    @property
    def window_title(self) -> str:
        return self.sample.window_title

    @property
    def project_path(self) -> Optional[str]:
        return self.project.path if self.project else None

    @property
    def identity(self) -> tuple[str, str, ActivityType, Optional[str]]:
        return (self.app_name, self.window_title, self.activity_type, self.project_path)


@dataclass(frozen=True, slots=True)
class OpenSession:
    """The interval currently accumulating; replaced whenever activity changes."""

    app_name: str
    window_title: str
    activity_type: ActivityType
    project_path: Optional[str]
    started_at: datetime
    file_path: Optional[str] = None
    project_id: Optional[str] = None
    pid: Optional[int] = None

    @classmethod
    def from_activity(cls, activity: ResolvedActivity, started_at: datetime) -> "OpenSession":
        return cls(
            app_name=activity.app_name,
            window_title=activity.window_title,
            activity_type=activity.activity_type,
            project_path=activity.project_path,
            started_at=started_at,
            file_path=activity.file_path,
            project_id=activity.project.id if activity.project else None,
            pid=activity.sample.pid,
        )

    @property
    def identity(self) -> tuple[str, str, ActivityType, Optional[str]]:
        return (self.app_name, self.window_title, self.activity_type, self.project_path)

    def elapsed_seconds(self, now: datetime) -> float:
        return (now - self.started_at).total_seconds()


@dataclass(slots=True)
class ActivityLog:
    """Represents a closed, persisted block of time spent in a single activity."""

    id: str
    app_name: str
    activity_type: ActivityType
    duration_seconds: int
    started_at: datetime
    ended_at: datetime
    project_id: Optional[str] = None
    window_title: Optional[str] = None
    file_path: Optional[str] = None
    is_idle: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)
