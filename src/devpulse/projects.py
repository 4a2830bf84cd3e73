"""Project discovery from file paths and directory scans.

A project root is a directory holding a marker such as ``.git`` or a language
manifest. Markers carry a confidence weight; the best marker in a directory
decides whether the directory is accepted and which kind of project it is.
"""

from __future__ import annotations

import json
import logging
import os
import random
import re
import subprocess
import sys
import tomllib
import uuid
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

from .db import ActivityStore, DuplicateRecordError, StoreError
from .models import Project

logger = logging.getLogger(__name__)

MAX_ASCENT_DEPTH = 10
RESOLVE_CONFIDENCE = 0.5
SCAN_CONFIDENCE = 0.7
MAX_SCAN_DEPTH = 3


@dataclass(frozen=True, slots=True)
class ProjectMarker:
    filename: str
    kind: str
    weight: float


PROJECT_MARKERS: tuple[ProjectMarker, ...] = (
    ProjectMarker(".git", "git", 0.9),
    ProjectMarker("package.json", "npm", 0.8),
    ProjectMarker("Cargo.toml", "cargo", 0.8),
    ProjectMarker("pom.xml", "maven", 0.8),
    ProjectMarker("build.gradle", "gradle", 0.8),
    ProjectMarker("go.mod", "go", 0.8),
    ProjectMarker("setup.py", "python", 0.7),
    ProjectMarker("pyproject.toml", "python", 0.7),
    ProjectMarker("composer.json", "php", 0.7),
    ProjectMarker("Gemfile", "ruby", 0.7),
    ProjectMarker("requirements.txt", "python", 0.6),
    ProjectMarker("CMakeLists.txt", "generic", 0.6),
    ProjectMarker("Makefile", "generic", 0.5),
)

PROJECT_COLORS = (
    "#3B82F6",
    "#EF4444",
    "#10B981",
    "#F59E0B",
    "#8B5CF6",
    "#06B6D4",
    "#F97316",
    "#84CC16",
    "#EC4899",
    "#6366F1",
)

_SKIPPED_SCAN_DIRS = {"node_modules"}
_VENV_DIRS = ("venv", ".venv", "env", ".env")


@dataclass(slots=True)
class ProjectCandidate:
    """Result of analysing one directory against the marker table."""

    path: str
    name: str
    kind: str
    confidence: float
    metadata: dict[str, Any] = field(default_factory=dict)


def best_marker(entries: set[str]) -> Optional[ProjectMarker]:
    """Highest-weight marker present; ties keep the earlier table entry."""
    best: Optional[ProjectMarker] = None
    for marker in PROJECT_MARKERS:
        if marker.filename in entries and (best is None or marker.weight > best.weight):
            best = marker
    return best


# ---------------------------------------------------------------------------
# Metadata extraction. Every extractor may fail; callers treat failures as
# "no metadata" and keep going.


_GIT_URL_PATTERN = re.compile(r"url\s*=\s*(.+)")
_GIT_ORIGIN_PATTERN = re.compile(r'\[remote "origin"\][^\[]*?url\s*=\s*(.+)')


def detect_git_provider(remote_url: str) -> str:
    if "github.com" in remote_url:
        return "github"
    if "gitlab.com" in remote_url:
        return "gitlab"
    if "bitbucket.org" in remote_url:
        return "bitbucket"
    if "azure.com" in remote_url or "visualstudio.com" in remote_url:
        return "azure"
    return "other"


def extract_git_info(directory: Path, timeout: float = 1.0) -> dict[str, Any]:
    info: dict[str, Any] = {}
    config_path = directory / ".git" / "config"
    if config_path.is_file():
        text = config_path.read_text(encoding="utf-8", errors="replace")
        remote = _GIT_URL_PATTERN.search(text)
        if remote:
            info["remote_url"] = remote.group(1).strip()
        origin = _GIT_ORIGIN_PATTERN.search(text)
        if origin:
            info["origin"] = origin.group(1).strip()
            info["provider"] = detect_git_provider(info["origin"])

    try:
        result = subprocess.run(
            ["git", "rev-parse", "--abbrev-ref", "HEAD"],
            cwd=directory,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        logger.debug("git branch lookup failed for %s: %s", directory, exc)
    else:
        if result.returncode == 0 and result.stdout.strip():
            info["branch"] = result.stdout.strip()
    return info


def extract_npm_info(directory: Path) -> dict[str, Any]:
    manifest = json.loads((directory / "package.json").read_text(encoding="utf-8"))
    if not isinstance(manifest, dict):
        return {}
    return {
        "name": manifest.get("name"),
        "version": manifest.get("version"),
        "description": manifest.get("description"),
        "scripts": sorted((manifest.get("scripts") or {}).keys()),
        "dependencies": len(manifest.get("dependencies") or {}),
        "dev_dependencies": len(manifest.get("devDependencies") or {}),
    }


def extract_cargo_info(directory: Path) -> dict[str, Any]:
    manifest = tomllib.loads((directory / "Cargo.toml").read_text(encoding="utf-8"))
    package = manifest.get("package") or {}
    return {
        "name": package.get("name"),
        "version": package.get("version"),
        "edition": package.get("edition"),
        "is_workspace": "workspace" in manifest,
    }


def extract_maven_info(directory: Path) -> dict[str, Any]:
    root = ET.parse(directory / "pom.xml").getroot()
    namespace = root.tag[: root.tag.index("}") + 1] if root.tag.startswith("{") else ""

    def child_text(tag: str) -> Optional[str]:
        element = root.find(f"{namespace}{tag}")
        return element.text.strip() if element is not None and element.text else None

    return {
        "artifact_id": child_text("artifactId"),
        "group_id": child_text("groupId"),
        "version": child_text("version"),
        "has_parent": root.find(f"{namespace}parent") is not None,
    }


def extract_python_info(directory: Path) -> dict[str, Any]:
    info: dict[str, Any] = {
        "has_setup_py": (directory / "setup.py").is_file(),
        "has_pyproject": (directory / "pyproject.toml").is_file(),
        "has_venv": any((directory / name).is_dir() for name in _VENV_DIRS),
    }
    requirements = directory / "requirements.txt"
    if requirements.is_file():
        lines = requirements.read_text(encoding="utf-8", errors="replace").splitlines()
        info["requirement_count"] = sum(1 for line in lines if line.strip())
    if info["has_pyproject"]:
        pyproject = tomllib.loads((directory / "pyproject.toml").read_text(encoding="utf-8"))
        project = pyproject.get("project") or {}
        info["name"] = project.get("name")
        info["version"] = project.get("version")
    return info


def extract_go_info(directory: Path) -> dict[str, Any]:
    for line in (directory / "go.mod").read_text(encoding="utf-8").splitlines():
        if line.startswith("module "):
            return {"module": line.split(None, 1)[1].strip()}
    return {}


_EXTRACTORS: dict[str, Callable[[Path], dict[str, Any]]] = {
    "git": extract_git_info,
    "npm": extract_npm_info,
    "cargo": extract_cargo_info,
    "maven": extract_maven_info,
    "python": extract_python_info,
    "go": extract_go_info,
}


def extract_project_metadata(directory: Path, kind: str) -> dict[str, Any]:
    extractor = _EXTRACTORS.get(kind)
    if extractor is None:
        return {}
    try:
        return {kind: extractor(directory)}
    except Exception as exc:
        logger.warning("Could not read %s metadata in %s: %s", kind, directory, exc)
        return {}


def project_name(directory: Path, metadata: dict[str, Any]) -> str:
    """Manifest-declared name when there is one, else the directory name."""
    declared = (
        metadata.get("npm", {}).get("name")
        or metadata.get("cargo", {}).get("name")
        or metadata.get("maven", {}).get("artifact_id")
        or metadata.get("python", {}).get("name")
    )
    module = metadata.get("go", {}).get("module")
    if not declared and module:
        declared = module.rstrip("/").rsplit("/", 1)[-1]
    if isinstance(declared, str) and declared.strip():
        return declared.strip()
    return directory.name or str(directory)


def analyze_directory(directory: Path) -> Optional[ProjectCandidate]:
    """Match a directory against the marker table. Unreadable directories yield None."""
    try:
        entries = set(os.listdir(directory))
    except OSError as exc:
        logger.debug("Cannot list %s: %s", directory, exc)
        return None
    marker = best_marker(entries)
    if marker is None:
        return None
    metadata = extract_project_metadata(directory, marker.kind)
    return ProjectCandidate(
        path=str(directory),
        name=project_name(directory, metadata),
        kind=marker.kind,
        confidence=marker.weight,
        metadata=metadata,
    )


def common_project_paths(home: Optional[Path] = None) -> list[Path]:
    """Conventional source directories that exist on this machine."""
    home = home or Path.home()
    candidates = [
        home / "Projects",
        home / "Development",
        home / "Code",
        home / "Documents" / "Projects",
        home / "workspace",
        home / "src",
    ]
    if sys.platform == "win32":
        candidates.extend([Path("C:\\Projects"), Path("C:\\Development")])
    return [path for path in candidates if path.is_dir()]


SCAN_ROOTS_SETTING = "scan_roots"


def remembered_scan_roots(store: ActivityStore) -> list[Path]:
    """Roots of the last explicit scan, or an empty list."""
    try:
        raw = store.get_setting(SCAN_ROOTS_SETTING)
    except StoreError as exc:
        logger.warning("Could not read saved scan roots: %s", exc)
        return []
    if not raw:
        return []
    try:
        roots = json.loads(raw)
    except ValueError:
        logger.warning("Ignoring malformed %s setting: %r", SCAN_ROOTS_SETTING, raw)
        return []
    if not isinstance(roots, list):
        return []
    return [Path(root) for root in roots if isinstance(root, str)]


def remember_scan_roots(store: ActivityStore, roots: list[Path]) -> None:
    try:
        store.set_setting(SCAN_ROOTS_SETTING, json.dumps([str(root) for root in roots]))
    except StoreError as exc:
        logger.warning("Could not save scan roots: %s", exc)


def default_scan_roots(store: ActivityStore) -> list[Path]:
    return remembered_scan_roots(store) or common_project_paths()


class ProjectResolver:
    """Maps file paths to projects, caching every project it has seen by path."""

    def __init__(
        self,
        store: ActivityStore,
        *,
        clock: Callable[[], datetime] = datetime.now,
        analyze: Callable[[Path], Optional[ProjectCandidate]] = analyze_directory,
    ) -> None:
        self._store = store
        self._clock = clock
        self._analyze = analyze
        self._cache: dict[str, Project] = {}
        self.refresh_cache()

    @property
    def cached_paths(self) -> list[str]:
        return sorted(self._cache)

    def refresh_cache(self) -> None:
        """Drop the cache and reload it from the store."""
        self._cache.clear()
        try:
            projects = self._store.get_all_projects()
        except StoreError:
            logger.exception("Error loading project cache.")
            return
        for project in projects:
            self._cache[project.path] = project
        logger.info("Loaded %d projects into cache", len(projects))

    def resolve(self, file_path: Optional[str]) -> Optional[Project]:
        """Find the project containing ``file_path`` or return None.

        Walks at most MAX_ASCENT_DEPTH directories upward from the file's
        directory. Relative paths cannot be anchored and never resolve.
        Directories already inspected under another name, through a symlink,
        are skipped without ending the walk.
        """
        if not file_path:
            return None
        path = Path(file_path)
        if not path.is_absolute():
            return None

        directory = path.parent
        visited: set[str] = set()
        for _ in range(MAX_ASCENT_DEPTH):
            if directory == directory.parent:
                break
            try:
                canonical = str(directory.resolve())
            except (OSError, RuntimeError):
                canonical = str(directory)
            if canonical in visited:
                # A symlink back to an inspected directory; keep climbing.
                logger.debug("Already inspected %s as %s", directory, canonical)
                directory = directory.parent
                continue
            visited.add(canonical)

            cached = self._cache.get(str(directory))
            if cached is not None:
                self._touch(cached)
                return cached

            candidate = self._analyze(directory)
            if candidate is not None and candidate.confidence > RESOLVE_CONFIDENCE:
                return self._materialize(candidate)

            directory = directory.parent
        return None

    def scan(self, roots: list[Path]) -> list[Project]:
        """Register projects found up to MAX_SCAN_DEPTH levels below each root.

        New projects are written in one transaction; a failure leaves the
        registry and cache unchanged.
        """
        candidates: list[ProjectCandidate] = []
        for root in roots:
            root = Path(root)
            if not root.is_dir():
                logger.debug("Skipping missing scan root %s", root)
                continue
            self._scan_directory(root, 0, candidates)

        found: list[Project] = []
        created: list[Project] = []
        seen: set[str] = set()
        for candidate in candidates:
            if candidate.path in seen:
                continue
            seen.add(candidate.path)
            existing = self._cache.get(candidate.path) or self._store.get_project_by_path(
                candidate.path
            )
            if existing is not None:
                found.append(existing)
                continue
            project = self._new_project(candidate)
            created.append(project)
            found.append(project)

        self._store.insert_projects(created)
        for project in found:
            self._cache[project.path] = project
        logger.info(
            "Scan found %d projects (%d new) under %d roots",
            len(found),
            len(created),
            len(roots),
        )
        return found

    def _scan_directory(
        self, directory: Path, depth: int, results: list[ProjectCandidate]
    ) -> None:
        if depth >= MAX_SCAN_DEPTH:
            return
        candidate = self._analyze(directory)
        if candidate is not None and candidate.confidence > SCAN_CONFIDENCE:
            results.append(candidate)
            return
        try:
            children = sorted(
                entry
                for entry in directory.iterdir()
                if entry.is_dir()
                and not entry.name.startswith(".")
                and entry.name not in _SKIPPED_SCAN_DIRS
            )
        except OSError as exc:
            logger.debug("Cannot scan %s: %s", directory, exc)
            return
        for child in children:
            self._scan_directory(child, depth + 1, results)

    def _materialize(self, candidate: ProjectCandidate) -> Project:
        existing = self._store.get_project_by_path(candidate.path)
        if existing is not None:
            self._cache[existing.path] = existing
            self._touch(existing)
            return existing

        project = self._new_project(candidate)
        try:
            self._store.insert_project(project)
        except DuplicateRecordError:
            # Another writer registered the same path first.
            existing = self._store.get_project_by_path(candidate.path)
            if existing is None:
                raise
            project = existing
        else:
            logger.info("Created new project: %s at %s", project.name, project.path)
        self._cache[project.path] = project
        return project

    def _new_project(self, candidate: ProjectCandidate) -> Project:
        now = self._clock()
        return Project(
            id=uuid.uuid4().hex,
            name=candidate.name,
            path=candidate.path,
            git_remote_url=candidate.metadata.get("git", {}).get("remote_url"),
            tags=[candidate.kind],
            color=random.choice(PROJECT_COLORS),
            created_at=now,
            updated_at=now,
        )

    def _touch(self, project: Project) -> None:
        try:
            self._store.touch_project(project.id, self._clock())
        except StoreError as exc:
            logger.warning("Could not record activity for project %s: %s", project.id, exc)
