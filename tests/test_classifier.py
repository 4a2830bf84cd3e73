"""Tests for activity classification and file path extraction."""

import pytest

from devpulse.classifier import RULES, classify, extract_file_path, matching_rule
from devpulse.models import ActivityType


@pytest.mark.parametrize(
    ("app_name", "title", "expected"),
    [
        ("Visual Studio Code", "main.ts - DevPulse", ActivityType.CODE),
        ("WebStorm", "index.js", ActivityType.CODE),
        ("vim", "", ActivityType.CODE),
        ("Terminal", "npm run build", ActivityType.BUILD),
        ("iTerm2", "webpack --watch", ActivityType.BUILD),
        ("Terminal", "npm test", ActivityType.TEST),
        ("kitty", "jest --watch", ActivityType.TEST),
        ("Terminal", "lldb ./server", ActivityType.DEBUG),
        ("Terminal", "~/src/app", ActivityType.CODE),
        ("Docker Desktop", "Containers", ActivityType.BUILD),
        ("WinDbg", "crash.dmp", ActivityType.DEBUG),
        ("Google Chrome", "DevTools - localhost:3000", ActivityType.CODE),
        ("Firefox", "Array.prototype.map() - MDN Web Docs", ActivityType.RESEARCH),
        ("Safari", "python - How to sort a dict - Stack Overflow", ActivityType.RESEARCH),
        ("Google Chrome", "Lo-fi beats - YouTube", ActivityType.BROWSING),
        ("Safari", "Apple", ActivityType.BROWSING),
        ("Slack", "general", ActivityType.COMMUNICATION),
        ("Microsoft Teams", "Standup", ActivityType.COMMUNICATION),
        ("Figma", "Dashboard mockups", ActivityType.DESIGN),
        ("Microsoft Word", "Report.docx", ActivityType.DOCUMENT),
        ("Obsidian", "Daily note", ActivityType.DOCUMENT),
        ("Spotify", "Playlist", ActivityType.BROWSING),
        ("Finder", "Downloads", ActivityType.OTHER),
    ],
)
def test_classify_known_apps(app_name: str, title: str, expected: ActivityType) -> None:
    """Test classification of common applications."""
    assert classify(app_name, title) is expected


@pytest.mark.parametrize(
    ("app_name", "title"),
    [
        ("", ""),
        (None, None),
        ("", "npm run build"),
        ("UnknownApp", ""),
        ("   ", "\t\n"),
        ("ÄÖÜ 日本語", "😀 emoji title"),
        ("x" * 10_000, "y" * 10_000),
    ],
)
def test_classify_is_total(app_name, title) -> None:
    """Test that any input yields one of the ten categories."""
    assert classify(app_name, title) in set(ActivityType)


def test_classify_unknown_app_is_other() -> None:
    assert classify("", "") is ActivityType.OTHER
    assert classify("Calculator", "") is ActivityType.OTHER


def test_rule_order_is_pinned() -> None:
    """Test the documented evaluation order of rule groups."""
    assert [rule.name for rule in RULES] == [
        "editor",
        "terminal",
        "build-tool",
        "debugger",
        "browser",
        "communication",
        "design",
        "document",
        "media",
    ]


def test_editor_group_wins_over_terminal_group() -> None:
    """An app matching both lists is an editor, so the build title is ignored."""
    assert matching_rule("Terminal - vim").name == "editor"
    assert classify("Terminal - vim", "npm run build") is ActivityType.CODE
    assert classify("Terminal", "npm run build") is ActivityType.BUILD


def test_terminal_group_wins_over_build_tool_group() -> None:
    """A terminal named after a build tool is classified by the terminal rules."""
    assert matching_rule("docker-terminal").name == "terminal"
    assert classify("docker-terminal", "") is ActivityType.CODE
    assert classify("gradle-terminal", "pytest -x") is ActivityType.TEST


def test_terminal_build_keywords_checked_before_test_keywords() -> None:
    assert classify("Terminal", "yarn test") is ActivityType.BUILD


def test_browser_devtools_checked_before_research() -> None:
    assert classify("Google Chrome", "Console - Stack Overflow") is ActivityType.CODE


def test_terminal_documentation_defaults_to_code() -> None:
    """Reading docs in a terminal is still counted as code."""
    assert classify("Terminal", "man git-rebase - documentation") is ActivityType.CODE


def test_broad_editor_keywords_are_preserved() -> None:
    """'code' and 'stable' match anywhere in the app name."""
    assert classify("Xcode", "Project.swift") is ActivityType.CODE
    assert classify("Stable Diffusion", "") is ActivityType.CODE


@pytest.mark.parametrize(
    ("title", "expected"),
    [
        ("main.ts - proj - Visual Studio Code", "main.ts"),
        ("[devpulse] - Main.kt", "Main.kt"),
        ("main.py (~/src/app) - Sublime Text", "main.py"),
        ("vim ~/src/app/server.go", "server.go"),
        ("README.md - Atom", "README.md"),
        ("notes.txt", "notes.txt"),
    ],
)
def test_extract_file_path(title: str, expected: str) -> None:
    """Test extraction from editor-specific and generic title formats."""
    assert extract_file_path(title) == expected


@pytest.mark.parametrize("title", ["", None, "localhost:3000", "Slack - general", "Downloads"])
def test_extract_file_path_without_file(title) -> None:
    assert extract_file_path(title) is None


@pytest.mark.parametrize("filename", ["main.ts", "Cargo.toml", "index.test.js", "a.b"])
def test_extract_file_path_is_idempotent_on_bare_names(filename: str) -> None:
    extracted = extract_file_path(filename)
    assert extracted == filename
    assert extract_file_path(extracted) == filename


def test_extract_file_path_misfires_on_versioned_titles() -> None:
    """Any title ending in word.ext is taken as a file name."""
    assert extract_file_path("Release notes v1.2") == "Release notes v1.2"
