"""Heuristic activity classification and file path extraction from window titles.

Classification is an ordered list of rules. Each rule tests the lower-cased
application name; the first rule that matches decides the category, possibly
after looking at the window title. Rule order matters more than keyword
specificity: an application that matches several groups is classified by the
earliest one.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from .models import ActivityType

CODE_EDITORS = (
    "visual studio code",
    "vscode",
    "webstorm",
    "intellij",
    "pycharm",
    "sublime text",
    "atom",
    "vim",
    "emacs",
    "neovim",
    "code",
    "stable",
)
TERMINALS = (
    "terminal",
    "iterm",
    "cmd",
    "powershell",
    "bash",
    "zsh",
    "fish",
    "iterm2",
    "kitty",
    "alacritty",
)
TERMINAL_BUILD_KEYWORDS = ("npm run", "yarn", "build", "webpack", "gradle", "maven")
TERMINAL_TEST_KEYWORDS = ("test", "jest", "mocha", "pytest", "cargo test")
TERMINAL_DEBUG_KEYWORDS = ("debug", "gdb", "lldb")
BUILD_TOOLS = ("docker", "gradle", "maven", "xcode", "android studio")
DEBUGGERS = ("debugger", "gdb", "lldb", "windbg")
BROWSERS = ("chrome", "firefox", "safari", "brave browser", "brave", "edge", "opera")
DEVTOOLS_KEYWORDS = ("developer tools", "devtools", "inspect", "console", "elements", "network")
RESEARCH_KEYWORDS = (
    # documentation
    "documentation", "docs.", "/docs/", "api reference", "readme", "guide",
    # learning platforms
    "tutorial", "course", "learn", "training", "how to", "walkthrough",
    "udemy", "coursera", "pluralsight", "codecademy", "freecodecamp",
    # developer resources
    "stackoverflow", "stack overflow", "github", "gitlab", "bitbucket",
    "developer.mozilla.org", "mdn web docs", "mdn", "mozilla",
    "reactjs.org", "vuejs.org", "angular.io", "nodejs.org",
    # technical writing
    "medium.com", "dev.to", "hashnode", "blog", "article", "post",
    "npm", "pypi", "package", "library", "framework", "api",
    # problem solving
    "error", "solution", "fix", "troubleshoot", "debug",
    "issue", "problem", "help", "resolve", "solved",
)
CASUAL_KEYWORDS = (
    "youtube", "netflix", "twitter", "facebook", "instagram", "tiktok",
    "reddit", "linkedin", "discord", "whatsapp", "telegram",
    "news", "sport", "entertainment", "shopping", "amazon", "ebay",
    "social", "video", "music", "stream",
)
COMMUNICATION_APPS = (
    "slack", "discord", "teams", "zoom", "mail", "message", "skype", "telegram", "whatsapp",
)
DESIGN_APPS = ("figma", "sketch", "photoshop", "illustrator", "canva", "framer", "adobe")
DOCUMENT_APPS = (
    "preview", "pages", "word", "excel", "powerpoint", "keynote", "numbers", "notion",
    "obsidian", "microsoft word", "microsoft excel", "microsoft powerpoint", "textedit", "notes",
)
MEDIA_APPS = ("spotify", "apple music", "vlc", "quicktime", "music", "tv", "netflix")


def _contains_any(value: str, keywords: Sequence[str]) -> bool:
    return any(keyword in value for keyword in keywords)


def _terminal_activity(title: str) -> ActivityType:
    if _contains_any(title, TERMINAL_BUILD_KEYWORDS):
        return ActivityType.BUILD
    if _contains_any(title, TERMINAL_TEST_KEYWORDS):
        return ActivityType.TEST
    if _contains_any(title, TERMINAL_DEBUG_KEYWORDS):
        return ActivityType.DEBUG
    return ActivityType.CODE


def _browser_activity(title: str) -> ActivityType:
    if _contains_any(title, DEVTOOLS_KEYWORDS):
        return ActivityType.CODE
    if _contains_any(title, RESEARCH_KEYWORDS):
        return ActivityType.RESEARCH
    if _contains_any(title, CASUAL_KEYWORDS):
        return ActivityType.BROWSING
    return ActivityType.BROWSING


def _constant(activity_type: ActivityType) -> Callable[[str], ActivityType]:
    return lambda title: activity_type


@dataclass(frozen=True, slots=True)
class Rule:
    """Matches an application group and derives the activity from the title."""

    name: str
    app_keywords: tuple[str, ...]
    decide: Callable[[str], ActivityType]

    def matches(self, app_name: str) -> bool:
        return _contains_any(app_name, self.app_keywords)


RULES: tuple[Rule, ...] = (
    Rule("editor", CODE_EDITORS, _constant(ActivityType.CODE)),
    Rule("terminal", TERMINALS, _terminal_activity),
    Rule("build-tool", BUILD_TOOLS, _constant(ActivityType.BUILD)),
    Rule("debugger", DEBUGGERS, _constant(ActivityType.DEBUG)),
    Rule("browser", BROWSERS, _browser_activity),
    Rule("communication", COMMUNICATION_APPS, _constant(ActivityType.COMMUNICATION)),
    Rule("design", DESIGN_APPS, _constant(ActivityType.DESIGN)),
    Rule("document", DOCUMENT_APPS, _constant(ActivityType.DOCUMENT)),
    Rule("media", MEDIA_APPS, _constant(ActivityType.BROWSING)),
)


def matching_rule(app_name: Optional[str]) -> Optional[Rule]:
    """Return the first rule whose application group matches, if any."""
    app = (app_name or "").lower()
    for rule in RULES:
        if rule.matches(app):
            return rule
    return None


def classify(app_name: Optional[str], window_title: Optional[str]) -> ActivityType:
    """Classify a foreground window. Never raises; unknown apps are ``other``."""
    rule = matching_rule(app_name)
    if rule is None:
        return ActivityType.OTHER
    return rule.decide((window_title or "").lower())


_FILE_PATTERNS: tuple[re.Pattern[str], ...] = (
    # VS Code: "main.ts - folder - Visual Studio Code"
    re.compile(r"^(.+\.\w+)\s*-\s*.+\s*-\s*Visual Studio Code"),
    # JetBrains: "[project] - main.kt"
    re.compile(r"\[.+\]\s*-\s*(.+\.\w+)"),
    # Sublime Text: "main.py (~/src/app) - Sublime Text"
    re.compile(r"(.+\.\w+)\s*\(.+\)\s*-\s*Sublime Text"),
    # Trailing path component: "vim ~/src/app/main.py"
    re.compile(r".*[/\\]([^/\\]+\.\w+)$"),
    # Generic "name.ext" at the end, optionally followed by " - App"
    re.compile(r"([^/\\]+\.\w+)(?:\s*[-–—]\s*.+)?$"),
)


def extract_file_path(window_title: Optional[str]) -> Optional[str]:
    """Pull a file name or path out of a window title, or return None."""
    if not window_title:
        return None
    for pattern in _FILE_PATTERNS:
        match = pattern.search(window_title)
        if match and match.group(1):
            return match.group(1)
    return None
