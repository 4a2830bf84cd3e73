"""Foreground window probes, one per platform, behind a uniform interface."""

from __future__ import annotations

import ctypes
import logging
import re
import subprocess
import sys
from datetime import datetime
from typing import Callable, Optional

import psutil

from .models import WindowSample

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class WindowProbe:
    """Returns a WindowSample for the focused window, or None when unavailable.

    ``sample`` never raises: a missing tool, a timeout or unparseable output
    is logged and reported as None so the caller can skip the tick.
    """

    def __init__(self, timeout: float = 1.0, clock: Clock = datetime.now) -> None:
        self.timeout = timeout
        self._clock = clock

    def sample(self) -> Optional[WindowSample]:
        try:
            window = self._query()
        except subprocess.TimeoutExpired:
            logger.warning("Window probe timed out after %.1fs; skipping tick.", self.timeout)
            return None
        except (OSError, subprocess.SubprocessError) as exc:
            logger.debug("Window probe failed: %s", exc)
            return None
        except Exception:
            logger.exception("Unexpected window probe failure.")
            return None
        if window is None:
            return None
        app_name, window_title, pid = window
        if not app_name:
            return None
        return WindowSample(
            app_name=app_name,
            window_title=window_title or "",
            sampled_at=self._clock(),
            pid=pid,
        )

    def _query(self) -> Optional[tuple[str, str, Optional[int]]]:
        """Return ``(app_name, window_title, pid)``; subclasses must override."""
        raise NotImplementedError

    def _run(self, *args: str) -> Optional[str]:
        result = subprocess.run(
            list(args),
            capture_output=True,
            text=True,
            timeout=self.timeout,
        )
        if result.returncode != 0:
            return None
        return result.stdout


def process_name(pid: Optional[int]) -> Optional[str]:
    if not pid:
        return None
    try:
        return psutil.Process(pid).name()
    except (psutil.Error, ProcessLookupError):
        return None


class UnsupportedWindowProbe(WindowProbe):
    def _query(self) -> Optional[tuple[str, str, Optional[int]]]:
        return None


class WindowsWindowProbe(WindowProbe):
    """Retrieves the foreground window title and process name."""

    def __init__(self, timeout: float = 1.0, clock: Clock = datetime.now) -> None:
        super().__init__(timeout=timeout, clock=clock)
        self._user32 = ctypes.windll.user32  # type: ignore[attr-defined]

    def _query(self) -> Optional[tuple[str, str, Optional[int]]]:
        from ctypes import wintypes

        hwnd = self._user32.GetForegroundWindow()
        if not hwnd:
            return None

        length = self._user32.GetWindowTextLengthW(hwnd)
        buffer = ctypes.create_unicode_buffer(length + 1)
        self._user32.GetWindowTextW(hwnd, buffer, length + 1)
        window_title = buffer.value.strip()

        pid = wintypes.DWORD()
        self._user32.GetWindowThreadProcessId(hwnd, ctypes.byref(pid))
        name = process_name(pid.value)
        if name is None:
            return None
        return name, window_title, pid.value or None


_APPLESCRIPT = """
tell application "System Events"
    set frontApp to name of first application process whose frontmost is true
    set frontWindow to ""
    try
        set frontWindow to name of first window of first application process whose frontmost is true
    end try
    return frontApp & "|" & frontWindow
end tell
"""


class MacWindowProbe(WindowProbe):
    """Asks System Events for the frontmost application and its first window."""

    def _query(self) -> Optional[tuple[str, str, Optional[int]]]:
        output = self._run("osascript", "-e", _APPLESCRIPT)
        if not output:
            return None
        return parse_osascript_output(output)


def parse_osascript_output(output: str) -> Optional[tuple[str, str, Optional[int]]]:
    app_name, _, title = output.strip().partition("|")
    app_name = app_name.strip()
    if not app_name:
        return None
    return app_name, title.strip(), None


_WINDOW_ID_PATTERN = re.compile(r"0x[0-9a-fA-F]+")
_WM_CLASS_PATTERN = re.compile(r'"([^"]*)",\s*"([^"]+)"')
_WM_NAME_PATTERN = re.compile(r'=\s*"(.*)"')
_WM_PID_PATTERN = re.compile(r"=\s*(\d+)")


class LinuxWindowProbe(WindowProbe):
    """X11 probe using xdotool, falling back to xprop."""

    def _query(self) -> Optional[tuple[str, str, Optional[int]]]:
        try:
            window = self._query_xdotool()
        except FileNotFoundError:
            window = None
        if window is not None:
            return window
        return self._query_xprop()

    def _query_xdotool(self) -> Optional[tuple[str, str, Optional[int]]]:
        title = self._run("xdotool", "getactivewindow", "getwindowname")
        if title is None:
            return None
        pid_output = self._run("xdotool", "getactivewindow", "getwindowpid")
        pid = int(pid_output.strip()) if pid_output and pid_output.strip().isdigit() else None
        name = process_name(pid)
        if name is None:
            return None
        return name, title.strip(), pid

    def _query_xprop(self) -> Optional[tuple[str, str, Optional[int]]]:
        root = self._run("xprop", "-root", "_NET_ACTIVE_WINDOW")
        match = _WINDOW_ID_PATTERN.search(root or "")
        if not match:
            return None
        props = self._run("xprop", "-id", match.group(0), "WM_CLASS", "WM_NAME", "_NET_WM_PID")
        if props is None:
            return None
        return parse_xprop_output(props)


def parse_xprop_output(output: str) -> Optional[tuple[str, str, Optional[int]]]:
    app_name = ""
    title = ""
    pid: Optional[int] = None
    for line in output.splitlines():
        if line.startswith("WM_CLASS"):
            match = _WM_CLASS_PATTERN.search(line)
            if match:
                app_name = match.group(2)
        elif line.startswith("WM_NAME"):
            match = _WM_NAME_PATTERN.search(line)
            if match:
                title = match.group(1)
        elif line.startswith("_NET_WM_PID"):
            match = _WM_PID_PATTERN.search(line)
            if match:
                pid = int(match.group(1))
    app_name = process_name(pid) or app_name
    if not app_name:
        return None
    return app_name, title, pid


def create_window_probe(timeout: float = 1.0, clock: Clock = datetime.now) -> WindowProbe:
    """Pick the window probe for the running platform."""
    if sys.platform == "win32":
        return WindowsWindowProbe(timeout=timeout, clock=clock)
    if sys.platform == "darwin":
        return MacWindowProbe(timeout=timeout, clock=clock)
    if sys.platform.startswith("linux"):
        return LinuxWindowProbe(timeout=timeout, clock=clock)
    logger.warning("No window probe for %s; activity will not be sampled.", sys.platform)
    return UnsupportedWindowProbe(timeout=timeout, clock=clock)
