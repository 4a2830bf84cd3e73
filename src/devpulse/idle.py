"""Idle time detection backed by the operating system where it is available."""

from __future__ import annotations

import ctypes
import logging
import re
import subprocess
import sys
from typing import Optional

logger = logging.getLogger(__name__)


class IdleTracker:
    """Reports milliseconds since the user last touched keyboard or mouse."""

    supported = True

    def idle_duration(self) -> int:
        """Return idle milliseconds; failures degrade to 0."""
        try:
            return max(0, int(self._query_idle_ms()))
        except Exception:
            logger.exception("Failed to query idle state; assuming not idle.")
            return 0

    def is_idle(self, threshold_ms: int) -> bool:
        return self.idle_duration() > threshold_ms

    def _query_idle_ms(self) -> int:
        """Milliseconds since the last input event; subclasses must override."""
        raise NotImplementedError


class NullIdleTracker(IdleTracker):
    """Used where no idle API exists; the user is never considered idle."""

    supported = False

    def _query_idle_ms(self) -> int:
        return 0


class WindowsIdleTracker(IdleTracker):
    """Detects idle state using Win32 APIs."""

    def __init__(self) -> None:
        from ctypes import wintypes

        class LASTINPUTINFO(ctypes.Structure):
            _fields_ = [("cbSize", wintypes.UINT), ("dwTime", wintypes.DWORD)]

        self._info_type = LASTINPUTINFO
        self._user32 = ctypes.windll.user32  # type: ignore[attr-defined]
        self._kernel32 = ctypes.windll.kernel32  # type: ignore[attr-defined]
        self._kernel32.GetTickCount.restype = ctypes.c_uint32

    def _query_idle_ms(self) -> int:
        last_input = self._info_type()
        last_input.cbSize = ctypes.sizeof(last_input)
        if not self._user32.GetLastInputInfo(ctypes.byref(last_input)):
            raise ctypes.WinError()  # type: ignore[attr-defined]
        # Both counters are 32-bit and wrap after ~49 days.
        elapsed = (self._kernel32.GetTickCount() - last_input.dwTime) & 0xFFFFFFFF
        return int(elapsed)


_HID_IDLE_PATTERN = re.compile(r'"HIDIdleTime"\s*=\s*(\d+)')


class MacIdleTracker(IdleTracker):
    """Reads HIDIdleTime (nanoseconds) from the IOHIDSystem registry entry."""

    def __init__(self, timeout: float = 1.0) -> None:
        self._timeout = timeout

    def _query_idle_ms(self) -> int:
        result = subprocess.run(
            ["ioreg", "-c", "IOHIDSystem", "-d", "4"],
            capture_output=True,
            text=True,
            timeout=self._timeout,
        )
        idle_ms = parse_hid_idle_ms(result.stdout)
        if result.returncode != 0 or idle_ms is None:
            logger.debug("ioreg returned no HIDIdleTime (exit %s)", result.returncode)
            return 0
        return idle_ms


def parse_hid_idle_ms(output: str) -> Optional[int]:
    match = _HID_IDLE_PATTERN.search(output or "")
    if not match:
        return None
    return int(match.group(1)) // 1_000_000


def create_idle_tracker(timeout: float = 1.0) -> IdleTracker:
    """Pick the idle tracker for the running platform."""
    if sys.platform == "win32":
        return WindowsIdleTracker()
    if sys.platform == "darwin":
        return MacIdleTracker(timeout=timeout)
    logger.info("Idle detection is not supported on %s; assuming never idle.", sys.platform)
    return NullIdleTracker()
