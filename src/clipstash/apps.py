"""Focused-application detection and the excluded-app policy."""

import json
import logging
import re
import shutil
import subprocess
import sys
from typing import Protocol

from clipstash.config import PROBE_TIMEOUT

logger = logging.getLogger(__name__)


class AppOracle(Protocol):
    def focused_app_name(self) -> str | None: ...


class NullAppOracle:
    def focused_app_name(self) -> str | None:
        return None


class WorkspaceAppOracle:
    """Frontmost application on macOS via NSWorkspace."""

    def focused_app_name(self) -> str | None:
        try:
            from AppKit import NSWorkspace

            app = NSWorkspace.sharedWorkspace().frontmostApplication()
        except Exception:
            logger.debug("NSWorkspace probe failed", exc_info=True)
            return None
        if app is None:
            return None
        name = app.bundleIdentifier() or app.localizedName()
        return str(name) if name else None


class HyprlandAppOracle:
    """Focused window class on Hyprland via ``hyprctl activewindow -j``."""

    def __init__(self, timeout: float = PROBE_TIMEOUT):
        self._timeout = timeout

    def focused_app_name(self) -> str | None:
        try:
            result = subprocess.run(
                ["hyprctl", "activewindow", "-j"],
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except (OSError, subprocess.TimeoutExpired):
            logger.debug("hyprctl probe failed", exc_info=True)
            return None
        if result.returncode != 0:
            return None
        try:
            window = json.loads(result.stdout or "{}")
        except json.JSONDecodeError:
            return None
        if not isinstance(window, dict):
            return None
        return window.get("class") or window.get("initialClass") or None


def detect_app_oracle() -> AppOracle:
    if sys.platform == "darwin":
        return WorkspaceAppOracle()
    if shutil.which("hyprctl"):
        return HyprlandAppOracle()
    return NullAppOracle()


def _compile_pattern(pattern: str) -> re.Pattern:
    if pattern.startswith("^") and pattern.endswith("$") and len(pattern) >= 2:
        return re.compile(re.escape(pattern[1:-1]))
    if "*" in pattern:
        return re.compile(".*".join(re.escape(part) for part in pattern.split("*")))
    return re.compile(re.escape(pattern))


class AppExclusion:
    """Application names whose clipboard captures are never stored.

    A pattern is an exact name, an explicitly anchored ``^name$``, or a
    ``*`` wildcard such as ``*keepass*``. Matching is case-sensitive and
    always covers the whole name.
    """

    def __init__(self, patterns: list[str]):
        self.patterns = [p for p in patterns if p]
        self._compiled = [_compile_pattern(p) for p in self.patterns]

    def __bool__(self) -> bool:
        return bool(self._compiled)

    def matches(self, app_name: str | None) -> bool:
        if not app_name:
            return False
        return any(c.fullmatch(app_name) for c in self._compiled)
