import os
import re
from dataclasses import dataclass, field
from pathlib import Path

from clipstash.models import MimePreference


def _cache_home() -> Path:
    xdg = os.environ.get("XDG_CACHE_HOME")
    return Path(xdg) if xdg else Path.home() / ".cache"


DATA_DIR = Path(os.environ.get("CLIPSTASH_DATA_DIR", _cache_home() / "clipstash"))
DB_PATH = Path(os.environ.get("CLIPSTASH_DB_PATH", DATA_DIR / "db"))
LOG_PATH = DATA_DIR / "clipstash.log"

POLL_INTERVAL = 0.5  # seconds between clipboard checks
PROBE_TIMEOUT = 1.0  # seconds allowed for a focused-app probe
BROWSER_INPUT_TIMEOUT_MS = 100
DEFAULT_MAX_ITEMS = 750
DEFAULT_MAX_DEDUPE_SEARCH = 100
DEFAULT_MAX_SIZE = 5_000_000
DEFAULT_PREVIEW_WIDTH = 100

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h|d)?\s*$")
_DURATION_UNITS = {"ms": 0.001, "s": 1, "m": 60, "h": 3600, "d": 86400}


def _parse_int(name: str, default: int | None, lo: int, hi: int) -> int | None:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(lo, min(hi, value))


def parse_duration(raw: str) -> float:
    """Parse ``90``, ``30s``, ``5m``, ``2h``, ``1d`` or ``250ms`` into seconds."""
    match = _DURATION_RE.match(raw)
    if not match:
        raise ValueError(f"invalid duration: {raw!r}")
    number, unit = match.groups()
    seconds = float(number) * _DURATION_UNITS[unit or "s"]
    if seconds <= 0:
        raise ValueError(f"duration must be positive: {raw!r}")
    return seconds


def _parse_expire_after() -> float | None:
    raw = os.environ.get("CLIPSTASH_EXPIRE_AFTER")
    if not raw:
        return None
    try:
        return parse_duration(raw)
    except ValueError:
        return None


def _parse_excluded_apps() -> list[str]:
    raw = os.environ.get("CLIPSTASH_EXCLUDED_APPS", "")
    return [p.strip() for p in raw.split(",") if p.strip()]


def _parse_mime_preference() -> MimePreference:
    raw = os.environ.get("CLIPSTASH_MIME_TYPE", "any").strip().lower()
    try:
        return MimePreference(raw)
    except ValueError:
        return MimePreference.ANY


def _parse_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    db_path: Path = DB_PATH
    max_items: int = DEFAULT_MAX_ITEMS
    max_dedupe_search: int = DEFAULT_MAX_DEDUPE_SEARCH
    min_size: int | None = None
    max_size: int = DEFAULT_MAX_SIZE
    preview_width: int = DEFAULT_PREVIEW_WIDTH
    expire_after: float | None = None
    excluded_apps: list[str] = field(default_factory=list)
    mime_preference: MimePreference = MimePreference.ANY
    sensitive_regex: str | None = None
    redact_builtin: bool = False
    poll_interval: float = POLL_INTERVAL

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            db_path=DB_PATH,
            max_items=_parse_int("CLIPSTASH_MAX_ITEMS", DEFAULT_MAX_ITEMS, 1, 1_000_000),
            max_dedupe_search=_parse_int("CLIPSTASH_MAX_DEDUPE_SEARCH", DEFAULT_MAX_DEDUPE_SEARCH, 0, 1_000_000),
            min_size=_parse_int("CLIPSTASH_MIN_SIZE", None, 1, DEFAULT_MAX_SIZE),
            max_size=_parse_int("CLIPSTASH_MAX_SIZE", DEFAULT_MAX_SIZE, 1, 1_000_000_000),
            preview_width=_parse_int("CLIPSTASH_PREVIEW_WIDTH", DEFAULT_PREVIEW_WIDTH, 10, 10_000),
            expire_after=_parse_expire_after(),
            excluded_apps=_parse_excluded_apps(),
            mime_preference=_parse_mime_preference(),
            sensitive_regex=os.environ.get("CLIPSTASH_SENSITIVE_REGEX") or None,
            redact_builtin=_parse_flag("CLIPSTASH_REDACT_BUILTIN"),
        )
