"""Sensitive content detection for clipboard captures."""

import re
from dataclasses import dataclass, field
from enum import Enum


class SensitiveType(Enum):
    """Types of sensitive data that can be detected."""

    CUSTOM = "custom"
    API_KEY = "api_key"
    PASSWORD = "password"
    PRIVATE_KEY = "private_key"
    TOKEN = "token"


@dataclass
class SensitiveMatch:
    """A detected sensitive data match."""

    sensitive_type: SensitiveType
    start: int
    end: int


# Built-in secret patterns, enabled with CLIPSTASH_REDACT_BUILTIN
BUILTIN_PATTERNS: dict[SensitiveType, list[re.Pattern]] = {
    SensitiveType.API_KEY: [
        re.compile(r"sk-[a-zA-Z0-9]{20,}", re.ASCII),  # OpenAI
        re.compile(r"sk-proj-[a-zA-Z0-9_-]{20,}", re.ASCII),  # OpenAI project keys
        re.compile(r"AKIA[A-Z0-9]{16}", re.ASCII),  # AWS Access Key
        re.compile(r"ghp_[a-zA-Z0-9]{36}", re.ASCII),  # GitHub PAT
        re.compile(r"gho_[a-zA-Z0-9]{36}", re.ASCII),  # GitHub OAuth
        re.compile(r"github_pat_[a-zA-Z0-9_]{22,}", re.ASCII),  # GitHub fine-grained PAT
        re.compile(r"xox[baprs]-[a-zA-Z0-9-]{10,}", re.ASCII),  # Slack tokens
        re.compile(r"AIza[a-zA-Z0-9_-]{35}", re.ASCII),  # Google API Key
        re.compile(r"sk_live_[a-zA-Z0-9]{24,}", re.ASCII),  # Stripe live
        re.compile(r"rk_live_[a-zA-Z0-9]{24,}", re.ASCII),  # Stripe restricted
    ],
    SensitiveType.PASSWORD: [
        re.compile(r"(?:password|passwd|pwd|secret|api_key|apikey)[=:\s]+['\"]?(\S{6,})['\"]?", re.IGNORECASE),
    ],
    SensitiveType.PRIVATE_KEY: [
        re.compile(r"-----BEGIN [A-Z ]*PRIVATE KEY-----", re.ASCII),
    ],
    SensitiveType.TOKEN: [
        re.compile(r"eyJ[a-zA-Z0-9_-]{10,}\.[a-zA-Z0-9_-]{10,}\.[a-zA-Z0-9_-]{10,}", re.ASCII),  # JWT
        re.compile(r"Bearer\s+[a-zA-Z0-9_-]{20,}", re.ASCII),  # Bearer token
    ],
}


@dataclass
class SensitivityFilter:
    """Patterns that keep secrets out of the history.

    Built once from configuration and handed to the storage layer. Only
    textual content is ever scanned.
    """

    patterns: dict[SensitiveType, list[re.Pattern]] = field(default_factory=dict)

    @classmethod
    def from_config(cls, regex: str | None = None, builtin: bool = False) -> "SensitivityFilter":
        """Build a filter from a user regex and/or the built-in patterns.

        Raises:
            re.error: If ``regex`` does not compile.
        """
        patterns: dict[SensitiveType, list[re.Pattern]] = {}
        if regex:
            patterns[SensitiveType.CUSTOM] = [re.compile(regex)]
        if builtin:
            for sensitive_type, compiled in BUILTIN_PATTERNS.items():
                patterns.setdefault(sensitive_type, []).extend(compiled)
        return cls(patterns)

    @property
    def enabled(self) -> bool:
        return any(self.patterns.values())

    def detect(self, text: str) -> list[SensitiveMatch]:
        """Detect sensitive data in text.

        Args:
            text: The text to scan.

        Returns:
            Non-overlapping matches sorted by start position.
        """
        matches: list[SensitiveMatch] = []

        for sensitive_type, patterns in self.patterns.items():
            for pattern in patterns:
                for match in pattern.finditer(text):
                    # Password patterns capture the value itself in group 1
                    group = 1 if sensitive_type == SensitiveType.PASSWORD and match.lastindex else 0
                    matches.append(SensitiveMatch(sensitive_type, match.start(group), match.end(group)))

        matches.sort(key=lambda m: m.start)
        non_overlapping: list[SensitiveMatch] = []
        last_end = -1
        for match in matches:
            if match.start >= last_end:
                non_overlapping.append(match)
                last_end = match.end

        return non_overlapping


def get_sensitivity_summary(matches: list[SensitiveMatch]) -> str:
    """Human-readable summary of detected types, like ``"Api Key, Token"``."""
    types = sorted(set(m.sensitive_type.value.replace("_", " ").title() for m in matches))
    return ", ".join(types)
