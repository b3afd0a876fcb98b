from dataclasses import dataclass
from enum import Enum


class MimePreference(str, Enum):
    ANY = "any"
    TEXT = "text"
    IMAGE = "image"


class RejectReason(str, Enum):
    EMPTY = "empty"
    TOO_SMALL = "too_small"
    TOO_LARGE = "too_large"
    WHITESPACE = "whitespace"
    SENSITIVE = "sensitive"
    EXCLUDED_APP = "excluded_app"

    @property
    def is_policy(self) -> bool:
        return self in (RejectReason.SENSITIVE, RejectReason.EXCLUDED_APP)


@dataclass
class ClipboardEntry:
    id: int | None
    contents: bytes
    mime: str | None
    content_hash: int
    last_accessed: float
    expires_at: float | None = None
    is_expired: bool = False

    @property
    def is_text(self) -> bool:
        return self.mime is not None and (self.mime.startswith("text/") or self.mime == "application/json")

    @property
    def is_image(self) -> bool:
        return self.mime is not None and self.mime.startswith("image/")
