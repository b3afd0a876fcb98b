"""Exceptions raised by the clipboard store and its collaborators."""

from clipstash.models import RejectReason


class StashError(Exception):
    """Base class for all clipstash errors."""


class RejectedError(StashError):
    """Input was refused before it reached the database.

    The content should still be treated as seen by callers that poll,
    otherwise the same rejected snapshot is retried on every tick.
    """

    def __init__(self, reason: RejectReason, detail: str = ""):
        self.reason = reason
        self.detail = detail
        message = reason.value if not detail else f"{reason.value}: {detail}"
        super().__init__(message)


class NotFoundError(StashError):
    def __init__(self, entry_id: int):
        self.entry_id = entry_id
        super().__init__(f"no entry with id {entry_id}")


class InvalidIdError(StashError):
    pass


class NothingToDeleteError(StashError):
    pass


class ImportFormatError(StashError):
    def __init__(self, lineno: int, message: str):
        self.lineno = lineno
        super().__init__(f"line {lineno}: {message}")


class MigrationError(StashError):
    pass


class ClipboardError(StashError):
    pass


class ClipboardEmpty(ClipboardError):
    """The clipboard holds nothing. Expected, not worth an error log."""
