"""Paginated, searchable view over the clipboard history.

Only one window of rows is held in memory. The window is refetched from
the store whenever it is marked dirty or the cursor leaves it, and it is
re-anchored so the cursor sits in the middle of the screen.
"""

import logging
from dataclasses import dataclass, field

from clipstash.models import ClipboardEntry
from clipstash.storage import StorageManager

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SIZE = 20


@dataclass
class ViewportState:
    total: int = 0
    cursor: int = 0
    viewport_offset: int = 0
    window: list[ClipboardEntry] = field(default_factory=list)
    window_size: int = DEFAULT_WINDOW_SIZE
    dirty: bool = True
    search_query: str = ""
    search_mode: bool = False

    def cursor_in_window(self) -> bool:
        return self.viewport_offset <= self.cursor < self.viewport_offset + len(self.window)


def anchor_offset(cursor: int, total: int, window_size: int) -> int:
    """Viewport offset that puts ``cursor`` mid-window without scrolling past either end."""
    half = window_size // 2
    if cursor < half:
        return 0
    return max(0, min(cursor - half, total - window_size))


class Browser:
    def __init__(
        self,
        storage: StorageManager,
        window_size: int = DEFAULT_WINDOW_SIZE,
        include_expired: bool = False,
    ):
        self._storage = storage
        self._include_expired = include_expired
        self.state = ViewportState(window_size=max(1, window_size))
        self.refresh_total()

    @property
    def query(self) -> str | None:
        return self.state.search_query or None

    def refresh_total(self) -> None:
        state = self.state
        state.total = self._storage.count(self.query, self._include_expired)
        self._clamp_cursor()
        state.dirty = True

    def _clamp_cursor(self) -> None:
        state = self.state
        if state.cursor >= state.total:
            state.cursor = max(0, state.total - 1)

    def set_window_size(self, window_size: int) -> None:
        window_size = max(1, window_size)
        if window_size != self.state.window_size:
            self.state.window_size = window_size
            self.state.dirty = True

    def resync(self) -> bool:
        """Reload the window if stale. Returns True when a fetch happened."""
        state = self.state
        if not state.dirty and state.cursor_in_window():
            return False
        if not state.dirty and state.total == 0:
            return False

        state.viewport_offset = anchor_offset(state.cursor, state.total, state.window_size)
        state.window = self._storage.fetch_window(
            state.viewport_offset, state.window_size, self.query, self._include_expired
        )
        state.dirty = False

        # Rows vanished underneath us (another process deleted or expired them)
        if state.total and not state.cursor_in_window():
            logger.debug("Window came back short, recounting")
            state.total = self._storage.count(self.query, self._include_expired)
            self._clamp_cursor()
            state.viewport_offset = anchor_offset(state.cursor, state.total, state.window_size)
            state.window = self._storage.fetch_window(
                state.viewport_offset, state.window_size, self.query, self._include_expired
            )
        return True

    def visible(self) -> list[tuple[int, ClipboardEntry]]:
        """(global index, entry) pairs for the current window."""
        self.resync()
        offset = self.state.viewport_offset
        return [(offset + i, entry) for i, entry in enumerate(self.state.window)]

    def selected(self) -> ClipboardEntry | None:
        self.resync()
        state = self.state
        if not state.cursor_in_window():
            return None
        return state.window[state.cursor - state.viewport_offset]

    def move(self, delta: int) -> None:
        """Move the cursor, wrapping around at either end."""
        state = self.state
        if state.total == 0:
            return
        state.cursor = (state.cursor + delta) % state.total

    def page(self, direction: int) -> None:
        state = self.state
        if state.total == 0:
            return
        target = state.cursor + direction * state.window_size
        state.cursor = max(0, min(state.total - 1, target))

    def home(self) -> None:
        self.state.cursor = 0

    def end(self) -> None:
        self.state.cursor = max(0, self.state.total - 1)

    def enter_search(self) -> None:
        state = self.state
        state.search_mode = True
        state.search_query = ""
        state.cursor = 0
        self.refresh_total()

    def exit_search(self, keep_query: bool = True) -> None:
        state = self.state
        state.search_mode = False
        if not keep_query and state.search_query:
            state.search_query = ""
            state.cursor = 0
            self.refresh_total()

    def _query_changed(self) -> None:
        self.state.cursor = 0
        self.refresh_total()

    def search_input(self, text: str) -> None:
        self.state.search_query += text
        self._query_changed()

    def search_backspace(self) -> None:
        if not self.state.search_query:
            return
        self.state.search_query = self.state.search_query[:-1]
        self._query_changed()

    def delete_selected(self) -> ClipboardEntry | None:
        entry = self.selected()
        if entry is None:
            return None
        state = self.state
        if self._storage.delete_entry(entry.id):
            logger.info("Deleted entry %d from browser", entry.id)
            state.total = max(0, state.total - 1)
            self._clamp_cursor()
            state.dirty = True
        else:
            # Removed by another process; the stored count may have moved too
            self.refresh_total()
        return entry

    def copy_selected(self) -> ClipboardEntry | None:
        entry = self.selected()
        if entry is None:
            return None
        copied = self._storage.copy(entry.id)
        if copied.id != entry.id or copied.last_accessed != entry.last_accessed:
            self.state.dirty = True
        return copied
