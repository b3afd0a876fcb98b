import asyncio
import heapq
import logging
import sqlite3
import time
from collections.abc import Callable

from clipstash.apps import AppExclusion, AppOracle, NullAppOracle
from clipstash.clipboard import Clipboard
from clipstash.config import Settings
from clipstash.errors import ClipboardEmpty, ClipboardError, NotFoundError, RejectedError
from clipstash.mime import TEXT_PLAIN, negotiate_mime
from clipstash.models import MimePreference
from clipstash.storage import StorageManager
from clipstash.utils import compute_hash

logger = logging.getLogger(__name__)


class WatchScheduler:
    """Polls the clipboard into the store and retires entries whose TTL elapsed.

    One cooperative loop: each pass handles due expirations, then polls,
    then sleeps until the poll interval or the next expiration, whichever
    comes first. The expiration heap caches the store's ``expires_at``
    column and is rebuilt from it on startup.
    """

    def __init__(
        self,
        storage: StorageManager,
        clipboard: Clipboard,
        settings: Settings,
        app_oracle: AppOracle | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._storage = storage
        self._clipboard = clipboard
        self._settings = settings
        self._oracle = app_oracle or NullAppOracle()
        self._exclusion = AppExclusion(settings.excluded_apps)
        self._clock = clock
        self._last_hash: int | None = None
        self._queue: list[tuple[float, int]] = []
        self._queued_ids: set[int] = set()
        self._unsaved: dict[int, float] = {}

    @property
    def last_hash(self) -> int | None:
        return self._last_hash

    @property
    def pending(self) -> list[tuple[float, int]]:
        return sorted(self._queue)

    def _push(self, expires_at: float, entry_id: int) -> None:
        heapq.heappush(self._queue, (expires_at, entry_id))
        self._queued_ids.add(entry_id)

    def rebuild_queue(self) -> int:
        """Reload pending expirations from the store, skipping ids already queued."""
        self._queue.clear()
        self._queued_ids.clear()

        first = self._storage.next_expiration()
        if first is None:
            return 0
        self._push(*first)
        for expires_at, entry_id in self._storage.pending_expirations():
            if entry_id not in self._queued_ids:
                self._push(expires_at, entry_id)

        logger.info("Loaded %d pending expirations", len(self._queue))
        return len(self._queue)

    def next_wakeup_delay(self) -> float:
        delay = self._settings.poll_interval
        if self._queue:
            delay = min(delay, max(0.0, self._queue[0][0] - self._clock()))
        return delay

    def read_clipboard(self) -> tuple[bytes, str]:
        preference = self._settings.mime_preference
        if preference is MimePreference.TEXT:
            return self._clipboard.read(TEXT_PLAIN)
        mime = negotiate_mime(self._clipboard.offered_types(), preference)
        if mime is None:
            raise ClipboardEmpty("no types offered")
        return self._clipboard.read(mime)

    def _live_hash(self) -> int | None:
        try:
            data, _ = self.read_clipboard()
        except ClipboardError:
            return None
        return compute_hash(data) if data else None

    def prime(self) -> None:
        """Treat whatever is on the clipboard at startup as already seen."""
        self._last_hash = self._live_hash()

    def expire_due(self) -> list[int]:
        now = self._clock()
        expired: list[int] = []
        live_hash: int | None = None
        live_checked = False

        while self._queue and self._queue[0][0] <= now:
            # Popped only once the store agrees, so a locked database is retried
            entry_id = self._queue[0][1]
            entry = self._storage.get_entry(entry_id)
            marked = entry is not None and self._storage.mark_expired(entry_id)
            heapq.heappop(self._queue)
            self._queued_ids.discard(entry_id)
            if not marked:
                continue
            expired.append(entry_id)
            logger.info("Entry %d expired", entry_id)

            # The expired content may still be sitting on the clipboard
            if not live_checked:
                live_hash = self._live_hash()
                live_checked = True
            if live_hash is not None and live_hash == entry.content_hash:
                try:
                    self._clipboard.clear()
                except ClipboardError as e:
                    logger.error("Failed to clear expired clipboard contents: %s", e)
                else:
                    logger.info("Cleared clipboard holding expired entry %d", entry_id)
                    live_hash = None
                    self._last_hash = None

        return expired

    def poll_once(self) -> int | None:
        try:
            data, _ = self.read_clipboard()
        except ClipboardEmpty:
            logger.debug("Clipboard is empty")
            return None
        except ClipboardError as e:
            logger.error("Failed to get clipboard contents: %s", e)
            return None

        if not data:
            return None
        content_hash = compute_hash(data)
        if content_hash == self._last_hash:
            return None

        exclusion_check = None
        if self._exclusion:
            def exclusion_check() -> bool:
                return self._exclusion.matches(self._oracle.focused_app_name())

        try:
            entry_id = self._storage.store(
                data,
                dedupe_window=self._settings.max_dedupe_search,
                capacity=self._settings.max_items,
                min_size=self._settings.min_size,
                max_size=self._settings.max_size,
                exclusion_check=exclusion_check,
            )
        except RejectedError as e:
            self._last_hash = content_hash
            if e.reason.is_policy:
                logger.info("Clipboard contents not stored by policy: %s", e)
            else:
                logger.debug("Clipboard contents rejected: %s", e)
            return None
        except sqlite3.Error:
            # Left unseen so a locked database is retried on the next tick
            logger.exception("Failed to store clipboard entry")
            return None

        self._last_hash = content_hash
        logger.info("Stored new clipboard entry (id: %d)", entry_id)

        if self._settings.expire_after:
            expires_at = self._clock() + self._settings.expire_after
            self._push(expires_at, entry_id)
            self._unsaved[entry_id] = expires_at
            self.save_expirations()

        return entry_id

    def save_expirations(self) -> int:
        """Write queued TTLs the store has not recorded yet.

        Stops at the first database error and keeps the rest for the next tick.
        """
        saved = 0
        for entry_id, expires_at in list(self._unsaved.items()):
            try:
                self._storage.set_expiration(entry_id, expires_at)
            except NotFoundError:
                logger.debug("Entry %d is gone, dropping its expiration", entry_id)
            except sqlite3.Error:
                logger.exception("Failed to set expiration for entry %d", entry_id)
                return saved
            else:
                saved += 1
            del self._unsaved[entry_id]
        return saved

    def tick(self) -> None:
        if self._unsaved:
            self.save_expirations()
        if self._queue:
            try:
                self.expire_due()
            except sqlite3.Error:
                logger.exception("Failed to expire entries")
        self.poll_once()

    async def run(self) -> None:
        logger.info("Starting clipboard watch daemon")
        self.prime()
        self.rebuild_queue()
        while True:
            try:
                self.tick()
            except Exception:
                logger.exception("Error reading clipboard")
            await asyncio.sleep(self.next_wakeup_delay())
