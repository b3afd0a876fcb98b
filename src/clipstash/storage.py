import logging
import sqlite3
import time
from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from clipstash.config import DB_PATH, DEFAULT_MAX_DEDUPE_SEARCH, DEFAULT_MAX_ITEMS, DEFAULT_MAX_SIZE
from clipstash.errors import (
    ImportFormatError,
    InvalidIdError,
    MigrationError,
    NothingToDeleteError,
    NotFoundError,
    RejectedError,
)
from clipstash.mime import detect_mime
from clipstash.models import ClipboardEntry, RejectReason
from clipstash.redact import SensitivityFilter, get_sensitivity_summary
from clipstash.utils import compute_hash, extract_id, is_blank

logger = logging.getLogger(__name__)

ENTRY_COLUMNS = "id, contents, mime, content_hash, last_accessed, expires_at, is_expired"
ORDER_BY_RECENCY = "ORDER BY last_accessed DESC, id DESC"


def _has_table(conn: sqlite3.Connection, name: str) -> bool:
    row = conn.execute("SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (name,)).fetchone()
    return row is not None


def _has_index(conn: sqlite3.Connection, name: str) -> bool:
    row = conn.execute("SELECT 1 FROM sqlite_master WHERE type = 'index' AND name = ?", (name,)).fetchone()
    return row is not None


def _columns(conn: sqlite3.Connection, table: str) -> set[str]:
    cursor = conn.execute(f"PRAGMA table_info({table})")
    return {row[1] for row in cursor.fetchall()}


def _create_clipboard_table(conn: sqlite3.Connection) -> None:
    if not _has_table(conn, "clipboard"):
        conn.execute(
            """CREATE TABLE clipboard (
                   id       INTEGER PRIMARY KEY AUTOINCREMENT,
                   contents BLOB NOT NULL,
                   mime     TEXT
               )"""
        )


def _add_content_hash(conn: sqlite3.Connection) -> None:
    if "content_hash" not in _columns(conn, "clipboard"):
        conn.execute("ALTER TABLE clipboard ADD COLUMN content_hash INTEGER")
    rows = conn.execute("SELECT id, contents FROM clipboard WHERE content_hash IS NULL").fetchall()
    conn.executemany(
        "UPDATE clipboard SET content_hash = ? WHERE id = ?",
        [(compute_hash(bytes(row[1])), row[0]) for row in rows],
    )
    if not _has_index(conn, "idx_content_hash"):
        conn.execute("CREATE INDEX idx_content_hash ON clipboard(content_hash)")


def _add_last_accessed(conn: sqlite3.Connection) -> None:
    if "last_accessed" not in _columns(conn, "clipboard"):
        conn.execute("ALTER TABLE clipboard ADD COLUMN last_accessed REAL")
    # Rows from before recency tracking share one timestamp; id breaks the tie
    conn.execute("UPDATE clipboard SET last_accessed = ? WHERE last_accessed IS NULL", (time.time(),))
    if not _has_index(conn, "idx_last_accessed"):
        conn.execute("CREATE INDEX idx_last_accessed ON clipboard(last_accessed DESC, id DESC)")


def _add_expires_at(conn: sqlite3.Connection) -> None:
    if "expires_at" not in _columns(conn, "clipboard"):
        conn.execute("ALTER TABLE clipboard ADD COLUMN expires_at REAL")
    if not _has_index(conn, "idx_expires_at"):
        conn.execute("CREATE INDEX idx_expires_at ON clipboard(expires_at) WHERE expires_at IS NOT NULL")


def _add_is_expired(conn: sqlite3.Connection) -> None:
    if "is_expired" not in _columns(conn, "clipboard"):
        conn.execute("ALTER TABLE clipboard ADD COLUMN is_expired INTEGER NOT NULL DEFAULT 0")
    if not _has_index(conn, "idx_is_expired"):
        conn.execute("CREATE INDEX idx_is_expired ON clipboard(is_expired)")


@dataclass(frozen=True)
class Migration:
    version: int
    description: str
    apply: Callable[[sqlite3.Connection], None]


MIGRATIONS: list[Migration] = [
    Migration(1, "create clipboard table", _create_clipboard_table),
    Migration(2, "add content_hash", _add_content_hash),
    Migration(3, "add last_accessed", _add_last_accessed),
    Migration(4, "add expires_at", _add_expires_at),
    Migration(5, "add is_expired", _add_is_expired),
]
SCHEMA_VERSION = MIGRATIONS[-1].version


def get_schema_version(conn: sqlite3.Connection) -> int:
    return conn.execute("PRAGMA user_version").fetchone()[0]


def migrate(conn: sqlite3.Connection) -> int:
    """Bring the database up to SCHEMA_VERSION, one transaction per step.

    Steps probe for what they create, so a database left half-migrated by an
    older run is completed rather than rejected. Rows are never dropped.

    Raises:
        MigrationError: If the database is newer than this code or a step fails.
    """
    current = get_schema_version(conn)
    if current > SCHEMA_VERSION:
        raise MigrationError(f"database schema version {current} is newer than supported version {SCHEMA_VERSION}")

    for migration in MIGRATIONS:
        if current >= migration.version:
            continue
        try:
            conn.execute("BEGIN IMMEDIATE")
            migration.apply(conn)
            conn.execute(f"PRAGMA user_version = {migration.version:d}")
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise MigrationError(f"migration to version {migration.version} ({migration.description}) failed: {e}") from e
        logger.info("Migrated database to schema version %d (%s)", migration.version, migration.description)
        current = migration.version

    return current


def _like_pattern(query: str) -> str:
    escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class StorageManager:
    def __init__(
        self,
        db_path: str | Path | None = None,
        sensitivity_filter: SensitivityFilter | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._db_path = str(db_path) if db_path else str(DB_PATH)
        # Autocommit; transactions are opened explicitly
        self._conn = sqlite3.connect(self._db_path, isolation_level=None, timeout=5.0)
        self._conn.row_factory = sqlite3.Row
        # History is disposable: trade durability for throughput
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=OFF")
        self._filter = sensitivity_filter or SensitivityFilter()
        self._clock = clock
        self.schema_version = 0
        try:
            self.init_db()
        except MigrationError:
            self._conn.close()
            raise

    def init_db(self) -> None:
        self.schema_version = migrate(self._conn)

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        self._conn.execute("BEGIN IMMEDIATE")
        try:
            yield self._conn
        except BaseException:
            self._conn.execute("ROLLBACK")
            raise
        else:
            self._conn.execute("COMMIT")

    def store(
        self,
        data: bytes,
        dedupe_window: int = DEFAULT_MAX_DEDUPE_SEARCH,
        capacity: int = DEFAULT_MAX_ITEMS,
        min_size: int | None = None,
        max_size: int = DEFAULT_MAX_SIZE,
        exclusion_check: Callable[[], bool] | None = None,
    ) -> int:
        """Store a clipboard snapshot and return its new id.

        Identical content among the ``dedupe_window`` most recent rows is
        replaced by the new row, and the oldest rows by id are evicted once
        more than ``capacity`` remain.

        Raises:
            RejectedError: If the content fails validation or policy checks.
        """
        if not data:
            raise RejectedError(RejectReason.EMPTY)
        if min_size is not None and len(data) < min_size:
            raise RejectedError(RejectReason.TOO_SMALL, f"{len(data)} < {min_size} bytes")
        if len(data) > max_size:
            raise RejectedError(RejectReason.TOO_LARGE, f"{len(data)} > {max_size} bytes")
        if is_blank(data):
            raise RejectedError(RejectReason.WHITESPACE)

        content_hash = compute_hash(data)
        mime = detect_mime(data)

        if self._filter.enabled and mime is not None and mime.startswith("text/"):
            matches = self._filter.detect(data.decode("utf-8"))
            if matches:
                raise RejectedError(RejectReason.SENSITIVE, get_sensitivity_summary(matches))

        if exclusion_check is not None and exclusion_check():
            raise RejectedError(RejectReason.EXCLUDED_APP)

        with self._transaction() as conn:
            deduped = self._deduplicate(conn, content_hash, dedupe_window)
            cursor = conn.execute(
                "INSERT INTO clipboard (contents, mime, content_hash, last_accessed) VALUES (?, ?, ?, ?)",
                (data, mime, content_hash, self._clock()),
            )
            entry_id = cursor.lastrowid
            trimmed = self._trim(conn, capacity)

        if deduped:
            logger.info("Deduplicated %d entries", deduped)
        if trimmed:
            logger.info("Trimmed %d entries from database", trimmed)
        logger.info("Stored entry with id %d", entry_id)
        return entry_id

    @staticmethod
    def _deduplicate(conn: sqlite3.Connection, content_hash: int, window: int) -> int:
        if window <= 0:
            return 0
        cursor = conn.execute(
            """DELETE FROM clipboard WHERE id IN (
                   SELECT id FROM (SELECT id, content_hash FROM clipboard ORDER BY id DESC LIMIT ?)
                   WHERE content_hash = ?
               )""",
            (window, content_hash),
        )
        return cursor.rowcount

    @staticmethod
    def _trim(conn: sqlite3.Connection, capacity: int) -> int:
        total = conn.execute("SELECT COUNT(*) FROM clipboard").fetchone()[0]
        surplus = total - max(capacity, 0)
        if surplus <= 0:
            return 0
        cursor = conn.execute(
            "DELETE FROM clipboard WHERE id IN (SELECT id FROM clipboard ORDER BY id ASC LIMIT ?)",
            (surplus,),
        )
        return cursor.rowcount

    def trim(self, max_items: int) -> int:
        with self._transaction() as conn:
            trimmed = self._trim(conn, max_items)
        if trimmed:
            logger.info("Trimmed %d entries from database", trimmed)
        return trimmed

    def delete_last(self) -> int:
        """Delete the most recently inserted entry and return its id."""
        with self._transaction() as conn:
            row = conn.execute("SELECT MAX(id) FROM clipboard").fetchone()
            if row[0] is None:
                raise NothingToDeleteError("no entries to delete")
            conn.execute("DELETE FROM clipboard WHERE id = ?", (row[0],))
        logger.info("Deleted last entry (id %d)", row[0])
        return row[0]

    def get_entry(self, entry_id: int) -> ClipboardEntry | None:
        row = self._conn.execute(
            f"SELECT {ENTRY_COLUMNS} FROM clipboard WHERE id = ?", (entry_id,)
        ).fetchone()
        return self._row_to_entry(row) if row else None

    def _where(self, query: str | None, include_expired: bool) -> tuple[str, list]:
        clauses: list[str] = []
        params: list = []
        if not include_expired:
            # Rows past their TTL stay hidden before the watcher flags them
            clauses.append("is_expired = 0 AND (expires_at IS NULL OR expires_at > ?)")
            params.append(self._clock())
        if query:
            # BLOB never matches LIKE
            clauses.append("CAST(contents AS TEXT) LIKE ? ESCAPE '\\'")
            params.append(_like_pattern(query))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

    def count(self, query: str | None = None, include_expired: bool = False) -> int:
        where, params = self._where(query, include_expired)
        row = self._conn.execute(f"SELECT COUNT(*) AS cnt FROM clipboard {where}", params).fetchone()
        return row["cnt"]

    def fetch_window(
        self,
        offset: int,
        limit: int,
        query: str | None = None,
        include_expired: bool = False,
    ) -> list[ClipboardEntry]:
        """Rows ``[offset, offset + limit)`` in browse order; ``limit=-1`` means all."""
        where, params = self._where(query, include_expired)
        rows = self._conn.execute(
            f"SELECT {ENTRY_COLUMNS} FROM clipboard {where} {ORDER_BY_RECENCY} LIMIT ? OFFSET ?",
            [*params, limit, max(offset, 0)],
        ).fetchall()
        return [self._row_to_entry(r) for r in rows]

    def list_entries(self, include_expired: bool = False) -> list[ClipboardEntry]:
        return self.fetch_window(0, -1, include_expired=include_expired)

    def decode(self, id_or_line: str) -> bytes:
        """Raw contents of the entry named by an id or a ``<id>\\t...`` list line.

        Raises:
            InvalidIdError: If no id can be parsed.
            NotFoundError: If the id does not exist.
        """
        entry_id = extract_id(id_or_line)
        entry = self.get_entry(entry_id)
        if entry is None:
            raise NotFoundError(entry_id)
        logger.info("Decoded entry with id %d", entry_id)
        return entry.contents

    def delete_entry(self, entry_id: int) -> bool:
        cursor = self._conn.execute("DELETE FROM clipboard WHERE id = ?", (entry_id,))
        return cursor.rowcount > 0

    def delete_by_query(self, query: str | bytes) -> int:
        """Delete every entry whose raw bytes contain ``query``."""
        needle = query.encode("utf-8") if isinstance(query, str) else query
        if not needle:
            logger.warning("Refusing to delete by empty query")
            return 0
        cursor = self._conn.execute("DELETE FROM clipboard WHERE instr(contents, ?) > 0", (needle,))
        logger.info("Deleted %d entries matching query %r", cursor.rowcount, query)
        return cursor.rowcount

    def delete_by_ids(self, lines: Iterable[str]) -> int:
        deleted = 0
        for line in lines:
            line = line.rstrip("\r\n")
            if not line.strip():
                continue
            try:
                entry_id = extract_id(line)
            except InvalidIdError:
                logger.warning("Failed to extract id from line: %r", line)
                continue
            if self.delete_entry(entry_id):
                deleted += 1
                logger.info("Deleted entry with id %d", entry_id)
        return deleted

    def copy(self, entry_id: int) -> ClipboardEntry:
        """Fetch an entry for copying, promoting its recency when it lags.

        ``last_accessed`` only moves when another row with the same content
        hash was accessed more recently, so re-copying the freshest entry
        leaves the ordering untouched.
        """
        with self._transaction() as conn:
            row = conn.execute(f"SELECT {ENTRY_COLUMNS} FROM clipboard WHERE id = ?", (entry_id,)).fetchone()
            if row is None:
                raise NotFoundError(entry_id)
            entry = self._row_to_entry(row)
            freshest = conn.execute(
                f"SELECT id FROM clipboard WHERE content_hash = ? {ORDER_BY_RECENCY} LIMIT 1",
                (entry.content_hash,),
            ).fetchone()
            if freshest["id"] != entry_id:
                entry.last_accessed = self._clock()
                conn.execute(
                    "UPDATE clipboard SET last_accessed = ? WHERE id = ?",
                    (entry.last_accessed, entry_id),
                )
                logger.info("Promoted entry %d over duplicate %d", entry_id, freshest["id"])
        return entry

    def set_expiration(self, entry_id: int, expires_at: float) -> None:
        cursor = self._conn.execute(
            "UPDATE clipboard SET expires_at = ? WHERE id = ?", (expires_at, entry_id)
        )
        if cursor.rowcount == 0:
            raise NotFoundError(entry_id)

    def next_expiration(self) -> tuple[float, int] | None:
        row = self._conn.execute(
            """SELECT expires_at, id FROM clipboard
               WHERE expires_at IS NOT NULL AND is_expired = 0
               ORDER BY expires_at ASC, id ASC LIMIT 1"""
        ).fetchone()
        return (row["expires_at"], row["id"]) if row else None

    def pending_expirations(self) -> list[tuple[float, int]]:
        rows = self._conn.execute(
            """SELECT expires_at, id FROM clipboard
               WHERE expires_at IS NOT NULL AND is_expired = 0
               ORDER BY expires_at ASC, id ASC"""
        ).fetchall()
        return [(r["expires_at"], r["id"]) for r in rows]

    def mark_expired(self, entry_id: int) -> bool:
        cursor = self._conn.execute(
            "UPDATE clipboard SET is_expired = 1 WHERE id = ? AND is_expired = 0", (entry_id,)
        )
        return cursor.rowcount > 0

    def cleanup_expired(self) -> int:
        cursor = self._conn.execute(
            "DELETE FROM clipboard WHERE expires_at IS NOT NULL AND expires_at <= ?", (self._clock(),)
        )
        if cursor.rowcount:
            logger.info("Cleaned up %d expired entries", cursor.rowcount)
        return cursor.rowcount

    def wipe(self) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM clipboard")
            conn.execute("DELETE FROM sqlite_sequence WHERE name = 'clipboard'")
        logger.info("Wiped database")

    def import_tsv(self, lines: Iterable[str], capacity: int = DEFAULT_MAX_ITEMS) -> int:
        """Import ``<id>\\t<text>`` lines; ids are validated and discarded.

        The whole import is one transaction: a malformed line imports nothing.

        Raises:
            ImportFormatError: On a line without a tab or with a bad id.
        """
        imported = 0
        now = self._clock()
        with self._transaction() as conn:
            for lineno, line in enumerate(lines, start=1):
                line = line.rstrip("\r\n")
                if not line:
                    continue
                id_str, sep, value = line.partition("\t")
                if not sep:
                    raise ImportFormatError(lineno, f"malformed line {line!r}")
                try:
                    int(id_str)
                except ValueError:
                    raise ImportFormatError(lineno, f"failed to parse id {id_str!r}") from None
                contents = value.encode("utf-8")
                if is_blank(contents):
                    logger.warning("Skipping blank entry on line %d", lineno)
                    continue
                conn.execute(
                    "INSERT INTO clipboard (contents, mime, content_hash, last_accessed) VALUES (?, ?, ?, ?)",
                    (contents, detect_mime(contents), compute_hash(contents), now),
                )
                imported += 1
            trimmed = self._trim(conn, capacity)

        logger.info("Imported %d records, trimmed %d", imported, trimmed)
        return imported

    def close(self) -> None:
        self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    @staticmethod
    def _row_to_entry(row: sqlite3.Row) -> ClipboardEntry:
        return ClipboardEntry(
            id=row["id"],
            contents=bytes(row["contents"]),
            mime=row["mime"],
            content_hash=row["content_hash"],
            last_accessed=row["last_accessed"],
            expires_at=row["expires_at"],
            is_expired=bool(row["is_expired"]),
        )
