import sqlite3

import pytest

from clipstash.errors import MigrationError
from clipstash.storage import SCHEMA_VERSION, StorageManager, get_schema_version, migrate
from clipstash.utils import compute_hash


def _create_legacy_db(path, rows=(b"first", b"second")):
    """A database from before hashing, recency or expiry existed."""
    conn = sqlite3.connect(str(path))
    conn.executescript("""
        CREATE TABLE clipboard (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            contents BLOB NOT NULL,
            mime TEXT
        );
    """)
    conn.executemany("INSERT INTO clipboard (contents, mime) VALUES (?, 'text/plain')", [(r,) for r in rows])
    conn.commit()
    conn.close()


def _columns(mgr):
    cursor = mgr._conn.execute("PRAGMA table_info(clipboard)")
    return {row[1] for row in cursor.fetchall()}


class TestFreshDatabase:
    def test_new_database_at_latest_version(self, storage):
        assert storage.schema_version == SCHEMA_VERSION
        assert get_schema_version(storage._conn) == SCHEMA_VERSION

    def test_all_columns_present(self, storage):
        assert _columns(storage) == {
            "id", "contents", "mime", "content_hash", "last_accessed", "expires_at", "is_expired"
        }

    def test_migrate_is_idempotent(self, storage):
        assert migrate(storage._conn) == SCHEMA_VERSION
        assert migrate(storage._conn) == SCHEMA_VERSION

    def test_reopen_keeps_rows(self, tmp_path):
        db_file = tmp_path / "db"
        with StorageManager(db_path=db_file) as mgr:
            mgr.store(b"hello")
        with StorageManager(db_path=db_file) as mgr:
            assert mgr.schema_version == SCHEMA_VERSION
            assert [e.contents for e in mgr.list_entries()] == [b"hello"]


class TestLegacyDatabase:
    def test_upgrades_and_keeps_rows(self, tmp_path):
        db_file = tmp_path / "legacy.sqlite"
        _create_legacy_db(db_file)

        with StorageManager(db_path=db_file) as mgr:
            assert mgr.schema_version == SCHEMA_VERSION
            assert {"content_hash", "last_accessed", "expires_at", "is_expired"} <= _columns(mgr)
            entries = mgr.list_entries()
            assert [e.contents for e in entries] == [b"second", b"first"]

    def test_backfills_content_hash(self, tmp_path):
        db_file = tmp_path / "legacy.sqlite"
        _create_legacy_db(db_file)

        with StorageManager(db_path=db_file) as mgr:
            entry = mgr.get_entry(1)
            assert entry.content_hash == compute_hash(b"first")
            assert entry.last_accessed is not None
            assert entry.is_expired is False

    def test_dedup_sees_migrated_rows(self, tmp_path):
        db_file = tmp_path / "legacy.sqlite"
        _create_legacy_db(db_file)

        with StorageManager(db_path=db_file) as mgr:
            mgr.store(b"first")
            assert mgr.count() == 2
            assert mgr.get_entry(1) is None

    def test_completes_half_migrated_database(self, tmp_path):
        db_file = tmp_path / "partial.sqlite"
        _create_legacy_db(db_file)
        conn = sqlite3.connect(str(db_file))
        conn.execute("ALTER TABLE clipboard ADD COLUMN content_hash INTEGER")
        conn.execute("PRAGMA user_version = 1")
        conn.commit()
        conn.close()

        with StorageManager(db_path=db_file) as mgr:
            assert mgr.schema_version == SCHEMA_VERSION
            assert mgr.get_entry(2).content_hash == compute_hash(b"second")

    def test_creates_indexes(self, tmp_path):
        db_file = tmp_path / "legacy.sqlite"
        _create_legacy_db(db_file)

        with StorageManager(db_path=db_file) as mgr:
            names = {
                row[0] for row in mgr._conn.execute("SELECT name FROM sqlite_master WHERE type = 'index'")
            }
        assert {"idx_content_hash", "idx_last_accessed", "idx_expires_at", "idx_is_expired"} <= names


class TestNewerDatabase:
    def test_newer_schema_rejected(self, tmp_path):
        db_file = tmp_path / "future.sqlite"
        conn = sqlite3.connect(str(db_file))
        conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION + 1}")
        conn.commit()
        conn.close()

        with pytest.raises(MigrationError, match="newer than supported"):
            StorageManager(db_path=db_file)
