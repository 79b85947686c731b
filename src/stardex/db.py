"""SQLite storage engine for StarRecords: persist, back up, migrate."""

from __future__ import annotations

import dataclasses
import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

from .config import Paths
from .errors import (
    LegacyStoreError,
    MigrationSkipped,
    NoData,
    StorageNotFound,
    StorageWriteError,
    ValidationError,
)
from .models import COLUMNS, SOURCES, StarRecord
from .normalize import deduplicate, merge, normalize, sync_timestamp

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2
STORE_MODES = ("replace", "append")
LEGACY_TABLES = ("stars", "repositories")
BACKUP_PREFIX = "stars-"
BACKUP_TIME_FORMAT = "%Y%m%d-%H%M%S"

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS stars (
    full_name TEXT NOT NULL COLLATE NOCASE PRIMARY KEY,
    id INTEGER NOT NULL,
    owner TEXT NOT NULL,
    name TEXT NOT NULL,
    source TEXT NOT NULL,
    synced_at TEXT NOT NULL,
    description TEXT,
    homepage TEXT,
    language TEXT,
    license TEXT,
    url TEXT,
    topics TEXT NOT NULL DEFAULT '[]',
    stars INTEGER NOT NULL DEFAULT 0,
    forks INTEGER NOT NULL DEFAULT 0,
    issues INTEGER NOT NULL DEFAULT 0,
    created TEXT,
    updated TEXT,
    pushed TEXT,
    starred_at TEXT,
    archived INTEGER NOT NULL DEFAULT 0,
    fork INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS sync_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source TEXT NOT NULL,
    mode TEXT NOT NULL,
    synced_at TEXT NOT NULL,
    fetched INTEGER NOT NULL DEFAULT 0,
    stored INTEGER NOT NULL DEFAULT 0,
    dropped INTEGER NOT NULL DEFAULT 0,
    partial INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS schema_info (
    version INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_stars_source ON stars(source);
CREATE INDEX IF NOT EXISTS idx_stars_language ON stars(language);
CREATE INDEX IF NOT EXISTS idx_stars_pushed ON stars(pushed DESC);
CREATE INDEX IF NOT EXISTS idx_sync_log_source ON sync_log(source, synced_at DESC);
"""

INSERT_SQL = (
    f"INSERT OR REPLACE INTO stars ({', '.join(COLUMNS)}) "
    f"VALUES ({', '.join(':' + c for c in COLUMNS)})"
)


class StarStore:
    """The canonical star store.

    Assumes a single writer: callers serialize syncs themselves. Every
    mutation runs in one transaction, so an interrupted write leaves the
    previous generation in place.
    """

    def __init__(self, paths: Paths):
        self.paths = paths
        self.db_path = paths.db_path
        self._conn: Optional[sqlite3.Connection] = None

    def exists(self) -> bool:
        return self.db_path.exists()

    def init(self) -> None:
        """Create the data directories and the schema. Safe to repeat."""
        try:
            self.paths.data_dir.mkdir(parents=True, exist_ok=True)
            self.paths.backups_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageWriteError(self.paths.data_dir, e) from e
        self.connect()

    def connect(self) -> None:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.db_path))
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA synchronous=NORMAL")
            self._init_schema()
        except (OSError, sqlite3.Error) as e:
            self._conn = None
            raise StorageWriteError(self.db_path, e) from e

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            if not self.exists():
                raise StorageNotFound(self.db_path)
            self.connect()
        return self._conn

    def _init_schema(self) -> None:
        self._conn.executescript(SCHEMA_SQL)
        row = self._conn.execute("SELECT version FROM schema_info LIMIT 1").fetchone()
        if row is None:
            self._conn.execute(
                "INSERT INTO schema_info (version) VALUES (?)", (SCHEMA_VERSION,)
            )
            self._conn.commit()

    @contextmanager
    def _write(self) -> Iterator[sqlite3.Connection]:
        """One write transaction; sqlite errors surface as StorageWriteError."""
        if self._conn is None:
            self.init()
        conn = self._conn
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageWriteError(self.db_path, e) from e
        except BaseException:
            conn.rollback()
            raise

    # ── Reads ───────────────────────────────────────────────────────

    def load(self, source: str | None = None) -> list[StarRecord]:
        """All stored records, optionally for one source.

        Raises StorageNotFound when there is no store yet.
        """
        query = "SELECT * FROM stars"
        params: list[Any] = []
        if source:
            query += " WHERE source = ?"
            params.append(source)
        query += " ORDER BY full_name"
        rows = self.conn.execute(query, params).fetchall()
        return [StarRecord.from_row(r) for r in rows]

    def get(self, full_name: str) -> StarRecord | None:
        row = self.conn.execute(
            "SELECT * FROM stars WHERE full_name = ?", (full_name,)
        ).fetchone()
        return StarRecord.from_row(row) if row else None

    def count(self, source: str | None = None) -> int:
        if not self.exists():
            return 0
        if source:
            row = self.conn.execute(
                "SELECT COUNT(*) FROM stars WHERE source = ?", (source,)
            ).fetchone()
        else:
            row = self.conn.execute("SELECT COUNT(*) FROM stars").fetchone()
        return row[0]

    # ── Writes ──────────────────────────────────────────────────────

    def store(self, records: Iterable[StarRecord], mode: str = "replace") -> int:
        """Persist a batch. Returns the number of rows written.

        ``replace`` swaps the whole table for ``records``; ``append`` merges
        them into what is already stored.
        """
        if mode not in STORE_MODES:
            raise ValueError(f"Unknown store mode: {mode!r} (expected one of {STORE_MODES})")
        batch = deduplicate(records)

        with self._write() as conn:
            if mode == "replace":
                conn.execute("DELETE FROM stars")
            else:
                batch = self._merge_existing(conn, batch)
            conn.executemany(INSERT_SQL, [r.to_row() for r in batch])

        logger.info("Stored %d records (%s)", len(batch), mode)
        return len(batch)

    def replace_source(self, source: str, records: Iterable[StarRecord]) -> int:
        """Swap out the rows of one source, leaving other sources alone."""
        if source not in SOURCES:
            raise ValidationError([f"source must be one of {', '.join(SOURCES)}, got {source!r}"])
        batch = deduplicate(records)

        with self._write() as conn:
            cur = conn.execute("DELETE FROM stars WHERE source = ?", (source,))
            removed = cur.rowcount
            batch = self._merge_existing(conn, batch)
            conn.executemany(INSERT_SQL, [r.to_row() for r in batch])

        logger.info("Refreshed %s: removed %d, stored %d", source, removed, len(batch))
        return len(batch)

    def _merge_existing(
        self, conn: sqlite3.Connection, batch: list[StarRecord]
    ) -> list[StarRecord]:
        merged = []
        for record in batch:
            row = conn.execute(
                "SELECT * FROM stars WHERE full_name = ?", (record.full_name,)
            ).fetchone()
            if row is None:
                merged.append(record)
                continue
            existing = StarRecord.from_row(row)
            result = merge(existing, record)
            if result.full_name != row["full_name"]:
                conn.execute("DELETE FROM stars WHERE full_name = ?", (row["full_name"],))
            merged.append(result)
        return merged

    def delete_source(self, source: str) -> int:
        with self._write() as conn:
            cur = conn.execute("DELETE FROM stars WHERE source = ?", (source,))
        return cur.rowcount

    # ── Backups ─────────────────────────────────────────────────────

    def backup(self) -> Path:
        """Copy the store into ``backups/stars-YYYYmmdd-HHMMSS.db``."""
        if not self.exists():
            raise NoData(self.db_path)

        stamp = datetime.now().strftime(BACKUP_TIME_FORMAT)
        target = self.paths.backups_dir / f"{BACKUP_PREFIX}{stamp}.db"
        n = 1
        while target.exists():
            target = self.paths.backups_dir / f"{BACKUP_PREFIX}{stamp}-{n}.db"
            n += 1

        try:
            self.paths.backups_dir.mkdir(parents=True, exist_ok=True)
            dest = sqlite3.connect(str(target))
            try:
                self.conn.backup(dest)
            finally:
                dest.close()
        except (OSError, sqlite3.Error) as e:
            raise StorageWriteError(target, e) from e

        logger.info("Backed up %s to %s", self.db_path, target)
        return target

    def list_backups(self) -> list[Path]:
        if not self.paths.backups_dir.exists():
            return []
        return sorted(self.paths.backups_dir.glob(f"{BACKUP_PREFIX}*.db"))

    def restore(self, backup_path: str | Path) -> None:
        """Overwrite the current store with the contents of a backup."""
        backup_path = Path(backup_path)
        if not backup_path.exists():
            raise StorageNotFound(backup_path)
        if self._conn is None:
            self.init()
        try:
            src = sqlite3.connect(str(backup_path))
            try:
                src.backup(self._conn)
            finally:
                src.close()
        except sqlite3.Error as e:
            raise StorageWriteError(self.db_path, e) from e
        logger.info("Restored %s from %s", self.db_path, backup_path)

    # ── Legacy migration ────────────────────────────────────────────

    def migrate_legacy(self, *, raise_on_skip: bool = False) -> bool:
        """Import the legacy store once.

        Returns False when there is no legacy store or when the current
        store already exists; the current store is never overwritten.
        Records are backfilled with ``source='github'`` and the migration
        time as ``synced_at`` when they lack them.
        """
        legacy = self.paths.legacy_db_path
        reason = None
        if not legacy.exists():
            reason = f"no legacy store at {legacy}"
        elif self.exists():
            reason = f"current store already exists at {self.db_path}"
        if reason:
            logger.info("Migration skipped: %s", reason)
            if raise_on_skip:
                raise MigrationSkipped(reason)
            return False

        migrated_at = sync_timestamp()
        records = []
        dropped = 0
        for row in read_legacy_rows(legacy):
            source = row.get("source")
            if source not in SOURCES:
                source = "github"
            try:
                records.append(
                    normalize(row, source, synced_at=row.get("synced_at") or migrated_at)
                )
            except ValidationError as e:
                logger.warning("Skipping legacy row %s: %s", row.get("full_name"), e)
                dropped += 1

        # Build the new store next to its final location and swap it in.
        staging = self.db_path.with_name(self.db_path.name + ".migrating")
        staging.unlink(missing_ok=True)
        staging_store = StarStore(dataclasses.replace(self.paths, db_path=staging))
        try:
            staging_store.init()
            staging_store.store(records, mode="replace")
        finally:
            staging_store.close()
        try:
            os.replace(staging, self.db_path)
        except OSError as e:
            raise StorageWriteError(self.db_path, e) from e

        logger.info(
            "Migrated %d records from %s (%d dropped)", len(records), legacy, dropped
        )
        return True

    # ── Sync log ────────────────────────────────────────────────────

    def log_sync(
        self,
        source: str,
        mode: str,
        synced_at: str,
        fetched: int,
        stored: int,
        dropped: int = 0,
        partial: bool = False,
    ) -> None:
        with self._write() as conn:
            conn.execute(
                """INSERT INTO sync_log
                   (source, mode, synced_at, fetched, stored, dropped, partial)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (source, mode, synced_at, fetched, stored, dropped, int(partial)),
            )

    def get_last_sync(self, source: str | None = None) -> dict | None:
        if not self.exists():
            return None
        if source:
            row = self.conn.execute(
                "SELECT * FROM sync_log WHERE source = ? ORDER BY id DESC LIMIT 1",
                (source,),
            ).fetchone()
        else:
            row = self.conn.execute(
                "SELECT * FROM sync_log ORDER BY id DESC LIMIT 1"
            ).fetchone()
        return dict(row) if row else None

    def get_sync_log(self, source: str | None = None, limit: int = 50) -> list[dict]:
        query = "SELECT * FROM sync_log"
        params: list[Any] = []
        if source:
            query += " WHERE source = ?"
            params.append(source)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)
        return [dict(r) for r in self.conn.execute(query, params).fetchall()]

    # ── Stats ───────────────────────────────────────────────────────

    def get_stats(self) -> dict:
        """Totals by source and language plus the last sync of each source."""
        total = self.conn.execute("SELECT COUNT(*) FROM stars").fetchone()[0]
        by_source = {}
        for row in self.conn.execute(
            "SELECT source, COUNT(*) as cnt FROM stars GROUP BY source"
        ).fetchall():
            by_source[row["source"]] = row["cnt"]
        by_language = {}
        for row in self.conn.execute(
            """SELECT COALESCE(language, '') as lang, COUNT(*) as cnt
               FROM stars GROUP BY lang ORDER BY cnt DESC LIMIT 20"""
        ).fetchall():
            by_language[row["lang"] or "(none)"] = row["cnt"]
        last_sync = {}
        for row in self.conn.execute(
            "SELECT source, MAX(synced_at) as t FROM sync_log GROUP BY source"
        ).fetchall():
            last_sync[row["source"]] = row["t"]
        return {
            "total": total,
            "by_source": by_source,
            "by_language": by_language,
            "last_sync": last_sync,
            "backups": len(self.list_backups()),
        }


def read_legacy_rows(path: Path) -> list[dict]:
    """Rows of the legacy store as plain dicts."""
    try:
        conn = sqlite3.connect(str(path))
    except sqlite3.Error as e:
        raise LegacyStoreError(path, e) from e
    conn.row_factory = sqlite3.Row
    try:
        tables = {
            r[0]
            for r in conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table'"
            ).fetchall()
        }
        table = next((t for t in LEGACY_TABLES if t in tables), None)
        if table is None:
            return []
        return [dict(r) for r in conn.execute(f"SELECT * FROM {table}").fetchall()]
    except sqlite3.Error as e:
        raise LegacyStoreError(path, e) from e
    finally:
        conn.close()
