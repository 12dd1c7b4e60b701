"""
Metadata index for published packs.

The index is how consumers discover archives by channel. It is untrusted:
entries only point at content ids, and every report found there still goes
through the pack verifier.
"""

import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, List, Optional, Union

from .models import PackMeta

DEFAULT_LIST_LIMIT = 50


class MetadataIndex(ABC):
    """Abstract publish/list index."""

    @abstractmethod
    def publish(self, meta: PackMeta) -> None:
        """Insert an entry, replacing any entry with the same packId."""
        pass

    @abstractmethod
    def list(self, channel: Optional[str] = None, limit: int = DEFAULT_LIST_LIMIT) -> List[PackMeta]:
        """Entries newest first, optionally restricted to one channel."""
        pass

    @abstractmethod
    def get(self, pack_id: str) -> Optional[PackMeta]:
        pass


class InMemoryMetadataIndex(MetadataIndex):

    def __init__(self):
        self._entries: Dict[str, PackMeta] = {}
        self._lock = threading.RLock()

    def publish(self, meta: PackMeta) -> None:
        with self._lock:
            self._entries[meta.packId] = meta

    def list(self, channel: Optional[str] = None, limit: int = DEFAULT_LIST_LIMIT) -> List[PackMeta]:
        with self._lock:
            entries = [m for m in self._entries.values() if channel is None or m.channel == channel]
        entries.sort(key=lambda m: m.createdAt, reverse=True)
        return entries[:max(0, limit)]

    def get(self, pack_id: str) -> Optional[PackMeta]:
        with self._lock:
            return self._entries.get(pack_id)


class SqliteMetadataIndex(MetadataIndex):
    """SQLite-backed index with an index on (channel, created_at)."""

    def __init__(self, path: Union[str, Path] = ":memory:"):
        self._path = str(path)
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self._path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._init_schema()

    @contextmanager
    def _transaction(self):
        """Commits on success, rolls back on failure."""
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    def _init_schema(self) -> None:
        with self._transaction() as conn:
            conn.execute("""
            CREATE TABLE IF NOT EXISTS packs (
                pack_id TEXT PRIMARY KEY,
                content_id TEXT NOT NULL,
                channel TEXT NOT NULL,
                archive_hash TEXT NOT NULL,
                report_count INTEGER NOT NULL,
                uploader_id TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                counts_json TEXT NOT NULL DEFAULT '{}'
            );""")
            conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_packs_channel_created
            ON packs(channel, created_at);""")

    def publish(self, meta: PackMeta) -> None:
        with self._transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO packs(pack_id, content_id, channel, archive_hash, "
                "report_count, uploader_id, created_at, counts_json) VALUES(?,?,?,?,?,?,?,?)",
                (
                    meta.packId,
                    meta.contentId,
                    meta.channel,
                    meta.archiveHash,
                    meta.reportCount,
                    meta.uploaderId,
                    meta.createdAt,
                    json.dumps(meta.counts, sort_keys=True),
                )
            )

    @staticmethod
    def _row_to_meta(row: sqlite3.Row) -> PackMeta:
        return PackMeta(
            packId=row["pack_id"],
            contentId=row["content_id"],
            channel=row["channel"],
            archiveHash=row["archive_hash"],
            reportCount=row["report_count"],
            uploaderId=row["uploader_id"],
            createdAt=row["created_at"],
            counts=json.loads(row["counts_json"]),
        )

    def list(self, channel: Optional[str] = None, limit: int = DEFAULT_LIST_LIMIT) -> List[PackMeta]:
        with self._lock:
            if channel is None:
                cur = self._conn.execute(
                    "SELECT * FROM packs ORDER BY created_at DESC, pack_id LIMIT ?",
                    (max(0, limit),)
                )
            else:
                cur = self._conn.execute(
                    "SELECT * FROM packs WHERE channel=? ORDER BY created_at DESC, pack_id LIMIT ?",
                    (channel, max(0, limit))
                )
            return [self._row_to_meta(row) for row in cur.fetchall()]

    def get(self, pack_id: str) -> Optional[PackMeta]:
        with self._lock:
            row = self._conn.execute("SELECT * FROM packs WHERE pack_id=?", (pack_id,)).fetchone()
        return self._row_to_meta(row) if row else None

    def close(self) -> None:
        with self._lock:
            self._conn.close()
