"""
Dedup ledgers.

A ledger records the (nullifier, payload.ts) keys of reports already
accepted. It only flags resubmissions; it never vouches for authenticity.
Check-and-insert is atomic so two verification tasks racing on one key
cannot both accept it.
"""

import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Set, Tuple, Union

from .canonicalization import canonicalize_str

DedupKey = Tuple[str, str]


def _key_part(value: Any) -> str:
    try:
        return canonicalize_str(value)
    except ValueError:
        # No JSON text starts with "<", so these never collide with canonical forms
        return f"<{type(value).__name__}:{value!r}>"


def dedup_key(report: Any) -> DedupKey:
    """
    Dedup key of a wire report: (nullifier, payload.ts) as canonical JSON.

    The JSON form keeps the value's type in the key, so a numeric ts of 1
    and a string ts of "1" are different keys.
    """
    if not isinstance(report, dict):
        return (_key_part(None), _key_part(None))
    payload = report.get("payload")
    ts = payload.get("ts") if isinstance(payload, dict) else None
    return (_key_part(report.get("nullifier")), _key_part(ts))


class Ledger(ABC):
    """Interface shared by the in-memory and persistent ledgers."""

    @abstractmethod
    def check_and_insert(self, key: DedupKey) -> bool:
        """
        Record ``key`` if unseen.

        Returns:
            True if the key was new (first occurrence), False if it was
            already present
        """
        pass

    @abstractmethod
    def contains(self, key: DedupKey) -> bool:
        pass

    @abstractmethod
    def __len__(self) -> int:
        pass


class DedupLedger(Ledger):
    """In-memory ledger scoped to the object's lifetime."""

    def __init__(self):
        self._seen: Set[DedupKey] = set()
        self._lock = threading.Lock()

    def check_and_insert(self, key: DedupKey) -> bool:
        with self._lock:
            if key in self._seen:
                return False
            self._seen.add(key)
            return True

    def contains(self, key: DedupKey) -> bool:
        with self._lock:
            return key in self._seen

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)


class SqliteDedupLedger(Ledger):
    """
    Persistent ledger backed by SQLite.

    The primary key on (nullifier, ts) makes INSERT OR IGNORE an atomic
    check-and-insert, also across processes sharing the file.
    """

    def __init__(self, path: Union[str, Path] = ":memory:"):
        self._path = str(path)
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self._path, check_same_thread=False)
        self._lock = threading.Lock()
        with self._lock:
            self._conn.execute("PRAGMA journal_mode=WAL;")
            self._conn.execute("""
            CREATE TABLE IF NOT EXISTS dedup_keys (
                nullifier TEXT NOT NULL,
                ts TEXT NOT NULL,
                accepted_at INTEGER DEFAULT (strftime('%s', 'now')),
                PRIMARY KEY (nullifier, ts)
            );""")
            self._conn.commit()

    def check_and_insert(self, key: DedupKey) -> bool:
        with self._lock:
            cur = self._conn.execute(
                "INSERT OR IGNORE INTO dedup_keys(nullifier, ts) VALUES(?, ?)",
                key
            )
            self._conn.commit()
            return cur.rowcount == 1

    def contains(self, key: DedupKey) -> bool:
        with self._lock:
            cur = self._conn.execute(
                "SELECT 1 FROM dedup_keys WHERE nullifier=? AND ts=?",
                key
            )
            return cur.fetchone() is not None

    def __len__(self) -> int:
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) FROM dedup_keys").fetchone()[0]

    def close(self) -> None:
        with self._lock:
            self._conn.close()
