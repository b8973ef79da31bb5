"""SQLite persistence for dedup records."""

from __future__ import annotations

import sqlite3
from collections import OrderedDict
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Mapping

from ..engine.dedup import DedupRecord, PersistenceError


def _to_text(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _from_text(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


class SQLiteRecordRepository:
    """Round-trip every source's dedup record through one SQLite file.

    Opening the database happens eagerly so an unusable path fails at start
    up rather than on the first save.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = Lock()
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            self._ensure_schema(conn)
        except (OSError, sqlite3.Error) as exc:
            raise PersistenceError(f"Cannot open dedup store at {path}: {exc}") from exc
        self._conn: sqlite3.Connection | None = conn

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS dedup_entries (
                source_id TEXT NOT NULL,
                fingerprint TEXT NOT NULL,
                first_seen_at TEXT NOT NULL,
                position INTEGER NOT NULL,
                PRIMARY KEY (source_id, fingerprint)
            );
            CREATE TABLE IF NOT EXISTS source_state (
                source_id TEXT PRIMARY KEY,
                last_checked_at TEXT
            );
            """
        )
        conn.commit()

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise PersistenceError(f"Dedup store {self.path} is closed")
        return self._conn

    def load_all(self) -> dict[str, DedupRecord]:
        with self._lock:
            try:
                conn = self._connection()
                records: dict[str, DedupRecord] = {}
                for row in conn.execute("SELECT source_id, last_checked_at FROM source_state"):
                    records[row["source_id"]] = DedupRecord(
                        row["source_id"], OrderedDict(), _from_text(row["last_checked_at"])
                    )
                rows = conn.execute(
                    "SELECT source_id, fingerprint, first_seen_at FROM dedup_entries "
                    "ORDER BY source_id, position"
                )
                for row in rows:
                    record = records.get(row["source_id"])
                    if record is None:
                        record = records[row["source_id"]] = DedupRecord(row["source_id"])
                    record.entries[row["fingerprint"]] = _from_text(row["first_seen_at"])
            except (sqlite3.Error, ValueError) as exc:
                raise PersistenceError(f"Cannot load dedup records from {self.path}: {exc}") from exc
        return records

    def save_all(self, records: Mapping[str, DedupRecord]) -> None:
        with self._lock:
            try:
                conn = self._connection()
                with conn:
                    conn.execute("DELETE FROM dedup_entries")
                    conn.execute("DELETE FROM source_state")
                    for source_id, record in records.items():
                        conn.execute(
                            "INSERT INTO source_state(source_id, last_checked_at) VALUES (?, ?)",
                            (
                                source_id,
                                _to_text(record.last_checked_at) if record.last_checked_at else None,
                            ),
                        )
                        conn.executemany(
                            "INSERT INTO dedup_entries(source_id, fingerprint, first_seen_at, position) "
                            "VALUES (?, ?, ?, ?)",
                            [
                                (source_id, fingerprint, _to_text(seen_at), position)
                                for position, (fingerprint, seen_at) in enumerate(record.entries.items())
                            ],
                        )
            except sqlite3.Error as exc:
                raise PersistenceError(f"Cannot save dedup records to {self.path}: {exc}") from exc

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None


__all__ = ["SQLiteRecordRepository"]
