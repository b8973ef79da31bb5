"""Deduplication layer keeping, per source, the fingerprints already notified."""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Mapping, Protocol

import structlog


class PersistenceError(Exception):
    """Raised when dedup records cannot be loaded from or written to storage."""


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


@dataclass
class DedupRecord:
    """Bounded, insertion-ordered fingerprint history of one source."""

    source_id: str
    entries: "OrderedDict[str, datetime]" = field(default_factory=OrderedDict)
    last_checked_at: datetime | None = None

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, fingerprint: object) -> bool:
        return fingerprint in self.entries

    def copy(self) -> "DedupRecord":
        return DedupRecord(self.source_id, OrderedDict(self.entries), self.last_checked_at)


@dataclass(frozen=True, slots=True)
class RecordStats:
    source_id: str
    size: int
    last_checked_at: datetime | None
    newest_seen_at: datetime | None


class RecordRepository(Protocol):
    """Durable storage for the full set of dedup records."""

    def load_all(self) -> dict[str, DedupRecord]:
        ...

    def save_all(self, records: Mapping[str, DedupRecord]) -> None:
        ...


class DedupStore:
    """Answer "is this occurrence new?" per source, with bounded FIFO retention.

    The in-memory records are authoritative; the repository is written by
    :meth:`save` and read once by :meth:`load`. Each source has its own lock,
    so an administrative reset can run while a cycle is committing.
    """

    def __init__(
        self,
        repository: RecordRepository,
        capacity: int = 100,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.repository = repository
        self.capacity = capacity
        self.logger = logger or structlog.get_logger("page_sentinel.dedup")
        self._records: dict[str, DedupRecord] = {}
        self._locks: dict[str, Lock] = {}
        self._registry_lock = Lock()
        self._save_lock = Lock()
        self._dirty = False

    # ------------------------------------------------------------------
    def _lock_for(self, source_id: str) -> Lock:
        with self._registry_lock:
            lock = self._locks.get(source_id)
            if lock is None:
                lock = self._locks[source_id] = Lock()
            return lock

    def _mark_dirty(self) -> None:
        with self._registry_lock:
            self._dirty = True

    @property
    def dirty(self) -> bool:
        return self._dirty

    # ------------------------------------------------------------------
    def is_new(self, source_id: str, fingerprint: str) -> bool:
        with self._lock_for(source_id):
            record = self._records.get(source_id)
            return record is None or fingerprint not in record

    def commit(self, source_id: str, fingerprint: str, now: datetime) -> bool:
        """Record ``fingerprint`` as notified; return False when it was already known."""

        with self._lock_for(source_id):
            record = self._records.get(source_id)
            if record is None:
                record = self._records[source_id] = DedupRecord(source_id)
            if fingerprint in record.entries:
                return False
            record.entries[fingerprint] = _aware(now)
            self._evict(record)
        self._mark_dirty()
        return True

    def _evict(self, record: DedupRecord) -> None:
        while len(record.entries) > self.capacity:
            # min() keeps the first of equal timestamps, i.e. insertion order breaks ties
            oldest = min(record.entries, key=record.entries.__getitem__)
            del record.entries[oldest]
            self.logger.debug("fingerprint_evicted", source_id=record.source_id, fingerprint=oldest)

    def touch(self, source_id: str, now: datetime) -> None:
        with self._lock_for(source_id):
            record = self._records.get(source_id)
            if record is None:
                record = self._records[source_id] = DedupRecord(source_id)
            record.last_checked_at = _aware(now)
        self._mark_dirty()

    def reset(self, source_id: str | None = None) -> int:
        """Drop one source's record, or every record when ``source_id`` is None.

        Returns the number of fingerprints removed. The change is persisted
        immediately.
        """

        if source_id is None:
            with self._registry_lock:
                targets = list(self._records)
        else:
            targets = [source_id]
        removed = 0
        for target in targets:
            with self._lock_for(target):
                record = self._records.pop(target, None)
            if record is not None:
                removed += len(record)
        self.logger.info("dedup_reset", source_id=source_id or "*", removed=removed)
        self._mark_dirty()
        self.save()
        return removed

    # ------------------------------------------------------------------
    def size(self, source_id: str) -> int:
        with self._lock_for(source_id):
            record = self._records.get(source_id)
            return len(record) if record else 0

    def fingerprints(self, source_id: str) -> list[str]:
        with self._lock_for(source_id):
            record = self._records.get(source_id)
            return list(record.entries) if record else []

    def stats(self) -> dict[str, RecordStats]:
        with self._registry_lock:
            source_ids = sorted(self._records)
        result: dict[str, RecordStats] = {}
        for source_id in source_ids:
            with self._lock_for(source_id):
                record = self._records.get(source_id)
                if record is None:
                    continue
                newest = max(record.entries.values()) if record.entries else None
                result[source_id] = RecordStats(
                    source_id=source_id,
                    size=len(record),
                    last_checked_at=record.last_checked_at,
                    newest_seen_at=newest,
                )
        return result

    def snapshot(self) -> dict[str, DedupRecord]:
        with self._registry_lock:
            source_ids = list(self._records)
        copies: dict[str, DedupRecord] = {}
        for source_id in source_ids:
            with self._lock_for(source_id):
                record = self._records.get(source_id)
                if record is not None:
                    copies[source_id] = record.copy()
        return copies

    # ------------------------------------------------------------------
    def load(self) -> None:
        """Replace in-memory state with the persisted records; empty on failure."""

        try:
            loaded = self.repository.load_all()
        except PersistenceError as exc:
            self.logger.error("dedup_load_failed", error=str(exc))
            loaded = {}
        for record in loaded.values():
            self._evict(record)
        with self._registry_lock:
            self._records = dict(loaded)
            self._dirty = False
        self.logger.info(
            "dedup_loaded",
            sources=len(loaded),
            fingerprints=sum(len(record) for record in loaded.values()),
        )

    def save(self) -> bool:
        """Persist every record; on failure keep memory authoritative and stay dirty."""

        with self._save_lock:
            with self._registry_lock:
                self._dirty = False
            records = self.snapshot()
            try:
                self.repository.save_all(records)
            except PersistenceError as exc:
                self._mark_dirty()
                self.logger.error("dedup_save_failed", error=str(exc))
                return False
        self.logger.debug("dedup_saved", sources=len(records))
        return True


__all__ = ["DedupRecord", "DedupStore", "PersistenceError", "RecordRepository", "RecordStats"]
