"""Infra layer utilities (storage, store ownership)."""

from .process_lock import StoreLock, StoreLockedError
from .storage import SQLiteRecordRepository

__all__ = ["SQLiteRecordRepository", "StoreLock", "StoreLockedError"]
