"""Exclusive ownership of the dedup store across processes."""

from __future__ import annotations

import errno
import fcntl
import os
from pathlib import Path
from typing import IO

from ..engine.dedup import PersistenceError


class StoreLockedError(PersistenceError):
    """Another process already owns the dedup store."""

    def __init__(self, path: Path, owner: str | None) -> None:
        self.path = path
        self.owner = owner
        holder = f"pid {owner}" if owner else "another process"
        super().__init__(f"{path} is held by {holder}")


def lock_path_for(store_path: Path) -> Path:
    return store_path.with_name(f"{store_path.name}.lock")


class StoreLock:
    """``flock`` on a file next to the store; the owning pid is written into it.

    Only the process holding the lock may load, mutate and save the store.
    The kernel drops the lock when the process dies.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._handle: IO[str] | None = None

    @classmethod
    def for_store(cls, store_path: Path) -> "StoreLock":
        return cls(lock_path_for(store_path))

    @property
    def held(self) -> bool:
        return self._handle is not None

    def acquire(self) -> None:
        if self._handle is not None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            handle = open(self.path, "a+", encoding="utf-8")
        except OSError as exc:
            raise PersistenceError(f"Cannot open lock file {self.path}: {exc}") from exc
        try:
            fcntl.flock(handle, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as exc:
            handle.seek(0)
            owner = handle.read().strip() or None
            handle.close()
            if exc.errno in (errno.EAGAIN, errno.EACCES):
                raise StoreLockedError(self.path, owner) from exc
            raise PersistenceError(f"Cannot lock {self.path}: {exc}") from exc
        handle.seek(0)
        handle.truncate()
        handle.write(str(os.getpid()))
        handle.flush()
        self._handle = handle

    def release(self) -> None:
        if self._handle is None:
            return
        handle, self._handle = self._handle, None
        handle.truncate(0)
        fcntl.flock(handle, fcntl.LOCK_UN)
        handle.close()

    def __enter__(self) -> "StoreLock":
        self.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()


__all__ = ["StoreLock", "StoreLockedError", "lock_path_for"]
