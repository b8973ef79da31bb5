"""File based sink supporting JSONL/TXT."""

from __future__ import annotations

import json
from pathlib import Path
from threading import Lock
from typing import TextIO

from .base import BaseSink, DeliveryError, NotificationBatch


class FileSink(BaseSink):
    """Append detected occurrences to a local file, one record each."""

    name = "file"

    def __init__(self, path: Path, fmt: str = "jsonl") -> None:
        if fmt not in {"jsonl", "txt"}:
            raise ValueError(f"Unsupported file sink format: {fmt}")
        self.path = path
        self.format = fmt
        self._lock = Lock()
        self._file: TextIO | None = None
        self._counter = 0

    def _stream(self) -> TextIO:
        if self._file is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._file = self.path.open("a", encoding="utf-8", newline="")
        return self._file

    def deliver(self, batch: NotificationBatch) -> None:
        with self._lock:
            try:
                stream = self._stream()
                for record in batch.records():
                    if self.format == "jsonl":
                        json.dump(record, stream, ensure_ascii=False)
                        stream.write("\n")
                    else:
                        self._counter += 1
                        stream.write(self._format_txt(record, index=self._counter))
                stream.flush()
            except OSError as exc:
                raise DeliveryError(f"cannot write {self.path}: {exc}") from exc

    def close(self) -> None:
        with self._lock:
            if self._file is not None:
                self._file.close()
                self._file = None

    def _format_txt(self, record: dict, index: int) -> str:
        lines = [
            f"{index}. {record['display_name']} | {record['pattern']}",
            f"Detected at: {record['detected_at']}",
            str(record["content"]).strip(),
            f"Link: {record['location']}",
        ]
        # Separate records with a blank line
        return "\n".join(lines) + "\n\n"


__all__ = ["FileSink"]
