"""Notification sinks and factory."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

from ...config import SinkConfig, SinkType
from .base import BaseSink, CompositeSink, DeliveryError, NotificationBatch
from .console_sink import ConsoleSink, LogSink
from .file_sink import FileSink


def build_sink(configs: Iterable[SinkConfig], base_dir: Path) -> CompositeSink:
    """Instantiate the configured sinks; relative file paths live under ``base_dir``."""

    sinks: list[BaseSink] = []
    for config in configs:
        if config.type is SinkType.LOG:
            sinks.append(LogSink())
        elif config.type is SinkType.CONSOLE:
            sinks.append(ConsoleSink())
        elif config.type is SinkType.FILE:
            path = config.path if config.path.is_absolute() else base_dir / config.path
            sinks.append(FileSink(path, config.format))
        else:
            raise ValueError(f"Unsupported sink type: {config.type}")
    return CompositeSink(sinks)


__all__ = [
    "BaseSink",
    "CompositeSink",
    "ConsoleSink",
    "DeliveryError",
    "FileSink",
    "LogSink",
    "NotificationBatch",
    "build_sink",
]
