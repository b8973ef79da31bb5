"""Sinks that surface detections locally: structured log events and a rich console panel."""

from __future__ import annotations

import structlog
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .base import BaseSink, DeliveryError, NotificationBatch


class LogSink(BaseSink):
    """Emit one ``occurrence_detected`` event per occurrence."""

    name = "log"

    def __init__(self, logger: structlog.stdlib.BoundLogger | None = None) -> None:
        self.logger = logger or structlog.get_logger("page_sentinel.sink")

    def deliver(self, batch: NotificationBatch) -> None:
        for record in batch.records():
            self.logger.info("occurrence_detected", **record)


class ConsoleSink(BaseSink):
    """Print a panel per batch, one row per detected occurrence."""

    name = "console"

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def deliver(self, batch: NotificationBatch) -> None:
        table = Table(box=box.SIMPLE_HEAD, show_lines=False, expand=True)
        table.add_column("Pattern", style="magenta", no_wrap=True)
        table.add_column("Content", style="white", overflow="fold")
        table.add_column("Detected", style="dim", no_wrap=True)
        for occurrence in batch.occurrences:
            table.add_row(
                Text(occurrence.pattern),
                Text(occurrence.context_text),
                occurrence.extracted_at.strftime("%Y-%m-%d %H:%M:%S"),
            )
        panel = Panel(
            table,
            title=Text(f"New update · {batch.display_name}"),
            subtitle=Text(batch.location),
            border_style="cyan",
        )
        try:
            self.console.print(panel)
        except OSError as exc:
            raise DeliveryError(f"console unavailable: {exc}") from exc


__all__ = ["ConsoleSink", "LogSink"]
