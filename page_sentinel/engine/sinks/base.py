"""Notification sink Service Provider Interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, Sequence

from ..extractor import CandidateOccurrence


class DeliveryError(Exception):
    """Raised by a sink when a batch could not be handed over."""


@dataclass(frozen=True, slots=True)
class NotificationBatch:
    """Occurrences of one source that became known in one cycle."""

    source_id: str
    display_name: str
    location: str
    occurrences: tuple[CandidateOccurrence, ...]

    def __len__(self) -> int:
        return len(self.occurrences)

    def records(self) -> list[dict]:
        return [
            {
                "source_id": self.source_id,
                "display_name": self.display_name,
                "location": self.location,
                "pattern": occurrence.pattern,
                "content": occurrence.context_text,
                "detected_at": occurrence.extracted_at.isoformat(),
            }
            for occurrence in self.occurrences
        ]


class BaseSink(ABC):
    """Uniform sink contract enabling plug-and-play delivery targets."""

    name: str = "sink"

    @abstractmethod
    def deliver(self, batch: NotificationBatch) -> None:
        """Hand ``batch`` over; raise :class:`DeliveryError` on failure."""

    def close(self) -> None:
        """Release underlying resources."""


class CompositeSink(BaseSink):
    """Fan a batch out to every configured sink.

    Every sink is tried, whatever the previous one raised; a single
    :class:`DeliveryError` summarises the failures afterwards.
    """

    name = "composite"

    def __init__(self, sinks: Iterable[BaseSink]) -> None:
        self.sinks: Sequence[BaseSink] = list(sinks)

    def deliver(self, batch: NotificationBatch) -> None:
        if not self.sinks:
            raise DeliveryError("no notification sink configured")
        failures: list[str] = []
        for sink in self.sinks:
            try:
                sink.deliver(batch)
            except DeliveryError as exc:
                failures.append(f"{sink.name}: {exc}")
            except Exception as exc:  # noqa: BLE001
                failures.append(f"{sink.name}: {type(exc).__name__}: {exc}")
        if failures:
            raise DeliveryError("; ".join(failures))

    def close(self) -> None:
        for sink in self.sinks:
            sink.close()


__all__ = ["BaseSink", "CompositeSink", "DeliveryError", "NotificationBatch"]
