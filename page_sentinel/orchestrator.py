"""Check-cycle orchestrator wiring fetching, extraction, dedup and delivery."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from threading import Event, Lock
from typing import Callable, Iterable, Sequence

import structlog

from .config import ConfigRepository, GlobalConfig, SourceConfig
from .engine import CandidateOccurrence, DedupStore, Extractor, FetchError, Fetcher, Fingerprinter
from .engine.sinks import BaseSink, DeliveryError, NotificationBatch
from .logging_conf import configure_logging, source_logger


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CycleBusyError(RuntimeError):
    """Raised when a manual check cannot enter the pipeline in time."""


class SourcePhase(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    FILTERING = "filtering"
    NOTIFYING = "notifying"


class CheckStatus(str, Enum):
    OK = "ok"
    FETCH_FAILED = "fetch_failed"
    ERROR = "error"
    ABANDONED = "abandoned"


@dataclass(slots=True)
class SourceCheckResult:
    source_id: str
    status: CheckStatus
    candidates: int = 0
    new: int = 0
    delivered: bool | None = None
    error: str | None = None


@dataclass(slots=True)
class CycleSummary:
    trigger: str
    started_at: datetime
    finished_at: datetime | None = None
    results: list[SourceCheckResult] = field(default_factory=list)

    @property
    def total_new(self) -> int:
        return sum(result.new for result in self.results)

    @property
    def failed(self) -> int:
        return sum(1 for result in self.results if result.status is not CheckStatus.OK)


@dataclass(frozen=True, slots=True)
class SourceStatus:
    source_id: str
    display_name: str
    location: str
    phase: SourcePhase
    known_fingerprints: int
    last_checked_at: datetime | None
    newest_seen_at: datetime | None


class Orchestrator:
    """Central coordinator of the check pipeline.

    Scheduled ticks and manual triggers share one lock, so at most one cycle
    runs at a time; sources inside a cycle are checked one after another.
    """

    def __init__(
        self,
        config_repository: ConfigRepository,
        scheduler,
        dedup_store: DedupStore,
        sink: BaseSink,
        fetcher: Fetcher | None = None,
        extractor: Extractor | None = None,
        fingerprinter: Fingerprinter | None = None,
        sources: Sequence[SourceConfig] | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.config_repository = config_repository
        self.global_config: GlobalConfig = config_repository.load_global_config()
        self.scheduler = scheduler
        self.dedup_store = dedup_store
        self.sink = sink
        self.fetcher = fetcher or Fetcher(self.global_config.fetch)
        self.extractor = extractor or Extractor(self.global_config.extraction)
        self.fingerprinter = fingerprinter or Fingerprinter(self.global_config.fingerprint)
        self.sources: tuple[SourceConfig, ...] = tuple(
            sources if sources is not None else config_repository.list_sources()
        )
        self.clock = clock
        self.logger = configure_logging().bind(component="orchestrator")
        self._cycle_lock = Lock()
        self._stop_event = Event()
        self._phases: dict[str, SourcePhase] = {s.source_id: SourcePhase.IDLE for s in self.sources}
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        """Schedule the periodic cycle; the dedup store is expected to be loaded already."""

        self.scheduler.schedule_cycle(self.global_config.schedule, self.run_scheduled_cycle)
        self.scheduler.start()
        self.logger.info(
            "monitor_started",
            sources=[source.source_id for source in self.sources],
            interval=self.global_config.schedule.check_interval,
        )

    def stop(self) -> None:
        """Stop the timer, let the running cycle wind down and release resources."""

        if self._closed:
            return
        self._stop_event.set()
        self.scheduler.shutdown(wait=True)
        # the scheduler already waited for its job; this also covers manual runs
        with self._cycle_lock:
            if self.dedup_store.dirty:
                self.dedup_store.save()
            self.fetcher.close()
            self.sink.close()
            repository_close = getattr(self.dedup_store.repository, "close", None)
            if callable(repository_close):
                repository_close()
            self._closed = True
        self.logger.info("monitor_stopped")

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    # ------------------------------------------------------------------
    # Cycle entry points
    # ------------------------------------------------------------------
    def run_scheduled_cycle(self) -> CycleSummary | None:
        if not self._cycle_lock.acquire(blocking=False):
            self.logger.warning("cycle_skipped", reason="previous cycle still running")
            return None
        try:
            return self._run_cycle("scheduled", self.sources)
        finally:
            self._cycle_lock.release()

    def run_manual_cycle(
        self,
        source_ids: Iterable[str] | None = None,
        wait_timeout: float | None = None,
    ) -> CycleSummary:
        sources = self._select_sources(source_ids)
        timeout = self.global_config.schedule.manual_wait_timeout if wait_timeout is None else wait_timeout
        if not self._cycle_lock.acquire(timeout=timeout):
            raise CycleBusyError(f"a check cycle is still running after {timeout:.0f}s")
        try:
            return self._run_cycle("manual", sources)
        finally:
            self._cycle_lock.release()

    def _select_sources(self, source_ids: Iterable[str] | None) -> tuple[SourceConfig, ...]:
        if source_ids is None:
            return self.sources
        wanted = list(source_ids)
        if not wanted:
            return self.sources
        by_id = {source.source_id: source for source in self.sources}
        unknown = [source_id for source_id in wanted if source_id not in by_id]
        if unknown:
            raise KeyError(f"Unknown source id(s): {', '.join(unknown)}")
        return tuple(by_id[source_id] for source_id in wanted)

    def _run_cycle(self, trigger: str, sources: Sequence[SourceConfig]) -> CycleSummary:
        summary = CycleSummary(trigger=trigger, started_at=self.clock())
        self.logger.info("cycle_started", trigger=trigger, sources=len(sources))
        for index, source in enumerate(sources):
            if self.stopping:
                self.logger.info("cycle_interrupted", remaining=len(sources) - index)
                break
            if index and self._pace():
                break
            try:
                result = self.check_source(source)
            except Exception as exc:  # noqa: BLE001
                self.logger.error(
                    "source_check_error",
                    source_id=source.source_id,
                    error=str(exc),
                    exc_info=True,
                )
                result = SourceCheckResult(source.source_id, CheckStatus.ERROR, error=str(exc))
            finally:
                self._phases[source.source_id] = SourcePhase.IDLE
            summary.results.append(result)
        if any(result.new for result in summary.results):
            self.dedup_store.save()
        summary.finished_at = self.clock()
        self.logger.info(
            "cycle_finished",
            trigger=trigger,
            new=summary.total_new,
            failed=summary.failed,
            duration=round((summary.finished_at - summary.started_at).total_seconds(), 3),
        )
        return summary

    def _pace(self) -> bool:
        """Wait between two sources; True means a stop was requested meanwhile."""

        low, high = self.global_config.schedule.pacing_delay_range
        delay = random.uniform(low, high) if high > low else low
        if delay <= 0:
            return self.stopping
        return self._stop_event.wait(delay)

    # ------------------------------------------------------------------
    # Per-source routine
    # ------------------------------------------------------------------
    def check_source(self, source: SourceConfig) -> SourceCheckResult:
        log = source_logger(source.source_id)
        source_id = source.source_id

        self._phases[source_id] = SourcePhase.FETCHING
        try:
            response = self.fetcher.fetch(source.location, self.global_config.fetch.timeout)
        except FetchError as exc:
            log.warning("fetch_failed", location=source.location, kind=exc.kind.value, error=str(exc))
            return SourceCheckResult(source_id, CheckStatus.FETCH_FAILED, error=str(exc))

        now = self.clock()
        self._phases[source_id] = SourcePhase.EXTRACTING
        occurrences = self.extractor.extract(response.text, source, extracted_at=now)

        self._phases[source_id] = SourcePhase.FILTERING
        fresh: dict[str, CandidateOccurrence] = {}
        candidates = 0
        for occurrence in occurrences:
            candidates += 1
            fingerprint = self.fingerprinter.fingerprint(occurrence)
            if fingerprint in fresh or not self.dedup_store.is_new(source_id, fingerprint):
                continue
            fresh[fingerprint] = occurrence
        self.dedup_store.touch(source_id, now)

        if not fresh:
            log.info("source_checked", candidates=candidates, new=0)
            return SourceCheckResult(source_id, CheckStatus.OK, candidates=candidates)
        if self.stopping:
            # nothing is committed for a batch that will not be delivered
            log.info("batch_abandoned", new=len(fresh))
            return SourceCheckResult(source_id, CheckStatus.ABANDONED, candidates=candidates)

        for fingerprint in fresh:
            self.dedup_store.commit(source_id, fingerprint, now)
        log.info("occurrences_committed", candidates=candidates, new=len(fresh))

        self._phases[source_id] = SourcePhase.NOTIFYING
        batch = NotificationBatch(
            source_id=source_id,
            display_name=source.display_name,
            location=source.location,
            occurrences=tuple(fresh.values()),
        )
        delivered = self._deliver(batch, log)
        return SourceCheckResult(
            source_id,
            CheckStatus.OK,
            candidates=candidates,
            new=len(fresh),
            delivered=delivered,
        )

    def _deliver(self, batch: NotificationBatch, log: structlog.stdlib.BoundLogger) -> bool:
        try:
            self.sink.deliver(batch)
        except DeliveryError as exc:
            log.error("delivery_failed", occurrences=len(batch), error=str(exc))
            return False
        except Exception as exc:  # noqa: BLE001
            log.error("delivery_failed", occurrences=len(batch), error=str(exc), exc_info=True)
            return False
        log.info("batch_delivered", occurrences=len(batch))
        return True

    # ------------------------------------------------------------------
    # Status & administration
    # ------------------------------------------------------------------
    def status(self) -> list[SourceStatus]:
        stats = self.dedup_store.stats()
        rows: list[SourceStatus] = []
        for source in self.sources:
            record = stats.get(source.source_id)
            rows.append(
                SourceStatus(
                    source_id=source.source_id,
                    display_name=source.display_name,
                    location=source.location,
                    phase=self._phases.get(source.source_id, SourcePhase.IDLE),
                    known_fingerprints=record.size if record else 0,
                    last_checked_at=record.last_checked_at if record else None,
                    newest_seen_at=record.newest_seen_at if record else None,
                )
            )
        return rows

    def reset(self, source_id: str | None = None) -> int:
        if (
            source_id is not None
            and source_id not in self._phases
            and source_id not in self.dedup_store.stats()
        ):
            raise KeyError(f"Unknown source id: {source_id}")
        return self.dedup_store.reset(source_id)

    def next_run_time(self) -> datetime | None:
        getter = getattr(self.scheduler, "next_run_time", None)
        return getter() if callable(getter) else None


__all__ = [
    "CheckStatus",
    "CycleBusyError",
    "CycleSummary",
    "Orchestrator",
    "SourceCheckResult",
    "SourcePhase",
    "SourceStatus",
]
