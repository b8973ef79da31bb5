from __future__ import annotations

from datetime import datetime, timedelta, timezone
from threading import Thread

import pytest

from page_sentinel.engine import DedupStore, FetchError, FetchResponse
from page_sentinel.engine.sinks import BaseSink, DeliveryError, NotificationBatch
from page_sentinel.orchestrator import CheckStatus, CycleBusyError, Orchestrator, SourcePhase

GAZETTE = "Diário Oficial da União. EDIÇÃO: 123 de 01/02/2024 Seção 1. Atos do Poder Executivo."


class StubScheduler:
    def __init__(self) -> None:
        self.scheduled = None
        self.started = False
        self.shutdowns = 0

    def schedule_cycle(self, schedule, callback) -> None:  # noqa: ANN001
        self.scheduled = (schedule, callback)

    def start(self) -> None:
        self.started = True

    def shutdown(self, wait: bool = True) -> None:
        self.shutdowns += 1

    def next_run_time(self):
        return None


class StubFetcher:
    """Serve canned bodies per location; exceptions in the queue are raised once."""

    def __init__(self, pages: dict[str, object]) -> None:
        self.pages = pages
        self.queued: dict[str, list[Exception]] = {}
        self.calls: list[str] = []
        self.on_fetch = None
        self.closed = False

    def fail_next(self, location: str, exc: Exception) -> None:
        self.queued.setdefault(location, []).append(exc)

    def fetch(self, location: str, timeout: float | None = None) -> FetchResponse:
        self.calls.append(location)
        if self.on_fetch is not None:
            self.on_fetch(location)
        pending = self.queued.get(location)
        if pending:
            raise pending.pop(0)
        return FetchResponse(url=location, status_code=200, text=str(self.pages[location]))

    def close(self) -> None:
        self.closed = True


class RecordingSink(BaseSink):
    name = "recording"

    def __init__(self, fail: bool = False) -> None:
        self.batches: list[NotificationBatch] = []
        self.fail = fail
        self.closed = False

    def deliver(self, batch: NotificationBatch) -> None:
        if self.fail:
            raise DeliveryError("channel not found")
        self.batches.append(batch)

    def close(self) -> None:
        self.closed = True


class Clock:
    def __init__(self) -> None:
        self.now = datetime(2024, 2, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def sources(sample_source_config):
    return [
        sample_source_config(),
        sample_source_config(
            source_id="second",
            display_name="Second Gazette",
            location="https://example.org/second",
        ),
    ]


@pytest.fixture
def fetcher(sources) -> StubFetcher:
    return StubFetcher({source.location: GAZETTE for source in sources})


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def store(memory_repository) -> DedupStore:
    return DedupStore(memory_repository, capacity=10)


@pytest.fixture
def orchestrator(temp_config_repository, sources, fetcher, sink, store) -> Orchestrator:
    return Orchestrator(
        config_repository=temp_config_repository,
        scheduler=StubScheduler(),
        dedup_store=store,
        sink=sink,
        fetcher=fetcher,
        sources=sources,
        clock=Clock(),
    )


def test_first_cycle_reports_then_suppresses(orchestrator, sink, store) -> None:
    first = orchestrator.run_manual_cycle(["example"])
    assert first.total_new == 1
    assert first.results[0].status is CheckStatus.OK
    assert first.results[0].delivered is True
    assert len(sink.batches) == 1
    assert sink.batches[0].occurrences[0].pattern == "EDIÇÃO:"
    assert store.size("example") == 1

    second = orchestrator.run_manual_cycle(["example"])
    assert second.total_new == 0
    assert len(sink.batches) == 1


def test_cycle_saves_store_after_commits(orchestrator, memory_repository) -> None:
    orchestrator.run_manual_cycle()
    assert memory_repository.saves == 1
    assert set(memory_repository.records) == {"example", "second"}


def test_failed_fetch_does_not_block_other_sources(orchestrator, fetcher, sink, store) -> None:
    fetcher.fail_next("https://example.com/gazette", FetchError("Timed out after 15s"))

    summary = orchestrator.run_scheduled_cycle()
    statuses = {result.source_id: result.status for result in summary.results}
    assert statuses == {"example": CheckStatus.FETCH_FAILED, "second": CheckStatus.OK}
    assert [batch.source_id for batch in sink.batches] == ["second"]
    assert store.size("example") == 0

    retry = orchestrator.run_scheduled_cycle()
    assert {result.source_id: result.new for result in retry.results} == {"example": 1, "second": 0}
    assert fetcher.calls.count("https://example.com/gazette") == 2


def test_unexpected_error_is_isolated_to_its_source(orchestrator, fetcher) -> None:
    fetcher.fail_next("https://example.org/second", RuntimeError("boom"))
    summary = orchestrator.run_manual_cycle()
    assert [result.status for result in summary.results] == [CheckStatus.OK, CheckStatus.ERROR]
    assert summary.results[1].error == "boom"
    assert summary.failed == 1


def test_reset_reports_seen_content_again_once(orchestrator, sink) -> None:
    orchestrator.run_manual_cycle(["example"])
    assert orchestrator.reset("example") == 1

    again = orchestrator.run_manual_cycle(["example"])
    assert again.total_new == 1
    assert orchestrator.run_manual_cycle(["example"]).total_new == 0
    assert len(sink.batches) == 2


def test_reset_unknown_source_is_rejected(orchestrator) -> None:
    with pytest.raises(KeyError):
        orchestrator.reset("nowhere")
    assert orchestrator.reset() == 0


def test_reset_runs_while_a_cycle_is_in_flight(orchestrator, fetcher, sink, store) -> None:
    orchestrator.run_manual_cycle(["example"])
    removed: list[int] = []

    def reset_from_another_thread(location: str) -> None:
        worker = Thread(target=lambda: removed.append(orchestrator.reset("example")))
        worker.start()
        worker.join(timeout=5)

    fetcher.on_fetch = reset_from_another_thread
    summary = orchestrator.run_manual_cycle(["example"])
    assert removed == [1]
    assert summary.total_new == 1
    assert len(sink.batches) == 2
    assert store.size("example") == 1


def test_new_entry_further_down_is_the_only_report(orchestrator, fetcher, sink) -> None:
    location = "https://example.com/gazette"
    filler = " Atos diversos do dia." * 10
    fetcher.pages[location] = GAZETTE + filler
    orchestrator.run_manual_cycle(["example"])
    fetcher.pages[location] = GAZETTE + filler + " EDIÇÃO: 124 de 02/02/2024 Seção 1."
    summary = orchestrator.run_manual_cycle(["example"])
    assert summary.total_new == 1
    assert "124" in sink.batches[-1].occurrences[0].context_text


def test_delivery_failure_keeps_commit(temp_config_repository, sources, fetcher, store) -> None:
    failing = RecordingSink(fail=True)
    orchestrator = Orchestrator(
        config_repository=temp_config_repository,
        scheduler=StubScheduler(),
        dedup_store=store,
        sink=failing,
        fetcher=fetcher,
        sources=sources,
    )
    summary = orchestrator.run_manual_cycle(["example"])
    assert summary.results[0].new == 1
    assert summary.results[0].delivered is False
    assert orchestrator.run_manual_cycle(["example"]).total_new == 0


def test_unknown_manual_source_is_rejected(orchestrator) -> None:
    with pytest.raises(KeyError):
        orchestrator.run_manual_cycle(["nowhere"])


def test_busy_pipeline_drops_tick_and_refuses_manual(orchestrator, fetcher) -> None:
    orchestrator._cycle_lock.acquire()
    try:
        assert orchestrator.run_scheduled_cycle() is None
        with pytest.raises(CycleBusyError):
            orchestrator.run_manual_cycle(wait_timeout=0.01)
    finally:
        orchestrator._cycle_lock.release()
    assert fetcher.calls == []


def test_manual_trigger_waits_for_running_cycle(orchestrator) -> None:
    orchestrator._cycle_lock.acquire()
    results: list = []
    worker = Thread(target=lambda: results.append(orchestrator.run_manual_cycle(wait_timeout=5)))
    worker.start()
    orchestrator._cycle_lock.release()
    worker.join(timeout=5)
    assert results and results[0].total_new == 2


def test_stop_during_cycle_abandons_uncommitted_batch(orchestrator, fetcher, sink, store, sources) -> None:
    fetcher.on_fetch = lambda location: orchestrator._stop_event.set()
    result = orchestrator.check_source(sources[0])
    assert result.status is CheckStatus.ABANDONED
    assert sink.batches == []
    assert store.size("example") == 0

    summary = orchestrator.run_manual_cycle()
    assert summary.results == []


def test_start_schedules_cycle(orchestrator) -> None:
    orchestrator.start()
    schedule, callback = orchestrator.scheduler.scheduled
    assert schedule.check_interval == 60
    assert callback == orchestrator.run_scheduled_cycle
    assert orchestrator.scheduler.started


def test_stop_flushes_and_closes_once(orchestrator, fetcher, sink, store, memory_repository) -> None:
    store.touch("example", datetime(2024, 2, 1, tzinfo=timezone.utc))
    orchestrator.stop()
    orchestrator.stop()
    assert orchestrator.scheduler.shutdowns == 1
    assert memory_repository.saves == 1
    assert fetcher.closed and sink.closed and memory_repository.closed
    assert orchestrator.stopping


def test_status_rows(orchestrator) -> None:
    orchestrator.run_manual_cycle(["example"])
    rows = {row.source_id: row for row in orchestrator.status()}
    assert rows["example"].known_fingerprints == 1
    assert rows["example"].last_checked_at is not None
    assert rows["example"].phase is SourcePhase.IDLE
    assert rows["second"].known_fingerprints == 0
    assert rows["second"].last_checked_at is None
