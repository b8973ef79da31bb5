"""Shared fixtures: isolated project home, config builders and an in-memory record store."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

import pytest

from page_sentinel.config import (
    ConfigLocator,
    ConfigRepository,
    GlobalConfig,
    ScheduleConfig,
    SourceConfig,
)
from page_sentinel.engine import DedupRecord, PersistenceError


class MemoryRecordRepository:
    """Record repository keeping saved snapshots in memory."""

    def __init__(self, records: Mapping[str, DedupRecord] | None = None) -> None:
        self.records: dict[str, DedupRecord] = {
            key: value.copy() for key, value in (records or {}).items()
        }
        self.saves = 0
        self.fail_load = False
        self.fail_save = False
        self.closed = False

    def load_all(self) -> dict[str, DedupRecord]:
        if self.fail_load:
            raise PersistenceError("load refused")
        return {key: value.copy() for key, value in self.records.items()}

    def save_all(self, records: Mapping[str, DedupRecord]) -> None:
        if self.fail_save:
            raise PersistenceError("save refused")
        self.records = {key: value.copy() for key, value in records.items()}
        self.saves += 1

    def close(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("PAGE_SENTINEL_HOME", str(tmp_path))
    return tmp_path


@pytest.fixture
def memory_repository() -> MemoryRecordRepository:
    return MemoryRecordRepository()


@pytest.fixture
def sample_global_config() -> GlobalConfig:
    return GlobalConfig(
        schedule=ScheduleConfig(
            check_interval=60,
            warmup_delay=0,
            pacing_delay_range=(0.0, 0.0),
            manual_wait_timeout=0.05,
        ),
    )


@pytest.fixture
def sample_source_config() -> Callable[..., SourceConfig]:
    def _builder(**overrides: Any) -> SourceConfig:
        base: dict[str, Any] = {
            "source_id": "example",
            "display_name": "Example Gazette",
            "location": "https://example.com/gazette",
            "source_type": "dou",
            "patterns": ["EDIÇÃO:"],
        }
        base.update(overrides)
        return SourceConfig.model_validate(base)

    return _builder


@pytest.fixture
def temp_config_repository(
    tmp_path: Path, sample_global_config: GlobalConfig
) -> Iterable[ConfigRepository]:
    locator = ConfigLocator(project_root=tmp_path)
    repository = ConfigRepository(locator)
    repository.save_global_config(sample_global_config)
    yield repository
