"""Pydantic models used across the page-sentinel configuration flow."""

from __future__ import annotations

import re
from enum import Enum
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def slugify(value: str) -> str:
    """Lowercase ``value`` and replace every non-alphanumeric run with ``-``."""

    return re.sub(r"[^0-9a-z]+", "-", value.lower()).strip("-")


def source_id_from_location(location: str) -> str:
    parsed = urlparse(location)
    if parsed.netloc:
        seed = f"{parsed.netloc}{parsed.path}"
        if parsed.query:
            seed = f"{seed}-{parsed.query}"
    else:
        seed = location
    slug = slugify(seed.removeprefix("www."))
    if not slug:
        raise ValueError(f"Cannot derive a source id from location: {location!r}")
    return slug


class PatternConfig(BaseModel):
    """One textual pattern looked up in a watched document."""

    model_config = ConfigDict(frozen=True)

    value: str
    regex: bool = False
    case_sensitive: bool = False

    @model_validator(mode="before")
    @classmethod
    def _coerce_plain_string(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"value": data}
        return data

    @model_validator(mode="after")
    def _validate_pattern(self) -> "PatternConfig":
        if not self.value.strip():
            raise ValueError("pattern cannot be empty")
        if self.regex:
            try:
                re.compile(self.value)
            except re.error as exc:
                raise ValueError(f"Invalid regular expression {self.value!r}: {exc}") from exc
        return self

    def compile(self) -> re.Pattern[str]:
        flags = 0 if self.case_sensitive else re.IGNORECASE
        expression = self.value if self.regex else re.escape(self.value)
        return re.compile(expression, flags)


class SourceConfig(BaseModel):
    """Immutable description of one watched document."""

    model_config = ConfigDict(frozen=True)

    source_id: str
    display_name: str
    location: str
    source_type: str
    patterns: tuple[PatternConfig, ...]

    @model_validator(mode="before")
    @classmethod
    def _derive_identity(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        payload = dict(data)
        location = str(payload.get("location") or "").strip()
        if not location:
            raise ValueError("location cannot be empty")
        payload["location"] = location
        if not payload.get("source_id"):
            payload["source_id"] = source_id_from_location(location)
        else:
            payload["source_id"] = slugify(str(payload["source_id"]))
        if not payload.get("display_name"):
            payload["display_name"] = payload["source_id"]
        if not payload.get("source_type"):
            payload["source_type"] = payload["source_id"]
        return payload

    @field_validator("source_type")
    @classmethod
    def _normalise_type(cls, value: str) -> str:
        # the type is embedded in fingerprints, keep it separator-free
        return slugify(value).replace("-", "")

    @field_validator("patterns", mode="after")
    @classmethod
    def _dedupe_patterns(cls, value: tuple[PatternConfig, ...]) -> tuple[PatternConfig, ...]:
        if not value:
            raise ValueError("at least one pattern is required")
        ordered: list[PatternConfig] = []
        for pattern in value:
            if pattern not in ordered:
                ordered.append(pattern)
        return tuple(ordered)


class ScheduleConfig(BaseModel):
    """Timer, pacing and manual trigger settings."""

    check_interval: float = Field(default=300.0, gt=0)
    warmup_delay: float = Field(default=15.0, ge=0)
    pacing_delay_range: tuple[float, float] = (2.0, 3.0)
    manual_wait_timeout: float = Field(default=60.0, ge=0)

    @field_validator("pacing_delay_range", mode="before")
    @classmethod
    def _coerce_delay(cls, value: Any) -> tuple[float, float]:
        if value in (None, ""):
            return (0.0, 0.0)
        if isinstance(value, (int, float)):
            return (float(value), float(value))
        if isinstance(value, (list, tuple)) and len(value) == 2:
            low, high = float(value[0]), float(value[1])
            if low < 0 or high < 0:
                raise ValueError("Delay range values must be non-negative")
            if high < low:
                raise ValueError("Delay range upper bound must be >= lower bound")
            return (low, high)
        raise ValueError("Delay range expects a number or a two-item list")


class FetchConfig(BaseModel):
    """Outbound request settings."""

    timeout: float = Field(default=15.0, gt=0)
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
    )
    max_bytes: int = Field(default=5 * 1024 * 1024, gt=0)
    extra_headers: dict[str, str] = Field(default_factory=dict)


class ExtractionConfig(BaseModel):
    context_chars: int = Field(default=100, ge=0)
    max_candidates_per_pattern: int = Field(default=5, ge=1)


class FingerprintConfig(BaseModel):
    prefix_length: int = Field(default=50, ge=1)
    max_length: int = Field(default=100, ge=8)


class DedupConfig(BaseModel):
    """Retention and storage of already-notified fingerprints."""

    capacity: int = Field(default=100, ge=1)
    store_path: Path = Field(default=Path("history/dedup.db"))

    @field_validator("store_path", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path:
        return Path(value)

    def resolved_store_path(self, base_dir: Path) -> Path:
        """Return the store path, relative paths being anchored at ``base_dir``."""

        if not self.store_path.is_absolute():
            return (base_dir / self.store_path).resolve()
        return self.store_path


class SinkType(str, Enum):
    """Local notification sinks."""

    LOG = "log"
    CONSOLE = "console"
    FILE = "file"


class SinkConfig(BaseModel):
    type: SinkType = SinkType.LOG
    path: Path | None = None
    format: str = "jsonl"

    @model_validator(mode="after")
    def _validate_file_sink(self) -> "SinkConfig":
        if self.type is SinkType.FILE:
            if self.path is None:
                raise ValueError("file sink requires a path")
            if self.format not in {"jsonl", "txt"}:
                raise ValueError("file sink format must be 'jsonl' or 'txt'")
        return self


class GlobalConfig(BaseModel):
    """Controls shared by every watched source."""

    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    fingerprint: FingerprintConfig = Field(default_factory=FingerprintConfig)
    dedup: DedupConfig = Field(default_factory=DedupConfig)
    sinks: list[SinkConfig] = Field(default_factory=lambda: [SinkConfig()])


__all__ = [
    "DedupConfig",
    "ExtractionConfig",
    "FetchConfig",
    "FingerprintConfig",
    "GlobalConfig",
    "PatternConfig",
    "ScheduleConfig",
    "SinkConfig",
    "SinkType",
    "SourceConfig",
    "slugify",
    "source_id_from_location",
]
