"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository
from .models import (
    DedupConfig,
    ExtractionConfig,
    FetchConfig,
    FingerprintConfig,
    GlobalConfig,
    PatternConfig,
    ScheduleConfig,
    SinkConfig,
    SinkType,
    SourceConfig,
    slugify,
    source_id_from_location,
)

__all__ = [
    "ConfigLocator",
    "ConfigRepository",
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
