"""Locate the project home and read/write its YAML configuration files."""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator

import yaml

from .models import GlobalConfig, SourceConfig, slugify

CONFIG_EXTENSIONS = (".yaml", ".yml", ".json")
GLOBAL_CONFIG_FILENAME = "global_config.yaml"
HOME_ENV_VAR = "PAGE_SENTINEL_HOME"


def project_root() -> Path:
    """Home directory holding ``data/`` and ``logs/``.

    ``$PAGE_SENTINEL_HOME`` wins; otherwise the checkout containing the package.
    """

    configured = os.environ.get(HOME_ENV_VAR)
    if configured:
        return Path(configured).expanduser().resolve()
    return Path(__file__).resolve().parents[2]


def _read_mapping(path: Path) -> dict:
    raw = path.read_text(encoding="utf-8")
    payload = json.loads(raw) if path.suffix == ".json" else yaml.safe_load(raw)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValueError(f"{path} must hold a mapping, got {type(payload).__name__}")
    return payload


def _dump_mapping(path: Path, payload: dict) -> None:
    # write a sibling temp file, then rename it over the target
    fd, scratch = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}-", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as stream:
            if path.suffix == ".json":
                json.dump(payload, stream, indent=2, ensure_ascii=False)
            else:
                yaml.safe_dump(payload, stream, allow_unicode=True, sort_keys=False)
        os.replace(scratch, path)
    except BaseException:
        Path(scratch).unlink(missing_ok=True)
        raise


@dataclass(slots=True)
class ConfigLocator:
    """Directory layout under the project home."""

    project_root: Path | None = None
    data_dir: Path = field(init=False)
    history_dir: Path = field(init=False)
    sources_dir: Path = field(init=False)
    outputs_dir: Path = field(init=False)
    logs_dir: Path = field(init=False)

    def __post_init__(self) -> None:
        if self.project_root is None or os.environ.get(HOME_ENV_VAR):
            home = project_root()
        else:
            home = self.project_root.resolve()
        self.project_root = home
        self.data_dir = home / "data"
        self.history_dir = self.data_dir / "history"
        self.sources_dir = self.data_dir / "sources"
        self.outputs_dir = self.data_dir / "outputs"
        self.logs_dir = home / "logs"
        for directory in (self.history_dir, self.sources_dir, self.outputs_dir, self.logs_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def global_config_path(self) -> Path:
        return self.data_dir / GLOBAL_CONFIG_FILENAME

    def source_file(self, source_id: str) -> Path:
        return self.sources_dir / f"{slugify(source_id)}.yaml"


class ConfigRepository:
    """Validated access to ``global_config.yaml`` and ``sources/*.yaml``."""

    def __init__(self, locator: ConfigLocator | None = None) -> None:
        self.locator = locator or ConfigLocator()
        self._global: GlobalConfig | None = None

    # ------------------------------------------------------------------
    # Global configuration
    # ------------------------------------------------------------------
    def load_global_config(self, refresh: bool = False) -> GlobalConfig:
        """Return the global settings, writing the defaults out on first use."""

        if self._global is not None and not refresh:
            return self._global
        path = self.locator.global_config_path()
        if not path.exists():
            self.save_global_config(GlobalConfig())
            return self._global  # type: ignore[return-value]
        self._global = GlobalConfig.model_validate(_read_mapping(path))
        return self._global

    def save_global_config(self, config: GlobalConfig) -> None:
        _dump_mapping(self.locator.global_config_path(), config.model_dump(mode="json"))
        self._global = config

    def store_path(self) -> Path:
        """Dedup database location; relative settings hang off ``data/``."""

        return self.load_global_config().dedup.resolved_store_path(self.locator.data_dir)

    # ------------------------------------------------------------------
    # Watched sources
    # ------------------------------------------------------------------
    def source_files(self) -> Iterator[Path]:
        for path in sorted(self.locator.sources_dir.iterdir()):
            if path.is_file() and not path.name.startswith(".") and path.suffix in CONFIG_EXTENSIONS:
                yield path

    def list_sources(self) -> list[SourceConfig]:
        """Every configured source, in file-name order; ids must be unique."""

        origin: dict[str, Path] = {}
        sources: list[SourceConfig] = []
        for path in self.source_files():
            source = self.load_source(path)
            previous = origin.setdefault(source.source_id, path)
            if previous != path:
                raise ValueError(
                    f"Duplicate source id {source.source_id!r} in {previous.name} and {path.name}"
                )
            sources.append(source)
        return sources

    def load_source(self, identifier: str | Path) -> SourceConfig:
        path = identifier if isinstance(identifier, Path) else self.locator.source_file(identifier)
        if not path.is_file():
            raise FileNotFoundError(f"No source configuration for {identifier!s}")
        return SourceConfig.model_validate(_read_mapping(path))

    def save_source(self, source: SourceConfig) -> Path:
        path = self.locator.source_file(source.source_id)
        _dump_mapping(path, source.model_dump(mode="json"))
        return path

    def delete_source(self, source_id: str) -> bool:
        path = self.locator.source_file(source_id)
        if not path.exists():
            return False
        path.unlink()
        return True


__all__ = ["CONFIG_EXTENSIONS", "ConfigLocator", "ConfigRepository", "HOME_ENV_VAR", "project_root"]
