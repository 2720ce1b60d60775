"""Utilities for loading application settings from YAML configuration files."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from sqlblocks.core.models import PageMarkers

ENGINE_PROVIDERS = {"duckdb", "static"}
DEFAULT_MAX_SESSIONS = 32


@dataclass(slots=True)
class EngineSettings:
    provider: str = "duckdb"
    database: str = ":memory:"
    setup_scripts: list[str] = field(default_factory=list)
    threads: int | None = None
    memory_limit: str | None = None
    fixtures_path: str | None = None


@dataclass(slots=True)
class CannedSettings:
    spacing_lines: int = 2


@dataclass(slots=True)
class SessionSettings:
    max_sessions: int = DEFAULT_MAX_SESSIONS


@dataclass(slots=True)
class PathsSettings:
    block_logs_dir: str | None = None


@dataclass(slots=True)
class Settings:
    pages_dir: str
    markers: PageMarkers
    engine: EngineSettings
    canned: CannedSettings
    paths: PathsSettings | None
    sessions: SessionSettings = field(default_factory=SessionSettings)


def _load_yaml(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}


def _resolve_relative(base: Path, value: str) -> str:
    candidate = Path(value).expanduser()
    if candidate.is_absolute():
        return str(candidate)
    return str((base / candidate).resolve())


def load_settings(path: str | Path) -> Settings:
    """Read configuration from *path* and return structured settings.

    Relative paths inside the file are resolved against the file's directory.
    """

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")
    raw = _load_yaml(config_path)
    base = config_path.parent

    markers_raw = raw.get("markers") or {}
    defaults = PageMarkers()
    markers = PageMarkers(
        live_class=str(markers_raw.get("live_class", defaults.live_class)),
        canned_class=str(markers_raw.get("canned_class", defaults.canned_class)),
        query_class=str(markers_raw.get("query_class", defaults.query_class)),
        result_class=str(markers_raw.get("result_class", defaults.result_class)),
        canned_query_flag=str(markers_raw.get("canned_query_flag", defaults.canned_query_flag)),
        trigger_label=str(markers_raw.get("trigger_label", defaults.trigger_label)),
    )
    if markers.live_class == markers.canned_class:
        raise ValueError("Live and canned block markers must differ")

    engine_raw = raw.get("engine") or {}
    provider = str(engine_raw.get("provider", "duckdb")).lower()
    if provider not in ENGINE_PROVIDERS:
        raise ValueError(f"Unknown engine provider '{provider}'")
    threads = engine_raw.get("threads")
    memory_limit = engine_raw.get("memory_limit")
    fixtures_path = engine_raw.get("fixtures_path")
    engine = EngineSettings(
        provider=provider,
        database=str(engine_raw.get("database", ":memory:")),
        setup_scripts=[
            _resolve_relative(base, str(script)) for script in engine_raw.get("setup_scripts") or []
        ],
        threads=int(threads) if threads is not None else None,
        memory_limit=str(memory_limit) if memory_limit else None,
        fixtures_path=_resolve_relative(base, str(fixtures_path)) if fixtures_path else None,
    )
    if engine.provider == "static" and engine.fixtures_path is None:
        raise ValueError("The static engine provider requires 'fixtures_path'")

    canned_raw = raw.get("canned") or {}
    spacing_lines = int(canned_raw.get("spacing_lines", 2))
    if spacing_lines < 0:
        raise ValueError("canned.spacing_lines must not be negative")

    sessions_raw = raw.get("sessions") or {}
    max_sessions = int(sessions_raw.get("max_sessions", DEFAULT_MAX_SESSIONS))
    if max_sessions < 1:
        raise ValueError("sessions.max_sessions must be at least 1")

    paths_raw: dict[str, Any] | None = raw.get("paths")
    paths = None
    if paths_raw:
        block_logs_dir = paths_raw.get("block_logs_dir")
        paths = PathsSettings(
            block_logs_dir=_resolve_relative(base, str(block_logs_dir)) if block_logs_dir else None,
        )

    return Settings(
        pages_dir=_resolve_relative(base, str(raw.get("pages_dir", "pages"))),
        markers=markers,
        engine=engine,
        canned=CannedSettings(spacing_lines=spacing_lines),
        paths=paths,
        sessions=SessionSettings(max_sessions=max_sessions),
    )
