"""Factory helpers for constructing page-session dependencies from settings."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from sqlblocks.core.config import Settings
from sqlblocks.core.controller import BlockController, QueryEngine
from sqlblocks.core.models import PageMarkers
from sqlblocks.core.observability import BlockObservationSink, JSONLBlockLogger
from sqlblocks.integrations.duckdb_engine import DuckDBQueryEngine
from sqlblocks.integrations.static_engine import StaticQueryEngine

EngineFactory = Callable[[], QueryEngine]


@dataclass(slots=True)
class PageDependencies:
    """Everything a page session needs besides the page itself."""

    engine_factory: EngineFactory
    markers: PageMarkers = field(default_factory=PageMarkers)
    canned_spacing: int = 2
    block_logger: BlockObservationSink | None = None

    def build_controller(self, session_id: str, *, canned_only: bool) -> BlockController:
        """Create a controller; live pages get a freshly constructed engine."""

        engine = None if canned_only else self.engine_factory()
        return BlockController(
            session_id=session_id,
            engine=engine,
            markers=self.markers,
            canned_spacing=self.canned_spacing,
            logger=self.block_logger,
        )


def build_dependencies(settings: Settings) -> PageDependencies:
    """Create dependency instances based on *settings*."""

    block_logger: BlockObservationSink | None = None
    logs_dir = _resolve_block_logs_dir(settings)
    if logs_dir is not None:
        block_logger = JSONLBlockLogger(base_dir=logs_dir)

    return PageDependencies(
        engine_factory=build_engine_factory(settings),
        markers=settings.markers,
        canned_spacing=settings.canned.spacing_lines,
        block_logger=block_logger,
    )


def build_engine_factory(settings: Settings) -> EngineFactory:
    engine_settings = settings.engine
    if engine_settings.provider == "static":
        fixtures_path = engine_settings.fixtures_path
        if fixtures_path is None:
            raise ValueError("The static engine provider requires 'fixtures_path'")
        return lambda: StaticQueryEngine.from_yaml(fixtures_path)

    def _duckdb_engine() -> QueryEngine:
        return DuckDBQueryEngine(
            database=engine_settings.database,
            setup_scripts=list(engine_settings.setup_scripts),
            threads=engine_settings.threads,
            memory_limit=engine_settings.memory_limit,
        )

    return _duckdb_engine


def _resolve_block_logs_dir(settings: Settings) -> Path | None:
    if settings.paths is None or not settings.paths.block_logs_dir:
        return None
    path = Path(settings.paths.block_logs_dir).expanduser()
    path.mkdir(parents=True, exist_ok=True)
    return path
