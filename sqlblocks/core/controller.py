"""Lifecycle controller for example blocks on a single page.

The controller keeps an arena of :class:`ExampleBlock` records keyed by
document-order index. Each record moves through ``armed -> executing ->
executed`` exactly once; the guard in :meth:`BlockController.trigger` flips the
state to ``executing`` before the first ``await`` so a second activation of the
same block is rejected even while the first query is still in flight.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from sqlblocks.core.models import (
    BlockMode,
    BlockState,
    CannedOutput,
    ExampleBlock,
    PageMarkers,
    ResultGroup,
    TableOutput,
)
from sqlblocks.core.observability import SESSION_CLOSED_EVENT, BlockObservationSink
from sqlblocks.core.page import PageMarkupError
from sqlblocks.core.renderer import render_result_set

LOGGER = logging.getLogger(__name__)

DEFAULT_CANNED_SPACING = 2


class QueryEngine(Protocol):
    """Embedded relational engine shared by every live block on a page."""

    async def execute(self, query: str) -> list[ResultGroup]:  # pragma: no cover - interface
        """Run *query* and return one result group per statement."""

    def close(self) -> None:  # pragma: no cover - interface
        """Release the engine's resources."""


class BlockSurface(Protocol):
    """Presentation surface owned by the page adapter for one block."""

    query_text: str | None
    placeholder: str | None

    def has_class(self, css_class: str) -> bool:  # pragma: no cover - interface
        ...

    def remove_placeholder(self) -> None:  # pragma: no cover - interface
        ...

    def install_trigger(self) -> None:  # pragma: no cover - interface
        ...

    def remove_trigger(self) -> None:  # pragma: no cover - interface
        ...

    def show_loading(self) -> None:  # pragma: no cover - interface
        ...

    def hide_loading(self) -> None:  # pragma: no cover - interface
        ...

    def append_table(self, lines: Sequence[str]) -> None:  # pragma: no cover - interface
        ...

    def reveal_payload(self, payload: str, spacing_lines: int) -> None:  # pragma: no cover - interface
        ...


class BlockPage(Protocol):
    """Page adapter able to list block surfaces by CSS class."""

    def find_blocks(self, css_class: str) -> Sequence[Any]:  # pragma: no cover - interface
        ...


@dataclass(slots=True)
class LiveQuerySource:
    """Runs a block's query on the page engine and renders the result set."""

    engine: QueryEngine

    async def fetch(self, block: ExampleBlock) -> TableOutput:
        groups = await self.engine.execute(block.query_text or "")
        return TableOutput(lines=tuple(render_result_set(groups)))


@dataclass(slots=True)
class CannedQuerySource:
    """Returns the payload attached to a block at authoring time."""

    spacing_lines: int = DEFAULT_CANNED_SPACING

    def fetch(self, block: ExampleBlock) -> CannedOutput:
        if block.payload is None:
            raise ValueError(f"Canned block {block.index} has no payload")
        return CannedOutput(payload=block.payload, spacing_lines=self.spacing_lines)


@dataclass
class BlockController:
    """Discovers, arms and triggers the example blocks of one page session."""

    session_id: str
    engine: QueryEngine | None = None
    markers: PageMarkers = field(default_factory=PageMarkers)
    canned_spacing: int = DEFAULT_CANNED_SPACING
    logger: BlockObservationSink | None = None

    def __post_init__(self) -> None:
        self._blocks: dict[int, ExampleBlock] = {}
        self._surfaces: dict[int, BlockSurface] = {}
        self._armed: set[int] = set()
        self._closed = False
        self._canned_source = CannedQuerySource(spacing_lines=self.canned_spacing)
        self._live_source = LiveQuerySource(self.engine) if self.engine is not None else None

    @property
    def blocks(self) -> list[ExampleBlock]:
        return [self._blocks[index] for index in sorted(self._blocks)]

    def get(self, index: int) -> ExampleBlock:
        block = self._blocks.get(index)
        if block is None:
            raise KeyError(index)
        return block

    def discover(self, page: BlockPage, *, canned_only: bool = False) -> list[ExampleBlock]:
        """Register the page's example blocks and return them in document order.

        Blocks carrying the canned marker are always canned. Blocks carrying
        the live marker are live, unless *canned_only* is set, in which case
        their placeholder is revealed instead of running the query.

        Indexes already registered keep their existing record, so a block is
        never reset once it has been armed or run.
        """

        surfaces: dict[int, BlockSurface] = {}
        for region in page.find_blocks(self.markers.canned_class):
            surfaces[region.index] = region
        for region in page.find_blocks(self.markers.live_class):
            surfaces.setdefault(region.index, region)

        discovered: list[ExampleBlock] = []
        for index in sorted(surfaces):
            existing = self._blocks.get(index)
            if existing is not None:
                discovered.append(existing)
                continue
            surface = surfaces[index]
            if canned_only or surface.has_class(self.markers.canned_class):
                block = self._canned_block(index, surface)
            else:
                block = self._live_block(index, surface)
            self._blocks[index] = block
            self._surfaces[index] = surface
            discovered.append(block)
            self._log_event(
                "block_discovered",
                {"index": index, "mode": block.mode.value},
            )

        LOGGER.debug(
            "Session %s discovered %s block(s) (canned_only=%s)",
            self.session_id,
            len(discovered),
            canned_only,
        )
        return discovered

    def arm(self, index: int) -> None:
        """Hide the block's placeholder and install its trigger."""

        block = self.get(index)
        if self._closed or block.state is not BlockState.ARMED or index in self._armed:
            return
        surface = self._surfaces[index]
        surface.remove_placeholder()
        surface.install_trigger()
        self._armed.add(index)
        self._log_event("block_armed", {"index": index, "mode": block.mode.value})

    def arm_all(self) -> None:
        for index in sorted(self._blocks):
            self.arm(index)

    async def trigger(self, index: int) -> bool:
        """Activate a block once; returns False when the block is not armed.

        Engine failures propagate to the caller. The loading marker stays on
        the surface and the block remains ``executing``.
        """

        block = self.get(index)
        if block.state is not BlockState.ARMED or index not in self._armed:
            LOGGER.debug(
                "Session %s ignored activation of block %s in state %s",
                self.session_id,
                index,
                block.state.value,
            )
            return False

        block.state = BlockState.EXECUTING
        surface = self._surfaces[index]
        surface.remove_trigger()
        self._log_event("block_triggered", {"index": index, "mode": block.mode.value})

        if block.mode is BlockMode.CANNED:
            output = self._canned_source.fetch(block)
            surface.reveal_payload(output.payload, output.spacing_lines)
            block.state = BlockState.EXECUTED
            self._log_event("payload_revealed", {"index": index, "bytes": len(output.payload)})
            return True

        if self._live_source is None:
            raise RuntimeError("Live block triggered without a query engine")

        surface.show_loading()
        try:
            table = await self._live_source.fetch(block)
        except Exception as exc:
            LOGGER.exception("Session %s block %s query failed", self.session_id, index)
            self._log_event("query_failed", {"index": index, "error": str(exc)})
            raise
        surface.hide_loading()
        surface.append_table(table.lines)
        block.state = BlockState.EXECUTED
        self._log_event("query_completed", {"index": index, "lines": len(table.lines)})
        return True

    def close(self) -> None:
        """End the session: release the page engine and disarm remaining blocks."""

        if self._closed:
            return
        self._closed = True
        self._armed.clear()
        if self.engine is not None:
            self.engine.close()
        LOGGER.debug("Session %s closed", self.session_id)
        self._log_event(SESSION_CLOSED_EVENT, {"blocks": len(self._blocks)})

    @property
    def closed(self) -> bool:
        return self._closed

    def _canned_block(self, index: int, surface: BlockSurface) -> ExampleBlock:
        if surface.placeholder is None:
            raise PageMarkupError(
                f"Canned block {index} has no '.{self.markers.result_class}' placeholder"
            )
        return ExampleBlock(index=index, mode=BlockMode.CANNED, payload=surface.placeholder)

    def _live_block(self, index: int, surface: BlockSurface) -> ExampleBlock:
        if surface.query_text is None:
            raise PageMarkupError(
                f"Live block {index} has no '.{self.markers.query_class}' element"
            )
        if self.engine is None:
            raise ValueError("A query engine is required for pages with live blocks")
        return ExampleBlock(index=index, mode=BlockMode.LIVE, query_text=surface.query_text)

    def _log_event(self, event: str, payload: dict[str, Any]) -> None:
        if self.logger is None:
            return
        self.logger.log_event(self.session_id, event, payload)
