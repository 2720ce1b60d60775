"""Shared data model for example blocks and query results."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any


class BlockMode(str, Enum):
    LIVE = "live"
    CANNED = "canned"


class BlockState(str, Enum):
    ARMED = "armed"
    EXECUTING = "executing"
    EXECUTED = "executed"


@dataclass(frozen=True, slots=True)
class Column:
    name: str


@dataclass(frozen=True, slots=True)
class ResultGroup:
    """One statement's output: ordered columns plus rows keyed by column name."""

    columns: tuple[Column, ...] = ()
    rows: tuple[Mapping[str, Any], ...] = ()

    @classmethod
    def from_records(
        cls, column_names: Sequence[str], rows: Sequence[Mapping[str, Any]]
    ) -> ResultGroup:
        return cls(
            columns=tuple(Column(name=str(name)) for name in column_names),
            rows=tuple(dict(row) for row in rows),
        )

    @property
    def is_tabular(self) -> bool:
        return bool(self.columns) and bool(self.rows)


@dataclass(slots=True)
class ExampleBlock:
    """Mutable state record for a single example block on a page."""

    index: int
    mode: BlockMode
    query_text: str | None = None
    payload: str | None = None
    state: BlockState = BlockState.ARMED

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "mode": self.mode.value,
            "state": self.state.value,
            "query_text": self.query_text,
        }


@dataclass(frozen=True, slots=True)
class TableOutput:
    lines: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class CannedOutput:
    payload: str
    spacing_lines: int = 2


@dataclass(frozen=True, slots=True)
class PageMarkers:
    """CSS classes and the URL flag that identify blocks within a page."""

    live_class: str = "pg"
    canned_class: str = "fake-pg"
    query_class: str = "query"
    result_class: str = "result"
    canned_query_flag: str = "fake-pg"
    trigger_label: str = "Run"

    def is_canned_only(self, query_string: str | None) -> bool:
        """Return True when the page URL's query string selects canned-only mode."""

        return (query_string or "") == self.canned_query_flag
