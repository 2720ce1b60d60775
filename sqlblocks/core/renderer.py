"""Monospace table rendering for query results.

Everything here is a pure function of its inputs: a result group goes in, an
ordered list of text lines comes out. Placement of those lines on a page is
handled by the page adapter.

Layout of a rendered group::

     id | name
    ---------
      1 | a
    (1 row)

Each column is padded to ``len(widest value or header) + 2``. Headers are
centred with ``(width - len(name)) // 2`` spaces on each side, so an odd
leftover space is dropped and the name leans left. Cells are right-aligned
with a single trailing space. The separator line is a plain run of dashes
with no glyph at column boundaries.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from sqlblocks.core.models import ResultGroup

COLUMN_DELIMITER = "|"
SEPARATOR_CHAR = "-"


@dataclass(frozen=True, slots=True)
class RenderedTable:
    widths: tuple[int, ...]
    header: str
    separator: str
    rows: tuple[str, ...]
    row_count: str

    @property
    def lines(self) -> list[str]:
        return [self.header, self.separator, *self.rows, self.row_count]


def format_value(value: Any) -> str:
    """Return the display text for a single cell."""

    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def column_widths(group: ResultGroup) -> list[int]:
    widths = [len(column.name) + 2 for column in group.columns]
    for row in group.rows:
        for idx, column in enumerate(group.columns):
            widths[idx] = max(widths[idx], len(format_value(row[column.name])) + 2)
    return widths


def format_header(names: Sequence[str], widths: Sequence[int]) -> str:
    cells = []
    for name, width in zip(names, widths):
        padding = " " * ((width - len(name)) // 2)
        cells.append(padding + name + padding)
    return COLUMN_DELIMITER.join(cells)


def format_separator(widths: Sequence[int]) -> str:
    return "".join(SEPARATOR_CHAR * width for width in widths)


def format_row(values: Sequence[str], widths: Sequence[int]) -> str:
    cells = []
    for value, width in zip(values, widths):
        cells.append(" " * (width - len(value) - 1) + value + " ")
    return COLUMN_DELIMITER.join(cells)


def format_row_count(count: int) -> str:
    suffix = "s" if count > 1 else ""
    return f"({count} row{suffix})"


def render_group(group: ResultGroup) -> RenderedTable:
    """Render a single tabular group.

    Raises ``ValueError`` for a group without columns or rows; callers that
    deal with whole result sets should go through :func:`render_result_set`,
    which skips those groups instead.
    """

    if not group.is_tabular:
        raise ValueError("Cannot render a result group without columns and rows")

    names = [column.name for column in group.columns]
    widths = column_widths(group)
    rows = tuple(
        format_row([format_value(row[name]) for name in names], widths) for row in group.rows
    )
    return RenderedTable(
        widths=tuple(widths),
        header=format_header(names, widths),
        separator=format_separator(widths),
        rows=rows,
        row_count=format_row_count(len(group.rows)),
    )


def render_result_set(groups: Iterable[ResultGroup]) -> list[str]:
    """Return the output lines for every tabular group, each preceded by a blank line."""

    lines: list[str] = []
    for group in groups:
        # Statements without a result shape (DDL, inserts, empty selects) are skipped.
        if not group.is_tabular:
            continue
        lines.append("")
        lines.extend(render_group(group).lines)
    return lines
