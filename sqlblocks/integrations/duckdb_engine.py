"""DuckDB-backed query engine for live example blocks.

One engine is created per page session and reused by every live block on that
page. DuckDB connections are not safe for concurrent use, so statements run on
a worker thread one query at a time, guarded by an ``asyncio.Lock``.

A query may hold several statements. Each statement yields one result group;
statements that do not produce rows (DDL, ``SET``, or inserts and updates
without ``RETURNING``) yield an empty group so the renderer skips them.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import duckdb

from sqlblocks.core.models import ResultGroup

LOGGER = logging.getLogger(__name__)

_ROW_STATEMENT_TYPES = frozenset(
    {
        duckdb.StatementType.SELECT,
        duckdb.StatementType.EXPLAIN,
        duckdb.StatementType.PRAGMA,
        duckdb.StatementType.CALL,
    }
)

_DML_STATEMENT_TYPES = frozenset(
    {
        duckdb.StatementType.INSERT,
        duckdb.StatementType.UPDATE,
        duckdb.StatementType.DELETE,
    }
)

# Column DuckDB reports for data-changing statements without RETURNING.
_AFFECTED_ROWS_COLUMNS = ["Count"]


class QueryExecutionError(RuntimeError):
    """Raised when the embedded engine rejects a query."""


@dataclass
class DuckDBQueryEngine:
    """Embedded DuckDB database shared by the live blocks of one page."""

    database: str = ":memory:"
    setup_scripts: list[str | Path] = field(default_factory=list)
    threads: int | None = None
    memory_limit: str | None = None
    _connection: duckdb.DuckDBPyConnection = field(init=False, repr=False)
    _lock: asyncio.Lock = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._connection = duckdb.connect(database=self.database)
        self._lock = asyncio.Lock()
        if self.memory_limit:
            self._connection.execute(f"SET memory_limit = {_escape_string(self.memory_limit)}")
        if self.threads:
            self._connection.execute(f"SET threads = {int(self.threads)}")
        for script in self.setup_scripts:
            self._run_setup_script(Path(script).expanduser())

    async def execute(self, query: str) -> list[ResultGroup]:
        """Run every statement in *query* and return their result groups in order."""

        async with self._lock:
            return await asyncio.to_thread(self.execute_sync, query)

    def execute_sync(self, query: str) -> list[ResultGroup]:
        try:
            statements = duckdb.extract_statements(query)
        except duckdb.Error as exc:
            raise QueryExecutionError(str(exc)) from exc

        groups: list[ResultGroup] = []
        for statement in statements:
            try:
                cursor = self._connection.execute(statement.query)
                if cursor.description is None:
                    groups.append(ResultGroup())
                    continue
                names = [str(column[0]) for column in cursor.description]
                if not _returns_rows(statement.type, names):
                    groups.append(ResultGroup())
                    continue
                records = cursor.fetchall()
            except duckdb.Error as exc:
                raise QueryExecutionError(str(exc)) from exc
            groups.append(ResultGroup.from_records(names, [_to_row(names, values) for values in records]))

        LOGGER.debug("Executed %s statement(s)", len(groups))
        return groups

    def close(self) -> None:
        self._connection.close()

    def _run_setup_script(self, path: Path) -> None:
        if not path.exists():
            raise FileNotFoundError(f"Setup script not found: {path}")
        LOGGER.info("Running engine setup script %s", path)
        self.execute_sync(path.read_text(encoding="utf-8"))


def _returns_rows(statement_type: Any, names: list[str]) -> bool:
    if statement_type in _ROW_STATEMENT_TYPES:
        return True
    return statement_type in _DML_STATEMENT_TYPES and names != _AFFECTED_ROWS_COLUMNS


def _to_row(names: list[str], values: tuple[Any, ...]) -> dict[str, Any]:
    return dict(zip(names, values))


def _escape_string(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"
