"""Mapping-backed query engine for fixtures and tests.

This engine does not parse SQL or touch a database. It returns result groups
registered ahead of time for an exact query string, which makes it useful for
documentation previews and for exercising the block controller without DuckDB.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from sqlblocks.core.models import ResultGroup


@dataclass(slots=True)
class StaticQueryEngine:
    """Simple mapping-based engine that satisfies the `QueryEngine` protocol."""

    canned_results: dict[str, list[ResultGroup]] = field(default_factory=dict)
    executed: list[str] = field(default_factory=list)

    async def execute(self, query: str) -> list[ResultGroup]:
        """Return the registered groups for *query*, or no groups at all."""

        self.executed.append(query)
        return list(self.canned_results.get(_normalize(query), []))

    def prime(self, query: str, groups: list[ResultGroup]) -> None:
        """Register a response for a future `execute` call."""

        self.canned_results[_normalize(query)] = list(groups)

    def close(self) -> None:
        """Nothing to release; present to satisfy the engine protocol."""

    @classmethod
    def from_yaml(cls, path: str | Path) -> StaticQueryEngine:
        """Load fixtures shaped as a list of ``{query, results: [{columns, rows}]}``."""

        fixtures_path = Path(path).expanduser()
        if not fixtures_path.exists():
            raise FileNotFoundError(f"Engine fixtures not found at '{fixtures_path}'")
        with fixtures_path.open("r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle) or []
        if not isinstance(payload, list):
            raise ValueError("Engine fixtures must contain a top-level list")

        engine = cls()
        for entry in payload:
            if not isinstance(entry, dict) or "query" not in entry:
                raise ValueError("Fixture entries must be mappings with a 'query' key")
            groups = [_parse_group(raw) for raw in entry.get("results") or []]
            engine.prime(str(entry["query"]), groups)
        return engine


def _parse_group(raw: Any) -> ResultGroup:
    if not isinstance(raw, dict):
        raise ValueError("Fixture results must be mappings")
    columns = [str(name) for name in raw.get("columns") or []]
    rows = raw.get("rows") or []
    records: list[dict[str, Any]] = []
    for row in rows:
        if isinstance(row, dict):
            records.append({column: row.get(column) for column in columns})
        elif isinstance(row, list):
            records.append(dict(zip(columns, row)))
        else:
            raise ValueError("Fixture rows must be mappings or lists")
    return ResultGroup.from_records(columns, records)


def _normalize(query: str) -> str:
    return query.strip()
