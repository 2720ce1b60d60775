"""Tests for the DuckDB-backed query engine."""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from pathlib import Path

import pytest

from sqlblocks.core.renderer import render_result_set
from sqlblocks.integrations.duckdb_engine import DuckDBQueryEngine, QueryExecutionError


@pytest.fixture()
def engine() -> Iterator[DuckDBQueryEngine]:
    instance = DuckDBQueryEngine()
    yield instance
    instance.close()


def test_select_returns_columns_and_rows(engine: DuckDBQueryEngine) -> None:
    groups = asyncio.run(engine.execute("SELECT 1 AS id, 'a' AS name"))

    assert len(groups) == 1
    assert [column.name for column in groups[0].columns] == ["id", "name"]
    assert groups[0].rows == ({"id": 1, "name": "a"},)


def test_each_statement_yields_a_group(engine: DuckDBQueryEngine) -> None:
    groups = asyncio.run(
        engine.execute(
            "CREATE TABLE t (x INTEGER); INSERT INTO t VALUES (1), (2); SELECT x FROM t ORDER BY x;"
        )
    )

    assert len(groups) == 3
    assert not groups[0].is_tabular
    assert not groups[1].is_tabular
    assert groups[2].rows == ({"x": 1}, {"x": 2})


def test_empty_select_is_not_tabular(engine: DuckDBQueryEngine) -> None:
    groups = asyncio.run(engine.execute("SELECT 1 AS id WHERE false"))

    assert [column.name for column in groups[0].columns] == ["id"]
    assert not groups[0].is_tabular


def test_state_persists_between_queries(engine: DuckDBQueryEngine) -> None:
    asyncio.run(engine.execute("CREATE TABLE kv (k VARCHAR, v INTEGER); INSERT INTO kv VALUES ('a', 1);"))

    lines = render_result_set(asyncio.run(engine.execute("SELECT k, v FROM kv;")))

    assert lines == ["", " k | v ", "------", " a | 1 ", "(1 row)"]


def test_invalid_query_raises_query_execution_error(engine: DuckDBQueryEngine) -> None:
    with pytest.raises(QueryExecutionError):
        asyncio.run(engine.execute("SELEC nonsense"))


def test_missing_table_raises_query_execution_error(engine: DuckDBQueryEngine) -> None:
    with pytest.raises(QueryExecutionError):
        asyncio.run(engine.execute("SELECT * FROM does_not_exist"))


def test_setup_scripts_run_on_creation(tmp_path: Path) -> None:
    script = tmp_path / "setup.sql"
    script.write_text(
        "CREATE TABLE users (id INTEGER, name VARCHAR);\n"
        "INSERT INTO users VALUES (1, 'ada'), (2, 'grace');\n",
        encoding="utf-8",
    )

    engine = DuckDBQueryEngine(setup_scripts=[script], threads=1, memory_limit="256MB")
    try:
        groups = asyncio.run(engine.execute("SELECT count(*) AS n FROM users"))
    finally:
        engine.close()

    assert groups[0].rows == ({"n": 2},)


def test_missing_setup_script_is_reported(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        DuckDBQueryEngine(setup_scripts=[tmp_path / "missing.sql"])


def test_returning_clause_yields_rows(engine: DuckDBQueryEngine) -> None:
    groups = asyncio.run(
        engine.execute(
            "CREATE TABLE t (x INTEGER);"
            " INSERT INTO t VALUES (1), (2) RETURNING x;"
            " UPDATE t SET x = x + 10 WHERE x = 1;"
            " DELETE FROM t WHERE x = 2 RETURNING x;"
        )
    )

    assert len(groups) == 4
    assert groups[1].rows == ({"x": 1}, {"x": 2})
    assert not groups[2].is_tabular
    assert groups[3].rows == ({"x": 2},)


def test_close_releases_the_connection() -> None:
    engine = DuckDBQueryEngine()
    engine.close()

    with pytest.raises(QueryExecutionError):
        engine.execute_sync("SELECT 1")
