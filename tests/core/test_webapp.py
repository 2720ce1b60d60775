"""Tests for the FastAPI frontend."""

from __future__ import annotations

import re
from pathlib import Path

import pytest

pytest.importorskip("fastapi")
from fastapi.testclient import TestClient

from sqlblocks.core.webapp import create_app
from sqlblocks.integrations.duckdb_engine import QueryExecutionError

PAGE = """<html><body>
<h1>Intro</h1>
<div class="pg"><pre><code class="query">SELECT id, name FROM users;</code><code class="result">
 stale </code></pre></div>
<div class="fake-pg"><pre><code class="query">SELECT version();</code><code class="result">
 recorded output </code></pre></div>
</body></html>
"""

FIXTURES = """
- query: SELECT id, name FROM users;
  results:
    - columns: [id, name]
      rows:
        - {id: 1, name: a}
"""

SESSION_RE = re.compile(r"/sessions/([0-9a-f]+)/blocks/0/run")


def _write_config(tmp_path: Path, *, provider: str = "static", max_sessions: int = 8) -> Path:
    pages = tmp_path / "pages"
    pages.mkdir(exist_ok=True)
    (pages / "intro.html").write_text(PAGE, encoding="utf-8")
    (tmp_path / "fixtures.yaml").write_text(FIXTURES, encoding="utf-8")
    config = tmp_path / "config.yaml"
    config.write_text(
        f"""
pages_dir: pages
engine:
  provider: {provider}
  fixtures_path: fixtures.yaml
paths:
  block_logs_dir: logs/blocks
sessions:
  max_sessions: {max_sessions}
""",
        encoding="utf-8",
    )
    return config


def _open_session(client: TestClient, url: str = "/pages/intro") -> tuple[str, str]:
    response = client.get(url)
    assert response.status_code == 200
    match = SESSION_RE.search(response.text)
    assert match is not None
    return match.group(1), response.text


def test_index_lists_pages(tmp_path: Path) -> None:
    app = create_app(config_path=str(_write_config(tmp_path)))
    with TestClient(app) as client:
        response = client.get("/")

    assert response.status_code == 200
    assert response.json() == {"pages": ["intro"]}


def test_opening_a_page_arms_every_block(tmp_path: Path) -> None:
    app = create_app(config_path=str(_write_config(tmp_path)))
    with TestClient(app) as client:
        session_id, html = _open_session(client)
        blocks = client.get(f"/api/sessions/{session_id}/blocks").json()

    assert "stale" not in html
    assert "recorded output" not in html
    assert f'action="/sessions/{session_id}/blocks/1/run"' in html
    assert blocks["canned_only"] is False
    assert [(block["mode"], block["state"]) for block in blocks["blocks"]] == [
        ("live", "armed"),
        ("canned", "armed"),
    ]


def test_running_a_live_block_renders_the_table_once(tmp_path: Path) -> None:
    app = create_app(config_path=str(_write_config(tmp_path)))
    with TestClient(app) as client:
        session_id, _ = _open_session(client)
        first = client.post(f"/api/sessions/{session_id}/blocks/0/run")
        second = client.post(f"/api/sessions/{session_id}/blocks/0/run")
        html = client.get(f"/sessions/{session_id}").text

    assert first.status_code == 200
    payload = first.json()
    assert set(payload) == {"index", "mode", "state", "triggered", "fragments"}
    assert payload["triggered"] is True
    assert payload["state"] == "executed"
    assert payload["fragments"] == [
        "<code><br><br> id | name <br>----------<br>  1 |    a <br>(1 row)<br></code>"
    ]
    assert second.json()["triggered"] is False
    assert html.count("(1 row)") == 1
    assert f"/sessions/{session_id}/blocks/0/run" not in html
    assert list((tmp_path / "logs" / "blocks").glob(f"*-{session_id}.jsonl"))


def test_form_activation_redirects_back_to_the_session(tmp_path: Path) -> None:
    app = create_app(config_path=str(_write_config(tmp_path)))
    with TestClient(app) as client:
        session_id, _ = _open_session(client)
        response = client.post(
            f"/sessions/{session_id}/blocks/1/run",
            follow_redirects=False,
        )
        html = client.get(f"/sessions/{session_id}").text

    assert response.status_code == 303
    assert response.headers["location"] == f"/sessions/{session_id}"
    assert '<br><br><code class="result">\n recorded output </code></pre>' in html


def test_canned_only_flag_reveals_recorded_output_for_live_blocks(tmp_path: Path) -> None:
    app = create_app(config_path=str(_write_config(tmp_path)))
    with TestClient(app) as client:
        session_id, _ = _open_session(client, "/pages/intro?fake-pg")
        blocks = client.get(f"/api/sessions/{session_id}/blocks").json()
        run = client.post(f"/api/sessions/{session_id}/blocks/0/run").json()

    assert blocks["canned_only"] is True
    assert [block["mode"] for block in blocks["blocks"]] == ["canned", "canned"]
    assert run["fragments"] == ['<br><br><code class="result">\n stale </code>']


def test_other_query_strings_keep_live_mode(tmp_path: Path) -> None:
    app = create_app(config_path=str(_write_config(tmp_path)))
    with TestClient(app) as client:
        session_id, _ = _open_session(client, "/pages/intro?fake-pg=1")
        blocks = client.get(f"/api/sessions/{session_id}/blocks").json()

    assert blocks["canned_only"] is False
    assert blocks["blocks"][0]["mode"] == "live"


def test_unknown_resources_return_404(tmp_path: Path) -> None:
    app = create_app(config_path=str(_write_config(tmp_path)))
    with TestClient(app) as client:
        session_id, _ = _open_session(client)
        assert client.get("/pages/missing").status_code == 404
        assert client.get("/pages/..%2Fconfig").status_code == 404
        assert client.get("/sessions/nope").status_code == 404
        assert client.post("/api/sessions/nope/blocks/0/run").status_code == 404
        assert client.post(f"/api/sessions/{session_id}/blocks/7/run").status_code == 404


def test_engine_failure_propagates_and_leaves_loading_marker(tmp_path: Path) -> None:
    config = _write_config(tmp_path, provider="duckdb")
    app = create_app(config_path=str(config))
    with TestClient(app) as client:
        session_id, _ = _open_session(client)
        with pytest.raises(QueryExecutionError):
            client.post(f"/api/sessions/{session_id}/blocks/0/run")
        blocks = client.get(f"/api/sessions/{session_id}/blocks").json()
        html = client.get(f"/sessions/{session_id}").text

    assert blocks["blocks"][0]["state"] == "executing"
    assert "<code>\n...</code></pre>" in html


def test_least_recently_used_session_is_evicted_and_closed(tmp_path: Path) -> None:
    app = create_app(config_path=str(_write_config(tmp_path, max_sessions=2)))
    manager = app.state.session_manager
    with TestClient(app) as client:
        oldest_id, _ = _open_session(client)
        oldest = manager.get(oldest_id)
        kept_id, _ = _open_session(client)
        newest_id, _ = _open_session(client)

        assert len(manager) == 2
        assert client.get(f"/sessions/{oldest_id}").status_code == 404
        assert client.get(f"/sessions/{kept_id}").status_code == 200
        assert client.get(f"/sessions/{newest_id}").status_code == 200

    assert oldest is not None
    assert oldest.controller.closed is True
    assert len(manager) == 0


def test_recently_viewed_sessions_survive_eviction(tmp_path: Path) -> None:
    app = create_app(config_path=str(_write_config(tmp_path, max_sessions=2)))
    with TestClient(app) as client:
        first_id, _ = _open_session(client)
        second_id, _ = _open_session(client)
        client.get(f"/sessions/{first_id}")
        _open_session(client)

        assert client.get(f"/sessions/{first_id}").status_code == 200
        assert client.get(f"/sessions/{second_id}").status_code == 404
