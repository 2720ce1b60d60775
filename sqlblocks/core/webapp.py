"""FastAPI frontend serving documentation pages with runnable SQL examples."""

from __future__ import annotations

import argparse
import logging
import re
import threading
from collections import OrderedDict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal
from uuid import uuid4

import uvicorn
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse
from pydantic import BaseModel, Field

from sqlblocks.core.config import DEFAULT_MAX_SESSIONS, load_settings
from sqlblocks.core.controller import BlockController
from sqlblocks.core.dependencies import PageDependencies, build_dependencies
from sqlblocks.core.models import PageMarkers
from sqlblocks.core.page import HtmlPage

LOGGER = logging.getLogger(__name__)

PAGE_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")
PAGE_SUFFIX = ".html"


@dataclass(slots=True)
class PageSession:
    """One page load: the parsed page, its controller and the engine it owns."""

    session_id: str
    page_name: str
    page: HtmlPage
    controller: BlockController
    canned_only: bool

    def render(self) -> str:
        return self.page.render(
            trigger_action=lambda index: f"/sessions/{self.session_id}/blocks/{index}/run"
        )

    def close(self) -> None:
        self.controller.close()


class PageSessionManager:
    """Thread-safe in-memory registry of page sessions.

    At most ``max_sessions`` sessions are held. Opening one more evicts the
    least recently used session and closes its engine.
    """

    def __init__(self, max_sessions: int = DEFAULT_MAX_SESSIONS) -> None:
        if max_sessions < 1:
            raise ValueError("max_sessions must be at least 1")
        self.max_sessions = max_sessions
        self._sessions: OrderedDict[str, PageSession] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def new_session_id(self) -> str:
        with self._lock:
            session_id = uuid4().hex[:12]
            while session_id in self._sessions:
                session_id = uuid4().hex[:12]
            return session_id

    def add(self, session: PageSession) -> list[PageSession]:
        """Register *session* and return the sessions evicted to make room."""

        evicted: list[PageSession] = []
        with self._lock:
            self._sessions[session.session_id] = session
            self._sessions.move_to_end(session.session_id)
            while len(self._sessions) > self.max_sessions:
                _, oldest = self._sessions.popitem(last=False)
                evicted.append(oldest)
        for stale in evicted:
            LOGGER.info("Session %s evicted (page=%s)", stale.session_id, stale.page_name)
            stale.close()
        return evicted

    def get(self, session_id: str) -> PageSession | None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                self._sessions.move_to_end(session_id)
            return session

    def close_all(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()


class PageLibrary:
    """Resolves page names to HTML files under the configured pages directory."""

    def __init__(self, pages_dir: str | Path, markers: PageMarkers) -> None:
        self.pages_dir = Path(pages_dir).expanduser()
        self.markers = markers

    def list_pages(self) -> list[str]:
        if not self.pages_dir.exists():
            return []
        return sorted(path.stem for path in self.pages_dir.glob(f"*{PAGE_SUFFIX}") if path.is_file())

    def load(self, page_name: str) -> HtmlPage | None:
        if not PAGE_NAME_RE.match(page_name):
            return None
        path = self.pages_dir / f"{page_name}{PAGE_SUFFIX}"
        if not path.is_file():
            return None
        return HtmlPage.from_path(path, self.markers)


@dataclass(slots=True)
class ServerBlockLogger:
    """Forwards block events downstream and optionally mirrors them to the server log."""

    downstream: Any
    debug_logging: bool = False

    def log_event(self, session_id: str, event: str, payload: dict[str, Any]) -> None:  # type: ignore[override]
        if self.downstream is not None:
            self.downstream.log_event(session_id, event, payload)
        if self.debug_logging:
            LOGGER.info("Block[%s] %s %s", session_id, event, payload)


class PageListResponse(BaseModel):
    pages: list[str]


class BlockStateResponse(BaseModel):
    index: int
    mode: Literal["live", "canned"]
    state: Literal["armed", "executing", "executed"]
    query_text: str | None = None


class SessionBlocksResponse(BaseModel):
    session_id: str
    page_name: str
    canned_only: bool
    blocks: list[BlockStateResponse]


class BlockRunResponse(BaseModel):
    index: int
    mode: Literal["live", "canned"]
    state: Literal["armed", "executing", "executed"]
    triggered: bool = Field(..., description="False when the block had already been activated")
    fragments: list[str] = Field(default_factory=list, description="Markup appended to the block")


def create_app(
    config_path: str = "configs/dev.yaml",
    *,
    debug_events: bool = False,
) -> FastAPI:
    LOGGER.info("Initialising web application with config '%s'", config_path)
    settings = load_settings(config_path)
    dependencies = build_dependencies(settings)
    dependencies.block_logger = ServerBlockLogger(
        downstream=dependencies.block_logger,
        debug_logging=debug_events,
    )
    library = PageLibrary(settings.pages_dir, settings.markers)
    session_manager = PageSessionManager(max_sessions=settings.sessions.max_sessions)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        LOGGER.info("Closing %s open page session(s)", len(session_manager))
        session_manager.close_all()

    app = FastAPI(title="Runnable SQL Examples", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.dependencies = dependencies
    app.state.page_library = library
    app.state.session_manager = session_manager

    def _require_session(session_id: str) -> PageSession:
        session = session_manager.get(session_id)
        if session is None:
            LOGGER.warning("Session %s not found", session_id)
            raise HTTPException(status_code=404, detail="Session not found")
        return session

    def _require_block(session: PageSession, index: int) -> None:
        try:
            session.controller.get(index)
        except KeyError:
            raise HTTPException(status_code=404, detail="Block not found") from None

    @app.get("/", response_model=PageListResponse)
    def index() -> PageListResponse:
        return PageListResponse(pages=library.list_pages())

    @app.get("/api/health")
    def healthcheck() -> dict[str, str]:  # pragma: no cover - trivial
        return {"status": "ok"}

    @app.get("/pages/{page_name}", response_class=HTMLResponse)
    def open_page(page_name: str, request: Request) -> HTMLResponse:
        page = library.load(page_name)
        if page is None:
            LOGGER.warning("Page %s requested but not found", page_name)
            raise HTTPException(status_code=404, detail="Page not found")

        canned_only = settings.markers.is_canned_only(request.url.query)
        session = _open_session(session_manager, dependencies, page_name, page, canned_only)
        return HTMLResponse(session.render())

    @app.get("/sessions/{session_id}", response_class=HTMLResponse)
    def view_session(session_id: str) -> HTMLResponse:
        session = _require_session(session_id)
        return HTMLResponse(session.render())

    @app.post("/sessions/{session_id}/blocks/{index}/run")
    async def run_block_form(session_id: str, index: int) -> RedirectResponse:
        session = _require_session(session_id)
        _require_block(session, index)
        await session.controller.trigger(index)
        return RedirectResponse(url=f"/sessions/{session_id}", status_code=status.HTTP_303_SEE_OTHER)

    @app.get("/api/sessions/{session_id}/blocks", response_model=SessionBlocksResponse)
    def session_blocks(session_id: str) -> SessionBlocksResponse:
        session = _require_session(session_id)
        return SessionBlocksResponse(
            session_id=session.session_id,
            page_name=session.page_name,
            canned_only=session.canned_only,
            blocks=[BlockStateResponse(**block.to_dict()) for block in session.controller.blocks],
        )

    @app.post("/api/sessions/{session_id}/blocks/{index}/run", response_model=BlockRunResponse)
    async def run_block(session_id: str, index: int) -> BlockRunResponse:
        session = _require_session(session_id)
        _require_block(session, index)
        triggered = await session.controller.trigger(index)
        block = session.controller.get(index)
        LOGGER.info(
            "Session %s block %s activation triggered=%s state=%s",
            session_id,
            index,
            triggered,
            block.state.value,
        )
        return BlockRunResponse(
            index=index,
            mode=block.mode.value,
            state=block.state.value,
            triggered=triggered,
            fragments=list(session.page.region(index).outputs),
        )

    return app


def _open_session(
    session_manager: PageSessionManager,
    dependencies: PageDependencies,
    page_name: str,
    page: HtmlPage,
    canned_only: bool,
) -> PageSession:
    session_id = session_manager.new_session_id()
    controller = dependencies.build_controller(session_id, canned_only=canned_only)
    controller.discover(page, canned_only=canned_only)
    controller.arm_all()
    session = PageSession(
        session_id=session_id,
        page_name=page_name,
        page=page,
        controller=controller,
        canned_only=canned_only,
    )
    session_manager.add(session)
    LOGGER.info(
        "Session %s opened for page=%s blocks=%s canned_only=%s",
        session_id,
        page_name,
        len(controller.blocks),
        canned_only,
    )
    return session


def _configure_logging(debug: bool) -> None:
    root_logger = logging.getLogger()
    if root_logger.handlers:
        if debug:
            root_logger.setLevel(logging.DEBUG)
        return
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="Serve documentation pages with runnable SQL examples")
    parser.add_argument("--config", default="configs/dev.yaml", help="Path to configuration file")
    parser.add_argument("--host", default="127.0.0.1", help="Interface to bind the server")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind the server")
    parser.add_argument(
        "--debug-events",
        action="store_true",
        help="Log individual block lifecycle events to the server logs",
    )
    args = parser.parse_args()

    _configure_logging(debug=args.debug_events)
    app = create_app(config_path=args.config, debug_events=args.debug_events)

    LOGGER.info(
        "Starting uvicorn on %s:%s (debug_events=%s)",
        args.host,
        args.port,
        args.debug_events,
    )
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
