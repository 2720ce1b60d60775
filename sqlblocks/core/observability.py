"""JSONL-backed observability for example block lifecycles."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol

SESSION_CLOSED_EVENT = "session_closed"

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_-]+")


class BlockObservationSink(Protocol):
    """Records lifecycle events emitted by the block controller."""

    def log_event(self, session_id: str, event: str, payload: dict[str, Any]) -> None:  # pragma: no cover - interface
        ...


def utc_now_iso() -> str:
    """Return the current UTC time in ISO-8601 with millisecond precision."""

    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def session_log_filename(session_id: str, opened_at: datetime) -> str:
    """Name of the JSONL file holding one page session's events.

    Files sort by the moment the session logged its first event.
    """

    slug = opened_at.strftime("%Y%m%dT%H%M%S%f")[:-3]
    safe_id = _UNSAFE_FILENAME_CHARS.sub("-", session_id.strip()) or "session"
    return f"{slug}-{safe_id}.jsonl"


def _build_event(event: str, payload: dict[str, Any]) -> dict[str, Any]:
    enriched = {key: value for key, value in payload.items() if value is not None}
    enriched.setdefault("event", event)
    enriched.setdefault("timestamp", utc_now_iso())
    return enriched


@dataclass(slots=True)
class JSONLBlockLogger(BlockObservationSink):
    """Persists block events under a dedicated logs directory, one file per page session.

    The file for a session is chosen on its first event and reused until the
    session logs ``session_closed``, after which its entry is dropped.
    """

    base_dir: Path
    _open_files: dict[str, Path] = field(default_factory=dict, init=False, repr=False)

    def log_event(self, session_id: str, event: str, payload: dict[str, Any]) -> None:  # type: ignore[override]
        record = _build_event(event, payload)
        target = self.path_for(session_id)
        with target.open("a", encoding="utf-8") as handle:
            json.dump(record, handle, ensure_ascii=False, default=str)
            handle.write("\n")
        if event == SESSION_CLOSED_EVENT:
            self._open_files.pop(session_id, None)

    def path_for(self, session_id: str) -> Path:
        target = self._open_files.get(session_id)
        if target is None:
            base = self.base_dir.expanduser()
            base.mkdir(parents=True, exist_ok=True)
            target = base / session_log_filename(session_id, datetime.now(UTC))
            self._open_files[session_id] = target
        return target

    @property
    def open_sessions(self) -> list[str]:
        return sorted(self._open_files)


@dataclass(slots=True)
class InMemoryBlockLogger(BlockObservationSink):
    """Keeps events in memory; used when no log directory is configured."""

    events: list[dict[str, Any]] = field(default_factory=list)

    def log_event(self, session_id: str, event: str, payload: dict[str, Any]) -> None:  # type: ignore[override]
        record = _build_event(event, payload)
        record.setdefault("session_id", session_id)
        self.events.append(record)
