from __future__ import annotations

import abc
import asyncio
from typing import TYPE_CHECKING

from pydantic import ValidationError

from src.board_archive._exceptions import StoreError
from src.board_archive._models import ChangeEvent
from src.utils._logging import get_logger

if TYPE_CHECKING:
    from pathlib import Path

_log = get_logger(__name__)


class AuditLog(abc.ABC):
    """Append-only sink for change events."""

    @abc.abstractmethod
    async def append(self, event: ChangeEvent) -> None:
        """Record one event."""

    @abc.abstractmethod
    async def list_recent(self, limit: int) -> list[ChangeEvent]:
        """Return up to ``limit`` events, newest timestamp first."""

    @abc.abstractmethod
    async def clear(self) -> int:
        """Delete every event. Returns how many were removed."""


class JsonlAuditLog(AuditLog):
    """Audit log stored as one JSON object per line.

    Lines are kept in insertion (detection) order; ``list_recent`` orders by
    event timestamp since backfilled items carry their origin time.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _write_line(self, line: str) -> None:
        try:
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as exc:
            raise StoreError(f"Cannot append to audit log {self._path}: {exc}") from exc

    def _read_all(self) -> list[ChangeEvent]:
        if not self._path.exists():
            return []
        try:
            lines = self._path.read_text(encoding="utf-8").splitlines()
        except OSError as exc:
            raise StoreError(f"Cannot read audit log {self._path}: {exc}") from exc

        events: list[ChangeEvent] = []
        for lineno, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                events.append(ChangeEvent.model_validate_json(line))
            except ValidationError as exc:
                raise StoreError(f"Corrupt audit log line {lineno} in {self._path}") from exc
        return events

    async def append(self, event: ChangeEvent) -> None:
        async with self._lock:
            await asyncio.to_thread(self._write_line, event.model_dump_json())
        _log.info(
            "event_logged",
            kind=event.kind.value,
            item_id=event.item_id,
            before=event.before,
            after=event.after,
        )

    async def list_recent(self, limit: int) -> list[ChangeEvent]:
        async with self._lock:
            events = await asyncio.to_thread(self._read_all)
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[: max(0, limit)]

    async def clear(self) -> int:
        async with self._lock:
            events = await asyncio.to_thread(self._read_all)
            await asyncio.to_thread(self._path.unlink, True)
        _log.info("audit_log_cleared", count=len(events))
        return len(events)
