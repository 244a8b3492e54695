from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import pytest

from src.board_archive._audit_log import AuditLog
from src.board_archive._exceptions import StoreError, TransportError
from src.board_archive._models import (
    ArchiveSettings,
    BoardConfig,
    BoardSettings,
    ChangeEvent,
    Comment,
    CounterField,
    Item,
    StorageSettings,
    StoredSnapshot,
)
from src.board_archive._snapshot_store import SnapshotStore
from src.board_archive._source import RemoteSource

if TYPE_CHECKING:
    from pathlib import Path

T0 = datetime(2025, 8, 19, 5, 0, 0, tzinfo=UTC)

SAMPLE_ARTICLE_PAGE = """<?xml version="1.0" encoding="UTF-8"?>
<response>
<moim id="393752" name="Free board" />
<hashtags />
<article id="1003" title="Third post" text="body three" created_at="2025-08-19 14:03:00"
         posvote="4" comment="2" scrap_count="1" />
<article id="1002" title="Second post" text="body &amp; two" created_at="2025-08-19 14:02:00"
         posvote="0" comment="0" scrap_count="0" />
<article id="1001" title="First post" created_at="2025-08-19 14:01:00" />
</response>
"""

SAMPLE_SINGLE_ARTICLE_PAGE = """<response>
<article id="77" title="Only" text="alone" created_at="2025-08-19T09:00:00+09:00"
         posvote="1" comment="0" scrap_count="0" />
</response>
"""

SAMPLE_EMPTY_PAGE = """<?xml version="1.0" encoding="UTF-8"?>
<response><moim id="393752" /></response>
"""

SAMPLE_COMMENTS = """<?xml version="1.0" encoding="UTF-8"?>
<response>
<article id="1003" />
<poll />
<comment id="5001" text="first!" user_nickname="kim" created_at="2025-08-19 14:05:00" />
<comment id="5002" text="second" created_at="2025-08-19 14:06:00" />
<comment id="5003" text="no time" user_nickname="lee" />
</response>
"""


class TickingClock:
    """Deterministic clock that advances one second per call."""

    def __init__(self, start: datetime = T0) -> None:
        self._next = start
        self.calls = 0

    def __call__(self) -> datetime:
        now = self._next
        self._next = now + timedelta(seconds=1)
        self.calls += 1
        return now


class FakeSource(RemoteSource):
    """Serves a fixed newest-first item list, or scripted pages."""

    def __init__(
        self,
        items: list[Item] | None = None,
        *,
        pages: list[list[Item]] | None = None,
        comments: dict[str, list[Comment]] | None = None,
        fail_on_page_call: int | None = None,
        failing_comment_ids: set[str] | None = None,
    ) -> None:
        self.items = list(items or [])
        self.pages = pages
        self.comments = comments or {}
        self.fail_on_page_call = fail_on_page_call
        self.failing_comment_ids = failing_comment_ids or set()
        self.page_calls: list[tuple[str, int, int]] = []
        self.comment_calls: list[str] = []

    async def fetch_page(self, board_id: str, offset: int, limit: int) -> list[Item]:
        self.page_calls.append((board_id, offset, limit))
        if self.fail_on_page_call == len(self.page_calls):
            raise TransportError(f"HTTP 503 on page call {len(self.page_calls)}")
        if self.pages is not None:
            index = len(self.page_calls) - 1
            return list(self.pages[index]) if index < len(self.pages) else []
        return self.items[offset : offset + limit]

    async def fetch_comments(self, item_id: str) -> list[Comment]:
        self.comment_calls.append(item_id)
        if item_id in self.failing_comment_ids:
            raise TransportError(f"comment fetch failed for {item_id}")
        return list(self.comments.get(item_id, []))


class MemorySnapshotStore(SnapshotStore):
    """Snapshot store that records every write."""

    def __init__(self, initial: dict[str, StoredSnapshot] | None = None) -> None:
        self.data: dict[str, StoredSnapshot] = {
            k: v.model_copy(deep=True) for k, v in (initial or {}).items()
        }
        self.puts: list[str] = []
        self.field_updates: list[tuple[str, CounterField, int]] = []
        self.fail_writes = False

    @property
    def write_count(self) -> int:
        return len(self.puts) + len(self.field_updates)

    async def get_all(self) -> dict[str, StoredSnapshot]:
        return {k: v.model_copy(deep=True) for k, v in self.data.items()}

    async def get(self, item_id: str) -> StoredSnapshot | None:
        snapshot = self.data.get(item_id)
        return snapshot.model_copy(deep=True) if snapshot is not None else None

    async def put(self, item_id: str, snapshot: StoredSnapshot) -> None:
        if self.fail_writes:
            raise StoreError("store offline")
        self.puts.append(item_id)
        self.data[item_id] = snapshot.model_copy(deep=True)

    async def update_field(
        self, item_id: str, field: CounterField, value: int, updated_at: datetime
    ) -> None:
        if self.fail_writes:
            raise StoreError("store offline")
        self.field_updates.append((item_id, field, value))
        snapshot = self.data[item_id]
        setattr(snapshot, field.value, value)
        snapshot.updated_at = updated_at

    async def clear(self) -> int:
        count = len(self.data)
        self.data.clear()
        return count


class MemoryAuditLog(AuditLog):
    """Audit log that keeps events in append order."""

    def __init__(self) -> None:
        self.events: list[ChangeEvent] = []
        self.fail_for_items: set[str] = set()

    async def append(self, event: ChangeEvent) -> None:
        if event.item_id in self.fail_for_items:
            raise StoreError(f"log write failed for {event.item_id}")
        self.events.append(event)

    async def list_recent(self, limit: int) -> list[ChangeEvent]:
        return sorted(self.events, key=lambda e: e.timestamp, reverse=True)[:limit]

    async def clear(self) -> int:
        count = len(self.events)
        self.events.clear()
        return count


def _make_item(item_id: str, **overrides: Any) -> Item:
    fields: dict[str, Any] = {
        "id": item_id,
        "title": f"Post {item_id}",
        "text": f"Body of {item_id}",
        "created_at": T0 - timedelta(hours=1),
        "upvotes": 0,
        "comment_count": 0,
        "scrap_count": 0,
    }
    fields.update(overrides)
    return Item(**fields)


def _make_comment(comment_id: str, **overrides: Any) -> Comment:
    fields: dict[str, Any] = {
        "id": comment_id,
        "text": f"comment {comment_id}",
        "created_at": T0,
    }
    fields.update(overrides)
    return Comment(**fields)


@pytest.fixture()
def make_item() -> Callable[..., Item]:
    return _make_item


@pytest.fixture()
def make_comment() -> Callable[..., Comment]:
    return _make_comment


@pytest.fixture()
def make_snapshot() -> Callable[..., StoredSnapshot]:
    def _factory(item_id: str, **overrides: Any) -> StoredSnapshot:
        return StoredSnapshot.from_item(_make_item(item_id, **overrides), T0 - timedelta(days=1))

    return _factory


@pytest.fixture()
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture()
def memory_store() -> MemorySnapshotStore:
    return MemorySnapshotStore()


@pytest.fixture()
def memory_log() -> MemoryAuditLog:
    return MemoryAuditLog()


@pytest.fixture()
def board_config(tmp_path: Path) -> BoardConfig:
    return BoardConfig(
        board=BoardSettings(board_id="393752", page_size=5, max_lookback=20),
        storage=StorageSettings(
            snapshot_path=tmp_path / "state" / "snapshots.json",
            audit_log_path=tmp_path / "state" / "audit_log.jsonl",
        ),
        archive=ArchiveSettings(comment_concurrency=2, display_timezone="Asia/Seoul"),
    )
