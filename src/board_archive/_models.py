from __future__ import annotations

from datetime import UTC, datetime, tzinfo
from enum import StrEnum
from pathlib import Path
from typing import Annotated, Any, ClassVar, Literal
from zoneinfo import ZoneInfo

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, field_validator

# Placeholder used for before/after on creation events.
PLACEHOLDER = "-"
ANONYMOUS_NICKNAME = "anonymous"
SYSTEM_NICKNAME = "system"

_DISPLAY_FORMAT = "%m.%d | %H:%M'%S"

# --- Enums ---


class EventKind(StrEnum):
    """Kind of a change-log entry."""

    NEW_ITEM = "new_item"
    UPVOTE_CHANGE = "upvote_change"
    COMMENT_CHANGE = "comment_change"
    SCRAP_CHANGE = "scrap_change"


class CounterField(StrEnum):
    """Engagement counters tracked on every item."""

    UPVOTES = "upvotes"
    COMMENT_COUNT = "comment_count"
    SCRAP_COUNT = "scrap_count"


# --- Config models ---


class BoardSettings(BaseModel):
    """Which board to poll and how far back to look each cycle."""

    board_id: str = "393752"
    page_size: int = Field(default=5, ge=1)
    max_lookback: int | None = None
    interval_minutes: float = Field(default=2.0, gt=0)

    @field_validator("max_lookback", mode="before")
    @classmethod
    def _drop_invalid_lookback(cls, value: Any) -> int | None:
        if value is None or isinstance(value, bool):
            return None
        try:
            parsed = int(value)
        except (TypeError, ValueError):
            return None
        return parsed if parsed > 0 else None

    @property
    def lookback_bound(self) -> int:
        """Items considered per cycle; defaults to max(page_size * 3, 50)."""
        if self.max_lookback is not None:
            return self.max_lookback
        return max(self.page_size * 3, 50)


class SourceSettings(BaseModel):
    """Connection settings for the remote board API."""

    base_url: str = "https://api.everytime.kr"
    article_path: str = "/find/board/article/list"
    comment_path: str = "/find/board/comment/list"
    origin: str = "https://everytime.kr"
    referer: str = "https://everytime.kr/"
    user_agent: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/139.0.0.0 Safari/537.36"
    )
    cookie: str = ""
    request_timeout_seconds: float = Field(default=30.0, gt=0)
    retries_enabled: bool = False
    max_retries: int = Field(default=3, ge=1)
    source_timezone: str = "Asia/Seoul"

    @property
    def tz(self) -> tzinfo:
        return ZoneInfo(self.source_timezone)


class StorageSettings(BaseModel):
    """Locations of the file-backed snapshot store and audit log."""

    snapshot_path: Path = Path("data/state/snapshots.json")
    audit_log_path: Path = Path("data/state/audit_log.jsonl")


class ArchiveSettings(BaseModel):
    """Tuning for the reconciliation pass."""

    comment_concurrency: int = Field(default=4, ge=1)
    display_timezone: str = "Asia/Seoul"

    @property
    def display_tz(self) -> tzinfo:
        return ZoneInfo(self.display_timezone)


class BoardConfig(BaseModel):
    """Root model for configs/board.yaml."""

    board: BoardSettings = Field(default_factory=BoardSettings)
    source: SourceSettings = Field(default_factory=SourceSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    archive: ArchiveSettings = Field(default_factory=ArchiveSettings)


# --- Board records ---


class Item(BaseModel):
    """One board post as reported by the remote source."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    title: str = ""
    text: str = ""
    created_at: AwareDatetime
    upvotes: int = Field(default=0, ge=0)
    comment_count: int = Field(default=0, ge=0)
    scrap_count: int = Field(default=0, ge=0)

    def counter(self, field: CounterField) -> int:
        return getattr(self, field.value)


class Comment(BaseModel):
    """A comment on an item, fetched on demand."""

    model_config = ConfigDict(frozen=True)

    id: str
    text: str = ""
    author_nickname: str = ANONYMOUS_NICKNAME
    created_at: AwareDatetime


class StoredSnapshot(Item):
    """Persisted projection of an item. Mutated only by the reconciler.

    ``created_at`` is when the item was first archived; the posting time
    reported by the board is kept in ``posted_at``.
    """

    model_config = ConfigDict(frozen=False)

    posted_at: AwareDatetime | None = None
    stored_at: AwareDatetime
    updated_at: AwareDatetime

    @classmethod
    def from_item(cls, item: Item, at: datetime) -> StoredSnapshot:
        fields = item.model_dump(exclude={"created_at"})
        return cls(
            **fields,
            created_at=at,
            posted_at=item.created_at,
            stored_at=at,
            updated_at=at,
        )


class ChangeEvent(BaseModel):
    """Immutable audit-log entry describing a creation or a counter drift.

    ``timestamp`` orders events; ``display_timestamp`` is the same instant
    rendered for humans in the configured display time zone.
    """

    model_config = ConfigDict(frozen=True)

    timestamp: AwareDatetime
    display_timestamp: str
    kind: EventKind
    subject_title: str
    content: str | None = None
    author_nickname: str | None = None
    before: Literal["-"] | int
    after: Literal["-"] | int
    item_id: str
    comment_id: str | None = None


def format_display_timestamp(moment: datetime, tz: tzinfo) -> str:
    """Render an aware instant as ``MM.DD | HH:MM'SS`` in the given time zone."""
    return moment.astimezone(tz).strftime(_DISPLAY_FORMAT)


# --- Counter updates ---


class SetUpvotes(BaseModel):
    op: Literal["set_upvotes"] = "set_upvotes"
    value: int

    counter: ClassVar[CounterField] = CounterField.UPVOTES
    event_kind: ClassVar[EventKind] = EventKind.UPVOTE_CHANGE


class SetCommentCount(BaseModel):
    op: Literal["set_comment_count"] = "set_comment_count"
    value: int

    counter: ClassVar[CounterField] = CounterField.COMMENT_COUNT
    event_kind: ClassVar[EventKind] = EventKind.COMMENT_CHANGE


class SetScrapCount(BaseModel):
    op: Literal["set_scrap_count"] = "set_scrap_count"
    value: int

    counter: ClassVar[CounterField] = CounterField.SCRAP_COUNT
    event_kind: ClassVar[EventKind] = EventKind.SCRAP_CHANGE


CounterUpdate = Annotated[
    SetUpvotes | SetCommentCount | SetScrapCount,
    Field(discriminator="op"),
]

_UPDATE_FOR_COUNTER: dict[CounterField, type[SetUpvotes | SetCommentCount | SetScrapCount]] = {
    CounterField.UPVOTES: SetUpvotes,
    CounterField.COMMENT_COUNT: SetCommentCount,
    CounterField.SCRAP_COUNT: SetScrapCount,
}


def make_update(counter: CounterField, value: int) -> SetUpvotes | SetCommentCount | SetScrapCount:
    """Build the update operation that sets ``counter`` to ``value``."""
    return _UPDATE_FOR_COUNTER[counter](value=value)


# --- Pipeline results ---


class ReconcileReport(BaseModel):
    """What a single reconciliation pass wrote."""

    archived_ids: list[str] = Field(default_factory=list)
    counter_updates: int = 0
    events_emitted: int = 0
    partial_failures: list[str] = Field(default_factory=list)


class CycleResult(BaseModel):
    """Summary of one detect-and-archive cycle."""

    board_id: str
    lookback_bound: int
    items_collected: int = 0
    new_items: int = 0
    counter_updates: int = 0
    events_emitted: int = 0
    partial_failures: list[str] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None
