from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from src.board_archive._exceptions import BoardArchiveCoreError, PartialItemFailure
from src.board_archive._models import (
    ANONYMOUS_NICKNAME,
    PLACEHOLDER,
    SYSTEM_NICKNAME,
    ChangeEvent,
    CounterField,
    EventKind,
    ReconcileReport,
    StoredSnapshot,
    format_display_timestamp,
    make_update,
)
from src.utils._logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence
    from datetime import tzinfo

    from src.board_archive._audit_log import AuditLog
    from src.board_archive._models import (
        Item,
        SetCommentCount,
        SetScrapCount,
        SetUpvotes,
    )
    from src.board_archive._snapshot_store import SnapshotStore
    from src.board_archive._source import RemoteSource

_log = get_logger(__name__)


def archive_order_key(item: Item) -> tuple[int, int, str]:
    """Sort key approximating posting order: numeric ids ascending, others last."""
    try:
        return (0, int(item.id), item.id)
    except ValueError:
        return (1, 0, item.id)


def diff_counters(
    item: Item, snapshot: StoredSnapshot
) -> list[SetUpvotes | SetCommentCount | SetScrapCount]:
    """One update per counter whose fresh value differs from the stored one."""
    return [
        make_update(field, item.counter(field))
        for field in CounterField
        if item.counter(field) != snapshot.counter(field)
    ]


class ChangeReconciler:
    """Turns a freshly collected item list into snapshot writes and change events.

    New items are archived oldest first, each with one creation event, then
    get a best-effort comment summary. Known items get one update and one
    event per drifted counter. Nothing is written when nothing differs.
    """

    def __init__(
        self,
        source: RemoteSource,
        snapshots: SnapshotStore,
        audit_log: AuditLog,
        *,
        display_tz: tzinfo,
        comment_concurrency: int = 4,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._source = source
        self._snapshots = snapshots
        self._audit_log = audit_log
        self._display_tz = display_tz
        self._comment_concurrency = max(1, comment_concurrency)
        self._clock = clock or (lambda: datetime.now(UTC))

    def _event(self, moment: datetime, **fields: object) -> ChangeEvent:
        return ChangeEvent(
            timestamp=moment,
            display_timestamp=format_display_timestamp(moment, self._display_tz),
            **fields,
        )

    async def reconcile(
        self,
        collected: Sequence[Item],
        existing: Mapping[str, StoredSnapshot],
    ) -> ReconcileReport:
        """Reconcile ``collected`` against the ``existing`` snapshots.

        Raises:
            StoreError: If a snapshot write or event append fails outside the
                per-item comment summary. Writes already made stay committed.
        """
        report = ReconcileReport()
        new_items = sorted(
            (item for item in collected if item.id not in existing),
            key=archive_order_key,
        )
        seen_items = [item for item in collected if item.id in existing]

        _log.info(
            "reconcile_starting",
            collected=len(collected),
            new=len(new_items),
            seen=len(seen_items),
        )

        for item in new_items:
            await self._archive_new(item)
            report.archived_ids.append(item.id)
            report.events_emitted += 1

        if new_items:
            sem = asyncio.Semaphore(self._comment_concurrency)
            outcomes = await asyncio.gather(
                *(self._summarize_isolated(item, sem) for item in new_items)
            )
            for item, outcome in zip(new_items, outcomes, strict=True):
                if isinstance(outcome, PartialItemFailure):
                    report.partial_failures.append(item.id)
                elif outcome:
                    report.events_emitted += 1

        for item in seen_items:
            applied = await self._apply_drift(item, existing[item.id])
            report.counter_updates += applied
            report.events_emitted += applied

        _log.info(
            "reconcile_complete",
            archived=len(report.archived_ids),
            counter_updates=report.counter_updates,
            events=report.events_emitted,
            partial_failures=len(report.partial_failures),
        )
        return report

    async def _archive_new(self, item: Item) -> None:
        detected_at = self._clock()
        await self._snapshots.put(item.id, StoredSnapshot.from_item(item, detected_at))
        # Stamped with the posting time so the log reads as a timeline
        await self._audit_log.append(
            self._event(
                item.created_at,
                kind=EventKind.NEW_ITEM,
                subject_title=item.title,
                content=item.text,
                author_nickname=ANONYMOUS_NICKNAME,
                before=PLACEHOLDER,
                after=PLACEHOLDER,
                item_id=item.id,
            )
        )
        _log.info("item_archived", item_id=item.id, title=item.title)

    async def _summarize_isolated(
        self, item: Item, sem: asyncio.Semaphore
    ) -> bool | PartialItemFailure:
        async with sem:
            try:
                return await self._summarize_comments(item)
            except PartialItemFailure as exc:
                _log.warning("comment_summary_failed", item_id=item.id, error=str(exc))
                return exc

    async def _summarize_comments(self, item: Item) -> bool:
        """Log a comment-change event if the fetched total differs from the stored count.

        Returns True when an event was emitted.

        Raises:
            PartialItemFailure: If fetching comments or writing the event fails.
        """
        try:
            comments = await self._source.fetch_comments(item.id)
            stored = await self._snapshots.get(item.id)
            stored_count = stored.comment_count if stored is not None else 0
            current_count = len(comments)
            if stored_count == current_count:
                return False

            newest = max(comments, key=lambda c: c.created_at) if comments else None
            await self._audit_log.append(
                self._event(
                    self._clock(),
                    kind=EventKind.COMMENT_CHANGE,
                    subject_title=item.title,
                    content=f"total comments: {stored_count} -> {current_count}",
                    author_nickname=SYSTEM_NICKNAME,
                    before=stored_count,
                    after=current_count,
                    item_id=item.id,
                    comment_id=newest.id if newest is not None else None,
                )
            )
        except BoardArchiveCoreError as exc:
            raise PartialItemFailure(item.id, str(exc)) from exc
        except Exception as exc:
            # Collaborators outside the core taxonomy still only fail this item
            raise PartialItemFailure(item.id, f"{type(exc).__name__}: {exc}") from exc
        return True

    async def _apply_drift(self, item: Item, snapshot: StoredSnapshot) -> int:
        updates = diff_counters(item, snapshot)
        if not updates:
            return 0

        detected_at = self._clock()
        for update in updates:
            before = snapshot.counter(update.counter)
            await self._snapshots.apply(item.id, update, detected_at)
            await self._audit_log.append(
                self._event(
                    detected_at,
                    kind=update.event_kind,
                    subject_title=item.title,
                    before=before,
                    after=update.value,
                    item_id=item.id,
                )
            )
            _log.info(
                "counter_changed",
                item_id=item.id,
                counter=update.counter.value,
                before=before,
                after=update.value,
            )
        return len(updates)
