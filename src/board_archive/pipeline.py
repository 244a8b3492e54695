from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import TYPE_CHECKING
from uuid import uuid4

from src.board_archive._audit_log import AuditLog, JsonlAuditLog
from src.board_archive._collector import PaginatedCollector
from src.board_archive._config import load_board_config
from src.board_archive._exceptions import CycleInProgressError
from src.board_archive._models import BoardConfig, ChangeEvent, CycleResult
from src.board_archive._reconciler import ChangeReconciler
from src.board_archive._snapshot_store import JsonSnapshotStore, SnapshotStore
from src.board_archive._source import BoardApiClient, RemoteSource
from src.utils._logging import bound_context, get_logger

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

_log = get_logger(__name__)

RECENT_EVENTS_LIMIT = 100


class BoardArchivePipeline:
    """Runs detect-and-archive cycles for one board.

    Cycles are single-flight: triggering a cycle while one is running raises
    CycleInProgressError instead of letting two cycles read the same stale
    snapshots. A failed cycle propagates its error; writes it already made
    stay committed.
    """

    def __init__(
        self,
        config: BoardConfig | None = None,
        *,
        config_path: Path | None = None,
        source: RemoteSource | None = None,
        snapshots: SnapshotStore | None = None,
        audit_log: AuditLog | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if config is not None:
            self._config = config
        else:
            self._config = load_board_config(config_path)
        self._source = source
        self._snapshots = snapshots or JsonSnapshotStore(self._config.storage.snapshot_path)
        self._audit_log = audit_log or JsonlAuditLog(self._config.storage.audit_log_path)
        self._clock = clock or (lambda: datetime.now(UTC))
        self._lock = asyncio.Lock()

    @property
    def config(self) -> BoardConfig:
        return self._config

    @property
    def snapshots(self) -> SnapshotStore:
        return self._snapshots

    @property
    def audit_log(self) -> AuditLog:
        return self._audit_log

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def run_cycle(self) -> CycleResult:
        """Run one full collect-and-reconcile cycle.

        Raises:
            CycleInProgressError: If another cycle is still running.
            TransportError, ParseError: If collection failed; nothing was written.
            StoreError: If persistence failed part way through reconciliation.
        """
        if self._lock.locked():
            msg = f"A cycle for board {self._config.board.board_id} is already running"
            raise CycleInProgressError(msg)

        async with self._lock:
            with bound_context(cycle_id=uuid4().hex[:12], board_id=self._config.board.board_id):
                return await self._run_locked()

    async def _run_locked(self) -> CycleResult:
        board = self._config.board
        result = CycleResult(
            board_id=board.board_id,
            lookback_bound=board.lookback_bound,
            started_at=self._clock(),
        )
        _log.info(
            "cycle_starting",
            lookback_bound=result.lookback_bound,
            page_size=board.page_size,
        )

        try:
            if self._source is not None:
                await self._run_with_source(self._source, result)
            else:
                async with BoardApiClient(self._config.source, clock=self._clock) as source:
                    await self._run_with_source(source, result)
        except Exception as exc:
            _log.error("cycle_failed", error=str(exc), error_type=type(exc).__name__)
            raise

        result.finished_at = self._clock()
        _log.info(
            "cycle_complete",
            collected=result.items_collected,
            new=result.new_items,
            counter_updates=result.counter_updates,
            events=result.events_emitted,
            partial_failures=len(result.partial_failures),
        )
        return result

    async def _run_with_source(self, source: RemoteSource, result: CycleResult) -> None:
        board = self._config.board
        collector = PaginatedCollector(source, board_id=board.board_id, page_size=board.page_size)
        items = await collector.collect_latest(result.lookback_bound)
        result.items_collected = len(items)
        if items:
            _log.debug("collected_ids_sample", ids=[item.id for item in items[:10]])

        existing = await self._snapshots.get_all()
        _log.info("existing_snapshots_loaded", count=len(existing))

        reconciler = ChangeReconciler(
            source,
            self._snapshots,
            self._audit_log,
            display_tz=self._config.archive.display_tz,
            comment_concurrency=self._config.archive.comment_concurrency,
            clock=self._clock,
        )
        report = await reconciler.reconcile(items, existing)
        result.new_items = len(report.archived_ids)
        result.counter_updates = report.counter_updates
        result.events_emitted = report.events_emitted
        result.partial_failures = report.partial_failures

    async def recent_events(self, limit: int = RECENT_EVENTS_LIMIT) -> list[ChangeEvent]:
        """Most recent change events, newest first."""
        return await self._audit_log.list_recent(limit)

    async def reset(self) -> tuple[int, int]:
        """Delete all snapshots and events. Returns (snapshots, events) removed."""
        if self._lock.locked():
            msg = "Cannot reset while a cycle is running"
            raise CycleInProgressError(msg)
        async with self._lock:
            removed_snapshots = await self._snapshots.clear()
            removed_events = await self._audit_log.clear()
        _log.warning("archive_reset", snapshots=removed_snapshots, events=removed_events)
        return removed_snapshots, removed_events


async def watch(pipeline: BoardArchivePipeline, interval_seconds: float) -> None:
    """Run a cycle every ``interval_seconds`` until cancelled.

    A failed cycle is logged and the next one runs on schedule.
    """
    _log.info("watch_started", interval_seconds=interval_seconds)
    try:
        while True:
            try:
                await pipeline.run_cycle()
            except CycleInProgressError:
                _log.info("watch_cycle_skipped", reason="cycle_in_progress")
            except Exception as exc:
                _log.error("watch_cycle_failed", error=str(exc), error_type=type(exc).__name__)
            await asyncio.sleep(interval_seconds)
    except asyncio.CancelledError:
        _log.info("watch_stopped")
        raise
