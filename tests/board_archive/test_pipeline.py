from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from src.board_archive._exceptions import CycleInProgressError, StoreError, TransportError
from src.board_archive._models import BoardConfig, BoardSettings, EventKind
from src.board_archive._snapshot_store import JsonSnapshotStore
from src.board_archive.pipeline import BoardArchivePipeline, watch
from tests.board_archive.conftest import (
    FakeSource,
    MemoryAuditLog,
    MemorySnapshotStore,
    TickingClock,
    _make_item,
)


def _board(count: int) -> list:
    return [_make_item(str(1000 + count - i)) for i in range(count)]


class BlockingSource(FakeSource):
    """Holds the first page fetch open until released."""

    def __init__(self, items) -> None:
        super().__init__(items)
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def fetch_page(self, board_id, offset, limit):
        self.entered.set()
        await self.release.wait()
        return await super().fetch_page(board_id, offset, limit)


class TestRunCycle:
    async def test_first_cycle_end_to_end(self, board_config, clock):
        source = FakeSource(_board(8))
        pipeline = BoardArchivePipeline(board_config, source=source, clock=clock)

        result = await pipeline.run_cycle()

        assert result.board_id == "393752"
        assert result.lookback_bound == 20
        assert result.items_collected == 8
        assert result.new_items == 8
        assert result.events_emitted == 8
        assert result.finished_at is not None
        assert board_config.storage.snapshot_path.exists()
        events = await pipeline.recent_events()
        assert len(events) == 8
        assert all(e.kind == EventKind.NEW_ITEM for e in events)

    async def test_second_cycle_is_idempotent(self, board_config, clock):
        source = FakeSource(_board(6))
        pipeline = BoardArchivePipeline(board_config, source=source, clock=clock)
        await pipeline.run_cycle()

        result = await pipeline.run_cycle()

        assert result.new_items == 0
        assert result.counter_updates == 0
        assert result.events_emitted == 0
        assert len(await pipeline.recent_events()) == 6

    async def test_counter_drift_between_cycles(self, board_config, clock):
        items = _board(3)
        source = FakeSource(items)
        pipeline = BoardArchivePipeline(board_config, source=source, clock=clock)
        await pipeline.run_cycle()

        source.items = [items[0].model_copy(update={"upvotes": 4}), *items[1:]]
        result = await pipeline.run_cycle()

        assert result.counter_updates == 1
        latest = (await pipeline.recent_events(1))[0]
        assert latest.kind == EventKind.UPVOTE_CHANGE
        assert (latest.before, latest.after) == (0, 4)
        stored = await pipeline.snapshots.get(items[0].id)
        assert stored.upvotes == 4

    async def test_lookback_bounds_collection(self, board_config, clock):
        source = FakeSource(_board(40))
        pipeline = BoardArchivePipeline(board_config, source=source, clock=clock)

        result = await pipeline.run_cycle()

        assert result.items_collected == 20

    async def test_default_lookback(self, tmp_path, clock):
        config = BoardConfig(
            board=BoardSettings(page_size=5),
            storage={
                "snapshot_path": tmp_path / "s.json",
                "audit_log_path": tmp_path / "a.jsonl",
            },
        )
        source = FakeSource(_board(80))
        pipeline = BoardArchivePipeline(config, source=source, clock=clock)

        result = await pipeline.run_cycle()

        assert result.lookback_bound == 50
        assert result.items_collected == 50

    async def test_transport_failure_mid_collection_writes_nothing(self, board_config, clock):
        store = MemorySnapshotStore()
        log = MemoryAuditLog()
        source = FakeSource(_board(12), fail_on_page_call=2)
        pipeline = BoardArchivePipeline(
            board_config, source=source, snapshots=store, audit_log=log, clock=clock
        )

        with pytest.raises(TransportError):
            await pipeline.run_cycle()

        assert store.write_count == 0
        assert log.events == []
        assert not pipeline.is_running

    async def test_store_failure_keeps_committed_writes(self, board_config, clock):
        store = MemorySnapshotStore()
        log = MemoryAuditLog()
        log.fail_for_items = {"1002"}
        source = FakeSource(_board(3))
        pipeline = BoardArchivePipeline(
            board_config, source=source, snapshots=store, audit_log=log, clock=clock
        )

        with pytest.raises(StoreError):
            await pipeline.run_cycle()

        # 1001 is archived first and stays committed
        assert "1001" in store.data
        assert [e.item_id for e in log.events] == ["1001"]

    async def test_partial_failures_reported(self, board_config, clock):
        source = FakeSource(_board(3), failing_comment_ids={"1003"})
        pipeline = BoardArchivePipeline(board_config, source=source, clock=clock)

        result = await pipeline.run_cycle()

        assert result.new_items == 3
        assert result.partial_failures == ["1003"]

    async def test_concurrent_trigger_rejected(self, board_config, clock):
        source = BlockingSource(_board(2))
        pipeline = BoardArchivePipeline(board_config, source=source, clock=clock)

        first = asyncio.create_task(pipeline.run_cycle())
        await source.entered.wait()
        assert pipeline.is_running

        with pytest.raises(CycleInProgressError):
            await pipeline.run_cycle()

        source.release.set()
        result = await first
        assert result.new_items == 2
        assert not pipeline.is_running

    async def test_recent_events_newest_first(self, board_config):
        items = [
            _make_item("3", created_at=_make_item("x").created_at + timedelta(minutes=2)),
            _make_item("2", created_at=_make_item("x").created_at + timedelta(minutes=1)),
            _make_item("1"),
        ]
        pipeline = BoardArchivePipeline(
            board_config, source=FakeSource(items), clock=TickingClock()
        )
        await pipeline.run_cycle()

        events = await pipeline.recent_events(2)

        assert [e.item_id for e in events] == ["3", "2"]

    def test_builds_json_stores_from_config(self, board_config):
        pipeline = BoardArchivePipeline(board_config)
        assert isinstance(pipeline.snapshots, JsonSnapshotStore)
        assert pipeline.snapshots.path == board_config.storage.snapshot_path
        assert pipeline.audit_log.path == board_config.storage.audit_log_path


class TestReset:
    async def test_reset_clears_everything(self, board_config, clock):
        pipeline = BoardArchivePipeline(board_config, source=FakeSource(_board(4)), clock=clock)
        await pipeline.run_cycle()

        removed = await pipeline.reset()

        assert removed == (4, 4)
        assert await pipeline.snapshots.get_all() == {}
        assert await pipeline.recent_events() == []

    async def test_reset_refused_while_running(self, board_config, clock):
        source = BlockingSource(_board(1))
        pipeline = BoardArchivePipeline(board_config, source=source, clock=clock)
        task = asyncio.create_task(pipeline.run_cycle())
        await source.entered.wait()

        with pytest.raises(CycleInProgressError):
            await pipeline.reset()

        source.release.set()
        await task


class TestWatch:
    async def test_watch_survives_failed_cycles(self, board_config, clock):
        source = FakeSource(_board(2), fail_on_page_call=1)
        pipeline = BoardArchivePipeline(board_config, source=source, clock=clock)

        task = asyncio.create_task(watch(pipeline, 0.01))
        for _ in range(200):
            if len(await pipeline.snapshots.get_all()) == 2:
                break
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert len(source.page_calls) >= 2
        assert len(await pipeline.snapshots.get_all()) == 2
