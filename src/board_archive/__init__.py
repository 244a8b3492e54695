from __future__ import annotations

from typing import TYPE_CHECKING, Any

from src.board_archive._audit_log import AuditLog, JsonlAuditLog
from src.board_archive._collector import PaginatedCollector
from src.board_archive._reconciler import ChangeReconciler
from src.board_archive._snapshot_store import JsonSnapshotStore, SnapshotStore
from src.board_archive._source import BoardApiClient, RemoteSource
from src.board_archive.pipeline import BoardArchivePipeline

if TYPE_CHECKING:
    from src.board_archive._models import CycleResult

__all__ = [
    "AuditLog",
    "BoardApiClient",
    "BoardArchivePipeline",
    "ChangeReconciler",
    "JsonSnapshotStore",
    "JsonlAuditLog",
    "PaginatedCollector",
    "RemoteSource",
    "SnapshotStore",
]


def run_cycle(**kwargs: Any) -> CycleResult:
    """Convenience wrapper: build a pipeline and run one cycle synchronously."""
    import asyncio

    pipeline = BoardArchivePipeline(**kwargs)
    return asyncio.run(pipeline.run_cycle())
