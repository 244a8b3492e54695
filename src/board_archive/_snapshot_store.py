from __future__ import annotations

import abc
import asyncio
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import TypeAdapter, ValidationError

from src.board_archive._exceptions import StoreError
from src.board_archive._models import CounterField, StoredSnapshot
from src.utils._logging import get_logger

if TYPE_CHECKING:
    from datetime import datetime

    from src.board_archive._models import SetCommentCount, SetScrapCount, SetUpvotes

_log = get_logger(__name__)

_SNAPSHOTS = TypeAdapter(dict[str, StoredSnapshot])


class SnapshotStore(abc.ABC):
    """One persisted snapshot per item, addressable by item id."""

    @abc.abstractmethod
    async def get_all(self) -> dict[str, StoredSnapshot]:
        """Return every stored snapshot keyed by item id."""

    @abc.abstractmethod
    async def get(self, item_id: str) -> StoredSnapshot | None:
        """Return the snapshot for ``item_id``, or None."""

    @abc.abstractmethod
    async def put(self, item_id: str, snapshot: StoredSnapshot) -> None:
        """Create or replace the snapshot for ``item_id``."""

    @abc.abstractmethod
    async def update_field(
        self,
        item_id: str,
        field: CounterField,
        value: int,
        updated_at: datetime,
    ) -> None:
        """Set one counter and ``updated_at`` on an existing snapshot."""

    @abc.abstractmethod
    async def clear(self) -> int:
        """Delete every snapshot. Returns how many were removed."""

    async def apply(
        self,
        item_id: str,
        update: SetUpvotes | SetCommentCount | SetScrapCount,
        updated_at: datetime,
    ) -> None:
        """Apply a counter update operation."""
        await self.update_field(item_id, update.counter, update.value, updated_at)


class JsonSnapshotStore(SnapshotStore):
    """File-based snapshot store.

    All snapshots live in a single JSON document. Writes are atomic via
    tmp-file + rename, and serialised within the process by a lock.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, StoredSnapshot]:
        if not self._path.exists():
            return {}
        try:
            raw = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StoreError(f"Cannot read snapshots from {self._path}: {exc}") from exc
        if not raw.strip():
            return {}
        try:
            return _SNAPSHOTS.validate_json(raw)
        except ValidationError as exc:
            raise StoreError(f"Corrupt snapshot file {self._path}: {exc}") from exc

    def _save(self, snapshots: dict[str, StoredSnapshot]) -> None:
        try:
            fd, tmp_path = tempfile.mkstemp(
                dir=str(self._path.parent), suffix=".tmp", prefix="snapshots_"
            )
        except OSError as exc:
            raise StoreError(f"Cannot write snapshots to {self._path}: {exc}") from exc
        try:
            with open(fd, "wb") as f:
                f.write(_SNAPSHOTS.dump_json(snapshots, indent=2))
            Path(tmp_path).replace(self._path)
        except OSError as exc:
            Path(tmp_path).unlink(missing_ok=True)
            raise StoreError(f"Cannot write snapshots to {self._path}: {exc}") from exc

    async def get_all(self) -> dict[str, StoredSnapshot]:
        async with self._lock:
            snapshots = await asyncio.to_thread(self._load)
        _log.debug("snapshots_loaded", count=len(snapshots))
        return snapshots

    async def get(self, item_id: str) -> StoredSnapshot | None:
        async with self._lock:
            snapshots = await asyncio.to_thread(self._load)
        return snapshots.get(item_id)

    async def put(self, item_id: str, snapshot: StoredSnapshot) -> None:
        async with self._lock:
            snapshots = await asyncio.to_thread(self._load)
            snapshots[item_id] = snapshot
            await asyncio.to_thread(self._save, snapshots)

    async def update_field(
        self,
        item_id: str,
        field: CounterField,
        value: int,
        updated_at: datetime,
    ) -> None:
        async with self._lock:
            snapshots = await asyncio.to_thread(self._load)
            snapshot = snapshots.get(item_id)
            if snapshot is None:
                raise StoreError(f"No snapshot stored for item {item_id}")
            setattr(snapshot, CounterField(field).value, value)
            snapshot.updated_at = updated_at
            await asyncio.to_thread(self._save, snapshots)

    async def clear(self) -> int:
        async with self._lock:
            snapshots = await asyncio.to_thread(self._load)
            await asyncio.to_thread(self._save, {})
        _log.info("snapshots_cleared", count=len(snapshots))
        return len(snapshots)
