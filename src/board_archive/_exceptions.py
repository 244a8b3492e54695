from __future__ import annotations

from src.utils._exceptions import BoardArchiveError


class BoardArchiveCoreError(BoardArchiveError):
    """Base exception for the change-detection and archival pipeline."""


class TransportError(BoardArchiveCoreError):
    """The remote board API was unreachable, timed out, or returned a non-2xx status."""


class ParseError(BoardArchiveCoreError):
    """The remote board API returned a payload with an unexpected shape."""


class StoreError(BoardArchiveCoreError):
    """The snapshot store or audit log could not be read or written."""


class PartialItemFailure(BoardArchiveCoreError):
    """Comment summary for a single newly archived item could not be produced."""

    def __init__(self, item_id: str, message: str) -> None:
        super().__init__(f"item {item_id}: {message}")
        self.item_id = item_id


class CycleInProgressError(BoardArchiveCoreError):
    """A cycle was triggered while another cycle for the same board was running."""
