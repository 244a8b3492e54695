from __future__ import annotations

from typing import TYPE_CHECKING

from src.utils._logging import get_logger

if TYPE_CHECKING:
    from src.board_archive._models import Item
    from src.board_archive._source import RemoteSource

_log = get_logger(__name__)


class PaginatedCollector:
    """Assembles the most recent items of a board, page by page.

    Pagination stops on an empty page, once ``max_items`` distinct items are
    collected, or on a page shorter than requested. The last rule saves a
    round trip but can stop one page early if the source pads short pages.

    Source errors propagate unchanged; a partially collected list is never
    returned.
    """

    def __init__(self, source: RemoteSource, *, board_id: str, page_size: int) -> None:
        if page_size <= 0:
            msg = "page_size must be positive"
            raise ValueError(msg)
        self._source = source
        self._board_id = board_id
        self._page_size = page_size

    async def collect_latest(self, max_items: int) -> list[Item]:
        """Return up to ``max_items`` distinct items, in source order."""
        collected: list[Item] = []
        seen: set[str] = set()
        cursor = 0
        pages = 0

        while len(collected) < max_items:
            requested = min(self._page_size, max_items - len(collected))
            page = await self._source.fetch_page(self._board_id, cursor, requested)
            pages += 1
            if not page:
                break

            for item in page:
                if item.id in seen:
                    _log.debug("duplicate_item_skipped", item_id=item.id, offset=cursor)
                    continue
                seen.add(item.id)
                collected.append(item)
                if len(collected) >= max_items:
                    break

            # Advance by the raw page length so duplicates never stall the cursor
            cursor += len(page)
            if len(page) < requested:
                break

        _log.info(
            "collection_complete",
            board_id=self._board_id,
            pages=pages,
            collected=len(collected),
            max_items=max_items,
        )
        return collected
