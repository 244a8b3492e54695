from __future__ import annotations

import abc
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from src.board_archive._decoding import decode_comments, decode_item_page
from src.board_archive._exceptions import TransportError
from src.board_archive._http_client import HttpClient
from src.utils._logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

    from src.board_archive._models import Comment, Item, SourceSettings

_log = get_logger(__name__)


class RemoteSource(abc.ABC):
    """Read access to the remote board.

    Implementations raise TransportError when the board cannot be reached
    and ParseError when it answers with something they cannot decode.
    """

    @abc.abstractmethod
    async def fetch_page(self, board_id: str, offset: int, limit: int) -> list[Item]:
        """Fetch up to ``limit`` items, newest first, starting at ``offset``."""

    @abc.abstractmethod
    async def fetch_comments(self, item_id: str) -> list[Comment]:
        """Fetch every comment currently attached to ``item_id``."""


class BoardApiClient(RemoteSource):
    """RemoteSource backed by the board's form-encoded XML API.

    Must be used as an async context manager so the underlying HTTP session
    is opened and closed around a cycle.
    """

    def __init__(
        self,
        settings: SourceSettings,
        *,
        clock: Callable[[], datetime] | None = None,
        backoff_min_seconds: float = 2.0,
    ) -> None:
        self._settings = settings
        self._clock = clock or (lambda: datetime.now(UTC))
        base = settings.base_url.rstrip("/")
        self._article_url = f"{base}{settings.article_path}"
        self._comment_url = f"{base}{settings.comment_path}"
        self._http = HttpClient(
            headers=self._headers(),
            timeout_seconds=settings.request_timeout_seconds,
            max_attempts=settings.max_retries if settings.retries_enabled else 1,
            backoff_min_seconds=backoff_min_seconds,
        )
        self._open = False

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/x-www-form-urlencoded; charset=UTF-8",
            "User-Agent": self._settings.user_agent,
            "Origin": self._settings.origin,
            "Referer": self._settings.referer,
        }
        if self._settings.cookie:
            headers["Cookie"] = self._settings.cookie
        return headers

    async def __aenter__(self) -> BoardApiClient:
        await self._http.__aenter__()
        self._open = True
        return self

    async def __aexit__(self, *exc: object) -> None:
        self._open = False
        await self._http.__aexit__(*exc)

    def _ensure_open(self) -> None:
        if not self._open:
            msg = "BoardApiClient must be used as async context manager"
            raise TransportError(msg)

    async def fetch_page(self, board_id: str, offset: int, limit: int) -> list[Item]:
        self._ensure_open()
        form = {
            "id": board_id,
            "limit_num": str(limit),
            "start_num": str(offset),
            "moiminfo": "true",
        }
        body = await self._http.post_form(self._article_url, form)
        items = decode_item_page(
            body,
            limit=limit,
            fetched_at=self._clock(),
            source_tz=self._settings.tz,
        )
        _log.info(
            "page_fetched",
            board_id=board_id,
            offset=offset,
            requested=limit,
            received=len(items),
        )
        return items

    async def fetch_comments(self, item_id: str) -> list[Comment]:
        self._ensure_open()
        form = {
            "id": item_id,
            "limit_num": "-1",
            "articleInfo": "true",
        }
        body = await self._http.post_form(self._comment_url, form)
        comments = decode_comments(
            body,
            fetched_at=self._clock(),
            source_tz=self._settings.tz,
        )
        _log.info("comments_fetched", item_id=item_id, count=len(comments))
        return comments
