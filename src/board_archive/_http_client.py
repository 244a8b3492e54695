from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping

import aiohttp
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.board_archive._exceptions import ParseError, TransportError
from src.utils._logging import get_logger

_log = get_logger(__name__)


class HttpClient:
    """Async form-posting HTTP client with a request timeout and optional retries.

    ``max_attempts=1`` (the default) disables retries: the first connection
    error or timeout surfaces as a TransportError.
    """

    def __init__(
        self,
        *,
        headers: Mapping[str, str] | None = None,
        timeout_seconds: float = 30,
        max_attempts: int = 1,
        backoff_min_seconds: float = 2.0,
        backoff_max_seconds: float = 30.0,
    ) -> None:
        self._headers = dict(headers or {})
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._max_attempts = max(1, max_attempts)
        self._backoff_min = backoff_min_seconds
        self._backoff_max = backoff_max_seconds
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> HttpClient:
        self._session = aiohttp.ClientSession(
            timeout=self._timeout,
            headers=self._headers,
        )
        return self

    async def __aexit__(self, *exc: object) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    def _make_post(self) -> Callable[[str, dict[str, str]], Awaitable[tuple[str, int]]]:
        """Build a retrying post function bound to current retry config."""

        @retry(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(multiplier=1, min=self._backoff_min, max=self._backoff_max),
            retry=retry_if_exception_type((aiohttp.ClientError, TimeoutError)),
            reraise=True,
        )
        async def _post(url: str, form: dict[str, str]) -> tuple[str, int]:
            if not self._session:
                msg = "HttpClient must be used as async context manager"
                raise TransportError(msg)

            _log.debug("http_request", url=url)

            async with self._session.post(url, data=form) as resp:
                text = await resp.text()
                if not 200 <= resp.status < 300:
                    _log.warning("http_bad_status", url=url, status=resp.status, body=text[:200])
                    raise TransportError(f"HTTP {resp.status} for {url}")
                return text, resp.status

        return _post

    async def post_form(self, url: str, form: dict[str, str]) -> str:
        """POST ``form`` as application/x-www-form-urlencoded and return the body.

        Raises:
            TransportError: On non-2xx status, connection failure, or timeout
                (after retries, when enabled).
            ParseError: If the body is not valid in its declared encoding.
        """
        post_fn = self._make_post()
        try:
            text, _status = await post_fn(url, form)
        except TransportError:
            raise
        except TimeoutError as exc:
            raise TransportError(f"Timed out posting to {url}") from exc
        except UnicodeDecodeError as exc:
            raise ParseError(f"Undecodable response body from {url}: {exc.reason}") from exc
        except Exception as exc:
            raise TransportError(f"Failed to post to {url}: {exc}") from exc
        return text
