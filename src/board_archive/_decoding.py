"""Strict decoding of board API payloads into Item and Comment records.

The API answers with an XML document whose records carry their data as
attributes::

    <response>
      <moim ... />
      <article id="..." title="..." text="..." created_at="..."
               posvote="3" comment="1" scrap_count="0" />
      ...
    </response>

Every default substitution happens here, once, so the rest of the pipeline
only ever sees fully populated records. A single record is found the same way
as many, so upstream payloads that do not wrap a lone result need no special
case.
"""

from __future__ import annotations

from datetime import datetime, tzinfo
from typing import TYPE_CHECKING

from bs4 import BeautifulSoup
from pydantic import ValidationError

from src.board_archive._exceptions import ParseError
from src.board_archive._models import ANONYMOUS_NICKNAME, Comment, Item

if TYPE_CHECKING:
    from bs4 import Tag


def decode_item_page(
    payload: str,
    *,
    limit: int,
    fetched_at: datetime,
    source_tz: tzinfo,
) -> list[Item]:
    """Decode an article-list response, keeping at most ``limit`` items."""
    root = _response_root(payload)
    items: list[Item] = []
    for tag in root.find_all("article"):
        if len(items) >= limit:
            break
        items.append(_decode_item(tag, fetched_at=fetched_at, source_tz=source_tz))
    return items


def decode_comments(
    payload: str,
    *,
    fetched_at: datetime,
    source_tz: tzinfo,
) -> list[Comment]:
    """Decode a comment-list response.

    Comments without a timestamp get ``fetched_at``; comments without an
    author are anonymous.
    """
    root = _response_root(payload)
    comments: list[Comment] = []
    for tag in root.find_all("comment"):
        comment_id = _attr(tag, "id")
        if not comment_id:
            raise ParseError("comment element without id attribute")
        try:
            comments.append(
                Comment(
                    id=comment_id,
                    text=_attr(tag, "text"),
                    author_nickname=_attr(tag, "user_nickname") or ANONYMOUS_NICKNAME,
                    created_at=_parse_timestamp(
                        _attr(tag, "created_at"), source_tz=source_tz, fallback=fetched_at
                    ),
                )
            )
        except ValidationError as exc:
            raise ParseError(f"invalid comment {comment_id}: {exc}") from exc
    return comments


def _response_root(payload: str) -> Tag:
    if not payload or not payload.strip():
        raise ParseError("empty response body")
    soup = BeautifulSoup(payload, "html.parser")
    root = soup.find("response")
    if root is None:
        raise ParseError("response body has no <response> root element")
    return root


def _decode_item(tag: Tag, *, fetched_at: datetime, source_tz: tzinfo) -> Item:
    item_id = _attr(tag, "id")
    if not item_id:
        raise ParseError("article element without id attribute")
    try:
        return Item(
            id=item_id,
            title=_attr(tag, "title"),
            text=_attr(tag, "text"),
            created_at=_parse_timestamp(
                _attr(tag, "created_at"), source_tz=source_tz, fallback=fetched_at
            ),
            upvotes=_parse_count(tag, "posvote"),
            comment_count=_parse_count(tag, "comment"),
            scrap_count=_parse_count(tag, "scrap_count"),
        )
    except ValidationError as exc:
        raise ParseError(f"invalid article {item_id}: {exc}") from exc


def _attr(tag: Tag, name: str) -> str:
    value = tag.get(name)
    if value is None:
        return ""
    if isinstance(value, list):
        return " ".join(value)
    return value


def _parse_count(tag: Tag, name: str) -> int:
    raw = _attr(tag, name).strip()
    if not raw:
        return 0
    try:
        return int(raw)
    except ValueError as exc:
        raise ParseError(f"attribute {name}={raw!r} is not an integer") from exc


def _parse_timestamp(raw: str, *, source_tz: tzinfo, fallback: datetime) -> datetime:
    raw = raw.strip()
    if not raw:
        return fallback
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError as exc:
        raise ParseError(f"unparseable timestamp {raw!r}") from exc
    if parsed.tzinfo is None:
        # Board timestamps are local wall-clock time
        parsed = parsed.replace(tzinfo=source_tz)
    return parsed
