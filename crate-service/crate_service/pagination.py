"""
Cursor-based pagination

Pages are ordered by sort key (creation time), newest first. A cursor marks
the last item of the previous page and the next page starts strictly below
its sort key, so the boundary row is never returned twice.

``has_more`` is true when a page comes back exactly full. A final page that
happens to be exactly full therefore costs one extra, empty fetch.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import (
    Any,
    Awaitable,
    Callable,
    Generic,
    Iterable,
    List,
    Optional,
    TypeVar,
)
import base64
import binascii
import json
import logging

from .exceptions import ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")
P = TypeVar("P")


@dataclass(frozen=True)
class Cursor:
    """Opaque reference to the last item seen"""
    sort_key: datetime
    item_id: str

    @classmethod
    def after(cls, item: Any) -> "Cursor":
        return cls(sort_key=item.sort_key, item_id=item.id)

    def encode(self) -> str:
        raw = json.dumps({"k": self.sort_key.isoformat(), "id": self.item_id})
        return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii")

    @classmethod
    def decode(cls, token: str) -> "Cursor":
        try:
            raw = json.loads(base64.urlsafe_b64decode(token.encode("ascii")))
            return cls(sort_key=datetime.fromisoformat(raw["k"]), item_id=str(raw["id"]))
        except (binascii.Error, UnicodeError, ValueError, KeyError, TypeError) as e:
            raise ValidationError("Malformed cursor") from e


@dataclass
class PageResult(Generic[T]):
    items: List[T] = field(default_factory=list)
    cursor: Optional[Cursor] = None
    has_more: bool = False

    @property
    def next_cursor(self) -> Optional[str]:
        return self.cursor.encode() if self.cursor and self.has_more else None


# (predicate, before, limit) -> rows with sort_key < before, newest first
PageQuery = Callable[[P, Optional[datetime], int], Awaitable[List[T]]]


class CursorPaginator(Generic[P, T]):
    """Fetches pages of one ordered source"""

    def __init__(self, query: PageQuery, name: str = "items"):
        self.query = query
        self.name = name

    @staticmethod
    def _check_limit(limit: int):
        if limit <= 0:
            raise ValidationError("limit must be greater than 0")

    async def fetch_initial(self, predicate: P, limit: int) -> PageResult[T]:
        """First page, newest items"""
        self._check_limit(limit)
        items = await self.query(predicate, None, limit)
        return self._page(items, limit, previous=None)

    async def fetch_more(self, predicate: P, cursor: Cursor, limit: int) -> PageResult[T]:
        """Page strictly older than ``cursor``"""
        self._check_limit(limit)
        items = await self.query(predicate, cursor.sort_key, limit)
        # has_more follows the unfiltered row count: a full page that included the
        # boundary row still means older rows may exist. The worst case is one
        # extra fetch that comes back empty.
        returned = len(items)
        # Guard against sources that compare with <= instead of <
        items = [
            item for item in items
            if item.id != cursor.item_id and item.sort_key < cursor.sort_key
        ]
        if not items:
            logger.debug(f"No more {self.name} after {cursor.sort_key.isoformat()}")
            return PageResult(items=[], cursor=cursor, has_more=False)
        return self._page(items, limit, previous=cursor, returned=returned)

    def _page(
        self,
        items: List[T],
        limit: int,
        previous: Optional[Cursor],
        returned: Optional[int] = None,
    ) -> PageResult[T]:
        cursor = Cursor.after(items[-1]) if items else previous
        has_more = (len(items) if returned is None else returned) == limit
        logger.debug(f"Fetched {len(items)} {self.name} (has_more={has_more})")
        return PageResult(items=items, cursor=cursor, has_more=has_more)


def _is_fresher(candidate: Any, current: Any) -> bool:
    candidate_at = getattr(candidate, "updated_at", None)
    current_at = getattr(current, "updated_at", None)
    if candidate_at is None or current_at is None:
        return True
    return candidate_at >= current_at


def merge_items(existing: Iterable[T], incoming: Iterable[T]) -> List[T]:
    """
    Merge two item sequences into one newest-first list without duplicate ids

    When an id appears twice the instance with the newer ``updated_at`` wins;
    without timestamps the incoming instance wins.
    """
    merged = {}
    for item in existing:
        merged[item.id] = item
    for item in incoming:
        current = merged.get(item.id)
        if current is None or _is_fresher(item, current):
            merged[item.id] = item
    return sorted(merged.values(), key=lambda item: item.sort_key, reverse=True)
