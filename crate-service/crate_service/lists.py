"""
Client-side paginated lists (feed, collection, wishlist, notifications, comments)
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Generic, List, Optional, TypeVar
import logging

from .exceptions import CrateError
from .pagination import Cursor, PageResult, merge_items

logger = logging.getLogger(__name__)

T = TypeVar("T")

# (cursor, limit) -> page; cursor is None for the first page
FetchPage = Callable[[Optional[Cursor], int], Awaitable[PageResult[T]]]


@dataclass
class PageState(Generic[T]):
    items: List[T] = field(default_factory=list)
    cursor: Optional[Cursor] = None
    has_more: bool = True
    loading: bool = False
    loading_more: bool = False
    refreshing: bool = False
    error: Optional[CrateError] = None
    new_items_available: int = 0


class PagedList(Generic[T]):
    """
    Ordered, deduplicated list of items kept in sync with a backend

    Only one ``load_more`` runs at a time; overlapping calls are rejected.
    ``refresh`` discards the cursor, and a ``load_more`` that was started
    before a refresh does not apply its result. After ``close`` no pending
    fetch touches the state.
    """

    def __init__(
        self,
        fetch_page: FetchPage,
        initial_limit: int,
        more_limit: Optional[int] = None,
        name: str = "list",
    ):
        self.fetch_page = fetch_page
        self.initial_limit = initial_limit
        self.more_limit = more_limit or initial_limit
        self.name = name
        self.state: PageState[T] = PageState()
        self._alive = True
        self._more_in_flight = False
        self._generation = 0
        self._pending = {"loading": 0, "refreshing": 0}

    @property
    def items(self) -> List[T]:
        return self.state.items

    @property
    def alive(self) -> bool:
        return self._alive

    @property
    def newest_sort_key(self) -> Optional[datetime]:
        return self.state.items[0].sort_key if self.state.items else None

    def find(self, item_id: Optional[str]) -> Optional[T]:
        for item in self.state.items:
            if item.id == item_id:
                return item
        return None

    async def _fetch_first_page(self, flag: str) -> bool:
        self._generation += 1
        generation = self._generation
        self._pending[flag] += 1
        setattr(self.state, flag, True)
        self.state.error = None
        try:
            page = await self.fetch_page(None, self.initial_limit)
        except CrateError as e:
            logger.error(f"Failed to load {self.name}: {e}")
            if self._alive and generation == self._generation:
                self.state.error = e
            return False
        finally:
            self._pending[flag] -= 1
            if self._alive:
                setattr(self.state, flag, self._pending[flag] > 0)

        if not self._alive or generation != self._generation:
            return False
        self.state.items = merge_items([], page.items)
        self.state.cursor = page.cursor
        self.state.has_more = page.has_more
        self.state.new_items_available = 0
        return True

    async def load_initial(self) -> bool:
        """Load the first page, replacing whatever is held"""
        return await self._fetch_first_page("loading")

    async def refresh(self) -> bool:
        """Pull-to-refresh: drop the cursor and reload the first page"""
        return await self._fetch_first_page("refreshing")

    async def load_more(self) -> bool:
        """
        Append the next page

        Returns False without fetching when a load is already running, when
        nothing more is expected, or when the list has no items yet.
        """
        if self._more_in_flight:
            logger.debug(f"load_more on {self.name} rejected: already in flight")
            return False
        if not self._alive or not self.state.has_more or self.state.cursor is None:
            return False

        self._more_in_flight = True
        generation = self._generation
        self.state.loading_more = True
        try:
            page = await self.fetch_page(self.state.cursor, self.more_limit)
        except CrateError as e:
            logger.error(f"Failed to load more {self.name}: {e}")
            if self._alive and generation == self._generation:
                self.state.error = e
            return False
        finally:
            self._more_in_flight = False
            if self._alive:
                self.state.loading_more = False

        if not self._alive or generation != self._generation:
            logger.debug(f"Discarding stale page for {self.name}")
            return False
        self.state.items = merge_items(self.state.items, page.items)
        self.state.cursor = page.cursor or self.state.cursor
        self.state.has_more = page.has_more
        self.state.error = None
        return True

    def upsert(self, items: List[T]):
        """Merge items in, keeping order and unique ids"""
        if self._alive:
            self.state.items = merge_items(self.state.items, items)

    def remove(self, item_id: Optional[str]) -> Optional[T]:
        """Drop one item locally; returns it so it can be restored"""
        item = self.find(item_id)
        if item is not None and self._alive:
            self.state.items = [i for i in self.state.items if i.id != item_id]
        return item

    def note_new_items(self, count: int = 1):
        if self._alive:
            self.state.new_items_available += count

    def close(self):
        """Stop applying results; pending fetches are ignored when they land"""
        self._alive = False
