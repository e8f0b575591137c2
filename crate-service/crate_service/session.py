"""
Per-user view state: feed, inbox, comment threads, collection lists and
the realtime subscriptions that keep them current
"""
from typing import Callable, Dict, List, Optional
import logging

from .config import settings
from .domain.models import CollectionType, Comment, Post
from .exceptions import SubscriptionError
from .interactions import NotificationInbox, PostInteractions
from .lists import PagedList
from .optimistic import OptimisticCoordinator
from .realtime import (
    ChangeStream,
    ChangeType,
    CountNewItems,
    EventBus,
    IncrementCounter,
    MergeItems,
    RefetchOnChange,
    Subscription,
    all_of,
    field_equals,
    newer_than,
    of_type,
    record_factory,
)
from .services import (
    COLLECTION_TABLE,
    COMMENTS_TABLE,
    NOTIFICATIONS_TABLE,
    POSTS_TABLE,
    CollectionService,
    CommentService,
    FeedService,
    NotificationService,
    PostService,
)

logger = logging.getLogger(__name__)


class UserSession:
    """
    Everything one signed-in user is looking at

    ``close`` is the unmount: every subscription is cancelled and every list
    stops accepting results, including fetches still in flight.
    """

    def __init__(
        self,
        user_id: str,
        stream: ChangeStream,
        feed_service: FeedService,
        post_service: PostService,
        comment_service: CommentService,
        collection_service: CollectionService,
        notification_service: NotificationService,
        bus: Optional[EventBus] = None,
    ):
        self.user_id = user_id
        self.stream = stream
        self.feed_service = feed_service
        self.comment_service = comment_service
        self.collection_service = collection_service
        self.bus = bus or EventBus()
        self.coordinator = OptimisticCoordinator()

        self.feed: PagedList[Post] = PagedList(
            lambda cursor, limit: feed_service.home_feed(user_id, cursor, limit),
            settings.FEED_INITIAL_LOAD_COUNT,
            settings.FEED_LOAD_MORE_COUNT,
            name="feed",
        )
        self.collection = self._entries_list(CollectionType.COLLECTION)
        self.wishlist = self._entries_list(CollectionType.WISHLIST)
        self.inbox = NotificationInbox(user_id, notification_service, self.bus, self.coordinator)
        self.posts = PostInteractions(
            user_id, self.feed, post_service, comment_service, self.coordinator
        )
        self.threads: Dict[str, PagedList[Comment]] = {}
        self.subscriptions: Dict[str, Subscription] = {}
        self.errors: Dict[str, SubscriptionError] = {}
        self._factories: Dict[str, Callable[[], Subscription]] = {}
        self._feed_authors: List[str] = []
        self._closed = False

    def _entries_list(self, entry_type: CollectionType) -> PagedList:
        return PagedList(
            lambda cursor, limit: self.collection_service.list_entries(
                self.user_id, entry_type, cursor, limit
            ),
            settings.COLLECTION_PAGE_SIZE,
            name=entry_type.value,
        )

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self):
        """Load the first pages and start listening for changes"""
        self._feed_authors = await self.feed_service.home_authors(self.user_id)
        await self.feed.load_initial()
        await self.inbox.load()
        await self.collection.load_initial()
        await self.wishlist.load_initial()

        self._subscribe("feed", self._feed_subscription)
        self._subscribe("notifications", self._notifications_subscription)
        self._subscribe(
            "collection",
            lambda: self._entries_subscription(self.collection, CollectionType.COLLECTION),
        )
        self._subscribe(
            "wishlist",
            lambda: self._entries_subscription(self.wishlist, CollectionType.WISHLIST),
        )
        logger.info(f"Session opened for {self.user_id}")

    async def refresh_feed(self) -> bool:
        """Pull-to-refresh; also picks up follows made since the last load"""
        self._feed_authors = await self.feed_service.home_authors(self.user_id)
        return await self.feed.refresh()

    def _on_error(self, name: str) -> Callable[[SubscriptionError], None]:
        def handler(error: SubscriptionError):
            self.errors[name] = error
        return handler

    def _subscribe(self, name: str, factory: Callable[[], Subscription]) -> Subscription:
        if self._closed:
            raise SubscriptionError("Session is closed")
        self._factories[name] = factory
        subscription = factory().start()
        self.subscriptions[name] = subscription
        return subscription

    def _feed_subscription(self) -> Subscription:
        return Subscription(
            self.stream,
            POSTS_TABLE,
            CountNewItems(self.feed),
            predicate=all_of(
                of_type(ChangeType.INSERT),
                lambda event: event.record.get("user_id") in self._feed_authors,
                lambda event: event.record.get("user_id") != self.user_id,
                newer_than(self.feed),
            ),
            on_error=self._on_error("feed"),
            name=f"feed:{self.user_id}",
        )

    def _notifications_subscription(self) -> Subscription:
        return Subscription(
            self.stream,
            NOTIFICATIONS_TABLE,
            IncrementCounter(self.inbox.increment_unread),
            predicate=field_equals("user_id", self.user_id),
            on_error=self._on_error("notifications"),
            name=f"notifications:{self.user_id}",
        )

    def _entries_subscription(self, paged_list: PagedList, entry_type: CollectionType) -> Subscription:
        return Subscription(
            self.stream,
            COLLECTION_TABLE,
            RefetchOnChange(paged_list),
            predicate=all_of(
                field_equals("user_id", self.user_id),
                field_equals("type", entry_type.value),
            ),
            on_error=self._on_error(entry_type.value),
            name=f"{entry_type.value}:{self.user_id}",
        )

    async def comments_for(self, post_id: str) -> PagedList[Comment]:
        """
        Open the comment thread of a post

        New and edited comments are merged into the thread as they arrive.
        """
        thread = self.threads.get(post_id)
        if thread is not None:
            return thread

        thread = PagedList(
            lambda cursor, limit: self.comment_service.list_comments(post_id, cursor, limit),
            settings.COMMENTS_PAGE_SIZE,
            name=f"comments:{post_id}",
        )
        self.threads[post_id] = thread
        await thread.load_initial()
        self._subscribe(
            f"comments:{post_id}",
            lambda: Subscription(
                self.stream,
                COMMENTS_TABLE,
                MergeItems(thread, record_factory(Comment)),
                predicate=field_equals("post_id", post_id),
                on_error=self._on_error(f"comments:{post_id}"),
                name=f"comments:{post_id}",
            ),
        )
        return thread

    async def close_comments(self, post_id: str):
        thread = self.threads.pop(post_id, None)
        if thread is not None:
            thread.close()
        self._factories.pop(f"comments:{post_id}", None)
        subscription = self.subscriptions.pop(f"comments:{post_id}", None)
        if subscription is not None:
            await subscription.unsubscribe()

    def resubscribe(self) -> List[str]:
        """
        Restart every subscription that has stopped

        Returns the names of the subscriptions that were restarted.
        """
        if self._closed:
            raise SubscriptionError("Session is closed")

        restarted = []
        for name, subscription in list(self.subscriptions.items()):
            if subscription.active:
                continue
            if subscription.unsubscribed:
                subscription = self._factories[name]()
                self.subscriptions[name] = subscription
            subscription.start()
            self.errors.pop(name, None)
            restarted.append(name)
        if restarted:
            logger.info(f"Resubscribed {', '.join(restarted)} for {self.user_id}")
        return restarted

    async def close(self):
        """Unsubscribe everything and stop all lists; safe to call twice"""
        if self._closed:
            return
        self._closed = True
        for subscription in self.subscriptions.values():
            await subscription.unsubscribe()
        self.feed.close()
        self.collection.close()
        self.wishlist.close()
        for thread in self.threads.values():
            thread.close()
        self.inbox.close()
        logger.info(f"Session closed for {self.user_id}")
