"""
Optimistic user actions on loaded lists

Each action changes the local list first, then writes to the backend. A
failed write puts the exact previous values back and re-raises.
"""
from typing import Any, Dict, List, Optional
import logging

from .config import settings
from .domain.models import Comment, Notification, Post
from .exceptions import NotFoundError
from .lists import PagedList
from .optimistic import OptimisticCoordinator, clamp_counter, counter_step
from .pagination import Cursor, PageResult
from .realtime import EventBus
from .services import CommentService, NotificationService, PostService

logger = logging.getLogger(__name__)

NOTIFICATIONS_READ = "notifications.read"


class PostInteractions:
    """Like, unlike and delete on posts and comments held in a feed"""

    def __init__(
        self,
        user_id: str,
        feed: PagedList[Post],
        posts: PostService,
        comments: CommentService,
        coordinator: Optional[OptimisticCoordinator] = None,
    ):
        self.user_id = user_id
        self.feed = feed
        self.posts = posts
        self.comments = comments
        self.coordinator = coordinator or OptimisticCoordinator()

    def _loaded_post(self, post_id: str) -> Post:
        post = self.feed.find(post_id)
        if post is None:
            raise NotFoundError("Post not found")
        return post

    async def like(self, post_id: str) -> Post:
        post = self._loaded_post(post_id)

        def apply():
            if not post.is_liked:
                post.is_liked = True
                post.likes_count = clamp_counter(post.likes_count, 1)

        await self.coordinator.run(
            post_id,
            "like",
            snapshot=lambda: (post.is_liked, post.likes_count),
            apply=apply,
            restore=lambda saved: self._restore_like(post, saved),
            remote=lambda: self.posts.like(self.user_id, post_id),
        )
        return post

    async def unlike(self, post_id: str) -> Post:
        post = self._loaded_post(post_id)

        def apply():
            # Clamped even when the flag says liked but the count is already 0
            if post.is_liked:
                post.is_liked = False
                post.likes_count = clamp_counter(post.likes_count, -1)

        await self.coordinator.run(
            post_id,
            "unlike",
            snapshot=lambda: (post.is_liked, post.likes_count),
            apply=apply,
            restore=lambda saved: self._restore_like(post, saved),
            remote=lambda: self.posts.unlike(self.user_id, post_id),
        )
        return post

    async def toggle_like(self, post_id: str) -> Post:
        if self._loaded_post(post_id).is_liked:
            return await self.unlike(post_id)
        return await self.like(post_id)

    @staticmethod
    def _restore_like(post: Post, saved):
        post.is_liked, post.likes_count = saved

    async def delete_post(self, post_id: str) -> None:
        post = self._loaded_post(post_id)
        await self.coordinator.run(
            post_id,
            "delete",
            snapshot=lambda: post,
            apply=lambda: self.feed.remove(post_id),
            restore=lambda saved: self.feed.upsert([saved]),
            remote=lambda: self.posts.delete_post(self.user_id, post_id),
        )

    async def delete_comment(self, thread: PagedList[Comment], comment_id: str) -> None:
        """Remove a comment from its thread and decrement the post's count"""
        comment = thread.find(comment_id)
        if comment is None:
            raise NotFoundError("Comment not found")
        post = self.feed.find(comment.post_id)
        applied = 0

        def apply():
            nonlocal applied
            thread.remove(comment_id)
            if post is not None:
                post.comments_count, applied = counter_step(post.comments_count, -1)

        def restore(_):
            thread.upsert([comment])
            if post is not None:
                # Other comments on the post may have been deleted meanwhile
                post.comments_count = clamp_counter(post.comments_count, -applied)

        await self.coordinator.run(
            comment_id,
            "delete",
            snapshot=lambda: None,
            apply=apply,
            restore=restore,
            remote=lambda: self.comments.delete_comment(self.user_id, comment_id),
        )


class NotificationInbox:
    """
    Notification list plus unread badge for one user

    Read-state changes are broadcast on the event bus so other inboxes of the
    same user stay in step without refetching.
    """

    def __init__(
        self,
        user_id: str,
        notifications: NotificationService,
        bus: EventBus,
        coordinator: Optional[OptimisticCoordinator] = None,
        page_size: Optional[int] = None,
    ):
        self.user_id = user_id
        self.notifications = notifications
        self.bus = bus
        self.coordinator = coordinator or OptimisticCoordinator()
        self.unread_count = 0
        self.list: PagedList[Notification] = PagedList(
            self._fetch,
            page_size or settings.NOTIFICATIONS_PAGE_SIZE,
            name="notifications",
        )
        self._unsubscribe_bus = bus.subscribe(NOTIFICATIONS_READ, self._on_read_elsewhere)

    async def _fetch(self, cursor: Optional[Cursor], limit: int) -> PageResult[Notification]:
        return await self.notifications.list_notifications(self.user_id, cursor, limit)

    async def load(self) -> bool:
        loaded = await self.list.load_initial()
        await self.refresh_unread_count()
        return loaded

    async def refresh(self) -> bool:
        refreshed = await self.list.refresh()
        await self.refresh_unread_count()
        return refreshed

    async def refresh_unread_count(self) -> int:
        count = await self.notifications.unread_count(self.user_id)
        if self.list.alive:
            self.unread_count = count
        return self.unread_count

    def increment_unread(self):
        if self.list.alive:
            self.unread_count += 1

    def _broadcast(self, notification_ids: Optional[List[str]]):
        self.bus.publish(
            NOTIFICATIONS_READ,
            {
                "source": self,
                "user_id": self.user_id,
                "notification_ids": notification_ids,
                "unread_count": self.unread_count,
            },
        )

    def _on_read_elsewhere(self, payload: Dict[str, Any]):
        if payload.get("source") is self or payload.get("user_id") != self.user_id:
            return
        ids = payload.get("notification_ids")
        for item in self.list.items:
            if ids is None or item.id in ids:
                item.read = True
        self.unread_count = payload.get("unread_count", self.unread_count)

    async def mark_read(self, notification_id: str) -> None:
        item = self.list.find(notification_id)
        if item is None:
            raise NotFoundError("Notification not found")
        if item.read:
            return

        applied = 0

        def apply():
            nonlocal applied
            item.read = True
            self.unread_count, applied = counter_step(self.unread_count, -1)

        def restore(was_read):
            item.read = was_read
            self.unread_count = clamp_counter(self.unread_count, -applied)

        await self.coordinator.run(
            notification_id,
            "mark_read",
            snapshot=lambda: item.read,
            apply=apply,
            restore=restore,
            remote=lambda: self.notifications.mark_read(self.user_id, notification_id),
        )
        self._broadcast([notification_id])

    async def mark_all_read(self) -> None:
        flipped: List[Notification] = []
        applied = 0

        def apply():
            nonlocal applied
            for item in self.list.items:
                if not item.read:
                    item.read = True
                    flipped.append(item)
            self.unread_count, applied = counter_step(self.unread_count, -self.unread_count)

        def restore(_):
            # Only the items this call flipped; arrivals since then keep their count
            for item in flipped:
                item.read = False
            self.unread_count = clamp_counter(self.unread_count, -applied)

        await self.coordinator.run(
            self.user_id,
            "mark_all_read",
            snapshot=lambda: None,
            apply=apply,
            restore=restore,
            remote=lambda: self.notifications.mark_all_read(self.user_id),
        )
        self._broadcast(None)

    async def delete(self, notification_id: str) -> None:
        item = self.list.find(notification_id)
        if item is None:
            raise NotFoundError("Notification not found")

        applied = 0

        def apply():
            nonlocal applied
            self.list.remove(notification_id)
            if not item.read:
                self.unread_count, applied = counter_step(self.unread_count, -1)

        def restore(_):
            self.list.upsert([item])
            self.unread_count = clamp_counter(self.unread_count, -applied)

        await self.coordinator.run(
            notification_id,
            "delete",
            snapshot=lambda: None,
            apply=apply,
            restore=restore,
            remote=lambda: self.notifications.delete(self.user_id, notification_id),
        )

    def close(self):
        self._unsubscribe_bus()
        self.list.close()
