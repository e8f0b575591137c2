"""
Application services for posts, comments, collections and notifications
"""
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple
import asyncio
import logging

from .domain.models import (
    CollectionEntry,
    CollectionStats,
    CollectionType,
    Comment,
    Notification,
    NotificationType,
    Post,
    PostType,
)
from .domain.repositories import (
    ICollectionRepository,
    ICommentRepository,
    INotificationRepository,
    IPostRepository,
    IUserRepository,
)
from .exceptions import CrateError, ForbiddenError, NotFoundError, UserNotFoundError, ValidationError
from .pagination import Cursor, CursorPaginator, PageResult
from .realtime import ChangeEvent, ChangePublisher
from .relationships import RelationshipStore

logger = logging.getLogger(__name__)

POSTS_TABLE = "posts"
COMMENTS_TABLE = "comments"
COLLECTION_TABLE = "user_vinyls"
NOTIFICATIONS_TABLE = "notifications"


async def fetch_page(
    paginator: CursorPaginator, predicate, cursor: Optional[Cursor], limit: int
) -> PageResult:
    """First page when there is no cursor, the page after it otherwise"""
    if cursor is None:
        return await paginator.fetch_initial(predicate, limit)
    return await paginator.fetch_more(predicate, cursor, limit)


class NotificationService:
    """Creates and manages a user's notifications"""

    def __init__(self, notifications: INotificationRepository, changes: ChangePublisher):
        self.notifications = notifications
        self.changes = changes
        self.paginator = CursorPaginator(self._query, "notifications")

    async def _query(self, user_id: str, before: Optional[datetime], limit: int) -> List[Notification]:
        return await self.notifications.find_page(user_id, before, limit)

    async def notify(
        self,
        user_id: str,
        notification_type: NotificationType,
        actor_id: str,
        post_id: Optional[str] = None,
        comment_id: Optional[str] = None,
    ) -> Optional[Notification]:
        """
        Create a notification for user_id

        Returns None when the actor is the recipient or when the same
        notification already exists.
        """
        if user_id == actor_id:
            return None

        notification = await self.notifications.create(
            user_id, notification_type, actor_id, post_id=post_id, comment_id=comment_id
        )
        if notification is None:
            logger.debug(f"Duplicate {notification_type.value} notification for {user_id} skipped")
            return None

        logger.info(f"Notification {notification_type.value} for {user_id} from {actor_id}")
        await self.changes.publish_change(ChangeEvent.insert(NOTIFICATIONS_TABLE, notification))
        return notification

    async def list_notifications(
        self, user_id: str, cursor: Optional[Cursor] = None, limit: int = 20
    ) -> PageResult[Notification]:
        return await fetch_page(self.paginator, user_id, cursor, limit)

    async def unread_count(self, user_id: str) -> int:
        return await self.notifications.count_unread(user_id)

    async def _owned(self, user_id: str, notification_id: str) -> Notification:
        notification = await self.notifications.find_by_id(notification_id)
        if notification is None:
            raise NotFoundError("Notification not found")
        if notification.user_id != user_id:
            raise ForbiddenError("This notification belongs to another user")
        return notification

    async def mark_read(self, user_id: str, notification_id: str) -> None:
        notification = await self._owned(user_id, notification_id)
        if notification.read:
            return
        if await self.notifications.mark_read(notification_id):
            notification.read = True
            await self.changes.publish_change(ChangeEvent.update(NOTIFICATIONS_TABLE, notification))

    async def mark_all_read(self, user_id: str) -> int:
        updated = await self.notifications.mark_all_read(user_id)
        logger.info(f"Marked {updated} notifications read for {user_id}")
        return updated

    async def delete(self, user_id: str, notification_id: str) -> None:
        notification = await self._owned(user_id, notification_id)
        if await self.notifications.delete(notification_id):
            await self.changes.publish_change(ChangeEvent.delete(NOTIFICATIONS_TABLE, notification))


class PostService:
    """Posts and likes"""

    def __init__(
        self,
        posts: IPostRepository,
        changes: ChangePublisher,
        notifications: Optional[NotificationService] = None,
    ):
        self.posts = posts
        self.changes = changes
        self.notifications = notifications

    async def create_post(
        self, user_id: str, vinyl_id: str, post_type: PostType, content: Optional[str] = None
    ) -> Post:
        post = await self.posts.create(user_id, vinyl_id, post_type, content)
        logger.info(f"Post {post.id} ({post_type.value}) created by {user_id}")
        await self.changes.publish_change(ChangeEvent.insert(POSTS_TABLE, post))
        return post

    async def get_post(self, post_id: str, viewer_id: Optional[str] = None) -> Post:
        post = await self.posts.find_by_id(post_id)
        if post is None:
            raise NotFoundError("Post not found")
        if viewer_id is not None:
            post.is_liked = post_id in await self.posts.liked_post_ids(viewer_id, [post_id])
        return post

    async def like(self, user_id: str, post_id: str) -> Post:
        """
        Like a post

        Liking twice keeps a single like. The author is notified unless they
        liked their own post.
        """
        post = await self.get_post(post_id)
        if await self.posts.add_like(user_id, post_id):
            post = await self.get_post(post_id)
            await self.changes.publish_change(ChangeEvent.update(POSTS_TABLE, post))
            if self.notifications is not None:
                await self.notifications.notify(
                    post.user_id, NotificationType.POST_LIKE, user_id, post_id=post_id
                )
        post.is_liked = True
        return post

    async def unlike(self, user_id: str, post_id: str) -> Post:
        """Remove a like; unliking a post that is not liked does nothing"""
        post = await self.get_post(post_id)
        if await self.posts.remove_like(user_id, post_id):
            post = await self.get_post(post_id)
            await self.changes.publish_change(ChangeEvent.update(POSTS_TABLE, post))
        post.is_liked = False
        return post

    async def delete_post(self, user_id: str, post_id: str) -> None:
        post = await self.get_post(post_id)
        if post.user_id != user_id:
            raise ForbiddenError("You can only delete your own posts")
        if await self.posts.delete(post_id):
            logger.info(f"Post {post_id} deleted by {user_id}")
            await self.changes.publish_change(ChangeEvent.delete(POSTS_TABLE, post))


@dataclass
class FeedScope:
    viewer_id: str
    author_ids: List[str]


class FeedService:
    """Home and profile feeds"""

    def __init__(
        self,
        posts: IPostRepository,
        users: IUserRepository,
        relationships: RelationshipStore,
    ):
        self.posts = posts
        self.users = users
        self.relationships = relationships
        self.paginator = CursorPaginator(self._query, "posts")

    async def _query(self, scope: FeedScope, before: Optional[datetime], limit: int) -> List[Post]:
        posts = await self.posts.find_page(scope.author_ids, before, limit)
        if posts:
            liked = await self.posts.liked_post_ids(scope.viewer_id, [post.id for post in posts])
            for post in posts:
                post.is_liked = post.id in liked
        return posts

    async def home_authors(self, viewer_id: str) -> List[str]:
        """Accepted followings plus the viewer"""
        return [viewer_id] + await self.relationships.following_ids(viewer_id)

    async def home_feed(
        self, viewer_id: str, cursor: Optional[Cursor] = None, limit: int = 15
    ) -> PageResult[Post]:
        scope = FeedScope(viewer_id, await self.home_authors(viewer_id))
        return await fetch_page(self.paginator, scope, cursor, limit)

    async def profile_feed(
        self, viewer_id: str, owner_id: str, cursor: Optional[Cursor] = None, limit: int = 15
    ) -> PageResult[Post]:
        """
        Posts of one user

        Raises:
            UserNotFoundError: owner does not exist
            ForbiddenError: owner is private and the viewer is not an accepted follower
        """
        owner = await self.users.find_by_id(owner_id)
        if owner is None:
            raise UserNotFoundError(f"User {owner_id} not found")
        if not await self.relationships.can_view(viewer_id, owner):
            raise ForbiddenError("This account is private")
        return await fetch_page(self.paginator, FeedScope(viewer_id, [owner_id]), cursor, limit)


class CommentService:
    def __init__(
        self,
        comments: ICommentRepository,
        posts: IPostRepository,
        changes: ChangePublisher,
        notifications: Optional[NotificationService] = None,
    ):
        self.comments = comments
        self.posts = posts
        self.changes = changes
        self.notifications = notifications
        self.paginator = CursorPaginator(self._query, "comments")

    async def _query(self, post_id: str, before: Optional[datetime], limit: int) -> List[Comment]:
        return await self.comments.find_page(post_id, before, limit)

    async def _get_post(self, post_id: str) -> Post:
        post = await self.posts.find_by_id(post_id)
        if post is None:
            raise NotFoundError("Post not found")
        return post

    async def add_comment(self, user_id: str, post_id: str, content: str) -> Comment:
        """
        Comment on a post

        Raises:
            ValidationError: content is empty once trimmed
            NotFoundError: post does not exist
        """
        content = (content or "").strip()
        if not content:
            raise ValidationError("Comment cannot be empty")

        post = await self._get_post(post_id)
        comment = await self.comments.create(post_id, user_id, content)
        post.comments_count = await self.posts.increment_counter(post_id, "comments_count", 1)

        logger.info(f"Comment {comment.id} on post {post_id} by {user_id}")
        await self.changes.publish_change(ChangeEvent.insert(COMMENTS_TABLE, comment))
        await self.changes.publish_change(ChangeEvent.update(POSTS_TABLE, post))
        if self.notifications is not None:
            await self.notifications.notify(
                post.user_id,
                NotificationType.POST_COMMENT,
                user_id,
                post_id=post_id,
                comment_id=comment.id,
            )
        return comment

    async def list_comments(
        self, post_id: str, cursor: Optional[Cursor] = None, limit: int = 20
    ) -> PageResult[Comment]:
        return await fetch_page(self.paginator, post_id, cursor, limit)

    async def delete_comment(self, user_id: str, comment_id: str) -> None:
        """The comment author and the post author may delete a comment"""
        comment = await self.comments.find_by_id(comment_id)
        if comment is None:
            raise NotFoundError("Comment not found")

        post = await self.posts.find_by_id(comment.post_id)
        if comment.user_id != user_id and (post is None or post.user_id != user_id):
            raise ForbiddenError("You cannot delete this comment")

        if not await self.comments.delete(comment_id):
            return
        logger.info(f"Comment {comment_id} deleted by {user_id}")
        await self.changes.publish_change(ChangeEvent.delete(COMMENTS_TABLE, comment))
        if post is not None:
            post.comments_count = await self.posts.increment_counter(post.id, "comments_count", -1)
            await self.changes.publish_change(ChangeEvent.update(POSTS_TABLE, post))


class CollectionService:
    """Collection and wishlist entries"""

    def __init__(
        self,
        entries: ICollectionRepository,
        post_service: PostService,
        changes: ChangePublisher,
    ):
        self.entries = entries
        self.post_service = post_service
        self.changes = changes
        self.paginator = CursorPaginator(self._query, "collection entries")

    async def _query(
        self, scope: Tuple[str, CollectionType], before: Optional[datetime], limit: int
    ) -> List[CollectionEntry]:
        user_id, entry_type = scope
        return await self.entries.find_page(user_id, entry_type, before, limit)

    async def list_entries(
        self,
        user_id: str,
        entry_type: CollectionType,
        cursor: Optional[Cursor] = None,
        limit: int = 20,
    ) -> PageResult[CollectionEntry]:
        return await fetch_page(self.paginator, (user_id, entry_type), cursor, limit)

    async def count_entries(self, user_id: str, entry_type: CollectionType) -> int:
        return await self.entries.count(user_id, entry_type)

    async def stats(self, user_id: str) -> CollectionStats:
        """Collection and wishlist sizes"""
        collection_count, wishlist_count = await asyncio.gather(
            self.entries.count(user_id, CollectionType.COLLECTION),
            self.entries.count(user_id, CollectionType.WISHLIST),
        )
        return CollectionStats(
            user_id=user_id,
            collection_count=collection_count,
            wishlist_count=wishlist_count,
        )

    async def has_vinyl(self, user_id: str, vinyl_id: str, entry_type: CollectionType) -> bool:
        return await self.entries.find(user_id, vinyl_id, entry_type) is not None

    async def add(
        self,
        user_id: str,
        vinyl_id: str,
        entry_type: CollectionType,
        notes: Optional[str] = None,
    ) -> CollectionEntry:
        """
        Add a vinyl to the collection or wishlist and post about it

        Adding a vinyl that is already there returns the existing entry.
        """
        existing = await self.entries.find(user_id, vinyl_id, entry_type)
        if existing:
            return existing

        entry = await self.entries.create(user_id, vinyl_id, entry_type, notes)
        logger.info(f"{vinyl_id} added to {entry_type.value} of {user_id}")
        await self.changes.publish_change(ChangeEvent.insert(COLLECTION_TABLE, entry))

        post_type = (
            PostType.COLLECTION_ADD if entry_type == CollectionType.COLLECTION else PostType.WISHLIST_ADD
        )
        try:
            await self.post_service.create_post(user_id, vinyl_id, post_type)
        except CrateError as e:
            # The entry stands even if the activity post could not be written
            logger.error(f"Failed to create post for {entry.id}: {e}")
        return entry

    async def remove(self, user_id: str, vinyl_id: str, entry_type: CollectionType) -> None:
        """Remove a vinyl; removing one that is not there does nothing"""
        entry = await self.entries.find(user_id, vinyl_id, entry_type)
        if entry is None:
            return
        if await self.entries.delete(entry.id):
            logger.info(f"{vinyl_id} removed from {entry_type.value} of {user_id}")
            await self.changes.publish_change(ChangeEvent.delete(COLLECTION_TABLE, entry))

    async def move_to_collection(self, user_id: str, vinyl_id: str) -> CollectionEntry:
        """
        Move a vinyl from the wishlist to the collection

        Raises:
            ValidationError: the vinyl is not in the wishlist, or already collected
        """
        if await self.entries.find(user_id, vinyl_id, CollectionType.WISHLIST) is None:
            raise ValidationError("This vinyl is not in your wishlist")
        if await self.entries.find(user_id, vinyl_id, CollectionType.COLLECTION):
            raise ValidationError("This vinyl is already in your collection")

        await self.remove(user_id, vinyl_id, CollectionType.WISHLIST)
        return await self.add(user_id, vinyl_id, CollectionType.COLLECTION)
