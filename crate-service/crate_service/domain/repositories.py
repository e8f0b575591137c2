"""
Repository interfaces - Define contracts for data access

Every ``find_page`` returns rows ordered by their sort key, newest first,
restricted to ``sort_key < before`` when ``before`` is given.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, List, Sequence, Set

from .models import (
    UserProfile,
    FollowEdge,
    FollowStatus,
    Post,
    PostType,
    Comment,
    CollectionEntry,
    CollectionType,
    Notification,
    NotificationType,
)


class IUserRepository(ABC):
    """User directory interface"""

    @abstractmethod
    async def find_by_id(self, uid: str) -> Optional[UserProfile]:
        """Find user by ID"""
        pass

    @abstractmethod
    async def find_many(self, uids: Sequence[str]) -> List[UserProfile]:
        """Find users by IDs, preserving the order of ``uids``"""
        pass


class IFollowRepository(ABC):
    """Follow edge repository interface"""

    @abstractmethod
    async def find(self, follower_id: str, following_id: str) -> Optional[FollowEdge]:
        """Find the edge for a (follower, following) pair"""
        pass

    @abstractmethod
    async def create(
        self, follower_id: str, following_id: str, status: FollowStatus
    ) -> Optional[FollowEdge]:
        """Insert an edge; returns None if the pair already exists"""
        pass

    @abstractmethod
    async def update_status(self, edge_id: str, status: FollowStatus) -> bool:
        """Change the status of an edge"""
        pass

    @abstractmethod
    async def delete(self, edge_id: str) -> bool:
        """Delete an edge"""
        pass

    @abstractmethod
    async def list_followers(
        self, user_id: str, status: FollowStatus = FollowStatus.ACCEPTED
    ) -> List[FollowEdge]:
        """Edges pointing at user_id, newest first"""
        pass

    @abstractmethod
    async def list_following(
        self, user_id: str, status: FollowStatus = FollowStatus.ACCEPTED
    ) -> List[FollowEdge]:
        """Edges leaving user_id, newest first"""
        pass

    @abstractmethod
    async def count_followers(
        self, user_id: str, status: FollowStatus = FollowStatus.ACCEPTED
    ) -> int:
        pass

    @abstractmethod
    async def count_following(
        self, user_id: str, status: FollowStatus = FollowStatus.ACCEPTED
    ) -> int:
        pass


class IPostRepository(ABC):
    """Post, like and counter repository interface"""

    @abstractmethod
    async def create(
        self, user_id: str, vinyl_id: str, post_type: PostType, content: Optional[str] = None
    ) -> Post:
        pass

    @abstractmethod
    async def find_by_id(self, post_id: str) -> Optional[Post]:
        pass

    @abstractmethod
    async def find_page(
        self, author_ids: Sequence[str], before: Optional[datetime], limit: int
    ) -> List[Post]:
        """Posts written by any of author_ids"""
        pass

    @abstractmethod
    async def delete(self, post_id: str) -> bool:
        """Delete a post together with its likes and comments"""
        pass

    @abstractmethod
    async def add_like(self, user_id: str, post_id: str) -> bool:
        """Record a like; False if it already existed"""
        pass

    @abstractmethod
    async def remove_like(self, user_id: str, post_id: str) -> bool:
        """Remove a like; False if there was none"""
        pass

    @abstractmethod
    async def liked_post_ids(self, user_id: str, post_ids: Sequence[str]) -> Set[str]:
        """Subset of post_ids liked by user_id"""
        pass

    @abstractmethod
    async def increment_counter(self, post_id: str, field: str, delta: int) -> int:
        """Atomically add delta to a counter, never going below zero"""
        pass


class ICommentRepository(ABC):
    """Comment repository interface"""

    @abstractmethod
    async def create(self, post_id: str, user_id: str, content: str) -> Comment:
        pass

    @abstractmethod
    async def find_by_id(self, comment_id: str) -> Optional[Comment]:
        pass

    @abstractmethod
    async def find_page(
        self, post_id: str, before: Optional[datetime], limit: int
    ) -> List[Comment]:
        pass

    @abstractmethod
    async def delete(self, comment_id: str) -> bool:
        pass


class ICollectionRepository(ABC):
    """Collection / wishlist repository interface"""

    @abstractmethod
    async def create(
        self, user_id: str, vinyl_id: str, entry_type: CollectionType, notes: Optional[str] = None
    ) -> CollectionEntry:
        pass

    @abstractmethod
    async def find_by_id(self, entry_id: str) -> Optional[CollectionEntry]:
        pass

    @abstractmethod
    async def find(
        self, user_id: str, vinyl_id: str, entry_type: CollectionType
    ) -> Optional[CollectionEntry]:
        pass

    @abstractmethod
    async def find_page(
        self,
        user_id: str,
        entry_type: CollectionType,
        before: Optional[datetime],
        limit: int,
    ) -> List[CollectionEntry]:
        pass

    @abstractmethod
    async def delete(self, entry_id: str) -> bool:
        pass

    @abstractmethod
    async def count(self, user_id: str, entry_type: CollectionType) -> int:
        pass


class INotificationRepository(ABC):
    """Notification repository interface"""

    @abstractmethod
    async def create(
        self,
        user_id: str,
        notification_type: NotificationType,
        actor_id: str,
        post_id: Optional[str] = None,
        comment_id: Optional[str] = None,
    ) -> Optional[Notification]:
        """Insert a notification; None if an identical one already exists"""
        pass

    @abstractmethod
    async def find_by_id(self, notification_id: str) -> Optional[Notification]:
        pass

    @abstractmethod
    async def find_page(
        self, user_id: str, before: Optional[datetime], limit: int
    ) -> List[Notification]:
        pass

    @abstractmethod
    async def count_unread(self, user_id: str) -> int:
        pass

    @abstractmethod
    async def mark_read(self, notification_id: str) -> bool:
        pass

    @abstractmethod
    async def mark_all_read(self, user_id: str) -> int:
        """Returns the number of notifications flipped to read"""
        pass

    @abstractmethod
    async def delete(self, notification_id: str) -> bool:
        pass
