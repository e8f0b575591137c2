"""
Domain models - Core business entities
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from enum import Enum


class FollowStatus(str, Enum):
    """Follow edge status"""
    PENDING = "pending"
    ACCEPTED = "accepted"


class RelationshipType(str, Enum):
    """Relationship between the viewer and another user"""
    FOLLOWING = "following"  # Viewer follows target
    FOLLOWED_BY = "followed_by"  # Target follows viewer
    MUTUAL = "mutual"
    PENDING = "pending"  # Viewer sent a follow request
    REQUESTED = "requested"  # Target sent a follow request
    NONE = "none"


class PostType(str, Enum):
    COLLECTION_ADD = "collection_add"
    WISHLIST_ADD = "wishlist_add"


class CollectionType(str, Enum):
    COLLECTION = "collection"
    WISHLIST = "wishlist"


class NotificationType(str, Enum):
    NEW_FOLLOWER = "new_follower"
    POST_LIKE = "post_like"
    POST_COMMENT = "post_comment"


@dataclass
class UserProfile:
    """Public profile of a user"""
    uid: str
    username: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    photo_url: Optional[str] = None
    bio: Optional[str] = None
    is_private: bool = False


@dataclass
class FollowEdge:
    """Directed follow relationship"""
    id: str
    follower_id: str
    following_id: str
    status: FollowStatus
    created_at: datetime

    def is_pending(self) -> bool:
        return self.status == FollowStatus.PENDING

    def is_accepted(self) -> bool:
        return self.status == FollowStatus.ACCEPTED


@dataclass
class FollowCheck:
    """Answer to "does A follow B", used for follow-button state"""
    is_following: bool
    status: Optional[FollowStatus] = None
    edge_id: Optional[str] = None


@dataclass
class FollowStats:
    user_id: str
    followers_count: int
    following_count: int
    pending_requests_count: int = 0


@dataclass
class PendingRequest:
    edge: FollowEdge
    user: UserProfile


@dataclass
class Relationship:
    user_id: str
    target_user_id: str
    relationship: RelationshipType
    is_following: bool
    is_followed_by: bool
    is_mutual: bool
    is_pending: bool
    is_requested: bool


@dataclass
class Post:
    """Activity post created when a record is added to a collection or wishlist"""
    id: str
    user_id: str
    vinyl_id: str
    type: PostType
    created_at: datetime
    content: Optional[str] = None
    likes_count: int = 0
    comments_count: int = 0
    is_liked: bool = False
    updated_at: Optional[datetime] = None

    @property
    def sort_key(self) -> datetime:
        return self.created_at


@dataclass
class Comment:
    id: str
    post_id: str
    user_id: str
    content: str
    created_at: datetime
    updated_at: Optional[datetime] = None

    @property
    def sort_key(self) -> datetime:
        return self.created_at


@dataclass
class CollectionEntry:
    """A record in a user's collection or wishlist"""
    id: str
    user_id: str
    vinyl_id: str
    type: CollectionType
    added_at: datetime
    notes: Optional[str] = None
    updated_at: Optional[datetime] = None

    @property
    def sort_key(self) -> datetime:
        return self.added_at


@dataclass
class Notification:
    id: str
    user_id: str
    type: NotificationType
    actor_id: str
    created_at: datetime
    post_id: Optional[str] = None
    comment_id: Optional[str] = None
    read: bool = False
    updated_at: Optional[datetime] = None

    @property
    def sort_key(self) -> datetime:
        return self.created_at


@dataclass
class CollectionStats:
    user_id: str
    collection_count: int
    wishlist_count: int
