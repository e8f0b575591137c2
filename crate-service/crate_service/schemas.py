"""
Pydantic schemas for request/response validation
"""
from pydantic import BaseModel, Field, field_validator
from typing import Any, Dict, List, Literal, Optional
from datetime import datetime

from .domain.models import (
    CollectionType,
    FollowStatus,
    NotificationType,
    PostType,
    RelationshipType,
)


# Change stream
class ChangeMessage(BaseModel):
    """Row change as it travels on the change stream"""

    type: Literal["INSERT", "UPDATE", "DELETE"]
    table: str = Field(..., min_length=1)
    record: Dict[str, Any]
    timestamp: datetime


# Request Schemas
class FollowRequestAction(BaseModel):
    """Accept or reject follow request"""

    action: str = Field(..., description="Action: 'accept' or 'reject'")

    @field_validator("action")
    @classmethod
    def validate_action(cls, v):
        if v not in ["accept", "reject"]:
            raise ValueError("Action must be 'accept' or 'reject'")
        return v


class CommentCreate(BaseModel):
    """Request to comment on a post"""

    content: str = Field(..., max_length=2000)


class CollectionAdd(BaseModel):
    """Add a vinyl to the collection or wishlist"""

    vinyl_id: str = Field(..., min_length=1)
    type: CollectionType = CollectionType.COLLECTION
    notes: Optional[str] = Field(None, max_length=1000)


# Response Schemas
class MessageResponse(BaseModel):
    """Generic message response"""

    message: str


class ErrorResponse(BaseModel):
    code: str
    message: str


class UserProfileResponse(BaseModel):
    uid: str
    username: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    photo_url: Optional[str] = None
    bio: Optional[str] = None
    is_private: bool = False

    class Config:
        from_attributes = True


class FollowEdgeResponse(BaseModel):
    """A follow edge"""

    id: str
    follower_id: str
    following_id: str
    status: FollowStatus
    created_at: datetime

    class Config:
        from_attributes = True


class FollowCheckResponse(BaseModel):
    is_following: bool
    status: Optional[FollowStatus] = None
    edge_id: Optional[str] = None

    class Config:
        from_attributes = True


class UsersResponse(BaseModel):
    """Followers or following list"""

    users: List[UserProfileResponse]
    count: int


class PendingRequestResponse(BaseModel):
    edge: FollowEdgeResponse
    user: UserProfileResponse

    class Config:
        from_attributes = True


class PendingRequestsResponse(BaseModel):
    requests: List[PendingRequestResponse]
    count: int


class RelationshipResponse(BaseModel):
    """Response with relationship info between two users"""

    user_id: str
    target_user_id: str
    relationship: RelationshipType
    is_following: bool
    is_followed_by: bool
    is_mutual: bool
    is_pending: bool
    is_requested: bool

    class Config:
        from_attributes = True


class FollowStatsResponse(BaseModel):
    user_id: str
    followers_count: int
    following_count: int
    pending_requests_count: int = 0

    class Config:
        from_attributes = True


class PostResponse(BaseModel):
    id: str
    user_id: str
    vinyl_id: str
    type: PostType
    content: Optional[str] = None
    likes_count: int = 0
    comments_count: int = 0
    is_liked: bool = False
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class LikeResponse(BaseModel):
    post_id: str
    is_liked: bool
    likes_count: int


class CommentResponse(BaseModel):
    id: str
    post_id: str
    user_id: str
    content: str
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CollectionEntryResponse(BaseModel):
    id: str
    user_id: str
    vinyl_id: str
    type: CollectionType
    notes: Optional[str] = None
    added_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CollectionCountResponse(BaseModel):
    count: int


class CollectionStatsResponse(BaseModel):
    user_id: str
    collection_count: int
    wishlist_count: int

    class Config:
        from_attributes = True


class VinylCheckResponse(BaseModel):
    vinyl_id: str
    type: CollectionType
    has: bool


class NotificationResponse(BaseModel):
    id: str
    user_id: str
    type: NotificationType
    actor_id: str
    post_id: Optional[str] = None
    comment_id: Optional[str] = None
    read: bool = False
    created_at: datetime

    class Config:
        from_attributes = True


class PageResponse(BaseModel):
    """Cursor page; pass ``next_cursor`` back as ``cursor`` for the next one"""

    next_cursor: Optional[str] = None
    has_more: bool


class FeedResponse(PageResponse):
    posts: List[PostResponse]


class CommentsResponse(PageResponse):
    comments: List[CommentResponse]


class CollectionResponse(PageResponse):
    entries: List[CollectionEntryResponse]


class NotificationsResponse(PageResponse):
    notifications: List[NotificationResponse]


class UnreadCountResponse(BaseModel):
    unread_count: int


class MarkAllReadResponse(BaseModel):
    updated: int


# Internal Models
class User(BaseModel):
    """User model from Auth Service"""

    id: str
    username: str
    is_active: bool = True
