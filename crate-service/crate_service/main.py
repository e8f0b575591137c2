"""
FastAPI application for Crate Service
"""
from fastapi import FastAPI, Depends, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from typing import Optional
import logging

from .config import settings
from .infrastructure.database.connection import db
from .cache import cache
from .kafka_producer import kafka_producer
from .dependencies import (
    get_current_user,
    get_collection_service,
    get_comment_service,
    get_feed_service,
    get_notification_service,
    get_post_service,
    get_relationship_store,
)
from .domain.models import CollectionType
from .exceptions import CrateError
from .pagination import Cursor, PageResult
from .relationships import RelationshipStore
from .services import (
    CollectionService,
    CommentService,
    FeedService,
    NotificationService,
    PostService,
)
from .schemas import (
    User,
    CollectionAdd,
    CollectionCountResponse,
    CollectionEntryResponse,
    CollectionResponse,
    CollectionStatsResponse,
    CommentCreate,
    CommentResponse,
    CommentsResponse,
    ErrorResponse,
    FeedResponse,
    FollowCheckResponse,
    FollowEdgeResponse,
    FollowRequestAction,
    FollowStatsResponse,
    LikeResponse,
    MarkAllReadResponse,
    MessageResponse,
    NotificationResponse,
    NotificationsResponse,
    PendingRequestResponse,
    PendingRequestsResponse,
    PostResponse,
    RelationshipResponse,
    UnreadCountResponse,
    UserProfileResponse,
    UsersResponse,
    VinylCheckResponse,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.DEBUG else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    # Startup
    logger.info("Starting Crate Service...")

    await db.connect()
    logger.info("Database connected")

    await cache.connect()
    logger.info("Redis cache initialized")

    await kafka_producer.start()
    logger.info("Kafka producer started")

    logger.info(f"Crate Service started successfully on port {settings.PORT}")

    yield

    # Shutdown
    logger.info("Shutting down Crate Service...")
    await kafka_producer.stop()
    await cache.disconnect()
    await db.disconnect()
    logger.info("Crate Service shut down successfully")


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Vinyl collector social network - follows, feeds, collections and notifications",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CrateError)
async def crate_exception_handler(request: Request, exc: CrateError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(code=exc.code, message=exc.message).model_dump(),
    )


def parse_cursor(cursor: Optional[str]) -> Optional[Cursor]:
    return Cursor.decode(cursor) if cursor else None


def page_limit(default: int):
    return Query(default, ge=1, le=settings.MAX_PAGE_SIZE, description="Items per page")


def page_fields(page: PageResult) -> dict:
    return {"next_cursor": page.next_cursor, "has_more": page.has_more}


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "service": settings.APP_NAME}


# Follow endpoints
@app.post(
    "/api/v1/follows/{user_id}",
    response_model=FollowEdgeResponse,
    tags=["Follow"],
    summary="Follow a user",
)
async def follow_user(
    user_id: str,
    current_user: User = Depends(get_current_user),
    store: RelationshipStore = Depends(get_relationship_store),
):
    """
    Follow a user

    - Private account: the edge is created as a pending request
    - Public account: the edge is accepted immediately
    - Following someone twice returns the existing edge
    """
    edge = await store.follow(current_user.id, user_id)
    return FollowEdgeResponse.model_validate(edge)


@app.delete(
    "/api/v1/follows/{user_id}",
    response_model=MessageResponse,
    tags=["Follow"],
    summary="Unfollow a user",
)
async def unfollow_user(
    user_id: str,
    current_user: User = Depends(get_current_user),
    store: RelationshipStore = Depends(get_relationship_store),
):
    """Works for accepted follows and pending requests; no edge is not an error"""
    await store.unfollow(current_user.id, user_id)
    return MessageResponse(message="Unfollowed")


@app.get(
    "/api/v1/follows/{user_id}",
    response_model=FollowCheckResponse,
    tags=["Follow"],
    summary="Check whether you follow a user",
)
async def check_following(
    user_id: str,
    current_user: User = Depends(get_current_user),
    store: RelationshipStore = Depends(get_relationship_store),
):
    check = await store.is_following(current_user.id, user_id)
    return FollowCheckResponse.model_validate(check)


@app.get(
    "/api/v1/users/{user_id}/followers",
    response_model=UsersResponse,
    tags=["Followers"],
    summary="Get user's followers",
)
async def get_followers(
    user_id: str,
    current_user: User = Depends(get_current_user),
    store: RelationshipStore = Depends(get_relationship_store),
):
    users = await store.list_followers(user_id)
    return UsersResponse(
        users=[UserProfileResponse.model_validate(u) for u in users],
        count=len(users),
    )


@app.get(
    "/api/v1/users/{user_id}/following",
    response_model=UsersResponse,
    tags=["Following"],
    summary="Get users that user is following",
)
async def get_following(
    user_id: str,
    current_user: User = Depends(get_current_user),
    store: RelationshipStore = Depends(get_relationship_store),
):
    users = await store.list_following(user_id)
    return UsersResponse(
        users=[UserProfileResponse.model_validate(u) for u in users],
        count=len(users),
    )


@app.get(
    "/api/v1/users/{user_id}/relationship",
    response_model=RelationshipResponse,
    tags=["Relationship"],
    summary="Get relationship with user",
)
async def get_relationship(
    user_id: str,
    current_user: User = Depends(get_current_user),
    store: RelationshipStore = Depends(get_relationship_store),
):
    """
    Relationship between the current user and the target user:
    following, followed_by, mutual, pending, requested or none
    """
    relationship = await store.get_relationship(current_user.id, user_id)
    return RelationshipResponse.model_validate(relationship)


@app.get(
    "/api/v1/users/{user_id}/stats",
    response_model=FollowStatsResponse,
    tags=["Stats"],
    summary="Get follower and following counts",
)
async def get_user_stats(
    user_id: str,
    current_user: User = Depends(get_current_user),
    store: RelationshipStore = Depends(get_relationship_store),
):
    stats = await store.stats(user_id)
    return FollowStatsResponse.model_validate(stats)


# Follow requests endpoints
@app.get(
    "/api/v1/follow-requests",
    response_model=PendingRequestsResponse,
    tags=["Follow Requests"],
    summary="Get pending follow requests",
)
async def get_pending_requests(
    current_user: User = Depends(get_current_user),
    store: RelationshipStore = Depends(get_relationship_store),
):
    requests = await store.list_pending_requests(current_user.id)
    return PendingRequestsResponse(
        requests=[PendingRequestResponse.model_validate(r) for r in requests],
        count=len(requests),
    )


@app.post(
    "/api/v1/follow-requests/{follower_id}",
    response_model=MessageResponse,
    tags=["Follow Requests"],
    summary="Accept or reject follow request",
)
async def handle_follow_request(
    follower_id: str,
    action: FollowRequestAction,
    current_user: User = Depends(get_current_user),
    store: RelationshipStore = Depends(get_relationship_store),
):
    """
    Accept or reject a follow request

    - action: 'accept' or 'reject'
    """
    if action.action == "accept":
        await store.accept_request(follower_id, current_user.id)
        return MessageResponse(message="Follow request accepted")
    await store.reject_request(follower_id, current_user.id)
    return MessageResponse(message="Follow request rejected")


# Feed endpoints
@app.get(
    "/api/v1/feed",
    response_model=FeedResponse,
    tags=["Feed"],
    summary="Get home feed",
)
async def get_feed(
    cursor: Optional[str] = Query(None, description="next_cursor of the previous page"),
    limit: int = page_limit(settings.FEED_INITIAL_LOAD_COUNT),
    current_user: User = Depends(get_current_user),
    service: FeedService = Depends(get_feed_service),
):
    """Posts of the people you follow and your own, newest first"""
    page = await service.home_feed(current_user.id, parse_cursor(cursor), limit)
    return FeedResponse(
        posts=[PostResponse.model_validate(p) for p in page.items],
        **page_fields(page),
    )


@app.get(
    "/api/v1/users/{user_id}/posts",
    response_model=FeedResponse,
    tags=["Feed"],
    summary="Get a user's posts",
)
async def get_user_posts(
    user_id: str,
    cursor: Optional[str] = Query(None),
    limit: int = page_limit(settings.FEED_INITIAL_LOAD_COUNT),
    current_user: User = Depends(get_current_user),
    service: FeedService = Depends(get_feed_service),
):
    page = await service.profile_feed(current_user.id, user_id, parse_cursor(cursor), limit)
    return FeedResponse(
        posts=[PostResponse.model_validate(p) for p in page.items],
        **page_fields(page),
    )


# Post endpoints
@app.get("/api/v1/posts/{post_id}", response_model=PostResponse, tags=["Posts"])
async def get_post(
    post_id: str,
    current_user: User = Depends(get_current_user),
    service: PostService = Depends(get_post_service),
):
    return PostResponse.model_validate(await service.get_post(post_id, current_user.id))


@app.delete("/api/v1/posts/{post_id}", response_model=MessageResponse, tags=["Posts"])
async def delete_post(
    post_id: str,
    current_user: User = Depends(get_current_user),
    service: PostService = Depends(get_post_service),
):
    await service.delete_post(current_user.id, post_id)
    return MessageResponse(message="Post deleted")


@app.post("/api/v1/posts/{post_id}/like", response_model=LikeResponse, tags=["Likes"])
async def like_post(
    post_id: str,
    current_user: User = Depends(get_current_user),
    service: PostService = Depends(get_post_service),
):
    post = await service.like(current_user.id, post_id)
    return LikeResponse(post_id=post.id, is_liked=post.is_liked, likes_count=post.likes_count)


@app.delete("/api/v1/posts/{post_id}/like", response_model=LikeResponse, tags=["Likes"])
async def unlike_post(
    post_id: str,
    current_user: User = Depends(get_current_user),
    service: PostService = Depends(get_post_service),
):
    post = await service.unlike(current_user.id, post_id)
    return LikeResponse(post_id=post.id, is_liked=post.is_liked, likes_count=post.likes_count)


# Comment endpoints
@app.get("/api/v1/posts/{post_id}/comments", response_model=CommentsResponse, tags=["Comments"])
async def get_comments(
    post_id: str,
    cursor: Optional[str] = Query(None),
    limit: int = page_limit(settings.COMMENTS_PAGE_SIZE),
    current_user: User = Depends(get_current_user),
    service: CommentService = Depends(get_comment_service),
):
    page = await service.list_comments(post_id, parse_cursor(cursor), limit)
    return CommentsResponse(
        comments=[CommentResponse.model_validate(c) for c in page.items],
        **page_fields(page),
    )


@app.post(
    "/api/v1/posts/{post_id}/comments",
    response_model=CommentResponse,
    status_code=201,
    tags=["Comments"],
)
async def add_comment(
    post_id: str,
    comment: CommentCreate,
    current_user: User = Depends(get_current_user),
    service: CommentService = Depends(get_comment_service),
):
    created = await service.add_comment(current_user.id, post_id, comment.content)
    return CommentResponse.model_validate(created)


@app.delete("/api/v1/comments/{comment_id}", response_model=MessageResponse, tags=["Comments"])
async def delete_comment(
    comment_id: str,
    current_user: User = Depends(get_current_user),
    service: CommentService = Depends(get_comment_service),
):
    await service.delete_comment(current_user.id, comment_id)
    return MessageResponse(message="Comment deleted")


# Collection endpoints
@app.get("/api/v1/users/{user_id}/collection", response_model=CollectionResponse, tags=["Collection"])
async def get_collection(
    user_id: str,
    type: CollectionType = Query(CollectionType.COLLECTION),
    cursor: Optional[str] = Query(None),
    limit: int = page_limit(settings.COLLECTION_PAGE_SIZE),
    current_user: User = Depends(get_current_user),
    service: CollectionService = Depends(get_collection_service),
):
    page = await service.list_entries(user_id, type, parse_cursor(cursor), limit)
    return CollectionResponse(
        entries=[CollectionEntryResponse.model_validate(e) for e in page.items],
        **page_fields(page),
    )


@app.get(
    "/api/v1/users/{user_id}/collection/count",
    response_model=CollectionCountResponse,
    tags=["Collection"],
)
async def get_collection_count(
    user_id: str,
    type: CollectionType = Query(CollectionType.COLLECTION),
    current_user: User = Depends(get_current_user),
    service: CollectionService = Depends(get_collection_service),
):
    return CollectionCountResponse(count=await service.count_entries(user_id, type))


@app.get(
    "/api/v1/users/{user_id}/collection/stats",
    response_model=CollectionStatsResponse,
    tags=["Collection"],
    summary="Get collection and wishlist sizes",
)
async def get_collection_stats(
    user_id: str,
    current_user: User = Depends(get_current_user),
    service: CollectionService = Depends(get_collection_service),
):
    stats = await service.stats(user_id)
    return CollectionStatsResponse.model_validate(stats)


@app.get(
    "/api/v1/collection/check/{vinyl_id}",
    response_model=VinylCheckResponse,
    tags=["Collection"],
    summary="Check whether a vinyl is in your collection or wishlist",
)
async def check_vinyl(
    vinyl_id: str,
    type: CollectionType = Query(CollectionType.COLLECTION),
    current_user: User = Depends(get_current_user),
    service: CollectionService = Depends(get_collection_service),
):
    has = await service.has_vinyl(current_user.id, vinyl_id, type)
    return VinylCheckResponse(vinyl_id=vinyl_id, type=type, has=has)


@app.post(
    "/api/v1/collection",
    response_model=CollectionEntryResponse,
    status_code=201,
    tags=["Collection"],
)
async def add_to_collection(
    entry: CollectionAdd,
    current_user: User = Depends(get_current_user),
    service: CollectionService = Depends(get_collection_service),
):
    created = await service.add(current_user.id, entry.vinyl_id, entry.type, entry.notes)
    return CollectionEntryResponse.model_validate(created)


@app.delete("/api/v1/collection/{vinyl_id}", response_model=MessageResponse, tags=["Collection"])
async def remove_from_collection(
    vinyl_id: str,
    type: CollectionType = Query(CollectionType.COLLECTION),
    current_user: User = Depends(get_current_user),
    service: CollectionService = Depends(get_collection_service),
):
    await service.remove(current_user.id, vinyl_id, type)
    return MessageResponse(message=f"Removed from {type.value}")


@app.post(
    "/api/v1/collection/{vinyl_id}/move",
    response_model=CollectionEntryResponse,
    tags=["Collection"],
    summary="Move a vinyl from the wishlist to the collection",
)
async def move_to_collection(
    vinyl_id: str,
    current_user: User = Depends(get_current_user),
    service: CollectionService = Depends(get_collection_service),
):
    entry = await service.move_to_collection(current_user.id, vinyl_id)
    return CollectionEntryResponse.model_validate(entry)


# Notification endpoints
@app.get("/api/v1/notifications", response_model=NotificationsResponse, tags=["Notifications"])
async def get_notifications(
    cursor: Optional[str] = Query(None),
    limit: int = page_limit(settings.NOTIFICATIONS_PAGE_SIZE),
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    page = await service.list_notifications(current_user.id, parse_cursor(cursor), limit)
    return NotificationsResponse(
        notifications=[NotificationResponse.model_validate(n) for n in page.items],
        **page_fields(page),
    )


@app.get(
    "/api/v1/notifications/unread-count",
    response_model=UnreadCountResponse,
    tags=["Notifications"],
)
async def get_unread_count(
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    return UnreadCountResponse(unread_count=await service.unread_count(current_user.id))


@app.post(
    "/api/v1/notifications/read-all",
    response_model=MarkAllReadResponse,
    tags=["Notifications"],
)
async def mark_all_notifications_read(
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    return MarkAllReadResponse(updated=await service.mark_all_read(current_user.id))


@app.post(
    "/api/v1/notifications/{notification_id}/read",
    response_model=MessageResponse,
    tags=["Notifications"],
)
async def mark_notification_read(
    notification_id: str,
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    await service.mark_read(current_user.id, notification_id)
    return MessageResponse(message="Notification marked as read")


@app.delete(
    "/api/v1/notifications/{notification_id}",
    response_model=MessageResponse,
    tags=["Notifications"],
)
async def delete_notification(
    notification_id: str,
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    await service.delete(current_user.id, notification_id)
    return MessageResponse(message="Notification deleted")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "crate_service.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
    )
