"""
FastAPI dependencies for authentication and service wiring
"""
import httpx
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional
import logging

from .cache import RedisCache, get_cache
from .config import settings
from .infrastructure.database.connection import Database, get_db
from .infrastructure.database.repositories import (
    CollectionRepository,
    CommentRepository,
    FollowRepository,
    NotificationRepository,
    PostRepository,
    UserRepository,
)
from .kafka_producer import KafkaProducerManager, get_kafka_producer
from .relationships import RelationshipStore
from .schemas import User
from .services import (
    CollectionService,
    CommentService,
    FeedService,
    NotificationService,
    PostService,
)

logger = logging.getLogger(__name__)

security = HTTPBearer()


async def verify_token_with_auth_service(token: str) -> Optional[dict]:
    """
    Verify access token with Auth Service

    Args:
        token: bearer access token

    Returns:
        User data if token is valid, None otherwise
    """
    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            response = await client.get(
                f"{settings.AUTH_SERVICE_URL}/api/v1/auth/me",
                headers={"Authorization": f"Bearer {token}"},
            )

            if response.status_code == 200:
                return response.json()
            logger.warning(f"Token verification failed: {response.status_code}")
            return None

    except httpx.TimeoutException:
        logger.error("Auth service timeout during token verification")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication service is temporarily unavailable",
        )
    except httpx.HTTPError as e:
        logger.error(f"Failed to reach auth service: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication service is unavailable",
        )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> User:
    """
    Get current authenticated user

    Raises:
        HTTPException: If token is invalid or the account is inactive
    """
    user_data = await verify_token_with_auth_service(credentials.credentials)

    if not user_data:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        user = User(
            id=str(user_data.get("id", "")),
            username=user_data.get("username", ""),
            is_active=user_data.get("is_active", True),
        )
    except ValueError as e:
        logger.error(f"Error parsing user data: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user data",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive",
        )
    return user


# Service wiring

def get_notification_service(
    db: Database = Depends(get_db),
    kafka: KafkaProducerManager = Depends(get_kafka_producer),
) -> NotificationService:
    return NotificationService(NotificationRepository(db), kafka)


def get_relationship_store(
    db: Database = Depends(get_db),
    cache: RedisCache = Depends(get_cache),
    kafka: KafkaProducerManager = Depends(get_kafka_producer),
    notifications: NotificationService = Depends(get_notification_service),
) -> RelationshipStore:
    """Get RelationshipStore instance with dependencies"""
    return RelationshipStore(FollowRepository(db), UserRepository(db), cache, kafka, notifications)


def get_post_service(
    db: Database = Depends(get_db),
    kafka: KafkaProducerManager = Depends(get_kafka_producer),
    notifications: NotificationService = Depends(get_notification_service),
) -> PostService:
    return PostService(PostRepository(db), kafka, notifications)


def get_feed_service(
    db: Database = Depends(get_db),
    relationships: RelationshipStore = Depends(get_relationship_store),
) -> FeedService:
    return FeedService(PostRepository(db), UserRepository(db), relationships)


def get_comment_service(
    db: Database = Depends(get_db),
    kafka: KafkaProducerManager = Depends(get_kafka_producer),
    notifications: NotificationService = Depends(get_notification_service),
) -> CommentService:
    return CommentService(CommentRepository(db), PostRepository(db), kafka, notifications)


def get_collection_service(
    db: Database = Depends(get_db),
    kafka: KafkaProducerManager = Depends(get_kafka_producer),
    posts: PostService = Depends(get_post_service),
) -> CollectionService:
    return CollectionService(CollectionRepository(db), posts, kafka)
