"""
Test configuration and fixtures for crate service tests.

This module provides:
- In-memory repositories sharing one deterministic clock
- An in-memory change hub standing in for the Kafka change stream
- Wired services, a relationship store and a user session factory
- Seeded users: alice, bob and dave are public, carol is private

Usage:
    async def test_example(relationships, users):
        edge = await relationships.follow("bob", "alice")
        assert edge.is_accepted()
"""

import pytest

from crate_service.cache import RedisCache
from crate_service.realtime import EventBus
from crate_service.relationships import RelationshipStore
from crate_service.services import (
    CollectionService,
    CommentService,
    FeedService,
    NotificationService,
    PostService,
)
from crate_service.session import UserSession

from tests.fakes import (
    Clock,
    FakeCollectionRepository,
    FakeCommentRepository,
    FakeFollowRepository,
    FakeNotificationRepository,
    FakePostRepository,
    FakeUserRepository,
    InMemoryChangeHub,
)


# =============================================================================
# Storage Fixtures
# =============================================================================


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def users(clock):
    """User directory with alice, bob, dave (public) and carol (private)."""
    repo = FakeUserRepository(clock)
    repo.add("alice")
    repo.add("bob")
    repo.add("carol", is_private=True)
    repo.add("dave")
    return repo


@pytest.fixture
def follows(clock):
    return FakeFollowRepository(clock)


@pytest.fixture
def comments(clock):
    return FakeCommentRepository(clock)


@pytest.fixture
def posts(clock, comments):
    return FakePostRepository(clock, comments)


@pytest.fixture
def entries(clock):
    return FakeCollectionRepository(clock)


@pytest.fixture
def notifications(clock):
    return FakeNotificationRepository(clock)


@pytest.fixture
def hub():
    return InMemoryChangeHub()


@pytest.fixture
def cache():
    """Unconnected cache; every call is a no-op."""
    return RedisCache()


@pytest.fixture
def bus():
    return EventBus()


# =============================================================================
# Service Fixtures
# =============================================================================


@pytest.fixture
def notification_service(notifications, hub):
    return NotificationService(notifications, hub)


@pytest.fixture
def relationships(follows, users, cache, hub, notification_service):
    return RelationshipStore(follows, users, cache, hub, notification_service)


@pytest.fixture
def post_service(posts, hub, notification_service):
    return PostService(posts, hub, notification_service)


@pytest.fixture
def feed_service(posts, users, relationships):
    return FeedService(posts, users, relationships)


@pytest.fixture
def comment_service(comments, posts, hub, notification_service):
    return CommentService(comments, posts, hub, notification_service)


@pytest.fixture
def collection_service(entries, post_service, hub):
    return CollectionService(entries, post_service, hub)


# =============================================================================
# Session Fixtures
# =============================================================================


@pytest.fixture
async def make_session(
    hub,
    bus,
    feed_service,
    post_service,
    comment_service,
    collection_service,
    notification_service,
):
    """Factory for opened user sessions; all are closed at teardown."""
    sessions = []

    async def factory(user_id: str, open_session: bool = True) -> UserSession:
        session = UserSession(
            user_id,
            hub,
            feed_service,
            post_service,
            comment_service,
            collection_service,
            notification_service,
            bus=bus,
        )
        sessions.append(session)
        if open_session:
            await session.open()
        return session

    yield factory

    for session in sessions:
        await session.close()
