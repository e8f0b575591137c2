"""
Tests for the HTTP API.

The app runs against the in-memory repositories through dependency
overrides; the lifespan (database, Redis, Kafka) is never started.

Tests cover:
- Follow, unfollow and follow request endpoints
- Cursor paging on the feed
- Error responses as {"code", "message"}
- Posts, comments, collection and notification endpoints
"""

import pytest
from httpx import ASGITransport, AsyncClient

from crate_service.dependencies import (
    get_collection_service,
    get_comment_service,
    get_current_user,
    get_feed_service,
    get_notification_service,
    get_post_service,
    get_relationship_store,
)
from crate_service.domain.models import NotificationType, PostType
from crate_service.main import app
from crate_service.schemas import User


class CurrentUser:
    """Switchable signed-in user for the overridden auth dependency."""

    def __init__(self, user_id: str = "bob"):
        self.user_id = user_id

    def __call__(self) -> User:
        return User(id=self.user_id, username=self.user_id)


@pytest.fixture
def current_user():
    return CurrentUser()


@pytest.fixture
async def client(
    current_user,
    relationships,
    feed_service,
    post_service,
    comment_service,
    collection_service,
    notification_service,
):
    app.dependency_overrides = {
        get_current_user: current_user,
        get_relationship_store: lambda: relationships,
        get_feed_service: lambda: feed_service,
        get_post_service: lambda: post_service,
        get_comment_service: lambda: comment_service,
        get_collection_service: lambda: collection_service,
        get_notification_service: lambda: notification_service,
    }
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides = {}


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


# =============================================================================
# Follows
# =============================================================================


class TestFollowEndpoints:
    async def test_follow_public_user(self, client):
        response = await client.post("/api/v1/follows/alice")

        assert response.status_code == 200
        body = response.json()
        assert body["follower_id"] == "bob"
        assert body["following_id"] == "alice"
        assert body["status"] == "accepted"

    async def test_follow_self_is_rejected(self, client):
        response = await client.post("/api/v1/follows/bob")

        assert response.status_code == 400
        assert response.json()["code"] == "self_follow"
        assert response.json()["message"]

    async def test_follow_unknown_user(self, client):
        response = await client.post("/api/v1/follows/nobody")

        assert response.status_code == 404
        assert response.json()["code"] == "user_not_found"

    async def test_check_and_unfollow(self, client):
        await client.post("/api/v1/follows/alice")

        check = await client.get("/api/v1/follows/alice")
        assert check.json()["is_following"] is True

        response = await client.delete("/api/v1/follows/alice")
        assert response.status_code == 200

        check = await client.get("/api/v1/follows/alice")
        assert check.json()["is_following"] is False

    async def test_private_request_flow(self, client, current_user):
        current_user.user_id = "dave"
        response = await client.post("/api/v1/follows/carol")
        assert response.json()["status"] == "pending"

        relationship = await client.get("/api/v1/users/carol/relationship")
        assert relationship.json()["relationship"] == "pending"

        current_user.user_id = "carol"
        requests = await client.get("/api/v1/follow-requests")
        assert requests.json()["count"] == 1
        assert requests.json()["requests"][0]["user"]["uid"] == "dave"

        response = await client.post("/api/v1/follow-requests/dave", json={"action": "accept"})
        assert response.status_code == 200

        stats = await client.get("/api/v1/users/carol/stats")
        assert stats.json()["followers_count"] == 1
        followers = await client.get("/api/v1/users/carol/followers")
        assert [u["uid"] for u in followers.json()["users"]] == ["dave"]

    async def test_reject_request(self, client, current_user):
        current_user.user_id = "dave"
        await client.post("/api/v1/follows/carol")

        current_user.user_id = "carol"
        response = await client.post("/api/v1/follow-requests/dave", json={"action": "reject"})

        assert response.status_code == 200
        assert (await client.get("/api/v1/follow-requests")).json()["count"] == 0

    async def test_accept_missing_request(self, client):
        response = await client.post("/api/v1/follow-requests/dave", json={"action": "accept"})

        assert response.status_code == 404
        assert response.json()["code"] == "follow_request_not_found"

    async def test_unknown_action(self, client):
        response = await client.post("/api/v1/follow-requests/dave", json={"action": "ignore"})

        assert response.status_code == 422


# =============================================================================
# Feed and posts
# =============================================================================


class TestFeedEndpoints:
    async def test_feed_pages_with_cursor(self, client, relationships, post_service):
        await relationships.follow("bob", "alice")
        created = [
            await post_service.create_post("alice", f"v{i}", PostType.COLLECTION_ADD)
            for i in range(3)
        ]

        first = (await client.get("/api/v1/feed", params={"limit": 2})).json()
        assert [p["id"] for p in first["posts"]] == [created[2].id, created[1].id]
        assert first["has_more"] is True
        assert first["next_cursor"]

        second = (
            await client.get("/api/v1/feed", params={"limit": 2, "cursor": first["next_cursor"]})
        ).json()
        assert [p["id"] for p in second["posts"]] == [created[0].id]
        assert second["has_more"] is False
        assert second["next_cursor"] is None

    async def test_malformed_cursor(self, client):
        response = await client.get("/api/v1/feed", params={"cursor": "garbage"})

        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"

    @pytest.mark.parametrize("limit", [0, 101])
    async def test_limit_out_of_range(self, client, limit):
        response = await client.get("/api/v1/feed", params={"limit": limit})

        assert response.status_code == 422

    async def test_private_profile_posts_forbidden(self, client, post_service):
        await post_service.create_post("carol", "v1", PostType.COLLECTION_ADD)

        response = await client.get("/api/v1/users/carol/posts")

        assert response.status_code == 403
        assert response.json() == {"code": "forbidden", "message": "This account is private"}

    async def test_like_and_unlike(self, client, post_service):
        post = await post_service.create_post("alice", "v1", PostType.COLLECTION_ADD)

        liked = (await client.post(f"/api/v1/posts/{post.id}/like")).json()
        assert liked == {"post_id": post.id, "is_liked": True, "likes_count": 1}

        unliked = (await client.delete(f"/api/v1/posts/{post.id}/like")).json()
        assert unliked == {"post_id": post.id, "is_liked": False, "likes_count": 0}

    async def test_get_missing_post(self, client):
        response = await client.get("/api/v1/posts/post-404")

        assert response.status_code == 404
        assert response.json()["code"] == "not_found"

    async def test_delete_someone_elses_post(self, client, post_service):
        post = await post_service.create_post("alice", "v1", PostType.COLLECTION_ADD)

        response = await client.delete(f"/api/v1/posts/{post.id}")

        assert response.status_code == 403


# =============================================================================
# Comments
# =============================================================================


class TestCommentEndpoints:
    async def test_add_and_list(self, client, post_service):
        post = await post_service.create_post("alice", "v1", PostType.COLLECTION_ADD)

        created = await client.post(
            f"/api/v1/posts/{post.id}/comments", json={"content": "  what a press  "}
        )
        assert created.status_code == 201
        assert created.json()["content"] == "what a press"

        listed = (await client.get(f"/api/v1/posts/{post.id}/comments")).json()
        assert [c["id"] for c in listed["comments"]] == [created.json()["id"]]

    async def test_blank_comment(self, client, post_service):
        post = await post_service.create_post("alice", "v1", PostType.COLLECTION_ADD)

        response = await client.post(f"/api/v1/posts/{post.id}/comments", json={"content": "   "})

        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"

    async def test_delete_comment(self, client, post_service, comment_service):
        post = await post_service.create_post("alice", "v1", PostType.COLLECTION_ADD)
        comment = await comment_service.add_comment("bob", post.id, "hello")

        response = await client.delete(f"/api/v1/comments/{comment.id}")

        assert response.status_code == 200


# =============================================================================
# Collection
# =============================================================================


class TestCollectionEndpoints:
    async def test_add_list_and_remove(self, client):
        created = await client.post("/api/v1/collection", json={"vinyl_id": "v1"})
        assert created.status_code == 201
        assert created.json()["type"] == "collection"

        listed = (await client.get("/api/v1/users/bob/collection")).json()
        assert [e["vinyl_id"] for e in listed["entries"]] == ["v1"]

        removed = await client.delete("/api/v1/collection/v1")
        assert removed.status_code == 200
        listed = (await client.get("/api/v1/users/bob/collection")).json()
        assert listed["entries"] == []

    async def test_move_wishlist_entry(self, client):
        await client.post("/api/v1/collection", json={"vinyl_id": "v1", "type": "wishlist"})

        response = await client.post("/api/v1/collection/v1/move")

        assert response.status_code == 200
        assert response.json()["type"] == "collection"
        wishlist = (
            await client.get("/api/v1/users/bob/collection", params={"type": "wishlist"})
        ).json()
        assert wishlist["entries"] == []

    async def test_count_stats_and_check(self, client):
        await client.post("/api/v1/collection", json={"vinyl_id": "v1"})
        await client.post("/api/v1/collection", json={"vinyl_id": "v2", "type": "wishlist"})

        count = await client.get("/api/v1/users/bob/collection/count", params={"type": "wishlist"})
        assert count.json() == {"count": 1}

        stats = await client.get("/api/v1/users/bob/collection/stats")
        assert stats.json() == {"user_id": "bob", "collection_count": 1, "wishlist_count": 1}

        check = await client.get("/api/v1/collection/check/v1")
        assert check.json() == {"vinyl_id": "v1", "type": "collection", "has": True}
        check = await client.get("/api/v1/collection/check/v1", params={"type": "wishlist"})
        assert check.json()["has"] is False

    async def test_move_without_wishlist_entry(self, client):
        response = await client.post("/api/v1/collection/v1/move")

        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"


# =============================================================================
# Notifications
# =============================================================================


class TestNotificationEndpoints:
    async def test_list_count_and_read(self, client, notification_service):
        created = await notification_service.notify("bob", NotificationType.NEW_FOLLOWER, "alice")
        await notification_service.notify("bob", NotificationType.NEW_FOLLOWER, "dave")

        listed = (await client.get("/api/v1/notifications")).json()
        assert len(listed["notifications"]) == 2
        assert (await client.get("/api/v1/notifications/unread-count")).json() == {"unread_count": 2}

        await client.post(f"/api/v1/notifications/{created.id}/read")
        assert (await client.get("/api/v1/notifications/unread-count")).json() == {"unread_count": 1}

        read_all = (await client.post("/api/v1/notifications/read-all")).json()
        assert read_all == {"updated": 1}

    async def test_other_users_notification(self, client, notification_service):
        created = await notification_service.notify("alice", NotificationType.NEW_FOLLOWER, "dave")

        response = await client.delete(f"/api/v1/notifications/{created.id}")

        assert response.status_code == 403
        assert response.json()["code"] == "forbidden"
