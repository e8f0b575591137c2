"""
Tests for UserSession and end-to-end user flows.

Tests cover:
- Following a public user, seeing their post and a failed like rolling back
- Requesting to follow a private user and the request being accepted
- Realtime updates: new feed items, unread badge, collection refetch, comment merge
- Subscription teardown, resubscribe after stream errors, and close
"""

import pytest

from crate_service.domain.models import CollectionType, FollowStatus, PostType
from crate_service.exceptions import SubscriptionError, TransientIOError

from tests.fakes import settle


# =============================================================================
# End-to-end flows
# =============================================================================


class TestFlows:
    async def test_follow_public_user_then_like_fails(
        self, relationships, post_service, make_session, posts
    ):
        post = await post_service.create_post("alice", "v1", PostType.COLLECTION_ADD)
        await post_service.like("dave", post.id)

        edge = await relationships.follow("bob", "alice")
        assert edge.status == FollowStatus.ACCEPTED

        session = await make_session("bob")
        loaded = session.feed.find(post.id)
        assert loaded is not None
        assert (loaded.is_liked, loaded.likes_count) == (False, 1)

        posts.fail("add_like")
        with pytest.raises(TransientIOError):
            await session.posts.like(post.id)

        assert (loaded.is_liked, loaded.likes_count) == (False, 1)
        assert posts.posts[post.id].likes_count == 1

    async def test_private_follow_request_accepted(self, relationships, users):
        edge = await relationships.follow("dave", "carol")

        assert edge.status == FollowStatus.PENDING
        assert [u.uid for u in await relationships.list_followers("carol")] == []
        assert (await relationships.stats("carol")).followers_count == 0

        await relationships.accept_request("dave", "carol")

        assert [u.uid for u in await relationships.list_followers("carol")] == ["dave"]
        stats = await relationships.stats("carol")
        assert stats.followers_count == 1
        assert stats.pending_requests_count == 0


# =============================================================================
# Realtime
# =============================================================================


class TestRealtime:
    async def test_new_feed_posts_are_counted(self, relationships, post_service, make_session):
        await relationships.follow("bob", "alice")
        await post_service.create_post("alice", "v1", PostType.COLLECTION_ADD)
        session = await make_session("bob")
        await settle()

        await post_service.create_post("alice", "v2", PostType.COLLECTION_ADD)
        await settle()

        assert session.feed.state.new_items_available == 1
        assert len(session.feed.items) == 1

    async def test_own_and_unfollowed_posts_not_counted(
        self, relationships, post_service, make_session
    ):
        await relationships.follow("bob", "alice")
        session = await make_session("bob")
        await settle()

        await post_service.create_post("bob", "v1", PostType.COLLECTION_ADD)
        await post_service.create_post("dave", "v2", PostType.COLLECTION_ADD)
        await settle()

        assert session.feed.state.new_items_available == 0

    async def test_refresh_feed_shows_new_posts(self, relationships, post_service, make_session):
        session = await make_session("bob")
        await relationships.follow("bob", "alice")
        post = await post_service.create_post("alice", "v1", PostType.COLLECTION_ADD)

        assert await session.refresh_feed() is True

        assert [p.id for p in session.feed.items] == [post.id]
        assert session.feed.state.new_items_available == 0

    async def test_notification_bumps_unread_badge(self, relationships, make_session):
        session = await make_session("alice")
        await settle()

        await relationships.follow("bob", "alice")
        await settle()

        assert session.inbox.unread_count == 1

    async def test_collection_refetched_on_change(self, collection_service, make_session):
        session = await make_session("bob")
        await settle()

        await collection_service.add("bob", "v1", CollectionType.COLLECTION)
        await settle()

        assert [e.vinyl_id for e in session.collection.items] == ["v1"]
        assert session.wishlist.items == []

    async def test_comments_merged_into_open_thread(
        self, post_service, comment_service, make_session
    ):
        post = await post_service.create_post("alice", "v1", PostType.COLLECTION_ADD)
        session = await make_session("bob")
        thread = await session.comments_for(post.id)
        await settle()

        comment = await comment_service.add_comment("dave", post.id, "first!")
        await settle()
        assert [c.id for c in thread.items] == [comment.id]
        assert thread.items[0].content == "first!"

        await comment_service.delete_comment("dave", comment.id)
        await settle()
        assert thread.items == []

    async def test_comment_thread_reused(self, post_service, make_session):
        post = await post_service.create_post("alice", "v1", PostType.COLLECTION_ADD)
        session = await make_session("bob")

        assert await session.comments_for(post.id) is await session.comments_for(post.id)

    async def test_close_comments_stops_listening(self, post_service, make_session, hub):
        post = await post_service.create_post("alice", "v1", PostType.COLLECTION_ADD)
        session = await make_session("bob")
        await session.comments_for(post.id)
        await settle()
        assert hub.listeners("comments") == 1

        await session.close_comments(post.id)

        assert hub.listeners("comments") == 0
        assert post.id not in session.threads


# =============================================================================
# Lifecycle
# =============================================================================


class TestLifecycle:
    async def test_open_subscribes_each_table(self, make_session, hub):
        session = await make_session("bob")
        await settle()

        assert set(session.subscriptions) == {"feed", "notifications", "collection", "wishlist"}
        assert hub.listeners("posts") == 1
        assert hub.listeners("notifications") == 1
        assert hub.listeners("user_vinyls") == 2

    async def test_stream_error_is_reported_and_resubscribe_recovers(self, make_session, hub):
        session = await make_session("bob")
        await settle()

        hub.break_stream("posts")
        await settle()

        assert isinstance(session.errors["feed"], SubscriptionError)
        assert not session.subscriptions["feed"].active
        assert session.subscriptions["notifications"].active

        assert session.resubscribe() == ["feed"]
        await settle()

        assert "feed" not in session.errors
        assert hub.listeners("posts") == 1

    async def test_ended_stream_is_reported_and_resubscribe_recovers(self, make_session, hub):
        session = await make_session("bob")
        await settle()

        hub.end_stream("notifications")
        await settle()

        assert isinstance(session.errors["notifications"], SubscriptionError)
        assert not session.subscriptions["notifications"].active
        assert session.subscriptions["feed"].active

        assert session.resubscribe() == ["notifications"]
        await settle()

        assert session.errors == {}
        assert hub.listeners("notifications") == 1

    async def test_resubscribe_with_everything_running(self, make_session):
        session = await make_session("bob")
        await settle()

        assert session.resubscribe() == []

    async def test_close_tears_everything_down(self, post_service, make_session, hub):
        post = await post_service.create_post("alice", "v1", PostType.COLLECTION_ADD)
        session = await make_session("bob")
        await session.comments_for(post.id)
        await settle()

        await session.close()

        assert session.closed
        for table in ["posts", "notifications", "user_vinyls", "comments"]:
            assert hub.listeners(table) == 0
        assert not session.feed.alive
        assert not session.inbox.list.alive

    async def test_close_twice(self, make_session):
        session = await make_session("bob")

        await session.close()
        await session.close()

        assert session.closed

    async def test_resubscribe_after_close_fails(self, make_session):
        session = await make_session("bob")
        await session.close()

        with pytest.raises(SubscriptionError):
            session.resubscribe()

    async def test_changes_after_close_are_ignored(self, collection_service, make_session):
        session = await make_session("bob")
        await settle()
        await session.close()

        await collection_service.add("bob", "v1", CollectionType.COLLECTION)
        await settle()

        assert session.collection.items == []
