"""
Tests for the realtime delta listener.

Tests cover:
- Change message validation and record conversion
- Predicates and per-list delta policies
- Subscription lifecycle: delivery, teardown on error, idempotent unsubscribe
- Kafka change stream consumption (consumer replaced by a stub)
- EventBus publish/subscribe
"""

import asyncio
from datetime import datetime, timezone
from types import SimpleNamespace

import pydantic
import pytest

from crate_service import realtime
from crate_service.domain.models import Comment, Notification, NotificationType
from crate_service.exceptions import SubscriptionError
from crate_service.lists import PagedList
from crate_service.pagination import PageResult
from crate_service.realtime import (
    ChangeEvent,
    ChangeType,
    CountNewItems,
    EventBus,
    IncrementCounter,
    KafkaChangeStream,
    MergeItems,
    RefetchOnChange,
    Subscription,
    all_of,
    field_equals,
    field_in,
    from_record,
    newer_than,
    of_type,
    record_factory,
    to_record,
)

from tests.fakes import settle


NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def comment(n: int, post_id: str = "post-1", content: str = "hi") -> Comment:
    return Comment(
        id=f"c{n}",
        post_id=post_id,
        user_id="bob",
        content=content,
        created_at=NOW.replace(minute=n),
    )


def static_list(items):
    async def fetch(cursor, limit):
        return PageResult(items=list(items), cursor=None, has_more=False)

    return PagedList(fetch, 20)


# =============================================================================
# Change events
# =============================================================================


class TestChangeEvent:
    def test_message_round_trip(self):
        event = ChangeEvent.insert("comments", comment(1))

        parsed = ChangeEvent.from_message(event.to_message())

        assert parsed.type == ChangeType.INSERT
        assert parsed.table == "comments"
        assert parsed.record_id == "c1"
        assert parsed.datetime_field("created_at") == comment(1).created_at

    def test_invalid_message_rejected(self):
        with pytest.raises(pydantic.ValidationError):
            ChangeEvent.from_message({"type": "UPSERT", "table": "x", "record": {}, "timestamp": "now"})

    def test_record_is_json_safe(self):
        record = to_record(comment(2))

        assert record["created_at"] == comment(2).created_at.isoformat()
        assert record["updated_at"] is None

    def test_from_record_restores_types(self):
        original = Notification(
            id="n1",
            user_id="alice",
            type=NotificationType.POST_LIKE,
            actor_id="bob",
            created_at=NOW,
            post_id="p1",
        )

        rebuilt = from_record(Notification, {**to_record(original), "extra": 1})

        assert rebuilt == original
        assert isinstance(rebuilt.type, NotificationType)

    def test_record_factory(self):
        build = record_factory(Comment)

        assert build(to_record(comment(3))) == comment(3)


# =============================================================================
# Predicates
# =============================================================================


class TestPredicates:
    def test_of_type(self):
        assert of_type(ChangeType.INSERT)(ChangeEvent.insert("comments", comment(1)))
        assert not of_type(ChangeType.INSERT)(ChangeEvent.delete("comments", comment(1)))

    def test_field_equals_and_in(self):
        event = ChangeEvent.insert("comments", comment(1, post_id="p9"))

        assert field_equals("post_id", "p9")(event)
        assert not field_equals("post_id", "p1")(event)
        assert field_in("user_id", ["alice", "bob"])(event)
        assert not field_in("user_id", ["alice"])(event)

    async def test_newer_than_tracks_list_head(self):
        paged = static_list([comment(10), comment(5)])
        predicate = newer_than(paged)

        assert predicate(ChangeEvent.insert("comments", comment(1)))

        await paged.load_initial()

        assert predicate(ChangeEvent.insert("comments", comment(11)))
        assert not predicate(ChangeEvent.insert("comments", comment(10)))
        assert not predicate(ChangeEvent.insert("comments", comment(3)))

    def test_all_of(self):
        predicate = all_of(of_type(ChangeType.INSERT), field_equals("post_id", "post-1"))

        assert predicate(ChangeEvent.insert("comments", comment(1)))
        assert not predicate(ChangeEvent.update("comments", comment(1)))


# =============================================================================
# Delta policies
# =============================================================================


class TestPolicies:
    async def test_count_new_items_only_counts_inserts(self):
        paged = static_list([])
        policy = CountNewItems(paged)

        policy(ChangeEvent.insert("posts", comment(1)))
        policy(ChangeEvent.insert("posts", comment(2)))
        policy(ChangeEvent.update("posts", comment(1)))

        assert paged.state.new_items_available == 2
        assert paged.items == []

    async def test_merge_items(self):
        paged = static_list([comment(5), comment(4)])
        await paged.load_initial()
        policy = MergeItems(paged, record_factory(Comment))

        policy(ChangeEvent.insert("comments", comment(6)))
        policy(ChangeEvent.update("comments", comment(5, content="edited")))
        policy(ChangeEvent.delete("comments", comment(4)))

        assert [c.id for c in paged.items] == ["c6", "c5"]
        assert paged.find("c5").content == "edited"

    async def test_merge_ignores_updates_outside_window(self):
        paged = static_list([comment(5)])
        await paged.load_initial()
        policy = MergeItems(paged, record_factory(Comment))

        policy(ChangeEvent.update("comments", comment(1)))

        assert [c.id for c in paged.items] == ["c5"]

    async def test_merge_insert_already_present_is_not_duplicated(self):
        paged = static_list([comment(5)])
        await paged.load_initial()
        policy = MergeItems(paged, record_factory(Comment))

        policy(ChangeEvent.insert("comments", comment(5)))

        assert len(paged.items) == 1

    async def test_refetch_on_change(self):
        source = [comment(1)]
        paged = static_list(source)
        await paged.load_initial()
        source.append(comment(2))

        await RefetchOnChange(paged)(ChangeEvent.insert("comments", comment(2)))

        assert [c.id for c in paged.items] == ["c2", "c1"]

    def test_increment_counter_skips_read_rows(self):
        count = []
        policy = IncrementCounter(lambda: count.append(1))
        unread = Notification("n1", "alice", NotificationType.POST_LIKE, "bob", NOW)
        read = Notification("n2", "alice", NotificationType.POST_LIKE, "bob", NOW, read=True)

        policy(ChangeEvent.insert("notifications", unread))
        policy(ChangeEvent.insert("notifications", read))
        policy(ChangeEvent.update("notifications", unread))

        assert len(count) == 1


# =============================================================================
# Subscription
# =============================================================================


class TestSubscription:
    async def test_delivers_matching_events(self, hub):
        received = []
        subscription = Subscription(
            hub,
            "comments",
            received.append,
            predicate=field_equals("post_id", "post-1"),
        ).start()
        await settle()

        await hub.publish_change(ChangeEvent.insert("comments", comment(1)))
        await hub.publish_change(ChangeEvent.insert("comments", comment(2, post_id="other")))
        await hub.publish_change(ChangeEvent.insert("posts", comment(3)))
        await settle()

        assert [e.record_id for e in received] == ["c1"]
        assert subscription.active
        await subscription.unsubscribe()

    async def test_async_handler_is_awaited(self, hub):
        received = []

        async def handler(event):
            await asyncio.sleep(0)
            received.append(event.record_id)

        subscription = Subscription(hub, "comments", handler).start()
        await settle()
        await hub.publish_change(ChangeEvent.insert("comments", comment(1)))
        await settle()

        assert received == ["c1"]
        await subscription.unsubscribe()

    async def test_stream_error_reported_and_torn_down(self, hub):
        errors = []
        subscription = Subscription(hub, "comments", lambda e: None, on_error=errors.append).start()
        await settle()

        hub.break_stream("comments")
        await settle()

        assert len(errors) == 1
        assert isinstance(errors[0], SubscriptionError)
        assert isinstance(errors[0].__cause__, ConnectionError)
        assert subscription.error is errors[0]
        assert not subscription.active
        assert hub.listeners("comments") == 0

    async def test_handler_error_tears_down(self, hub):
        errors = []

        def handler(event):
            raise ValueError("bad row")

        subscription = Subscription(hub, "comments", handler, on_error=errors.append).start()
        await settle()
        await hub.publish_change(ChangeEvent.insert("comments", comment(1)))
        await settle()

        assert len(errors) == 1
        assert not subscription.active

    async def test_events_after_teardown_are_not_delivered(self, hub):
        received = []
        subscription = Subscription(hub, "comments", received.append, on_error=lambda e: None).start()
        await settle()
        hub.break_stream("comments")
        await settle()

        await hub.publish_change(ChangeEvent.insert("comments", comment(1)))
        await settle()

        assert received == []
        assert not subscription.active

    async def test_restart_after_error(self, hub):
        received = []
        subscription = Subscription(hub, "comments", received.append, on_error=lambda e: None).start()
        await settle()
        hub.break_stream("comments")
        await settle()

        subscription.start()
        await settle()
        await hub.publish_change(ChangeEvent.insert("comments", comment(1)))
        await settle()

        assert subscription.error is None
        assert [e.record_id for e in received] == ["c1"]
        await subscription.unsubscribe()

    async def test_unsubscribe_is_idempotent(self, hub):
        subscription = Subscription(hub, "comments", lambda e: None).start()
        await settle()

        await subscription.unsubscribe()
        await subscription.unsubscribe()

        assert subscription.unsubscribed
        assert not subscription.active
        assert hub.listeners("comments") == 0

    async def test_unsubscribe_before_start(self, hub):
        subscription = Subscription(hub, "comments", lambda e: None)

        await subscription.unsubscribe()

        with pytest.raises(SubscriptionError):
            subscription.start()

    async def test_no_delivery_after_unsubscribe(self, hub):
        received = []
        subscription = Subscription(hub, "comments", received.append).start()
        await settle()
        await subscription.unsubscribe()

        await hub.publish_change(ChangeEvent.insert("comments", comment(1)))
        await settle()

        assert received == []

    async def test_stream_end_is_reported(self, hub):
        errors = []
        subscription = Subscription(hub, "comments", lambda e: None, on_error=errors.append).start()
        await settle()

        hub.end_stream("comments")
        await settle()

        assert len(errors) == 1
        assert isinstance(errors[0], SubscriptionError)
        assert "ended" in errors[0].message
        assert subscription.error is errors[0]
        assert not subscription.active


# =============================================================================
# Kafka change stream
# =============================================================================


class StubConsumer:
    """Replaces AIOKafkaConsumer; yields the queued messages then stops."""

    messages = []
    fail_start = False
    instances = []

    def __init__(self, *topics, **kwargs):
        self.topics = topics
        self.kwargs = kwargs
        self.stopped = False
        StubConsumer.instances.append(self)

    async def start(self):
        if StubConsumer.fail_start:
            raise ConnectionError("no brokers")

    async def stop(self):
        self.stopped = True

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in StubConsumer.messages:
            yield SimpleNamespace(value=message)


@pytest.fixture
def stub_consumer(monkeypatch):
    StubConsumer.messages = []
    StubConsumer.fail_start = False
    StubConsumer.instances = []
    monkeypatch.setattr(realtime, "AIOKafkaConsumer", StubConsumer)
    return StubConsumer


class TestKafkaChangeStream:
    async def test_yields_validated_events_from_table_topic(self, stub_consumer):
        stub_consumer.messages = [ChangeEvent.insert("comments", comment(1)).to_message()]

        events = [event async for event in KafkaChangeStream("broker:9092").events("comments")]

        assert [e.record_id for e in events] == ["c1"]
        consumer = stub_consumer.instances[0]
        assert consumer.topics == ("crate.changes.comments",)
        assert consumer.kwargs["bootstrap_servers"] == "broker:9092"
        assert consumer.stopped

    async def test_start_failure_is_subscription_error(self, stub_consumer):
        stub_consumer.fail_start = True

        with pytest.raises(SubscriptionError):
            async for _ in KafkaChangeStream("broker:9092").events("comments"):
                pass

    async def test_start_failure_reaches_on_error(self, stub_consumer):
        stub_consumer.fail_start = True
        errors = []

        Subscription(KafkaChangeStream(), "comments", lambda e: None, on_error=errors.append).start()
        await settle()

        assert len(errors) == 1
        assert "Could not subscribe" in errors[0].message


# =============================================================================
# Event bus
# =============================================================================


class TestEventBus:
    def test_publish_reaches_subscribers(self):
        bus = EventBus()
        received = []
        bus.subscribe("notifications.read", received.append)

        delivered = bus.publish("notifications.read", {"ids": ["n1"]})

        assert delivered == 1
        assert received == [{"ids": ["n1"]}]

    def test_unsubscribe_is_idempotent(self):
        bus = EventBus()
        received = []
        unsubscribe = bus.subscribe("topic", received.append)

        unsubscribe()
        unsubscribe()
        bus.publish("topic", 1)

        assert received == []

    def test_failing_handler_does_not_block_others(self):
        bus = EventBus()
        received = []

        def broken(payload):
            raise RuntimeError("boom")

        bus.subscribe("topic", broken)
        bus.subscribe("topic", received.append)

        assert bus.publish("topic", "x") == 1
        assert received == ["x"]

    def test_publish_without_subscribers(self):
        assert EventBus().publish("nobody", None) == 0
