"""
Realtime delta listener

Row changes (insert/update/delete) are published on a change stream, one
topic per table. A ``Subscription`` consumes one table, filters events with
a predicate and hands each match to a delta policy chosen by the caller:
count new feed items, merge items into a list, refetch, or bump an unread
counter. A stream that fails or ends, and a handler that raises, are reported
through ``on_error`` and the subscription stops; resubscribing is up to the
caller.
"""
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field, fields, asdict, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
    Type,
    TYPE_CHECKING,
    get_args,
    get_type_hints,
)
import asyncio
import inspect
import json
import logging

from aiokafka import AIOKafkaConsumer

from .config import settings
from .exceptions import SubscriptionError
from .schemas import ChangeMessage

if TYPE_CHECKING:
    from .lists import PagedList

logger = logging.getLogger(__name__)


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


def to_record(entity: Any) -> Dict[str, Any]:
    """Flatten a domain dataclass into a JSON-safe dict"""
    data = asdict(entity) if is_dataclass(entity) else dict(entity)
    record = {}
    for key, value in data.items():
        if isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, Enum):
            value = value.value
        record[key] = value
    return record


def from_record(model: Type[Any], record: Dict[str, Any]) -> Any:
    """Rebuild a domain dataclass from a change record; unknown keys are ignored"""
    hints = get_type_hints(model)
    values = {}
    for model_field in fields(model):
        if model_field.name not in record:
            continue
        value = record[model_field.name]
        target = hints[model_field.name]
        args = [arg for arg in get_args(target) if arg is not type(None)]
        if args:
            target = args[0]
        if value is not None and target is datetime and isinstance(value, str):
            value = datetime.fromisoformat(value)
        elif value is not None and isinstance(target, type) and issubclass(target, Enum):
            value = target(value)
        values[model_field.name] = value
    return model(**values)


def record_factory(model: Type[Any]) -> Callable[[Dict[str, Any]], Any]:
    return lambda record: from_record(model, record)


@dataclass
class ChangeEvent:
    """A single row change"""
    type: ChangeType
    table: str
    record: Dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def insert(cls, table: str, entity: Any) -> "ChangeEvent":
        return cls(ChangeType.INSERT, table, to_record(entity))

    @classmethod
    def update(cls, table: str, entity: Any) -> "ChangeEvent":
        return cls(ChangeType.UPDATE, table, to_record(entity))

    @classmethod
    def delete(cls, table: str, entity: Any) -> "ChangeEvent":
        return cls(ChangeType.DELETE, table, to_record(entity))

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "ChangeEvent":
        """Validate a raw stream message and build the event"""
        parsed = ChangeMessage.model_validate(message)
        return cls(
            type=ChangeType(parsed.type),
            table=parsed.table,
            record=parsed.record,
            timestamp=parsed.timestamp,
        )

    def to_message(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "table": self.table,
            "record": self.record,
            "timestamp": self.timestamp.isoformat(),
        }

    @property
    def record_id(self) -> Optional[str]:
        return self.record.get("id")

    def datetime_field(self, name: str) -> Optional[datetime]:
        value = self.record.get(name)
        if value is None or isinstance(value, datetime):
            return value
        return datetime.fromisoformat(value)


def topic_for(table: str) -> str:
    return f"{settings.KAFKA_CHANGES_TOPIC_PREFIX}.{table}"


class ChangePublisher(ABC):
    """Write side of the change stream"""

    @abstractmethod
    async def publish_change(self, event: ChangeEvent) -> None:
        pass


class ChangeStream(ABC):
    """Read side of the change stream"""

    @abstractmethod
    def events(self, table: str) -> AsyncIterator[ChangeEvent]:
        """Iterate over changes to ``table`` from now on"""
        pass


class KafkaChangeStream(ChangeStream):
    """Change stream backed by one Kafka topic per table"""

    def __init__(self, bootstrap_servers: Optional[str] = None):
        self.bootstrap_servers = bootstrap_servers or settings.KAFKA_BOOTSTRAP_SERVERS

    async def events(self, table: str) -> AsyncIterator[ChangeEvent]:
        # No group id: every subscriber sees every change
        consumer = AIOKafkaConsumer(
            topic_for(table),
            bootstrap_servers=self.bootstrap_servers,
            value_deserializer=lambda m: json.loads(m.decode("utf-8")),
            auto_offset_reset="latest",
            enable_auto_commit=True,
        )
        try:
            await consumer.start()
        except Exception as e:
            raise SubscriptionError(f"Could not subscribe to {table}: {e}") from e

        logger.info(f"Listening for changes on {topic_for(table)}")
        try:
            async for message in consumer:
                yield ChangeEvent.from_message(message.value)
        finally:
            await consumer.stop()


# Predicates

Predicate = Callable[[ChangeEvent], bool]


def of_type(*types: ChangeType) -> Predicate:
    return lambda event: event.type in types


def field_equals(name: str, value: Any) -> Predicate:
    return lambda event: event.record.get(name) == value


def field_in(name: str, values: Sequence[Any]) -> Predicate:
    allowed = set(values)
    return lambda event: event.record.get(name) in allowed


def newer_than(paged_list: "PagedList", sort_field: str = "created_at") -> Predicate:
    """Matches rows newer than the newest item the list currently holds"""

    def predicate(event: ChangeEvent) -> bool:
        newest = paged_list.newest_sort_key
        if newest is None:
            return True
        sort_key = event.datetime_field(sort_field)
        return sort_key is not None and sort_key > newest

    return predicate


def all_of(*predicates: Predicate) -> Predicate:
    return lambda event: all(predicate(event) for predicate in predicates)


# Delta policies

class CountNewItems:
    """Feed top-ups: only count what arrived, the user refreshes to see it"""

    def __init__(self, paged_list: "PagedList"):
        self.paged_list = paged_list

    def __call__(self, event: ChangeEvent) -> None:
        if event.type == ChangeType.INSERT:
            self.paged_list.note_new_items(1)


class MergeItems:
    """Apply inserts and updates in place, drop deleted rows"""

    def __init__(self, paged_list: "PagedList", factory: Callable[[Dict[str, Any]], Any]):
        self.paged_list = paged_list
        self.factory = factory

    def __call__(self, event: ChangeEvent) -> None:
        if event.type == ChangeType.DELETE:
            self.paged_list.remove(event.record_id)
        elif event.type == ChangeType.UPDATE and self.paged_list.find(event.record_id) is None:
            # Updates to rows outside the loaded window are not ours to show
            return
        else:
            self.paged_list.upsert([self.factory(event.record)])


class RefetchOnChange:
    """Reload the first page whenever something matching changes"""

    def __init__(self, paged_list: "PagedList"):
        self.paged_list = paged_list

    async def __call__(self, event: ChangeEvent) -> None:
        await self.paged_list.refresh()


class IncrementCounter:
    """Bump a counter for every unread insert (notification badge)"""

    def __init__(self, increment: Callable[[], None]):
        self.increment = increment

    def __call__(self, event: ChangeEvent) -> None:
        if event.type == ChangeType.INSERT and not event.record.get("read", False):
            self.increment()


EventHandler = Callable[[ChangeEvent], Optional[Awaitable[None]]]
ErrorHandler = Callable[[SubscriptionError], None]


class Subscription:
    """One running listener on a change stream"""

    def __init__(
        self,
        stream: ChangeStream,
        table: str,
        on_event: EventHandler,
        predicate: Optional[Predicate] = None,
        on_error: Optional[ErrorHandler] = None,
        name: Optional[str] = None,
    ):
        self.stream = stream
        self.table = table
        self.name = name or table
        self._on_event = on_event
        self._predicate = predicate
        self._on_error = on_error
        self._task: Optional[asyncio.Task] = None
        self._unsubscribed = False
        self.error: Optional[SubscriptionError] = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def unsubscribed(self) -> bool:
        return self._unsubscribed

    def start(self) -> "Subscription":
        if self._unsubscribed:
            raise SubscriptionError(f"Subscription {self.name} was closed; create a new one")
        if not self.active:
            self.error = None
            self._task = asyncio.create_task(self._run(), name=f"subscription:{self.name}")
        return self

    async def _run(self):
        events = self.stream.events(self.table)
        try:
            async for event in events:
                if self._predicate is not None and not self._predicate(event):
                    continue
                result = self._on_event(event)
                if inspect.isawaitable(result):
                    await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._fail(e)
        else:
            # A clean end still leaves the listener deaf until it resubscribes
            self._fail(SubscriptionError(f"Change stream for {self.name} ended"))
        finally:
            aclose = getattr(events, "aclose", None)
            if aclose is not None:
                try:
                    await aclose()
                except Exception as e:
                    logger.warning(f"Error closing change stream for {self.name}: {e}")

    def _fail(self, exc: Exception):
        if isinstance(exc, SubscriptionError):
            error = exc
        else:
            error = SubscriptionError(f"Subscription {self.name} failed: {exc}")
            error.__cause__ = exc
        self.error = error
        logger.error(f"Subscription {self.name} torn down: {exc}")
        if self._on_error is not None:
            self._on_error(error)

    async def unsubscribe(self):
        """Stop listening; calling it again is a no-op"""
        if self._unsubscribed:
            return
        self._unsubscribed = True

        task = self._task
        if task is None or task.done():
            return
        task.cancel()
        if task is asyncio.current_task():
            return
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug(f"Unsubscribed from {self.name}")


class EventBus:
    """In-process publish/subscribe for signals between view models"""

    def __init__(self):
        self._handlers: Dict[str, List[Callable[[Any], None]]] = defaultdict(list)

    def subscribe(self, topic: str, handler: Callable[[Any], None]) -> Callable[[], None]:
        """Register a handler; returns an idempotent unsubscribe function"""
        self._handlers[topic].append(handler)

        def unsubscribe():
            handlers = self._handlers.get(topic, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def publish(self, topic: str, payload: Any = None) -> int:
        """Deliver payload to every handler of topic; returns the number reached"""
        delivered = 0
        for handler in list(self._handlers.get(topic, [])):
            try:
                handler(payload)
                delivered += 1
            except Exception as e:
                logger.error(f"Handler for {topic} failed: {e}")
        return delivered
