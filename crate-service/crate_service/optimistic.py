"""
Optimistic mutations with snapshot/restore
"""
from typing import Any, Awaitable, Callable, Dict, Set, Tuple, TypeVar
import asyncio
import logging

from .exceptions import OperationInFlightError

logger = logging.getLogger(__name__)

S = TypeVar("S")


def clamp_counter(value: int, delta: int) -> int:
    """Apply delta to a counter without going below zero"""
    return max(0, value + delta)


def counter_step(value: int, delta: int) -> Tuple[int, int]:
    """
    Apply delta with the zero floor

    Returns the new value and the delta that actually landed, so a rollback
    can undo exactly this step on a counter other mutations also move.
    """
    new_value = clamp_counter(value, delta)
    return new_value, new_value - value


class OptimisticCoordinator:
    """
    Applies local changes before the remote write and restores them on failure

    A mutation is identified by (entity id, action). Submitting one that is
    already running raises ``OperationInFlightError``. Different actions on the
    same entity run one after another, so each snapshot is taken after the
    previous mutation has settled.
    """

    def __init__(self):
        self._in_flight: Set[Tuple[str, str]] = set()
        self._locks: Dict[str, asyncio.Lock] = {}

    def is_in_flight(self, entity_id: str, action: str) -> bool:
        return (entity_id, action) in self._in_flight

    async def run(
        self,
        entity_id: str,
        action: str,
        snapshot: Callable[[], S],
        apply: Callable[[], None],
        restore: Callable[[S], None],
        remote: Callable[[], Awaitable[Any]],
    ) -> Any:
        key = (entity_id, action)
        if key in self._in_flight:
            raise OperationInFlightError(f"{action} already in progress for {entity_id}")

        self._in_flight.add(key)
        lock = self._locks.setdefault(entity_id, asyncio.Lock())
        try:
            async with lock:
                saved = snapshot()
                apply()
                try:
                    return await remote()
                except Exception as e:
                    restore(saved)
                    logger.warning(f"{action} on {entity_id} failed, local state restored: {e}")
                    raise
        finally:
            self._in_flight.discard(key)
            if not lock.locked() and not any(k[0] == entity_id for k in self._in_flight):
                self._locks.pop(entity_id, None)
