"""
Domain Event Service.

Engine operations buffer events while their unit of work runs and hand them
here after commit. Events go to in-process listeners first, then to the
Redis pub/sub channel. Publishing never fails the business operation.
"""

import enum
import inspect
import json
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List

from redis.exceptions import RedisError

from fuel_dispatch.app.core.config import settings
from fuel_dispatch.app.core.redis_client import get_redis
from fuel_dispatch.app.core.reliability import CircuitOpenError, events_circuit_breaker
from fuel_dispatch.app.db.session import utcnow

logger = logging.getLogger(__name__)


class EventType(str, enum.Enum):
    ASSIGNMENT_CREATED = "ASSIGNMENT_CREATED"
    DISCHARGE_RECORDED = "DISCHARGE_RECORDED"
    DISCHARGE_REVERSED = "DISCHARGE_REVERSED"
    ASSIGNMENT_COMPLETED = "ASSIGNMENT_COMPLETED"
    ASSIGNMENT_EXPIRED = "ASSIGNMENT_EXPIRED"
    ASSIGNMENT_REOPENED = "ASSIGNMENT_REOPENED"
    TRUCK_STATE_CHANGED = "TRUCK_STATE_CHANGED"
    METER_DISCREPANCY = "METER_DISCREPANCY"


@dataclass
class DomainEvent:
    event_type: EventType
    payload: Dict[str, Any]
    occurred_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "payload": self.payload,
            "occurred_at": self.occurred_at.isoformat(),
        }


EventHandler = Callable[[DomainEvent], Any]

_listeners: Dict[EventType, List[EventHandler]] = defaultdict(list)


def subscribe(event_type: EventType, handler: EventHandler) -> None:
    """Register an in-process listener. Handlers may be sync or async."""
    _listeners[event_type].append(handler)


def unsubscribe(event_type: EventType, handler: EventHandler) -> None:
    if handler in _listeners[event_type]:
        _listeners[event_type].remove(handler)


def clear_listeners() -> None:
    _listeners.clear()


class EventService:

    @staticmethod
    async def publish_all(events: List[DomainEvent]) -> None:
        """Deliver committed events in order."""
        for event in events:
            await EventService.publish(event)

    @staticmethod
    async def publish(event: DomainEvent) -> None:
        for handler in list(_listeners.get(event.event_type, ())):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Event listener failed for %s", event.event_type.value)

        message = json.dumps(event.to_dict(), default=str)
        try:
            redis = await get_redis()
            await events_circuit_breaker.call(redis.publish, settings.events_channel, message)
        except CircuitOpenError:
            logger.warning("Event bus circuit open, dropped %s", event.event_type.value)
        except (RedisError, OSError) as e:
            logger.warning("Failed to publish %s: %s", event.event_type.value, e)
