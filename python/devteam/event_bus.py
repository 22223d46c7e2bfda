"""In-process event bus for coordinator, monitor and decision events.

The API's SSE stream is the main external subscriber; everything else
publishes. Satisfies ``devteam.interfaces.event_bus.IEventBus``.
"""

import inspect
import logging
import uuid
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from devteam.interfaces.event_bus import EventHandler, EventType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Subscription:
    id: str
    event_type: EventType
    handler: EventHandler


class InMemoryEventBus:
    """Delivers each event to its subscribers in subscription order.

    A failing handler is logged and skipped; the publisher never sees it.
    """

    def __init__(self) -> None:
        self._subscriptions: Dict[str, _Subscription] = {}
        self._counts: Counter = Counter()

    @property
    def published(self) -> int:
        return sum(self._counts.values())

    def _handlers_for(self, event_type: EventType) -> List[_Subscription]:
        return [s for s in self._subscriptions.values() if s.event_type == event_type]

    async def publish(
        self,
        event_type: EventType,
        data: Dict[str, Any],
        source: Optional[str] = None,
    ) -> None:
        self._counts[event_type] += 1
        payload = {**data, "_source": source} if source else data
        for subscription in self._handlers_for(event_type):
            try:
                outcome = subscription.handler(payload)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception(
                    "Subscriber %s failed on %s", subscription.id, event_type.value
                )

    async def subscribe(self, event_type: EventType, handler: EventHandler) -> str:
        subscription = _Subscription(uuid.uuid4().hex[:12], EventType(event_type), handler)
        self._subscriptions[subscription.id] = subscription
        logger.debug("Subscription %s on %s", subscription.id, subscription.event_type.value)
        return subscription.id

    async def unsubscribe(self, subscription_id: str) -> None:
        self._subscriptions.pop(subscription_id, None)

    def subscriber_count(self, event_type: EventType) -> int:
        return len(self._handlers_for(event_type))

    def stats(self) -> Dict[str, Any]:
        return {
            "published": {t.value: n for t, n in self._counts.items()},
            "subscriptions": len(self._subscriptions),
        }
