"""Event contract between the core services and their observers.

The coordinator, progress monitor and decision broker publish here; the
API streams and tests subscribe. Payloads are plain JSON-ready dicts.
"""

from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Union

EventHandler = Callable[[Dict[str, Any]], Union[Awaitable[None], None]]


class EventType(str, Enum):
    # Tasks
    TASK_CREATED = "task_created"
    TASK_ASSIGNED = "task_assigned"
    TASK_STATUS_CHANGED = "task_status_changed"
    TASK_COMPLETED = "task_completed"
    TASK_FAILED = "task_failed"
    QUALITY_GATE_EVALUATED = "quality_gate_evaluated"
    # Fleet
    AGENT_REGISTERED = "agent_registered"
    AGENT_UNREGISTERED = "agent_unregistered"
    # Monitoring
    PROGRESS_SNAPSHOT = "progress_snapshot"
    PROGRESS_ALERT = "progress_alert"
    # Human decisions
    DECISION_REQUESTED = "decision_requested"
    DECISION_RESOLVED = "decision_resolved"
    ERROR_OCCURRED = "error_occurred"


class IEventBus(Protocol):
    """Publish/subscribe by :class:`EventType`.

    ``source`` is stamped onto the delivered payload as ``_source``.
    Handlers may be plain functions or coroutines.
    """

    async def publish(
        self,
        event_type: EventType,
        data: Dict[str, Any],
        source: Optional[str] = None,
    ) -> None:
        ...

    async def subscribe(self, event_type: EventType, handler: EventHandler) -> str:
        """Register *handler*; returns the id to pass to ``unsubscribe``."""
        ...

    async def unsubscribe(self, subscription_id: str) -> None:
        ...
