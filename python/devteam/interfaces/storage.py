"""Storage collaborators consumed by the coordinator.

Any backend satisfying these protocols (structural subtyping) can be
plugged into :class:`devteam.orchestration.coordinator.Coordinator`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Protocol

from devteam.models import AgentMessage, Task, TaskPriority, TaskStatus, TaskType


@dataclass(frozen=True)
class TaskFilter:
    """Equality filter for :meth:`ITaskStore.get_tasks`; ``None`` fields match anything."""

    status: Optional[TaskStatus] = None
    assigned_to: Optional[str] = None
    type: Optional[TaskType] = None
    priority: Optional[TaskPriority] = None

    def matches(self, task: Task) -> bool:
        return (
            (self.status is None or task.status == self.status)
            and (self.assigned_to is None or task.assigned_to == self.assigned_to)
            and (self.type is None or task.type == self.type)
            and (self.priority is None or task.priority == self.priority)
        )


class ITaskStore(Protocol):
    """Persistent task collection."""

    async def create_task(self, task: Task) -> Task:
        ...

    async def update_task(self, task_id: str, changes: Mapping[str, Any]) -> Optional[Task]:
        """Apply a partial update. Returns the updated task or ``None`` if unknown."""
        ...

    async def get_task(self, task_id: str) -> Optional[Task]:
        ...

    async def get_tasks(self, task_filter: Optional[TaskFilter] = None) -> List[Task]:
        ...

    async def delete_task(self, task_id: str) -> bool:
        ...


class IMessageLog(Protocol):
    """Durable log of bus messages with a processed flag."""

    async def save_message(self, message: AgentMessage) -> None:
        ...

    async def get_unprocessed_messages(self, agent_id: Optional[str] = None) -> List[AgentMessage]:
        """Unprocessed messages addressed to *agent_id* plus broadcasts.

        With ``agent_id=None`` every unprocessed message is returned.
        """
        ...

    async def mark_message_processed(self, message_id: str) -> None:
        ...

    def stats(self) -> Dict[str, int]:
        ...
