"""In-memory task store and message log (default when no database is configured)."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Set

from devteam.interfaces.storage import TaskFilter
from devteam.models import AgentMessage, Task

logger = logging.getLogger(__name__)


class InMemoryTaskStore:
    """Dict-backed ``ITaskStore``. Tasks are copied in and out."""

    def __init__(self) -> None:
        self._tasks: Dict[str, Task] = {}

    async def create_task(self, task: Task) -> Task:
        if task.id in self._tasks:
            raise ValueError(f"Task {task.id!r} already exists")
        self._tasks[task.id] = task.copy()
        return task.copy()

    async def update_task(self, task_id: str, changes: Mapping[str, Any]) -> Optional[Task]:
        current = self._tasks.get(task_id)
        if current is None:
            return None
        updated = current.apply(changes)
        self._tasks[task_id] = updated
        return updated.copy()

    async def get_task(self, task_id: str) -> Optional[Task]:
        task = self._tasks.get(task_id)
        return task.copy() if task else None

    async def get_tasks(self, task_filter: Optional[TaskFilter] = None) -> List[Task]:
        task_filter = task_filter or TaskFilter()
        tasks = [t.copy() for t in self._tasks.values() if task_filter.matches(t)]
        tasks.sort(key=lambda t: t.created_at)
        return tasks

    async def delete_task(self, task_id: str) -> bool:
        return self._tasks.pop(task_id, None) is not None


class InMemoryMessageLog:
    """List-backed ``IMessageLog``."""

    def __init__(self) -> None:
        self._messages: Dict[str, AgentMessage] = {}
        self._processed: Set[str] = set()

    async def save_message(self, message: AgentMessage) -> None:
        self._messages[message.id] = message

    async def get_unprocessed_messages(self, agent_id: Optional[str] = None) -> List[AgentMessage]:
        pending = [
            m for m in self._messages.values()
            if m.id not in self._processed
            and (agent_id is None or m.recipient is None or m.recipient == agent_id)
        ]
        pending.sort(key=lambda m: m.timestamp)
        return pending

    async def mark_message_processed(self, message_id: str) -> None:
        if message_id in self._messages:
            self._processed.add(message_id)

    def stats(self) -> Dict[str, int]:
        return {
            "total": len(self._messages),
            "processed": len(self._processed),
            "pending": len(self._messages) - len(self._processed),
        }
