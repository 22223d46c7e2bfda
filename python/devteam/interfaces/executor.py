"""Injection points for task execution and human decisions."""

from __future__ import annotations

from enum import Enum
from typing import Awaitable, Callable, List, Optional, Protocol, Union

from devteam.models import Task, TaskResult

# Plain callables are accepted; they may be sync or async.
TaskExecutor = Callable[[Task], Union[TaskResult, Awaitable[TaskResult]]]


class DecisionUrgency(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class IDecisionBroker(Protocol):
    """Routes questions that need a human answer."""

    async def request_decision(
        self,
        task_id: str,
        agent_id: str,
        decision_type: str,
        question: str,
        options: Optional[List[str]] = None,
        urgency: DecisionUrgency = DecisionUrgency.MEDIUM,
        timeout: Optional[float] = None,
    ) -> str:
        """Register a pending decision and return its id."""
        ...

    async def wait_for_decision(self, decision_id: str, timeout: Optional[float] = None) -> str:
        """Block until answered. Raises ``DecisionTimeoutError`` past *timeout*."""
        ...
