"""In-process human decision broker.

Decisions are registered with :meth:`HumanDecisionBroker.request_decision`
and answered out of band (API, CLI, tests) with :meth:`respond`.  Waiters
block on an ``asyncio.Future`` per decision; a decision left unanswered
past its timeout is marked EXPIRED and the waiter gets
``DecisionTimeoutError``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from devteam.exceptions import (
    DecisionAlreadyRespondedError,
    DecisionNotFoundError,
    DecisionTimeoutError,
)
from devteam.interfaces.event_bus import EventType, IEventBus
from devteam.interfaces.executor import DecisionUrgency
from devteam.models import new_id, utcnow

logger = logging.getLogger(__name__)


class DecisionStatus(str, Enum):
    PENDING = "PENDING"
    RESPONDED = "RESPONDED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


@dataclass
class HumanDecision:
    id: str
    task_id: str
    agent_id: str
    decision_type: str
    question: str
    options: List[str] = field(default_factory=list)
    urgency: DecisionUrgency = DecisionUrgency.MEDIUM
    timeout: Optional[float] = None  # seconds
    status: DecisionStatus = DecisionStatus.PENDING
    created_at: datetime = field(default_factory=utcnow)
    response: Optional[str] = None
    responder: Optional[str] = None
    reasoning: Optional[str] = None
    responded_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "agent_id": self.agent_id,
            "decision_type": self.decision_type,
            "question": self.question,
            "options": list(self.options),
            "urgency": self.urgency.value,
            "timeout": self.timeout,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "response": self.response,
            "responder": self.responder,
            "reasoning": self.reasoning,
            "responded_at": self.responded_at.isoformat() if self.responded_at else None,
        }


class HumanDecisionBroker:
    """``IDecisionBroker`` keeping pending decisions in memory."""

    def __init__(self, default_timeout: Optional[float] = None, event_bus: Optional[IEventBus] = None) -> None:
        self.default_timeout = default_timeout
        self._event_bus = event_bus
        self._decisions: Dict[str, HumanDecision] = {}
        self._waiters: Dict[str, asyncio.Future] = {}

    def _require(self, decision_id: str) -> HumanDecision:
        decision = self._decisions.get(decision_id)
        if decision is None:
            raise DecisionNotFoundError(
                f"Decision {decision_id} not found",
                details={"decision_id": decision_id},
            )
        return decision

    def _future(self, decision_id: str) -> asyncio.Future:
        future = self._waiters.get(decision_id)
        if future is None:
            future = asyncio.get_running_loop().create_future()
            self._waiters[decision_id] = future
        return future

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
        decision = HumanDecision(
            id=new_id(),
            task_id=task_id,
            agent_id=agent_id,
            decision_type=decision_type,
            question=question,
            options=list(options or []),
            urgency=DecisionUrgency(urgency),
            timeout=timeout if timeout is not None else self.default_timeout,
        )
        self._decisions[decision.id] = decision
        self._future(decision.id)
        logger.info("Decision %s requested by %s for task %s: %s", decision.id, agent_id, task_id, question)
        if self._event_bus:
            await self._event_bus.publish(EventType.DECISION_REQUESTED, decision.to_dict(), source="decisions")
        return decision.id

    async def respond(
        self,
        decision_id: str,
        response: str,
        responder: str = "human",
        reasoning: Optional[str] = None,
    ) -> HumanDecision:
        decision = self._require(decision_id)
        if decision.status != DecisionStatus.PENDING:
            raise DecisionAlreadyRespondedError(
                f"Decision {decision_id} is already {decision.status.value}",
                details={"decision_id": decision_id, "status": decision.status.value},
            )
        decision.status = DecisionStatus.RESPONDED
        decision.response = response
        decision.responder = responder
        decision.reasoning = reasoning
        decision.responded_at = utcnow()

        future = self._waiters.get(decision_id)
        if future is not None and not future.done():
            future.set_result(response)
        logger.info("Decision %s answered by %s: %s", decision_id, responder, response)
        if self._event_bus:
            await self._event_bus.publish(EventType.DECISION_RESOLVED, decision.to_dict(), source="decisions")
        return decision

    async def cancel(self, decision_id: str, reason: Optional[str] = None) -> None:
        decision = self._require(decision_id)
        if decision.status != DecisionStatus.PENDING:
            return
        decision.status = DecisionStatus.CANCELLED
        decision.reasoning = reason
        future = self._waiters.get(decision_id)
        if future is not None and not future.done():
            future.set_result(None)
        logger.info("Decision %s cancelled: %s", decision_id, reason or "no reason given")

    async def wait_for_decision(self, decision_id: str, timeout: Optional[float] = None) -> str:
        decision = self._require(decision_id)
        if decision.status == DecisionStatus.RESPONDED:
            return decision.response or ""
        if decision.status == DecisionStatus.EXPIRED:
            raise DecisionTimeoutError(
                f"Decision timeout: {decision_id}",
                details={"decision_id": decision_id, "task_id": decision.task_id},
            )
        timeout = timeout if timeout is not None else decision.timeout
        try:
            response = await asyncio.wait_for(asyncio.shield(self._future(decision_id)), timeout)
        except asyncio.TimeoutError:
            if decision.status == DecisionStatus.PENDING:
                decision.status = DecisionStatus.EXPIRED
            logger.warning("Decision %s for task %s timed out after %ss", decision_id, decision.task_id, timeout)
            raise DecisionTimeoutError(
                f"Decision timeout: {decision_id}",
                details={"decision_id": decision_id, "task_id": decision.task_id, "timeout": timeout},
            ) from None
        if decision.status == DecisionStatus.CANCELLED:
            raise DecisionAlreadyRespondedError(
                f"Decision {decision_id} was cancelled",
                details={"decision_id": decision_id, "status": decision.status.value},
            )
        return response

    def get_decision(self, decision_id: str) -> HumanDecision:
        return self._require(decision_id)

    def pending(self) -> List[HumanDecision]:
        return [d for d in self._decisions.values() if d.status == DecisionStatus.PENDING]
