"""Per-agent committed workload and advisory rebalancing."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from devteam.agents.runtime import AgentRuntime
from devteam.models import ResultStatus, TaskResult, TaskType

logger = logging.getLogger(__name__)

OVERLOAD_FACTOR = 1.5
UNDERUTILIZED_FACTOR = 0.5


@dataclass
class WorkloadMetrics:
    """Load the scheduler has committed to one agent.

    ``estimated_load`` is in hours; ``average_completion_time`` in seconds.
    """

    agent_id: str
    current_tasks: int = 0
    estimated_load: float = 0.0
    average_completion_time: float = 0.0
    success_rate: float = 1.0
    specializations: Tuple[TaskType, ...] = ()
    completed: int = 0
    failed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["specializations"] = [t.value for t in self.specializations]
        return data


@dataclass(frozen=True)
class ReassignmentSuggestion:
    from_agent: str
    to_agent: str
    task_id: str
    hours: float
    reason: str


@dataclass(frozen=True)
class WorkloadReport:
    average_load: float
    overloaded: Tuple[str, ...] = ()
    underutilized: Tuple[str, ...] = ()
    suggestions: Tuple[ReassignmentSuggestion, ...] = ()

    @property
    def balanced(self) -> bool:
        return not self.overloaded and not self.underutilized

    def to_dict(self) -> Dict[str, Any]:
        return {
            "average_load": self.average_load,
            "overloaded": list(self.overloaded),
            "underutilized": list(self.underutilized),
            "suggestions": [asdict(s) for s in self.suggestions],
        }


@dataclass
class _Commitment:
    hours: float
    task_type: TaskType


class WorkloadTracker:
    """Workload table; mutated only by the distribution engine."""

    def __init__(self) -> None:
        self._metrics: Dict[str, WorkloadMetrics] = {}
        self._commitments: Dict[str, Dict[str, _Commitment]] = {}

    def get(self, agent: AgentRuntime) -> WorkloadMetrics:
        metrics = self._metrics.get(agent.id)
        if metrics is None:
            metrics = WorkloadMetrics(
                agent_id=agent.id,
                specializations=tuple(sorted(agent.capabilities.supported_task_types, key=lambda t: t.value)),
            )
            self._metrics[agent.id] = metrics
            self._commitments[agent.id] = {}
        return metrics

    def peek(self, agent_id: str) -> Optional[WorkloadMetrics]:
        return self._metrics.get(agent_id)

    def all(self) -> List[WorkloadMetrics]:
        return list(self._metrics.values())

    def commitments(self, agent_id: str) -> Dict[str, float]:
        return {tid: c.hours for tid, c in self._commitments.get(agent_id, {}).items()}

    def is_committed(self, agent_id: str, task_id: str) -> bool:
        return task_id in self._commitments.get(agent_id, {})

    # ── Updates ──────────────────────────────────────────────────────

    def record_assignment(self, agent: AgentRuntime, task_id: str, task_type: TaskType, hours: float) -> WorkloadMetrics:
        metrics = self.get(agent)
        committed = self._commitments[agent.id]
        if task_id in committed:
            return metrics
        committed[task_id] = _Commitment(hours, task_type)
        metrics.current_tasks += 1
        metrics.estimated_load += hours
        return metrics

    def release(self, agent_id: str, task_id: str) -> bool:
        commitment = self._commitments.get(agent_id, {}).pop(task_id, None)
        if commitment is None:
            return False
        metrics = self._metrics[agent_id]
        metrics.current_tasks = max(0, metrics.current_tasks - 1)
        metrics.estimated_load = max(0.0, metrics.estimated_load - commitment.hours)
        return True

    def record_outcome(self, agent_id: str, task_id: str, result: TaskResult) -> None:
        self.release(agent_id, task_id)
        metrics = self._metrics.get(agent_id)
        if metrics is None:
            return
        if result.status == ResultStatus.FAILURE:
            metrics.failed += 1
        else:
            metrics.completed += 1
            n = metrics.completed
            metrics.average_completion_time += (result.duration - metrics.average_completion_time) / n
        metrics.success_rate = metrics.completed / (metrics.completed + metrics.failed)

    def reset(self, agent_id: str) -> None:
        self._metrics.pop(agent_id, None)
        self._commitments.pop(agent_id, None)

    # ── Balancing ────────────────────────────────────────────────────

    def optimize(self, agents: Sequence[AgentRuntime]) -> WorkloadReport:
        """Flag agents above 1.5x / below 0.5x the fleet average load.

        Suggestions are advisory; nothing is migrated.
        """
        if not agents:
            return WorkloadReport(average_load=0.0)
        by_id = {a.id: a for a in agents}
        workloads = [self.get(a) for a in agents]
        average = sum(w.estimated_load for w in workloads) / len(workloads)

        overloaded = [w for w in workloads if w.estimated_load > average * OVERLOAD_FACTOR]
        underutilized = [w for w in workloads if w.estimated_load < average * UNDERUTILIZED_FACTOR]
        if overloaded or underutilized:
            logger.info(
                "Found %d overloaded and %d underutilized agents (avg load %.1fh)",
                len(overloaded), len(underutilized), average,
            )

        # Projected loads so several suggestions don't all target one agent
        projected = {w.agent_id: w.estimated_load for w in workloads}
        suggestions: List[ReassignmentSuggestion] = []
        for heavy in sorted(overloaded, key=lambda w: -w.estimated_load):
            commitments = sorted(
                self._commitments.get(heavy.agent_id, {}).items(),
                key=lambda item: item[1].hours,
            )
            for task_id, commitment in commitments:
                if projected[heavy.agent_id] <= average * OVERLOAD_FACTOR:
                    break
                targets = [
                    w for w in underutilized
                    if by_id[w.agent_id].capabilities.supports(commitment.task_type)
                ]
                if not targets:
                    continue
                target = min(targets, key=lambda w: projected[w.agent_id])
                projected[heavy.agent_id] -= commitment.hours
                projected[target.agent_id] += commitment.hours
                suggestions.append(
                    ReassignmentSuggestion(
                        from_agent=heavy.agent_id,
                        to_agent=target.agent_id,
                        task_id=task_id,
                        hours=commitment.hours,
                        reason=(
                            f"{heavy.agent_id} carries {heavy.estimated_load:.1f}h "
                            f"vs fleet average {average:.1f}h"
                        ),
                    )
                )

        return WorkloadReport(
            average_load=average,
            overloaded=tuple(w.agent_id for w in overloaded),
            underutilized=tuple(w.agent_id for w in underutilized),
            suggestions=tuple(suggestions),
        )
