"""Assignment strategies, selected by name at distribution time.

Every strategy maps ``(task, agents, workloads)`` to a list of
:class:`TaskAssignment` sorted by descending confidence.  An empty list
means no agent clears the strategy's threshold.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Protocol, Sequence, Tuple

from devteam.agents.runtime import AgentRuntime
from devteam.models import AgentStatus, SkillLevel, Task, TaskPriority
from devteam.scheduling.workload import WorkloadMetrics

SKILL_BONUS: Dict[SkillLevel, float] = {
    SkillLevel.JUNIOR: 0.1,
    SkillLevel.MID: 0.2,
    SkillLevel.SENIOR: 0.3,
    SkillLevel.EXPERT: 0.4,
}

PRIORITY_BONUS: Dict[TaskPriority, float] = {
    TaskPriority.CRITICAL: 0.1,
    TaskPriority.HIGH: 0.05,
}

# Multiplier on an agent's per-type hour estimate.
DURATION_MULTIPLIER: Dict[TaskPriority, float] = {
    TaskPriority.CRITICAL: 0.8,
    TaskPriority.HIGH: 0.9,
    TaskPriority.MEDIUM: 1.0,
    TaskPriority.LOW: 1.2,
}

INTELLIGENT_THRESHOLD = 0.3
CAPABILITY_THRESHOLD = 0.5
ROUND_ROBIN_CONFIDENCE = 0.7
MIN_LOAD_CONFIDENCE = 0.1

# Statuses in which an agent takes new work.
_ACCEPTING = (AgentStatus.READY, AgentStatus.BUSY)


@dataclass(frozen=True)
class TaskAssignment:
    """Ranked proposal; consumed immediately, never persisted."""

    agent_id: str
    confidence: float
    estimated_duration: float
    prerequisites: Tuple[str, ...] = ()
    reasoning: str = ""

    def to_dict(self) -> Dict[str, object]:
        return {
            "agent_id": self.agent_id,
            "confidence": round(self.confidence, 4),
            "estimated_duration": self.estimated_duration,
            "prerequisites": list(self.prerequisites),
            "reasoning": self.reasoning,
        }


# ── Scoring helpers ──────────────────────────────────────────────────


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def capability_score(agent: AgentRuntime, task: Task) -> float:
    """0.5 base + skill bonus, +0.1 when task complexity matches a skill extreme."""
    skill = agent.capabilities.skill_level
    score = 0.5 + SKILL_BONUS[skill]
    complexity = str(task.metadata.get("complexity", "")).lower()
    if (complexity == "high" and skill == SkillLevel.EXPERT) or (
        complexity == "low" and skill == SkillLevel.JUNIOR
    ):
        score += 0.1
    return min(score, 1.0)


def estimate_duration(agent: AgentRuntime, task: Task) -> float:
    """Hours the agent is expected to take for *task*."""
    return agent.capabilities.duration_for(task.type) * DURATION_MULTIPLIER[task.priority]


def has_capacity(agent: AgentRuntime, task: Task, workload: WorkloadMetrics) -> bool:
    """Agent READY or BUSY, type supported, live and committed slots free."""
    return (
        agent.status in _ACCEPTING
        and agent.can_handle_task(task)
        and workload.current_tasks < agent.capabilities.max_concurrent_tasks
    )


# ── Strategies ───────────────────────────────────────────────────────


class DistributionStrategy(Protocol):
    name: str

    def evaluate(
        self,
        task: Task,
        agents: Sequence[AgentRuntime],
        workloads: Mapping[str, WorkloadMetrics],
        prerequisites: Tuple[str, ...] = (),
    ) -> List[TaskAssignment]:
        ...


class _ScoringStrategy:
    """Scores each eligible agent; subclasses supply ``score`` and ``threshold``."""

    name = ""
    threshold = 0.0

    def score(self, agent: AgentRuntime, task: Task, workload: WorkloadMetrics) -> Tuple[float, str]:
        raise NotImplementedError

    def evaluate(
        self,
        task: Task,
        agents: Sequence[AgentRuntime],
        workloads: Mapping[str, WorkloadMetrics],
        prerequisites: Tuple[str, ...] = (),
    ) -> List[TaskAssignment]:
        ranked: List[TaskAssignment] = []
        for agent in agents:
            workload = workloads[agent.id]
            if not has_capacity(agent, task, workload):
                continue
            confidence, reasoning = self.score(agent, task, workload)
            confidence = clamp(confidence)
            if confidence <= self.threshold:
                continue
            ranked.append(
                TaskAssignment(
                    agent_id=agent.id,
                    confidence=confidence,
                    estimated_duration=estimate_duration(agent, task),
                    prerequisites=prerequisites,
                    reasoning=reasoning,
                )
            )
        ranked.sort(key=lambda a: a.confidence, reverse=True)
        return ranked


class IntelligentStrategy(_ScoringStrategy):
    """Capability, load, track record and priority combined."""

    name = "intelligent"
    threshold = INTELLIGENT_THRESHOLD

    def score(self, agent, task, workload):
        cap = capability_score(agent, task)
        availability = max(0.0, 1 - workload.estimated_load / 100)
        confidence = (
            0.4 * cap
            + 0.3 * availability
            + 0.2 * workload.success_rate
            + PRIORITY_BONUS.get(task.priority, 0.0)
        )
        reasoning = (
            f"capability {cap:.2f}, load {workload.estimated_load:.1f}h, "
            f"success rate {workload.success_rate:.0%}"
        )
        return confidence, reasoning


class CapabilityBasedStrategy(_ScoringStrategy):
    name = "capability"
    threshold = CAPABILITY_THRESHOLD

    def score(self, agent, task, workload):
        cap = capability_score(agent, task)
        return cap, f"capability {cap:.2f} ({agent.capabilities.skill_level.value})"


class LoadBalancedStrategy(_ScoringStrategy):
    name = "load-balanced"

    def score(self, agent, task, workload):
        confidence = max(MIN_LOAD_CONFIDENCE, 1 - workload.estimated_load / 100)
        return confidence, f"committed load {workload.estimated_load:.1f}h"


class RoundRobinStrategy:
    """First capability-matching READY agent, scanning from after the last pick."""

    name = "round-robin"

    def __init__(self) -> None:
        self._last_agent_id = None

    def evaluate(
        self,
        task: Task,
        agents: Sequence[AgentRuntime],
        workloads: Mapping[str, WorkloadMetrics],
        prerequisites: Tuple[str, ...] = (),
    ) -> List[TaskAssignment]:
        ordered = list(agents)
        ids = [a.id for a in ordered]
        if self._last_agent_id in ids:
            start = ids.index(self._last_agent_id) + 1
            ordered = ordered[start:] + ordered[:start]
        for agent in ordered:
            if agent.status == AgentStatus.READY and has_capacity(agent, task, workloads[agent.id]):
                self._last_agent_id = agent.id
                return [
                    TaskAssignment(
                        agent_id=agent.id,
                        confidence=ROUND_ROBIN_CONFIDENCE,
                        estimated_duration=estimate_duration(agent, task),
                        prerequisites=prerequisites,
                        reasoning="next ready agent in rotation",
                    )
                ]
        return []


STRATEGIES: Dict[str, Callable[[], DistributionStrategy]] = {
    IntelligentStrategy.name: IntelligentStrategy,
    RoundRobinStrategy.name: RoundRobinStrategy,
    CapabilityBasedStrategy.name: CapabilityBasedStrategy,
    LoadBalancedStrategy.name: LoadBalancedStrategy,
}
