"""Task distribution engine.

Combines the scheduling pieces behind one facade:

- strategy ranking and selection (``distribute_task``)
- the dependency graph and its critical path (``analyze_dependencies``)
- quality gates (``evaluate_quality_gates``)
- committed workload and advisory rebalancing (``optimize_workload_distribution``)

The engine never talks to storage or the message bus; the coordinator
feeds it tasks and agents and commits the resulting assignments.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from devteam.agents.runtime import AgentRuntime
from devteam.enhanced_logging import track_performance
from devteam.exceptions import StrategyNotFoundError
from devteam.models import Task, TaskResult, TaskStatus
from devteam.scheduling.dependency_graph import DependencyGraph, DependencyNode, WeightedPath
from devteam.scheduling.quality_gates import QualityGateEvaluator, QualityGateResult
from devteam.scheduling.strategies import STRATEGIES, DistributionStrategy, TaskAssignment, estimate_duration
from devteam.scheduling.workload import WorkloadMetrics, WorkloadReport, WorkloadTracker

logger = logging.getLogger(__name__)

DEFAULT_STRATEGY = "intelligent"


@dataclass(frozen=True)
class TaskProgressAnalysis:
    """Point-in-time view of one task against its dependencies."""

    task_id: str
    current_progress: float
    estimated_remaining_hours: float
    blockers: Tuple[str, ...] = ()
    dependency_status: Mapping[str, str] = field(default_factory=dict)
    recommendations: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "current_progress": self.current_progress,
            "estimated_remaining_hours": self.estimated_remaining_hours,
            "blockers": list(self.blockers),
            "dependency_status": dict(self.dependency_status),
            "recommendations": list(self.recommendations),
        }


class TaskDistributionEngine:
    """Picks the best agent for a task and maintains the project's dependency structure.

    Not thread-safe; the workload table and graph are mutated only from the
    coordinator's event loop.
    """

    def __init__(
        self,
        quality_gates: Optional[QualityGateEvaluator] = None,
        strategies: Optional[Mapping[str, DistributionStrategy]] = None,
    ) -> None:
        self.graph = DependencyGraph()
        self.workloads = WorkloadTracker()
        self.quality_gates = quality_gates or QualityGateEvaluator()
        self._strategies: Dict[str, DistributionStrategy] = {
            name: factory() for name, factory in STRATEGIES.items()
        }
        if strategies:
            self._strategies.update(strategies)
        self._distributed = 0
        self._unassignable = 0

    # ── Strategies ───────────────────────────────────────────────────

    @property
    def strategy_names(self) -> List[str]:
        return sorted(self._strategies)

    def register_strategy(self, name: str, strategy: DistributionStrategy) -> None:
        self._strategies[name] = strategy

    def get_strategy(self, name: str) -> DistributionStrategy:
        strategy = self._strategies.get(name)
        if strategy is None:
            raise StrategyNotFoundError(
                f"Unknown distribution strategy {name!r}",
                details={"strategy": name, "available": self.strategy_names},
            )
        return strategy

    # ── Distribution ─────────────────────────────────────────────────

    def rank(
        self,
        task: Task,
        agents: Sequence[AgentRuntime],
        strategy: str = DEFAULT_STRATEGY,
    ) -> List[TaskAssignment]:
        """Ranked candidate assignments for *task*; nothing is committed."""
        impl = self.get_strategy(strategy)
        self.graph.upsert(task)
        workloads = {agent.id: self.workloads.get(agent) for agent in agents}
        prerequisites = tuple(self.graph.unresolved_dependencies(task.id))
        return impl.evaluate(task, agents, workloads, prerequisites)

    def select_assignment(
        self,
        task: Task,
        agents: Sequence[AgentRuntime],
        strategy: str = DEFAULT_STRATEGY,
    ) -> Optional[TaskAssignment]:
        ranked = self.rank(task, agents, strategy)
        if not ranked:
            self._unassignable += 1
            logger.info("No agent available for task %s (strategy=%s)", task.id, strategy)
            return None
        return max(ranked, key=lambda a: a.confidence)

    @track_performance(operation="distribute_task")
    def distribute_task(
        self,
        task: Task,
        agents: Sequence[AgentRuntime],
        strategy: str = DEFAULT_STRATEGY,
    ) -> Optional[TaskAssignment]:
        """Select the highest-confidence assignment and commit its workload.

        Returns ``None`` when no agent clears the strategy's threshold; the
        task simply stays unassigned.

        Raises:
            StrategyNotFoundError: *strategy* is not registered.
            CycleDetectedError: the task closes a dependency cycle.
        """
        assignment = self.select_assignment(task, agents, strategy)
        if assignment is None:
            return None
        agent = next(a for a in agents if a.id == assignment.agent_id)
        self.commit_assignment(agent, task, assignment.estimated_duration)
        logger.info(
            "Task %s -> %s (confidence %.2f, %s)",
            task.id, agent.id, assignment.confidence, strategy,
        )
        return assignment

    def commit_assignment(self, agent: AgentRuntime, task: Task, hours: Optional[float] = None) -> WorkloadMetrics:
        """Charge *task* to *agent*'s workload (idempotent per task)."""
        if hours is None:
            hours = estimate_duration(agent, task)
        if not self.workloads.is_committed(agent.id, task.id):
            self._distributed += 1
        return self.workloads.record_assignment(agent, task.id, task.type, hours)

    def release_assignment(self, agent_id: str, task_id: str) -> bool:
        return self.workloads.release(agent_id, task_id)

    def record_task_outcome(self, agent_id: str, task: Task, result: TaskResult) -> None:
        """Release the committed load and fold the result into the agent's track record."""
        self.workloads.record_outcome(agent_id, task.id, result)

    def reset_workload(self, agent_id: str) -> None:
        self.workloads.reset(agent_id)

    def get_workload(self, agent_id: str) -> Optional[WorkloadMetrics]:
        return self.workloads.peek(agent_id)

    # ── Dependencies ─────────────────────────────────────────────────

    def analyze_dependencies(self, tasks: Sequence[Task]) -> List[DependencyNode]:
        nodes = self.graph.analyze(tasks)
        logger.debug(
            "Analyzed %d tasks, %d on critical path",
            len(nodes), sum(1 for n in nodes if n.critical_path),
        )
        return nodes

    def get_critical_path(self) -> List[str]:
        return self.graph.critical_path()

    def get_dependency_node(self, task_id: str) -> Optional[DependencyNode]:
        return self.graph.node(task_id)

    def longest_weighted_path(self, tasks: Optional[Sequence[Task]] = None) -> WeightedPath:
        """Longest path by ``estimated_hours``; re-analyzes when *tasks* is given."""
        if tasks is not None:
            self.graph.analyze(tasks)
        return self.graph.longest_weighted_path()

    # ── Quality ──────────────────────────────────────────────────────

    def evaluate_quality_gates(self, task: Task) -> QualityGateResult:
        return self.quality_gates.evaluate(task)

    # ── Workload ─────────────────────────────────────────────────────

    def optimize_workload_distribution(self, agents: Sequence[AgentRuntime]) -> WorkloadReport:
        report = self.workloads.optimize(agents)
        for suggestion in report.suggestions:
            logger.info(
                "Suggest moving %s from %s to %s",
                suggestion.task_id, suggestion.from_agent, suggestion.to_agent,
            )
        return report

    # ── Progress analysis ────────────────────────────────────────────

    def monitor_task_progress(
        self,
        task: Task,
        related_tasks: Sequence[Task] = (),
        agent: Optional[AgentRuntime] = None,
    ) -> TaskProgressAnalysis:
        """Progress, blockers and dependency status for one task."""
        by_id = {t.id: t for t in related_tasks}
        progress = float(task.metadata.get("progress", 0.0))
        if agent is not None and task.id in agent.current_tasks:
            progress = agent.get_task_progress(task.id).percentage
        if task.status == TaskStatus.COMPLETED:
            progress = 100.0

        dependency_status = {
            dep: (by_id[dep].status.value if dep in by_id else "UNKNOWN")
            for dep in task.dependencies
        }
        blockers = list(task.blockers)
        waiting = [d for d, s in dependency_status.items() if s not in (TaskStatus.COMPLETED.value, "UNKNOWN")]
        if waiting:
            blockers.append(f"Waiting on dependencies: {', '.join(waiting)}")

        recommendations: List[str] = []
        if task.status == TaskStatus.BLOCKED:
            recommendations.append("Resolve blockers or escalate for a human decision")
        if waiting and task.status == TaskStatus.IN_PROGRESS:
            recommendations.append("Task started before its dependencies completed; verify ordering")
        if task.due_date is not None and task.status != TaskStatus.COMPLETED and progress < 50.0:
            recommendations.append("Review due date: less than half complete")
        if task.id in self.graph and self.graph.node(task.id).critical_path and task.status != TaskStatus.COMPLETED:
            recommendations.append("On the critical path; prioritize")

        remaining = max(0.0, task.estimated_hours * (1 - progress / 100.0))
        return TaskProgressAnalysis(
            task_id=task.id,
            current_progress=progress,
            estimated_remaining_hours=remaining,
            blockers=tuple(blockers),
            dependency_status=dependency_status,
            recommendations=tuple(recommendations),
        )

    # ── Stats ────────────────────────────────────────────────────────

    def stats(self) -> Dict[str, Any]:
        return {
            "distributed": self._distributed,
            "unassignable": self._unassignable,
            "graph_size": len(self.graph),
            "critical_path": len(self.graph.critical_path()),
            "workloads": {w.agent_id: w.to_dict() for w in self.workloads.all()},
            "strategies": self.strategy_names,
        }
