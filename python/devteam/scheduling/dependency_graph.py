"""Task dependency DAG for the distribution engine.

Pure Python, no coordinator dependencies.

Provides:
- Node derivation with dependents back-filled by inverting dependencies
- Cycle validation (Kahn's algorithm)
- The heuristic critical path (no unresolved dependency, or priority >= HIGH)
- A true longest weighted path using ``estimated_hours`` as node weights
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Set, Tuple

from devteam.exceptions import CycleDetectedError
from devteam.models import Task, TaskStatus

logger = logging.getLogger(__name__)

# Priority weight at or above which a task is always on the critical path.
CRITICAL_PRIORITY_WEIGHT = 3


# ── Value objects ────────────────────────────────────────────────────


@dataclass(frozen=True)
class DependencyNode:
    """Immutable snapshot of a task's position in the graph."""

    task_id: str
    dependencies: FrozenSet[str]
    dependents: FrozenSet[str]
    priority: int
    critical_path: bool = False

    def to_dict(self) -> Dict[str, object]:
        return {
            "task_id": self.task_id,
            "dependencies": sorted(self.dependencies),
            "dependents": sorted(self.dependents),
            "priority": self.priority,
            "critical_path": self.critical_path,
        }


@dataclass(frozen=True)
class WeightedPath:
    """Longest path through the DAG by summed estimated hours."""

    path: Tuple[str, ...]
    total_hours: float
    waves: Tuple[Tuple[str, ...], ...] = ()
    earliest_finish: Mapping[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class _Entry:
    dependencies: Tuple[str, ...]
    priority: int
    completed: bool
    hours: float


# ── Graph ────────────────────────────────────────────────────────────


class DependencyGraph:
    """Derived dependency structure, rebuilt whenever tasks are (re)submitted.

    Dependencies on ids outside the graph are kept on the node but treated
    as resolved.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, _Entry] = {}
        self._nodes: Dict[str, DependencyNode] = {}
        # Insertion order keeps waves and critical path deterministic
        self._order: List[str] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._entries

    # ── Graph mutation ───────────────────────────────────────────────

    def analyze(self, tasks: Iterable[Task]) -> List[DependencyNode]:
        """Replace the graph with *tasks* and return the derived nodes.

        Raises:
            CycleDetectedError: the dependencies contain a cycle; the
                previous graph is kept.
        """
        entries: Dict[str, _Entry] = {}
        order: List[str] = []
        for task in tasks:
            if task.id not in entries:
                order.append(task.id)
            entries[task.id] = self._entry(task)
        self._commit(entries, order)
        return [self._nodes[tid] for tid in self._order]

    def upsert(self, task: Task) -> DependencyNode:
        """Add or refresh a single task's node."""
        entries = dict(self._entries)
        order = list(self._order)
        if task.id not in entries:
            order.append(task.id)
        entries[task.id] = self._entry(task)
        self._commit(entries, order)
        return self._nodes[task.id]

    def mark_completed(self, task_id: str) -> None:
        entry = self._entries.get(task_id)
        if entry is None or entry.completed:
            return
        entries = dict(self._entries)
        entries[task_id] = _Entry(entry.dependencies, entry.priority, True, entry.hours)
        self._commit(entries, list(self._order))

    def remove(self, task_id: str) -> None:
        if task_id not in self._entries:
            return
        entries = {k: v for k, v in self._entries.items() if k != task_id}
        self._commit(entries, [t for t in self._order if t != task_id])

    @staticmethod
    def _entry(task: Task) -> _Entry:
        deps = tuple(dict.fromkeys(d for d in task.dependencies if d))
        if task.id in deps:
            raise CycleDetectedError([task.id, task.id])
        return _Entry(
            dependencies=deps,
            priority=task.priority.weight,
            completed=task.status == TaskStatus.COMPLETED,
            hours=max(0.0, float(task.estimated_hours or 0.0)),
        )

    def _commit(self, entries: Dict[str, _Entry], order: List[str]) -> None:
        cycle = self._find_cycle(entries)
        if cycle:
            raise CycleDetectedError(cycle)

        dependents: Dict[str, Set[str]] = {tid: set() for tid in entries}
        for tid, entry in entries.items():
            for dep in entry.dependencies:
                if dep in dependents:
                    dependents[dep].add(tid)
                else:
                    logger.debug("Dependency %s of %s is outside the graph, treated as resolved", dep, tid)

        nodes: Dict[str, DependencyNode] = {}
        for tid, entry in entries.items():
            unresolved = [
                d for d in entry.dependencies
                if d in entries and not entries[d].completed
            ]
            nodes[tid] = DependencyNode(
                task_id=tid,
                dependencies=frozenset(entry.dependencies),
                dependents=frozenset(dependents[tid]),
                priority=entry.priority,
                critical_path=not unresolved or entry.priority >= CRITICAL_PRIORITY_WEIGHT,
            )

        self._entries = entries
        self._order = order
        self._nodes = nodes

    # ── Queries ──────────────────────────────────────────────────────

    def node(self, task_id: str) -> Optional[DependencyNode]:
        return self._nodes.get(task_id)

    def nodes(self) -> List[DependencyNode]:
        return [self._nodes[tid] for tid in self._order]

    def critical_path(self) -> List[str]:
        return [tid for tid in self._order if self._nodes[tid].critical_path]

    def unresolved_dependencies(self, task_id: str) -> List[str]:
        entry = self._entries.get(task_id)
        if entry is None:
            return []
        return [
            d for d in entry.dependencies
            if d in self._entries and not self._entries[d].completed
        ]

    def dependents_of(self, task_id: str) -> FrozenSet[str]:
        node = self._nodes.get(task_id)
        return node.dependents if node else frozenset()

    def get_downstream(self, task_id: str) -> Set[str]:
        """BFS to find all transitive dependents of *task_id*."""
        result: Set[str] = set()
        queue: deque[str] = deque(self.dependents_of(task_id))
        while queue:
            nid = queue.popleft()
            if nid in result:
                continue
            result.add(nid)
            queue.extend(self.dependents_of(nid))
        return result

    def execution_waves(self) -> List[List[str]]:
        """Kahn's algorithm producing parallel execution waves.

        Each wave holds tasks whose in-graph dependencies are all in prior
        waves; within a wave, higher priority first.
        """
        in_degree: Dict[str, int] = {}
        for tid, entry in self._entries.items():
            in_degree[tid] = sum(1 for d in entry.dependencies if d in self._entries)

        position = {tid: i for i, tid in enumerate(self._order)}
        current = [tid for tid, deg in in_degree.items() if deg == 0]
        waves: List[List[str]] = []
        while current:
            current.sort(key=lambda tid: (-self._entries[tid].priority, position[tid]))
            waves.append(current)
            nxt: List[str] = []
            for tid in current:
                for dep_id in self.dependents_of(tid):
                    in_degree[dep_id] -= 1
                    if in_degree[dep_id] == 0:
                        nxt.append(dep_id)
            current = nxt
        return waves

    def longest_weighted_path(self, include_completed: bool = False) -> WeightedPath:
        """Longest path by summed ``estimated_hours``.

        Uses dynamic programming over the execution waves:
        ``finish[t] = max(finish[dep]) + hours[t]``.  Completed tasks weigh
        zero unless *include_completed* is set.
        """
        waves = self.execution_waves()
        if not waves:
            return WeightedPath((), 0.0)

        def weight(tid: str) -> float:
            entry = self._entries[tid]
            if entry.completed and not include_completed:
                return 0.0
            return entry.hours

        finish: Dict[str, float] = {}
        predecessor: Dict[str, Optional[str]] = {}
        for wave in waves:
            for tid in wave:
                best_pred: Optional[str] = None
                best = 0.0
                for dep in self._entries[tid].dependencies:
                    if dep in finish and (best_pred is None or finish[dep] > best):
                        best = finish[dep]
                        best_pred = dep
                finish[tid] = best + weight(tid)
                predecessor[tid] = best_pred

        end = max(finish, key=finish.get)  # type: ignore[arg-type]
        path: List[str] = []
        current: Optional[str] = end
        while current is not None:
            path.append(current)
            current = predecessor[current]
        path.reverse()
        return WeightedPath(
            path=tuple(path),
            total_hours=finish[end],
            waves=tuple(tuple(w) for w in waves),
            earliest_finish=dict(finish),
        )

    # ── Internal helpers ─────────────────────────────────────────────

    @staticmethod
    def _find_cycle(entries: Mapping[str, _Entry]) -> Optional[List[str]]:
        """Full Kahn's validation. Returns the tasks left on a cycle, if any."""
        in_degree: Dict[str, int] = {}
        adj: Dict[str, Set[str]] = {tid: set() for tid in entries}
        for tid, entry in entries.items():
            known = [d for d in entry.dependencies if d in entries]
            in_degree[tid] = len(known)
            for dep in known:
                adj[dep].add(tid)

        queue: deque[str] = deque(tid for tid, deg in in_degree.items() if deg == 0)
        visited = 0
        while queue:
            tid = queue.popleft()
            visited += 1
            for nxt in adj[tid]:
                in_degree[nxt] -= 1
                if in_degree[nxt] == 0:
                    queue.append(nxt)

        if visited < len(in_degree):
            return sorted(tid for tid, deg in in_degree.items() if deg > 0)
        return None
