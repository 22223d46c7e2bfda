"""Tests for the task dependency graph (devteam/scheduling/dependency_graph.py)."""

import pytest

from devteam.exceptions import CycleDetectedError
from devteam.models import Task, TaskPriority, TaskStatus, TaskType
from devteam.scheduling.dependency_graph import DependencyGraph


def _task(task_id, deps=(), priority=TaskPriority.MEDIUM, status=TaskStatus.NOT_STARTED, hours=1.0) -> Task:
    return Task(
        id=task_id,
        title=task_id,
        type=TaskType.FOUNDATION,
        priority=priority,
        status=status,
        dependencies=list(deps),
        estimated_hours=hours,
    )


def _diamond():
    # a -> b, a -> c, (b, c) -> d
    return [
        _task("a", hours=2),
        _task("b", ["a"], hours=5),
        _task("c", ["a"], hours=1),
        _task("d", ["b", "c"], hours=3),
    ]


def test_dependents_are_inverse_of_dependencies():
    graph = DependencyGraph()
    nodes = graph.analyze(_diamond())
    by_id = {n.task_id: n for n in nodes}
    for a in by_id.values():
        for b in by_id.values():
            assert (a.task_id in b.dependents) == (b.task_id in a.dependencies)
    assert by_id["a"].dependents == frozenset({"b", "c"})
    assert by_id["d"].dependencies == frozenset({"b", "c"})


def test_critical_priority_without_dependencies_on_critical_path():
    graph = DependencyGraph()
    graph.analyze([_task("urgent", priority=TaskPriority.CRITICAL)])
    assert "urgent" in graph.critical_path()


def test_critical_path_heuristic():
    graph = DependencyGraph()
    graph.analyze([
        _task("root"),
        _task("blocked-low", ["root"], priority=TaskPriority.LOW),
        _task("blocked-high", ["root"], priority=TaskPriority.HIGH),
    ])
    path = graph.critical_path()
    assert "root" in path
    assert "blocked-high" in path
    assert "blocked-low" not in path
    assert set(path) <= {"root", "blocked-low", "blocked-high"}


def test_completed_dependency_is_resolved():
    graph = DependencyGraph()
    graph.analyze([_task("a", status=TaskStatus.COMPLETED), _task("b", ["a"], priority=TaskPriority.LOW)])
    assert graph.unresolved_dependencies("b") == []
    assert "b" in graph.critical_path()


def test_mark_completed_resolves_dependents():
    graph = DependencyGraph()
    graph.analyze([_task("a"), _task("b", ["a"], priority=TaskPriority.LOW)])
    assert graph.unresolved_dependencies("b") == ["a"]
    graph.mark_completed("a")
    assert graph.unresolved_dependencies("b") == []


def test_external_dependency_treated_as_resolved():
    graph = DependencyGraph()
    graph.analyze([_task("b", ["outside"], priority=TaskPriority.LOW)])
    node = graph.node("b")
    assert node.dependencies == frozenset({"outside"})
    assert graph.unresolved_dependencies("b") == []
    assert node.critical_path is True


def test_cycle_detected_and_previous_graph_kept():
    graph = DependencyGraph()
    graph.analyze([_task("a")])
    with pytest.raises(CycleDetectedError) as exc_info:
        graph.analyze([_task("x", ["y"]), _task("y", ["x"])])
    assert set(exc_info.value.cycle) == {"x", "y"}
    assert "a" in graph
    assert "x" not in graph


def test_self_dependency_is_a_cycle():
    graph = DependencyGraph()
    with pytest.raises(CycleDetectedError):
        graph.upsert(_task("a", ["a"]))


def test_upsert_adds_and_refreshes():
    graph = DependencyGraph()
    graph.upsert(_task("a"))
    graph.upsert(_task("b", ["a"]))
    assert graph.dependents_of("a") == frozenset({"b"})
    graph.upsert(_task("b"))
    assert graph.dependents_of("a") == frozenset()


def test_remove():
    graph = DependencyGraph()
    graph.analyze(_diamond())
    graph.remove("d")
    assert "d" not in graph
    assert graph.dependents_of("b") == frozenset()


def test_downstream_is_transitive():
    graph = DependencyGraph()
    graph.analyze(_diamond())
    assert graph.get_downstream("a") == {"b", "c", "d"}
    assert graph.get_downstream("d") == set()


def test_execution_waves():
    graph = DependencyGraph()
    graph.analyze(_diamond())
    assert graph.execution_waves() == [["a"], ["b", "c"], ["d"]]


def test_longest_weighted_path():
    graph = DependencyGraph()
    graph.analyze(_diamond())
    result = graph.longest_weighted_path()
    assert result.path == ("a", "b", "d")
    assert result.total_hours == pytest.approx(10.0)
    assert result.earliest_finish["c"] == pytest.approx(3.0)


def test_longest_weighted_path_skips_completed_weight():
    graph = DependencyGraph()
    tasks = _diamond()
    tasks[0] = _task("a", status=TaskStatus.COMPLETED, hours=2)
    graph.analyze(tasks)
    assert graph.longest_weighted_path().total_hours == pytest.approx(8.0)
    assert graph.longest_weighted_path(include_completed=True).total_hours == pytest.approx(10.0)


def test_empty_graph():
    graph = DependencyGraph()
    assert graph.critical_path() == []
    assert graph.longest_weighted_path().path == ()
