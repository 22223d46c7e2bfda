"""Tests for the coordinator (devteam/orchestration/coordinator.py)."""

import asyncio

import pytest

from devteam.agents.runtime import COORDINATOR_ID, AgentRuntime
from devteam.event_bus import InMemoryEventBus
from devteam.exceptions import (
    AgentCannotHandleTaskError,
    AgentNotFoundError,
    AgentNotReadyError,
    DependencyBlockedError,
    ErrorCode,
    MessageSendFailedError,
    StrategyNotFoundError,
    TemplateNotFoundError,
)
from devteam.interfaces.event_bus import EventType
from devteam.models import (
    AgentCapabilities,
    AgentConfig,
    AgentMessage,
    AgentStatus,
    AgentType,
    MessageType,
    ResultStatus,
    SkillLevel,
    Task,
    TaskResult,
    TaskStatus,
    TaskType,
)
from devteam.orchestration.coordinator import Coordinator
from devteam.storage.memory import InMemoryMessageLog, InMemoryTaskStore


def _succeed(task):
    return TaskResult(task_id=task.id, status=ResultStatus.SUCCESS, duration=60.0)


def _fail(task):
    return TaskResult(task_id=task.id, status=ResultStatus.FAILURE, errors=["build broke"])


def _low_coverage(task):
    return TaskResult(task_id=task.id, status=ResultStatus.SUCCESS, output={"quality": {"coverage": 0.5}})


def _build_agent(agent_id="qa-1", executor=_succeed, types=(TaskType.TESTING,), max_tasks=1) -> AgentRuntime:
    caps = AgentCapabilities(
        supported_task_types=frozenset(types),
        skill_level=SkillLevel.SENIOR,
        max_concurrent_tasks=max_tasks,
        estimated_task_duration={TaskType.TESTING: 2.0},
    )
    return AgentRuntime(agent_id, AgentType.QUALITY_ASSURANCE, caps, executor)


async def _build_coordinator(tmp_path, *agents, store=None, log=None, **kwargs):
    coordinator = Coordinator(
        store or InMemoryTaskStore(),
        log or InMemoryMessageLog(),
        event_bus=InMemoryEventBus(),
        **kwargs,
    )
    for agent in agents:
        coordinator.register_agent(agent)
    await coordinator.initialize(AgentConfig(working_directory=str(tmp_path)))
    return coordinator


def _task(task_id="t1", task_type=TaskType.TESTING, **kwargs) -> Task:
    return Task(id=task_id, title=f"Task {task_id}", type=task_type, **kwargs)


async def _run_round(coordinator, agent):
    """Deliver queued messages, let the agent finish, deliver its reports."""
    await coordinator.process_message_queue()
    await agent.wait_idle()
    await coordinator.process_message_queue()


# --- Registry ---


async def test_register_and_lookup(tmp_path):
    agent = _build_agent()
    coordinator = await _build_coordinator(tmp_path, agent)
    assert coordinator.get_agent("qa-1") is agent
    assert coordinator.get_all_agents() == [agent]
    assert coordinator.get_available_agents(TaskType.TESTING) == [agent]
    assert coordinator.get_available_agents(TaskType.DEPLOYMENT) == []


async def test_get_unknown_agent(tmp_path):
    coordinator = await _build_coordinator(tmp_path)
    with pytest.raises(AgentNotFoundError):
        coordinator.get_agent("ghost")


async def test_initialize_reports_failures(tmp_path):
    coordinator = Coordinator(InMemoryTaskStore(), InMemoryMessageLog())
    coordinator.register_agent(_build_agent("ok"))
    failed = await coordinator.initialize(AgentConfig(working_directory=str(tmp_path / "missing")))
    assert failed == ["ok"]
    assert coordinator.get_agent("ok").status == AgentStatus.ERROR


# --- Assignment ---


async def test_assign_to_unknown_agent_leaves_task_untouched(tmp_path):
    coordinator = await _build_coordinator(tmp_path, _build_agent())
    await coordinator.create_task(_task())
    with pytest.raises(AgentNotFoundError) as exc_info:
        await coordinator.assign_task("t1", "ghost")
    assert exc_info.value.code == ErrorCode.AGENT_NOT_FOUND
    task = await coordinator.task_store.get_task("t1")
    assert task.status == TaskStatus.NOT_STARTED
    assert task.assigned_to is None


async def test_available_then_assign(tmp_path):
    coordinator = await _build_coordinator(tmp_path, _build_agent())
    await coordinator.create_task(_task())
    available = await coordinator.get_available_tasks()
    assert [t.id for t in available] == ["t1"]

    task = await coordinator.assign_task("t1", "qa-1")
    assert task.status == TaskStatus.IN_PROGRESS
    assert task.assigned_to == "qa-1"
    assert coordinator.queue_length == 1
    assert coordinator.engine.get_workload("qa-1").current_tasks == 1
    assert await coordinator.get_available_tasks() == []


async def test_assign_rejects_unsupported_type(tmp_path):
    coordinator = await _build_coordinator(tmp_path, _build_agent())
    await coordinator.create_task(_task(task_type=TaskType.DEPLOYMENT))
    with pytest.raises(AgentCannotHandleTaskError):
        await coordinator.assign_task("t1", "qa-1")


async def test_assign_respects_committed_capacity(tmp_path):
    coordinator = await _build_coordinator(tmp_path, _build_agent(max_tasks=1))
    await coordinator.create_task(_task("t1"))
    await coordinator.create_task(_task("t2"))
    await coordinator.assign_task("t1", "qa-1")
    with pytest.raises(AgentCannotHandleTaskError):
        await coordinator.assign_task("t2", "qa-1")


async def test_assign_blocked_by_dependency(tmp_path):
    coordinator = await _build_coordinator(tmp_path, _build_agent())
    await coordinator.create_task(_task("a"))
    await coordinator.create_task(_task("b", dependencies=["a"]))
    with pytest.raises(DependencyBlockedError):
        await coordinator.assign_task("b", "qa-1")


class _RefusingLog(InMemoryMessageLog):
    async def save_message(self, message):
        raise MessageSendFailedError("log unavailable")


async def test_assign_rolls_back_when_send_fails(tmp_path):
    coordinator = await _build_coordinator(tmp_path, _build_agent(), log=_RefusingLog())
    await coordinator.create_task(_task(status=TaskStatus.BLOCKED, blockers=["waiting on review"]))

    with pytest.raises(MessageSendFailedError):
        await coordinator.assign_task("t1", "qa-1")

    task = await coordinator.task_store.get_task("t1")
    assert task.status == TaskStatus.BLOCKED
    assert task.assigned_to is None
    assert task.blockers == ["waiting on review"]
    assert coordinator.engine.get_workload("qa-1").current_tasks == 0


async def test_assign_to_offline_agent(tmp_path):
    agent = _build_agent()
    coordinator = await _build_coordinator(tmp_path, agent)
    await agent.stop()
    await coordinator.create_task(_task())
    with pytest.raises(AgentNotReadyError):
        await coordinator.assign_task("t1", "qa-1")


# --- Distribution ---


async def test_distribute_single_slot_agent(tmp_path):
    coordinator = await _build_coordinator(tmp_path, _build_agent(max_tasks=1))
    await coordinator.create_task(_task("t1"))
    await coordinator.create_task(_task("t2"))

    first = await coordinator.distribute_task("t1")
    assert first is not None
    assert first.agent_id == "qa-1"
    assert first.confidence > 0.3

    assert await coordinator.distribute_task("t2") is None
    task = await coordinator.task_store.get_task("t2")
    assert task.status == TaskStatus.NOT_STARTED


async def test_distribute_skips_initializing_agents(tmp_path):
    coordinator = await _build_coordinator(tmp_path)
    coordinator.register_agent(_build_agent())
    assert coordinator.get_agent("qa-1").status == AgentStatus.INITIALIZING
    await coordinator.create_task(_task())

    assert await coordinator.distribute_task("t1") is None
    task = await coordinator.task_store.get_task("t1")
    assert task.status == TaskStatus.NOT_STARTED
    assert coordinator.queue_length == 0


async def test_distribute_waits_for_dependencies(tmp_path):
    coordinator = await _build_coordinator(tmp_path, _build_agent())
    await coordinator.create_task(_task("a"))
    await coordinator.create_task(_task("b", dependencies=["a"]))
    assert await coordinator.distribute_task("b") is None


async def test_distribute_unknown_strategy(tmp_path):
    coordinator = await _build_coordinator(tmp_path, _build_agent())
    await coordinator.create_task(_task())
    with pytest.raises(StrategyNotFoundError):
        await coordinator.distribute_task("t1", "random")


# --- Message flow ---


async def test_result_completes_task_and_releases_dependents(tmp_path):
    agent = _build_agent(max_tasks=2)
    coordinator = await _build_coordinator(tmp_path, agent)
    completed = []
    await coordinator.event_bus.subscribe(EventType.TASK_COMPLETED, lambda data: completed.append(data["task_id"]))

    await coordinator.create_task(_task("a"))
    await coordinator.create_task(_task("b", dependencies=["a"]))
    await coordinator.assign_task("a", "qa-1")
    await _run_round(coordinator, agent)

    a = await coordinator.task_store.get_task("a")
    assert a.status == TaskStatus.COMPLETED
    assert a.metadata["quality_gate"]["passed"] is True
    assert a.actual_hours == pytest.approx(60.0 / 3600.0)
    assert completed == ["a"]

    # b was unblocked and distributed automatically
    b = await coordinator.task_store.get_task("b")
    assert b.status == TaskStatus.IN_PROGRESS
    assert b.assigned_to == "qa-1"
    assert any(m.type == MessageType.DEPENDENCY_NOTIFICATION for m in agent.inbox)

    await agent.wait_idle()
    await coordinator.process_message_queue()
    b = await coordinator.task_store.get_task("b")
    assert b.status == TaskStatus.COMPLETED
    assert coordinator.engine.get_workload("qa-1").current_tasks == 0


async def test_dependents_not_assigned_when_disabled(tmp_path):
    agent = _build_agent(max_tasks=2)
    coordinator = await _build_coordinator(tmp_path, agent, auto_assign_dependents=False)
    await coordinator.create_task(_task("a"))
    await coordinator.create_task(_task("b", dependencies=["a"]))
    await coordinator.assign_task("a", "qa-1")
    await _run_round(coordinator, agent)
    b = await coordinator.task_store.get_task("b")
    assert b.status == TaskStatus.NOT_STARTED
    assert [t.id for t in await coordinator.get_available_tasks()] == ["b"]


async def test_failure_blocks_task(tmp_path):
    agent = _build_agent(executor=_fail)
    coordinator = await _build_coordinator(tmp_path, agent)
    failures = []
    await coordinator.event_bus.subscribe(EventType.TASK_FAILED, failures.append)
    await coordinator.create_task(_task())
    await coordinator.create_task(_task("t2", dependencies=["t1"]))
    await coordinator.create_task(_task("t3", dependencies=["t2"]))
    await coordinator.assign_task("t1", "qa-1")
    await _run_round(coordinator, agent)

    task = await coordinator.task_store.get_task("t1")
    assert task.status == TaskStatus.BLOCKED
    assert task.blockers == ["build broke"]
    workload = coordinator.engine.get_workload("qa-1")
    assert workload.current_tasks == 0
    assert workload.failed == 1
    assert failures[0]["blocked_downstream"] == ["t2", "t3"]


async def test_failed_quality_gate_sends_task_to_review(tmp_path):
    agent = _build_agent(executor=_low_coverage)
    coordinator = await _build_coordinator(tmp_path, agent)
    await coordinator.create_task(_task())
    await coordinator.assign_task("t1", "qa-1")
    await _run_round(coordinator, agent)

    task = await coordinator.task_store.get_task("t1")
    assert task.status == TaskStatus.REVIEW
    assert task.metadata["quality_gate"]["passed"] is False
    assert task.metadata["quality"]["coverage"] == 0.5
    assert any(m.type == MessageType.QUALITY_GATE_RESULT for m in agent.inbox)


async def test_rejected_assignment_returns_task(tmp_path):
    agent = _build_agent()
    coordinator = await _build_coordinator(tmp_path, agent)
    await coordinator.create_task(_task())
    await coordinator.assign_task("t1", "qa-1")
    agent.set_blocked(True)

    await coordinator.process_message_queue()

    task = await coordinator.task_store.get_task("t1")
    assert task.status == TaskStatus.NOT_STARTED
    assert task.assigned_to is None
    assert coordinator.engine.get_workload("qa-1").current_tasks == 0


async def test_cancelled_run_leaves_requeued_task_alone(tmp_path):
    gate = asyncio.Event()

    async def slow(task):
        await gate.wait()
        return TaskResult(task_id=task.id, status=ResultStatus.SUCCESS)

    agent = _build_agent(executor=slow)
    coordinator = await _build_coordinator(tmp_path, agent)
    await coordinator.create_task(_task())
    await coordinator.assign_task("t1", "qa-1")
    await coordinator.process_message_queue()
    assert "t1" in agent.current_tasks

    await coordinator.restart_agent("qa-1")
    gate.set()
    await agent.wait_idle()
    await coordinator.process_message_queue()

    task = await coordinator.task_store.get_task("t1")
    assert task.status == TaskStatus.NOT_STARTED
    assert task.assigned_to is None
    assert task.blockers == []
    assert [t.id for t in await coordinator.get_available_tasks()] == ["t1"]
    assert coordinator.engine.get_workload("qa-1") is None


async def test_reports_from_previous_holder_are_ignored(tmp_path):
    first, second = _build_agent("qa-1", max_tasks=2), _build_agent("qa-2", max_tasks=2)
    coordinator = await _build_coordinator(tmp_path, first, second)
    await coordinator.create_task(_task())
    await coordinator.assign_task("t1", "qa-2")

    assert await coordinator.handle_task_result("qa-1", _fail(_task())) is None
    await coordinator.send_message(AgentMessage(
        type=MessageType.STATUS_UPDATE,
        sender="qa-1",
        recipient=COORDINATOR_ID,
        payload={"kind": "rejected", "task_id": "t1", "reason": "busy"},
    ))
    await coordinator.process_message_queue()

    task = await coordinator.task_store.get_task("t1")
    assert task.status == TaskStatus.IN_PROGRESS
    assert task.assigned_to == "qa-2"
    assert task.blockers == []
    assert coordinator.engine.get_workload("qa-1") is None
    assert coordinator.engine.get_workload("qa-2").current_tasks == 1


async def test_broadcast_reaches_every_agent_but_sender(tmp_path):
    a, b = _build_agent("a"), _build_agent("b")
    coordinator = await _build_coordinator(tmp_path, a, b)
    await coordinator.send_message(AgentMessage(
        type=MessageType.KNOWLEDGE_SHARING, sender="a", payload={"topic": "api"},
    ))
    assert await coordinator.process_message_queue() == 1
    assert a.inbox == []
    assert len(b.inbox) == 1


async def test_message_to_unknown_agent_is_dropped(tmp_path):
    coordinator = await _build_coordinator(tmp_path)
    await coordinator.send_message(AgentMessage(
        type=MessageType.STATUS_UPDATE, sender="coordinator", recipient="ghost",
    ))
    assert await coordinator.process_message_queue() == 1
    assert coordinator.stats()["dropped"] == 1
    assert await coordinator.message_log.get_unprocessed_messages() == []


async def test_dispatch_loop_runs_tasks(tmp_path):
    agent = _build_agent()
    coordinator = await _build_coordinator(tmp_path, agent, dispatch_interval=0.01)
    await coordinator.start()
    try:
        assert coordinator.is_running
        await coordinator.create_task(_task())
        await coordinator.assign_task("t1", "qa-1")
        for _ in range(100):
            task = await coordinator.task_store.get_task("t1")
            if task.status == TaskStatus.COMPLETED:
                break
            await asyncio.sleep(0.01)
        assert task.status == TaskStatus.COMPLETED
    finally:
        await coordinator.stop()
    assert not coordinator.is_running
    assert agent.status == AgentStatus.OFFLINE


# --- Status updates and agent lifecycle ---


async def test_update_task_status(tmp_path):
    coordinator = await _build_coordinator(tmp_path, _build_agent())
    await coordinator.create_task(_task())
    await coordinator.assign_task("t1", "qa-1")

    task = await coordinator.update_task_status("t1", TaskStatus.NOT_STARTED)
    assert task.assigned_to is None
    assert coordinator.engine.get_workload("qa-1").current_tasks == 0

    task = await coordinator.update_task_status("t1", TaskStatus.BLOCKED, blockers=["waiting on vendor"])
    assert task.blockers == ["waiting on vendor"]


async def test_unregister_requeues_held_tasks(tmp_path):
    agent = _build_agent()
    coordinator = await _build_coordinator(tmp_path, agent)
    await coordinator.create_task(_task())
    await coordinator.assign_task("t1", "qa-1")

    await coordinator.unregister_agent("qa-1")

    task = await coordinator.task_store.get_task("t1")
    assert task.status == TaskStatus.NOT_STARTED
    assert agent.status == AgentStatus.OFFLINE
    with pytest.raises(AgentNotFoundError):
        coordinator.get_agent("qa-1")


async def test_restart_agent_resets_workload(tmp_path):
    agent = _build_agent()
    coordinator = await _build_coordinator(tmp_path, agent)
    await agent.start()
    await coordinator.create_task(_task())
    await coordinator.assign_task("t1", "qa-1")

    await coordinator.restart_agent("qa-1")

    assert agent.status == AgentStatus.READY
    assert coordinator.engine.get_workload("qa-1") is None


# --- Restart recovery ---


async def test_load_existing_tasks_resets_in_flight_work(tmp_path):
    store, log = InMemoryTaskStore(), InMemoryMessageLog()
    first = await _build_coordinator(tmp_path, _build_agent(), store=store, log=log)
    await first.create_task(_task("a"))
    await first.create_task(_task("b", dependencies=["a"]))
    await first.assign_task("a", "qa-1")

    second = await _build_coordinator(tmp_path, _build_agent(), store=store, log=log)
    tasks = await second.load_existing_tasks()

    assert {t.id for t in tasks} == {"a", "b"}
    a = await store.get_task("a")
    assert a.status == TaskStatus.NOT_STARTED
    assert a.assigned_to is None
    assert second.queue_length == 1
    assert second.engine.get_dependency_node("b").dependencies == frozenset({"a"})


# --- Human decisions ---


async def test_decision_answered(tmp_path):
    coordinator = await _build_coordinator(tmp_path, _build_agent())
    await coordinator.create_task(_task())
    job = asyncio.create_task(coordinator.request_human_decision(
        "t1", "qa-1", "approval", "Merge the schema change?", options=["yes", "no"], timeout=5.0,
    ))
    await asyncio.sleep(0)
    pending = coordinator.decision_broker.pending()
    assert len(pending) == 1
    await coordinator.decision_broker.respond(pending[0].id, "yes")
    assert await job == "yes"


async def test_decision_timeout_blocks_task(tmp_path):
    coordinator = await _build_coordinator(tmp_path, _build_agent())
    await coordinator.create_task(_task())
    answer = await coordinator.request_human_decision(
        "t1", "qa-1", "approval", "Deploy on Friday?", timeout=0.01,
    )
    assert answer is None
    task = await coordinator.task_store.get_task("t1")
    assert task.status == TaskStatus.BLOCKED
    assert task.blockers == ["Awaiting human approval: Deploy on Friday?"]


# --- Projects ---


async def test_create_project_from_template(tmp_path):
    coordinator = await _build_coordinator(tmp_path)
    project = await coordinator.create_project("react-app", "Shop")

    assert project.template_id == "react-app"
    assert len(project.task_ids) == 4
    tasks = {t.id: t for t in await coordinator.task_store.get_tasks()}
    setup = [t for t in tasks.values() if t.metadata["phase"] == "Setup"]
    development = [t for t in tasks.values() if t.metadata["phase"] == "Development"]
    assert all(t.dependencies == [] for t in setup)
    for task in development:
        assert set(task.dependencies) == {t.id for t in setup}
    assert coordinator.get_projects() == [project]


async def test_create_project_unknown_template(tmp_path):
    coordinator = await _build_coordinator(tmp_path)
    with pytest.raises(TemplateNotFoundError):
        await coordinator.create_project("cobol-mainframe", "Legacy")


async def test_stats_shape(tmp_path):
    coordinator = await _build_coordinator(tmp_path, _build_agent())
    stats = coordinator.stats()
    assert stats["agents"] == 1
    assert stats["agents_by_status"]["READY"] == 1
    assert stats["queue_length"] == 0
    assert "engine" in stats
