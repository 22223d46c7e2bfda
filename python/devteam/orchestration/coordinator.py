"""Central coordinator for the agent fleet.

The Coordinator is the single owner of:

1. **The agent registry**: ``agent_id -> AgentRuntime``, populated explicitly
   with :meth:`Coordinator.register_agent`.
2. **The task -> agent binding**: persisted through the task store
   (``status=IN_PROGRESS, assigned_to=...``) and charged to the
   distribution engine's workload table.
3. **The message queue**: every message is written to the message log,
   queued, and delivered by the dispatch loop on a fixed tick.

Agents report back through the same queue (``STATUS_UPDATE`` addressed to
``"coordinator"``); results are pushed through the quality gates before a
task is allowed to complete and its dependents to proceed.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Sequence, Set

from devteam.agents.runtime import COORDINATOR_ID, AgentRuntime
from devteam.exceptions import (
    AgentCannotHandleTaskError,
    AgentInitError,
    AgentNotFoundError,
    AgentNotReadyError,
    CycleDetectedError,
    DecisionTimeoutError,
    DependencyBlockedError,
    DevTeamError,
    MessageSendFailedError,
    TaskNotFoundError,
)
from devteam.interfaces.event_bus import EventType, IEventBus
from devteam.interfaces.executor import DecisionUrgency, IDecisionBroker
from devteam.interfaces.storage import IMessageLog, ITaskStore, TaskFilter
from devteam.models import (
    AgentConfig,
    AgentMessage,
    AgentStatus,
    MessagePriority,
    MessageType,
    ResultStatus,
    Task,
    TaskResult,
    TaskStatus,
    TaskType,
    new_id,
)
from devteam.orchestration.decisions import HumanDecisionBroker
from devteam.orchestration.templates import (
    BUILTIN_TEMPLATES,
    Project,
    ProjectTemplate,
    build_project_tasks,
    find_template,
)
from devteam.scheduling.distribution_engine import DEFAULT_STRATEGY, TaskDistributionEngine
from devteam.scheduling.strategies import TaskAssignment

logger = logging.getLogger(__name__)

# Agents offered to callers choosing a worker by hand.
_AVAILABLE = (AgentStatus.READY, AgentStatus.INITIALIZING)


def _bound_to(task: Optional[Task], agent_id: str) -> bool:
    """True while *task* is running under *agent_id*."""
    return task is not None and task.status == TaskStatus.IN_PROGRESS and task.assigned_to == agent_id


class Coordinator:
    """Registry, assignment binding and message dispatch for one fleet."""

    def __init__(
        self,
        task_store: ITaskStore,
        message_log: IMessageLog,
        engine: Optional[TaskDistributionEngine] = None,
        event_bus: Optional[IEventBus] = None,
        decision_broker: Optional[IDecisionBroker] = None,
        *,
        dispatch_interval: float = 1.0,
        default_strategy: str = DEFAULT_STRATEGY,
        auto_assign_dependents: bool = True,
        decision_timeout: Optional[float] = None,
        templates: Sequence[ProjectTemplate] = BUILTIN_TEMPLATES,
    ) -> None:
        self.task_store = task_store
        self.message_log = message_log
        self.engine = engine or TaskDistributionEngine()
        self.event_bus = event_bus
        self.decision_broker = decision_broker or HumanDecisionBroker(default_timeout=decision_timeout)
        self.dispatch_interval = dispatch_interval
        self.default_strategy = default_strategy
        self.auto_assign_dependents = auto_assign_dependents
        self.decision_timeout = decision_timeout

        self._agents: Dict[str, AgentRuntime] = {}
        self._queue: Deque[AgentMessage] = deque()
        self._templates = tuple(templates)
        self._projects: Dict[str, Project] = {}

        self._running = False
        self._dispatch_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()
        self._delivered = 0
        self._dropped = 0

    # ── Registry ─────────────────────────────────────────────────────

    def register_agent(self, agent: AgentRuntime) -> None:
        if agent.id in self._agents:
            logger.warning("Agent %s re-registered, replacing previous runtime", agent.id)
        agent.attach_outbox(self.send_message)
        self._agents[agent.id] = agent
        logger.info("Registered agent %s (%s)", agent.id, agent.type.value)
        self._spawn(self._emit(EventType.AGENT_REGISTERED, {"agent_id": agent.id, "type": agent.type.value}))

    async def unregister_agent(self, agent_id: str) -> None:
        """Remove an agent; tasks it held go back to NOT_STARTED."""
        agent = self._require_agent(agent_id)
        if agent.status not in (AgentStatus.OFFLINE, AgentStatus.ERROR):
            await agent.stop()
        agent.attach_outbox(None)
        del self._agents[agent_id]
        await self._reclaim_tasks(agent_id)
        self.engine.reset_workload(agent_id)
        logger.info("Unregistered agent %s", agent_id)
        await self._emit(EventType.AGENT_UNREGISTERED, {"agent_id": agent_id})

    def get_agent(self, agent_id: str) -> AgentRuntime:
        return self._require_agent(agent_id)

    def get_all_agents(self) -> List[AgentRuntime]:
        return list(self._agents.values())

    def get_available_agents(self, task_type: Optional[TaskType] = None) -> List[AgentRuntime]:
        """READY or INITIALIZING agents, optionally filtered by supported task type."""
        return [
            agent for agent in self._agents.values()
            if agent.status in _AVAILABLE
            and (task_type is None or agent.capabilities.supports(TaskType(task_type)))
        ]

    def _require_agent(self, agent_id: str) -> AgentRuntime:
        agent = self._agents.get(agent_id)
        if agent is None:
            raise AgentNotFoundError(f"Agent {agent_id} not found", details={"agent_id": agent_id})
        return agent

    async def _require_task(self, task_id: str) -> Task:
        task = await self.task_store.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(f"Task {task_id} not found", details={"task_id": task_id})
        return task

    # ── Lifecycle ────────────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self._running

    async def initialize(self, config: AgentConfig) -> List[str]:
        """Initialize every registered agent; returns the ids that failed."""
        failed = []
        for agent in self._agents.values():
            try:
                await agent.initialize(config)
            except AgentInitError as exc:
                failed.append(agent.id)
                logger.error("Agent %s failed to initialize: %s", agent.id, exc)
        logger.info("Initialized %d/%d agents", len(self._agents) - len(failed), len(self._agents))
        return failed

    async def start(self) -> None:
        """Start every READY agent, then the dispatch loop."""
        if self._running:
            return
        for agent in self._agents.values():
            if agent.status != AgentStatus.READY:
                logger.warning("Not starting agent %s in state %s", agent.id, agent.status.value)
                continue
            await agent.start()
        self._running = True
        self._dispatch_task = asyncio.create_task(self._dispatch_loop())
        logger.info("Coordinator started with %d agents", len(self._agents))

    async def stop(self) -> None:
        """Stop every agent, then halt the dispatch loop."""
        for agent in list(self._agents.values()):
            if agent.status == AgentStatus.OFFLINE:
                continue
            cancelled = await agent.stop()
            for task_id in cancelled:
                await self._requeue(task_id, agent.id)

        self._running = False
        if self._dispatch_task is not None:
            self._dispatch_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._dispatch_task
            self._dispatch_task = None
        for job in list(self._background):
            job.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        logger.info("Coordinator stopped")

    async def restart_agent(self, agent_id: str) -> None:
        """Restart an agent with fresh metrics; its in-flight tasks are requeued."""
        agent = self._require_agent(agent_id)
        held = list(agent.current_tasks)
        await agent.restart()
        for task_id in held:
            await self._requeue(task_id, agent_id)
        self.engine.reset_workload(agent_id)
        logger.info("Agent %s restarted (%d task(s) requeued)", agent_id, len(held))

    async def load_existing_tasks(self) -> List[Task]:
        """Reload the last known state from the task store and message log.

        In-flight work does not survive a restart, so IN_PROGRESS tasks go
        back to NOT_STARTED; unprocessed messages are queued again.
        """
        tasks = await self.task_store.get_tasks()
        reloaded: List[Task] = []
        for task in tasks:
            if task.status == TaskStatus.IN_PROGRESS:
                task = await self.task_store.update_task(
                    task.id, {"status": TaskStatus.NOT_STARTED, "assigned_to": None}
                ) or task
            reloaded.append(task)
        try:
            self.engine.analyze_dependencies(reloaded)
        except CycleDetectedError as exc:
            logger.error("Stored tasks contain a dependency cycle: %s", exc)

        pending = await self.message_log.get_unprocessed_messages()
        self._queue.extend(pending)
        logger.info("Loaded %d existing tasks and %d pending messages", len(reloaded), len(pending))
        return reloaded

    # ── Tasks ────────────────────────────────────────────────────────

    async def create_task(self, task: Task) -> Task:
        created = await self.task_store.create_task(task)
        self.engine.graph.upsert(created)
        await self._emit(EventType.TASK_CREATED, {"task": created.to_dict()})
        return created

    async def get_available_tasks(self) -> List[Task]:
        return await self.task_store.get_tasks(TaskFilter(status=TaskStatus.NOT_STARTED))

    async def assign_task(self, task_id: str, agent_id: str, *, estimated_hours: Optional[float] = None) -> Task:
        """Bind *task_id* to *agent_id* and send the assignment.

        Raises:
            AgentNotFoundError: unknown agent (checked first; the task is untouched).
            TaskNotFoundError: unknown task.
            AgentNotReadyError: the agent is OFFLINE or in ERROR.
            AgentCannotHandleTaskError: unsupported type, no free slot, or
                the task is already running or finished.
            DependencyBlockedError: a dependency has not completed.
            MessageSendFailedError: the assignment could not be logged; the
                binding is rolled back.
        """
        agent = self._require_agent(agent_id)
        task = await self._require_task(task_id)

        if task.status in (TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED):
            raise AgentCannotHandleTaskError(
                f"Task {task_id} is already {task.status.value}",
                details={"task_id": task_id, "agent_id": agent_id, "status": task.status.value},
            )
        if agent.status in (AgentStatus.OFFLINE, AgentStatus.ERROR):
            raise AgentNotReadyError(
                f"Agent {agent_id} is {agent.status.value}",
                details={"agent_id": agent_id, "status": agent.status.value},
            )
        committed = self.engine.get_workload(agent_id)
        if not agent.can_handle_task(task) or (
            committed is not None and committed.current_tasks >= agent.capabilities.max_concurrent_tasks
        ):
            raise AgentCannotHandleTaskError(
                f"Agent {agent_id} cannot handle task {task_id}",
                details={"task_id": task_id, "agent_id": agent_id, "task_type": task.type.value},
            )
        unmet = await self._unmet_dependencies(task)
        if unmet:
            raise DependencyBlockedError(
                f"Task {task_id} is waiting on {', '.join(unmet)}",
                details={"task_id": task_id, "dependencies": unmet},
            )

        updated = await self.task_store.update_task(
            task_id, {"status": TaskStatus.IN_PROGRESS, "assigned_to": agent_id, "blockers": []}
        )
        self.engine.commit_assignment(agent, updated, estimated_hours)
        message = AgentMessage(
            type=MessageType.TASK_ASSIGNMENT,
            sender=COORDINATOR_ID,
            recipient=agent_id,
            payload={"task": updated.to_dict()},
            priority=MessagePriority.HIGH,
            requires_response=True,
        )
        try:
            await self.send_message(message)
        except MessageSendFailedError:
            self.engine.release_assignment(agent_id, task_id)
            await self.task_store.update_task(
                task_id, {"status": task.status, "assigned_to": task.assigned_to, "blockers": list(task.blockers)}
            )
            raise

        logger.info("Assigned task %s to %s", task_id, agent_id)
        await self._emit(EventType.TASK_ASSIGNED, {"task_id": task_id, "agent_id": agent_id})
        return updated

    async def distribute_task(self, task_id: str, strategy: Optional[str] = None) -> Optional[TaskAssignment]:
        """Let the engine pick an agent for *task_id* and assign it.

        Returns ``None`` when the task cannot be placed right now (no agent
        clears the strategy threshold, or dependencies are unfinished).
        """
        strategy = strategy or self.default_strategy
        task = await self._require_task(task_id)
        if task.status in (TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED):
            raise AgentCannotHandleTaskError(
                f"Task {task_id} is already {task.status.value}",
                details={"task_id": task_id, "status": task.status.value},
            )
        self.engine.get_strategy(strategy)

        unmet = await self._unmet_dependencies(task)
        if unmet:
            logger.info("Task %s not distributed, waiting on %s", task_id, ", ".join(unmet))
            return None

        assignment = self.engine.select_assignment(task, self.get_all_agents(), strategy)
        if assignment is None:
            return None
        await self.assign_task(task_id, assignment.agent_id, estimated_hours=assignment.estimated_duration)
        return assignment

    async def update_task_status(
        self,
        task_id: str,
        status: TaskStatus,
        blockers: Optional[List[str]] = None,
    ) -> Task:
        task = await self._require_task(task_id)
        status = TaskStatus(status)
        changes: Dict[str, Any] = {"status": status}
        if blockers is not None:
            changes["blockers"] = list(blockers)
        if status == TaskStatus.NOT_STARTED and task.assigned_to:
            changes["assigned_to"] = None
            self.engine.release_assignment(task.assigned_to, task_id)
        updated = await self.task_store.update_task(task_id, changes)

        if status == TaskStatus.COMPLETED:
            self.engine.graph.mark_completed(task_id)
        await self._emit(
            EventType.TASK_STATUS_CHANGED,
            {"task_id": task_id, "from": task.status.value, "to": status.value},
        )
        return updated

    async def _unmet_dependencies(self, task: Task) -> List[str]:
        unmet = []
        for dep_id in task.dependencies:
            dep = await self.task_store.get_task(dep_id)
            # dependencies outside the store are treated as resolved
            if dep is not None and dep.status != TaskStatus.COMPLETED:
                unmet.append(dep_id)
        return unmet

    async def _requeue(self, task_id: str, agent_id: str) -> None:
        task = await self.task_store.get_task(task_id)
        if task is None or task.assigned_to != agent_id or task.is_done:
            return
        await self.task_store.update_task(task_id, {"status": TaskStatus.NOT_STARTED, "assigned_to": None})
        self.engine.release_assignment(agent_id, task_id)

    async def _reclaim_tasks(self, agent_id: str) -> None:
        held = await self.task_store.get_tasks(TaskFilter(assigned_to=agent_id))
        for task in held:
            if task.status == TaskStatus.IN_PROGRESS:
                await self._requeue(task.id, agent_id)

    # ── Messaging ────────────────────────────────────────────────────

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    async def send_message(self, message: AgentMessage) -> None:
        """Persist *message* to the log and queue it for the next dispatch tick."""
        try:
            await self.message_log.save_message(message)
        except MessageSendFailedError:
            raise
        except Exception as exc:
            raise MessageSendFailedError(
                f"Could not log message {message.id}: {exc}",
                details={"message_id": message.id, "type": message.type.value},
            ) from exc
        self._queue.append(message)

    async def process_message_queue(self) -> int:
        """Drain the queue, delivering every message. Returns the count delivered."""
        processed = 0
        while self._queue:
            message = self._queue.popleft()
            try:
                await self._deliver(message)
                self._delivered += 1
            except Exception as exc:
                self._dropped += 1
                logger.error("Dropping message %s (%s): %s", message.id, message.type.value, exc)
            try:
                await self.message_log.mark_message_processed(message.id)
            except Exception as exc:
                logger.error("Could not mark message %s processed: %s", message.id, exc)
            processed += 1
        return processed

    async def _deliver(self, message: AgentMessage) -> None:
        if message.is_broadcast:
            for agent in list(self._agents.values()):
                if agent.id == message.sender:
                    continue
                response = await agent.receive_message(message)
                if not response.success:
                    logger.warning("Agent %s rejected broadcast %s: %s", agent.id, message.id, response.error)
            return

        if message.recipient == COORDINATOR_ID:
            await self._handle_coordinator_message(message)
            return

        agent = self._agents.get(message.recipient)
        if agent is None:
            raise AgentNotFoundError(
                f"No agent {message.recipient} for message {message.id}",
                details={"agent_id": message.recipient, "message_id": message.id},
            )
        response = await agent.receive_message(message)
        if not response.success:
            logger.warning("Agent %s failed message %s: %s", agent.id, message.id, response.error)

    async def _dispatch_loop(self) -> None:
        while self._running:
            try:
                await self.process_message_queue()
            except Exception:
                logger.exception("Dispatch tick failed")
            await asyncio.sleep(self.dispatch_interval)

    # ── Agent reports ────────────────────────────────────────────────

    async def _handle_coordinator_message(self, message: AgentMessage) -> None:
        payload = message.payload
        if message.type == MessageType.STATUS_UPDATE:
            kind = payload.get("kind")
            if kind == "result":
                await self.handle_task_result(message.sender, TaskResult.from_dict(payload["result"]))
            elif kind == "rejected":
                await self._handle_rejection(payload["task_id"], message.sender, payload.get("reason", ""))
            else:
                logger.debug("Status update from %s: %s", message.sender, payload)
        elif message.type == MessageType.HUMAN_INPUT_REQUIRED:
            self._spawn(self.request_human_decision(
                task_id=payload["task_id"],
                agent_id=message.sender,
                decision_type=payload.get("decision_type", "approval"),
                question=payload.get("question", ""),
                options=payload.get("options"),
                urgency=DecisionUrgency(payload.get("urgency", DecisionUrgency.MEDIUM.value)),
                timeout=payload.get("timeout"),
            ))
        elif message.type == MessageType.ERROR_REPORT:
            logger.warning("Error report from %s: %s", message.sender, payload)
            await self._emit(EventType.ERROR_OCCURRED, {"agent_id": message.sender, **payload})
        else:
            logger.debug("Ignoring %s from %s", message.type.value, message.sender)

    async def _handle_rejection(self, task_id: str, agent_id: str, reason: str) -> None:
        task = await self.task_store.get_task(task_id)
        if not _bound_to(task, agent_id):
            logger.info("Ignoring stale rejection of task %s from %s", task_id, agent_id)
            return
        logger.warning("Agent %s rejected task %s: %s", agent_id, task_id, reason)
        await self._requeue(task_id, agent_id)
        await self._emit(EventType.TASK_STATUS_CHANGED, {
            "task_id": task_id, "to": TaskStatus.NOT_STARTED.value, "reason": reason,
        })

    async def handle_task_result(self, agent_id: str, result: TaskResult) -> Optional[Task]:
        """Apply an agent's result to the stored task.

        SUCCESS goes through the quality gates (pass: COMPLETED, fail:
        REVIEW); PARTIAL goes to REVIEW; FAILURE blocks the task with the
        reported errors.

        Results from an agent that no longer holds the task are dropped.
        """
        task = await self.task_store.get_task(result.task_id)
        if task is None:
            logger.warning("Result for unknown task %s from %s", result.task_id, agent_id)
            return None
        if not _bound_to(task, agent_id):
            # the task was requeued or reassigned while this run was in flight
            logger.info(
                "Ignoring stale %s result for task %s from %s (now %s, assigned to %s)",
                result.status.value, task.id, agent_id, task.status.value, task.assigned_to,
            )
            return None
        self.engine.record_task_outcome(agent_id, task, result)

        metadata = dict(task.metadata)
        metadata["last_result"] = {
            "status": result.status.value,
            "artifacts": list(result.artifacts),
            "warnings": list(result.warnings),
            "next_steps": list(result.next_steps),
        }
        changes: Dict[str, Any] = {
            "actual_hours": (task.actual_hours or 0.0) + result.duration / 3600.0,
            "metadata": metadata,
        }

        if isinstance(result.output, dict) and isinstance(result.output.get("quality"), dict):
            metadata["quality"] = {**metadata.get("quality", {}), **result.output["quality"]}

        gate = None
        if result.status == ResultStatus.SUCCESS:
            gate = self.engine.evaluate_quality_gates(task.apply({"metadata": metadata}))
            metadata["quality_gate"] = gate.to_dict()
            changes["status"] = TaskStatus.COMPLETED if gate.passed else TaskStatus.REVIEW
            changes["blockers"] = []
        elif result.status == ResultStatus.PARTIAL:
            changes["status"] = TaskStatus.REVIEW
        else:
            changes["status"] = TaskStatus.BLOCKED
            changes["blockers"] = list(result.errors) or ["Task failed without an error message"]

        updated = await self.task_store.update_task(task.id, changes)
        logger.info("Task %s -> %s (%s from %s)", task.id, changes["status"].value, result.status.value, agent_id)

        if gate is not None:
            await self._emit(EventType.QUALITY_GATE_EVALUATED, gate.to_dict())
            if gate.passed:
                self.engine.graph.mark_completed(task.id)
                await self._emit(EventType.TASK_COMPLETED, {"task_id": task.id, "agent_id": agent_id})
                await self._release_dependents(updated)
            else:
                await self.send_message(AgentMessage(
                    type=MessageType.QUALITY_GATE_RESULT,
                    sender=COORDINATOR_ID,
                    payload=gate.to_dict(),
                    priority=MessagePriority.HIGH,
                ))
        elif result.status == ResultStatus.FAILURE:
            await self._emit(EventType.TASK_FAILED, {
                "task_id": task.id, "agent_id": agent_id, "errors": list(result.errors),
                "blocked_downstream": sorted(self.engine.graph.get_downstream(task.id)),
            })
        else:
            await self._emit(EventType.TASK_STATUS_CHANGED, {
                "task_id": task.id, "to": TaskStatus.REVIEW.value,
            })
        return updated

    async def _release_dependents(self, completed: Task) -> None:
        """Notify and optionally distribute tasks unblocked by *completed*."""
        dependents = [
            t for t in await self.task_store.get_tasks()
            if completed.id in t.dependencies
        ]
        if not dependents:
            return
        ready = []
        for task in dependents:
            if task.status == TaskStatus.NOT_STARTED and not await self._unmet_dependencies(task):
                ready.append(task.id)

        await self.send_message(AgentMessage(
            type=MessageType.DEPENDENCY_NOTIFICATION,
            sender=COORDINATOR_ID,
            payload={
                "completed_task_id": completed.id,
                "dependents": [t.id for t in dependents],
                "unblocked": ready,
            },
        ))
        if not self.auto_assign_dependents:
            return
        for task_id in ready:
            try:
                await self.distribute_task(task_id)
            except DevTeamError as exc:
                logger.warning("Could not distribute unblocked task %s: %s", task_id, exc)

    # ── Human decisions ──────────────────────────────────────────────

    async def request_human_decision(
        self,
        task_id: str,
        agent_id: str,
        decision_type: str,
        question: str,
        options: Optional[List[str]] = None,
        urgency: DecisionUrgency = DecisionUrgency.MEDIUM,
        timeout: Optional[float] = None,
    ) -> Optional[str]:
        """Ask a human and wait for the answer.

        An unanswered decision blocks the requesting task and returns ``None``.
        """
        timeout = timeout if timeout is not None else self.decision_timeout
        decision_id = await self.decision_broker.request_decision(
            task_id, agent_id, decision_type, question, options, urgency, timeout
        )
        try:
            return await self.decision_broker.wait_for_decision(decision_id, timeout)
        except DecisionTimeoutError:
            logger.warning("No human decision for task %s, blocking it", task_id)
            task = await self.task_store.get_task(task_id)
            if task is not None:
                await self.task_store.update_task(task_id, {
                    "status": TaskStatus.BLOCKED,
                    "blockers": list(task.blockers) + [f"Awaiting human approval: {question}"],
                })
                await self._emit(EventType.TASK_STATUS_CHANGED, {
                    "task_id": task_id, "to": TaskStatus.BLOCKED.value, "decision_id": decision_id,
                })
            return None

    # ── Projects ─────────────────────────────────────────────────────

    def get_project_templates(self) -> List[ProjectTemplate]:
        return list(self._templates)

    def get_projects(self) -> List[Project]:
        return list(self._projects.values())

    async def create_project(self, template_id: str, name: str) -> Project:
        template = find_template(self._templates, template_id)
        project_id = new_id()
        tasks = build_project_tasks(template, name, project_id)
        for task in tasks:
            await self.task_store.create_task(task)
        self.engine.analyze_dependencies(await self.task_store.get_tasks())

        project = Project(id=project_id, name=name, template_id=template.id, task_ids=tuple(t.id for t in tasks))
        self._projects[project_id] = project
        logger.info("Created project %s from template %s with %d tasks", name, template.id, len(tasks))
        for task in tasks:
            await self._emit(EventType.TASK_CREATED, {"task": task.to_dict(), "project_id": project_id})
        return project

    # ── Helpers ──────────────────────────────────────────────────────

    async def _emit(self, event_type: EventType, data: Dict[str, Any]) -> None:
        if self.event_bus is not None:
            await self.event_bus.publish(event_type, data, source=COORDINATOR_ID)

    def _spawn(self, coro) -> None:
        try:
            job = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            # no loop (sync registration at startup)
            coro.close()
            return
        self._background.add(job)
        job.add_done_callback(self._background.discard)

    def stats(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "agents": len(self._agents),
            "agents_by_status": {
                status.value: sum(1 for a in self._agents.values() if a.status == status)
                for status in AgentStatus
            },
            "queue_length": len(self._queue),
            "delivered": self._delivered,
            "dropped": self._dropped,
            "projects": len(self._projects),
            "messages": self.message_log.stats(),
            "engine": self.engine.stats(),
        }
