"""Per-agent lifecycle and task-execution bookkeeping.

An :class:`AgentRuntime` owns its status, its set of in-flight tasks and
their progress records.  Everything else (coordinator, monitor, scheduler)
only reads that state through the query methods.

State machine::

    INITIALIZING ──► READY ◄──► BUSY
         │             │          │
         └──► ERROR ◄──┴──────────┘        (unrecoverable fault)
                       READY | BUSY ──► OFFLINE   (stop; restart() re-initializes)

The concrete work is delegated to a pluggable :data:`TaskExecutor` (or an
``execute_task_impl`` override); its failures become FAILURE results and
never escape the runtime.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections import deque
from pathlib import Path
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set

from devteam.exceptions import (
    AgentInitError,
    AgentNotReadyError,
    ConfigurationInvalidError,
    MessageSendFailedError,
    TaskNotFoundError,
    TaskNotSupportedError,
    TaskTypeUnsupportedError,
)
from devteam.interfaces.executor import TaskExecutor
from devteam.models import (
    AgentCapabilities,
    AgentConfig,
    AgentMessage,
    AgentMetrics,
    AgentResponse,
    AgentStatus,
    AgentType,
    HealthState,
    HealthStatus,
    MessagePriority,
    MessageType,
    ResultStatus,
    Task,
    TaskProgress,
    TaskResult,
    utcnow,
)

logger = logging.getLogger(__name__)

COORDINATOR_ID = "coordinator"

Outbox = Callable[[AgentMessage], Awaitable[None]]
MessageHandler = Callable[[AgentMessage], Awaitable[Any]]

# Statuses in which new work is admitted (subject to capacity).
_ACCEPTING = (AgentStatus.READY, AgentStatus.BUSY)


class AgentRuntime:
    """Lifecycle state machine and execution slots for one worker."""

    def __init__(
        self,
        agent_id: str,
        agent_type: AgentType,
        capabilities: AgentCapabilities,
        executor: Optional[TaskExecutor] = None,
        *,
        init_grace_period: float = 60.0,
    ) -> None:
        self.id = agent_id
        self.type = AgentType(agent_type)
        self.capabilities = capabilities
        self.init_grace_period = init_grace_period

        self._executor = executor
        self._config: Optional[AgentConfig] = None
        self._status = AgentStatus.INITIALIZING
        self._status_since = time.monotonic()
        self._started_at = time.monotonic()
        self._running = False
        self._issues: List[str] = []

        self._current_tasks: Dict[str, Task] = {}
        self._progress: Dict[str, TaskProgress] = {}
        self._task_started: Dict[str, float] = {}

        # Metrics
        self._completed = 0
        self._failed = 0
        self._total_duration = 0.0
        self._recent_durations: Deque[float] = deque(maxlen=20)

        # Messaging
        self._outbox: Optional[Outbox] = None
        self._subscriptions: List[str] = []
        self._inbox: Deque[AgentMessage] = deque(maxlen=100)
        self._background: Set[asyncio.Task] = set()
        self._handlers: Dict[MessageType, MessageHandler] = {
            MessageType.TASK_ASSIGNMENT: self._on_task_assignment,
            MessageType.STATUS_UPDATE: self._on_status_request,
            MessageType.COORDINATION_REQUEST: self._on_status_request,
            MessageType.DEPENDENCY_NOTIFICATION: self._on_notification,
            MessageType.QUALITY_GATE_RESULT: self._on_notification,
            MessageType.HUMAN_INPUT_REQUIRED: self._on_notification,
            MessageType.KNOWLEDGE_SHARING: self._on_knowledge,
            MessageType.ERROR_REPORT: self._on_error_report,
        }

    def __repr__(self) -> str:
        return f"<AgentRuntime {self.id} {self.type.value} {self._status.value}>"

    # ── Read-only state ──────────────────────────────────────────────

    @property
    def status(self) -> AgentStatus:
        return self._status

    @property
    def current_tasks(self) -> frozenset:
        return frozenset(self._current_tasks)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def config(self) -> Optional[AgentConfig]:
        return self._config

    @property
    def subscriptions(self) -> List[str]:
        return list(self._subscriptions)

    @property
    def inbox(self) -> List[AgentMessage]:
        """Notifications received (dependency, quality gate, knowledge, ...)."""
        return list(self._inbox)

    def _set_status(self, status: AgentStatus) -> None:
        if status != self._status:
            logger.debug("Agent %s: %s -> %s", self.id, self._status.value, status.value)
            self._status = status
            self._status_since = time.monotonic()

    # ── Lifecycle ────────────────────────────────────────────────────

    async def initialize(self, config: AgentConfig) -> None:
        """Validate configuration, acquire resources and become READY.

        Raises:
            AgentInitError: chained from the underlying cause (usually a
                ``ConfigurationInvalidError``); the agent is left in ERROR.
        """
        self._set_status(AgentStatus.INITIALIZING)
        self._config = config
        try:
            self.validate_configuration(config)
            await self.initialize_resources(config)
        except Exception as exc:
            self._issues = [str(exc)]
            self._set_status(AgentStatus.ERROR)
            logger.error("Agent %s failed to initialize: %s", self.id, exc)
            raise AgentInitError(
                f"Agent {self.id} failed to initialize: {exc}",
                details={"agent_id": self.id, "cause": getattr(exc, "code", type(exc).__name__)},
            ) from exc
        self._issues = []
        self._started_at = time.monotonic()
        self._set_status(AgentStatus.READY)
        logger.info("Agent %s (%s) initialized", self.id, self.type.value)

    def validate_configuration(self, config: AgentConfig) -> None:
        """Check the credentials named in ``required_apis`` and the working directory."""
        missing = [api for api in self.capabilities.required_apis if not config.credential(api)]
        if missing:
            raise ConfigurationInvalidError(
                f"Missing credentials for: {', '.join(missing)}",
                details={"agent_id": self.id, "missing": missing},
            )
        workdir = config.working_directory
        if not workdir or not Path(workdir).is_dir():
            raise ConfigurationInvalidError(
                f"Working directory {workdir!r} does not exist",
                details={"agent_id": self.id, "working_directory": workdir},
            )

    async def initialize_resources(self, config: AgentConfig) -> None:
        """Hook for subclasses (clients, caches, ...)."""

    async def on_start(self) -> None:
        """Hook for subclasses."""

    async def cleanup(self) -> None:
        """Hook for subclasses."""

    async def start(self) -> None:
        if self._status != AgentStatus.READY:
            raise AgentNotReadyError(
                f"Agent {self.id} cannot start from {self._status.value}",
                details={"agent_id": self.id, "status": self._status.value},
            )
        await self.on_start()
        self._running = True
        logger.info("Agent %s started", self.id)

    async def stop(self) -> List[str]:
        """Go OFFLINE, dropping every in-flight task.

        Cancellation is bookkeeping only: a running executor is not
        interrupted, its eventual result is reported as cancelled.
        Returns the ids of the cancelled tasks.
        """
        cancelled = list(self._current_tasks)
        for task_id in cancelled:
            self.cancel_task(task_id)
        self._running = False
        await self.cleanup()
        self._set_status(AgentStatus.OFFLINE)
        logger.info("Agent %s stopped (%d task(s) cancelled)", self.id, len(cancelled))
        return cancelled

    async def restart(self) -> None:
        """stop → initialize (last config) → start, with fresh metrics."""
        await self.stop()
        self._reset_metrics()
        await self.initialize(self._config or AgentConfig())
        await self.start()

    def mark_error(self, reason: str) -> None:
        """Unrecoverable fault reported from outside the executor."""
        self._issues.append(reason)
        self._set_status(AgentStatus.ERROR)

    def set_blocked(self, blocked: bool) -> None:
        if blocked and self._status in _ACCEPTING:
            self._set_status(AgentStatus.BLOCKED)
        elif not blocked and self._status == AgentStatus.BLOCKED:
            self._set_status(AgentStatus.BUSY if self._current_tasks else AgentStatus.READY)

    def cancel_task(self, task_id: str) -> bool:
        if task_id not in self._current_tasks:
            return False
        self._current_tasks.pop(task_id, None)
        self._progress.pop(task_id, None)
        self._task_started.pop(task_id, None)
        logger.info("Agent %s: task %s cancelled", self.id, task_id)
        return True

    def _reset_metrics(self) -> None:
        self._completed = 0
        self._failed = 0
        self._total_duration = 0.0
        self._recent_durations.clear()

    # ── Task execution ───────────────────────────────────────────────

    def can_handle_task(self, task: Task) -> bool:
        return (
            self.capabilities.supports(task.type)
            and len(self._current_tasks) < self.capabilities.max_concurrent_tasks
        )

    def _admit(self, task: Task) -> None:
        if not self.capabilities.supports(task.type):
            raise TaskTypeUnsupportedError(
                f"Agent {self.id} does not support {task.type.value} tasks",
                details={"agent_id": self.id, "task_id": task.id, "task_type": task.type.value},
            )
        if len(self._current_tasks) >= self.capabilities.max_concurrent_tasks:
            raise TaskNotSupportedError(
                f"Agent {self.id} is at capacity ({self.capabilities.max_concurrent_tasks})",
                details={"agent_id": self.id, "task_id": task.id},
            )
        if self._status not in _ACCEPTING:
            raise AgentNotReadyError(
                f"Agent {self.id} is {self._status.value}",
                details={"agent_id": self.id, "status": self._status.value},
            )
        self._current_tasks[task.id] = task
        self._task_started[task.id] = time.monotonic()
        self._progress[task.id] = TaskProgress(
            task_id=task.id,
            current_step="started",
            estimated_remaining=self.capabilities.duration_for(task.type),
        )
        self._set_status(AgentStatus.BUSY)

    async def execute_task(self, task: Task) -> TaskResult:
        """Run *task* in one capacity slot and return its result.

        Raises:
            TaskTypeUnsupportedError: task type not supported.
            TaskNotSupportedError: no free slot.
            AgentNotReadyError: agent is not READY/BUSY.
        """
        self._admit(task)
        return await self._run_admitted(task)

    async def _run_admitted(self, task: Task) -> TaskResult:
        started = self._task_started.get(task.id, time.monotonic())
        try:
            result = await self._invoke_executor(task)
        except Exception as exc:
            logger.error("Agent %s: task %s raised %s", self.id, task.id, exc, exc_info=True)
            result = TaskResult(task_id=task.id, status=ResultStatus.FAILURE, errors=[str(exc)])
        elapsed = time.monotonic() - started
        if result.duration <= 0:
            result.duration = elapsed

        if task.id not in self._current_tasks:
            # stop() or cancel_task() dropped it while the executor ran
            result = TaskResult(
                task_id=task.id,
                status=ResultStatus.FAILURE,
                output=result.output,
                duration=result.duration,
                errors=[f"Task cancelled: agent {self.id} went {self._status.value}"],
            )
        else:
            self._current_tasks.pop(task.id)
            self._progress.pop(task.id, None)
            self._task_started.pop(task.id, None)
            self._record_outcome(result)

        if self._status not in (AgentStatus.OFFLINE, AgentStatus.ERROR, AgentStatus.BLOCKED):
            self._set_status(AgentStatus.BUSY if self._current_tasks else AgentStatus.READY)
        logger.info(
            "Agent %s finished task %s: %s in %.2fs",
            self.id, task.id, result.status.value, result.duration,
        )
        return result

    async def _invoke_executor(self, task: Task) -> TaskResult:
        if self._executor is not None:
            outcome = self._executor(task)
            if inspect.isawaitable(outcome):
                outcome = await outcome
        else:
            outcome = await self.execute_task_impl(task)
        if not isinstance(outcome, TaskResult):
            raise TypeError(f"Executor returned {type(outcome).__name__}, expected TaskResult")
        return outcome

    async def execute_task_impl(self, task: Task) -> TaskResult:
        """Subclass hook used when no executor was injected."""
        raise NotImplementedError(f"No task executor registered for agent {self.id}")

    def _record_outcome(self, result: TaskResult) -> None:
        if result.status == ResultStatus.FAILURE:
            self._failed += 1
            return
        self._completed += 1
        self._total_duration += result.duration
        self._recent_durations.append(result.duration)

    # ── Progress ─────────────────────────────────────────────────────

    def update_task_progress(self, task_id: str, percentage: float, current_step: str) -> None:
        """Last-write-wins progress update; unknown tasks are ignored."""
        previous = self._progress.get(task_id)
        if previous is None:
            return
        pct = max(0.0, min(100.0, float(percentage)))
        spent = time.monotonic() - self._task_started.get(task_id, time.monotonic())
        estimate_hours = self.capabilities.duration_for(self._current_tasks[task_id].type)
        self._progress[task_id] = TaskProgress(
            task_id=task_id,
            percentage=pct,
            current_step=current_step,
            time_spent=spent,
            estimated_remaining=estimate_hours * (1 - pct / 100.0),
            last_update=utcnow(),
        )
        logger.debug("Task %s progress: %.0f%% - %s", task_id, pct, current_step)

    def get_task_progress(self, task_id: str) -> TaskProgress:
        progress = self._progress.get(task_id)
        if progress is None:
            raise TaskNotFoundError(
                f"Agent {self.id} has no task {task_id}",
                details={"agent_id": self.id, "task_id": task_id},
            )
        return progress

    def all_task_progress(self) -> List[TaskProgress]:
        return list(self._progress.values())

    # ── Health & metrics ─────────────────────────────────────────────

    def uptime(self) -> float:
        return time.monotonic() - self._started_at

    def get_health_status(self) -> HealthStatus:
        issues = list(self._issues)
        if self._status in (AgentStatus.ERROR, AgentStatus.OFFLINE):
            state = HealthState.UNHEALTHY
            issues.insert(0, f"Agent is {self._status.value}")
        elif self._status == AgentStatus.BLOCKED:
            state = HealthState.DEGRADED
            issues.insert(0, "Agent is blocked")
        elif (
            self._status == AgentStatus.INITIALIZING
            and time.monotonic() - self._status_since > self.init_grace_period
        ):
            state = HealthState.DEGRADED
            issues.insert(0, "Initialization exceeded grace period")
        else:
            state = HealthState.HEALTHY
        return HealthStatus(status=state, last_check=utcnow(), uptime=self.uptime(), issues=tuple(issues))

    def get_metrics(self) -> AgentMetrics:
        uptime = self.uptime()
        finished = self._completed + self._failed
        success_rate = self._completed / finished if finished else 1.0
        average = self._total_duration / self._completed if self._completed else 0.0

        trend = 0.0
        if average and len(self._recent_durations) >= 2:
            recent = list(self._recent_durations)[-5:]
            # positive = recent tasks finishing faster than the running average
            trend = (average - sum(recent) / len(recent)) / average

        return AgentMetrics(
            tasks_completed=self._completed,
            tasks_failed=self._failed,
            average_completion_time=average,
            tasks_per_hour=self._completed / max(uptime / 3600.0, 1.0),
            success_rate=success_rate,
            error_rate=(self._failed / finished) if finished else 0.0,
            uptime=uptime,
            velocity_trend=trend,
        )

    def snapshot(self) -> Dict[str, Any]:
        health = self.get_health_status()
        return {
            "id": self.id,
            "type": self.type.value,
            "status": self._status.value,
            "health": health.status.value,
            "issues": list(health.issues),
            "current_tasks": sorted(self._current_tasks),
            "max_concurrent_tasks": self.capabilities.max_concurrent_tasks,
            "supported_task_types": sorted(t.value for t in self.capabilities.supported_task_types),
            "skill_level": self.capabilities.skill_level.value,
            "metrics": self.get_metrics().to_dict(),
        }

    # ── Messaging ────────────────────────────────────────────────────

    def attach_outbox(self, outbox: Optional[Outbox]) -> None:
        self._outbox = outbox

    def subscribe_to_topic(self, topic: str) -> None:
        if topic not in self._subscriptions:
            self._subscriptions.append(topic)
            logger.debug("Agent %s subscribed to topic %s", self.id, topic)

    async def send_message(self, message: AgentMessage) -> None:
        if self._outbox is None:
            raise MessageSendFailedError(
                f"Agent {self.id} is not attached to a coordinator",
                details={"agent_id": self.id, "message_id": message.id},
            )
        await self._outbox(message)

    async def receive_message(self, message: AgentMessage) -> AgentResponse:
        handler = self._handlers.get(message.type)
        if handler is None:
            return AgentResponse(message_id=message.id, success=False, error=f"Unhandled message type {message.type}")
        try:
            data = await handler(message)
        except Exception as exc:
            logger.warning("Agent %s failed to handle %s %s: %s", self.id, message.type.value, message.id, exc)
            return AgentResponse(message_id=message.id, success=False, error=str(exc))
        return AgentResponse(message_id=message.id, success=True, data=data)

    async def wait_idle(self) -> None:
        """Await every background execution started from assignment messages."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _on_task_assignment(self, message: AgentMessage) -> Dict[str, Any]:
        task = Task.from_record(message.payload["task"])
        try:
            self._admit(task)
        except Exception as exc:
            await self._report(message, {"kind": "rejected", "task_id": task.id, "reason": str(exc)})
            raise
        job = asyncio.create_task(self._execute_and_report(task, message))
        self._background.add(job)
        job.add_done_callback(self._background.discard)
        return {"accepted": True, "task_id": task.id}

    async def _execute_and_report(self, task: Task, message: AgentMessage) -> None:
        result = await self._run_admitted(task)
        try:
            await self._report(message, {"kind": "result", "task_id": task.id, "result": result.to_dict()})
        except Exception:
            logger.error("Agent %s could not report result for %s", self.id, task.id, exc_info=True)

    async def _report(self, request: AgentMessage, payload: Dict[str, Any]) -> None:
        await self.send_message(
            AgentMessage(
                type=MessageType.STATUS_UPDATE,
                sender=self.id,
                recipient=request.sender or COORDINATOR_ID,
                payload={**payload, "agent_id": self.id},
                priority=MessagePriority.HIGH,
                correlation_id=request.id,
            )
        )

    async def _on_status_request(self, message: AgentMessage) -> Dict[str, Any]:
        return {
            "status": self._status.value,
            "current_tasks": sorted(self._current_tasks),
            "available_slots": self.capabilities.max_concurrent_tasks - len(self._current_tasks),
        }

    async def _on_notification(self, message: AgentMessage) -> Dict[str, Any]:
        self._inbox.append(message)
        return {"acknowledged": True}

    async def _on_knowledge(self, message: AgentMessage) -> Dict[str, Any]:
        topic = message.payload.get("topic")
        if topic is not None and self._subscriptions and topic not in self._subscriptions:
            return {"acknowledged": False, "reason": "not subscribed"}
        self._inbox.append(message)
        return {"acknowledged": True}

    async def _on_error_report(self, message: AgentMessage) -> Dict[str, Any]:
        logger.warning("Agent %s received error report from %s: %s", self.id, message.sender, message.payload)
        self._inbox.append(message)
        return {"acknowledged": True}
