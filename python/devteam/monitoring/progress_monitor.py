"""Progress monitor: snapshots, forecasting, risk detection and alerts.

The monitor only reads the agents and tasks it is handed; it never changes
them.  Each captured snapshot is kept in a bounded history (oldest
evicted first), pushed to registered listeners and published on the
event bus.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import json
import logging
from collections import deque
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Sequence, Union

from devteam.agents.runtime import AgentRuntime
from devteam.enhanced_logging import track_performance
from devteam.exceptions import NoSnapshotError
from devteam.interfaces.event_bus import EventType, IEventBus
from devteam.models import HealthState, Task, TaskPriority, TaskStatus, new_id, utcnow
from devteam.monitoring.reports import build_report, quality_direction
from devteam.monitoring.snapshots import (
    AgentHealth,
    AgentHealthState,
    AgentProgressStatus,
    AgentSummary,
    AlertSeverity,
    AlertType,
    BlockerType,
    DashboardData,
    Impact,
    KeyMetric,
    Milestone,
    OverallHealth,
    PhaseProgress,
    ProductivityMetrics,
    ProgressAlert,
    ProgressBlocker,
    ProgressPrediction,
    ProgressReport,
    ProgressSnapshot,
    QualitySnapshot,
    QualityTrend,
    ReportType,
    RiskFactor,
    Scenario,
    ScenarioAnalysis,
)

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 1000
DEFAULT_MONITOR_INTERVAL = 30.0
DEFAULT_EXPECTED_PROGRESS = 50.0
OVERLOAD_VELOCITY = 0.5
TIMELINE_RISK_CONFIDENCE = 0.6

# (factor, probability) per completion scenario
SCENARIOS = {
    "optimistic": (1.3, 0.2),
    "realistic": (1.0, 0.6),
    "pessimistic": (0.7, 0.2),
}

_BLOCKER_KEYWORDS = (
    ("depend", BlockerType.DEPENDENCY),
    ("resource", BlockerType.RESOURCE),
    ("approval", BlockerType.APPROVAL),
    ("external", BlockerType.EXTERNAL),
)

_RESOLUTION = {
    BlockerType.DEPENDENCY: "Finish or re-plan the upstream task",
    BlockerType.RESOURCE: "Free up or add capacity for the blocked work",
    BlockerType.APPROVAL: "Escalate the pending decision to its owner",
    BlockerType.EXTERNAL: "Contact the external party and agree a date",
    BlockerType.TECHNICAL: "Contact relevant stakeholders and prioritize resolution",
}

_IMPACT_BY_PRIORITY = {
    TaskPriority.CRITICAL: Impact.CRITICAL,
    TaskPriority.HIGH: Impact.HIGH,
    TaskPriority.MEDIUM: Impact.MEDIUM,
    TaskPriority.LOW: Impact.LOW,
}

_HEALTH = {
    HealthState.HEALTHY: AgentHealthState.HEALTHY,
    HealthState.DEGRADED: AgentHealthState.DEGRADED,
    HealthState.UNHEALTHY: AgentHealthState.CRITICAL,
}

_QUALITY_CHECKS = ("complexity", "test_coverage", "security", "performance")

ProgressListener = Callable[[ProgressSnapshot], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class ProgressSample:
    """Inputs for one periodic snapshot."""

    project_id: str
    agents: Sequence[AgentRuntime]
    tasks: Sequence[Task]
    critical_path: Sequence[str] = ()


Sampler = Callable[[], Awaitable[ProgressSample]]


def classify_blocker(description: str) -> BlockerType:
    text = description.lower()
    for keyword, blocker_type in _BLOCKER_KEYWORDS:
        if keyword in text:
            return blocker_type
    return BlockerType.TECHNICAL


def confidence_from_risks(risks: Sequence[RiskFactor]) -> float:
    if not risks:
        return 0.95
    mean_risk = sum(r.score for r in risks) / len(risks)
    return max(0.1, 1.0 - mean_risk)


def expected_phase_progress(tasks: Sequence[Task], now: datetime) -> float:
    """Elapsed share of the phase window, 50 when the window is unknown.

    The window runs from the earliest ``created_at`` to the latest due
    date, or to start + total estimated hours when no task has a due date.
    """
    start = min(t.created_at for t in tasks)
    due_dates = [t.due_date for t in tasks if t.due_date is not None]
    if due_dates:
        end = max(due_dates)
    else:
        hours = sum(t.estimated_hours for t in tasks)
        if hours <= 0:
            return DEFAULT_EXPECTED_PROGRESS
        end = start + timedelta(hours=hours)
    span = (end - start).total_seconds()
    if span <= 0:
        return 100.0 if now >= end else DEFAULT_EXPECTED_PROGRESS
    elapsed = (now - start).total_seconds()
    return max(0.0, min(100.0, elapsed / span * 100.0))


def _phase_end(tasks: Sequence[Task]) -> Optional[datetime]:
    due_dates = [t.due_date for t in tasks if t.due_date is not None]
    if due_dates:
        return max(due_dates)
    hours = sum(t.estimated_hours for t in tasks)
    if hours <= 0:
        return None
    return min(t.created_at for t in tasks) + timedelta(hours=hours)


class ProgressMonitor:
    """Samples fleet and task state into snapshots and forecasts."""

    def __init__(
        self,
        event_bus: Optional[IEventBus] = None,
        history_limit: int = HISTORY_LIMIT,
        monitor_interval: float = DEFAULT_MONITOR_INTERVAL,
    ) -> None:
        self.event_bus = event_bus
        self.monitor_interval = monitor_interval
        self._history: Deque[ProgressSnapshot] = deque(maxlen=history_limit)
        self._current: Optional[ProgressSnapshot] = None
        self._listeners: List[ProgressListener] = []
        self._alerts: Deque[ProgressAlert] = deque(maxlen=100)
        self._monitor_task: Optional[asyncio.Task] = None

    # ── History ──────────────────────────────────────────────────────

    @property
    def current_snapshot(self) -> Optional[ProgressSnapshot]:
        return self._current

    @property
    def history(self) -> List[ProgressSnapshot]:
        return list(self._history)

    @property
    def history_limit(self) -> int:
        return self._history.maxlen or HISTORY_LIMIT

    def record_snapshot(self, snapshot: ProgressSnapshot) -> None:
        self._history.append(snapshot)
        self._current = snapshot

    # ── Snapshot capture ─────────────────────────────────────────────

    @track_performance(operation="capture_progress_snapshot")
    async def capture_progress_snapshot(
        self,
        project_id: str,
        agents: Sequence[AgentRuntime],
        tasks: Sequence[Task],
        critical_path: Sequence[str] = (),
    ) -> ProgressSnapshot:
        now = utcnow()
        agent_status = self.collect_agent_status(agents)
        snapshot = ProgressSnapshot(
            timestamp=now,
            project_id=project_id,
            overall_progress=self.calculate_overall_progress(tasks),
            phase_progress=tuple(self.analyze_phase_progress(tasks, now)),
            agent_status=tuple(agent_status),
            blockers=tuple(self.identify_blockers(tasks)),
            predictions=self.generate_prediction(tasks, agent_status, critical_path, now),
            quality_metrics=self.capture_quality_snapshot(tasks, now),
            critical_path=tuple(critical_path),
        )
        self.record_snapshot(snapshot)
        logger.debug(
            "Snapshot for %s: %.1f%% complete, %d blocker(s), confidence %.2f",
            project_id, snapshot.overall_progress, len(snapshot.blockers),
            snapshot.predictions.confidence_level,
        )
        await self._notify(snapshot)
        return snapshot

    @staticmethod
    def calculate_overall_progress(tasks: Sequence[Task]) -> float:
        if not tasks:
            return 0.0
        completed = sum(1 for t in tasks if t.status == TaskStatus.COMPLETED)
        return completed / len(tasks) * 100.0

    def analyze_phase_progress(self, tasks: Sequence[Task], now: Optional[datetime] = None) -> List[PhaseProgress]:
        now = now or utcnow()
        phases: Dict[str, List[Task]] = {}
        for task in tasks:
            phases.setdefault(task.phase, []).append(task)

        progress = []
        for name, phase_tasks in phases.items():
            completed = sum(1 for t in phase_tasks if t.status == TaskStatus.COMPLETED)
            actual = completed / len(phase_tasks) * 100.0
            expected = expected_phase_progress(phase_tasks, now)
            progress.append(PhaseProgress(
                phase_name=name,
                start_date=min(t.created_at for t in phase_tasks),
                estimated_end_date=_phase_end(phase_tasks),
                actual_progress=actual,
                expected_progress=expected,
                tasks_total=len(phase_tasks),
                tasks_completed=completed,
                tasks_in_progress=sum(1 for t in phase_tasks if t.status == TaskStatus.IN_PROGRESS),
                tasks_blocked=sum(1 for t in phase_tasks if t.status == TaskStatus.BLOCKED),
                on_track=actual >= expected,
            ))
        return progress

    def collect_agent_status(self, agents: Sequence[AgentRuntime]) -> List[AgentProgressStatus]:
        statuses = []
        for agent in agents:
            try:
                health = agent.get_health_status()
                metrics = agent.get_metrics()
                in_flight = agent.all_task_progress()
                statuses.append(AgentProgressStatus(
                    agent_id=agent.id,
                    status=agent.status.value,
                    current_tasks=tuple(sorted(agent.current_tasks)),
                    task_progress=(
                        sum(p.percentage for p in in_flight) / len(in_flight) if in_flight else 0.0
                    ),
                    productivity=ProductivityMetrics(
                        tasks_per_hour=metrics.tasks_per_hour,
                        average_task_duration=metrics.average_completion_time,
                        success_rate=metrics.success_rate,
                        velocity_trend=metrics.velocity_trend,
                    ),
                    health=AgentHealth(
                        status=_HEALTH[health.status],
                        error_rate=metrics.error_rate,
                        uptime=health.uptime,
                        last_heartbeat=health.last_check,
                        issues=tuple(health.issues),
                    ),
                ))
            except Exception as exc:
                logger.warning("Could not collect status for agent %s: %s", getattr(agent, "id", agent), exc)
        return statuses

    def identify_blockers(self, tasks: Sequence[Task]) -> List[ProgressBlocker]:
        blockers = []
        for task in tasks:
            if task.status != TaskStatus.BLOCKED:
                continue
            for description in task.blockers:
                blocker_type = classify_blocker(description)
                blockers.append(ProgressBlocker(
                    id=new_id(),
                    task_id=task.id,
                    agent_id=task.assigned_to or "unassigned",
                    type=blocker_type,
                    description=description,
                    impact=_IMPACT_BY_PRIORITY[task.priority],
                    resolution_strategy=_RESOLUTION[blocker_type],
                ))
        return blockers

    # ── Forecasting ──────────────────────────────────────────────────

    def identify_risk_factors(
        self,
        tasks: Sequence[Task],
        agent_status: Sequence[AgentProgressStatus],
        critical_path: Sequence[str] = (),
    ) -> List[RiskFactor]:
        risks = []

        overloaded = [a for a in agent_status if a.productivity.tasks_per_hour < OVERLOAD_VELOCITY]
        if overloaded:
            risks.append(RiskFactor(
                type="AGENT_OVERLOAD",
                probability=0.7,
                impact=0.8,
                description=f"{len(overloaded)} agents showing signs of overload",
                mitigation="Redistribute tasks or add resources",
            ))

        blocked = [t for t in tasks if t.status == TaskStatus.BLOCKED]
        if blocked:
            risks.append(RiskFactor(
                type="TASK_BLOCKERS",
                probability=0.9,
                impact=0.6,
                description=f"{len(blocked)} tasks currently blocked",
                mitigation="Prioritize blocker resolution",
            ))

        on_path = set(critical_path)
        delayed = [t.id for t in blocked if t.id in on_path]
        if delayed:
            risks.append(RiskFactor(
                type="CRITICAL_PATH_DELAY",
                probability=0.8,
                impact=0.9,
                description=f"{len(delayed)} critical path task(s) blocked",
                mitigation="Unblock critical path tasks before starting new work",
            ))
        return risks

    def generate_prediction(
        self,
        tasks: Sequence[Task],
        agent_status: Sequence[AgentProgressStatus],
        critical_path: Sequence[str] = (),
        now: Optional[datetime] = None,
    ) -> ProgressPrediction:
        now = now or utcnow()
        velocities = [a.productivity.tasks_per_hour for a in agent_status]
        velocity = sum(velocities) / len(velocities) if velocities else 0.0
        if velocity <= 0:
            velocity = 1.0
        remaining = sum(
            t.estimated_hours for t in tasks
            if t.status not in (TaskStatus.COMPLETED, TaskStatus.DEFERRED)
        )

        scenarios = {
            name: Scenario(
                completion=now + timedelta(hours=remaining / (velocity * factor)),
                probability=probability,
            )
            for name, (factor, probability) in SCENARIOS.items()
        }
        risks = self.identify_risk_factors(tasks, agent_status, critical_path)
        return ProgressPrediction(
            estimated_completion=scenarios["realistic"].completion,
            confidence_level=confidence_from_risks(risks),
            risk_factors=tuple(risks),
            recommendations=tuple(self._recommendations(tasks, agent_status)),
            scenario_analysis=ScenarioAnalysis(**scenarios),
            remaining_hours=remaining,
            average_velocity=velocity,
        )

    @staticmethod
    def _recommendations(tasks: Sequence[Task], agent_status: Sequence[AgentProgressStatus]) -> List[str]:
        recommendations = []
        blocked = sum(1 for t in tasks if t.status == TaskStatus.BLOCKED)
        if blocked:
            recommendations.append(f"Prioritize resolving {blocked} blocked tasks")
        unhealthy = sum(1 for a in agent_status if a.health.status != AgentHealthState.HEALTHY)
        if unhealthy:
            recommendations.append(f"Monitor {unhealthy} agents showing performance issues")
        if tasks and not any(t.status == TaskStatus.IN_PROGRESS for t in tasks):
            recommendations.append("No tasks currently in progress - consider starting new tasks")
        return recommendations

    # ── Quality ──────────────────────────────────────────────────────

    def capture_quality_snapshot(self, tasks: Sequence[Task], now: Optional[datetime] = None) -> QualitySnapshot:
        results = [t.metadata["quality_gate"] for t in tasks if isinstance(t.metadata.get("quality_gate"), dict)]
        if not results:
            return QualitySnapshot(trends=tuple(self._quality_trends(None, now)))

        def mean(key: str) -> float:
            return sum(float(r.get("checks", {}).get(key, 0.0)) for r in results) / len(results)

        current = QualitySnapshot(
            overall_score=sum(float(r.get("overall_score", 0.0)) for r in results) / len(results),
            complexity=mean("complexity"),
            test_coverage=mean("test_coverage"),
            security=mean("security"),
            performance=mean("performance"),
            evaluated_tasks=len(results),
            pass_rate=sum(1 for r in results if r.get("passed")) / len(results),
        )
        return replace(current, trends=tuple(self._quality_trends(current, now)))

    def _quality_trends(self, current: Optional[QualitySnapshot], now: Optional[datetime]) -> List[QualityTrend]:
        recent = [s for s in list(self._history)[-9:] if s.quality_metrics.evaluated_tasks]
        points = [(s.timestamp, s.quality_metrics) for s in recent]
        if current is not None:
            points.append((now or utcnow(), current))
        if len(points) < 2:
            return []

        trends = []
        for metric in ("overall_score",) + _QUALITY_CHECKS:
            values = tuple(getattr(q, metric) for _, q in points)
            trends.append(QualityTrend(
                metric=metric,
                values=values,
                timestamps=tuple(ts for ts, _ in points),
                trend=quality_direction(values[0], values[-1]),
            ))
        return trends

    # ── Alerts ───────────────────────────────────────────────────────

    async def check_for_alerts(self) -> List[ProgressAlert]:
        """Advisory alerts for the current snapshot (empty before the first one)."""
        snapshot = self._current
        if snapshot is None:
            return []

        alerts = []
        for blocker in snapshot.blockers:
            if blocker.impact == Impact.CRITICAL:
                alerts.append(ProgressAlert(
                    type=AlertType.CRITICAL_BLOCKER,
                    severity=AlertSeverity.HIGH,
                    message=f"Critical blocker detected: {blocker.description}",
                    affected_tasks=(blocker.task_id,),
                    recommended_action=blocker.resolution_strategy or "Immediate attention required",
                ))
        for agent in snapshot.agent_status:
            if agent.health.status == AgentHealthState.CRITICAL:
                alerts.append(ProgressAlert(
                    type=AlertType.AGENT_HEALTH,
                    severity=AlertSeverity.HIGH,
                    message=f"Agent {agent.agent_id} is in critical condition",
                    affected_tasks=agent.current_tasks or ("N/A",),
                    recommended_action="Restart agent or investigate errors",
                ))
        if snapshot.predictions.confidence_level < TIMELINE_RISK_CONFIDENCE:
            alerts.append(ProgressAlert(
                type=AlertType.TIMELINE_RISK,
                severity=AlertSeverity.MEDIUM,
                message="Project timeline at risk based on current velocity",
                affected_tasks=("ALL",),
                recommended_action="Review resource allocation and priorities",
            ))

        for alert in alerts:
            self._alerts.append(alert)
            logger.warning("Progress alert %s: %s", alert.type.value, alert.message)
            if self.event_bus is not None:
                await self.event_bus.publish(EventType.PROGRESS_ALERT, alert.to_dict(), source="monitor")
        return alerts

    # ── Reports & dashboard ──────────────────────────────────────────

    def generate_progress_report(self, report_type: Union[ReportType, str]) -> ProgressReport:
        return build_report(ReportType(report_type), list(self._history))

    def get_dashboard_data(self) -> DashboardData:
        snapshot = self._current
        if snapshot is None:
            raise NoSnapshotError("No progress snapshot available")

        critical_blockers = [b for b in snapshot.blockers if b.impact == Impact.CRITICAL]
        agent_issues = sum(1 for a in snapshot.agent_status if a.health.status != AgentHealthState.HEALTHY)
        if critical_blockers or agent_issues > 2:
            health = OverallHealth.CRITICAL
        elif agent_issues or snapshot.predictions.confidence_level < 0.7:
            health = OverallHealth.WARNING
        else:
            health = OverallHealth.HEALTHY

        agents = snapshot.agent_status
        return DashboardData(
            last_update=snapshot.timestamp,
            overall_health=health,
            critical_issues=tuple(b.description for b in critical_blockers),
            upcoming_milestones=tuple(
                Milestone(
                    name=f"{p.phase_name} complete",
                    date=p.estimated_end_date,
                    progress=p.actual_progress,
                    on_track=p.on_track,
                )
                for p in snapshot.phase_progress if p.actual_progress < 100.0
            ),
            agent_summary=AgentSummary(
                total=len(agents),
                healthy=sum(1 for a in agents if a.health.status == AgentHealthState.HEALTHY),
                degraded=sum(1 for a in agents if a.health.status == AgentHealthState.DEGRADED),
                critical=sum(1 for a in agents if a.health.status == AgentHealthState.CRITICAL),
            ),
            key_metrics=tuple(self._key_metrics(snapshot)),
            recent_alerts=tuple(list(self._alerts)[-10:]),
        )

    def _key_metrics(self, snapshot: ProgressSnapshot) -> List[KeyMetric]:
        previous = self._history[-2] if len(self._history) >= 2 else snapshot
        return [
            KeyMetric(
                name="Overall Progress",
                value=f"{snapshot.overall_progress:.1f}%",
                trend=quality_direction(previous.overall_progress, snapshot.overall_progress),
            ),
            KeyMetric(
                name="Quality Score",
                value=f"{snapshot.quality_metrics.overall_score * 100:.1f}",
                trend=quality_direction(
                    previous.quality_metrics.overall_score, snapshot.quality_metrics.overall_score
                ),
            ),
            KeyMetric(
                name="Prediction Confidence",
                value=f"{snapshot.predictions.confidence_level:.2f}",
                trend=quality_direction(
                    previous.predictions.confidence_level, snapshot.predictions.confidence_level
                ),
            ),
        ]

    # ── Listeners ────────────────────────────────────────────────────

    def on_progress_update(self, listener: ProgressListener) -> None:
        self._listeners.append(listener)

    def remove_progress_update_listener(self, listener: ProgressListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def _notify(self, snapshot: ProgressSnapshot) -> None:
        for listener in list(self._listeners):
            try:
                outcome = listener(snapshot)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as exc:
                logger.warning("Progress listener failed: %s", exc)
        if self.event_bus is not None:
            await self.event_bus.publish(EventType.PROGRESS_SNAPSHOT, snapshot.to_dict(), source="monitor")

    # ── Periodic sampling ────────────────────────────────────────────

    @property
    def is_monitoring(self) -> bool:
        return self._monitor_task is not None and not self._monitor_task.done()

    def start_monitoring(self, sampler: Sampler, interval: Optional[float] = None) -> None:
        """Capture a snapshot (and check alerts) every *interval* seconds."""
        if self.is_monitoring:
            self._monitor_task.cancel()
        interval = interval if interval is not None else self.monitor_interval
        self._monitor_task = asyncio.create_task(self._monitor_loop(sampler, interval))
        logger.info("Progress monitoring started with %.1fs interval", interval)

    async def stop_monitoring(self) -> None:
        if self._monitor_task is None:
            return
        self._monitor_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._monitor_task
        self._monitor_task = None
        logger.info("Progress monitoring stopped")

    async def _monitor_loop(self, sampler: Sampler, interval: float) -> None:
        while True:
            try:
                sample = await sampler()
                await self.capture_progress_snapshot(
                    sample.project_id, sample.agents, sample.tasks, sample.critical_path
                )
                await self.check_for_alerts()
            except Exception:
                logger.exception("Error capturing progress snapshot")
            await asyncio.sleep(interval)

    # ── Persistence ──────────────────────────────────────────────────

    def save_history(self, path: Union[str, Path]) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = [s.to_dict() for s in self._history]
        path.write_text(json.dumps(data, indent=2))
        logger.debug("Saved %d progress snapshots to %s", len(data), path)

    def load_history(self, path: Union[str, Path]) -> int:
        """Replace the history with the snapshots stored at *path*; returns the count loaded."""
        path = Path(path)
        if not path.exists():
            logger.info("No progress history at %s", path)
            return 0
        raw: List[Dict[str, Any]] = json.loads(path.read_text())
        self._history.clear()
        for item in raw:
            self._history.append(ProgressSnapshot.from_dict(item))
        self._current = self._history[-1] if self._history else None
        logger.info("Loaded %d progress snapshots", len(self._history))
        return len(self._history)
