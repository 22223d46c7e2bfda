"""Tests for the progress monitor, snapshots and reports (devteam/monitoring/)."""

import asyncio
from datetime import timedelta

import pytest

from devteam.event_bus import InMemoryEventBus
from devteam.exceptions import NoSnapshotError
from devteam.interfaces.event_bus import EventType
from devteam.models import (
    AgentMetrics,
    AgentStatus,
    HealthState,
    HealthStatus,
    Task,
    TaskPriority,
    TaskStatus,
    TaskType,
    utcnow,
)
from devteam.monitoring.progress_monitor import (
    HISTORY_LIMIT,
    ProgressMonitor,
    ProgressSample,
    classify_blocker,
    expected_phase_progress,
)
from devteam.monitoring.reports import build_report, render_markdown
from devteam.monitoring.snapshots import (
    AgentHealth,
    AgentHealthState,
    AgentProgressStatus,
    AlertType,
    BlockerType,
    Impact,
    OverallHealth,
    ProductivityMetrics,
    ReportType,
    TrendDirection,
)
from devteam.scheduling.quality_gates import QualityGateEvaluator


class _StubAgent:
    """Just enough of AgentRuntime for the monitor to sample."""

    def __init__(self, agent_id, tasks_per_hour=2.0, status=AgentStatus.BUSY,
                 health=HealthState.HEALTHY, current_tasks=("t1",)):
        self.id = agent_id
        self.status = status
        self.current_tasks = frozenset(current_tasks)
        self._health = health
        self._tasks_per_hour = tasks_per_hour

    def get_health_status(self):
        return HealthStatus(status=self._health, last_check=utcnow(), uptime=3600.0)

    def get_metrics(self):
        return AgentMetrics(tasks_completed=1, tasks_per_hour=self._tasks_per_hour)

    def all_task_progress(self):
        return []


def _status(agent_id="a1", tasks_per_hour=2.0, status="BUSY", health=AgentHealthState.HEALTHY):
    return AgentProgressStatus(
        agent_id=agent_id,
        status=status,
        current_tasks=("t1",) if status == "BUSY" else (),
        task_progress=0.0,
        productivity=ProductivityMetrics(
            tasks_per_hour=tasks_per_hour, average_task_duration=0.0, success_rate=1.0, velocity_trend=0.0,
        ),
        health=AgentHealth(status=health, error_rate=0.0, uptime=3600.0, last_heartbeat=utcnow()),
    )


def _task(task_id, status=TaskStatus.NOT_STARTED, phase="Build", hours=2.0, metadata=None, **kwargs):
    return Task(
        id=task_id,
        title=task_id,
        type=TaskType.FOUNDATION,
        status=status,
        estimated_hours=hours,
        metadata={"phase": phase, **(metadata or {})},
        **kwargs,
    )


# --- Snapshot contents ---


async def test_overall_progress_and_phases():
    monitor = ProgressMonitor()
    tasks = [
        _task("a", TaskStatus.COMPLETED, phase="Setup"),
        _task("b", TaskStatus.IN_PROGRESS, phase="Setup"),
        _task("c", phase="Build"),
        _task("d", TaskStatus.BLOCKED, phase="Build", blockers=["flaky integration env"]),
    ]
    snapshot = await monitor.capture_progress_snapshot("proj", [_StubAgent("a1")], tasks)

    assert snapshot.overall_progress == pytest.approx(25.0)
    phases = {p.phase_name: p for p in snapshot.phase_progress}
    assert phases["Setup"].actual_progress == pytest.approx(50.0)
    assert phases["Setup"].tasks_in_progress == 1
    assert phases["Build"].tasks_blocked == 1
    assert len(snapshot.agent_status) == 1
    assert snapshot.agent_status[0].productivity.tasks_per_hour == 2.0
    assert monitor.current_snapshot is snapshot


async def test_empty_project():
    monitor = ProgressMonitor()
    snapshot = await monitor.capture_progress_snapshot("proj", [], [])
    assert snapshot.overall_progress == 0.0
    assert snapshot.phase_progress == ()
    assert snapshot.predictions.average_velocity == 1.0


def test_expected_phase_progress_is_time_based():
    start = utcnow() - timedelta(hours=1)
    tasks = [_task("a", hours=2.0, created_at=start), _task("b", hours=2.0, created_at=start)]
    assert expected_phase_progress(tasks, utcnow()) == pytest.approx(25.0, abs=1.0)


def test_expected_phase_progress_defaults_without_estimates():
    assert expected_phase_progress([_task("a", hours=0.0)], utcnow()) == 50.0


def test_phase_behind_schedule_is_off_track():
    start = utcnow() - timedelta(hours=3)
    monitor = ProgressMonitor()
    phases = monitor.analyze_phase_progress([_task("a", hours=4.0, created_at=start)])
    assert phases[0].expected_progress == pytest.approx(75.0, abs=1.0)
    assert phases[0].on_track is False


def test_blocker_classification():
    assert classify_blocker("Waiting on dependency api-schema") == BlockerType.DEPENDENCY
    assert classify_blocker("Not enough Resources in staging") == BlockerType.RESOURCE
    assert classify_blocker("Awaiting human approval: ship it?") == BlockerType.APPROVAL
    assert classify_blocker("External vendor outage") == BlockerType.EXTERNAL
    assert classify_blocker("Segfault in parser") == BlockerType.TECHNICAL


def test_blocker_impact_follows_priority():
    monitor = ProgressMonitor()
    tasks = [
        _task("crit", TaskStatus.BLOCKED, priority=TaskPriority.CRITICAL, blockers=["prod db down"], assigned_to="be-1"),
        _task("low", TaskStatus.BLOCKED, priority=TaskPriority.LOW, blockers=["typo", "lint"]),
        _task("ok", blockers=["stale note"]),
    ]
    blockers = monitor.identify_blockers(tasks)
    assert len(blockers) == 3
    by_task = {b.task_id: b for b in blockers}
    assert by_task["crit"].impact == Impact.CRITICAL
    assert by_task["crit"].agent_id == "be-1"
    assert by_task["low"].impact == Impact.LOW
    assert by_task["low"].agent_id == "unassigned"


# --- Forecasting ---


def test_scenarios_from_velocity_and_remaining_work():
    monitor = ProgressMonitor()
    now = utcnow()
    tasks = [
        _task("a", hours=6.0),
        _task("b", TaskStatus.IN_PROGRESS, hours=4.0),
        _task("done", TaskStatus.COMPLETED, hours=100.0),
        _task("later", TaskStatus.DEFERRED, hours=100.0),
    ]
    agents = [_status("a1", 1.0), _status("a2", 3.0)]
    prediction = monitor.generate_prediction(tasks, agents, now=now)

    assert prediction.remaining_hours == pytest.approx(10.0)
    assert prediction.average_velocity == pytest.approx(2.0)
    scenarios = prediction.scenario_analysis
    assert scenarios.realistic.completion == now + timedelta(hours=5.0)
    assert scenarios.optimistic.completion == now + timedelta(hours=10.0 / 2.6)
    assert scenarios.pessimistic.completion == now + timedelta(hours=10.0 / 1.4)
    assert (scenarios.optimistic.probability, scenarios.realistic.probability,
            scenarios.pessimistic.probability) == (0.2, 0.6, 0.2)
    assert prediction.estimated_completion == scenarios.realistic.completion
    assert scenarios.optimistic.completion < scenarios.realistic.completion < scenarios.pessimistic.completion


def test_zero_velocity_falls_back_to_one():
    monitor = ProgressMonitor()
    now = utcnow()
    prediction = monitor.generate_prediction([_task("a", hours=3.0)], [_status(tasks_per_hour=0.0, status="READY")], now=now)
    assert prediction.average_velocity == 1.0
    assert prediction.estimated_completion == now + timedelta(hours=3.0)


def test_no_risks_gives_high_confidence():
    monitor = ProgressMonitor()
    prediction = monitor.generate_prediction([_task("a")], [_status(tasks_per_hour=2.0)])
    assert prediction.risk_factors == ()
    assert prediction.confidence_level == pytest.approx(0.95)


def test_overload_risk_for_slow_agents():
    monitor = ProgressMonitor()
    risks = monitor.identify_risk_factors([_task("a")], [_status("a1", 0.3), _status("a2", 0.3, status="READY")])
    assert [r.type for r in risks] == ["AGENT_OVERLOAD"]
    assert risks[0].probability == 0.7
    assert risks[0].impact == 0.8


def test_idle_slow_agents_count_as_overloaded():
    monitor = ProgressMonitor()
    idle = [_status("a1", 0.3, status="READY"), _status("a2", 0.3, status="READY")]
    risks = monitor.identify_risk_factors([_task("a")], idle)
    assert [r.type for r in risks] == ["AGENT_OVERLOAD"]
    assert monitor.generate_prediction([_task("a")], idle).confidence_level == pytest.approx(0.44)


def test_agents_at_threshold_are_not_overloaded():
    monitor = ProgressMonitor()
    assert monitor.identify_risk_factors([_task("a")], [_status("a1", 0.5, status="READY")]) == []


def test_blocked_critical_path_risk():
    monitor = ProgressMonitor()
    tasks = [_task("a", TaskStatus.BLOCKED, blockers=["x"])]
    risks = monitor.identify_risk_factors(tasks, [], critical_path=["a"])
    assert {r.type for r in risks} == {"TASK_BLOCKERS", "CRITICAL_PATH_DELAY"}
    prediction = monitor.generate_prediction(tasks, [], critical_path=["a"])
    # mean(0.9*0.6, 0.8*0.9) = 0.63
    assert prediction.confidence_level == pytest.approx(0.37)


# --- Alerts ---


async def test_no_alerts_before_first_snapshot():
    assert await ProgressMonitor().check_for_alerts() == []


async def test_slow_agents_raise_timeline_risk():
    bus = InMemoryEventBus()
    published = []
    await bus.subscribe(EventType.PROGRESS_ALERT, lambda data: published.append(data))
    monitor = ProgressMonitor(event_bus=bus)
    agents = [
        _StubAgent("a1", tasks_per_hour=0.3, status=AgentStatus.READY, current_tasks=()),
        _StubAgent("a2", tasks_per_hour=0.3, status=AgentStatus.READY, current_tasks=()),
    ]

    snapshot = await monitor.capture_progress_snapshot("proj", agents, [_task("t1", TaskStatus.IN_PROGRESS)])
    assert [r.type for r in snapshot.predictions.risk_factors] == ["AGENT_OVERLOAD"]
    assert snapshot.predictions.confidence_level == pytest.approx(0.44)
    assert snapshot.predictions.confidence_level < 0.6

    alerts = await monitor.check_for_alerts()
    assert [a.type for a in alerts] == [AlertType.TIMELINE_RISK]
    assert published[0]["type"] == "TIMELINE_RISK"


async def test_critical_blocker_and_agent_health_alerts():
    monitor = ProgressMonitor()
    agents = [_StubAgent("a1", health=HealthState.UNHEALTHY, current_tasks=())]
    tasks = [_task("t1", TaskStatus.BLOCKED, priority=TaskPriority.CRITICAL, blockers=["prod db down"])]
    await monitor.capture_progress_snapshot("proj", agents, tasks)

    alerts = {a.type: a for a in await monitor.check_for_alerts()}
    assert alerts[AlertType.CRITICAL_BLOCKER].affected_tasks == ("t1",)
    assert alerts[AlertType.AGENT_HEALTH].affected_tasks == ("N/A",)


# --- History ---


async def test_history_is_bounded():
    monitor = ProgressMonitor()
    assert monitor.history_limit == HISTORY_LIMIT == 1000
    for i in range(HISTORY_LIMIT + 1):
        await monitor.capture_progress_snapshot(f"p{i}", [], [])
    history = monitor.history
    assert len(history) == HISTORY_LIMIT
    assert history[0].project_id == "p1"
    assert history[-1].project_id == f"p{HISTORY_LIMIT}"


async def test_save_and_load_history(tmp_path):
    monitor = ProgressMonitor()
    tasks = [_task("a", TaskStatus.BLOCKED, blockers=["waiting on dependency"]), _task("b", TaskStatus.COMPLETED)]
    await monitor.capture_progress_snapshot("proj", [_StubAgent("a1", tasks_per_hour=0.2)], tasks, ["a"])
    path = tmp_path / "history" / "progress.json"
    monitor.save_history(path)

    restored = ProgressMonitor()
    assert restored.load_history(path) == 1
    original, loaded = monitor.current_snapshot, restored.current_snapshot
    assert loaded.project_id == "proj"
    assert loaded.timestamp == original.timestamp
    assert loaded.blockers[0].type == BlockerType.DEPENDENCY
    assert loaded.agent_status[0].health.status == AgentHealthState.HEALTHY
    assert loaded.critical_path == ("a",)
    assert loaded.to_dict() == original.to_dict()


def test_load_missing_history(tmp_path):
    assert ProgressMonitor().load_history(tmp_path / "nope.json") == 0


# --- Quality ---


async def test_quality_snapshot_averages_gate_results():
    evaluator = QualityGateEvaluator()
    good = _task("good")
    bad = _task("bad", metadata={"quality": {"coverage": 0.4}})
    tasks = [
        _task("good", TaskStatus.COMPLETED, metadata={"quality_gate": evaluator.evaluate(good).to_dict()}),
        _task("bad", TaskStatus.REVIEW, metadata={"quality_gate": evaluator.evaluate(bad).to_dict()}),
        _task("none"),
    ]
    monitor = ProgressMonitor()
    quality = monitor.capture_quality_snapshot(tasks)
    assert quality.evaluated_tasks == 2
    assert quality.pass_rate == pytest.approx(0.5)
    assert quality.test_coverage == pytest.approx((0.9 + 0.4) / 2)
    assert quality.trends == ()


def test_quality_snapshot_without_results():
    quality = ProgressMonitor().capture_quality_snapshot([_task("a")])
    assert quality.evaluated_tasks == 0
    assert quality.overall_score == 0.0


# --- Reports & dashboard ---


async def test_report_over_history():
    monitor = ProgressMonitor()
    await monitor.capture_progress_snapshot("proj", [], [_task("a"), _task("b")])
    await monitor.capture_progress_snapshot("proj", [], [_task("a", TaskStatus.COMPLETED), _task("b")])

    report = monitor.generate_progress_report(ReportType.DAILY)
    assert report.summary == "Progress increased by 50.0% over the reporting period"
    assert "Completed 1 task(s)" in report.achievements
    assert report.metrics.snapshot_count == 2
    progress_trend = next(t for t in report.trends if t.metric == "Overall Progress")
    assert progress_trend.direction == TrendDirection.UP

    markdown = render_markdown(report)
    assert markdown.startswith("# Daily Progress Report")
    assert "## Achievements" in markdown
    assert "| Overall Progress | UP |" in markdown


def test_report_without_history():
    report = build_report(ReportType.WEEKLY, [])
    assert report.summary == "No data available for the selected time range"
    assert report.trends == ()
    assert "- None" in render_markdown(report)


async def test_report_window_excludes_old_snapshots():
    monitor = ProgressMonitor()
    await monitor.capture_progress_snapshot("proj", [], [_task("a")])
    later = utcnow() + timedelta(days=2)
    report = build_report(ReportType.DAILY, monitor.history, now=later)
    assert report.metrics.snapshot_count == 0
    report = build_report(ReportType.WEEKLY, monitor.history, now=later)
    assert report.metrics.snapshot_count == 1


async def test_dashboard_requires_snapshot():
    with pytest.raises(NoSnapshotError):
        ProgressMonitor().get_dashboard_data()


async def test_dashboard_flags_critical_blockers():
    monitor = ProgressMonitor()
    tasks = [
        _task("a", TaskStatus.BLOCKED, priority=TaskPriority.CRITICAL, blockers=["prod db down"], phase="Setup"),
        _task("b", TaskStatus.COMPLETED, phase="Done"),
    ]
    await monitor.capture_progress_snapshot("proj", [_StubAgent("a1")], tasks)
    await monitor.check_for_alerts()

    dashboard = monitor.get_dashboard_data()
    assert dashboard.overall_health == OverallHealth.CRITICAL
    assert dashboard.critical_issues == ("prod db down",)
    assert [m.name for m in dashboard.upcoming_milestones] == ["Setup complete"]
    assert dashboard.agent_summary.total == 1
    assert dashboard.agent_summary.healthy == 1
    assert [m.name for m in dashboard.key_metrics] == ["Overall Progress", "Quality Score", "Prediction Confidence"]
    assert dashboard.recent_alerts
    assert dashboard.to_dict()["overall_health"] == "CRITICAL"


async def test_dashboard_healthy():
    monitor = ProgressMonitor()
    await monitor.capture_progress_snapshot("proj", [_StubAgent("a1")], [_task("a", TaskStatus.IN_PROGRESS)])
    assert monitor.get_dashboard_data().overall_health == OverallHealth.HEALTHY


# --- Listeners & periodic sampling ---


async def test_listeners_are_notified():
    monitor = ProgressMonitor()
    seen = []

    async def async_listener(snapshot):
        seen.append(("async", snapshot.project_id))

    def broken_listener(snapshot):
        raise RuntimeError("listener bug")

    def sync_listener(snapshot):
        seen.append(("sync", snapshot.project_id))

    monitor.on_progress_update(async_listener)
    monitor.on_progress_update(broken_listener)
    monitor.on_progress_update(sync_listener)
    await monitor.capture_progress_snapshot("p1", [], [])
    assert seen == [("async", "p1"), ("sync", "p1")]

    monitor.remove_progress_update_listener(sync_listener)
    await monitor.capture_progress_snapshot("p2", [], [])
    assert seen[-1] == ("async", "p2")
    assert len(seen) == 3


async def test_periodic_sampling():
    monitor = ProgressMonitor()

    async def sampler():
        return ProgressSample(project_id="proj", agents=(), tasks=(_task("a"),))

    monitor.start_monitoring(sampler, interval=0.01)
    try:
        assert monitor.is_monitoring
        for _ in range(100):
            if monitor.history:
                break
            await asyncio.sleep(0.01)
        assert monitor.current_snapshot.project_id == "proj"
    finally:
        await monitor.stop_monitoring()
    assert not monitor.is_monitoring
