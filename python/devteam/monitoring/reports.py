"""Progress report generation over a window of snapshot history."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from devteam.monitoring.snapshots import (
    AgentHealthState,
    Impact,
    ProgressReport,
    ProgressSnapshot,
    QualityTrendDirection,
    ReportMetrics,
    ReportType,
    TrendAnalysis,
    TrendDirection,
    TrendStrength,
)
from devteam.models import utcnow

logger = logging.getLogger(__name__)

# (metric, strong threshold, moderate threshold) in the metric's own units
_TREND_SCALES = {
    "Overall Progress": (10.0, 3.0),
    "Prediction Confidence": (0.2, 0.05),
    "Quality Score": (0.1, 0.02),
}
_STABLE_EPSILON = 1e-6


def quality_direction(first: float, last: float, tolerance: float = 0.01) -> QualityTrendDirection:
    if last - first > tolerance:
        return QualityTrendDirection.IMPROVING
    if first - last > tolerance:
        return QualityTrendDirection.DECLINING
    return QualityTrendDirection.STABLE


def analyze_trend(metric: str, values: Sequence[float], samples: int) -> TrendAnalysis:
    strong, moderate = _TREND_SCALES.get(metric, (1.0, 0.1))
    delta = values[-1] - values[0] if values else 0.0
    if delta > _STABLE_EPSILON:
        direction = TrendDirection.UP
    elif delta < -_STABLE_EPSILON:
        direction = TrendDirection.DOWN
    else:
        direction = TrendDirection.STABLE

    magnitude = abs(delta)
    if magnitude >= strong:
        strength = TrendStrength.STRONG
    elif magnitude >= moderate:
        strength = TrendStrength.MODERATE
    else:
        strength = TrendStrength.WEAK
    # more samples, more trust
    confidence = round(min(0.95, 0.5 + 0.05 * samples), 2)
    return TrendAnalysis(metric=metric, direction=direction, strength=strength, confidence=confidence)


def _completed(snapshot: ProgressSnapshot) -> int:
    return sum(p.tasks_completed for p in snapshot.phase_progress)


def _summary(snapshots: Sequence[ProgressSnapshot]) -> str:
    if not snapshots:
        return "No data available for the selected time range"
    gain = snapshots[-1].overall_progress - snapshots[0].overall_progress
    return f"Progress increased by {gain:.1f}% over the reporting period"


def _achievements(snapshots: Sequence[ProgressSnapshot]) -> List[str]:
    if not snapshots:
        return []
    first, last = snapshots[0], snapshots[-1]
    achievements: List[str] = []

    finished = _completed(last) - _completed(first)
    if finished > 0:
        achievements.append(f"Completed {finished} task(s)")

    done_before = {p.phase_name for p in first.phase_progress if p.actual_progress >= 100.0}
    for phase in last.phase_progress:
        if phase.actual_progress >= 100.0 and phase.phase_name not in done_before:
            achievements.append(f"Phase {phase.phase_name} completed")

    if not any(b.impact == Impact.CRITICAL for b in last.blockers):
        achievements.append("No critical blockers open")
    if all(
        a.health.status == AgentHealthState.HEALTHY
        for snap in snapshots for a in snap.agent_status
    ) and last.agent_status:
        achievements.append("All agents healthy throughout the period")
    return achievements


def _challenges(snapshots: Sequence[ProgressSnapshot]) -> List[str]:
    if not snapshots:
        return []
    first, last = snapshots[0], snapshots[-1]
    challenges: List[str] = []

    if len(snapshots) > 1 and last.overall_progress <= first.overall_progress and last.overall_progress < 100.0:
        challenges.append("No measurable progress in the period")
    if last.blockers:
        challenges.append(f"{len(last.blockers)} blocker(s) still open")
    for phase in last.phase_progress:
        if not phase.on_track:
            challenges.append(
                f"Phase {phase.phase_name} behind schedule "
                f"({phase.actual_progress:.0f}% vs {phase.expected_progress:.0f}% expected)"
            )
    for agent in last.agent_status:
        if agent.health.status != AgentHealthState.HEALTHY:
            challenges.append(f"Agent {agent.agent_id} reported {agent.health.status.value} health")
    if last.predictions.confidence_level < 0.6:
        challenges.append(f"Timeline confidence fell to {last.predictions.confidence_level:.2f}")
    return challenges


def _recommendations(snapshots: Sequence[ProgressSnapshot]) -> List[str]:
    if not snapshots:
        return []
    last = snapshots[-1]
    recommendations = list(last.predictions.recommendations)
    for risk in last.predictions.risk_factors:
        if risk.mitigation not in recommendations:
            recommendations.append(risk.mitigation)
    return recommendations


def _metrics(snapshots: Sequence[ProgressSnapshot]) -> ReportMetrics:
    if not snapshots:
        return ReportMetrics(velocity_average=0.0, quality_trend=QualityTrendDirection.STABLE, blocker_rate=0)
    velocity = sum(s.predictions.average_velocity for s in snapshots) / len(snapshots)
    return ReportMetrics(
        velocity_average=velocity,
        quality_trend=quality_direction(
            snapshots[0].quality_metrics.overall_score,
            snapshots[-1].quality_metrics.overall_score,
        ),
        blocker_rate=len(snapshots[-1].blockers),
        snapshot_count=len(snapshots),
    )


def _trends(snapshots: Sequence[ProgressSnapshot]) -> List[TrendAnalysis]:
    if not snapshots:
        return []
    n = len(snapshots)
    return [
        analyze_trend("Overall Progress", [s.overall_progress for s in snapshots], n),
        analyze_trend("Prediction Confidence", [s.predictions.confidence_level for s in snapshots], n),
        analyze_trend("Quality Score", [s.quality_metrics.overall_score for s in snapshots], n),
    ]


def snapshots_in_range(
    history: Sequence[ProgressSnapshot], start: datetime, end: datetime
) -> List[ProgressSnapshot]:
    return [s for s in history if start <= s.timestamp <= end]


def build_report(
    report_type: ReportType,
    history: Sequence[ProgressSnapshot],
    now: Optional[datetime] = None,
) -> ProgressReport:
    """Summarize the snapshots falling in *report_type*'s window ending at *now*."""
    report_type = ReportType(report_type)
    end = now or utcnow()
    start = end - report_type.window
    window = snapshots_in_range(history, start, end)
    logger.debug("Building %s report over %d snapshot(s)", report_type.value, len(window))
    return ProgressReport(
        report_type=report_type,
        start=start,
        end=end,
        summary=_summary(window),
        achievements=tuple(_achievements(window)),
        challenges=tuple(_challenges(window)),
        recommendations=tuple(_recommendations(window)),
        metrics=_metrics(window),
        trends=tuple(_trends(window)),
    )


def _bullets(items: Tuple[str, ...]) -> str:
    if not items:
        return "- None\n"
    return "".join(f"- {item}\n" for item in items)


def render_markdown(report: ProgressReport) -> str:
    """Render *report* as a markdown document."""
    content = f"# {report.report_type.value.title()} Progress Report\n\n"
    content += f"Period: {report.start:%Y-%m-%d %H:%M} to {report.end:%Y-%m-%d %H:%M} UTC\n\n"
    content += f"{report.summary}\n\n"
    content += "## Achievements\n" + _bullets(report.achievements) + "\n"
    content += "## Challenges\n" + _bullets(report.challenges) + "\n"
    content += "## Recommendations\n" + _bullets(report.recommendations) + "\n"

    metrics = report.metrics
    content += "## Metrics\n"
    content += f"- Snapshots: {metrics.snapshot_count}\n"
    content += f"- Average velocity: {metrics.velocity_average:.2f} tasks/hour\n"
    content += f"- Quality trend: {metrics.quality_trend.value}\n"
    content += f"- Open blockers: {metrics.blocker_rate}\n"

    if report.trends:
        content += "\n## Trends\n\n"
        content += "| Metric | Direction | Strength | Confidence |\n"
        content += "|--------|-----------|----------|------------|\n"
        for trend in report.trends:
            content += (
                f"| {trend.metric} | {trend.direction.value} | "
                f"{trend.strength.value} | {trend.confidence:.2f} |\n"
            )
    return content
