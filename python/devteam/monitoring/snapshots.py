"""Value objects produced by the progress monitor.

All records are frozen; ``to_dict`` gives a JSON-ready dict and the
snapshot tree can be rebuilt with ``from_dict`` (history persistence).
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Type, TypeVar

from devteam.models import utcnow

T = TypeVar("T")


# ── Enums ────────────────────────────────────────────────────────────


class BlockerType(str, Enum):
    DEPENDENCY = "DEPENDENCY"
    RESOURCE = "RESOURCE"
    TECHNICAL = "TECHNICAL"
    APPROVAL = "APPROVAL"
    EXTERNAL = "EXTERNAL"


class Impact(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class AgentHealthState(str, Enum):
    HEALTHY = "HEALTHY"
    DEGRADED = "DEGRADED"
    CRITICAL = "CRITICAL"


class AlertType(str, Enum):
    CRITICAL_BLOCKER = "CRITICAL_BLOCKER"
    AGENT_HEALTH = "AGENT_HEALTH"
    TIMELINE_RISK = "TIMELINE_RISK"


class AlertSeverity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class ReportType(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MILESTONE = "MILESTONE"

    @property
    def window(self) -> timedelta:
        return _REPORT_WINDOWS[self]


_REPORT_WINDOWS = {
    ReportType.DAILY: timedelta(days=1),
    ReportType.WEEKLY: timedelta(days=7),
    ReportType.MILESTONE: timedelta(days=30),
}


class QualityTrendDirection(str, Enum):
    IMPROVING = "IMPROVING"
    STABLE = "STABLE"
    DECLINING = "DECLINING"


class TrendDirection(str, Enum):
    UP = "UP"
    DOWN = "DOWN"
    STABLE = "STABLE"


class TrendStrength(str, Enum):
    WEAK = "WEAK"
    MODERATE = "MODERATE"
    STRONG = "STRONG"


class OverallHealth(str, Enum):
    HEALTHY = "HEALTHY"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


# ── Serialization helpers ────────────────────────────────────────────


def _jsonable(value: Any) -> Any:
    if is_dataclass(value):
        return {f.name: _jsonable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def _dt(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _restore(cls: Type[T], data: Mapping[str, Any], **converters: Callable[[Any], Any]) -> T:
    values = {f.name: data[f.name] for f in fields(cls) if f.name in data}
    for name, convert in converters.items():
        if values.get(name) is not None:
            values[name] = convert(values[name])
    return cls(**values)


def _many(loader: Callable[[Any], T]) -> Callable[[Any], Tuple[T, ...]]:
    return lambda items: tuple(loader(item) for item in items)


class _Record:
    def to_dict(self) -> Dict[str, Any]:
        return _jsonable(self)


# ── Snapshot tree ────────────────────────────────────────────────────


@dataclass(frozen=True)
class PhaseProgress(_Record):
    phase_name: str
    start_date: datetime
    estimated_end_date: Optional[datetime]
    actual_progress: float
    expected_progress: float
    tasks_total: int
    tasks_completed: int
    tasks_in_progress: int
    tasks_blocked: int
    on_track: bool

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PhaseProgress":
        return _restore(cls, data, start_date=_dt, estimated_end_date=_dt)


@dataclass(frozen=True)
class ProductivityMetrics(_Record):
    tasks_per_hour: float
    average_task_duration: float
    success_rate: float
    velocity_trend: float

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProductivityMetrics":
        return _restore(cls, data)


@dataclass(frozen=True)
class AgentHealth(_Record):
    status: AgentHealthState
    error_rate: float
    uptime: float
    last_heartbeat: datetime
    issues: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AgentHealth":
        return _restore(cls, data, status=AgentHealthState, last_heartbeat=_dt, issues=tuple)


@dataclass(frozen=True)
class AgentProgressStatus(_Record):
    agent_id: str
    status: str
    current_tasks: Tuple[str, ...]
    task_progress: float
    productivity: ProductivityMetrics
    health: AgentHealth
    last_update: datetime = field(default_factory=utcnow)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AgentProgressStatus":
        return _restore(
            cls, data,
            current_tasks=tuple,
            productivity=ProductivityMetrics.from_dict,
            health=AgentHealth.from_dict,
            last_update=_dt,
        )


@dataclass(frozen=True)
class ProgressBlocker(_Record):
    id: str
    task_id: str
    agent_id: str
    type: BlockerType
    description: str
    impact: Impact
    created_at: datetime = field(default_factory=utcnow)
    resolution_strategy: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProgressBlocker":
        return _restore(cls, data, type=BlockerType, impact=Impact, created_at=_dt)


@dataclass(frozen=True)
class RiskFactor(_Record):
    type: str
    probability: float
    impact: float
    description: str
    mitigation: str

    @property
    def score(self) -> float:
        return self.probability * self.impact

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RiskFactor":
        return _restore(cls, data)


@dataclass(frozen=True)
class Scenario(_Record):
    completion: datetime
    probability: float

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Scenario":
        return _restore(cls, data, completion=_dt)


@dataclass(frozen=True)
class ScenarioAnalysis(_Record):
    optimistic: Scenario
    realistic: Scenario
    pessimistic: Scenario

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ScenarioAnalysis":
        return _restore(
            cls, data,
            optimistic=Scenario.from_dict,
            realistic=Scenario.from_dict,
            pessimistic=Scenario.from_dict,
        )


@dataclass(frozen=True)
class ProgressPrediction(_Record):
    estimated_completion: datetime
    confidence_level: float
    risk_factors: Tuple[RiskFactor, ...]
    recommendations: Tuple[str, ...]
    scenario_analysis: ScenarioAnalysis
    remaining_hours: float = 0.0
    average_velocity: float = 1.0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProgressPrediction":
        return _restore(
            cls, data,
            estimated_completion=_dt,
            risk_factors=_many(RiskFactor.from_dict),
            recommendations=tuple,
            scenario_analysis=ScenarioAnalysis.from_dict,
        )


@dataclass(frozen=True)
class QualityTrend(_Record):
    metric: str
    values: Tuple[float, ...]
    timestamps: Tuple[datetime, ...]
    trend: QualityTrendDirection

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "QualityTrend":
        return _restore(
            cls, data,
            values=tuple,
            timestamps=_many(_dt),
            trend=QualityTrendDirection,
        )


@dataclass(frozen=True)
class QualitySnapshot(_Record):
    """Averages over the quality gate results recorded on tasks (0 when none)."""

    overall_score: float = 0.0
    test_coverage: float = 0.0
    complexity: float = 0.0
    security: float = 0.0
    performance: float = 0.0
    evaluated_tasks: int = 0
    pass_rate: float = 0.0
    trends: Tuple[QualityTrend, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "QualitySnapshot":
        return _restore(cls, data, trends=_many(QualityTrend.from_dict))


@dataclass(frozen=True)
class ProgressSnapshot(_Record):
    timestamp: datetime
    project_id: str
    overall_progress: float
    phase_progress: Tuple[PhaseProgress, ...]
    agent_status: Tuple[AgentProgressStatus, ...]
    blockers: Tuple[ProgressBlocker, ...]
    predictions: ProgressPrediction
    quality_metrics: QualitySnapshot
    critical_path: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProgressSnapshot":
        return _restore(
            cls, data,
            timestamp=_dt,
            phase_progress=_many(PhaseProgress.from_dict),
            agent_status=_many(AgentProgressStatus.from_dict),
            blockers=_many(ProgressBlocker.from_dict),
            predictions=ProgressPrediction.from_dict,
            quality_metrics=QualitySnapshot.from_dict,
            critical_path=tuple,
        )


# ── Alerts, reports, dashboard ───────────────────────────────────────


@dataclass(frozen=True)
class ProgressAlert(_Record):
    type: AlertType
    severity: AlertSeverity
    message: str
    affected_tasks: Tuple[str, ...]
    recommended_action: str
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class ReportMetrics(_Record):
    velocity_average: float
    quality_trend: QualityTrendDirection
    blocker_rate: int
    snapshot_count: int = 0


@dataclass(frozen=True)
class TrendAnalysis(_Record):
    metric: str
    direction: TrendDirection
    strength: TrendStrength
    confidence: float


@dataclass(frozen=True)
class ProgressReport(_Record):
    report_type: ReportType
    start: datetime
    end: datetime
    summary: str
    achievements: Tuple[str, ...]
    challenges: Tuple[str, ...]
    recommendations: Tuple[str, ...]
    metrics: ReportMetrics
    trends: Tuple[TrendAnalysis, ...]


@dataclass(frozen=True)
class Milestone(_Record):
    name: str
    date: Optional[datetime]
    progress: float
    on_track: bool


@dataclass(frozen=True)
class AgentSummary(_Record):
    total: int = 0
    healthy: int = 0
    degraded: int = 0
    critical: int = 0


@dataclass(frozen=True)
class KeyMetric(_Record):
    name: str
    value: str
    trend: QualityTrendDirection


@dataclass(frozen=True)
class DashboardData(_Record):
    last_update: datetime
    overall_health: OverallHealth
    critical_issues: Tuple[str, ...]
    upcoming_milestones: Tuple[Milestone, ...]
    agent_summary: AgentSummary
    key_metrics: Tuple[KeyMetric, ...]
    recent_alerts: Tuple[ProgressAlert, ...] = ()
