"""Domain types shared by the agent runtime, scheduler, coordinator and monitor.

Tasks and messages carry enough structure to be persisted through the task
store / message log collaborators (``to_record`` / ``from_record``) and to be
marshalled over the in-process message bus (``to_dict`` / ``from_dict``).
"""

from __future__ import annotations

import copy
import json
import uuid
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple

DEFAULT_TASK_HOURS = 4.0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# ── Task enums ───────────────────────────────────────────────────────


class TaskType(str, Enum):
    """Kind of work a task represents; agents declare which kinds they take."""

    FOUNDATION = "FOUNDATION"
    AGENT_DEVELOPMENT = "AGENT_DEVELOPMENT"
    INTEGRATION = "INTEGRATION"
    UI_DEVELOPMENT = "UI_DEVELOPMENT"
    TESTING = "TESTING"
    DOCUMENTATION = "DOCUMENTATION"
    DEPLOYMENT = "DEPLOYMENT"


class TaskPriority(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def weight(self) -> int:
        """Numeric priority on a 1 (LOW) – 4 (CRITICAL) scale."""
        return _PRIORITY_WEIGHTS[self]


_PRIORITY_WEIGHTS = {
    TaskPriority.CRITICAL: 4,
    TaskPriority.HIGH: 3,
    TaskPriority.MEDIUM: 2,
    TaskPriority.LOW: 1,
}


class TaskStatus(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    BLOCKED = "BLOCKED"
    REVIEW = "REVIEW"
    TESTING = "TESTING"
    COMPLETED = "COMPLETED"
    DEFERRED = "DEFERRED"


# ── Task ─────────────────────────────────────────────────────────────

_JSON_COLUMNS = ("dependencies", "blockers", "tags", "metadata")


@dataclass
class Task:
    """A unit of work with type, priority, status, dependencies and effort estimate."""

    id: str
    title: str
    type: TaskType
    priority: TaskPriority = TaskPriority.MEDIUM
    status: TaskStatus = TaskStatus.NOT_STARTED
    description: str = ""
    assigned_to: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    due_date: Optional[datetime] = None
    dependencies: List[str] = field(default_factory=list)
    blockers: List[str] = field(default_factory=list)
    estimated_hours: float = 0.0
    actual_hours: Optional[float] = None
    tags: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.type = TaskType(self.type)
        self.priority = TaskPriority(self.priority)
        self.status = TaskStatus(self.status)
        self.created_at = _parse_dt(self.created_at) or utcnow()
        self.updated_at = _parse_dt(self.updated_at) or utcnow()
        self.due_date = _parse_dt(self.due_date)

    @property
    def phase(self) -> str:
        return str(self.metadata.get("phase") or "Unknown")

    @property
    def is_done(self) -> bool:
        return self.status in (TaskStatus.COMPLETED, TaskStatus.DEFERRED)

    def copy(self) -> "Task":
        return copy.deepcopy(self)

    def apply(self, changes: Mapping[str, Any]) -> "Task":
        """Return a copy with *changes* applied and ``updated_at`` bumped."""
        unknown = set(changes) - set(self.__dataclass_fields__)
        if unknown:
            raise ValueError(f"Unknown task fields: {sorted(unknown)}")
        updated = replace(self.copy(), **copy.deepcopy(dict(changes)))
        if "updated_at" not in changes:
            updated.updated_at = utcnow()
        return updated

    # ── Persistence ──────────────────────────────────────────────────

    def to_record(self) -> Dict[str, Any]:
        """Row layout used by the task store (JSON text for list/object columns)."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "type": self.type.value,
            "priority": self.priority.value,
            "status": self.status.value,
            "assigned_to": self.assigned_to,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "due_date": _iso(self.due_date),
            "dependencies": json.dumps(self.dependencies),
            "blockers": json.dumps(self.blockers),
            "estimated_hours": self.estimated_hours,
            "actual_hours": self.actual_hours,
            "tags": json.dumps(self.tags),
            "metadata": json.dumps(self.metadata, default=str),
        }

    @classmethod
    def from_record(cls, row: Mapping[str, Any]) -> "Task":
        data = dict(row)
        for column in _JSON_COLUMNS:
            value = data.get(column)
            if isinstance(value, (str, bytes)):
                data[column] = json.loads(value) if value else None
        return cls(
            id=data["id"],
            title=data["title"],
            description=data.get("description") or "",
            type=TaskType(data["type"]),
            priority=TaskPriority(data["priority"]),
            status=TaskStatus(data["status"]),
            assigned_to=data.get("assigned_to"),
            created_at=_parse_dt(data.get("created_at")) or utcnow(),
            updated_at=_parse_dt(data.get("updated_at")) or utcnow(),
            due_date=_parse_dt(data.get("due_date")),
            dependencies=list(data.get("dependencies") or []),
            blockers=list(data.get("blockers") or []),
            estimated_hours=float(data.get("estimated_hours") or 0.0),
            actual_hours=data.get("actual_hours"),
            tags=list(data.get("tags") or []),
            metadata=dict(data.get("metadata") or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        record = self.to_record()
        for column in _JSON_COLUMNS:
            record[column] = copy.deepcopy(getattr(self, column))
        return record


# ── Agents ───────────────────────────────────────────────────────────


class AgentType(str, Enum):
    ARCHITECTURE_LEAD = "ARCHITECTURE_LEAD"
    FRONTEND_CORE = "FRONTEND_CORE"
    FRONTEND_UIUX = "FRONTEND_UIUX"
    FRONTEND_VISUALIZATION = "FRONTEND_VISUALIZATION"
    BACKEND_INTEGRATION = "BACKEND_INTEGRATION"
    QUALITY_ASSURANCE = "QUALITY_ASSURANCE"
    DEVOPS = "DEVOPS"
    MCP_INTEGRATION = "MCP_INTEGRATION"


class AgentStatus(str, Enum):
    INITIALIZING = "INITIALIZING"
    READY = "READY"
    BUSY = "BUSY"
    BLOCKED = "BLOCKED"
    ERROR = "ERROR"
    OFFLINE = "OFFLINE"


class SkillLevel(str, Enum):
    JUNIOR = "junior"
    MID = "mid"
    SENIOR = "senior"
    EXPERT = "expert"


@dataclass(frozen=True)
class AgentCapabilities:
    """Immutable declaration of what an agent can take on.

    ``required_apis`` names the credentials (``anthropic``, ``tavily``, ...)
    that must be present in the :class:`AgentConfig` at initialization.
    """

    supported_task_types: FrozenSet[TaskType]
    skill_level: SkillLevel = SkillLevel.MID
    max_concurrent_tasks: int = 1
    estimated_task_duration: Mapping[TaskType, float] = field(default_factory=dict)
    required_apis: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.max_concurrent_tasks < 1:
            raise ValueError("max_concurrent_tasks must be >= 1")
        object.__setattr__(
            self, "supported_task_types",
            frozenset(TaskType(t) for t in self.supported_task_types),
        )
        object.__setattr__(self, "skill_level", SkillLevel(self.skill_level))
        object.__setattr__(
            self, "estimated_task_duration",
            MappingProxyType({TaskType(k): float(v) for k, v in dict(self.estimated_task_duration).items()}),
        )
        object.__setattr__(self, "required_apis", tuple(self.required_apis))

    def supports(self, task_type: TaskType) -> bool:
        return task_type in self.supported_task_types

    def duration_for(self, task_type: TaskType) -> float:
        return self.estimated_task_duration.get(task_type, DEFAULT_TASK_HOURS)


@dataclass
class AgentConfig:
    """Runtime configuration handed to an agent at initialization."""

    anthropic_api_key: Optional[str] = None
    tavily_api_key: Optional[str] = None
    max_retries: int = 3
    timeout: float = 300.0
    log_level: str = "INFO"
    working_directory: str = ""
    extra_credentials: Dict[str, str] = field(default_factory=dict)

    def credential(self, api: str) -> Optional[str]:
        value = getattr(self, f"{api.lower()}_api_key", None)
        return value or self.extra_credentials.get(api)


class HealthState(str, Enum):
    HEALTHY = "HEALTHY"
    DEGRADED = "DEGRADED"
    UNHEALTHY = "UNHEALTHY"


@dataclass(frozen=True)
class HealthStatus:
    status: HealthState
    last_check: datetime
    uptime: float
    issues: Tuple[str, ...] = ()


@dataclass(frozen=True)
class AgentMetrics:
    tasks_completed: int = 0
    tasks_failed: int = 0
    average_completion_time: float = 0.0
    tasks_per_hour: float = 0.0
    success_rate: float = 1.0
    error_rate: float = 0.0
    uptime: float = 0.0
    velocity_trend: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ── Task execution ───────────────────────────────────────────────────


class ResultStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    PARTIAL = "PARTIAL"


@dataclass
class TaskResult:
    """Outcome contract every task executor returns. ``duration`` is in seconds."""

    task_id: str
    status: ResultStatus
    output: Any = None
    artifacts: List[str] = field(default_factory=list)
    duration: float = 0.0
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    next_steps: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.status = ResultStatus(self.status)

    @property
    def succeeded(self) -> bool:
        return self.status == ResultStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TaskResult":
        return cls(
            task_id=data["task_id"],
            status=ResultStatus(data["status"]),
            output=data.get("output"),
            artifacts=list(data.get("artifacts") or []),
            duration=float(data.get("duration") or 0.0),
            errors=list(data.get("errors") or []),
            warnings=list(data.get("warnings") or []),
            next_steps=list(data.get("next_steps") or []),
        )


@dataclass(frozen=True)
class TaskProgress:
    task_id: str
    percentage: float = 0.0
    current_step: str = ""
    time_spent: float = 0.0
    estimated_remaining: float = 0.0
    last_update: datetime = field(default_factory=utcnow)


# ── Messaging ────────────────────────────────────────────────────────


class MessageType(str, Enum):
    TASK_ASSIGNMENT = "TASK_ASSIGNMENT"
    STATUS_UPDATE = "STATUS_UPDATE"
    COORDINATION_REQUEST = "COORDINATION_REQUEST"
    DEPENDENCY_NOTIFICATION = "DEPENDENCY_NOTIFICATION"
    QUALITY_GATE_RESULT = "QUALITY_GATE_RESULT"
    HUMAN_INPUT_REQUIRED = "HUMAN_INPUT_REQUIRED"
    ERROR_REPORT = "ERROR_REPORT"
    KNOWLEDGE_SHARING = "KNOWLEDGE_SHARING"


class MessagePriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


@dataclass(frozen=True)
class AgentMessage:
    """A bus message. ``recipient=None`` means broadcast to every agent."""

    type: MessageType
    sender: str
    payload: Dict[str, Any] = field(default_factory=dict)
    recipient: Optional[str] = None
    priority: MessagePriority = MessagePriority.MEDIUM
    requires_response: bool = False
    correlation_id: Optional[str] = None
    id: str = field(default_factory=new_id)
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def is_broadcast(self) -> bool:
        return self.recipient is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "sender": self.sender,
            "recipient": self.recipient,
            "timestamp": _iso(self.timestamp),
            "payload": self.payload,
            "priority": self.priority.value,
            "requires_response": self.requires_response,
            "correlation_id": self.correlation_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AgentMessage":
        payload = data.get("payload") or {}
        if isinstance(payload, str):
            payload = json.loads(payload)
        return cls(
            id=data["id"],
            type=MessageType(data["type"]),
            sender=data["sender"],
            recipient=data.get("recipient"),
            timestamp=_parse_dt(data.get("timestamp")) or utcnow(),
            payload=dict(payload),
            priority=MessagePriority(data.get("priority") or MessagePriority.MEDIUM.value),
            requires_response=bool(data.get("requires_response")),
            correlation_id=data.get("correlation_id"),
        )


@dataclass(frozen=True)
class AgentResponse:
    message_id: str
    success: bool
    data: Any = None
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)
