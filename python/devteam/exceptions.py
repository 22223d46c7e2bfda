"""
Error hierarchy for the dev team coordinator.

Every failure the core raises carries a stable ``ErrorCode``, a category and
the HTTP status the command API answers with:
- configuration and lookup errors surface immediately to the caller
- task executor failures never raise (they become FAILURE results)
- quality gate failures are data, not exceptions
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


# ============================================================================
# Enums
# ============================================================================

class ErrorCategory(Enum):
    """Coarse grouping used by API clients to decide how to react."""
    VALIDATION = "validation"           # Bad input or configuration
    NOT_FOUND = "not_found"             # Unknown agent/task/decision/template
    CONFLICT = "conflict"               # Valid request rejected by current state
    STORAGE = "storage"                 # Task store / message log failure
    TIMEOUT = "timeout"
    INTERNAL = "internal"


class ErrorCode(str, Enum):
    """Stable error kinds exposed to callers."""
    CONFIG_INVALID = "CONFIG_INVALID"
    AGENT_INIT_FAILED = "AGENT_INIT_FAILED"
    AGENT_NOT_READY = "AGENT_NOT_READY"
    TASK_NOT_SUPPORTED = "TASK_NOT_SUPPORTED"
    TASK_TYPE_UNSUPPORTED = "TASK_TYPE_UNSUPPORTED"
    AGENT_NOT_FOUND = "AGENT_NOT_FOUND"
    TASK_NOT_FOUND = "TASK_NOT_FOUND"
    AGENT_CANNOT_HANDLE_TASK = "AGENT_CANNOT_HANDLE_TASK"
    STRATEGY_NOT_FOUND = "STRATEGY_NOT_FOUND"
    MESSAGE_SEND_FAILED = "MESSAGE_SEND_FAILED"
    DECISION_TIMEOUT = "DECISION_TIMEOUT"
    DECISION_NOT_FOUND = "DECISION_NOT_FOUND"
    DECISION_ALREADY_RESPONDED = "DECISION_ALREADY_RESPONDED"
    DEPENDENCY_CYCLE = "DEPENDENCY_CYCLE"
    DEPENDENCY_BLOCKED = "DEPENDENCY_BLOCKED"
    TEMPLATE_NOT_FOUND = "TEMPLATE_NOT_FOUND"
    NO_SNAPSHOT = "NO_SNAPSHOT"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# ============================================================================
# Base exception
# ============================================================================

class DevTeamError(Exception):
    """Base class for coordinator errors.

    Subclasses pin ``code``, ``category`` and ``http_status``; instances add
    a message and optional structured ``details``.
    """

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    category: ErrorCategory = ErrorCategory.INTERNAL
    http_status: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = dict(details or {})
        self.error_id = uuid.uuid4().hex
        self.raised_at = datetime.now(timezone.utc)

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        """Body returned by the API error handler."""
        return {
            "error_id": self.error_id,
            "code": self.code.value,
            "category": self.category.value,
            "message": self.message,
            "details": self.details,
            "http_status": self.http_status,
            "timestamp": self.raised_at.isoformat(),
        }


# ============================================================================
# Configuration & lifecycle errors
# ============================================================================

class ConfigurationInvalidError(DevTeamError):
    """Missing credentials or working directory."""
    code = ErrorCode.CONFIG_INVALID
    category = ErrorCategory.VALIDATION
    http_status = 400


class AgentInitError(DevTeamError):
    """Agent initialization failed; the agent is left in ERROR."""
    code = ErrorCode.AGENT_INIT_FAILED


class AgentNotReadyError(DevTeamError):
    """Agent is not accepting work in its current state."""
    code = ErrorCode.AGENT_NOT_READY
    category = ErrorCategory.CONFLICT
    http_status = 409


# ============================================================================
# Task / agent lookup and capability errors
# ============================================================================

class TaskNotSupportedError(DevTeamError):
    """Agent cannot take the task (type unsupported or at capacity)."""
    code = ErrorCode.TASK_NOT_SUPPORTED
    category = ErrorCategory.CONFLICT
    http_status = 422


class TaskTypeUnsupportedError(TaskNotSupportedError):
    code = ErrorCode.TASK_TYPE_UNSUPPORTED


class _NotFoundError(DevTeamError):
    category = ErrorCategory.NOT_FOUND
    http_status = 404


class AgentNotFoundError(_NotFoundError):
    code = ErrorCode.AGENT_NOT_FOUND


class TaskNotFoundError(_NotFoundError):
    code = ErrorCode.TASK_NOT_FOUND


class TemplateNotFoundError(_NotFoundError):
    code = ErrorCode.TEMPLATE_NOT_FOUND


class DecisionNotFoundError(_NotFoundError):
    code = ErrorCode.DECISION_NOT_FOUND


class NoSnapshotError(_NotFoundError):
    """No progress snapshot has been captured yet."""
    code = ErrorCode.NO_SNAPSHOT


class StrategyNotFoundError(DevTeamError):
    code = ErrorCode.STRATEGY_NOT_FOUND
    category = ErrorCategory.VALIDATION
    http_status = 400


class AgentCannotHandleTaskError(DevTeamError):
    code = ErrorCode.AGENT_CANNOT_HANDLE_TASK
    category = ErrorCategory.CONFLICT
    http_status = 409


class DependencyBlockedError(AgentCannotHandleTaskError):
    """A dependency is unfinished or failed its quality gate."""
    code = ErrorCode.DEPENDENCY_BLOCKED


class DecisionAlreadyRespondedError(AgentCannotHandleTaskError):
    code = ErrorCode.DECISION_ALREADY_RESPONDED


class CycleDetectedError(DevTeamError):
    """The task dependency graph contains a cycle."""
    code = ErrorCode.DEPENDENCY_CYCLE
    category = ErrorCategory.VALIDATION
    http_status = 422

    def __init__(self, cycle: List[str]):
        self.cycle = cycle
        super().__init__(
            "Dependency cycle detected: " + " -> ".join(cycle),
            details={"cycle": cycle},
        )


# ============================================================================
# Messaging & decision errors
# ============================================================================

class MessageSendFailedError(DevTeamError):
    code = ErrorCode.MESSAGE_SEND_FAILED
    category = ErrorCategory.STORAGE
    http_status = 503


class DecisionTimeoutError(DevTeamError):
    """A human decision was not answered within its timeout."""
    code = ErrorCode.DECISION_TIMEOUT
    category = ErrorCategory.TIMEOUT
    http_status = 504
