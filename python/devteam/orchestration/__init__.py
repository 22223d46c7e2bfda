from devteam.orchestration.coordinator import Coordinator
from devteam.orchestration.decisions import DecisionStatus, HumanDecision, HumanDecisionBroker
from devteam.orchestration.templates import (
    BUILTIN_TEMPLATES,
    Project,
    ProjectPhase,
    ProjectTemplate,
    build_project_tasks,
)

__all__ = [
    "BUILTIN_TEMPLATES",
    "Coordinator",
    "DecisionStatus",
    "HumanDecision",
    "HumanDecisionBroker",
    "Project",
    "ProjectPhase",
    "ProjectTemplate",
    "build_project_tasks",
]
