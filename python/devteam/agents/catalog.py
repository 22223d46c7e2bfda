"""Default agent fleet: capability presets per agent type."""

from __future__ import annotations

from typing import Dict, List, Mapping, Optional

from devteam.agents.runtime import AgentRuntime
from devteam.interfaces.executor import TaskExecutor
from devteam.models import AgentCapabilities, AgentType, SkillLevel, TaskType

T = TaskType

AGENT_PRESETS: Dict[AgentType, AgentCapabilities] = {
    AgentType.ARCHITECTURE_LEAD: AgentCapabilities(
        supported_task_types={T.FOUNDATION, T.AGENT_DEVELOPMENT, T.INTEGRATION, T.DOCUMENTATION},
        skill_level=SkillLevel.EXPERT,
        max_concurrent_tasks=2,
        estimated_task_duration={
            T.FOUNDATION: 2, T.AGENT_DEVELOPMENT: 4, T.INTEGRATION: 3, T.UI_DEVELOPMENT: 1,
            T.TESTING: 2, T.DOCUMENTATION: 1, T.DEPLOYMENT: 2,
        },
        required_apis=("anthropic",),
    ),
    AgentType.FRONTEND_CORE: AgentCapabilities(
        supported_task_types={T.UI_DEVELOPMENT, T.INTEGRATION, T.FOUNDATION},
        skill_level=SkillLevel.SENIOR,
        max_concurrent_tasks=3,
        estimated_task_duration={
            T.FOUNDATION: 3, T.AGENT_DEVELOPMENT: 2, T.INTEGRATION: 2, T.UI_DEVELOPMENT: 4,
            T.TESTING: 2, T.DOCUMENTATION: 1, T.DEPLOYMENT: 1,
        },
        required_apis=("anthropic", "tavily"),
    ),
    AgentType.BACKEND_INTEGRATION: AgentCapabilities(
        supported_task_types={T.INTEGRATION, T.FOUNDATION, T.DEPLOYMENT},
        skill_level=SkillLevel.EXPERT,
        max_concurrent_tasks=3,
        estimated_task_duration={
            T.FOUNDATION: 4, T.AGENT_DEVELOPMENT: 2, T.INTEGRATION: 5, T.UI_DEVELOPMENT: 1,
            T.TESTING: 3, T.DOCUMENTATION: 2, T.DEPLOYMENT: 4,
        },
        required_apis=("anthropic", "tavily"),
    ),
    AgentType.QUALITY_ASSURANCE: AgentCapabilities(
        supported_task_types={T.TESTING, T.INTEGRATION, T.UI_DEVELOPMENT},
        skill_level=SkillLevel.EXPERT,
        max_concurrent_tasks=4,
        estimated_task_duration={
            T.FOUNDATION: 2, T.AGENT_DEVELOPMENT: 3, T.INTEGRATION: 3, T.UI_DEVELOPMENT: 2,
            T.TESTING: 5, T.DOCUMENTATION: 1, T.DEPLOYMENT: 2,
        },
        required_apis=("anthropic", "tavily"),
    ),
    AgentType.DEVOPS: AgentCapabilities(
        supported_task_types={T.DEPLOYMENT, T.INTEGRATION, T.FOUNDATION},
        skill_level=SkillLevel.EXPERT,
        max_concurrent_tasks=2,
        estimated_task_duration={
            T.FOUNDATION: 3, T.AGENT_DEVELOPMENT: 2, T.INTEGRATION: 4, T.UI_DEVELOPMENT: 1,
            T.TESTING: 2, T.DOCUMENTATION: 2, T.DEPLOYMENT: 6,
        },
        required_apis=("anthropic", "tavily"),
    ),
    AgentType.MCP_INTEGRATION: AgentCapabilities(
        supported_task_types={T.AGENT_DEVELOPMENT, T.INTEGRATION, T.DOCUMENTATION},
        skill_level=SkillLevel.EXPERT,
        max_concurrent_tasks=2,
        estimated_task_duration={
            T.FOUNDATION: 2, T.AGENT_DEVELOPMENT: 6, T.INTEGRATION: 4, T.UI_DEVELOPMENT: 2,
            T.TESTING: 3, T.DOCUMENTATION: 3, T.DEPLOYMENT: 2,
        },
        required_apis=("anthropic", "tavily"),
    ),
}

DEFAULT_AGENT_IDS: Dict[AgentType, str] = {
    AgentType.ARCHITECTURE_LEAD: "arch-lead-001",
    AgentType.FRONTEND_CORE: "frontend-core-001",
    AgentType.QUALITY_ASSURANCE: "qa-001",
    AgentType.BACKEND_INTEGRATION: "backend-001",
    AgentType.DEVOPS: "devops-001",
    AgentType.MCP_INTEGRATION: "mcp-001",
}

# The fleet brought up by default.
DEFAULT_FLEET = (
    AgentType.ARCHITECTURE_LEAD,
    AgentType.FRONTEND_CORE,
    AgentType.QUALITY_ASSURANCE,
    AgentType.BACKEND_INTEGRATION,
)


def create_agent(
    agent_type: AgentType,
    agent_id: Optional[str] = None,
    executor: Optional[TaskExecutor] = None,
    **kwargs,
) -> AgentRuntime:
    agent_type = AgentType(agent_type)
    if agent_type not in AGENT_PRESETS:
        raise ValueError(f"No capability preset for {agent_type.value}")
    return AgentRuntime(
        agent_id or DEFAULT_AGENT_IDS[agent_type],
        agent_type,
        AGENT_PRESETS[agent_type],
        executor,
        **kwargs,
    )


def create_default_agents(
    executors: Optional[Mapping[AgentType, TaskExecutor]] = None,
    fleet=DEFAULT_FLEET,
    **kwargs,
) -> List[AgentRuntime]:
    """One runtime per agent type in *fleet*, with its executor if one is registered."""
    executors = executors or {}
    return [create_agent(t, executor=executors.get(t), **kwargs) for t in fleet]
