from devteam.agents.catalog import AGENT_PRESETS, create_agent, create_default_agents
from devteam.agents.runtime import COORDINATOR_ID, AgentRuntime

__all__ = [
    "AGENT_PRESETS",
    "COORDINATOR_ID",
    "AgentRuntime",
    "create_agent",
    "create_default_agents",
]
