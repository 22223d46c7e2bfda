"""
Coordinator settings (pydantic-settings).
Every field can be overridden with a ``DEVTEAM_``-prefixed environment variable.
"""
import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from devteam.models import AgentConfig

ENVIRONMENTS = ("development", "staging", "production", "test")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LOG_FORMATS = ("json", "text")

class Settings(BaseSettings):
    """Runtime configuration for the coordinator process and its default fleet."""

    model_config = SettingsConfigDict(
        env_prefix="DEVTEAM_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="Dev Team Coordinator", description="Application name")
    environment: str = Field(default="development", description="Environment: development, staging, production")
    api_host: str = Field(default="127.0.0.1", description="API host")
    api_port: int = Field(default=8300, ge=1024, le=65535, description="API port")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="text", description="Log format: json or text")

    # Agent credentials / environment
    anthropic_api_key: Optional[str] = Field(default=None, description="Anthropic API key")
    tavily_api_key: Optional[str] = Field(default=None, description="Tavily API key")
    working_directory: str = Field(default=".", description="Workspace the agents operate in")
    agent_timeout: float = Field(default=300.0, gt=0, description="Agent call timeout in seconds")
    max_retries: int = Field(default=3, ge=0, description="Retries an agent may spend on one call")
    init_grace_period: float = Field(default=60.0, ge=0, description="Seconds an agent may stay INITIALIZING before it is reported degraded")

    # Storage
    database_path: Optional[str] = Field(default=None, description="SQLite path; in-memory stores when unset")

    # Scheduling
    dispatch_interval: float = Field(default=1.0, gt=0, description="Message dispatch tick in seconds")
    default_strategy: str = Field(default="intelligent", description="Default distribution strategy")
    auto_assign_dependents: bool = Field(default=True, description="Distribute dependents when their dependencies complete")

    # Monitoring
    monitor_interval: float = Field(default=30.0, gt=0, description="Progress sampling interval in seconds")
    history_limit: int = Field(default=1000, ge=1, description="Snapshot history ring size")
    default_project_id: str = Field(default="default", description="Project id used by the background monitor")
    history_path: Optional[str] = Field(default=None, description="JSON file the snapshot history is reloaded from and saved to")

    # Human decisions
    decision_timeout: float = Field(default=3600.0, gt=0, description="Default human decision timeout in seconds")

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        return _one_of("Environment", v, ENVIRONMENTS)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        return _one_of("Log level", v.upper(), LOG_LEVELS)

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        return _one_of("Log format", v.lower(), LOG_FORMATS)

    @field_validator("default_strategy")
    @classmethod
    def validate_default_strategy(cls, v: str) -> str:
        """The default strategy must be registered with the distribution engine."""
        from devteam.scheduling.strategies import STRATEGIES
        return _one_of("Strategy", v, sorted(STRATEGIES))

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def get_log_level(self) -> int:
        return getattr(logging, self.log_level)

    def agent_config(self) -> AgentConfig:
        """Build the per-agent configuration from these settings."""
        return AgentConfig(
            anthropic_api_key=self.anthropic_api_key,
            tavily_api_key=self.tavily_api_key,
            max_retries=self.max_retries,
            timeout=self.agent_timeout,
            log_level=self.log_level,
            working_directory=str(Path(self.working_directory).resolve()),
        )

def _one_of(label: str, value: str, allowed) -> str:
    if value not in allowed:
        raise ValueError(f"{label} must be one of {list(allowed)}")
    return value

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings, read from the environment once."""
    return Settings()
