"""Dependency injection container for the coordinator service.

Wires stores, the event bus, the distribution engine, the coordinator and
the progress monitor from ``Settings``. Services are created on first access.
"""

import logging
from typing import Any, Dict, Optional

from devteam.monitoring.progress_monitor import ProgressSample

logger = logging.getLogger(__name__)


class DevTeamContainer:
    """Central service container for one coordinator process."""

    def __init__(self, settings=None) -> None:
        self._settings = settings
        self._event_bus = None
        self._task_store = None
        self._message_log = None
        self._decision_broker = None
        self._engine = None
        self._coordinator = None
        self._monitor = None
        self._started = False

    @property
    def settings(self):
        if self._settings is None:
            from devteam.config.settings import get_settings
            self._settings = get_settings()
        return self._settings

    @property
    def event_bus(self):
        if self._event_bus is None:
            from devteam.event_bus import InMemoryEventBus
            self._event_bus = InMemoryEventBus()
        return self._event_bus

    @property
    def task_store(self):
        if self._task_store is None:
            path = self.settings.database_path
            if path:
                from devteam.storage.sqlite_store import SqliteTaskStore
                self._task_store = SqliteTaskStore(path)
                logger.info("Task store: sqlite at %s", path)
            else:
                from devteam.storage.memory import InMemoryTaskStore
                self._task_store = InMemoryTaskStore()
        return self._task_store

    @property
    def message_log(self):
        if self._message_log is None:
            path = self.settings.database_path
            if path:
                from devteam.storage.sqlite_store import SqliteMessageLog
                self._message_log = SqliteMessageLog(path)
            else:
                from devteam.storage.memory import InMemoryMessageLog
                self._message_log = InMemoryMessageLog()
        return self._message_log

    @property
    def decision_broker(self):
        if self._decision_broker is None:
            from devteam.orchestration.decisions import HumanDecisionBroker
            self._decision_broker = HumanDecisionBroker(
                default_timeout=self.settings.decision_timeout,
                event_bus=self.event_bus,
            )
        return self._decision_broker

    @property
    def engine(self):
        if self._engine is None:
            from devteam.scheduling.distribution_engine import TaskDistributionEngine
            self._engine = TaskDistributionEngine()
        return self._engine

    @property
    def coordinator(self):
        if self._coordinator is None:
            from devteam.agents.catalog import create_default_agents
            from devteam.orchestration.coordinator import Coordinator

            settings = self.settings
            self._coordinator = Coordinator(
                self.task_store,
                self.message_log,
                engine=self.engine,
                event_bus=self.event_bus,
                decision_broker=self.decision_broker,
                dispatch_interval=settings.dispatch_interval,
                default_strategy=settings.default_strategy,
                auto_assign_dependents=settings.auto_assign_dependents,
                decision_timeout=settings.decision_timeout,
            )
            for agent in create_default_agents(init_grace_period=settings.init_grace_period):
                self._coordinator.register_agent(agent)
            logger.info("Coordinator initialized with %d default agents", len(self._coordinator.get_all_agents()))
        return self._coordinator

    @property
    def monitor(self):
        if self._monitor is None:
            from devteam.monitoring.progress_monitor import ProgressMonitor
            self._monitor = ProgressMonitor(
                event_bus=self.event_bus,
                history_limit=self.settings.history_limit,
                monitor_interval=self.settings.monitor_interval,
            )
        return self._monitor

    async def sample(self, project_id: Optional[str] = None) -> ProgressSample:
        """Current fleet and task state, as consumed by the progress monitor."""
        coordinator = self.coordinator
        tasks = await self.task_store.get_tasks()
        return ProgressSample(
            project_id=project_id or self.settings.default_project_id,
            agents=tuple(coordinator.get_all_agents()),
            tasks=tuple(tasks),
            critical_path=tuple(self.engine.get_critical_path()),
        )

    async def start(self) -> None:
        """Initialize and start the fleet, reload stored work and history, begin sampling."""
        if self._started:
            return
        coordinator = self.coordinator
        failed = await coordinator.initialize(self.settings.agent_config())
        if failed:
            logger.warning("Agents failed to initialize: %s", ", ".join(failed))
        await coordinator.load_existing_tasks()
        await coordinator.start()
        history = self.settings.history_path
        if history:
            try:
                self.monitor.load_history(history)
            except (OSError, ValueError, KeyError, TypeError) as exc:
                logger.warning("Could not reload progress history from %s: %s", history, exc)
        self.monitor.start_monitoring(self.sample)
        self._started = True

    async def stop(self) -> None:
        if not self._started:
            return
        await self.monitor.stop_monitoring()
        await self.coordinator.stop()
        history = self.settings.history_path
        if history:
            try:
                self.monitor.save_history(history)
            except OSError as exc:
                logger.error("Could not save progress history to %s: %s", history, exc)
        self._started = False

    def status(self) -> Dict[str, Any]:
        """Report which services are initialized."""
        return {
            "event_bus": self._event_bus is not None,
            "task_store": self._task_store is not None,
            "message_log": self._message_log is not None,
            "decision_broker": self._decision_broker is not None,
            "engine": self._engine is not None,
            "coordinator": self._coordinator is not None,
            "monitor": self._monitor is not None,
            "started": self._started,
        }


# Global container
_container: Optional[DevTeamContainer] = None


def get_container() -> DevTeamContainer:
    global _container
    if _container is None:
        _container = DevTeamContainer()
    return _container


def shutdown_container() -> None:
    global _container
    _container = None
