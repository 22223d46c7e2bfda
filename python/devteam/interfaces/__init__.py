from devteam.interfaces.event_bus import EventType, IEventBus
from devteam.interfaces.executor import DecisionUrgency, IDecisionBroker, TaskExecutor
from devteam.interfaces.storage import IMessageLog, ITaskStore, TaskFilter

__all__ = [
    "DecisionUrgency",
    "EventType",
    "IDecisionBroker",
    "IEventBus",
    "IMessageLog",
    "ITaskStore",
    "TaskExecutor",
    "TaskFilter",
]
