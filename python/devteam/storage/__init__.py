from devteam.storage.memory import InMemoryMessageLog, InMemoryTaskStore
from devteam.storage.sqlite_store import SqliteMessageLog, SqliteTaskStore

__all__ = [
    "InMemoryMessageLog",
    "InMemoryTaskStore",
    "SqliteMessageLog",
    "SqliteTaskStore",
]
