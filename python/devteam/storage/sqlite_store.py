"""
SQLite persistence for tasks and bus messages.

Row layout matches ``Task.to_record``: list/object columns are JSON text.
Connections are opened per call, so one database file can be shared by
the task store and the message log.
"""

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from devteam.exceptions import MessageSendFailedError
from devteam.interfaces.storage import TaskFilter
from devteam.models import AgentMessage, Task

logger = logging.getLogger(__name__)

_TASK_COLUMNS = (
    "id", "title", "description", "type", "priority", "status", "assigned_to",
    "created_at", "updated_at", "due_date", "dependencies", "blockers",
    "estimated_hours", "actual_hours", "tags", "metadata",
)


def _connect(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def init_database(db_path: str) -> None:
    """Create tables and indexes if missing."""
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = _connect(db_path)
    try:
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS tasks (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                description TEXT,
                type TEXT NOT NULL,
                priority TEXT NOT NULL,
                status TEXT NOT NULL,
                assigned_to TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                due_date TEXT,
                dependencies TEXT,
                blockers TEXT,
                estimated_hours REAL,
                actual_hours REAL,
                tags TEXT,
                metadata TEXT
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                id TEXT PRIMARY KEY,
                type TEXT NOT NULL,
                sender TEXT NOT NULL,
                recipient TEXT,
                timestamp TEXT NOT NULL,
                payload TEXT,
                priority TEXT NOT NULL,
                requires_response INTEGER DEFAULT 0,
                correlation_id TEXT,
                processed INTEGER DEFAULT 0
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_tasks_assigned ON tasks(assigned_to)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_messages_recipient ON messages(recipient, processed)")
        conn.commit()
    finally:
        conn.close()


class SqliteTaskStore:
    """``ITaskStore`` over a SQLite file."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        init_database(db_path)

    async def create_task(self, task: Task) -> Task:
        record = task.to_record()
        placeholders = ", ".join("?" for _ in _TASK_COLUMNS)
        conn = _connect(self.db_path)
        try:
            conn.execute(
                f"INSERT INTO tasks ({', '.join(_TASK_COLUMNS)}) VALUES ({placeholders})",
                [record[c] for c in _TASK_COLUMNS],
            )
            conn.commit()
        finally:
            conn.close()
        return task.copy()

    async def update_task(self, task_id: str, changes: Mapping[str, Any]) -> Optional[Task]:
        current = await self.get_task(task_id)
        if current is None:
            return None
        updated = current.apply(changes)
        record = updated.to_record()
        columns = [c for c in _TASK_COLUMNS if c != "id"]
        conn = _connect(self.db_path)
        try:
            conn.execute(
                f"UPDATE tasks SET {', '.join(f'{c} = ?' for c in columns)} WHERE id = ?",
                [record[c] for c in columns] + [task_id],
            )
            conn.commit()
        finally:
            conn.close()
        return updated

    async def get_task(self, task_id: str) -> Optional[Task]:
        conn = _connect(self.db_path)
        try:
            row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        finally:
            conn.close()
        return Task.from_record(row) if row else None

    async def get_tasks(self, task_filter: Optional[TaskFilter] = None) -> List[Task]:
        task_filter = task_filter or TaskFilter()
        query = "SELECT * FROM tasks WHERE 1 = 1"
        params: List[Any] = []
        for column in ("status", "assigned_to", "type", "priority"):
            value = getattr(task_filter, column)
            if value is not None:
                query += f" AND {column} = ?"
                params.append(getattr(value, "value", value))
        query += " ORDER BY created_at"

        conn = _connect(self.db_path)
        try:
            rows = conn.execute(query, params).fetchall()
        finally:
            conn.close()
        return [Task.from_record(row) for row in rows]

    async def delete_task(self, task_id: str) -> bool:
        conn = _connect(self.db_path)
        try:
            cursor = conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()


class SqliteMessageLog:
    """``IMessageLog`` over a SQLite file."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        init_database(db_path)

    async def save_message(self, message: AgentMessage) -> None:
        data = message.to_dict()
        conn = _connect(self.db_path)
        try:
            conn.execute(
                """
                INSERT INTO messages (id, type, sender, recipient, timestamp, payload,
                                      priority, requires_response, correlation_id)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    data["id"], data["type"], data["sender"], data["recipient"],
                    data["timestamp"], json.dumps(data["payload"], default=str),
                    data["priority"], int(data["requires_response"]), data["correlation_id"],
                ),
            )
            conn.commit()
        except sqlite3.Error as exc:
            raise MessageSendFailedError(
                f"Could not persist message {message.id}: {exc}",
                details={"message_id": message.id},
            ) from exc
        finally:
            conn.close()

    async def get_unprocessed_messages(self, agent_id: Optional[str] = None) -> List[AgentMessage]:
        query = "SELECT * FROM messages WHERE processed = 0"
        params: List[Any] = []
        if agent_id is not None:
            query += " AND (recipient = ? OR recipient IS NULL)"
            params.append(agent_id)
        query += " ORDER BY timestamp"

        conn = _connect(self.db_path)
        try:
            rows = conn.execute(query, params).fetchall()
        finally:
            conn.close()
        return [AgentMessage.from_dict(dict(row)) for row in rows]

    async def mark_message_processed(self, message_id: str) -> None:
        conn = _connect(self.db_path)
        try:
            conn.execute("UPDATE messages SET processed = 1 WHERE id = ?", (message_id,))
            conn.commit()
        finally:
            conn.close()

    def stats(self) -> Dict[str, int]:
        conn = _connect(self.db_path)
        try:
            total = conn.execute("SELECT COUNT(*) FROM messages").fetchone()[0]
            processed = conn.execute("SELECT COUNT(*) FROM messages WHERE processed = 1").fetchone()[0]
        finally:
            conn.close()
        return {"total": total, "processed": processed, "pending": total - processed}
