"""
Conversation persistence backed by SQLite.

Stores each conversation's system prompt and document sources, plus its
message history, so a chat can be continued across requests.
"""
import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import List, Optional

from . import config
from .models.chat_models import Conversation, FunctionCall, Message, Role, SystemPrompt

logger = logging.getLogger(__name__)


class ConversationNotFoundError(Exception):
    """Raised when a conversation id does not exist."""
    pass


class ConversationStore:
    """SQLite-backed conversations and messages.

    Args:
        db_path: Database file. Defaults to config.CONVERSATION_DB_PATH.
    """

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or config.CONVERSATION_DB_PATH
        self.init_db()

    @contextmanager
    def get_conn(self):
        conn = sqlite3.connect(self.db_path)
        try:
            yield conn
        finally:
            conn.close()

    def init_db(self):
        """Initialize the conversation database"""
        with self.get_conn() as conn:
            conn.execute("""
            CREATE TABLE IF NOT EXISTS conversations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                system_prompt TEXT NOT NULL,
                temperature REAL NOT NULL,
                model TEXT,
                force_vector_generation BOOLEAN DEFAULT 0 NOT NULL,
                sources TEXT NOT NULL DEFAULT '[]',
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
            """)
            conn.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                conversation_id INTEGER NOT NULL REFERENCES conversations(id),
                role TEXT NOT NULL,
                content TEXT,
                name TEXT,
                function_call TEXT,
                created TIMESTAMP
            )
            """)

            # Create index for faster lookups
            conn.execute("CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id, id)")
            conn.commit()

    def create_conversation(self, system_prompt: SystemPrompt, sources: Optional[List[str]] = None) -> int:
        """Create a conversation and return its id."""
        with self.get_conn() as conn:
            cursor = conn.execute(
                """INSERT INTO conversations (system_prompt, temperature, model, force_vector_generation, sources)
                   VALUES (?, ?, ?, ?, ?)""",
                (
                    system_prompt.prompt,
                    system_prompt.temperature,
                    system_prompt.model,
                    int(system_prompt.force_vector_generation),
                    json.dumps(list(dict.fromkeys(sources or []))),
                ),
            )
            conn.commit()
            conversation_id = cursor.lastrowid

        logger.info(f"[CONVERSATIONS] Created conversation {conversation_id}")
        return conversation_id

    def append_message(self, conversation_id: int, message: Message) -> None:
        """
        Append a message to a conversation's history

        Args:
            conversation_id: Conversation to append to
            message: Message to store; `created` defaults to now (UTC)
        """
        created = message.created or datetime.now(timezone.utc)
        function_call = None
        if message.function_call is not None:
            function_call = json.dumps({
                "name": message.function_call.name,
                "arguments": message.function_call.arguments,
            })

        with self.get_conn() as conn:
            self._require(conn, conversation_id)
            conn.execute(
                """INSERT INTO messages (conversation_id, role, content, name, function_call, created)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (conversation_id, message.role.value, message.content, message.name, function_call, created.isoformat()),
            )
            conn.commit()

    def load_conversation(self, conversation_id: int) -> Conversation:
        """
        Load a conversation with its full message history, oldest first

        Raises:
            ConversationNotFoundError: If the conversation does not exist
        """
        with self.get_conn() as conn:
            conn.row_factory = sqlite3.Row
            row = self._require(conn, conversation_id)
            cursor = conn.execute(
                """SELECT role, content, name, function_call, created
                   FROM messages
                   WHERE conversation_id = ?
                   ORDER BY id ASC""",
                (conversation_id,),
            )
            messages = [self._row_to_message(r) for r in cursor.fetchall()]

        return Conversation(
            system_prompt=SystemPrompt(
                prompt=row["system_prompt"],
                temperature=row["temperature"],
                model=row["model"],
                force_vector_generation=bool(row["force_vector_generation"]),
            ),
            messages=messages,
            sources=json.loads(row["sources"]),
        )

    @staticmethod
    def _require(conn, conversation_id: int):
        row = conn.execute("SELECT * FROM conversations WHERE id = ?", (conversation_id,)).fetchone()
        if row is None:
            raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
        return row

    @staticmethod
    def _row_to_message(row) -> Message:
        function_call = None
        if row["function_call"]:
            data = json.loads(row["function_call"])
            function_call = FunctionCall(name=data["name"], arguments=data["arguments"])
        return Message(
            role=Role(row["role"]),
            content=row["content"],
            name=row["name"],
            function_call=function_call,
            created=datetime.fromisoformat(row["created"]) if row["created"] else None,
        )
