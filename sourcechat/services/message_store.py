import json
import uuid
from typing import Any, Optional, Protocol

from sourcechat.database import get_db
from sourcechat.models.schemas import Conversation, StoredMessage


class MessageStore(Protocol):
    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        ...

    async def list_messages(self, conversation_id: str, limit: Optional[int] = None) -> list[StoredMessage]:
        ...

    async def persist_message(
        self, conversation_id: str, role: str, content: str, metadata: Optional[dict[str, Any]] = None,
    ) -> StoredMessage:
        ...


def _row_to_message(row) -> StoredMessage:
    data = dict(row)
    data.pop("_seq", None)
    data["metadata"] = json.loads(data.get("metadata") or "{}")
    return StoredMessage(**data)


class SQLiteMessageStore:

    async def create_conversation(self, user_id: str = "", title: str = "New Chat") -> Conversation:
        conv_id = str(uuid.uuid4())
        async with get_db() as db:
            await db.execute(
                "INSERT INTO conversations (id, user_id, title) VALUES (?, ?, ?)",
                (conv_id, user_id, title),
            )
            await db.commit()
            cursor = await db.execute(
                "SELECT * FROM conversations WHERE id = ?", (conv_id,)
            )
            row = await cursor.fetchone()
            return Conversation(**dict(row))

    async def get_conversation(self, conversation_id: str) -> Optional[Conversation]:
        async with get_db() as db:
            cursor = await db.execute(
                "SELECT * FROM conversations WHERE id = ?", (conversation_id,)
            )
            row = await cursor.fetchone()
            return Conversation(**dict(row)) if row else None

    async def list_messages(self, conversation_id: str, limit: Optional[int] = None) -> list[StoredMessage]:
        """Messages in chronological order; with ``limit``, only the most recent ones."""
        async with get_db() as db:
            if limit:
                cursor = await db.execute(
                    """SELECT * FROM (
                           SELECT *, rowid AS _seq FROM messages
                           WHERE conversation_id = ?
                           ORDER BY created_at DESC, rowid DESC LIMIT ?
                       ) ORDER BY created_at ASC, _seq ASC""",
                    (conversation_id, limit),
                )
            else:
                cursor = await db.execute(
                    "SELECT * FROM messages WHERE conversation_id = ? ORDER BY created_at ASC, rowid ASC",
                    (conversation_id,),
                )
            rows = await cursor.fetchall()
        return [_row_to_message(row) for row in rows]

    async def persist_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> StoredMessage:
        msg_id = str(uuid.uuid4())
        async with get_db() as db:
            await db.execute(
                """INSERT INTO messages (id, conversation_id, role, content, metadata)
                   VALUES (?, ?, ?, ?, ?)""",
                (msg_id, conversation_id, role, content, json.dumps(metadata or {})),
            )
            await db.execute(
                "UPDATE conversations SET updated_at = datetime('now') WHERE id = ?",
                (conversation_id,),
            )
            await db.commit()
            cursor = await db.execute("SELECT * FROM messages WHERE id = ?", (msg_id,))
            row = await cursor.fetchone()
        return _row_to_message(row)
