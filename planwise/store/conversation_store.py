"""
Conversation Store - chat threads and their messages.
Messages are append-only and always read back in creation order.
"""

from datetime import datetime

import aiosqlite

from store.models import (
    ANONYMOUS_OWNER,
    DEFAULT_CONVERSATION_TITLE,
    Conversation,
    Message,
    utcnow,
)


def _now() -> str:
    return utcnow().isoformat(timespec="microseconds")


def _row_to_conversation(row) -> Conversation:
    return Conversation(
        id=row[0],
        owner=row[1],
        title=row[2],
        created_at=datetime.fromisoformat(row[3]),
        updated_at=datetime.fromisoformat(row[4]),
    )


def _row_to_message(row) -> Message:
    return Message(
        id=row[0],
        conversation_id=row[1],
        role=row[2],
        content=row[3],
        image_ref=row[4],
        created_at=datetime.fromisoformat(row[5]),
    )


class ConversationStore:
    def __init__(self, db_path: str):
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def initialize(self):
        """Create tables if they don't exist."""
        self._db = await aiosqlite.connect(self.db_path)
        await self._db.execute("PRAGMA foreign_keys = ON")
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS conversations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                owner TEXT NOT NULL,
                title TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                conversation_id INTEGER NOT NULL
                    REFERENCES conversations(id) ON DELETE CASCADE,
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                image_ref TEXT,
                created_at TEXT NOT NULL
            )
        """)
        await self._db.execute("""
            CREATE INDEX IF NOT EXISTS idx_conv_owner
            ON conversations(owner, updated_at DESC)
        """)
        await self._db.execute("""
            CREATE INDEX IF NOT EXISTS idx_msg_conversation
            ON messages(conversation_id, created_at ASC)
        """)
        await self._db.commit()

    async def create_conversation(
        self, owner: str | None, title: str | None = None
    ) -> Conversation:
        now = _now()
        cursor = await self._db.execute(
            "INSERT INTO conversations (owner, title, created_at, updated_at) "
            "VALUES (?, ?, ?, ?)",
            (
                owner or ANONYMOUS_OWNER,
                (title or "").strip() or DEFAULT_CONVERSATION_TITLE,
                now,
                now,
            ),
        )
        await self._db.commit()
        return await self.get_conversation(cursor.lastrowid, owner)

    async def get_conversation(
        self, conversation_id: int, owner: str | None
    ) -> Conversation | None:
        cursor = await self._db.execute(
            "SELECT id, owner, title, created_at, updated_at FROM conversations "
            "WHERE id = ? AND owner = ?",
            (conversation_id, owner or ANONYMOUS_OWNER),
        )
        row = await cursor.fetchone()
        return _row_to_conversation(row) if row else None

    async def list_conversations(self, owner: str | None) -> list[Conversation]:
        """Most recently active first."""
        cursor = await self._db.execute(
            "SELECT id, owner, title, created_at, updated_at FROM conversations "
            "WHERE owner = ? ORDER BY updated_at DESC, id DESC",
            (owner or ANONYMOUS_OWNER,),
        )
        return [_row_to_conversation(r) for r in await cursor.fetchall()]

    async def rename_conversation(
        self, conversation_id: int, owner: str | None, title: str
    ) -> Conversation | None:
        cursor = await self._db.execute(
            "UPDATE conversations SET title = ?, updated_at = ? "
            "WHERE id = ? AND owner = ?",
            (title.strip(), _now(), conversation_id, owner or ANONYMOUS_OWNER),
        )
        await self._db.commit()
        if cursor.rowcount == 0:
            return None
        return await self.get_conversation(conversation_id, owner)

    async def delete_conversation(
        self, conversation_id: int, owner: str | None
    ) -> int:
        cursor = await self._db.execute(
            "DELETE FROM conversations WHERE id = ? AND owner = ?",
            (conversation_id, owner or ANONYMOUS_OWNER),
        )
        await self._db.commit()
        return cursor.rowcount

    async def set_title_if_default(self, conversation_id: int, title: str) -> bool:
        """Rename only while the title is still the default one."""
        cursor = await self._db.execute(
            "UPDATE conversations SET title = ?, updated_at = ? "
            "WHERE id = ? AND title = ?",
            (title, _now(), conversation_id, DEFAULT_CONVERSATION_TITLE),
        )
        await self._db.commit()
        return cursor.rowcount > 0

    async def touch(self, conversation_id: int):
        await self._db.execute(
            "UPDATE conversations SET updated_at = ? WHERE id = ?",
            (_now(), conversation_id),
        )
        await self._db.commit()

    async def append_message(
        self,
        conversation_id: int,
        role: str,
        content: str,
        image_ref: str | None = None,
    ) -> Message:
        cursor = await self._db.execute(
            "INSERT INTO messages (conversation_id, role, content, image_ref, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (conversation_id, role, content, image_ref, _now()),
        )
        await self._db.commit()
        cursor = await self._db.execute(
            "SELECT id, conversation_id, role, content, image_ref, created_at "
            "FROM messages WHERE id = ?",
            (cursor.lastrowid,),
        )
        return _row_to_message(await cursor.fetchone())

    async def list_messages(self, conversation_id: int) -> list[Message]:
        """Oldest first. Same-timestamp messages keep insertion order."""
        cursor = await self._db.execute(
            "SELECT id, conversation_id, role, content, image_ref, created_at "
            "FROM messages WHERE conversation_id = ? "
            "ORDER BY created_at ASC, id ASC",
            (conversation_id,),
        )
        return [_row_to_message(r) for r in await cursor.fetchall()]

    async def close(self):
        if self._db:
            await self._db.close()
