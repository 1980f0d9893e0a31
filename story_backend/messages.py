"""Message records: the slice of the story schema the embedding core touches."""

import json
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from story_backend.database import Database
from story_backend.exceptions import MessageNotFoundError


def _utcnow_iso() -> str:
    """Return current UTC timestamp in ISO format."""
    return datetime.now(UTC).isoformat()


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse an ISO timestamp; naive values are taken as UTC."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        raw = str(value).strip()
        if not raw:
            return None
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@dataclass
class Message:
    """A story message."""

    story_id: str
    id: str
    content: str = ""
    node_id: str | None = None
    paragraphs: list[str] | None = None
    is_query: bool = False
    deleted: bool = False
    order: int = 0
    timestamp: str = ""
    sentence_summary: str | None = None
    summary: str | None = None
    paragraph_summary: str | None = None

    def __post_init__(self) -> None:
        if not self.timestamp:
            self.timestamp = _utcnow_iso()

    @classmethod
    def from_row(cls, row: Any) -> "Message":
        paragraphs = None
        if row[4] is not None:
            try:
                decoded = json.loads(row[4])
            except json.JSONDecodeError:
                decoded = None
            if isinstance(decoded, list):
                paragraphs = [str(p) for p in decoded]
        return cls(
            story_id=row[0],
            id=row[1],
            node_id=row[2],
            content=row[3] or "",
            paragraphs=paragraphs,
            is_query=bool(row[5]),
            deleted=bool(row[6]),
            order=int(row[7]),
            timestamp=row[8],
            sentence_summary=row[9],
            summary=row[10],
            paragraph_summary=row[11],
        )


_MESSAGE_COLUMNS = (
    "story_id, id, node_id, content, paragraphs, is_query, deleted, "
    "sort_order, timestamp, sentence_summary, summary, paragraph_summary"
)


class MessageStore:
    """Key-based reads and writes over the ``messages`` table."""

    def __init__(self, database: Database):
        self.database = database

    async def save_message(self, message: Message) -> None:
        """Insert or replace a message."""
        db = self.database.connection
        await db.execute(
            f"""
            INSERT INTO messages ({_MESSAGE_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(story_id, id) DO UPDATE SET
                node_id=excluded.node_id,
                content=excluded.content,
                paragraphs=excluded.paragraphs,
                is_query=excluded.is_query,
                deleted=excluded.deleted,
                sort_order=excluded.sort_order,
                timestamp=excluded.timestamp,
                sentence_summary=excluded.sentence_summary,
                summary=excluded.summary,
                paragraph_summary=excluded.paragraph_summary
            """,
            (
                message.story_id,
                message.id,
                message.node_id,
                message.content,
                json.dumps(message.paragraphs) if message.paragraphs is not None else None,
                int(message.is_query),
                int(message.deleted),
                message.order,
                message.timestamp,
                message.sentence_summary,
                message.summary,
                message.paragraph_summary,
            ),
        )
        await self.database.commit()

    async def get_message(self, story_id: str, message_id: str) -> Message | None:
        """Get a message by key, or None."""
        async with self.database.connection.execute(
            f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE story_id = ? AND id = ?",
            (story_id, message_id),
        ) as cursor:
            row = await cursor.fetchone()
        return Message.from_row(row) if row else None

    async def get_messages_by_ids(
        self,
        message_ids: Iterable[str],
        story_id: str | None = None,
    ) -> dict[tuple[str, str], Message]:
        """Load messages whose id is in ``message_ids``, keyed by (story_id, id)."""
        ids = list(dict.fromkeys(message_ids))
        if not ids:
            return {}
        placeholders = ", ".join("?" for _ in ids)
        query = f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE id IN ({placeholders})"
        params: list[Any] = list(ids)
        if story_id:
            query += " AND story_id = ?"
            params.append(story_id)
        async with self.database.connection.execute(query, params) as cursor:
            rows = await cursor.fetchall()
        messages = [Message.from_row(row) for row in rows]
        return {(m.story_id, m.id): m for m in messages}

    async def list_messages_for_rebuild(self, story_id: str | None = None) -> list[Message]:
        """Non-deleted, non-query messages ordered by story then sequence."""
        query = f"SELECT {_MESSAGE_COLUMNS} FROM messages WHERE deleted = 0 AND is_query = 0"
        params: list[Any] = []
        if story_id:
            query += " AND story_id = ?"
            params.append(story_id)
        query += " ORDER BY story_id ASC, sort_order ASC"
        async with self.database.connection.execute(query, params) as cursor:
            rows = await cursor.fetchall()
        return [Message.from_row(row) for row in rows]

    async def update_paragraphs(self, story_id: str, message_id: str, paragraphs: list[str]) -> None:
        """Write the paragraph cache; raises MessageNotFoundError for unknown keys."""
        cursor = await self.database.connection.execute(
            "UPDATE messages SET paragraphs = ? WHERE story_id = ? AND id = ?",
            (json.dumps(paragraphs), story_id, message_id),
        )
        if cursor.rowcount == 0:
            raise MessageNotFoundError(story_id, message_id)
        await self.database.commit()

    async def mark_deleted(self, story_id: str, message_id: str) -> bool:
        """Soft delete a message. Returns False when it does not exist."""
        cursor = await self.database.connection.execute(
            "UPDATE messages SET deleted = 1 WHERE story_id = ? AND id = ?",
            (story_id, message_id),
        )
        await self.database.commit()
        return cursor.rowcount > 0
