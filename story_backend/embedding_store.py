"""Persistence for paragraph embeddings.

Rows are keyed by (story_id, message_id, paragraph_index); vectors are stored
as little-endian float32 blobs next to model/dimension provenance.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
import uuid
from typing import Any

from story_backend.database import Database
from story_backend.logging import get_logger
from story_backend.messages import parse_timestamp
from story_backend.vectors import decode_vector, encode_vector

log = get_logger(__name__)

EMBEDDING_DELETE_BATCH_SIZE = 200
EMBEDDING_INSERT_BATCH_SIZE = 200


def _utcnow_iso() -> str:
    return datetime.now(UTC).isoformat()


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass
class ParagraphEmbedding:
    """One embedded paragraph of one message."""

    story_id: str
    message_id: str
    paragraph_index: int
    content: str
    vector: list[float]
    model: str
    dimension: int = 0
    id: str = field(default_factory=_new_id)
    created_at: str = field(default_factory=_utcnow_iso)
    updated_at: str = field(default_factory=_utcnow_iso)

    def __post_init__(self) -> None:
        if not self.dimension:
            self.dimension = len(self.vector)


@dataclass
class EmbeddingMetadata:
    """Aggregate of a message's stored embeddings used for staleness checks."""

    updated_at: datetime | None
    count: int
    min_dimension: int | None


_SELECT_COLUMNS = (
    "e.id, e.story_id, e.message_id, e.paragraph_index, e.content, "
    "e.embedding, e.model, e.dimension, e.created_at, e.updated_at"
)


def _row_to_embedding(row: Any) -> ParagraphEmbedding:
    return ParagraphEmbedding(
        id=row[0],
        story_id=row[1],
        message_id=row[2],
        paragraph_index=int(row[3]),
        content=row[4],
        vector=decode_vector(bytes(row[5])),
        model=row[6],
        dimension=int(row[7]),
        created_at=row[8],
        updated_at=row[9],
    )


class ParagraphEmbeddingStore:
    """Batched create/delete/enumerate over ``paragraph_embeddings``."""

    def __init__(
        self,
        database: Database,
        delete_batch_size: int = EMBEDDING_DELETE_BATCH_SIZE,
        insert_batch_size: int = EMBEDDING_INSERT_BATCH_SIZE,
    ):
        self.database = database
        self.delete_batch_size = max(1, int(delete_batch_size))
        self.insert_batch_size = max(1, int(insert_batch_size))

    async def delete_all_for_message(self, story_id: str, message_id: str) -> int:
        """Delete every row for a message. Returns the number removed."""
        db = self.database.connection
        async with db.execute(
            "SELECT id FROM paragraph_embeddings WHERE story_id = ? AND message_id = ?",
            (story_id, message_id),
        ) as cursor:
            ids = [str(row[0]) for row in await cursor.fetchall()]

        if not ids:
            return 0

        try:
            for start in range(0, len(ids), self.delete_batch_size):
                batch = ids[start:start + self.delete_batch_size]
                placeholders = ", ".join("?" for _ in batch)
                await db.execute(
                    f"DELETE FROM paragraph_embeddings WHERE id IN ({placeholders})",
                    batch,
                )
        except Exception:
            await self.database.rollback()
            raise
        await self.database.commit()
        log.debug("Deleted paragraph embeddings", story_id=story_id, message_id=message_id, count=len(ids))
        return len(ids)

    async def insert_many(self, records: Sequence[ParagraphEmbedding]) -> int:
        """Bulk insert rows in batches. Returns the number inserted."""
        if not records:
            return 0
        db = self.database.connection
        # Batches share one transaction so a failure leaves no partial rows.
        try:
            for start in range(0, len(records), self.insert_batch_size):
                batch = records[start:start + self.insert_batch_size]
                await db.executemany(
                    """
                    INSERT INTO paragraph_embeddings (
                        id, story_id, message_id, paragraph_index, content,
                        embedding, model, dimension, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            record.id,
                            record.story_id,
                            record.message_id,
                            record.paragraph_index,
                            record.content,
                            encode_vector(record.vector),
                            record.model,
                            record.dimension,
                            record.created_at,
                            record.updated_at,
                        )
                        for record in batch
                    ],
                )
        except Exception:
            await self.database.rollback()
            raise
        await self.database.commit()
        return len(records)

    async def find_by_message(self, story_id: str, message_id: str) -> list[ParagraphEmbedding]:
        """All rows of one message ordered by paragraph index."""
        async with self.database.connection.execute(
            f"""
            SELECT {_SELECT_COLUMNS} FROM paragraph_embeddings e
            WHERE e.story_id = ? AND e.message_id = ?
            ORDER BY e.paragraph_index ASC
            """,
            (story_id, message_id),
        ) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_embedding(row) for row in rows]

    async def find_by_story_scope(self, story_id: str | None = None) -> list[ParagraphEmbedding]:
        """Searchable rows: owning message is neither deleted nor a query."""
        query = f"""
            SELECT {_SELECT_COLUMNS} FROM paragraph_embeddings e
            JOIN messages m ON m.story_id = e.story_id AND m.id = e.message_id
            WHERE m.deleted = 0 AND m.is_query = 0
        """
        params: list[Any] = []
        if story_id:
            query += " AND e.story_id = ?"
            params.append(story_id)
        query += " ORDER BY e.story_id ASC, m.sort_order ASC, e.message_id ASC, e.paragraph_index ASC"
        async with self.database.connection.execute(query, params) as cursor:
            rows = await cursor.fetchall()
        return [_row_to_embedding(row) for row in rows]

    async def group_metadata_by_message(
        self,
        story_id: str | None = None,
    ) -> dict[tuple[str, str], EmbeddingMetadata]:
        """Latest updated_at, row count and minimum dimension per message."""
        query = """
            SELECT story_id, message_id, MAX(updated_at), COUNT(*), MIN(dimension)
            FROM paragraph_embeddings
        """
        params: list[Any] = []
        if story_id:
            query += " WHERE story_id = ?"
            params.append(story_id)
        query += " GROUP BY story_id, message_id"
        async with self.database.connection.execute(query, params) as cursor:
            rows = await cursor.fetchall()
        return {
            (row[0], row[1]): EmbeddingMetadata(
                updated_at=parse_timestamp(row[2]),
                count=int(row[3]),
                min_dimension=int(row[4]) if row[4] is not None else None,
            )
            for row in rows
        }
