"""Shared SQLite connection and schema for messages and paragraph embeddings."""

from pathlib import Path

import aiosqlite

from story_backend.logging import get_logger

log = get_logger(__name__)


_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS messages (
        story_id TEXT NOT NULL,
        id TEXT NOT NULL,
        node_id TEXT,
        content TEXT NOT NULL DEFAULT '',
        paragraphs TEXT,
        is_query INTEGER NOT NULL DEFAULT 0,
        deleted INTEGER NOT NULL DEFAULT 0,
        sort_order INTEGER NOT NULL DEFAULT 0,
        timestamp TEXT NOT NULL,
        sentence_summary TEXT,
        summary TEXT,
        paragraph_summary TEXT,
        PRIMARY KEY (story_id, id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_messages_story_order ON messages(story_id, sort_order)",
    """
    CREATE TABLE IF NOT EXISTS paragraph_embeddings (
        id TEXT PRIMARY KEY,
        story_id TEXT NOT NULL,
        message_id TEXT NOT NULL,
        paragraph_index INTEGER NOT NULL,
        content TEXT NOT NULL,
        embedding BLOB NOT NULL,
        model TEXT NOT NULL,
        dimension INTEGER NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE (story_id, message_id, paragraph_index),
        FOREIGN KEY (story_id, message_id) REFERENCES messages(story_id, id) ON DELETE CASCADE
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_paragraph_embeddings_message "
    "ON paragraph_embeddings(story_id, message_id)",
)


class Database:
    """Owns the aiosqlite connection shared by the stores."""

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path).expanduser()
        self._db: aiosqlite.Connection | None = None

    @classmethod
    async def open(cls, db_path: Path | str) -> "Database":
        """Create and connect a database in one step."""
        database = cls(db_path)
        await database.connect()
        return database

    async def connect(self) -> None:
        """Open the connection and create the schema if needed."""
        if self._db is not None:
            return
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self.db_path))
        await self._db.execute("PRAGMA foreign_keys = ON")
        for statement in _SCHEMA:
            await self._db.execute(statement)
        await self._db.commit()
        log.debug("Opened story database", path=str(self.db_path))

    @property
    def connection(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Database is not connected")
        return self._db

    async def commit(self) -> None:
        await self.connection.commit()

    async def rollback(self) -> None:
        await self.connection.rollback()

    async def close(self) -> None:
        """Close the database connection."""
        if self._db is not None:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> "Database":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
