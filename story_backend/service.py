"""Paragraph embedding service: the surface the route layer and CLI call."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from story_backend.config import Config, get_config
from story_backend.database import Database
from story_backend.embedding_store import ParagraphEmbeddingStore
from story_backend.embeddings import EmbeddingProvider, create_embedding_client
from story_backend.events import EventBus, StoryEvent, StoryEventType
from story_backend.logging import get_logger
from story_backend.messages import MessageStore
from story_backend.rebuild import ProgressCallback, RebuildReport, RebuildScheduler
from story_backend.refresh import RefreshEngine
from story_backend.search import SearchResult, SimilaritySearchEngine

log = get_logger(__name__)


class ParagraphEmbeddingService:
    """Wires the refresh, rebuild and search engines over shared stores."""

    def __init__(
        self,
        *,
        database: Database,
        embedder: EmbeddingProvider,
        config: Config | None = None,
    ):
        cfg = config or get_config()
        self.database = database
        self.embedder = embedder
        self.message_store = MessageStore(database)
        self.embedding_store = ParagraphEmbeddingStore(
            database,
            delete_batch_size=cfg.storage.delete_batch_size,
            insert_batch_size=cfg.storage.insert_batch_size,
        )
        self.refresh_engine = RefreshEngine(
            embedder=embedder,
            embedding_store=self.embedding_store,
            message_store=self.message_store,
        )
        self.rebuild_scheduler = RebuildScheduler(
            refresh_engine=self.refresh_engine,
            embedding_store=self.embedding_store,
            message_store=self.message_store,
            progress_interval=cfg.rebuild.progress_interval,
            max_paragraphs_per_message=cfg.rebuild.max_paragraphs_per_message,
        )
        self.search_engine = SimilaritySearchEngine(
            embedder=embedder,
            embedding_store=self.embedding_store,
            message_store=self.message_store,
            limit=cfg.search.limit,
            min_score=cfg.search.min_score,
            context_paragraphs=cfg.search.context_paragraphs,
        )
        self._unsubscribers: list[Callable[[], None]] = []

    async def refresh_paragraph_embeddings_for_message(
        self,
        story_id: str,
        message_id: str,
        content: str,
        is_query: bool = False,
    ) -> list[str]:
        return await self.refresh_engine.refresh(story_id, message_id, content, is_query=is_query)

    async def delete_paragraph_embeddings(self, story_id: str, message_id: str) -> None:
        await self.refresh_engine.delete(story_id, message_id)

    async def rebuild_paragraph_embeddings(
        self,
        story_id: str | None = None,
        progress_interval: int | None = None,
        force: bool = False,
        on_progress: ProgressCallback | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> RebuildReport:
        return await self.rebuild_scheduler.rebuild(
            story_id=story_id,
            progress_interval=progress_interval,
            force=force,
            on_progress=on_progress,
            stop_event=stop_event,
        )

    async def search_paragraph_embeddings(
        self,
        query: str,
        story_id: str | None = None,
        limit: int | None = None,
        min_score: float | None = None,
        context_paragraphs: int | None = None,
    ) -> list[SearchResult]:
        return await self.search_engine.search(
            query,
            story_id=story_id,
            limit=limit,
            min_score=min_score,
            context_paragraphs=context_paragraphs,
        )

    def attach(self, bus: EventBus) -> None:
        """Subscribe to message lifecycle events on ``bus``."""
        self._unsubscribers.extend([
            bus.subscribe(StoryEventType.MESSAGE_CREATED, self._on_message_changed),
            bus.subscribe(StoryEventType.MESSAGE_UPDATED, self._on_message_changed),
            bus.subscribe(StoryEventType.MESSAGE_DELETED, self._on_message_deleted),
        ])

    def detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    async def _on_message_changed(self, event: StoryEvent) -> None:
        if "content" not in event.payload:
            return
        await self.refresh_paragraph_embeddings_for_message(
            event.story_id,
            str(event.payload["message_id"]),
            str(event.payload["content"] or ""),
            is_query=bool(event.payload.get("is_query", False)),
        )

    async def _on_message_deleted(self, event: StoryEvent) -> None:
        await self.delete_paragraph_embeddings(event.story_id, str(event.payload["message_id"]))

    async def close(self) -> None:
        """Release the embedding client and the database connection."""
        self.detach()
        await self.embedder.aclose()
        await self.database.close()


async def create_paragraph_embedding_service(config: Config | None = None) -> ParagraphEmbeddingService:
    """Create the service from configuration (call once at process start)."""
    cfg = config or get_config()
    database = await Database.open(cfg.resolved_db_path())
    try:
        embedder = create_embedding_client(cfg.embedding)
    except Exception:
        await database.close()
        raise
    log.info(
        "Paragraph embedding service ready",
        db_path=str(database.db_path),
        provider=cfg.embedding.provider,
        model=embedder.model,
    )
    return ParagraphEmbeddingService(database=database, embedder=embedder, config=cfg)
