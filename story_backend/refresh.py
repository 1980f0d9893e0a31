"""Per-message paragraph embedding lifecycle."""

from __future__ import annotations

import asyncio
import weakref

from story_backend.embedding_store import ParagraphEmbedding, ParagraphEmbeddingStore
from story_backend.embeddings import EmbeddingProvider
from story_backend.logging import get_logger
from story_backend.messages import MessageStore
from story_backend.paragraphs import split_into_paragraphs

log = get_logger(__name__)


class RefreshEngine:
    """Re-splits a message and replaces its paragraph embeddings."""

    def __init__(
        self,
        *,
        embedder: EmbeddingProvider,
        embedding_store: ParagraphEmbeddingStore,
        message_store: MessageStore,
    ):
        self.embedder = embedder
        self.embedding_store = embedding_store
        self.message_store = message_store
        self._locks: weakref.WeakValueDictionary[tuple[str, str], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, story_id: str, message_id: str) -> asyncio.Lock:
        key = (story_id, message_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def refresh(
        self,
        story_id: str,
        message_id: str,
        content: str,
        is_query: bool = False,
        paragraphs_override: list[str] | None = None,
        embedding_paragraphs: list[str] | None = None,
    ) -> list[str]:
        """Rebuild a message's embeddings from scratch.

        Args:
            story_id: Owning story
            message_id: Message to refresh
            content: Current message text
            is_query: Query messages get their paragraph cache but no embeddings
            paragraphs_override: Pre-split paragraphs to cache instead of splitting ``content``
            embedding_paragraphs: Leading subset to embed (rebuild applies the paragraph cap here)

        Returns:
            The paragraph list written to the message cache.

        Raises:
            EmbeddingProviderError: The provider failed; nothing is inserted.
            MessageNotFoundError: The message does not exist.
        """
        paragraphs = paragraphs_override if paragraphs_override is not None else split_into_paragraphs(content)
        to_embed = embedding_paragraphs if embedding_paragraphs is not None else paragraphs

        async with self._lock_for(story_id, message_id):
            try:
                await self.message_store.update_paragraphs(story_id, message_id, paragraphs)
                # Unconditional: same-index paragraphs may have new text.
                await self.embedding_store.delete_all_for_message(story_id, message_id)
            except Exception as e:
                log.error(
                    "Failed to prepare message for paragraph embeddings",
                    story_id=story_id,
                    message_id=message_id,
                    error=str(e),
                )
                raise

            if not to_embed or is_query:
                log.debug(
                    "Skipped embedding generation for message",
                    story_id=story_id,
                    message_id=message_id,
                    skipped=is_query,
                    paragraph_count=len(to_embed),
                )
                return paragraphs

            try:
                records = await self._embed_paragraphs(story_id, message_id, to_embed)
                await self.embedding_store.insert_many(records)
            except Exception as e:
                log.error(
                    "Failed to generate paragraph embeddings",
                    story_id=story_id,
                    message_id=message_id,
                    error=str(e),
                )
                raise

        if not records:
            log.warning(
                "Skipping message embeddings because no vectors were generated",
                story_id=story_id,
                message_id=message_id,
            )
        log.debug(
            "Generated paragraph embeddings for message",
            story_id=story_id,
            message_id=message_id,
            paragraph_count=len(records),
            model=self.embedder.model,
        )
        return paragraphs

    async def _embed_paragraphs(
        self,
        story_id: str,
        message_id: str,
        paragraphs: list[str],
    ) -> list[ParagraphEmbedding]:
        records: list[ParagraphEmbedding] = []
        for index, paragraph in enumerate(paragraphs):
            vector = await self.embedder.embed(paragraph)
            if not vector:
                log.warning(
                    "Embedding model returned empty vector; skipping paragraph",
                    story_id=story_id,
                    message_id=message_id,
                    paragraph_index=index,
                    paragraph=paragraph[:200],
                )
                continue
            records.append(
                ParagraphEmbedding(
                    story_id=story_id,
                    message_id=message_id,
                    paragraph_index=index,
                    content=paragraph,
                    vector=vector,
                    model=self.embedder.model,
                )
            )
        return records

    async def delete(self, story_id: str, message_id: str) -> int:
        """Remove every embedding of a message."""
        async with self._lock_for(story_id, message_id):
            return await self.embedding_store.delete_all_for_message(story_id, message_id)
