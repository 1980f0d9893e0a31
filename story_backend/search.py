"""Cosine-similarity search over stored paragraph embeddings."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from story_backend.embedding_store import ParagraphEmbedding, ParagraphEmbeddingStore
from story_backend.embeddings import EmbeddingProvider
from story_backend.exceptions import InvalidVectorDimension
from story_backend.logging import get_logger
from story_backend.messages import Message, MessageStore
from story_backend.vectors import cosine_similarity, to_float32, vector_magnitude

log = get_logger(__name__)


@dataclass
class SearchContextItem:
    paragraph_index: int
    text: str


@dataclass
class MessageSummary:
    sentence_summary: str | None = None
    summary: str | None = None
    paragraph_summary: str | None = None


@dataclass
class SearchResult:
    """One semantic-search hit with its neighbouring paragraphs."""

    story_id: str
    message_id: str
    node_id: str | None
    paragraph_index: int
    matching_paragraph: str
    score: float
    model: str
    dimension: int
    context: list[SearchContextItem] = field(default_factory=list)
    message: MessageSummary = field(default_factory=MessageSummary)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class _ScoredEmbedding:
    record: ParagraphEmbedding
    score: float


def build_context(
    paragraphs: list[str] | None,
    paragraph_index: int,
    window: int,
) -> list[SearchContextItem]:
    """Neighbouring paragraphs within ``window`` of the match, match excluded."""
    if not paragraphs or window <= 0:
        return []
    start = max(0, paragraph_index - window)
    end = min(len(paragraphs) - 1, paragraph_index + window)
    return [
        SearchContextItem(paragraph_index=i, text=paragraphs[i])
        for i in range(start, end + 1)
        if i != paragraph_index
    ]


class SimilaritySearchEngine:
    """Embeds a query and ranks stored paragraphs by cosine similarity."""

    def __init__(
        self,
        *,
        embedder: EmbeddingProvider,
        embedding_store: ParagraphEmbeddingStore,
        message_store: MessageStore,
        limit: int = 10,
        min_score: float = 0.0,
        context_paragraphs: int = 1,
    ):
        self.embedder = embedder
        self.embedding_store = embedding_store
        self.message_store = message_store
        self.limit = limit
        self.min_score = min_score
        self.context_paragraphs = context_paragraphs

    async def search(
        self,
        query: str,
        story_id: str | None = None,
        limit: int | None = None,
        min_score: float | None = None,
        context_paragraphs: int | None = None,
    ) -> list[SearchResult]:
        """Ranked results by descending score. Never raises on provider errors."""
        if not query or not query.strip():
            return []

        limit = self.limit if limit is None else limit
        min_score = self.min_score if min_score is None else min_score
        context_paragraphs = self.context_paragraphs if context_paragraphs is None else context_paragraphs

        try:
            query_vector = to_float32(await self.embedder.embed(query))
        except Exception as e:
            log.error("Failed to generate query embedding", error=str(e))
            return []

        query_magnitude = vector_magnitude(query_vector)
        records = await self.embedding_store.find_by_story_scope(story_id)

        scored: list[_ScoredEmbedding] = []
        for record in records:
            try:
                if not record.vector:
                    raise InvalidVectorDimension(len(query_vector), 0)
                score = cosine_similarity(query_vector, record.vector, query_magnitude)
            except InvalidVectorDimension as e:
                log.warning(
                    "Skipping embedding with mismatched dimensions",
                    story_id=record.story_id,
                    message_id=record.message_id,
                    paragraph_index=record.paragraph_index,
                    expected_dimension=e.expected,
                    actual_dimension=e.actual,
                )
                continue
            if score < min_score:
                continue
            scored.append(_ScoredEmbedding(record=record, score=score))

        # list.sort is stable: equal scores keep scan order.
        scored.sort(key=lambda item: item.score, reverse=True)
        top = scored[: max(0, limit)]
        if not top:
            return []

        messages = await self.message_store.get_messages_by_ids(
            (item.record.message_id for item in top),
            story_id=story_id,
        )
        return [self._to_result(item, messages, context_paragraphs) for item in top]

    def _to_result(
        self,
        item: _ScoredEmbedding,
        messages: dict[tuple[str, str], Message],
        context_paragraphs: int,
    ) -> SearchResult:
        record = item.record
        message = messages.get((record.story_id, record.message_id))
        return SearchResult(
            story_id=record.story_id,
            message_id=record.message_id,
            node_id=message.node_id if message else None,
            paragraph_index=record.paragraph_index,
            matching_paragraph=record.content,
            context=build_context(
                message.paragraphs if message else None,
                record.paragraph_index,
                context_paragraphs,
            ),
            score=item.score,
            model=record.model,
            dimension=record.dimension,
            message=MessageSummary(
                sentence_summary=message.sentence_summary if message else None,
                summary=message.summary if message else None,
                paragraph_summary=message.paragraph_summary if message else None,
            ),
        )
