"""Batch rebuild of paragraph embeddings with staleness detection."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
import inspect

from story_backend.embedding_store import EmbeddingMetadata, ParagraphEmbeddingStore
from story_backend.logging import get_logger
from story_backend.messages import Message, MessageStore, parse_timestamp
from story_backend.paragraphs import split_into_paragraphs
from story_backend.refresh import RefreshEngine

log = get_logger(__name__)


@dataclass
class RebuildProgress:
    """Progress notification emitted while rebuilding."""

    completed: int
    total: int
    story_id: str
    message_id: str
    progress: float


@dataclass
class RebuildFailure:
    story_id: str
    message_id: str
    error: str


@dataclass
class RebuildReport:
    """Outcome of one rebuild run."""

    total: int = 0
    completed: int = 0
    refreshed: int = 0
    skipped: int = 0
    failed: list[RebuildFailure] = field(default_factory=list)
    cancelled: bool = False


@dataclass
class StalenessCheck:
    up_to_date: bool
    reason: str


ProgressCallback = Callable[[RebuildProgress], Awaitable[None] | None]


def check_staleness(
    meta: EmbeddingMetadata | None,
    message_timestamp: str | datetime | None,
    paragraph_count: int,
) -> StalenessCheck:
    """Decide whether a message's stored embeddings match its current content."""
    if paragraph_count <= 0:
        return StalenessCheck(False, "empty")
    if meta is None or meta.updated_at is None:
        return StalenessCheck(False, "missing")
    timestamp = parse_timestamp(message_timestamp)
    if timestamp is None or meta.updated_at < timestamp:
        return StalenessCheck(False, "outdated")
    if meta.count != paragraph_count:
        return StalenessCheck(False, "count_mismatch")
    if (meta.min_dimension or 0) <= 0:
        return StalenessCheck(False, "invalid_dimension")
    return StalenessCheck(True, "current")


class RebuildScheduler:
    """Walks messages sequentially and refreshes only the stale ones."""

    def __init__(
        self,
        *,
        refresh_engine: RefreshEngine,
        embedding_store: ParagraphEmbeddingStore,
        message_store: MessageStore,
        progress_interval: int = 25,
        max_paragraphs_per_message: int = -1,
    ):
        self.refresh_engine = refresh_engine
        self.embedding_store = embedding_store
        self.message_store = message_store
        self.progress_interval = max(1, int(progress_interval))
        self.max_paragraphs_per_message = int(max_paragraphs_per_message)

    def paragraphs_to_process(self, message: Message) -> tuple[list[str], list[str]]:
        """Return (all paragraphs, capped leading subset to embed)."""
        paragraphs = message.paragraphs if message.paragraphs is not None else split_into_paragraphs(message.content)
        if self.max_paragraphs_per_message > 0:
            return paragraphs, paragraphs[: self.max_paragraphs_per_message]
        return paragraphs, paragraphs

    async def rebuild(
        self,
        *,
        story_id: str | None = None,
        progress_interval: int | None = None,
        force: bool = False,
        on_progress: ProgressCallback | None = None,
        stop_event: asyncio.Event | None = None,
    ) -> RebuildReport:
        """Rebuild embeddings for every (or one story's) message.

        Per-message failures are logged and recorded; the batch continues.
        ``stop_event`` is checked between messages.
        """
        interval = max(1, int(progress_interval or self.progress_interval))

        messages = await self.message_store.list_messages_for_rebuild(story_id)
        metadata = await self.embedding_store.group_metadata_by_message(story_id)

        report = RebuildReport(total=len(messages))
        log.info("Rebuilding paragraph embeddings", story_id=story_id or "all", count=report.total)

        for message in messages:
            if stop_event is not None and stop_event.is_set():
                report.cancelled = True
                log.info(
                    "Paragraph embedding rebuild cancelled",
                    story_id=story_id or "all",
                    completed=report.completed,
                    total=report.total,
                )
                break

            await self._process(message, metadata.get((message.story_id, message.id)), force, report)

            report.completed += 1
            if on_progress and (report.completed % interval == 0 or report.completed == report.total):
                await _notify(
                    on_progress,
                    RebuildProgress(
                        completed=report.completed,
                        total=report.total,
                        story_id=message.story_id,
                        message_id=message.id,
                        progress=report.completed / report.total if report.total else 1.0,
                    ),
                )

        log.info(
            "Finished rebuilding paragraph embeddings",
            story_id=story_id or "all",
            count=report.total,
            refreshed=report.refreshed,
            skipped=report.skipped,
            failed=len(report.failed),
        )
        return report

    async def _process(
        self,
        message: Message,
        meta: EmbeddingMetadata | None,
        force: bool,
        report: RebuildReport,
    ) -> None:
        paragraphs, to_process = self.paragraphs_to_process(message)
        check = check_staleness(meta, message.timestamp, len(to_process))

        if check.reason == "count_mismatch":
            log.warning(
                "Paragraph embedding count mismatch; rebuilding message",
                story_id=message.story_id,
                message_id=message.id,
                stored=meta.count if meta else 0,
                expected=len(to_process),
            )

        if check.up_to_date and not force:
            report.skipped += 1
            log.debug(
                "Skipping paragraph embedding rebuild (up-to-date)",
                story_id=message.story_id,
                message_id=message.id,
                paragraph_count=len(to_process),
            )
            return

        try:
            await self.refresh_engine.refresh(
                message.story_id,
                message.id,
                message.content,
                is_query=message.is_query,
                paragraphs_override=paragraphs,
                embedding_paragraphs=to_process,
            )
            report.refreshed += 1
        except Exception as e:
            report.failed.append(RebuildFailure(message.story_id, message.id, str(e)))
            log.error(
                "Failed to rebuild embeddings for message",
                story_id=message.story_id,
                message_id=message.id,
                error=str(e),
            )


async def _notify(callback: ProgressCallback, progress: RebuildProgress) -> None:
    result = callback(progress)
    if inspect.isawaitable(result):
        await result
