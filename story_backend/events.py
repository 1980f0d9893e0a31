"""In-process story events.

Writers publish message lifecycle events; subscribers (the embedding service)
react to them. Handlers are awaited in subscription order and their errors
reach the publisher.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from story_backend.logging import get_logger

log = get_logger(__name__)


class StoryEventType(Enum):
    """Types of story events."""

    MESSAGE_CREATED = "message:created"
    MESSAGE_UPDATED = "message:updated"
    MESSAGE_DELETED = "message:deleted"


@dataclass
class StoryEvent:
    """A single story event."""

    type: StoryEventType
    story_id: str
    payload: dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def message_created(story_id: str, message_id: str, content: str, is_query: bool = False) -> StoryEvent:
        return StoryEvent(
            type=StoryEventType.MESSAGE_CREATED,
            story_id=story_id,
            payload={"message_id": message_id, "content": content, "is_query": is_query},
        )

    @staticmethod
    def message_updated(
        story_id: str,
        message_id: str,
        content: str | None = None,
        is_query: bool = False,
    ) -> StoryEvent:
        """Content is omitted for metadata-only edits."""
        payload: dict[str, Any] = {"message_id": message_id, "is_query": is_query}
        if content is not None:
            payload["content"] = content
        return StoryEvent(type=StoryEventType.MESSAGE_UPDATED, story_id=story_id, payload=payload)

    @staticmethod
    def message_deleted(story_id: str, message_id: str) -> StoryEvent:
        return StoryEvent(
            type=StoryEventType.MESSAGE_DELETED,
            story_id=story_id,
            payload={"message_id": message_id},
        )


EventHandler = Callable[[StoryEvent], Awaitable[None]]


class EventBus:
    """Minimal async publish/subscribe bus."""

    def __init__(self) -> None:
        self._handlers: dict[StoryEventType, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: StoryEventType, handler: EventHandler) -> Callable[[], None]:
        """Register a handler; returns a function that unsubscribes it."""
        self._handlers[event_type].append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    async def publish(self, event: StoryEvent) -> None:
        for handler in list(self._handlers.get(event.type, [])):
            try:
                await handler(event)
            except Exception as e:
                log.error(
                    "Story event handler failed",
                    event_type=event.type.value,
                    story_id=event.story_id,
                    error=str(e),
                )
                raise
