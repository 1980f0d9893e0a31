"""Custom exceptions for the story backend."""


class StoryBackendError(Exception):
    """Base exception for the story backend."""

    pass


class ConfigurationError(StoryBackendError):
    """Configuration-related errors."""

    pass


class EmbeddingProviderError(StoryBackendError):
    """Embedding model call failed or returned unusable output."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class InvalidVectorDimension(StoryBackendError):
    """Stored vector length disagrees with the query vector length."""

    def __init__(self, expected: int, actual: int):
        super().__init__(f"Vector dimension mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class StoreError(StoryBackendError):
    """Relational store errors."""

    pass


class MessageNotFoundError(StoreError):
    """Message not found."""

    def __init__(self, story_id: str, message_id: str):
        super().__init__(f"Message not found: {story_id}/{message_id}")
        self.story_id = story_id
        self.message_id = message_id
