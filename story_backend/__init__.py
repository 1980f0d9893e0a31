"""Story backend - semantic paragraph search over story messages."""

__version__ = "0.1.0"

from story_backend.config import Config
from story_backend.service import ParagraphEmbeddingService, create_paragraph_embedding_service

__all__ = ["Config", "ParagraphEmbeddingService", "create_paragraph_embedding_service", "__version__"]
