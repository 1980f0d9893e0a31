import pytest
import pytest_asyncio

from story_backend.config import Config
from story_backend.database import Database
from story_backend.embeddings import EmbeddingProvider
from story_backend.exceptions import EmbeddingProviderError
from story_backend.service import ParagraphEmbeddingService

KEYWORDS = ("sword", "dragon", "sea")


class FakeEmbedder(EmbeddingProvider):
    """Keyword-count vectors: one axis per keyword plus a constant bias axis."""

    model = "fake-embed"

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.vectors: dict[str, list[float]] = {}
        self.fail_for: set[str] = set()
        self.empty_for: set[str] = set()

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if text in self.fail_for:
            raise EmbeddingProviderError(f"provider down for {text!r}")
        if text in self.empty_for:
            return []
        if text in self.vectors:
            return list(self.vectors[text])
        lowered = text.lower()
        return [float(lowered.count(word)) for word in KEYWORDS] + [1.0]


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest_asyncio.fixture
async def database(tmp_path):
    db = await Database.open(tmp_path / "story.db")
    try:
        yield db
    finally:
        await db.close()


@pytest_asyncio.fixture
async def service(database, embedder):
    return ParagraphEmbeddingService(database=database, embedder=embedder, config=Config())
