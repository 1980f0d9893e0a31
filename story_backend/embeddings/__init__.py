"""Embedding providers - direct HTTP calls to the Ollama API."""

import asyncio
import hashlib
import json
import math
import re
from abc import ABC, abstractmethod
from typing import Any

import httpx

from story_backend.exceptions import ConfigurationError, EmbeddingProviderError
from story_backend.logging import get_logger

log = get_logger(__name__)


OLLAMA_NATIVE_BASE_URL = "http://127.0.0.1:11434"
DEFAULT_EMBEDDING_MODEL = "qwen3-embedding:0.6b"
FLOAT32_MAX = 3.4028234663852886e38


class EmbeddingProvider(ABC):
    """Abstract base class for embedding providers."""

    model: str

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Return one embedding vector for ``text``."""

    async def aclose(self) -> None:
        """Release provider resources."""
        return None


class OllamaEmbeddingClient(EmbeddingProvider):
    """Ollama embedding client with a single fallback request."""

    def __init__(
        self,
        model: str = DEFAULT_EMBEDDING_MODEL,
        host: str = OLLAMA_NATIVE_BASE_URL,
        timeout: float = 60.0,
        fallback_endpoint: bool = True,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize the Ollama embedding client.

        Args:
            model: Embedding model name (e.g. 'qwen3-embedding:0.6b')
            host: Ollama API base URL
            timeout: Upper bound in seconds for each request
            fallback_endpoint: Retry once against the legacy /api/embeddings route
            client: Optional pre-built httpx client (tests inject fakes here)
        """
        self.model = str(model).strip() or DEFAULT_EMBEDDING_MODEL
        self.host = str(host).rstrip("/") or OLLAMA_NATIVE_BASE_URL
        self.timeout = float(timeout) if timeout and float(timeout) > 0 else 60.0
        self.fallback_endpoint = fallback_endpoint
        self.client = client or httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
        )

    async def embed(self, text: str) -> list[float]:
        """Embed ``text``; raises EmbeddingProviderError after the fallback fails."""
        try:
            vector = await self._bounded(self._embed_primary(text))
            if vector:
                return vector
            primary_error = "empty embedding"
        except EmbeddingProviderError as e:
            primary_error = str(e)

        if not self.fallback_endpoint:
            raise EmbeddingProviderError(
                f'Unexpected embedding response for model "{self.model}": {primary_error}'
            )

        log.warning(
            "Primary embed request failed; attempting fallback",
            model=self.model,
            error=primary_error,
        )
        vector = await self._bounded(self._embed_legacy(text))
        if not vector:
            raise EmbeddingProviderError(f'Unexpected embedding response for model "{self.model}"')
        return vector

    async def _bounded(self, request) -> list[float]:
        try:
            return await asyncio.wait_for(request, timeout=self.timeout)
        except asyncio.TimeoutError:
            raise EmbeddingProviderError(
                f"Ollama embedding request timed out after {self.timeout:g}s"
            )

    async def _embed_primary(self, text: str) -> list[float]:
        data = await self._post("/api/embed", {"model": self.model, "input": text})
        embeddings = data.get("embeddings")
        if not isinstance(embeddings, list) or not embeddings:
            return []
        return _coerce_vector(embeddings[0])

    async def _embed_legacy(self, text: str) -> list[float]:
        data = await self._post("/api/embeddings", {"model": self.model, "prompt": text})
        return _coerce_vector(data.get("embedding"))

    async def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.host}{path}"
        try:
            log.debug("Calling Ollama embeddings", model=self.model, url=url)
            response = await self.client.post(url, json=body)

            if not response.is_success:
                raise EmbeddingProviderError(
                    f"Ollama API error {response.status_code}: {response.text}",
                    status_code=response.status_code,
                )

            data = response.json()
        except httpx.HTTPError as e:
            raise EmbeddingProviderError(f"Ollama HTTP error: {e}")
        except json.JSONDecodeError as e:
            raise EmbeddingProviderError(f"Ollama response decode error: {e}")

        if not isinstance(data, dict):
            raise EmbeddingProviderError("Ollama embeddings response is not an object")
        return data

    async def aclose(self) -> None:
        await self.client.aclose()


def _coerce_vector(raw: Any) -> list[float]:
    if not isinstance(raw, list):
        return []
    try:
        vector = [float(v) for v in raw]
    except (TypeError, ValueError) as e:
        raise EmbeddingProviderError(f"Embedding contains non-numeric values: {e}")
    # Stored as float32; anything outside that range cannot be persisted.
    for value in vector:
        if not math.isfinite(value) or abs(value) > FLOAT32_MAX:
            raise EmbeddingProviderError(f"Embedding value {value!r} is not representable as float32")
    return vector


class LocalHashEmbeddingClient(EmbeddingProvider):
    """Deterministic bag-of-words hashing embeddings for offline use."""

    model = "local-hash-bow"

    def __init__(self, dimensions: int = 256):
        self.dimensions = max(64, int(dimensions))
        self.model = f"local-hash-bow-{self.dimensions}"

    async def embed(self, text: str) -> list[float]:
        bucket = [0.0] * self.dimensions
        for token in re.findall(r"\w+", text.lower()):
            digest = hashlib.sha1(token.encode("utf-8", errors="ignore")).digest()
            idx = int.from_bytes(digest[:4], byteorder="big", signed=False) % self.dimensions
            sign = -1.0 if digest[4] % 2 else 1.0
            bucket[idx] += sign
        norm = math.sqrt(sum(v * v for v in bucket))
        if norm <= 1e-12:
            return bucket
        return [v / norm for v in bucket]


def create_embedding_client(embedding_cfg: Any) -> EmbeddingProvider:
    """Create an embedding provider from the ``embedding`` config section."""
    provider = str(getattr(embedding_cfg, "provider", "ollama")).strip().lower()
    if provider == "ollama":
        return OllamaEmbeddingClient(
            model=getattr(embedding_cfg, "model", DEFAULT_EMBEDDING_MODEL),
            host=getattr(embedding_cfg, "host", OLLAMA_NATIVE_BASE_URL),
            timeout=float(getattr(embedding_cfg, "timeout", 60.0)),
            fallback_endpoint=bool(getattr(embedding_cfg, "fallback_endpoint", True)),
        )
    if provider == "local_hash":
        return LocalHashEmbeddingClient(dimensions=int(getattr(embedding_cfg, "local_dimensions", 256)))
    raise ConfigurationError(f"Unknown embedding provider: {provider}")
