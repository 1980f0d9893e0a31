"""Float32 vector codec and similarity math.

Vectors are stored as fixed-width little-endian float32 arrays.
"""

from __future__ import annotations

from collections.abc import Sequence
import math
import struct

from story_backend.exceptions import InvalidVectorDimension

FLOAT32_SIZE = 4


def encode_vector(vector: Sequence[float]) -> bytes:
    """Encode a vector as little-endian float32 bytes."""
    return struct.pack(f"<{len(vector)}f", *vector)


def decode_vector(blob: bytes) -> list[float]:
    """Decode little-endian float32 bytes into a list of floats."""
    if len(blob) % FLOAT32_SIZE:
        raise ValueError(f"Vector blob length {len(blob)} is not a multiple of {FLOAT32_SIZE}")
    return list(struct.unpack(f"<{len(blob) // FLOAT32_SIZE}f", blob))


def to_float32(vector: Sequence[float]) -> list[float]:
    """Round every component to float32 precision."""
    return decode_vector(encode_vector(vector))


def vector_magnitude(vector: Sequence[float]) -> float:
    return math.sqrt(sum(v * v for v in vector))


def cosine_similarity(
    query: Sequence[float],
    target: Sequence[float],
    query_magnitude: float | None = None,
) -> float:
    """Cosine similarity in [-1, 1].

    Raises InvalidVectorDimension when lengths differ. A zero magnitude on
    either side scores 0.0.
    """
    if len(query) != len(target):
        raise InvalidVectorDimension(len(query), len(target))

    if query_magnitude is None:
        query_magnitude = vector_magnitude(query)

    dot_product = 0.0
    target_squared = 0.0
    for q, t in zip(query, target):
        dot_product += q * t
        target_squared += t * t

    if query_magnitude == 0 or target_squared == 0:
        return 0.0

    score = dot_product / (query_magnitude * math.sqrt(target_squared))
    if not math.isfinite(score):
        return 0.0
    return max(-1.0, min(1.0, score))
