import math
import random
import struct

import pytest

from story_backend.exceptions import InvalidVectorDimension
from story_backend.vectors import (
    cosine_similarity,
    decode_vector,
    encode_vector,
    to_float32,
    vector_magnitude,
)


def test_encoding_is_little_endian_float32():
    assert encode_vector([1.0]) == b"\x00\x00\x80\x3f"
    assert len(encode_vector([0.1, 0.2, 0.3])) == 12


def test_round_trip_preserves_float32_values_exactly():
    rng = random.Random(7)
    original = to_float32([rng.uniform(-10, 10) for _ in range(64)])
    assert decode_vector(encode_vector(original)) == original


def test_round_trip_rounds_doubles_to_float32_only():
    values = [0.1, 1e-8, -3.14159265358979, 12345.678]
    decoded = decode_vector(encode_vector(values))
    for before, after in zip(values, decoded):
        assert after == pytest.approx(before, rel=1e-6)
    assert decode_vector(encode_vector(decoded)) == decoded


def test_decode_rejects_truncated_blob():
    with pytest.raises(ValueError):
        decode_vector(b"\x00\x00\x80")


def test_empty_vector_round_trip():
    assert decode_vector(encode_vector([])) == []


def test_cosine_of_vector_with_itself_is_one():
    v = [0.3, -1.2, 4.5, 0.01]
    assert cosine_similarity(v, v) == pytest.approx(1.0)


def test_cosine_opposite_and_orthogonal():
    assert cosine_similarity([1.0, 2.0], [-1.0, -2.0]) == pytest.approx(-1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 5.0]) == pytest.approx(0.0)


def test_cosine_stays_within_bounds():
    rng = random.Random(11)
    for _ in range(200):
        a = [rng.uniform(-1, 1) for _ in range(8)]
        b = [rng.uniform(-1, 1) for _ in range(8)]
        score = cosine_similarity(a, b)
        assert -1.0 <= score <= 1.0


def test_zero_magnitude_scores_zero():
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0
    assert cosine_similarity([1.0, 1.0], [0.0, 0.0]) == 0.0


def test_precomputed_query_magnitude_matches():
    q = [3.0, 4.0]
    t = [4.0, 3.0]
    assert vector_magnitude(q) == 5.0
    assert cosine_similarity(q, t, query_magnitude=5.0) == pytest.approx(cosine_similarity(q, t))
    assert cosine_similarity(q, t) == pytest.approx(24 / 25)


def test_dimension_mismatch_raises():
    with pytest.raises(InvalidVectorDimension) as excinfo:
        cosine_similarity([1.0, 2.0, 3.0], [1.0, 2.0])
    assert excinfo.value.expected == 3
    assert excinfo.value.actual == 2
    assert not math.isnan(cosine_similarity([1.0], [1.0]))


def _random_float32(rng: random.Random) -> float:
    while True:
        value = struct.unpack("<f", rng.getrandbits(32).to_bytes(4, "little"))[0]
        if not math.isnan(value):
            return value


def test_round_trip_is_exact_for_random_float32_sequences():
    rng = random.Random(424242)
    for _ in range(300):
        vector = [_random_float32(rng) for _ in range(rng.randint(0, 48))]
        blob = encode_vector(vector)

        assert len(blob) == 4 * len(vector)
        assert decode_vector(blob) == vector
