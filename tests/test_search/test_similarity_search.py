import pytest

from story_backend.embedding_store import ParagraphEmbedding
from story_backend.messages import Message
from story_backend.search import build_context


async def _add_message(service, story_id: str, message_id: str, content: str, order: int = 0, **kwargs) -> Message:
    message = Message(story_id=story_id, id=message_id, content=content, order=order, **kwargs)
    await service.message_store.save_message(message)
    await service.refresh_paragraph_embeddings_for_message(story_id, message_id, content, is_query=message.is_query)
    return message


def test_build_context_clips_at_bounds():
    paragraphs = ["a", "b", "c", "d"]

    assert [c.paragraph_index for c in build_context(paragraphs, 0, 2)] == [1, 2]
    assert [c.paragraph_index for c in build_context(paragraphs, 3, 1)] == [2]
    assert [c.text for c in build_context(paragraphs, 1, 5)] == ["a", "c", "d"]
    assert build_context(paragraphs, 1, 0) == []
    assert build_context(None, 1, 2) == []


@pytest.mark.asyncio
async def test_min_score_filter_and_same_message_context(service, embedder):
    content = "The hero rose.\n\nThe sky darkened."
    await service.message_store.save_message(
        Message(story_id="s1", id="m1", content=content, paragraphs=["The hero rose.", "The sky darkened."])
    )
    await _add_message(service, "s1", "m2", "Unrelated.\n\nAlso unrelated.", order=1)
    await service.embedding_store.insert_many([
        ParagraphEmbedding("s1", "m1", 0, "The hero rose.", [0.9, 0.43589], "fake-embed"),
        ParagraphEmbedding("s1", "m1", 1, "The sky darkened.", [0.3, 0.95394], "fake-embed"),
    ])
    embedder.vectors["hero"] = [1.0, 0.0]

    results = await service.search_paragraph_embeddings("hero", story_id="s1", limit=5, min_score=0.5)

    assert len(results) == 1
    hit = results[0]
    assert hit.message_id == "m1"
    assert hit.paragraph_index == 0
    assert hit.matching_paragraph == "The hero rose."
    assert hit.score == pytest.approx(0.9, abs=1e-4)
    assert hit.dimension == 2
    assert [(c.paragraph_index, c.text) for c in hit.context] == [(1, "The sky darkened.")]


@pytest.mark.asyncio
async def test_results_are_ranked_and_limited(service):
    await _add_message(service, "s1", "m1", "A sword and a dragon.\n\nThe calm sea.\n\nA sword, a sword.")

    results = await service.search_paragraph_embeddings("sword", story_id="s1", limit=2)

    assert len(results) == 2
    assert results[0].score >= results[1].score
    assert results[0].paragraph_index == 2
    assert all(-1.0 <= r.score <= 1.0 for r in results)


@pytest.mark.asyncio
async def test_blank_query_returns_nothing_without_embedding(service, embedder):
    await _add_message(service, "s1", "m1", "A sword.")
    embedder.calls.clear()

    assert await service.search_paragraph_embeddings("   ", story_id="s1") == []
    assert embedder.calls == []


@pytest.mark.asyncio
async def test_provider_failure_returns_empty_list(service, embedder):
    await _add_message(service, "s1", "m1", "A sword.")
    embedder.fail_for.add("sword")

    assert await service.search_paragraph_embeddings("sword", story_id="s1") == []


@pytest.mark.asyncio
async def test_mismatched_dimensions_are_skipped(service):
    await _add_message(service, "s1", "m1", "A sword.")
    await service.message_store.save_message(Message(story_id="s1", id="m2", content="Old.", order=1))
    await service.embedding_store.insert_many([
        ParagraphEmbedding("s1", "m2", 0, "Old.", [1.0, 0.0, 0.0], "old-model"),
    ])

    results = await service.search_paragraph_embeddings("sword", story_id="s1")

    assert [r.message_id for r in results] == ["m1"]


@pytest.mark.asyncio
async def test_deleted_and_query_messages_are_excluded(service):
    await _add_message(service, "s1", "m1", "A sword.")
    await _add_message(service, "s1", "gone", "Another sword.", order=1)
    await service.message_store.mark_deleted("s1", "gone")
    await service.message_store.save_message(
        Message(story_id="s1", id="q", content="Where is the sword?", order=2, is_query=True)
    )
    await service.embedding_store.insert_many([
        ParagraphEmbedding("s1", "q", 0, "Where is the sword?", [1.0, 0.0, 0.0, 1.0], "fake-embed"),
    ])

    results = await service.search_paragraph_embeddings("sword", story_id="s1")

    assert [r.message_id for r in results] == ["m1"]


@pytest.mark.asyncio
async def test_story_scope(service):
    await _add_message(service, "s1", "m1", "A sword.")
    await _add_message(service, "s2", "m1", "A sword.")

    scoped = await service.search_paragraph_embeddings("sword", story_id="s2")
    unscoped = await service.search_paragraph_embeddings("sword")

    assert [r.story_id for r in scoped] == ["s2"]
    assert sorted(r.story_id for r in unscoped) == ["s1", "s2"]


@pytest.mark.asyncio
async def test_equal_scores_keep_story_order(service):
    await _add_message(service, "s1", "late", "The sea.", order=5)
    await _add_message(service, "s1", "early", "The sea.", order=1)

    results = await service.search_paragraph_embeddings("sea", story_id="s1")

    assert [r.message_id for r in results] == ["early", "late"]
    assert results[0].score == results[1].score


@pytest.mark.asyncio
async def test_results_carry_message_summaries(service):
    await _add_message(
        service,
        "s1",
        "m1",
        "The dragon slept.",
        node_id="node-7",
        summary="A dragon naps.",
        sentence_summary="Dragon sleeps.",
    )

    results = await service.search_paragraph_embeddings("dragon", story_id="s1")

    assert results[0].node_id == "node-7"
    assert results[0].message.summary == "A dragon naps."
    assert results[0].message.sentence_summary == "Dragon sleeps."
    assert results[0].message.paragraph_summary is None
    assert results[0].to_dict()["message"]["summary"] == "A dragon naps."
