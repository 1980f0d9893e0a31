import pytest

from story_backend.embedding_store import ParagraphEmbedding, ParagraphEmbeddingStore
from story_backend.exceptions import MessageNotFoundError
from story_backend.messages import Message, MessageStore


@pytest.mark.asyncio
async def test_save_and_get_message_round_trip(database):
    store = MessageStore(database)
    await store.save_message(
        Message(
            story_id="s1",
            id="m1",
            node_id="n1",
            content="Hello.\n\nWorld.",
            paragraphs=["Hello.", "World."],
            order=3,
            summary="greeting",
        )
    )

    loaded = await store.get_message("s1", "m1")
    assert loaded is not None
    assert loaded.node_id == "n1"
    assert loaded.paragraphs == ["Hello.", "World."]
    assert loaded.order == 3
    assert loaded.summary == "greeting"
    assert loaded.is_query is False
    assert await store.get_message("s1", "missing") is None


@pytest.mark.asyncio
async def test_update_paragraphs_requires_existing_message(database):
    store = MessageStore(database)
    await store.save_message(Message(story_id="s1", id="m1", content="a"))

    await store.update_paragraphs("s1", "m1", ["a"])
    assert (await store.get_message("s1", "m1")).paragraphs == ["a"]

    with pytest.raises(MessageNotFoundError):
        await store.update_paragraphs("s1", "ghost", ["a"])


@pytest.mark.asyncio
async def test_list_messages_for_rebuild_filters_and_orders(database):
    store = MessageStore(database)
    await store.save_message(Message(story_id="b", id="b2", content="x", order=2))
    await store.save_message(Message(story_id="b", id="b1", content="x", order=1))
    await store.save_message(Message(story_id="a", id="a1", content="x", order=5))
    await store.save_message(Message(story_id="a", id="q", content="x", is_query=True))
    await store.save_message(Message(story_id="a", id="d", content="x", deleted=True))

    assert [m.id for m in await store.list_messages_for_rebuild()] == ["a1", "b1", "b2"]
    assert [m.id for m in await store.list_messages_for_rebuild("b")] == ["b1", "b2"]


@pytest.mark.asyncio
async def test_get_messages_by_ids_scopes_to_story(database):
    store = MessageStore(database)
    await store.save_message(Message(story_id="s1", id="m1", content="x"))
    await store.save_message(Message(story_id="s2", id="m1", content="y"))
    await store.save_message(Message(story_id="s1", id="m2", content="z"))

    found = await store.get_messages_by_ids(["m1", "m2", "m1"], story_id="s1")
    assert set(found) == {("s1", "m1"), ("s1", "m2")}

    unscoped = await store.get_messages_by_ids(["m1"])
    assert set(unscoped) == {("s1", "m1"), ("s2", "m1")}
    assert await store.get_messages_by_ids([]) == {}


@pytest.mark.asyncio
async def test_mark_deleted_returns_status(database):
    store = MessageStore(database)
    await store.save_message(Message(story_id="s1", id="m1", content="x"))

    assert await store.mark_deleted("s1", "m1") is True
    assert (await store.get_message("s1", "m1")).deleted is True
    assert await store.mark_deleted("s1", "missing") is False


@pytest.mark.asyncio
async def test_hard_delete_cascades_to_embeddings(database):
    messages = MessageStore(database)
    embeddings = ParagraphEmbeddingStore(database)
    await messages.save_message(Message(story_id="s1", id="m1", content="x"))
    await embeddings.insert_many([
        ParagraphEmbedding(story_id="s1", message_id="m1", paragraph_index=0, content="x", vector=[1.0], model="m")
    ])

    await database.connection.execute("DELETE FROM messages WHERE story_id = ? AND id = ?", ("s1", "m1"))
    await database.commit()

    assert await embeddings.find_by_message("s1", "m1") == []
