import pytest

from sourcechat.services.message_store import SQLiteMessageStore


@pytest.mark.asyncio
class TestSQLiteMessageStore:
    async def test_create_and_get_conversation(self, initialized_db):
        store = SQLiteMessageStore()
        conv = await store.create_conversation(user_id="u1", title="Research")
        fetched = await store.get_conversation(conv.id)
        assert fetched.id == conv.id
        assert fetched.user_id == "u1"
        assert fetched.title == "Research"

    async def test_get_missing_conversation(self, initialized_db):
        assert await SQLiteMessageStore().get_conversation("nope") is None

    async def test_persist_message_round_trips_metadata(self, initialized_db):
        store = SQLiteMessageStore()
        conv = await store.create_conversation()
        msg = await store.persist_message(
            conv.id, "assistant", "Answer [^1]", {"citationMap": {"^1": {"sourceId": "s1"}}, "tokenCount": 12},
        )
        assert msg.role == "assistant"
        assert msg.metadata["tokenCount"] == 12
        assert msg.metadata["citationMap"]["^1"]["sourceId"] == "s1"
        assert msg.created_at

    async def test_messages_in_insertion_order(self, initialized_db):
        store = SQLiteMessageStore()
        conv = await store.create_conversation()
        for i in range(5):
            await store.persist_message(conv.id, "user" if i % 2 == 0 else "assistant", f"m{i}")

        messages = await store.list_messages(conv.id)
        assert [m.content for m in messages] == ["m0", "m1", "m2", "m3", "m4"]

    async def test_limit_returns_most_recent_chronologically(self, initialized_db):
        store = SQLiteMessageStore()
        conv = await store.create_conversation()
        for i in range(5):
            await store.persist_message(conv.id, "user", f"m{i}")

        messages = await store.list_messages(conv.id, limit=2)
        assert [m.content for m in messages] == ["m3", "m4"]

    async def test_messages_scoped_to_conversation(self, initialized_db):
        store = SQLiteMessageStore()
        a = await store.create_conversation()
        b = await store.create_conversation()
        await store.persist_message(a.id, "user", "for a")
        await store.persist_message(b.id, "user", "for b")
        assert [m.content for m in await store.list_messages(a.id)] == ["for a"]
