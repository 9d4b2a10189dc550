from __future__ import annotations

import pytest

from orb.memory.facts import FactCache
from orb.memory.store import ConversationStore
from orb.orchestrator.events import ConversationMessage


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def store(tmp_path):
    store = ConversationStore(f"sqlite+aiosqlite:///{tmp_path / 'orb.db'}")
    await store.init()
    yield store
    await store.close()


@pytest.mark.anyio
async def test_recent_context_is_oldest_first_and_limited(store: ConversationStore) -> None:
    session = await store.create_session("Kitchen chat")
    for index in range(5):
        role = "user" if index % 2 == 0 else "assistant"
        await store.save_message(session["id"], ConversationMessage(role=role, content=f"message {index}"))

    recent = await store.get_recent_context(session["id"], limit=3)

    assert [message.content for message in recent] == ["message 2", "message 3", "message 4"]
    assert [message.role for message in recent] == ["user", "assistant", "user"]


@pytest.mark.anyio
async def test_message_metadata_round_trips(store: ConversationStore) -> None:
    message = ConversationMessage(role="system", content="Tool Output (ls): a", metadata={"tool": "bash", "success": True})
    await store.save_message("adhoc-session", message)

    [saved] = await store.get_conversations("adhoc-session")

    assert saved.metadata == {"tool": "bash", "success": True}
    assert await store.get_session("adhoc-session") is not None


@pytest.mark.anyio
async def test_personality_upsert_and_ordering(store: ConversationStore) -> None:
    await store.update_personality("home_city", "Paris", 0.4)
    await store.update_personality("pets", ["cat"], 0.9)
    await store.update_personality("home_city", {"city": "Lisbon"}, 0.95)

    facts = await store.get_personality()

    assert [fact.key for fact in facts] == ["home_city", "pets"]
    assert facts[0].value == {"city": "Lisbon"}
    assert facts[0].confidence == pytest.approx(0.95)


@pytest.mark.anyio
async def test_personality_confidence_must_be_a_probability(store: ConversationStore) -> None:
    with pytest.raises(ValueError):
        await store.update_personality("mood", "sunny", 1.5)


@pytest.mark.anyio
async def test_fact_cache_forget(store: ConversationStore) -> None:
    await store.update_personality("pets", ["cat"], 0.9)
    cache = FactCache(store)
    await cache.refresh()
    assert [fact.key for fact in cache.facts] == ["pets"]

    assert await cache.forget("pets") is True
    assert cache.facts == ()
    assert await cache.forget("pets") is False


@pytest.mark.anyio
async def test_preferences_store_json_values(store: ConversationStore) -> None:
    assert await store.get_preference("auto_converse") is None
    await store.set_preference("auto_converse", True, "behavior")
    await store.set_preference("auto_converse", False, "behavior")
    await store.set_preference("current_session_id", "abc", "system")

    assert await store.get_preference("auto_converse") is False
    assert await store.get_preference("current_session_id") == "abc"


@pytest.mark.anyio
async def test_sessions_listing(store: ConversationStore) -> None:
    first = await store.create_session()
    await store.create_session("Second")
    await store.rename_session(first["id"], "Renamed")

    sessions = await store.get_sessions()

    assert {session["title"] for session in sessions} == {"Renamed", "Second"}
    assert (await store.get_session(first["id"]))["title"] == "Renamed"
