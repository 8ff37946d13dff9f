from __future__ import annotations

import pytest

from chatd.core.errors import NotFoundError, StoreError
from chatd.core.store import Store


@pytest.mark.asyncio
async def test_user_roundtrip(store):
    user = await store.create_user("Carol", "carol@example.com", "hash")
    fetched = await store.get_user(user.id)
    assert fetched == user
    assert (await store.find_user_by_email("carol@example.com")).id == user.id
    assert await store.find_user_by_email("nobody@example.com") is None


@pytest.mark.asyncio
async def test_get_missing_user_raises_not_found(store):
    with pytest.raises(NotFoundError):
        await store.get_user("missing")


@pytest.mark.asyncio
async def test_duplicate_email_is_a_store_error(store, alice):
    with pytest.raises(StoreError):
        await store.create_user("Alice Again", "alice@example.com", "x")


@pytest.mark.asyncio
async def test_set_user_token(store, alice):
    await store.set_user_token(alice.id, "tok")
    assert (await store.get_user(alice.id)).token == "tok"
    with pytest.raises(NotFoundError):
        await store.set_user_token("missing", "tok")


@pytest.mark.asyncio
async def test_list_users_excludes_requester(store, alice, bob):
    assert [u.id for u in await store.list_users(exclude=alice.id)] == [bob.id]
    assert [u.id for u in await store.list_users()] == [alice.id, bob.id]


@pytest.mark.asyncio
async def test_conversations_lookup(store, alice, bob):
    conv = await store.create_conversation([alice.id, bob.id])

    assert (await store.get_conversation(conv.id)).members == [alice.id, bob.id]
    assert [c.id for c in await store.list_conversations_for(bob.id)] == [conv.id]
    assert (await store.find_conversation_between(bob.id, alice.id)).id == conv.id
    assert await store.find_conversation_between(alice.id, "carol") is None
    with pytest.raises(NotFoundError):
        await store.get_conversation("missing")


@pytest.mark.asyncio
async def test_conversation_needs_two_members(store, alice):
    with pytest.raises(StoreError):
        await store.create_conversation([alice.id])


@pytest.mark.asyncio
async def test_messages_keep_insertion_order(store, alice, bob):
    conv = await store.create_conversation([alice.id, bob.id])
    for i in range(3):
        await store.create_message(conv.id, alice.id if i % 2 == 0 else bob.id, f"m{i}")
    await store.create_message("other", alice.id, "elsewhere")

    msgs = await store.list_messages(conv.id)
    assert [m.message for m in msgs] == ["m0", "m1", "m2"]
    assert [m.sender_id for m in msgs] == [alice.id, bob.id, alice.id]


@pytest.mark.asyncio
async def test_closed_store_raises(tmp_path):
    s = Store(tmp_path / "closed.db")
    with pytest.raises(StoreError):
        await s.get_user("anyone")
