from __future__ import annotations

import pytest
import pytest_asyncio

from chatd.core.auth import Authenticator
from chatd.core.store import Store


@pytest_asyncio.fixture
async def store(tmp_path):
    """A fresh SQLite store per test."""
    s = Store(tmp_path / "chatd-test.db")
    await s.open()
    try:
        yield s
    finally:
        await s.close()


@pytest.fixture
def auth():
    return Authenticator("test-secret", token_ttl=60)


@pytest_asyncio.fixture
async def alice(store):
    return await store.create_user("Alice Liddell", "alice@example.com", "x")


@pytest_asyncio.fixture
async def bob(store):
    return await store.create_user("Bob Builder", "bob@example.com", "x")
