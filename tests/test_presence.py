# tests/test_presence.py
from __future__ import annotations

import random

import pytest

from chatd.core.presence import PresenceEntry, PresenceRegistry, snapshot_payload


# -----------------------------
# Fixtures
# -----------------------------

@pytest.fixture
def snapshots():
    """Every snapshot handed to on_change, in order."""
    return []


@pytest.fixture
def registry(snapshots):
    return PresenceRegistry(on_change=snapshots.append)


# -----------------------------
# register / lookup
# -----------------------------

def test_register_then_lookup(registry):
    assert registry.register("u1", "c1") is True
    assert registry.lookup("u1") == "c1"
    assert "u1" in registry
    assert len(registry) == 1


def test_lookup_unknown_user_is_none(registry):
    assert registry.lookup("nobody") is None
    assert "nobody" not in registry


def test_duplicate_register_keeps_first_mapping(registry):
    """A second register for the same user is a no-op, whatever the connection."""
    registry.register("u1", "c1")
    assert registry.register("u1", "c2") is False
    assert registry.lookup("u1") == "c1"
    assert registry.snapshot() == [PresenceEntry("u1", "c1")]


def test_snapshot_is_insertion_ordered_copy(registry):
    registry.register("u2", "c2")
    registry.register("u1", "c1")
    registry.register("u3", "c3")
    snap = registry.snapshot()
    assert [e.user_id for e in snap] == ["u2", "u1", "u3"]

    snap.clear()
    assert len(registry) == 3


# -----------------------------
# unregister
# -----------------------------

def test_unregister_removes_only_matching_connection(registry):
    registry.register("u1", "c1")
    registry.register("u2", "c2")
    registry.register("u3", "c3")

    removed = registry.unregister("c2")

    assert removed == [PresenceEntry("u2", "c2")]
    assert registry.lookup("u2") is None
    assert registry.snapshot() == [PresenceEntry("u1", "c1"), PresenceEntry("u3", "c3")]


def test_second_user_on_same_connection_is_ignored(registry, snapshots):
    """A connection holds at most one entry; the extra register still broadcasts."""
    registry.register("u1", "c1")
    assert registry.register("u2", "c1") is False

    assert registry.lookup("u2") is None
    assert registry.snapshot() == [PresenceEntry("u1", "c1")]
    assert len(snapshots) == 2
    assert registry.unregister("c1") == [PresenceEntry("u1", "c1")]


def test_unregister_unknown_connection_is_noop(registry):
    registry.register("u1", "c1")
    assert registry.unregister("zzz") == []
    assert registry.lookup("u1") == "c1"


def test_stale_entry_survives_reconnect_until_old_connection_closes(registry):
    """Reconnecting without a disconnect does not replace the old mapping."""
    registry.register("u1", "old")
    registry.register("u1", "new")
    assert registry.lookup("u1") == "old"

    registry.unregister("old")
    assert registry.lookup("u1") is None
    registry.register("u1", "new")
    assert registry.lookup("u1") == "new"


# -----------------------------
# change notifications
# -----------------------------

def test_every_mutation_notifies_with_fresh_snapshot(registry, snapshots):
    registry.register("u1", "c1")
    registry.register("u1", "c9")      # no-op, still broadcast
    registry.register("u2", "c2")
    registry.unregister("c1")
    registry.unregister("missing")     # no-op, still broadcast

    assert len(snapshots) == 5
    assert snapshots[0] == [PresenceEntry("u1", "c1")]
    assert snapshots[1] == [PresenceEntry("u1", "c1")]
    assert snapshots[2] == [PresenceEntry("u1", "c1"), PresenceEntry("u2", "c2")]
    assert snapshots[3] == [PresenceEntry("u2", "c2")]
    assert snapshots[4] == [PresenceEntry("u2", "c2")]


def test_reads_do_not_notify(registry, snapshots):
    registry.lookup("u1")
    registry.snapshot()
    assert snapshots == []


def test_registry_without_callback():
    reg = PresenceRegistry()
    reg.register("u1", "c1")
    reg.unregister("c1")
    assert len(reg) == 0


def test_snapshot_payload_wire_shape():
    entries = [PresenceEntry("u1", "c1"), PresenceEntry("u2", "c2")]
    assert snapshot_payload(entries) == [
        {"userId": "u1", "connectionId": "c1"},
        {"userId": "u2", "connectionId": "c2"},
    ]


# -----------------------------
# random register/unregister sequences
# -----------------------------

@pytest.mark.parametrize("seed", [1, 7, 42])
def test_lookup_tracks_registration_until_its_connection_closes(seed):
    """lookup(user) returns the first registered connection until that connection unregisters."""
    rng = random.Random(seed)
    reg = PresenceRegistry()
    expected: dict[str, str] = {}
    users = [f"u{i}" for i in range(5)]
    conns = [f"c{i}" for i in range(8)]

    for _ in range(300):
        if rng.random() < 0.6:
            user, conn = rng.choice(users), rng.choice(conns)
            reg.register(user, conn)
            if user not in expected and conn not in expected.values():
                expected[user] = conn
        else:
            conn = rng.choice(conns)
            reg.unregister(conn)
            expected = {u: c for u, c in expected.items() if c != conn}

        for user in users:
            assert reg.lookup(user) == expected.get(user)
        held = [e.connection_id for e in reg.snapshot()]
        assert len(held) == len(set(held))
