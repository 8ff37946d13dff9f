from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional


"""
Presence registry
-----------------
Maps logical users to the live connection that registered them.

  • register(user, conn)   first registration of a user wins; later ones are no-ops,
                           and so is a second user on an already registered connection
  • unregister(conn)       drops whatever the connection registered
  • lookup(user)           pure read
  • snapshot()             insertion-ordered copy, what gets broadcast to clients

Every register/unregister (including no-op ones) fires ``on_change`` with the fresh
snapshot; the runtime turns that into a presenceSnapshot broadcast. Mutations never
suspend, so on a single event loop they cannot interleave. The lock only matters
when the registry is shared with another thread.

A user who reconnects without the old connection closing keeps the stale mapping
until that connection's disconnect arrives.
"""


log = logging.getLogger("chatd.presence")


@dataclass(frozen=True, slots=True)
class PresenceEntry:
    user_id: str
    connection_id: str

    def as_dict(self) -> Dict[str, str]:
        return {"userId": self.user_id, "connectionId": self.connection_id}


# ---- types ----
ChangeFn = Callable[[List[PresenceEntry]], None]   # receives the post-mutation snapshot


class PresenceRegistry:
    def __init__(self, on_change: Optional[ChangeFn] = None) -> None:
        self.on_change = on_change
        self._entries: List[PresenceEntry] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, user_id: object) -> bool:
        return isinstance(user_id, str) and self.lookup(user_id) is not None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def register(self, user_id: str, connection_id: str) -> bool:
        """Add ``user_id -> connection_id`` unless the user or the connection is already present.

        A connection carries one user; a second register from it is a no-op.
        Returns True when an entry was added.
        """
        with self._lock:
            added = not any(e.user_id == user_id or e.connection_id == connection_id for e in self._entries)
            if added:
                self._entries.append(PresenceEntry(user_id, connection_id))
        if added:
            log.info("Registered %s on connection %s", user_id, connection_id)
        else:
            log.debug("Ignored duplicate register of %s from %s", user_id, connection_id)
        self._changed()
        return added

    def unregister(self, connection_id: str) -> List[PresenceEntry]:
        """Remove the entry held by ``connection_id``; returns what was removed (empty or one entry)."""
        with self._lock:
            removed = [e for e in self._entries if e.connection_id == connection_id]
            if removed:
                self._entries = [e for e in self._entries if e.connection_id != connection_id]
        for entry in removed:
            log.info("Unregistered %s (connection %s closed)", entry.user_id, connection_id)
        self._changed()
        return removed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def lookup(self, user_id: str) -> Optional[str]:
        with self._lock:
            for entry in self._entries:
                if entry.user_id == user_id:
                    return entry.connection_id
        return None

    def snapshot(self) -> List[PresenceEntry]:
        with self._lock:
            return list(self._entries)

    # ------------------------------------------------------------------

    def _changed(self) -> None:
        if self.on_change is None:
            return
        self.on_change(self.snapshot())


def snapshot_payload(entries: List[PresenceEntry]) -> List[Dict[str, str]]:
    """Wire form of a snapshot: [{userId, connectionId}, ...]."""
    return [e.as_dict() for e in entries]


__all__ = ["PresenceEntry", "PresenceRegistry", "snapshot_payload"]
