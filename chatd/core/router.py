from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, List, Optional

from . import conversations
from .errors import ChatError, NotFoundError
from .presence import PresenceRegistry
from .proto import MESSAGE_DELIVERED, DeliveryPayload, MessageEvent, UserProfile
from .store import Store

log = logging.getLogger("chatd.router")

# emit(connection_id, frame_type, payload); may raise if the connection is gone
EmitFn = Callable[[str, str, Any], Awaitable[None]]


def delivery_targets(sender_conn: Optional[str], receiver_conn: Optional[str]) -> List[str]:
    """Connections that get a live copy of a message.

    The receiver's connection when it is live, plus the sender's own connection so
    their other sessions see the echo. A connection appears at most once, so a user
    messaging themself gets a single copy.
    """
    targets: List[str] = []
    for conn in (receiver_conn, sender_conn):
        if conn is not None and conn not in targets:
            targets.append(conn)
    return targets


class DeliveryRouter:
    def __init__(
        self,
        registry: PresenceRegistry,
        store: Store,
        emit: EmitFn,
        *,
        persist: bool = True,
    ) -> None:
        self.registry = registry
        self.store = store
        self.emit = emit
        self.persist = persist

    async def route(self, event: MessageEvent) -> List[str]:
        """Deliver ``event`` live to whoever is connected. Returns the connections emitted to.

        Never raises: a missing sender aborts the route, an unreachable connection is skipped.
        """
        # Targets are fixed before any await; presence may change while we fetch.
        sender_conn = self.registry.lookup(event.sender_id)
        receiver_conn = self.registry.lookup(event.receiver_id) if event.receiver_id else None
        targets = delivery_targets(sender_conn, receiver_conn)

        try:
            sender = await self.store.get_user(event.sender_id)
        except NotFoundError:
            log.warning("Dropped message from unknown sender %s", event.sender_id)
            return []
        except ChatError as exc:
            log.error("Profile lookup for %s failed: %s", event.sender_id, exc)
            return []

        conversation_id = event.conversation_id
        if self.persist:
            conversation_id = await self._persist(event)

        payload = DeliveryPayload(
            sender_id=event.sender_id,
            message=event.message,
            conversation_id=conversation_id,
            receiver_id=event.receiver_id,
            sender_profile=UserProfile(id=sender.id, full_name=sender.full_name, email=sender.email),
        ).model_dump(by_alias=True)

        if not targets:
            log.debug("Neither %s nor %s is online; skipping live delivery", event.sender_id, event.receiver_id)
            return []

        delivered: List[str] = []
        for conn_id in targets:
            try:
                await self.emit(conn_id, MESSAGE_DELIVERED, payload)
            except Exception:
                log.debug("Live delivery to %s failed", conn_id, exc_info=True)
                continue
            delivered.append(conn_id)
        return delivered

    async def _persist(self, event: MessageEvent) -> str:
        """Store the message; returns the conversation id it ended up in."""
        try:
            msg = await conversations.create_message(
                self.store,
                event.conversation_id,
                event.sender_id,
                event.message,
                event.receiver_id,
            )
        except ChatError as exc:
            log.warning("Could not store message from %s: %s", event.sender_id, exc)
            return event.conversation_id
        return msg.conversation_id


__all__ = ["DeliveryRouter", "EmitFn", "delivery_targets"]
