from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .auth import Authenticator
from .errors import ConflictError, InvalidCredentials, ValidationError
from .store import Conversation, Message, Store, User

log = logging.getLogger("chatd.conversations")

NEW_CONVERSATION = "new"


def _require(**fields: Any) -> None:
    missing = [name for name, value in fields.items() if not value]
    if missing:
        raise ValidationError("Please fill all required fields: " + ", ".join(missing))


def profile(user: User) -> Dict[str, str]:
    return {"id": user.id, "email": user.email, "fullName": user.full_name}


# -------------------------------
# Users
# -------------------------------

async def register_user(store: Store, auth: Authenticator, full_name: str, email: str, password: str) -> User:
    _require(fullName=full_name, email=email, password=password)
    if await store.find_user_by_email(email) is not None:
        raise ConflictError("User already exists")
    user = await store.create_user(full_name, email, auth.hash_password(password))
    log.info("Registered user %s", user.id)
    return user


async def login(store: Store, auth: Authenticator, email: str, password: str) -> Dict[str, Any]:
    _require(email=email, password=password)
    user = await store.find_user_by_email(email)
    if user is None or not auth.verify_password(password, user.password):
        raise InvalidCredentials("User email or password is incorrect")
    token = auth.issue_token({"userId": user.id, "email": user.email})
    await store.set_user_token(user.id, token)
    return {"user": profile(user), "token": token}


async def list_users(store: Store, user_id: str) -> List[Dict[str, Any]]:
    users = await store.list_users(exclude=user_id)
    return [{"user": {"email": u.email, "fullName": u.full_name, "receiverId": u.id}} for u in users]


# -------------------------------
# Conversations
# -------------------------------

async def create_conversation(store: Store, sender_id: str, receiver_id: str) -> Conversation:
    _require(senderId=sender_id, receiverId=receiver_id)
    return await store.create_conversation([sender_id, receiver_id])


async def list_conversations(store: Store, user_id: str) -> List[Dict[str, Any]]:
    """Every conversation of ``user_id`` with the other member's profile."""
    result = []
    for conv in await store.list_conversations_for(user_id):
        # self-conversations have no "other" member
        other_id = next((m for m in conv.members if m != user_id), user_id)
        other = await store.get_user(other_id)
        result.append(
            {
                "user": {"receiverId": other.id, "email": other.email, "fullName": other.full_name},
                "conversationId": conv.id,
            }
        )
    return result


# -------------------------------
# Messages
# -------------------------------

async def create_message(
    store: Store,
    conversation_id: str,
    sender_id: str,
    body: str,
    receiver_id: str = "",
) -> Message:
    """Store a message, opening a conversation first when ``conversation_id`` is "new"."""
    _require(senderId=sender_id, message=body)

    if conversation_id == NEW_CONVERSATION and receiver_id:
        conv = await store.create_conversation([sender_id, receiver_id])
        return await store.create_message(conv.id, sender_id, body)

    if not conversation_id and not receiver_id:
        raise ValidationError("Please fill all required fields: conversationId")
    if not conversation_id or conversation_id == NEW_CONVERSATION:
        # a receiver without a usable conversation id
        raise ValidationError("conversationId must be an id or \"new\" with a receiverId")
    return await store.create_message(conversation_id, sender_id, body)


async def list_messages(
    store: Store,
    conversation_id: str,
    sender_id: Optional[str] = None,
    receiver_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    if conversation_id == NEW_CONVERSATION:
        _require(senderId=sender_id, receiverId=receiver_id)
        conv = await store.find_conversation_between(sender_id, receiver_id)
        if conv is None:
            return []
        conversation_id = conv.id

    result = []
    for msg in await store.list_messages(conversation_id):
        sender = await store.get_user(msg.sender_id)
        result.append({"user": profile(sender), "message": msg.message})
    return result


__all__ = [
    "NEW_CONVERSATION",
    "profile",
    "register_user",
    "login",
    "list_users",
    "create_conversation",
    "list_conversations",
    "create_message",
    "list_messages",
]
