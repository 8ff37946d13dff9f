from __future__ import annotations

import functools
import logging
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

import aiosqlite

from .errors import NotFoundError, StoreError

log = logging.getLogger("chatd.store")

SCHEMA_PATH = Path(__file__).with_name("schema.sql")


@dataclass(slots=True)
class User:
    id: str
    full_name: str
    email: str
    password: str
    token: str = ""


@dataclass(slots=True)
class Conversation:
    id: str
    members: List[str]


@dataclass(slots=True)
class Message:
    id: str
    conversation_id: str
    sender_id: str
    message: str


def _new_id() -> str:
    return uuid.uuid4().hex


def _wrap_errors(fn):
    """Surface driver failures as StoreError."""

    @functools.wraps(fn)
    async def wrapper(self, *args, **kwargs):
        try:
            return await fn(self, *args, **kwargs)
        except aiosqlite.Error as exc:
            log.exception("%s failed", fn.__name__)
            raise StoreError(f"{fn.__name__}: {exc}") from exc

    return wrapper


class Store:
    """Users, conversations and messages on SQLite."""

    def __init__(self, path: str | Path = "chatd.db") -> None:
        self.path = str(path)
        self._db: Optional[aiosqlite.Connection] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        try:
            self._db = await aiosqlite.connect(self.path)
            await self._db.executescript(SCHEMA_PATH.read_text(encoding="utf-8"))
            await self._db.commit()
        except aiosqlite.Error as exc:
            raise StoreError(f"cannot open {self.path}: {exc}") from exc
        log.info("Store opened at %s", self.path)

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StoreError("store is not open")
        return self._db

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    @_wrap_errors
    async def create_user(self, full_name: str, email: str, password_hash: str) -> User:
        user = User(id=_new_id(), full_name=full_name, email=email, password=password_hash)
        await self.db.execute(
            "INSERT INTO users(user_id,full_name,email,password,token,created_at) VALUES(?,?,?,?,?,?)",
            (user.id, full_name, email, password_hash, "", int(time.time())),
        )
        await self.db.commit()
        return user

    @_wrap_errors
    async def get_user(self, user_id: str) -> User:
        row = await self._fetchone(
            "SELECT user_id,full_name,email,password,token FROM users WHERE user_id=?", (user_id,)
        )
        if row is None:
            raise NotFoundError(f"user {user_id} not found")
        return User(*row)

    @_wrap_errors
    async def find_user_by_email(self, email: str) -> Optional[User]:
        row = await self._fetchone(
            "SELECT user_id,full_name,email,password,token FROM users WHERE email=?", (email,)
        )
        return User(*row) if row else None

    @_wrap_errors
    async def list_users(self, exclude: str | None = None) -> List[User]:
        rows = await self._fetchall(
            "SELECT user_id,full_name,email,password,token FROM users WHERE user_id != ? ORDER BY rowid",
            (exclude or "",),
        )
        return [User(*r) for r in rows]

    @_wrap_errors
    async def set_user_token(self, user_id: str, token: str) -> None:
        cur = await self.db.execute("UPDATE users SET token=? WHERE user_id=?", (token, user_id))
        await self.db.commit()
        if cur.rowcount == 0:
            raise NotFoundError(f"user {user_id} not found")

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    @_wrap_errors
    async def create_conversation(self, members: Sequence[str]) -> Conversation:
        if len(members) != 2:
            raise StoreError("a conversation has exactly two members")
        conv = Conversation(id=_new_id(), members=list(members))
        await self.db.execute(
            "INSERT INTO conversations(conversation_id,member_a,member_b,created_at) VALUES(?,?,?,?)",
            (conv.id, members[0], members[1], int(time.time())),
        )
        await self.db.commit()
        log.debug("Created conversation %s for %s", conv.id, conv.members)
        return conv

    @_wrap_errors
    async def get_conversation(self, conversation_id: str) -> Conversation:
        row = await self._fetchone(
            "SELECT conversation_id,member_a,member_b FROM conversations WHERE conversation_id=?",
            (conversation_id,),
        )
        if row is None:
            raise NotFoundError(f"conversation {conversation_id} not found")
        return Conversation(id=row[0], members=[row[1], row[2]])

    @_wrap_errors
    async def list_conversations_for(self, user_id: str) -> List[Conversation]:
        rows = await self._fetchall(
            "SELECT conversation_id,member_a,member_b FROM conversations "
            "WHERE member_a=? OR member_b=? ORDER BY rowid",
            (user_id, user_id),
        )
        return [Conversation(id=r[0], members=[r[1], r[2]]) for r in rows]

    @_wrap_errors
    async def find_conversation_between(self, a: str, b: str) -> Optional[Conversation]:
        row = await self._fetchone(
            "SELECT conversation_id,member_a,member_b FROM conversations "
            "WHERE (member_a=? AND member_b=?) OR (member_a=? AND member_b=?) ORDER BY rowid LIMIT 1",
            (a, b, b, a),
        )
        return Conversation(id=row[0], members=[row[1], row[2]]) if row else None

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    @_wrap_errors
    async def create_message(self, conversation_id: str, sender_id: str, body: str) -> Message:
        msg = Message(id=_new_id(), conversation_id=conversation_id, sender_id=sender_id, message=body)
        await self.db.execute(
            "INSERT INTO messages(message_id,conversation_id,sender_id,body,created_at) VALUES(?,?,?,?,?)",
            (msg.id, conversation_id, sender_id, body, int(time.time())),
        )
        await self.db.commit()
        return msg

    @_wrap_errors
    async def list_messages(self, conversation_id: str) -> List[Message]:
        rows = await self._fetchall(
            "SELECT message_id,conversation_id,sender_id,body FROM messages "
            "WHERE conversation_id=? ORDER BY rowid",
            (conversation_id,),
        )
        return [Message(*r) for r in rows]

    # ------------------------------------------------------------------
    # Utilities
    # ------------------------------------------------------------------

    async def _fetchone(self, sql: str, params: tuple):
        async with self.db.execute(sql, params) as cur:
            return await cur.fetchone()

    async def _fetchall(self, sql: str, params: tuple):
        async with self.db.execute(sql, params) as cur:
            return await cur.fetchall()


__all__ = ["Store", "User", "Conversation", "Message", "SCHEMA_PATH"]
