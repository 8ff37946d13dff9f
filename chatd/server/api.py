from __future__ import annotations

import logging
from typing import Iterable, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, ConfigDict, Field

from chatd.core import conversations
from chatd.core.auth import Authenticator
from chatd.core.errors import ChatError, ValidationError
from chatd.core.store import Store

log = logging.getLogger("chatd.server.api")


# ---------------- Request bodies ----------------
# Fields default to "" so missing values reach the service layer's own checks.

class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RegisterBody(_Body):
    full_name: str = Field("", alias="fullName")
    email: str = ""
    password: str = ""


class LoginBody(_Body):
    email: str = ""
    password: str = ""


class ConversationBody(_Body):
    sender_id: str = Field("", alias="senderId")
    receiver_id: str = Field("", alias="receiverId")


class MessageBody(_Body):
    conversation_id: str = Field("", alias="conversationId")
    sender_id: str = Field("", alias="senderId")
    message: str = ""
    receiver_id: str = Field("", alias="receiverId")


def create_app(store: Store, auth: Authenticator, *, cors_origins: Optional[Iterable[str]] = None) -> FastAPI:
    app = FastAPI(title="chatd")
    app.state.store = store
    app.state.auth = auth
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(cors_origins or ["http://localhost:3000"]),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ChatError)
    async def _chat_error(request: Request, exc: ChatError) -> JSONResponse:
        if exc.status >= 500:
            log.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
        return JSONResponse(status_code=exc.status, content=exc.as_payload())

    @app.exception_handler(RequestValidationError)
    async def _bad_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        fields = sorted({".".join(str(p) for p in err.get("loc", ())[1:]) or "body" for err in exc.errors()})
        detail = "Invalid request: " + ", ".join(fields)
        log.warning("%s %s rejected: %s", request.method, request.url.path, detail)
        return JSONResponse(status_code=400, content=ValidationError(detail).as_payload())

    @app.exception_handler(Exception)
    async def _unexpected(request: Request, exc: Exception) -> JSONResponse:
        log.exception("%s %s crashed", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"code": "INTERNAL", "detail": "Internal Server Error"})

    # ---------------- Routes ----------------

    @app.get("/", response_class=PlainTextResponse)
    async def index() -> str:
        return "Welcome to the chat API!"

    @app.post("/api/register")
    async def register(body: RegisterBody):
        await conversations.register_user(store, auth, body.full_name, body.email, body.password)
        return {"message": "User registered successfully"}

    @app.post("/api/login")
    async def login(body: LoginBody):
        return await conversations.login(store, auth, body.email, body.password)

    @app.post("/api/conversation")
    async def create_conversation(body: ConversationBody):
        conv = await conversations.create_conversation(store, body.sender_id, body.receiver_id)
        return {"message": "Conversation created successfully", "conversationId": conv.id}

    @app.get("/api/conversations/{user_id}")
    async def list_conversations(user_id: str):
        return await conversations.list_conversations(store, user_id)

    @app.post("/api/message")
    async def create_message(body: MessageBody):
        msg = await conversations.create_message(
            store, body.conversation_id, body.sender_id, body.message, body.receiver_id
        )
        return {"message": "Message sent successfully", "conversationId": msg.conversation_id}

    @app.get("/api/message/{conversation_id}")
    async def list_messages(
        conversation_id: str,
        senderId: Optional[str] = None,
        receiverId: Optional[str] = None,
    ):
        return await conversations.list_messages(store, conversation_id, senderId, receiverId)

    @app.get("/api/users/{user_id}")
    async def list_users(user_id: str):
        return await conversations.list_users(store, user_id)

    return app


__all__ = ["create_app"]
