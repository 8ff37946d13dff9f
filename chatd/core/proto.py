from __future__ import annotations

import json
import time
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Frame model & helpers (WebSocket transport layer)
# ---------------------------------------------------------------------------

class Frame(BaseModel):
    """JSON frame carried over the WebSocket connection."""

    type: str
    ts: int = 0
    payload: Any = None

    @field_validator("type")
    @classmethod
    def _type_not_empty(cls, value: str) -> str:
        if not value:
            raise ValueError("type must be non-empty")
        return value

    @field_validator("ts")
    @classmethod
    def _ts_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("timestamp must be non-negative")
        return value


# inbound
REGISTER = "register"
SEND_MESSAGE = "sendMessage"

# outbound
PRESENCE_SNAPSHOT = "presenceSnapshot"
MESSAGE_DELIVERED = "messageDelivered"
ERROR = "error"

# legacy event names still sent by older clients
EVENT_ALIASES = {
    "addUser": REGISTER,
}


# ---------------------------------------------------------------------------
# Payload models
# ---------------------------------------------------------------------------

class _Wire(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class MessageEvent(_Wire):
    """A sendMessage request; never stored as-is."""

    sender_id: str = Field(alias="senderId", min_length=1)
    receiver_id: str = Field(alias="receiverId", default="")
    message: str
    conversation_id: str = Field(alias="conversationId", default="")


class UserProfile(_Wire):
    id: str
    full_name: str = Field(alias="fullName")
    email: str


class DeliveryPayload(_Wire):
    sender_id: str = Field(alias="senderId")
    message: str
    conversation_id: str = Field(alias="conversationId")
    receiver_id: str = Field(alias="receiverId")
    sender_profile: UserProfile = Field(alias="user")


# ---------------------------------------------------------------------------
# Utility helpers
# ---------------------------------------------------------------------------

def now_ms() -> int:
    """Milliseconds since the Unix epoch."""

    return int(time.time() * 1000)


def build_frame(type: str, payload: Any, *, ts: int | None = None) -> Dict[str, Any]:
    """Create an outbound frame dict."""

    return {
        "type": type,
        "ts": now_ms() if ts is None else ts,
        "payload": payload,
    }


def encode_frame(frame: Dict[str, Any]) -> str:
    return json.dumps(frame, separators=(",", ":"))


def parse_frame(raw: str | bytes) -> Frame:
    """Decode an inbound frame. Raises ValueError on anything malformed."""

    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"invalid json: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError("frame must be an object")
    frame = Frame(**data)
    frame.type = EVENT_ALIASES.get(frame.type, frame.type)
    return frame


__all__ = [
    "Frame",
    "MessageEvent",
    "UserProfile",
    "DeliveryPayload",
    "REGISTER",
    "SEND_MESSAGE",
    "PRESENCE_SNAPSHOT",
    "MESSAGE_DELIVERED",
    "ERROR",
    "EVENT_ALIASES",
    "now_ms",
    "build_frame",
    "encode_frame",
    "parse_frame",
]
