from __future__ import annotations


class ChatError(Exception):
    """Base error. ``code`` is stable and safe to put on the wire."""

    code = "ERROR"
    status = 500

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail or self.code)
        self.detail = detail or self.code

    def as_payload(self) -> dict:
        return {"code": self.code, "detail": self.detail}


class ValidationError(ChatError):
    code = "VALIDATION"
    status = 400


class ConflictError(ChatError):
    code = "CONFLICT"
    status = 400


class InvalidCredentials(ChatError):
    code = "BAD_CREDENTIALS"
    status = 400


class NotFoundError(ChatError):
    code = "NOT_FOUND"
    status = 404


class StoreError(ChatError):
    code = "STORE"


class AuthError(ChatError):
    code = "AUTH"


__all__ = [
    "ChatError",
    "ValidationError",
    "ConflictError",
    "InvalidCredentials",
    "NotFoundError",
    "StoreError",
    "AuthError",
]
