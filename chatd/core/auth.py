from __future__ import annotations

import base64
import json
import os
import time
from typing import Any, Dict

from cryptography.exceptions import InvalidKey, InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from .errors import AuthError

DEFAULT_TOKEN_TTL = 84600

_SCRYPT_N = 2**14
_SCRYPT_R = 8
_SCRYPT_P = 1
_SALT_LEN = 16
_HASH_LEN = 32

_JWT_HEADER = {"alg": "HS256", "typ": "JWT"}


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def _canonical(obj: Dict[str, Any]) -> bytes:
    return json.dumps(obj, sort_keys=True, separators=(",", ":")).encode("utf-8")


def _scrypt(salt: bytes) -> Scrypt:
    return Scrypt(salt=salt, length=_HASH_LEN, n=_SCRYPT_N, r=_SCRYPT_R, p=_SCRYPT_P)


class Authenticator:
    """Password hashing and HS256 session tokens."""

    def __init__(self, secret: str | bytes, *, token_ttl: int = DEFAULT_TOKEN_TTL) -> None:
        if not secret:
            raise ValueError("secret is required")
        self.secret = secret.encode("utf-8") if isinstance(secret, str) else secret
        self.token_ttl = int(token_ttl)

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    def hash_password(self, password: str) -> str:
        salt = os.urandom(_SALT_LEN)
        key = _scrypt(salt).derive(password.encode("utf-8"))
        return f"scrypt${b64url(salt)}${b64url(key)}"

    def verify_password(self, password: str, hashed: str) -> bool:
        try:
            scheme, salt_b64, key_b64 = hashed.split("$")
            if scheme != "scrypt":
                return False
            _scrypt(b64url_decode(salt_b64)).verify(password.encode("utf-8"), b64url_decode(key_b64))
            return True
        except (ValueError, InvalidKey):
            return False

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def issue_token(self, claims: Dict[str, Any], *, now: int | None = None) -> str:
        iat = int(time.time()) if now is None else now
        body = dict(claims, iat=iat, exp=iat + self.token_ttl)
        signing_input = f"{b64url(_canonical(_JWT_HEADER))}.{b64url(_canonical(body))}"
        return f"{signing_input}.{b64url(self._sign(signing_input.encode('ascii')))}"

    def verify_token(self, token: str, *, now: int | None = None) -> Dict[str, Any]:
        """Return the claims of a valid token; AuthError otherwise."""
        try:
            header_b64, body_b64, sig_b64 = token.split(".")
            header = json.loads(b64url_decode(header_b64))
            body = json.loads(b64url_decode(body_b64))
            sig = b64url_decode(sig_b64)
        except (ValueError, AttributeError) as exc:
            raise AuthError("malformed token") from exc
        if not isinstance(header, dict) or not isinstance(body, dict):
            raise AuthError("malformed token")
        if header.get("alg") != "HS256":
            raise AuthError("unsupported token algorithm")

        h = hmac.HMAC(self.secret, hashes.SHA256())
        h.update(f"{header_b64}.{body_b64}".encode("ascii"))
        try:
            h.verify(sig)
        except InvalidSignature as exc:
            raise AuthError("bad token signature") from exc

        current = int(time.time()) if now is None else now
        if int(body.get("exp", 0)) <= current:
            raise AuthError("token expired")
        return body

    def _sign(self, data: bytes) -> bytes:
        h = hmac.HMAC(self.secret, hashes.SHA256())
        h.update(data)
        return h.finalize()


__all__ = ["Authenticator", "DEFAULT_TOKEN_TTL", "b64url", "b64url_decode"]
