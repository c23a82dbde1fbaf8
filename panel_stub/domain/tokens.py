from __future__ import annotations

import base64
import hashlib
import hmac
import json
from typing import Literal

from pydantic import BaseModel, Field, ValidationError

__all__ = [
    "TOKEN_VERSION",
    "TokenKind",
    "TokenPayload",
    "TokenError",
    "MalformedTokenError",
    "BadSignatureError",
    "ExpiredTokenError",
    "WrongTokenKindError",
    "UnsupportedTokenVersionError",
    "encode_token",
    "decode_token",
]

# Version your tokens so you can change their layout later without breaking old ones.
TOKEN_VERSION = 1

TokenKind = Literal["access", "refresh"]


# ------------------------
# Errors
# ------------------------
class TokenError(ValueError):
    """Base class for token-related errors.

    The `code` attribute lets the API map errors to stable machine codes.
    """

    code: str = "invalid_token"


class UnsupportedTokenVersionError(TokenError):
    code = "unsupported_token_version"


class MalformedTokenError(TokenError):
    code = "malformed_token"


class BadSignatureError(TokenError):
    code = "bad_signature"


class ExpiredTokenError(TokenError):
    code = "token_expired"


class WrongTokenKindError(TokenError):
    code = "wrong_token_kind"


# ------------------------
# Schema
# ------------------------
class TokenPayload(BaseModel):
    """Signed claims carried by an access or refresh token."""

    ver: int = Field(..., ge=1, le=1)
    sub: str  # username
    kind: TokenKind
    exp_ms: int  # expiry, epoch milliseconds
    jti: str  # unique id, lets refresh tokens be rotated/revoked


# ------------------------
# Internals
# ------------------------
def _b64(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _unb64(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


def _sign(body: str, secret: str) -> str:
    """Keyed BLAKE2b MAC over the encoded body."""
    mac = hashlib.blake2b(body.encode("ascii"), key=secret.encode("utf-8"), digest_size=32)
    return _b64(mac.digest())


# ------------------------
# Public encode/decode
# ------------------------
def encode_token(*, sub: str, kind: TokenKind, exp_ms: int, jti: str, secret: str) -> str:
    """Create a compact, URL-safe `<body>.<mac>` token."""
    payload = TokenPayload(ver=TOKEN_VERSION, sub=sub, kind=kind, exp_ms=exp_ms, jti=jti)
    body = _b64(json.dumps(payload.model_dump(), separators=(",", ":")).encode("utf-8"))
    return f"{body}.{_sign(body, secret)}"


def decode_token(token: str, *, secret: str, kind: TokenKind, now_ms: int) -> TokenPayload:
    """Verify and decode a token of the expected kind.

    Raises a specific `TokenError` subclass if parsing/validation fails.
    """
    body, dot, mac = token.partition(".")
    if not dot or not body or not mac:
        raise MalformedTokenError("Token must be <body>.<signature>")
    if not hmac.compare_digest(mac, _sign(body, secret)):
        raise BadSignatureError("Token signature mismatch")

    try:
        data = json.loads(_unb64(body).decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as e:
        raise MalformedTokenError("Token body is malformed") from e

    if isinstance(data, dict) and data.get("ver") not in (None, TOKEN_VERSION):
        raise UnsupportedTokenVersionError(f"Unsupported token version: {data.get('ver')}")
    try:
        payload = TokenPayload(**data)
    except (ValidationError, TypeError) as e:
        raise MalformedTokenError(f"Token schema invalid: {e}") from e

    if payload.kind != kind:
        raise WrongTokenKindError(f"Expected a {kind} token")
    if payload.exp_ms <= now_ms:
        raise ExpiredTokenError("Token has expired")
    return payload
