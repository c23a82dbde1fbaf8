from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict

__all__ = [
    "MIB",
    "CredentialPair",
    "ApiRequest",
    "ProgressSnapshot",
    "UploadResult",
    "PanelClientError",
    "TransportFailure",
    "AuthorizationFailure",
    "SignInFailed",
    "RefreshFailed",
    "SessionExpired",
    "ChunkUploadFailed",
    "UploadCancelled",
    "now_ms",
]

MIB = 1024 * 1024


def now_ms() -> int:
    """Return current time in epoch milliseconds."""
    return int(time.time() * 1000)


# ------------------------
# Data
# ------------------------
class CredentialPair(BaseModel):
    """Access/refresh credentials issued by one sign-in or refresh exchange."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    expires_at: datetime | None = None

    @classmethod
    def issued(cls, access_token: str, refresh_token: str, expires_in: float | None) -> CredentialPair:
        expires_at = None
        if expires_in is not None:
            expires_at = datetime.now(UTC) + timedelta(seconds=expires_in)
        return cls(access_token=access_token, refresh_token=refresh_token, expires_at=expires_at)

    def is_expired(self, leeway_s: float = 30.0, now: datetime | None = None) -> bool:
        """True once the access credential is within `leeway_s` of its expiry.

        A pair without a reported lifetime never counts as expired; the server's
        401 is then the only signal.
        """
        if self.expires_at is None:
            return False
        now = now or datetime.now(UTC)
        return self.expires_at - timedelta(seconds=leeway_s) <= now


@dataclass
class ApiRequest:
    """Replayable description of one outbound call."""

    method: str
    path: str
    json: Any = None
    data: dict[str, Any] | None = None
    files: dict[str, Any] | None = None
    params: dict[str, Any] | None = None
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ProgressSnapshot:
    """Emitted after every acknowledged chunk."""

    chunk_size_mb: float
    uploaded_chunks: int
    total_chunks: int
    percentage: int

    @classmethod
    def after(cls, uploaded: int, total: int, chunk_size: int) -> ProgressSnapshot:
        # Round half up on exact integers: 1/8 -> 13, 1/3 -> 33, 2/3 -> 67.
        percentage = (uploaded * 200 + total) // (2 * total)
        return cls(
            chunk_size_mb=chunk_size / MIB,
            uploaded_chunks=uploaded,
            total_chunks=total,
            percentage=percentage,
        )


@dataclass
class UploadResult:
    """Summary of a completed chunked upload."""

    filename: str
    total_chunks: int
    size_bytes: int
    response: Any = None


# ------------------------
# Errors
# ------------------------
class PanelClientError(RuntimeError):
    """Base class for transport-layer errors.

    The `code` attribute gives callers a stable machine-readable reason.
    """

    code: str = "panel_client_error"


class TransportFailure(PanelClientError):
    """Network error, timeout, or a non-2xx status unrelated to authorization."""

    code = "transport_failure"

    def __init__(self, message: str, *, status_code: int | None = None, response: httpx.Response | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class AuthorizationFailure(TransportFailure):
    """The server rejected the credential again after the one refresh-and-retry."""

    code = "authorization_failure"


class SignInFailed(PanelClientError):
    code = "sign_in_failed"


class RefreshFailed(PanelClientError):
    """The refresh exchange could not produce a new credential pair."""

    code = "refresh_failed"


class SessionExpired(PanelClientError):
    """Terminal for the session: stored credentials were cleared, sign in again."""

    code = "session_expired"


class ChunkUploadFailed(PanelClientError):
    """One chunk exhausted its retry budget; earlier chunks stay delivered."""

    code = "chunk_upload_failed"

    def __init__(self, chunk_index: int, cause: BaseException):
        super().__init__(f"chunk {chunk_index} failed: {cause}")
        self.chunk_index = chunk_index
        self.cause = cause


class UploadCancelled(PanelClientError):
    code = "upload_cancelled"

    def __init__(self, chunk_index: int):
        super().__init__(f"upload cancelled before chunk {chunk_index}")
        self.chunk_index = chunk_index
