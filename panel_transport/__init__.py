"""Authenticated transport for the panel API: coalesced token refresh and chunked uploads."""
from importlib.metadata import PackageNotFoundError, version

from .credentials import CredentialRefresher
from .session import JsonFileBackend, SessionStore
from .transport import TransportClient
from .types import (
    ApiRequest,
    AuthorizationFailure,
    ChunkUploadFailed,
    CredentialPair,
    PanelClientError,
    ProgressSnapshot,
    RefreshFailed,
    SessionExpired,
    SignInFailed,
    TransportFailure,
    UploadCancelled,
    UploadResult,
)
from .upload import ChunkedUploader

try:
    __version__ = version("panel-transport")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0"

__all__ = [
    "ApiRequest",
    "AuthorizationFailure",
    "ChunkUploadFailed",
    "ChunkedUploader",
    "CredentialPair",
    "CredentialRefresher",
    "JsonFileBackend",
    "PanelClientError",
    "ProgressSnapshot",
    "RefreshFailed",
    "SessionExpired",
    "SessionStore",
    "SignInFailed",
    "TransportClient",
    "TransportFailure",
    "UploadCancelled",
    "UploadResult",
]
