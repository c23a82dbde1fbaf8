"""Credential Refresher: one network exchange from refresh token to a new pair."""
from __future__ import annotations

from typing import Any

import httpx

from .logging_conf import get_logger
from .session import SessionStore
from .types import CredentialPair, RefreshFailed

__all__ = ["CredentialRefresher", "parse_credentials", "REFRESH_PATH"]

REFRESH_PATH = "/auth/refresh"

logger = get_logger("panel_transport.credentials")


def parse_credentials(body: Any) -> CredentialPair:
    """Build a CredentialPair from a sign-in or refresh response body.

    Raises:
        ValueError: if the body lacks either token.
    """
    if not isinstance(body, dict):
        raise ValueError("credential response is not a JSON object")
    access = body.get("accessToken")
    refresh = body.get("refreshToken")
    if not access or not refresh:
        raise ValueError("credential response is missing accessToken/refreshToken")
    expires_in = body.get("expiresIn")
    return CredentialPair.issued(
        access_token=access,
        refresh_token=refresh,
        expires_in=float(expires_in) if expires_in is not None else None,
    )


class CredentialRefresher:
    """Exchanges the stored refresh credential for a brand-new pair.

    Reads from the store but never writes to it; the transport client owns
    that side effect. Concurrency is the caller's problem: the transport
    client guarantees at most one refresh() in flight.
    """

    def __init__(self, http: httpx.AsyncClient, store: SessionStore, path: str = REFRESH_PATH):
        self._http = http
        self._store = store
        self._path = path

    async def refresh(self) -> CredentialPair:
        current = self._store.get()
        if current is None or not current.refresh_token:
            raise RefreshFailed("no refresh credential available")

        logger.info("refresh.exchange", extra={"event": "refresh_exchange"})
        try:
            r = await self._http.post(self._path, json={"refreshToken": current.refresh_token})
        except httpx.HTTPError as e:
            raise RefreshFailed(f"refresh request failed: {e}") from e

        if r.status_code != 200:
            raise RefreshFailed(f"refresh rejected with status {r.status_code}")
        try:
            return parse_credentials(r.json())
        except ValueError as e:
            raise RefreshFailed(f"refresh response invalid: {e}") from e
