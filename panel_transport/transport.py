"""Transport Client: bearer injection, single-flight refresh and replay on 401.

Scheduling is cooperative (one asyncio loop per client). The refresh flag is
checked and set with no await in between, so at most one refresh exchange
runs at a time; requests that hit 401 meanwhile park a future in the pending
queue and are replayed once the cycle's outcome is known.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

import httpx

from .credentials import REFRESH_PATH, CredentialRefresher, parse_credentials
from .logging_conf import get_logger
from .session import SessionStore
from .types import (
    ApiRequest,
    AuthorizationFailure,
    CredentialPair,
    SessionExpired,
    SignInFailed,
    TransportFailure,
)

__all__ = ["TransportClient", "PendingRequest"]

SIGNIN_PATH = "/auth/signin"
SIGNOUT_PATH = "/auth/signout"
SESSION_EXPIRED_MESSAGE = "session expired, please sign in again"

logger = get_logger("panel_transport.transport")


@dataclass
class PendingRequest:
    """A request waiting on the in-flight refresh; the future yields the new access token."""

    request: ApiRequest
    future: asyncio.Future[str]


class TransportClient:
    """Authenticated request sender with transparent, coalesced token refresh.

    Lifecycle: construct -> send()/sign_in()/... -> aclose() (or `async with`).
    The httpx client is owned unless one was passed in.
    """

    def __init__(
        self,
        base_url: str,
        store: SessionStore | None = None,
        *,
        timeout: float = 30.0,
        http: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        refresher: CredentialRefresher | None = None,
        refresh_path: str = REFRESH_PATH,
    ):
        self.store = store if store is not None else SessionStore()
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(
            base_url=base_url, timeout=httpx.Timeout(timeout), transport=transport
        )
        self._refresher = refresher or CredentialRefresher(self._http, self.store, path=refresh_path)
        self._refreshing = False
        self._pending: list[PendingRequest] = []

    async def __aenter__(self) -> TransportClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    @property
    def refreshing(self) -> bool:
        return self._refreshing

    # ------------------------
    # Public API
    # ------------------------
    async def send(self, request: ApiRequest) -> httpx.Response:
        """Send `request`, recovering from one authorization failure by refresh + replay.

        Raises:
            SessionExpired: the refresh exchange failed; the store is now empty.
            AuthorizationFailure: the replay after refresh was rejected too.
            TransportFailure: network error, timeout, or any other non-2xx.
        """
        token = self._access_token()
        response = await self._dispatch(request, token)
        if response.status_code != 401:
            return self._checked(request, response)

        logger.info(
            "request.unauthorized",
            extra={"event": "request_unauthorized", "method": request.method, "path": request.path},
        )
        new_token = await self._recover(request, token)
        # Replay: a second 401 is final.
        response = await self._dispatch(request, new_token)
        if response.status_code == 401:
            self._drop_if_current(new_token)
            raise AuthorizationFailure(
                f"{request.method} {request.path} unauthorized after refresh",
                status_code=401,
                response=response,
            )
        return self._checked(request, response)

    async def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        return await self.send(ApiRequest(method=method.upper(), path=path, **kwargs))

    async def sign_in(self, username: str, password: str, path: str = SIGNIN_PATH) -> CredentialPair:
        """Exchange username/password for a credential pair and store it."""
        try:
            r = await self._http.post(path, json={"username": username, "password": password})
        except httpx.HTTPError as e:
            raise TransportFailure(f"sign-in request failed: {e}") from e
        if r.status_code != 200:
            raise SignInFailed(_error_message(r) or f"sign-in rejected with status {r.status_code}")
        try:
            pair = parse_credentials(r.json())
        except ValueError as e:
            raise SignInFailed(str(e)) from e
        self.store.set(pair)
        logger.info("session.signed_in", extra={"event": "signed_in"})
        return pair

    async def sign_out(self, path: str = SIGNOUT_PATH) -> None:
        """Revoke the refresh credential server-side (best effort) and clear the store."""
        pair = self.store.get()
        try:
            if pair is not None:
                r = await self._http.post(path, json={"refreshToken": pair.refresh_token})
                if r.status_code >= 400:
                    logger.warning(
                        "session.sign_out_rejected",
                        extra={"event": "sign_out_rejected", "status_code": r.status_code},
                    )
        except httpx.HTTPError as e:
            logger.warning("session.sign_out_failed", extra={"event": "sign_out_failed", "error": str(e)})
        finally:
            self.store.clear()
            logger.info("session.signed_out", extra={"event": "signed_out"})

    # ------------------------
    # Internals
    # ------------------------
    def _access_token(self) -> str | None:
        pair = self.store.get()
        return pair.access_token if pair else None

    async def _dispatch(self, request: ApiRequest, token: str | None) -> httpx.Response:
        headers = dict(request.headers)
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            return await self._http.request(
                request.method,
                request.path,
                json=request.json,
                data=request.data,
                files=request.files,
                params=request.params,
                headers=headers,
            )
        except httpx.TimeoutException as e:
            raise TransportFailure(f"{request.method} {request.path} timed out") from e
        except httpx.HTTPError as e:
            raise TransportFailure(f"{request.method} {request.path} failed: {e}") from e

    def _checked(self, request: ApiRequest, response: httpx.Response) -> httpx.Response:
        if response.is_success or response.is_redirect:
            return response
        raise TransportFailure(
            _error_message(response) or f"{request.method} {request.path} returned {response.status_code}",
            status_code=response.status_code,
            response=response,
        )

    async def _recover(self, request: ApiRequest, rejected: str | None) -> str:
        """Return an access token to replay with, refreshing at most once across callers."""
        if self._refreshing:
            future: asyncio.Future[str] = asyncio.get_running_loop().create_future()
            self._pending.append(PendingRequest(request, future))
            logger.info(
                "request.queued",
                extra={"event": "request_queued", "path": request.path, "queued": len(self._pending)},
            )
            return await future

        current = self.store.get()
        if current is not None and current.access_token != rejected:
            # Another request already refreshed after this one was sent.
            return current.access_token
        return await self._refresh()

    async def _refresh(self) -> str:
        self._refreshing = True
        logger.info("refresh.start", extra={"event": "refresh_start"})
        try:
            pair = await self._refresher.refresh()
        except Exception as e:
            # RefreshFailed or anything unexpected: the whole cycle fails the same way.
            self.store.clear()
            logger.warning(
                "refresh.failed",
                extra={
                    "event": "refresh_failed",
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "queued": len(self._pending),
                },
            )
            self._drain(failure=SESSION_EXPIRED_MESSAGE, cause=e)
            raise SessionExpired(SESSION_EXPIRED_MESSAGE) from e
        else:
            self.store.set(pair)
            logger.info("refresh.ok", extra={"event": "refresh_ok", "queued": len(self._pending)})
            self._drain(token=pair.access_token)
            return pair.access_token
        finally:
            self._refreshing = False
            if self._pending:
                # Cancellation: never leave waiters hanging.
                self._drain(failure="session refresh aborted")

    def _drain(
        self,
        *,
        token: str | None = None,
        failure: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        """Settle every queued future: a token to replay with, or a fresh SessionExpired each."""
        pending, self._pending = self._pending, []
        for item in pending:
            if item.future.done():
                continue
            if failure is not None:
                error = SessionExpired(failure)
                error.__cause__ = cause
                item.future.set_exception(error)
            else:
                item.future.set_result(token)

    def _drop_if_current(self, rejected: str | None) -> None:
        if rejected is not None and self._access_token() == rejected:
            self.store.clear()
            logger.warning("session.rejected", extra={"event": "session_rejected"})


def _error_message(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict) and isinstance(body.get("message"), str):
        return body["message"]
    return None
