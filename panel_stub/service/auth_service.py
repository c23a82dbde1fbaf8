from __future__ import annotations

import hmac
from collections.abc import Callable
from uuid import uuid4

from panel_transport.logging_conf import get_logger
from panel_transport.types import now_ms

from ..domain.tokens import TokenError, decode_token, encode_token
from ..settings import StubSettings

__all__ = ["AuthService", "InvalidCredentials", "RevokedTokenError"]

logger = get_logger("panel_stub.service.auth")


class InvalidCredentials(ValueError):
    """Username/password did not match."""


class RevokedTokenError(TokenError):
    code = "token_revoked"


class AuthService:
    """Issues, rotates and verifies stub session tokens.

    Refresh tokens are single use: a successful refresh revokes the one
    presented. `clock` returns epoch milliseconds and is injectable for tests.
    """

    def __init__(self, settings: StubSettings, clock: Callable[[], int] = now_ms):
        self.settings = settings
        self.clock = clock
        self._live_refresh: dict[str, str] = {}  # jti -> username
        self.refresh_calls = 0

    def _issue(self, username: str) -> dict:
        now = self.clock()
        access_ttl_ms = int(self.settings.access_ttl_s * 1000)
        refresh_jti = str(uuid4())
        access = encode_token(
            sub=username,
            kind="access",
            exp_ms=now + access_ttl_ms,
            jti=str(uuid4()),
            secret=self.settings.token_secret,
        )
        refresh = encode_token(
            sub=username,
            kind="refresh",
            exp_ms=now + int(self.settings.refresh_ttl_s * 1000),
            jti=refresh_jti,
            secret=self.settings.token_secret,
        )
        self._live_refresh[refresh_jti] = username
        return {
            "accessToken": access,
            "refreshToken": refresh,
            "expiresIn": self.settings.access_ttl_s,
        }

    def sign_in(self, *, username: str, password: str) -> dict:
        ok_user = hmac.compare_digest(username, self.settings.username)
        ok_pass = hmac.compare_digest(password, self.settings.password)
        if not (ok_user and ok_pass):
            logger.info("auth.signin_rejected", extra={"event": "signin_rejected"})
            raise InvalidCredentials("invalid username or password")
        logger.info("auth.signin", extra={"event": "signin", "user": username})
        out = self._issue(username)
        out["user"] = {"id": 1, "email": username, "name": username}
        return out

    def refresh(self, *, refresh_token: str) -> dict:
        self.refresh_calls += 1
        payload = decode_token(
            refresh_token, secret=self.settings.token_secret, kind="refresh", now_ms=self.clock()
        )
        if self._live_refresh.pop(payload.jti, None) is None:
            raise RevokedTokenError("Refresh token was already used or revoked")
        logger.info("auth.refresh", extra={"event": "refresh", "user": payload.sub})
        return self._issue(payload.sub)

    def sign_out(self, *, refresh_token: str) -> None:
        try:
            payload = decode_token(
                refresh_token, secret=self.settings.token_secret, kind="refresh", now_ms=self.clock()
            )
        except TokenError:
            return None
        self._live_refresh.pop(payload.jti, None)
        logger.info("auth.signout", extra={"event": "signout", "user": payload.sub})
        return None

    def authenticate(self, access_token: str) -> str:
        """Return the username behind a valid access token or raise TokenError."""
        payload = decode_token(
            access_token, secret=self.settings.token_secret, kind="access", now_ms=self.clock()
        )
        return payload.sub
