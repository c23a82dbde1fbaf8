"""Shared fixtures: a scripted fake panel for httpx.MockTransport and the in-process stub server."""
from __future__ import annotations

import asyncio

import httpx
import pytest

from panel_stub.main import create_app
from panel_stub.settings import StubSettings
from panel_transport.session import SessionStore
from panel_transport.transport import TransportClient
from panel_transport.types import CredentialPair

BASE_URL = "http://panel.test/api/v1"


class CountingDict(dict):
    """Backend that counts writes, to observe how often credentials were stored."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.writes = 0

    def __setitem__(self, key, value):
        self.writes += 1
        super().__setitem__(key, value)


class FakePanel:
    """Scripted panel: accepts one access token, counts refresh exchanges.

    - `barrier` holds requests sent with a stale token until N have arrived,
      so all of them see their 401 at the same moment
    - `refresh_status` != 200 makes the refresh endpoint reject
    """

    def __init__(self, *, accepted: str = "new", issued: tuple[str, str] = ("new", "refresh-2")):
        self.accepted = accepted
        self.issued = issued
        self.refresh_status = 200
        self.refresh_delay = 0.01
        self.refresh_calls = 0
        self.barrier: asyncio.Barrier | None = None
        self.calls: list[httpx.Request] = []

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/auth/refresh"):
            self.refresh_calls += 1
            await asyncio.sleep(self.refresh_delay)
            if self.refresh_status != 200:
                return httpx.Response(self.refresh_status, json={"error": True, "message": "refresh denied"})
            access, refresh = self.issued
            return httpx.Response(200, json={"accessToken": access, "refreshToken": refresh, "expiresIn": 900})

        self.calls.append(request)
        auth = request.headers.get("authorization")
        if auth != f"Bearer {self.accepted}":
            if self.barrier is not None:
                await self.barrier.wait()
            return httpx.Response(401, json={"error": True, "message": "token expired"})
        return httpx.Response(200, json={"ok": True, "path": request.url.path})


def stale_pair() -> CredentialPair:
    return CredentialPair(access_token="old", refresh_token="refresh-1")


@pytest.fixture
def panel() -> FakePanel:
    return FakePanel()


@pytest.fixture
def backend() -> CountingDict:
    return CountingDict()


@pytest.fixture
def store(backend: CountingDict) -> SessionStore:
    s = SessionStore(backend)
    s.set(stale_pair())
    backend.writes = 0
    return s


@pytest.fixture
async def client(panel: FakePanel, store: SessionStore):
    async with TransportClient(BASE_URL, store, transport=httpx.MockTransport(panel.handler)) as c:
        yield c


# ------------------------
# Stub server (in-process via ASGITransport)
# ------------------------
class Clock:
    def __init__(self, start_ms: int = 1_700_000_000_000):
        self.ms = start_ms

    def __call__(self) -> int:
        return self.ms

    def advance(self, seconds: float) -> None:
        self.ms += int(seconds * 1000)


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def stub_settings() -> StubSettings:
    return StubSettings(username="admin", password="s3cret", access_ttl_s=60, refresh_ttl_s=3600)


@pytest.fixture
def stub_app(stub_settings: StubSettings, clock: Clock):
    return create_app(stub_settings, clock=clock)


@pytest.fixture
async def stub_client(stub_app):
    transport = httpx.ASGITransport(app=stub_app)
    async with TransportClient("http://testserver/api/v1", SessionStore(), transport=transport) as c:
        yield c
