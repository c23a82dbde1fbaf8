from __future__ import annotations

import os

from pydantic import BaseModel, Field

__all__ = ["StubSettings"]


class StubSettings(BaseModel):
    """Stub server configuration; `from_env()` reads the environment."""

    username: str = "admin"
    password: str = "admin"
    access_ttl_s: float = Field(900.0, gt=0)
    refresh_ttl_s: float = Field(7 * 24 * 3600.0, gt=0)
    token_secret: str = "stub-panel-secret"
    # Every chunk index answers 503 this many times before it is accepted.
    flaky_chunks: int = Field(0, ge=0)
    max_chunk_bytes: int = Field(10 << 20, gt=0)

    @classmethod
    def from_env(cls) -> StubSettings:
        env = {
            "username": os.getenv("PANEL_USERNAME"),
            "password": os.getenv("PANEL_PASSWORD"),
            "access_ttl_s": os.getenv("ACCESS_TTL_S"),
            "refresh_ttl_s": os.getenv("REFRESH_TTL_S"),
            "token_secret": os.getenv("TOKEN_SECRET"),
            "flaky_chunks": os.getenv("FLAKY_CHUNKS"),
        }
        return cls(**{k: v for k, v in env.items() if v is not None})
