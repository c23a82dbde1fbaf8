from __future__ import annotations

import os

from pydantic import BaseModel, Field

from .types import MIB

__all__ = ["ClientSettings", "DEFAULT_BASE_URL"]

DEFAULT_BASE_URL = "http://localhost:8888/api/v1"


class ClientSettings(BaseModel):
    """Client configuration; `from_env()` reads PANEL_* variables."""

    base_url: str = DEFAULT_BASE_URL
    timeout_s: float = Field(30.0, gt=0)
    chunk_size_mb: float = Field(5.0, gt=0)
    chunk_retries: int = Field(2, ge=0)
    retry_delay_s: float = Field(0.25, ge=0)
    session_file: str | None = None

    @property
    def chunk_size(self) -> int:
        return int(self.chunk_size_mb * MIB)

    @classmethod
    def from_env(cls) -> ClientSettings:
        env = {
            "base_url": os.getenv("PANEL_BASE_URL"),
            "timeout_s": os.getenv("PANEL_TIMEOUT_S"),
            "chunk_size_mb": os.getenv("PANEL_CHUNK_SIZE_MB"),
            "chunk_retries": os.getenv("PANEL_CHUNK_RETRIES"),
            "retry_delay_s": os.getenv("PANEL_RETRY_DELAY_S"),
            "session_file": os.getenv("PANEL_SESSION_FILE"),
        }
        # pydantic coerces the strings; unset variables keep the defaults.
        return cls(**{k: v for k, v in env.items() if v is not None})
