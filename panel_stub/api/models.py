from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class SignInRequest(BaseModel):
    """Username/password sign-in."""
    username: str
    password: str


class RefreshRequest(BaseModel):
    """Refresh-token exchange or sign-out body."""
    refreshToken: str


class UserOut(BaseModel):
    id: int
    email: str
    name: str


class TokenResponse(BaseModel):
    """A freshly issued credential pair."""
    error: bool = False
    accessToken: str
    refreshToken: str
    expiresIn: float
    user: Optional[UserOut] = None


class Project(BaseModel):
    name: str
    framework: str
    domain: str


class ProjectsResponse(BaseModel):
    """Projects visible to the signed-in user."""
    error: bool = False
    projects: list[Project]


class ChunkUploadResponse(BaseModel):
    """Acknowledgement of one stored chunk; the last one carries the assembled digest."""
    error: bool = False
    message: str
    chunkIndex: int
    totalChunks: int
    completed: bool
    size: Optional[int] = None
    sha256: Optional[str] = None
