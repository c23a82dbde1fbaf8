from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Header, HTTPException, Request, UploadFile, status

from panel_transport.logging_conf import get_logger

from ..domain.tokens import TokenError
from ..service.auth_service import AuthService, InvalidCredentials
from ..service.upload_service import ChunkAssembler, ChunkTooLarge, TransientUploadError
from .models import (
    ChunkUploadResponse,
    Project,
    ProjectsResponse,
    RefreshRequest,
    SignInRequest,
    TokenResponse,
)

router = APIRouter()
logger = get_logger("panel_stub.api")


def get_auth(request: Request) -> AuthService:
    return request.app.state.auth


def get_assembler(request: Request) -> ChunkAssembler:
    return request.app.state.assembler


def require_user(
    authorization: Optional[str] = Header(default=None),
    auth: AuthService = Depends(get_auth),
) -> str:
    """Resolve the bearer token to a username or answer 401."""
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing bearer token")
    try:
        return auth.authenticate(token)
    except TokenError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))


@router.get("/health", summary="Liveness/readiness check")
async def health() -> dict:
    return {"ok": True}


@router.post("/auth/signin", response_model=TokenResponse, summary="Sign in with username/password")
async def signin(req: SignInRequest, auth: AuthService = Depends(get_auth)) -> TokenResponse:
    try:
        out = auth.sign_in(username=req.username.strip(), password=req.password.strip())
    except InvalidCredentials as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return TokenResponse(**out)


@router.post("/auth/refresh", response_model=TokenResponse, summary="Rotate a refresh token")
async def refresh(req: RefreshRequest, auth: AuthService = Depends(get_auth)) -> TokenResponse:
    try:
        out = auth.refresh(refresh_token=req.refreshToken)
    except TokenError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))
    return TokenResponse(**out)


@router.post("/auth/signout", status_code=status.HTTP_204_NO_CONTENT, summary="Revoke a refresh token")
async def signout(req: RefreshRequest, auth: AuthService = Depends(get_auth)):
    auth.sign_out(refresh_token=req.refreshToken)


@router.get("/projects", response_model=ProjectsResponse, summary="List projects (protected)")
async def list_projects(user: str = Depends(require_user)) -> ProjectsResponse:
    logger.info("projects.list", extra={"event": "projects_list", "user": user})
    return ProjectsResponse(
        projects=[
            Project(name="blog", framework="wordpress", domain="blog.example.com"),
            Project(name="shop", framework="laravel", domain="shop.example.com"),
        ]
    )


@router.post(
    "/project/upload-project-folder",
    response_model=ChunkUploadResponse,
    summary="Upload one chunk of a project archive (protected)",
)
async def upload_project_folder(
    chunk: UploadFile = File(...),
    filename: str = Form(...),
    chunkIndex: int = Form(...),
    totalChunks: int = Form(...),
    projectName: str = Form(...),
    projectFramework: Optional[str] = Form(None),
    user: str = Depends(require_user),
    assembler: ChunkAssembler = Depends(get_assembler),
) -> ChunkUploadResponse:
    """Store a chunk by index; the last index triggers assembly."""
    data = await chunk.read()
    try:
        out = assembler.accept(
            project=projectName.strip(),
            filename=filename,
            index=chunkIndex,
            total=totalChunks,
            data=data,
        )
    except TransientUploadError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    except ChunkTooLarge as e:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return ChunkUploadResponse(**out)
