"""FastAPI app factory for the stub panel backend (auth + chunked upload)."""
from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from panel_transport.logging_conf import get_logger, setup_logging
from panel_transport.types import now_ms

from .api import router as api_router
from .service.auth_service import AuthService
from .service.upload_service import ChunkAssembler
from .settings import StubSettings

API_PREFIX = "/api/v1"

# Configure logging before anything else.
setup_logging()
logger = get_logger("panel_stub")


def _align_server_loggers() -> None:
    """Route uvicorn loggers through the root JSON handler."""
    level = logging.getLogger().level
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        lg = logging.getLogger(name)
        lg.setLevel(level)
        lg.propagate = True
        for h in list(lg.handlers):
            lg.removeHandler(h)


def create_app(settings: StubSettings | None = None, clock: Callable[[], int] = now_ms) -> FastAPI:
    settings = settings or StubSettings.from_env()
    app = FastAPI(
        title="Panel API (stub)",
        version=os.getenv("APP_VERSION", "0.1.0"),
    )
    app.state.settings = settings
    app.state.auth = AuthService(settings, clock=clock)
    app.state.assembler = ChunkAssembler(settings)
    _align_server_loggers()

    @app.exception_handler(HTTPException)
    async def _http_error(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": True, "message": str(exc.detail)},
            headers=exc.headers,
        )

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": True, "message": "invalid request payload"})

    @app.middleware("http")
    async def request_logger(request: Request, call_next: Callable[[Request], Response]):
        """JSON request logging with correlation id (X-Request-ID reused or minted)."""
        request_id = request.headers.get("X-Request-ID", str(uuid4()))
        request.state.request_id = request_id

        start = time.perf_counter()
        logger.info(
            "request.start",
            extra={
                "event": "request_start",
                "method": request.method,
                "path": request.url.path,
                "request_id": request_id,
            },
        )
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "request.error",
                extra={
                    "event": "request_error",
                    "path": request.url.path,
                    "method": request.method,
                    "request_id": request_id,
                },
            )
            raise
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000.0

        response.headers["X-Request-ID"] = request_id
        logger.info(
            "request.end",
            extra={
                "event": "request_end",
                "status_code": response.status_code,
                "elapsed_ms": round(elapsed_ms, 2),
                "request_id": request_id,
            },
        )
        return response

    app.include_router(api_router, prefix=API_PREFIX)
    return app


# ASGI entrypoint for uvicorn: `uvicorn panel_stub.main:app --port 8888`
app = create_app()
