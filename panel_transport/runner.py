#!/usr/bin/env python3
"""`panel-upload`: sign in if needed and push one archive through the chunked uploader.

Steps:
- wait for server health
- reuse the stored session or sign in with username/password
- upload the file chunk by chunk, logging each progress snapshot
- exit 0 on success; 2 on a failed chunk; 3 when the session is gone; 1 otherwise
"""
from __future__ import annotations

import asyncio
import sys
import time
from pathlib import Path

import httpx

from .cli import parse_args
from .logging_conf import get_logger, setup_logging
from .session import JsonFileBackend, SessionStore
from .transport import TransportClient
from .types import (
    MIB,
    ChunkUploadFailed,
    CredentialPair,
    PanelClientError,
    ProgressSnapshot,
    SessionExpired,
    SignInFailed,
)
from .upload import ChunkedUploader

logger = get_logger("panel_transport.runner")


async def wait_for_health(base_url: str, timeout_s: float = 20.0) -> bool:
    """Ping /health until it returns ok; False after `timeout_s` seconds."""
    deadline = time.monotonic() + timeout_s
    async with httpx.AsyncClient(base_url=base_url, timeout=5.0) as client:
        while time.monotonic() < deadline:
            try:
                r = await client.get("/health")
                if r.status_code == 200 and r.json().get("ok") is True:
                    logger.info("health.ok", extra={"event": "health_ok"})
                    return True
            except (httpx.HTTPError, ValueError) as e:
                logger.debug("health.retry", extra={"event": "health_retry", "error": str(e)})
            await asyncio.sleep(0.25)
    return False


def _needs_sign_in(pair: CredentialPair | None, *, has_password: bool) -> bool:
    """Sign in when there is no session, or when it has expired and a password is at hand.

    An expired pair without a password is still reused: the refresh credential
    may outlive the access one.
    """
    if pair is None:
        return True
    if has_password and pair.is_expired():
        logger.info("session.stale", extra={"event": "session_stale"})
        return True
    return False


def _log_progress(p: ProgressSnapshot) -> None:
    logger.info(
        "upload.progress",
        extra={
            "event": "upload_progress",
            "uploaded_chunks": p.uploaded_chunks,
            "total_chunks": p.total_chunks,
            "percentage": p.percentage,
        },
    )


async def run_upload(
    *,
    base_url: str,
    file: Path,
    project_name: str,
    project_framework: str | None = None,
    username: str | None = None,
    password: str | None = None,
    chunk_size: int = 5 * MIB,
    retries: int = 2,
    retry_delay: float = 0.25,
    timeout_s: float = 30.0,
    session_file: str | None = None,
    health_timeout_s: float = 20.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> int:
    if transport is None and not await wait_for_health(base_url, health_timeout_s):
        logger.error("health.timeout", extra={"event": "health_timeout", "base_url": base_url})
        return 1

    store = SessionStore(JsonFileBackend(session_file) if session_file else None)
    destination = {"projectName": project_name}
    if project_framework:
        destination["projectFramework"] = project_framework

    async with TransportClient(base_url, store, timeout=timeout_s, transport=transport) as client:
        try:
            if _needs_sign_in(store.get(), has_password=bool(username and password)):
                if not (username and password):
                    logger.error("session.missing", extra={"event": "session_missing"})
                    return 3
                await client.sign_in(username, password)
            uploader = ChunkedUploader(
                client, chunk_size=chunk_size, retries=retries, retry_delay=retry_delay
            )
            started = time.perf_counter()
            result = await uploader.upload_file(file, on_progress=_log_progress, destination=destination)
        except ChunkUploadFailed as e:
            logger.error(
                "upload.failed",
                extra={"event": "upload_failed", "chunk_index": e.chunk_index, "error": str(e.cause)},
            )
            return 2
        except (SessionExpired, SignInFailed) as e:
            logger.error("session.expired", extra={"event": "session_expired", "error": str(e)})
            return 3
        except PanelClientError as e:
            logger.error("upload.error", extra={"event": "upload_error", "code": e.code, "error": str(e)})
            return 1
        except (OSError, ValueError) as e:
            # unreadable file or an unusable chunk size
            logger.error(
                "upload.error",
                extra={"event": "upload_error", "code": type(e).__name__, "error": str(e)},
            )
            return 1

    logger.info(
        "upload.summary",
        extra={
            "event": "upload_summary",
            "upload_name": result.filename,
            "size_bytes": result.size_bytes,
            "total_chunks": result.total_chunks,
            "elapsed_ms": round((time.perf_counter() - started) * 1000.0, 2),
        },
    )
    return 0


def main(argv: list[str] | None = None) -> None:
    setup_logging()
    args = parse_args(argv if argv is not None else sys.argv[1:])
    code = asyncio.run(
        run_upload(
            base_url=args.base_url,
            file=Path(args.file),
            project_name=args.project_name,
            project_framework=args.project_framework,
            username=args.username,
            password=args.password,
            chunk_size=int(args.chunk_size_mb * MIB),
            retries=args.retries,
            retry_delay=args.retry_delay,
            timeout_s=args.timeout,
            session_file=args.session_file,
            health_timeout_s=args.health_timeout,
        )
    )
    raise SystemExit(code)


if __name__ == "__main__":
    main()
