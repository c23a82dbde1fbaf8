"""Chunked Upload Engine: sequential, per-chunk retried transfer of large payloads."""
from __future__ import annotations

import asyncio
import math
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

from .logging_conf import get_logger
from .transport import TransportClient
from .types import (
    MIB,
    ApiRequest,
    AuthorizationFailure,
    ChunkUploadFailed,
    ProgressSnapshot,
    TransportFailure,
    UploadCancelled,
    UploadResult,
)

__all__ = [
    "ChunkedUploader",
    "DEFAULT_CHUNK_SIZE",
    "DEFAULT_RETRIES",
    "UPLOAD_PATH",
    "count_chunks",
    "is_retryable",
]

DEFAULT_CHUNK_SIZE = 5 * MIB
DEFAULT_RETRIES = 2
UPLOAD_PATH = "/project/upload-project-folder"
RETRYABLE_STATUS = frozenset({408, 429})

logger = get_logger("panel_transport.upload")

ProgressCallback = Callable[[ProgressSnapshot], None]


def count_chunks(size: int, chunk_size: int) -> int:
    """Number of chunks for `size` bytes; an empty payload still travels as one chunk."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    return max(1, math.ceil(size / chunk_size))


def is_retryable(exc: BaseException) -> bool:
    """Transient chunk failures: network/timeout (no status), 408, 429 and 5xx.

    Authorization and session errors, and every other 4xx, are structural.
    """
    if not isinstance(exc, TransportFailure) or isinstance(exc, AuthorizationFailure):
        return False
    status = exc.status_code
    return status is None or status in RETRYABLE_STATUS or status >= 500


class ChunkedUploader:
    """Drives chunk submissions for one payload at a time through a TransportClient.

    Each upload() call keeps its own state, so concurrent calls don't
    coordinate with each other beyond sharing the transport.
    """

    def __init__(
        self,
        transport: TransportClient,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        retries: int = DEFAULT_RETRIES,
        retry_delay: float = 0.25,
        path: str = UPLOAD_PATH,
    ):
        if retries < 0:
            raise ValueError("retries must be >= 0")
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.transport = transport
        self.chunk_size = chunk_size
        self.retries = retries
        self.retry_delay = retry_delay
        self.path = path

    async def upload(
        self,
        name: str,
        blob: bytes | bytearray | memoryview,
        chunk_size: int | None = None,
        on_progress: ProgressCallback | None = None,
        *,
        destination: Mapping[str, Any] | None = None,
        cancel: asyncio.Event | None = None,
    ) -> UploadResult:
        """Upload `blob` as `name` in ordered chunks.

        `on_progress` runs synchronously on the event loop after each
        acknowledged chunk and should return promptly.

        Raises:
            ChunkUploadFailed: a chunk failed `retries + 1` times in a row.
            UploadCancelled: `cancel` was set before the next chunk started.
            TransportFailure / SessionExpired: structural failures, not retried.
        """
        size = chunk_size if chunk_size is not None else self.chunk_size
        view = memoryview(blob).cast("B")
        total = count_chunks(len(view), size)
        fields = {k: str(v) for k, v in (destination or {}).items()}
        response: Any = None

        logger.info(
            "upload.start",
            extra={
                "event": "upload_start",
                "upload_name": name,
                "size_bytes": len(view),
                "total_chunks": total,
            },
        )
        for index in range(total):
            if cancel is not None and cancel.is_set():
                logger.info("upload.cancelled", extra={"event": "upload_cancelled", "chunk_index": index})
                raise UploadCancelled(index)

            start = index * size
            chunk = bytes(view[start : min(start + size, len(view))])
            request = ApiRequest(
                method="POST",
                path=self.path,
                data={
                    "filename": name,
                    "chunkIndex": str(index),
                    "totalChunks": str(total),
                    **fields,
                },
                files={"chunk": (name, chunk, "application/octet-stream")},
            )
            response = await self._send_chunk(request, index)

            if on_progress is not None:
                on_progress(ProgressSnapshot.after(index + 1, total, size))

        logger.info(
            "upload.done",
            extra={"event": "upload_done", "upload_name": name, "total_chunks": total},
        )
        return UploadResult(filename=name, total_chunks=total, size_bytes=len(view), response=response)

    async def upload_file(
        self,
        path: str | Path,
        chunk_size: int | None = None,
        on_progress: ProgressCallback | None = None,
        *,
        destination: Mapping[str, Any] | None = None,
        cancel: asyncio.Event | None = None,
    ) -> UploadResult:
        p = Path(path)
        return await self.upload(
            p.name,
            p.read_bytes(),
            chunk_size,
            on_progress,
            destination=destination,
            cancel=cancel,
        )

    async def _send_chunk(self, request: ApiRequest, index: int) -> Any:
        attempt = 0
        while True:
            try:
                r = await self.transport.send(request)
            except TransportFailure as e:
                if not is_retryable(e):
                    raise
                attempt += 1
                if attempt > self.retries:
                    logger.error(
                        "chunk.failed",
                        extra={"event": "chunk_failed", "chunk_index": index, "attempts": attempt},
                    )
                    raise ChunkUploadFailed(index, e) from e
                logger.warning(
                    "chunk.retry",
                    extra={
                        "event": "chunk_retry",
                        "chunk_index": index,
                        "attempt": attempt,
                        "error": str(e),
                    },
                )
                if self.retry_delay > 0:
                    await asyncio.sleep(self.retry_delay)
                continue

            logger.debug("chunk.ok", extra={"event": "chunk_ok", "chunk_index": index})
            try:
                return r.json()
            except ValueError:
                return None
