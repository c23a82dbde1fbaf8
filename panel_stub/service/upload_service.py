from __future__ import annotations

import hashlib
from collections import defaultdict
from dataclasses import dataclass

from panel_transport.logging_conf import get_logger

from ..domain.paths import split_extension
from ..settings import StubSettings

__all__ = ["ChunkAssembler", "Artifact", "TransientUploadError", "ChunkTooLarge"]

logger = get_logger("panel_stub.service.upload")


class TransientUploadError(RuntimeError):
    """Injected failure; the client is expected to retry the same chunk."""


class ChunkTooLarge(ValueError):
    pass


@dataclass
class Artifact:
    """An archive reassembled from all of its chunks."""

    project: str
    filename: str
    data: bytes

    @property
    def sha256(self) -> str:
        return hashlib.sha256(self.data).hexdigest()


class ChunkAssembler:
    """Stores chunks by index and concatenates them when the last index arrives."""

    def __init__(self, settings: StubSettings):
        self.settings = settings
        self._parts: dict[tuple[str, str], dict[int, bytes]] = defaultdict(dict)
        self._attempts: dict[tuple[str, str, int], int] = defaultdict(int)
        self.arrivals: list[tuple[str, str, int]] = []
        self.artifacts: dict[tuple[str, str], Artifact] = {}

    def accept(self, *, project: str, filename: str, index: int, total: int, data: bytes) -> dict:
        """Record one chunk; returns the acknowledgement body.

        Raises:
            ValueError: malformed chunk metadata or missing chunks at assembly.
            ChunkTooLarge: the chunk exceeds `max_chunk_bytes`.
            TransientUploadError: injected via `flaky_chunks`.
        """
        if not project:
            raise ValueError("projectName is required")
        if total < 1:
            raise ValueError("totalChunks must be >= 1")
        if not 0 <= index < total:
            raise ValueError(f"chunkIndex {index} out of range for {total} chunks")
        if len(data) > self.settings.max_chunk_bytes:
            raise ChunkTooLarge(f"chunk exceeds {self.settings.max_chunk_bytes} bytes")

        base, ext = split_extension(filename)
        key = (project, f"{base}{ext}")
        self._attempts[(*key, index)] += 1
        if self._attempts[(*key, index)] <= self.settings.flaky_chunks:
            raise TransientUploadError(f"chunk {index} temporarily unavailable")

        self._parts[key][index] = data
        self.arrivals.append((*key, index))
        logger.info(
            "chunk.stored",
            extra={"event": "chunk_stored", "project": project, "chunk_index": index, "total_chunks": total},
        )

        out: dict = {
            "error": False,
            "message": "chunk received",
            "chunkIndex": index,
            "totalChunks": total,
            "completed": False,
        }
        if index + 1 != total:
            return out

        missing = [i for i in range(total) if i not in self._parts[key]]
        if missing:
            raise ValueError(f"missing chunks: {missing}")
        parts = self._parts.pop(key)
        artifact = Artifact(project=project, filename=key[1], data=b"".join(parts[i] for i in range(total)))
        self.artifacts[key] = artifact
        logger.info(
            "upload.assembled",
            extra={"event": "upload_assembled", "project": project, "size_bytes": len(artifact.data)},
        )
        out.update(
            message="upload complete",
            completed=True,
            size=len(artifact.data),
            sha256=artifact.sha256,
        )
        return out
