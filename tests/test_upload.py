"""Chunked upload engine: slicing, ordering, progress, retry budget, cancellation."""
from __future__ import annotations

import asyncio

import httpx
import pytest

from panel_transport.types import (
    MIB,
    ApiRequest,
    AuthorizationFailure,
    ChunkUploadFailed,
    ProgressSnapshot,
    SessionExpired,
    TransportFailure,
    UploadCancelled,
)
from panel_transport.upload import ChunkedUploader, count_chunks, is_retryable


class ScriptedTransport:
    """Stands in for TransportClient.send; `failures[i]` lists exceptions chunk i raises first."""

    def __init__(self, failures: dict[int, list[BaseException]] | None = None):
        self.failures = {k: list(v) for k, v in (failures or {}).items()}
        self.sent: list[ApiRequest] = []
        self.attempts: dict[int, int] = {}

    async def send(self, request: ApiRequest) -> httpx.Response:
        index = int(request.data["chunkIndex"])
        self.attempts[index] = self.attempts.get(index, 0) + 1
        queue = self.failures.get(index)
        if queue:
            raise queue.pop(0)
        self.sent.append(request)
        return httpx.Response(200, json={"chunkIndex": index, "completed": False})

    def chunk_sizes(self) -> list[int]:
        return [len(r.files["chunk"][1]) for r in self.sent]

    def indexes(self) -> list[int]:
        return [int(r.data["chunkIndex"]) for r in self.sent]


def transient(status: int | None = 503) -> TransportFailure:
    return TransportFailure("flaky", status_code=status)


def uploader(transport, **kwargs) -> ChunkedUploader:
    kwargs.setdefault("retry_delay", 0)
    return ChunkedUploader(transport, **kwargs)


async def test_twelve_megabytes_in_five_megabyte_chunks():
    t = ScriptedTransport()
    progress: list[ProgressSnapshot] = []

    result = await uploader(t).upload("site.zip", bytes(12 * MIB), 5 * MIB, progress.append)

    assert t.chunk_sizes() == [5 * MIB, 5 * MIB, 2 * MIB]
    assert t.indexes() == [0, 1, 2]
    assert {r.data["totalChunks"] for r in t.sent} == {"3"}
    assert [p.uploaded_chunks for p in progress] == [1, 2, 3]
    # half-up rounding: 33.3 -> 33, 66.7 -> 67
    assert [p.percentage for p in progress] == [33, 67, 100]
    assert progress[0].chunk_size_mb == 5.0
    assert result.total_chunks == 3
    assert result.size_bytes == 12 * MIB
    assert result.response == {"chunkIndex": 2, "completed": False}


@pytest.mark.parametrize("size,chunk", [(10, 3), (9, 3), (1, 64), (65, 8)])
async def test_chunk_count_and_order(size, chunk):
    t = ScriptedTransport()
    progress: list[ProgressSnapshot] = []
    blob = bytes(range(256)) * (size // 256 + 1)
    blob = blob[:size]

    await uploader(t).upload("a.bin", blob, chunk, progress.append)

    expected = -(-size // chunk)
    assert t.indexes() == list(range(expected))
    assert b"".join(r.files["chunk"][1] for r in t.sent) == blob
    assert progress[-1].percentage == 100
    assert progress[-1].total_chunks == expected


async def test_zero_byte_payload_is_one_empty_chunk():
    t = ScriptedTransport()
    progress: list[ProgressSnapshot] = []

    result = await uploader(t).upload("empty.zip", b"", 1024, progress.append)

    assert t.chunk_sizes() == [0]
    assert t.sent[0].data["totalChunks"] == "1"
    assert result.total_chunks == 1
    assert [p.percentage for p in progress] == [100]


async def test_chunk_recovering_within_budget_does_not_abort():
    t = ScriptedTransport({1: [transient(), transient(None)]})

    result = await uploader(t, retries=2).upload("a.zip", b"x" * 30, 10)

    assert result.total_chunks == 3
    assert t.attempts == {0: 1, 1: 3, 2: 1}
    assert t.indexes() == [0, 1, 2]


async def test_chunk_exhausting_budget_aborts_with_its_index():
    cause = transient(502)
    t = ScriptedTransport({1: [transient(), transient(), cause]})
    progress: list[ProgressSnapshot] = []

    with pytest.raises(ChunkUploadFailed) as ei:
        await uploader(t, retries=2).upload("a.zip", b"x" * 30, 10, progress.append)

    assert ei.value.chunk_index == 1
    assert ei.value.cause is cause
    assert ei.value.__cause__ is cause
    # chunk 0 stays delivered and reported, chunk 2 is never attempted
    assert [p.uploaded_chunks for p in progress] == [1]
    assert t.attempts == {0: 1, 1: 3}


async def test_zero_retries_fails_on_first_error():
    t = ScriptedTransport({0: [transient()]})
    with pytest.raises(ChunkUploadFailed) as ei:
        await uploader(t, retries=0).upload("a.zip", b"abc", 2)
    assert ei.value.chunk_index == 0
    assert t.attempts == {0: 1}


@pytest.mark.parametrize(
    "error",
    [
        TransportFailure("unsupported payload", status_code=415),
        TransportFailure("project missing", status_code=400),
        AuthorizationFailure("rejected", status_code=401),
        SessionExpired("gone"),
    ],
)
async def test_structural_failures_are_not_retried(error):
    t = ScriptedTransport({1: [error]})
    with pytest.raises(type(error)) as ei:
        await uploader(t, retries=5).upload("a.zip", b"x" * 20, 10)
    assert ei.value is error
    assert t.attempts == {0: 1, 1: 1}


async def test_cancel_stops_before_next_chunk():
    t = ScriptedTransport()
    cancel = asyncio.Event()

    def on_progress(p: ProgressSnapshot) -> None:
        if p.uploaded_chunks == 2:
            cancel.set()

    with pytest.raises(UploadCancelled) as ei:
        await uploader(t).upload("a.zip", b"x" * 50, 10, on_progress, cancel=cancel)

    assert ei.value.chunk_index == 2
    assert t.indexes() == [0, 1]


async def test_destination_fields_travel_with_every_chunk():
    t = ScriptedTransport()
    await uploader(t).upload(
        "shop.zip",
        b"x" * 15,
        10,
        destination={"projectName": "shop", "projectFramework": "laravel", "projectID": 7},
    )
    for r in t.sent:
        assert r.method == "POST"
        assert r.path == "/project/upload-project-folder"
        assert r.data["filename"] == "shop.zip"
        assert r.data["projectName"] == "shop"
        assert r.data["projectFramework"] == "laravel"
        assert r.data["projectID"] == "7"


async def test_upload_file_uses_base_name(tmp_path):
    archive = tmp_path / "nested" / "site.zip"
    archive.parent.mkdir()
    archive.write_bytes(b"PK\x03\x04" + b"\0" * 20)
    t = ScriptedTransport()

    result = await uploader(t, chunk_size=10).upload_file(archive)

    assert result.filename == "site.zip"
    assert result.total_chunks == 3
    assert t.sent[0].files["chunk"][0] == "site.zip"


def test_progress_rounds_half_up():
    assert ProgressSnapshot.after(1, 8, MIB).percentage == 13
    assert ProgressSnapshot.after(1, 2, MIB).percentage == 50
    assert ProgressSnapshot.after(1, 3, MIB).percentage == 33
    assert ProgressSnapshot.after(2, 3, MIB).percentage == 67
    assert ProgressSnapshot.after(3, 3, MIB).percentage == 100


def test_retryable_classification():
    assert is_retryable(TransportFailure("timeout"))
    assert is_retryable(TransportFailure("busy", status_code=503))
    assert is_retryable(TransportFailure("slow down", status_code=429))
    assert is_retryable(TransportFailure("request timeout", status_code=408))
    assert not is_retryable(TransportFailure("nope", status_code=404))
    assert not is_retryable(AuthorizationFailure("rejected", status_code=401))
    assert not is_retryable(SessionExpired("gone"))
    assert not is_retryable(ValueError("x"))


def test_invalid_arguments():
    with pytest.raises(ValueError):
        count_chunks(10, 0)
    with pytest.raises(ValueError):
        ChunkedUploader(ScriptedTransport(), retries=-1)
    with pytest.raises(ValueError):
        ChunkedUploader(ScriptedTransport(), chunk_size=0)
