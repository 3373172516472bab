from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from gcs_resumable_upload.config_manager.upload_config import UploadConfig
from gcs_resumable_upload.event_emitter import UploadEmitter
from gcs_resumable_upload.exceptions import (
    ProtocolError,
    SessionError,
    UploadAborted,
    UploadFailed,
)
from gcs_resumable_upload.models import ResumeRecord
from gcs_resumable_upload.upload import Upload, create_uri, upload_file

from fake_server import FailingSessionStore, ResponseAction


def make_upload(server, store, config, target, **kwargs) -> Upload:
    return Upload(target, transport=server, store=store, config=config, **kwargs)


@pytest.mark.asyncio
async def test_write_and_end(server, store, config, target, payload) -> None:
    upload = make_upload(server, store, config, target)
    completed = []
    upload.on(UploadEmitter.COMPLETE, completed.append)

    for start in range(0, len(payload), 1024):
        await upload.write(payload[start : start + 1024])
    result = await upload.end()

    assert result.bytes_written == len(payload)
    assert bytes(server.session_for(result.uri).data) == payload
    assert completed == [result]
    assert await store.get(target.store_key) is None


@pytest.mark.asyncio
async def test_on_works_as_decorator(server, store, config, target) -> None:
    upload = make_upload(server, store, config, target)
    seen = []

    @upload.on(UploadEmitter.RESPONSE)
    def on_response(response) -> None:
        seen.append(response.status)

    await upload.write(b"data")
    await upload.end()

    assert seen == [200, 200]


@pytest.mark.asyncio
async def test_session_starts_on_first_write(server, store, config, target) -> None:
    upload = make_upload(server, store, config, target)
    await asyncio.sleep(0)
    assert server.request_log == []

    await upload.write(b"data")
    await upload.end()

    assert server.operations() == ["initiate", "chunk_upload"]


@pytest.mark.asyncio
async def test_end_without_writes_uploads_empty_object(
    server, store, config, target
) -> None:
    upload = make_upload(server, store, config, target)

    result = await upload.end()

    assert result.bytes_written == 0
    assert server.operations() == ["initiate", "chunk_upload"]


@pytest.mark.asyncio
async def test_context_manager_ends_upload(
    server, store, config, target, payload
) -> None:
    async with make_upload(server, store, config, target) as upload:
        await upload.write(payload)

    session = server.sessions["sess-1"]
    assert bytes(session.data) == payload
    assert session.finalized


@pytest.mark.asyncio
async def test_context_manager_aborts_on_error_and_keeps_record(
    server, store, config, target, payload
) -> None:
    with pytest.raises(KeyError):
        async with make_upload(server, store, config, target) as upload:
            await upload.write(payload)
            await asyncio.sleep(0.01)
            raise KeyError("producer failed")

    record = await store.get(target.store_key)
    assert record is not None
    assert record.uri == "http://fake/session/sess-1"
    assert not server.sessions["sess-1"].finalized
    with pytest.raises(UploadAborted):
        await upload._gate.wait()


@pytest.mark.asyncio
async def test_abort_then_resume_from_record(
    server, store, config, target, payload
) -> None:
    upload = make_upload(server, store, config, target)
    await upload.write(payload[:4096])
    await asyncio.sleep(0.01)
    await upload.abort()

    with pytest.raises(RuntimeError):
        await upload.write(b"more")
    assert await store.get(target.store_key) == ResumeRecord(
        uri="http://fake/session/sess-1", first_chunk=payload[:16]
    )

    resumed = make_upload(server, store, config, target)
    await resumed.write(payload)
    result = await resumed.end()

    assert result.uri == "http://fake/session/sess-1"
    assert server.operations()[-2:] == ["offset_query", "chunk_upload"]
    assert bytes(server.session_for(result.uri).data) == payload


@pytest.mark.asyncio
async def test_abort_before_start(server, store, config, target) -> None:
    upload = make_upload(server, store, config, target)

    await upload.abort()

    assert server.request_log == []
    with pytest.raises(UploadAborted):
        await upload.end()


@pytest.mark.asyncio
async def test_write_after_end_raises(server, store, config, target) -> None:
    upload = make_upload(server, store, config, target)
    await upload.end()

    with pytest.raises(RuntimeError):
        await upload.write(b"late")


@pytest.mark.asyncio
async def test_end_raises_terminal_error_once(
    server, store, config, target, payload
) -> None:
    server.pre_request = lambda info: (
        ResponseAction(400) if info.operation == "chunk_upload" else None
    )
    upload = make_upload(server, store, config, target)
    errors = []
    upload.on(UploadEmitter.ERROR, errors.append)

    await upload.write(payload)
    with pytest.raises(UploadFailed) as exc_info:
        await upload.end()

    assert errors == [exc_info.value]


@pytest.mark.asyncio
async def test_blocked_writer_receives_terminal_error(
    server, store, target
) -> None:
    config = UploadConfig(base_uri=server.base_uri, buffer_limit=4)
    server.location_header = False
    upload = make_upload(server, store, config, target)

    await upload.write(b"abcd")
    with pytest.raises(ProtocolError):
        await asyncio.wait_for(upload.write(b"efgh"), timeout=1)


@pytest.mark.asyncio
async def test_upload_file(server, store, target, payload, tmp_path: Path) -> None:
    path = tmp_path / "object.bin"
    path.write_bytes(payload)
    config = UploadConfig(base_uri=server.base_uri, chunk_size=1000)

    result = await upload_file(
        path, target, transport=server, store=store, config=config
    )

    assert result.bytes_written == len(payload)
    assert bytes(server.session_for(result.uri).data) == payload
    assert len(server.request_log[-1].received) == len(payload)


@pytest.mark.asyncio
async def test_create_uri_then_upload_resumes_session(
    server, store, config, target, payload
) -> None:
    uri = await create_uri(target, transport=server, store=store, config=config)

    assert server.operations() == ["initiate"]
    assert await store.get(target.store_key) == ResumeRecord(uri=uri)

    upload = make_upload(server, store, config, target)
    await upload.write(payload)
    result = await upload.end()

    assert result.uri == uri
    assert server.operations() == ["initiate", "offset_query", "chunk_upload"]


@pytest.mark.asyncio
async def test_upload_with_sqlite_store(server, target, payload, tmp_path) -> None:
    config = UploadConfig(
        base_uri=server.base_uri, state_db_path=str(tmp_path / "resume.db")
    )
    upload = Upload(target, transport=server, config=config)

    await upload.write(payload)
    result = await upload.end()

    assert result.bytes_written == len(payload)
    assert (tmp_path / "resume.db").exists()


@pytest.mark.asyncio
async def test_store_failure_surfaces_from_end(
    server, config, target, payload
) -> None:
    store = FailingSessionStore()
    upload = Upload(target, transport=server, store=store, config=config)
    errors = []
    upload.on(UploadEmitter.ERROR, errors.append)

    await upload.write(payload)
    with pytest.raises(SessionError) as exc_info:
        await asyncio.wait_for(upload.end(), timeout=3)

    assert exc_info.value.__cause__ is store.error
    assert errors == [exc_info.value]


@pytest.mark.asyncio
async def test_store_failure_wakes_blocked_writer(server, target) -> None:
    config = UploadConfig(base_uri=server.base_uri, buffer_limit=4)
    upload = Upload(
        target, transport=server, store=FailingSessionStore(), config=config
    )

    await upload.write(b"abcd")
    with pytest.raises(SessionError):
        await asyncio.wait_for(upload.write(b"efgh"), timeout=1)


@pytest.mark.asyncio
async def test_session_task_failure_fails_gate(server, store, config, target) -> None:
    upload = make_upload(server, store, config, target)
    task = asyncio.get_running_loop().create_future()
    task.set_exception(RuntimeError("boom"))

    upload._on_session_done(task)

    with pytest.raises(RuntimeError, match="boom"):
        await upload._gate.wait()
    await upload._cleanup_task


@pytest.mark.asyncio
async def test_memory_held_stays_bounded_while_streaming(
    server, store, target
) -> None:
    limit = 4096
    config = UploadConfig(base_uri=server.base_uri, buffer_limit=limit)
    upload = make_upload(server, store, config, target)
    held = []
    upload.on(
        UploadEmitter.PROGRESS,
        lambda *_: held.append(
            upload._buffer.retained_bytes + upload._buffer.pending_bytes
        ),
    )
    chunk = bytes(range(256)) * 4
    chunks = 200

    for _ in range(chunks):
        await upload.write(chunk)
    result = await upload.end()

    assert result.bytes_written == chunks * len(chunk)
    assert bytes(server.session_for(result.uri).data) == chunk * chunks
    assert len(held) == chunks
    assert max(held) <= 2 * limit + len(chunk)
    assert upload._buffer.retained_bytes == 0
