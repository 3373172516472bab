from __future__ import annotations

import asyncio
from typing import Any

import aiohttp
import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from gcs_resumable_upload.exceptions import TransportError
from gcs_resumable_upload.models import RequestDescriptor
from gcs_resumable_upload.transport.aiohttp_transport import AiohttpTransport


class Recorder:
    def __init__(self) -> None:
        self.requests: list[dict[str, Any]] = []


@pytest_asyncio.fixture
async def upload_server():
    recorder = Recorder()

    async def initiate(request: web.Request) -> web.Response:
        recorder.requests.append({
            "path": request.path,
            "query": dict(request.query),
            "headers": dict(request.headers),
            "json": await request.json(),
        })
        return web.Response(status=200, headers={"Location": "http://x/session/1"})

    async def session_put(request: web.Request) -> web.Response:
        body = await request.read()
        recorder.requests.append({
            "path": request.path,
            "headers": dict(request.headers),
            "body": body,
        })
        if request.headers.get("Content-Range") == "bytes */*":
            # a redirect-following client would loop on this response
            return web.Response(
                status=308,
                headers={"Range": "bytes=0-9", "Location": str(request.url)},
            )
        return web.json_response({"size": str(len(body))})

    app = web.Application()
    app.router.add_post("/b/{bucket}/o", initiate)
    app.router.add_put("/session/{session_id}", session_put)
    server = TestServer(app)
    await server.start_server()
    yield server, recorder
    await server.close()


@pytest_asyncio.fixture
async def client_session():
    async with aiohttp.ClientSession() as session:
        yield session


@pytest.mark.asyncio
async def test_initiation_request(upload_server, client_session) -> None:
    server, recorder = upload_server
    transport = AiohttpTransport(client_session, timeout=5)

    response = await transport.request(
        RequestDescriptor(
            method="POST",
            uri=str(server.make_url("/b/bucket/o")),
            query={"name": "obj", "uploadType": "resumable"},
            headers={"X-Upload-Content-Type": "text/plain"},
            json_body={"contentType": "text/plain"},
        )
    )

    assert response.status == 200
    assert response.headers["location"] == "http://x/session/1"
    (sent,) = recorder.requests
    assert sent["query"] == {"name": "obj", "uploadType": "resumable"}
    assert sent["json"] == {"contentType": "text/plain"}
    assert sent["headers"]["X-Upload-Content-Type"] == "text/plain"


@pytest.mark.asyncio
async def test_resume_incomplete_is_not_followed(
    upload_server, client_session
) -> None:
    server, recorder = upload_server
    transport = AiohttpTransport(client_session, timeout=5)

    response = await transport.request(
        RequestDescriptor(
            method="PUT",
            uri=str(server.make_url("/session/1")),
            headers={"Content-Length": "0", "Content-Range": "bytes */*"},
        )
    )

    assert response.status == 308
    assert response.headers["Range"] == "bytes=0-9"
    assert len(recorder.requests) == 1
    assert recorder.requests[0]["body"] == b""


@pytest.mark.asyncio
async def test_streaming_upload(upload_server, client_session) -> None:
    server, recorder = upload_server
    transport = AiohttpTransport(client_session, timeout=5)

    async def body():
        yield b"hello "
        yield b"world"

    stream = transport.open_stream(
        RequestDescriptor(
            method="PUT",
            uri=str(server.make_url("/session/1")),
            headers={"Content-Range": "bytes 0-*/*"},
        ),
        body(),
    )
    response = await asyncio.wait_for(stream.completed, timeout=5)

    assert response.status == 200
    assert response.parsed_body() == {"size": "11"}
    status, _ = stream.headers_received.result()
    assert status == 200
    assert stream.done
    (sent,) = recorder.requests
    assert sent["body"] == b"hello world"
    assert sent["headers"]["Content-Range"] == "bytes 0-*/*"
    assert sent["headers"]["Transfer-Encoding"] == "chunked"


@pytest.mark.asyncio
async def test_streaming_upload_can_be_cancelled(
    upload_server, client_session
) -> None:
    server, _ = upload_server
    transport = AiohttpTransport(client_session, timeout=5)
    started = asyncio.Event()

    async def body():
        yield b"partial"
        started.set()
        await asyncio.Event().wait()
        yield b"never"

    stream = transport.open_stream(
        RequestDescriptor(method="PUT", uri=str(server.make_url("/session/1"))),
        body(),
    )
    await asyncio.wait_for(started.wait(), timeout=5)

    await stream.cancel()

    assert stream.completed.cancelled()
    assert stream.headers_received.cancelled()


@pytest.mark.asyncio
async def test_connection_errors_raise_transport_error(client_session) -> None:
    transport = AiohttpTransport(client_session, timeout=5)
    request = RequestDescriptor(method="PUT", uri="http://127.0.0.1:1/session/1")

    with pytest.raises(TransportError):
        await transport.request(request)

    async def body():
        yield b"data"

    stream = transport.open_stream(request, body())
    with pytest.raises(TransportError):
        await asyncio.wait_for(stream.completed, timeout=5)
