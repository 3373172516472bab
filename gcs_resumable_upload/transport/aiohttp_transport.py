"""aiohttp implementation of the upload transport."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable

import aiohttp
from multidict import CIMultiDict

from gcs_resumable_upload.const import DEFAULT_REQUEST_TIMEOUT_SECS
from gcs_resumable_upload.exceptions import TransportError
from gcs_resumable_upload.models import RequestDescriptor, TransportResponse

from .transport import StreamingRequest

logger = logging.getLogger(__name__)


class AiohttpTransport:
    """Issues upload requests through a shared aiohttp ClientSession.

    Redirects are never followed: a 308 from the upload service means
    "resume incomplete", not "permanent redirect".
    """

    def __init__(
        self,
        client_session: aiohttp.ClientSession,
        timeout: float = DEFAULT_REQUEST_TIMEOUT_SECS,
    ) -> None:
        """Initialize the transport.

        Args:
            client_session: aiohttp ClientSession for HTTP requests
            timeout: Total timeout for buffered requests, and the socket read
                timeout for streaming requests, in seconds.
        """
        self._session = client_session
        self._timeout = timeout

    async def request(self, request: RequestDescriptor) -> TransportResponse:
        """Issue a buffered request and read the whole response body.

        Args:
            request: The authorized request to send.

        Returns:
            The buffered response.

        Raises:
            TransportError: On connection errors and timeouts.
        """
        data = None if request.json_body is not None else b""
        try:
            async with self._session.request(
                request.method,
                request.uri,
                params=request.query or None,
                headers=request.headers,
                json=request.json_body,
                data=data,
                allow_redirects=False,
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as response:
                body = await response.read()
                return TransportResponse(
                    status=response.status,
                    headers=CIMultiDict(response.headers),
                    body=body,
                )
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning("%s %s failed: %r", request.method, request.uri, exc)
            raise TransportError(
                f"{request.method} {request.uri} failed: {exc}"
            ) from exc

    def open_stream(
        self, request: RequestDescriptor, body: AsyncIterable[bytes]
    ) -> StreamingRequest:
        """Start a chunked-encoding request streaming ``body``.

        Args:
            request: The authorized request to send.
            body: Async iterable producing the request body.

        Returns:
            Handle reporting the response head and the buffered response.
        """

        async def run(stream: StreamingRequest) -> None:
            timeout = aiohttp.ClientTimeout(
                total=None, sock_connect=self._timeout, sock_read=self._timeout
            )
            try:
                async with self._session.request(
                    request.method,
                    request.uri,
                    params=request.query or None,
                    headers=request.headers,
                    data=body,
                    allow_redirects=False,
                    timeout=timeout,
                ) as response:
                    stream.set_headers(response.status, CIMultiDict(response.headers))
                    response_body = await response.read()
                    stream.set_response(
                        TransportResponse(
                            status=response.status,
                            headers=CIMultiDict(response.headers),
                            body=response_body,
                        )
                    )
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                logger.warning(
                    "Streaming %s %s failed: %r", request.method, request.uri, exc
                )
                raise TransportError(
                    f"{request.method} {request.uri} failed: {exc}"
                ) from exc

        return StreamingRequest.start(run)
