"""Transport contract consumed by the session controller."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterable, Awaitable, Callable
from typing import Protocol

from multidict import CIMultiDict

from gcs_resumable_upload.models import RequestDescriptor, TransportResponse

StreamRunner = Callable[["StreamingRequest"], Awaitable[None]]


class StreamingRequest:
    """Handle on one in-flight streaming request.

    ``headers_received`` resolves with ``(status, headers)`` as soon as the
    response head arrives, possibly before the request body has finished.
    ``completed`` resolves with the fully buffered response, or carries the
    transport failure.
    """

    def __init__(self) -> None:
        """Create the request futures on the running loop."""
        loop = asyncio.get_running_loop()
        self.headers_received: asyncio.Future[tuple[int, CIMultiDict]] = (
            loop.create_future()
        )
        self.completed: asyncio.Future[TransportResponse] = loop.create_future()
        self._task: asyncio.Task | None = None

    @classmethod
    def start(cls, runner: StreamRunner) -> "StreamingRequest":
        """Run ``runner`` in a task that reports through the new handle."""
        stream = cls()
        stream._task = asyncio.create_task(stream._run(runner))
        return stream

    async def _run(self, runner: StreamRunner) -> None:
        try:
            await runner(self)
        except asyncio.CancelledError:
            self._cancel_futures()
            raise
        except Exception as exc:
            if not self.headers_received.done():
                self.headers_received.cancel()
            if not self.completed.done():
                self.completed.set_exception(exc)
        else:
            if not self.completed.done():
                self.completed.set_exception(
                    RuntimeError("Streaming request ended without a response")
                )

    def _cancel_futures(self) -> None:
        for future in (self.headers_received, self.completed):
            if not future.done():
                future.cancel()

    def set_headers(self, status: int, headers: CIMultiDict) -> None:
        """Signal that the response head is available."""
        if not self.headers_received.done():
            self.headers_received.set_result((status, CIMultiDict(headers)))

    def set_response(self, response: TransportResponse) -> None:
        """Signal that the response body has been fully buffered."""
        self.set_headers(response.status, response.headers)
        if not self.completed.done():
            self.completed.set_result(response)

    @property
    def done(self) -> bool:
        """Whether the request reached a final outcome."""
        return self.completed.done()

    async def cancel(self) -> None:
        """Abort the request and wait for its task to unwind."""
        self._cancel_futures()
        if self._task is None or self._task.done():
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass


class Transport(Protocol):
    """HTTP transport used for the three wire operations."""

    async def request(self, request: RequestDescriptor) -> TransportResponse:
        """Issue a buffered request.

        Raises:
            TransportError: On connection-level failures.
        """
        ...

    def open_stream(
        self, request: RequestDescriptor, body: AsyncIterable[bytes]
    ) -> StreamingRequest:
        """Start a request whose body is streamed from ``body``.

        Connection-level failures surface as a ``TransportError`` on
        ``StreamingRequest.completed``.
        """
        ...
