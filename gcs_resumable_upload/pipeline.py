"""Pipeline wiring between the producer, the offset filter and a request body.

The producer writes into a :class:`ChunkBuffer`. The session controller opens
a streaming request whose body is :func:`filtered_body`, which draws chunks
from the buffer and passes them through the ChunkOffsetFilter. The consumer's
``end()`` waits on a :class:`CompletionGate` that only the chunk-upload
response handler can open.
"""

import asyncio
import logging
from collections import deque
from collections.abc import AsyncIterator, Callable

from gcs_resumable_upload.chunk_offset_filter import ChunkOffsetFilter
from gcs_resumable_upload.exceptions import ContentMismatch, UploadAborted
from gcs_resumable_upload.models import UploadResult

logger = logging.getLogger(__name__)


class ChunkBuffer:
    """Byte-bounded queue between the producer and the request body.

    Chunks written by the producer wait in ``pending`` until a request body
    draws them; ``put`` blocks while ``limit`` bytes are pending, so nothing
    is drained from the producer before a request is established, and nothing
    is dropped. Drawn chunks are retained for replay by a re-issued request,
    until the server confirms an offset past them or they fall out of a
    replay window of ``limit`` bytes. Memory held is therefore bounded by
    about twice ``limit`` plus one chunk.
    """

    def __init__(self, limit: int) -> None:
        """Initialize the buffer.

        Args:
            limit: Pending byte count at which ``put`` starts waiting; also
                the size of the replay window.
        """
        if limit <= 0:
            raise ValueError(f"limit must be a positive integer, got {limit}")
        self._limit = limit
        self._pending: deque[bytes] = deque()
        self._pending_bytes = 0
        self._retained: deque[bytes] = deque()
        self._retained_bytes = 0
        self._retained_base = 0
        self._closed = False
        self._cleared = False
        self._cond = asyncio.Condition()

    @property
    def pending_bytes(self) -> int:
        """Bytes written by the producer and not yet drawn by a request."""
        return self._pending_bytes

    @property
    def retained_bytes(self) -> int:
        """Bytes drawn by a request and kept for replay."""
        return self._retained_bytes

    @property
    def closed(self) -> bool:
        """Whether the producer signalled end of input."""
        return self._closed

    async def put(self, chunk: bytes) -> None:
        """Queue a chunk, waiting while the buffer is full.

        Raises:
            UploadAborted: If the buffer was cleared.
            RuntimeError: If the buffer was already closed.
        """
        async with self._cond:
            await self._cond.wait_for(
                lambda: self._pending_bytes < self._limit or self._cleared
            )
            if self._cleared:
                raise UploadAborted("Upload aborted")
            if self._closed:
                raise RuntimeError("Cannot write after end of input")
            self._pending.append(bytes(chunk))
            self._pending_bytes += len(chunk)
            self._cond.notify_all()

    async def close(self) -> None:
        """Mark end of input; readers finish once pending chunks are drawn."""
        async with self._cond:
            self._closed = True
            self._cond.notify_all()

    def rewind(self) -> int:
        """Return the input position a new reader starts replaying from."""
        return self._retained_base

    def _drop_oldest(self) -> None:
        chunk = self._retained.popleft()
        self._retained_bytes -= len(chunk)
        self._retained_base += len(chunk)

    def _retain(self, chunk: bytes) -> None:
        self._retained.append(chunk)
        self._retained_bytes += len(chunk)
        while self._retained_bytes > self._limit and len(self._retained) > 1:
            self._drop_oldest()

    def release_below(self, offset: int) -> None:
        """Drop retained chunks lying entirely below a confirmed offset."""
        while self._retained:
            if self._retained_base + len(self._retained[0]) > offset:
                break
            self._drop_oldest()

    async def clear(self) -> None:
        """Release every buffered chunk and wake all waiters."""
        async with self._cond:
            self._cleared = True
            self._pending.clear()
            self._pending_bytes = 0
            self._retained.clear()
            self._retained_bytes = 0
            self._cond.notify_all()

    async def replay(self) -> AsyncIterator[bytes]:
        """Yield retained chunks, then draw and retain pending ones.

        Ends after the last chunk once the buffer is closed.

        Raises:
            UploadAborted: If the buffer is cleared while reading.
        """
        for chunk in list(self._retained):
            if self._cleared:
                raise UploadAborted("Upload aborted")
            yield chunk
        while True:
            async with self._cond:
                await self._cond.wait_for(
                    lambda: self._pending or self._closed or self._cleared
                )
                if self._cleared:
                    raise UploadAborted("Upload aborted")
                if not self._pending:
                    return
                chunk = self._pending.popleft()
                self._pending_bytes -= len(chunk)
                self._retain(chunk)
                self._cond.notify_all()
            yield chunk


class CompletionGate:
    """One-shot signal the consumer's end of stream waits on."""

    def __init__(self) -> None:
        """Create the gate on the running loop."""
        self._future: asyncio.Future[UploadResult] = (
            asyncio.get_running_loop().create_future()
        )

    @property
    def done(self) -> bool:
        """Whether the gate was opened or failed."""
        return self._future.done()

    def open(self, result: UploadResult) -> None:
        """Release waiters with the upload result."""
        if not self._future.done():
            self._future.set_result(result)

    def fail(self, error: BaseException) -> None:
        """Convert the pending end of stream into ``error``."""
        if self._future.done():
            return
        self._future.set_exception(error)
        # the consumer may never wait on the gate
        self._future.exception()

    async def wait(self) -> UploadResult:
        """Wait for the upload outcome; raises the terminal error on failure."""
        return await asyncio.shield(self._future)


async def filtered_body(
    buffer: ChunkBuffer,
    chunk_filter: ChunkOffsetFilter,
    mismatch: asyncio.Event,
    on_forward: Callable[[int, bytes], None] | None = None,
) -> AsyncIterator[bytes]:
    """Request body: buffered input passed through the offset filter.

    On content mismatch the body sets ``mismatch`` and stops producing. It
    stays open until the controller cancels the request, so the remote
    session never sees an end of body for content it does not own.

    Args:
        buffer: Producer-side buffer to draw from.
        chunk_filter: Filter trimming bytes the server already has.
        mismatch: Set when the fingerprint check fails.
        on_forward: Called with (chunk index, forwarded bytes) per slice sent.
    """
    chunk_index = 0
    async for chunk in buffer.replay():
        try:
            forwarded = await chunk_filter.filter(chunk)
        except ContentMismatch:
            mismatch.set()
            # held open until cancelled
            await asyncio.Event().wait()
            return
        if forwarded:
            if on_forward is not None:
                on_forward(chunk_index, forwarded)
            yield forwarded
        chunk_index += 1
