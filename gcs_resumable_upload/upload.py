"""Consumer-facing API for resumable uploads.

A typical streaming upload::

    async with Upload(UploadTarget("bucket", "path/to/object")) as upload:
        upload.on(UploadEmitter.PROGRESS, print)
        async for chunk in source:
            await upload.write(chunk)

Leaving the block without an exception waits for the upload to complete;
leaving it with one aborts the upload and keeps the resume record, so the same
target can be resumed later.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

import aiohttp

from gcs_resumable_upload.auth_management.authorizer import (
    Authorizer,
    NoAuthAuthorizer,
)
from gcs_resumable_upload.config_manager.config import ConfigManager
from gcs_resumable_upload.config_manager.upload_config import UploadConfig
from gcs_resumable_upload.event_emitter import UploadEmitter
from gcs_resumable_upload.exceptions import UploadAborted, UploadError
from gcs_resumable_upload.models import UploadResult, UploadTarget
from gcs_resumable_upload.pipeline import ChunkBuffer, CompletionGate
from gcs_resumable_upload.session_controller import SessionController
from gcs_resumable_upload.state_management.session_store import SessionStore
from gcs_resumable_upload.state_management.session_store_memory import (
    MemorySessionStore,
)
from gcs_resumable_upload.state_management.session_store_sqlite import (
    SqliteSessionStore,
)
from gcs_resumable_upload.transport.aiohttp_transport import AiohttpTransport
from gcs_resumable_upload.transport.transport import Transport

logger = logging.getLogger(__name__)


class Upload:
    """Writable sink for one object, backed by a resumable upload session.

    Must be created inside a running event loop. The session starts with the
    first ``write`` (or with ``end`` for an empty object). ``write`` waits
    while ``buffer_limit`` bytes are pending, so the producer never runs ahead
    of the network by more than that. Up to another ``buffer_limit`` bytes of
    sent input are kept for replay after a failed request.
    """

    def __init__(
        self,
        target: UploadTarget,
        *,
        transport: Transport | None = None,
        authorizer: Authorizer | None = None,
        store: SessionStore | None = None,
        config: UploadConfig | None = None,
        uri: str | None = None,
    ) -> None:
        """Initialize the upload.

        Args:
            target: Object to upload.
            transport: Transport to use; defaults to an aiohttp transport on
                a client session owned by this upload.
            authorizer: Request authorizer; defaults to no authorization.
            store: Resume record store; defaults to SQLite when the config
                names a ``state_db_path``, else an in-memory store.
            config: Upload configuration; defaults to the resolved
                configuration of the default profile.
            uri: Existing session uri to resume.
        """
        self.target = target
        self.config = config or ConfigManager().resolve_effective_config()
        self.emitter = UploadEmitter()
        self._transport = transport
        self._authorizer = authorizer or NoAuthAuthorizer()
        self._store = store
        self._uri = uri
        self._owned_client: aiohttp.ClientSession | None = None
        self._owned_store: SqliteSessionStore | None = None

        self._buffer = ChunkBuffer(self.config.buffer_limit)
        self._gate = CompletionGate()
        self._controller: SessionController | None = None
        self._task: asyncio.Task | None = None
        self._cleanup_task: asyncio.Task | None = None
        self._ended = False

    def on(self, event: str, handler: Callable[..., Any] | None = None) -> Any:
        """Register an event handler; usable as a decorator."""
        if handler is None:
            return self.emitter.on(event)
        return self.emitter.on(event, handler)

    @property
    def session_uri(self) -> str | None:
        """Uri of the current upload session, if one is held."""
        if self._controller is None:
            return self._uri
        return self._controller.session.uri

    def _resolve_dependencies(self) -> tuple[Transport, SessionStore]:
        if self._transport is None:
            self._owned_client = aiohttp.ClientSession()
            self._transport = AiohttpTransport(
                self._owned_client, timeout=self.config.request_timeout
            )
        if self._store is None:
            if self.config.state_db_path:
                self._owned_store = SqliteSessionStore(Path(self.config.state_db_path))
                self._store = self._owned_store
            else:
                self._store = MemorySessionStore()
        return self._transport, self._store

    def _build_controller(self) -> SessionController:
        transport, store = self._resolve_dependencies()
        return SessionController(
            self.target,
            self._buffer,
            transport=transport,
            authorizer=self._authorizer,
            store=store,
            config=self.config,
            emitter=self.emitter,
            gate=self._gate,
            uri=self._uri,
        )

    def _ensure_started(self) -> None:
        if self._task is not None or self._gate.done:
            return
        self._controller = self._build_controller()
        logger.info("Starting upload of %s", self.target.store_key)
        self._task = asyncio.create_task(self._controller.run())
        self._task.add_done_callback(self._on_session_done)

    def _on_session_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            self._gate.fail(UploadAborted("Upload aborted"))
        elif task.exception() is not None:
            # no-op when the controller already failed the gate
            self._gate.fail(task.exception())
        else:
            return
        # wake writers blocked on a full buffer
        self._cleanup_task = asyncio.ensure_future(self._buffer.clear())

    async def write(self, chunk: bytes) -> None:
        """Append ``chunk`` to the object.

        Raises:
            RuntimeError: If called after ``end``.
            UploadError: The terminal error, if the session already failed.
        """
        if self._ended:
            raise RuntimeError("Cannot write after end of input")
        self._ensure_started()
        try:
            await self._buffer.put(chunk)
        except UploadAborted:
            # surface the terminal error of the session, if it has one
            await self._gate.wait()
            raise

    async def end(self) -> UploadResult:
        """Signal end of input and wait until the server confirms the object.

        Returns:
            The result of the completed upload.

        Raises:
            UploadError: The terminal error of the session.
        """
        self._ended = True
        self._ensure_started()
        await self._buffer.close()
        try:
            return await self._gate.wait()
        finally:
            await self._finish()

    async def abort(self) -> None:
        """Stop the upload, leaving its resume record in place."""
        self._ended = True
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except UploadError as exc:
                logger.debug("Upload ended with %r while aborting", exc)
        self._gate.fail(UploadAborted("Upload aborted"))
        await self._buffer.clear()
        logger.info("Aborted upload of %s", self.target.store_key)
        await self._finish()

    async def _finish(self) -> None:
        if self._task is not None:
            await asyncio.wait({self._task})
        if self._cleanup_task is not None:
            await self._cleanup_task
        await self.close()

    async def close(self) -> None:
        """Release the client session and store owned by this upload."""
        client, self._owned_client = self._owned_client, None
        if client is not None:
            await client.close()
        store, self._owned_store = self._owned_store, None
        if store is not None:
            await store.close()

    async def __aenter__(self) -> "Upload":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            await self.abort()
            return
        if not self._ended:
            await self.end()


async def upload_file(
    path: str | Path,
    target: UploadTarget,
    **kwargs: Any,
) -> UploadResult:
    """Upload a local file, reading it in ``chunk_size`` pieces.

    Args:
        path: File to upload.
        target: Destination object.
        **kwargs: Passed through to :class:`Upload`.

    Returns:
        The result of the completed upload.
    """
    upload = Upload(target, **kwargs)
    chunk_size = upload.config.chunk_size
    logger.info("Uploading %s to %s", path, target.store_key)
    try:
        with open(path, "rb") as source:
            while True:
                chunk = source.read(chunk_size)
                if not chunk:
                    break
                await upload.write(chunk)
    except (Exception, asyncio.CancelledError):
        await upload.abort()
        raise
    return await upload.end()


async def create_uri(
    target: UploadTarget,
    *,
    transport: Transport | None = None,
    authorizer: Authorizer | None = None,
    store: SessionStore | None = None,
    config: UploadConfig | None = None,
) -> str:
    """Initiate a resumable session for ``target`` and return its uri.

    No data is sent. The uri is stored as the target's resume record, so a
    later :class:`Upload` of the same target continues this session.
    """
    upload = Upload(
        target,
        transport=transport,
        authorizer=authorizer,
        store=store,
        config=config,
    )
    try:
        return await upload._build_controller().create_uri()
    finally:
        await upload.close()
