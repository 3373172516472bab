"""State machine driving one resumable upload session.

The controller owns the :class:`UploadSession`, issues the three wire
operations (initiate, offset query, chunk upload) one at a time, and decides
every transition from the RetryClassifier's verdict on each response::

    NEW -> INITIATING -> {OFFSET_QUERY -> RESUMING} -> UPLOADING
        -> {COMPLETED | RESTARTING -> INITIATING | FAILED}

A session only ever has one request outstanding. Backoff waits happen inside
the controller's own task, so at most one timer is pending per session.
"""

import asyncio
import logging
import random
from collections.abc import Callable

from gcs_resumable_upload.auth_management.authorizer import Authorizer
from gcs_resumable_upload.chunk_offset_filter import ChunkOffsetFilter
from gcs_resumable_upload.config_manager.upload_config import UploadConfig
from gcs_resumable_upload.const import RESUMABLE_INCOMPLETE_STATUS_CODE
from gcs_resumable_upload.event_emitter import UploadEmitter
from gcs_resumable_upload.exceptions import (
    AuthorizationError,
    ProtocolError,
    RetryLimitExceeded,
    SessionError,
    TransportError,
    UploadAborted,
    UploadError,
    UploadFailed,
)
from gcs_resumable_upload.models import (
    Operation,
    RequestDescriptor,
    ResumeRecord,
    SessionState,
    TransportResponse,
    UploadResponse,
    UploadResult,
    UploadSession,
    UploadTarget,
)
from gcs_resumable_upload.pipeline import ChunkBuffer, CompletionGate, filtered_body
from gcs_resumable_upload.retry_classifier import (
    RETRY_LIMIT_MESSAGE,
    RetryAction,
    RetryDecision,
    backoff_delay,
    classify,
)
from gcs_resumable_upload.sampled_logger import make_sampled_logger
from gcs_resumable_upload.state_management.session_store import SessionStore
from gcs_resumable_upload.transport.transport import StreamingRequest, Transport

logger = logging.getLogger(__name__)

_log_forwarded_chunk = make_sampled_logger(
    "Forwarded chunk %d to %s: %d bytes (written=%d offset=%d)",
    target_logger=logger,
)


def _upper_bound_from_range(range_header: str) -> int:
    """Parse the last byte index out of a ``bytes=0-N`` Range header."""
    try:
        return int(range_header.split("-")[1])
    except (IndexError, ValueError) as exc:
        raise ProtocolError(
            f"Malformed Range header: {range_header!r}",
            RESUMABLE_INCOMPLETE_STATUS_CODE,
        ) from exc


class SessionController:
    """Drives an upload session from NEW to a terminal state.

    The consumer-facing completion gate is only opened by the chunk-upload
    response handler; every fatal condition fails it exactly once.
    """

    def __init__(
        self,
        target: UploadTarget,
        buffer: ChunkBuffer,
        *,
        transport: Transport,
        authorizer: Authorizer,
        store: SessionStore,
        config: UploadConfig,
        emitter: UploadEmitter,
        gate: CompletionGate,
        uri: str | None = None,
        rand: Callable[[], float] = random.random,
    ) -> None:
        """Initialize the controller.

        Args:
            target: Object being uploaded.
            buffer: Producer-side buffer feeding the request body.
            transport: HTTP transport for the wire operations.
            authorizer: Authorizes each request before it is sent.
            store: Persistence for the resume record of ``target``.
            config: Upload configuration.
            emitter: Receives consumer notifications.
            gate: Completion gate the consumer's end of stream waits on.
            uri: Existing session uri to resume instead of the stored one.
            rand: Jitter source for backoff delays.
        """
        self.session = UploadSession(target=target, uri=uri)
        self._buffer = buffer
        self._transport = transport
        self._authorizer = authorizer
        self._store = store
        self._config = config
        self._emitter = emitter
        self._gate = gate
        self._rand = rand
        self._filter = ChunkOffsetFilter(self.session, store)
        self._stream: StreamingRequest | None = None
        self._previous_uri: str | None = None
        self._result: UploadResult | None = None

    @property
    def _key(self) -> str:
        return self.session.target.store_key

    async def run(self) -> UploadResult:
        """Drive the session to a terminal state.

        Returns:
            The upload result on success.

        Raises:
            UploadError: The single terminal error of the session.
        """
        session = self.session
        try:
            if session.uri is None:
                record = await self._store.get(self._key)
                if record is not None:
                    logger.info("Resuming %s with stored session uri", self._key)
                    session.uri = record.uri

            state = (
                SessionState.OFFSET_QUERY if session.uri else SessionState.INITIATING
            )
            while state != SessionState.COMPLETED:
                session.transition(state)
                state = await self._step(state)
        except asyncio.CancelledError:
            await self._cancel_stream()
            session.transition(SessionState.ABORTED)
            self._gate.fail(UploadAborted("Upload aborted"))
            raise
        except UploadError as exc:
            await self._cancel_stream()
            self._fail(exc)
            raise
        except Exception as exc:
            await self._cancel_stream()
            error = SessionError(f"Upload of {self._key} failed: {exc!r}")
            error.__cause__ = exc
            self._fail(error)
            raise error from exc

        result = self._result
        assert result is not None
        session.transition(SessionState.COMPLETED)
        self._buffer.release_below(session.bytes_written)
        logger.info(
            "Upload of %s complete: %d bytes", self._key, result.bytes_written
        )
        self._gate.open(result)
        self._emitter.emit(UploadEmitter.COMPLETE, result)
        return result

    async def _step(self, state: SessionState) -> SessionState:
        if state == SessionState.INITIATING:
            return await self._initiate()
        if state == SessionState.OFFSET_QUERY:
            return await self._query_offset()
        if state in (SessionState.RESUMING, SessionState.UPLOADING):
            return await self._upload()
        if state == SessionState.RESTARTING:
            return await self._restart()
        raise RuntimeError(f"No step for state {state}")

    def _fail(self, error: UploadError) -> None:
        self.session.transition(SessionState.FAILED)
        logger.error("Upload of %s failed: %s", self._key, error)
        self._gate.fail(error)
        self._emitter.emit(UploadEmitter.ERROR, error)

    async def create_uri(self) -> str:
        """Initiate a session and return its uri without uploading data.

        The new uri is persisted, so a later upload of the same target
        resumes it.
        """
        state = SessionState.INITIATING
        while state == SessionState.INITIATING:
            self.session.transition(state)
            state = await self._initiate()
        assert self.session.uri is not None
        return self.session.uri

    async def _authorize(self, request: RequestDescriptor) -> RequestDescriptor:
        try:
            return await self._authorizer.authorize(request)
        except AuthorizationError:
            raise
        except Exception as exc:
            raise AuthorizationError(f"Failed to authorize request: {exc}") from exc

    def _notify(
        self, operation: Operation, response: TransportResponse
    ) -> UploadResponse:
        notification = UploadResponse.from_transport(operation, response)
        self._emitter.emit(UploadEmitter.RESPONSE, notification)
        return notification

    async def _send(
        self, operation: Operation, request: RequestDescriptor
    ) -> TransportResponse:
        authorized = await self._authorize(request)
        logger.info("%s %s (%s)", request.method, request.uri, operation.value)
        response = await self._transport.request(authorized)
        logger.info(
            "%s response: status=%d target=%s",
            operation.value,
            response.status,
            self._key,
        )
        self._notify(operation, response)
        return response

    async def _after_retryable(
        self, decision: RetryDecision, status: int
    ) -> SessionState:
        """Consume one retry and pick the state to continue from.

        Retry-immediate continues uploading at the current offset; backoff
        waits, then re-confirms the offset since time has passed. Without a
        session uri both re-initiate.
        """
        session = self.session
        delay = 0.0
        if decision.action == RetryAction.RETRY_BACKOFF:
            delay = backoff_delay(session.retry_count, self._rand)
        session.retry_count += 1
        logger.warning(
            "HTTP %d for %s, retry %d/%d in %.3fs",
            status,
            self._key,
            session.retry_count,
            self._config.retry_limit,
            delay,
        )
        self._emitter.emit(UploadEmitter.RETRY, status, session.retry_count, delay)

        if decision.action == RetryAction.RETRY_IMMEDIATE:
            if session.uri is None:
                return SessionState.INITIATING
            if session.offset < self._buffer.rewind():
                # input below the buffer's base is gone; ask the server instead
                logger.info(
                    "Replay of %s starts past offset %d, querying the server",
                    self._key,
                    session.offset,
                )
                return SessionState.OFFSET_QUERY
            return SessionState.UPLOADING

        await asyncio.sleep(delay)
        if session.uri is None:
            return SessionState.INITIATING
        return SessionState.OFFSET_QUERY

    def _classify(
        self, response: TransportResponse, operation: Operation
    ) -> RetryDecision:
        decision = classify(
            response.status,
            self.session.retry_count,
            operation,
            retry_limit=self._config.retry_limit,
        )
        if decision.action == RetryAction.FATAL:
            if decision.message == RETRY_LIMIT_MESSAGE:
                raise RetryLimitExceeded(decision.message, response.status)
            raise UploadFailed(decision.message or "Upload failed", response.status)
        return decision

    def _initiate_request(self) -> RequestDescriptor:
        target = self.session.target
        query = {"name": target.object_key, "uploadType": "resumable"}
        if target.generation is not None:
            query["ifGenerationMatch"] = str(target.generation)
        if target.predefined_acl:
            query["predefinedAcl"] = target.predefined_acl
        if target.user_project:
            query["userProject"] = target.user_project
        if target.kms_key_name:
            query["kmsKeyName"] = target.kms_key_name

        headers: dict[str, str] = {}
        if target.content_type:
            headers["X-Upload-Content-Type"] = target.content_type
        if target.origin:
            headers["Origin"] = target.origin

        return RequestDescriptor(
            method="POST",
            uri=f"{self._config.base_uri.rstrip('/')}/b/{target.bucket}/o",
            query=query,
            headers=headers,
            json_body=dict(target.metadata),
        )

    async def _initiate(self) -> SessionState:
        """INITIATING: open a brand-new resumable session."""
        response = await self._send(Operation.INITIATE, self._initiate_request())
        decision = self._classify(response, Operation.INITIATE)
        if decision.is_retry:
            return await self._after_retryable(decision, response.status)

        uri = response.headers.get("Location")
        if not uri:
            raise ProtocolError(
                f"Initiation returned no session uri (HTTP {response.status})",
                response.status,
            )

        session = self.session
        session.uri = uri
        await self._store.set(self._key, ResumeRecord(uri=uri))
        session.reset_progress()
        logger.info("Created upload session for %s", self._key)
        return SessionState.UPLOADING

    async def _query_offset(self) -> SessionState:
        """OFFSET_QUERY: ask the server how many bytes it holds."""
        session = self.session
        assert session.uri is not None
        request = RequestDescriptor(
            method="PUT",
            uri=session.uri,
            headers={"Content-Length": "0", "Content-Range": "bytes */*"},
        )
        response = await self._send(Operation.OFFSET_QUERY, request)
        decision = self._classify(response, Operation.OFFSET_QUERY)
        if decision.is_retry:
            return await self._after_retryable(decision, response.status)

        offset = 0
        range_header = response.headers.get("Range")
        if response.status == RESUMABLE_INCOMPLETE_STATUS_CODE and range_header:
            offset = _upper_bound_from_range(range_header) + 1

        replay_from = self._buffer.rewind()
        if offset < replay_from:
            raise ProtocolError(
                f"Server offset {offset} is behind released input at {replay_from}",
                response.status,
            )
        session.confirm_offset(offset)
        # the first chunk must stay replayable until its fingerprint is checked
        if self._filter.verified_uri == session.uri:
            self._buffer.release_below(offset)
        logger.info("Server holds %d bytes of %s", offset, self._key)
        return SessionState.RESUMING

    def _on_forward(self, chunk_index: int, forwarded: bytes) -> None:
        session = self.session
        _log_forwarded_chunk(
            session.uri or "",
            chunk_index,
            len(forwarded),
            session.bytes_written,
            session.offset,
        )
        self._emitter.emit(
            UploadEmitter.PROGRESS, session.bytes_written, session.offset
        )

    async def _cancel_stream(self) -> None:
        stream, self._stream = self._stream, None
        if stream is not None:
            await stream.cancel()

    async def _upload(self) -> SessionState:
        """UPLOADING: stream the filtered input in a single PUT."""
        session = self.session
        assert session.uri is not None
        session.transition(SessionState.UPLOADING)
        session.bytes_written = self._buffer.rewind()

        request = RequestDescriptor(
            method="PUT",
            uri=session.uri,
            headers={"Content-Range": f"bytes {session.offset}-*/*"},
        )
        authorized = await self._authorize(request)
        logger.info(
            "PUT %s (%s) from offset %d",
            request.uri,
            Operation.CHUNK_UPLOAD.value,
            session.offset,
        )

        mismatch = asyncio.Event()
        body = filtered_body(self._buffer, self._filter, mismatch, self._on_forward)
        stream = self._transport.open_stream(authorized, body)
        self._stream = stream
        stream.headers_received.add_done_callback(self._log_response_head)

        mismatch_waiter = asyncio.ensure_future(mismatch.wait())
        try:
            await asyncio.wait(
                {stream.completed, mismatch_waiter},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            mismatch_waiter.cancel()

        if mismatch.is_set():
            await self._cancel_stream()
            self._previous_uri = session.uri
            return SessionState.RESTARTING

        self._stream = None
        try:
            response = stream.completed.result()
        except UploadError:
            raise
        except Exception as exc:
            raise TransportError(f"Chunk upload failed: {exc}") from exc

        notification = self._notify(Operation.CHUNK_UPLOAD, response)
        decision = self._classify(response, Operation.CHUNK_UPLOAD)
        if decision.is_retry:
            return await self._after_retryable(decision, response.status)

        await self._store.delete(self._key)
        self._result = UploadResult(
            bytes_written=session.bytes_written,
            uri=session.uri,
            response=notification,
        )
        return SessionState.COMPLETED

    def _log_response_head(self, future: asyncio.Future) -> None:
        if future.cancelled():
            return
        status, _ = future.result()
        logger.debug("Chunk upload response head: status=%d", status)

    async def _restart(self) -> SessionState:
        """RESTARTING: drop the old session; its content differs from ours."""
        previous_uri, self._previous_uri = self._previous_uri, None
        await self._store.delete(self._key)
        self.session.reset_progress()
        logger.info("Restarting upload of %s with a new session", self._key)
        self._emitter.emit(UploadEmitter.RESTART, previous_uri)
        return SessionState.INITIATING
