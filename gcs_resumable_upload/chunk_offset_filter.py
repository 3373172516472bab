"""Offset-aware filter between the logical input and the transmitted bytes."""

import logging

from gcs_resumable_upload.const import FINGERPRINT_SIZE
from gcs_resumable_upload.exceptions import ContentMismatch
from gcs_resumable_upload.models import ResumeRecord, UploadSession
from gcs_resumable_upload.state_management.session_store import SessionStore

logger = logging.getLogger(__name__)


class ChunkOffsetFilter:
    """Trims input the server already holds and verifies resumed content.

    Works on two counters of the session: ``bytes_written`` (input observed
    so far, forwarded or not) and ``offset`` (bytes the server confirmed).
    The first chunk seen while ``bytes_written`` is zero is fingerprinted
    against the resume record of the active session uri; ``verified_uri``
    names the session whose fingerprint has been stored or matched.
    """

    def __init__(
        self,
        session: UploadSession,
        store: SessionStore,
        fingerprint_size: int = FINGERPRINT_SIZE,
    ) -> None:
        """Initialize the filter.

        Args:
            session: Session whose counters the filter advances.
            store: Store holding the resume record of the session's target.
            fingerprint_size: Number of leading bytes compared on resume.
        """
        self._session = session
        self._store = store
        self._fingerprint_size = fingerprint_size
        self.verified_uri: str | None = None

    async def _check_fingerprint(self, chunk: bytes) -> None:
        """Store or compare the fingerprint of the first chunk.

        Raises:
            ContentMismatch: If a different fingerprint is already stored.
        """
        session = self._session
        key = session.target.store_key
        fingerprint = bytes(chunk[: self._fingerprint_size])
        record = await self._store.get(key)

        if record is None or record.uri != session.uri or record.first_chunk is None:
            # first attempt for this session uri
            await self._store.set(
                key, ResumeRecord(uri=session.uri, first_chunk=fingerprint)
            )
            logger.debug("Stored first chunk fingerprint for %s", key)
            self.verified_uri = session.uri
            return

        if record.first_chunk != fingerprint:
            logger.info(
                "Content of %s differs from session %s; starting a new upload",
                key,
                session.uri,
            )
            raise ContentMismatch(key)
        self.verified_uri = session.uri

    async def filter(self, chunk: bytes) -> bytes | None:
        """Return the part of ``chunk`` to transmit.

        Args:
            chunk: Next chunk of the logical input.

        Returns:
            The bytes past the confirmed offset, or None if the whole chunk
            lies below it.

        Raises:
            ContentMismatch: If resumed content differs from the session's.
        """
        if not chunk:
            return None
        session = self._session
        if session.bytes_written == 0:
            await self._check_fingerprint(chunk)

        written = session.bytes_written
        offset = session.offset
        length = len(chunk)
        session.bytes_written = written + length

        if written + length <= offset:
            return None
        if written < offset:
            return bytes(chunk[offset - written :])
        return chunk
