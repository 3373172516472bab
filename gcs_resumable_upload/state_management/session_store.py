"""Protocol for resume record persistence."""

from __future__ import annotations

from typing import Protocol

from gcs_resumable_upload.models import ResumeRecord


class SessionStore(Protocol):
    """Persistence interface for resume records.

    Keys are ``UploadTarget.store_key`` values. Only last-write-wins semantics
    are required; no operation needs to be transactional with another.
    """

    async def get(self, key: str) -> ResumeRecord | None:
        """Get the resume record for a target, or None when absent."""
        ...

    async def set(self, key: str, record: ResumeRecord) -> None:
        """Insert or replace the resume record for a target."""
        ...

    async def delete(self, key: str) -> None:
        """Delete the resume record for a target; missing keys are a no-op."""
        ...
