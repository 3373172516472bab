"""In-process resume record store."""

from __future__ import annotations

from gcs_resumable_upload.models import ResumeRecord

from .session_store import SessionStore


class MemorySessionStore(SessionStore):
    """Keeps resume records in a dict; nothing survives the process."""

    def __init__(self) -> None:
        """Initialize an empty store."""
        self._records: dict[str, ResumeRecord] = {}

    async def get(self, key: str) -> ResumeRecord | None:
        """Return the record stored under ``key``."""
        return self._records.get(key)

    async def set(self, key: str, record: ResumeRecord) -> None:
        """Store ``record`` under ``key``."""
        self._records[key] = record

    async def delete(self, key: str) -> None:
        """Remove the record under ``key`` if present."""
        self._records.pop(key, None)
