"""SQLite-backed resume record store."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import delete, select, text
from sqlalchemy.dialects.sqlite import insert
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from gcs_resumable_upload.models import ResumeRecord

from .session_store import SessionStore
from .tables import metadata, resume_records

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SqliteSessionStore(SessionStore):
    """SQLite SessionStore; the only state shared across process lifetimes."""

    def __init__(self, db_path: Path) -> None:
        """Initialize the SQLite engine.

        The schema is created on first use, or eagerly through
        :meth:`init_async_store`.
        """
        db_path = Path(db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)

        self._engine: AsyncEngine = create_async_engine(
            f"sqlite+aiosqlite:///{db_path}",
            future=True,
        )
        self._initialized = False
        self._init_lock = asyncio.Lock()

    async def init_async_store(self) -> None:
        """Apply pragmas and ensure schema."""
        async with self._init_lock:
            if self._initialized:
                return
            await self._apply_pragmas()
            await self._ensure_schema()
            self._initialized = True

    async def _apply_pragmas(self) -> None:
        """Use WAL journaling so concurrent readers never block the writer."""
        async with self._engine.begin() as conn:
            await conn.execute(text("PRAGMA journal_mode=WAL;"))
            await conn.execute(text("PRAGMA synchronous=NORMAL;"))

    async def _ensure_schema(self) -> None:
        """Create the resume_records table if it does not already exist."""
        async with self._engine.begin() as conn:
            await conn.run_sync(metadata.create_all)

    async def get(self, key: str) -> ResumeRecord | None:
        """Return the resume record for a target.

        Args:
            key (str): Stable identifier of the upload target.

        Returns:
            ResumeRecord | None: The record if it exists, otherwise None.
        """
        await self.init_async_store()
        async with self._engine.begin() as conn:
            row = (
                (
                    await conn.execute(
                        select(resume_records).where(
                            resume_records.c.store_key == key
                        )
                    )
                )
                .mappings()
                .one_or_none()
            )
        if row is None:
            return None
        return ResumeRecord(uri=row["uri"], first_chunk=row["first_chunk"])

    async def set(self, key: str, record: ResumeRecord) -> None:
        """Insert or replace the resume record for a target.

        Args:
            key (str): Stable identifier of the upload target.
            record (ResumeRecord): Session uri and optional fingerprint.
        """
        await self.init_async_store()
        now = _utc_now()
        stmt = insert(resume_records).values(
            store_key=key,
            uri=record.uri,
            first_chunk=record.first_chunk,
            last_updated=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[resume_records.c.store_key],
            set_={
                "uri": stmt.excluded.uri,
                "first_chunk": stmt.excluded.first_chunk,
                "last_updated": now,
            },
        )
        async with self._engine.begin() as conn:
            await conn.execute(stmt)
        logger.debug("Stored resume record for %s", key)

    async def delete(self, key: str) -> None:
        """Delete the resume record for a target.

        Args:
            key (str): Stable identifier of the upload target.
        """
        await self.init_async_store()
        async with self._engine.begin() as conn:
            await conn.execute(
                delete(resume_records).where(resume_records.c.store_key == key)
            )
        logger.debug("Deleted resume record for %s", key)

    async def close(self) -> None:
        """Dispose of the engine and its connection pool."""
        await self._engine.dispose()
