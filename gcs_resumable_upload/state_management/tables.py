"""SQLAlchemy table definitions for resume records."""

from __future__ import annotations

from sqlalchemy import Column, DateTime, LargeBinary, MetaData, Table, Text, func

metadata = MetaData()

resume_records = Table(
    "resume_records",
    metadata,
    Column("store_key", Text, primary_key=True),
    Column("uri", Text, nullable=False),
    Column("first_chunk", LargeBinary, nullable=True, default=None),
    Column(
        "created_at",
        DateTime(timezone=False),
        nullable=False,
        server_default=func.now(),
    ),
    Column(
        "last_updated",
        DateTime(timezone=False),
        nullable=False,
        server_default=func.now(),
    ),
)
