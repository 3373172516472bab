"""Pydantic model for resumable upload configuration."""

from typing import Any

from pydantic import BaseModel, field_validator

from gcs_resumable_upload.config_manager.helpers import parse_bytes
from gcs_resumable_upload.const import (
    BASE_URI,
    DEFAULT_BUFFER_LIMIT,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_REQUEST_TIMEOUT_SECS,
    RETRY_LIMIT,
)


class UploadConfig(BaseModel):
    """Configuration options for resumable uploads.

    Attributes:
        base_uri: root of the resumable upload surface, without ``/b/...``.
        retry_limit: size of the retry budget shared by 404 and 5xx retries.
        buffer_limit: pending input, in bytes, before writers wait.
        chunk_size: read size used when uploading files, in bytes.
        request_timeout: per-request timeout, in seconds.
        state_db_path: SQLite file for resume records; None keeps records in
            memory only.
    """

    base_uri: str = BASE_URI
    retry_limit: int = RETRY_LIMIT
    buffer_limit: int = DEFAULT_BUFFER_LIMIT
    chunk_size: int = DEFAULT_CHUNK_SIZE
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECS
    state_db_path: str | None = None

    @field_validator("buffer_limit", "chunk_size", mode="before")
    @classmethod
    def _parse_byte_sizes(cls, value: Any) -> Any:
        if isinstance(value, str):
            return parse_bytes(value)
        return value

    @field_validator("retry_limit", "buffer_limit", "chunk_size")
    @classmethod
    def _require_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError(f"must be a positive integer, got {value}")
        return value
