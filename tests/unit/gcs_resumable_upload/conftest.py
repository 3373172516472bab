"""Fixtures for the resumable upload tests."""

from __future__ import annotations

import pytest

from gcs_resumable_upload.config_manager.upload_config import UploadConfig
from gcs_resumable_upload.models import UploadTarget
from gcs_resumable_upload.state_management.session_store_memory import (
    MemorySessionStore,
)

from fake_server import BASE_URI, FakeResumableServer


@pytest.fixture
def server() -> FakeResumableServer:
    return FakeResumableServer()


@pytest.fixture
def store() -> MemorySessionStore:
    return MemorySessionStore()


@pytest.fixture
def config() -> UploadConfig:
    return UploadConfig(base_uri=BASE_URI, buffer_limit=1024 * 1024)


@pytest.fixture
def target() -> UploadTarget:
    return UploadTarget(
        bucket="bucket",
        object_key="dir/object.bin",
        metadata={"contentType": "application/octet-stream"},
    )


@pytest.fixture
def payload() -> bytes:
    return bytes(range(256)) * 40  # 10 KiB
