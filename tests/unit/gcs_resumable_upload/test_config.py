from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from gcs_resumable_upload.config_manager.config import ConfigManager
from gcs_resumable_upload.config_manager.helpers import parse_bytes
from gcs_resumable_upload.config_manager.profiles import (
    ProfileAlreadyExist,
    ProfileManager,
    ProfileNotFound,
)
from gcs_resumable_upload.config_manager.upload_config import UploadConfig
from gcs_resumable_upload.const import BASE_URI, RETRY_LIMIT


@pytest.fixture
def config_dir(tmp_path: Path) -> Path:
    """Provide an isolated configuration directory."""
    return tmp_path / ".gcs_resumable_upload"


@pytest.fixture
def profile_manager(config_dir: Path) -> ProfileManager:
    return ProfileManager(config_dir=config_dir)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "GRU_BASE_URI",
        "GRU_RETRY_LIMIT",
        "GRU_BUFFER_LIMIT",
        "GRU_CHUNK_SIZE",
        "GRU_REQUEST_TIMEOUT",
        "GRU_STATE_DB_PATH",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.mark.parametrize(
    "value, expected",
    [
        (1024, 1024),
        ("2048", 2048),
        ("8mb", 8 * 1024**2),
        ("256 KiB", 256 * 1024),
        ("1G", 1024**3),
        ("10b", 10),
    ],
)
def test_parse_bytes(value, expected) -> None:
    assert parse_bytes(value) == expected


@pytest.mark.parametrize("value", ["", "mb", "12xb", "1.5mb", "-4k"])
def test_parse_bytes_rejects_invalid_values(value: str) -> None:
    with pytest.raises(ValueError):
        parse_bytes(value)


def test_upload_config_defaults() -> None:
    config = UploadConfig()

    assert config.base_uri == BASE_URI
    assert config.retry_limit == RETRY_LIMIT == 5
    assert config.buffer_limit == 8 * 1024 * 1024
    assert config.state_db_path is None


def test_upload_config_parses_byte_strings() -> None:
    config = UploadConfig(buffer_limit="1mb", chunk_size="64k")

    assert config.buffer_limit == 1024 * 1024
    assert config.chunk_size == 64 * 1024


@pytest.mark.parametrize("field", ["retry_limit", "buffer_limit", "chunk_size"])
def test_upload_config_rejects_non_positive_values(field: str) -> None:
    with pytest.raises(ValidationError):
        UploadConfig(**{field: 0})


def test_create_profile_writes_defaults(
    profile_manager: ProfileManager, config_dir: Path
) -> None:
    profile_manager.create_profile("default")

    profile_path = config_dir / "profiles" / "default.yaml"
    with profile_path.open("r") as profile_file:
        stored = yaml.safe_load(profile_file)
    assert stored == UploadConfig().model_dump()
    assert profile_manager.list_profiles() == ["default"]


def test_create_profile_with_values(profile_manager: ProfileManager) -> None:
    profile_manager.create_profile("fast", {"buffer_limit": "32mb", "retry_limit": 3})

    config = profile_manager.get_profile("fast")
    assert config.buffer_limit == 32 * 1024 * 1024
    assert config.retry_limit == 3


def test_create_profile_raises_when_profile_exists(
    profile_manager: ProfileManager,
) -> None:
    profile_manager.create_profile("existing")

    with pytest.raises(ProfileAlreadyExist):
        profile_manager.create_profile("existing")


def test_get_missing_profile_raises(profile_manager: ProfileManager) -> None:
    with pytest.raises(ProfileNotFound):
        profile_manager.get_profile("missing")


def test_get_profile_none_returns_defaults(profile_manager: ProfileManager) -> None:
    assert profile_manager.get_profile(None) == UploadConfig()
    assert profile_manager.list_profiles() == []


def test_update_profile_ignores_none_values(profile_manager: ProfileManager) -> None:
    profile_manager.create_profile("edit", {"retry_limit": 7})

    updated = profile_manager.update_profile(
        "edit", {"retry_limit": None, "request_timeout": 12.5}
    )

    assert updated.retry_limit == 7
    assert updated.request_timeout == 12.5
    assert profile_manager.get_profile("edit") == updated


def test_update_missing_profile_raises(profile_manager: ProfileManager) -> None:
    with pytest.raises(ProfileNotFound):
        profile_manager.update_profile("missing", {"retry_limit": 2})


def test_resolve_uses_profile_then_env_then_overrides(
    profile_manager: ProfileManager, monkeypatch: pytest.MonkeyPatch
) -> None:
    profile_manager.create_profile(
        "ci", {"retry_limit": 3, "buffer_limit": "1mb", "chunk_size": "16k"}
    )
    monkeypatch.setenv("GRU_BUFFER_LIMIT", "2mb")
    monkeypatch.setenv("GRU_CHUNK_SIZE", "32k")
    manager = ConfigManager(profile_manager=profile_manager, profile="ci")

    config = manager.resolve_effective_config({"chunk_size": 4096, "base_uri": None})

    assert config.retry_limit == 3
    assert config.buffer_limit == 2 * 1024 * 1024
    assert config.chunk_size == 4096
    assert config.base_uri == BASE_URI


def test_resolve_ignores_invalid_env_values(
    profile_manager: ProfileManager,
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    monkeypatch.setenv("GRU_RETRY_LIMIT", "not-a-number")
    monkeypatch.setenv("GRU_STATE_DB_PATH", "/tmp/resume.db")
    manager = ConfigManager(profile_manager=profile_manager)

    with caplog.at_level("WARNING"):
        config = manager.resolve_effective_config()

    assert config.retry_limit == RETRY_LIMIT
    assert config.state_db_path == "/tmp/resume.db"
    assert "GRU_RETRY_LIMIT" in caplog.text


def test_resolve_missing_profile_raises(profile_manager: ProfileManager) -> None:
    manager = ConfigManager(profile_manager=profile_manager, profile="nope")

    with pytest.raises(ProfileNotFound):
        manager.resolve_effective_config()
