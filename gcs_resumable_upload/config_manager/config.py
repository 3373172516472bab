"""Resolve upload configuration from profile, environment, and overrides."""

from __future__ import annotations

import logging
import os
from typing import Any

from gcs_resumable_upload.config_manager.profiles import ProfileManager
from gcs_resumable_upload.config_manager.upload_config import UploadConfig

logger = logging.getLogger(__name__)

_ENV_MAP: dict[str, str] = {
    "base_uri": "GRU_BASE_URI",
    "retry_limit": "GRU_RETRY_LIMIT",
    "buffer_limit": "GRU_BUFFER_LIMIT",
    "chunk_size": "GRU_CHUNK_SIZE",
    "request_timeout": "GRU_REQUEST_TIMEOUT",
    "state_db_path": "GRU_STATE_DB_PATH",
}


class ConfigManager:
    """Build effective upload configuration from profile, env, and overrides."""

    def __init__(
        self,
        profile_manager: ProfileManager | None = None,
        profile: str | None = None,
    ) -> None:
        """Initialise ConfigManager.

        Args:
            profile_manager: ProfileManager instance
            profile: Name of the profile to load as the base configuration.
        """
        self.profile_manager = profile_manager or ProfileManager()
        self.profile = profile

    def _read_env_overrides(self) -> dict[str, Any]:
        """Read configuration overrides from environment variables.

        Unparseable values are skipped with a warning so a stray variable
        never prevents an upload from starting.
        """
        overrides: dict[str, Any] = {}

        for field_name, env_var_name in _ENV_MAP.items():
            env_value = os.getenv(env_var_name)
            if env_value is None:
                continue
            try:
                UploadConfig(**{field_name: env_value})
            except ValueError:
                logger.warning("Ignoring invalid %s=%r", env_var_name, env_value)
                continue
            overrides[field_name] = env_value

        return overrides

    def resolve_effective_config(
        self, overrides: dict[str, Any] | None = None
    ) -> UploadConfig:
        """Resolve the effective configuration for this run.

        Args:
            overrides: Optional explicit overrides, applied last.

        Returns:
            The resolved ``UploadConfig``.
        """
        base_config = self.profile_manager.get_profile(self.profile)
        merged = {**base_config.model_dump(), **self._read_env_overrides()}
        if overrides is not None:
            merged.update(
                {name: value for name, value in overrides.items() if value is not None}
            )
        return UploadConfig(**merged)
