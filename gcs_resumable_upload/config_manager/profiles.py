"""Named upload configuration profiles stored as YAML."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from gcs_resumable_upload.config_manager.upload_config import UploadConfig
from gcs_resumable_upload.const import CONFIG_DIR, PROFILES_DIR_NAME


class ProfileNotFound(Exception):
    """Raised when a requested profile cannot be found on disk."""


class ProfileAlreadyExist(Exception):
    """Raised when attempting to create a profile that already exists."""


class ProfileManager:
    """Manage upload profiles stored on disk."""

    def __init__(self, config_dir: Path | None = None) -> None:
        """Initialise ProfileManager.

        Args:
            config_dir: Root configuration directory; profiles live in its
                ``profiles`` subdirectory.
        """
        self._config_dir = config_dir or CONFIG_DIR

    def _profiles_dir(self) -> Path:
        """Return the directory where profiles are stored."""
        return self._config_dir / PROFILES_DIR_NAME

    def _get_profile_path(self, profile: str) -> Path:
        """Return the filesystem path for a given profile name."""
        profiles_dir = self._profiles_dir()
        profiles_dir.mkdir(parents=True, exist_ok=True)
        return profiles_dir / f"{profile}.yaml"

    def list_profiles(self) -> list[str]:
        """List available profile names without the ``.yaml`` suffix."""
        profiles_dir = self._profiles_dir()
        if not profiles_dir.exists():
            return []
        return sorted(
            path.stem
            for path in profiles_dir.iterdir()
            if path.is_file() and path.suffix == ".yaml"
        )

    def get_profile(self, profile: str | None = None) -> UploadConfig:
        """Load a profile configuration from disk.

        Args:
            profile: Name of the profile to load; None returns the defaults.

        Returns:
            Parsed upload configuration for the profile.

        Raises:
            ProfileNotFound:
                If the profile YAML file does not exist.
        """
        if profile is None:
            return UploadConfig()

        profile_path = self._get_profile_path(profile)
        try:
            with profile_path.open("r") as profile_file:
                profile_data = yaml.safe_load(profile_file) or {}
        except FileNotFoundError as exc:
            raise ProfileNotFound(f"Profile {profile!r} not found.") from exc

        return UploadConfig(**profile_data)

    def create_profile(
        self, profile: str, values: dict[str, Any] | None = None
    ) -> None:
        """Create a new profile from default values and optional overrides.

        Raises:
            ProfileAlreadyExist:
                If a profile with the same name already exists.
        """
        profile_path = self._get_profile_path(profile)
        upload_config = UploadConfig(**(values or {}))

        try:
            with profile_path.open("x") as profile_file:
                yaml.safe_dump(upload_config.model_dump(), profile_file)
        except FileExistsError as exc:
            raise ProfileAlreadyExist(f"Profile {profile!r} already exists.") from exc

    def update_profile(self, profile: str, updates: dict[str, Any]) -> UploadConfig:
        """Update an existing profile with the provided field values.

        Fields with a value of ``None`` are ignored and do not overwrite
        existing values.

        Raises:
            ProfileNotFound:
                If the profile YAML file does not exist.
        """
        current = self.get_profile(profile)
        filtered_updates = {
            name: value for name, value in updates.items() if value is not None
        }
        new_config = UploadConfig(**{**current.model_dump(), **filtered_updates})

        with self._get_profile_path(profile).open("w") as profile_file:
            yaml.safe_dump(new_config.model_dump(), profile_file)

        return new_config
