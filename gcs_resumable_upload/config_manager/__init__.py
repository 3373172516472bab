from .config import ConfigManager
from .helpers import parse_bytes
from .profiles import ProfileAlreadyExist, ProfileManager, ProfileNotFound
from .upload_config import UploadConfig

__all__ = [
    "ConfigManager",
    "ProfileAlreadyExist",
    "ProfileManager",
    "ProfileNotFound",
    "UploadConfig",
    "parse_bytes",
]
