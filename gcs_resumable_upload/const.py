"""Constants for the resumable upload engine."""

from pathlib import Path

BASE_URI = "https://www.googleapis.com/upload/storage/v1"

RESUMABLE_INCOMPLETE_STATUS_CODE = 308
NOT_FOUND_STATUS_CODE = 404
RETRY_LIMIT = 5

# bytes of the first chunk kept to recognise the same content on resume
FINGERPRINT_SIZE = 16

DEFAULT_BUFFER_LIMIT = 8 * 1024 * 1024  # (8mb)
DEFAULT_CHUNK_SIZE = 256 * 1024  # (256kb)
DEFAULT_REQUEST_TIMEOUT_SECS = 300.0

CONFIG_DIR = Path.home() / ".gcs_resumable_upload"
PROFILES_DIR_NAME = "profiles"
DEFAULT_STATE_DB_PATH = CONFIG_DIR / "resume_records.db"
