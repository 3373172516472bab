"""Resumable chunked uploads to GCS-style object storage."""

from gcs_resumable_upload.auth_management import (
    Authorizer,
    HeaderAuthorizer,
    NoAuthAuthorizer,
    bearer_token,
)
from gcs_resumable_upload.config_manager import ConfigManager, UploadConfig
from gcs_resumable_upload.event_emitter import UploadEmitter
from gcs_resumable_upload.exceptions import (
    AuthorizationError,
    ConfigurationError,
    ProtocolError,
    RetryLimitExceeded,
    SessionError,
    TransportError,
    UploadAborted,
    UploadError,
    UploadFailed,
)
from gcs_resumable_upload.models import (
    Operation,
    ResumeRecord,
    SessionState,
    UploadResponse,
    UploadResult,
    UploadTarget,
)
from gcs_resumable_upload.state_management import (
    MemorySessionStore,
    SessionStore,
    SqliteSessionStore,
)
from gcs_resumable_upload.transport import AiohttpTransport
from gcs_resumable_upload.upload import Upload, create_uri, upload_file

__version__ = "0.1.0"

__all__ = [
    "AiohttpTransport",
    "AuthorizationError",
    "Authorizer",
    "ConfigManager",
    "ConfigurationError",
    "HeaderAuthorizer",
    "MemorySessionStore",
    "NoAuthAuthorizer",
    "Operation",
    "ProtocolError",
    "ResumeRecord",
    "RetryLimitExceeded",
    "SessionError",
    "SessionState",
    "SessionStore",
    "SqliteSessionStore",
    "TransportError",
    "Upload",
    "UploadAborted",
    "UploadConfig",
    "UploadEmitter",
    "UploadError",
    "UploadFailed",
    "UploadResponse",
    "UploadResult",
    "UploadTarget",
    "bearer_token",
    "create_uri",
    "upload_file",
]
