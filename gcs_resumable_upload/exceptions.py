"""Exception classes for the resumable upload workflow."""


class UploadError(Exception):
    """Base error for a resumable upload session."""


class ConfigurationError(UploadError):
    """Raised when the upload target is missing required identity."""


class AuthorizationError(UploadError):
    """Raised when a request cannot be authorized."""


class TransportError(UploadError):
    """Raised on connection-level failures talking to the upload service."""


class ProtocolError(UploadError):
    """Raised when the upload service answers with an unusable status."""

    def __init__(self, message: str, status: int | None = None):
        """Initialize ProtocolError with the offending HTTP status.

        Args:
            message: Human readable description of the failure.
            status: HTTP status code of the response, if any.
        """
        super().__init__(message)
        self.status = status


class UploadFailed(ProtocolError):
    """Raised when the chunk upload ends with a non-retryable status."""


class RetryLimitExceeded(ProtocolError):
    """Raised once the shared retry budget of a session is used up."""


class UploadAborted(UploadError):
    """Raised to waiters when the consumer aborts the upload."""


class ContentMismatch(Exception):
    """Signals that resumed input differs from the content of the session.

    Not an upload failure: the session controller reacts by starting a brand
    new session.
    """


class SessionError(UploadError):
    """Raised when an unexpected error, such as a store failure, ends a session."""
