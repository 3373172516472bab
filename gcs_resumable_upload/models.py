"""Models used by the upload engine."""

import base64
import json
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from multidict import CIMultiDict, CIMultiDictProxy

from gcs_resumable_upload.exceptions import ConfigurationError


class SessionState(str, Enum):
    """Lifecycle states for an upload session.

    State transitions:
    - NEW -> OFFSET_QUERY (persisted or supplied session uri)
    - NEW -> INITIATING
    - INITIATING -> UPLOADING
    - OFFSET_QUERY -> RESUMING -> UPLOADING
    - UPLOADING -> UPLOADING (retry-immediate)
    - UPLOADING -> OFFSET_QUERY (retry-backoff)
    - UPLOADING -> RESTARTING -> INITIATING (content mismatch)
    - UPLOADING -> COMPLETED
    - Any -> FAILED (on error)
    - Any -> ABORTED (consumer cancellation)
    """

    NEW = "new"
    INITIATING = "initiating"
    OFFSET_QUERY = "offset_query"
    RESUMING = "resuming"
    UPLOADING = "uploading"
    RESTARTING = "restarting"
    COMPLETED = "completed"
    FAILED = "failed"
    ABORTED = "aborted"


TERMINAL_STATES = frozenset(
    {SessionState.COMPLETED, SessionState.FAILED, SessionState.ABORTED}
)

# a session uri is only held while talking to that session
URI_STATES = frozenset(
    {SessionState.OFFSET_QUERY, SessionState.RESUMING, SessionState.UPLOADING}
)


class Operation(str, Enum):
    """Wire operations issued against the resumable upload surface."""

    INITIATE = "initiate"
    OFFSET_QUERY = "offset_query"
    CHUNK_UPLOAD = "chunk_upload"


@dataclass(frozen=True)
class UploadTarget:
    """Identifies the object being uploaded; immutable for a session."""

    bucket: str
    object_key: str
    generation: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    predefined_acl: str | None = None
    user_project: str | None = None
    kms_key_name: str | None = None
    origin: str | None = None

    def __post_init__(self) -> None:
        """Reject targets without a bucket or object key."""
        if not self.bucket or not self.object_key:
            raise ConfigurationError("A bucket and file name are required")

    @property
    def content_type(self) -> str | None:
        """Content type declared in the object metadata, if any."""
        return self.metadata.get("contentType")

    @property
    def store_key(self) -> str:
        """Stable identifier used to key the persisted resume record."""
        return f"{self.bucket}/{self.object_key}"


@dataclass(frozen=True)
class ResumeRecord:
    """Persisted cross-process record enabling resumption after restart."""

    uri: str
    first_chunk: bytes | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable representation."""
        return {
            "uri": self.uri,
            "first_chunk": (
                base64.b64encode(self.first_chunk).decode("ascii")
                if self.first_chunk is not None
                else None
            ),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ResumeRecord":
        """Build a ResumeRecord from the output of :meth:`to_dict`."""
        first_chunk_raw = data.get("first_chunk")
        return cls(
            uri=str(data["uri"]),
            first_chunk=(
                base64.b64decode(first_chunk_raw)
                if first_chunk_raw is not None
                else None
            ),
        )


@dataclass
class UploadSession:
    """Mutable state of one logical upload attempt.

    Owned exclusively by the session controller. ``offset`` only moves through
    :meth:`confirm_offset`, fed from server responses.
    """

    target: UploadTarget
    uri: str | None = None
    offset: int = 0
    bytes_written: int = 0
    retry_count: int = 0
    state: SessionState = SessionState.NEW

    @property
    def is_terminal(self) -> bool:
        """Whether the session reached COMPLETED, FAILED or ABORTED."""
        return self.state in TERMINAL_STATES

    def transition(self, state: SessionState) -> None:
        """Move to ``state``, dropping the session uri outside of URI_STATES."""
        self.state = state
        if state not in URI_STATES and state != SessionState.NEW:
            self.uri = None

    def confirm_offset(self, offset: int) -> None:
        """Record the byte count the server has durably received."""
        if offset < 0:
            raise ValueError(f"offset must be non-negative, got {offset}")
        self.offset = offset

    def reset_progress(self) -> None:
        """Forget all local and confirmed progress, keeping the retry count."""
        self.offset = 0
        self.bytes_written = 0


@dataclass(frozen=True)
class RequestDescriptor:
    """Transport-agnostic description of a single HTTP request."""

    method: str
    uri: str
    query: dict[str, str] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    json_body: Any = None

    def with_headers(self, headers: dict[str, str]) -> "RequestDescriptor":
        """Return a copy with ``headers`` merged over the existing ones."""
        return replace(self, headers={**self.headers, **headers})


@dataclass
class TransportResponse:
    """Status, headers and fully buffered body of an HTTP response."""

    status: int
    headers: CIMultiDict = field(default_factory=CIMultiDict)
    body: bytes = b""

    def __post_init__(self) -> None:
        """Normalise headers to a case-insensitive mapping."""
        if not isinstance(self.headers, (CIMultiDict, CIMultiDictProxy)):
            self.headers = CIMultiDict(self.headers or {})

    @property
    def is_success(self) -> bool:
        """Whether the status is in the 2xx range."""
        return 200 <= self.status <= 299

    def parsed_body(self) -> Any:
        """Return the JSON-decoded body, or the raw bytes if it is not JSON."""
        try:
            return json.loads(self.body)
        except ValueError:
            return self.body


@dataclass(frozen=True)
class UploadResponse:
    """Notification emitted to the consumer for every response received."""

    operation: Operation
    status: int
    headers: CIMultiDict
    body: Any

    @classmethod
    def from_transport(
        cls, operation: Operation, response: TransportResponse
    ) -> "UploadResponse":
        """Build a notification, best-effort parsing the body as JSON."""
        return cls(
            operation=operation,
            status=response.status,
            headers=CIMultiDict(response.headers),
            body=response.parsed_body(),
        )


@dataclass(frozen=True)
class UploadResult:
    """Outcome of a successful upload."""

    bytes_written: int
    uri: str
    response: UploadResponse
