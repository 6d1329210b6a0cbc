"""Data models for the upload coordinator.

The session record is stored as JSON with camelCase keys. ``to_dict`` and
``from_dict`` are the only places that know that layout; ``from_dict``
validates the payload so that a corrupt record never reaches the
coordinator as a half-populated object.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from upload_coordinator.chunking import count_chunks, part_size
from upload_coordinator.errors import InvalidState


class StorageStrategy(Enum):
    """How part bytes travel to the object store."""

    PROXY = "proxy"
    PRESIGNED = "presigned"


class SessionStatus(Enum):
    """Lifecycle state of an upload session."""

    PENDING = "pending"
    UPLOADING = "uploading"
    COMMITTED = "committed"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMMITTED, SessionStatus.ABORTED)


# Allowed status transitions. Terminal states have no outgoing edges.
TRANSITIONS: dict[SessionStatus, set[SessionStatus]] = {
    SessionStatus.PENDING: {
        SessionStatus.UPLOADING,
        SessionStatus.COMMITTED,
        SessionStatus.ABORTED,
    },
    SessionStatus.UPLOADING: {
        SessionStatus.PENDING,
        SessionStatus.UPLOADING,
        SessionStatus.COMMITTED,
        SessionStatus.ABORTED,
    },
    SessionStatus.COMMITTED: set(),
    SessionStatus.ABORTED: set(),
}


@dataclass
class ServiceConfig:
    """Configuration for the coordinator service and its collaborators."""

    bucket_name: str = "upload-coordinator"
    region_name: str = "us-east-1"
    endpoint_url: Optional[str] = None
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    addressing_style: str = "auto"
    session_backend: str = "memory"
    redis_url: Optional[str] = None
    presign_ttl_seconds: int = 900
    session_ttl_seconds: int = 3600
    lock_timeout_seconds: float = 10.0
    host: str = "127.0.0.1"
    port: int = 4000


@dataclass(frozen=True)
class MultipartHandle:
    """Reference to a multipart upload in the object store."""

    key: str
    upload_id: str


@dataclass
class PartRecord:
    """A part the coordinator has accepted."""

    etag: str
    checksum: str
    size: int


@dataclass
class ClientPart:
    """A part as claimed by the client at commit time."""

    index: int
    checksum: str


def _require(data: dict, key: str, kind: Any) -> Any:
    """Fetch ``data[key]`` and check its type, raising ValueError otherwise."""
    if key not in data:
        raise ValueError(f"Session record missing field '{key}'")
    value = data[key]
    if isinstance(value, bool) and kind is not bool:
        raise ValueError(f"Session record field '{key}' has wrong type")
    if not isinstance(value, kind):
        raise ValueError(f"Session record field '{key}' has wrong type")
    return value


@dataclass
class UploadSession:
    """A resumable multipart upload session."""

    upload_id: str
    file_name: str
    size: int
    mime_type: str
    chunk_size: int
    total_chunks: int
    storage_strategy: StorageStrategy
    status: SessionStatus
    expires_at: int
    multipart: MultipartHandle
    uploaded_parts: dict[int, PartRecord] = field(default_factory=dict)
    file_id: Optional[str] = None

    def is_valid_index(self, index: int) -> bool:
        """Check that ``index`` lies in ``[0, total_chunks)``."""
        return 0 <= index < self.total_chunks

    def expected_part_size(self, index: int) -> int:
        """Planned byte length of part ``index``."""
        return part_size(self.size, self.chunk_size, index)

    def require_active(self, action: str) -> None:
        """Reject ``action`` if the session is committed or aborted.

        Raises:
            InvalidState: If the session is in a terminal state.
        """
        if self.status.is_terminal:
            raise InvalidState(
                f"Cannot {action}: session {self.upload_id} is {self.status.value}",
                status=self.status.value,
            )

    def transition(self, new_status: SessionStatus) -> None:
        """Move to ``new_status`` if the state machine allows it.

        Raises:
            InvalidState: If the transition is not allowed.
        """
        if new_status not in TRANSITIONS[self.status]:
            raise InvalidState(
                f"Session {self.upload_id} cannot move from "
                f"{self.status.value} to {new_status.value}",
                status=self.status.value,
            )
        self.status = new_status

    def to_dict(self) -> dict[str, Any]:
        """Convert to the stored JSON layout."""
        data: dict[str, Any] = {
            "uploadId": self.upload_id,
            "fileName": self.file_name,
            "size": self.size,
            "mimeType": self.mime_type,
            "chunkSize": self.chunk_size,
            "totalChunks": self.total_chunks,
            "storageStrategy": self.storage_strategy.value,
            "expiresAt": self.expires_at,
            "status": self.status.value,
            "s3Multipart": {
                "UploadId": self.multipart.upload_id,
                "Key": self.multipart.key,
            },
            "uploadedParts": {
                str(index): {
                    "etag": part.etag,
                    "checksum": part.checksum,
                    "size": part.size,
                }
                for index, part in self.uploaded_parts.items()
            },
        }
        if self.file_id is not None:
            data["fileId"] = self.file_id
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "UploadSession":
        """Decode and validate a stored session record.

        Args:
            data: Parsed JSON payload.

        Returns:
            The decoded session.

        Raises:
            ValueError: If the payload is missing fields, has wrong types,
                        or violates the chunk plan invariants.
        """
        if not isinstance(data, dict):
            raise ValueError("Session record must be a JSON object")

        size = _require(data, "size", int)
        chunk_size = _require(data, "chunkSize", int)
        total_chunks = _require(data, "totalChunks", int)
        if size < 0 or chunk_size <= 0:
            raise ValueError("Session record has invalid size or chunkSize")
        if total_chunks != count_chunks(size, chunk_size):
            raise ValueError("Session record totalChunks does not match its chunk plan")

        try:
            strategy = StorageStrategy(_require(data, "storageStrategy", str))
            status = SessionStatus(_require(data, "status", str))
        except ValueError as e:
            raise ValueError(f"Session record has unknown enum value: {e}") from e

        handle_data = _require(data, "s3Multipart", dict)
        handle = MultipartHandle(
            key=_require(handle_data, "Key", str),
            upload_id=_require(handle_data, "UploadId", str),
        )

        parts: dict[int, PartRecord] = {}
        for raw_index, raw_part in _require(data, "uploadedParts", dict).items():
            try:
                index = int(raw_index)
            except ValueError as e:
                raise ValueError(f"Session record has non-numeric part index {raw_index!r}") from e
            if not 0 <= index < total_chunks:
                raise ValueError(f"Session record has out-of-range part index {index}")
            if not isinstance(raw_part, dict):
                raise ValueError(f"Session record part {index} must be an object")
            parts[index] = PartRecord(
                etag=_require(raw_part, "etag", str),
                checksum=_require(raw_part, "checksum", str),
                size=_require(raw_part, "size", int),
            )

        file_id = data.get("fileId")
        if file_id is not None and not isinstance(file_id, str):
            raise ValueError("Session record field 'fileId' has wrong type")

        return cls(
            upload_id=_require(data, "uploadId", str),
            file_name=_require(data, "fileName", str),
            size=size,
            mime_type=_require(data, "mimeType", str),
            chunk_size=chunk_size,
            total_chunks=total_chunks,
            storage_strategy=strategy,
            status=status,
            expires_at=_require(data, "expiresAt", int),
            multipart=handle,
            uploaded_parts=parts,
            file_id=file_id,
        )

    def to_public_dict(self) -> dict[str, Any]:
        """Session view returned by the get-session operation."""
        return {
            "uploadId": self.upload_id,
            "chunkSize": self.chunk_size,
            "totalChunks": self.total_chunks,
            "storageStrategy": self.storage_strategy.value,
            "expiresAt": self.expires_at,
            "uploadedParts": [
                {
                    "index": index,
                    "etag": part.etag,
                    "checksum": part.checksum,
                    "size": part.size,
                }
                for index, part in sorted(self.uploaded_parts.items())
            ],
            "status": self.status.value,
        }


@dataclass
class CreatedSession:
    """Result of creating a session."""

    upload_id: str
    chunk_size: int
    total_chunks: int
    expires_at: int
    storage_strategy: StorageStrategy

    def to_dict(self) -> dict[str, Any]:
        return {
            "uploadId": self.upload_id,
            "chunkSize": self.chunk_size,
            "totalChunks": self.total_chunks,
            "expiresAt": self.expires_at,
            "storageStrategy": self.storage_strategy.value,
            "presignOnDemand": self.storage_strategy == StorageStrategy.PRESIGNED,
        }


@dataclass
class PresignedPart:
    """A direct-upload URL for one part."""

    url: str
    expires_at: int

    def to_dict(self) -> dict[str, Any]:
        return {"url": self.url, "expiresAt": self.expires_at}


@dataclass
class PartReceipt:
    """Acknowledgment of a proxied part upload."""

    index: int
    etag: str
    checksum: str

    def to_dict(self) -> dict[str, Any]:
        return {"index": self.index, "etag": self.etag, "checksum": self.checksum}


@dataclass
class CommitResult:
    """Outcome of finalizing a multipart upload."""

    file_id: str
    location: Optional[str]
    etag: Optional[str]

    def to_dict(self) -> dict[str, Any]:
        return {"fileId": self.file_id, "location": self.location, "etag": self.etag}


@dataclass
class UploadResult:
    """Outcome of a client-side file upload."""

    file_name: str
    file_size: int
    strategy: str
    success: bool
    upload_id: Optional[str] = None
    chunk_size: int = 0
    total_chunks: int = 0
    uploaded_parts: list[int] = field(default_factory=list)
    skipped_parts: list[int] = field(default_factory=list)
    file_id: Optional[str] = None
    location: Optional[str] = None
    etag: Optional[str] = None
    duration_seconds: float = 0.0
    error_message: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "fileName": self.file_name,
            "fileSize": self.file_size,
            "storageStrategy": self.strategy,
            "success": self.success,
            "uploadId": self.upload_id,
            "chunkSize": self.chunk_size,
            "totalChunks": self.total_chunks,
            "uploadedParts": self.uploaded_parts,
            "skippedParts": self.skipped_parts,
            "fileId": self.file_id,
            "location": self.location,
            "etag": self.etag,
            "durationSeconds": self.duration_seconds,
            "error": self.error_message,
        }
