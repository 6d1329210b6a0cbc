"""Session manager.

Owns the session lifecycle: validating and creating sessions, loading
them back, and running every mutation inside the per-session exclusive
section so concurrent requests cannot lose each other's updates.
"""

import logging
import re
import time
import uuid
from typing import Any, Callable, Optional, TypeVar

from upload_coordinator.chunking import plan_chunks
from upload_coordinator.errors import NotFoundError, ValidationError
from upload_coordinator.models import (
    CreatedSession,
    SessionStatus,
    StorageStrategy,
    UploadSession,
)
from upload_coordinator.object_store import ObjectStore
from upload_coordinator.session_store import (
    SessionStore,
    delete_session,
    load_session,
    save_session,
    session_key,
)

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"
DEFAULT_SESSION_TTL_SECONDS = 3600

T = TypeVar("T")


def _now_ms() -> int:
    return int(time.time() * 1000)


def build_object_key(upload_id: str, file_name: str, created_ms: int) -> str:
    """Storage key for an upload.

    Embeds the upload id and creation time so two uploads of the same
    file never collide, and replaces whitespace runs in the file name
    with underscores.
    """
    safe_name = re.sub(r"\s+", "_", file_name)
    return f"uploads/{upload_id}/{created_ms}-{safe_name}"


def _validate_size(file_size: Any) -> int:
    if isinstance(file_size, bool) or not isinstance(file_size, (int, float)):
        raise ValidationError("fileSize must be a non-negative number")
    if isinstance(file_size, float) and not file_size.is_integer():
        raise ValidationError("fileSize must be a whole number of bytes")
    if file_size < 0:
        raise ValidationError("fileSize must be a non-negative number")
    return int(file_size)


def _validate_chunk_size(desired_chunk_size: Any) -> Optional[int]:
    if desired_chunk_size is None:
        return None
    if isinstance(desired_chunk_size, bool) or not isinstance(desired_chunk_size, int):
        raise ValidationError("desiredChunkSize must be a positive integer")
    if desired_chunk_size <= 0:
        raise ValidationError("desiredChunkSize must be a positive integer")
    return desired_chunk_size


def _validate_strategy(storage_strategy: Any) -> StorageStrategy:
    if isinstance(storage_strategy, StorageStrategy):
        return storage_strategy
    try:
        return StorageStrategy(storage_strategy)
    except ValueError as e:
        raise ValidationError(
            f"storageStrategy must be 'proxy' or 'presigned', got {storage_strategy!r}"
        ) from e


class SessionManager:
    """Creates, loads, updates and deletes upload sessions.

    Args:
        object_store: Adapter used to open multipart uploads
        session_store: Adapter holding session records
        session_ttl_seconds: Lifetime of a new session
    """

    def __init__(
        self,
        object_store: ObjectStore,
        session_store: SessionStore,
        session_ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS,
    ):
        self.object_store = object_store
        self.session_store = session_store
        self.session_ttl_seconds = session_ttl_seconds

    def create(
        self,
        file_name: Any,
        file_size: Any,
        mime_type: Optional[str] = None,
        desired_chunk_size: Any = None,
        storage_strategy: Any = StorageStrategy.PROXY,
    ) -> CreatedSession:
        """Create a session and open its multipart upload.

        Args:
            file_name: Client-side file name (non-empty).
            file_size: File size in bytes (>= 0).
            mime_type: Content type of the final object.
            desired_chunk_size: Optional chunk size request (clamped).
            storage_strategy: "proxy" or "presigned".

        Returns:
            CreatedSession with the chunk plan.

        Raises:
            ValidationError: If any input is malformed.
            UpstreamError: If the object store or session store fails.
        """
        if not isinstance(file_name, str) or not file_name.strip():
            raise ValidationError("fileName is required")
        size = _validate_size(file_size)
        desired = _validate_chunk_size(desired_chunk_size)
        strategy = _validate_strategy(storage_strategy)
        if mime_type is not None and not isinstance(mime_type, str):
            raise ValidationError("mimeType must be a string")
        mime_type = mime_type or DEFAULT_MIME_TYPE

        plan = plan_chunks(size, desired)
        upload_id = str(uuid.uuid4())
        created_ms = _now_ms()
        key = build_object_key(upload_id, file_name, created_ms)

        handle = self.object_store.create_multipart(key, mime_type)

        session = UploadSession(
            upload_id=upload_id,
            file_name=file_name,
            size=size,
            mime_type=mime_type,
            chunk_size=plan.chunk_size,
            total_chunks=plan.total_chunks,
            storage_strategy=strategy,
            status=SessionStatus.PENDING,
            expires_at=created_ms + self.session_ttl_seconds * 1000,
            multipart=handle,
        )
        save_session(self.session_store, session)

        logger.info(
            "Created session %s for %s (%d bytes, %d x %d, %s)",
            upload_id,
            file_name,
            size,
            plan.total_chunks,
            plan.chunk_size,
            strategy.value,
        )

        return CreatedSession(
            upload_id=upload_id,
            chunk_size=plan.chunk_size,
            total_chunks=plan.total_chunks,
            expires_at=session.expires_at,
            storage_strategy=strategy,
        )

    def retrieve(self, upload_id: str) -> UploadSession:
        """Load a session.

        Raises:
            NotFoundError: If the session is absent or past its deadline.
        """
        session = load_session(self.session_store, upload_id)
        if session is None or session.expires_at <= _now_ms():
            raise NotFoundError(f"Upload session {upload_id} not found")
        return session

    def update(self, upload_id: str, mutate: Callable[[UploadSession], T]) -> T:
        """Apply ``mutate`` to a session under its exclusive section.

        The session is re-read inside the section, passed to ``mutate``,
        and saved afterwards. If ``mutate`` raises, nothing is saved.

        Returns:
            Whatever ``mutate`` returns.
        """
        with self.session_store.lock(session_key(upload_id)):
            session = self.retrieve(upload_id)
            result = mutate(session)
            save_session(self.session_store, session)
        return result

    def list_stored_parts(self, upload_id: str) -> list[dict[str, Any]]:
        """Parts the object store holds for an active session.

        Presigned parts go straight to the object store, so this is the
        only view of them before commit. Part numbers beyond the plan are
        left out.

        Returns:
            ``[{"index", "etag", "size"}]`` in index order.

        Raises:
            NotFoundError: If the session is unknown or expired.
            InvalidState: If the session is committed or aborted.
            UpstreamError: If the object store fails.
        """
        session = self.retrieve(upload_id)
        session.require_active("list parts")
        return [
            {"index": part["partNumber"] - 1, "etag": part["etag"], "size": part["size"]}
            for part in self.object_store.list_parts(session.multipart)
            if session.is_valid_index(part["partNumber"] - 1)
        ]

    def delete(self, upload_id: str) -> None:
        """Remove a session record.

        The multipart upload itself is left to the object store's
        lifecycle policy; use abort to release its parts.

        Raises:
            NotFoundError: If the session does not exist.
        """
        with self.session_store.lock(session_key(upload_id)):
            self.retrieve(upload_id)
            delete_session(self.session_store, upload_id)
        logger.info("Deleted session %s", upload_id)
