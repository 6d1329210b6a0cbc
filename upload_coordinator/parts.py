"""Per-part ingestion and direct-upload URL issuance.

PartUploadHandler receives part bytes through the service (proxy mode),
checksums them, forwards them to the object store and records the part.
PresignIssuer hands out time-boxed URLs so the client can PUT part bytes
straight to the object store (presigned mode).

Part bytes travel to the object store outside the per-session lock, so
different parts of one session upload in parallel. Only the metadata
merge is serialized.
"""

import logging
import time
from typing import Any

from upload_coordinator.checksum import sha256_hex
from upload_coordinator.errors import StrategyMismatch, ValidationError
from upload_coordinator.manager import SessionManager
from upload_coordinator.models import (
    PartReceipt,
    PartRecord,
    PresignedPart,
    SessionStatus,
    StorageStrategy,
    UploadSession,
)
from upload_coordinator.object_store import ObjectStore

logger = logging.getLogger(__name__)

DEFAULT_PRESIGN_TTL_SECONDS = 900


def _check_index(session: UploadSession, part_index: Any) -> int:
    """Validate a part index against the session's chunk plan.

    Raises:
        ValidationError: If the index is not an integer in range.
    """
    if isinstance(part_index, bool) or not isinstance(part_index, int):
        raise ValidationError(f"Invalid part index {part_index!r}")
    if not session.is_valid_index(part_index):
        raise ValidationError(
            f"Part index {part_index} out of range [0, {session.total_chunks})"
        )
    return part_index


class PartUploadHandler:
    """Accepts proxied part uploads.

    Args:
        manager: Session manager
        object_store: Adapter receiving the part bytes
    """

    def __init__(self, manager: SessionManager, object_store: ObjectStore):
        self.manager = manager
        self.object_store = object_store

    def upload_part(self, upload_id: str, part_index: Any, data: bytes) -> PartReceipt:
        """Store one part and record it in the session.

        Re-uploading an index replaces the earlier record; identical bytes
        produce an identical checksum.

        Args:
            upload_id: Session id.
            part_index: 0-based part index.
            data: Exact part bytes.

        Returns:
            PartReceipt with the ETag and checksum.

        Raises:
            NotFoundError: If the session is unknown or expired.
            ValidationError: If the index is out of range.
            InvalidState: If the session is committed or aborted.
            UpstreamError: If the object store or session store fails.
        """
        session = self.manager.retrieve(upload_id)
        index = _check_index(session, part_index)
        session.require_active("upload part")

        checksum = sha256_hex(data)
        etag = self.object_store.upload_part(session.multipart, index + 1, data)

        def merge(current: UploadSession) -> None:
            # An abort or commit may have landed while the bytes were in flight
            current.require_active("upload part")
            current.uploaded_parts[index] = PartRecord(
                etag=etag,
                checksum=checksum,
                size=len(data),
            )
            current.transition(SessionStatus.UPLOADING)

        self.manager.update(upload_id, merge)

        logger.info(
            "Recorded part %d of session %s (%d bytes)", index, upload_id, len(data)
        )
        return PartReceipt(index=index, etag=etag, checksum=checksum)


class PresignIssuer:
    """Issues direct-upload URLs for presigned sessions.

    Args:
        manager: Session manager
        object_store: Adapter that signs the URLs
        ttl_seconds: Lifetime of each URL
    """

    def __init__(
        self,
        manager: SessionManager,
        object_store: ObjectStore,
        ttl_seconds: int = DEFAULT_PRESIGN_TTL_SECONDS,
    ):
        self.manager = manager
        self.object_store = object_store
        self.ttl_seconds = ttl_seconds

    def presign(self, upload_id: str, part_index: Any) -> PresignedPart:
        """Return a fresh PUT URL for one part.

        Does not touch session state; calling it again for the same index
        simply yields another URL.

        Raises:
            NotFoundError: If the session is unknown or expired.
            StrategyMismatch: If the session uses proxy mode.
            ValidationError: If the index is out of range.
            InvalidState: If the session is committed or aborted.
            UpstreamError: If signing fails.
        """
        session = self.manager.retrieve(upload_id)
        if session.storage_strategy != StorageStrategy.PRESIGNED:
            raise StrategyMismatch(
                f"Session {upload_id} uses the {session.storage_strategy.value} strategy"
            )
        index = _check_index(session, part_index)
        session.require_active("presign part")

        url = self.object_store.presign_part_url(
            session.multipart, index + 1, self.ttl_seconds
        )
        expires_at = int(time.time() * 1000) + self.ttl_seconds * 1000

        logger.debug("Presigned part %d of session %s", index, upload_id)
        return PresignedPart(url=url, expires_at=expires_at)
