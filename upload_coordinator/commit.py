"""Commit and abort.

CommitCoordinator cross-checks every part the client claims against what
the coordinator recorded, and only then asks the object store to assemble
the object. AbortHandler cancels the multipart upload.

Both run inside the per-session exclusive section, so no part can be
merged between the cross-check and the status change.

Presigned sessions never see part bytes, so before the cross-check the
coordinator lists the parts the object store actually holds. A client
checksum is accepted for a part only when the store confirms that part
exists with exactly the planned size.

Known gap: a crash after the object store completes the upload but before
the committed status is saved leaves the session in ``uploading``. A
retried commit then fails upstream because the multipart upload no longer
exists.
"""

import logging
from typing import Any, Iterable, Union

from upload_coordinator.errors import PartsInvalid, ValidationError
from upload_coordinator.manager import SessionManager
from upload_coordinator.models import (
    ClientPart,
    CommitResult,
    PartRecord,
    SessionStatus,
    StorageStrategy,
    UploadSession,
)
from upload_coordinator.object_store import ObjectStore

logger = logging.getLogger(__name__)


def parse_client_parts(raw_parts: Any) -> list[ClientPart]:
    """Validate the ``parts`` list of a commit request.

    Args:
        raw_parts: List of ``{"index": int, "checksum": str}`` dicts or
                   ClientPart objects.

    Raises:
        ValidationError: If the list or any entry is malformed.
    """
    if not isinstance(raw_parts, list):
        raise ValidationError("parts must be a list")

    parts: list[ClientPart] = []
    for entry in raw_parts:
        if isinstance(entry, ClientPart):
            parts.append(entry)
            continue
        if not isinstance(entry, dict):
            raise ValidationError("Each part must be an object with index and checksum")
        index = entry.get("index")
        checksum = entry.get("checksum")
        if isinstance(index, bool) or not isinstance(index, int):
            raise ValidationError(f"Part index must be an integer, got {index!r}")
        if not isinstance(checksum, str):
            raise ValidationError(f"Part {index} checksum must be a string")
        parts.append(ClientPart(index=index, checksum=checksum))
    return parts


def _claims_by_index(client_parts: Iterable[ClientPart]) -> dict[int, str]:
    # First claim for an index wins
    claims: dict[int, str] = {}
    for part in client_parts:
        claims.setdefault(part.index, part.checksum)
    return claims


def check_parts(
    session: UploadSession,
    client_parts: Iterable[ClientPart],
) -> tuple[list[int], list[int]]:
    """Compare client claims with recorded parts.

    Returns:
        ``(missing, mismatched)`` index lists in increasing order. An index
        is missing if either side lacks it, and mismatched if both have it
        but the checksums differ.
    """
    claims = _claims_by_index(client_parts)
    missing: list[int] = []
    mismatched: list[int] = []

    for index in range(session.total_chunks):
        claimed = claims.get(index)
        recorded = session.uploaded_parts.get(index)
        if claimed is None or recorded is None:
            missing.append(index)
        elif claimed != recorded.checksum:
            mismatched.append(index)

    return missing, mismatched


class CommitCoordinator:
    """Finalizes multipart uploads.

    Args:
        manager: Session manager
        object_store: Adapter that assembles the object
    """

    def __init__(self, manager: SessionManager, object_store: ObjectStore):
        self.manager = manager
        self.object_store = object_store

    def confirm_presigned_parts(
        self,
        session: UploadSession,
        client_parts: Iterable[ClientPart],
    ) -> set[int]:
        """Record client-claimed parts the object store confirms.

        For each claimed index, the part must exist in the store with the
        planned size. Confirmed parts are recorded with the store's ETag
        and the client's checksum, unless the coordinator already holds a
        record for the same ETag (a part proxied through the service),
        which is kept as is.

        Args:
            session: Session to update in place.
            client_parts: Parts claimed by the client.

        Returns:
            Indices whose stored size differs from the plan.
        """
        stored = {
            part["partNumber"]: part
            for part in self.object_store.list_parts(session.multipart)
        }
        wrong_size: set[int] = set()

        for index, checksum in _claims_by_index(client_parts).items():
            if not session.is_valid_index(index):
                continue
            part = stored.get(index + 1)
            if part is None:
                continue

            expected = session.expected_part_size(index)
            if part["size"] != expected:
                logger.warning(
                    "Part %d of session %s is %d bytes, expected %d",
                    index,
                    session.upload_id,
                    part["size"],
                    expected,
                )
                wrong_size.add(index)
                continue

            recorded = session.uploaded_parts.get(index)
            if recorded is not None and recorded.etag == part["etag"]:
                continue
            session.uploaded_parts[index] = PartRecord(
                etag=part["etag"],
                checksum=checksum,
                size=part["size"],
            )

        return wrong_size

    def commit(
        self,
        upload_id: str,
        client_parts: Union[list[dict], list[ClientPart]],
    ) -> CommitResult:
        """Verify every part and assemble the object.

        Args:
            upload_id: Session id.
            client_parts: ``[{"index", "checksum"}]`` as computed by the client.

        Returns:
            CommitResult with the object key, location and ETag.

        Raises:
            ValidationError: If ``client_parts`` is malformed.
            NotFoundError: If the session is unknown or expired.
            InvalidState: If the session is committed or aborted.
            PartsInvalid: If any part is missing or mismatched. No upstream
                          call is made and the session is unchanged.
            UpstreamError: If the object store or session store fails.
        """
        parts = parse_client_parts(client_parts)

        def finalize(session: UploadSession) -> CommitResult:
            session.require_active("commit")

            wrong_size: set[int] = set()
            if session.storage_strategy == StorageStrategy.PRESIGNED:
                wrong_size = self.confirm_presigned_parts(session, parts)

            missing, mismatched = check_parts(session, parts)
            # A stored part of the wrong size exists but cannot be trusted
            missing = [index for index in missing if index not in wrong_size]
            mismatched = sorted(set(mismatched) | wrong_size)
            if missing or mismatched:
                logger.info(
                    "Rejected commit of session %s: missing=%s mismatched=%s",
                    upload_id,
                    missing,
                    mismatched,
                )
                raise PartsInvalid(missing=missing, mismatched=mismatched)

            ordered = [
                {"partNumber": index + 1, "etag": session.uploaded_parts[index].etag}
                for index in range(session.total_chunks)
            ]
            if not ordered:
                # S3 rejects a completion with no parts; an empty last part is allowed
                etag = self.object_store.upload_part(session.multipart, 1, b"")
                ordered = [{"partNumber": 1, "etag": etag}]
            response = self.object_store.complete_multipart(session.multipart, ordered)

            session.transition(SessionStatus.COMMITTED)
            session.file_id = session.multipart.key
            return CommitResult(
                file_id=session.file_id,
                location=response.get("location"),
                etag=response.get("etag"),
            )

        result = self.manager.update(upload_id, finalize)
        logger.info("Committed session %s as %s", upload_id, result.file_id)
        return result


class AbortHandler:
    """Cancels multipart uploads.

    Args:
        manager: Session manager
        object_store: Adapter that releases the stored parts
    """

    def __init__(self, manager: SessionManager, object_store: ObjectStore):
        self.manager = manager
        self.object_store = object_store

    def abort(self, upload_id: str) -> dict[str, str]:
        """Abort the upload and mark the session aborted.

        Part uploads already in flight are not interrupted, but their
        metadata merge is rejected once the session is aborted.

        Raises:
            NotFoundError: If the session is unknown or expired.
            InvalidState: If the session is already committed or aborted.
            UpstreamError: If the object store or session store fails.
        """

        def cancel(session: UploadSession) -> None:
            session.require_active("abort")
            self.object_store.abort_multipart(session.multipart)
            session.transition(SessionStatus.ABORTED)

        self.manager.update(upload_id, cancel)
        logger.info("Aborted session %s", upload_id)
        return {"message": "aborted", "uploadId": upload_id}
