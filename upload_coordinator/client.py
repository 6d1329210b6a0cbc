"""HTTP client that uploads a file through a running coordinator.

UploadClient drives the whole flow:
- Create a session (or resume an existing one)
- Check the returned chunk plan against the locally computed one
- Upload every part, proxied or through presigned URLs, retrying
  transient failures
- Commit with locally computed checksums
"""

import logging
import os
import time
from typing import Any, Optional

import httpx

from upload_coordinator.checksum import part_etag, sha256_hex
from upload_coordinator.chunking import iter_file_parts, plan_chunks
from upload_coordinator.models import UploadResult
from upload_coordinator.reporters.base import Reporter
from upload_coordinator.retry import RetryExhausted, retry_with_backoff

logger = logging.getLogger(__name__)

DEFAULT_SERVER = "http://localhost:4000"
DEFAULT_MIME_TYPE = "application/octet-stream"


class UploadFailed(Exception):
    """Raised when the coordinator or object store rejects the upload."""

    def __init__(self, message: str, detail: Optional[dict] = None):
        super().__init__(message)
        self.detail = detail or {}


def _error_detail(response: httpx.Response) -> dict:
    try:
        body = response.json()
    except ValueError:
        return {"detail": response.text}
    return body if isinstance(body, dict) else {"detail": body}


class UploadClient:
    """Client for the coordinator HTTP API.

    Args:
        server_url: Base URL of the coordinator
        http_client: Optional httpx client (one is created otherwise)
        reporter: Optional reporter for progress callbacks
        max_attempts: Attempts per part transfer
        delays: Backoff delays between attempts
    """

    def __init__(
        self,
        server_url: str = DEFAULT_SERVER,
        http_client: Optional[httpx.Client] = None,
        reporter: Optional[Reporter] = None,
        max_attempts: int = 3,
        delays: tuple = (1.0, 2.0, 4.0),
    ):
        self.server_url = server_url.rstrip("/")
        self.http_client = http_client or httpx.Client(timeout=60.0)
        self.reporter = reporter
        self.max_attempts = max_attempts
        self.delays = delays

    def close(self) -> None:
        self.http_client.close()

    def __enter__(self) -> "UploadClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False

    def _url(self, path: str) -> str:
        return f"{self.server_url}{path}"

    def _request(self, method: str, path: str, **kwargs: Any) -> dict:
        """Call the coordinator and return the decoded JSON body.

        Raises:
            httpx.HTTPStatusError: If the coordinator returns an error status.
        """
        response = self.http_client.request(method, self._url(path), **kwargs)
        response.raise_for_status()
        return response.json()

    def create_session(
        self,
        file_name: str,
        file_size: int,
        strategy: str = "presigned",
        mime_type: str = DEFAULT_MIME_TYPE,
        chunk_size: Optional[int] = None,
    ) -> dict:
        payload: dict[str, Any] = {
            "fileName": file_name,
            "fileSize": file_size,
            "mimeType": mime_type,
            "storageStrategy": strategy,
        }
        if chunk_size is not None:
            payload["desiredChunkSize"] = chunk_size
        return self._request("POST", "/sessions", json=payload)

    def get_session(self, upload_id: str) -> dict:
        return self._request("GET", f"/sessions/{upload_id}")

    def presign(self, upload_id: str, index: int) -> dict:
        return self._request("POST", f"/sessions/{upload_id}/presign/{index}")

    def stored_parts(self, upload_id: str) -> list[dict]:
        """Parts the object store already holds for a session."""
        return self._request("GET", f"/sessions/{upload_id}/stored-parts")["parts"]

    def upload_part(self, upload_id: str, index: int, data: bytes) -> dict:
        """Send one part through the coordinator (proxy mode)."""
        return self._request(
            "PATCH",
            f"/sessions/{upload_id}/parts/{index}",
            files={"chunk": (f"part-{index}", data, DEFAULT_MIME_TYPE)},
        )

    def put_presigned(self, url: str, data: bytes) -> Optional[str]:
        """PUT one part straight to the object store.

        Returns:
            The ETag header of the object store's response, if any.
        """
        response = self.http_client.put(url, content=data)
        response.raise_for_status()
        return response.headers.get("etag")

    def commit(self, upload_id: str, parts: list[dict]) -> dict:
        return self._request("POST", f"/sessions/{upload_id}/commit", json={"parts": parts})

    def abort(self, upload_id: str) -> dict:
        return self._request("POST", f"/sessions/{upload_id}/abort")

    def _send_part(self, upload_id: str, strategy: str, index: int, data: bytes) -> None:
        if strategy == "presigned":
            # A fresh URL per attempt, so a retry never reuses an expired one
            def transfer() -> None:
                presigned = self.presign(upload_id, index)
                self.put_presigned(presigned["url"], data)
        else:
            def transfer() -> None:
                self.upload_part(upload_id, index, data)

        retry_with_backoff(transfer, max_attempts=self.max_attempts, delays=self.delays)

    def upload_file(
        self,
        file_path: str,
        strategy: str = "presigned",
        chunk_size: Optional[int] = None,
        mime_type: str = DEFAULT_MIME_TYPE,
        resume_upload_id: Optional[str] = None,
    ) -> UploadResult:
        """Upload a file and commit it.

        When ``resume_upload_id`` is given, the existing session is reused
        and parts it already holds with a matching checksum are skipped.
        For presigned sessions, parts the object store holds with a matching
        ETag and size are skipped as well.

        Args:
            file_path: Path of the file to upload.
            strategy: "presigned" or "proxy".
            chunk_size: Optional desired chunk size.
            mime_type: Content type of the final object.
            resume_upload_id: Session to resume instead of creating one.

        Returns:
            UploadResult describing the outcome. Failures are reported in
            the result rather than raised.
        """
        start_time = time.time()
        file_name = os.path.basename(file_path)
        file_size = os.path.getsize(file_path)
        result = UploadResult(
            file_name=file_name,
            file_size=file_size,
            strategy=strategy,
            success=False,
        )

        if self.reporter:
            self.reporter.on_upload_start(file_name, file_size, strategy)

        try:
            self._run_upload(
                result, file_path, strategy, chunk_size, mime_type, resume_upload_id
            )
            result.success = True
        except UploadFailed as e:
            result.error_message = f"{e} {e.detail}" if e.detail else str(e)
        except httpx.HTTPStatusError as e:
            result.error_message = (
                f"{e.request.method} {e.request.url} returned "
                f"{e.response.status_code}: {_error_detail(e.response)}"
            )
        except (httpx.HTTPError, RetryExhausted) as e:
            result.error_message = str(e)

        if result.error_message:
            logger.error("Upload of %s failed: %s", file_name, result.error_message)

        result.duration_seconds = time.time() - start_time
        if self.reporter:
            self.reporter.on_upload_complete(result)
        return result

    def _run_upload(
        self,
        result: UploadResult,
        file_path: str,
        strategy: str,
        chunk_size: Optional[int],
        mime_type: str,
        resume_upload_id: Optional[str],
    ) -> None:
        known_checksums: dict[int, str] = {}
        # Presigned parts are only visible in the object store until commit
        stored_etags: dict[int, tuple[str, int]] = {}

        if resume_upload_id:
            session = self.get_session(resume_upload_id)
            if session["status"] not in ("pending", "uploading"):
                raise UploadFailed(
                    f"Session {resume_upload_id} is {session['status']}, cannot resume"
                )
            strategy = session["storageStrategy"]
            result.strategy = strategy
            known_checksums = {
                part["index"]: part["checksum"] for part in session["uploadedParts"]
            }
            if strategy == "presigned":
                stored_etags = {
                    part["index"]: (part["etag"], part["size"])
                    for part in self.stored_parts(resume_upload_id)
                }
        else:
            session = self.create_session(
                result.file_name, result.file_size, strategy, mime_type, chunk_size
            )

        upload_id = session["uploadId"]
        result.upload_id = upload_id
        result.chunk_size = session["chunkSize"]
        result.total_chunks = session["totalChunks"]

        if not resume_upload_id:
            expected = plan_chunks(result.file_size, chunk_size)
            if (expected.chunk_size, expected.total_chunks) != (
                result.chunk_size,
                result.total_chunks,
            ):
                raise UploadFailed(
                    "Coordinator chunk plan differs from local plan",
                    {
                        "local": [expected.chunk_size, expected.total_chunks],
                        "server": [result.chunk_size, result.total_chunks],
                    },
                )

        if self.reporter:
            self.reporter.on_session_created(upload_id, result.chunk_size, result.total_chunks)

        commit_parts: list[dict] = []
        for index, data in iter_file_parts(file_path, result.chunk_size):
            checksum = sha256_hex(data)
            commit_parts.append({"index": index, "checksum": checksum})

            skipped = known_checksums.get(index) == checksum or stored_etags.get(
                index
            ) == (part_etag(data), len(data))
            if skipped:
                result.skipped_parts.append(index)
            else:
                self._send_part(upload_id, strategy, index, data)
                result.uploaded_parts.append(index)

            if self.reporter:
                self.reporter.on_part_complete(index, len(data), skipped)

        try:
            committed = self.commit(upload_id, commit_parts)
        except httpx.HTTPStatusError as e:
            raise UploadFailed("Commit rejected", _error_detail(e.response)) from e

        result.file_id = committed.get("fileId")
        result.location = committed.get("location")
        result.etag = committed.get("etag")
