"""HTTP API for the upload coordinator.

Routes:
    POST   /sessions                         create a session
    GET    /sessions/{id}                    session state
    POST   /sessions/{id}/presign/{index}    presigned PUT URL for a part
    GET    /sessions/{id}/stored-parts       parts the object store holds
    PATCH  /sessions/{id}/parts/{index}      proxied part upload (form field "chunk")
    POST   /sessions/{id}/commit             verify parts and finalize
    POST   /sessions/{id}/abort              cancel the upload
    DELETE /sessions/{id}                    drop the session record
    GET    /health                           liveness

Handlers are plain ``def`` functions; FastAPI runs them on its thread
pool, so requests for one session can arrive concurrently.
"""

import logging
from typing import Optional, Union

from fastapi import FastAPI, File, Request, Response, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, StrictFloat, StrictInt

from upload_coordinator import __version__
from upload_coordinator.errors import (
    InvalidState,
    NotFoundError,
    PartsInvalid,
    StrategyMismatch,
    UploadCoordinatorError,
    UpstreamError,
    ValidationError,
)
from upload_coordinator.models import ClientPart
from upload_coordinator.services import Services

logger = logging.getLogger(__name__)

STATUS_CODES = {
    ValidationError: 400,
    StrategyMismatch: 400,
    PartsInvalid: 400,
    NotFoundError: 404,
    InvalidState: 409,
    UpstreamError: 502,
}


class CreateSessionRequest(BaseModel):
    fileName: str
    fileSize: Union[StrictInt, StrictFloat]
    mimeType: Optional[str] = None
    desiredChunkSize: Optional[StrictInt] = None
    storageStrategy: str = "proxy"


class CommitPart(BaseModel):
    index: StrictInt
    checksum: str


class CommitRequest(BaseModel):
    parts: list[CommitPart]


def _parse_index(raw: str) -> int:
    try:
        return int(raw)
    except ValueError as e:
        raise ValidationError(f"Invalid part index {raw!r}") from e


def create_app(services: Services) -> FastAPI:
    """Build the FastAPI application around a set of wired services."""
    app = FastAPI(title="Upload Coordinator", version=__version__)

    @app.exception_handler(UploadCoordinatorError)
    async def coordinator_error_handler(request: Request, exc: UploadCoordinatorError):
        status_code = STATUS_CODES.get(type(exc), 500)
        if status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": ValidationError.code, "detail": str(exc.errors())},
        )

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.post("/sessions")
    def create_session(body: CreateSessionRequest):
        created = services.manager.create(
            file_name=body.fileName,
            file_size=body.fileSize,
            mime_type=body.mimeType,
            desired_chunk_size=body.desiredChunkSize,
            storage_strategy=body.storageStrategy,
        )
        return created.to_dict()

    @app.get("/sessions/{upload_id}")
    def get_session(upload_id: str):
        return services.manager.retrieve(upload_id).to_public_dict()

    @app.delete("/sessions/{upload_id}", status_code=204)
    def delete_session(upload_id: str):
        services.manager.delete(upload_id)
        return Response(status_code=204)

    @app.post("/sessions/{upload_id}/presign/{part_index}")
    def presign_part(upload_id: str, part_index: str):
        presigned = services.presigner.presign(upload_id, _parse_index(part_index))
        return presigned.to_dict()

    @app.get("/sessions/{upload_id}/stored-parts")
    def stored_parts(upload_id: str):
        return {"uploadId": upload_id, "parts": services.manager.list_stored_parts(upload_id)}

    @app.patch("/sessions/{upload_id}/parts/{part_index}")
    def upload_part(
        upload_id: str,
        part_index: str,
        chunk: Optional[UploadFile] = File(None),
    ):
        index = _parse_index(part_index)
        if chunk is None:
            return JSONResponse(
                status_code=400,
                content={"error": "no_chunk", "detail": "Form field 'chunk' is required"},
            )
        data = chunk.file.read()
        return services.parts.upload_part(upload_id, index, data).to_dict()

    @app.post("/sessions/{upload_id}/commit")
    def commit(upload_id: str, body: CommitRequest):
        parts = [ClientPart(index=p.index, checksum=p.checksum) for p in body.parts]
        return services.committer.commit(upload_id, parts).to_dict()

    @app.post("/sessions/{upload_id}/abort")
    def abort(upload_id: str):
        return services.aborter.abort(upload_id)

    return app
