"""Files API routes."""
import logging
from typing import Optional
from uuid import UUID

import jwt
from fastapi import APIRouter, Depends, File as FastAPIFile, Form, Header, HTTPException, Request, UploadFile
from fastapi.responses import FileResponse, Response

from attachments.config import settings
from attachments.constants import FileSource, ToolResource
from attachments.schemas.file import (
    AnalysisResponse,
    DeleteFilesRequest,
    DeleteFilesResponse,
    EmbeddingCompletePayload,
    FileContextRequest,
    FileContextResponse,
    FileResponse as FileResponseSchema,
    UploadMetadata,
    UploadResponse,
)
from attachments.services import file_matrix, file_records
from attachments.services.code_env import CodeEnvAPIError
from attachments.services.deletion import process_delete_request
from attachments.services.file_context import build_file_context
from attachments.services.rag_client import RagAPIError, verify_token
from attachments.services.storage import UploadedFile
from attachments.services.storage.local import LocalStorage
from attachments.services.upload_processor import (
    UploadProcessor,
    UploadValidationError,
    get_upload_processor,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/files", tags=["files"])


def current_user(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Acting principal. Authentication happens upstream."""
    return x_user_id or "default"


async def _read_upload(file: UploadFile) -> UploadedFile:
    return UploadedFile(
        filename=file.filename or "unnamed",
        mimetype=file.content_type,
        data=await file.read(),
    )


def _metadata(
    file_id: Optional[UUID],
    temp_file_id: Optional[str],
    agent_id: Optional[str],
    tool_resource: Optional[ToolResource],
    message_file: bool,
    endpoint: Optional[str],
    model: Optional[str],
) -> UploadMetadata:
    fields = dict(
        temp_file_id=temp_file_id,
        agent_id=agent_id or None,
        tool_resource=tool_resource,
        message_file=message_file,
        endpoint=endpoint,
        model=model,
    )
    if file_id is not None:
        fields["file_id"] = file_id
    return UploadMetadata(**fields)


async def _run_upload(coro):
    """Await an upload and map pipeline errors to HTTP responses."""
    try:
        return await coro
    except UploadValidationError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except (RagAPIError, CodeEnvAPIError) as e:
        logger.error(f"[files] upload failed on remote service: {e}")
        raise HTTPException(status_code=502, detail=f"Failed to process file: {e.message}")
    except Exception as e:
        logger.exception(f"[files] upload failed: {e}")
        raise HTTPException(status_code=500, detail=f"File upload failed: {e}")


def _upload_response(record, analysis=None, message: Optional[str] = None) -> UploadResponse:
    update = {}
    if analysis is not None:
        update["analysis"] = AnalysisResponse(**analysis.to_dict())
    if message:
        update["message"] = message
    return UploadResponse.model_validate(record).model_copy(update=update)


@router.post("", response_model=UploadResponse, status_code=201)
async def upload_file(
    file: UploadFile = FastAPIFile(...),
    file_id: Optional[UUID] = Form(None),
    temp_file_id: Optional[str] = Form(None),
    endpoint: Optional[str] = Form(None),
    model: Optional[str] = Form(None),
    user_id: str = Depends(current_user),
    processor: UploadProcessor = Depends(get_upload_processor),
):
    """Upload a file through the configured storage strategy."""
    meta = _metadata(file_id, temp_file_id, None, None, False, endpoint, model)
    uploaded = await _read_upload(file)
    record = await _run_upload(processor.process_file_upload(uploaded, meta, user_id))
    return _upload_response(record)


@router.post("/agents", response_model=UploadResponse, status_code=201)
async def upload_agent_file(
    file: UploadFile = FastAPIFile(...),
    file_id: Optional[UUID] = Form(None),
    temp_file_id: Optional[str] = Form(None),
    agent_id: Optional[str] = Form(None),
    tool_resource: Optional[ToolResource] = Form(None),
    message_file: bool = Form(False),
    model: Optional[str] = Form(None),
    user_id: str = Depends(current_user),
    processor: UploadProcessor = Depends(get_upload_processor),
):
    """Upload a file for an agent tool resource or as a message attachment."""
    meta = _metadata(file_id, temp_file_id, agent_id, tool_resource, message_file, None, model)
    uploaded = await _read_upload(file)
    record, analysis = await _run_upload(processor.process_agent_upload(uploaded, meta, user_id))
    return _upload_response(record, analysis, "Agent file uploaded and processed successfully")


@router.post("/unified", response_model=UploadResponse, status_code=201)
async def upload_unified(
    file: UploadFile = FastAPIFile(...),
    file_id: Optional[UUID] = Form(None),
    agent_id: Optional[str] = Form(None),
    tool_resource: Optional[ToolResource] = Form(None),
    message_file: bool = Form(False),
    user_id: str = Depends(current_user),
    processor: UploadProcessor = Depends(get_upload_processor),
):
    """Store the file now; extraction and embedding continue in the background."""
    meta = _metadata(file_id, None, agent_id, tool_resource, message_file, None, None)
    uploaded = await _read_upload(file)
    record, analysis = await _run_upload(processor.process_unified_upload(uploaded, meta, user_id))
    return _upload_response(record, analysis)


@router.get("", response_model=list[FileResponseSchema])
async def list_files(
    limit: int = 100,
    offset: int = 0,
    user_id: str = Depends(current_user),
):
    return await file_records.get_files(user_id=user_id, limit=limit, offset=offset)


@router.delete("", response_model=DeleteFilesResponse)
async def delete_files(
    body: DeleteFilesRequest,
    user_id: str = Depends(current_user),
    processor: UploadProcessor = Depends(get_upload_processor),
):
    """Delete files, their vectors, stored bytes and agent links."""
    file_ids = [ref.file_id for ref in body.files]
    if not file_ids:
        raise HTTPException(status_code=400, detail="No files provided")

    records = await file_records.get_files(file_ids, user_id=user_id, limit=len(file_ids))
    if not records:
        raise HTTPException(status_code=404, detail="Files not found")

    result = await process_delete_request(
        records,
        user_id,
        storage=processor.storage,
        rag=processor.rag,
        agent_id=body.agent_id,
        tool_resource=body.tool_resource,
    )
    message = "Files deleted successfully" if not result.failed else "Some files could not be deleted"
    return DeleteFilesResponse(message=message, deleted=result.deleted, failed=result.failed)


@router.post("/context", response_model=FileContextResponse)
async def file_context(
    body: FileContextRequest,
    user_id: str = Depends(current_user),
):
    """Inline text context for a message's attachments."""
    records = await file_records.get_files(body.file_ids, user_id=user_id, limit=len(body.file_ids) or 1)
    order = {fid: i for i, fid in enumerate(body.file_ids)}
    records.sort(key=lambda r: order.get(r.file_id, len(order)))
    await file_records.process_files(records)
    return FileContextResponse(context=build_file_context(records, body.token_limit))


@router.post("/embedding-complete")
async def embedding_complete(
    payload: EmbeddingCompletePayload,
    request: Request,
    response: Response,
):
    """Called by the embedding service when background embedding finishes."""
    auth_header = request.headers.get("authorization", "")
    if not auth_header.startswith("Bearer "):
        logger.warning("[embedding-complete] missing or invalid Authorization header")
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header")
    if not settings.JWT_SECRET:
        logger.error("[embedding-complete] JWT_SECRET not configured")
        raise HTTPException(status_code=500, detail="Server configuration error")
    try:
        verify_token(auth_header.split(" ", 1)[1], settings.JWT_SECRET)
    except jwt.InvalidTokenError as e:
        logger.warning(f"[embedding-complete] invalid token: {e}")
        raise HTTPException(status_code=401, detail="Invalid token")

    if not payload.file_id:
        raise HTTPException(status_code=400, detail="file_id is required")

    try:
        record, deferred = await file_matrix.receive_embedding_callback(
            payload.file_id, payload.embedded, payload.error,
        )
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid file_id")
    if deferred:
        response.status_code = 202
        return {"success": True, "file_id": payload.file_id, "deferred": True}
    if record is None:
        logger.warning(f"[embedding-complete] file not found: {payload.file_id}")
        raise HTTPException(status_code=404, detail="File not found")

    return {"success": True, "file_id": payload.file_id}


@router.get("/{file_id}", response_model=FileResponseSchema)
async def get_file_metadata(
    file_id: UUID,
    user_id: str = Depends(current_user),
):
    """Get file metadata by ID."""
    record = await file_records.get_file(file_id, user_id=user_id)
    if not record:
        raise HTTPException(status_code=404, detail="File not found")
    return record


@router.get("/{file_id}/download")
async def download_file(
    file_id: UUID,
    user_id: str = Depends(current_user),
    processor: UploadProcessor = Depends(get_upload_processor),
):
    """Download a file's bytes (or its inline text)."""
    record = await file_records.get_file(file_id, user_id=user_id)
    if not record:
        raise HTTPException(status_code=404, detail="File not found")

    if record.source == FileSource.TEXT.value:
        return Response(content=record.text or "", media_type="text/plain; charset=utf-8")

    try:
        backend = processor.storage.get(record.source)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Storage backend '{record.source}' unavailable")

    media_type = record.mimetype or "application/octet-stream"
    if isinstance(backend, LocalStorage):
        return FileResponse(path=record.filepath, filename=record.filename, media_type=media_type)
    data = await backend.read(record.filepath)
    return Response(
        content=data,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{record.filename}"'},
    )
