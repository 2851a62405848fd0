"""File request/response schemas and the per-strategy status matrix."""
import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, TypeAdapter

from attachments.constants import (
    FileCategory,
    ProcessingStatus,
    ToolResource,
    UploadStrategy,
)
from attachments.schemas.base import CamelModel, CamelORMModel


class StatusRecord(CamelModel):
    status: ProcessingStatus
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    error: Optional[str] = None


# Keys must be known strategies.
StrategyMatrix = dict[UploadStrategy, StatusRecord]
_matrix_adapter = TypeAdapter(StrategyMatrix)


def parse_matrix(raw: Optional[dict]) -> StrategyMatrix:
    """Validate a stored ``metadata.strategies`` blob."""
    return _matrix_adapter.validate_python(raw or {})


def dump_matrix(matrix: StrategyMatrix) -> dict:
    """Serialize a matrix to the JSON shape persisted on the record."""
    return {
        strategy.value: record.model_dump(mode="json", by_alias=True, exclude_none=True)
        for strategy, record in matrix.items()
    }


class UploadMetadata(CamelModel):
    """Routing hints sent alongside an uploaded file."""
    file_id: uuid.UUID = Field(default_factory=uuid.uuid4)
    temp_file_id: Optional[str] = None
    agent_id: Optional[str] = None
    tool_resource: Optional[ToolResource] = None
    message_file: bool = False
    endpoint: Optional[str] = None
    model: Optional[str] = None


class AnalysisResponse(CamelModel):
    category: FileCategory
    primary_strategy: UploadStrategy
    background_strategies: list[UploadStrategy] = []
    should_embed: bool
    tool_resource: Optional[ToolResource] = None
    user_override: bool = False


class FileResponse(CamelORMModel):
    file_id: uuid.UUID
    user_id: str = "default"
    temp_file_id: Optional[str] = None
    filename: str
    mimetype: Optional[str] = None
    bytes: int = 0
    width: Optional[int] = None
    height: Optional[int] = None
    filepath: str
    source: str
    context: str
    category: str
    embedded: bool = False
    text: Optional[str] = None
    usage: int = 0
    metadata: dict = Field(default_factory=dict, validation_alias="file_metadata")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class UploadResponse(FileResponse):
    message: str = "File uploaded and processed successfully"
    analysis: Optional[AnalysisResponse] = None


class EmbeddingCompletePayload(BaseModel):
    """Callback body posted by the embedding service (snake_case on the wire)."""
    file_id: Optional[str] = None
    embedded: Optional[bool] = None
    error: Optional[str] = None


class FileRef(CamelModel):
    file_id: uuid.UUID


class DeleteFilesRequest(CamelModel):
    files: list[FileRef]
    agent_id: Optional[str] = None
    tool_resource: Optional[ToolResource] = None


class DeleteFilesResponse(CamelModel):
    message: str = "Files deleted successfully"
    deleted: list[str] = []
    failed: list[str] = []


class FileContextRequest(CamelModel):
    file_ids: list[uuid.UUID]
    token_limit: Optional[int] = None


class FileContextResponse(CamelModel):
    context: Optional[str] = None
