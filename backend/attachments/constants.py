"""Closed vocabularies shared by the upload pipeline."""
from enum import Enum


class FileCategory(str, Enum):
    IMAGE = "image"
    DOCUMENT = "document"
    SPREADSHEET = "spreadsheet"
    CODE = "code"
    AUDIO = "audio"
    VIDEO = "video"
    ARCHIVE = "archive"
    UNKNOWN = "unknown"


class UploadStrategy(str, Enum):
    IMAGE = "image"
    CODE_EXECUTOR = "code_executor"
    FILE_SEARCH = "file_search"
    TEXT_CONTEXT = "text_context"
    PROVIDER = "provider"


class ProcessingStatus(str, Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    EXTRACTING = "extracting"
    EMBEDDING = "embedding"
    COMPLETED = "completed"
    FAILED = "failed"


class ToolResource(str, Enum):
    EXECUTE_CODE = "execute_code"
    FILE_SEARCH = "file_search"
    CONTEXT = "context"


class FileSource(str, Enum):
    """Storage-backend tags. ``text`` records carry their content inline."""
    LOCAL = "local"
    OPENAI = "openai"
    TEXT = "text"


class FileContext(str, Enum):
    MESSAGE_ATTACHMENT = "message_attachment"
    AGENTS = "agents"
    ASSISTANTS = "assistants"
    ASSISTANTS_OUTPUT = "assistants_output"


TOOL_RESOURCE_STRATEGY = {
    ToolResource.EXECUTE_CODE: UploadStrategy.CODE_EXECUTOR,
    ToolResource.FILE_SEARCH: UploadStrategy.FILE_SEARCH,
    ToolResource.CONTEXT: UploadStrategy.TEXT_CONTEXT,
}
