"""Upload intent inference for message attachments without an explicit tool resource.

Extension lookup first (most reliable), then MIME patterns, then a
FILE_SEARCH default since the embedding service handles most text.
"""
import logging
import re
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Optional

from attachments.constants import ToolResource
from attachments.services.classification import get_extension

logger = logging.getLogger(__name__)


class UploadIntent(str, Enum):
    IMAGE = "image"
    FILE_SEARCH = "file_search"
    CODE_INTERPRETER = "code_interpreter"


@dataclass(frozen=True)
class UploadIntentResult:
    intent: UploadIntent
    confidence: float


_IMAGE_EXTS = (".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg", ".bmp", ".ico", ".tiff", ".tif")
_CODE_EXTS = (
    # spreadsheets
    ".xlsx", ".xls", ".csv", ".tsv", ".ods",
    # source and structured data
    ".py", ".js", ".ts", ".jsx", ".tsx", ".json", ".yaml", ".yml", ".xml", ".sql",
    ".sh", ".bash", ".r", ".rb", ".php", ".java", ".c", ".cpp", ".h", ".go", ".rs",
    ".swift", ".kt", ".scala", ".ipynb",
)
_DOC_EXTS = (
    ".pdf", ".doc", ".docx", ".txt", ".md", ".markdown", ".rtf", ".odt", ".ppt",
    ".pptx", ".html", ".htm", ".epub",
)

EXTENSION_MAP: MappingProxyType = MappingProxyType({
    **{ext: UploadIntent.IMAGE for ext in _IMAGE_EXTS},
    **{ext: UploadIntent.CODE_INTERPRETER for ext in _CODE_EXTS},
    **{ext: UploadIntent.FILE_SEARCH for ext in _DOC_EXTS},
})

# Substring patterns unless given as a compiled regex
MIME_PATTERNS: tuple[tuple[object, UploadIntent], ...] = (
    (re.compile(r"^image/"), UploadIntent.IMAGE),
    ("application/vnd.ms-excel", UploadIntent.CODE_INTERPRETER),
    ("application/vnd.openxmlformats-officedocument.spreadsheetml", UploadIntent.CODE_INTERPRETER),
    ("text/csv", UploadIntent.CODE_INTERPRETER),
    ("application/csv", UploadIntent.CODE_INTERPRETER),
    ("text/tab-separated-values", UploadIntent.CODE_INTERPRETER),
    ("text/x-python", UploadIntent.CODE_INTERPRETER),
    ("application/javascript", UploadIntent.CODE_INTERPRETER),
    ("text/javascript", UploadIntent.CODE_INTERPRETER),
    ("application/typescript", UploadIntent.CODE_INTERPRETER),
    ("application/json", UploadIntent.CODE_INTERPRETER),
    ("application/x-yaml", UploadIntent.CODE_INTERPRETER),
    ("text/yaml", UploadIntent.CODE_INTERPRETER),
    ("application/pdf", UploadIntent.FILE_SEARCH),
    ("application/msword", UploadIntent.FILE_SEARCH),
    ("application/vnd.openxmlformats-officedocument.wordprocessingml", UploadIntent.FILE_SEARCH),
    ("text/plain", UploadIntent.FILE_SEARCH),
    ("text/markdown", UploadIntent.FILE_SEARCH),
    ("text/html", UploadIntent.FILE_SEARCH),
)


def analyze_upload_intent(filename: str, mimetype: str | None) -> UploadIntentResult:
    """Decide where an attachment is best consumed."""
    extension = get_extension(filename)
    mime = (mimetype or "").lower()

    if extension in EXTENSION_MAP:
        result = UploadIntentResult(EXTENSION_MAP[extension], 0.95)
        logger.debug(f"[upload_intent] {filename}: extension {extension} -> {result.intent.value}")
        return result

    for pattern, intent in MIME_PATTERNS:
        matched = pattern in mime if isinstance(pattern, str) else pattern.search(mime)
        if matched:
            logger.debug(f"[upload_intent] {filename}: mime {mime} -> {intent.value}")
            return UploadIntentResult(intent, 0.85)

    logger.debug(f"[upload_intent] {filename}: no match, defaulting to file_search")
    return UploadIntentResult(UploadIntent.FILE_SEARCH, 0.5)


def tool_resource_for_intent(intent: UploadIntent) -> Optional[ToolResource]:
    if intent == UploadIntent.CODE_INTERPRETER:
        return ToolResource.EXECUTE_CODE
    if intent == UploadIntent.FILE_SEARCH:
        return ToolResource.FILE_SEARCH
    return None
