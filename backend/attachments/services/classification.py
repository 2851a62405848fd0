"""File classification by MIME type and filename.

Resolution order:
  1. MIME rules, in table order (prefix or substring match)
  2. Extension rules, in table order
  3. any ``text/*`` MIME type -> DOCUMENT
  4. UNKNOWN

Pure and total: never raises, never does I/O.
"""
from types import MappingProxyType

from attachments.constants import FileCategory

PREFIX = "prefix"
CONTAINS = "contains"

# (category, match mode, patterns)
MIME_RULES: tuple[tuple[FileCategory, str, tuple[str, ...]], ...] = (
    (FileCategory.IMAGE, PREFIX, ("image/",)),
    (FileCategory.SPREADSHEET, CONTAINS, (
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "text/csv",
        "application/csv",
    )),
    (FileCategory.CODE, CONTAINS, (
        "text/x-python",
        "application/javascript",
        "text/javascript",
        "application/json",
        "text/x-yaml",
        "application/xml",
    )),
    (FileCategory.DOCUMENT, CONTAINS, (
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "text/plain",
        "text/markdown",
    )),
    (FileCategory.AUDIO, PREFIX, ("audio/",)),
    (FileCategory.VIDEO, PREFIX, ("video/",)),
    (FileCategory.ARCHIVE, CONTAINS, (
        "application/zip",
        "application/x-zip-compressed",
        "application/x-tar",
        "application/gzip",
        "application/x-gzip",
        "application/x-7z-compressed",
        "application/vnd.rar",
        "application/x-rar-compressed",
    )),
)

EXTENSION_RULES: MappingProxyType = MappingProxyType({
    FileCategory.IMAGE: frozenset({".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg", ".bmp"}),
    FileCategory.SPREADSHEET: frozenset({".xlsx", ".xls", ".csv", ".tsv", ".ods"}),
    FileCategory.CODE: frozenset({".py", ".js", ".ts", ".json", ".yaml", ".yml", ".xml", ".sql", ".sh"}),
    FileCategory.DOCUMENT: frozenset({".pdf", ".doc", ".docx", ".txt", ".md", ".html"}),
    FileCategory.AUDIO: frozenset({".mp3", ".wav", ".ogg", ".flac", ".m4a"}),
    FileCategory.VIDEO: frozenset({".mp4", ".mov", ".avi", ".mkv", ".webm"}),
    FileCategory.ARCHIVE: frozenset({".zip", ".tar", ".gz", ".tgz", ".7z", ".rar"}),
})


def get_extension(filename: str | None) -> str:
    """Lower-cased last suffix including the dot, or '' when there is none."""
    name = filename or ""
    if "." not in name:
        return ""
    return "." + name.rsplit(".", 1)[1].lower()


def _mime_matches(mimetype: str, mode: str, patterns: tuple[str, ...]) -> bool:
    if mode == PREFIX:
        return any(mimetype.startswith(p) for p in patterns)
    return any(p in mimetype for p in patterns)


def classify(mimetype: str | None, filename: str | None) -> FileCategory:
    """Map (mimetype, filename) to a FileCategory."""
    mime = (mimetype or "").lower()

    for category, mode, patterns in MIME_RULES:
        if _mime_matches(mime, mode, patterns):
            return category

    extension = get_extension(filename)
    if extension:
        for category, extensions in EXTENSION_RULES.items():
            if extension in extensions:
                return category

    if mime.startswith("text/"):
        return FileCategory.DOCUMENT

    return FileCategory.UNKNOWN
