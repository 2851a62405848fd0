"""Filename sanitization applied in front of every storage backend."""
import logging
import os
import re

from attachments.services.storage.base import StorageBackend, StorageResult, UploadedFile

logger = logging.getLogger(__name__)

MAX_FILENAME_LENGTH = 255

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def sanitize_filename(filename: str | None) -> str:
    """Reduce a client-supplied name to a safe basename.

    Strips directories, control characters (CR/LF included) and anything
    outside ``[A-Za-z0-9._-]``. Names are capped at 255 chars keeping the
    extension.
    """
    name = (filename or "").replace("\\", "/")
    name = os.path.basename(name)
    name = _CONTROL_CHARS.sub("", name)
    name = _UNSAFE_CHARS.sub("_", name)

    # no hidden files, no "." / ".."
    if name.startswith("."):
        name = "_" + name.lstrip(".")
    if not name.strip("._"):
        return "unnamed"

    if len(name) > MAX_FILENAME_LENGTH:
        stem, ext = os.path.splitext(name)
        ext = ext[:20]
        name = stem[: MAX_FILENAME_LENGTH - len(ext)] + ext
    return name


async def sanitized_upload(
    backend: StorageBackend, file: UploadedFile, file_id: str, user_id: str,
) -> StorageResult:
    """Upload through ``backend`` with the filename sanitized first."""
    safe_name = sanitize_filename(file.filename)
    if safe_name != file.filename:
        logger.debug(f"[storage] sanitized filename {file.filename!r} -> {safe_name!r}")
    clean = UploadedFile(filename=safe_name, mimetype=file.mimetype, data=file.data)
    result = await backend.upload(clean, file_id, user_id)
    if result.filename is None:
        result.filename = safe_name
    return result
