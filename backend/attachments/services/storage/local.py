"""Local filesystem storage backend."""
import asyncio
import io
import logging
import os
from pathlib import Path
from typing import Optional

import aiofiles

from attachments.constants import FileSource
from attachments.services.storage.base import StorageBackend, StorageResult, UploadedFile
from attachments.services.storage.sanitize import sanitized_upload

logger = logging.getLogger(__name__)


def image_dimensions(data: bytes) -> tuple[Optional[int], Optional[int]]:
    """Return (width, height) for image bytes, (None, None) if unreadable."""
    from PIL import Image, UnidentifiedImageError

    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.width, img.height
    except (UnidentifiedImageError, OSError, ValueError):
        return None, None


class LocalStorage(StorageBackend):
    """Writes files under ``<base>/<user_id>/<file_id>__<filename>``."""

    source = FileSource.LOCAL.value

    def __init__(self, base_path: str):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _user_dir(self, user_id: str) -> Path:
        path = self.base_path / user_id
        path.mkdir(parents=True, exist_ok=True)
        return path

    async def upload(self, file: UploadedFile, file_id: str, user_id: str) -> StorageResult:
        file_path = self._user_dir(user_id) / f"{file_id}__{file.filename}"
        async with aiofiles.open(file_path, "wb") as f:
            await f.write(file.data)

        width = height = None
        if (file.mimetype or "").startswith("image/"):
            width, height = await asyncio.to_thread(image_dimensions, file.data)

        logger.debug(f"[storage.local] wrote {file.size} bytes to {file_path}")
        return StorageResult(
            filepath=str(file_path),
            bytes=file.size,
            width=width,
            height=height,
        )

    async def read(self, filepath: str) -> bytes:
        async with aiofiles.open(filepath, "rb") as f:
            return await f.read()

    async def delete(self, filepath: str) -> None:
        path = Path(filepath)
        if path.exists():
            os.remove(path)
            return
        logger.warning(f"[storage.local] {filepath} already absent")

    async def save_from_url(self, url: str, file_id: str, user_id: str, filename: str) -> StorageResult:
        import aiohttp

        async with aiohttp.ClientSession() as session:
            async with session.get(url) as resp:
                resp.raise_for_status()
                data = await resp.read()
                mimetype = resp.headers.get("Content-Type")
        return await sanitized_upload(self, UploadedFile(filename, mimetype, data), file_id, user_id)
