"""Code-execution sandbox client.

Uploaded files are addressed by an opaque identifier of the form
``session_id/file_id`` with an optional ``?entity_id=...`` suffix.
"""
import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import parse_qs

import aiohttp

from attachments.config import settings

logger = logging.getLogger(__name__)


class CodeEnvAPIError(Exception):
    """Error from the sandbox API; carries status, message, and URL."""

    def __init__(self, status: int, message: str, url: str):
        self.status = status
        self.message = message
        self.url = url
        super().__init__(str(self))

    def __str__(self) -> str:
        if self.status:
            return f"HTTP {self.status} from {self.url}: {self.message}"
        return f"Connection error for {self.url}: {self.message}"


@dataclass(frozen=True)
class FileIdentifier:
    session_id: str
    file_id: str
    entity_id: Optional[str] = None

    def __str__(self) -> str:
        base = f"{self.session_id}/{self.file_id}"
        return f"{base}?entity_id={self.entity_id}" if self.entity_id else base


def parse_file_identifier(identifier: str) -> FileIdentifier:
    """Split ``session_id/file_id[?entity_id=...]``. Raises ValueError when malformed."""
    path, _, query = identifier.partition("?")
    session_id, sep, file_id = path.partition("/")
    if not sep or not session_id or not file_id or "/" in file_id:
        raise ValueError(f"Invalid code environment file identifier: {identifier!r}")
    entity_id = parse_qs(query).get("entity_id", [None])[0] if query else None
    return FileIdentifier(session_id, file_id, entity_id)


class CodeEnvClient:

    def __init__(self, base_url: str, timeout: float = 120):
        self.base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    async def upload_stream(
        self, filename: str, data: bytes, *, api_key: str, entity_id: Optional[str] = None,
    ) -> str:
        """Upload ``data`` to the sandbox and return its file identifier."""
        url = f"{self.base_url}/upload"
        form = aiohttp.FormData()
        form.add_field("file", data, filename=filename, content_type="application/octet-stream")
        if entity_id:
            form.add_field("entity_id", entity_id)
        headers = {"X-API-Key": api_key, "User-Agent": "attachments-service"}

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(url, data=form, headers=headers, timeout=self._timeout) as resp:
                    body = await resp.text()
                    if resp.status >= 400:
                        raise CodeEnvAPIError(
                            status=resp.status,
                            message=body[:500] or resp.reason or "No response body",
                            url=url,
                        )
        except CodeEnvAPIError:
            raise
        except asyncio.TimeoutError as e:
            raise CodeEnvAPIError(status=0, message="Request timed out", url=url) from e
        except aiohttp.ClientError as e:
            raise CodeEnvAPIError(status=0, message=str(e) or type(e).__name__, url=url) from e

        try:
            payload = json.loads(body)
            session_id = payload["session_id"]
            remote_file_id = payload["files"][0]["fileId"]
        except (json.JSONDecodeError, KeyError, IndexError, TypeError) as e:
            raise CodeEnvAPIError(status=resp.status, message=f"Unexpected upload response: {body[:200]}", url=url) from e

        identifier = str(FileIdentifier(session_id, remote_file_id, entity_id))
        logger.info(f"[code_env] uploaded {filename} -> {identifier}")
        return identifier


def build_code_env_client() -> CodeEnvClient:
    return CodeEnvClient(settings.CODE_API_URL)
