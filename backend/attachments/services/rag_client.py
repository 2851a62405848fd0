"""Async client for the external text-extraction / embedding (RAG) service.

Extraction is synchronous from our side (the response carries the text) while
embedding happens remotely; the service calls back on
``/api/files/embedding-complete`` when it is done.
"""
import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Optional

import aiohttp
import jwt

from attachments.config import settings

logger = logging.getLogger(__name__)

CALLBACK_PATH = "/api/files/embedding-complete"


class RagAPIError(Exception):
    """Error from the embedding service; carries status, message, and URL."""

    def __init__(self, status: int, message: str, url: str):
        self.status = status
        self.message = message
        self.url = url
        super().__init__(str(self))

    def __str__(self) -> str:
        if self.status:
            return f"HTTP {self.status} from {self.url}: {self.message}"
        return f"Connection error for {self.url}: {self.message}"


@dataclass
class ExtractionResult:
    text: str
    char_count: int = 0
    extraction_time: float = 0.0
    # Remote embedding is still running when extraction returns
    embedded: bool = False


def generate_short_lived_token(user_id: str, secret: str, expires_in: int = 300) -> str:
    now = int(time.time())
    payload = {"id": user_id, "iat": now, "exp": now + expires_in}
    return jwt.encode(payload, secret, algorithm="HS256")


def verify_token(token: str, secret: str) -> dict:
    """Decode a bearer token. Raises ``jwt.InvalidTokenError`` when invalid or expired."""
    return jwt.decode(token, secret, algorithms=["HS256"])


class RagClient:
    """Async HTTP client for the embedding service.

    Same session model as the other outbound clients: ``async with`` keeps a
    pooled session, otherwise every call opens a one-off session.
    """

    def __init__(
        self,
        base_url: str,
        jwt_secret: str,
        callback_base_url: str,
        timeout: float = 300,
        token_ttl: int = 300,
    ):
        self.base_url = base_url.rstrip("/")
        self.jwt_secret = jwt_secret
        self.callback_url = f"{callback_base_url.rstrip('/')}{CALLBACK_PATH}"
        self.token_ttl = token_ttl
        self._session: Optional[aiohttp.ClientSession] = None
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    async def open(self) -> None:
        if not self._session:
            self._session = aiohttp.ClientSession()

    async def close(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "RagClient":
        await self.open()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    def _headers(self, user_id: str) -> dict:
        token = generate_short_lived_token(user_id, self.jwt_secret, self.token_ttl)
        return {"Authorization": f"Bearer {token}", "accept": "application/json"}

    async def _request(self, method: str, url: str, **kwargs) -> tuple[int, str]:
        """Issue one request; returns (status, body). Transport failures become RagAPIError."""
        try:
            if self._session:
                async with self._session.request(method, url, timeout=self._timeout, **kwargs) as resp:
                    return resp.status, await resp.text()
            async with aiohttp.ClientSession() as session:
                async with session.request(method, url, timeout=self._timeout, **kwargs) as resp:
                    return resp.status, await resp.text()
        except asyncio.TimeoutError as e:
            raise RagAPIError(
                status=0,
                message="Request timed out, embedding service did not respond in time",
                url=url,
            ) from e
        except aiohttp.ClientError as e:
            raise RagAPIError(status=0, message=str(e) or type(e).__name__, url=url) from e

    @staticmethod
    def _parse_json(body: str, url: str) -> dict:
        try:
            return json.loads(body) if body else {}
        except json.JSONDecodeError as e:
            raise RagAPIError(status=200, message=f"Invalid JSON response: {body[:200]}", url=url) from e

    async def extract(
        self,
        *,
        file_id: str,
        filename: str,
        data: bytes,
        mimetype: Optional[str],
        user_id: str,
        entity_id: Optional[str] = None,
        storage_metadata: Optional[dict] = None,
    ) -> ExtractionResult:
        """Upload a file for extraction and background embedding."""
        url = f"{self.base_url}/embed"

        form = aiohttp.FormData()
        form.add_field("file_id", file_id)
        form.add_field(
            "file", data, filename=filename,
            content_type=mimetype or "application/octet-stream",
        )
        if entity_id:
            form.add_field("entity_id", entity_id)
        if storage_metadata:
            form.add_field("storage_metadata", json.dumps(storage_metadata))
        form.add_field("callback_url", self.callback_url)

        start = time.monotonic()
        status, body = await self._request("POST", url, data=form, headers=self._headers(user_id))
        if status >= 400:
            logger.error(f"[rag] embed failed for {file_id}: HTTP {status}")
            raise RagAPIError(status=status, message=body[:500] or "No response body", url=url)

        payload = self._parse_json(body, url)
        if payload.get("known_type") is False:
            raise RagAPIError(
                status=status,
                message=f"File embedding failed: unsupported file type {mimetype or 'unknown'}",
                url=url,
            )
        if not payload.get("status"):
            raise RagAPIError(status=status, message="File embedding failed", url=url)

        text = payload.get("text") or ""
        result = ExtractionResult(
            text=text,
            char_count=payload.get("char_count", len(text)),
            extraction_time=payload.get("extraction_time", round(time.monotonic() - start, 3)),
            embedded=False,
        )
        logger.info(
            f"[rag] extracted {result.char_count} chars from {filename} "
            f"in {result.extraction_time}s, embedding in background"
        )
        return result

    async def delete_vectors(self, file_ids: list[str], user_id: str) -> None:
        """Remove vectors for ``file_ids``. A 404 means already absent."""
        url = f"{self.base_url}/documents"
        headers = self._headers(user_id)
        headers["Content-Type"] = "application/json"
        status, body = await self._request("DELETE", url, data=json.dumps(file_ids), headers=headers)
        if status == 404:
            logger.warning(f"[rag] no vectors found for {file_ids}, treating as deleted")
            return
        if status >= 400:
            raise RagAPIError(status=status, message=body[:500] or "No response body", url=url)

    async def parse_text(
        self, *, file_id: str, filename: str, data: bytes, mimetype: Optional[str], user_id: str,
    ) -> str:
        """Text-only parsing, no embedding."""
        url = f"{self.base_url}/text"
        form = aiohttp.FormData()
        form.add_field("file_id", file_id)
        form.add_field(
            "file", data, filename=filename,
            content_type=mimetype or "application/octet-stream",
        )
        status, body = await self._request("POST", url, data=form, headers=self._headers(user_id))
        if status >= 400:
            raise RagAPIError(status=status, message=body[:500] or "No response body", url=url)
        return self._parse_json(body, url).get("text") or ""


def build_rag_client() -> RagClient:
    return RagClient(
        base_url=settings.RAG_API_URL,
        jwt_secret=settings.JWT_SECRET,
        callback_base_url=settings.callback_base_url,
        timeout=settings.RAG_REQUEST_TIMEOUT,
        token_ttl=settings.JWT_EXPIRY_SECONDS,
    )
