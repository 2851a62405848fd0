"""Provider-hosted file storage (OpenAI Files API, assistants purpose).

The SDK is sync; calls go through ``SyncSDKCaller._with_retry``.
Quota-limited, so deletes go through the leaky bucket.
"""
import logging

from attachments.constants import FileSource
from attachments.services.sdk_retry import SyncSDKCaller, openai_retryable
from attachments.services.storage.base import StorageBackend, StorageResult, UploadedFile

logger = logging.getLogger(__name__)


class OpenAIFileStorage(SyncSDKCaller, StorageBackend):

    source = FileSource.OPENAI.value
    rate_limited = True

    def __init__(self, api_key: str, client=None):
        if client is None:
            from openai import OpenAI
            client = OpenAI(api_key=api_key)
        self.client = client
        self.RETRYABLE_EXCEPTIONS = openai_retryable()

    def _sync_create(self, filename: str, data: bytes):
        return self.client.files.create(file=(filename, data), purpose="assistants")

    def _sync_delete(self, provider_file_id: str):
        return self.client.files.delete(provider_file_id)

    def _sync_content(self, provider_file_id: str) -> bytes:
        return self.client.files.content(provider_file_id).read()

    async def upload(self, file: UploadedFile, file_id: str, user_id: str) -> StorageResult:
        created = await self._with_retry(self._sync_create, file.filename, file.data)
        logger.info(f"[storage.openai] uploaded {file.filename} as {created.id}")
        return StorageResult(
            filepath=created.id,
            bytes=getattr(created, "bytes", None) or file.size,
            id=created.id,
            filename=getattr(created, "filename", None) or file.filename,
        )

    async def delete(self, filepath: str) -> None:
        await self._with_retry(self._sync_delete, filepath)

    async def read(self, filepath: str) -> bytes:
        return await self._with_retry(self._sync_content, filepath)
