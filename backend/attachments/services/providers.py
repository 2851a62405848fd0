"""OCR and speech-to-text providers for the inline-context strategy.

Both SDKs are sync; calls go through ``SyncSDKCaller._with_retry`` (a thread
plus exponential backoff), bounded overall by ``asyncio.wait_for``.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

from attachments.config import settings
from attachments.services.sdk_retry import SyncSDKCaller, openai_retryable

logger = logging.getLogger(__name__)

OCR_PROMPT = (
    "Extract all of the text content from this document. Preserve reading order, "
    "headings, lists and tables (as markdown). Return only the extracted text."
)


class ProviderTimeoutError(TimeoutError):
    pass


class BaseTextProvider(SyncSDKCaller, ABC):
    """Turns a file's bytes into text."""

    timeout: float = 180

    def __init__(self, api_key: str, model_name: str):
        self.api_key = api_key
        self.model_name = model_name

    async def extract_text(self, data: bytes, mimetype: str, filename: str) -> str:
        try:
            return await asyncio.wait_for(
                self._with_retry(self._sync_extract, data, mimetype, filename),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            raise ProviderTimeoutError(f"{type(self).__name__} timed out after {self.timeout}s")

    @abstractmethod
    def _sync_extract(self, data: bytes, mimetype: str, filename: str) -> str:
        pass


class GeminiOCRService(BaseTextProvider):
    """OCR through Gemini vision (inline bytes)."""

    def __init__(self, api_key: str, model_name: str):
        super().__init__(api_key, model_name)
        from google import genai
        try:
            from google.api_core.exceptions import ResourceExhausted, ServiceUnavailable
            self.RETRYABLE_EXCEPTIONS = (
                ResourceExhausted, ServiceUnavailable, ConnectionError, TimeoutError,
            )
        except ImportError:
            pass
        self.client = genai.Client(api_key=api_key)

    def _sync_extract(self, data, mimetype, filename):
        from google.genai import types

        part = types.Part.from_bytes(data=data, mime_type=mimetype)
        response = self.client.models.generate_content(
            model=self.model_name,
            contents=[part, OCR_PROMPT],
        )
        return response.text or ""


class OpenAISTTService(BaseTextProvider):
    """Speech-to-text through the OpenAI transcription endpoint."""

    def __init__(self, api_key: str, model_name: str):
        super().__init__(api_key, model_name)
        from openai import OpenAI
        self.client = OpenAI(api_key=api_key)
        self.RETRYABLE_EXCEPTIONS = openai_retryable()

    def _sync_extract(self, data, mimetype, filename):
        transcription = self.client.audio.transcriptions.create(
            model=self.model_name,
            file=(filename, data, mimetype),
        )
        return transcription.text


def build_ocr_service() -> Optional[BaseTextProvider]:
    if settings.OCR_PROVIDER == "gemini" and settings.GEMINI_API_KEY:
        return GeminiOCRService(settings.GEMINI_API_KEY, settings.GEMINI_OCR_MODEL)
    if settings.OCR_PROVIDER:
        logger.warning(f"OCR provider '{settings.OCR_PROVIDER}' not configured, OCR disabled")
    return None


def build_stt_service() -> Optional[BaseTextProvider]:
    if settings.STT_PROVIDER == "openai" and settings.OPENAI_API_KEY:
        return OpenAISTTService(settings.OPENAI_API_KEY, settings.OPENAI_STT_MODEL)
    if settings.STT_PROVIDER:
        logger.warning(f"STT provider '{settings.STT_PROVIDER}' not configured, STT disabled")
    return None
