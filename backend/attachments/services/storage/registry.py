"""Source tag -> storage backend lookup."""
import logging
from typing import Optional

from attachments.config import settings
from attachments.constants import FileSource
from attachments.services.storage.base import StorageBackend

logger = logging.getLogger(__name__)


class StorageRegistry:

    def __init__(self, backends: Optional[dict[str, StorageBackend]] = None):
        self._backends: dict[str, StorageBackend] = dict(backends or {})

    def register(self, backend: StorageBackend) -> None:
        self._backends[backend.source] = backend

    def get(self, source: str) -> StorageBackend:
        backend = self._backends.get(source)
        if backend is None:
            raise ValueError(f"No storage backend registered for source '{source}'")
        return backend

    def has(self, source: str) -> bool:
        return source in self._backends

    def for_file_strategy(self) -> StorageBackend:
        return self.get(settings.FILE_STRATEGY)

    def for_image_strategy(self) -> StorageBackend:
        return self.get(settings.IMAGE_STRATEGY)


def build_default_registry() -> StorageRegistry:
    from attachments.services.storage.local import LocalStorage

    registry = StorageRegistry()
    registry.register(LocalStorage(settings.FILE_STORAGE_PATH))
    if settings.OPENAI_FILES_ENABLED and settings.OPENAI_API_KEY:
        from attachments.services.storage.openai_files import OpenAIFileStorage
        registry.register(OpenAIFileStorage(settings.OPENAI_API_KEY))
    elif settings.OPENAI_FILES_ENABLED:
        logger.warning("OPENAI_FILES_ENABLED is set but OPENAI_API_KEY is empty; provider storage disabled")
    return registry
