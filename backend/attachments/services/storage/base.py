"""Storage backend contract.

Every backend exposes the same upload/delete/read surface; callers select one
by source tag through the registry and never branch on backend names.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class UploadedFile:
    """An uploaded file held in memory for the duration of one request."""
    filename: str
    mimetype: Optional[str]
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class StorageResult:
    filepath: str
    bytes: int
    width: Optional[int] = None
    height: Optional[int] = None
    # Set by backends that index content themselves
    embedded: Optional[bool] = None
    # Backend-assigned id (provider-hosted files)
    id: Optional[str] = None
    filename: Optional[str] = None


class StorageBackend(ABC):
    """Abstract storage backend."""

    source: str = ""
    # Quota-constrained backends have their deletes routed through a leaky bucket
    rate_limited: bool = False

    @abstractmethod
    async def upload(self, file: UploadedFile, file_id: str, user_id: str) -> StorageResult:
        """Persist the bytes. Raises on failure."""

    @abstractmethod
    async def delete(self, filepath: str) -> None:
        pass

    @abstractmethod
    async def read(self, filepath: str) -> bytes:
        pass

    async def save_from_url(self, url: str, file_id: str, user_id: str, filename: str) -> StorageResult:
        raise NotImplementedError(f"{type(self).__name__} does not support saving from a URL")
