from attachments.services.storage.base import StorageBackend, StorageResult, UploadedFile
from attachments.services.storage.registry import StorageRegistry, build_default_registry
from attachments.services.storage.sanitize import sanitize_filename, sanitized_upload

__all__ = [
    "StorageBackend",
    "StorageResult",
    "UploadedFile",
    "StorageRegistry",
    "build_default_registry",
    "sanitize_filename",
    "sanitized_upload",
]
