"""Deletion pipeline: vectors, storage backend, agent links, then records.

Per-file work runs concurrently and settles independently. Only files whose
storage delete succeeded are removed from the database; the rest stay and are
logged for manual follow-up.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Optional

from attachments.constants import FileSource, ToolResource
from attachments.models import FileRecord
from attachments.services import file_records
from attachments.services.background import safe_error_message
from attachments.services.leaky_bucket import get_limiter
from attachments.services.rag_client import RagClient
from attachments.services.storage import StorageRegistry

logger = logging.getLogger(__name__)


@dataclass
class DeleteResult:
    deleted: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


async def _delete_vectors(rag: RagClient, record: FileRecord, user_id: str) -> None:
    try:
        await rag.delete_vectors([str(record.file_id)], user_id)
    except Exception as e:
        # vectors may linger; the record is still removed
        logger.error(f"[delete] error deleting vectors for {record.file_id}: {e}")


async def _delete_from_storage(storage: StorageRegistry, record: FileRecord) -> None:
    backend = storage.get(record.source or FileSource.LOCAL.value)
    if backend.rate_limited:
        await get_limiter(backend.source).submit(backend.delete, record.filepath)
    else:
        await backend.delete(record.filepath)


async def process_delete_request(
    records: list[FileRecord],
    user_id: str,
    *,
    storage: StorageRegistry,
    rag: RagClient,
    agent_id: Optional[str] = None,
    tool_resource: Optional[ToolResource] = None,
) -> DeleteResult:
    result = DeleteResult()
    resolved: list[str] = []
    storage_jobs: list[tuple[str, Awaitable]] = []
    side_jobs = []

    for record in records:
        file_id = str(record.file_id)

        if record.embedded and rag.enabled:
            side_jobs.append(_delete_vectors(rag, record, user_id))

        if record.source == FileSource.TEXT.value:
            # inline text, nothing stored elsewhere
            resolved.append(file_id)
            continue

        storage_jobs.append((file_id, _delete_from_storage(storage, record)))

    if agent_id and records:
        side_jobs.append(file_records.remove_agent_resource_files(
            agent_id,
            [r.file_id for r in records],
            tool_resource.value if tool_resource else None,
        ))

    outcomes = await asyncio.gather(
        *(job for _, job in storage_jobs), *side_jobs, return_exceptions=True,
    )

    for (file_id, _), outcome in zip(storage_jobs, outcomes):
        if isinstance(outcome, BaseException):
            logger.error(f"[delete] error deleting file {file_id}: {safe_error_message(outcome)}")
            result.failed.append(file_id)
        else:
            resolved.append(file_id)

    for outcome in outcomes[len(storage_jobs):]:
        if isinstance(outcome, BaseException):
            logger.error(f"[delete] error removing agent resource links: {safe_error_message(outcome)}")

    if resolved:
        await file_records.delete_files(resolved, user_id)
    result.deleted = resolved
    logger.info(f"[delete] removed {len(resolved)} file(s), {len(result.failed)} failed")
    return result
