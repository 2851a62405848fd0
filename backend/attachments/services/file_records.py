"""Async persistence functions for file records and agent resource links.

Each function opens its own session; callers never share one across the
background/request boundary.
"""
import logging
import uuid
from typing import Iterable, Optional

from sqlalchemy import delete, select

from attachments.database import async_session
from attachments.models import Agent, AgentResourceFile, FileRecord

logger = logging.getLogger(__name__)

# columns update_file may touch
_UPDATABLE = {
    "temp_file_id", "filename", "mimetype", "bytes", "width", "height", "filepath",
    "source", "context", "category", "embedded", "text", "usage", "model", "file_metadata",
}


def _as_uuid(value) -> uuid.UUID:
    return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))


async def create_file(data: dict) -> FileRecord:
    record = FileRecord(**data)
    async with async_session() as db:
        db.add(record)
        await db.commit()
        await db.refresh(record)
    return record


async def get_file(file_id, user_id: Optional[str] = None) -> Optional[FileRecord]:
    async with async_session() as db:
        query = select(FileRecord).where(FileRecord.file_id == _as_uuid(file_id))
        if user_id is not None:
            query = query.where(FileRecord.user_id == user_id)
        result = await db.execute(query)
        return result.scalar_one_or_none()


async def get_files(
    file_ids: Optional[Iterable] = None,
    user_id: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
) -> list[FileRecord]:
    async with async_session() as db:
        query = select(FileRecord)
        if file_ids is not None:
            query = query.where(FileRecord.file_id.in_([_as_uuid(f) for f in file_ids]))
        if user_id is not None:
            query = query.where(FileRecord.user_id == user_id)
        query = query.order_by(FileRecord.created_at.desc()).offset(offset).limit(limit)
        result = await db.execute(query)
        return list(result.scalars().all())


async def update_file(file_id, **fields) -> Optional[FileRecord]:
    """Partial update. Returns the updated record, or None if it no longer exists."""
    unknown = set(fields) - _UPDATABLE
    if unknown:
        raise ValueError(f"Cannot update fields: {sorted(unknown)}")

    async with async_session() as db:
        record = await db.get(FileRecord, _as_uuid(file_id))
        if not record:
            return None
        for key, value in fields.items():
            setattr(record, key, value)
        await db.commit()
        await db.refresh(record)
        return record


async def update_file_usage(file_id, inc: int = 1) -> Optional[FileRecord]:
    async with async_session() as db:
        record = await db.get(FileRecord, _as_uuid(file_id))
        if record is None:
            return None
        record.usage = (record.usage or 0) + inc
        await db.commit()
        await db.refresh(record)
        return record


async def process_files(records: list, file_ids: Optional[list] = None) -> list[FileRecord]:
    """Bump usage once per distinct file id; missing files are dropped."""
    seen: set[uuid.UUID] = set()
    updated = []
    ids = [getattr(r, "file_id", None) or r.get("file_id") for r in records] + list(file_ids or [])
    for raw in ids:
        if raw is None:
            continue
        fid = _as_uuid(raw)
        if fid in seen:
            continue
        seen.add(fid)
        record = await update_file_usage(fid)
        if record is not None:
            updated.append(record)
    return updated


async def delete_files(file_ids: Iterable, user_id: Optional[str] = None) -> int:
    """Remove records and their agent associations. Returns deleted record count."""
    ids = [_as_uuid(f) for f in file_ids]
    if not ids:
        return 0
    async with async_session() as db:
        await db.execute(delete(AgentResourceFile).where(AgentResourceFile.file_id.in_(ids)))
        query = delete(FileRecord).where(FileRecord.file_id.in_(ids))
        if user_id is not None:
            query = query.where(FileRecord.user_id == user_id)
        result = await db.execute(query)
        await db.commit()
        logger.info(f"[file_records] deleted {result.rowcount} file record(s)")
        return result.rowcount


async def get_agent(agent_id: str) -> Optional[Agent]:
    async with async_session() as db:
        return await db.get(Agent, agent_id)


async def add_agent_resource_file(agent_id: str, tool_resource: str, file_id) -> None:
    fid = _as_uuid(file_id)
    async with async_session() as db:
        existing = await db.execute(
            select(AgentResourceFile).where(
                AgentResourceFile.agent_id == agent_id,
                AgentResourceFile.tool_resource == tool_resource,
                AgentResourceFile.file_id == fid,
            )
        )
        if existing.scalar_one_or_none():
            return
        db.add(AgentResourceFile(agent_id=agent_id, tool_resource=tool_resource, file_id=fid))
        await db.commit()


async def remove_agent_resource_files(
    agent_id: str, file_ids: Iterable, tool_resource: Optional[str] = None,
) -> int:
    ids = [_as_uuid(f) for f in file_ids]
    async with async_session() as db:
        query = delete(AgentResourceFile).where(
            AgentResourceFile.agent_id == agent_id,
            AgentResourceFile.file_id.in_(ids),
        )
        if tool_resource is not None:
            query = query.where(AgentResourceFile.tool_resource == tool_resource)
        result = await db.execute(query)
        await db.commit()
        return result.rowcount


async def get_agent_resource_files(agent_id: str) -> list[AgentResourceFile]:
    async with async_session() as db:
        result = await db.execute(
            select(AgentResourceFile).where(AgentResourceFile.agent_id == agent_id)
        )
        return list(result.scalars().all())
