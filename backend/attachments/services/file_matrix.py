"""Per-file, per-strategy status tracking stored in ``metadata.strategies``.

``set_status`` is idempotent but permissive: it does not check that a
transition moves forward, callers own the sequencing.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Iterable, Optional

from attachments.constants import ProcessingStatus, UploadStrategy
from attachments.database import async_session
from attachments.models import FileRecord
from attachments.schemas.file import StatusRecord, dump_matrix, parse_matrix
from attachments.services.file_records import _as_uuid

logger = logging.getLogger(__name__)

STRATEGIES_KEY = "strategies"


def build_initial_matrix(strategies, status: ProcessingStatus = ProcessingStatus.PENDING) -> dict:
    """Serialized matrix with every strategy at ``status``."""
    now = datetime.now(timezone.utc)
    matrix = {}
    for strategy in strategies:
        record = StatusRecord(status=status, updated_at=now)
        if status != ProcessingStatus.PENDING:
            record.started_at = now
        if status == ProcessingStatus.COMPLETED:
            record.completed_at = now
        matrix[UploadStrategy(strategy)] = record
    return dump_matrix(matrix)


def apply_status(
    raw_matrix: Optional[dict],
    strategy: UploadStrategy,
    status: ProcessingStatus,
    error: Optional[str] = None,
    now: Optional[datetime] = None,
) -> tuple[dict, bool]:
    """Pure matrix update. Returns (serialized matrix, changed)."""
    matrix = parse_matrix(raw_matrix)
    current = matrix.get(strategy)
    if current is not None and current.status == status and (error is None or current.error == error):
        return dump_matrix(matrix), False

    now = now or datetime.now(timezone.utc)
    record = current.model_copy() if current is not None else StatusRecord(status=status)
    record.status = status
    record.updated_at = now
    if status != ProcessingStatus.PENDING and record.started_at is None:
        record.started_at = now
    if status == ProcessingStatus.COMPLETED and record.completed_at is None:
        record.completed_at = now
    if error is not None:
        record.error = error
    matrix[strategy] = record
    return dump_matrix(matrix), True


async def set_status(
    file_id,
    strategy: UploadStrategy | str,
    status: ProcessingStatus | str,
    *,
    error: Optional[str] = None,
    text: Optional[str] = None,
    embedded: Optional[bool] = None,
    metadata: Optional[dict] = None,
    keep: Iterable[ProcessingStatus] = (),
) -> Optional[FileRecord]:
    """Record ``status`` for ``strategy`` on a file, plus optional text/embedded.

    ``metadata`` keys are merged into the record's metadata. When the
    strategy currently sits in one of the ``keep`` statuses the status is
    left alone; text, embedded and metadata are still applied.

    Unknown strategy or status names raise ValueError. Returns the record,
    or None if the file no longer exists.
    """
    strategy = UploadStrategy(strategy)
    status = ProcessingStatus(status)

    async with async_session() as db:
        record = await db.get(FileRecord, _as_uuid(file_id))
        if record is None:
            logger.warning(f"[file_matrix] file {file_id} not found, skipping {strategy.value}={status.value}")
            return None

        current = dict(record.file_metadata or {})
        updated = {**current, **(metadata or {})}
        changed = updated != current

        existing = parse_matrix(current.get(STRATEGIES_KEY)).get(strategy)
        if existing is not None and existing.status in set(keep):
            logger.info(
                f"[file_matrix] {file_id}: {strategy.value} already {existing.status.value}, "
                f"not moving to {status.value}"
            )
        else:
            matrix, status_changed = apply_status(current.get(STRATEGIES_KEY), strategy, status, error)
            if status_changed:
                updated[STRATEGIES_KEY] = matrix
                changed = True

        if text is not None and record.text != text:
            record.text = text
            changed = True
        if embedded is not None and record.embedded != embedded:
            record.embedded = embedded
            changed = True

        if not changed:
            return record

        # reassign so the JSON column is flagged dirty
        record.file_metadata = updated
        await db.commit()
        await db.refresh(record)

    logger.info(f"[file_matrix] {file_id}: {strategy.value} -> {status.value}")
    return record


def get_matrix(record: FileRecord) -> dict:
    return parse_matrix((record.file_metadata or {}).get(STRATEGIES_KEY))


async def record_embedding_result(
    file_id, embedded: Optional[bool] = None, error: Optional[str] = None,
) -> Optional[FileRecord]:
    """Apply the embedding service's completion callback.

    ``embedded`` defaults to True. A reported error is kept in
    ``metadata.embedding_error`` and fails the FILE_SEARCH strategy.
    Returns None when the file does not exist.
    """
    fid = _as_uuid(file_id)
    flag = True if embedded is None else embedded

    status = ProcessingStatus.COMPLETED if flag and not error else ProcessingStatus.FAILED
    record = await set_status(
        fid, UploadStrategy.FILE_SEARCH, status,
        error=error or (None if flag else "Embedding did not complete"),
        embedded=flag,
        metadata={"embedding_error": error} if error else None,
    )
    if record is not None:
        logger.info(f"[file_matrix] embedding callback for {file_id}: embedded={flag}")
    return record


# Extraction (and with it remote embedding) can start before the file's
# record is written. Callbacks for these ids are held until the record exists.
_awaiting_record: dict[uuid.UUID, Optional[tuple[Optional[bool], Optional[str]]]] = {}


def expect_record(file_id) -> None:
    """Mark ``file_id`` as having embedding in flight ahead of its record."""
    _awaiting_record[_as_uuid(file_id)] = None


async def release_record(file_id) -> Optional[FileRecord]:
    """Stop holding callbacks for ``file_id`` and apply one that arrived early.

    Returns the updated record when a held result was applied, else None.
    """
    held = _awaiting_record.pop(_as_uuid(file_id), None)
    if held is None:
        return None
    embedded, error = held
    logger.info(f"[file_matrix] applying early embedding callback for {file_id}")
    return await record_embedding_result(file_id, embedded, error)


async def receive_embedding_callback(
    file_id, embedded: Optional[bool] = None, error: Optional[str] = None,
) -> tuple[Optional[FileRecord], bool]:
    """Callback entry point. Returns (record, deferred).

    ``deferred`` is True when the file's record is still being created and
    the result is held for ``release_record``.
    """
    fid = _as_uuid(file_id)
    record = await record_embedding_result(fid, embedded, error)
    if record is not None:
        return record, False

    if fid in _awaiting_record:
        _awaiting_record[fid] = (embedded, error)
        logger.info(f"[file_matrix] {file_id} has no record yet, holding embedding callback")
        return None, True

    # the record may have been released while this callback was looking it up
    return await record_embedding_result(fid, embedded, error), False


def reset_awaiting_records() -> None:
    _awaiting_record.clear()
