import uuid

import pytest

from attachments.config import settings
from attachments.constants import (
    FileCategory,
    FileSource,
    ProcessingStatus,
    ToolResource,
    UploadStrategy,
)
from attachments.schemas.file import UploadMetadata
from attachments.services import file_matrix, file_records
from attachments.services.rag_client import RagAPIError
from attachments.services.upload_processor import UploadValidationError
from conftest import FakeTextProvider, add_agent, make_file


def _meta(**kwargs):
    return UploadMetadata(file_id=uuid.uuid4(), **kwargs)


async def test_report_pdf_message_attachment_has_text_before_embedding(processor, rag):
    meta = _meta(message_file=True)
    record, analysis = await processor.process_agent_upload(
        make_file("report.pdf", "application/pdf"), meta, "user_1",
    )

    assert analysis.category == FileCategory.DOCUMENT
    assert analysis.primary_strategy == UploadStrategy.FILE_SEARCH
    assert analysis.should_embed is True
    assert record.text == "extracted text"
    assert record.embedded is False
    assert len(rag.extract_calls) == 1
    # message attachments are not scoped to an agent
    assert rag.extract_calls[0]["entity_id"] is None

    matrix = file_matrix.get_matrix(record)
    assert matrix[UploadStrategy.FILE_SEARCH].status == ProcessingStatus.EMBEDDING
    assert record.file_metadata["char_count"] == len("extracted text")


async def test_csv_for_agent_with_code_execution_skips_extraction(processor, rag, code_env):
    await add_agent("agent_1", tools=["execute_code"])
    meta = _meta(message_file=True, agent_id="agent_1")
    record, analysis = await processor.process_agent_upload(
        make_file("data.csv", "text/csv", b"a,b\n1,2\n"), meta, "user_1",
    )

    assert analysis.tool_resource == ToolResource.EXECUTE_CODE
    assert analysis.primary_strategy == UploadStrategy.CODE_EXECUTOR
    assert analysis.user_override is False
    assert rag.extract_calls == []
    assert record.text is None
    assert len(code_env.uploads) == 1
    assert record.file_metadata["fileIdentifier"] == "session-1/data.csv"
    assert record.file_metadata["tool_resource"] == "execute_code"
    assert processor.tasks.pending == 0


async def test_photo_png_never_touches_embedding_service(processor, rag, storage):
    meta = _meta(message_file=True)
    record, analysis = await processor.process_agent_upload(
        make_file("photo.png", "image/png"), meta, "user_1",
    )

    assert analysis.category == FileCategory.IMAGE
    assert analysis.primary_strategy == UploadStrategy.IMAGE
    assert analysis.should_embed is False
    assert rag.extract_calls == []
    assert len(storage.uploads) == 1
    assert file_matrix.get_matrix(record)[UploadStrategy.IMAGE].status == ProcessingStatus.COMPLETED


async def test_agent_upload_requires_tool_resource(processor, storage):
    with pytest.raises(UploadValidationError, match="No tool resource"):
        await processor.process_agent_upload(
            make_file("report.pdf", "application/pdf"), _meta(agent_id="agent_1"), "user_1",
        )
    assert storage.uploads == []


async def test_agent_upload_requires_agent_id(processor):
    with pytest.raises(UploadValidationError, match="No agent ID"):
        await processor.process_agent_upload(
            make_file("report.pdf", "application/pdf"),
            _meta(tool_resource=ToolResource.FILE_SEARCH),
            "user_1",
        )


async def test_image_rejected_for_file_search(processor):
    meta = _meta(agent_id="agent_1", tool_resource=ToolResource.FILE_SEARCH)
    with pytest.raises(UploadValidationError, match="Image uploads"):
        await processor.process_agent_upload(make_file("photo.png", "image/png"), meta, "user_1")


async def test_disabled_code_execution_is_rejected(processor, monkeypatch):
    monkeypatch.setattr(settings, "AGENT_CAPABILITIES", "file_search,context")
    meta = _meta(agent_id="agent_1", tool_resource=ToolResource.EXECUTE_CODE)
    with pytest.raises(UploadValidationError, match="Code execution"):
        await processor.process_agent_upload(make_file("main.py", "text/x-python"), meta, "user_1")


async def test_empty_and_oversized_files_rejected(processor, monkeypatch):
    with pytest.raises(UploadValidationError):
        await processor.process_agent_upload(
            make_file("empty.txt", "text/plain", b""), _meta(message_file=True), "user_1",
        )

    monkeypatch.setattr(settings, "MAX_FILE_SIZE_BYTES", 4)
    with pytest.raises(UploadValidationError) as exc_info:
        await processor.process_agent_upload(
            make_file("big.txt", "text/plain", b"too large"), _meta(message_file=True), "user_1",
        )
    assert exc_info.value.status_code == 413


async def test_explicit_file_search_extraction_failure_is_fatal(processor, rag, storage):
    rag.extract_error = RagAPIError(500, "extractor crashed", "http://rag/embed")
    meta = _meta(agent_id="agent_1", tool_resource=ToolResource.FILE_SEARCH)

    with pytest.raises(RagAPIError):
        await processor.process_agent_upload(make_file("report.pdf", "application/pdf"), meta, "user_1")

    assert storage.uploads == []
    assert await file_records.get_file(meta.file_id) is None


async def test_implicit_extraction_failure_degrades(processor, rag):
    rag.extract_error = RagAPIError(500, "extractor crashed", "http://rag/embed")
    meta = _meta(message_file=True)

    record, _ = await processor.process_agent_upload(
        make_file("report.pdf", "application/pdf"), meta, "user_1",
    )

    assert record.text is None
    assert "extractor crashed" in record.file_metadata["extraction_error"]
    status = file_matrix.get_matrix(record)[UploadStrategy.FILE_SEARCH]
    assert status.status == ProcessingStatus.FAILED


async def test_storage_failure_leaves_no_record(processor, storage):
    storage.fail_upload = True
    meta = _meta(message_file=True)
    with pytest.raises(OSError):
        await processor.process_agent_upload(make_file("photo.png", "image/png"), meta, "user_1")
    assert await file_records.get_file(meta.file_id) is None


async def test_file_search_dual_routes_code_suitable_file(processor, code_env, rag):
    await add_agent("agent_1", tools=["execute_code", "file_search"])
    meta = _meta(agent_id="agent_1", tool_resource=ToolResource.FILE_SEARCH)

    record, analysis = await processor.process_agent_upload(
        make_file("sales.xlsx", "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"),
        meta,
        "user_1",
    )

    assert analysis.primary_strategy == UploadStrategy.FILE_SEARCH
    assert record.file_metadata["fileIdentifier"] == "session-1/sales.xlsx?entity_id=agent_1"
    assert record.file_metadata["tool_resource"] == "file_search"
    assert record.text == "extracted text"
    assert code_env.uploads[0]["entity_id"] == "agent_1"
    matrix = file_matrix.get_matrix(record)
    assert matrix[UploadStrategy.CODE_EXECUTOR].status == ProcessingStatus.COMPLETED
    assert matrix[UploadStrategy.FILE_SEARCH].status == ProcessingStatus.EMBEDDING

    links = await file_records.get_agent_resource_files("agent_1")
    assert [(link.tool_resource, link.file_id) for link in links] == [("file_search", meta.file_id)]


async def test_file_search_without_code_tool_is_single_routed(processor, code_env):
    await add_agent("agent_1", tools=["file_search"])
    meta = _meta(agent_id="agent_1", tool_resource=ToolResource.FILE_SEARCH)

    record, _ = await processor.process_agent_upload(
        make_file("sales.csv", "text/csv"), meta, "user_1",
    )

    assert code_env.uploads == []
    assert "fileIdentifier" not in record.file_metadata


async def test_document_is_not_dual_routed(processor, code_env):
    await add_agent("agent_1", tools=["execute_code", "file_search"])
    meta = _meta(agent_id="agent_1", tool_resource=ToolResource.FILE_SEARCH)
    await processor.process_agent_upload(make_file("report.pdf", "application/pdf"), meta, "user_1")
    assert code_env.uploads == []


async def test_dual_upload_failure_is_not_fatal(processor, code_env):
    await add_agent("agent_1", tools=["execute_code"])

    async def broken_upload(*args, **kwargs):
        raise ConnectionError("sandbox unreachable")

    code_env.upload_stream = broken_upload
    meta = _meta(agent_id="agent_1", tool_resource=ToolResource.FILE_SEARCH)
    record, _ = await processor.process_agent_upload(make_file("data.csv", "text/csv"), meta, "user_1")

    assert "fileIdentifier" not in record.file_metadata
    assert record.text == "extracted text"


async def test_context_upload_creates_text_record(processor, storage, rag):
    rag.enabled = False
    meta = _meta(agent_id="agent_1", tool_resource=ToolResource.CONTEXT)

    record, analysis = await processor.process_agent_upload(
        make_file("notes.md", "text/markdown", "# Notes\nhello".encode()), meta, "user_1",
    )

    assert analysis.primary_strategy == UploadStrategy.TEXT_CONTEXT
    assert record.source == FileSource.TEXT.value
    assert record.text == "# Notes\nhello"
    assert record.bytes == len("# Notes\nhello")
    assert record.filepath == f"text://{meta.file_id}"
    assert storage.uploads == []
    links = await file_records.get_agent_resource_files("agent_1")
    assert links[0].tool_resource == "context"


async def test_context_ocr_falls_back_to_text_parsing(processor, rag, monkeypatch):
    processor.ocr = FakeTextProvider(error=RuntimeError("ocr down"))
    meta = _meta(message_file=True, tool_resource=ToolResource.CONTEXT)

    record, _ = await processor.process_agent_upload(
        make_file("scan.pdf", "application/pdf"), meta, "user_1",
    )

    assert processor.ocr.calls == 1
    assert record.text == "extracted text"
    assert len(rag.parse_calls) == 1


async def test_context_ocr_success(processor, rag):
    processor.ocr = FakeTextProvider(text="ocr text")
    meta = _meta(message_file=True, tool_resource=ToolResource.CONTEXT)

    record, _ = await processor.process_agent_upload(make_file("scan.png", "image/png"), meta, "user_1")

    assert record.text == "ocr text"
    assert record.mimetype == "text/plain"
    assert rag.parse_calls == []


async def test_context_ocr_requires_capability(processor, monkeypatch):
    processor.ocr = FakeTextProvider(text="ocr text")
    monkeypatch.setattr(settings, "AGENT_CAPABILITIES", "context")
    meta = _meta(message_file=True, tool_resource=ToolResource.CONTEXT)
    with pytest.raises(UploadValidationError, match="OCR"):
        await processor.process_agent_upload(make_file("scan.png", "image/png"), meta, "user_1")


async def test_context_audio_uses_speech_to_text(processor):
    processor.stt = FakeTextProvider(text="transcript")
    meta = _meta(message_file=True, tool_resource=ToolResource.CONTEXT)

    record, _ = await processor.process_agent_upload(make_file("memo.mp3", "audio/mpeg"), meta, "user_1")

    assert record.text == "transcript"
    assert processor.stt.calls == 1


async def test_context_unsupported_type(processor):
    meta = _meta(message_file=True, tool_resource=ToolResource.CONTEXT)
    with pytest.raises(UploadValidationError, match="not supported for text parsing"):
        await processor.process_agent_upload(make_file("clip.mp4", "video/mp4"), meta, "user_1")


async def test_generic_upload(processor, storage):
    meta = _meta()
    record = await processor.process_file_upload(make_file("photo.png", "image/png"), meta, "user_1")
    assert record.source == "local"
    assert record.context == "message_attachment"
    assert record.filepath in storage.files


async def test_generic_upload_sanitizes_filename(processor, storage):
    record = await processor.process_file_upload(
        make_file("../../etc/pass wd.txt", "text/plain"), _meta(), "user_1",
    )
    assert storage.uploads[0].filename == "pass_wd.txt"
    assert record.filename == "pass_wd.txt"


async def test_assistants_upload_requires_provider_backend(processor):
    with pytest.raises(UploadValidationError, match="Provider-hosted"):
        await processor.process_file_upload(
            make_file("report.pdf", "application/pdf"), _meta(endpoint="assistants"), "user_1",
        )


async def test_generic_document_upload_is_not_marked_searchable(processor, rag):
    meta = _meta()
    record = await processor.process_file_upload(
        make_file("report.pdf", "application/pdf"), meta, "user_1",
    )

    assert record.text is None
    assert record.embedded is False
    assert rag.extract_calls == []
    assert UploadStrategy.FILE_SEARCH not in file_matrix.get_matrix(record)


async def test_generic_image_upload_is_complete(processor):
    record = await processor.process_file_upload(make_file("photo.png", "image/png"), _meta(), "user_1")
    assert file_matrix.get_matrix(record)[UploadStrategy.IMAGE].status == ProcessingStatus.COMPLETED


async def test_embedding_callback_before_record_exists(processor, rag):
    meta = _meta(message_file=True)
    original_extract = rag.extract
    callbacks = []

    async def extract_with_immediate_callback(**kwargs):
        callbacks.append(await file_matrix.receive_embedding_callback(kwargs["file_id"], embedded=True))
        return await original_extract(**kwargs)

    rag.extract = extract_with_immediate_callback
    record, _ = await processor.process_agent_upload(
        make_file("report.pdf", "application/pdf"), meta, "user_1",
    )

    assert callbacks == [(None, True)]
    assert record.embedded is True
    assert file_matrix.get_matrix(record)[UploadStrategy.FILE_SEARCH].status == ProcessingStatus.COMPLETED
    stored = await file_records.get_file(meta.file_id)
    assert stored.embedded is True
    assert stored.text == "extracted text"


async def test_held_callback_dropped_when_upload_fails(processor, rag, storage):
    meta = _meta(message_file=True)
    storage.fail_upload = True
    original_extract = rag.extract

    async def extract_with_immediate_callback(**kwargs):
        await file_matrix.receive_embedding_callback(kwargs["file_id"], embedded=True)
        return await original_extract(**kwargs)

    rag.extract = extract_with_immediate_callback
    with pytest.raises(OSError):
        await processor.process_agent_upload(make_file("report.pdf", "application/pdf"), meta, "user_1")

    assert await file_records.get_file(meta.file_id) is None
    record, deferred = await file_matrix.receive_embedding_callback(meta.file_id, embedded=True)
    assert (record, deferred) == (None, False)
