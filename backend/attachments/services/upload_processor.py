"""Upload orchestration.

Three entry points share the same building blocks:

- ``process_agent_upload``: agent / message-attachment uploads with intent
  inference, dual-routing to the code sandbox, OCR/STT/text context and
  synchronous text extraction.
- ``process_unified_upload``: storage first, then a PENDING matrix and a
  background extraction/embedding task.
- ``process_file_upload``: plain uploads through the configured strategy (or
  the provider-hosted backend for assistants).

Storage always completes before a record is created. Background work is
submitted to the task runner and never awaited by the caller.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from attachments.config import mime_matches, settings
from attachments.constants import (
    FileCategory,
    FileContext,
    FileSource,
    ProcessingStatus,
    ToolResource,
    UploadStrategy,
)
from attachments.models import FileRecord
from attachments.schemas.file import StatusRecord, UploadMetadata, dump_matrix
from attachments.services import file_matrix, file_records
from attachments.services.background import BackgroundTaskRunner, background_tasks, safe_error_message
from attachments.services.classification import get_extension
from attachments.services.code_env import CodeEnvClient, build_code_env_client
from attachments.services.providers import BaseTextProvider, build_ocr_service, build_stt_service
from attachments.services.rag_client import RagClient, build_rag_client
from attachments.services.storage import (
    StorageBackend,
    StorageRegistry,
    StorageResult,
    UploadedFile,
    build_default_registry,
    sanitized_upload,
)
from attachments.services.strategy import AttachmentAnalysis, analyze_attachment
from attachments.services.upload_intent import (
    UploadIntent,
    analyze_upload_intent,
    tool_resource_for_intent,
)

logger = logging.getLogger(__name__)

# Read by code, not by semantic search: no text extraction when routed to execute_code
SKIP_EXTRACTION_EXTENSIONS = frozenset({
    # spreadsheets
    ".xlsx", ".xls", ".csv", ".tsv",
    # structured data
    ".json", ".xml", ".yaml", ".yml",
    # archives
    ".zip", ".tar", ".gz", ".tgz", ".7z", ".rar",
    # source code
    ".py", ".js", ".ts", ".jsx", ".tsx", ".mjs", ".cjs",
    ".java", ".c", ".cpp", ".h", ".hpp", ".cs",
    ".go", ".rs", ".rb", ".php", ".swift", ".kt", ".scala",
    ".sh", ".bash", ".zsh", ".ps1", ".bat", ".cmd",
    ".sql", ".r", ".m", ".jl",
    ".html", ".css", ".scss", ".sass", ".less",
    ".vue", ".svelte", ".astro",
    # config
    ".toml", ".ini", ".cfg", ".conf", ".env",
    # notebooks
    ".ipynb",
})

# Strategies whose whole job is done once the bytes are stored
PASSTHROUGH_STRATEGIES = frozenset({UploadStrategy.IMAGE, UploadStrategy.PROVIDER})

# Strategy statuses the background task must not overwrite
SETTLED_STATUSES = frozenset({ProcessingStatus.COMPLETED, ProcessingStatus.FAILED})

EMBEDDING_NOT_CONFIGURED = "Embedding service not configured"


class UploadValidationError(ValueError):
    """Request cannot be processed as given; nothing has been persisted."""

    def __init__(self, message: str, status_code: int = 400):
        self.status_code = status_code
        super().__init__(message)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _status(status: ProcessingStatus, error: Optional[str] = None) -> StatusRecord:
    now = _now()
    return StatusRecord(
        status=status,
        started_at=None if status == ProcessingStatus.PENDING else now,
        completed_at=now if status == ProcessingStatus.COMPLETED else None,
        updated_at=now,
        error=error,
    )


def _is_image(mimetype: Optional[str]) -> bool:
    return (mimetype or "").startswith("image")


class UploadProcessor:
    """Drives files through classification, storage, persistence and background work."""

    def __init__(
        self,
        storage: StorageRegistry,
        rag: RagClient,
        code_env: CodeEnvClient,
        ocr: Optional[BaseTextProvider] = None,
        stt: Optional[BaseTextProvider] = None,
        tasks: Optional[BackgroundTaskRunner] = None,
    ):
        self.storage = storage
        self.rag = rag
        self.code_env = code_env
        self.ocr = ocr
        self.stt = stt
        self.tasks = tasks or background_tasks

    # ── validation ───────────────────────────────────────────────

    @staticmethod
    def validate_file(file: UploadedFile) -> None:
        if file.size == 0:
            raise UploadValidationError(f"File {file.filename} is empty")
        if file.size > settings.MAX_FILE_SIZE_BYTES:
            raise UploadValidationError(
                f"File {file.filename} exceeds the maximum size of {settings.MAX_FILE_SIZE_BYTES} bytes",
                status_code=413,
            )

    def _storage_for(self, mimetype: Optional[str]) -> StorageBackend:
        if _is_image(mimetype):
            return self.storage.for_image_strategy()
        return self.storage.for_file_strategy()

    def _code_execution_available(self) -> bool:
        return settings.has_capability(ToolResource.EXECUTE_CODE.value) and self.code_env.enabled

    # ── agent / message attachment uploads ───────────────────────

    async def process_agent_upload(
        self, file: UploadedFile, meta: UploadMetadata, user_id: str,
    ) -> tuple[FileRecord, AttachmentAnalysis]:
        """Upload a file for an agent tool resource or as a message attachment."""
        self.validate_file(file)

        file_id = str(meta.file_id)
        message_attachment = meta.message_file
        tool_resource = meta.tool_resource
        inferred: Optional[ToolResource] = None

        if message_attachment and tool_resource is None:
            intent = analyze_upload_intent(file.filename, file.mimetype)
            inferred = tool_resource_for_intent(intent.intent)
            logger.info(
                f"[upload] intent for {file.filename}: {intent.intent.value} "
                f"({intent.confidence}), tool resource {inferred.value if inferred else 'none'}"
            )

        effective = tool_resource or inferred

        if meta.agent_id and effective is None and not message_attachment:
            raise UploadValidationError("No tool resource provided for agent file upload")
        if effective == ToolResource.FILE_SEARCH and _is_image(file.mimetype):
            raise UploadValidationError("Image uploads are not supported for file search tool resources")
        if not message_attachment and not meta.agent_id:
            raise UploadValidationError("No agent ID provided for agent file upload")

        analysis = analyze_attachment(file.mimetype, file.filename, tool_resource, inferred)
        logger.info(
            f"[upload] {file_id} ({file.filename}) category={analysis.category.value} "
            f"primary={analysis.primary_strategy.value} embed={analysis.should_embed}"
        )

        entity_id = None if message_attachment else meta.agent_id
        metadata: dict = {}
        matrix: dict[UploadStrategy, StatusRecord] = {}

        if effective == ToolResource.EXECUTE_CODE:
            if not self._code_execution_available():
                raise UploadValidationError("Code execution is not enabled for agents")
            identifier = await self.code_env.upload_stream(
                file.filename, file.data, api_key=settings.CODE_API_KEY, entity_id=entity_id,
            )
            metadata.update(fileIdentifier=identifier, tool_resource=ToolResource.EXECUTE_CODE.value)
            matrix[UploadStrategy.CODE_EXECUTOR] = _status(ProcessingStatus.COMPLETED)

        elif effective == ToolResource.FILE_SEARCH:
            if not settings.has_capability(ToolResource.FILE_SEARCH.value):
                raise UploadValidationError("File search is not enabled for agents")
            identifier = await self._dual_upload(file, meta.agent_id, entity_id)
            if identifier:
                metadata.update(fileIdentifier=identifier, tool_resource=ToolResource.FILE_SEARCH.value)
                matrix[UploadStrategy.CODE_EXECUTOR] = _status(ProcessingStatus.COMPLETED)

        elif effective == ToolResource.CONTEXT:
            record = await self._process_context_upload(file, meta, user_id, analysis)
            return record, analysis

        if effective is not None:
            metadata.setdefault("tool_resource", effective.value)

        # Text extraction, before the storage write
        extension = get_extension(file.filename)
        skip_extraction = effective == ToolResource.EXECUTE_CODE and extension in SKIP_EXTRACTION_EXTENSIONS
        should_extract = not skip_extraction and (
            effective == ToolResource.FILE_SEARCH
            or (message_attachment and not _is_image(file.mimetype))
        )
        if skip_extraction:
            logger.info(f"[upload] skipping text extraction for {file.filename}, read by code execution")

        # extraction registers the embedding callback before the record exists
        awaiting_record = should_extract and self.rag.enabled
        if awaiting_record:
            file_matrix.expect_record(file_id)
        early_result = None
        try:
            record, schedule_embedding = await self._extract_and_persist(
                file, meta, user_id, analysis,
                effective=effective,
                entity_id=entity_id,
                metadata=metadata,
                matrix=matrix,
                should_extract=should_extract,
                skip_extraction=skip_extraction,
            )
        finally:
            if awaiting_record:
                early_result = await file_matrix.release_record(file_id)
        if early_result is not None:
            record = early_result

        if schedule_embedding:
            self._kick_off_embedding(file, file_id, user_id, entity_id)
        return record, analysis

    async def _extract_and_persist(
        self,
        file: UploadedFile,
        meta: UploadMetadata,
        user_id: str,
        analysis: AttachmentAnalysis,
        *,
        effective: Optional[ToolResource],
        entity_id: Optional[str],
        metadata: dict,
        matrix: dict,
        should_extract: bool,
        skip_extraction: bool,
    ) -> tuple[FileRecord, bool]:
        """Extraction, storage write, agent link and record creation.

        Returns the new record and whether background embedding is due.
        """
        file_id = str(meta.file_id)
        message_attachment = meta.message_file
        extracted_text = None
        embedded = False
        if should_extract and not self.rag.enabled:
            logger.warning(f"[upload] RAG_API_URL not configured, skipping text extraction for {file_id}")
            matrix[UploadStrategy.FILE_SEARCH] = _status(
                ProcessingStatus.FAILED, EMBEDDING_NOT_CONFIGURED,
            )
        elif should_extract:
            try:
                result = await self.rag.extract(
                    file_id=file_id,
                    filename=file.filename,
                    data=file.data,
                    mimetype=file.mimetype,
                    user_id=user_id,
                    entity_id=entity_id,
                )
            except Exception as e:
                logger.error(f"[upload] text extraction failed for {file_id}: {e}")
                # fatal only for an explicit file_search upload
                if analysis.user_override and effective == ToolResource.FILE_SEARCH:
                    raise
                metadata["extraction_error"] = safe_error_message(e)
                matrix[UploadStrategy.FILE_SEARCH] = _status(
                    ProcessingStatus.FAILED, metadata["extraction_error"],
                )
            else:
                extracted_text = result.text
                embedded = result.embedded
                metadata.update(char_count=result.char_count, extraction_time=result.extraction_time)
                matrix[UploadStrategy.FILE_SEARCH] = _status(ProcessingStatus.EMBEDDING)

        schedule_embedding = (
            analysis.should_embed
            and not should_extract
            and not skip_extraction
            and self.rag.enabled
        )
        if schedule_embedding:
            matrix[UploadStrategy.FILE_SEARCH] = _status(ProcessingStatus.PENDING)

        # Storage write; a failure here aborts before any record exists
        backend = self._storage_for(file.mimetype)
        stored = await sanitized_upload(backend, file, file_id, user_id)
        if stored.embedded is not None:
            embedded = stored.embedded

        if analysis.primary_strategy not in matrix:
            matrix[analysis.primary_strategy] = _status(ProcessingStatus.COMPLETED)

        if not message_attachment and effective is not None:
            await file_records.add_agent_resource_file(meta.agent_id, effective.value, file_id)

        metadata["strategies"] = dump_matrix(matrix)
        record = await file_records.create_file(self._record_fields(
            file, meta, user_id, stored, backend.source, analysis,
            context=FileContext.MESSAGE_ATTACHMENT if message_attachment else FileContext.AGENTS,
            text=extracted_text,
            embedded=embedded,
            metadata=metadata,
        ))
        if metadata.get("fileIdentifier"):
            logger.info(f"[upload] {file_id} dual-routed, fileIdentifier={metadata['fileIdentifier']}")
        return record, schedule_embedding

    async def _dual_upload(
        self, file: UploadedFile, agent_id: Optional[str], entity_id: Optional[str],
    ) -> Optional[str]:
        """Also upload a file_search file to the code sandbox when the agent can run code.

        Never fatal: the file stays usable through file search alone.
        """
        if not agent_id:
            return None
        try:
            agent = await file_records.get_agent(agent_id)
            tools = (agent.tools or []) if agent else []
            if ToolResource.EXECUTE_CODE.value not in tools or not self._code_execution_available():
                return None
            intent = analyze_upload_intent(file.filename, file.mimetype)
            if intent.intent != UploadIntent.CODE_INTERPRETER:
                logger.info(f"[upload] {file.filename} not code-suitable ({intent.intent.value}), no dual upload")
                return None
            logger.info(f"[upload] {file.filename} is code-suitable, dual-uploading to code execution")
            return await self.code_env.upload_stream(
                file.filename, file.data, api_key=settings.CODE_API_KEY, entity_id=entity_id,
            )
        except Exception as e:
            logger.warning(f"[upload] dual upload failed for {file.filename}: {e}. Continuing with file search only")
            return None

    async def _process_context_upload(
        self, file: UploadedFile, meta: UploadMetadata, user_id: str, analysis: AttachmentAnalysis,
    ) -> FileRecord:
        """Inline-context uploads, persisted as a text-source record."""
        text, text_type = await self.extract_context_text(file, str(meta.file_id), user_id)

        if not meta.message_file:
            await file_records.add_agent_resource_file(meta.agent_id, ToolResource.CONTEXT.value, meta.file_id)

        matrix = {UploadStrategy.TEXT_CONTEXT: _status(ProcessingStatus.COMPLETED)}
        record = await file_records.create_file({
            "file_id": meta.file_id,
            "temp_file_id": meta.temp_file_id,
            "user_id": user_id,
            "filename": file.filename,
            "mimetype": text_type,
            "bytes": len(text.encode("utf-8")),
            "filepath": f"text://{meta.file_id}",
            "source": FileSource.TEXT.value,
            "context": (FileContext.MESSAGE_ATTACHMENT if meta.message_file else FileContext.AGENTS).value,
            "category": analysis.category.value,
            "text": text,
            "model": None if meta.message_file else meta.model,
            "file_metadata": {"tool_resource": ToolResource.CONTEXT.value, "strategies": dump_matrix(matrix)},
        })
        logger.info(f"[upload] {meta.file_id} stored as inline text ({record.bytes} bytes)")
        return record

    async def extract_context_text(self, file: UploadedFile, file_id: str, user_id: str) -> tuple[str, str]:
        """OCR, then STT, then plain text parsing. Returns (text, text mimetype)."""
        mimetype = file.mimetype or ""
        text = None
        text_type = "text/plain"

        use_ocr = self.ocr is not None and mime_matches(mimetype, settings.OCR_SUPPORTED_MIME_TYPES)
        if use_ocr and not settings.has_capability("ocr"):
            raise UploadValidationError("OCR capability is not enabled for agents")
        if use_ocr:
            try:
                text = await self.ocr.extract_text(file.data, mimetype, file.filename)
            except Exception as e:
                logger.error(f"[upload] OCR failed for {file.filename}, falling back to text extraction: {e}")

        if text is None and self.stt is not None and mime_matches(mimetype, settings.STT_SUPPORTED_MIME_TYPES):
            text = await self.stt.extract_text(file.data, mimetype, file.filename)

        if text is None:
            if not mime_matches(mimetype, settings.TEXT_SUPPORTED_MIME_TYPES):
                raise UploadValidationError(f"File type {mimetype or 'unknown'} is not supported for text parsing")
            text = await self.parse_text(file, file_id, user_id)
            text_type = mimetype
        return text, text_type

    async def parse_text(self, file: UploadedFile, file_id: str, user_id: str) -> str:
        """Plain text parsing through the embedding service, or local UTF-8 decode."""
        if self.rag.enabled:
            return await self.rag.parse_text(
                file_id=file_id, filename=file.filename, data=file.data,
                mimetype=file.mimetype, user_id=user_id,
            )
        return file.data.decode("utf-8", errors="replace")

    # ── unified upload ───────────────────────────────────────────

    async def process_unified_upload(
        self, file: UploadedFile, meta: UploadMetadata, user_id: str,
    ) -> tuple[FileRecord, AttachmentAnalysis]:
        """Storage first, record with a PENDING matrix, then background processing.

        Strategies that cannot run in this deployment are recorded FAILED up
        front; the rest are advanced by one background task.
        """
        self.validate_file(file)
        file_id = str(meta.file_id)
        entity_id = None if meta.message_file else meta.agent_id

        analysis = analyze_attachment(file.mimetype, file.filename, meta.tool_resource)
        logger.info(
            f"[upload.unified] {file_id} categorized as {analysis.category.value}, "
            f"primary {analysis.primary_strategy.value}, embed={analysis.should_embed}"
        )

        backend = self.storage.for_image_strategy() if analysis.category == FileCategory.IMAGE \
            else self.storage.for_file_strategy()
        try:
            stored = await sanitized_upload(backend, file, file_id, user_id)
        except Exception as e:
            logger.error(f"[upload.unified] storage upload failed for {file_id}: {e}")
            raise

        matrix = {}
        background = []
        for strategy in analysis.strategies:
            if strategy in PASSTHROUGH_STRATEGIES:
                matrix[strategy] = _status(ProcessingStatus.COMPLETED)
                continue
            unavailable = self._unavailable_reason(strategy)
            if unavailable:
                logger.warning(f"[upload.unified] {file_id}: {strategy.value} unavailable, {unavailable}")
                matrix[strategy] = _status(ProcessingStatus.FAILED, unavailable)
                continue
            matrix[strategy] = _status(ProcessingStatus.PENDING)
            background.append(strategy)

        metadata = {
            "category": analysis.category.value,
            "primaryStrategy": analysis.primary_strategy.value,
            "backgroundStrategies": [s.value for s in analysis.background_strategies],
            "strategies": dump_matrix(matrix),
        }
        if analysis.tool_resource is not None:
            metadata["tool_resource"] = analysis.tool_resource.value
        record = await file_records.create_file(self._record_fields(
            file, meta, user_id, stored, backend.source, analysis,
            context=FileContext.MESSAGE_ATTACHMENT if meta.message_file else FileContext.AGENTS,
            metadata=metadata,
        ))

        if background:
            self.tasks.submit(
                self.run_background_strategies(file, file_id, user_id, entity_id, background),
                name=f"process-{file_id}",
            )
        return record, analysis

    def _unavailable_reason(self, strategy: UploadStrategy) -> Optional[str]:
        if strategy == UploadStrategy.FILE_SEARCH and not self.rag.enabled:
            return EMBEDDING_NOT_CONFIGURED
        if strategy == UploadStrategy.CODE_EXECUTOR and not self._code_execution_available():
            return "Code execution not enabled"
        return None

    # ── generic upload ───────────────────────────────────────────

    async def process_file_upload(
        self, file: UploadedFile, meta: UploadMetadata, user_id: str,
    ) -> FileRecord:
        """Non-agent upload. Assistants endpoints go to the provider-hosted backend.

        Nothing is extracted or indexed here, so only storage-only strategies
        appear in the matrix.
        """
        self.validate_file(file)
        file_id = str(meta.file_id)
        is_assistants = (meta.endpoint or "").startswith("assistants")

        if is_assistants:
            if not self.storage.has(FileSource.OPENAI.value):
                raise UploadValidationError("Provider-hosted file storage is not enabled")
            backend = self.storage.get(FileSource.OPENAI.value)
        else:
            backend = self._storage_for(file.mimetype)

        stored = await sanitized_upload(backend, file, file_id, user_id)
        analysis = analyze_attachment(file.mimetype, file.filename)
        matrix = {}
        if is_assistants:
            matrix[UploadStrategy.PROVIDER] = _status(ProcessingStatus.COMPLETED)
        elif analysis.primary_strategy in PASSTHROUGH_STRATEGIES:
            matrix[analysis.primary_strategy] = _status(ProcessingStatus.COMPLETED)

        record = await file_records.create_file(self._record_fields(
            file, meta, user_id, stored, backend.source, analysis,
            context=FileContext.ASSISTANTS if is_assistants else FileContext.MESSAGE_ATTACHMENT,
            metadata={"strategies": dump_matrix(matrix)},
        ))
        logger.info(f"[upload] {file_id} stored via {backend.source}")
        return record

    # ── shared helpers ───────────────────────────────────────────

    @staticmethod
    def _record_fields(
        file: UploadedFile,
        meta: UploadMetadata,
        user_id: str,
        stored: StorageResult,
        source: str,
        analysis: AttachmentAnalysis,
        *,
        context: FileContext,
        metadata: dict,
        text: Optional[str] = None,
        embedded: bool = False,
    ) -> dict:
        return {
            "file_id": meta.file_id,
            "temp_file_id": meta.temp_file_id,
            "user_id": user_id,
            "filename": stored.filename or file.filename,
            "mimetype": file.mimetype,
            "bytes": stored.bytes or file.size,
            "width": stored.width,
            "height": stored.height,
            "filepath": stored.filepath,
            "source": source,
            "context": context.value,
            "category": analysis.category.value,
            "embedded": embedded,
            "text": text,
            "model": None if context == FileContext.MESSAGE_ATTACHMENT else meta.model,
            "file_metadata": metadata,
        }

    def _kick_off_embedding(
        self, file: UploadedFile, file_id: str, user_id: str, entity_id: Optional[str],
    ) -> None:
        self.tasks.submit(
            self.run_background_embedding(file, file_id, user_id, entity_id),
            name=f"embed-{file_id}",
        )

    # ── background work ──────────────────────────────────────────

    async def run_background_strategies(
        self,
        file: UploadedFile,
        file_id: str,
        user_id: str,
        entity_id: Optional[str],
        strategies: list[UploadStrategy],
    ) -> None:
        """Advance each pending strategy in turn.

        Steps run one after another so only one writer touches the record's
        metadata at a time.
        """
        if UploadStrategy.CODE_EXECUTOR in strategies:
            await self.run_background_code_upload(file, file_id, entity_id)
        if UploadStrategy.FILE_SEARCH in strategies:
            await self.run_background_embedding(file, file_id, user_id, entity_id)
        if UploadStrategy.TEXT_CONTEXT in strategies:
            await self.run_background_context_text(file, file_id, user_id)

    async def run_background_code_upload(
        self, file: UploadedFile, file_id: str, entity_id: Optional[str],
    ) -> None:
        """CODE_EXECUTOR: UPLOADING -> COMPLETED (fileIdentifier stored) or FAILED."""
        await file_matrix.set_status(file_id, UploadStrategy.CODE_EXECUTOR, ProcessingStatus.UPLOADING)
        try:
            identifier = await self.code_env.upload_stream(
                file.filename, file.data, api_key=settings.CODE_API_KEY, entity_id=entity_id,
            )
        except Exception as e:
            logger.error(f"[upload.background] code execution upload failed for {file_id}: {e}")
            await file_matrix.set_status(
                file_id, UploadStrategy.CODE_EXECUTOR, ProcessingStatus.FAILED,
                error=safe_error_message(e),
            )
            return

        await file_matrix.set_status(
            file_id, UploadStrategy.CODE_EXECUTOR, ProcessingStatus.COMPLETED,
            metadata={"fileIdentifier": identifier},
        )
        logger.info(f"[upload.background] {file_id} uploaded to code execution as {identifier}")

    async def run_background_context_text(self, file: UploadedFile, file_id: str, user_id: str) -> None:
        """TEXT_CONTEXT: EXTRACTING -> COMPLETED (text stored) or FAILED."""
        await file_matrix.set_status(file_id, UploadStrategy.TEXT_CONTEXT, ProcessingStatus.EXTRACTING)
        try:
            text, _ = await self.extract_context_text(file, file_id, user_id)
        except Exception as e:
            logger.error(f"[upload.background] context text failed for {file_id}: {e}")
            await file_matrix.set_status(
                file_id, UploadStrategy.TEXT_CONTEXT, ProcessingStatus.FAILED,
                error=safe_error_message(e),
            )
            return

        await file_matrix.set_status(
            file_id, UploadStrategy.TEXT_CONTEXT, ProcessingStatus.COMPLETED, text=text or None,
        )

    async def run_background_embedding(
        self, file: UploadedFile, file_id: str, user_id: str, entity_id: Optional[str],
    ) -> None:
        """FILE_SEARCH: EXTRACTING -> EMBEDDING (text stored) or FAILED.

        COMPLETED arrives through the embedding-complete callback, possibly
        while extraction is still returning; a settled status is kept.
        """
        await file_matrix.set_status(file_id, UploadStrategy.FILE_SEARCH, ProcessingStatus.EXTRACTING)
        try:
            result = await self.rag.extract(
                file_id=file_id,
                filename=file.filename,
                data=file.data,
                mimetype=file.mimetype,
                user_id=user_id,
                entity_id=entity_id,
            )
        except Exception as e:
            logger.error(f"[upload.background] extraction failed for {file_id}: {e}")
            await file_matrix.set_status(
                file_id, UploadStrategy.FILE_SEARCH, ProcessingStatus.FAILED,
                error=safe_error_message(e),
            )
            return

        await file_matrix.set_status(
            file_id, UploadStrategy.FILE_SEARCH, ProcessingStatus.EMBEDDING,
            text=result.text or None,
            keep=SETTLED_STATUSES,
        )
        logger.info(f"[upload.background] {file_id}: {result.char_count} chars extracted, embedding remotely")


_processor: Optional[UploadProcessor] = None


def get_upload_processor() -> UploadProcessor:
    """FastAPI dependency. Collaborators are built from settings on first use."""
    global _processor
    if _processor is None:
        _processor = UploadProcessor(
            storage=build_default_registry(),
            rag=build_rag_client(),
            code_env=build_code_env_client(),
            ocr=build_ocr_service(),
            stt=build_stt_service(),
        )
    return _processor


async def close_upload_processor() -> None:
    global _processor
    if _processor is not None:
        await _processor.rag.close()
        _processor = None
