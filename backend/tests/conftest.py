import os
import sys
import tempfile
from pathlib import Path

# Database must point at SQLite before anything imports attachments.database
_DB_DIR = tempfile.mkdtemp(prefix="attachments-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR}/test.db"
os.environ.setdefault("FILE_STORAGE_PATH", os.path.join(_DB_DIR, "uploads"))

BACKEND_DIR = str(Path(__file__).resolve().parents[1])
if BACKEND_DIR not in sys.path:
    sys.path.insert(0, BACKEND_DIR)

import pytest

from attachments.config import settings
from attachments.database import async_session, engine
from attachments.models import Agent, Base
from attachments.services.background import BackgroundTaskRunner
from attachments.services.file_matrix import reset_awaiting_records
from attachments.services.leaky_bucket import reset_limiters
from attachments.services.rag_client import ExtractionResult, RagAPIError
from attachments.services.storage import StorageBackend, StorageRegistry, StorageResult, UploadedFile
from attachments.services.upload_processor import UploadProcessor


class FakeStorage(StorageBackend):
    """In-memory backend that records calls."""

    def __init__(self, source="local", rate_limited=False):
        self.source = source
        self.rate_limited = rate_limited
        self.files = {}
        self.uploads = []
        self.deleted = []
        self.fail_upload = False
        self.fail_delete = set()

    async def upload(self, file, file_id, user_id):
        if self.fail_upload:
            raise OSError("disk full")
        filepath = f"/{self.source}/{user_id}/{file_id}__{file.filename}"
        self.files[filepath] = file.data
        self.uploads.append(file)
        return StorageResult(filepath=filepath, bytes=file.size)

    async def delete(self, filepath):
        if filepath in self.fail_delete:
            raise OSError(f"cannot delete {filepath}")
        self.deleted.append(filepath)
        self.files.pop(filepath, None)

    async def read(self, filepath):
        return self.files[filepath]


class FakeRag:
    """Stands in for RagClient."""

    def __init__(self, enabled=True, text="extracted text"):
        self.enabled = enabled
        self.text = text
        self.extract_calls = []
        self.delete_calls = []
        self.parse_calls = []
        self.extract_error = None
        self.delete_error = None

    async def extract(self, **kwargs):
        self.extract_calls.append(kwargs)
        if self.extract_error is not None:
            raise self.extract_error
        return ExtractionResult(text=self.text, char_count=len(self.text), extraction_time=0.01)

    async def delete_vectors(self, file_ids, user_id):
        self.delete_calls.append(list(file_ids))
        if self.delete_error is not None:
            raise self.delete_error

    async def parse_text(self, **kwargs):
        self.parse_calls.append(kwargs)
        return self.text

    async def close(self):
        pass


class FakeCodeEnv:

    def __init__(self, enabled=True):
        self.enabled = enabled
        self.uploads = []

    async def upload_stream(self, filename, data, *, api_key, entity_id=None):
        self.uploads.append({"filename": filename, "entity_id": entity_id})
        identifier = f"session-1/{filename}"
        return f"{identifier}?entity_id={entity_id}" if entity_id else identifier


class FakeTextProvider:

    def __init__(self, text="provider text", error=None):
        self.text = text
        self.error = error
        self.calls = 0

    async def extract_text(self, data, mimetype, filename):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.text


@pytest.fixture(autouse=True)
async def reset_db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    reset_limiters()
    reset_awaiting_records()
    yield


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def rag():
    return FakeRag()


@pytest.fixture
def code_env():
    return FakeCodeEnv()


@pytest.fixture
def processor(storage, rag, code_env, monkeypatch):
    monkeypatch.setattr(settings, "AGENT_CAPABILITIES", "execute_code,file_search,context,ocr")
    monkeypatch.setattr(settings, "FILE_STRATEGY", "local")
    monkeypatch.setattr(settings, "IMAGE_STRATEGY", "local")
    registry = StorageRegistry({storage.source: storage})
    return UploadProcessor(
        storage=registry,
        rag=rag,
        code_env=code_env,
        tasks=BackgroundTaskRunner(),
    )


def make_file(filename, mimetype, data=b"hello world"):
    return UploadedFile(filename=filename, mimetype=mimetype, data=data)


async def add_agent(agent_id="agent_1", tools=("execute_code", "file_search")):
    async with async_session() as db:
        db.add(Agent(id=agent_id, name="Test agent", tools=list(tools)))
        await db.commit()
