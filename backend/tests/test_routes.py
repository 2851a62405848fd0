import time
import uuid

import httpx
import jwt
import pytest

from attachments.config import settings
from attachments.main import app
from attachments.services import file_matrix, file_records
from attachments.services.upload_processor import get_upload_processor


@pytest.fixture
async def client(processor):
    app.dependency_overrides[get_upload_processor] = lambda: processor
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


def _token(secret="callback-secret", **claims):
    now = int(time.time())
    return jwt.encode({"id": "rag", "iat": now, "exp": now + 60, **claims}, secret, algorithm="HS256")


async def test_health(client):
    resp = await client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


async def test_agent_upload_message_attachment(client):
    resp = await client.post(
        "/api/files/agents",
        files={"file": ("report.pdf", b"%PDF-1.4 fake", "application/pdf")},
        data={"message_file": "true"},
        headers={"X-User-Id": "user_1"},
    )

    assert resp.status_code == 201
    body = resp.json()
    assert body["analysis"]["category"] == "document"
    assert body["analysis"]["primaryStrategy"] == "file_search"
    assert body["analysis"]["shouldEmbed"] is True
    assert body["text"] == "extracted text"
    assert body["userId"] == "user_1"
    assert body["metadata"]["strategies"]["file_search"]["status"] == "embedding"


async def test_agent_upload_validation_error(client, storage):
    resp = await client.post(
        "/api/files/agents",
        files={"file": ("report.pdf", b"%PDF", "application/pdf")},
        data={"agent_id": "agent_1"},
    )
    assert resp.status_code == 400
    assert "No tool resource" in resp.json()["detail"]
    assert storage.uploads == []


async def test_get_and_list_files_are_user_scoped(client):
    file_id = str(uuid.uuid4())
    resp = await client.post(
        "/api/files",
        files={"file": ("notes.txt", b"hello", "text/plain")},
        data={"file_id": file_id},
        headers={"X-User-Id": "user_1"},
    )
    assert resp.status_code == 201
    assert resp.json()["fileId"] == file_id

    mine = await client.get(f"/api/files/{file_id}", headers={"X-User-Id": "user_1"})
    assert mine.status_code == 200
    assert mine.json()["filename"] == "notes.txt"

    other = await client.get(f"/api/files/{file_id}", headers={"X-User-Id": "user_2"})
    assert other.status_code == 404

    listing = await client.get("/api/files", headers={"X-User-Id": "user_1"})
    assert [f["fileId"] for f in listing.json()] == [file_id]


async def test_download_stored_file(client):
    file_id = str(uuid.uuid4())
    await client.post(
        "/api/files",
        files={"file": ("notes.txt", b"hello bytes", "text/plain")},
        data={"file_id": file_id},
    )
    resp = await client.get(f"/api/files/{file_id}/download")
    assert resp.status_code == 200
    assert resp.content == b"hello bytes"


async def test_delete_files(client, storage):
    file_id = str(uuid.uuid4())
    await client.post(
        "/api/files",
        files={"file": ("notes.txt", b"hello", "text/plain")},
        data={"file_id": file_id},
    )

    resp = await client.request("DELETE", "/api/files", json={"files": [{"fileId": file_id}]})

    assert resp.status_code == 200
    assert resp.json()["deleted"] == [file_id]
    assert len(storage.deleted) == 1
    assert await file_records.get_file(file_id) is None


async def test_delete_unknown_files(client):
    resp = await client.request("DELETE", "/api/files", json={"files": [{"fileId": str(uuid.uuid4())}]})
    assert resp.status_code == 404


async def test_file_context(client):
    resp = await client.post(
        "/api/files/agents",
        files={"file": ("report.pdf", b"%PDF", "application/pdf")},
        data={"message_file": "true"},
    )
    file_id = resp.json()["fileId"]

    ctx = await client.post("/api/files/context", json={"fileIds": [file_id]})

    assert ctx.status_code == 200
    context = ctx.json()["context"]
    assert context.startswith("Attached document(s):\n```md")
    assert '# "report.pdf"' in context
    assert "extracted text" in context
    assert "being indexed in the background" in context


async def test_embedding_callback(client, monkeypatch):
    monkeypatch.setattr(settings, "JWT_SECRET", "callback-secret")
    resp = await client.post(
        "/api/files/agents",
        files={"file": ("report.pdf", b"%PDF", "application/pdf")},
        data={"message_file": "true"},
    )
    file_id = resp.json()["fileId"]

    cb = await client.post(
        "/api/files/embedding-complete",
        json={"file_id": file_id, "embedded": True},
        headers={"Authorization": f"Bearer {_token()}"},
    )

    assert cb.status_code == 200
    assert cb.json() == {"success": True, "file_id": file_id}
    record = await file_records.get_file(file_id)
    assert record.embedded is True
    assert record.file_metadata["strategies"]["file_search"]["status"] == "completed"


async def test_embedding_callback_rejects_bad_token(client, monkeypatch):
    monkeypatch.setattr(settings, "JWT_SECRET", "callback-secret")

    missing = await client.post("/api/files/embedding-complete", json={"file_id": "x"})
    assert missing.status_code == 401

    forged = await client.post(
        "/api/files/embedding-complete",
        json={"file_id": str(uuid.uuid4())},
        headers={"Authorization": f"Bearer {_token(secret='wrong')}"},
    )
    assert forged.status_code == 401


async def test_embedding_callback_validation(client, monkeypatch):
    monkeypatch.setattr(settings, "JWT_SECRET", "callback-secret")
    headers = {"Authorization": f"Bearer {_token()}"}

    no_id = await client.post("/api/files/embedding-complete", json={}, headers=headers)
    assert no_id.status_code == 400

    unknown = await client.post(
        "/api/files/embedding-complete", json={"file_id": str(uuid.uuid4())}, headers=headers,
    )
    assert unknown.status_code == 404


async def test_assistants_upload_without_provider_backend(client):
    resp = await client.post(
        "/api/files",
        files={"file": ("notes.txt", b"hello", "text/plain")},
        data={"endpoint": "assistants"},
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Provider-hosted file storage is not enabled"


async def test_embedding_callback_held_while_upload_in_flight(client, monkeypatch):
    monkeypatch.setattr(settings, "JWT_SECRET", "callback-secret")
    file_id = uuid.uuid4()
    file_matrix.expect_record(file_id)

    cb = await client.post(
        "/api/files/embedding-complete",
        json={"file_id": str(file_id), "embedded": True},
        headers={"Authorization": f"Bearer {_token()}"},
    )

    assert cb.status_code == 202
    assert cb.json() == {"success": True, "file_id": str(file_id), "deferred": True}
