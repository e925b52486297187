import os
import threading

import pytest
from fastapi import HTTPException

from supportdesk import documents, worker
from supportdesk.config import DOCX_MIME_TYPE, Config

DOCUMENT_ROW = {
    "id": 5,
    "title": "Returns guide",
    "description": None,
    "file_name": "abc.txt",
    "original_name": "returns.txt",
    "file_type": "txt",
    "mime_type": "text/plain",
    "file_size": 2048,
    "status": "pending",
    "is_active": True,
    "category": "General",
    "tags": ["returns"],
}


@pytest.fixture()
def upload_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(Config, "UPLOAD_DIR", str(tmp_path))
    return tmp_path


def test_validate_upload_accepts_known_types():
    assert documents.validate_upload("Manual.PDF", "application/pdf", 10) == "pdf"
    assert documents.validate_upload("policy.docx", DOCX_MIME_TYPE, 10) == "docx"
    assert documents.validate_upload("notes.md", None, 10) == "md"


@pytest.mark.parametrize("name, mime", [
    ("setup.exe", "application/octet-stream"),
    ("notes.txt", "image/png"),
    ("archive", None),
])
def test_validate_upload_rejects_bad_types(name, mime):
    with pytest.raises(HTTPException) as exc:
        documents.validate_upload(name, mime, 10)
    assert exc.value.status_code == 400
    assert exc.value.detail.startswith("Invalid file type")


def test_validate_upload_size_limits(monkeypatch):
    monkeypatch.setattr(Config, "MAX_FILE_SIZE", 1024)
    with pytest.raises(HTTPException) as exc:
        documents.validate_upload("big.txt", "text/plain", 2048)
    assert exc.value.detail == "File size exceeds limit of 1.0 KB"

    with pytest.raises(HTTPException) as exc:
        documents.validate_upload("empty.txt", "text/plain", 0)
    assert "empty" in exc.value.detail


def test_store_upload_writes_under_documents_dir(upload_dir):
    info = documents.store_upload(b"hello", "sub/dir/FAQ.txt", "text/plain")

    assert info["original_name"] == "FAQ.txt"
    assert info["file_type"] == "txt"
    assert info["file_size"] == 5
    assert os.path.dirname(info["file_path"]) == os.path.join(str(upload_dir), "documents")
    with open(info["file_path"], "rb") as f:
        assert f.read() == b"hello"


def test_serialize_document_formats_size():
    doc = documents.serialize_document(DOCUMENT_ROW)
    assert doc["file_size_formatted"] == "2.0 KB"
    assert "content" not in doc
    assert documents.serialize_document({**DOCUMENT_ROW, "content_raw": "text"})["content"] == "text"


def test_process_document_success(tmp_path, fake_db):
    path = tmp_path / "guide.txt"
    path.write_text("Returns accepted within thirty days", encoding="utf-8")
    cur = fake_db(documents, fetchone=[(str(path), "txt")])

    result = documents.process_document(5)

    assert result == {"page_count": None, "word_count": 5}
    sql, params = cur.queries[-1]
    assert "SET status = 'processed'" in sql
    assert params[0] == "Returns accepted within thirty days"


def test_process_document_failure_marks_failed(tmp_path, fake_db):
    cur = fake_db(documents, fetchone=[(str(tmp_path / "missing.pdf"), "pdf")])

    with pytest.raises(FileNotFoundError):
        documents.process_document(5)

    sql, params = cur.queries[-1]
    assert "SET status = 'failed'" in sql
    assert "retry_count = retry_count + 1" in sql
    assert params[1] == 5


def test_reprocess_requires_failed_state(fake_db):
    fake_db(documents, fetchone=[("processed",)])
    with pytest.raises(HTTPException) as exc:
        documents.reprocess_document(5)
    assert exc.value.detail == "Document is not in failed state"


def test_reprocess_requeues_as_pending(fake_db):
    cur = fake_db(documents, fetchone=[("failed",)])
    documents.reprocess_document(5)
    assert "SET status = 'pending'" in cur.queries[-1][0]


def test_worker_claims_with_skip_locked(fake_db):
    cur = fake_db(worker, fetchone=[(5, "pending")])
    assert worker.claim_next_document() == 5
    assert "FOR UPDATE SKIP LOCKED" in cur.queries[0][0]
    assert "SET status = 'processing'" in cur.queries[1][0]


def test_worker_reclaims_stale_processing_documents(fake_db, monkeypatch):
    monkeypatch.setattr(Config, "WORKER_STALE_AFTER", 300)
    cur = fake_db(worker, fetchone=[(8, "processing")])

    assert worker.claim_next_document() == 8

    sql, params = cur.queries[0]
    assert "status = 'processing' AND processing_started_at < NOW() - make_interval(secs => %s)" in sql
    assert params == (300,)
    assert cur.queries[1][1] == (8,)


def test_worker_claim_returns_none_when_idle(fake_db):
    cur = fake_db(worker)
    assert worker.claim_next_document() is None
    assert len(cur.queries) == 1


def test_worker_survives_processing_errors(monkeypatch):
    monkeypatch.setattr(worker, "claim_next_document", lambda: 5)

    def boom(document_id):
        raise ValueError("corrupt file")

    monkeypatch.setattr(worker, "process_document", boom)
    assert worker.process_next_document() is True


def test_worker_idle_when_queue_empty(monkeypatch):
    monkeypatch.setattr(worker, "claim_next_document", lambda: None)
    assert worker.process_next_document() is False


def test_background_worker_stops_on_event(monkeypatch):
    stop = threading.Event()
    calls = []

    def once():
        calls.append(1)
        stop.set()
        return False

    monkeypatch.setattr(worker, "process_next_document", once)
    worker.background_worker(stop)
    assert calls == [1]


def test_upload_endpoint_requires_admin(client, as_user, upload_dir):
    res = client.post("/api/documents/upload", files={"document": ("a.txt", b"hi", "text/plain")})
    assert res.status_code == 403


def test_upload_endpoint(client, as_admin, upload_dir, monkeypatch):
    captured = {}

    def fake_upload(file_info, metadata, user_id):
        captured.update(file_info=file_info, metadata=metadata, user_id=user_id)
        return {**DOCUMENT_ROW, "title": metadata["title"]}

    monkeypatch.setattr(documents, "upload_document", fake_upload)
    res = client.post(
        "/api/documents/upload",
        files={"document": ("returns.txt", b"Returns policy", "text/plain")},
        data={"title": "Returns guide", "tags": "returns, refunds"},
    )

    assert res.status_code == 201
    assert captured["user_id"] == as_admin["id"]
    assert captured["metadata"]["tags"] == "returns, refunds"
    assert captured["file_info"]["file_type"] == "txt"


def test_upload_endpoint_rejects_invalid_type(client, as_admin, upload_dir):
    res = client.post(
        "/api/documents/upload",
        files={"document": ("virus.exe", b"MZ", "application/octet-stream")},
    )
    assert res.status_code == 400


def test_upload_multiple_reports_bad_files(client, as_admin, upload_dir, monkeypatch):
    monkeypatch.setattr(documents, "upload_document", lambda info, metadata, user_id: {"original_name": info["original_name"]})
    res = client.post(
        "/api/documents/upload-multiple",
        files=[
            ("documents", ("a.txt", b"alpha", "text/plain")),
            ("documents", ("b.exe", b"MZ", "application/octet-stream")),
        ],
    )

    assert res.status_code == 201
    body = res.json()
    assert body["documents"] == [{"original_name": "a.txt"}]
    assert body["errors"][0]["filename"] == "b.exe"


def test_reprocess_endpoint(client, as_admin, monkeypatch):
    monkeypatch.setattr(documents, "reprocess_document", lambda document_id: None)
    res = client.post("/api/documents/9/reprocess")
    assert res.status_code == 200
    assert res.json()["status"] == "pending"
