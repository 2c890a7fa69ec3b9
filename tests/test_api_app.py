"""Tests for the FastAPI application."""

from __future__ import annotations

from io import BytesIO
from types import SimpleNamespace

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from conftest import FakeRemoteClient, SleepRecorder, cited_text
from docassist.api.app import RateLimiter, create_app
from docassist.config import Settings
from docassist.models import IndexStatus
from docassist.sessions.manager import SessionManager

PDF_BYTES = b"%PDF-1.4 photosynthesis lesson"


def create_test_client(remote: FakeRemoteClient | None, **overrides) -> TestClient:
    settings = Settings(environment="test", rate_limit_requests=1000, **overrides)
    manager = SessionManager(remote, sleep=SleepRecorder())
    app = create_app(settings=settings, manager=manager)
    return TestClient(app)


def upload(client: TestClient, name: str = "lesson.pdf", payload: bytes = PDF_BYTES, **kwargs):
    return client.post("/documents", files={"file": (name, BytesIO(payload), "application/pdf")}, **kwargs)


def test_upload_ask_history_reset_and_cleanup() -> None:
    remote = FakeRemoteClient()
    client = create_test_client(remote)

    upload_response = upload(client)
    assert upload_response.status_code == 200, upload_response.text
    info = upload_response.json()["info"]
    assert info["filename"] == "lesson.pdf"
    assert info["agent_ref"] and info["thread_ref"]

    remote.replies = [cited_text(info["file_ref"])]
    ask_response = client.post("/ask", json={"question": "How do plants make sugar?"})
    assert ask_response.status_code == 200, ask_response.text
    answer = ask_response.json()
    assert "[1]" in answer["answer"]
    assert [c["index"] for c in answer["citations"]] == [1, 2, 3]
    assert answer["citations"][0]["file_ref"] == info["file_ref"]

    history = client.get("/history", params={"limit": 10}).json()["messages"]
    assert [m["role"] for m in history] == ["user", "assistant"]
    assert history[0]["content"] == "How do plants make sugar?"

    status_payload = client.get("/status").json()
    assert status_payload["is_ready"] is True
    assert status_payload["current_document"]["filename"] == "lesson.pdf"

    reset = client.post("/conversation/reset").json()
    assert reset["thread_ref"] != info["thread_ref"]
    assert client.get("/history").json()["messages"] == []

    cleanup = client.post("/cleanup").json()
    assert cleanup == {"success": True, "message": "Cleanup completed successfully", "errors": []}
    after = client.get("/status").json()
    assert after["is_ready"] is False
    assert after["current_document"] is None
    assert after["status"]["has_agent"] is False
    assert client.get("/documents/current").status_code == 404


def test_task_routes_send_language_specific_prompt() -> None:
    remote = FakeRemoteClient()
    client = create_test_client(remote)
    thread_ref = upload(client).json()["info"]["thread_ref"]

    response = client.post("/mcq", json={"language": "spanish"})

    assert response.status_code == 200, response.text
    prompt = [m for m in remote.messages[thread_ref] if m.role == "user"][-1].texts[0].value
    assert "Multiple Choice Questions" in prompt
    assert "MUST be in spanish language" in prompt


def test_rejects_non_pdf_uploads() -> None:
    remote = FakeRemoteClient()
    client = create_test_client(remote)

    response = client.post("/documents", files={"file": ("notes.txt", BytesIO(b"hello"), "text/plain")})

    assert response.status_code == 415
    assert remote.calls == []


def test_rejects_empty_and_oversized_uploads() -> None:
    remote = FakeRemoteClient()
    client = create_test_client(remote, max_upload_size_mb=1)

    assert upload(client, payload=b"").status_code == 400
    assert upload(client, payload=b"x" * (1024 * 1024 + 1)).status_code == 413
    assert remote.calls == []


def test_errors_expose_only_kind_and_message() -> None:
    client = create_test_client(FakeRemoteClient())

    response = client.post("/ask", json={"question": "What?"}, headers={"X-Request-ID": "req-42"})

    assert response.status_code == 400
    assert response.json() == {
        "kind": "no_active_session",
        "message": "Assistant not set up. Upload a document first.",
        "correlation_id": "req-42",
    }
    assert response.headers["X-Correlation-ID"] == "req-42"


def test_run_failure_maps_to_bad_gateway() -> None:
    remote = FakeRemoteClient()
    client = create_test_client(remote)
    upload(client)
    remote.run_script = [("failed", "server_error")]

    response = client.post("/ask", json={"question": "What?"})

    assert response.status_code == 502
    assert response.json()["kind"] == "run_failed"


def test_indexing_failure_leaves_no_document() -> None:
    remote = FakeRemoteClient()
    remote.index_statuses = [IndexStatus.FAILED]
    client = create_test_client(remote)

    response = upload(client)

    assert response.status_code == 502
    assert response.json()["kind"] == "indexing_failed"
    assert client.get("/status").json()["is_ready"] is False


def test_missing_credentials_report_not_initialised() -> None:
    client = create_test_client(None)

    assert client.get("/status").json()["status"]["initialized"] is False
    response = upload(client)
    assert response.status_code == 503
    assert response.json()["kind"] == "not_initialized"
    assert client.post("/cleanup").json()["success"] is True


def test_api_key_is_enforced_when_configured() -> None:
    client = create_test_client(FakeRemoteClient(), api_key="secret")

    assert client.post("/ask", json={"question": "What?"}).status_code == 401
    response = client.post("/ask", json={"question": "What?"}, headers={"X-API-Key": "secret"})
    assert response.status_code == 400
    assert client.get("/status").status_code == 401
    assert client.get("/livez").status_code == 200


def test_health_endpoints() -> None:
    client = create_test_client(FakeRemoteClient())

    health = client.get("/healthz").json()
    assert health["status"] == "ok"
    assert health["environment"] == "test"
    assert health["document_loaded"] is False
    assert client.head("/healthz").status_code == 200
    assert client.get("/livez").json() == {"status": "alive"}
    assert b"docassist_session_ready" in client.get("/metrics").content


def test_blank_question_is_unprocessable() -> None:
    client = create_test_client(FakeRemoteClient())
    upload(client)

    response = client.post("/ask", json={"question": "   "})

    assert response.status_code == 422
    assert response.json()["kind"] == "empty_question"


def _request(client_ip: str, path: str = "/ask") -> SimpleNamespace:
    return SimpleNamespace(headers={"x-forwarded-for": client_ip}, client=None, url=SimpleNamespace(path=path))


def test_rate_limiter_blocks_within_window_and_forgets_idle_clients() -> None:
    now = [1000.0]
    limiter = RateLimiter(2, 60, clock=lambda: now[0])

    limiter(_request("10.0.0.1"))
    limiter(_request("10.0.0.1"))
    with pytest.raises(HTTPException) as excinfo:
        limiter(_request("10.0.0.1"))
    assert excinfo.value.status_code == 429

    limiter(_request("10.0.0.2"))
    now[0] += 120
    limiter(_request("10.0.0.3"))

    assert list(limiter._buckets) == ["10.0.0.3:/ask"]
