from contextlib import contextmanager

import psycopg2
import pytest

import app as app_module
from supportdesk import ai_service, chats, documents, faqs, users
from supportdesk.config import Config


@pytest.fixture()
def runtime_model(monkeypatch):
    monkeypatch.setattr(ai_service, "_runtime_provider", "openai")
    monkeypatch.setattr(ai_service, "_runtime_model", "gpt-4o-mini")
    monkeypatch.setattr(ai_service, "_providers", {})
    # Only OpenAI is configured, whatever the developer environment holds
    monkeypatch.setattr(Config, "OPENAI_API_KEY", "sk-test")
    for name in ("ANTHROPIC_API_KEY", "GOOGLE_API_KEY", "DEEPSEEK_API_KEY"):
        monkeypatch.setattr(Config, name, "")


def test_health_reports_database_failure(client, monkeypatch):
    @contextmanager
    def broken_db():
        raise psycopg2.OperationalError("connection refused")
        yield

    monkeypatch.setattr(app_module, "get_db", broken_db)
    res = client.get("/api/health")
    assert res.status_code == 503
    assert "connection refused" in res.json()["detail"]


def test_health_ok(client, fake_db):
    fake_db(app_module, fetchone=[(1,)])
    res = client.get("/api/health")
    assert res.status_code == 200
    assert res.json()["database"] == "connected"


def test_response_carries_request_id(client, fake_db):
    fake_db(app_module, fetchone=[(1,)])
    res = client.get("/api/health", headers={"X-Request-ID": "req-123"})
    assert res.headers["X-Request-ID"] == "req-123"


@pytest.mark.parametrize("path", [
    "/api/admin/dashboard",
    "/api/admin/users",
    "/api/admin/chats",
    "/api/admin/system/health",
    "/api/documents",
    "/api/faqs/admin/all",
])
def test_admin_routes_forbidden_for_users(client, as_user, path):
    res = client.get(path)
    assert res.status_code == 403
    assert res.json()["detail"].startswith("Access denied")


def test_dashboard_combines_analytics(client, as_admin, monkeypatch):
    monkeypatch.setattr(chats, "get_chat_analytics", lambda: {
        "total_chats": 12, "total_messages": 40, "messages_today": 3,
    })
    monkeypatch.setattr(users, "get_user_stats", lambda: {
        "total_users": 5, "active_users": 4, "active_today": 2,
    })
    monkeypatch.setattr(documents, "get_document_analytics", lambda: {"total_documents": 7})
    monkeypatch.setattr(faqs, "get_faq_analytics", lambda: {"total_faqs": 9})
    monkeypatch.setattr(chats, "get_recent_chats", lambda limit: [{"id": 1}])
    monkeypatch.setattr(documents, "get_top_documents", lambda limit: [])

    res = client.get("/api/admin/dashboard")

    assert res.status_code == 200
    overview = res.json()["overview"]
    assert overview["total_users"] == 5
    assert overview["active_users_today"] == 2
    assert overview["total_messages"] == 40
    assert overview["total_documents"] == 7
    assert overview["total_faqs"] == 9
    assert overview["recent_chats"] == [{"id": 1}]


def test_admin_status_update(client, as_admin, monkeypatch):
    calls = []

    def fake_update(user_id, updates, admin_id, admin_role):
        calls.append((user_id, updates, admin_id, admin_role))
        return {"id": user_id, "is_active": updates["is_active"]}

    monkeypatch.setattr(users, "update_user", fake_update)
    res = client.put("/api/admin/users/5/status", json={"is_active": False})

    assert res.status_code == 200
    assert res.json()["message"] == "User deactivated successfully"
    assert calls == [(5, {"is_active": False}, as_admin["id"], "admin")]


def test_system_health(client, as_admin, runtime_model):
    res = client.get("/api/admin/system/health")
    assert res.status_code == 200
    body = res.json()
    assert body["ai_provider"] == "openai"
    assert body["ai_model"] == "gpt-4o-mini"
    assert body["worker_running"] is False
    assert body["database"]["initialised"] is False
    assert set(body["memory"]) == {"rss", "vms", "system_percent", "system_total"}


def test_user_search_requires_query(client, as_user):
    res = client.get("/api/users/search")
    assert res.status_code == 400
    assert res.json()["detail"] == "Search query is required"


def test_models_listing(client, as_user, runtime_model):
    res = client.get("/api/models")
    assert res.status_code == 200
    body = res.json()
    assert body["current_provider"] == "openai"
    assert body["providers"]["openai"]["available"] is True
    assert body["providers"]["anthropic"]["available"] is False


def test_model_select_is_admin_only(client, as_user):
    res = client.post("/api/models/select", json={"provider": "openai", "model": "gpt-4o"})
    assert res.status_code == 403


def test_model_select(client, as_admin, runtime_model):
    res = client.post("/api/models/select", json={"provider": "openai", "model": "gpt-4o"})
    assert res.status_code == 200
    assert res.json() == {"status": "ok", "provider": "openai", "model": "gpt-4o"}
    assert ai_service.get_runtime_provider_model() == ("openai", "gpt-4o")
    assert type(ai_service._providers["openai"]).__name__ == "OpenAILLMProvider"


def test_model_select_rejects_unconfigured_provider(client, as_admin, runtime_model):
    res = client.post("/api/models/select", json={"provider": "anthropic", "model": "claude-3-haiku-20240307"})
    assert res.status_code == 400
