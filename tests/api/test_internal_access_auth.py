from __future__ import annotations

from types import SimpleNamespace

from fastapi.testclient import TestClient

from app.api.routes import internal_access_helpers
from app.main import app


def _settings(allowlist: str) -> SimpleNamespace:
    return SimpleNamespace(
        internal_api_token="internal-secret",
        internal_api_allowlist=allowlist,
        internal_api_trusted_proxies="",
    )


def test_internal_access_check_rejects_missing_token(monkeypatch) -> None:
    monkeypatch.setattr(internal_access_helpers, "get_settings", lambda: _settings("127.0.0.1/32"))

    client = TestClient(app)
    response = client.post(
        "/internal/access/check",
        json={"user_id": 1, "resource_id": "content-1", "resource_kind": "EXCLUSIVE_CONTENT"},
    )

    assert response.status_code == 403
    assert response.json() == {"detail": {"code": "E_FORBIDDEN"}}


def test_internal_access_grants_reject_disallowed_ip(monkeypatch) -> None:
    monkeypatch.setattr(internal_access_helpers, "get_settings", lambda: _settings("192.168.0.0/16"))

    client = TestClient(app)
    response = client.post(
        "/internal/access/grants/verify",
        json={"token": "a" * 64},
        headers={
            "X-Internal-Token": "internal-secret",
            "X-Forwarded-For": "10.0.0.25",
        },
    )

    assert response.status_code == 403
    assert response.json() == {"detail": {"code": "E_FORBIDDEN"}}


def test_internal_access_rules_reject_wrong_token(monkeypatch) -> None:
    monkeypatch.setattr(internal_access_helpers, "get_settings", lambda: _settings("127.0.0.1/32"))
    monkeypatch.setattr(internal_access_helpers, "extract_client_ip", lambda request, trusted_proxies: "127.0.0.1")

    client = TestClient(app)
    response = client.get(
        "/internal/access/rules/EXCLUSIVE_CONTENT/content-1",
        headers={"X-Internal-Token": "wrong-secret"},
    )

    assert response.status_code == 403
    assert response.json() == {"detail": {"code": "E_FORBIDDEN"}}
