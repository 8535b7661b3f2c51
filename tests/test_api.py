"""
Executor access API - verification, session, accounts and error mapping.
"""

import sqlite3
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from conftest import add_letter
from release_gate.api.main import app
from release_gate.core import dao, release_service
from release_gate.core.dispatch import SENT, LetterDispatcher

IDENTITY = {"X-Executor-Identity": "executor@example.org"}


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def dispatcher(sender):
    dispatcher = LetterDispatcher(sender, send_timeout_sec=5)
    release_service.set_dispatcher(dispatcher)
    return dispatcher


def _verify(client, code="482913", headers=IDENTITY, **kwargs):
    return client.post("/executor/verify", json={"owner_id": "owner-1", "access_code": code},
                       headers=headers, **kwargs)


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["db_health"] is True
    assert body["version"]


def test_verify_success(client, owner, dispatcher, sender):
    add_letter("l1", recipient_email="kim@example.org")

    response = _verify(client)

    assert response.status_code == 200
    body = response.json()
    assert body["activation"] == "activated"
    assert body["executor_name"] == "Ada Executor"
    assert body["permissions"]["can_view_letters"] is True
    assert body["permissions"]["can_view_medical_contacts"] is False
    assert body["token"]

    report = dispatcher.wait(body["dispatch_run_id"], timeout=10)
    assert report.outcomes == {"l1": SENT}


def test_verify_with_identity_cookie(client, owner, dispatcher):
    client.cookies.set("executor_email", "executor@example.org")
    response = _verify(client, headers={})
    assert response.status_code == 200
    dispatcher.wait(response.json()["dispatch_run_id"], timeout=10)


def test_second_verify_is_already_active(client, owner, dispatcher):
    first = _verify(client).json()
    dispatcher.wait(first["dispatch_run_id"], timeout=10)

    second = _verify(client).json()
    assert second["activation"] == "already_active"
    assert second["dispatch_run_id"] is None


def test_missing_identity(client, owner, dispatcher):
    response = _verify(client, headers={})
    assert response.status_code == 401


@pytest.mark.parametrize("code, status, error_type", [
    ("000000", 401, "INVALID_CODE"),
    ("48291", 401, "INVALID_CODE"),
    ("482913 ", 401, "INVALID_CODE"),
    (" 482913", 401, "INVALID_CODE"),
])
def test_wrong_code(client, owner, dispatcher, code, status, error_type):
    response = _verify(client, code=code)

    assert response.status_code == status
    body = response.json()
    assert body["error_type"] == error_type
    assert body["message"] == "Invalid access code"
    assert "timestamp" in body
    assert not dao.get_release_record(owner).release_activated


def test_not_an_executor(client, owner, dispatcher):
    response = _verify(client, headers={"X-Executor-Identity": "stranger@example.org"})
    assert response.status_code == 403
    assert response.json()["error_type"] == "NOT_AN_EXECUTOR"


def test_not_locked(client, owner, dispatcher):
    dao.upsert_release_record(owner, False, None, "exec-1")
    response = _verify(client)
    assert response.status_code == 401
    assert response.json()["error_type"] == "NOT_LOCKED"


def test_store_unavailable(client, owner, dispatcher):
    with patch("release_gate.core.dao.get_db", side_effect=sqlite3.OperationalError("disk I/O error")):
        response = _verify(client)

    assert response.status_code == 503
    assert response.json()["error_type"] == "PERSISTENCE_UNAVAILABLE"


def test_blank_request_fields(client, owner, dispatcher):
    response = client.post("/executor/verify", json={"owner_id": " ", "access_code": "482913"}, headers=IDENTITY)
    assert response.status_code == 422


def test_session_lifecycle(client, owner, dispatcher):
    body = _verify(client).json()
    dispatcher.wait(body["dispatch_run_id"], timeout=10)
    auth = {"Authorization": f"Bearer {body['token']}"}

    session = client.get("/executor/session", headers=auth)
    assert session.status_code == 200
    assert session.json()["owner_id"] == "owner-1"

    allowed = client.get("/executor/session", params={"capability": "can_view_letters"}, headers=auth)
    assert allowed.status_code == 200

    denied = client.get("/executor/session", params={"capability": "can_view_medical_contacts"}, headers=auth)
    assert denied.status_code == 403
    assert denied.json()["error_type"] == "INSUFFICIENT_PERMISSIONS"

    revoked = client.delete("/executor/session", headers=auth)
    assert revoked.json() == {"revoked": True}

    gone = client.get("/executor/session", headers=auth)
    assert gone.status_code == 401
    assert gone.json()["error_type"] == "GRANT_INVALID"


def test_session_without_token(client):
    assert client.get("/executor/session").status_code == 401
    assert client.get("/executor/session", headers={"Authorization": "Basic abc"}).status_code == 401


def test_accounts(client, owner):
    dao.save_relationship("executor@example.org", "owner-2", "c-2", "invited")

    response = client.get("/executor/accounts", headers=IDENTITY)

    assert response.status_code == 200
    accounts = response.json()["accounts"]
    assert [a["owner_id"] for a in accounts] == ["owner-1", "owner-2"]
    assert accounts[0]["owner_display_name"] == "Olive Owner"
    assert accounts[1]["status"] == "invited"


def test_dispatch_status_requires_debug(client, monkeypatch):
    monkeypatch.setenv("DEBUG", "false")
    assert client.get("/executor/dispatch/anything").status_code == 403


def test_dispatch_status_in_debug(client, owner, dispatcher, monkeypatch):
    monkeypatch.setenv("DEBUG", "true")
    add_letter("l1", recipient_email="kim@example.org")
    run_id = _verify(client).json()["dispatch_run_id"]
    dispatcher.wait(run_id, timeout=10)

    response = client.get(f"/executor/dispatch/{run_id}")
    assert response.status_code == 200
    assert response.json()["status"] == "completed"
    assert response.json()["outcomes"] == {"l1": "sent"}

    assert client.get("/executor/dispatch/dispatch_unknown").status_code == 404
