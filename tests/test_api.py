from __future__ import annotations

import logging
from datetime import timedelta

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event

from conftest import FIXED_NOW, FakePixProvider
from manuflix.config import get_settings
from manuflix.database import build_engine
from manuflix.main import create_app

SECRET = "test-jwt-secret-with-at-least-32-bytes!"
WEBHOOK_HEADERS = {"X-Webhook-Token": "test-webhook-token"}


def auth_headers(user_id: str = "user-1") -> dict:
    token = jwt.encode(
        {"sub": user_id, "email": f"{user_id}@example.com", "aud": "authenticated"},
        SECRET,
        algorithm="HS256",
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def provider():
    return FakePixProvider(statuses=["PENDING"], expiration_date=FIXED_NOW + timedelta(seconds=3600))


@pytest.fixture
def client(provider):
    app = create_app(
        get_settings(),
        engine=build_engine("sqlite:///:memory:"),
        provider=provider,
        clock=lambda: FIXED_NOW,
    )
    with TestClient(app) as test_client:
        yield test_client


def open_session(client, plan_id="lifetime", user_id="user-1"):
    response = client.post("/api/v1/checkout/sessions", json={"plan_id": plan_id}, headers=auth_headers(user_id))
    assert response.status_code == 201
    return response.json()


def test_health_checks_the_database_once(client):
    statements = []
    engine = client.app.state.engine

    def record(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement)

    event.listen(engine, "before_cursor_execute", record)
    try:
        response = client.get("/api/v1/health")
    finally:
        event.remove(engine, "before_cursor_execute", record)

    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "database": {"ok": True, "dialect": "sqlite"}}
    assert statements == ["SELECT 1"]


def test_list_plans(client):
    response = client.get("/api/v1/plans/")
    assert response.status_code == 200
    plans = response.json()
    assert [p["id"] for p in plans] == ["monthly", "yearly", "lifetime"]
    assert plans[2]["is_lifetime"] is True


def test_unknown_plan(client):
    assert client.get("/api/v1/plans/nope").status_code == 404
    response = client.post("/api/v1/checkout/sessions", json={"plan_id": "nope"}, headers=auth_headers())
    assert response.status_code == 404


def test_checkout_requires_auth(client):
    assert client.post("/api/v1/checkout/sessions", json={"plan_id": "monthly"}).status_code == 401
    bad = {"Authorization": "Bearer not-a-jwt"}
    assert client.post("/api/v1/checkout/sessions", json={"plan_id": "monthly"}, headers=bad).status_code == 401


def test_blank_fields_are_rejected_without_charge(client, provider):
    session = open_session(client)
    response = client.post(
        f"/api/v1/checkout/sessions/{session['id']}/submit",
        json={"email": "", "name": "Ana"},
        headers=auth_headers(),
    )
    assert response.status_code == 422
    assert provider.create_calls == []
    snapshot = client.get(f"/api/v1/checkout/sessions/{session['id']}", headers=auth_headers()).json()
    assert snapshot["state"] == "idle"


def test_full_checkout_confirmed_by_webhook(client, provider):
    session = open_session(client)
    assert session["state"] == "idle"

    response = client.post(
        f"/api/v1/checkout/sessions/{session['id']}/submit",
        json={"email": "ana@example.com", "name": "Ana", "cpf": "12345678909"},
        headers=auth_headers(),
    )
    assert response.status_code == 200
    snapshot = response.json()
    assert snapshot["state"] == "awaiting_payment"
    assert snapshot["countdown_seconds"] == 3600
    assert snapshot["countdown"] == "60:00"
    assert snapshot["charge"]["copy_paste"].startswith("000201")
    assert len(provider.create_calls) == 1

    duplicate = client.post(
        f"/api/v1/checkout/sessions/{session['id']}/submit",
        json={"email": "ana@example.com", "name": "Ana"},
        headers=auth_headers(),
    )
    assert duplicate.status_code == 409
    assert len(provider.create_calls) == 1

    payment_id = snapshot["charge"]["id"]
    provider.statuses = ["PAID"]
    hook = client.post("/api/v1/webhooks/pix", json={"payment_id": payment_id, "status": "PAID"}, headers=WEBHOOK_HEADERS)
    assert hook.status_code == 200
    body = hook.json()
    assert body["outcome"] == "confirm"
    assert body["transaction_status"] == "paid"
    assert body["provider_status"] == "PAID"

    again = client.post("/api/v1/webhooks/pix", json={"payment_id": payment_id, "status": "PAID"}, headers=WEBHOOK_HEADERS)
    assert again.json()["outcome"] == "already_confirmed"
    assert again.json()["subscription_id"] == body["subscription_id"]

    state = client.get(f"/api/v1/checkout/sessions/{session['id']}", headers=auth_headers()).json()
    assert state["state"] == "confirmed"

    subscription = client.get("/api/v1/subscriptions/me", headers=auth_headers()).json()
    assert subscription["id"] == body["subscription_id"]
    assert subscription["is_lifetime"] is True
    assert subscription["expires_at"] is None

    access = client.get("/api/v1/subscriptions/me/access", headers=auth_headers()).json()
    assert access == {"user_id": "user-1", "has_access": True}

    transactions = client.get("/api/v1/subscriptions/me/transactions", headers=auth_headers()).json()
    assert [t["status"] for t in transactions] == ["paid"]


def test_no_subscription_means_no_access(client):
    assert client.get("/api/v1/subscriptions/me", headers=auth_headers("user-9")).json() is None
    access = client.get("/api/v1/subscriptions/me/access", headers=auth_headers("user-9")).json()
    assert access["has_access"] is False


def test_webhook_for_unknown_payment(client, provider):
    response = client.post("/api/v1/webhooks/pix", json={"payment_id": "ghost", "status": "PAID"}, headers=WEBHOOK_HEADERS)
    assert response.status_code == 404
    assert provider.status_calls == 0


def test_provider_failure_then_retry(client, provider):
    provider.fail_create = True
    session = open_session(client, plan_id="monthly")
    url = f"/api/v1/checkout/sessions/{session['id']}"

    failed = client.post(f"{url}/submit", json={"email": "ana@example.com", "name": "Ana"}, headers=auth_headers())
    assert failed.status_code == 502
    assert client.get(url, headers=auth_headers()).json()["state"] == "failed"

    provider.fail_create = False
    retried = client.post(f"{url}/retry", headers=auth_headers())
    assert retried.status_code == 200
    assert retried.json()["state"] == "idle"
    assert client.post(f"{url}/retry", headers=auth_headers()).status_code == 409


def test_sessions_are_private_and_closable(client, provider):
    session = open_session(client)
    url = f"/api/v1/checkout/sessions/{session['id']}"

    assert client.get(url, headers=auth_headers("someone-else")).status_code == 404

    client.post(f"{url}/submit", json={"email": "ana@example.com", "name": "Ana"}, headers=auth_headers())
    assert client.delete(url, headers=auth_headers()).status_code == 204
    assert client.get(url, headers=auth_headers()).status_code == 404


def submitted_charge_id(client, plan_id="lifetime"):
    session = open_session(client, plan_id=plan_id)
    response = client.post(
        f"/api/v1/checkout/sessions/{session['id']}/submit",
        json={"email": "ana@example.com", "name": "Ana"},
        headers=auth_headers(),
    )
    assert response.status_code == 200
    return session["id"], response.json()["charge"]["id"]


@pytest.mark.parametrize("headers", [{}, {"X-Webhook-Token": "wrong"}])
def test_webhook_requires_shared_token(client, provider, headers):
    _, payment_id = submitted_charge_id(client)
    response = client.post("/api/v1/webhooks/pix", json={"payment_id": payment_id, "status": "PAID"}, headers=headers)
    assert response.status_code == 401
    assert provider.status_calls == 0
    access = client.get("/api/v1/subscriptions/me/access", headers=auth_headers()).json()
    assert access["has_access"] is False


def test_pushed_paid_is_ignored_while_provider_reports_pending(client, provider):
    session_id, payment_id = submitted_charge_id(client)

    response = client.post(
        "/api/v1/webhooks/pix", json={"payment_id": payment_id, "status": "PAID"}, headers=WEBHOOK_HEADERS
    )
    assert response.status_code == 200
    body = response.json()
    assert body["outcome"] == "noop"
    assert body["transaction_status"] == "pending"
    assert body["provider_status"] == "PENDING"
    assert body["subscription_id"] is None
    assert provider.status_calls == 1

    access = client.get("/api/v1/subscriptions/me/access", headers=auth_headers()).json()
    assert access["has_access"] is False
    snapshot = client.get(f"/api/v1/checkout/sessions/{session_id}", headers=auth_headers()).json()
    assert snapshot["state"] == "awaiting_payment"
    transactions = client.get("/api/v1/subscriptions/me/transactions", headers=auth_headers()).json()
    assert [t["status"] for t in transactions] == ["pending"]


def test_startup_logs_use_lazy_arguments(provider, caplog):
    app = create_app(get_settings(), engine=build_engine("sqlite:///:memory:"), provider=provider)
    with caplog.at_level(logging.INFO, logger="manuflix.main"):
        with TestClient(app):
            pass

    records = [r for r in caplog.records if r.name == "manuflix.main"]
    environment = [r for r in records if r.msg == "API running on %s environment"]
    assert [r.args for r in environment] == [("test",)]
    assert environment[0].getMessage() == "API running on test environment"
