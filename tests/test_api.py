from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from auth import issue_owner_token
from database import get_db, init_schema
from main import app
from models import Account, AccountType, Transaction, TransactionType, UserProfile


@pytest.fixture()
def client():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_schema(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    with TestingSession() as session:
        session.add(UserProfile(id=1, onboarding_completed=True))
        session.add(Account(id=1, user_id=1, name="Everyday", type=AccountType.checking))
        session.add(
            Transaction(
                user_id=1,
                account_id=1,
                type=TransactionType.income,
                amount_cents=1_000,
                date=date(2024, 1, 2),
            )
        )
        session.commit()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def _auth(user_id: int = 1) -> dict[str, str]:
    return {"Authorization": f"Bearer {issue_owner_token(user_id)}"}


def test_requests_without_token_are_rejected(client):
    assert client.get("/api/accounts").status_code == 401
    bad = {"Authorization": "Bearer not-a-token"}
    assert client.get("/api/accounts", headers=bad).status_code == 401


def test_manual_balance_round_trip(client):
    resp = client.get("/api/accounts/1/balance", headers=_auth())
    assert resp.status_code == 200
    assert resp.json()["balance_cents"] == 1_000

    resp = client.put(
        "/api/accounts/1/manual-balance",
        json={"balance_cents": 500, "note": "statement"},
        headers=_auth(),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["balance_cents"] == 500
    assert body["manual_override_active"] is True
    assert body["transaction_impact_cents"] == 0

    resp = client.delete("/api/accounts/1/manual-balance", headers=_auth())
    assert resp.json()["balance_cents"] == 1_000
    assert resp.json()["manual_override_active"] is False


def test_other_owner_cannot_see_account(client):
    resp = client.get("/api/accounts/1/balance", headers=_auth(2))
    assert resp.status_code == 404


def test_posting_large_expense_creates_alert(client):
    resp = client.post(
        "/api/transactions",
        json={
            "account_id": 1,
            "type": "expense",
            "amount_cents": 20_000,
            "date": "2024-01-05",
            "description": "Flight",
        },
        headers=_auth(),
    )
    assert resp.status_code == 201
    assert resp.json()["amount_cents"] == 20_000

    notes = client.get("/api/notifications", headers=_auth()).json()
    assert len(notes) == 1
    assert notes[0]["type"] == "transaction_alert"
    assert notes[0]["data"]["type"] == "large_amount"

    note_id = notes[0]["id"]
    read = client.post(f"/api/notifications/{note_id}/read", headers=_auth())
    assert read.json()["read_at"] is not None
    unread = client.get("/api/notifications?unread_only=true", headers=_auth()).json()
    assert unread == []

    assert client.delete(f"/api/notifications/{note_id}", headers=_auth()).status_code == 204
    assert client.get("/api/notifications", headers=_auth()).json() == []


def test_invalid_transaction_is_rejected(client):
    resp = client.post(
        "/api/transactions",
        json={
            "account_id": 1,
            "transfer_account_id": 1,
            "type": "transfer",
            "amount_cents": 100,
            "date": "2024-01-05",
        },
        headers=_auth(),
    )
    assert resp.status_code == 400


def test_summary_endpoint(client):
    resp = client.get(
        "/api/summary",
        params={"granularity": "monthly", "window": 1, "today": "2024-01-31"},
        headers=_auth(),
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["total_income_cents"] == 1_000
    assert data["savings_rate"] == 1.0

    bad = client.get("/api/summary", params={"granularity": "hourly"}, headers=_auth())
    assert bad.status_code == 400


def test_notification_preferences_patch(client):
    resp = client.patch(
        "/api/notifications/preferences",
        json={"transaction_alerts": {"enabled": True, "min_amount_cents": 50_000}},
        headers=_auth(),
    )
    assert resp.status_code == 200
    prefs = client.get("/api/notifications/preferences", headers=_auth()).json()
    assert prefs["transaction_alerts"]["min_amount_cents"] == 50_000
    assert prefs["budget_alerts"]["thresholds"] == [80, 90, 100]

    bad = client.patch(
        "/api/notifications/preferences", json={"sms": {}}, headers=_auth()
    )
    assert bad.status_code == 422


def test_trigger_runs_job(client):
    resp = client.post("/api/notifications/trigger")
    assert resp.status_code == 200
    assert resp.json()["users_processed"] == 1
