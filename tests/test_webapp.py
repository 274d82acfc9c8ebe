from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, delete

import behaviorbank.webapp.application as application
from behaviorbank.persistence import Account, AuditRecord, Deposit, PointTransaction, User, Withdrawal
from behaviorbank.security import PinThrottle
from behaviorbank.webapp import app, engine

SIX_MONTHS = timedelta(days=182, seconds=55_296)


@pytest.fixture(autouse=True)
def clean_database(monkeypatch, clock) -> None:
    with Session(engine) as session:
        for model in (AuditRecord, Withdrawal, PointTransaction, Deposit, Account, User):
            session.exec(delete(model))
        session.commit()
    monkeypatch.setattr(application, "pin_throttle", PinThrottle())
    monkeypatch.setattr(application, "_time_provider", clock)


def _login(name: str, pin: str = "1234") -> TestClient:
    client = TestClient(app)
    response = client.post("/api/auth/login", json={"name": name, "pin": pin})
    assert response.status_code == 200, response.text
    return client


@pytest.fixture
def seeded() -> dict:
    response = TestClient(app).post("/api/seed")
    assert response.status_code == 200
    child = application.directory.find_user("child")
    admin = application.directory.find_user("admin")
    account = application.directory.account_for_user(child.id)
    return {"admin_id": admin.id, "child_id": child.id, "account_id": account.id}


def test_health_reports_database() -> None:
    response = TestClient(app).get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "db": "connected"}


def test_seed_is_repeatable(seeded) -> None:
    again = TestClient(app).post("/api/seed").json()
    assert again["results"]["admin"] == "Already exists"
    assert again["results"]["account"] == "Already exists"


def test_login_logout_and_me(seeded) -> None:
    client = _login("admin")
    me = client.get("/api/auth/me")
    assert me.json()["user"]["role"] == "ADMIN"

    assert client.post("/api/auth/logout").status_code == 200
    assert client.get("/api/auth/me").status_code == 401


def test_requests_without_session_are_unauthorized() -> None:
    response = TestClient(app).get("/api/points/balance")
    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}


def test_bad_pin_is_rejected_then_throttled(seeded) -> None:
    client = TestClient(app)
    for _ in range(5):
        response = client.post("/api/auth/login", json={"name": "child", "pin": "0000"})
        assert response.status_code == 401
    locked = client.post("/api/auth/login", json={"name": "child", "pin": "1234"})
    assert locked.status_code == 429


def test_award_and_deduct_points_end_to_end(seeded) -> None:
    admin = _login("admin")
    child_id = seeded["child_id"]

    awarded = admin.post(
        "/api/points", json={"user_id": child_id, "amount": 50, "description": "Great week", "type": "BONUS"}
    )
    assert awarded.status_code == 200
    assert awarded.json()["new_balance"] == 50

    deducted = admin.post("/api/points/deduct", json={"user_id": child_id, "amount": 10, "description": "Snack"})
    assert deducted.json()["new_balance"] == 40

    too_much = admin.post("/api/points/deduct", json={"user_id": child_id, "amount": 1000, "description": "Toy"})
    assert too_much.status_code == 400
    assert "Insufficient" in too_much.json()["error"]

    invalid = admin.post("/api/points", json={"user_id": child_id, "amount": 0, "description": "Nothing"})
    assert invalid.status_code == 400
    assert invalid.json() == {"error": "Amount must be positive"}

    balance = admin.get("/api/points/balance", params={"user_id": child_id}).json()
    assert balance == {"user_id": child_id, "balance": 40}

    history = admin.get("/api/points/history", params={"user_id": child_id}).json()
    assert history["total"] == 2
    assert [item["balance_after"] for item in history["items"]] == [40, 50]


def test_children_cannot_manage_points(seeded) -> None:
    child = _login("child")
    response = child.post(
        "/api/points", json={"user_id": seeded["child_id"], "amount": 5, "description": "Self award"}
    )
    assert response.status_code == 403
    assert response.json() == {"error": "Admin access required"}

    other = child.get("/api/points/balance", params={"user_id": seeded["admin_id"]})
    assert other.status_code == 403
    assert child.get("/api/points/balance").json()["balance"] == 0
    assert child.get("/api/audit").status_code == 403
    assert child.get("/api/users").status_code == 403


def test_adjust_allows_negative_and_triggers_penalty(seeded) -> None:
    admin = _login("admin")
    response = admin.post(
        "/api/points/adjust", json={"user_id": seeded["child_id"], "delta": -5, "description": "Broke a lamp"}
    )
    assert response.json()["new_balance"] == -5

    stats = _login("child").get("/api/dashboard").json()["stats"]
    assert stats["is_penalty"] is True
    assert stats["estimated_value"] == 5000


def test_withdrawal_workflow(seeded, clock) -> None:
    clock.advance(seconds=SIX_MONTHS.total_seconds())
    child = _login("child")
    admin = _login("admin")
    account_id = seeded["account_id"]

    denied = child.post(
        "/api/withdrawals", json={"account_id": account_id, "amount": 999_999, "reason": "Everything"}
    )
    assert denied.status_code == 400
    assert denied.json() == {
        "error": "Only 5125.00 is available (vested + interest)",
        "available_amount": 5125.0,
    }

    not_owner = admin.post("/api/withdrawals", json={"account_id": account_id, "amount": 10, "reason": "Mine"})
    assert not_owner.status_code == 403

    created = child.post("/api/withdrawals", json={"account_id": account_id, "amount": 100, "reason": "Bike"})
    assert created.status_code == 201
    withdrawal = created.json()["withdrawal"]
    assert withdrawal["status"] == "PENDING"
    assert withdrawal["amount"] == 100.0

    assert child.post(f"/api/withdrawals/{withdrawal['id']}/approve").status_code == 403

    approved = admin.post(f"/api/withdrawals/{withdrawal['id']}/approve", json={"notes": "Enjoy"})
    assert approved.status_code == 200
    assert approved.json()["withdrawal"]["status"] == "APPROVED"

    again = admin.post(f"/api/withdrawals/{withdrawal['id']}/reject", json={"notes": "Too late"})
    assert again.status_code == 409

    second = child.post("/api/withdrawals", json={"account_id": account_id, "amount": 5, "reason": "Candy"}).json()
    missing_notes = admin.post(f"/api/withdrawals/{second['withdrawal']['id']}/reject", json={})
    assert missing_notes.status_code == 400
    assert missing_notes.json() == {"error": "Notes are required when rejecting a withdrawal"}

    listed = child.get("/api/withdrawals").json()["withdrawals"]
    assert {item["status"] for item in listed} == {"APPROVED", "PENDING"}
    pending = admin.get("/api/withdrawals", params={"status": "PENDING"}).json()["withdrawals"]
    assert [item["reason"] for item in pending] == ["Candy"]

    assert admin.post("/api/withdrawals/9999/approve").status_code == 404


def test_accounts_and_deposits(seeded, clock) -> None:
    admin = _login("admin")
    created = admin.post("/api/users", json={"name": "Ben", "role": "CHILD", "pin": "2468"})
    assert created.status_code == 201
    ben = created.json()
    assert ben["account"]["deposit_amount"] == 0.0

    assert admin.post("/api/users", json={"name": "Ben", "role": "CHILD", "pin": "2468"}).status_code == 409
    assert admin.post("/api/users", json={"name": "Cy", "role": "PARENT", "pin": "2468"}).status_code == 400
    assert admin.post("/api/accounts", json={"user_id": ben["user"]["id"]}).status_code == 409

    deposit = admin.post(
        "/api/deposits", json={"account_id": ben["account"]["id"], "amount": 250, "vesting_months": 24}
    )
    assert deposit.status_code == 201
    assert deposit.json()["account"]["deposit_amount"] == 250.0
    bad = admin.post("/api/deposits", json={"account_id": ben["account"]["id"], "amount": 10, "vesting_months": 90})
    assert bad.status_code == 400

    clock.advance(seconds=SIX_MONTHS.total_seconds())
    child = _login("child")
    view = child.get("/api/accounts", params={"user_id": seeded["child_id"]}).json()["account"]
    assert view["deposit_amount"] == 10_000.0
    assert view["available_balance"] == 5125.0
    assert view["points_balance"] == 0
    assert child.get("/api/accounts").status_code == 403
    assert child.get("/api/deposits", params={"account_id": ben["account"]["id"]}).status_code == 403

    listing = admin.get("/api/accounts").json()["accounts"]
    assert len(listing) == 2
    deposits = admin.get("/api/deposits", params={"account_id": ben["account"]["id"]}).json()["deposits"]
    assert [item["vesting_months"] for item in deposits] == [24]


def test_dashboard_and_audit(seeded, clock) -> None:
    admin = _login("admin")
    admin.post("/api/points", json={"user_id": seeded["child_id"], "amount": 20, "description": "Reading"})
    clock.advance(days=180)

    dashboard = _login("child").get("/api/dashboard").json()
    assert dashboard["user"]["name"] == "child"
    assert dashboard["account"]["balance"] == 10_000.0
    assert dashboard["stats"]["interest_rate"] == 20
    assert dashboard["stats"]["estimated_value"] == 12_024
    assert dashboard["recent_activity"][0]["description"] == "Reading"

    audit = admin.get("/api/audit", params={"action": "AWARD_POINTS"}).json()
    assert audit["total"] == 1
    assert audit["items"][0]["details"]["amount"] == 20
    logins = admin.get("/api/audit", params={"action": "LOGIN", "limit": 1}).json()
    assert logins["total"] == 2
    assert logins["total_pages"] == 2


def test_malformed_bodies_use_the_error_shape(seeded) -> None:
    admin = _login("admin")
    fractional = admin.post(
        "/api/points", json={"user_id": seeded["child_id"], "amount": 2.5, "description": "Half a point"}
    )
    assert fractional.status_code == 400
    assert set(fractional.json()) == {"error"}
    assert fractional.json()["error"].startswith("amount: ")

    missing = admin.post("/api/withdrawals", json={"account_id": seeded["account_id"]})
    assert missing.status_code == 400
    assert "detail" not in missing.json()

    tiny = _login("child").post(
        "/api/withdrawals", json={"account_id": seeded["account_id"], "amount": 0.004, "reason": "Crumbs"}
    )
    assert tiny.status_code == 400
    assert tiny.json() == {"error": "Amount must be positive"}
