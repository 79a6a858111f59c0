"""End-to-end tests through the gateway app with an in-memory database."""
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from tests.test_helpers import student_headers, teacher_headers


def _bootstrap(client: TestClient, *names: str) -> list:
    r = client.post("/api/ledger/v1/classroom", json={"name": "3-1"}, headers=teacher_headers())
    assert r.status_code == 201, r.text
    assert {e["kind"] for e in r.json()["entities"]} == {"government", "bank", "securities"}

    ids = []
    for name in names:
        r = client.post("/api/ledger/v1/students", json={"name": name}, headers=teacher_headers())
        assert r.status_code == 201, r.text
        ids.append(r.json()["id"])
    return ids


def _fund(client: TestClient, student_ids: list, amount: int) -> None:
    r = client.post(
        "/api/transfers/v1/allowance",
        json={"student_ids": student_ids, "use_weekly_allowance": False, "amount": amount},
        headers=teacher_headers(),
    )
    assert r.status_code == 200, r.text


def test_healthz_and_metrics(client: TestClient):
    assert client.get("/healthz").json() == {"status": "ok", "service": "gateway"}
    r = client.get("/metrics/")
    assert r.status_code == 200
    assert "orders_total" in r.text


def test_auth_is_required(client: TestClient):
    assert client.get("/api/ledger/v1/entities").status_code == 401
    assert client.get("/api/ledger/v1/entities", headers={"Authorization": "Bearer nope"}).status_code == 403
    assert client.get("/api/ledger/v1/entities", headers={"Authorization": "Basic abc"}).status_code == 403


def test_roles_are_enforced(client: TestClient):
    (student_id,) = _bootstrap(client, "Minji")
    assert client.get("/api/ledger/v1/entities", headers=student_headers(student_id)).status_code == 403
    assert client.get("/api/ledger/v1/accounts", headers=teacher_headers()).status_code == 403


def test_investment_flow(client: TestClient):
    (student_id,) = _bootstrap(client, "Minji")
    _fund(client, [student_id], 100000)
    headers = student_headers(student_id)

    r = client.post(
        "/api/investments/v1/assets",
        json={"symbol": "sams", "name": "Samsung", "category": "stock", "current_price": 50000},
        headers=teacher_headers(),
    )
    assert r.status_code == 201, r.text
    asset_id = r.json()["id"]

    r = client.post(
        "/api/investments/v1/buy",
        json={"asset_id": asset_id, "quantity": 1, "account_type": "checking"},
        headers=headers,
    )
    assert r.status_code == 200, r.text
    assert r.json()["remaining_balance"] == 49950
    assert r.json()["transaction"]["asset_symbol"] == "SAMS"

    r = client.put(f"/api/investments/v1/assets/{asset_id}/price", json={"price": 60000}, headers=teacher_headers())
    assert r.status_code == 200

    r = client.post(
        "/api/investments/v1/sell",
        json={"asset_id": asset_id, "quantity": 1, "price": 60000, "account_type": "checking"},
        headers=headers,
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["new_balance"] == 109770
    assert body["fees"] == {"brokerage": 60, "tax": 120, "total": 180}
    assert body["profit"] == {"amount": 10000, "percent": 20}

    r = client.get("/api/investments/v1/portfolio", headers=headers)
    assert r.status_code == 200
    assert r.json()["holdings"] == []
    assert len(r.json()["recent_transactions"]) >= 2


def test_errors_render_as_json(client: TestClient):
    (student_id,) = _bootstrap(client, "Minji")
    r = client.post(
        "/api/transfers/v1/account-transfer",
        json={"from_account": "checking", "to_account": "savings", "amount": 10},
        headers=student_headers(student_id),
    )
    assert r.status_code == 400
    assert r.json()["error"] == "insufficient_funds"

    r = client.post(
        "/api/investments/v1/buy",
        json={"asset_id": 999, "quantity": 1},
        headers=student_headers(student_id),
    )
    assert r.status_code == 404
    assert r.json()["error"] == "not_found"


def test_loan_flow(client: TestClient):
    (student_id,) = _bootstrap(client, "Minji")
    headers = student_headers(student_id)

    r = client.post("/api/loans/v1/apply", json={"loan_amount": 500000, "duration_weeks": 4}, headers=headers)
    assert r.status_code == 201, r.text
    loan_id = r.json()["loan"]["id"]
    weekly = r.json()["weekly_payment"]

    r = client.post("/api/loans/v1/repay", json={"loan_id": loan_id, "payment_amount": weekly}, headers=headers)
    assert r.status_code == 200, r.text
    assert r.json()["payment_type"] == "scheduled"
    assert r.json()["remaining_weeks"] == 3

    r = client.get("/api/loans/v1/loans", headers=headers)
    body = r.json()
    assert body["summary"]["active_loans"] == 1
    assert body["eligibility"]["can_apply"] is True

    r = client.post("/api/loans/v1/apply", json={"loan_amount": 5000000, "duration_weeks": 4}, headers=headers)
    assert r.status_code == 400
    assert r.json()["error"] == "limit_exceeded"

    r = client.post("/api/loans/v1/overdue-sweep", headers=teacher_headers())
    assert r.json() == {"marked_overdue": 0}


def test_seat_flow(client: TestClient):
    a, b = _bootstrap(client, "A", "B")
    _fund(client, [a, b], 500000)

    r = client.post("/api/seats/v1/layout", json={"columns": [2, 2]}, headers=teacher_headers())
    assert r.status_code == 200, r.text
    assert len(r.json()) == 4

    r = client.post("/api/seats/v1/prices/update", json={}, headers=teacher_headers())
    assert r.json() == {"price": 300000, "updated": 4}

    r = client.post("/api/seats/v1/buy", json={"seat_number": 3}, headers=student_headers(a))
    assert r.status_code == 200, r.text
    assert r.json()["seat"]["owner_id"] == a

    r = client.post("/api/seats/v1/buy", json={"seat_number": 3}, headers=student_headers(b))
    assert r.status_code == 409

    r = client.post("/api/seats/v1/sell", json={"seat_number": 3}, headers=student_headers(a))
    assert r.status_code == 200
    assert r.json()["sale_price"] == 210000
    assert r.json()["profit"] == -90000


def test_tax_and_statement(client: TestClient):
    a, b = _bootstrap(client, "A", "B")
    _fund(client, [a, b], 10000)

    r = client.post(
        "/api/transfers/v1/tax-collection",
        json={"student_ids": [a, b], "tax_type": "percentage", "rate": 10},
        headers=teacher_headers(),
    )
    assert r.status_code == 200, r.text
    assert r.json()["total"] == 2000
    assert r.json()["count"] == 2

    r = client.post(
        "/api/transfers/v1/tax-collection",
        json={"student_ids": [a, b], "tax_type": "fixed"},
        headers=teacher_headers(),
    )
    assert r.status_code == 422

    r = client.post(
        "/api/transfers/v1/transfer",
        json={"to_student_id": b, "amount": 1000},
        headers=student_headers(a),
    )
    assert r.status_code == 200, r.text
    assert r.json()["balance"] == 8000

    r = client.get("/api/transfers/v1/transactions", headers=student_headers(a))
    assert [t["type"] for t in r.json()] == ["transfer", "tax", "allowance"]

    r = client.get(
        "/api/transfers/v1/transactions",
        params={"since": "2999-01-01T00:00:00Z"},
        headers=student_headers(a),
    )
    assert r.json() == []

    r = client.get("/api/transfers/v1/transactions", params={"since": "soon"}, headers=student_headers(a))
    assert r.status_code == 400


def test_student_maintenance(client: TestClient):
    a, b = _bootstrap(client, "A", "B")
    _fund(client, [a], 100000)
    assert client.get("/api/seats/v1/price", headers=teacher_headers()).json() == {"price": 30000}

    r = client.patch(
        f"/api/ledger/v1/students/{b}",
        json={"name": "Bora", "weekly_allowance": 5000},
        headers=teacher_headers(),
    )
    assert r.status_code == 200, r.text
    assert (r.json()["name"], r.json()["weekly_allowance"], r.json()["is_active"]) == ("Bora", 5000, True)

    r = client.post("/api/transfers/v1/allowance", json={"student_ids": [b]}, headers=teacher_headers())
    assert r.json()["total"] == 5000

    r = client.delete(f"/api/ledger/v1/students/{b}", headers=teacher_headers())
    assert r.status_code == 200, r.text
    assert r.json()["is_active"] is False
    assert [s["id"] for s in client.get("/api/ledger/v1/students", headers=teacher_headers()).json()] == [a]
    # only A's money and A remain in the price
    assert client.get("/api/seats/v1/price", headers=teacher_headers()).json() == {"price": 60000}

    r = client.post("/api/transfers/v1/transfer", json={"to_student_id": b, "amount": 100}, headers=student_headers(a))
    assert r.status_code == 400
    assert r.json()["error"] == "validation_error"

    r = client.patch(f"/api/ledger/v1/students/{b}", json={"is_active": True}, headers=teacher_headers())
    assert r.json()["is_active"] is True
    assert client.patch(f"/api/ledger/v1/students/{b}", json={"credit_score": 900}, headers=teacher_headers()).status_code == 422
    assert client.patch("/api/ledger/v1/students/nope", json={"name": "X"}, headers=teacher_headers()).status_code == 404
    assert client.patch(f"/api/ledger/v1/students/{b}", json={"name": "X"}, headers=student_headers(a)).status_code == 403


@pytest.mark.parametrize("adjustment,expected", [(100, 800), (-1000, 350)])
def test_credit_score_adjustment(client: TestClient, adjustment, expected):
    (student_id,) = _bootstrap(client, "Minji")
    r = client.patch(
        f"/api/ledger/v1/students/{student_id}/credit-score",
        json={"adjustment": adjustment},
        headers=teacher_headers(),
    )
    assert r.status_code == 200, r.text
    assert r.json() == {"student_id": student_id, "previous_score": 700, "credit_score": expected}
