from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

from budget_reconciler.app import create_app
from budget_reconciler.services.reconciliation import ReconciliationCoordinator


@pytest.fixture
def client(coordinator: ReconciliationCoordinator) -> Generator[TestClient, None, None]:
    with TestClient(create_app(coordinator)) as test_client:
        yield test_client


@pytest.fixture
def category_id(client: TestClient) -> str:
    response = client.post("/categories", json={"name": "Streaming"})
    assert response.status_code == 201
    return response.json()["id"]


def netflix_payload(category_id: str) -> list[dict]:
    return [
        {
            "description": f"NETFLIX.COM {1000 + month}",
            "amount": "-15.99",
            "date": f"2024-{month:02d}-15",
            "category_id": category_id,
        }
        for month in range(1, 7)
    ]


def test_detect_and_confirm_flow(client: TestClient, category_id: str) -> None:
    response = client.post("/transactions", json={"transactions": netflix_payload(category_id)})
    assert response.status_code == 201

    response = client.post("/subscriptions/detect", json={})
    assert response.status_code == 200
    candidates = response.json()
    assert len(candidates) == 1
    assert candidates[0]["billing_frequency"] == "monthly"

    response = client.post("/subscriptions/confirm", json={"candidate": candidates[0]})
    assert response.status_code == 201
    body = response.json()
    assert body["subscription"]["name"] == "Netflix"
    assert body["integration_failed"] is False

    response = client.post("/subscriptions/detect", json={})
    assert response.json() == []


def test_duplicate_transactions_conflict(client: TestClient, category_id: str) -> None:
    payload = netflix_payload(category_id)[:1]
    assert client.post("/transactions", json={"transactions": payload}).status_code == 201
    response = client.post("/transactions", json={"transactions": payload})
    assert response.status_code == 409
    assert response.json()["code"] == "conflict"


def test_unknown_budget_is_404(client: TestClient) -> None:
    response = client.get("/budgets/missing")
    assert response.status_code == 404
    assert response.json() == {"code": "not_found", "message": "Budget not found: missing"}


def test_budget_amount_must_be_positive(client: TestClient, category_id: str) -> None:
    response = client.post(
        "/budgets",
        json={"name": "Streaming", "category_id": category_id, "amount": "0", "start_date": "2024-01-01"},
    )
    assert response.status_code == 422
    assert response.json()["code"] == "validation_error"


def test_budget_progress_endpoint(client: TestClient, category_id: str) -> None:
    client.post(
        "/transactions",
        json={"transactions": [{"description": "Cinema", "amount": "-45", "date": "2024-07-02", "category_id": category_id}]},
    )
    created = client.post(
        "/budgets",
        json={"name": "Streaming", "category_id": category_id, "amount": "50", "start_date": "2024-01-01"},
    ).json()

    response = client.get(f"/budgets/{created['id']}")
    assert response.status_code == 200
    progress = response.json()["progress"]
    assert progress["status"] == "at-risk"
    assert progress["thresholds_crossed"] == [50, 75, 90]
    assert progress["window"] == {"start": "2024-07-01", "end": "2024-07-31"}

    suggestion = client.get(f"/budgets/suggestions/{category_id}", params={"months": 3})
    assert suggestion.status_code == 200
    assert suggestion.json()["category_name"] == "Streaming"


def test_bulk_update_partial_failure_is_207(client: TestClient, category_id: str) -> None:
    created = client.post("/transactions", json={"transactions": netflix_payload(category_id)}).json()
    operations = [
        {"transaction_id": tx["id"], "updates": {"description": f"Netflix {index}"}}
        for index, tx in enumerate(created)
    ]
    operations.insert(2, {"transaction_id": "missing", "updates": {"description": "x"}})

    response = client.post("/transactions/bulk-update", json={"operations": operations})
    assert response.status_code == 207
    body = response.json()
    assert body["successful"] == 6
    assert body["failed"] == 1
    assert body["errors"][0]["index"] == 2


def test_bulk_delete_all_failed_is_422(client: TestClient) -> None:
    response = client.post("/transactions/bulk-delete", json={"transaction_ids": ["a", "b"]})
    assert response.status_code == 422
    assert response.json()["failed"] == 2


def test_scenario_endpoints(client: TestClient) -> None:
    first = client.post("/budget-scenarios", json={"name": "Baseline"}).json()
    second = client.post("/budget-scenarios", json={"name": "Frugal"}).json()

    assert client.put(f"/budget-scenarios/{first['id']}/activate").status_code == 200
    assert client.put(f"/budget-scenarios/{second['id']}/activate").json()["is_active"] is True

    scenarios = client.get("/budget-scenarios").json()
    assert [s["name"] for s in scenarios if s["is_active"]] == ["Frugal"]
    assert client.put("/budget-scenarios/missing/activate").status_code == 404


def test_pattern_feedback_unknown_pattern(client: TestClient) -> None:
    response = client.post("/patterns/missing/feedback", json={"was_correct": True})
    assert response.status_code == 404


def test_subscription_query_endpoints(client: TestClient, category_id: str) -> None:
    payload = {
        "name": "Netflix",
        "amount": "15.99",
        "billing_frequency": "monthly",
        "next_payment_date": "2024-07-20",
        "category_id": category_id,
        "start_date": "2024-01-20",
    }
    created = client.post("/subscriptions", json=payload).json()["subscription"]

    upcoming = client.get("/subscriptions/upcoming", params={"days": 7})
    assert [s["id"] for s in upcoming.json()] == [created["id"]]
    assert client.get("/subscriptions/upcoming", params={"days": 2}).json() == []
    assert client.get("/subscriptions/upcoming", params={"days": -1}).status_code == 422

    cost = client.get("/subscriptions/monthly-cost").json()
    assert cost["total_monthly_cost"] == "15.99"
    assert cost["subscription_count"] == 1

    unused = client.get("/subscriptions/unused").json()
    assert [s["name"] for s in unused] == ["Netflix"]


def test_delete_budget_endpoint(client: TestClient, category_id: str) -> None:
    created = client.post(
        "/budgets",
        json={"name": "Streaming", "category_id": category_id, "amount": "50", "start_date": "2024-01-01"},
    ).json()

    assert client.delete(f"/budgets/{created['id']}").status_code == 204
    assert client.get(f"/budgets/{created['id']}").status_code == 404
    assert client.delete(f"/budgets/{created['id']}").status_code == 404
