from decimal import Decimal

from fastapi.testclient import TestClient


def _payload() -> dict:
    return {
        "active_months": [1, 2],
        "ledger": [
            {"account_key": 60001, "account_name": "Sales", "sort_code": 600, "amount": "1000.00", "month": 1},
            {"account_key": 60001, "account_name": "Sales", "sort_code": 600, "amount": 500, "month": 2},
            {"account_key": 80001, "account_name": "Rent", "sort_code": 800, "amount": 20000, "month": 1},
            {"account_key": None, "amount": 10, "month": 1},
            {"account_key": 80002, "amount": "abc", "month": 2},
        ],
        "trial_balance": [
            {"account_key": 60001, "monthly_totals": {"1": 1000, "2": 500}},
            {"account_key": 80001, "account_name": "Rent", "monthly_totals": {"1": 5000}},
        ],
    }


def test_comparison_report(client: TestClient) -> None:
    response = client.post("/tenants/acme/comparison", json=_payload())
    assert response.status_code == 200
    data = response.json()

    records = {record["account_key"]: record for record in data["records"]}
    assert set(records) == {60001, 80001}
    assert Decimal(str(records[60001]["difference"])) == 0
    assert Decimal(str(records[80001]["difference"])) == Decimal("15000")

    summary = data["summary"]
    assert summary["total_accounts"] == 2
    assert summary["discrepancy_accounts"] == 1
    assert summary["critical_count"] == 1
    assert summary["excluded_entries"] == 2
    assert data["alerts"][0]["severity"] == "critical"
    assert data["alerts"][0]["account_key"] == 80001
    assert data["kpis"]["active_alerts"] == len(data["alerts"])


def test_comparison_rejects_invalid_month(client: TestClient) -> None:
    payload = _payload()
    payload["active_months"] = [13]

    response = client.post("/tenants/acme/comparison", json=payload)
    assert response.status_code == 422
