from __future__ import annotations

from datetime import date
from decimal import Decimal

from kakeibo import models


BASE = "/api/recurring-payments"
SYNC_PARAMS = {"horizon_months": 3, "reference_date": "2025-01-01"}


def _create(client, **overrides):
    payload = {
        "name": "家賃",
        "amount": "80000",
        "first_occurrence_date": "2025-01-27",
    }
    payload.update(overrides)
    res = client.post(BASE, json=payload, params={"synchronize": "false"})
    assert res.status_code == 201, res.text
    return res.json()


def _sync(client, definition_id):
    res = client.post(f"{BASE}/{definition_id}/synchronize", params=SYNC_PARAMS)
    assert res.status_code == 200, res.text
    return res.json()


def _occurrences(client, definition_id):
    res = client.get(f"{BASE}/occurrences", params={"definition_id": definition_id})
    assert res.status_code == 200
    return res.json()


def test_create_definition_defaults(client, category):
    body = _create(
        client,
        amount="60000",
        recurrence_interval_months=12,
        category_id=category.id,
        recurrence_day_pattern={"kind": "fixed", "day": 27},
    )
    assert body["saving_strategy"] == "evenly_distributed"
    assert body["date_adjustment_policy"] == "none"
    assert Decimal(body["monthly_saving_amount"]) == Decimal("5000")
    assert body["recurrence_day_pattern"] == {"kind": "fixed", "day": 27}
    assert body["notes"] == ""


def test_create_definition_validation(client):
    res = client.post(
        BASE,
        json={
            "name": "  ",
            "amount": "-1",
            "recurrence_interval_months": 0,
            "first_occurrence_date": "2025-01-27",
            "end_date": "2024-12-31",
        },
    )
    assert res.status_code == 422
    messages = res.json()["messages"]
    assert "name must not be empty" in messages
    assert "amount must be positive" in messages
    assert "recurrence_interval_months must be >= 1" in messages
    assert "end_date must not be before first_occurrence_date" in messages

    res = client.post(
        BASE,
        json={
            "name": "保険",
            "amount": "10000",
            "first_occurrence_date": "2025-01-27",
            "saving_strategy": "custom_monthly",
        },
    )
    assert res.status_code == 422
    assert res.json()["detail"] == "custom_monthly_saving_amount is required for custom_monthly strategy"

    res = client.post(BASE, json={"name": "x", "amount": "1", "first_occurrence_date": "2025-01-27", "category_id": 999})
    assert res.status_code == 404


def test_synchronize_and_list_occurrences(client):
    definition = _create(client)
    summary = _sync(client, definition["id"])
    assert summary["created_count"] == 3
    assert summary["definition_id"] == definition["id"]

    items = _occurrences(client, definition["id"])
    assert [o["scheduled_date"] for o in items] == ["2025-01-27", "2025-02-27", "2025-03-27"]
    assert [o["status"] for o in items] == ["saving", "planned", "planned"]
    assert items[0]["is_scheduling_locked"] is False
    assert Decimal(items[0]["remaining_amount"]) == Decimal("80000")

    res = client.get(f"{BASE}/occurrences", params={"start": "2025-03-31", "end": "2025-02-01"})
    assert [o["scheduled_date"] for o in res.json()] == ["2025-02-27", "2025-03-27"]

    res = client.get(f"{BASE}/occurrences", params={"status": "saving"})
    assert len(res.json()) == 1

    again = _sync(client, definition["id"])
    assert (again["created_count"], again["updated_count"], again["removed_count"]) == (0, 0, 0)


def test_invalid_horizon(client):
    definition = _create(client)
    res = client.post(f"{BASE}/{definition['id']}/synchronize", params={"horizon_months": -1})
    assert res.status_code == 400
    assert res.json()["detail"] == "horizon_months must be >= 0 (got -1)"


def test_complete_occurrence_and_balance(client):
    definition = _create(client)
    _sync(client, definition["id"])
    jan = _occurrences(client, definition["id"])[0]

    res = client.post(
        f"{BASE}/occurrences/{jan['id']}/complete",
        json={"actual_date": "2025-01-27", "actual_amount": "82000", **SYNC_PARAMS},
    )
    assert res.status_code == 200, res.text
    assert res.json()["updated_count"] == 1

    items = _occurrences(client, definition["id"])
    assert items[0]["status"] == "completed"
    assert items[0]["is_scheduling_locked"] is True
    assert Decimal(items[0]["difference_amount"]) == Decimal("2000")
    assert items[1]["status"] == "saving"

    balances = client.get(f"{BASE}/balances").json()
    assert len(balances) == 1
    # 적립 기록 없이 지급만 반영
    assert Decimal(balances[0]["total_saved_amount"]) == Decimal("0")
    assert Decimal(balances[0]["balance"]) == Decimal("-82000")
    assert balances[0]["last_updated_year"] is None
    assert balances[0]["is_balance_insufficient"] is True

    res = client.post(f"{BASE}/{definition['id']}/balance/monthly-savings", json={"year": 2025, "month": 1})
    assert Decimal(res.json()["balance"]) == Decimal("-2000")


def test_patch_occurrence(client):
    definition = _create(client)
    _sync(client, definition["id"])
    jan, feb, _ = _occurrences(client, definition["id"])

    res = client.patch(f"{BASE}/occurrences/{feb['id']}", json={"status": "cancelled"})
    assert res.status_code == 200
    assert res.json() is None

    res = client.patch(
        f"{BASE}/occurrences/{jan['id']}",
        json={"status": "completed", "actual_date": "2025-01-27", "actual_amount": "80000", **SYNC_PARAMS},
    )
    assert res.status_code == 200
    assert res.json()["definition_id"] == definition["id"]

    res = client.patch(f"{BASE}/occurrences/{jan['id']}", json={"status": "cancelled"})
    assert res.status_code == 422
    assert res.json()["messages"] == ["status cannot change from completed to cancelled"]

    res = client.patch(f"{BASE}/occurrences/999999", json={"status": "planned"})
    assert res.status_code == 404


def test_candidates(client, make_transaction):
    definition = _create(client)
    _sync(client, definition["id"])
    feb = _occurrences(client, definition["id"])[1]

    exact = make_transaction(date(2025, 3, 1), -80000, "振込")
    make_transaction(date(2025, 2, 27), -40000, "コンビニ")
    make_transaction(date(2025, 3, 20), -80000, "未来")

    res = client.get(
        f"{BASE}/occurrences/{feb['id']}/candidates",
        params={"current_date": "2025-03-10"},
    )
    assert res.status_code == 200
    items = res.json()
    assert [c["title"] for c in items] == ["振込", "コンビニ"]
    assert items[0]["transaction_id"] == exact.id
    assert items[0]["score"]["confidence_percent"] == 78

    res = client.get(
        f"{BASE}/occurrences/{feb['id']}/candidates",
        params={"current_date": "2025-03-10", "limit": 1},
    )
    assert len(res.json()) == 1


def test_update_definition_reports_backfill(client):
    definition = _create(client)

    res = client.put(f"{BASE}/{definition['id']}", json={"amount": "85000"}, params={"synchronize": "false"})
    assert res.status_code == 200
    body = res.json()
    assert body["needs_backfill"] is False
    assert body["synchronization"] is None
    assert Decimal(body["definition"]["amount"]) == Decimal("85000")

    res = client.put(f"{BASE}/{definition['id']}", json={"first_occurrence_date": "2024-10-27"})
    body = res.json()
    assert body["needs_backfill"] is True
    assert body["synchronization"]["created_count"] > 0
    dates = [o["scheduled_date"] for o in _occurrences(client, definition["id"])]
    assert dates[0] == "2024-10-27"


def test_list_and_search_definitions(client):
    rent = _create(client)
    _create(client, name="Netflix", amount="1490")

    res = client.get(BASE, params={"search": "netf"})
    assert [d["name"] for d in res.json()] == ["Netflix"]

    res = client.get(BASE, params={"ids": [rent["id"]]})
    assert [d["id"] for d in res.json()] == [rent["id"]]


def test_delete_definition_cascades(client, db_session):
    definition = _create(client)
    _sync(client, definition["id"])

    res = client.delete(f"{BASE}/{definition['id']}")
    assert res.status_code == 204
    assert client.get(f"{BASE}/{definition['id']}").status_code == 404
    assert client.get(f"{BASE}/{definition['id']}").json()["detail"] == (
        f"RecurringPaymentDefinition not found: {definition['id']}"
    )
    assert db_session.query(models.RecurringPaymentOccurrence).count() == 0


def test_monthly_savings_and_recalculate(client):
    definition = _create(client, amount="60000", recurrence_interval_months=12)

    res = client.post(f"{BASE}/{definition['id']}/balance/monthly-savings", json={"year": 2025, "month": 1})
    assert res.status_code == 200
    assert Decimal(res.json()["total_saved_amount"]) == Decimal("5000")

    client.post(f"{BASE}/{definition['id']}/balance/monthly-savings", json={"year": 2025, "month": 2})
    res = client.post(f"{BASE}/{definition['id']}/balance/monthly-savings", json={"year": 2025, "month": 2})
    assert Decimal(res.json()["total_saved_amount"]) == Decimal("10000")

    res = client.post(
        f"{BASE}/{definition['id']}/balance/recalculate",
        json={"year": 2025, "month": 6, "start_year": 2025, "start_month": 1},
    )
    assert Decimal(res.json()["total_saved_amount"]) == Decimal("30000")
    assert (res.json()["last_updated_year"], res.json()["last_updated_month"]) == (2025, 6)
