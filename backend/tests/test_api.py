"""
HTTP tests: status codes, error bodies, roles and notification dispatch.
"""

from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from boxoffice.db import unit_of_work
from boxoffice.services import inventory_service, loyalty_service

from tests.conftest import CUSTOMER_ID

API = "/api/v1"


def booking_body(catalog, *seats, **extra) -> dict:
    body = {
        "showtime_id": catalog.showtime_id,
        "seats": [{"row_label": seat[0], "seat_number": int(seat[1:])} for seat in seats or ("A1",)],
    }
    body.update(extra)
    return body


@pytest.mark.asyncio
async def test_create_booking(client, catalog, customer_headers):
    response = await client.post(
        f"{API}/bookings/",
        json=booking_body(catalog, "A1", "B2", concessions=[{"item_id": catalog.soda_id, "quantity": 2}]),
        headers=customer_headers,
    )

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "pending"
    assert data["customer_id"] == CUSTOMER_ID
    assert Decimal(data["total_amount"]) == Decimal("31.00")
    assert [(s["row_label"], s["seat_number"]) for s in data["seats"]] == [("A", 1), ("B", 2)]
    assert data["concessions"][0]["quantity"] == 2
    assert "X-Request-ID" in response.headers


@pytest.mark.asyncio
async def test_requires_authentication(client, catalog):
    response = await client.post(f"{API}/bookings/", json=booking_body(catalog))
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_customers_cannot_ring_up_box_office_sales(client, catalog, customer_headers):
    response = await client.post(
        f"{API}/bookings/",
        json=booking_body(catalog, channel="box_office"),
        headers=customer_headers,
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_taken_seat_returns_structured_conflict(client, catalog, customer_headers, other_customer_headers):
    first = await client.post(f"{API}/bookings/", json=booking_body(catalog, "C7"), headers=customer_headers)
    assert first.status_code == 201

    response = await client.post(
        f"{API}/bookings/", json=booking_body(catalog, "C6", "C7"), headers=other_customer_headers,
    )

    assert response.status_code == 409
    body = response.json()
    assert body["error"] == "seat_unavailable"
    assert body["details"]["seats"] == ["C7"]
    assert "C7" in body["message"]


@pytest.mark.asyncio
async def test_invalid_seat_is_422(client, catalog, customer_headers):
    response = await client.post(f"{API}/bookings/", json=booking_body(catalog, "C10"), headers=customer_headers)

    assert response.status_code == 422
    assert response.json()["error"] == "validation_error"


@pytest.mark.asyncio
async def test_idempotency_key_replay_returns_200(client, catalog, customer_headers):
    headers = {**customer_headers, "Idempotency-Key": "checkout-42"}

    first = await client.post(f"{API}/bookings/", json=booking_body(catalog, "A4"), headers=headers)
    again = await client.post(f"{API}/bookings/", json=booking_body(catalog, "A4"), headers=headers)

    assert first.status_code == 201
    assert again.status_code == 200
    assert again.json()["id"] == first.json()["id"]
    assert again.json()["booking_reference"] == first.json()["booking_reference"]


@pytest.mark.asyncio
async def test_box_office_sale_publishes_confirmation(client, catalog, staff_headers, publisher):
    response = await client.post(
        f"{API}/bookings/",
        json=booking_body(catalog, "B1", channel="box_office", customer_id=CUSTOMER_ID, shift_id=12),
        headers=staff_headers,
    )

    assert response.status_code == 201
    data = response.json()
    assert data["status"] == "paid"
    assert data["shift_id"] == 12

    (payload,) = publisher.of_type("booking_confirmed")
    assert payload["booking_reference"] == data["booking_reference"]
    assert payload["seats"] == ["B1"]


@pytest.mark.asyncio
async def test_payment_then_cancel_publishes_both_events(client, catalog, customer_headers, staff_headers, publisher):
    created = (await client.post(f"{API}/bookings/", json=booking_body(catalog, "A9"), headers=customer_headers)).json()

    paid = await client.post(f"{API}/bookings/{created['id']}/payment", headers=staff_headers)
    assert paid.status_code == 200
    assert paid.json()["status"] == "paid"
    assert len(publisher.of_type("booking_confirmed")) == 1

    twice = await client.post(f"{API}/bookings/{created['id']}/payment", headers=staff_headers)
    assert twice.status_code == 409
    assert twice.json()["details"]["current_status"] == "paid"

    cancelled = await client.post(
        f"{API}/bookings/{created['id']}/cancel", json={"reason": "changed plans"}, headers=customer_headers,
    )
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "cancelled"
    (payload,) = publisher.of_type("booking_cancelled")
    assert payload["seats"] == ["A9"]


@pytest.mark.asyncio
async def test_transitions_are_staff_only(client, catalog, customer_headers):
    created = (await client.post(f"{API}/bookings/", json=booking_body(catalog), headers=customer_headers)).json()

    response = await client.post(f"{API}/bookings/{created['id']}/payment", headers=customer_headers)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_other_customers_booking_is_hidden(client, catalog, customer_headers, other_customer_headers):
    created = (await client.post(f"{API}/bookings/", json=booking_body(catalog), headers=customer_headers)).json()

    assert (await client.get(f"{API}/bookings/{created['id']}", headers=other_customer_headers)).status_code == 404
    assert (await client.get(f"{API}/bookings/{created['id']}", headers=customer_headers)).status_code == 200

    mine = await client.get(f"{API}/bookings/", headers=customer_headers)
    theirs = await client.get(f"{API}/bookings/", headers=other_customer_headers)
    assert [b["id"] for b in mine.json()] == [created["id"]]
    assert theirs.json() == []


@pytest.mark.asyncio
async def test_reference_lookup_and_regeneration(client, catalog, customer_headers, staff_headers):
    created = (await client.post(f"{API}/bookings/", json=booking_body(catalog), headers=customer_headers)).json()
    reference = created["booking_reference"]

    found = await client.get(f"{API}/bookings/reference/{reference.lower()}", headers=staff_headers)
    assert found.status_code == 200
    assert found.json()["id"] == created["id"]

    regenerated = await client.post(f"{API}/bookings/{created['id']}/regenerate-reference", headers=staff_headers)
    assert regenerated.status_code == 200
    assert regenerated.json()["retired_reference"] == reference
    assert regenerated.json()["booking_reference"] != reference

    retired = await client.get(f"{API}/bookings/reference/{reference}", headers=staff_headers)
    assert retired.status_code == 404
    assert retired.json()["details"]["retired"] is True


@pytest.mark.asyncio
async def test_box_office_handover_flow(client, catalog, customer_headers, staff_headers):
    created = (await client.post(f"{API}/bookings/", json=booking_body(catalog), headers=customer_headers)).json()
    booking_url = f"{API}/bookings/{created['id']}"

    assert (await client.post(f"{booking_url}/payment", headers=staff_headers)).status_code == 200
    assert (await client.post(f"{booking_url}/confirm", headers=staff_headers)).json()["status"] == "confirmed"

    activated = await client.post(f"{booking_url}/activate", json={"shift_id": 3}, headers=staff_headers)
    assert activated.json()["status"] == "activated"
    assert activated.json()["activated_at"] is not None

    assert (await client.post(f"{booking_url}/use", headers=staff_headers)).json()["status"] == "used"
    assert (await client.post(f"{booking_url}/cancel", headers=staff_headers)).status_code == 409


@pytest.mark.asyncio
async def test_promo_preview(client, catalog, customer_headers, make_promo):
    await make_promo("SAVE10", max_uses=1)

    response = await client.post(
        f"{API}/promos/preview",
        json={"code": "save10", "order_subtotal": "40.00"},
        headers=customer_headers,
    )
    assert response.status_code == 200
    assert Decimal(response.json()["discount_amount"]) == Decimal("4.00")

    unknown = await client.post(
        f"{API}/promos/preview", json={"code": "NOPE", "order_subtotal": "40.00"}, headers=customer_headers,
    )
    assert unknown.status_code == 422


@pytest.mark.asyncio
async def test_inventory_endpoints(client, catalog, staff_headers, customer_headers):
    item_url = f"{API}/inventory/items/{catalog.popcorn_id}"

    restocked = await client.post(f"{item_url}/restock", json={"quantity": 10, "notes": "delivery"}, headers=staff_headers)
    assert restocked.status_code == 200
    assert (restocked.json()["previous_quantity"], restocked.json()["new_quantity"]) == (5, 15)

    too_much = await client.post(f"{item_url}/adjust", json={"delta": -20}, headers=staff_headers)
    assert too_much.status_code == 409
    assert too_much.json()["error"] == "insufficient_stock"

    history = await client.get(f"{item_url}/history", headers=staff_headers)
    assert [row["change_type"] for row in history.json()] == ["restock", "initial"]

    assert (await client.get(f"{API}/inventory/low-stock", headers=staff_headers)).json() == []
    assert (await client.get(f"{item_url}/history", headers=customer_headers)).status_code == 403

    foreign = await client.post(
        f"{API}/inventory/items/{catalog.other_org_item_id}/restock", json={"quantity": 1}, headers=staff_headers,
    )
    assert foreign.status_code == 404


@pytest.mark.asyncio
async def test_loyalty_endpoints(client, catalog, customer_headers, other_customer_headers, staff_headers):
    adjusted = await client.post(
        f"{API}/loyalty/customers/{CUSTOMER_ID}/adjust",
        json={"points": 30, "description": "birthday"},
        headers=staff_headers,
    )
    assert adjusted.status_code == 200
    assert adjusted.json()["points"] == 30

    balance = await client.get(f"{API}/loyalty/balance", headers=customer_headers)
    assert balance.json() == {"customer_id": CUSTOMER_ID, "loyalty_points": 30, "consistent": True}

    snooping = await client.get(f"{API}/loyalty/balance?customer_id={CUSTOMER_ID}", headers=other_customer_headers)
    assert snooping.status_code == 403

    expired = await client.post(
        f"{API}/loyalty/customers/{CUSTOMER_ID}/expire", json={"points": 100}, headers=staff_headers,
    )
    assert expired.json()["points"] == -30

    transactions = await client.get(f"{API}/loyalty/transactions", headers=customer_headers)
    assert [t["transaction_type"] for t in transactions.json()] == ["expired", "adjustment"]


@pytest.mark.asyncio
async def test_health_reports_notification_channel(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["database"] == "connected"
    assert response.json()["notifications"] == "unavailable"


@pytest.mark.asyncio
async def test_metrics_exposes_booking_counters(client, catalog, customer_headers):
    await client.post(f"{API}/bookings/", json=booking_body(catalog), headers=customer_headers)

    response = await client.get("/metrics")

    assert response.status_code == 200
    assert "booking_attempts_total" in response.text


@pytest.mark.asyncio
async def test_staff_must_name_the_customer_when_listing(client, catalog, customer_headers, staff_headers):
    created = (await client.post(f"{API}/bookings/", json=booking_body(catalog), headers=customer_headers)).json()

    unnamed = await client.get(f"{API}/bookings/", headers=staff_headers)
    assert unnamed.status_code == 422
    assert unnamed.json()["error"] == "validation_error"

    named = await client.get(f"{API}/bookings/?customer_id={CUSTOMER_ID}", headers=staff_headers)
    assert named.status_code == 200
    assert [b["id"] for b in named.json()] == [created["id"]]


@pytest.mark.asyncio
async def test_locked_stock_row_surfaces_as_retryable_conflict(client, catalog, staff_headers, monkeypatch):
    calls = {"count": 0}

    async def locked(*args, **kwargs):
        calls["count"] += 1
        raise OperationalError("UPDATE concession_items", {}, Exception("database is locked"))

    monkeypatch.setattr(inventory_service, "restock", locked)

    response = await client.post(
        f"{API}/inventory/items/{catalog.popcorn_id}/restock", json={"quantity": 10}, headers=staff_headers,
    )

    assert response.status_code == 409
    assert response.json()["error"] == "concurrency_conflict"
    assert response.headers["Retry-After"] == "1"
    assert calls["count"] == unit_of_work.MAX_RETRY_ATTEMPTS


class SerializationFailure(Exception):
    sqlstate = "40001"


@pytest.mark.asyncio
async def test_serialization_failure_on_points_adjustment_is_retried(
    client, catalog, customer_headers, staff_headers, monkeypatch,
):
    real_adjust = loyalty_service.adjust_points
    calls = {"count": 0}

    async def flaky_adjust(*args, **kwargs):
        calls["count"] += 1
        if calls["count"] == 1:
            raise OperationalError("UPDATE loyalty_accounts", {}, SerializationFailure("could not serialize access"))
        return await real_adjust(*args, **kwargs)

    monkeypatch.setattr(loyalty_service, "adjust_points", flaky_adjust)

    adjusted = await client.post(
        f"{API}/loyalty/customers/{CUSTOMER_ID}/adjust",
        json={"points": 30, "description": "birthday"},
        headers=staff_headers,
    )

    assert adjusted.status_code == 200
    assert calls["count"] == 2
    transactions = await client.get(f"{API}/loyalty/transactions", headers=customer_headers)
    assert [t["points"] for t in transactions.json()] == [30]
