"""
Locust Load Test Suite

Point it at a seeded database: one upcoming showtime, a tracked concession
item and (optionally) a capped promo code, then:

  SHOWTIME_ID=1 ITEM_ID=1 PROMO_CODE=LAST10 locust -f locustfile.py --tags hotseat
  locust -f locustfile.py --tags stock      # Everyone buys the last popcorn
  locust -f locustfile.py --tags promo      # Everyone races for the last promo uses
  locust -f locustfile.py --tags edge       # Bad input
  locust -f locustfile.py                   # All tests

Tokens are minted locally with the service's SECRET_KEY, so run with the same
environment as the API.
"""

import os
import random
import uuid

from locust import HttpUser, between, events, tag, task

from boxoffice.core.security import create_access_token

ORGANIZATION_ID = int(os.getenv("ORGANIZATION_ID", "1"))
SHOWTIME_ID = int(os.getenv("SHOWTIME_ID", "1"))
ITEM_ID = int(os.getenv("ITEM_ID", "1"))
PROMO_CODE = os.getenv("PROMO_CODE", "LAST10")
HOT_SEATS = [("E", n) for n in range(5, 9)]


def customer_headers() -> dict:
    token = create_access_token(random.randint(10_000, 99_999), ORGANIZATION_ID, role="customer")
    return {"Authorization": f"Bearer {token}"}


def expect(resp, *ok_codes):
    if resp.status_code in ok_codes:
        resp.success()
    else:
        resp.failure(f"Unexpected: {resp.status_code} {resp.text[:200]}")


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "=" * 60)
    print(f"Showtime {SHOWTIME_ID}, item {ITEM_ID}, promo {PROMO_CODE}")
    print("=" * 60)


class HotSeatUser(HttpUser):
    """
    TEST 1: Hot seats - everyone wants row E, seats 5-8

    Run: locust -f locustfile.py --tags hotseat -u 200 -r 50 --run-time 30s

    After test, verify:
      SELECT row_label, seat_number, COUNT(*) FROM booked_seats
       WHERE showtime_id = X AND is_active GROUP BY 1, 2 HAVING COUNT(*) > 1;
    Should return no rows.
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        self.headers = customer_headers()

    @tag("hotseat")
    @task
    def book_hot_seat(self):
        row, number = random.choice(HOT_SEATS)
        with self.client.post(
            "/api/v1/bookings/",
            json={"showtime_id": SHOWTIME_ID, "seats": [{"row_label": row, "seat_number": number}]},
            headers={**self.headers, "Idempotency-Key": uuid.uuid4().hex},
            name="/api/v1/bookings/ [hot seat]",
            catch_response=True,
        ) as resp:
            # 409 is the expected answer once the seat is gone
            expect(resp, 201, 409)


class StockUser(HttpUser):
    """
    TEST 2: Last items in stock

    Run: locust -f locustfile.py --tags stock -u 100 -r 50 --run-time 30s

    After test, verify stock never went negative and history adds up:
      SELECT stock_quantity FROM concession_items WHERE id = X;
      SELECT SUM(change_amount) FROM inventory_history WHERE item_id = X;
    """
    wait_time = between(0, 0.2)

    def on_start(self):
        self.headers = customer_headers()

    @tag("stock")
    @task
    def book_with_popcorn(self):
        seat = {"row_label": random.choice("FGHJK"), "seat_number": random.randint(1, 20)}
        with self.client.post(
            "/api/v1/bookings/",
            json={
                "showtime_id": SHOWTIME_ID,
                "seats": [seat],
                "concessions": [{"item_id": ITEM_ID, "quantity": random.randint(1, 3)}],
            },
            headers=self.headers,
            name="/api/v1/bookings/ [concessions]",
            catch_response=True,
        ) as resp:
            expect(resp, 201, 409, 422)


class PromoUser(HttpUser):
    """
    TEST 3: Capped promo code

    Run: locust -f locustfile.py --tags promo -u 100 -r 50 --run-time 30s

    After test, verify current_uses <= max_uses for the code.
    """
    wait_time = between(0, 0.2)

    def on_start(self):
        self.headers = customer_headers()

    @tag("promo")
    @task
    def book_with_promo(self):
        seat = {"row_label": random.choice("LMNP"), "seat_number": random.randint(1, 20)}
        with self.client.post(
            "/api/v1/bookings/",
            json={"showtime_id": SHOWTIME_ID, "seats": [seat], "promo_code": PROMO_CODE},
            headers=self.headers,
            name="/api/v1/bookings/ [promo]",
            catch_response=True,
        ) as resp:
            expect(resp, 201, 409, 422)

    @tag("promo", "read")
    @task(3)
    def preview_promo(self):
        with self.client.post(
            "/api/v1/promos/preview",
            json={"code": PROMO_CODE, "order_subtotal": "25.00"},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            expect(resp, 200, 409, 422)


class EdgeCaseUser(HttpUser):
    """
    TEST 4: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, return proper error codes.
    """
    wait_time = between(0.5, 1.5)

    def on_start(self):
        self.headers = customer_headers()

    @tag("edge")
    @task
    def unknown_showtime(self):
        with self.client.post(
            "/api/v1/bookings/",
            json={"showtime_id": 999999, "seats": [{"row_label": "A", "seat_number": 1}]},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            expect(resp, 404)

    @tag("edge")
    @task
    def no_seats(self):
        with self.client.post(
            "/api/v1/bookings/",
            json={"showtime_id": SHOWTIME_ID, "seats": []},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            expect(resp, 422)

    @tag("edge")
    @task
    def seat_off_the_map(self):
        with self.client.post(
            "/api/v1/bookings/",
            json={"showtime_id": SHOWTIME_ID, "seats": [{"row_label": "ZZ", "seat_number": 999}]},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            expect(resp, 422)

    @tag("edge")
    @task
    def malformed_json(self):
        with self.client.post(
            "/api/v1/bookings/",
            data="not json at all",
            headers=self.headers,
            catch_response=True,
        ) as resp:
            expect(resp, 400, 422)

    @tag("edge")
    @task
    def missing_auth(self):
        with self.client.post(
            "/api/v1/bookings/",
            json={"showtime_id": SHOWTIME_ID, "seats": [{"row_label": "A", "seat_number": 1}]},
            catch_response=True,
        ) as resp:
            expect(resp, 401)

    @tag("edge")
    @task
    def health_check(self):
        self.client.get("/health")
