"""
Locust Load Test Suite

Run scenarios:
  locust -f locustfile.py --tags flashsale    # Many buyers, few tickets
  locust -f locustfile.py --tags throughput   # Catalog cache
  locust -f locustfile.py --tags edge         # Bad input
  locust -f locustfile.py                     # All tests

The flash-sale flow confirms payments against the mock gateway, so the API
must run with PAYMENT_GATEWAY=mock and the same RAZORPAY_KEY_SECRET.
"""

import hashlib
import hmac
import os
import random
import string
from datetime import datetime, timezone, timedelta

from locust import HttpUser, task, between, tag, events

GATEWAY_SECRET = os.getenv("RAZORPAY_KEY_SECRET", "rzp-test-secret-change-in-production")
FLASH_SALE_CAPACITY = 10

# Shared state
EVENT_IDS = []
FLASH_SALE = {"event_id": None, "tier_id": None}


def random_email():
    return f"load_{random.randint(10000, 99999)}_{random.randint(0, 999)}@test.com"


def random_username():
    return "u_" + "".join(random.choices(string.ascii_lowercase, k=8))


def sign_payment(gateway_order_id: str, payment_id: str) -> str:
    message = f"{gateway_order_id}|{payment_id}".encode()
    return hmac.new(GATEWAY_SECRET.encode(), message, hashlib.sha256).hexdigest()


def future_date(days: int = 30) -> str:
    return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()


@events.test_start.add_listener
def on_test_start(environment, **kwargs):
    print("\n" + "=" * 60)
    print(f"SETUP: flash sale of {FLASH_SALE_CAPACITY} tickets")
    print("=" * 60)


class AuthenticatedUser(HttpUser):
    abstract = True

    def on_start(self):
        email = random_email()
        self.client.post("/api/v1/auth/register", json={
            "email": email,
            "username": random_username(),
            "password": "loadtest123",
            "role": "organizer",
        })
        resp = self.client.post("/api/v1/auth/login", json={
            "email": email,
            "password": "loadtest123",
        })
        if resp.status_code == 200:
            self.headers = {"Authorization": f"Bearer {resp.json()['access_token']}"}
        else:
            self.headers = {}


class FlashSaleUser(AuthenticatedUser):
    """
    TEST 1: Flash sale - 100 buyers -> 10 tickets

    Run: locust -f locustfile.py --tags flashsale -u 100 -r 50 --run-time 30s

    After the test, verify:
      SELECT capacity, remaining FROM ticket_tiers WHERE id = X;
      SELECT SUM(...) over confirmed orders must be <= capacity
    """
    wait_time = between(0, 0.1)

    def on_start(self):
        super().on_start()
        if self.headers and not FLASH_SALE["event_id"]:
            resp = self.client.post(
                "/api/v1/events/",
                json={
                    "title": "Flash Sale",
                    "date": future_date(),
                    "location": "Arena",
                    "tiers": [{"name": "GA", "price": 49900, "capacity": FLASH_SALE_CAPACITY}],
                },
                headers=self.headers,
            )
            if resp.status_code == 201:
                body = resp.json()
                FLASH_SALE["event_id"] = body["id"]
                FLASH_SALE["tier_id"] = body["tiers"][0]["id"]
                print(f"\nCreated flash sale event {body['id']}\n")

    @tag("flashsale")
    @task
    def buy_one(self):
        """Reserve -> checkout -> confirm. Sold out is an expected answer."""
        if not FLASH_SALE["event_id"] or not self.headers:
            return

        with self.client.post(
            "/api/v1/reservations/",
            json={"event_id": FLASH_SALE["event_id"], "items": [{"tier_id": FLASH_SALE["tier_id"], "quantity": 1}]},
            headers=self.headers,
            name="/api/v1/reservations/",
            catch_response=True,
        ) as resp:
            if resp.status_code == 409:
                resp.success()  # sold out or contention
                return
            if resp.status_code != 201:
                resp.failure(f"Unexpected: {resp.status_code}")
                return
            reservation_id = resp.json()["reservation_id"]

        resp = self.client.post(
            "/api/v1/checkout",
            json={"reservation_id": reservation_id},
            headers=self.headers,
        )
        if resp.status_code != 201:
            return
        body = resp.json()
        intent = body["payment_intent"]
        payment_id = "pay_" + "".join(random.choices(string.ascii_lowercase + string.digits, k=14))

        self.client.post(
            "/api/v1/payments/confirm",
            json={
                "order_id": body["order"]["id"],
                "payment_id": payment_id,
                "gateway_order_id": intent["id"],
                "signature": sign_payment(intent["id"], payment_id),
            },
            headers=self.headers,
        )


class ThroughputUser(HttpUser):
    """
    TEST 2: Throughput - Cache effectiveness

    Run twice:
      1. With Redis: locust -f locustfile.py --tags throughput -u 100 -r 20 --run-time 60s
      2. Without Redis: REDIS_ENABLED=false, run again
    """
    wait_time = between(0.1, 0.5)

    @tag("throughput", "read")
    @task(10)
    def list_events_cached(self):
        page = random.randint(1, 5)
        resp = self.client.get(f"/api/v1/events/?page={page}&page_size=20", name="/api/v1/events/ [cached]")
        if resp.status_code == 200:
            for event in resp.json().get("events", []):
                if event["id"] not in EVENT_IDS:
                    EVENT_IDS.append(event["id"])

    @tag("throughput", "read")
    @task(3)
    def get_event_detail(self):
        if EVENT_IDS:
            self.client.get(f"/api/v1/events/{random.choice(EVENT_IDS)}", name="/api/v1/events/{id}")

    @tag("throughput")
    @task(1)
    def health_check(self):
        self.client.get("/health")


class EdgeCaseUser(AuthenticatedUser):
    """
    TEST 3: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    System should NOT crash, every answer is an enumerated error.
    """
    wait_time = between(0.5, 1.5)

    def _expect(self, resp, codes):
        if resp.status_code in codes:
            resp.success()
        else:
            resp.failure(f"Expected {codes}, got {resp.status_code}")

    @tag("edge")
    @task
    def unknown_event(self):
        with self.client.post(
            "/api/v1/reservations/",
            json={"event_id": "missing", "items": [{"tier_id": "missing", "quantity": 1}]},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, [404])

    @tag("edge")
    @task
    def zero_quantity(self):
        with self.client.post(
            "/api/v1/reservations/",
            json={"event_id": "x", "items": [{"tier_id": "x", "quantity": 0}]},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            self._expect(resp, [422])

    @tag("edge")
    @task
    def forged_scan(self):
        with self.client.post(
            "/api/v1/scans",
            json={"qr_payload": "not a credential"},
            headers=self.headers,
            catch_response=True,
        ) as resp:
            # Organizers may scan; the payload itself is rejected
            self._expect(resp, [400])

    @tag("edge")
    @task
    def forged_webhook(self):
        with self.client.post(
            "/api/v1/payments/webhook",
            data='{"event": "payment.captured"}',
            headers={"X-Razorpay-Signature": "deadbeef", "Content-Type": "application/json"},
            catch_response=True,
        ) as resp:
            self._expect(resp, [403])

    @tag("edge")
    @task
    def missing_auth(self):
        with self.client.post(
            "/api/v1/checkout",
            json={"reservation_id": "x"},
            catch_response=True,
        ) as resp:
            self._expect(resp, [401])
