"""
Flight Operations Load Profile (Locust)

Run with:
    locust -f tests/stress/locustfile.py --host http://127.0.0.1:5001

Or headless:
    locust -f tests/stress/locustfile.py --host http://127.0.0.1:5001 \
           --users 10 --spawn-rate 2 --run-time 60s --headless

Expects the seed written by tests/conftest.py ServerManager.initialize_db on a
fresh database; ids can be overridden with STRESS_* environment variables.

Scheduling contention is the point: every SchedulerUser books one-hour slots
on the same day and the same two aircraft, so most writes SHOULD come back
409. A 409 is recorded as a success; anything but 201 or 409 is a failure.

Thresholds checked at the end of the run:
- reads: p95 < 500ms
- writes: p95 < 1000ms
- failure ratio < 1% per endpoint
"""

import os
import random
from datetime import datetime, timedelta

from locust import HttpUser, task, between, events


ORG_ID = int(os.environ.get("STRESS_ORG_ID", "1"))
MEMBER_IDS = [int(x) for x in os.environ.get("STRESS_MEMBER_IDS", "3,4").split(",")]
AIRCRAFT_IDS = [int(x) for x in os.environ.get("STRESS_AIRCRAFT_IDS", "1,2").split(",")]
CHARGEABLE_IDS = [int(x) for x in os.environ.get("STRESS_CHARGEABLE_IDS", "1,2").split(",")]
PASSWORD = os.environ.get("STRESS_PASSWORD", "TestPass123!")

SCHEDULER_EMAILS = ["owner@alpha.test", "instructor@alpha.test"]
# Account summaries need VIEW_FINANCIALS, which instructors do not hold
BILLING_EMAILS = ["owner@alpha.test"]

CONTENTION_DAY = datetime(2032, 6, 1)

WRITE_ENDPOINTS = {"bookings/create", "invoices/create", "payments/add"}


def _z(dt: datetime) -> str:
    return dt.isoformat() + "Z"


class StaffUser(HttpUser):
    """Logs in as one of `emails` and carries the bearer token."""

    abstract = True
    emails = SCHEDULER_EMAILS
    wait_time = between(0.5, 2)

    def on_start(self):
        response = self.client.post(
            "/api/auth/login",
            json={"email": random.choice(self.emails), "password": PASSWORD},
            name="auth/login",
        )
        if response.status_code == 200:
            self.client.headers["Authorization"] = f"Bearer {response.json()['token']}"


class SchedulerUser(StaffUser):
    """Front desk: reads the booking sheet and fights over the same slots."""

    weight = 3

    @task(5)
    def booking_sheet(self):
        self.client.get(
            "/api/bookings",
            params={
                "organization_id": ORG_ID,
                "from": _z(CONTENTION_DAY),
                "to": _z(CONTENTION_DAY + timedelta(days=1)),
            },
            name="bookings/list",
        )

    @task(3)
    def book_contended_slot(self):
        slot = CONTENTION_DAY.replace(hour=random.randint(6, 18))
        payload = {
            "organization_id": ORG_ID,
            "aircraft_id": random.choice(AIRCRAFT_IDS),
            "user_id": random.choice(MEMBER_IDS),
            "start_time": _z(slot),
            "end_time": _z(slot + timedelta(hours=1)),
            "status": "confirmed",
        }
        with self.client.post("/api/bookings", json=payload, name="bookings/create", catch_response=True) as response:
            if response.status_code in (201, 409):
                response.success()
            else:
                response.failure(f"unexpected {response.status_code}: {response.text[:200]}")

    @task(1)
    def health(self):
        self.client.get("/api/health", name="system/health")


class BillingUser(StaffUser):
    """Accounts desk: raises invoices, takes payments, checks balances."""

    weight = 2
    emails = BILLING_EMAILS

    def on_start(self):
        super().on_start()
        self.invoice_ids = []

    @task(3)
    def raise_invoice(self):
        payload = {
            "organization_id": ORG_ID,
            "user_id": random.choice(MEMBER_IDS),
            "due_date": "2032-07-01",
            "items": [{"chargeable_id": random.choice(CHARGEABLE_IDS), "quantity": random.choice([1, 1.5, 2])}],
        }
        response = self.client.post("/api/invoices", json=payload, name="invoices/create")
        if response.status_code == 201:
            self.invoice_ids.append(response.json()["invoice"]["id"])

    @task(2)
    def take_payment(self):
        if not self.invoice_ids:
            return
        invoice_id = random.choice(self.invoice_ids[-10:])
        self.client.post(
            f"/api/invoices/{invoice_id}/payments",
            json={
                "amount_cents": random.randint(1000, 10000),
                "payment_method": random.choice(["cash", "credit_card", "bank_transfer"]),
            },
            name="payments/add",
        )

    @task(1)
    def account_summary(self):
        self.client.get(
            f"/api/members/{random.choice(MEMBER_IDS)}/account",
            params={"organization_id": ORG_ID},
            name="accounts/summary",
        )


@events.quitting.add_listener
def check_thresholds(environment, **kwargs):
    """Print a per-endpoint verdict and fail the process on any breach."""
    breaches = []
    print("\n" + "=" * 80)
    print(f"{'Endpoint':<24} {'Reqs':>8} {'Fail%':>8} {'P95(ms)':>10}  Verdict")
    print("-" * 80)

    for (name, _method), entry in sorted(environment.stats.entries.items()):
        if entry.num_requests == 0 or name == "auth/login":
            continue
        limit = 1000 if name in WRITE_ENDPOINTS else 500
        p95 = entry.get_response_time_percentile(0.95)
        ok = p95 < limit and entry.fail_ratio < 0.01
        if not ok:
            breaches.append(name)
        print(f"{name:<24} {entry.num_requests:>8} {entry.fail_ratio * 100:>7.2f}% {p95:>10.0f}  {'PASS' if ok else 'FAIL'}")

    print("=" * 80)
    if breaches:
        print(f"[FAIL] thresholds exceeded: {', '.join(breaches)}")
        environment.process_exit_code = 1
    else:
        print("[PASS] all endpoints within thresholds")
