# Overview: Live API tests against a running backend for bookings, billing and tenancy.

"""
Flight Operations Live API Tests

Run against a real server process (see tests/conftest.py ServerManager) so the
full HTTP stack is exercised: auth decorator, JSON error envelope, commit/retry.
"""

import pytest

from tests.conftest import APIClient, TestFailure, assert_response


# =============================================================================
# AUTH
# =============================================================================

@pytest.mark.smoke
@pytest.mark.auth
class TestLiveAuth:

    def test_health(self, client: APIClient, seed):
        """
        SCENARIO: Health endpoint probes the database
        EXPECTED: 200 with status healthy
        """
        response = client.get("/api/health")
        assert_response(response, 200, "Health check", "backend/flightops/routes/system.py")
        assert response.json()["status"] == "healthy"

    def test_login_returns_memberships(self, client: APIClient, seed):
        """
        SCENARIO: Owner logs in by email
        EXPECTED: Token issued, membership lists the owner role in Alpha
        """
        if not client.login("owner@alpha.test"):
            raise TestFailure(
                scenario="Owner login",
                expected="HTTP 200 with token",
                actual="Login rejected",
                likely_cause="Seeded password hash or email normalization mismatch",
                code_location="backend/flightops/services/auth_service.py:authenticate",
            )
        roles = {m["organization_id"]: m["role"] for m in client.memberships}
        assert roles.get(seed.alpha_org_id) == "owner"

    def test_bad_password(self, client: APIClient, seed):
        """
        SCENARIO: Wrong password
        EXPECTED: 401 Unauthorized
        """
        response = client.post("/api/auth/login", json={"email": "owner@alpha.test", "password": "nope"})
        assert_response(response, 401, "Login with wrong password", "backend/flightops/routes/auth.py", "Unauthorized")

    def test_logout_revokes_token(self, owner_client: APIClient):
        """
        SCENARIO: Token is used after logout
        EXPECTED: 401 on /api/auth/me
        """
        token = owner_client.token
        assert owner_client.logout()
        owner_client.token = token
        response = owner_client.get("/api/auth/me")
        assert_response(response, 401, "Reuse revoked token", "backend/flightops/decorators.py:require_auth")


# =============================================================================
# BOOKINGS
# =============================================================================

@pytest.mark.bookings
class TestLiveBookings:

    @pytest.mark.smoke
    def test_create_and_fetch(self, factory, owner_client: APIClient):
        """
        SCENARIO: Owner creates a confirmed booking and reads it back
        EXPECTED: 201 then 200 with the same window
        """
        booking = factory.create_booking(factory.next_day())
        response = owner_client.get(f"/api/bookings/{booking['id']}")
        assert_response(response, 200, "Fetch booking", "backend/flightops/routes/bookings.py:get_booking_route")
        assert response.json()["booking"]["start_time"] == booking["start_time"]

    @pytest.mark.smoke
    def test_double_booking_rejected(self, factory, owner_client: APIClient, seed):
        """
        SCENARIO: Second confirmed booking overlaps the same aircraft
        EXPECTED: 409 Conflict naming the first booking and the aircraft resource
        """
        day = factory.next_day()
        first = factory.create_booking(day, 9, 11)
        start, end = factory.window(day, 10, 12)

        response = owner_client.post("/api/bookings", json={
            "organization_id": seed.alpha_org_id,
            "aircraft_id": seed.aircraft["alpha_1"],
            "user_id": seed.users["member2"],
            "start_time": start,
            "end_time": end,
            "status": "confirmed",
        })
        assert_response(response, 409, "Overlapping aircraft booking", "backend/flightops/services/booking_service.py", "Conflict")
        details = response.json()["details"]
        assert first["id"] in details["conflicting_booking_ids"]
        assert "aircraft" in details["resources"]

    def test_back_to_back_allowed(self, factory):
        """
        SCENARIO: Second booking starts exactly when the first ends
        EXPECTED: Both succeed
        """
        day = factory.next_day()
        factory.create_booking(day, 9, 11)
        factory.create_booking(day, 11, 13, user_id=factory.seed.users["member2"])

    def test_check_out_sets_flying(self, factory, owner_client: APIClient, seed):
        """
        SCENARIO: Instructor-led flight is checked out with details
        EXPECTED: status flying, details persisted with the booking
        """
        booking = factory.create_booking(factory.next_day(), instructor_id=seed.users["instructor"])
        response = owner_client.post(f"/api/bookings/{booking['id']}/check-out", json={
            "booking": {"purpose": "Circuits"},
            "details": {"route": "NZAR-NZAR", "passengers": "1"},
        })
        assert_response(response, 200, "Check out booking", "backend/flightops/services/booking_service.py:check_out_booking")
        body = response.json()
        assert body["booking"]["status"] == "flying"
        assert body["bookingDetails"]["route"] == "NZAR-NZAR"

    def test_cancelled_booking_is_immutable(self, factory, owner_client: APIClient):
        """
        SCENARIO: Edit after cancel
        EXPECTED: 409 Immutable
        """
        booking = factory.create_booking(factory.next_day())
        response = owner_client.post(f"/api/bookings/{booking['id']}/cancel", json={"reason": "Weather"})
        assert_response(response, 200, "Cancel booking", "backend/flightops/routes/bookings.py:cancel_booking_route")

        response = owner_client.patch(f"/api/bookings/{booking['id']}", json={"purpose": "Too late"})
        assert_response(response, 409, "Edit cancelled booking", "backend/flightops/services/booking_service.py", "Immutable")

    @pytest.mark.rbac
    def test_member_cannot_create(self, member_client: APIClient, seed):
        """
        SCENARIO: Plain member tries to book through the staff API
        EXPECTED: 403 Forbidden
        """
        response = member_client.post("/api/bookings", json={
            "organization_id": seed.alpha_org_id,
            "aircraft_id": seed.aircraft["alpha_2"],
            "user_id": seed.users["member"],
            "start_time": "2031-01-01T09:00:00Z",
            "end_time": "2031-01-01T10:00:00Z",
        })
        assert_response(response, 403, "Member creates booking", "backend/flightops/services/permission_service.py", "Forbidden")


# =============================================================================
# BILLING
# =============================================================================

@pytest.mark.invoices
@pytest.mark.payments
class TestLiveBilling:

    @pytest.mark.smoke
    def test_invoice_then_full_payment(self, factory, owner_client: APIClient):
        """
        SCENARIO: Invoice for 1.5h rental + 1h instruction, paid in two parts
        EXPECTED: Totals 39000 + 5850 tax, status pending then paid
        """
        invoice = factory.create_invoice()
        assert invoice["subtotal_cents"] == 39000
        assert invoice["tax_cents"] == 5850
        assert invoice["total_cents"] == 44850
        assert invoice["status"] == "pending"

        response = owner_client.post(f"/api/invoices/{invoice['id']}/payments", json={
            "amount_cents": 20000, "payment_method": "cash",
        })
        assert_response(response, 201, "Partial payment", "backend/flightops/services/payment_service.py")
        assert response.json()["invoice"]["balance_due_cents"] == 24850

        response = owner_client.post(f"/api/invoices/{invoice['id']}/payments", json={
            "amount_cents": 24850, "payment_method": "bank_transfer", "payment_reference": "BT-1",
        })
        assert_response(response, 201, "Final payment", "backend/flightops/services/payment_service.py")
        assert response.json()["invoice"]["status"] == "paid"

    def test_overpayment_floors_balance(self, factory, owner_client: APIClient):
        """
        SCENARIO: Payment larger than the balance due
        EXPECTED: 201, balance due floored at zero, invoice paid
        """
        invoice = factory.create_invoice(quantity="1")
        response = owner_client.post(f"/api/invoices/{invoice['id']}/payments", json={
            "amount_cents": invoice["total_cents"] + 1, "payment_method": "cash",
        })
        assert_response(response, 201, "Overpay invoice", "backend/flightops/services/invoice_service.py:sync_balance")
        body = response.json()["invoice"]
        assert body["balance_due_cents"] == 0
        assert body["status"] == "paid"

    def test_zero_amount_rejected(self, factory, owner_client: APIClient):
        """
        SCENARIO: Payment of zero cents
        EXPECTED: 400 InvalidInput
        """
        invoice = factory.create_invoice(quantity="1")
        response = owner_client.post(f"/api/invoices/{invoice['id']}/payments", json={
            "amount_cents": 0, "payment_method": "cash",
        })
        assert_response(response, 400, "Zero payment", "backend/flightops/services/payment_service.py", "InvalidInput")

    def test_account_credit_payment(self, factory, owner_client: APIClient, seed):
        """
        SCENARIO: Member2 is topped up then pays from account credit
        EXPECTED: Credit balance drops by the payment amount
        """
        member_id = seed.users["member2"]
        response = owner_client.post(f"/api/members/{member_id}/account/credit", json={
            "organization_id": seed.alpha_org_id, "amount_cents": 100000,
        })
        assert_response(response, 201, "Top up account", "backend/flightops/services/account_service.py:credit_account")
        before = response.json()["account"]["balance_cents"]

        invoice = factory.create_invoice(user_key="member2", quantity="1")
        response = owner_client.post(f"/api/invoices/{invoice['id']}/payments", json={
            "amount_cents": invoice["total_cents"], "payment_method": "account_credit",
        })
        assert_response(response, 201, "Pay from credit", "backend/flightops/services/payment_service.py")

        summary = owner_client.get(f"/api/members/{member_id}/account", params={"organization_id": seed.alpha_org_id})
        assert_response(summary, 200, "Account summary", "backend/flightops/routes/accounts.py")
        assert summary.json()["credit_balance_cents"] == before - invoice["total_cents"]


# =============================================================================
# TENANCY
# =============================================================================

@pytest.mark.tenant
class TestLiveTenantIsolation:

    def test_other_org_admin_cannot_read_booking(self, factory, beta_admin_client: APIClient):
        """
        SCENARIO: Beta admin requests an Alpha booking by id
        EXPECTED: 403 Forbidden
        """
        booking = factory.create_booking(factory.next_day())
        response = beta_admin_client.get(f"/api/bookings/{booking['id']}")
        assert_response(response, 403, "Cross-tenant booking read", "backend/flightops/services/permission_service.py", "Forbidden")

    def test_other_org_aircraft_not_found(self, owner_client: APIClient, seed):
        """
        SCENARIO: Alpha owner books Beta's aircraft
        EXPECTED: 404 NotFound
        """
        response = owner_client.post("/api/bookings", json={
            "organization_id": seed.alpha_org_id,
            "aircraft_id": seed.aircraft["beta_1"],
            "user_id": seed.users["member"],
            "start_time": "2031-12-01T09:00:00Z",
            "end_time": "2031-12-01T10:00:00Z",
        })
        assert_response(response, 404, "Foreign aircraft", "backend/flightops/services/booking_service.py", "NotFound")
