"""
Payment recorder tests.

Verifies:
- Payments advance paid/balance/status and flip to paid at zero balance
- account_credit draws down the member's AccountBalance atomically
- A failed payment writes nothing (no Payment, no Transaction)
- Closed invoices refuse payments
"""

import pytest

from flightops.errors import (
    ForbiddenError,
    InsufficientCreditError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
)
from flightops.extensions import db
from flightops.models import AccountBalance, Invoice, Payment, Transaction
from flightops.services import account_service, invoice_service, payment_service
from flightops.validation import ValidationError


@pytest.fixture
def invoice(org, owner, member, rental_chargeable, instructor_chargeable):
    inv, _ = invoice_service.create_invoice(
        {
            "organization_id": org.id,
            "user_id": member.id,
            "due_date": "2030-04-01",
            "items": [
                {"chargeable_id": rental_chargeable.id, "quantity": "1.5"},
                {"chargeable_id": instructor_chargeable.id, "quantity": 1},
            ],
        },
        owner.id,
    )
    return inv


def pay(invoice, actor, amount_cents, method="cash", **extra):
    payload = {"amount_cents": amount_cents, "payment_method": method}
    payload.update(extra)
    return payment_service.record_payment(invoice.id, payload, actor.id)


# =============================================================================
# RECONCILIATION
# =============================================================================


class TestRecordPayment:

    def test_partial_then_full(self, owner, invoice):
        inv, payment, txn = pay(invoice, owner, 10000)

        assert inv.paid_cents == 10000
        assert inv.balance_due_cents == 18750
        assert inv.status == "pending"
        assert inv.paid_date is None
        assert payment.transaction_id == txn.id
        assert txn.type == "payment"
        assert txn.amount_cents == 10000
        assert txn.description == f"Payment for invoice {inv.invoice_number}"

        inv, _, _ = pay(invoice, owner, 18750, method="bank_transfer", payment_reference="REF-1")

        assert inv.paid_cents == 28750
        assert inv.balance_due_cents == 0
        assert inv.status == "paid"
        assert inv.paid_date is not None

    def test_overpayment_floors_balance(self, owner, invoice):
        inv, _, _ = pay(invoice, owner, 30000)
        assert inv.paid_cents == 30000
        assert inv.balance_due_cents == 0
        assert inv.status == "paid"

    def test_payment_on_paid_invoice_is_accepted(self, owner, invoice):
        pay(invoice, owner, 28750)
        inv, _, _ = pay(invoice, owner, 100)
        assert inv.status == "paid"
        assert inv.paid_cents == 28850

    def test_metadata_and_business_date(self, owner, invoice):
        _, payment, txn = pay(
            invoice, owner, 5000, payment_reference="CHQ-77", notes="At the desk", date="2030-03-02T08:00:00Z"
        )

        assert payment.paid_at.isoformat() == "2030-03-02T08:00:00"
        assert payment.payment_reference == "CHQ-77"
        assert txn.metadata_json == {
            "invoice_id": invoice.id,
            "payment_method": "cash",
            "payment_reference": "CHQ-77",
            "notes": "At the desk",
            "date": "2030-03-02T08:00:00Z",
        }

    def test_instructor_may_record(self, instructor, invoice):
        inv, _, _ = pay(invoice, instructor, 1000)
        assert inv.paid_cents == 1000

    @pytest.mark.parametrize("amount", [0, -100, 12.5, "100", None])
    def test_bad_amount_rejected(self, owner, invoice, amount):
        with pytest.raises(ValidationError):
            pay(invoice, owner, amount)

    def test_bad_method_rejected(self, owner, invoice):
        with pytest.raises(ValidationError):
            pay(invoice, owner, 1000, method="bitcoin")

    def test_unknown_field_rejected(self, owner, invoice):
        with pytest.raises(ValidationError):
            pay(invoice, owner, 1000, invoice_id=1)

    def test_missing_invoice(self, owner):
        with pytest.raises(NotFoundError):
            payment_service.record_payment(9999, {"amount_cents": 1, "payment_method": "cash"}, owner.id)

    def test_requires_actor(self, invoice):
        with pytest.raises(UnauthorizedError):
            payment_service.record_payment(invoice.id, {"amount_cents": 1, "payment_method": "cash"}, None)

    def test_member_cannot_record(self, member, invoice):
        with pytest.raises(ForbiddenError):
            pay(invoice, member, 1000)
        assert db.session.query(Payment).count() == 0

    def test_outsider_cannot_record(self, outsider, invoice):
        with pytest.raises(ForbiddenError):
            pay(invoice, outsider, 1000)

    @pytest.mark.parametrize("status", ["cancelled", "refunded"])
    def test_closed_invoice_refuses_payment(self, owner, invoice, db_session, status):
        invoice.status = status
        db_session.commit()

        with pytest.raises(InvalidStateError):
            pay(invoice, owner, 1000)
        assert db.session.query(Payment).count() == 0


# =============================================================================
# ACCOUNT CREDIT
# =============================================================================


class TestAccountCredit:

    def test_payment_draws_down_balance(self, org, owner, member, invoice):
        account_service.credit_account(org.id, member.id, 30000, owner.id)

        inv, payment, txn = pay(invoice, owner, 28750, method="account_credit")

        assert payment.payment_method == "account_credit"
        assert txn.type == "credit"
        assert inv.status == "paid"

        account = db.session.query(AccountBalance).filter_by(organization_id=org.id, user_id=member.id).one()
        assert account.balance_cents == 1250
        assert account.last_transaction_id == txn.id

    def test_no_account_is_insufficient(self, owner, invoice):
        before = db.session.query(Transaction).count()

        with pytest.raises(InsufficientCreditError) as exc:
            pay(invoice, owner, 1000, method="account_credit")

        assert exc.value.message == "No account credit available"
        assert db.session.query(Payment).count() == 0
        assert db.session.query(Transaction).count() == before
        reloaded = db.session.get(Invoice, invoice.id)
        assert reloaded.paid_cents == 0
        assert reloaded.balance_due_cents == 28750

    def test_low_balance_is_insufficient(self, org, owner, member, invoice):
        account_service.credit_account(org.id, member.id, 5000, owner.id)
        before = db.session.query(Transaction).count()

        with pytest.raises(InsufficientCreditError) as exc:
            pay(invoice, owner, 8000, method="account_credit")

        assert exc.value.details == {"available_cents": 5000, "requested_cents": 8000}
        account = db.session.query(AccountBalance).filter_by(user_id=member.id).one()
        assert account.balance_cents == 5000
        assert db.session.query(Transaction).count() == before
        assert db.session.query(Payment).count() == 0


# =============================================================================
# ACCOUNT SUMMARY
# =============================================================================


class TestAccountSummary:

    def test_totals(self, org, owner, member, invoice):
        pay(invoice, owner, 10000)

        summary = account_service.get_account_summary(org.id, member.id, owner.id)

        assert summary["credit_balance_cents"] == 0
        assert summary["total_invoiced_cents"] == 28750
        assert summary["total_paid_cents"] == 10000
        assert summary["outstanding_cents"] == 18750
        assert [t["type"] for t in summary["recent_transactions"]] == ["payment", "debit"]

    def test_member_sees_own_account(self, org, member, invoice):
        summary = account_service.get_account_summary(org.id, member.id, member.id)
        assert summary["member"]["email"] == "member@skyline.test"

    def test_member_cannot_see_others(self, org, member, second_member):
        with pytest.raises(ForbiddenError):
            account_service.get_account_summary(org.id, member.id, second_member.id)

    def test_instructor_lacks_financial_view(self, org, member, instructor):
        with pytest.raises(ForbiddenError):
            account_service.get_account_summary(org.id, member.id, instructor.id)

    def test_credit_top_up(self, org, owner, member):
        account, txn = account_service.credit_account(org.id, member.id, 2500, owner.id, description="Cash deposit")
        account, _ = account_service.credit_account(org.id, member.id, 500, owner.id)

        assert account.balance_cents == 3000
        assert txn.description == "Cash deposit"
        assert txn.metadata_json == {"top_up": True}

    @pytest.mark.parametrize("amount", [0, -1, 1.5, True])
    def test_credit_amount_validated(self, org, owner, member, amount):
        with pytest.raises(ValidationError):
            account_service.credit_account(org.id, member.id, amount, owner.id)

    def test_credit_unknown_member(self, org, owner, outsider):
        with pytest.raises(NotFoundError):
            account_service.credit_account(org.id, outsider.id, 100, owner.id)
