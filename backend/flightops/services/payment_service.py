# Overview: Service-layer operations for payment; encapsulates business logic and database work.

"""
Payment Recorder & Reconciler

A payment is one unit of work:
1. authorize the actor and check the invoice accepts payments
2. account_credit: debit the member's AccountBalance (must cover the amount)
3. append the ledger Transaction
4. insert the Payment linked to invoice and transaction
5. advance paid / balance_due / status on the invoice

Any failure rolls back every step.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..errors import InsufficientCreditError, InvalidStateError, NotFoundError, UnauthorizedError
from ..models import AccountBalance, Invoice, Payment, Transaction
from ..permissions import Capability
from ..validation import ValidationError, optional_datetime, optional_str, require_int
from flightops.time_utils import utcnow, to_utc_z
from . import invoice_service, ledger_service, permission_service
from .concurrency import lock_for_update, run_with_retry


PAYMENT_METHODS = {
    "cash",
    "credit_card",
    "bank_transfer",
    "direct_debit",
    "cheque",
    "other",
    "account_credit",
}
ACCOUNT_CREDIT = "account_credit"

# Invoices in these statuses do not accept payments
CLOSED_STATUSES = {invoice_service.STATUS_CANCELLED, invoice_service.STATUS_REFUNDED}

_PAYMENT_FIELDS = {"amount_cents", "payment_method", "payment_reference", "notes", "date"}


def _parse_payment(payload: dict) -> dict:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    for key in payload:
        if key not in _PAYMENT_FIELDS:
            raise ValidationError(f"Field not allowed: {key}")

    amount_cents = require_int(payload, "amount_cents", minimum=1)
    method = payload.get("payment_method")
    if method not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of: {', '.join(sorted(PAYMENT_METHODS))}")

    return {
        "amount_cents": amount_cents,
        "payment_method": method,
        "payment_reference": optional_str(payload, "payment_reference", max_length=128),
        "notes": optional_str(payload, "notes", max_length=4000),
        "date": optional_datetime(payload, "date"),
    }


def _debit_account_credit(invoice: Invoice, amount_cents: int) -> AccountBalance:
    account = lock_for_update(
        db.session.query(AccountBalance).filter_by(
            organization_id=invoice.organization_id,
            user_id=invoice.user_id,
        )
    ).first()
    if not account:
        raise InsufficientCreditError("No account credit available")
    if account.balance_cents < amount_cents:
        raise InsufficientCreditError(
            "Insufficient account credit",
            details={"available_cents": account.balance_cents, "requested_cents": amount_cents},
        )
    account.balance_cents -= amount_cents
    account.updated_at = utcnow()
    return account


def apply_payment_to_invoice(invoice: Invoice, amount_cents: int) -> None:
    """Advance paid/balance/status; draft moves to pending while a balance remains."""
    invoice.paid_cents = (invoice.paid_cents or 0) + amount_cents
    if invoice.status == invoice_service.STATUS_DRAFT:
        invoice.status = invoice_service.STATUS_PENDING
    invoice_service.sync_balance(invoice)
    invoice.updated_at = utcnow()


def record_payment(invoice_id: int, payload: dict, actor_user_id: int | None) -> tuple[Invoice, Payment, Transaction]:
    """
    Record a payment against an invoice.

    payload: amount_cents (> 0), payment_method, and optional
    payment_reference, notes, date (business date; defaults to now).

    Returns (invoice, payment, transaction).

    Raises:
        UnauthorizedError, ForbiddenError, ValidationError, NotFoundError
        InvalidStateError: invoice is cancelled or refunded
        InsufficientCreditError: account_credit balance missing or too low
    """
    if actor_user_id is None:
        raise UnauthorizedError("Authentication required")
    data = _parse_payment(payload)

    def _op():
        invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
        if not invoice:
            raise NotFoundError("Invoice not found")
        permission_service.require_capability(
            actor_user_id, invoice.organization_id, Capability.RECORD_PAYMENTS, resource=f"invoice:{invoice_id}"
        )
        if invoice.status in CLOSED_STATUSES:
            raise InvalidStateError(f"Cannot record a payment on a {invoice.status} invoice")

        account = None
        if data["payment_method"] == ACCOUNT_CREDIT:
            account = _debit_account_credit(invoice, data["amount_cents"])

        txn = ledger_service.append_transaction(
            organization_id=invoice.organization_id,
            user_id=invoice.user_id,
            invoice_id=invoice.id,
            type=ledger_service.TYPE_CREDIT if account is not None else ledger_service.TYPE_PAYMENT,
            amount_cents=data["amount_cents"],
            description=f"Payment for invoice {invoice.invoice_number}",
            reference_number=invoice.invoice_number,
            metadata={
                "invoice_id": invoice.id,
                "payment_method": data["payment_method"],
                "payment_reference": data["payment_reference"],
                "notes": data["notes"],
                "date": to_utc_z(data["date"]) if data["date"] else None,
            },
            created_by_user_id=actor_user_id,
        )
        if account is not None:
            account.last_transaction_id = txn.id

        now = utcnow()
        payment = Payment(
            organization_id=invoice.organization_id,
            invoice_id=invoice.id,
            transaction_id=txn.id,
            amount_cents=data["amount_cents"],
            payment_method=data["payment_method"],
            payment_reference=data["payment_reference"],
            notes=data["notes"],
            paid_at=data["date"] or now,
            created_by_user_id=actor_user_id,
            created_at=now,
        )
        db.session.add(payment)

        apply_payment_to_invoice(invoice, data["amount_cents"])
        db.session.commit()

        current_app.logger.info(
            "Payment %s of %s cents (%s) recorded on invoice %s; balance %s",
            payment.id,
            payment.amount_cents,
            payment.payment_method,
            invoice.invoice_number,
            invoice.balance_due_cents,
        )
        return invoice, payment, txn

    return run_with_retry(_op)
