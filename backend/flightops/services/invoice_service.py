# Overview: Service-layer operations for invoices; encapsulates business logic and database work.

"""
Invoice Composer

Invariants (hold after every committed write):
- item.amount = round(quantity x rate), item.tax = round(amount x tax_rate),
  item.total = amount + tax; rounding is half-up to the cent.
- subtotal = sum(item.amount), tax = sum(item.tax), total = subtotal + tax.
- balance_due = max(total - paid, 0).
- A finalized invoice is paid exactly when balance_due == 0.
- Only draft and pending invoices can be edited.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

from flask import current_app

from ..extensions import db
from ..errors import ForbiddenError, InvalidStateError, NotFoundError, UnauthorizedError
from ..models import Booking, Chargeable, Invoice, InvoiceItem, Organization, Transaction
from ..permissions import Capability, role_has_capability
from ..validation import (
    ValidationError,
    optional_str,
    require_date,
    require_decimal,
    require_int,
)
from flightops.time_utils import today, utcnow, to_utc_z
from . import ledger_service, permission_service, sequence_service
from .concurrency import lock_for_update, run_with_retry


STATUS_DRAFT = "draft"
STATUS_PENDING = "pending"
STATUS_PAID = "paid"
STATUS_OVERDUE = "overdue"
STATUS_CANCELLED = "cancelled"
STATUS_REFUNDED = "refunded"

INVOICE_STATUSES = {STATUS_DRAFT, STATUS_PENDING, STATUS_PAID, STATUS_OVERDUE, STATUS_CANCELLED, STATUS_REFUNDED}
EDITABLE_STATUSES = {STATUS_DRAFT, STATUS_PENDING}

MAX_TAX_RATE_BPS = 10_000
MAX_ITEMS = 200

_ONE = Decimal("1")
_BPS = Decimal("10000")

_CREATE_FIELDS = {"organization_id", "user_id", "booking_id", "due_date", "reference", "notes", "items"}
_EDIT_FIELDS = {"due_date", "reference", "notes", "items"}


# =============================================================================
# ARITHMETIC
# =============================================================================

def round_half_up(value: Decimal) -> int:
    return int(value.quantize(_ONE, rounding=ROUND_HALF_UP))


def compute_item(quantity: Decimal, rate_cents: int, tax_rate_bps: int) -> dict:
    """
    Line arithmetic in cents.

    >>> compute_item(Decimal("1.5"), 10000, 1500)
    {'amount_cents': 15000, 'tax_cents': 2250, 'total_cents': 17250}
    """
    amount = round_half_up(Decimal(quantity) * rate_cents)
    tax = round_half_up(Decimal(amount) * tax_rate_bps / _BPS)
    return {"amount_cents": amount, "tax_cents": tax, "total_cents": amount + tax}


def _apply_item_math(item: InvoiceItem) -> None:
    for key, value in compute_item(item.quantity, item.rate_cents, item.tax_rate_bps).items():
        setattr(item, key, value)


def recompute_totals(invoice: Invoice) -> None:
    """Derive invoice totals from its items; never trusts stored totals."""
    items = list(invoice.items)
    invoice.subtotal_cents = sum(i.amount_cents for i in items)
    invoice.tax_cents = sum(i.tax_cents for i in items)
    invoice.total_cents = invoice.subtotal_cents + invoice.tax_cents


def sync_balance(invoice: Invoice) -> None:
    """
    Resynchronise balance_due and status with total and paid.

    Drafts stay draft; finalized invoices flip between pending and paid.
    """
    invoice.balance_due_cents = max(invoice.total_cents - (invoice.paid_cents or 0), 0)
    if invoice.status == STATUS_DRAFT:
        return
    if invoice.balance_due_cents == 0:
        if invoice.status != STATUS_PAID:
            invoice.status = STATUS_PAID
            invoice.paid_date = utcnow()
    elif invoice.status == STATUS_PAID:
        invoice.status = STATUS_PENDING
        invoice.paid_date = None


# =============================================================================
# INPUT PARSING
# =============================================================================

def _reject_unknown(payload: dict, allowed: set) -> None:
    for key in payload:
        if key not in allowed:
            raise ValidationError(f"Field not allowed: {key}")


def _parse_new_items(raw_items, organization: Organization) -> list[dict]:
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("items must be a non-empty list")
    if len(raw_items) > MAX_ITEMS:
        raise ValidationError(f"items cannot contain more than {MAX_ITEMS} entries")

    parsed = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        try:
            chargeable_id = require_int(raw, "chargeable_id", minimum=1)
            quantity = require_decimal(raw, "quantity", minimum=_ONE)
            rate_cents = require_int(raw, "rate_cents", minimum=0, required=False)
            tax_rate_bps = require_int(raw, "tax_rate_bps", minimum=0, required=False)
            description = optional_str(raw, "description", max_length=512)
        except ValidationError as exc:
            raise ValidationError(f"items[{index}]: {exc.message}")

        if tax_rate_bps is not None and tax_rate_bps > MAX_TAX_RATE_BPS:
            raise ValidationError(f"items[{index}]: tax_rate_bps cannot exceed {MAX_TAX_RATE_BPS}")

        chargeable = db.session.query(Chargeable).filter_by(
            id=chargeable_id, organization_id=organization.id
        ).first()
        if not chargeable:
            raise NotFoundError(f"Chargeable {chargeable_id} not found")
        if not chargeable.is_active:
            raise ValidationError(f"Chargeable {chargeable_id} is inactive")

        parsed.append({
            "chargeable_id": chargeable.id,
            "description": description if description else chargeable.name,
            "quantity": quantity,
            "rate_cents": chargeable.rate_cents if rate_cents is None else rate_cents,
            "tax_rate_bps": organization.default_tax_rate_bps if tax_rate_bps is None else tax_rate_bps,
        })
    return parsed


def _parse_item_edits(raw_items) -> list[dict]:
    if not isinstance(raw_items, list):
        raise ValidationError("items must be a list")

    parsed = []
    seen = set()
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        try:
            item_id = require_int(raw, "id", minimum=1)
            quantity = require_decimal(raw, "quantity", minimum=_ONE)
            rate_cents = require_int(raw, "rate_cents", minimum=0)
            description = optional_str(raw, "description", max_length=512)
        except ValidationError as exc:
            raise ValidationError(f"items[{index}]: {exc.message}")
        if description is None:
            raise ValidationError(f"items[{index}]: description is required")
        if item_id in seen:
            raise ValidationError(f"items[{index}]: duplicate item id {item_id}")
        seen.add(item_id)
        parsed.append({"id": item_id, "quantity": quantity, "rate_cents": rate_cents, "description": description})
    return parsed


# =============================================================================
# AUTHORIZATION
# =============================================================================

def _require_view(invoice_org_id: int, invoice_user_id: int | None, actor_user_id: int | None) -> str:
    if actor_user_id is None:
        raise UnauthorizedError("Authentication required")
    role = permission_service.get_user_role(actor_user_id, invoice_org_id)
    if role is None:
        raise ForbiddenError("Forbidden: Not a member of this organization")
    if role_has_capability(role, Capability.MANAGE_INVOICES) or role_has_capability(role, Capability.VIEW_FINANCIALS):
        return role
    if invoice_user_id is not None and invoice_user_id == actor_user_id:
        return role
    raise ForbiddenError("Forbidden: Insufficient role")


# =============================================================================
# OPERATIONS
# =============================================================================

def create_invoice(payload: dict, actor_user_id: int | None) -> tuple[Invoice, Transaction]:
    """
    Create, number and finalize an invoice in one transaction.

    payload: organization_id, user_id, due_date, items, and optional
    booking_id, reference, notes.

    Returns (invoice, debit transaction).

    Raises:
        UnauthorizedError, ForbiddenError, ValidationError, NotFoundError,
        DependencyFailureError
    """
    if actor_user_id is None:
        raise UnauthorizedError("Authentication required")
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    _reject_unknown(payload, _CREATE_FIELDS)

    organization_id = require_int(payload, "organization_id", minimum=1)

    def _op():
        permission_service.require_capability(
            actor_user_id, organization_id, Capability.MANAGE_INVOICES, resource="invoices"
        )
        organization = db.session.get(Organization, organization_id)
        if not organization:
            raise NotFoundError("Organization not found")

        user_id = require_int(payload, "user_id", minimum=1)
        due_date = require_date(payload, "due_date")
        reference = optional_str(payload, "reference", max_length=128)
        notes = optional_str(payload, "notes", max_length=4000)
        booking_id = require_int(payload, "booking_id", minimum=1, required=False)
        items = _parse_new_items(payload.get("items"), organization)

        if not permission_service.is_member(user_id, organization_id):
            raise NotFoundError("Member not found in this organization")
        if booking_id is not None:
            if not db.session.query(Booking).filter_by(id=booking_id, organization_id=organization_id).first():
                raise NotFoundError("Booking not found")

        invoice_number = sequence_service.next_invoice_number(
            organization_id, prefix=current_app.config.get("INVOICE_NUMBER_PREFIX", "INV")
        )

        now = utcnow()
        invoice = Invoice(
            organization_id=organization_id,
            user_id=user_id,
            booking_id=booking_id,
            invoice_number=invoice_number,
            status=STATUS_DRAFT,
            tax_rate_bps=items[0]["tax_rate_bps"],
            paid_cents=0,
            issue_date=today(),
            due_date=due_date,
            reference=reference,
            notes=notes,
            created_by_user_id=actor_user_id,
            created_at=now,
            updated_at=now,
        )
        db.session.add(invoice)

        for data in items:
            item = InvoiceItem(invoice=invoice, created_at=now, **data)
            _apply_item_math(item)
            db.session.add(item)

        recompute_totals(invoice)
        invoice.balance_due_cents = invoice.total_cents
        db.session.flush()

        # Finalize
        invoice.status = STATUS_PENDING
        sync_balance(invoice)

        txn = ledger_service.append_transaction(
            organization_id=organization_id,
            user_id=user_id,
            invoice_id=invoice.id,
            type=ledger_service.TYPE_DEBIT,
            amount_cents=-invoice.total_cents,
            description=f"Invoice charge for {invoice_number}",
            reference_number=invoice_number,
            metadata={"invoice_id": invoice.id},
            created_by_user_id=actor_user_id,
        )

        db.session.commit()
        current_app.logger.info(
            "Invoice %s created for user %s (total %s cents)", invoice_number, user_id, invoice.total_cents
        )
        return invoice, txn

    return run_with_retry(_op)


def edit_invoice(invoice_id: int, patch: dict, actor_user_id: int | None) -> tuple[Invoice, Transaction | None]:
    """
    Edit due date, notes or existing line items of a draft/pending invoice.

    Edited items are recomputed at the invoice's tax rate and totals are
    rebuilt over every item. A change in total appends a ledger row for
    the absolute delta: credit when the total went up, debit when down.

    Returns (invoice, transaction or None).

    Raises:
        InvalidStateError: invoice is not draft or pending
    """
    if actor_user_id is None:
        raise UnauthorizedError("Authentication required")
    if not isinstance(patch, dict):
        raise ValidationError("Invalid JSON payload")
    _reject_unknown(patch, _EDIT_FIELDS)

    def _op():
        invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
        if not invoice:
            raise NotFoundError("Invoice not found")
        permission_service.require_capability(
            actor_user_id, invoice.organization_id, Capability.MANAGE_INVOICES, resource=f"invoice:{invoice_id}"
        )

        due_date = require_date(patch, "due_date", required=False)
        reference = optional_str(patch, "reference", max_length=128)
        notes = optional_str(patch, "notes", max_length=4000)
        edits = _parse_item_edits(patch["items"]) if "items" in patch else []

        if invoice.status not in EDITABLE_STATUSES:
            raise InvalidStateError("Invoice cannot be edited in this status")

        items_by_id = {item.id: item for item in invoice.items}
        for edit in edits:
            item = items_by_id.get(edit["id"])
            if item is None:
                raise NotFoundError(f"Invoice item {edit['id']} not found")
            item.quantity = edit["quantity"]
            item.rate_cents = edit["rate_cents"]
            item.description = edit["description"]
            item.tax_rate_bps = invoice.tax_rate_bps
            _apply_item_math(item)

        if due_date is not None:
            invoice.due_date = due_date
        if "reference" in patch:
            invoice.reference = reference
        if "notes" in patch:
            invoice.notes = notes

        old_total = invoice.total_cents
        recompute_totals(invoice)
        sync_balance(invoice)
        invoice.updated_at = utcnow()
        db.session.flush()

        txn = None
        delta = invoice.total_cents - old_total
        if delta:
            txn = ledger_service.append_transaction(
                organization_id=invoice.organization_id,
                user_id=invoice.user_id,
                invoice_id=invoice.id,
                type=ledger_service.TYPE_CREDIT if delta > 0 else ledger_service.TYPE_DEBIT,
                amount_cents=abs(delta),
                description=f"Invoice edit for {invoice.invoice_number}",
                reference_number=invoice.invoice_number,
                metadata={"invoice_id": invoice.id, "edit": True},
                created_by_user_id=actor_user_id,
            )

        db.session.commit()
        if txn is not None:
            current_app.logger.info(
                "Invoice %s total changed by %s cents", invoice.invoice_number, delta
            )
        return invoice, txn

    return run_with_retry(_op)


def get_invoice(invoice_id: int, actor_user_id: int | None) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if not invoice:
        raise NotFoundError("Invoice not found")
    _require_view(invoice.organization_id, invoice.user_id, actor_user_id)
    return invoice


def list_invoices(
    organization_id: int,
    actor_user_id: int | None,
    *,
    user_id: int | None = None,
    status: str | None = None,
) -> list[Invoice]:
    """Invoices newest first. Members without financial access see only their own."""
    if actor_user_id is None:
        raise UnauthorizedError("Authentication required")
    if status is not None and status not in INVOICE_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(sorted(INVOICE_STATUSES))}")

    role = permission_service.get_user_role(actor_user_id, organization_id)
    if role is None:
        raise ForbiddenError("Forbidden: Not a member of this organization")

    query = db.session.query(Invoice).filter_by(organization_id=organization_id)
    if not (role_has_capability(role, Capability.MANAGE_INVOICES) or role_has_capability(role, Capability.VIEW_FINANCIALS)):
        query = query.filter(Invoice.user_id == actor_user_id)
    elif user_id is not None:
        query = query.filter(Invoice.user_id == user_id)
    if status is not None:
        query = query.filter(Invoice.status == status)
    return query.order_by(Invoice.created_at.desc(), Invoice.id.desc()).all()


# =============================================================================
# SERIALIZATION
# =============================================================================

def expand_invoice(invoice: Invoice) -> dict:
    """Invoice with member, organization, booking, items, payments and ledger rows."""
    data = invoice.to_dict()
    member = invoice.member
    data["member"] = {
        "id": member.id,
        "first_name": member.first_name,
        "last_name": member.last_name,
        "email": member.email,
    } if member else None

    org = invoice.organization
    data["organization"] = {
        "id": org.id,
        "name": org.name,
        "contact_email": org.contact_email,
        "contact_phone": org.contact_phone,
        "address": org.address,
    } if org else None

    booking = invoice.booking
    data["booking"] = {
        "id": booking.id,
        "start_time": to_utc_z(booking.start_time),
        "end_time": to_utc_z(booking.end_time),
        "aircraft": {"id": booking.aircraft.id, "registration": booking.aircraft.registration, "type": booking.aircraft.type}
        if booking.aircraft else None,
        "instructor": {"id": booking.instructor.id, "first_name": booking.instructor.first_name, "last_name": booking.instructor.last_name}
        if booking.instructor else None,
    } if booking else None

    data["items"] = [item.to_dict() for item in invoice.items]
    data["payments"] = [payment.to_dict() for payment in invoice.payments]
    data["transactions"] = [txn.to_dict() for txn in ledger_service.list_invoice_transactions(invoice.id)]
    return data
