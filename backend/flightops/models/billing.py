from __future__ import annotations

from ..extensions import db
from flightops.time_utils import to_utc_z, to_iso_date


class Chargeable(db.Model):
    """
    Billable catalog entry (aircraft rental, instructor fee, landing fee, ...).

    rate_cents is the default unit rate offered when an invoice item is
    created without an explicit rate.
    """
    __tablename__ = "chargeables"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)
    description = db.Column(db.String(512), nullable=True)
    type = db.Column(db.String(32), nullable=False, default="other")
    rate_cents = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "description": self.description,
            "type": self.type,
            "rate_cents": self.rate_cents,
            "is_active": self.is_active,
        }


class InvoiceSequence(db.Model):
    """
    Atomic per-organization invoice number sequence.

    Prevents two concurrent invoices from drawing the same number.
    """
    __tablename__ = "invoice_sequences"
    __table_args__ = (
        db.UniqueConstraint("organization_id", name="uq_invoice_sequences_org"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())


class Invoice(db.Model):
    """
    Member invoice.

    STATUS: draft -> pending -> paid, or overdue / cancelled / refunded.
    Only draft and pending invoices can be edited.

    Totals are derived from items (never edited directly):
        total_cents = subtotal_cents + tax_cents
        balance_due_cents = max(total_cents - paid_cents, 0)
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("organization_id", "invoice_number", name="uq_invoices_org_number"),
        db.Index("ix_invoices_org_status", "organization_id", "status"),
        db.Index("ix_invoices_org_user", "organization_id", "user_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=True)

    invoice_number = db.Column(db.String(64), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="draft", index=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=1500)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    paid_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_due_cents = db.Column(db.Integer, nullable=False, default=0)

    issue_date = db.Column(db.Date, nullable=False)
    due_date = db.Column(db.Date, nullable=False)
    paid_date = db.Column(db.DateTime(timezone=True), nullable=True)

    reference = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    organization = db.relationship("Organization")
    member = db.relationship("User", foreign_keys=[user_id])
    booking = db.relationship("Booking")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "user_id": self.user_id,
            "booking_id": self.booking_id,
            "invoice_number": self.invoice_number,
            "status": self.status,
            "subtotal_cents": self.subtotal_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "paid_cents": self.paid_cents,
            "balance_due_cents": self.balance_due_cents,
            "issue_date": to_iso_date(self.issue_date),
            "due_date": to_iso_date(self.due_date),
            "paid_date": to_utc_z(self.paid_date) if self.paid_date else None,
            "reference": self.reference,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class InvoiceItem(db.Model):
    """Line item: amount = quantity x rate, tax = amount x tax rate, total = amount + tax."""
    __tablename__ = "invoice_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    chargeable_id = db.Column(db.Integer, db.ForeignKey("chargeables.id"), nullable=False)

    description = db.Column(db.String(512), nullable=False, default="")
    quantity = db.Column(db.Numeric(10, 2), nullable=False)
    rate_cents = db.Column(db.Integer, nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    tax_rate_bps = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    invoice = db.relationship("Invoice", backref=db.backref("items", lazy=True, order_by="InvoiceItem.id"))
    chargeable = db.relationship("Chargeable")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "chargeable_id": self.chargeable_id,
            "chargeable": self.chargeable.to_dict() if self.chargeable else None,
            "description": self.description,
            "quantity": str(self.quantity),
            "rate_cents": self.rate_cents,
            "amount_cents": self.amount_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
        }


class Transaction(db.Model):
    """
    Money ledger row for a member account.

    TYPES: payment, refund, credit, debit, adjustment.
    Invoice finalization appends a debit of -total; payments append a
    payment (or credit, when paid from account credit); invoice edits
    append the delta.

    IMMUTABLE: Records are never updated or deleted.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_org_user_created", "organization_id", "user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default="completed")
    amount_cents = db.Column(db.Integer, nullable=False)
    description = db.Column(db.String(255), nullable=False)
    reference_number = db.Column(db.String(64), nullable=True)
    metadata_json = db.Column("metadata", db.JSON, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "user_id": self.user_id,
            "invoice_id": self.invoice_id,
            "type": self.type,
            "status": self.status,
            "amount_cents": self.amount_cents,
            "description": self.description,
            "reference_number": self.reference_number,
            "metadata": self.metadata_json,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
        }


class Payment(db.Model):
    """
    Payment recorded against an invoice.

    Always created together with its Transaction. Append-only: payments
    are never edited or deleted.
    """
    __tablename__ = "payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, unique=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(32), nullable=False, index=True)
    payment_reference = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # Business date of the payment (defaults to recording time)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=False)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    invoice = db.relationship("Invoice", backref=db.backref("payments", lazy=True, order_by="Payment.id"))
    transaction = db.relationship("Transaction")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "invoice_id": self.invoice_id,
            "transaction_id": self.transaction_id,
            "amount_cents": self.amount_cents,
            "payment_method": self.payment_method,
            "payment_reference": self.payment_reference,
            "notes": self.notes,
            "paid_at": to_utc_z(self.paid_at),
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }


class AccountBalance(db.Model):
    """
    Running account-credit balance for a member within one organization.

    Debited when a payment uses account_credit.
    """
    __tablename__ = "account_balances"
    __table_args__ = (
        db.UniqueConstraint("organization_id", "user_id", name="uq_account_balances_org_user"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    balance_cents = db.Column(db.Integer, nullable=False, default=0)
    last_transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "user_id": self.user_id,
            "balance_cents": self.balance_cents,
            "last_transaction_id": self.last_transaction_id,
            "updated_at": to_utc_z(self.updated_at),
        }
