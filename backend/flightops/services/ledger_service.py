# Overview: Service-layer operations for the member money ledger.

from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..models import Transaction
from flightops.time_utils import utcnow

"""
Member Ledger Invariants (authoritative)

- Append-only: transactions are never updated or deleted.
- Transactions are written inside the same DB transaction as the invoice
  or payment change they record.
- Sign convention: invoice finalization is a debit of -total; payments and
  upward invoice edits are positive.
"""

TYPE_PAYMENT = "payment"
TYPE_REFUND = "refund"
TYPE_CREDIT = "credit"
TYPE_DEBIT = "debit"
TYPE_ADJUSTMENT = "adjustment"

TRANSACTION_TYPES = {TYPE_PAYMENT, TYPE_REFUND, TYPE_CREDIT, TYPE_DEBIT, TYPE_ADJUSTMENT}

STATUS_COMPLETED = "completed"


def append_transaction(
    *,
    organization_id: int,
    user_id: int,
    type: str,
    amount_cents: int,
    description: str,
    invoice_id: int | None = None,
    reference_number: str | None = None,
    metadata: dict | None = None,
    created_by_user_id: int | None = None,
    completed_at: datetime | None = None,
) -> Transaction:
    """
    Append one completed ledger row. Caller owns the transaction.
    """
    if type not in TRANSACTION_TYPES:
        raise ValueError(f"Unknown transaction type: {type}")

    now = utcnow()
    txn = Transaction(
        organization_id=organization_id,
        user_id=user_id,
        invoice_id=invoice_id,
        type=type,
        status=STATUS_COMPLETED,
        amount_cents=amount_cents,
        description=description[:255],
        reference_number=reference_number,
        metadata_json=metadata,
        created_by_user_id=created_by_user_id,
        created_at=now,
        completed_at=completed_at or now,
    )
    db.session.add(txn)
    db.session.flush()
    return txn


def list_member_transactions(organization_id: int, user_id: int, limit: int | None = None) -> list[Transaction]:
    query = (
        db.session.query(Transaction)
        .filter_by(organization_id=organization_id, user_id=user_id)
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
    )
    if limit is not None:
        query = query.limit(limit)
    return query.all()


def list_invoice_transactions(invoice_id: int) -> list[Transaction]:
    return (
        db.session.query(Transaction)
        .filter_by(invoice_id=invoice_id)
        .order_by(Transaction.id)
        .all()
    )
