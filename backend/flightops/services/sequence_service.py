# Overview: Service-layer operations for invoice numbering.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..extensions import db
from ..errors import DependencyFailureError
from ..models import InvoiceSequence


def format_invoice_number(prefix: str, organization_id: int, number: int, pad: int = 5) -> str:
    return f"{prefix}-{organization_id:03d}-{number:0{pad}d}"


def _bump(organization_id: int) -> int | None:
    stmt = (
        update(InvoiceSequence)
        .where(InvoiceSequence.organization_id == organization_id)
        .values(next_number=InvoiceSequence.next_number + 1)
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        return None
    current = (
        db.session.query(InvoiceSequence.next_number)
        .filter_by(organization_id=organization_id)
        .scalar()
    )
    return current - 1


def next_invoice_number(organization_id: int, *, prefix: str = "INV", pad: int = 5) -> str:
    """
    Allocate the next invoice number for an organization.

    Runs inside the caller's transaction so a rolled-back invoice also
    releases its number. The UPDATE takes a row lock on the sequence; the
    first allocation for an organization inserts the row under a savepoint
    so a concurrent first insert can be retried without losing the outer
    transaction.

    Raises:
        DependencyFailureError: the sequence could not be advanced
    """
    try:
        number = _bump(organization_id)
        if number is None:
            try:
                with db.session.begin_nested():
                    db.session.add(InvoiceSequence(organization_id=organization_id, next_number=2))
                number = 1
            except IntegrityError:
                number = _bump(organization_id)
                if number is None:
                    raise DependencyFailureError("Failed to generate invoice number")
    except SQLAlchemyError as exc:
        raise DependencyFailureError("Failed to generate invoice number") from exc

    return format_invoice_number(prefix, organization_id, number, pad)
