# Overview: Service-layer operations for member accounts.

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..errors import NotFoundError, UnauthorizedError
from ..models import AccountBalance, Invoice, Transaction, User
from ..permissions import Capability
from ..validation import MAX_AMOUNT_CENTS, ValidationError
from flightops.time_utils import utcnow
from . import invoice_service, ledger_service, permission_service
from .concurrency import lock_for_update, run_with_retry


OUTSTANDING_STATUSES = {invoice_service.STATUS_PENDING, invoice_service.STATUS_OVERDUE}
BILLED_STATUSES = {
    invoice_service.STATUS_PENDING,
    invoice_service.STATUS_PAID,
    invoice_service.STATUS_OVERDUE,
}


def _require_financial_view(organization_id: int, user_id: int, actor_user_id: int | None) -> None:
    if actor_user_id is None:
        raise UnauthorizedError("Authentication required")
    if actor_user_id == user_id and permission_service.is_member(actor_user_id, organization_id):
        return
    permission_service.require_capability(
        actor_user_id, organization_id, Capability.VIEW_FINANCIALS, resource=f"account:{user_id}"
    )


def _sum(column, *criteria) -> int:
    return int(db.session.query(func.coalesce(func.sum(column), 0)).filter(*criteria).scalar() or 0)


def get_account_summary(organization_id: int, user_id: int, actor_user_id: int | None, *, recent: int = 20) -> dict:
    """
    Member account view: credit balance, invoiced/paid/outstanding totals
    and the most recent ledger rows.
    """
    _require_financial_view(organization_id, user_id, actor_user_id)

    member = db.session.get(User, user_id)
    if not member or not permission_service.is_member(user_id, organization_id):
        raise NotFoundError("Member not found in this organization")

    account = db.session.query(AccountBalance).filter_by(
        organization_id=organization_id, user_id=user_id
    ).first()

    scope = (Invoice.organization_id == organization_id, Invoice.user_id == user_id)
    total_invoiced = _sum(Invoice.total_cents, *scope, Invoice.status.in_(BILLED_STATUSES))
    total_paid = _sum(Invoice.paid_cents, *scope)
    outstanding = _sum(Invoice.balance_due_cents, *scope, Invoice.status.in_(OUTSTANDING_STATUSES))

    transactions = ledger_service.list_member_transactions(organization_id, user_id, limit=recent)

    return {
        "organization_id": organization_id,
        "user_id": user_id,
        "member": {
            "id": member.id,
            "first_name": member.first_name,
            "last_name": member.last_name,
            "email": member.email,
        },
        "credit_balance_cents": account.balance_cents if account else 0,
        "total_invoiced_cents": total_invoiced,
        "total_paid_cents": total_paid,
        "outstanding_cents": outstanding,
        "recent_transactions": [t.to_dict() for t in transactions],
    }


def credit_account(
    organization_id: int,
    user_id: int,
    amount_cents: int,
    actor_user_id: int | None,
    *,
    description: str | None = None,
) -> tuple[AccountBalance, Transaction]:
    """
    Add prepaid credit to a member account, creating the balance row on first use.

    Returns (account balance, credit transaction).
    """
    if actor_user_id is None:
        raise UnauthorizedError("Authentication required")
    if isinstance(organization_id, bool) or not isinstance(organization_id, int):
        raise ValidationError("organization_id must be an integer")
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
        raise ValidationError("amount_cents must be a positive integer")
    if amount_cents > MAX_AMOUNT_CENTS:
        raise ValidationError(f"amount_cents cannot exceed {MAX_AMOUNT_CENTS}")
    if description is not None and (not isinstance(description, str) or len(description) > 255):
        raise ValidationError("description must be a string of at most 255 characters")

    def _op():
        permission_service.require_capability(
            actor_user_id, organization_id, Capability.RECORD_PAYMENTS, resource=f"account:{user_id}"
        )
        if not permission_service.is_member(user_id, organization_id):
            raise NotFoundError("Member not found in this organization")

        account = lock_for_update(
            db.session.query(AccountBalance).filter_by(organization_id=organization_id, user_id=user_id)
        ).first()
        if account is None:
            account = AccountBalance(organization_id=organization_id, user_id=user_id, balance_cents=0)
            db.session.add(account)

        txn = ledger_service.append_transaction(
            organization_id=organization_id,
            user_id=user_id,
            type=ledger_service.TYPE_CREDIT,
            amount_cents=amount_cents,
            description=description or "Account credit top-up",
            metadata={"top_up": True},
            created_by_user_id=actor_user_id,
        )
        account.balance_cents += amount_cents
        account.last_transaction_id = txn.id
        account.updated_at = utcnow()
        db.session.commit()

        current_app.logger.info(
            "Account credit of %s cents added for user %s in org %s", amount_cents, user_id, organization_id
        )
        return account, txn

    return run_with_retry(_op)
