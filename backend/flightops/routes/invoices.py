# Overview: Flask API routes for invoices and payments; parses input and returns JSON responses.

"""
Invoice API Routes

DESIGN:
- Create invoices from line items (numbered, finalized and ledgered atomically)
- Edit draft/pending invoices (totals always recomputed from items)
- Record payments, including payment from account credit

SECURITY:
- Create/edit require MANAGE_INVOICES, payments require RECORD_PAYMENTS
- Reads are open to staff with invoice or financial access, and to the invoiced member
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import OperationError
from ..services import invoice_service, payment_service
from ..decorators import require_auth
from .common import error_response, internal_error, json_body, int_arg


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


@invoices_bp.post("")
@require_auth
def create_invoice_route():
    """
    Create an invoice.

    Request body:
    {
        "organization_id": 1,
        "user_id": 12,
        "due_date": "2026-03-31",
        "reference": "March flying",  (optional)
        "notes": "...",  (optional)
        "items": [
            {"chargeable_id": 2, "quantity": 1.5, "rate_cents": 10000, "description": "C172 rental"}
        ]
    }

    Returns:
        201: {invoice, invoice_number, transaction}
    """
    try:
        invoice, txn = invoice_service.create_invoice(json_body(), g.current_user.id)
        return jsonify({
            "invoice": invoice_service.expand_invoice(invoice),
            "invoice_number": invoice.invoice_number,
            "transaction": txn.to_dict(),
        }), 201

    except OperationError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return internal_error()


@invoices_bp.get("")
@require_auth
def list_invoices_route():
    """
    List invoices.

    Query params: organization_id (required), user_id, status
    """
    try:
        invoices = invoice_service.list_invoices(
            int_arg("organization_id", required=True),
            g.current_user.id,
            user_id=int_arg("user_id"),
            status=request.args.get("status") or None,
        )
        return jsonify({"invoices": [i.to_dict() for i in invoices]}), 200

    except OperationError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list invoices")
        return internal_error()


@invoices_bp.get("/<int:invoice_id>")
@require_auth
def get_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(invoice_id, g.current_user.id)
        return jsonify({"invoice": invoice_service.expand_invoice(invoice)}), 200

    except OperationError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load invoice")
        return internal_error()


@invoices_bp.patch("/<int:invoice_id>")
@require_auth
def edit_invoice_route(invoice_id: int):
    """
    Edit a draft or pending invoice.

    Request body:
    {
        "due_date": "2026-04-15",  (optional)
        "items": [{"id": 7, "quantity": 2, "rate_cents": 9500, "description": "..."}]  (optional)
    }

    Returns:
        200: {invoice, transaction}
        409: Invoice cannot be edited in this status
    """
    try:
        invoice, txn = invoice_service.edit_invoice(invoice_id, json_body(), g.current_user.id)
        return jsonify({
            "invoice": invoice_service.expand_invoice(invoice),
            "transaction": txn.to_dict() if txn else None,
        }), 200

    except OperationError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to edit invoice")
        return internal_error()


@invoices_bp.post("/<int:invoice_id>/payments")
@require_auth
def record_payment_route(invoice_id: int):
    """
    Record a payment.

    Request body:
    {
        "amount_cents": 10000,
        "payment_method": "cash",
        "payment_reference": "RCPT-1",  (optional)
        "notes": "...",  (optional)
        "date": "2026-03-02T10:00:00Z"  (optional)
    }

    PAYMENT METHODS: cash, credit_card, bank_transfer, direct_debit, cheque,
    other, account_credit

    Returns:
        201: {invoice, payment, transaction}
        400: Invalid input or insufficient account credit
        409: Invoice cancelled or refunded
    """
    try:
        invoice, payment, txn = payment_service.record_payment(invoice_id, json_body(), g.current_user.id)
        return jsonify({
            "invoice": invoice_service.expand_invoice(invoice),
            "payment": payment.to_dict(),
            "transaction": txn.to_dict(),
        }), 201

    except OperationError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record payment")
        return internal_error()
