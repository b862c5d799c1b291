# Overview: Flask API routes for member accounts; parses input and returns JSON responses.

from flask import Blueprint, jsonify, g, current_app

from ..errors import OperationError
from ..services import account_service
from ..decorators import require_auth
from .common import error_response, internal_error, json_body, int_arg


accounts_bp = Blueprint("accounts", __name__, url_prefix="/api/members")


@accounts_bp.get("/<int:user_id>/account")
@require_auth
def account_summary_route(user_id: int):
    """
    Member account summary.

    Query params: organization_id (required)

    Available to: owner, admin, and the member themself
    """
    try:
        summary = account_service.get_account_summary(
            int_arg("organization_id", required=True), user_id, g.current_user.id
        )
        return jsonify(summary), 200

    except OperationError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load account summary")
        return internal_error()


@accounts_bp.post("/<int:user_id>/account/credit")
@require_auth
def add_account_credit_route(user_id: int):
    """
    Top up a member's prepaid account credit.

    Request body: {"organization_id": 1, "amount_cents": 50000, "description": "..."}
    """
    try:
        data = json_body()
        account, txn = account_service.credit_account(
            data.get("organization_id"),
            user_id,
            data.get("amount_cents"),
            g.current_user.id,
            description=data.get("description"),
        )
        return jsonify({"account": account.to_dict(), "transaction": txn.to_dict()}), 201

    except OperationError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add account credit")
        return internal_error()
