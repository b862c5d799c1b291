# Overview: Flask API routes for the audit log; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import OperationError
from ..services import audit_service
from ..decorators import require_auth
from ..validation import INTEGER_RE
from .common import error_response, internal_error


audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit-logs")


@audit_bp.get("")
@require_auth
def audit_logs_route():
    """
    Human-readable change history of one row.

    Query params: rowId, tableName (both required)

    Returns:
        200: {"logs": [{id, date, user, action, description}]}
        400: Missing or invalid parameters
    """
    try:
        row_id = request.args.get("rowId", "")
        table_name = request.args.get("tableName", "")
        if not INTEGER_RE.fullmatch(row_id) or not table_name:
            return jsonify({"error": "rowId and tableName are required", "kind": "InvalidInput", "logs": []}), 400

        logs = audit_service.get_history(int(row_id), table_name, g.current_user.id)
        return jsonify({"logs": logs}), 200

    except OperationError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load audit logs")
        return internal_error()
