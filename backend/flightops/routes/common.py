# Overview: Shared helpers for API routes.

from flask import jsonify, request

from ..errors import OperationError, InvalidInputError
from ..validation import INTEGER_RE


def error_response(exc: OperationError):
    return jsonify(exc.to_dict()), exc.status_code


def internal_error():
    return jsonify({"error": "Internal server error", "kind": "Internal"}), 500


def json_body() -> dict:
    """Request JSON object; a missing or non-object body is an input error."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidInputError("Invalid JSON payload")
    return data


def int_arg(name: str, *, required: bool = False) -> int | None:
    raw = request.args.get(name)
    if raw is None or raw == "":
        if required:
            raise InvalidInputError(f"{name} query parameter is required")
        return None
    if not INTEGER_RE.fullmatch(raw.strip()):
        raise InvalidInputError(f"{name} must be an integer")
    return int(raw)
