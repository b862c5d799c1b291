# Overview: Flask API routes for bookings operations; parses input and returns JSON responses.

"""
Booking API Routes

DESIGN:
- Create, read and patch bookings
- Combined booking + details write (debrief / edit screens)
- Atomic check-out: booking + details + status -> flying
- Cancel (only path to the cancelled status)

SECURITY:
- Writes require a staff role (owner, admin, instructor) in the booking's organization
- Reads are open to staff and to the booked member
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import InvalidInputError, OperationError
from ..services import booking_service
from ..decorators import require_auth
from ..time_utils import parse_iso_datetime
from .common import error_response, internal_error, json_body, int_arg


bookings_bp = Blueprint("bookings", __name__, url_prefix="/api/bookings")


def _combined_parts(data: dict) -> tuple[dict | None, dict | None]:
    booking_patch = data.get("booking")
    details_patch = data.get("details", data.get("bookingDetails"))
    if booking_patch is not None and not isinstance(booking_patch, dict):
        raise InvalidInputError("booking must be an object")
    if details_patch is not None and not isinstance(details_patch, dict):
        raise InvalidInputError("details must be an object")
    return booking_patch, details_patch


def _combined_response(booking, details):
    return jsonify({
        "booking": booking.to_dict(),
        "bookingDetails": details.to_dict() if details else None,
    }), 200


@bookings_bp.post("")
@require_auth
def create_booking_route():
    """
    Create a booking.

    Request body:
    {
        "organization_id": 1,
        "aircraft_id": 3,
        "user_id": 12,
        "instructor_id": 4,  (optional)
        "start_time": "2026-03-01T09:00:00Z",
        "end_time": "2026-03-01T11:00:00Z",
        "status": "confirmed",  (optional, default unconfirmed)
        "purpose": "Circuits"
    }
    """
    try:
        data = dict(json_body())
        organization_id = data.pop("organization_id", None)
        if isinstance(organization_id, bool) or not isinstance(organization_id, int):
            raise InvalidInputError("organization_id must be an integer")

        booking = booking_service.create_booking(organization_id, data, g.current_user.id)
        return jsonify({"booking": booking.to_dict()}), 201

    except OperationError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create booking")
        return internal_error()


@bookings_bp.get("")
@require_auth
def list_bookings_route():
    """
    Bookings overlapping a time window.

    Query params: organization_id (required), from, to, aircraft_id, status
    """
    try:
        organization_id = int_arg("organization_id", required=True)
        try:
            window_start = parse_iso_datetime(request.args.get("from"))
            window_end = parse_iso_datetime(request.args.get("to"))
        except ValueError:
            raise InvalidInputError("from/to must be ISO-8601 datetimes")

        bookings = booking_service.list_bookings(
            organization_id,
            g.current_user.id,
            window_start=window_start,
            window_end=window_end,
            aircraft_id=int_arg("aircraft_id"),
            status=request.args.get("status") or None,
        )
        return jsonify({"bookings": [b.to_dict() for b in bookings]}), 200

    except OperationError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list bookings")
        return internal_error()


@bookings_bp.get("/<int:booking_id>")
@require_auth
def get_booking_route(booking_id: int):
    try:
        booking = booking_service.get_booking(booking_id, g.current_user.id)
        return jsonify({"booking": booking.to_dict()}), 200

    except OperationError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load booking")
        return internal_error()


@bookings_bp.patch("/<int:booking_id>")
@require_auth
def update_booking_route(booking_id: int):
    """
    Patch booking fields.

    Writable: aircraft_id, start_time, end_time, status, purpose, remarks,
    flight_type_id, lesson_id, booking_type, briefing_completed,
    instructor_comment.

    Returns:
        200: Updated booking
        400: Invalid input
        403: Not staff in the booking's organization
        404: Booking or referenced entity not found
        409: Double booking, or booking is complete/cancelled
    """
    try:
        booking = booking_service.validate_and_update_booking(booking_id, json_body(), g.current_user.id)
        return jsonify({"booking": booking.to_dict()}), 200

    except OperationError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update booking")
        return internal_error()


@bookings_bp.post("/<int:booking_id>")
@require_auth
def save_booking_and_details_route(booking_id: int):
    """
    Combined write.

    Request body:
    {
        "booking": {...},  (optional; scheduling fields only)
        "details": {...}   (optional; eta, passengers, route, equipment, remarks,
                            authorization_completed, override_conflict)
    }
    """
    try:
        booking_patch, details_patch = _combined_parts(json_body())
        booking, details = booking_service.save_booking_and_details(
            booking_id, booking_patch, details_patch, g.current_user.id
        )
        return _combined_response(booking, details)

    except OperationError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to save booking and details")
        return internal_error()


@bookings_bp.get("/<int:booking_id>/details")
@require_auth
def get_booking_details_route(booking_id: int):
    try:
        details = booking_service.get_booking_details(booking_id, g.current_user.id)
        return jsonify({"bookingDetails": details.to_dict() if details else None}), 200

    except OperationError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load booking details")
        return internal_error()


@bookings_bp.post("/<int:booking_id>/check-out")
@require_auth
def check_out_booking_route(booking_id: int):
    """
    Check a flight out. Same body as the combined write; status becomes flying.
    """
    try:
        booking_patch, details_patch = _combined_parts(json_body())
        booking, details = booking_service.check_out_booking(
            booking_id, booking_patch, details_patch, g.current_user.id
        )
        return _combined_response(booking, details)

    except OperationError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to check out booking")
        return internal_error()


@bookings_bp.post("/<int:booking_id>/cancel")
@require_auth
def cancel_booking_route(booking_id: int):
    """
    Cancel a booking.

    Request body: {"reason": "Weather"}  (optional)
    """
    try:
        data = json_body()
        booking = booking_service.cancel_booking(booking_id, g.current_user.id, data.get("reason"))
        return jsonify({"booking": booking.to_dict()}), 200

    except OperationError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel booking")
        return internal_error()
