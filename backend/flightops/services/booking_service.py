# Overview: Service-layer operations for bookings; encapsulates business logic and database work.

"""
Booking Lifecycle Service

STATE MACHINE:
    unconfirmed -> confirmed -> briefing -> flying -> complete
          \\-> cancelled (from any non-terminal state, via cancel_booking)

RULES:
1. Any of the five scheduling statuses may be written while the booking is
   not terminal; strict adjacency is not enforced.
2. complete and cancelled are terminal: no further mutation.
3. Bookings in ACTIVE_STATUSES hold their aircraft, member and instructor
   exclusively for [start_time, end_time). Touching endpoints do not overlap.
4. The exclusion check runs after locking the aircraft and user rows the
   booking depends on, so concurrent writers for one resource serialise.
5. Every mutated column is written to the audit log in the same transaction.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..errors import (
    ConflictError,
    ImmutableError,
    NotFoundError,
    UnauthorizedError,
    ForbiddenError,
)
from ..models import Aircraft, Booking, BookingDetails, FlightType, Lesson, User
from ..permissions import Capability, is_staff_role, role_has_capability
from ..validation import ModelValidationPolicy, ValidationError, validate_payload
from flightops.time_utils import to_utc_naive, utcnow
from . import audit_service, permission_service
from .concurrency import lock_for_update, run_with_retry


# =============================================================================
# STATUSES (CONSTANTS)
# =============================================================================

STATUS_UNCONFIRMED = "unconfirmed"
STATUS_CONFIRMED = "confirmed"
STATUS_BRIEFING = "briefing"
STATUS_FLYING = "flying"
STATUS_COMPLETE = "complete"
STATUS_CANCELLED = "cancelled"

SCHEDULING_STATUSES = {
    STATUS_UNCONFIRMED,
    STATUS_CONFIRMED,
    STATUS_BRIEFING,
    STATUS_FLYING,
    STATUS_COMPLETE,
}
TERMINAL_STATUSES = {STATUS_COMPLETE, STATUS_CANCELLED}
ACTIVE_STATUSES = {STATUS_CONFIRMED, STATUS_BRIEFING, STATUS_FLYING}

BOOKING_TYPES = {"flight", "groundwork", "maintenance", "other"}

BOOKINGS_TABLE = "bookings"
DETAILS_TABLE = "booking_details"

CONFLICT_MESSAGE = "This resource (aircraft, user, or instructor) is already booked for the selected time range."


# =============================================================================
# INPUT POLICIES
# =============================================================================

_SCHEDULING_FIELDS = {
    "aircraft_id",
    "start_time",
    "end_time",
    "purpose",
    "remarks",
    "flight_type_id",
    "lesson_id",
    "booking_type",
}

UPDATE_POLICY = ModelValidationPolicy(
    writable_fields=_SCHEDULING_FIELDS | {"status", "briefing_completed", "instructor_comment"},
    choices={"status": SCHEDULING_STATUSES, "booking_type": BOOKING_TYPES},
)

CREATE_POLICY = ModelValidationPolicy(
    writable_fields=UPDATE_POLICY.writable_fields | {"user_id", "instructor_id"},
    required_on_create={"aircraft_id", "user_id", "start_time", "end_time"},
    choices=UPDATE_POLICY.choices,
)

# Check-out edits scheduling fields only; status is driven by the operation itself
CHECKOUT_BOOKING_POLICY = ModelValidationPolicy(
    writable_fields=set(_SCHEDULING_FIELDS),
    choices={"booking_type": BOOKING_TYPES},
)

DETAILS_POLICY = ModelValidationPolicy(
    writable_fields={
        "eta",
        "passengers",
        "route",
        "equipment",
        "remarks",
        "authorization_completed",
        "override_conflict",
    },
)

_DETAIL_FIELDS = sorted(DETAILS_POLICY.writable_fields)


# =============================================================================
# LOOKUPS
# =============================================================================

def _require_actor(actor_user_id: int | None) -> None:
    if actor_user_id is None:
        raise UnauthorizedError("Authentication required")


def _load_booking(booking_id: int, *, lock: bool = False) -> Booking:
    query = db.session.query(Booking).filter_by(id=booking_id)
    if lock:
        query = lock_for_update(query)
    booking = query.first()
    if not booking:
        raise NotFoundError("Booking not found")
    return booking


def _resolve_references(organization_id: int, patch: dict) -> None:
    """Aircraft, flight type and lesson must all belong to the booking's organization."""
    if "aircraft_id" in patch:
        aircraft = db.session.query(Aircraft).filter_by(
            id=patch["aircraft_id"], organization_id=organization_id
        ).first()
        if not aircraft:
            raise NotFoundError("Invalid aircraft")

    if patch.get("flight_type_id") is not None:
        if not db.session.query(FlightType).filter_by(
            id=patch["flight_type_id"], organization_id=organization_id
        ).first():
            raise NotFoundError("Invalid flight type")

    if patch.get("lesson_id") is not None:
        if not db.session.query(Lesson).filter_by(
            id=patch["lesson_id"], organization_id=organization_id
        ).first():
            raise NotFoundError("Invalid lesson")


def _assert_mutable(booking: Booking) -> None:
    if booking.status in TERMINAL_STATUSES:
        raise ImmutableError("Cannot update completed or cancelled bookings")


# =============================================================================
# TEMPORAL EXCLUSION
# =============================================================================

def intervals_overlap(a_start, a_end, b_start, b_end) -> bool:
    """Half-open [start, end) overlap: touching endpoints do not conflict."""
    return a_start < b_end and b_start < a_end


def _lock_resources(aircraft_id: int, user_id: int, instructor_id: int | None) -> None:
    lock_for_update(db.session.query(Aircraft).filter_by(id=aircraft_id)).first()
    user_ids = [uid for uid in (user_id, instructor_id) if uid is not None]
    lock_for_update(db.session.query(User).filter(User.id.in_(user_ids))).all()


def find_conflicts(
    *,
    aircraft_id: int,
    user_id: int,
    instructor_id: int | None,
    start_time,
    end_time,
    exclude_booking_id: int | None = None,
) -> list[Booking]:
    """
    ACTIVE bookings sharing the aircraft, member or instructor whose
    interval overlaps [start_time, end_time).
    """
    resource_match = [Booking.aircraft_id == aircraft_id, Booking.user_id == user_id]
    if instructor_id is not None:
        resource_match.append(Booking.instructor_id == instructor_id)

    query = db.session.query(Booking).filter(
        Booking.status.in_(ACTIVE_STATUSES),
        Booking.start_time < end_time,
        Booking.end_time > start_time,
        or_(*resource_match),
    )
    if exclude_booking_id is not None:
        query = query.filter(Booking.id != exclude_booking_id)
    return query.order_by(Booking.start_time).all()


def _assert_available(values: dict, *, exclude_booking_id: int | None = None) -> None:
    if values["start_time"] >= values["end_time"]:
        raise ValidationError("start_time must be before end_time")

    if values["status"] not in ACTIVE_STATUSES:
        return

    _lock_resources(values["aircraft_id"], values["user_id"], values.get("instructor_id"))
    conflicts = find_conflicts(
        aircraft_id=values["aircraft_id"],
        user_id=values["user_id"],
        instructor_id=values.get("instructor_id"),
        start_time=values["start_time"],
        end_time=values["end_time"],
        exclude_booking_id=exclude_booking_id,
    )
    if not conflicts:
        return

    resources = set()
    for other in conflicts:
        if other.aircraft_id == values["aircraft_id"]:
            resources.add("aircraft")
        if other.user_id == values["user_id"]:
            resources.add("user")
        if values.get("instructor_id") is not None and other.instructor_id == values["instructor_id"]:
            resources.add("instructor")

    raise ConflictError(
        CONFLICT_MESSAGE,
        details={
            "conflicting_booking_ids": [b.id for b in conflicts],
            "resources": sorted(resources),
        },
    )


# =============================================================================
# MUTATION HELPERS
# =============================================================================

def _apply_booking_patch(booking: Booking, patch: dict, actor_user_id: int) -> Booking:
    """
    Validate cross-entity rules for patch, apply it and audit the changes.

    Caller owns the transaction.
    """
    _resolve_references(booking.organization_id, patch)
    _assert_mutable(booking)

    merged = {
        field: patch.get(field, getattr(booking, field))
        for field in ("aircraft_id", "user_id", "instructor_id", "start_time", "end_time", "status")
    }
    # Postgres hands back aware values for timestamptz columns; patches are naive UTC
    merged["start_time"] = to_utc_naive(merged["start_time"])
    merged["end_time"] = to_utc_naive(merged["end_time"])
    _assert_available(merged, exclude_booking_id=booking.id)

    before = audit_service.snapshot(booking, patch.keys())
    for field, value in patch.items():
        setattr(booking, field, value)

    changes = audit_service.diff(before, booking)
    if not changes:
        return booking

    previous_updated_at = booking.updated_at
    booking.updated_at = utcnow()
    changes["updated_at"] = {
        "old": audit_service.jsonable(previous_updated_at),
        "new": audit_service.jsonable(booking.updated_at),
    }
    db.session.flush()

    audit_service.record_changes(
        table_name=BOOKINGS_TABLE,
        row_id=booking.id,
        action=audit_service.ACTION_UPDATE,
        changed_by=actor_user_id,
        column_changes=changes,
        organization_id=booking.organization_id,
    )
    return booking


def _normalize_details_payload(payload) -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid booking details data")
    payload = dict(payload)
    if "overrideConflict" in payload:
        payload.setdefault("override_conflict", payload.pop("overrideConflict"))
    return payload


def _upsert_details(booking: Booking, patch: dict, actor_user_id: int) -> BookingDetails:
    details = lock_for_update(
        db.session.query(BookingDetails).filter_by(booking_id=booking.id)
    ).first()
    now = utcnow()

    if details is None:
        details = BookingDetails(
            booking_id=booking.id,
            organization_id=booking.organization_id,
            authorization_completed=False,
            override_conflict=False,
            created_at=now,
            updated_at=now,
        )
        for field, value in patch.items():
            setattr(details, field, value)
        db.session.add(details)
        db.session.flush()
        audit_service.record_insert(
            table_name=DETAILS_TABLE,
            obj=details,
            fields=_DETAIL_FIELDS,
            changed_by=actor_user_id,
            organization_id=booking.organization_id,
        )
        return details

    before = audit_service.snapshot(details, patch.keys())
    for field, value in patch.items():
        setattr(details, field, value)
    changes = audit_service.diff(before, details)
    if changes:
        details.updated_at = now
        db.session.flush()
        audit_service.record_changes(
            table_name=DETAILS_TABLE,
            row_id=details.id,
            action=audit_service.ACTION_UPDATE,
            changed_by=actor_user_id,
            column_changes=changes,
            organization_id=booking.organization_id,
        )
    return details


# =============================================================================
# OPERATIONS
# =============================================================================

def create_booking(organization_id: int, fields: dict, actor_user_id: int | None) -> Booking:
    """
    Create a booking in an organization.

    Status defaults to unconfirmed. The member and instructor must belong
    to the organization; the instructor must hold a staff role.

    Raises:
        UnauthorizedError, ForbiddenError, ValidationError, NotFoundError, ConflictError
    """
    _require_actor(actor_user_id)

    def _op():
        permission_service.require_capability(
            actor_user_id, organization_id, Capability.MANAGE_BOOKINGS, resource="bookings"
        )
        cleaned = validate_payload(model=Booking, payload=fields, policy=CREATE_POLICY, partial=False)
        cleaned.setdefault("status", STATUS_UNCONFIRMED)

        _resolve_references(organization_id, cleaned)

        if not permission_service.is_member(cleaned["user_id"], organization_id):
            raise NotFoundError("Member not found in this organization")

        instructor_id = cleaned.get("instructor_id")
        if instructor_id is not None:
            if not is_staff_role(permission_service.get_user_role(instructor_id, organization_id)):
                raise NotFoundError("Instructor not found in this organization")

        values = {
            "aircraft_id": cleaned["aircraft_id"],
            "user_id": cleaned["user_id"],
            "instructor_id": instructor_id,
            "start_time": cleaned["start_time"],
            "end_time": cleaned["end_time"],
            "status": cleaned["status"],
        }
        _assert_available(values)

        now = utcnow()
        booking = Booking(organization_id=organization_id, created_at=now, updated_at=now, **cleaned)
        db.session.add(booking)
        db.session.flush()

        audit_service.record_insert(
            table_name=BOOKINGS_TABLE,
            obj=booking,
            fields=sorted(CREATE_POLICY.writable_fields),
            changed_by=actor_user_id,
            organization_id=organization_id,
        )
        db.session.commit()
        current_app.logger.info("Booking %s created by user %s", booking.id, actor_user_id)
        return booking

    return run_with_retry(_op)


def validate_and_update_booking(booking_id: int, patch: dict, actor_user_id: int | None) -> Booking:
    """
    Apply a partial booking patch after validation.

    Raises:
        UnauthorizedError: no actor
        NotFoundError: booking, aircraft, flight type or lesson not found
        ForbiddenError: actor not staff in the booking's organization
        ValidationError: bad shape, enum value, or start >= end
        ImmutableError: booking is complete or cancelled
        ConflictError: resource already booked for an overlapping window
    """
    _require_actor(actor_user_id)

    def _op():
        booking = _load_booking(booking_id, lock=True)
        permission_service.require_capability(
            actor_user_id, booking.organization_id, Capability.MANAGE_BOOKINGS, resource=f"booking:{booking_id}"
        )
        cleaned = validate_payload(model=Booking, payload=patch, policy=UPDATE_POLICY, partial=True)

        _apply_booking_patch(booking, cleaned, actor_user_id)
        db.session.commit()
        return booking

    return run_with_retry(_op)


def cancel_booking(booking_id: int, actor_user_id: int | None, reason: str | None = None) -> Booking:
    """
    Move a booking to cancelled (terminal). Releases its resources.

    Raises:
        ImmutableError: booking already complete or cancelled
    """
    _require_actor(actor_user_id)
    if reason is not None and (not isinstance(reason, str) or len(reason) > 255):
        raise ValidationError("reason must be a string of at most 255 characters")

    def _op():
        booking = _load_booking(booking_id, lock=True)
        permission_service.require_capability(
            actor_user_id, booking.organization_id, Capability.MANAGE_BOOKINGS, resource=f"booking:{booking_id}"
        )
        _assert_mutable(booking)

        before = audit_service.snapshot(booking, ["status", "cancelled_at", "cancellation_reason", "updated_at"])
        now = utcnow()
        booking.status = STATUS_CANCELLED
        booking.cancelled_at = now
        booking.cancellation_reason = reason
        booking.updated_at = now
        db.session.flush()

        audit_service.record_changes(
            table_name=BOOKINGS_TABLE,
            row_id=booking.id,
            action=audit_service.ACTION_UPDATE,
            changed_by=actor_user_id,
            column_changes=audit_service.diff(before, booking),
            organization_id=booking.organization_id,
        )
        db.session.commit()
        current_app.logger.info("Booking %s cancelled by user %s", booking.id, actor_user_id)
        return booking

    return run_with_retry(_op)


def _save_combined(
    booking_id: int,
    booking_patch: dict | None,
    details_patch: dict | None,
    actor_user_id: int | None,
    *,
    check_out: bool,
) -> tuple[Booking, BookingDetails | None]:
    _require_actor(actor_user_id)

    def _op():
        booking = _load_booking(booking_id, lock=True)
        permission_service.require_capability(
            actor_user_id, booking.organization_id, Capability.MANAGE_BOOKINGS, resource=f"booking:{booking_id}"
        )

        # Validate both payloads before any write
        cleaned_booking = None
        if booking_patch is not None:
            cleaned_booking = validate_payload(
                model=Booking, payload=booking_patch, policy=CHECKOUT_BOOKING_POLICY, partial=True
            )
        cleaned_details = None
        if details_patch is not None:
            cleaned_details = validate_payload(
                model=BookingDetails,
                payload=_normalize_details_payload(details_patch),
                policy=DETAILS_POLICY,
                partial=True,
            )

        _assert_mutable(booking)

        if cleaned_booking is not None:
            _apply_booking_patch(booking, cleaned_booking, actor_user_id)

        details = None
        if cleaned_details is not None:
            details = _upsert_details(booking, cleaned_details, actor_user_id)
        elif check_out:
            details = db.session.query(BookingDetails).filter_by(booking_id=booking.id).first()

        if check_out:
            _apply_booking_patch(booking, {"status": STATUS_FLYING}, actor_user_id)

        db.session.commit()
        return booking, details

    return run_with_retry(_op)


def save_booking_and_details(
    booking_id: int,
    booking_patch: dict | None,
    details_patch: dict | None,
    actor_user_id: int | None,
) -> tuple[Booking, BookingDetails | None]:
    """
    Patch scheduling fields and upsert BookingDetails in one transaction.

    Returns (booking, details); details is None when no details were sent.
    """
    return _save_combined(booking_id, booking_patch, details_patch, actor_user_id, check_out=False)


def check_out_booking(
    booking_id: int,
    booking_patch: dict | None,
    details_patch: dict | None,
    actor_user_id: int | None,
) -> tuple[Booking, BookingDetails | None]:
    """
    Check a flight out: save booking/details changes and move status to flying.

    All three writes commit together; a failure in any of them (e.g. the
    flying transition conflicts with another active booking) leaves the
    booking and its details untouched.
    """
    return _save_combined(booking_id, booking_patch, details_patch, actor_user_id, check_out=True)


# =============================================================================
# READS
# =============================================================================

def _require_view(booking: Booking, actor_user_id: int | None) -> None:
    _require_actor(actor_user_id)
    role = permission_service.get_user_role(actor_user_id, booking.organization_id)
    if role is None:
        raise ForbiddenError("Forbidden: Not a member of this organization")
    if not role_has_capability(role, Capability.VIEW_BOOKINGS) and booking.user_id != actor_user_id:
        raise ForbiddenError("Forbidden: Insufficient role")


def get_booking(booking_id: int, actor_user_id: int | None) -> Booking:
    booking = _load_booking(booking_id)
    _require_view(booking, actor_user_id)
    return booking


def get_booking_details(booking_id: int, actor_user_id: int | None) -> BookingDetails | None:
    booking = _load_booking(booking_id)
    _require_view(booking, actor_user_id)
    return db.session.query(BookingDetails).filter_by(booking_id=booking_id).first()


def list_bookings(
    organization_id: int,
    actor_user_id: int | None,
    *,
    window_start=None,
    window_end=None,
    aircraft_id: int | None = None,
    status: str | None = None,
) -> list[Booking]:
    """
    Bookings in an organization, optionally limited to those overlapping
    [window_start, window_end). Members and students only see their own.
    """
    _require_actor(actor_user_id)
    role = permission_service.get_user_role(actor_user_id, organization_id)
    if role is None:
        raise ForbiddenError("Forbidden: Not a member of this organization")

    query = db.session.query(Booking).filter_by(organization_id=organization_id)
    if not role_has_capability(role, Capability.VIEW_BOOKINGS):
        query = query.filter(Booking.user_id == actor_user_id)
    if window_end is not None:
        query = query.filter(Booking.start_time < window_end)
    if window_start is not None:
        query = query.filter(Booking.end_time > window_start)
    if aircraft_id is not None:
        query = query.filter(Booking.aircraft_id == aircraft_id)
    if status is not None:
        query = query.filter(Booking.status == status)
    return query.order_by(Booking.start_time, Booking.id).all()
