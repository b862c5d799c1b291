from __future__ import annotations

from ..extensions import db
from flightops.time_utils import to_utc_z


class Booking(db.Model):
    """
    Aircraft booking with lifecycle.

    STATUS: unconfirmed -> confirmed -> briefing -> flying -> complete,
    plus cancelled. complete and cancelled are terminal.

    Bookings in confirmed/briefing/flying hold their aircraft, member and
    instructor exclusively for [start_time, end_time). The guard lives in
    booking_service; the composite indexes below keep its lookups cheap.
    """
    __tablename__ = "bookings"
    __table_args__ = (
        db.CheckConstraint("start_time < end_time", name="ck_bookings_time_order"),
        db.Index("ix_bookings_aircraft_window", "aircraft_id", "status", "start_time", "end_time"),
        db.Index("ix_bookings_user_window", "user_id", "status", "start_time", "end_time"),
        db.Index("ix_bookings_instructor_window", "instructor_id", "status", "start_time", "end_time"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    aircraft_id = db.Column(db.Integer, db.ForeignKey("aircraft.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    instructor_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    start_time = db.Column(db.DateTime(timezone=True), nullable=False)
    end_time = db.Column(db.DateTime(timezone=True), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="unconfirmed", index=True)

    purpose = db.Column(db.String(500), nullable=True)
    remarks = db.Column(db.String(1000), nullable=True)
    flight_type_id = db.Column(db.Integer, db.ForeignKey("flight_types.id"), nullable=True)
    lesson_id = db.Column(db.Integer, db.ForeignKey("lessons.id"), nullable=True)
    booking_type = db.Column(db.String(16), nullable=True)
    briefing_completed = db.Column(db.Boolean, nullable=False, default=False)
    instructor_comment = db.Column(db.Text, nullable=True)

    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancellation_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    aircraft = db.relationship("Aircraft")
    member = db.relationship("User", foreign_keys=[user_id])
    instructor = db.relationship("User", foreign_keys=[instructor_id])
    flight_type = db.relationship("FlightType")
    lesson = db.relationship("Lesson")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "aircraft_id": self.aircraft_id,
            "user_id": self.user_id,
            "instructor_id": self.instructor_id,
            "start_time": to_utc_z(self.start_time),
            "end_time": to_utc_z(self.end_time),
            "status": self.status,
            "purpose": self.purpose,
            "remarks": self.remarks,
            "flight_type_id": self.flight_type_id,
            "lesson_id": self.lesson_id,
            "booking_type": self.booking_type,
            "briefing_completed": self.briefing_completed,
            "instructor_comment": self.instructor_comment,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancellation_reason": self.cancellation_reason,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }


class BookingDetails(db.Model):
    """
    Flight-specific fields captured at check-out (1:1 with Booking).

    Upserted keyed on booking_id by the combined booking write and check-out.
    """
    __tablename__ = "booking_details"
    __table_args__ = (
        db.UniqueConstraint("booking_id", name="uq_booking_details_booking"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=False)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    eta = db.Column(db.DateTime(timezone=True), nullable=True)
    passengers = db.Column(db.String(1000), nullable=True)
    route = db.Column(db.String(1000), nullable=True)
    equipment = db.Column(db.JSON, nullable=True)
    remarks = db.Column(db.String(1000), nullable=True)
    authorization_completed = db.Column(db.Boolean, nullable=False, default=False)
    override_conflict = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    booking = db.relationship("Booking", backref=db.backref("details", uselist=False, lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "booking_id": self.booking_id,
            "organization_id": self.organization_id,
            "eta": to_utc_z(self.eta) if self.eta else None,
            "passengers": self.passengers,
            "route": self.route,
            "equipment": self.equipment,
            "remarks": self.remarks,
            "authorization_completed": self.authorization_completed,
            "override_conflict": self.override_conflict,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
