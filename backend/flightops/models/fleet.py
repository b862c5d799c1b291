from __future__ import annotations

from ..extensions import db
from flightops.time_utils import to_utc_z


class Aircraft(db.Model):
    """
    Aircraft available for booking within an organization.

    Registrations are unique within an organization, not globally.
    """
    __tablename__ = "aircraft"
    __table_args__ = (
        db.UniqueConstraint("organization_id", "registration", name="uq_aircraft_org_registration"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    registration = db.Column(db.String(32), nullable=False)
    type = db.Column(db.String(64), nullable=False)
    model = db.Column(db.String(64), nullable=True)
    manufacturer = db.Column(db.String(64), nullable=True)
    status = db.Column(db.String(32), nullable=False, default="active")

    # Tach / hobbs in tenths of an hour
    current_tach = db.Column(db.Numeric(10, 1), nullable=False, default=0)
    current_hobbs = db.Column(db.Numeric(10, 1), nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    organization = db.relationship("Organization", backref=db.backref("aircraft", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "registration": self.registration,
            "type": self.type,
            "model": self.model,
            "manufacturer": self.manufacturer,
            "status": self.status,
            "current_tach": str(self.current_tach) if self.current_tach is not None else None,
            "current_hobbs": str(self.current_hobbs) if self.current_hobbs is not None else None,
            "created_at": to_utc_z(self.created_at),
        }


class FlightType(db.Model):
    __tablename__ = "flight_types"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)
    description = db.Column(db.String(512), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "description": self.description,
        }


class Lesson(db.Model):
    """Syllabus lesson a training booking can be attached to."""
    __tablename__ = "lessons"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)
    description = db.Column(db.String(512), nullable=True)
    duration_minutes = db.Column(db.Integer, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "description": self.description,
            "duration_minutes": self.duration_minutes,
        }
