from __future__ import annotations

from ..extensions import db
from flightops.time_utils import to_utc_z


class AuditLog(db.Model):
    """
    Column-level change history for audited tables (bookings, booking_details).

    column_changes maps field name -> {"old": ..., "new": ...}.
    Written in the same transaction as the change it describes.

    IMMUTABLE: Append-only.
    """
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_row", "table_name", "row_id", "changed_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=True, index=True)
    table_name = db.Column(db.String(64), nullable=False)
    row_id = db.Column(db.Integer, nullable=False)
    action = db.Column(db.String(16), nullable=False)  # INSERT, UPDATE, DELETE
    changed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    changed_at = db.Column(db.DateTime(timezone=True), nullable=False)
    column_changes = db.Column(db.JSON, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "table_name": self.table_name,
            "row_id": self.row_id,
            "action": self.action,
            "changed_by": self.changed_by,
            "changed_at": to_utc_z(self.changed_at),
            "column_changes": self.column_changes,
        }
