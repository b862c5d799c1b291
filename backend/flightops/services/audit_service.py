# Overview: Service-layer operations for the column-level audit log.

"""
Audit Log Writer

Invariants:
- Append-only; entries are never updated or deleted.
- Entries are written inside the same DB transaction as the change they record.
- One entry per mutation, carrying every changed column as {old, new}.
- Reads are ordered newest first.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from ..extensions import db
from ..errors import UnauthorizedError
from ..models import AuditLog, Aircraft, User
from ..permissions import Capability
from flightops.time_utils import utcnow, to_utc_z
from . import permission_service


ACTION_INSERT = "INSERT"
ACTION_UPDATE = "UPDATE"
ACTION_DELETE = "DELETE"

FIELD_LABELS = {
    "aircraft_id": "aircraft",
    "instructor_id": "instructor",
    "start_time": "start time",
    "end_time": "end time",
    "purpose": "description",
    "remarks": "remarks",
    "updated_at": "updated at",
}

# Bookkeeping columns never shown in change descriptions
IGNORED_FIELDS = {"updated_at", "created_at", "organization_id", "id", "user_id", "version_id"}


def jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_utc_z(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def snapshot(obj, fields) -> dict:
    """Capture current values of fields before a mutation."""
    return {f: getattr(obj, f) for f in fields}


def diff(before: dict, after_obj) -> dict:
    """
    Column changes between a snapshot and the object's current values.

    Returns {field: {"old": ..., "new": ...}} for fields whose value changed.
    """
    changes = {}
    for field, old in before.items():
        new = getattr(after_obj, field)
        if old != new:
            changes[field] = {"old": jsonable(old), "new": jsonable(new)}
    return changes


def record_changes(
    *,
    table_name: str,
    row_id: int,
    action: str,
    changed_by: int | None,
    column_changes: dict,
    organization_id: int | None = None,
    changed_at: datetime | None = None,
) -> AuditLog | None:
    """
    Append one audit entry. UPDATEs with no column changes are not recorded.
    """
    if action == ACTION_UPDATE and not column_changes:
        return None

    entry = AuditLog(
        organization_id=organization_id,
        table_name=table_name,
        row_id=row_id,
        action=action,
        changed_by=changed_by,
        changed_at=changed_at or utcnow(),
        column_changes=column_changes or None,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def record_insert(*, table_name: str, obj, fields, changed_by: int | None, organization_id: int | None = None) -> AuditLog:
    changes = {
        f: {"old": None, "new": jsonable(getattr(obj, f))}
        for f in fields
        if getattr(obj, f) is not None
    }
    return record_changes(
        table_name=table_name,
        row_id=obj.id,
        action=ACTION_INSERT,
        changed_by=changed_by,
        column_changes=changes,
        organization_id=organization_id,
    )


def list_audit_entries(row_id: int, table_name: str) -> list[AuditLog]:
    return (
        db.session.query(AuditLog)
        .filter_by(row_id=row_id, table_name=table_name)
        .order_by(AuditLog.changed_at.desc(), AuditLog.id.desc())
        .all()
    )


# =============================================================================
# HUMAN-READABLE RENDERING
# =============================================================================

def _format_value(value: Any) -> str:
    if value is None or value == "":
        return "-"
    return str(value)


def _user_names(ids: set) -> dict:
    if not ids:
        return {}
    users = db.session.query(User).filter(User.id.in_(ids)).all()
    return {u.id: u.display_name for u in users}


def _aircraft_registrations(ids: set) -> dict:
    if not ids:
        return {}
    rows = db.session.query(Aircraft).filter(Aircraft.id.in_(ids)).all()
    return {a.id: a.registration for a in rows}


def _collect_ids(entries: list[AuditLog], field: str) -> set:
    ids = set()
    for entry in entries:
        change = (entry.column_changes or {}).get(field)
        if change:
            ids.update(v for v in (change.get("old"), change.get("new")) if v is not None)
    return ids


def describe_entries(entries: list[AuditLog]) -> list[dict]:
    """
    Render audit entries as {date, user, action, description}.

    Aircraft and instructor ids are resolved to registrations and names in
    batch; bookkeeping columns are skipped.
    """
    actor_names = _user_names({e.changed_by for e in entries if e.changed_by})
    registrations = _aircraft_registrations(_collect_ids(entries, "aircraft_id"))
    instructors = _user_names(_collect_ids(entries, "instructor_id"))
    lookups = {"aircraft_id": registrations, "instructor_id": instructors}

    rendered = []
    for entry in entries:
        descriptions = []
        changes = entry.column_changes if entry.action == ACTION_UPDATE else None
        for field, change in (changes or {}).items():
            if field in IGNORED_FIELDS or not isinstance(change, dict):
                continue
            label = FIELD_LABELS.get(field, field.replace("_", " "))
            old, new = change.get("old"), change.get("new")
            mapping = lookups.get(field, {})
            old_display = mapping.get(old) or _format_value(old)
            new_display = mapping.get(new) or _format_value(new)
            descriptions.append(f'{label[0].upper() + label[1:]} changed from "{old_display}" to "{new_display}"')

        if not descriptions:
            noun = entry.table_name.rstrip("s").replace("_", " ").capitalize()
            verb = {ACTION_INSERT: "Created", ACTION_DELETE: "Deleted"}.get(entry.action, "Updated")
            descriptions.append(f"{noun} {verb}")

        rendered.append({
            "id": entry.id,
            "date": to_utc_z(entry.changed_at),
            "user": actor_names.get(entry.changed_by, "Someone"),
            "action": entry.action,
            "description": "; ".join(descriptions),
        })
    return rendered


def get_history(row_id: int, table_name: str, actor_user_id: int | None) -> list[dict]:
    """
    Rendered change history of one row, newest first.

    The actor needs VIEW_AUDIT_LOG in the organization that owns the row.
    """
    if actor_user_id is None:
        raise UnauthorizedError("Authentication required")

    entries = list_audit_entries(row_id, table_name)
    for organization_id in {e.organization_id for e in entries if e.organization_id is not None}:
        permission_service.require_capability(
            actor_user_id, organization_id, Capability.VIEW_AUDIT_LOG, resource=f"{table_name}:{row_id}"
        )
    return describe_entries(entries)
