# Overview: Service-layer operations for permission; encapsulates business logic and database work.

"""
Organization-scoped authorization and security event logging.

WHY: Every mutation of bookings, invoices and payments is gated on the
actor's role inside the organization that owns the entity. Denials are
written to security_events for monitoring.

DESIGN PRINCIPLES:
- Fail closed: no membership means no access
- Log denials only: grants are not logged
- Role -> capability mapping comes from flightops.permissions
"""

from ..extensions import db
from ..errors import ForbiddenError, UnauthorizedError
from ..models import OrganizationMembership, SecurityEvent
from ..permissions import Capability, role_has_capability
from flightops.time_utils import utcnow


def log_security_event(
    user_id: int | None,
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    organization_id: int | None = None,
) -> SecurityEvent:
    """
    Log security event to audit trail.

    event_type examples:
    - PERMISSION_DENIED
    - NOT_A_MEMBER
    - LOGIN_FAILED
    - LOGOUT
    """
    event = SecurityEvent(
        user_id=user_id,
        organization_id=organization_id,
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent,
        occurred_at=utcnow(),
    )

    db.session.add(event)
    db.session.commit()

    return event


def get_membership(user_id: int, organization_id: int) -> OrganizationMembership | None:
    return db.session.query(OrganizationMembership).filter_by(
        user_id=user_id,
        organization_id=organization_id,
    ).first()


def get_user_role(user_id: int, organization_id: int) -> str | None:
    membership = get_membership(user_id, organization_id)
    return membership.role if membership else None


def is_member(user_id: int, organization_id: int) -> bool:
    return get_membership(user_id, organization_id) is not None


def require_capability(
    actor_user_id: int | None,
    organization_id: int,
    capability: Capability,
    *,
    resource: str | None = None,
) -> str:
    """
    Require the actor to hold capability inside organization_id.

    Returns the actor's role.

    Raises:
        UnauthorizedError: no actor
        ForbiddenError: not a member, or role lacks the capability
    """
    if actor_user_id is None:
        raise UnauthorizedError("Authentication required")

    membership = get_membership(actor_user_id, organization_id)
    if membership is None:
        log_security_event(
            user_id=actor_user_id,
            event_type="NOT_A_MEMBER",
            success=False,
            resource=resource,
            action=capability.value,
            reason="Actor is not a member of the organization",
            organization_id=organization_id,
        )
        raise ForbiddenError("Forbidden: Not a member of this organization")

    if not role_has_capability(membership.role, capability):
        log_security_event(
            user_id=actor_user_id,
            event_type="PERMISSION_DENIED",
            success=False,
            resource=resource,
            action=capability.value,
            reason=f"Role '{membership.role}' lacks {capability.value}",
            organization_id=organization_id,
        )
        raise ForbiddenError("Forbidden: Insufficient role")

    return membership.role
