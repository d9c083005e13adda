# Overview: Append-only audit trail for security-relevant admin events.

from __future__ import annotations

from ..extensions import db
from ..models import SecurityEvent
from ..time_utils import utcnow


def log_security_event(
    event_type: str,
    success: bool,
    resource: str | None = None,
    action: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> SecurityEvent:
    """
    Record a security event.

    event_type examples:
    - RATE_LIMITED
    - ORDER_STATUS_CHANGED
    - PAYMENT_STATUS_CHANGED
    - PRODUCT_RETIRED
    """
    event = SecurityEvent(
        event_type=event_type,
        resource=resource,
        action=action,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=user_agent[:512] if user_agent else None,
        occurred_at=utcnow(),
    )

    db.session.add(event)
    db.session.commit()

    return event

