# Overview: Housekeeping jobs; security event retention cleanup.

from __future__ import annotations

import logging
from datetime import timedelta

from ..extensions import db
from ..models import SecurityEvent
from ..time_utils import utcnow


logger = logging.getLogger(__name__)


def cleanup_security_events(*, retention_days: int = 90) -> int:
    """Delete security events older than retention_days."""
    if retention_days < 0:
        raise ValueError("retention_days must be >= 0")
    cutoff = utcnow() - timedelta(days=retention_days)
    deleted = db.session.query(SecurityEvent).filter(
        SecurityEvent.occurred_at < cutoff
    ).delete()
    db.session.commit()
    logger.info("Deleted %s security event(s) older than %s days", deleted, retention_days)
    return deleted
