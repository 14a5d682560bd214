"""Message lifecycle constants.

Status and trigger values are stored as plain strings so the schema stays
portable between PostgreSQL and SQLite.

Lifecycle
---------
draft     -> scheduled -> sent
draft     -> sent
scheduled -> scheduled   (posthumous message converted to a dated release)
"""
from __future__ import annotations

STATUS_DRAFT = "draft"
STATUS_SCHEDULED = "scheduled"
STATUS_SENT = "sent"

VALID_STATUSES: frozenset[str] = frozenset({STATUS_DRAFT, STATUS_SCHEDULED, STATUS_SENT})

TRIGGER_MANUAL = "manual"
TRIGGER_SCHEDULED = "scheduled"
TRIGGER_POSTHUMOUS = "posthumous"

VALID_TRIGGERS: frozenset[str] = frozenset({TRIGGER_MANUAL, TRIGGER_SCHEDULED, TRIGGER_POSTHUMOUS})

# Allowed transitions: current_status -> {valid target statuses}
STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    STATUS_DRAFT: frozenset({STATUS_SCHEDULED, STATUS_SENT}),
    STATUS_SCHEDULED: frozenset({STATUS_SCHEDULED, STATUS_SENT}),
}


def can_transition(current_status: str, to_status: str) -> bool:
    """Return whether *current_status* -> *to_status* is allowed."""
    return to_status in STATUS_TRANSITIONS.get(current_status, frozenset())
