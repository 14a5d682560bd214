"""Append-only audit logger.

Provides ``record_event()`` to persist ``AuditEvent`` rows.
All writes are immutable (``immutable=True`` always).

Safety: ``detail`` payloads are never logged, only event_type and actor.
"""
from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from echolight.audit.events import EVENT_RELEASE_REQUESTED, VALID_EVENT_TYPES
from echolight.db.models import AuditEvent

logger = logging.getLogger(__name__)


def record_event(
    db_session: Session,
    event_type: str,
    actor: str,
    user_id: str | None = None,
    message_id: str | None = None,
    detail: dict | None = None,
) -> AuditEvent:
    """Create and persist an immutable ``AuditEvent``.

    Raises ``ValueError`` for invalid inputs.  Flushes but does **not**
    commit; the caller controls the transaction boundary.
    """
    if event_type not in VALID_EVENT_TYPES:
        raise ValueError(
            f"Invalid event_type {event_type!r}; "
            f"must be one of {sorted(VALID_EVENT_TYPES)}"
        )

    if not actor or not actor.strip():
        raise ValueError("actor must be a non-empty string")

    if event_type == EVENT_RELEASE_REQUESTED and not user_id:
        raise ValueError("user_id is required for release_requested events")

    event = AuditEvent(
        event_type=event_type,
        actor=actor,
        user_id=user_id,
        message_id=message_id,
        detail=detail,
        immutable=True,
    )
    db_session.add(event)
    db_session.flush()

    logger.info("Audit event recorded: type=%s actor=%s", event_type, actor)
    return event


def get_message_history(
    db_session: Session,
    message_id: str,
) -> list[AuditEvent]:
    """Return all ``AuditEvent`` rows for *message_id*, ordered by timestamp."""
    stmt = (
        select(AuditEvent)
        .where(AuditEvent.message_id == message_id)
        .order_by(AuditEvent.timestamp.asc())
    )
    return list(db_session.execute(stmt).scalars().all())


def get_events_by_type(
    db_session: Session,
    event_type: str,
) -> list[AuditEvent]:
    """Return all ``AuditEvent`` rows of *event_type*, ordered by timestamp."""
    if event_type not in VALID_EVENT_TYPES:
        raise ValueError(
            f"Invalid event_type {event_type!r}; "
            f"must be one of {sorted(VALID_EVENT_TYPES)}"
        )
    stmt = (
        select(AuditEvent)
        .where(AuditEvent.event_type == event_type)
        .order_by(AuditEvent.timestamp.asc())
    )
    return list(db_session.execute(stmt).scalars().all())
