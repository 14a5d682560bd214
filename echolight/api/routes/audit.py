"""Audit trail routes.

GET /audit/recent                 newest events first, optionally by type
GET /audit/{message_id}/history   every event recorded for one message
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from echolight.api.deps import get_db
from echolight.audit.audit_log import get_message_history
from echolight.audit.events import VALID_EVENT_TYPES
from echolight.db.models import AuditEvent

router = APIRouter(prefix="/audit", tags=["audit"])


def _as_json(event: AuditEvent) -> dict:
    return {
        "event_type": event.event_type,
        "actor": event.actor,
        "user_id": event.user_id,
        "message_id": event.message_id,
        "detail": event.detail,
        "timestamp": event.timestamp.isoformat() if event.timestamp else None,
    }


@router.get("/recent", summary="Most recent release engine events")
def recent_events(
    limit: int = Query(default=10, ge=1, le=200),
    event_type: str | None = None,
    db: Session = Depends(get_db),
):
    stmt = select(AuditEvent).order_by(AuditEvent.timestamp.desc()).limit(limit)
    if event_type is not None:
        if event_type not in VALID_EVENT_TYPES:
            raise HTTPException(status_code=400, detail=f"Unknown event type {event_type!r}")
        stmt = stmt.where(AuditEvent.event_type == event_type)
    return [_as_json(event) for event in db.execute(stmt).scalars()]


@router.get("/{message_id}/history", summary="Audit history of one message")
def message_history(message_id: str, db: Session = Depends(get_db)):
    events = get_message_history(db, message_id)
    if not events:
        raise HTTPException(status_code=404, detail=f"No audit history for message {message_id}")
    return [_as_json(event) for event in events]
