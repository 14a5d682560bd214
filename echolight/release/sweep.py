"""Scheduled sweep.

Runs on an external fixed interval (hourly by default).  Finds messages with
``status = scheduled``, ``trigger = scheduled`` and ``delivery_date <= now``
and releases each one to all of its recipients.  Each transition expects the
``scheduled`` status, so overlapping sweeps release a message only once.
"""
from __future__ import annotations

import logging
from datetime import datetime

from echolight.audit.events import EVENT_SWEEP_RUN
from echolight.core.constants import STATUS_SCHEDULED
from echolight.db.time import as_utc
from echolight.release.executor import ReleaseExecutor, ReleaseItem, ReleaseResult
from echolight.release.interfaces import ReleaseStore

logger = logging.getLogger(__name__)


def collect_due_items(store: ReleaseStore, now: datetime) -> list[ReleaseItem]:
    items: list[ReleaseItem] = []
    for message in store.fetch_due_messages(now):
        items.append(
            ReleaseItem(
                message=message,
                recipients=store.fetch_recipients_for(message.id),
                release_now=True,
                release_at=as_utc(message.delivery_date),
                expected_status=STATUS_SCHEDULED,
            )
        )
    return items


def run_sweep(store: ReleaseStore, executor: ReleaseExecutor, now: datetime) -> ReleaseResult:
    """Release every date-triggered message that is due at *now*."""
    logger.info("Processing scheduled messages at %s", now.isoformat())
    items = collect_due_items(store, now)
    if not items:
        logger.info("No scheduled messages due for delivery")
        return ReleaseResult()

    logger.info("Found %d message(s) due for delivery", len(items))
    result = executor.execute(items, now)
    store.record_event(EVENT_SWEEP_RUN, detail=result.as_dict())
    store.checkpoint()
    return result
