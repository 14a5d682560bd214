"""Posthumous release flow.

Invoked once the trust network confirms the owner's passing.  Every
undelivered posthumous message is paced per recipient by that recipient's
cadence; messages due today are released now, the rest are converted into
date-triggered messages that the scheduled sweep releases later.

A message shared by several recipients is released once, to all of them,
at the earliest instant any of their cadences assigns it.  Messages already
converted by an earlier run are no longer posthumous, so a changed cadence
only affects messages that have not been processed yet.
"""
from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID

from echolight.audit.events import EVENT_RELEASE_REQUESTED
from echolight.core.constants import STATUS_SENT, TRIGGER_POSTHUMOUS
from echolight.core.logging import short_id
from echolight.db.models import Message
from echolight.release.cadence import parse_cadence
from echolight.release.executor import ReleaseExecutor, ReleaseItem, ReleaseResult
from echolight.release.interfaces import RecipientPair, ReleaseStore
from echolight.release.scheduler import ScheduledRelease, schedule_batch

logger = logging.getLogger(__name__)


def plan_posthumous_release(
    store: ReleaseStore,
    user_id: UUID,
    now: datetime,
) -> tuple[list[ReleaseItem], int]:
    """Return release items in cadence order and the number of unroutable messages."""
    messages = store.fetch_eligible_messages(user_id, TRIGGER_POSTHUMOUS, STATUS_SENT)
    if not messages:
        logger.info("No posthumous messages to release for user %s", short_id(user_id))
        return [], 0

    logger.info("Found %d posthumous message(s) for user %s", len(messages), short_id(user_id))

    pairs_by_message: dict[UUID, list[RecipientPair]] = {}
    messages_by_recipient: dict[UUID, list[Message]] = {}
    unroutable = 0
    for message in messages:
        pairs = store.fetch_recipients_for(message.id)
        if not pairs:
            logger.warning("Message %s has no recipients, skipping", short_id(message.id))
            unroutable += 1
            continue
        pairs_by_message[message.id] = pairs
        for recipient, _pair in pairs:
            messages_by_recipient.setdefault(recipient.id, []).append(message)

    earliest: dict[UUID, ScheduledRelease] = {}
    sequence: list[UUID] = []
    for recipient_id, recipient_messages in messages_by_recipient.items():
        setting = store.fetch_cadence(user_id, recipient_id)
        cadence = setting.cadence if setting is not None else None
        message_order = setting.message_order if setting is not None else None
        rule = parse_cadence(cadence)
        logger.info(
            "Pacing %d message(s) for recipient %s with cadence %s",
            len(recipient_messages), short_id(recipient_id), cadence or "all_at_once",
        )

        for release in schedule_batch(recipient_messages, rule, now, message_order):
            mid = release.message.id
            current = earliest.get(mid)
            if current is None:
                sequence.append(mid)
            if current is None or release.release_at < current.release_at:
                earliest[mid] = release

    items: list[ReleaseItem] = []
    for mid in sequence:
        release = earliest[mid]
        items.append(
            ReleaseItem(
                message=release.message,
                recipients=pairs_by_message[mid],
                release_now=release.release_now,
                release_at=release.release_at,
                expected_status=release.message.status,
            )
        )
    items.sort(key=lambda item: item.release_at)
    return items, unroutable


def release_posthumous(
    store: ReleaseStore,
    executor: ReleaseExecutor,
    user_id: UUID,
    now: datetime,
    actor: str = "system",
) -> ReleaseResult:
    """Release or schedule every undelivered posthumous message of *user_id*."""
    store.record_event(EVENT_RELEASE_REQUESTED, actor=actor, user_id=str(user_id))
    store.checkpoint()
    logger.info("Processing posthumous release for user %s", short_id(user_id))

    items, unroutable = plan_posthumous_release(store, user_id, now)
    result = executor.execute(items, now)
    result.skipped += unroutable
    return result
