"""Batch scheduler.

Maps one recipient's pending event-triggered messages to release instants.
Pure and deterministic: no store access, no clock reads.
"""
from __future__ import annotations

import calendar
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from echolight.db.models import Message
from echolight.db.time import as_utc
from echolight.release.cadence import CadenceRule, MessageOrder, Period

_MISSING_CREATED = datetime.max


@dataclass(frozen=True, slots=True)
class ScheduledRelease:
    message: Message
    release_at: datetime
    release_now: bool
    group: int


def add_months(value: datetime, months: int) -> datetime:
    """Shift *value* by calendar months, clamping to the target month's last day."""
    if months == 0:
        return value
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def release_instant(now: datetime, period: Period, group: int) -> datetime:
    """Release instant of group *group*: ``now + group * period``."""
    if period is Period.WEEK:
        return now + timedelta(days=7 * group)
    return add_months(now, group)


def _created_key(message: Message) -> datetime:
    created = as_utc(message.created_at)
    if created is None:
        return _MISSING_CREATED
    return created.replace(tzinfo=None)


def order_messages(
    messages: Sequence[Message],
    rule: CadenceRule | None,
    message_order: Sequence[str] | None = None,
) -> list[Message]:
    """Return *messages* in release order.

    Sorting is stable so messages with identical keys keep fetch order.
    An explicit *message_order* (list of message ids) wins over the rule:
    listed messages come first in list order, the rest follow in rule order.
    """
    ordered = list(messages)
    if rule is not None:
        if rule.order is MessageOrder.CREATED_DESCENDING:
            ordered.sort(key=_created_key, reverse=True)
        elif rule.order is MessageOrder.TITLE_ASCENDING:
            ordered.sort(key=lambda m: (m.title or "").casefold())
        else:
            ordered.sort(key=_created_key)

    if message_order:
        positions = {str(mid): index for index, mid in enumerate(message_order)}
        unlisted = len(positions)
        ordered.sort(key=lambda m: positions.get(str(m.id), unlisted))

    return ordered


def schedule_batch(
    messages: Sequence[Message],
    rule: CadenceRule | None,
    now: datetime,
    message_order: Sequence[str] | None = None,
) -> list[ScheduledRelease]:
    """Assign each message a release instant.

    Messages are partitioned into consecutive groups of ``rule.quantity``;
    group ``g`` releases at ``now + g * period``.  Without a rule every
    message is in group 0.  ``release_now`` is decided on calendar days so a
    same-day instant is always immediate regardless of time of day.
    """
    ordered = order_messages(messages, rule, message_order)
    today = now.date()

    releases: list[ScheduledRelease] = []
    for index, message in enumerate(ordered):
        if rule is None:
            group = 0
            release_at = now
        else:
            group = index // rule.quantity
            release_at = release_instant(now, rule.period, group)
        releases.append(
            ScheduledRelease(
                message=message,
                release_at=release_at,
                release_now=release_at.date() <= today,
                group=group,
            )
        )
    return releases
