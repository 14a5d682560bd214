"""Cadence parser.

A cadence string controls how many of a recipient's messages are released
per period once a posthumous release is confirmed.

Grammar
-------
all_at_once                      -> no pacing (``None``)
weekly / monthly                 -> legacy, one per period, oldest first
<N>_per_<week|month>[:<order>]   -> N per period, N >= 1

Order tokens: ``created_asc``, ``created_desc``, ``title_asc`` (long forms
``created_ascending`` etc. are accepted too).  A missing or unknown order
falls back to ``created_asc``.  Unrecognised strings degrade to
``all_at_once`` and are logged; they never raise.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)

ALL_AT_ONCE = "all_at_once"

_CANONICAL_RE = re.compile(r"^(\d+)_per_(week|month)$")


class Period(str, Enum):
    WEEK = "week"
    MONTH = "month"


class MessageOrder(str, Enum):
    CREATED_ASCENDING = "created_asc"
    CREATED_DESCENDING = "created_desc"
    TITLE_ASCENDING = "title_asc"


_ORDER_TOKENS: dict[str, MessageOrder] = {
    "created_asc": MessageOrder.CREATED_ASCENDING,
    "created_ascending": MessageOrder.CREATED_ASCENDING,
    "created_desc": MessageOrder.CREATED_DESCENDING,
    "created_descending": MessageOrder.CREATED_DESCENDING,
    "title_asc": MessageOrder.TITLE_ASCENDING,
    "title_ascending": MessageOrder.TITLE_ASCENDING,
}


@dataclass(frozen=True, slots=True)
class CadenceRule:
    """Release *quantity* messages per *period*, sorted by *order*."""

    quantity: int
    period: Period
    order: MessageOrder = MessageOrder.CREATED_ASCENDING

    def __post_init__(self) -> None:
        if self.quantity < 1:
            raise ValueError(f"quantity must be >= 1, got {self.quantity}")


_LEGACY: dict[str, CadenceRule] = {
    "weekly": CadenceRule(1, Period.WEEK),
    "monthly": CadenceRule(1, Period.MONTH),
}


def _parse_order(token: str | None) -> MessageOrder:
    if not token:
        return MessageOrder.CREATED_ASCENDING
    order = _ORDER_TOKENS.get(token.strip().lower())
    if order is None:
        logger.warning("Unknown cadence order %r, using created_asc", token)
        return MessageOrder.CREATED_ASCENDING
    return order


def parse_cadence(cadence: str | None) -> CadenceRule | None:
    """Parse a cadence string into a :class:`CadenceRule`.

    Returns ``None`` for ``all_at_once``, an absent setting, or any string
    that does not match the grammar.
    """
    if cadence is None:
        return None

    value = cadence.strip()
    if not value or value == ALL_AT_ONCE:
        return None

    legacy = _LEGACY.get(value)
    if legacy is not None:
        return legacy

    base, _, order_token = value.partition(":")
    match = _CANONICAL_RE.match(base)
    if match is None:
        logger.warning("Unrecognised cadence %r, releasing all at once", cadence)
        return None

    quantity = int(match.group(1))
    if quantity < 1:
        logger.warning("Cadence %r has no positive quantity, releasing all at once", cadence)
        return None

    return CadenceRule(
        quantity=quantity,
        period=Period(match.group(2)),
        order=_parse_order(order_token),
    )


def format_cadence(rule: CadenceRule | None) -> str:
    """Inverse of :func:`parse_cadence`: build the canonical cadence string."""
    if rule is None:
        return ALL_AT_ONCE
    base = f"{rule.quantity}_per_{rule.period.value}"
    if rule.order is MessageOrder.CREATED_ASCENDING:
        return base
    return f"{base}:{rule.order.value}"
