"""Event type constants.

Canonical event types for the append-only audit trail.
"""
from __future__ import annotations

EVENT_RELEASE_REQUESTED = "release_requested"
EVENT_SWEEP_RUN = "sweep_run"
EVENT_MESSAGE_RELEASED = "message_released"
EVENT_MESSAGE_SCHEDULED = "message_scheduled"
EVENT_DELIVERY_FAILED = "delivery_failed"
EVENT_TEST_DELIVERY_SENT = "test_delivery_sent"
EVENT_TOKEN_REDEEMED = "token_redeemed"

VALID_EVENT_TYPES: frozenset[str] = frozenset({
    EVENT_RELEASE_REQUESTED,
    EVENT_SWEEP_RUN,
    EVENT_MESSAGE_RELEASED,
    EVENT_MESSAGE_SCHEDULED,
    EVENT_DELIVERY_FAILED,
    EVENT_TEST_DELIVERY_SENT,
    EVENT_TOKEN_REDEEMED,
})
