"""Release executor.

Performs the release of one message at a time:

1. issue or refresh a delivery token for every recipient with an address,
2. render and dispatch the delivery notification,
3. move the message to ``sent`` with a guarded (compare-and-swap) update.

A message whose release instant lies in the future is instead converted to
the date-triggered lifecycle (``trigger = scheduled``, ``status =
scheduled``) so the scheduled sweep picks it up later.

Every item is isolated: a failure is logged and counted, the store is rolled
back to the previous checkpoint, and the batch continues.  Nothing here
retries a failed dispatch; the next invocation does.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import UUID

from echolight.audit.events import (
    EVENT_DELIVERY_FAILED,
    EVENT_MESSAGE_RELEASED,
    EVENT_MESSAGE_SCHEDULED,
    EVENT_TEST_DELIVERY_SENT,
)
from echolight.core.constants import (
    STATUS_SCHEDULED,
    STATUS_SENT,
    TRIGGER_SCHEDULED,
    can_transition,
)
from echolight.core.logging import short_id
from echolight.db.models import Message
from echolight.notification.renderer import DeliveryRenderer
from echolight.release.interfaces import NotificationDispatcher, RecipientPair, ReleaseStore
from echolight.release.tokens import TokenIssuer

logger = logging.getLogger(__name__)


class ReleaseOutcome(str, Enum):
    SENT = "sent"
    SCHEDULED = "scheduled"
    FAILED = "failed"
    SKIPPED = "skipped"
    ALREADY_SENT = "already_sent"
    LOST_RACE = "lost_race"


@dataclass
class ReleaseItem:
    """One message to release now, or to convert to a dated release."""

    message: Message
    recipients: list[RecipientPair]
    release_now: bool = True
    release_at: datetime | None = None
    expected_status: str | None = None


@dataclass
class ReleaseResult:
    immediate: int = 0
    scheduled: int = 0
    errors: int = 0
    skipped: int = 0
    processed_message_ids: list[str] = field(default_factory=list)

    def record(self, outcome: ReleaseOutcome, message_id: UUID | str) -> None:
        if outcome is ReleaseOutcome.SENT:
            self.immediate += 1
        elif outcome is ReleaseOutcome.SCHEDULED:
            self.scheduled += 1
        elif outcome is ReleaseOutcome.FAILED:
            self.errors += 1
        elif outcome is ReleaseOutcome.SKIPPED:
            self.skipped += 1
        else:
            return
        if outcome in (ReleaseOutcome.SENT, ReleaseOutcome.SCHEDULED):
            self.processed_message_ids.append(str(message_id))

    @property
    def total_processed(self) -> int:
        return len(self.processed_message_ids)

    def as_dict(self) -> dict:
        return {
            "immediate": self.immediate,
            "scheduled": self.scheduled,
            "errors": self.errors,
            "skipped": self.skipped,
            "total_processed": self.total_processed,
        }


class ReleaseExecutor:
    """Release messages through a store, a dispatcher and a token issuer."""

    def __init__(
        self,
        store: ReleaseStore,
        dispatcher: NotificationDispatcher,
        issuer: TokenIssuer,
        renderer: DeliveryRenderer,
        default_sender_name: str = "Someone special",
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.issuer = issuer
        self.renderer = renderer
        self.default_sender_name = default_sender_name

    def _sender_name(self, message: Message) -> str:
        return self.store.sender_name(message.user_id) or self.default_sender_name

    # -- immediate path -----------------------------------------------------

    def release_now(
        self,
        message: Message,
        recipients: Iterable[RecipientPair],
        now: datetime,
        expected_status: str | None = None,
    ) -> ReleaseOutcome:
        """Issue tokens, notify every recipient, then mark *message* sent."""
        mid = short_id(message.id)
        if message.status == STATUS_SENT:
            logger.debug("Message %s already sent, nothing to do", mid)
            return ReleaseOutcome.ALREADY_SENT

        expected = expected_status or message.status
        if not can_transition(expected, STATUS_SENT):
            logger.warning("Message %s has status %r, cannot release", mid, expected)
            return ReleaseOutcome.SKIPPED

        if message.delivery_trigger == TRIGGER_SCHEDULED and not (
            message.delivery_date or message.delivery_event
        ):
            logger.warning("Message %s is date-triggered without a release date, skipping", mid)
            return ReleaseOutcome.SKIPPED

        sender_name = self._sender_name(message)
        attempted = 0
        failed = 0
        for recipient, pair in recipients:
            if not recipient.email:
                logger.warning("Recipient %s has no email, skipping", short_id(recipient.id))
                continue
            attempted += 1
            issued = self.issuer.issue(pair, now)
            try:
                email = self.renderer.render_delivery(
                    recipient_name=recipient.name,
                    sender_name=sender_name,
                    message_title=message.title,
                    token=issued.token,
                    expires_at=issued.expires_at,
                )
                delivered = self.dispatcher.send(recipient.email, email.subject, email.body)
            except Exception:
                logger.exception("Dispatch raised for message %s", mid)
                delivered = False
            if not delivered:
                failed += 1
                logger.error(
                    "Dispatch failed for message %s recipient %s", mid, short_id(recipient.id)
                )

        if attempted == 0:
            logger.warning("Message %s has no deliverable recipients, leaving it %s", mid, expected)
            return ReleaseOutcome.SKIPPED

        if failed:
            self.store.record_event(
                EVENT_DELIVERY_FAILED,
                user_id=str(message.user_id),
                message_id=str(message.id),
                detail={"attempted": attempted, "failed": failed},
            )
            return ReleaseOutcome.FAILED

        if not self.store.update_message_status(message.id, expected, STATUS_SENT, sent_at=now):
            logger.debug("Message %s advanced by a concurrent run, skipping", mid)
            return ReleaseOutcome.LOST_RACE

        message.status = STATUS_SENT
        message.sent_at = now
        self.store.record_event(
            EVENT_MESSAGE_RELEASED,
            user_id=str(message.user_id),
            message_id=str(message.id),
            detail={"recipients": attempted},
        )
        logger.info("Sent message %s to %d recipient(s)", mid, attempted)
        return ReleaseOutcome.SENT

    # -- deferred path ------------------------------------------------------

    def schedule_later(
        self,
        message: Message,
        release_at: datetime,
        expected_status: str | None = None,
    ) -> ReleaseOutcome:
        """Convert *message* to a date-triggered release at *release_at*."""
        mid = short_id(message.id)
        if message.status == STATUS_SENT:
            return ReleaseOutcome.ALREADY_SENT

        expected = expected_status or message.status
        if not can_transition(expected, STATUS_SCHEDULED):
            logger.warning("Message %s has status %r, cannot schedule", mid, expected)
            return ReleaseOutcome.SKIPPED

        converted = self.store.update_message_status(
            message.id,
            expected,
            STATUS_SCHEDULED,
            delivery_trigger=TRIGGER_SCHEDULED,
            delivery_date=release_at,
        )
        if not converted:
            logger.debug("Message %s advanced by a concurrent run, skipping", mid)
            return ReleaseOutcome.LOST_RACE

        message.status = STATUS_SCHEDULED
        message.delivery_trigger = TRIGGER_SCHEDULED
        message.delivery_date = release_at
        self.store.record_event(
            EVENT_MESSAGE_SCHEDULED,
            user_id=str(message.user_id),
            message_id=str(message.id),
            detail={"release_at": release_at.isoformat()},
        )
        logger.info("Scheduled message %s for %s", mid, release_at.isoformat())
        return ReleaseOutcome.SCHEDULED

    # -- batch --------------------------------------------------------------

    def process(self, item: ReleaseItem, now: datetime) -> ReleaseOutcome:
        if item.release_now:
            return self.release_now(item.message, item.recipients, now, item.expected_status)
        if item.release_at is None:
            logger.warning("Message %s deferred without a release instant, skipping", short_id(item.message.id))
            return ReleaseOutcome.SKIPPED
        return self.schedule_later(item.message, item.release_at, item.expected_status)

    def execute(self, items: Iterable[ReleaseItem], now: datetime) -> ReleaseResult:
        """Process *items* independently and aggregate their outcomes."""
        result = ReleaseResult()
        for index, item in enumerate(items):
            try:
                message_id = item.message.id
                outcome = self.process(item, now)
                self.store.checkpoint()
            except Exception:
                logger.exception("Release failed for batch item %d", index)
                self.store.rollback()
                result.errors += 1
                continue
            result.record(outcome, message_id)

        logger.info(
            "Release complete: %d sent immediately, %d scheduled for later, %d errors, %d skipped",
            result.immediate, result.scheduled, result.errors, result.skipped,
        )
        return result

    # -- preview ------------------------------------------------------------

    def send_test_delivery(self, message_id: UUID, to_address: str, now: datetime) -> bool:
        """Send a preview of a message to *to_address* without changing its status.

        Reuses (or mints) the token of the message's first recipient pair, so
        the preview link opens exactly what that recipient will see.  A sent
        message whose link has expired is refused, since a preview must not
        reopen it.
        """
        message = self.store.get_message(message_id)
        if message is None:
            raise KeyError(f"Message {message_id} not found")

        recipients = self.store.fetch_recipients_for(message.id)
        if not recipients:
            raise ValueError("Message has no recipients to preview")
        recipient, pair = recipients[0]
        if message.status == STATUS_SENT and pair.delivery_token and not self.issuer.is_usable(pair, now):
            raise ValueError("Delivery link for this message has expired and cannot be previewed")

        issued = self.issuer.issue(pair, now)
        email = self.renderer.render_test_delivery(
            recipient_name=recipient.name,
            sender_name=self._sender_name(message),
            message_title=message.title,
            token=issued.token,
            expires_at=issued.expires_at,
        )
        sent = self.dispatcher.send(to_address, email.subject, email.body)
        if sent:
            self.store.record_event(
                EVENT_TEST_DELIVERY_SENT,
                actor="owner",
                user_id=str(message.user_id),
                message_id=str(message.id),
            )
        self.store.checkpoint()
        return sent
