"""Tests for echolight/release/executor.py.

Covers:
- release_now(): tokens issued, notification sent, status -> sent
- sent messages are a no-op (no notification, no error)
- recipients without an email are skipped
- dispatch failures leave the message untouched and are counted
- a lost compare-and-swap reports LOST_RACE and sends no audit event
- schedule_later(): conversion to a dated release
- execute(): per-item isolation and aggregate counts
- send_test_delivery(): preview without a status change
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import delete

from echolight.audit.audit_log import get_events_by_type, get_message_history
from echolight.db.models import Message, MessageRecipient
from echolight.db.repositories import SqlReleaseStore
from echolight.db.time import as_utc
from echolight.notification.renderer import DeliveryRenderer
from echolight.release.executor import (
    ReleaseExecutor,
    ReleaseItem,
    ReleaseOutcome,
    ReleaseResult,
)
from echolight.release.tokens import TokenIssuer

NOW = datetime(2026, 3, 10, 15, 30, tzinfo=timezone.utc)


def _item(store, message, **kwargs) -> ReleaseItem:
    return ReleaseItem(message=message, recipients=store.fetch_recipients_for(message.id), **kwargs)


class _LosingStore(SqlReleaseStore):
    """Store whose guarded updates always find the row already moved on."""

    def update_message_status(self, message_id, expected_status, new_status, **fields):
        return False


# ===========================================================================
# release_now
# ===========================================================================

class TestReleaseNow:
    def test_sends_to_every_recipient_and_marks_sent(self, factory, store, executor, dispatcher):
        owner = factory.owner("Margaret Ellis")
        anna = factory.recipient(owner, "Anna", "anna@example.com")
        ben = factory.recipient(owner, "Ben", "ben@example.com")
        message = factory.message(owner, [anna, ben], title="Letter")

        outcome = executor.release_now(message, store.fetch_recipients_for(message.id), NOW)

        assert outcome is ReleaseOutcome.SENT
        assert sorted(dispatcher.addresses()) == ["anna@example.com", "ben@example.com"]
        assert message.status == "sent"
        assert as_utc(message.sent_at) == NOW
        for _recipient, pair in store.fetch_recipients_for(message.id):
            assert pair.delivery_token
            assert as_utc(pair.token_expires_at) == NOW + timedelta(days=7)

    def test_notification_carries_link_and_sender(self, factory, store, executor, dispatcher):
        owner = factory.owner("Margaret Ellis")
        message = factory.message(owner, [factory.recipient(owner)], title="Letter")

        executor.release_now(message, store.fetch_recipients_for(message.id), NOW)

        _to, subject, body = dispatcher.sent[0]
        pair = store.fetch_recipients_for(message.id)[0][1]
        assert subject == "A message from Margaret Ellis awaits you"
        assert f"https://echolight.test/message?token={pair.delivery_token}" in body

    def test_default_sender_name(self, factory, store, executor, dispatcher):
        owner = factory.owner(full_name=None)
        message = factory.message(owner, [factory.recipient(owner)])

        executor.release_now(message, store.fetch_recipients_for(message.id), NOW)

        assert dispatcher.sent[0][1] == "A message from Someone special awaits you"

    def test_already_sent_is_a_no_op(self, factory, store, executor, dispatcher):
        owner = factory.owner()
        message = factory.message(owner, [factory.recipient(owner)], status="sent")

        outcome = executor.release_now(message, store.fetch_recipients_for(message.id), NOW)

        assert outcome is ReleaseOutcome.ALREADY_SENT
        assert dispatcher.sent == []

    def test_recipient_without_email_is_skipped(self, factory, store, executor, dispatcher):
        owner = factory.owner()
        anna = factory.recipient(owner, "Anna", "anna@example.com")
        ghost = factory.recipient(owner, "Ghost", None)
        message = factory.message(owner, [anna, ghost])

        outcome = executor.release_now(message, store.fetch_recipients_for(message.id), NOW)

        assert outcome is ReleaseOutcome.SENT
        assert dispatcher.addresses() == ["anna@example.com"]

    def test_no_deliverable_recipient_leaves_message_untouched(self, factory, store, executor, dispatcher):
        owner = factory.owner()
        message = factory.message(owner, [factory.recipient(owner, "Ghost", None)])

        outcome = executor.release_now(message, store.fetch_recipients_for(message.id), NOW)

        assert outcome is ReleaseOutcome.SKIPPED
        assert message.status == "draft"

    def test_failed_dispatch_keeps_status(self, factory, store, executor, dispatcher, db_session):
        owner = factory.owner()
        message = factory.message(owner, [factory.recipient(owner, "Anna", "anna@example.com")])
        dispatcher.fail_for.add("anna@example.com")

        outcome = executor.release_now(message, store.fetch_recipients_for(message.id), NOW)

        assert outcome is ReleaseOutcome.FAILED
        assert message.status == "draft"
        assert message.sent_at is None
        events = get_events_by_type(db_session, "delivery_failed")
        assert [e.detail for e in events] == [{"attempted": 1, "failed": 1}]

    def test_raising_dispatcher_counts_as_failure(self, factory, store, executor, dispatcher):
        owner = factory.owner()
        message = factory.message(owner, [factory.recipient(owner, "Anna", "anna@example.com")])
        dispatcher.raise_for.add("anna@example.com")

        outcome = executor.release_now(message, store.fetch_recipients_for(message.id), NOW)

        assert outcome is ReleaseOutcome.FAILED
        assert message.status == "draft"

    def test_dated_message_without_date_is_skipped(self, factory, store, executor, dispatcher):
        owner = factory.owner()
        message = factory.message(owner, [factory.recipient(owner)], trigger="scheduled", status="scheduled")

        outcome = executor.release_now(message, store.fetch_recipients_for(message.id), NOW)

        assert outcome is ReleaseOutcome.SKIPPED
        assert dispatcher.sent == []

    def test_lost_race_sends_no_release_event(self, factory, db_session, dispatcher):
        store = _LosingStore(db_session)
        executor = ReleaseExecutor(
            store=store,
            dispatcher=dispatcher,
            issuer=TokenIssuer(store),
            renderer=DeliveryRenderer("https://echolight.test", "support@echolight.test"),
        )
        owner = factory.owner()
        message = factory.message(owner, [factory.recipient(owner)])

        outcome = executor.release_now(message, store.fetch_recipients_for(message.id), NOW)

        assert outcome is ReleaseOutcome.LOST_RACE
        assert message.status == "draft"
        assert get_events_by_type(db_session, "message_released") == []

    def test_release_is_audited(self, factory, store, executor, db_session):
        owner = factory.owner()
        message = factory.message(owner, [factory.recipient(owner)])

        executor.release_now(message, store.fetch_recipients_for(message.id), NOW)

        history = get_message_history(db_session, str(message.id))
        assert [e.event_type for e in history] == ["message_released"]
        assert history[0].detail == {"recipients": 1}


# ===========================================================================
# schedule_later
# ===========================================================================

class TestScheduleLater:
    def test_converts_posthumous_message_to_dated_release(self, factory, executor, dispatcher):
        owner = factory.owner()
        message = factory.message(owner, [factory.recipient(owner)])
        release_at = NOW + timedelta(days=7)

        outcome = executor.schedule_later(message, release_at)

        assert outcome is ReleaseOutcome.SCHEDULED
        assert message.status == "scheduled"
        assert message.delivery_trigger == "scheduled"
        assert as_utc(message.delivery_date) == release_at
        assert dispatcher.sent == []

    def test_sent_message_is_never_rescheduled(self, factory, executor):
        owner = factory.owner()
        message = factory.message(owner, [factory.recipient(owner)], status="sent")

        assert executor.schedule_later(message, NOW + timedelta(days=7)) is ReleaseOutcome.ALREADY_SENT
        assert message.status == "sent"

    def test_stale_expected_status_loses_race(self, factory, executor):
        owner = factory.owner()
        message = factory.message(owner, [factory.recipient(owner)])

        outcome = executor.schedule_later(message, NOW + timedelta(days=7), expected_status="scheduled")

        assert outcome is ReleaseOutcome.LOST_RACE
        assert message.status == "draft"


# ===========================================================================
# execute
# ===========================================================================

class TestExecute:
    def test_partial_failure_isolated(self, factory, store, executor, dispatcher):
        owner = factory.owner()
        recipients = [
            factory.recipient(owner, "Anna", "anna@example.com"),
            factory.recipient(owner, "Ben", "ben@example.com"),
            factory.recipient(owner, "Cleo", "cleo@example.com"),
        ]
        messages = [factory.message(owner, [r], title=r.name) for r in recipients]
        dispatcher.fail_for.add("ben@example.com")

        result = executor.execute([_item(store, m) for m in messages], NOW)

        assert result.immediate == 2
        assert result.errors == 1
        assert result.scheduled == 0
        assert [m.status for m in messages] == ["sent", "draft", "sent"]
        assert result.processed_message_ids == [str(messages[0].id), str(messages[2].id)]

    def test_mixed_immediate_and_deferred(self, factory, store, executor):
        owner = factory.owner()
        anna = factory.recipient(owner)
        now_msg = factory.message(owner, [anna], title="now")
        later_msg = factory.message(owner, [anna], title="later")

        result = executor.execute(
            [
                _item(store, now_msg),
                _item(store, later_msg, release_now=False, release_at=NOW + timedelta(days=7)),
            ],
            NOW,
        )

        assert result.as_dict() == {
            "immediate": 1,
            "scheduled": 1,
            "errors": 0,
            "skipped": 0,
            "total_processed": 2,
        }

    def test_already_sent_not_counted(self, factory, store, executor, dispatcher):
        owner = factory.owner()
        message = factory.message(owner, [factory.recipient(owner)], status="sent")

        result = executor.execute([_item(store, message)], NOW)

        assert result == ReleaseResult()
        assert dispatcher.sent == []

    def test_second_execution_is_idempotent(self, factory, store, executor, dispatcher):
        owner = factory.owner()
        message = factory.message(owner, [factory.recipient(owner)])

        executor.execute([_item(store, message)], NOW)
        result = executor.execute([_item(store, message)], NOW + timedelta(minutes=5))

        assert result.immediate == 0
        assert len(dispatcher.sent) == 1

    def test_unexpected_error_is_counted_and_rolled_back(
        self, factory, store, executor, monkeypatch, db_session
    ):
        owner = factory.owner()
        first = factory.message(owner, [factory.recipient(owner)], title="first")
        second = factory.message(owner, [factory.recipient(owner, "Ben", "ben@example.com")], title="second")
        items = [_item(store, first), _item(store, second)]
        db_session.commit()

        original = executor.process

        def _explode_on_first(item, now):
            if item.message.id == first.id:
                raise RuntimeError("boom")
            return original(item, now)

        monkeypatch.setattr(executor, "process", _explode_on_first)
        result = executor.execute(items, NOW)

        assert result.errors == 1
        assert result.immediate == 1

    def test_deferred_item_without_instant_is_skipped(self, factory, store, executor):
        owner = factory.owner()
        message = factory.message(owner, [factory.recipient(owner)])

        result = executor.execute([_item(store, message, release_now=False)], NOW)

        assert result.skipped == 1

    def test_item_deleted_after_collection_does_not_abort_batch(self, factory, store, executor, db_session):
        owner = factory.owner()
        anna = factory.recipient(owner)
        kept = factory.message(owner, [anna], title="kept")
        gone = factory.message(owner, [anna], title="gone")
        gone_id = gone.id
        items = [_item(store, gone), _item(store, kept)]
        db_session.commit()

        for stmt in (
            delete(MessageRecipient).where(MessageRecipient.message_id == gone_id),
            delete(Message).where(Message.id == gone_id),
        ):
            db_session.execute(stmt.execution_options(synchronize_session=False))
        db_session.commit()

        result = executor.execute(items, NOW)

        assert result.errors == 1
        assert result.immediate == 1
        assert result.processed_message_ids == [str(kept.id)]


# ===========================================================================
# send_test_delivery
# ===========================================================================

class TestSendTestDelivery:
    def test_preview_sent_without_status_change(self, factory, executor, dispatcher, db_session):
        owner = factory.owner("Margaret Ellis")
        message = factory.message(owner, [factory.recipient(owner)], title="Letter")

        assert executor.send_test_delivery(message.id, "owner@example.com", NOW) is True

        to, subject, body = dispatcher.sent[0]
        assert to == "owner@example.com"
        assert subject == "[Preview] A message from Margaret Ellis awaits you"
        assert "https://echolight.test/message?token=" in body
        db_session.refresh(message)
        assert message.status == "draft"
        events = get_events_by_type(db_session, "test_delivery_sent")
        assert len(events) == 1
        assert events[0].actor == "owner"

    def test_preview_link_matches_recipient_link(self, factory, store, executor, dispatcher):
        owner = factory.owner()
        message = factory.message(owner, [factory.recipient(owner)])

        executor.send_test_delivery(message.id, "owner@example.com", NOW)
        executor.release_now(message, store.fetch_recipients_for(message.id), NOW + timedelta(hours=1))

        preview_body = dispatcher.sent[0][2]
        pair = store.fetch_recipients_for(message.id)[0][1]
        assert pair.delivery_token in preview_body
        assert pair.delivery_token in dispatcher.sent[1][2]

    def test_unknown_message(self, executor):
        with pytest.raises(KeyError):
            executor.send_test_delivery(uuid4(), "owner@example.com", NOW)

    def test_message_without_recipients(self, factory, executor):
        owner = factory.owner()
        message = factory.message(owner, [])

        with pytest.raises(ValueError, match="no recipients"):
            executor.send_test_delivery(message.id, "owner@example.com", NOW)

    def test_failed_preview_not_audited(self, factory, executor, dispatcher, db_session):
        owner = factory.owner()
        message = factory.message(owner, [factory.recipient(owner)])
        dispatcher.fail_for.add("owner@example.com")

        assert executor.send_test_delivery(message.id, "owner@example.com", NOW) is False
        assert get_events_by_type(db_session, "test_delivery_sent") == []

    def test_sent_message_with_expired_link_is_refused(self, factory, store, executor, dispatcher):
        owner = factory.owner()
        message = factory.message(owner, [factory.recipient(owner)])
        executor.release_now(message, store.fetch_recipients_for(message.id), NOW - timedelta(days=30))
        pair = store.fetch_recipients_for(message.id)[0][1]
        token, expires_at = pair.delivery_token, as_utc(pair.token_expires_at)
        dispatcher.sent.clear()

        with pytest.raises(ValueError, match="expired"):
            executor.send_test_delivery(message.id, "owner@example.com", NOW)

        pair = store.fetch_recipients_for(message.id)[0][1]
        assert pair.delivery_token == token
        assert as_utc(pair.token_expires_at) == expires_at <= NOW
        assert dispatcher.sent == []

    def test_sent_message_with_live_link_can_be_previewed(self, factory, store, executor, dispatcher):
        owner = factory.owner()
        message = factory.message(owner, [factory.recipient(owner)])
        executor.release_now(message, store.fetch_recipients_for(message.id), NOW - timedelta(days=1))
        token = store.fetch_recipients_for(message.id)[0][1].delivery_token

        assert executor.send_test_delivery(message.id, "owner@example.com", NOW) is True
        assert token in dispatcher.sent[-1][2]
