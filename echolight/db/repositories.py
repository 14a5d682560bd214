from __future__ import annotations

from datetime import datetime
from typing import Generic, TypeVar
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from echolight.audit.audit_log import record_event
from echolight.core.constants import (
    STATUS_DRAFT,
    STATUS_SCHEDULED,
    TRIGGER_MANUAL,
    TRIGGER_SCHEDULED,
    VALID_STATUSES,
    VALID_TRIGGERS,
)
from echolight.db import models

ModelT = TypeVar("ModelT")


def _check_status(status: str) -> None:
    if status not in VALID_STATUSES:
        raise ValueError(f"Invalid status {status!r}; must be one of {sorted(VALID_STATUSES)}")


def _check_trigger(trigger: str) -> None:
    if trigger not in VALID_TRIGGERS:
        raise ValueError(f"Invalid delivery_trigger {trigger!r}; must be one of {sorted(VALID_TRIGGERS)}")


class BaseRepository(Generic[ModelT]):
    model: type[ModelT]

    def __init__(self, db: Session):
        self.db = db

    def create(self, **kwargs) -> ModelT:
        entity = self.model(**kwargs)
        self.db.add(entity)
        self.db.flush()
        return entity

    def get(self, entity_id: UUID) -> ModelT | None:
        return self.db.get(self.model, entity_id)


class ProfileRepository(BaseRepository[models.Profile]):
    model = models.Profile


class RecipientRepository(BaseRepository[models.Recipient]):
    model = models.Recipient


class MessageRepository(BaseRepository[models.Message]):
    model = models.Message

    def create(
        self,
        *,
        status: str = STATUS_DRAFT,
        delivery_trigger: str = TRIGGER_MANUAL,
        **kwargs,
    ) -> models.Message:
        """Create a message, enforcing the lifecycle value sets.

        A date-triggered message must carry a ``delivery_date`` or a
        ``delivery_event``.
        """
        _check_status(status)
        _check_trigger(delivery_trigger)
        if delivery_trigger == TRIGGER_SCHEDULED and not (
            kwargs.get("delivery_date") or kwargs.get("delivery_event")
        ):
            raise ValueError("Scheduled messages need a delivery_date or delivery_event")
        return super().create(status=status, delivery_trigger=delivery_trigger, **kwargs)


class MessageRecipientRepository(BaseRepository[models.MessageRecipient]):
    model = models.MessageRecipient

    def link(self, message_id: UUID, recipient_id: UUID) -> models.MessageRecipient:
        return self.create(message_id=message_id, recipient_id=recipient_id)


class CadenceRepository(BaseRepository[models.RecipientDeliveryCadence]):
    model = models.RecipientDeliveryCadence

    def for_recipient(
        self, user_id: UUID, recipient_id: UUID
    ) -> models.RecipientDeliveryCadence | None:
        stmt = select(models.RecipientDeliveryCadence).where(
            models.RecipientDeliveryCadence.user_id == user_id,
            models.RecipientDeliveryCadence.recipient_id == recipient_id,
        )
        return self.db.execute(stmt).scalars().first()

    def set_cadence(
        self,
        user_id: UUID,
        recipient_id: UUID,
        cadence: str,
        message_order: list[str] | None = None,
    ) -> models.RecipientDeliveryCadence:
        """Insert or replace the cadence of one (user, recipient) pair."""
        setting = self.for_recipient(user_id, recipient_id)
        if setting is None:
            return self.create(
                user_id=user_id,
                recipient_id=recipient_id,
                cadence=cadence,
                message_order=message_order,
            )
        setting.cadence = cadence
        setting.message_order = message_order
        self.db.flush()
        return setting


class SqlReleaseStore:
    """SQLAlchemy implementation of the release engine's store contract.

    Status changes are compare-and-swap updates: the row only changes when
    it still carries the expected prior status, so concurrent runs never
    move a message twice.  ``checkpoint()`` commits, one item at a time.
    """

    def __init__(self, db: Session) -> None:
        self.db = db
        self.messages = MessageRepository(db)
        self.profiles = ProfileRepository(db)
        self.cadences = CadenceRepository(db)

    # -- reads --------------------------------------------------------------

    def fetch_eligible_messages(
        self, user_id: UUID, trigger: str, exclude_status: str
    ) -> list[models.Message]:
        _check_trigger(trigger)
        stmt = (
            select(models.Message)
            .where(
                models.Message.user_id == user_id,
                models.Message.delivery_trigger == trigger,
                models.Message.status != exclude_status,
            )
            .order_by(models.Message.created_at.asc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def fetch_due_messages(self, now: datetime) -> list[models.Message]:
        stmt = (
            select(models.Message)
            .where(
                models.Message.status == STATUS_SCHEDULED,
                models.Message.delivery_trigger == TRIGGER_SCHEDULED,
                models.Message.delivery_date.is_not(None),
                models.Message.delivery_date <= now,
            )
            .order_by(models.Message.delivery_date.asc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def get_message(self, message_id: UUID) -> models.Message | None:
        return self.messages.get(message_id)

    def fetch_recipients_for(
        self, message_id: UUID
    ) -> list[tuple[models.Recipient, models.MessageRecipient]]:
        stmt = (
            select(models.Recipient, models.MessageRecipient)
            .join(models.MessageRecipient, models.MessageRecipient.recipient_id == models.Recipient.id)
            .where(models.MessageRecipient.message_id == message_id)
            .order_by(models.Recipient.created_at.asc())
        )
        return [(recipient, pair) for recipient, pair in self.db.execute(stmt).all()]

    def fetch_cadence(
        self, user_id: UUID, recipient_id: UUID
    ) -> models.RecipientDeliveryCadence | None:
        return self.cadences.for_recipient(user_id, recipient_id)

    def find_by_token(
        self, token: str
    ) -> tuple[models.Message, models.MessageRecipient] | None:
        stmt = (
            select(models.Message, models.MessageRecipient)
            .join(models.MessageRecipient, models.MessageRecipient.message_id == models.Message.id)
            .where(models.MessageRecipient.delivery_token == token)
        )
        row = self.db.execute(stmt).first()
        if row is None:
            return None
        return row[0], row[1]

    def sender_name(self, user_id: UUID) -> str | None:
        profile = self.profiles.get(user_id)
        return profile.full_name if profile is not None else None

    # -- writes -------------------------------------------------------------

    def update_message_status(
        self, message_id: UUID, expected_status: str, new_status: str, **fields
    ) -> bool:
        _check_status(new_status)
        stmt = (
            update(models.Message)
            .where(models.Message.id == message_id, models.Message.status == expected_status)
            .values(status=new_status, **fields)
        )
        result = self.db.execute(stmt)
        self.db.flush()
        return result.rowcount == 1

    def upsert_token(self, message_recipient_id: UUID, token: str, expires_at: datetime) -> None:
        stmt = (
            update(models.MessageRecipient)
            .where(models.MessageRecipient.id == message_recipient_id)
            .values(delivery_token=token, token_expires_at=expires_at)
        )
        result = self.db.execute(stmt)
        if result.rowcount != 1:
            raise KeyError(f"MessageRecipient {message_recipient_id} not found")
        self.db.flush()

    def mark_viewed(self, token: str, when: datetime) -> bool:
        stmt = (
            update(models.MessageRecipient)
            .where(
                models.MessageRecipient.delivery_token == token,
                models.MessageRecipient.viewed_at.is_(None),
            )
            .values(viewed_at=when)
        )
        result = self.db.execute(stmt)
        self.db.flush()
        return result.rowcount == 1

    def record_event(
        self,
        event_type: str,
        actor: str = "system",
        user_id: str | None = None,
        message_id: str | None = None,
        detail: dict | None = None,
    ) -> None:
        record_event(
            self.db,
            event_type=event_type,
            actor=actor,
            user_id=user_id,
            message_id=message_id,
            detail=detail,
        )

    def checkpoint(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()
