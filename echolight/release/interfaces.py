"""Collaborator contracts consumed by the release engine."""
from __future__ import annotations

from datetime import datetime
from typing import Protocol
from uuid import UUID

from echolight.db.models import Message, MessageRecipient, Recipient, RecipientDeliveryCadence

RecipientPair = tuple[Recipient, MessageRecipient]


class ReleaseStore(Protocol):
    def fetch_eligible_messages(self, user_id: UUID, trigger: str, exclude_status: str) -> list[Message]:
        ...

    def fetch_due_messages(self, now: datetime) -> list[Message]:
        ...

    def get_message(self, message_id: UUID) -> Message | None:
        ...

    def fetch_recipients_for(self, message_id: UUID) -> list[RecipientPair]:
        ...

    def fetch_cadence(self, user_id: UUID, recipient_id: UUID) -> RecipientDeliveryCadence | None:
        ...

    def update_message_status(
        self, message_id: UUID, expected_status: str, new_status: str, **fields
    ) -> bool:
        ...

    def upsert_token(self, message_recipient_id: UUID, token: str, expires_at: datetime) -> None:
        ...

    def find_by_token(self, token: str) -> tuple[Message, MessageRecipient] | None:
        ...

    def mark_viewed(self, token: str, when: datetime) -> bool:
        ...

    def sender_name(self, user_id: UUID) -> str | None:
        ...

    def record_event(
        self,
        event_type: str,
        actor: str = "system",
        user_id: str | None = None,
        message_id: str | None = None,
        detail: dict | None = None,
    ) -> None:
        ...

    def checkpoint(self) -> None:
        """Make everything written for the current item durable."""
        ...

    def rollback(self) -> None:
        """Discard everything written since the last checkpoint."""
        ...


class NotificationDispatcher(Protocol):
    def send(self, to_address: str, subject: str, body: str) -> bool:
        ...
