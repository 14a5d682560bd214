from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from echolight.db.base import Base
from echolight.db.models import (
    Message,
    MessageRecipient,
    Profile,
    Recipient,
    RecipientDeliveryCadence,
)

NOW = datetime(2026, 3, 10, 15, 30, tzinfo=timezone.utc)


@pytest.fixture()
def db_session():
    """In-memory SQLite session with all tables created."""
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = SessionLocal()
    yield session
    session.close()


class Factory:
    """Create owners, recipients and messages in a test session."""

    def __init__(self, db: Session) -> None:
        self.db = db
        self._created = NOW - timedelta(days=365)

    def owner(self, full_name: str | None = "Margaret Ellis") -> Profile:
        profile = Profile(id=uuid4(), full_name=full_name)
        self.db.add(profile)
        self.db.flush()
        return profile

    def recipient(
        self,
        owner: Profile,
        name: str = "Anna",
        email: str | None = "anna@example.com",
        cadence: str | None = None,
        message_order: list[str] | None = None,
    ) -> Recipient:
        recipient = Recipient(id=uuid4(), user_id=owner.id, name=name, email=email)
        self.db.add(recipient)
        self.db.flush()
        if cadence is not None:
            self.db.add(
                RecipientDeliveryCadence(
                    user_id=owner.id,
                    recipient_id=recipient.id,
                    cadence=cadence,
                    message_order=message_order,
                )
            )
            self.db.flush()
        return recipient

    def message(
        self,
        owner: Profile,
        recipients: list[Recipient],
        *,
        title: str = "A letter",
        trigger: str = "posthumous",
        status: str = "draft",
        delivery_date: datetime | None = None,
        created_at: datetime | None = None,
        token: str | None = None,
    ) -> Message:
        # Strictly increasing creation times keep fetch order predictable.
        self._created += timedelta(minutes=1)
        message = Message(
            id=uuid4(),
            user_id=owner.id,
            title=title,
            content=f"Body of {title}",
            media_urls=["media/photo-1.jpg"],
            delivery_trigger=trigger,
            status=status,
            delivery_date=delivery_date,
            sent_at=NOW if status == "sent" else None,
            created_at=created_at or self._created,
        )
        self.db.add(message)
        self.db.flush()
        for recipient in recipients:
            self.db.add(
                MessageRecipient(message_id=message.id, recipient_id=recipient.id, delivery_token=token)
            )
        self.db.flush()
        return message


@pytest.fixture()
def factory(db_session: Session) -> Factory:
    return Factory(db_session)


class RecordingDispatcher:
    """Notification dispatcher double that records sends."""

    def __init__(self, fail_for: set[str] | None = None, raise_for: set[str] | None = None) -> None:
        self.fail_for = fail_for or set()
        self.raise_for = raise_for or set()
        self.sent: list[tuple[str, str, str]] = []

    def send(self, to_address: str, subject: str, body: str) -> bool:
        if to_address in self.raise_for:
            raise ConnectionError("relay unreachable")
        if to_address in self.fail_for:
            return False
        self.sent.append((to_address, subject, body))
        return True

    def addresses(self) -> list[str]:
        return [to for to, _subject, _body in self.sent]


@pytest.fixture()
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture()
def store(db_session: Session):
    from echolight.db.repositories import SqlReleaseStore

    return SqlReleaseStore(db_session)


@pytest.fixture()
def executor(store, dispatcher: RecordingDispatcher):
    from echolight.notification.renderer import DeliveryRenderer
    from echolight.release.executor import ReleaseExecutor
    from echolight.release.tokens import TokenIssuer

    return ReleaseExecutor(
        store=store,
        dispatcher=dispatcher,
        issuer=TokenIssuer(store),
        renderer=DeliveryRenderer(site_url="https://echolight.test", support_email="support@echolight.test"),
    )
