#!/usr/bin/env python3
"""Seed demo data: one owner, three recipients, posthumous and dated messages.

Usage:
    python scripts/seed_demo.py          # uses DATABASE_URL from env / .env
    DATABASE_URL=... python scripts/seed_demo.py
"""
from __future__ import annotations

import sys
from datetime import timedelta

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

# Ensure project root is on sys.path
sys.path.insert(0, ".")

from echolight.core.settings import get_settings
from echolight.db.base import Base
from echolight.db.repositories import (
    CadenceRepository,
    MessageRecipientRepository,
    MessageRepository,
    ProfileRepository,
    RecipientRepository,
)
from echolight.db.time import utcnow


def seed(session: Session) -> None:
    """Insert a demo owner with recipients, cadences and messages."""
    now = utcnow()
    owner = ProfileRepository(session).create(full_name="Margaret Ellis")
    recipient_repo = RecipientRepository(session)
    cadence_repo = CadenceRepository(session)
    message_repo = MessageRepository(session)
    link_repo = MessageRecipientRepository(session)

    demo_recipients = [
        # (name, email, relationship, cadence)
        ("Anna Ellis", "anna.ellis@example.com", "daughter", "1_per_week"),
        ("Tom Ellis", "tom.ellis@example.com", "son", "2_per_month:title_asc"),
        ("Grace Hill", None, "friend", None),
    ]
    recipients = []
    for name, email, relationship, cadence in demo_recipients:
        recipient = recipient_repo.create(
            user_id=owner.id, name=name, email=email, relationship_label=relationship,
        )
        recipients.append(recipient)
        if cadence:
            cadence_repo.set_cadence(owner.id, recipient.id, cadence)

    demo_messages = [
        # (title, trigger, status, delivery_date offset in days)
        ("For your wedding day", "posthumous", "draft", None),
        ("The garden recipes", "posthumous", "draft", None),
        ("What I never said", "posthumous", "scheduled", None),
        ("Happy 30th birthday", "scheduled", "scheduled", 30),
        ("A note for today", "scheduled", "scheduled", -1),
    ]
    for index, (title, trigger, status, offset) in enumerate(demo_messages):
        message = message_repo.create(
            user_id=owner.id,
            title=title,
            content=f"{title}: written with love.",
            delivery_trigger=trigger,
            status=status,
            delivery_date=now + timedelta(days=offset) if offset is not None else None,
            created_at=now - timedelta(days=len(demo_messages) - index),
        )
        for recipient in recipients[: 2 if index % 2 else 3]:
            link_repo.link(message.id, recipient.id)

    session.commit()
    print(f"Seeded owner {owner.id} with {len(recipients)} recipients and {len(demo_messages)} messages")


def main() -> None:
    settings = get_settings()
    engine = create_engine(settings.database_url)
    Base.metadata.create_all(bind=engine)
    with Session(engine) as session:
        seed(session)


if __name__ == "__main__":
    main()
