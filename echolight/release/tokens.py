"""Delivery token issuer.

A delivery token is a capability: holding it is the only credential needed
to read one message as one recipient.  Tokens are minted with
``secrets.token_urlsafe`` and expire ``token_ttl_days`` after issuance.

Re-issuing a still-valid token keeps the value and refreshes the expiry, so
one link survives re-sends.  An expired token is never revived; a new value
is minted instead.

Viewing is advisory: the first redemption records ``viewed_at``, later
redemptions are still served and leave it untouched.
"""
from __future__ import annotations

import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from echolight.audit.events import EVENT_TOKEN_REDEEMED
from echolight.core.logging import short_id
from echolight.db.models import MessageRecipient
from echolight.db.time import as_utc
from echolight.release.interfaces import ReleaseStore

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_TTL_DAYS = 7
_TOKEN_BYTES = 32
_TOKEN_RE = re.compile(r"^[A-Za-z0-9_-]{16,128}$")


class TokenError(Exception):
    """Base class for redemption failures."""


class InvalidTokenError(TokenError):
    """Token is malformed, unknown, or was never issued."""


class TokenExpiredError(TokenError):
    """Token exists but its validity window has passed."""


@dataclass(frozen=True, slots=True)
class IssuedToken:
    token: str
    expires_at: datetime
    reused: bool


@dataclass(frozen=True, slots=True)
class RedeemedMessage:
    message_id: str
    message_recipient_id: str
    title: str
    content: str
    media_urls: list[str]
    sender_name: str
    sent_at: datetime | None
    viewed_at: datetime
    first_view: bool


def generate_token() -> str:
    return secrets.token_urlsafe(_TOKEN_BYTES)


def is_well_formed(token: str | None) -> bool:
    return bool(token) and _TOKEN_RE.match(token) is not None


class TokenIssuer:
    """Mint, refresh and redeem delivery tokens through a :class:`ReleaseStore`."""

    def __init__(
        self,
        store: ReleaseStore,
        ttl_days: int = DEFAULT_TOKEN_TTL_DAYS,
        default_sender_name: str = "Someone special",
    ) -> None:
        self.store = store
        self.ttl = timedelta(days=ttl_days)
        self.default_sender_name = default_sender_name

    def is_usable(self, pair: MessageRecipient, now: datetime) -> bool:
        """Return whether *pair* holds a token that has not expired yet."""
        if not pair.delivery_token:
            return False
        expires_at = as_utc(pair.token_expires_at)
        if expires_at is None:
            # Never issued by the engine: the value is reused, the window is new.
            return True
        return expires_at > now

    def issue(self, pair: MessageRecipient, now: datetime) -> IssuedToken:
        """Issue a token for *pair*, valid until ``now + ttl``."""
        reused = self.is_usable(pair, now)
        token = pair.delivery_token if reused else generate_token()
        expires_at = now + self.ttl

        self.store.upsert_token(pair.id, token, expires_at)
        pair.delivery_token = token
        pair.token_expires_at = expires_at

        logger.debug(
            "Issued token for pair %s (reused=%s, expires=%s)",
            short_id(pair.id), reused, expires_at.isoformat(),
        )
        return IssuedToken(token=token, expires_at=expires_at, reused=reused)

    def redeem(self, token: str, now: datetime) -> RedeemedMessage:
        """Return the message behind *token*.

        Raises :class:`InvalidTokenError` for malformed, unknown or never
        issued tokens and :class:`TokenExpiredError` once ``expires_at`` has
        passed.
        """
        if not is_well_formed(token):
            raise InvalidTokenError("Malformed delivery token")

        found = self.store.find_by_token(token)
        if found is None:
            raise InvalidTokenError("Unknown delivery token")
        message, pair = found

        expires_at = as_utc(pair.token_expires_at)
        if expires_at is None:
            raise InvalidTokenError("Delivery token has not been issued")
        if expires_at <= now:
            raise TokenExpiredError("Delivery token has expired")

        first_view = self.store.mark_viewed(token, now)
        viewed_at = now if first_view else as_utc(pair.viewed_at) or now
        if first_view:
            self.store.record_event(
                EVENT_TOKEN_REDEEMED,
                actor="recipient",
                user_id=str(message.user_id),
                message_id=str(message.id),
            )
            logger.info("Message %s viewed for the first time", short_id(message.id))

        return RedeemedMessage(
            message_id=str(message.id),
            message_recipient_id=str(pair.id),
            title=message.title or "A message for you",
            content=message.content or "",
            media_urls=list(message.media_urls or []),
            sender_name=self.store.sender_name(message.user_id) or self.default_sender_name,
            sent_at=as_utc(message.sent_at),
            viewed_at=viewed_at,
            first_view=first_view,
        )
