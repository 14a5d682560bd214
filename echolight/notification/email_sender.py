"""SMTP email sender.

Delivers release notifications via an SMTP relay.  Retries up to 3 times
with exponential backoff before reporting ``FAILED``.  A per-process
rate limiter spaces sends to ``rate_limit_per_minute``; it is best-effort
and resets with the process.

Safety: recipient addresses are never logged.
"""
from __future__ import annotations

import logging
import smtplib
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import parseaddr
from typing import Literal

logger = logging.getLogger(__name__)

_MAX_RETRIES = 3
_BACKOFF_BASE = 1  # seconds: 1, 2, 4
_WINDOW_SECONDS = 60.0


# ---------------------------------------------------------------------------
# DeliveryReceipt
# ---------------------------------------------------------------------------

@dataclass
class DeliveryReceipt:
    """Record of a single notification delivery attempt."""

    status: Literal["SENT", "FAILED", "SKIPPED"]
    timestamp: datetime
    smtp_response: str | None
    attempt_count: int


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------

class RateLimiter:
    """Sliding one-minute window; blocks until a slot is free."""

    def __init__(self, per_minute: int) -> None:
        self.per_minute = per_minute
        self._sent: deque[float] = deque()

    def acquire(self) -> None:
        if self.per_minute <= 0:
            return
        now = time.monotonic()
        while self._sent and now - self._sent[0] >= _WINDOW_SECONDS:
            self._sent.popleft()
        if len(self._sent) >= self.per_minute:
            wait = _WINDOW_SECONDS - (now - self._sent[0])
            if wait > 0:
                logger.info("Rate limit reached, waiting %.1fs", wait)
                time.sleep(wait)
            self._sent.popleft()
        self._sent.append(time.monotonic())

    def reset(self) -> None:
        self._sent.clear()


# ---------------------------------------------------------------------------
# EmailSender
# ---------------------------------------------------------------------------

class EmailSender:
    """Send HTML emails via SMTP with retry and rate limiting."""

    def __init__(
        self,
        smtp_host: str,
        smtp_port: int = 587,
        from_address: str = "EchoLight <noreply@echolight.live>",
        reply_to: str | None = None,
        rate_limit_per_minute: int = 100,
    ) -> None:
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.from_address = from_address
        self.reply_to = reply_to
        self.rate_limiter = RateLimiter(rate_limit_per_minute)

    def deliver(self, to_address: str | None, subject: str, body: str) -> DeliveryReceipt:
        """Send one email and return a receipt."""
        if not to_address or "@" not in parseaddr(to_address)[1]:
            logger.info("No usable address, skipping send")
            return DeliveryReceipt(
                status="SKIPPED",
                timestamp=datetime.now(timezone.utc),
                smtp_response=None,
                attempt_count=0,
            )

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.from_address
        msg["To"] = to_address
        if self.reply_to:
            msg["Reply-To"] = self.reply_to
        msg.attach(MIMEText(body, "html"))

        self.rate_limiter.acquire()

        last_error: str | None = None
        for attempt in range(1, _MAX_RETRIES + 1):
            try:
                with smtplib.SMTP(self.smtp_host, self.smtp_port) as server:
                    server.sendmail(parseaddr(self.from_address)[1], [to_address], msg.as_string())
                logger.info("Delivered email (attempt %d)", attempt)
                return DeliveryReceipt(
                    status="SENT",
                    timestamp=datetime.now(timezone.utc),
                    smtp_response="250 OK",
                    attempt_count=attempt,
                )
            except (smtplib.SMTPException, OSError) as exc:
                last_error = str(exc)
                logger.warning("SMTP error on attempt %d: %s", attempt, last_error)
                if attempt < _MAX_RETRIES:
                    time.sleep(_BACKOFF_BASE * (2 ** (attempt - 1)))

        logger.error("Delivery failed after %d attempts", _MAX_RETRIES)
        return DeliveryReceipt(
            status="FAILED",
            timestamp=datetime.now(timezone.utc),
            smtp_response=last_error,
            attempt_count=_MAX_RETRIES,
        )

    def send(self, to_address: str, subject: str, body: str) -> bool:
        """Dispatcher contract: ``True`` only when the email was accepted."""
        return self.deliver(to_address, subject, body).status == "SENT"
