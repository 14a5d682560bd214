"""Delivery email rendering.

Every user-supplied value substituted into a template is HTML-escaped.
"""
from __future__ import annotations

import html
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from string import Template
from urllib.parse import quote

TEMPLATE_DIR = Path(__file__).parent / "templates"

DELIVERY_TEMPLATE = "message_delivery_email.html"
TEST_DELIVERY_TEMPLATE = "test_delivery_email.html"


@dataclass(frozen=True, slots=True)
class RenderedEmail:
    subject: str
    body: str


def _load_template(template_dir: str | Path, name: str) -> str:
    path = Path(template_dir) / name
    if not path.is_file():
        raise FileNotFoundError(f"No template {name!r} in {template_dir}")
    return path.read_text(encoding="utf-8")


def build_access_link(site_url: str, token: str) -> str:
    return f"{site_url.rstrip('/')}/message?token={quote(token, safe='')}"


class DeliveryRenderer:
    """Render delivery and preview emails for one message and recipient."""

    def __init__(
        self,
        site_url: str,
        support_email: str,
        template_dir: str | Path = TEMPLATE_DIR,
    ) -> None:
        self.site_url = site_url
        self.support_email = support_email
        self.template_dir = template_dir

    def _render(
        self,
        template_name: str,
        *,
        recipient_name: str | None,
        sender_name: str,
        message_title: str | None,
        token: str,
        expires_at: datetime,
    ) -> str:
        template_html = _load_template(self.template_dir, template_name)
        return Template(template_html).safe_substitute(
            recipient_name=html.escape(recipient_name or "Friend"),
            sender_name=html.escape(sender_name),
            message_title=html.escape(message_title or "A message for you"),
            access_link=html.escape(build_access_link(self.site_url, token)),
            expires_on=expires_at.strftime("%B %d, %Y"),
            support_email=html.escape(self.support_email),
        )

    def render_delivery(
        self,
        *,
        recipient_name: str | None,
        sender_name: str,
        message_title: str | None,
        token: str,
        expires_at: datetime,
    ) -> RenderedEmail:
        body = self._render(
            DELIVERY_TEMPLATE,
            recipient_name=recipient_name,
            sender_name=sender_name,
            message_title=message_title,
            token=token,
            expires_at=expires_at,
        )
        return RenderedEmail(subject=f"A message from {sender_name} awaits you", body=body)

    def render_test_delivery(
        self,
        *,
        recipient_name: str | None,
        sender_name: str,
        message_title: str | None,
        token: str,
        expires_at: datetime,
    ) -> RenderedEmail:
        body = self._render(
            TEST_DELIVERY_TEMPLATE,
            recipient_name=recipient_name,
            sender_name=sender_name,
            message_title=message_title,
            token=token,
            expires_at=expires_at,
        )
        return RenderedEmail(subject=f"[Preview] A message from {sender_name} awaits you", body=body)
