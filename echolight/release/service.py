"""Wiring of the release engine from application settings."""
from __future__ import annotations

from echolight.core.settings import Settings, get_settings
from echolight.notification.email_sender import EmailSender
from echolight.notification.renderer import DeliveryRenderer
from echolight.release.executor import ReleaseExecutor
from echolight.release.interfaces import NotificationDispatcher, ReleaseStore
from echolight.release.tokens import TokenIssuer


def build_email_sender(settings: Settings) -> EmailSender:
    return EmailSender(
        smtp_host=settings.smtp_host,
        smtp_port=settings.smtp_port,
        from_address=settings.from_email,
        reply_to=settings.support_email,
        rate_limit_per_minute=settings.smtp_rate_limit_per_minute,
    )


def build_token_issuer(store: ReleaseStore, settings: Settings | None = None) -> TokenIssuer:
    settings = settings or get_settings()
    return TokenIssuer(
        store,
        ttl_days=settings.token_ttl_days,
        default_sender_name=settings.default_sender_name,
    )


def build_executor(
    store: ReleaseStore,
    dispatcher: NotificationDispatcher | None = None,
    settings: Settings | None = None,
) -> ReleaseExecutor:
    settings = settings or get_settings()
    return ReleaseExecutor(
        store=store,
        dispatcher=dispatcher or build_email_sender(settings),
        issuer=build_token_issuer(store, settings),
        renderer=DeliveryRenderer(site_url=settings.site_url, support_email=settings.support_email),
        default_sender_name=settings.default_sender_name,
    )
