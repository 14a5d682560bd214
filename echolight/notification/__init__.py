"""Notification delivery package.

Renders delivery emails carrying a redemption link and sends them via an
SMTP relay.
"""
