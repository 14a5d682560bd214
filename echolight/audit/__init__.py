"""Append-only audit trail for release engine events."""
