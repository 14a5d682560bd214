import logging
import logging.config
import re

# (pattern, replacement) pairs applied in order to every log message and argument.
REDACTIONS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"(?i)((?:delivery_)?token\s*[=:]\s*)([^,&\s]+)"), r"\1[REDACTED]"),
    (re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}"), "[REDACTED]"),
    (re.compile(r"\b(?:\+1[-.\s]?)?(?:\(?\d{3}\)?[-.\s]?)\d{3}[-.\s]?\d{4}\b"), "[REDACTED]"),
]


def redact(text: str) -> str:
    for pattern, replacement in REDACTIONS:
        text = pattern.sub(replacement, text)
    return text


class ContactSafeFilter(logging.Filter):
    """Strip recipient addresses, phone numbers and delivery tokens from records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact(record.msg)

        if isinstance(record.args, tuple):
            record.args = tuple(redact(a) if isinstance(a, str) else a for a in record.args)
        elif isinstance(record.args, dict):
            record.args = {
                key: redact(value) if isinstance(value, str) else value
                for key, value in record.args.items()
            }
        return True


def short_id(value: object) -> str:
    """Truncate an identifier for log output, e.g. ``1a2b3c4d***``."""
    return f"{str(value)[:8]}***"


def setup_logging(level: str | None = None) -> None:
    from echolight.core.settings import get_settings

    root_level = (level or get_settings().log_level).upper()
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "contact_safe": {"()": "echolight.core.logging.ContactSafeFilter"},
            },
            "formatters": {
                "default": {"format": "%(asctime)s %(levelname)s %(name)s %(message)s"},
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "filters": ["contact_safe"],
                }
            },
            "root": {"handlers": ["console"], "level": root_level},
            "loggers": {
                "sqlalchemy.engine": {"level": "WARNING"},
                "uvicorn.access": {
                    "handlers": ["console"],
                    "level": "WARNING",
                    "propagate": False,
                },
            },
        }
    )
