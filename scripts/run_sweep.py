#!/usr/bin/env python3
"""Release date-triggered messages that are due.  Meant for cron.

Usage:
    python scripts/run_sweep.py          # uses DATABASE_URL from env / .env
    DATABASE_URL=... python scripts/run_sweep.py

Exits non-zero when the sweep cannot run at all (e.g. the database is
unreachable) so the scheduler can alert and retry.  Per-message failures
are reported in the summary and retried on the next tick.
"""
from __future__ import annotations

import logging
import sys

# Ensure project root is on sys.path
sys.path.insert(0, ".")

from echolight.core.logging import setup_logging
from echolight.db.repositories import SqlReleaseStore
from echolight.db.session import get_session_factory
from echolight.db.time import utcnow
from echolight.release.service import build_executor
from echolight.release.sweep import run_sweep

logger = logging.getLogger("echolight.sweep")


def main() -> int:
    setup_logging()
    session = get_session_factory()()
    try:
        store = SqlReleaseStore(session)
        result = run_sweep(store, build_executor(store), utcnow())
    except Exception:
        logger.exception("Scheduled sweep aborted")
        session.rollback()
        return 1
    finally:
        session.close()

    print(
        f"Sweep complete: {result.immediate} sent, {result.errors} errors, "
        f"{result.skipped} skipped"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
