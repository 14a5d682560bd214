"""FastAPI dependency injection: database sessions and engine factories."""
from __future__ import annotations

from collections.abc import Generator

from fastapi import Depends
from sqlalchemy.orm import Session

from echolight.db.repositories import SqlReleaseStore
from echolight.db.session import get_session_factory
from echolight.release.executor import ReleaseExecutor
from echolight.release.service import build_executor, build_token_issuer
from echolight.release.tokens import TokenIssuer


def get_db() -> Generator[Session, None, None]:
    """Yield a SQLAlchemy session; commit on success, rollback on error."""
    db = get_session_factory()()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_release_store(db: Session = Depends(get_db)) -> SqlReleaseStore:
    """Return a SqlReleaseStore bound to the current DB session."""
    return SqlReleaseStore(db)


def get_executor(store: SqlReleaseStore = Depends(get_release_store)) -> ReleaseExecutor:
    """Return a ReleaseExecutor dispatching through the configured SMTP relay."""
    return build_executor(store)


def get_token_issuer(store: SqlReleaseStore = Depends(get_release_store)) -> TokenIssuer:
    return build_token_issuer(store)
