"""Engine and session factory built from ``DATABASE_URL``."""
from __future__ import annotations

from functools import lru_cache

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from echolight.core.settings import get_settings


def _connect_args(url: str) -> dict:
    # SQLite connections are handed across FastAPI's threadpool.
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    url = get_settings().database_url
    return create_engine(url, pool_pre_ping=True, connect_args=_connect_args(url))


@lru_cache(maxsize=1)
def get_session_factory() -> sessionmaker[Session]:
    return sessionmaker(bind=get_engine(), autocommit=False, autoflush=False)
