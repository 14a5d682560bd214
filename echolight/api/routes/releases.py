"""Release triggers: POST /releases/posthumous, POST /releases/sweep.

Callers are the trust-network verification workflow and the external
scheduler; both are authenticated upstream.
"""
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from echolight.api.deps import get_executor, get_release_store
from echolight.db.repositories import SqlReleaseStore
from echolight.db.time import utcnow
from echolight.release.executor import ReleaseExecutor
from echolight.release.posthumous import release_posthumous
from echolight.release.sweep import run_sweep

router = APIRouter(prefix="/releases", tags=["releases"])


class PosthumousBody(BaseModel):
    user_id: UUID
    actor: str = "verification-workflow"


@router.post("/posthumous", summary="Release a user's posthumous messages")
def trigger_posthumous(
    body: PosthumousBody,
    store: SqlReleaseStore = Depends(get_release_store),
    executor: ReleaseExecutor = Depends(get_executor),
):
    result = release_posthumous(store, executor, body.user_id, utcnow(), actor=body.actor)
    return {"success": True, **result.as_dict()}


@router.post("/sweep", summary="Release date-triggered messages that are due")
def trigger_sweep(
    store: SqlReleaseStore = Depends(get_release_store),
    executor: ReleaseExecutor = Depends(get_executor),
):
    result = run_sweep(store, executor, utcnow())
    return {"success": True, **result.as_dict()}
