"""Recipient portal and preview routes.

GET  /messages/redeem?token=...          open a released message
POST /messages/{message_id}/test-delivery send a preview to the owner
"""
from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from echolight.api.deps import get_executor, get_token_issuer
from echolight.db.time import utcnow
from echolight.release.executor import ReleaseExecutor
from echolight.release.tokens import InvalidTokenError, TokenExpiredError, TokenIssuer

router = APIRouter(prefix="/messages", tags=["messages"])


class TestDeliveryBody(BaseModel):
    to_address: str


@router.get("/redeem", summary="Redeem a delivery token")
def redeem(token: str, issuer: TokenIssuer = Depends(get_token_issuer)):
    try:
        redeemed = issuer.redeem(token, utcnow())
    except InvalidTokenError:
        raise HTTPException(status_code=404, detail="This message could not be found")
    except TokenExpiredError:
        raise HTTPException(status_code=410, detail="This link has expired")

    return {
        "message_id": redeemed.message_id,
        "title": redeemed.title,
        "content": redeemed.content,
        "media_urls": redeemed.media_urls,
        "sender_name": redeemed.sender_name,
        "sent_at": redeemed.sent_at.isoformat() if redeemed.sent_at else None,
        "viewed_at": redeemed.viewed_at.isoformat(),
        "first_view": redeemed.first_view,
    }


@router.post("/{message_id}/test-delivery", summary="Send a preview of a message")
def test_delivery(
    message_id: UUID,
    body: TestDeliveryBody,
    executor: ReleaseExecutor = Depends(get_executor),
):
    try:
        sent = executor.send_test_delivery(message_id, body.to_address, utcnow())
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Message {message_id} not found")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {"sent": sent}
