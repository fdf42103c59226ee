"""Clerk and Stripe webhook endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from imaginify.database import get_db
from imaginify.services.identity_sync import (
    handle_identity_event,
    parse_clerk_event,
    verify_clerk_webhook,
)
from imaginify.services.payment_service import handle_stripe_webhook

router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])


@router.post("/clerk")
async def clerk_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Receive Clerk user lifecycle events and mirror them locally.

    An update for a user that does not exist yet answers 409 so that Clerk
    redelivers it after the matching create has been applied.
    """
    body = await request.body()
    payload = verify_clerk_webhook(body, dict(request.headers))

    event = parse_clerk_event(payload)
    if event is None:
        return {"status": "ignored", "type": payload.get("type")}

    outcome = await handle_identity_event(db, event)
    content = outcome.model_dump(mode="json")
    if not outcome.ok:
        return JSONResponse(status_code=409, content=content)
    return content


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Receive and process Stripe webhook events.

    Reads the raw request body and the Stripe-Signature header,
    then delegates to the payment service for verification and settlement.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature", "")
    outcome = await handle_stripe_webhook(payload, sig_header, db)
    if outcome is None:
        return {"status": "ignored"}
    return {"status": outcome.status.value, "payment_id": outcome.payment_id}
