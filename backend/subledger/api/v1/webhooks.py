"""Stripe webhook endpoint — receives and processes Stripe events."""

import json
import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from subledger.api.deps import get_billing_client, get_db
from subledger.billing.errors import SignatureError
from subledger.billing.stripe_client import BillingProviderClient
from subledger.billing.webhooks import WebhookEvent, dispatch_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/billing", tags=["webhooks"])


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    client: BillingProviderClient = Depends(get_billing_client),
) -> dict[str, str]:
    """Receive and process Stripe webhook events.

    Only signature failures are rejected (400). A handler failure is rolled
    back, logged and acknowledged with ``{"status": "failed"}``; reconciliation
    repairs the state later.
    """
    # 1. Read raw body (MUST be raw bytes for signature verification)
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    # 2. Verify signature
    try:
        client.verify_webhook_signature(payload, sig_header)
    except SignatureError as e:
        logger.warning("Webhook rejected: %s", e.message)
        raise

    # Handlers read the verified body as plain dicts
    event = WebhookEvent.from_stripe(json.loads(payload))

    # 3. Dispatch to handler
    try:
        outcome = await dispatch_event(db, client, event)
        await db.commit()
    except Exception:
        await db.rollback()
        logger.exception("Error processing webhook event %s (%s)", event.id, event.type)
        return {"status": "failed"}

    return {"status": outcome.value}
