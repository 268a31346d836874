"""
Webhook API routes.

- POST /api/webhooks/stripe: billing lifecycle events
- POST /api/webhooks/clerk: identity lifecycle events

Both answer 200 for applied, dropped, duplicate and ignored deliveries, 400
for failed verification, and 503 when reconciliation hit a transient store
failure (the provider redelivers).
"""
from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool

from backend.api.deps import get_clerk_source, get_stripe_source, get_webhook_intake
from backend.features.webhooks.clerk_events import ClerkWebhookSource
from backend.features.webhooks.intake import WebhookIntake
from backend.features.webhooks.stripe_events import StripeWebhookSource


router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    intake: WebhookIntake = Depends(get_webhook_intake),
    source: StripeWebhookSource = Depends(get_stripe_source),
):
    body = await request.body()
    result = await run_in_threadpool(intake.handle, source, dict(request.headers), body)
    return result.to_dict()


@router.post("/clerk")
async def clerk_webhook(
    request: Request,
    intake: WebhookIntake = Depends(get_webhook_intake),
    source: ClerkWebhookSource = Depends(get_clerk_source),
):
    body = await request.body()
    result = await run_in_threadpool(intake.handle, source, dict(request.headers), body)
    return result.to_dict()
