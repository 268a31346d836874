"""
Stripe webhook source.

Verifies the stripe-signature header with the Stripe SDK and maps the three
subscription lifecycle events to billing events. The subject identity is
the Clerk user id stored in the checkout session / subscription metadata.
"""
import json
import os
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

import stripe

from backend.core.errors import WebhookVerificationError
from backend.features.webhooks.source import ParsedWebhook, header
from backend.models.inbound_event import EventType, InboundEvent


STRIPE_EVENT_TYPES = {
    "checkout.session.completed": EventType.CHECKOUT_COMPLETED,
    "customer.subscription.updated": EventType.SUBSCRIPTION_UPDATED,
    "customer.subscription.deleted": EventType.SUBSCRIPTION_DELETED,
}


def subject_from_metadata(data: Dict[str, Any]) -> Optional[str]:
    metadata = data.get("metadata") or {}
    return metadata.get("clerkId") or metadata.get("user_id") or None


class StripeWebhookSource:
    """Stripe implementation of the WebhookSource protocol."""

    name = "stripe"

    def __init__(self, webhook_secret: Optional[str] = None):
        self.webhook_secret = webhook_secret or os.getenv("STRIPE_WEBHOOK_SECRET")

    def parse(self, headers: Mapping[str, str], body: bytes, received_at: datetime) -> ParsedWebhook:
        if not self.webhook_secret:
            raise WebhookVerificationError("STRIPE_WEBHOOK_SECRET not configured", status_code=500, code="webhook_not_configured")

        sig_header = header(headers, "stripe-signature")
        if not sig_header:
            raise WebhookVerificationError("Missing stripe-signature header")

        try:
            stripe.Webhook.construct_event(body, sig_header, self.webhook_secret)
        except ValueError as e:
            raise WebhookVerificationError(f"Invalid payload: {e}")
        except stripe.SignatureVerificationError as e:
            raise WebhookVerificationError(f"Invalid signature: {e}")

        # Signature checked above; read fields from the raw JSON
        try:
            event = json.loads(body)
        except ValueError as e:
            raise WebhookVerificationError(f"Invalid payload: {e}")
        return self._map_event(event, received_at)

    def _map_event(self, event: Dict[str, Any], received_at: datetime) -> ParsedWebhook:
        event_id = event.get("id")
        provider_type = event.get("type") or ""
        if not event_id:
            raise WebhookVerificationError("Event has no id")

        event_type = STRIPE_EVENT_TYPES.get(provider_type)
        if event_type is None:
            return ParsedWebhook(source=self.name, event_id=event_id, provider_type=provider_type, event=None)

        data = (event.get("data") or {}).get("object") or {}
        payload: Dict[str, Any] = {}
        if event_type is EventType.SUBSCRIPTION_UPDATED:
            payload["active"] = data.get("status") == "active"
            payload["status"] = data.get("status")
        if data.get("customer"):
            payload["customer_id"] = data.get("customer")

        return ParsedWebhook(
            source=self.name,
            event_id=event_id,
            provider_type=provider_type,
            event=InboundEvent(
                type=event_type,
                event_id=event_id,
                subject_identity=subject_from_metadata(data),
                payload=payload,
                received_at=received_at,
            ),
        )
