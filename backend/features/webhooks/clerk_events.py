"""
Clerk webhook source.

Clerk delivers through Svix: the signature is HMAC-SHA256 over
"{svix-id}.{svix-timestamp}.{raw body}" keyed with the base64 part of the
"whsec_..." secret, sent as one or more space-separated "v1,<base64>"
entries in the svix-signature header.
"""
import base64
import hashlib
import hmac
import json
import os
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from backend.core.errors import WebhookVerificationError
from backend.features.users.service import display_name_from_profile
from backend.features.webhooks.source import ParsedWebhook, header
from backend.models.inbound_event import EventType, InboundEvent


TOLERANCE_SECONDS = 300

CLERK_EVENT_TYPES = {
    "user.created": EventType.USER_CREATED,
    "user.updated": EventType.USER_UPDATED,
    "user.deleted": EventType.USER_DELETED,
}


def _secret_bytes(secret: str) -> bytes:
    if secret.startswith("whsec_"):
        secret = secret[len("whsec_"):]
    return base64.b64decode(secret)


def sign_svix(secret: str, msg_id: str, timestamp: int, body: bytes) -> str:
    """Compute the svix-signature header value for a payload."""
    signed_content = f"{msg_id}.{timestamp}.".encode() + body
    digest = hmac.new(_secret_bytes(secret), signed_content, hashlib.sha256).digest()
    return "v1," + base64.b64encode(digest).decode()


def verify_svix(
    secret: str,
    msg_id: str,
    timestamp: str,
    signature_header: str,
    body: bytes,
    now: Optional[datetime] = None,
    tolerance_seconds: int = TOLERANCE_SECONDS,
) -> None:
    """
    Raises:
        WebhookVerificationError: Stale timestamp or no matching signature
    """
    try:
        ts = int(timestamp)
    except (TypeError, ValueError):
        raise WebhookVerificationError("Invalid svix-timestamp header")

    now_ts = int((now or datetime.now(timezone.utc)).timestamp())
    if abs(now_ts - ts) > tolerance_seconds:
        raise WebhookVerificationError("Webhook timestamp outside tolerance")

    try:
        expected = sign_svix(secret, msg_id, ts, body).split(",", 1)[1]
    except (ValueError, TypeError):
        raise WebhookVerificationError("CLERK_WEBHOOK_SECRET is malformed", status_code=500, code="webhook_not_configured")

    for entry in signature_header.split():
        version, _, provided = entry.partition(",")
        if version == "v1" and hmac.compare_digest(provided, expected):
            return
    raise WebhookVerificationError("Invalid signature")


def profile_from_user_data(data: Dict[str, Any]) -> Dict[str, Any]:
    """Primary email, `first last` name (falling back to the email local part), avatar."""
    primary_id = data.get("primary_email_address_id")
    email = None
    for address in data.get("email_addresses") or []:
        if address.get("id") == primary_id:
            email = address.get("email_address")
            break
    profile = {
        "email": email,
        "name": display_name_from_profile(data.get("first_name"), data.get("last_name"), email),
        "avatar": data.get("image_url"),
    }
    return {k: v for k, v in profile.items() if v is not None}


class ClerkWebhookSource:
    """Clerk implementation of the WebhookSource protocol."""

    name = "clerk"

    def __init__(self, webhook_secret: Optional[str] = None):
        self.webhook_secret = webhook_secret or os.getenv("CLERK_WEBHOOK_SECRET")

    def parse(self, headers: Mapping[str, str], body: bytes, received_at: datetime) -> ParsedWebhook:
        if not self.webhook_secret:
            raise WebhookVerificationError("CLERK_WEBHOOK_SECRET not configured", status_code=500, code="webhook_not_configured")

        msg_id = header(headers, "svix-id")
        timestamp = header(headers, "svix-timestamp")
        signature = header(headers, "svix-signature")
        if not (msg_id and timestamp and signature):
            raise WebhookVerificationError("Missing svix headers")

        verify_svix(self.webhook_secret, msg_id, timestamp, signature, body, now=received_at)

        try:
            event = json.loads(body)
        except ValueError as e:
            raise WebhookVerificationError(f"Invalid payload: {e}")

        provider_type = event.get("type") or ""
        event_type = CLERK_EVENT_TYPES.get(provider_type)
        if event_type is None:
            return ParsedWebhook(source=self.name, event_id=msg_id, provider_type=provider_type, event=None)

        data = event.get("data") or {}
        payload = {} if event_type is EventType.USER_DELETED else profile_from_user_data(data)
        return ParsedWebhook(
            source=self.name,
            event_id=msg_id,
            provider_type=provider_type,
            event=InboundEvent(
                type=event_type,
                event_id=msg_id,
                subject_identity=data.get("id") or None,
                payload=payload,
                received_at=received_at,
            ),
        )
