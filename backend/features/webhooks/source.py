"""
Webhook source protocol.

Defines the interface for external event providers (Stripe, Clerk).
Each source verifies transport authenticity and maps its native payload to
a provider-neutral InboundEvent; the intake boundary does the rest.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Mapping, Optional, Protocol

from backend.models.inbound_event import InboundEvent


@dataclass(frozen=True)
class ParsedWebhook:
    """Result of verifying and parsing one delivery."""
    source: str  # stripe, clerk
    event_id: str
    provider_type: str
    event: Optional[InboundEvent]  # None for types the platform ignores


class WebhookSource(Protocol):
    name: str

    def parse(self, headers: Mapping[str, str], body: bytes, received_at: datetime) -> ParsedWebhook:
        """
        Verify the delivery and map it to an InboundEvent.

        Raises:
            WebhookVerificationError: If the signature or payload is invalid
        """
        ...


def header(headers: Mapping[str, str], name: str) -> Optional[str]:
    """Case-insensitive header lookup for plain dicts."""
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, candidate in headers.items():
        if key.lower() == lowered:
            return candidate
    return None
