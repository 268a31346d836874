"""
backend/models/inbound_event.py

Authenticated, provider-neutral event handed from the webhook intake to the
entitlement reconciler. Not persisted beyond the dedup window.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field


class EventSource(str, Enum):
    BILLING = "billing"
    IDENTITY = "identity"


class EventType(str, Enum):
    CHECKOUT_COMPLETED = "billing.checkout_completed"
    SUBSCRIPTION_UPDATED = "billing.subscription_updated"
    SUBSCRIPTION_DELETED = "billing.subscription_deleted"
    USER_CREATED = "identity.user_created"
    USER_UPDATED = "identity.user_updated"
    USER_DELETED = "identity.user_deleted"

    @property
    def source(self) -> EventSource:
        return EventSource(self.value.split(".", 1)[0])


class InboundEvent(BaseModel):
    """
    Payload conventions:
    - billing.subscription_updated: {"active": bool}
    - identity.user_created / user_updated: {"email", "name", "avatar"}
    """
    model_config = ConfigDict(frozen=True)

    type: EventType
    event_id: str
    subject_identity: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    received_at: datetime

    @property
    def source(self) -> EventSource:
        return self.type.source
