"""
Webhook intake boundary.

verify (source) -> dedupe (event id window) -> reconcile.

Exact repeats inside the dedup window never reach the reconciler. If the
reconciler fails (store unavailable, timeout), the event id is released and
the error propagates, so the HTTP layer answers 5xx and the provider's own
redelivery retries the event.
"""
from dataclasses import dataclass
from typing import Mapping, Optional

from backend.core import idempotency
from backend.core.clock import Clock, utc_now
from backend.core.logging import log_event
from backend.features.entitlements.reconciler import Applied, EntitlementReconciler
from backend.features.webhooks.source import WebhookSource


@dataclass(frozen=True)
class IntakeResult:
    status: str  # applied | dropped | duplicate | ignored
    event_id: str
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        body = {"received": True, "status": self.status, "eventId": self.event_id}
        if self.reason:
            body["reason"] = self.reason
        return body


def dedup_key(source: str, event_id: str) -> str:
    return f"{source}:{event_id}"


class WebhookIntake:
    def __init__(self, reconciler: Optional[EntitlementReconciler] = None, clock: Clock = utc_now):
        self._reconciler = reconciler
        self._clock = clock

    @property
    def reconciler(self) -> EntitlementReconciler:
        if self._reconciler is None:
            self._reconciler = EntitlementReconciler(clock=self._clock)
        return self._reconciler

    def handle(self, source: WebhookSource, headers: Mapping[str, str], body: bytes) -> IntakeResult:
        """
        Raises:
            WebhookVerificationError: Delivery failed authentication
            TransientStoreError: Reconciliation failed; safe to redeliver
        """
        now = self._clock()
        parsed = source.parse(headers, body, now)
        key = dedup_key(parsed.source, parsed.event_id)

        if idempotency.check_and_set(key, parsed.source, now=now):
            log_event(
                "info",
                "webhook.duplicate",
                event_type=parsed.provider_type,
                extra={"event_id": parsed.event_id, "source": parsed.source},
            )
            return IntakeResult(status="duplicate", event_id=parsed.event_id)

        if parsed.event is None:
            log_event(
                "info",
                "webhook.ignored",
                event_type=parsed.provider_type,
                extra={"event_id": parsed.event_id, "source": parsed.source},
            )
            return IntakeResult(status="ignored", event_id=parsed.event_id, reason="unhandled_type")

        try:
            outcome = self.reconciler.reconcile(parsed.event)
        except Exception as exc:
            idempotency.release(key)
            log_event(
                "error",
                "webhook.reconcile_failed",
                event_type=parsed.event.type.value,
                error_code=getattr(exc, "code", exc.__class__.__name__),
                extra={"event_id": parsed.event_id, "source": parsed.source},
            )
            raise

        if isinstance(outcome, Applied):
            return IntakeResult(status="applied", event_id=parsed.event_id)
        return IntakeResult(status="dropped", event_id=parsed.event_id, reason=outcome.reason)
