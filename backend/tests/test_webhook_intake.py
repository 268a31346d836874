"""
Webhook intake boundary: verify -> dedupe -> reconcile.

Exact repeats never reach the reconciler; a failed reconciliation releases
the event id so the provider's redelivery is processed.
"""
from datetime import datetime, timezone
from unittest.mock import Mock

import pytest

from backend.core import idempotency
from backend.core.errors import TransientStoreError, WebhookVerificationError
from backend.features.entitlements.reconciler import EntitlementReconciler
from backend.features.webhooks.intake import WebhookIntake, dedup_key
from backend.features.webhooks.source import ParsedWebhook
from backend.models.inbound_event import EventType, InboundEvent


NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


class FakeSource:
    """WebhookSource that trusts the body and returns a canned event."""

    name = "fake"

    def __init__(self, event_type=EventType.CHECKOUT_COMPLETED, subject="user_1", event_id="evt_1", fail=False):
        self.event_type = event_type
        self.subject = subject
        self.event_id = event_id
        self.fail = fail

    def parse(self, headers, body, received_at):
        if self.fail:
            raise WebhookVerificationError("Invalid signature")
        event = None
        if self.event_type is not None:
            event = InboundEvent(
                type=self.event_type,
                event_id=self.event_id,
                subject_identity=self.subject,
                received_at=received_at,
            )
        return ParsedWebhook(source=self.name, event_id=self.event_id, provider_type="fake.type", event=event)


@pytest.fixture
def intake(reconciler, clock):
    return WebhookIntake(reconciler=reconciler, clock=clock)


def test_first_delivery_is_applied(intake, ledger_store):
    result = intake.handle(FakeSource(), {}, b"{}")

    assert result.status == "applied"
    assert result.to_dict() == {"received": True, "status": "applied", "eventId": "evt_1"}
    assert ledger_store.get("users", "user_1")["role"] == "premium"


def test_repeat_delivery_is_short_circuited(intake, clock):
    intake.handle(FakeSource(), {}, b"{}")
    reconciler = Mock(spec=EntitlementReconciler)
    repeat = WebhookIntake(reconciler=reconciler, clock=clock).handle(FakeSource(), {}, b"{}")

    assert repeat.status == "duplicate"
    reconciler.reconcile.assert_not_called()


def test_same_event_id_from_different_sources_is_not_a_duplicate(intake):
    other = FakeSource()
    other.name = "other"
    intake.handle(FakeSource(), {}, b"{}")
    assert intake.handle(other, {}, b"{}").status == "applied"
    assert dedup_key("other", "evt_1") != dedup_key("fake", "evt_1")


def test_unhandled_type_is_acknowledged(intake, ledger_store):
    result = intake.handle(FakeSource(event_type=None), {}, b"{}")

    assert result.status == "ignored"
    assert result.reason == "unhandled_type"
    assert ledger_store.find("users") == []


def test_unresolved_subject_is_dropped(intake):
    result = intake.handle(FakeSource(subject=None), {}, b"{}")

    assert result.status == "dropped"
    assert result.to_dict()["reason"] == "unresolved_subject"


def test_failed_verification_records_nothing(intake, clock):
    with pytest.raises(WebhookVerificationError):
        intake.handle(FakeSource(fail=True), {}, b"{}")
    assert idempotency.check_key(dedup_key("fake", "evt_1"), now=clock()) is False


def test_reconcile_failure_releases_event_for_redelivery(intake, clock):
    reconciler = Mock(spec=EntitlementReconciler)
    reconciler.reconcile.side_effect = TransientStoreError("store down")
    failing = WebhookIntake(reconciler=reconciler, clock=clock)

    with pytest.raises(TransientStoreError):
        failing.handle(FakeSource(), {}, b"{}")
    assert idempotency.check_key(dedup_key("fake", "evt_1"), now=clock()) is False

    assert intake.handle(FakeSource(), {}, b"{}").status == "applied"
