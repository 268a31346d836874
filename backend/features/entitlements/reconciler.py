"""
Entitlement reconciliation engine.

Folds authenticated, deduplicated billing and identity events into the user
entitlement record. Delivery is at-least-once and unordered, so the fold
uses a precedence rule instead of arrival order:

- role authority: admin > billing > identity
- existence authority: identity > billing (user_deleted wins over every
  later event for that identity, via a tombstone)
- neither source can produce `admin`

`fold_event` is pure: (current record, event, now, tombstoned) -> Decision.
`EntitlementReconciler.reconcile` reads, folds, and writes with
compare-and-swap, re-folding when a concurrent writer (typically a quota
reservation on the same record) wins the race. Store failures are not
retried here; they propagate to the webhook intake, which lets the provider
redeliver.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Union

from backend.core.clock import Clock, utc_now
from backend.core.errors import NotFoundError, UnresolvedSubjectError, VersionConflictError
from backend.core.logging import log_event
from backend.features.entitlements.roles import Role
from backend.features.ledger.service import get_ledger_store, retry_on_conflict
from backend.features.ledger.store import LedgerStore
from backend.models.inbound_event import EventSource, EventType, InboundEvent
from backend.models.user import UserEntitlement


logger = logging.getLogger("inkwell")

PROFILE_FIELDS = ("email", "name", "avatar")

CREATE = "create"
UPDATE = "update"
DELETE = "delete"
NOOP = "noop"
DROP = "drop"


@dataclass(frozen=True)
class Decision:
    """Result of folding one event into the current record."""
    action: str
    fields: Dict[str, Any] = field(default_factory=dict)
    reason: Optional[str] = None


@dataclass(frozen=True)
class Applied:
    event_id: str
    identity: str
    action: str  # created | updated | deleted | unchanged
    role: Optional[Role] = None


@dataclass(frozen=True)
class Dropped:
    event_id: str
    reason: str
    identity: Optional[str] = None


ReconcileOutcome = Union[Applied, Dropped]


def _billing_target_role(event: InboundEvent) -> Role:
    if event.type is EventType.SUBSCRIPTION_UPDATED:
        return Role.PREMIUM if bool(event.payload.get("active")) else Role.STANDARD
    if event.type is EventType.CHECKOUT_COMPLETED:
        return Role.PREMIUM
    return Role.STANDARD


def _profile_fields(event: InboundEvent) -> Dict[str, Any]:
    return {
        name: event.payload[name]
        for name in PROFILE_FIELDS
        if event.payload.get(name) is not None
    }


def _fresh_record(role: Role, now: datetime) -> Dict[str, Any]:
    return {"role": role.value, "usage_count": 0, "usage_reset_at": now}


def fold_event(
    current: Optional[UserEntitlement],
    event: InboundEvent,
    now: datetime,
    tombstoned: bool = False,
) -> Decision:
    """
    Compute what an event does to a user entitlement record.

    Raises:
        UnresolvedSubjectError: If the event carries no subject identity
    """
    if not event.subject_identity:
        raise UnresolvedSubjectError(f"Event {event.event_id} ({event.type.value}) has no subject identity")

    # Deletion is re-applied on redelivery so a half-finished cascade completes
    if event.type is EventType.USER_DELETED:
        return Decision(DELETE)

    if tombstoned:
        return Decision(DROP, reason="tombstoned")

    if event.source is EventSource.IDENTITY:
        if current is None:
            if event.type is EventType.USER_CREATED:
                return Decision(CREATE, {**_fresh_record(Role.STANDARD, now), **_profile_fields(event)})
            return Decision(NOOP, reason="absent")
        return _profile_refresh(current, event)

    target = _billing_target_role(event)
    if current is None:
        # Billing can arrive before identity; a later user_created only refreshes the profile
        return Decision(CREATE, _fresh_record(target, now))
    if not current.role.is_billing_managed:
        return Decision(NOOP, reason="admin_immune")
    if event.type is EventType.CHECKOUT_COMPLETED:
        # A paid upgrade grants a fresh quota period, replays included
        return Decision(UPDATE, _fresh_record(Role.PREMIUM, now))
    if current.role is target:
        return Decision(NOOP, reason="unchanged")
    return Decision(UPDATE, {"role": target.value})


def _profile_refresh(current: UserEntitlement, event: InboundEvent) -> Decision:
    changes = {
        name: value
        for name, value in _profile_fields(event).items()
        if getattr(current, name) != value
    }
    if not changes:
        return Decision(NOOP, reason="unchanged")
    return Decision(UPDATE, changes)


class EntitlementReconciler:
    """Applies inbound events to the ledger store."""

    def __init__(
        self,
        store: Optional[LedgerStore] = None,
        clock: Clock = utc_now,
        content_purger=None,
    ):
        self._store = store or get_ledger_store()
        self._clock = clock
        if content_purger is None:
            from backend.features.posts.service import PostService
            content_purger = PostService(store=self._store, clock=clock)
        self._content_purger = content_purger

    def reconcile(self, event: InboundEvent) -> ReconcileOutcome:
        try:
            outcome = retry_on_conflict(
                lambda: self._apply_once(event),
                description=f"reconcile {event.type.value}",
            )
        except UnresolvedSubjectError as exc:
            log_event(
                "warning",
                "reconcile.dropped",
                event_type=event.type.value,
                error_code=exc.code,
                extra={"event_id": event.event_id, "reason": "unresolved_subject"},
            )
            return Dropped(event_id=event.event_id, reason="unresolved_subject")

        if isinstance(outcome, Dropped):
            log_event(
                "info",
                "reconcile.dropped",
                user_id=outcome.identity,
                event_type=event.type.value,
                extra={"event_id": event.event_id, "source": event.source.value, "reason": outcome.reason},
            )
        else:
            log_event(
                "info",
                "reconcile.applied",
                user_id=outcome.identity,
                event_type=event.type.value,
                extra={
                    "event_id": event.event_id,
                    "source": event.source.value,
                    "outcome": outcome.action,
                    "role": outcome.role.value if outcome.role else None,
                },
            )
        return outcome

    def _is_tombstoned(self, identity: str) -> bool:
        return self._store.get("tombstones", identity) is not None

    def _apply_once(self, event: InboundEvent) -> ReconcileOutcome:
        identity = event.subject_identity
        now = self._clock()
        tombstoned = bool(identity) and self._is_tombstoned(identity)
        record = self._store.get("users", identity) if identity else None
        current = UserEntitlement.from_record(record) if record else None

        decision = fold_event(current, event, now, tombstoned)

        if decision.action == DROP:
            return Dropped(event_id=event.event_id, reason=decision.reason, identity=identity)

        if decision.action == NOOP:
            return Applied(
                event_id=event.event_id,
                identity=identity,
                action="unchanged",
                role=current.role if current else None,
            )

        if decision.action == DELETE:
            self._delete_identity(identity, event, now)
            return Applied(event_id=event.event_id, identity=identity, action="deleted")

        if decision.action == CREATE:
            created = self._store.insert(
                "users",
                identity,
                {**decision.fields, "created_at": now, "updated_at": now},
            )
            if created is None:
                raise VersionConflictError(f"users/{identity} was created concurrently")
            if self._is_tombstoned(identity):
                # Lost a race against user_deleted; deletion wins
                self._store.delete("users", identity)
                return Dropped(event_id=event.event_id, reason="tombstoned", identity=identity)
            return Applied(
                event_id=event.event_id,
                identity=identity,
                action="created",
                role=Role.parse(created.get("role")),
            )

        try:
            updated = self._store.compare_and_swap(
                "users",
                identity,
                current.version,
                {**decision.fields, "updated_at": now},
            )
        except NotFoundError:
            # Deleted since the read; re-fold against the absent record
            raise VersionConflictError(f"users/{identity} was deleted concurrently")
        return Applied(
            event_id=event.event_id,
            identity=identity,
            action="updated",
            role=Role.parse(updated.get("role")),
        )

    def _delete_identity(self, identity: str, event: InboundEvent, now: datetime) -> None:
        # Tombstone first so concurrent and late events for the identity are dropped
        self._store.insert("tombstones", identity, {"deleted_at": now, "event_id": event.event_id})
        purged = self._content_purger.purge_identity_content(identity)
        self._store.delete("users", identity)
        log_event(
            "info",
            "reconcile.identity_deleted",
            user_id=identity,
            event_type=event.type.value,
            extra={"event_id": event.event_id, **purged},
        )
