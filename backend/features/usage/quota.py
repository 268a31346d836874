"""
backend/features/usage/quota.py

Usage quota tracker for metered AI completions.

Standard users get AI_MONTHLY_LIMIT completions per calendar month (UTC);
premium and admin are unlimited. Rollover is lazy: the first reservation
after a month boundary resets the counter. The read-rollover-check-increment
sequence is committed as a single compare-and-swap on the user record, so
concurrent callers can never push the count past the limit and only one of
them can perform a rollover.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from backend.core.clock import Clock, as_utc, utc_now
from backend.core.config import settings
from backend.core.errors import NotFoundError, QuotaExceededError
from backend.core.logging import log_event
from backend.features.entitlements.roles import Role
from backend.features.ledger.service import get_ledger_store, retry_on_conflict
from backend.features.ledger.store import LedgerStore
from backend.models.user import UserEntitlement


@dataclass(frozen=True)
class QuotaStatus:
    identity: str
    role: Role
    unlimited: bool
    limit: Optional[int]
    used: int
    remaining: Optional[int]
    period_start: datetime

    def to_dict(self) -> dict:
        return {
            "role": self.role.value,
            "unlimited": self.unlimited,
            "limit": self.limit,
            "used": self.used,
            "remaining": self.remaining,
            "periodStart": self.period_start.isoformat(),
        }


def _period_key(value: datetime):
    value = as_utc(value)
    return (value.year, value.month)


def current_period(usage_count: int, usage_reset_at: datetime, now: datetime):
    """
    Apply lazy rollover virtually.

    Returns:
        (used, period_start, rolled_over)
    """
    # Only roll forward; a clock behind the stored anchor keeps the period
    if _period_key(now) > _period_key(usage_reset_at):
        return 0, as_utc(now), True
    return usage_count, as_utc(usage_reset_at), False


class UsageQuotaTracker:
    """Gate and meter the monthly AI allowance."""

    def __init__(
        self,
        store: Optional[LedgerStore] = None,
        clock: Clock = utc_now,
        limit: Optional[int] = None,
    ):
        self._store = store or get_ledger_store()
        self._clock = clock
        self._limit = settings.AI_MONTHLY_LIMIT if limit is None else limit

    @property
    def limit(self) -> int:
        return self._limit

    def _load(self, identity: str) -> UserEntitlement:
        record = self._store.get("users", identity)
        if record is None:
            raise NotFoundError(f"User {identity} not found")
        return UserEntitlement.from_record(record)

    def _status(self, user: UserEntitlement, used: int, period_start: datetime) -> QuotaStatus:
        if not user.role.is_metered:
            return QuotaStatus(
                identity=user.identity,
                role=user.role,
                unlimited=True,
                limit=None,
                used=used,
                remaining=None,
                period_start=period_start,
            )
        return QuotaStatus(
            identity=user.identity,
            role=user.role,
            unlimited=False,
            limit=self._limit,
            used=used,
            remaining=max(0, self._limit - used),
            period_start=period_start,
        )

    def check_and_reserve(self, identity: str, now: Optional[datetime] = None) -> QuotaStatus:
        """
        Reserve one metered action for the user.

        Returns:
            Quota status after the reservation

        Raises:
            NotFoundError: If the user does not exist
            QuotaExceededError: If the monthly allowance is used up
            TransientStoreError: If concurrent writers kept winning the CAS
        """
        def attempt() -> QuotaStatus:
            at = as_utc(now) if now else self._clock()
            user = self._load(identity)
            used, period_start, _ = current_period(user.usage_count, user.usage_reset_at, at)

            if not user.role.is_metered:
                return self._status(user, used, period_start)

            if used >= self._limit:
                log_event(
                    "info",
                    "quota.exceeded",
                    user_id=identity,
                    error_code=QuotaExceededError.code,
                    extra={"used": used, "limit": self._limit},
                )
                raise QuotaExceededError(
                    f"Monthly AI limit reached ({self._limit}). Upgrade to premium for unlimited access.",
                    limit=self._limit,
                    used=used,
                )

            self._store.compare_and_swap(
                "users",
                identity,
                user.version,
                {"usage_count": used + 1, "usage_reset_at": period_start},
            )
            return self._status(user, used + 1, period_start)

        return retry_on_conflict(attempt, description="quota reservation")

    def usage_status(self, identity: str, now: Optional[datetime] = None) -> QuotaStatus:
        """Read-only view of the current period (rollover applied virtually)."""
        at = as_utc(now) if now else self._clock()
        user = self._load(identity)
        used, period_start, _ = current_period(user.usage_count, user.usage_reset_at, at)
        return self._status(user, used, period_start)
