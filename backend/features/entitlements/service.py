"""
backend/features/entitlements/service.py

Administrative entitlement actions.

`set_role` is the only path that can assign (or remove) `admin`; billing and
identity events never do.
"""

import logging
from typing import Optional, Union

from backend.core.clock import Clock, utc_now
from backend.core.errors import NotFoundError, ValidationError
from backend.core.logging import log_event
from backend.features.entitlements.roles import Role
from backend.features.ledger.service import get_ledger_store, retry_on_conflict
from backend.features.ledger.store import LedgerStore
from backend.models.user import UserEntitlement


logger = logging.getLogger("inkwell")


def get_entitlement(identity: str, store: Optional[LedgerStore] = None) -> UserEntitlement:
    """
    Raises:
        NotFoundError: If the identity has no entitlement record
    """
    record = (store or get_ledger_store()).get("users", identity)
    if record is None:
        raise NotFoundError(f"User {identity} not found")
    return UserEntitlement.from_record(record)


def set_role(
    identity: str,
    role: Union[str, Role],
    *,
    actor_id: Optional[str] = None,
    store: Optional[LedgerStore] = None,
    clock: Clock = utc_now,
) -> UserEntitlement:
    """
    Assign a role to an existing user (admin action).

    Usage counters are left untouched.

    Raises:
        ValidationError: If role is not a known role
        NotFoundError: If the user does not exist
    """
    try:
        target = Role.parse(role)
    except ValueError as exc:
        raise ValidationError(str(exc))

    ledger = store or get_ledger_store()

    def attempt() -> UserEntitlement:
        current = get_entitlement(identity, ledger)
        if current.role is target:
            return current
        record = ledger.compare_and_swap(
            "users",
            identity,
            current.version,
            {"role": target.value, "updated_at": clock()},
        )
        return UserEntitlement.from_record(record)

    updated = retry_on_conflict(attempt, description="set_role")
    log_event(
        "info",
        "entitlements.role_set",
        user_id=identity,
        extra={"role": target.value, "actor_id": actor_id},
    )
    return updated
