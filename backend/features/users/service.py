"""
User domain service.
- ensure_user(identity): upsert on first authenticated request
- get_user(identity)
- public_profile(identity): profile card with published post count
- update_profile(identity, ...): user-editable profile fields
- list_users(...): admin directory with search and role filter
- display_name_from_profile()
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from backend.core.clock import Clock, as_utc, utc_now
from backend.core.errors import NotFoundError, PermissionError, TransientStoreError, ValidationError
from backend.core.logging import log_event
from backend.features.entitlements.roles import Role
from backend.features.ledger.service import get_ledger_store, retry_on_conflict
from backend.features.ledger.store import LedgerStore
from backend.models.user import UserEntitlement


PROFILE_EDITABLE = ("name", "bio", "avatar")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def display_name_from_profile(
    first_name: Optional[str],
    last_name: Optional[str],
    email: Optional[str],
) -> Optional[str]:
    """`first last`, falling back to the local part of the email address."""
    full = " ".join(part.strip() for part in (first_name, last_name) if part and part.strip())
    if full:
        return full
    if email and "@" in email:
        return email.split("@", 1)[0]
    return None


def get_user(identity: str, store: Optional[LedgerStore] = None) -> Optional[UserEntitlement]:
    record = (store or get_ledger_store()).get("users", identity)
    if record is None:
        return None
    return UserEntitlement.from_record(record)


def ensure_user(
    identity: str,
    email: Optional[str] = None,
    name: Optional[str] = None,
    store: Optional[LedgerStore] = None,
    clock: Clock = utc_now,
) -> UserEntitlement:
    """
    Get the user's entitlement record, creating a standard one if absent.

    Raises:
        PermissionError: If the identity was deleted by the identity provider
    """
    ledger = store or get_ledger_store()
    existing = get_user(identity, ledger)
    if existing:
        return existing

    if ledger.get("tombstones", identity) is not None:
        raise PermissionError("Account has been deleted", code="account_deleted")

    now = clock()
    fields = {
        "role": Role.STANDARD.value,
        "usage_count": 0,
        "usage_reset_at": now,
        "created_at": now,
        "updated_at": now,
    }
    if email:
        fields["email"] = email
    if name:
        fields["name"] = name
    created = ledger.insert("users", identity, fields)
    if created is None:
        # Another request (or a webhook) created it first
        created = ledger.get("users", identity)
        if created is None:
            raise TransientStoreError(f"User {identity} changed while being created")
    return UserEntitlement.from_record(created)


def public_profile(identity: str, store: Optional[LedgerStore] = None) -> Dict[str, Any]:
    """
    Raises:
        NotFoundError: If the identity has no user record
    """
    ledger = store or get_ledger_store()
    user = get_user(identity, ledger)
    if user is None:
        raise NotFoundError(f"User {identity} not found")
    published = ledger.find("posts", author_id=identity, status="published")
    return {
        "id": user.identity,
        "name": user.name,
        "avatar": user.avatar,
        "bio": user.bio,
        "createdAt": user.created_at.isoformat() if user.created_at else None,
        "postsCount": len(published),
    }


def update_profile(
    identity: str,
    fields: Dict[str, Any],
    store: Optional[LedgerStore] = None,
    clock: Clock = utc_now,
) -> UserEntitlement:
    """
    Update name / bio / avatar. Role and usage are never editable here.

    Raises:
        ValidationError: Unknown or empty field set
        PermissionError: The identity was deleted
        NotFoundError: No user record
    """
    unknown = sorted(set(fields) - set(PROFILE_EDITABLE))
    if unknown:
        raise ValidationError(f"Fields not editable: {', '.join(unknown)}")
    if not fields:
        raise ValidationError("Nothing to update")

    ledger = store or get_ledger_store()
    if ledger.get("tombstones", identity) is not None:
        raise PermissionError("Account has been deleted", code="account_deleted")

    def attempt() -> UserEntitlement:
        record = ledger.get("users", identity)
        if record is None:
            raise NotFoundError(f"User {identity} not found")
        updated = ledger.compare_and_swap(
            "users",
            identity,
            record.version,
            {**fields, "updated_at": clock()},
        )
        return UserEntitlement.from_record(updated)

    user = retry_on_conflict(attempt, description="update_profile")
    log_event("info", "users.profile_updated", user_id=identity, extra={"fields": ",".join(sorted(fields))})
    return user


def list_users(
    *,
    page: int = 1,
    limit: int = 20,
    search: Optional[str] = None,
    role: Optional[str] = None,
    store: Optional[LedgerStore] = None,
) -> Tuple[List[UserEntitlement], int]:
    """Newest users first; `search` matches name or email, case-insensitively."""
    if page < 1 or limit < 1:
        raise ValidationError("page and limit must be >= 1")
    filters = {}
    if role:
        try:
            filters["role"] = Role.parse(role).value
        except ValueError as exc:
            raise ValidationError(str(exc))

    users = [UserEntitlement.from_record(r) for r in (store or get_ledger_store()).find("users", **filters)]
    if search:
        needle = search.lower()
        users = [u for u in users if needle in (u.name or "").lower() or needle in (u.email or "").lower()]
    users.sort(key=lambda u: as_utc(u.created_at) or _EPOCH, reverse=True)
    start = (page - 1) * limit
    return users[start:start + limit], len(users)
