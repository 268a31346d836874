"""
Post status state machine.

    draft    -> pending | published
    pending  -> published | rejected
    rejected -> pending
    published (terminal)

draft -> published is reserved for the admin publish override; the normal
path to publication goes through pending.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Union

from backend.core.errors import InvalidTransitionError


class PostStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    PUBLISHED = "published"
    REJECTED = "rejected"


TRANSITIONS = {
    PostStatus.DRAFT: frozenset({PostStatus.PENDING, PostStatus.PUBLISHED}),
    PostStatus.PENDING: frozenset({PostStatus.PUBLISHED, PostStatus.REJECTED}),
    PostStatus.REJECTED: frozenset({PostStatus.PENDING}),
    PostStatus.PUBLISHED: frozenset(),
}


def can_transition(current: Union[str, PostStatus], target: Union[str, PostStatus]) -> bool:
    return PostStatus(target) in TRANSITIONS[PostStatus(current)]


def require_status(current: Union[str, PostStatus], target: PostStatus, *allowed: PostStatus) -> PostStatus:
    """
    Check that a post may move to `target` from its current status.

    `allowed` narrows the legal source states for a given operation.

    Raises:
        InvalidTransitionError: If the transition is not permitted
    """
    current = PostStatus(current)
    if (allowed and current not in allowed) or not can_transition(current, target):
        raise InvalidTransitionError(
            f"Cannot move post from {current.value} to {target.value}",
            current=current.value,
            target=target.value,
        )
    return current


def transition_fields(
    target: PostStatus,
    now: datetime,
    reason: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Fields written with a status change.

    Keeps published_at set iff published, and rejection_reason set only
    while rejected (resubmission clears it).
    """
    fields: Dict[str, Any] = {
        "status": target.value,
        "published_at": now if target is PostStatus.PUBLISHED else None,
        "rejection_reason": reason if target is PostStatus.REJECTED else None,
        "updated_at": now,
    }
    return fields
