"""
backend/models/user.py

User entitlement record: one user's access tier and metered usage.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict

from backend.core.clock import as_utc
from backend.features.entitlements.roles import Role
from backend.features.ledger.store import LedgerRecord


class UserEntitlement(BaseModel):
    """
    Snapshot of a `users` ledger record.

    Fields:
    - identity: Clerk user id (record key)
    - role: standard | premium | admin
    - usage_count: metered AI completions in the current period
    - usage_reset_at: start of the current counting period (UTC)
    - version: optimistic lock counter
    """
    model_config = ConfigDict(frozen=True)

    identity: str
    role: Role = Role.STANDARD
    usage_count: int = 0
    usage_reset_at: datetime
    version: int = 1
    email: Optional[str] = None
    name: Optional[str] = None
    avatar: Optional[str] = None
    bio: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: LedgerRecord) -> "UserEntitlement":
        return cls(
            identity=record.key,
            role=Role.parse(record.get("role")),
            usage_count=int(record.get("usage_count") or 0),
            usage_reset_at=as_utc(record["usage_reset_at"]),
            version=record.version,
            email=record.get("email"),
            name=record.get("name"),
            avatar=record.get("avatar"),
            bio=record.get("bio"),
            created_at=as_utc(record.get("created_at")),
        )

    def to_public(self) -> dict:
        return {
            "id": self.identity,
            "email": self.email,
            "name": self.name,
            "avatar": self.avatar,
            "bio": self.bio,
            "role": self.role.value,
            "usageCount": self.usage_count,
            "usageResetAt": self.usage_reset_at.isoformat(),
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
