"""
backend/models/actor.py

Explicit caller identity passed into every operation that authorizes.
"""

from typing import Optional
from pydantic import BaseModel, ConfigDict

from backend.features.entitlements.roles import Role


class Actor(BaseModel):
    model_config = ConfigDict(frozen=True)

    identity: str
    role: Role = Role.STANDARD
    email: Optional[str] = None
    name: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role.is_admin

    def can_manage(self, owner_id: str) -> bool:
        """Owner or admin."""
        return self.is_admin or self.identity == owner_id
