"""
Role model.

Roles form a closed set with an explicit precedence order. Every role
decision derives from `outranks`; call sites ask `is_billing_managed`,
`is_metered` or `is_admin` instead of comparing strings.
"""
from enum import Enum
from typing import Union


class Role(str, Enum):
    STANDARD = "standard"
    PREMIUM = "premium"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return _RANK[self]

    def outranks(self, other: "Role") -> bool:
        return self.rank > other.rank

    @property
    def is_billing_managed(self) -> bool:
        """Billing events may only move a role at or below premium."""
        return not self.outranks(Role.PREMIUM)

    @property
    def is_metered(self) -> bool:
        """Only standard users consume the monthly AI allowance."""
        return not self.outranks(Role.STANDARD)

    @property
    def is_admin(self) -> bool:
        return not Role.ADMIN.outranks(self)

    @classmethod
    def parse(cls, value: Union[str, "Role", None]) -> "Role":
        if isinstance(value, Role):
            return value
        if value is None:
            return cls.STANDARD
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown role: {value!r}")


_RANK = {
    Role.STANDARD: 0,
    Role.PREMIUM: 1,
    Role.ADMIN: 2,
}
