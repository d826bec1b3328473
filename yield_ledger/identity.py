"""
Actor identity supplied by the upstream authentication layer

The ledger trusts the account id and role exactly as given.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .errors import PermissionDeniedError


class Role(Enum):
    USER = "user"
    ADMIN = "admin"


@dataclass(frozen=True)
class Actor:
    account_id: str
    role: Role = Role.USER
    email: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def label(self) -> str:
        return self.email or self.account_id

    def require_admin(self) -> None:
        if not self.is_admin:
            raise PermissionDeniedError("Administrator role required")

    def require_access(self, account_id: str) -> None:
        """Owners may act on their own account; administrators on any"""
        if self.account_id != account_id and not self.is_admin:
            raise PermissionDeniedError("Forbidden")
