"""
The caller of an order operation, as established by authentication.
"""
from dataclasses import dataclass

from domain.enums import Role


@dataclass(frozen=True)
class Actor:
    user_id: str
    role: Role = Role.CUSTOMER

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def owns(self, owner_id: str) -> bool:
        return self.user_id == owner_id
