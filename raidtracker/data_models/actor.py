"""
Acting identity passed into privileged operations.
"""

from dataclasses import dataclass
from enum import Enum


class Role(Enum):
    GUEST = "guest"
    MEMBER = "member"
    OFFICER = "officer"
    ADMIN = "admin"

    @property
    def is_officer(self) -> bool:
        """Officers and admins may decide claims and edit rosters."""
        return self in (Role.OFFICER, Role.ADMIN)


@dataclass(frozen=True)
class Actor:
    """The character acting on behalf of a signed-in user."""
    character_id: int
    role: Role = Role.MEMBER

    @property
    def is_officer(self) -> bool:
        return self.role.is_officer

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN
