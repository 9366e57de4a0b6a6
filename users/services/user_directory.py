# users/services/user_directory.py

from dataclasses import dataclass
from typing import Optional

from users.models import User
from users.validators import normalize_email


@dataclass(frozen=True)
class DirectoryEntry:
    role: str
    is_active: bool

    @property
    def can_sign_in(self) -> bool:
        return self.is_active and self.role in User.Role.values


def lookup(email: str) -> Optional[DirectoryEntry]:
    """Role and active flag of a directory user, or None for visitors."""
    row = (
        User.objects.filter(email=normalize_email(email))
        .values("role", "is_active")
        .first()
    )
    if row is None:
        return None
    return DirectoryEntry(role=row["role"], is_active=row["is_active"])
