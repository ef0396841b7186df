from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Role(str, Enum):
    MEMBER = "Member"
    ADMIN = "Admin"


def username_from_email(email: str) -> str:
    return email.strip().split("@")[0].lower()


# -----------------------------
# Data model
# -----------------------------
@dataclass(frozen=True)
class User:
    id: Optional[int]            # assigned by the record store
    first_name: str
    last_name: str
    email: str
    username: str
    password: str
    role: Role = Role.MEMBER

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @staticmethod
    def create(
        *,
        first_name: str,
        last_name: str,
        email: str,
        password: str,
        role: Role = Role.MEMBER,
    ) -> "User":
        email = email.strip().lower()
        return User(
            id=None,
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            email=email,
            username=username_from_email(email),
            password=password,
            role=Role(role),
        )
