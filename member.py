from __future__ import annotations

from enum import Enum


class MemberStatus(str, Enum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"


class Member:
    """A registered library member. Only ACTIVE members may borrow."""

    def __init__(self, name: str, email: str, phone: str | None = None, id: int | None = None,
                 membership_id: str | None = None, registration_date: str | None = None,
                 status: MemberStatus | str = MemberStatus.ACTIVE) -> None:
        self.id = id
        self.name = name.strip()
        self.email = email.strip()
        self.phone = phone.strip() if phone else None
        self.membership_id = membership_id
        self.registration_date = registration_date
        self.status = MemberStatus(status)

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.name} ({self.membership_id})"

    @property
    def is_active(self) -> bool:
        return self.status == MemberStatus.ACTIVE

    @staticmethod
    def make_membership_id(member_id: int) -> str:
        return f"MEM{member_id:06d}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "membership_id": self.membership_id,
            "phone": self.phone,
            "registration_date": self.registration_date,
            "status": self.status.value,
        }

    @staticmethod
    def from_dict(data: dict) -> "Member":
        return Member(
            id=data.get("id"),
            name=data["name"],
            email=data["email"],
            phone=data.get("phone"),
            membership_id=data.get("membership_id"),
            registration_date=data.get("registration_date"),
            status=data.get("status") or MemberStatus.ACTIVE,
        )
