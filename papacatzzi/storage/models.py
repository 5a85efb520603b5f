from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    return email.strip().lower()


@dataclass
class Account:
    id: str
    email: str
    username: Optional[str] = None
    password_hash: Optional[str] = None
    federated_id: Optional[str] = None
    is_active: bool = False
    created_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def new(
        cls,
        email: str,
        *,
        username: str | None = None,
        password_hash: str | None = None,
        federated_id: str | None = None,
        is_active: bool = False,
    ) -> "Account":
        return cls(
            id=str(uuid.uuid4()),
            email=normalize_email(email),
            username=username,
            password_hash=password_hash,
            federated_id=federated_id or None,
            is_active=is_active,
        )

    def copy(self, **changes) -> "Account":
        return replace(self, **changes)

    def public_dict(self) -> dict:
        """Fields safe to hand to clients; the password digest never leaves."""
        return {
            "id": self.id,
            "email": self.email,
            "username": self.username,
            "federated": bool(self.federated_id),
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat(),
        }
