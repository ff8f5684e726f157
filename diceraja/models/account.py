from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict

Role = Literal["user", "gamer", "admin"]
GamerGroup = Literal["groupA", "groupB"]


class AccountKind(str, Enum):
    """Which account collection a record lives in."""

    STANDARD = "standard"
    GAMER = "gamer"

    @classmethod
    def for_role(cls, role: str) -> "AccountKind":
        return cls.GAMER if role == "gamer" else cls.STANDARD


class AccountRef(BaseModel):
    """Natural key of an account across both collections."""

    model_config = ConfigDict(frozen=True)

    kind: AccountKind
    account_id: str

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.account_id}"


class Account(BaseModel):
    """Authenticated principal as seen by the rest of the app. Never carries the password hash."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    email: str
    phone: str
    state: str
    city: str
    role: Role
    tokens: int = 0
    created_at: Optional[datetime] = None

    # Gamer-only membership fields
    group: Optional[GamerGroup] = None
    terms_accepted: Optional[bool] = None
    policy_accepted: Optional[bool] = None
    joining_fees: Optional[int] = None
    joining_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    active_flag: bool = True

    @property
    def kind(self) -> AccountKind:
        return AccountKind.for_role(self.role)

    @property
    def ref(self) -> AccountRef:
        return AccountRef(kind=self.kind, account_id=self.id)

    def is_active(self, now: Optional[datetime] = None) -> bool:
        if not self.active_flag:
            return False
        if self.expiry_date is None:
            return True
        moment = now or datetime.now(timezone.utc)
        expiry = self.expiry_date
        if expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=timezone.utc)
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return expiry > moment

    def public_dict(self) -> dict:
        data = {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "state": self.state,
            "city": self.city,
            "role": self.role,
            "tokens": self.tokens,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
        if self.kind is AccountKind.GAMER:
            data.update(
                {
                    "group": self.group,
                    "termsAccepted": self.terms_accepted,
                    "policyAccepted": self.policy_accepted,
                    "joiningFees": self.joining_fees,
                    "joiningDate": self.joining_date.isoformat() if self.joining_date else None,
                    "expiryDate": self.expiry_date.isoformat() if self.expiry_date else None,
                    "isActive": self.is_active(),
                }
            )
        return data
