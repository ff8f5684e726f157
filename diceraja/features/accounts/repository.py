"""
Account repositories.

Standard users and gamers live in separate tables with a shared shape. Callers
pick the variant through `repository_for(kind)` / `repository_for_role(role)`
and pass an open Session, so balance updates can share a transaction with
other writes.
"""
from __future__ import annotations

from typing import Dict, Optional, Tuple

from sqlalchemy import Table, insert, select, update
from sqlalchemy.orm import Session

from diceraja.core.database import gamers, users
from diceraja.core.errors import NotFoundError
from diceraja.models.account import Account, AccountKind


class AccountRepository:
    kind: AccountKind
    table: Table

    def _to_account(self, row) -> Account:
        return Account(
            id=row.id,
            name=row.name,
            email=row.email,
            phone=row.phone,
            state=row.state,
            city=row.city,
            role=row.role,
            tokens=row.tokens,
            created_at=row.created_at,
        )

    def get(self, session: Session, account_id: str) -> Optional[Account]:
        row = session.execute(select(self.table).where(self.table.c.id == account_id)).first()
        return self._to_account(row) if row else None

    def find_credentials(self, session: Session, email: str) -> Optional[Tuple[Account, str]]:
        """Return (account, password_hash) for login, or None."""
        row = session.execute(select(self.table).where(self.table.c.email == email)).first()
        if not row:
            return None
        return self._to_account(row), row.password_hash

    def email_taken(self, session: Session, email: str) -> bool:
        row = session.execute(select(self.table.c.id).where(self.table.c.email == email)).first()
        return row is not None

    def insert(self, session: Session, values: Dict[str, object]) -> Account:
        session.execute(insert(self.table).values(**values))
        account = self.get(session, str(values["id"]))
        if account is None:  # pragma: no cover - insert just succeeded
            raise NotFoundError("Account not found")
        return account

    def credit_tokens(self, session: Session, account_id: str, amount: int) -> int:
        """Atomically add `amount` to the balance; returns the new balance."""
        result = session.execute(
            update(self.table)
            .where(self.table.c.id == account_id)
            .values(tokens=self.table.c.tokens + amount)
        )
        if result.rowcount == 0:
            raise NotFoundError("Account not found")
        return self.get_balance(session, account_id)

    def get_balance(self, session: Session, account_id: str) -> int:
        row = session.execute(select(self.table.c.tokens).where(self.table.c.id == account_id)).first()
        if row is None:
            raise NotFoundError("Account not found")
        return row[0]


class StandardAccountRepository(AccountRepository):
    kind = AccountKind.STANDARD
    table = users


class GamerAccountRepository(AccountRepository):
    kind = AccountKind.GAMER
    table = gamers

    def _to_account(self, row) -> Account:
        base = super()._to_account(row)
        return base.model_copy(
            update={
                "group": row.group,
                "terms_accepted": row.terms_accepted,
                "policy_accepted": row.policy_accepted,
                "joining_fees": row.joining_fees,
                "joining_date": row.joining_date,
                "expiry_date": row.expiry_date,
                "active_flag": bool(row.is_active),
            }
        )


_REPOSITORIES: Dict[AccountKind, AccountRepository] = {
    AccountKind.STANDARD: StandardAccountRepository(),
    AccountKind.GAMER: GamerAccountRepository(),
}


def repository_for(kind: AccountKind) -> AccountRepository:
    return _REPOSITORIES[kind]


def repository_for_role(role: Optional[str]) -> AccountRepository:
    return _REPOSITORIES[AccountKind.for_role(role or "user")]


def find_account(session: Session, account_id: str) -> Optional[Account]:
    """Resolve an id against users first, then gamers."""
    for kind in (AccountKind.STANDARD, AccountKind.GAMER):
        account = _REPOSITORIES[kind].get(session, account_id)
        if account:
            return account
    return None
