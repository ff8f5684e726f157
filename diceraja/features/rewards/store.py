"""
SQL persistence for daily reward state.

One `daily_rewards` row per (account_kind, account_id) plus an append-only
`daily_reward_history` log. Every method takes the caller's Session so the
reward write and the balance credit commit or roll back together.
"""

from datetime import date
from typing import List, Optional

from sqlalchemy import and_, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from diceraja.core.database import daily_reward_history, daily_rewards
from diceraja.models.account import AccountKind
from diceraja.models.reward import RewardHistoryEntry, RewardState


class DuplicateKeyError(Exception):
    """A reward record already exists for this account."""


class RecordNotFoundError(Exception):
    """The reward record disappeared before it could be saved."""


class StaleStateError(Exception):
    """The reward record changed since it was read."""


def _key_clause(kind: AccountKind, account_id: str):
    return and_(
        daily_rewards.c.account_kind == kind.value,
        daily_rewards.c.account_id == account_id,
    )


class RewardStateStore:
    """Store contract: find / create / save (compare-and-swap) / history."""

    def find(
        self,
        session: Session,
        kind: AccountKind,
        account_id: str,
        *,
        history_limit: int = 7,
        for_update: bool = False,
    ) -> Optional[RewardState]:
        query = select(daily_rewards).where(_key_clause(kind, account_id))
        if for_update:
            query = query.with_for_update()
        row = session.execute(query).first()
        if not row:
            return None

        return RewardState(
            id=row.id,
            account_kind=AccountKind(row.account_kind),
            account_id=row.account_id,
            last_visit_date=row.last_visit_date,
            current_streak=row.current_streak,
            created_at=row.created_at,
            rewards_history=self._history_for(session, row.id, history_limit),
        )

    def create(self, session: Session, state: RewardState) -> RewardState:
        """
        Persist a brand-new record with its history.

        Raises:
            DuplicateKeyError: a record for this account already exists
        """
        try:
            result = session.execute(
                insert(daily_rewards).values(
                    account_kind=state.account_kind.value,
                    account_id=state.account_id,
                    last_visit_date=state.last_visit_date,
                    current_streak=state.current_streak,
                    created_at=state.created_at,
                )
            )
        except IntegrityError as exc:
            raise DuplicateKeyError(str(state.ref)) from exc

        state.id = result.inserted_primary_key[0]
        self._append_unsaved(session, state)
        return state

    def save(
        self,
        session: Session,
        state: RewardState,
        *,
        expected_last_visit: date,
        expected_streak: int,
    ) -> RewardState:
        """
        Write the current value of an existing record if nobody changed it since it was read.

        Raises:
            RecordNotFoundError: the record no longer exists
            StaleStateError: the stored values no longer match the expected ones
        """
        result = session.execute(
            update(daily_rewards)
            .where(_key_clause(state.account_kind, state.account_id))
            .where(daily_rewards.c.last_visit_date == expected_last_visit)
            .where(daily_rewards.c.current_streak == expected_streak)
            .values(
                last_visit_date=state.last_visit_date,
                current_streak=state.current_streak,
            )
        )
        if result.rowcount == 0:
            still_there = session.execute(
                select(daily_rewards.c.id).where(_key_clause(state.account_kind, state.account_id))
            ).first()
            if still_there is None:
                raise RecordNotFoundError(str(state.ref))
            raise StaleStateError(str(state.ref))

        self._append_unsaved(session, state)
        return state

    def history(self, session: Session, kind: AccountKind, account_id: str, limit: int = 7) -> List[RewardHistoryEntry]:
        row = session.execute(select(daily_rewards.c.id).where(_key_clause(kind, account_id))).first()
        if row is None:
            return []
        return self._history_for(session, row.id, limit)

    def _history_for(self, session: Session, reward_id: int, limit: int) -> List[RewardHistoryEntry]:
        rows = session.execute(
            select(daily_reward_history)
            .where(daily_reward_history.c.reward_id == reward_id)
            .order_by(daily_reward_history.c.id.desc())
            .limit(limit)
        ).all()
        # Oldest first
        return [
            RewardHistoryEntry(id=r.id, day=r.claimed_on, tokens=r.tokens, streak_day=r.streak_day)
            for r in reversed(rows)
        ]

    def _append_unsaved(self, session: Session, state: RewardState) -> None:
        for entry in state.rewards_history:
            if entry.id is not None:
                continue
            result = session.execute(
                insert(daily_reward_history).values(
                    reward_id=state.id,
                    claimed_on=entry.day,
                    tokens=entry.tokens,
                    streak_day=entry.streak_day,
                )
            )
            entry.id = result.inserted_primary_key[0]
