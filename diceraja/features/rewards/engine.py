from __future__ import annotations

from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from diceraja.core.config import Settings, settings
from diceraja.core.database import get_db_session
from diceraja.core.errors import AlreadyClaimedError, StoreUnavailableError
from diceraja.core.logging import log_event
from diceraja.core.metrics import record_claim
from diceraja.features.accounts.repository import repository_for
from diceraja.features.rewards.locks import KeyedLock, LockTimeout
from diceraja.features.rewards.store import (
    DuplicateKeyError,
    RecordNotFoundError,
    RewardStateStore,
    StaleStateError,
)
from diceraja.models.account import AccountRef
from diceraja.models.reward import (
    DEFAULT_REWARD_TABLE,
    ClaimDecision,
    ClaimResult,
    RewardState,
    RewardStatus,
    reward_for,
)

SessionScope = Callable[[], AbstractContextManager[Session]]


@dataclass(frozen=True)
class RewardConfig:
    table: Tuple[int, ...] = DEFAULT_REWARD_TABLE
    history_window: int = 7
    timezone: Optional[str] = None  # None = server local calendar
    lock_timeout_seconds: float = 5.0

    @property
    def max_streak(self) -> int:
        return len(self.table)

    @classmethod
    def from_settings(cls, cfg: Optional[Settings] = None) -> "RewardConfig":
        cfg = cfg or settings
        return cls(
            table=tuple(cfg.reward_table()),
            history_window=cfg.REWARD_HISTORY_WINDOW,
            timezone=cfg.REWARD_TIMEZONE or None,
            lock_timeout_seconds=cfg.REWARD_LOCK_TIMEOUT_SECONDS,
        )


def calendar_day(moment: datetime, tz_name: Optional[str] = None) -> date:
    """
    Drop time-of-day in the reward calendar.

    Naive datetimes are read as wall-clock time in that calendar; aware ones are
    converted first (to the named zone, or to the server's local zone).
    """
    if moment.tzinfo is None:
        return moment.date()
    if tz_name:
        return moment.astimezone(ZoneInfo(tz_name)).date()
    return moment.astimezone().date()


def decide(state: Optional[RewardState], today: date, table: Sequence[int] = DEFAULT_REWARD_TABLE) -> ClaimDecision:
    """Pure claim decision for `today`; the single source of truth for claim and status."""
    if state is None:
        return ClaimDecision(can_claim=True, next_streak=1, reward=reward_for(1, table), is_first_claim=True)

    diff_days = (today - state.last_visit_date).days
    if diff_days <= 0:
        # Same day, or a stored visit ahead of the clock
        return ClaimDecision(
            can_claim=False,
            next_streak=state.current_streak,
            reward=reward_for(state.current_streak, table),
            is_first_claim=False,
            diff_days=diff_days,
        )

    if diff_days == 1:
        next_streak = min(state.current_streak + 1, len(table))
    else:
        next_streak = 1

    return ClaimDecision(
        can_claim=True,
        next_streak=next_streak,
        reward=reward_for(next_streak, table),
        is_first_claim=False,
        diff_days=diff_days,
    )


class RewardEngine:
    """Daily login reward state machine: streak progression, payouts, persistence."""

    def __init__(
        self,
        config: Optional[RewardConfig] = None,
        *,
        store: Optional[RewardStateStore] = None,
        session_scope: SessionScope = get_db_session,
        locks: Optional[KeyedLock] = None,
    ):
        self.config = config if config is not None else RewardConfig()
        self._store = store if store is not None else RewardStateStore()
        self._session_scope = session_scope
        self._locks = locks if locks is not None else KeyedLock()

    def now(self) -> datetime:
        if self.config.timezone:
            return datetime.now(ZoneInfo(self.config.timezone))
        return datetime.now(timezone.utc).astimezone()

    def today(self, now: Optional[datetime] = None) -> date:
        return calendar_day(now or self.now(), self.config.timezone)

    def claim(self, ref: AccountRef, now: Optional[datetime] = None) -> ClaimResult:
        """
        Redeem today's reward for the account.

        Raises:
            AlreadyClaimedError: already claimed this calendar day (or lost a race for it)
            StoreUnavailableError: lock or database timed out / failed; safe to retry
            NotFoundError: the account itself does not exist
        """
        today = self.today(now)
        kind = ref.kind.value
        try:
            with self._locks.acquire((kind, ref.account_id), timeout=self.config.lock_timeout_seconds):
                with self._session_scope() as session:
                    result = self._claim_in_session(session, ref, today)
        except AlreadyClaimedError:
            record_claim(kind, "already_claimed")
            log_event("info", "reward.claim_rejected", account_id=ref.account_id, account_kind=kind, event_type="already_claimed")
            raise
        except (DuplicateKeyError, StaleStateError):
            # A concurrent claim for the same account committed first
            record_claim(kind, "already_claimed")
            log_event("info", "reward.claim_rejected", account_id=ref.account_id, account_kind=kind, event_type="lost_race")
            raise AlreadyClaimedError()
        except LockTimeout as exc:
            record_claim(kind, "unavailable")
            raise StoreUnavailableError("Reward service is busy, please retry") from exc
        except RecordNotFoundError as exc:
            record_claim(kind, "unavailable")
            raise StoreUnavailableError("Reward record changed during claim, please retry") from exc
        except SQLAlchemyError as exc:
            record_claim(kind, "unavailable")
            log_event("error", "reward.store_failed", account_id=ref.account_id, account_kind=kind, error_code=type(exc).__name__)
            raise StoreUnavailableError("Reward store unavailable, please retry") from exc

        record_claim(kind, "claimed", result.reward)
        log_event(
            "info",
            "reward.claimed",
            account_id=ref.account_id,
            account_kind=kind,
            event_type="first_claim" if result.is_first_claim else "claim",
            extra={"reward": result.reward, "streak": result.streak},
        )
        return result

    def status(self, ref: AccountRef, now: Optional[datetime] = None) -> RewardStatus:
        """Project what a claim would yield right now. Never writes."""
        today = self.today(now)
        try:
            with self._session_scope() as session:
                tokens = repository_for(ref.kind).get_balance(session, ref.account_id)
                state = self._store.find(
                    session,
                    ref.kind,
                    ref.account_id,
                    history_limit=self.config.history_window,
                )
        except SQLAlchemyError as exc:
            raise StoreUnavailableError("Reward store unavailable, please retry") from exc

        decision = decide(state, today, self.config.table)
        if state is None:
            return RewardStatus(
                can_claim=True,
                next_reward=decision.reward,
                streak=0,
                last_claim=None,
                tokens=tokens,
                is_first_claim=True,
            )

        return RewardStatus(
            can_claim=decision.can_claim,
            next_reward=decision.reward,
            streak=state.current_streak,
            last_claim=state.last_visit_date,
            tokens=tokens,
            is_first_claim=False,
            history=state.rewards_history,
        )

    # Internal helpers -------------------------------------------------
    def _claim_in_session(self, session: Session, ref: AccountRef, today: date) -> ClaimResult:
        state = self._store.find(session, ref.kind, ref.account_id, history_limit=0, for_update=True)
        decision = decide(state, today, self.config.table)
        if not decision.can_claim:
            raise AlreadyClaimedError()

        accounts = repository_for(ref.kind)

        if state is None:
            state = RewardState(
                account_kind=ref.kind,
                account_id=ref.account_id,
                last_visit_date=today,
                current_streak=decision.next_streak,
                created_at=datetime.now(timezone.utc),
            )
            state.record(today, decision.reward, decision.next_streak)
            self._store.create(session, state)
        else:
            previous_visit, previous_streak = state.last_visit_date, state.current_streak
            state.record(today, decision.reward, decision.next_streak)
            self._store.save(
                session,
                state,
                expected_last_visit=previous_visit,
                expected_streak=previous_streak,
            )

        accounts.credit_tokens(session, ref.account_id, decision.reward)
        return ClaimResult(reward=decision.reward, streak=decision.next_streak, is_first_claim=decision.is_first_claim)
