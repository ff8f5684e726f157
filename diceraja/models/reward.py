from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import List, Optional, Sequence

from diceraja.models.account import AccountKind, AccountRef

DEFAULT_REWARD_TABLE = (100, 200, 300, 500, 600, 800, 1000)


def reward_for(streak: int, table: Sequence[int] = DEFAULT_REWARD_TABLE) -> int:
    """Token payout for a streak day; days past the end of the table pay the last entry."""
    if streak < 1:
        raise ValueError(f"streak must be >= 1, got {streak}")
    return table[min(streak, len(table)) - 1]


@dataclass
class RewardHistoryEntry:
    day: date
    tokens: int
    streak_day: int
    id: Optional[int] = None  # None until persisted

    def to_dict(self) -> dict:
        return {"date": self.day.isoformat(), "tokens": self.tokens, "streakDay": self.streak_day}


@dataclass
class RewardState:
    """
    Daily reward progress of one account. Day-level, no direct DB concerns.

    rewards_history holds the most recent entries loaded by the store plus
    anything appended since; it is a window, not the full log.
    """

    account_kind: AccountKind
    account_id: str
    last_visit_date: date
    current_streak: int
    created_at: datetime
    rewards_history: List[RewardHistoryEntry] = field(default_factory=list)
    id: Optional[int] = None

    @property
    def ref(self) -> AccountRef:
        return AccountRef(kind=self.account_kind, account_id=self.account_id)

    def record(self, day: date, tokens: int, streak: int) -> RewardHistoryEntry:
        self.last_visit_date = day
        self.current_streak = streak
        entry = RewardHistoryEntry(day=day, tokens=tokens, streak_day=streak)
        self.rewards_history.append(entry)
        return entry


@dataclass(frozen=True)
class ClaimDecision:
    """Outcome of evaluating a claim at a given day, shared by claim and status."""

    can_claim: bool
    next_streak: int
    reward: int
    is_first_claim: bool
    diff_days: Optional[int] = None


@dataclass(frozen=True)
class ClaimResult:
    reward: int
    streak: int
    is_first_claim: bool

    @property
    def message(self) -> str:
        if self.is_first_claim:
            return "First day reward claimed!"
        return f"Day {self.streak} reward claimed!"


@dataclass(frozen=True)
class RewardStatus:
    can_claim: bool
    next_reward: int
    streak: int
    last_claim: Optional[date]
    tokens: int
    is_first_claim: bool
    history: Optional[List[RewardHistoryEntry]] = None

    def to_dict(self) -> dict:
        data = {
            "canClaim": self.can_claim,
            "nextReward": self.next_reward,
            "streak": self.streak,
            "lastClaim": self.last_claim.isoformat() if self.last_claim else None,
            "tokens": self.tokens,
            "isFirstClaim": self.is_first_claim,
        }
        if self.history is not None:
            data["history"] = [entry.to_dict() for entry in self.history]
        return data
