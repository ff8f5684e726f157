"""Daily login reward endpoints."""

from datetime import datetime
from functools import lru_cache
from typing import Optional

from fastapi import APIRouter, Depends

from diceraja.core.auth import get_current_account
from diceraja.features.rewards.engine import RewardConfig, RewardEngine
from diceraja.models.account import Account

router = APIRouter(prefix="/api/rewards")


@lru_cache(maxsize=1)
def get_reward_engine() -> RewardEngine:
    """Process-wide engine so every request shares one per-account lock registry."""
    return RewardEngine(RewardConfig.from_settings())


def get_now() -> Optional[datetime]:
    """Claim instant; None lets the engine read the wall clock."""
    return None


@router.post("/daily-claim")
def claim_daily_reward(
    account: Account = Depends(get_current_account),
    engine: RewardEngine = Depends(get_reward_engine),
    now: Optional[datetime] = Depends(get_now),
):
    result = engine.claim(account.ref, now)
    return {
        "success": True,
        "data": {
            "reward": result.reward,
            "streak": result.streak,
            "message": result.message,
        },
    }


@router.get("/daily-status")
def get_daily_reward_status(
    account: Account = Depends(get_current_account),
    engine: RewardEngine = Depends(get_reward_engine),
    now: Optional[datetime] = Depends(get_now),
):
    status = engine.status(account.ref, now)
    return {"success": True, "data": status.to_dict()}
