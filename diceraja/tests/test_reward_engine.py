"""Tests for the daily reward engine: streak progression, payouts and persistence."""

import threading
from contextlib import contextmanager
from datetime import date, datetime

import pytest
from sqlalchemy.exc import OperationalError

from diceraja.core.database import get_db_session
from diceraja.core.errors import AlreadyClaimedError, NotFoundError, StoreUnavailableError
from diceraja.core.metrics import reward_claims_total, reward_tokens_awarded_total
from diceraja.features.accounts.repository import repository_for
from diceraja.features.rewards.engine import RewardConfig, RewardEngine
from diceraja.features.rewards.locks import KeyedLock
from diceraja.features.rewards.store import RecordNotFoundError, RewardStateStore
from diceraja.models.account import AccountKind, AccountRef


def _at(day: int, hour: int = 10, month: int = 3) -> datetime:
    return datetime(2024, month, day, hour, 0)


def _balance(ref: AccountRef) -> int:
    with get_db_session() as session:
        return repository_for(ref.kind).get_balance(session, ref.account_id)


@pytest.fixture
def engine():
    return RewardEngine(RewardConfig())


@pytest.fixture
def user_ref(register_account):
    return register_account().ref


def test_first_claim(engine, user_ref):
    result = engine.claim(user_ref, _at(1))

    assert result.reward == 100
    assert result.streak == 1
    assert result.is_first_claim is True
    assert result.message == "First day reward claimed!"
    assert _balance(user_ref) == 100


def test_second_claim_same_day_rejected_without_mutation(engine, user_ref):
    engine.claim(user_ref, _at(1, hour=0))

    with pytest.raises(AlreadyClaimedError) as exc:
        engine.claim(user_ref, _at(1, hour=23))

    assert exc.value.message == "You've already claimed your daily reward today"
    assert exc.value.status_code == 400
    assert _balance(user_ref) == 100
    status = engine.status(user_ref, _at(1, hour=23))
    assert status.streak == 1
    assert len(status.history) == 1


def test_next_day_extends_streak(engine, user_ref):
    engine.claim(user_ref, _at(1))
    result = engine.claim(user_ref, _at(2))

    assert result.streak == 2
    assert result.reward == 200
    assert result.is_first_claim is False
    assert result.message == "Day 2 reward claimed!"
    assert _balance(user_ref) == 300


def test_gap_resets_streak(engine, user_ref):
    engine.claim(user_ref, _at(1))
    engine.claim(user_ref, _at(2))
    result = engine.claim(user_ref, _at(4))

    assert result.streak == 1
    assert result.reward == 100
    assert result.message == "Day 1 reward claimed!"


def test_full_week_then_cap(engine, user_ref):
    rewards = [engine.claim(user_ref, _at(day)).reward for day in range(1, 10)]

    assert rewards == [100, 200, 300, 500, 600, 800, 1000, 1000, 1000]
    assert _balance(user_ref) == sum(rewards)
    assert engine.status(user_ref, _at(9)).streak == 7


def test_status_for_new_account(engine, user_ref):
    status = engine.status(user_ref, _at(1))

    assert status.to_dict() == {
        "canClaim": True,
        "nextReward": 100,
        "streak": 0,
        "lastClaim": None,
        "tokens": 0,
        "isFirstClaim": True,
    }


def test_status_agrees_with_next_claim(engine, user_ref):
    engine.claim(user_ref, _at(1))
    engine.claim(user_ref, _at(2))

    for moment in (_at(2), _at(3), _at(6)):
        status = engine.status(user_ref, moment)
        if status.can_claim:
            assert engine.claim(user_ref, moment).reward == status.next_reward
        else:
            with pytest.raises(AlreadyClaimedError):
                engine.claim(user_ref, moment)


def test_status_never_writes(engine, user_ref):
    engine.status(user_ref, _at(1))
    engine.status(user_ref, _at(2))

    with get_db_session() as session:
        assert RewardStateStore().find(session, user_ref.kind, user_ref.account_id) is None
    assert _balance(user_ref) == 0


def test_status_history_window(user_ref):
    engine = RewardEngine(RewardConfig(history_window=3))
    for day in range(1, 6):
        engine.claim(user_ref, _at(day))

    status = engine.status(user_ref, _at(5)).to_dict()

    assert status["canClaim"] is False
    assert status["lastClaim"] == "2024-03-05"
    assert [h["date"] for h in status["history"]] == ["2024-03-03", "2024-03-04", "2024-03-05"]
    assert [h["streakDay"] for h in status["history"]] == [3, 4, 5]


def test_alternate_reward_table(user_ref):
    engine = RewardEngine(RewardConfig(table=(5, 10, 20)))
    rewards = [engine.claim(user_ref, _at(day)).reward for day in range(1, 6)]

    assert rewards == [5, 10, 20, 20, 20]
    assert engine.status(user_ref, _at(5)).streak == 3


def test_users_and_gamers_keep_separate_streaks(engine, register_account):
    gamer = register_account("gamer")
    user = register_account()

    engine.claim(gamer.ref, _at(1))
    engine.claim(user.ref, _at(1))

    assert _balance(gamer.ref) == 100
    assert _balance(user.ref) == 100
    assert gamer.ref.kind is AccountKind.GAMER


def test_missing_account_rolls_back_reward_record(engine):
    ghost = AccountRef(kind=AccountKind.STANDARD, account_id="does-not-exist")

    with pytest.raises(NotFoundError):
        engine.claim(ghost, _at(1))

    with get_db_session() as session:
        assert RewardStateStore().find(session, ghost.kind, ghost.account_id) is None


def test_lock_timeout_maps_to_store_unavailable(user_ref):
    locks = KeyedLock()
    engine = RewardEngine(RewardConfig(lock_timeout_seconds=0.05), locks=locks)

    with locks.acquire((user_ref.kind.value, user_ref.account_id), timeout=1):
        with pytest.raises(StoreUnavailableError) as exc:
            engine.claim(user_ref, _at(1))

    assert exc.value.status_code == 503
    assert _balance(user_ref) == 0


class _StaleReadStore(RewardStateStore):
    """Pretends the record has not been written yet, as a racing reader would see it."""

    def find(self, session, kind, account_id, **kwargs):
        return None


def test_lost_create_race_reports_already_claimed(engine, user_ref):
    engine.claim(user_ref, _at(1))
    racing = RewardEngine(RewardConfig(), store=_StaleReadStore())

    with pytest.raises(AlreadyClaimedError):
        racing.claim(user_ref, _at(2))

    assert _balance(user_ref) == 100


class _OutdatedStore(RewardStateStore):
    """Returns the record as it looked before the latest claim."""

    def find(self, session, kind, account_id, **kwargs):
        state = super().find(session, kind, account_id, **kwargs)
        if state is not None:
            state.last_visit_date = date(2024, 3, 1)
            state.current_streak = 1
        return state


def test_lost_update_race_reports_already_claimed(engine, user_ref):
    engine.claim(user_ref, _at(1))
    engine.claim(user_ref, _at(2))
    racing = RewardEngine(RewardConfig(), store=_OutdatedStore())

    with pytest.raises(AlreadyClaimedError):
        racing.claim(user_ref, _at(2))

    assert _balance(user_ref) == 300
    assert engine.status(user_ref, _at(2)).streak == 2


def test_concurrent_claims_pay_exactly_once(engine, user_ref):
    outcomes = []
    barrier = threading.Barrier(6)

    def attempt():
        barrier.wait()
        try:
            engine.claim(user_ref, _at(1))
            outcomes.append("claimed")
        except AlreadyClaimedError:
            outcomes.append("already")

    threads = [threading.Thread(target=attempt) for _ in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(outcomes) == ["already"] * 5 + ["claimed"]
    assert _balance(user_ref) == 100


def test_claim_metrics(engine, user_ref):
    engine.claim(user_ref, _at(1))
    with pytest.raises(AlreadyClaimedError):
        engine.claim(user_ref, _at(1))

    kind = user_ref.kind.value
    assert reward_claims_total.value(kind=kind, outcome="claimed") == 1
    assert reward_claims_total.value(kind=kind, outcome="already_claimed") == 1
    assert reward_tokens_awarded_total.value(kind=kind) == 100


def test_reference_scenario(engine, user_ref):
    """Day 1 first claim, day 1 repeat, days 2-3, skip day 4, claim day 5."""
    assert engine.claim(user_ref, _at(1, hour=10)).reward == 100
    with pytest.raises(AlreadyClaimedError):
        engine.claim(user_ref, _at(1, hour=20))
    assert engine.claim(user_ref, _at(2, hour=9)).reward == 200
    assert engine.claim(user_ref, _at(3, hour=23)).reward == 300

    status = engine.status(user_ref, _at(5, hour=8))
    assert status.can_claim is True
    assert status.next_reward == 100

    result = engine.claim(user_ref, _at(5, hour=8))
    assert result.streak == 1
    assert _balance(user_ref) == 700


class _VanishingStore(RewardStateStore):
    """The record is deleted between read and write."""

    def save(self, session, state, **kwargs):
        raise RecordNotFoundError(str(state.ref))


def test_vanished_record_maps_to_store_unavailable(engine, user_ref):
    engine.claim(user_ref, _at(1))
    racing = RewardEngine(RewardConfig(), store=_VanishingStore())

    with pytest.raises(StoreUnavailableError) as exc:
        racing.claim(user_ref, _at(2))

    assert exc.value.status_code == 503
    assert _balance(user_ref) == 100
    assert engine.status(user_ref, _at(2)).streak == 1
    assert reward_claims_total.value(kind=user_ref.kind.value, outcome="unavailable") == 1


@contextmanager
def _unreachable_db():
    raise OperationalError("SELECT 1", {}, Exception("could not connect to server"))
    yield  # pragma: no cover


def test_database_failure_maps_to_store_unavailable(user_ref):
    engine = RewardEngine(RewardConfig(), session_scope=_unreachable_db)

    with pytest.raises(StoreUnavailableError):
        engine.claim(user_ref, _at(1))
    with pytest.raises(StoreUnavailableError):
        engine.status(user_ref, _at(1))

    assert _balance(user_ref) == 0
    assert reward_claims_total.value(kind=user_ref.kind.value, outcome="unavailable") == 1
