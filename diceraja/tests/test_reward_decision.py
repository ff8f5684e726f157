"""Tests for the pure claim decision and calendar-day truncation."""

from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from diceraja.features.rewards.engine import calendar_day, decide
from diceraja.models.account import AccountKind
from diceraja.models.reward import RewardState


def _state(last_visit: date, streak: int) -> RewardState:
    return RewardState(
        account_kind=AccountKind.STANDARD,
        account_id="acct-1",
        last_visit_date=last_visit,
        current_streak=streak,
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


def test_first_claim_pays_day_one():
    decision = decide(None, date(2024, 3, 1))
    assert decision.can_claim is True
    assert decision.is_first_claim is True
    assert decision.next_streak == 1
    assert decision.reward == 100


def test_same_day_cannot_claim_and_reports_current_streak_reward():
    decision = decide(_state(date(2024, 3, 1), 3), date(2024, 3, 1))
    assert decision.can_claim is False
    assert decision.next_streak == 3
    assert decision.reward == 300
    assert decision.diff_days == 0


def test_consecutive_day_extends_streak():
    decision = decide(_state(date(2024, 3, 1), 3), date(2024, 3, 2))
    assert decision.can_claim is True
    assert decision.is_first_claim is False
    assert decision.next_streak == 4
    assert decision.reward == 500


def test_missed_day_resets_streak():
    decision = decide(_state(date(2024, 3, 1), 5), date(2024, 3, 3))
    assert decision.can_claim is True
    assert decision.next_streak == 1
    assert decision.reward == 100
    assert decision.diff_days == 2


def test_streak_caps_at_table_length():
    decision = decide(_state(date(2024, 3, 7), 7), date(2024, 3, 8))
    assert decision.next_streak == 7
    assert decision.reward == 1000


def test_visit_in_the_future_is_treated_as_claimed():
    decision = decide(_state(date(2024, 3, 5), 2), date(2024, 3, 4))
    assert decision.can_claim is False
    assert decision.diff_days == -1


def test_alternate_table_changes_cap_and_amounts():
    table = (5, 10)
    decision = decide(_state(date(2024, 3, 1), 2), date(2024, 3, 2), table)
    assert decision.next_streak == 2
    assert decision.reward == 10


def test_month_and_year_boundaries_count_as_consecutive():
    assert decide(_state(date(2024, 2, 29), 1), date(2024, 3, 1)).next_streak == 2
    assert decide(_state(date(2023, 12, 31), 1), date(2024, 1, 1)).next_streak == 2


def test_calendar_day_ignores_time_of_day():
    assert calendar_day(datetime(2024, 3, 1, 0, 0, 1)) == date(2024, 3, 1)
    assert calendar_day(datetime(2024, 3, 1, 23, 59, 59)) == date(2024, 3, 1)


def test_calendar_day_converts_aware_moment_into_reward_zone():
    late_utc = datetime(2024, 3, 1, 20, 0, tzinfo=timezone.utc)
    assert calendar_day(late_utc, "UTC") == date(2024, 3, 1)
    # 20:00 UTC is 01:30 the next morning in India
    assert calendar_day(late_utc, "Asia/Kolkata") == date(2024, 3, 2)


def test_calendar_day_naive_moment_is_already_local():
    naive = datetime(2024, 3, 1, 23, 0)
    assert calendar_day(naive, "Asia/Kolkata") == date(2024, 3, 1)


def test_calendar_day_without_zone_uses_server_local_calendar():
    moment = datetime(2024, 3, 1, 12, 0, tzinfo=ZoneInfo("UTC"))
    assert calendar_day(moment) == moment.astimezone().date()


def test_minutes_apart_across_midnight_are_consecutive_days():
    first = datetime(2024, 3, 1, 23, 30)
    second = first + timedelta(minutes=45)
    assert (calendar_day(second) - calendar_day(first)).days == 1
