from datetime import datetime, timedelta

import pytest

from behaviorbank.dashboard import DashboardService, dashboard_months, dashboard_rate, valuate
from behaviorbank.models import Actor, Role

START = datetime(2024, 1, 1)


def _months(count: int) -> timedelta:
    return timedelta(days=30 * count)


@pytest.mark.parametrize(
    "months, rate",
    [(0, 0), (5, 0), (6, 20), (11, 20), (12, 30), (17, 30), (18, 40), (30, 60)],
)
def test_rate_schedule(months: int, rate: int) -> None:
    assert dashboard_rate(months) == rate


def test_months_round_up_in_either_direction() -> None:
    assert dashboard_months(START, START) == 0
    assert dashboard_months(START, START + timedelta(seconds=1)) == 1
    assert dashboard_months(START, START + _months(6)) == 6
    assert dashboard_months(START, START + _months(6) + timedelta(hours=1)) == 7
    assert dashboard_months(START + _months(2), START) == 2


def test_value_before_six_months_has_no_interest() -> None:
    valuation = valuate(10_000, START, 40, START + _months(3))
    assert valuation.interest_rate == 0
    assert valuation.estimated_value == 10_040
    assert valuation.is_penalty is False


def test_value_grows_with_each_six_month_step() -> None:
    six = valuate(10_000, START, 0, START + _months(6))
    assert (six.interest_rate, six.estimated_value) == (20, 12_000)

    twelve = valuate(10_000, START, 100, START + _months(12))
    assert (twelve.interest_rate, twelve.estimated_value) == (30, 13_130)


def test_negative_points_halve_the_deposit() -> None:
    for elapsed in (_months(1), _months(7), _months(40)):
        valuation = valuate(10_000, START, -1, START + elapsed)
        assert valuation.is_penalty is True
        assert valuation.interest_rate == 0
        assert valuation.estimated_value == 5_000


def test_value_rounds_half_up() -> None:
    assert valuate(1, START, 0, START + _months(6)).estimated_value == 1  # 1.2
    assert valuate(5, START, 0, START + _months(30)).estimated_value == 8  # 5 * 1.6
    assert valuate(1, START, -1, START).estimated_value == 1  # 0.5


def test_dashboard_for_child(directory, ledger, engine, admin, clock) -> None:
    user, account = directory.create_user(admin, "Ben", "CHILD", "2468", deposit_amount=10_000)
    ledger.award(user.id, 50, "Homework", admin.user_id)
    clock.advance(days=180)

    service = DashboardService(engine, ledger, clock=clock)
    view = service.build(Actor(user_id=user.id, role=Role.CHILD, name=user.name))

    assert view["user"]["name"] == "Ben"
    assert view["account"]["balance"] == 10_000
    assert view["account"]["status"] == "ACTIVE"
    assert view["stats"] == {
        "current_points": 50,
        "estimated_value": 12_060,
        "interest_rate": 20,
        "months_elapsed": 6,
        "is_penalty": False,
    }
    assert [entry["description"] for entry in view["recent_activity"]] == ["Homework"]


def test_dashboard_penalty_after_negative_adjustment(directory, ledger, engine, admin, clock) -> None:
    user, _ = directory.create_user(admin, "Cal", "CHILD", "1357", deposit_amount=800)
    ledger.adjust(user.id, -3, "Broke the rules", admin.user_id)
    service = DashboardService(engine, ledger, clock=clock)
    stats = service.build(Actor(user_id=user.id, role=Role.CHILD))["stats"]
    assert stats["is_penalty"] is True
    assert stats["estimated_value"] == 400
    assert stats["interest_rate"] == 0


def test_dashboard_without_account(ledger, engine, admin, clock) -> None:
    view = DashboardService(engine, ledger, clock=clock).build(admin)
    assert view["account"] == {"balance": 0, "vesting_start": None, "status": None}
    assert view["stats"]["estimated_value"] == 0
    assert view["recent_activity"] == []
