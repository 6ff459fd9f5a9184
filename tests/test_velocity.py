from __future__ import annotations

from datetime import date

import pytest

from budget_engine.models import PeriodRange, UpcomingBill
from budget_engine.velocity import PACE_ON_TRACK, PACE_OVER, PACE_UNDER, pace_status, project_velocity

FEB = PeriodRange(date(2026, 2, 1), date(2026, 2, 28))


def test_mid_month_projection() -> None:
    velocity = project_velocity(FEB, date(2026, 2, 15), current_spent=700, budget_total=2000)

    assert velocity.days_elapsed == 15
    assert velocity.days_remaining == 13
    assert velocity.daily_burn_rate == pytest.approx(46.67)
    assert velocity.projected_total == pytest.approx(1306.67)
    assert velocity.projected_variance == pytest.approx(-693.33)
    assert velocity.pace_status == PACE_UNDER


def test_no_elapsed_days_means_no_burn() -> None:
    velocity = project_velocity(FEB, date(2026, 1, 25), current_spent=0, budget_total=2000)
    assert velocity.days_elapsed == 0
    assert velocity.daily_burn_rate == 0.0
    assert velocity.projected_total == 0.0


def test_elapsed_and_remaining_cover_period() -> None:
    for day in (1, 10, 28):
        velocity = project_velocity(FEB, date(2026, 2, day), current_spent=100, budget_total=1000)
        assert velocity.days_elapsed + velocity.days_remaining == velocity.total_days == 28


def test_upcoming_bills_reduce_safe_spend() -> None:
    bills = [
        UpcomingBill(date(2026, 2, 20), -300.0, name="Rent"),
        UpcomingBill(date(2026, 2, 10), -50.0, name="Already paid"),
        UpcomingBill(date(2026, 3, 2), -80.0, name="Next period"),
    ]
    velocity = project_velocity(FEB, date(2026, 2, 15), 700, 2000, upcoming_bills=bills)

    assert velocity.upcoming_bills_total == 300.0
    assert velocity.truly_available == 1000.0
    assert velocity.safe_daily_spend == pytest.approx(round(1000 / 13, 2))
    assert [bill.name for bill in velocity.upcoming_bills] == ["Rent"]
    assert velocity.to_dict()["upcoming_bills"][0]["due_date"] == "2026-02-20"


def test_upcoming_bills_sorted_by_due_date() -> None:
    bills = [
        UpcomingBill(date(2026, 2, 25), -60.0, name="Phone"),
        UpcomingBill(date(2026, 2, 16), -1500.0, name="Rent"),
    ]
    velocity = project_velocity(FEB, date(2026, 2, 15), 0, 2000, upcoming_bills=bills)
    assert [bill.name for bill in velocity.upcoming_bills] == ["Rent", "Phone"]
    assert project_velocity(FEB, date(2026, 2, 15), 0, 2000).upcoming_bills == []


def test_pace_status_bands() -> None:
    assert pace_status(2100, 2000) == PACE_OVER
    assert pace_status(1900, 2000) == PACE_ON_TRACK
    assert pace_status(1700, 2000) == PACE_UNDER
