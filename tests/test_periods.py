from __future__ import annotations

from datetime import date

import pytest

from budget_engine.errors import InvalidPeriodConfig
from budget_engine.models import Budget, BudgetConfig, BudgetType, PayFrequency, PeriodRange
from budget_engine.periods import fiscal_quarter, fiscal_year, period_for, recent_periods, resolve_period


def _pay_config(frequency: PayFrequency, pay_day: int = None) -> BudgetConfig:
    return BudgetConfig(pay_frequency=frequency, pay_day_of_month=pay_day)


def test_monthly_period_contains_reference() -> None:
    period = resolve_period(BudgetType.MONTHLY, date(2026, 1, 1), BudgetConfig(), date(2026, 2, 15))
    assert period == PeriodRange(date(2026, 2, 1), date(2026, 2, 28))
    assert period.total_days == 28


def test_monthly_offset_crosses_year_boundary() -> None:
    period = resolve_period(BudgetType.MONTHLY, date(2025, 1, 1), BudgetConfig(), date(2025, 12, 10), offset=1)
    assert period == PeriodRange(date(2026, 1, 1), date(2026, 1, 31))
    back = resolve_period(BudgetType.MONTHLY, date(2025, 1, 1), BudgetConfig(), date(2026, 1, 10), offset=-13)
    assert back == PeriodRange(date(2024, 12, 1), date(2024, 12, 31))


def test_annual_period_follows_fiscal_year_start() -> None:
    config = BudgetConfig(fiscal_year_start=4)
    period = resolve_period(BudgetType.ANNUAL, date(2025, 4, 1), config, date(2026, 2, 10))
    assert period == PeriodRange(date(2025, 4, 1), date(2026, 3, 31))


def test_biweekly_periods_are_anchored_on_budget_start() -> None:
    anchor = date(2026, 1, 2)
    config = _pay_config(PayFrequency.BIWEEKLY)
    assert resolve_period(BudgetType.PAY_PERIOD, anchor, config, date(2026, 1, 20)) == PeriodRange(
        date(2026, 1, 16), date(2026, 1, 29)
    )
    # Before the anchor the cycle extends backwards
    assert resolve_period(BudgetType.PAY_PERIOD, anchor, config, date(2025, 12, 30)) == PeriodRange(
        date(2025, 12, 19), date(2026, 1, 1)
    )


def test_closed_form_offset_matches_stepping() -> None:
    anchor = date(2026, 1, 2)
    config = _pay_config(PayFrequency.WEEKLY)
    stepped = resolve_period(BudgetType.PAY_PERIOD, anchor, config, anchor)
    for _ in range(200):
        stepped = resolve_period(BudgetType.PAY_PERIOD, anchor, config, stepped.end, offset=1)
    jumped = resolve_period(BudgetType.PAY_PERIOD, anchor, config, anchor, offset=200)
    assert jumped == stepped


def test_semimonthly_halves() -> None:
    config = _pay_config(PayFrequency.SEMIMONTHLY, pay_day=1)
    anchor = date(2026, 1, 1)
    assert resolve_period(BudgetType.PAY_PERIOD, anchor, config, date(2026, 2, 3)) == PeriodRange(
        date(2026, 2, 1), date(2026, 2, 15)
    )
    assert resolve_period(BudgetType.PAY_PERIOD, anchor, config, date(2026, 2, 20)) == PeriodRange(
        date(2026, 2, 16), date(2026, 2, 28)
    )


def test_monthly_pay_period_uses_pay_day() -> None:
    config = _pay_config(PayFrequency.MONTHLY, pay_day=15)
    period = resolve_period(BudgetType.PAY_PERIOD, date(2026, 1, 15), config, date(2026, 3, 10))
    assert period == PeriodRange(date(2026, 2, 15), date(2026, 3, 14))


def test_pay_day_past_month_end_is_clamped() -> None:
    config = _pay_config(PayFrequency.MONTHLY, pay_day=31)
    period = resolve_period(BudgetType.PAY_PERIOD, date(2026, 1, 31), config, date(2026, 2, 28))
    assert period.start == date(2026, 2, 28)
    assert period.end == date(2026, 3, 30)


def test_pay_period_without_frequency_is_rejected() -> None:
    with pytest.raises(InvalidPeriodConfig):
        resolve_period(BudgetType.PAY_PERIOD, date(2026, 1, 1), BudgetConfig(), date(2026, 1, 5))


def test_recent_periods_oldest_first() -> None:
    budget = Budget(id="b1", name="Household", period_start=date(2025, 1, 1))
    periods = recent_periods(budget, date(2026, 2, 10), 3)
    assert [p.start for p in periods] == [date(2025, 12, 1), date(2026, 1, 1), date(2026, 2, 1)]
    assert period_for(budget, date(2026, 2, 10)) == periods[-1]


def test_fiscal_helpers() -> None:
    assert fiscal_year(date(2026, 3, 31), 4) == 2025
    assert fiscal_quarter(date(2026, 4, 1), 4) == (2026, 1)
    assert fiscal_quarter(date(2026, 3, 31), 4) == (2025, 4)
    assert fiscal_quarter(date(2026, 8, 15)) == (2026, 3)


def test_period_range_day_counts() -> None:
    period = PeriodRange(date(2026, 2, 1), date(2026, 2, 28))
    for day in range(1, 29):
        reference = date(2026, 2, day)
        assert period.days_elapsed(reference) + period.days_remaining(reference) == period.total_days
    assert period.days_elapsed(date(2026, 1, 20)) == 0
    assert period.days_elapsed(date(2026, 3, 5)) == 28
    assert period.label() == "Feb 2026"
