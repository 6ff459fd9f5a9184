"""Period boundary resolution.

Every cadence is resolved in closed form from a month or day index so that
periods many years away from the anchor land on exactly the same
boundaries as stepping one period at a time would.
"""

from __future__ import annotations

import calendar
from datetime import date, timedelta
from typing import List, Tuple

from .errors import InvalidPeriodConfig
from .models import Budget, BudgetConfig, BudgetType, PayFrequency, PeriodRange

_FIXED_LENGTH_DAYS = {
    PayFrequency.WEEKLY: 7,
    PayFrequency.BIWEEKLY: 14,
}


def _month_index(year: int, month: int) -> int:
    return year * 12 + (month - 1)


def _from_month_index(index: int) -> Tuple[int, int]:
    year, month0 = divmod(index, 12)
    return year, month0 + 1


def _clamped_date(year: int, month: int, day: int) -> date:
    """``date(year, month, day)`` with the day clamped to the month's last day."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day, last_day))


def fiscal_year(value: date, fiscal_year_start: int = 1) -> int:
    """Calendar year in which the fiscal year containing ``value`` starts."""
    return value.year if value.month >= fiscal_year_start else value.year - 1


def fiscal_quarter(value: date, fiscal_year_start: int = 1) -> Tuple[int, int]:
    """Return ``(fiscal_year, quarter)`` with quarters numbered 1-4."""
    quarter = ((value.month - fiscal_year_start) % 12) // 3 + 1
    return fiscal_year(value, fiscal_year_start), quarter


def _monthly(reference: date, offset: int) -> PeriodRange:
    year, month = _from_month_index(_month_index(reference.year, reference.month) + offset)
    return PeriodRange(date(year, month, 1), _clamped_date(year, month, 31))


def _annual(reference: date, fiscal_year_start: int, offset: int) -> PeriodRange:
    start_year = fiscal_year(reference, fiscal_year_start) + offset
    start = date(start_year, fiscal_year_start, 1)
    end = date(start_year + 1, fiscal_year_start, 1) - timedelta(days=1)
    return PeriodRange(start, end)


def _fixed_length(reference: date, anchor: date, length: int, offset: int) -> PeriodRange:
    index = (reference - anchor).days // length + offset
    start = anchor + timedelta(days=index * length)
    return PeriodRange(start, start + timedelta(days=length - 1))


def _pay_monthly(reference: date, pay_day: int, offset: int) -> PeriodRange:
    index = _month_index(reference.year, reference.month)
    if reference < _clamped_date(reference.year, reference.month, pay_day):
        index -= 1
    index += offset
    year, month = _from_month_index(index)
    next_year, next_month = _from_month_index(index + 1)
    start = _clamped_date(year, month, pay_day)
    end = _clamped_date(next_year, next_month, pay_day) - timedelta(days=1)
    return PeriodRange(start, end)


def _semimonthly(reference: date, pay_day: int, offset: int) -> PeriodRange:
    first = (pay_day - 1) % 15 + 1
    second = first + 15

    def boundary(half_index: int) -> date:
        year, month = _from_month_index(half_index // 2)
        return _clamped_date(year, month, first if half_index % 2 == 0 else second)

    index = _month_index(reference.year, reference.month) * 2
    if reference >= boundary(index + 1):
        index += 1
    elif reference < boundary(index):
        index -= 1
    index += offset
    return PeriodRange(boundary(index), boundary(index + 1) - timedelta(days=1))


def resolve_period(
    budget_type: BudgetType,
    anchor: date,
    config: BudgetConfig,
    reference: date,
    offset: int = 0,
) -> PeriodRange:
    """Return the period containing ``reference``, shifted by ``offset`` periods.

    Args:
        budget_type: Cadence family of the budget
        anchor: The budget's ``period_start``; anchors weekly cycles and
            provides the fallback pay day
        config: Budget cadence configuration
        reference: Any date inside the wanted period (before shifting)
        offset: Whole periods to move forward (positive) or back (negative)

    Raises:
        InvalidPeriodConfig: If PAY_PERIOD is used without a pay frequency

    Example:
        >>> resolve_period(BudgetType.MONTHLY, date(2026, 1, 1), BudgetConfig(), date(2026, 2, 15))
        PeriodRange(start=datetime.date(2026, 2, 1), end=datetime.date(2026, 2, 28))
    """
    budget_type = BudgetType(budget_type)
    if budget_type is BudgetType.MONTHLY:
        return _monthly(reference, offset)
    if budget_type is BudgetType.ANNUAL:
        return _annual(reference, config.fiscal_year_start, offset)

    if config.pay_frequency is None:
        raise InvalidPeriodConfig("PAY_PERIOD budgets require config.pay_frequency")
    frequency = PayFrequency(config.pay_frequency)
    if frequency in _FIXED_LENGTH_DAYS:
        return _fixed_length(reference, anchor, _FIXED_LENGTH_DAYS[frequency], offset)

    pay_day = config.pay_day_of_month or anchor.day
    if frequency is PayFrequency.SEMIMONTHLY:
        return _semimonthly(reference, pay_day, offset)
    return _pay_monthly(reference, pay_day, offset)


def period_for(budget: Budget, reference: date, offset: int = 0) -> PeriodRange:
    """Resolve a period for a budget using its own anchor and configuration."""
    return resolve_period(budget.budget_type, budget.period_start, budget.config, reference, offset)


def recent_periods(budget: Budget, reference: date, count: int) -> List[PeriodRange]:
    """The ``count`` periods ending with the one containing ``reference``, oldest first."""
    return [period_for(budget, reference, offset) for offset in range(1 - count, 1)]
