from __future__ import annotations

from datetime import date

import pytest

from budget_engine.aggregation import CategoryActuals
from budget_engine.models import (
    Budget,
    BudgetCategory,
    BudgetPeriod,
    BudgetPeriodCategory,
    BudgetStrategy,
    PeriodRange,
    PeriodStatus,
    RolloverType,
)
from budget_engine.rollover import (
    build_period_rows,
    carries_over,
    close_rows,
    compute_rollover_out,
    reconcile_flex_groups,
)

JAN = PeriodRange(date(2026, 1, 1), date(2026, 1, 31))
FEB = PeriodRange(date(2026, 2, 1), date(2026, 2, 28))


def _closed(budget: Budget, period: PeriodRange, actual: dict) -> BudgetPeriod:
    rows = build_period_rows(budget, period)
    actuals = CategoryActuals(period=period, by_category=actual)
    settled, _ = close_rows(budget, rows, actuals)
    return BudgetPeriod(budget.id, period.start, period.end, PeriodStatus.CLOSED, categories=settled)


def test_groceries_leftover_carries_into_next_month() -> None:
    groceries = BudgetCategory(id="bc-groceries", amount=500, category_id="groceries", rollover_type=RolloverType.MONTHLY)
    budget = Budget(id="b1", name="Household", period_start=JAN.start, categories=[groceries])

    january = _closed(budget, JAN, {"bc-groceries": 420.0})
    assert january.row_for("bc-groceries").rollover_out == 80.0

    february = build_period_rows(budget, FEB, january)
    assert february[0].rollover_in == 80.0
    assert february[0].effective_budget == 580.0


def test_overspend_never_carries_negative() -> None:
    assert compute_rollover_out(500, 650, RolloverType.MONTHLY) == 0.0
    assert compute_rollover_out(500, 100, RolloverType.NONE) == 0.0
    assert compute_rollover_out(500, 100, RolloverType.MONTHLY, rollover_cap=150) == 150.0


def test_open_previous_period_carries_nothing() -> None:
    groceries = BudgetCategory(id="bc-groceries", amount=500, category_id="groceries", rollover_type=RolloverType.MONTHLY)
    budget = Budget(id="b1", name="Household", period_start=JAN.start, categories=[groceries])
    previous = BudgetPeriod(
        budget.id, JAN.start, JAN.end, PeriodStatus.OPEN,
        categories=[BudgetPeriodCategory("bc-groceries", 500, rollover_out=80)],
    )
    assert build_period_rows(budget, FEB, previous)[0].rollover_in == 0.0


def test_quarterly_rollover_resets_at_fiscal_quarter() -> None:
    assert carries_over(RolloverType.QUARTERLY, date(2026, 1, 1), date(2026, 2, 1))
    assert not carries_over(RolloverType.QUARTERLY, date(2026, 3, 1), date(2026, 4, 1))
    # Fiscal year starting in February moves the quarter boundary
    assert carries_over(RolloverType.QUARTERLY, date(2026, 3, 1), date(2026, 4, 1), fiscal_year_start=2)
    assert not carries_over(RolloverType.ANNUAL, date(2025, 12, 1), date(2026, 1, 1))
    assert carries_over(RolloverType.ANNUAL, date(2025, 12, 1), date(2026, 1, 1), fiscal_year_start=7)
    assert carries_over(RolloverType.MONTHLY, date(2025, 12, 1), date(2026, 1, 1))
    assert not carries_over(RolloverType.NONE, date(2026, 1, 1), date(2026, 2, 1))


def test_monthly_rollover_is_conserved_across_periods() -> None:
    category = BudgetCategory(id="bc-fun", amount=100, category_id="fun", rollover_type=RolloverType.MONTHLY)
    budget = Budget(id="b1", name="Household", period_start=JAN.start, categories=[category])
    previous = None
    for month, spent in zip(range(1, 7), [40, 130, 90, 0, 250, 60]):
        start = date(2026, month, 1)
        end = date(2026, month + 1, 1).replace(day=1)
        period = PeriodRange(start, date.fromordinal(end.toordinal() - 1))
        rows = build_period_rows(budget, period, previous)
        if previous is not None:
            assert rows[0].rollover_in == previous.row_for("bc-fun").rollover_out
        settled, _ = close_rows(budget, rows, CategoryActuals(period=period, by_category={"bc-fun": float(spent)}))
        assert settled[0].rollover_out >= 0
        previous = BudgetPeriod(budget.id, period.start, period.end, PeriodStatus.CLOSED, categories=settled)


def _flex_budget(strategy: BudgetStrategy) -> Budget:
    return Budget(
        id="b1",
        name="Household",
        period_start=JAN.start,
        strategy=strategy,
        categories=[
            BudgetCategory(id="a", amount=200, category_id="dining", flex_group="discretionary",
                           rollover_type=RolloverType.MONTHLY),
            BudgetCategory(id="b", amount=100, category_id="hobbies", flex_group="discretionary",
                           rollover_type=RolloverType.MONTHLY),
        ],
    )


def test_zero_based_flex_pool_absorbs_member_overspend() -> None:
    budget = _flex_budget(BudgetStrategy.ZERO_BASED)
    rows = build_period_rows(budget, JAN)
    actuals = CategoryActuals(period=JAN, by_category={"a": 250.0, "b": 20.0})

    settled, pools = close_rows(budget, rows, actuals)

    pool = pools[0]
    assert pool.effective_budget == 300.0
    assert pool.actual_amount == 270.0
    assert pool.leftover == 30.0
    # B alone left 80 unused; the pool only has 30 to give
    by_id = {row.budget_category_id: row for row in settled}
    assert by_id["a"].rollover_out == 0.0
    assert by_id["b"].rollover_out == 30.0
    assert sum(pool.distributed.values()) == pytest.approx(pool.leftover)


def test_zero_based_pool_splits_leftover_proportionally() -> None:
    budget = _flex_budget(BudgetStrategy.ZERO_BASED)
    rows = build_period_rows(budget, JAN)
    actuals = CategoryActuals(period=JAN, by_category={"a": 100.0, "b": 50.0})

    settled, pools = close_rows(budget, rows, actuals)

    by_id = {row.budget_category_id: row for row in settled}
    assert by_id["a"].rollover_out == 100.0
    assert by_id["b"].rollover_out == 50.0
    assert pools[0].leftover == 150.0


def test_fixed_strategy_keeps_member_rollover() -> None:
    budget = _flex_budget(BudgetStrategy.FIXED)
    rows = build_period_rows(budget, JAN)
    actuals = CategoryActuals(period=JAN, by_category={"a": 250.0, "b": 20.0})

    settled, pools = reconcile_flex_groups(budget, close_rows(budget, rows, actuals)[0])

    by_id = {row.budget_category_id: row for row in settled}
    assert by_id["a"].rollover_out == 0.0
    assert by_id["b"].rollover_out == 80.0
    assert pools[0].leftover == 30.0


def test_pool_respects_member_cap() -> None:
    budget = _flex_budget(BudgetStrategy.ZERO_BASED)
    budget.categories[1].rollover_cap = 10.0
    rows = build_period_rows(budget, JAN)
    settled, _ = close_rows(budget, rows, CategoryActuals(period=JAN, by_category={"a": 250.0, "b": 20.0}))
    assert {row.budget_category_id: row.rollover_out for row in settled}["b"] == 10.0
