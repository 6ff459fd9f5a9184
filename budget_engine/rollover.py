"""Rollover carry-forward and flex-group reconciliation."""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Dict, List, Optional, Tuple

from .aggregation import CategoryActuals
from .models import (
    Budget,
    BudgetCategory,
    BudgetPeriod,
    BudgetPeriodCategory,
    BudgetStrategy,
    PeriodRange,
    PeriodStatus,
    RolloverType,
)
from .periods import fiscal_quarter, fiscal_year


def compute_rollover_out(
    effective_budget: float,
    actual_amount: float,
    rollover_type: RolloverType,
    rollover_cap: Optional[float] = None,
) -> float:
    """Leftover carried out of a closing period.

    Overspend never produces a negative carry; it is simply absorbed.

    Example:
        >>> compute_rollover_out(500, 420, RolloverType.MONTHLY)
        80.0
        >>> compute_rollover_out(500, 420, RolloverType.MONTHLY, rollover_cap=50)
        50.0
    """
    if RolloverType(rollover_type) is RolloverType.NONE:
        return 0.0
    unused = max(0.0, effective_budget - actual_amount)
    if rollover_cap is not None:
        unused = min(rollover_cap, unused)
    return round(unused, 2)


def carries_over(
    rollover_type: RolloverType,
    previous_start: date,
    current_start: date,
    fiscal_year_start: int = 1,
) -> bool:
    """Whether a leftover from ``previous_start`` may flow into ``current_start``.

    QUARTERLY balances reset at fiscal quarter boundaries and ANNUAL balances
    at fiscal year boundaries.
    """
    rollover_type = RolloverType(rollover_type)
    if rollover_type is RolloverType.NONE:
        return False
    if rollover_type is RolloverType.MONTHLY:
        return True
    if rollover_type is RolloverType.QUARTERLY:
        return fiscal_quarter(previous_start, fiscal_year_start) == fiscal_quarter(current_start, fiscal_year_start)
    return fiscal_year(previous_start, fiscal_year_start) == fiscal_year(current_start, fiscal_year_start)


def carry_forward(budget: Budget, previous: Optional[BudgetPeriod], current: PeriodRange) -> Dict[str, float]:
    """``rollover_in`` per budget category for the period ``current``.

    Only a CLOSED previous period has a settled ``rollover_out`` to carry.
    """
    carried = {category.id: 0.0 for category in budget.categories}
    if previous is None or previous.status is not PeriodStatus.CLOSED:
        return carried
    fiscal_start = budget.config.fiscal_year_start
    for category in budget.categories:
        row = previous.row_for(category.id)
        if row is None:
            continue
        if carries_over(category.rollover_type, previous.period_start, current.start, fiscal_start):
            carried[category.id] = row.rollover_out
    return carried


def build_period_rows(
    budget: Budget,
    period: PeriodRange,
    previous: Optional[BudgetPeriod] = None,
    actual_income: Optional[float] = None,
) -> List[BudgetPeriodCategory]:
    """Fresh period rows: budgeted targets plus carried rollover."""
    budgeted = budget.budgeted_amounts(actual_income)
    carried = carry_forward(budget, previous, period)
    return [
        BudgetPeriodCategory(
            budget_category_id=category.id,
            budgeted_amount=budgeted[category.id],
            rollover_in=carried[category.id],
        )
        for category in budget.categories
    ]


@dataclass
class FlexPoolReconciliation:
    flex_group: str
    effective_budget: float
    actual_amount: float
    leftover: float
    member_ids: List[str] = field(default_factory=list)
    distributed: Dict[str, float] = field(default_factory=dict)
    exhausted_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            'flex_group': self.flex_group,
            'effective_budget': self.effective_budget,
            'actual_amount': self.actual_amount,
            'leftover': self.leftover,
            'member_ids': list(self.member_ids),
            'distributed': dict(self.distributed),
            'exhausted_ids': list(self.exhausted_ids),
        }


def flex_groups(categories: List[BudgetCategory]) -> 'OrderedDict[str, List[BudgetCategory]]':
    groups: 'OrderedDict[str, List[BudgetCategory]]' = OrderedDict()
    for category in categories:
        if category.flex_group and not category.is_income:
            groups.setdefault(category.flex_group, []).append(category)
    return groups


def reconcile_flex_groups(
    budget: Budget,
    rows: List[BudgetPeriodCategory],
) -> Tuple[List[BudgetPeriodCategory], List[FlexPoolReconciliation]]:
    """Re-evaluate rollover for members of each flex group as a pool.

    Under ZERO_BASED budgets the pool leftover ``max(0, effective - actual)``
    is shared among rollover-eligible members in proportion to their own
    unused amounts, so one member's overspend shrinks what its siblings
    carry. Other strategies keep the per-member rollover and only report the
    pool totals.
    """
    by_id = {row.budget_category_id: row for row in rows}
    updated: Dict[str, BudgetPeriodCategory] = {}
    pools: List[FlexPoolReconciliation] = []
    pooled = budget.strategy is BudgetStrategy.ZERO_BASED

    for group_name, members in flex_groups(budget.categories).items():
        member_rows = [(category, by_id[category.id]) for category in members if category.id in by_id]
        if not member_rows:
            continue
        pool_effective = round(sum(row.effective_budget for _, row in member_rows), 2)
        pool_actual = round(sum(row.actual_amount for _, row in member_rows), 2)
        pool = FlexPoolReconciliation(
            flex_group=group_name,
            effective_budget=pool_effective,
            actual_amount=pool_actual,
            leftover=round(max(0.0, pool_effective - pool_actual), 2),
            member_ids=[category.id for category, _ in member_rows],
        )

        if pooled:
            candidates = {
                category.id: max(0.0, row.effective_budget - row.actual_amount)
                for category, row in member_rows
                if category.rollover_type is not RolloverType.NONE
            }
            total_candidates = sum(candidates.values())
            scale = min(1.0, pool.leftover / total_candidates) if total_candidates > 0 else 0.0
            for category, row in member_rows:
                if category.id not in candidates:
                    continue
                share = candidates[category.id] * scale
                if category.rollover_cap is not None:
                    share = min(category.rollover_cap, share)
                share = round(share, 2)
                if candidates[category.id] > 0 and share == 0:
                    pool.exhausted_ids.append(category.id)
                updated[category.id] = replace(row, rollover_out=share)

        pool.distributed = {
            category.id: updated.get(category.id, row).rollover_out for category, row in member_rows
        }
        pools.append(pool)

    return [updated.get(row.budget_category_id, row) for row in rows], pools


def close_rows(
    budget: Budget,
    rows: List[BudgetPeriodCategory],
    actuals: CategoryActuals,
) -> Tuple[List[BudgetPeriodCategory], List[FlexPoolReconciliation]]:
    """Settle a closing period: record actuals, then compute rollover out."""
    categories = {category.id: category for category in budget.categories}
    settled = []
    for row in rows:
        category = categories.get(row.budget_category_id)
        actual = actuals.spent(row.budget_category_id)
        rollover_out = 0.0
        if category is not None and not category.is_income:
            rollover_out = compute_rollover_out(
                row.effective_budget, actual, category.rollover_type, category.rollover_cap
            )
        settled.append(replace(row, actual_amount=actual, rollover_out=rollover_out))
    return reconcile_flex_groups(budget, settled)
