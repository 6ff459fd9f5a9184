"""Budget-vs-actual summaries and the report shapes built from them."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence

import pandas as pd

from .aggregation import CategoryActuals, percent_used
from .models import (
    Budget,
    BudgetPeriodCategory,
    CategoryGroup,
    CategoryTree,
    PeriodRange,
    PeriodStatus,
)
from .rollover import flex_groups
from .velocity import BudgetVelocity

UNCATEGORIZED_LABEL = 'Uncategorized'


@dataclass
class CategoryBreakdown:
    budget_category_id: Optional[str]
    category_name: str
    budgeted: float
    rollover_in: float
    effective_budget: float
    spent: float
    remaining: float
    percent_used: float
    category_id: Optional[str] = None
    transfer_account_id: Optional[str] = None
    category_group: Optional[CategoryGroup] = None
    flex_group: Optional[str] = None
    is_income: bool = False
    is_transfer: bool = False
    is_uncategorized: bool = False
    # Income-linked budgets: target as a percentage of income
    percentage: Optional[float] = None

    def to_dict(self) -> Dict[str, object]:
        data = asdict(self)
        data['category_group'] = self.category_group.value if self.category_group else None
        return data


@dataclass
class BudgetSummary:
    budget_id: str
    budget_name: str
    period: PeriodRange
    status: PeriodStatus
    total_budgeted: float
    total_spent: float
    total_income: float
    remaining: float
    percent_used: float
    uncategorized_spent: float
    category_breakdown: List[CategoryBreakdown] = field(default_factory=list)

    @property
    def expense_rows(self) -> List[CategoryBreakdown]:
        return [row for row in self.category_breakdown if not row.is_income and not row.is_uncategorized]

    @property
    def income_rows(self) -> List[CategoryBreakdown]:
        return [row for row in self.category_breakdown if row.is_income]

    def to_dict(self) -> Dict[str, object]:
        return {
            'budget_id': self.budget_id,
            'budget_name': self.budget_name,
            'period_start': self.period.start.isoformat(),
            'period_end': self.period.end.isoformat(),
            'status': self.status.value,
            'total_budgeted': self.total_budgeted,
            'total_spent': self.total_spent,
            'total_income': self.total_income,
            'remaining': self.remaining,
            'percent_used': self.percent_used,
            'uncategorized_spent': self.uncategorized_spent,
            'category_breakdown': [row.to_dict() for row in self.category_breakdown],
        }


def build_summary(
    budget: Budget,
    period: PeriodRange,
    actuals: CategoryActuals,
    rows: Sequence[BudgetPeriodCategory] = (),
    status: PeriodStatus = PeriodStatus.OPEN,
    tree: Optional[CategoryTree] = None,
) -> BudgetSummary:
    """Combine a budget, its period rows and the period's actuals.

    CLOSED periods report the budgeted amounts captured when they closed;
    other periods use the live targets. Rollover always comes from the rows.
    ``total_spent`` is the expense rows plus the uncategorized remainder.
    """
    tree = tree or CategoryTree()
    stored = {row.budget_category_id: row for row in rows}
    live_budgeted = budget.budgeted_amounts(actuals.income if budget.income_linked else None)

    breakdown: List[CategoryBreakdown] = []
    for category in budget.categories:
        row = stored.get(category.id)
        if status is PeriodStatus.CLOSED and row is not None:
            budgeted = row.budgeted_amount
        else:
            budgeted = live_budgeted[category.id]
        rollover_in = row.rollover_in if row is not None else 0.0
        effective = round(budgeted + rollover_in, 2)
        spent = actuals.spent(category.id)
        name = category.category_name or tree.label(
            category.category_id or category.transfer_account_id, fallback=category.id
        )
        breakdown.append(CategoryBreakdown(
            budget_category_id=category.id,
            category_name=name,
            budgeted=round(budgeted, 2),
            rollover_in=rollover_in,
            effective_budget=effective,
            spent=spent,
            remaining=round(effective - spent, 2),
            percent_used=percent_used(spent, effective),
            category_id=category.category_id,
            transfer_account_id=category.transfer_account_id,
            category_group=category.category_group,
            flex_group=category.flex_group,
            is_income=category.is_income,
            is_transfer=category.is_transfer,
            percentage=category.amount if budget.income_linked and not category.is_income else None,
        ))

    breakdown.append(CategoryBreakdown(
        budget_category_id=None,
        category_name=UNCATEGORIZED_LABEL,
        budgeted=0.0,
        rollover_in=0.0,
        effective_budget=0.0,
        spent=actuals.uncategorized,
        remaining=round(-actuals.uncategorized, 2),
        percent_used=0.0,
        is_uncategorized=True,
    ))

    expense_rows = [row for row in breakdown if not row.is_income and not row.is_uncategorized]
    total_budgeted = round(sum(row.effective_budget for row in expense_rows), 2)
    total_spent = round(sum(row.spent for row in expense_rows) + actuals.uncategorized, 2)
    return BudgetSummary(
        budget_id=budget.id,
        budget_name=budget.name,
        period=period,
        status=status,
        total_budgeted=total_budgeted,
        total_spent=total_spent,
        total_income=actuals.income,
        remaining=round(total_budgeted - total_spent, 2),
        percent_used=percent_used(total_spent, total_budgeted),
        uncategorized_spent=actuals.uncategorized,
        category_breakdown=breakdown,
    )


@dataclass
class FlexGroupStatus:
    group_name: str
    total_budgeted: float
    total_spent: float
    remaining: float
    percent_used: float
    categories: List[Dict[str, object]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


def flex_group_status(budget: Budget, summary: BudgetSummary) -> List[FlexGroupStatus]:
    """Pool totals per flex group, most consumed first."""
    rows = {row.budget_category_id: row for row in summary.category_breakdown}
    statuses = []
    for group_name, members in flex_groups(budget.categories).items():
        member_rows = [rows[c.id] for c in members if c.id in rows]
        total_budgeted = round(sum(r.effective_budget for r in member_rows), 2)
        total_spent = round(sum(r.spent for r in member_rows), 2)
        statuses.append(FlexGroupStatus(
            group_name=group_name,
            total_budgeted=total_budgeted,
            total_spent=total_spent,
            remaining=round(total_budgeted - total_spent, 2),
            percent_used=percent_used(total_spent, total_budgeted),
            categories=[
                {
                    'budget_category_id': r.budget_category_id,
                    'category_name': r.category_name,
                    'budgeted': r.effective_budget,
                    'spent': r.spent,
                    'percent_used': r.percent_used,
                }
                for r in member_rows
            ],
        ))
    return sorted(statuses, key=lambda status: status.percent_used, reverse=True)


@dataclass
class BudgetTrendPoint:
    month: str
    period_start: date
    budgeted: float
    actual: float
    variance: float
    percent_used: float

    def to_dict(self) -> Dict[str, object]:
        data = asdict(self)
        data['period_start'] = self.period_start.isoformat()
        return data


def trend_point(summary: BudgetSummary) -> BudgetTrendPoint:
    return BudgetTrendPoint(
        month=summary.period.label(),
        period_start=summary.period.start,
        budgeted=summary.total_budgeted,
        actual=summary.total_spent,
        variance=round(summary.total_spent - summary.total_budgeted, 2),
        percent_used=summary.percent_used,
    )


@dataclass
class CategoryTrendSeries:
    budget_category_id: str
    category_name: str
    data: List[BudgetTrendPoint] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            'budget_category_id': self.budget_category_id,
            'category_name': self.category_name,
            'data': [point.to_dict() for point in self.data],
        }


def category_trends(
    summaries: Sequence[BudgetSummary],
    budget_category_ids: Optional[Iterable[str]] = None,
) -> List[CategoryTrendSeries]:
    """Per-category budgeted-vs-actual series across ``summaries`` (oldest first)."""
    wanted = set(budget_category_ids) if budget_category_ids is not None else None
    series: Dict[str, CategoryTrendSeries] = {}
    for summary in summaries:
        for row in summary.expense_rows:
            if wanted is not None and row.budget_category_id not in wanted:
                continue
            entry = series.setdefault(
                row.budget_category_id,
                CategoryTrendSeries(row.budget_category_id, row.category_name),
            )
            entry.data.append(BudgetTrendPoint(
                month=summary.period.label(),
                period_start=summary.period.start,
                budgeted=row.effective_budget,
                actual=row.spent,
                variance=round(row.spent - row.effective_budget, 2),
                percent_used=row.percent_used,
            ))
    return list(series.values())


@dataclass
class DashboardBudgetSummary:
    budget_id: str
    budget_name: str
    total_budgeted: float
    total_spent: float
    remaining: float
    percent_used: float
    safe_daily_spend: float
    days_remaining: int
    top_categories: List[Dict[str, object]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


def dashboard_summary(summary: BudgetSummary, velocity: BudgetVelocity, top_n: int = 3) -> DashboardBudgetSummary:
    ranked = sorted(summary.expense_rows, key=lambda row: row.percent_used, reverse=True)
    return DashboardBudgetSummary(
        budget_id=summary.budget_id,
        budget_name=summary.budget_name,
        total_budgeted=summary.total_budgeted,
        total_spent=summary.total_spent,
        remaining=summary.remaining,
        percent_used=summary.percent_used,
        safe_daily_spend=velocity.safe_daily_spend,
        days_remaining=velocity.days_remaining,
        top_categories=[
            {
                'category_name': row.category_name,
                'budgeted': row.effective_budget,
                'spent': row.spent,
                'percent_used': row.percent_used,
            }
            for row in ranked[:top_n]
        ],
    )


@dataclass
class DailySpendingPoint:
    date: date
    amount: float
    cumulative: float

    def to_dict(self) -> Dict[str, object]:
        return {'date': self.date.isoformat(), 'amount': self.amount, 'cumulative': self.cumulative}


def daily_spending_points(daily: pd.Series) -> List[DailySpendingPoint]:
    cumulative = daily.cumsum()
    return [
        DailySpendingPoint(
            date=timestamp.date(),
            amount=round(float(amount), 2),
            cumulative=round(float(cumulative[timestamp]), 2),
        )
        for timestamp, amount in daily.items()
    ]


@dataclass
class SavingsRatePoint:
    month: str
    income: float
    expenses: float
    savings: float
    savings_rate: float

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


def savings_rate_point(summary: BudgetSummary) -> SavingsRatePoint:
    income = summary.total_income
    expenses = summary.total_spent
    savings = round(income - expenses, 2)
    rate = round(savings / income * 100, 2) if income > 0 else 0.0
    return SavingsRatePoint(summary.period.label(), income, expenses, savings, rate)


@dataclass
class HealthScoreHistoryPoint:
    month: str
    period_start: date
    score: int
    label: str

    def to_dict(self) -> Dict[str, object]:
        data = asdict(self)
        data['period_start'] = self.period_start.isoformat()
        return data
