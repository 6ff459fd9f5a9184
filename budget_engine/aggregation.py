"""Bucket ledger transactions onto budget categories for a period."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional, Sequence, Union

import numpy as np
import pandas as pd

from .models import (
    AccountScope,
    Budget,
    BudgetCategory,
    BudgetPeriod,
    LedgerTransaction,
    PeriodRange,
)

TRANSACTION_COLUMNS = [
    'transaction_id',
    'date',
    'amount',
    'category_id',
    'account_id',
    'counter_account_id',
    'is_transfer',
    'is_split',
]

# Remainder key for outflows with no category at all
UNCATEGORIZED = '__uncategorized__'

TransactionInput = Union[pd.DataFrame, Iterable[LedgerTransaction]]


def percent_used(spent: float, budgeted: float) -> float:
    """Share of ``budgeted`` consumed by ``spent``, as a percentage.

    Never negative; a zero or negative budget reports 0 rather than dividing.

    Example:
        >>> percent_used(50, 200)
        25.0
        >>> percent_used(0, 0)
        0.0
    """
    if budgeted <= 0:
        return 0.0
    return max(0.0, round(spent / budgeted * 100, 2))


def transactions_to_frame(transactions: Iterable[LedgerTransaction]) -> pd.DataFrame:
    """Flatten ledger transactions into one row per bucketable line.

    Split transactions contribute one row per split line carrying the split's
    own category. Void transactions are dropped.
    """
    rows = []
    for txn in transactions:
        if txn.is_void:
            continue
        base = {
            'transaction_id': txn.id,
            'date': txn.date,
            'account_id': txn.account_id,
            'counter_account_id': txn.counter_account_id,
            'is_transfer': bool(txn.is_transfer),
        }
        if txn.splits and not txn.is_transfer:
            for split in txn.splits:
                rows.append({**base, 'amount': split.amount, 'category_id': split.category_id, 'is_split': True})
        else:
            rows.append({**base, 'amount': txn.amount, 'category_id': txn.category_id, 'is_split': False})

    frame = pd.DataFrame(rows, columns=TRANSACTION_COLUMNS)
    frame['date'] = pd.to_datetime(frame['date'])
    frame['amount'] = pd.to_numeric(frame['amount'], errors='coerce').fillna(0.0)
    return frame.astype({'is_transfer': bool, 'is_split': bool})


def as_frame(transactions: TransactionInput) -> pd.DataFrame:
    if isinstance(transactions, pd.DataFrame):
        return transactions
    return transactions_to_frame(transactions)


def in_period(frame: pd.DataFrame, period: PeriodRange) -> pd.DataFrame:
    dates = frame['date']
    mask = (dates >= pd.Timestamp(period.start)) & (dates <= pd.Timestamp(period.end))
    return frame[mask]


def apply_scope(frame: pd.DataFrame, scope: Optional[AccountScope]) -> pd.DataFrame:
    if scope is None:
        return frame
    mask = ~frame['account_id'].isin(list(scope.excluded_account_ids))
    if not scope.include_transfers:
        mask &= ~frame['is_transfer']
    return frame[mask]


def transfer_pairs(frame: pd.DataFrame) -> pd.DataFrame:
    """Collapse transfer legs into logical ``source -> target`` movements.

    A transfer may appear as an outflow leg, an inflow leg, or both. Legs are
    normalised to the same (date, source, target, amount) key and each key
    counts ``max(outflow legs, inflow legs)`` transfers, so a pair recorded on
    both accounts is counted once.
    """
    columns = ['date', 'source', 'target', 'amount', 'count', 'total']
    transfers = frame[frame['is_transfer'] & frame['counter_account_id'].notna()]
    if transfers.empty:
        return pd.DataFrame(columns=columns)

    outflow = transfers['amount'] < 0
    legs = pd.DataFrame({
        'date': transfers['date'],
        'source': transfers['account_id'].where(outflow, transfers['counter_account_id']),
        'target': transfers['counter_account_id'].where(outflow, transfers['account_id']),
        'amount': transfers['amount'].abs().round(2),
        '__outflow__': outflow,
    })
    grouped = (
        legs.groupby(['date', 'source', 'target', 'amount'])['__outflow__']
        .agg(outflows='sum', legs='size')
        .reset_index()
    )
    grouped['count'] = np.maximum(grouped['outflows'], grouped['legs'] - grouped['outflows'])
    grouped['total'] = grouped['amount'] * grouped['count']
    return grouped[columns]


@dataclass
class CategoryActuals:
    """Aggregated actuals for one period.

    ``by_category`` is keyed by budget category id. Outflows no budget
    category claims are the remainder: ``uncategorized`` holds their total and
    ``remainder`` breaks it down by ledger category (``UNCATEGORIZED`` for
    lines with no category). ``sum(by_category) + uncategorized == total`` and
    ``expenses`` counts the remainder alongside the expense categories.
    """

    period: PeriodRange
    by_category: Dict[str, float] = field(default_factory=dict)
    uncategorized: float = 0.0
    remainder: Dict[str, float] = field(default_factory=dict)
    income: float = 0.0
    expenses: float = 0.0
    total: float = 0.0

    def spent(self, budget_category_id: str) -> float:
        return self.by_category.get(budget_category_id, 0.0)

    @classmethod
    def from_period(cls, budget: Budget, period: BudgetPeriod) -> 'CategoryActuals':
        """Rebuild actuals from a stored period's rows without touching the ledger.

        The uncategorized remainder is whatever part of ``actual_expenses``
        the expense rows do not account for.
        """
        by_category = {row.budget_category_id: row.actual_amount for row in period.categories}
        for category in budget.categories:
            by_category.setdefault(category.id, 0.0)
        income_ids = {c.id for c in budget.income_categories}
        claimed = sum(value for key, value in by_category.items() if key not in income_ids)
        uncategorized = round(max(0.0, period.actual_expenses - claimed), 2)
        return cls(
            period=period.range,
            by_category=by_category,
            uncategorized=uncategorized,
            income=period.actual_income,
            expenses=period.actual_expenses,
            total=round(sum(by_category.values()) + uncategorized, 2),
        )


def aggregate_actuals(
    period: PeriodRange,
    categories: Sequence[BudgetCategory],
    transactions: TransactionInput,
    scope: Optional[AccountScope] = None,
) -> CategoryActuals:
    """Map a period's transactions onto budget categories.

    Args:
        period: Period to aggregate; rows outside it are ignored
        categories: The budget's categories
        transactions: Ledger transactions or a frame from :func:`transactions_to_frame`
        scope: Optional account scope (excluded accounts, transfer inclusion)

    Returns:
        CategoryActuals with absolute amounts per budget category and the
        uncategorized remainder.
    """
    frame = apply_scope(in_period(as_frame(transactions), period), scope)
    frame = frame.assign(__abs_amount__=frame['amount'].abs())

    by_category: Dict[str, float] = {c.id: 0.0 for c in categories}

    # A ledger category claimed by several budget lines routes to the first one.
    category_map: Dict[str, str] = {}
    account_map: Dict[str, str] = {}
    for category in categories:
        if category.is_transfer:
            account_map.setdefault(category.transfer_account_id, category.id)
        else:
            category_map.setdefault(category.category_id, category.id)

    spending = frame[~frame['is_transfer']]
    routed = spending['category_id'].map(category_map)
    matched = spending.assign(__budget_category__=routed)[routed.notna()]
    for budget_category_id, amount in matched.groupby('__budget_category__')['__abs_amount__'].sum().items():
        by_category[budget_category_id] += float(amount)

    unmatched = spending[routed.isna() & (spending['amount'] < 0)]
    remainder_series = (
        unmatched.assign(__key__=unmatched['category_id'].fillna(UNCATEGORIZED))
        .groupby('__key__')['__abs_amount__']
        .sum()
    )
    remainder = {str(key): round(float(value), 2) for key, value in remainder_series.items()}

    pairs = transfer_pairs(frame)
    if account_map and not pairs.empty:
        transfer_routed = pairs['target'].map(account_map).fillna(pairs['source'].map(account_map))
        claimed = pairs.assign(__budget_category__=transfer_routed).dropna(subset=['__budget_category__'])
        for budget_category_id, amount in claimed.groupby('__budget_category__')['total'].sum().items():
            by_category[budget_category_id] += float(amount)

    by_category = {key: round(value, 2) for key, value in by_category.items()}
    uncategorized = round(float(unmatched['__abs_amount__'].sum()), 2)

    income_ids = {c.id for c in categories if c.is_income}
    if income_ids:
        income = sum(by_category[c] for c in income_ids)
    else:
        income = float(spending.loc[spending['amount'] > 0, 'amount'].sum())
    expenses = sum(value for key, value in by_category.items() if key not in income_ids) + uncategorized

    return CategoryActuals(
        period=period,
        by_category=by_category,
        uncategorized=uncategorized,
        remainder=remainder,
        income=round(income, 2),
        expenses=round(expenses, 2),
        total=round(sum(by_category.values()) + uncategorized, 2),
    )


def daily_outflows(frame: pd.DataFrame, period: PeriodRange, through: Optional[PeriodRange] = None) -> pd.Series:
    """Daily non-transfer outflow totals, zero-filled across ``through`` (default ``period``)."""
    window = through or period
    spending = in_period(frame, period)
    spending = spending[~spending['is_transfer'] & (spending['amount'] < 0)]
    daily = spending.groupby(spending['date'].dt.normalize())['amount'].sum().abs()
    days = pd.date_range(window.start, window.end, freq='D')
    return daily.reindex(days, fill_value=0.0)
