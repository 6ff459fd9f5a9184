from __future__ import annotations

from datetime import date

import pytest

from budget_engine.aggregation import (
    UNCATEGORIZED,
    aggregate_actuals,
    daily_outflows,
    percent_used,
    transactions_to_frame,
    transfer_pairs,
)
from budget_engine.models import (
    AccountScope,
    Budget,
    BudgetCategory,
    LedgerTransaction,
    PeriodRange,
    TransactionSplit,
)
from budget_engine.reports import build_summary

FEB = PeriodRange(date(2026, 2, 1), date(2026, 2, 28))


def _categories():
    return [
        BudgetCategory(id="bc-groceries", amount=500, category_id="groceries", category_name="Groceries"),
        BudgetCategory(id="bc-dining", amount=200, category_id="dining", category_name="Dining"),
        BudgetCategory(
            id="bc-savings", amount=400, transfer_account_id="savings", is_transfer=True, category_name="Savings"
        ),
        BudgetCategory(id="bc-salary", amount=3000, category_id="salary", is_income=True, category_name="Salary"),
    ]


def _transactions():
    return [
        LedgerTransaction("t1", date(2026, 2, 3), -120.0, "checking", category_id="groceries"),
        LedgerTransaction("t2", date(2026, 2, 10), -80.5, "checking", category_id="dining"),
        LedgerTransaction(
            "t3", date(2026, 2, 12), -100.0, "checking",
            splits=[TransactionSplit(-60.0, "groceries"), TransactionSplit(-40.0, "household")],
        ),
        LedgerTransaction("t4", date(2026, 2, 14), -25.0, "checking"),
        LedgerTransaction(
            "t5", date(2026, 2, 15), -500.0, "checking", is_transfer=True, counter_account_id="savings"
        ),
        LedgerTransaction(
            "t6", date(2026, 2, 15), 500.0, "savings", is_transfer=True, counter_account_id="checking"
        ),
        LedgerTransaction("t7", date(2026, 2, 1), 3000.0, "checking", category_id="salary"),
        LedgerTransaction("t8", date(2026, 2, 20), -999.0, "checking", category_id="groceries", is_void=True),
        LedgerTransaction("t9", date(2026, 3, 1), -50.0, "checking", category_id="groceries"),
    ]


def test_percent_used_guards_zero_budget() -> None:
    assert percent_used(0, 0) == 0.0
    assert percent_used(50, 0) == 0.0
    assert percent_used(50, 200) == 25.0
    assert percent_used(-10, 200) == 0.0


def test_transactions_to_frame_explodes_splits_and_drops_voids() -> None:
    frame = transactions_to_frame(_transactions())
    assert "t8" not in set(frame["transaction_id"])
    split_rows = frame[frame["transaction_id"] == "t3"]
    assert sorted(split_rows["category_id"]) == ["groceries", "household"]
    assert split_rows["is_split"].all()


def test_aggregate_routes_categories_splits_and_transfers() -> None:
    actuals = aggregate_actuals(FEB, _categories(), _transactions())

    assert actuals.by_category["bc-groceries"] == 180.0
    assert actuals.by_category["bc-dining"] == 80.5
    # Both legs of the checking -> savings transfer count once
    assert actuals.by_category["bc-savings"] == 500.0
    assert actuals.by_category["bc-salary"] == 3000.0
    assert actuals.uncategorized == 65.0
    assert actuals.remainder == {"household": 40.0, UNCATEGORIZED: 25.0}
    assert actuals.income == 3000.0
    assert actuals.expenses == pytest.approx(180.0 + 80.5 + 500.0 + 65.0)


def test_aggregate_totals_balance() -> None:
    actuals = aggregate_actuals(FEB, _categories(), _transactions())
    assert sum(actuals.by_category.values()) + actuals.uncategorized == pytest.approx(actuals.total)


def test_summary_breakdown_sums_to_total_spent() -> None:
    budget = Budget(id="b1", name="Household", period_start=date(2026, 1, 1), categories=_categories())
    actuals = aggregate_actuals(FEB, budget.categories, _transactions())
    summary = build_summary(budget, FEB, actuals)

    spent = sum(row.spent for row in summary.expense_rows)
    assert spent + summary.uncategorized_spent == pytest.approx(summary.total_spent)
    uncategorized_row = summary.category_breakdown[-1]
    assert uncategorized_row.is_uncategorized
    assert uncategorized_row.spent == 65.0
    assert all(row.percent_used >= 0 for row in summary.category_breakdown)


def test_single_leg_transfer_is_counted() -> None:
    transactions = [
        LedgerTransaction("t1", date(2026, 2, 5), 250.0, "savings", is_transfer=True, counter_account_id="checking"),
    ]
    pairs = transfer_pairs(transactions_to_frame(transactions))
    assert len(pairs) == 1
    assert pairs.iloc[0]["source"] == "checking"
    assert pairs.iloc[0]["target"] == "savings"
    actuals = aggregate_actuals(FEB, _categories(), transactions)
    assert actuals.by_category["bc-savings"] == 250.0


def test_transfer_routes_to_source_when_target_is_not_budgeted() -> None:
    categories = [
        BudgetCategory(id="bc-card", amount=300, transfer_account_id="card", is_transfer=True),
    ]
    transactions = [
        LedgerTransaction("t1", date(2026, 2, 5), -300.0, "card", is_transfer=True, counter_account_id="loan"),
    ]
    actuals = aggregate_actuals(FEB, categories, transactions)
    assert actuals.by_category["bc-card"] == 300.0


def test_first_budget_line_claims_shared_category() -> None:
    categories = [
        BudgetCategory(id="first", amount=100, category_id="groceries"),
        BudgetCategory(id="second", amount=100, category_id="groceries"),
    ]
    transactions = [LedgerTransaction("t1", date(2026, 2, 5), -40.0, "checking", category_id="groceries")]
    actuals = aggregate_actuals(FEB, categories, transactions)
    assert actuals.by_category == {"first": 40.0, "second": 0.0}


def test_scope_excludes_accounts_and_transfers() -> None:
    scope = AccountScope(excluded_account_ids=("checking",), include_transfers=False)
    actuals = aggregate_actuals(FEB, _categories(), _transactions(), scope)
    assert actuals.total == 0.0


def test_empty_ledger_aggregates_to_zero() -> None:
    actuals = aggregate_actuals(FEB, _categories(), [])
    assert actuals.total == 0.0
    assert actuals.uncategorized == 0.0
    assert set(actuals.by_category.values()) == {0.0}


def test_daily_outflows_zero_fill() -> None:
    frame = transactions_to_frame(_transactions())
    daily = daily_outflows(frame, FEB, PeriodRange(FEB.start, date(2026, 2, 14)))
    assert len(daily) == 14
    assert daily.iloc[2] == 120.0
    assert daily.iloc[0] == 0.0
    assert daily.sum() == pytest.approx(120.0 + 80.5 + 100.0 + 25.0)
