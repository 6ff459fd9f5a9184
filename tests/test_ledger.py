from __future__ import annotations

from datetime import date

import pandas as pd
import pytest

from budget_engine.ledger import FrameLedger
from budget_engine.models import AccountScope, PeriodRange

FEB = PeriodRange(date(2026, 2, 1), date(2026, 2, 28))


def _build_df() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "Transaction Date": ["2026-01-31", "2026-02-02", "2026-02-05", "2026-02-09"],
            "Amount": ["-12.50", "-80", "-200", "-300"],
            "Category": ["coffee", "groceries", None, None],
            "Account": ["checking", "checking", "card", "checking"],
            "Counter Account": [None, None, None, "savings"],
            "is_transfer": [False, False, False, True],
            "splits": [
                None,
                None,
                [{"amount": -150, "category_id": "groceries"}, {"amount": -50, "category_id": "household"}],
                None,
            ],
        }
    )


def test_export_headers_are_normalised() -> None:
    ledger = FrameLedger(_build_df())
    transactions = ledger.fetch_transactions(AccountScope(), FEB)

    assert [t.date for t in transactions] == [date(2026, 2, 2), date(2026, 2, 5), date(2026, 2, 9)]
    groceries = transactions[0]
    assert groceries.amount == -80.0
    assert groceries.category_id == "groceries"
    assert groceries.account_id == "checking"
    assert groceries.id == "txn-1"


def test_splits_and_transfers_are_parsed() -> None:
    transactions = FrameLedger(_build_df()).fetch_transactions(AccountScope(), FEB)
    split = transactions[1]
    assert [(s.amount, s.category_id) for s in split.splits] == [(-150.0, "groceries"), (-50.0, "household")]
    transfer = transactions[2]
    assert transfer.is_transfer
    assert transfer.counter_account_id == "savings"


def test_scope_filters_accounts() -> None:
    ledger = FrameLedger(_build_df())
    scope = AccountScope(excluded_account_ids=("card",), include_transfers=False)
    assert [t.category_id for t in ledger.fetch_transactions(scope, FEB)] == ["groceries"]


def test_upcoming_bills_window() -> None:
    bills = pd.DataFrame(
        {
            "Due Date": ["2026-02-12", "2026-03-01"],
            "Amount": [-1500, -60],
            "Category": ["rent", "phone"],
            "Name": ["Rent", "Phone"],
        }
    )
    ledger = FrameLedger(_build_df(), bills)
    upcoming = ledger.fetch_upcoming_bills(PeriodRange(date(2026, 2, 10), date(2026, 2, 28)))
    assert [(b.name, b.amount, b.category_id) for b in upcoming] == [("Rent", -1500.0, "rent")]
    assert FrameLedger(_build_df()).fetch_upcoming_bills(FEB) == []


def test_missing_columns_rejected() -> None:
    with pytest.raises(ValueError):
        FrameLedger(pd.DataFrame({"Description": ["x"]}))
