"""Ledger collaborator backed by pandas DataFrames.

Accepts either canonical column names or the export-style headers used by
bank CSV downloads (``Transaction Date``, ``Amount``, ``Category``...).
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

import pandas as pd

from .aggregation import apply_scope, in_period
from .models import AccountScope, LedgerTransaction, PeriodRange, TransactionSplit, UpcomingBill

TRANSACTION_ALIASES = {
    'Transaction Date': 'date',
    'Amount': 'amount',
    'Category': 'category_id',
    'Account': 'account_id',
    'account': 'account_id',
    'Counter Account': 'counter_account_id',
}
BILL_ALIASES = {
    'Due Date': 'due_date',
    'Amount': 'amount',
    'Category': 'category_id',
    'Name': 'name',
}


def _optional_str(value: Any) -> Optional[str]:
    if value is None or (not isinstance(value, (list, dict)) and pd.isna(value)):
        return None
    return str(value)


def _parse_splits(value: Any) -> List[TransactionSplit]:
    if not isinstance(value, (list, tuple)):
        return []
    splits = []
    for line in value:
        if isinstance(line, TransactionSplit):
            splits.append(line)
        else:
            splits.append(TransactionSplit(amount=float(line['amount']), category_id=_optional_str(line.get('category_id'))))
    return splits


class FrameLedger:
    """Read-only ledger over a transactions DataFrame and an optional bills DataFrame."""

    def __init__(self, transactions: pd.DataFrame, bills: Optional[pd.DataFrame] = None):
        self.data = transactions.rename(columns=TRANSACTION_ALIASES).copy()
        self.bills = (bills if bills is not None else pd.DataFrame()).rename(columns=BILL_ALIASES).copy()
        self._prepare_data()

    def _prepare_data(self) -> None:
        """Normalise dtypes and fill optional columns."""
        data = self.data
        if 'date' not in data.columns or 'amount' not in data.columns:
            raise ValueError("transactions frame needs 'date' and 'amount' columns")
        data['date'] = pd.to_datetime(data['date'])
        data['amount'] = pd.to_numeric(data['amount'], errors='coerce').fillna(0.0)
        if 'id' not in data.columns:
            data['id'] = [f"txn-{i}" for i in range(len(data))]
        for column in ('category_id', 'counter_account_id', 'splits'):
            if column not in data.columns:
                data[column] = None
        if 'account_id' not in data.columns:
            data['account_id'] = 'default'
        for column in ('is_transfer', 'is_void'):
            data[column] = data[column].fillna(False).astype(bool) if column in data.columns else False

        if not self.bills.empty:
            self.bills['due_date'] = pd.to_datetime(self.bills['due_date'])
            self.bills['amount'] = pd.to_numeric(self.bills['amount'], errors='coerce').fillna(0.0)

    def _row_to_transaction(self, row: Dict[str, Any]) -> LedgerTransaction:
        return LedgerTransaction(
            id=str(row['id']),
            date=row['date'].date(),
            amount=float(row['amount']),
            account_id=str(row['account_id']),
            category_id=_optional_str(row['category_id']),
            splits=_parse_splits(row['splits']),
            is_transfer=bool(row['is_transfer']),
            counter_account_id=_optional_str(row['counter_account_id']),
            is_void=bool(row['is_void']),
        )

    def fetch_transactions(self, scope: AccountScope, date_range: PeriodRange) -> List[LedgerTransaction]:
        window = apply_scope(in_period(self.data, date_range), scope)
        return [self._row_to_transaction(row) for row in window.to_dict('records')]

    def fetch_upcoming_bills(self, date_range: PeriodRange) -> List[UpcomingBill]:
        if self.bills.empty:
            return []
        due = self.bills['due_date']
        window = self.bills[(due >= pd.Timestamp(date_range.start)) & (due <= pd.Timestamp(date_range.end))]
        return [
            UpcomingBill(
                due_date=row['due_date'].date(),
                amount=float(row['amount']),
                category_id=_optional_str(row.get('category_id')),
                name=str(row.get('name') or ''),
            )
            for row in window.to_dict('records')
        ]
