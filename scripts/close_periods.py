#!/usr/bin/env python3
"""Close finished budget periods and raise alerts for the current ones."""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import date
from pathlib import Path
from typing import Optional

import pandas as pd

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from budget_engine.config import configure_logging, get_db_path
from budget_engine.db import SqliteAlertRepository, SqliteBudgetRepository
from budget_engine.formatting import format_currency
from budget_engine.ledger import FrameLedger
from budget_engine.service import BudgetEngine

logger = logging.getLogger("close_periods")


def main(transactions: Path, bills: Optional[Path], db_path: str, reference: date) -> int:
    ledger = FrameLedger(pd.read_csv(transactions), pd.read_csv(bills) if bills else None)
    engine = BudgetEngine(
        SqliteBudgetRepository(db_path),
        SqliteAlertRepository(db_path),
        ledger,
    )

    closed = engine.close_due_periods(reference)
    for period in closed:
        print(
            f"Closed {period.budget_id} {period.period_start}: "
            f"{format_currency(period.actual_expenses)} of {format_currency(period.total_budgeted)}"
        )

    for budget in engine.budgets.list_budgets(active_only=True):
        alerts = engine.generate_alerts(budget.id, reference)
        for alert in alerts:
            print(f"[{alert.severity.value}] {budget.name}: {alert.title}")
    logger.info("Closed %d periods", len(closed))
    return 0


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Close finished budget periods and generate alerts.')
    parser.add_argument('transactions', type=Path, help='CSV export of ledger transactions')
    parser.add_argument('--bills', type=Path, default=None, help='CSV of upcoming bills')
    parser.add_argument('--db', default=get_db_path(), help='SQLite database path')
    parser.add_argument('--date', type=date.fromisoformat, default=date.today(), help='Reference date (YYYY-MM-DD)')
    parser.add_argument('--log-level', default=None, help='Logging level (default from BUDGET_ENGINE_LOG_LEVEL)')
    args = parser.parse_args()
    configure_logging(args.log_level)
    raise SystemExit(main(args.transactions, args.bills, args.db, args.date))
