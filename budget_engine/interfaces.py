"""Collaborator contracts the engine depends on."""

from __future__ import annotations

from datetime import date
from typing import ContextManager, List, Optional, Protocol

from .models import (
    AccountScope,
    Budget,
    BudgetAlert,
    BudgetPeriod,
    LedgerTransaction,
    PeriodRange,
    PeriodStatus,
    UpcomingBill,
)


class Ledger(Protocol):
    """Read-only view of the transaction ledger."""

    def fetch_transactions(self, scope: AccountScope, date_range: PeriodRange) -> List[LedgerTransaction]:
        ...

    def fetch_upcoming_bills(self, date_range: PeriodRange) -> List[UpcomingBill]:
        ...


class BudgetRepository(Protocol):
    def get_budget(self, budget_id: str) -> Budget:
        """Raise ``BudgetNotFound`` when the id is unknown."""
        ...

    def list_budgets(self, active_only: bool = True) -> List[Budget]:
        ...

    def save_budget(self, budget: Budget) -> Budget:
        """Persist a budget and its categories, validating category references."""
        ...

    def get_period(self, budget_id: str, period_start: date) -> Optional[BudgetPeriod]:
        ...

    def list_periods(self, budget_id: str, status: Optional[PeriodStatus] = None) -> List[BudgetPeriod]:
        """Periods ordered by start date, oldest first."""
        ...

    def save_period(self, period: BudgetPeriod) -> BudgetPeriod:
        ...

    def atomic(self) -> ContextManager['BudgetRepository']:
        """Repository bound to one write transaction; all-or-nothing."""
        ...


class AlertRepository(Protocol):
    def append(self, alert: BudgetAlert) -> BudgetAlert:
        ...

    def find_unread(self, budget_id: str, period_start: date) -> List[BudgetAlert]:
        ...

    def list_alerts(self, budget_id: str, unread_only: bool = False) -> List[BudgetAlert]:
        ...

    def mark_read(self, alert_id: str) -> None:
        ...

    def mark_email_sent(self, alert_id: str) -> None:
        ...

    def atomic(self) -> ContextManager['AlertRepository']:
        ...
