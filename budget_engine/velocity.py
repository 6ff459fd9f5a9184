"""Burn-rate projection for the remainder of a period."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional

from .config import VelocitySettings
from .models import PeriodRange, UpcomingBill

PACE_UNDER = 'under'
PACE_ON_TRACK = 'on_track'
PACE_OVER = 'over'


@dataclass
class BudgetVelocity:
    period_start: date
    period_end: date
    days_elapsed: int
    days_remaining: int
    total_days: int
    budget_total: float
    current_spent: float
    daily_burn_rate: float
    projected_total: float
    projected_variance: float
    upcoming_bills_total: float
    safe_daily_spend: float
    truly_available: float
    pace_status: str
    upcoming_bills: List[UpcomingBill] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        data = asdict(self)
        data['period_start'] = self.period_start.isoformat()
        data['period_end'] = self.period_end.isoformat()
        for bill in data['upcoming_bills']:
            bill['due_date'] = bill['due_date'].isoformat()
        return data


def bills_due(bills: Iterable[UpcomingBill], period: PeriodRange, reference: date) -> List[UpcomingBill]:
    """Bills still due between ``reference`` and the period end, soonest first."""
    due = [bill for bill in bills if reference <= bill.due_date <= period.end]
    return sorted(due, key=lambda bill: bill.due_date)


def upcoming_bills_total(bills: Iterable[UpcomingBill], period: PeriodRange, reference: date) -> float:
    """Sum of bills still due between ``reference`` and the period end."""
    return round(sum(abs(bill.amount) for bill in bills_due(bills, period, reference)), 2)


def pace_status(projected_total: float, budget_total: float, under_pace_ratio: float = 0.9) -> str:
    if projected_total - budget_total > 0:
        return PACE_OVER
    if projected_total < budget_total * under_pace_ratio:
        return PACE_UNDER
    return PACE_ON_TRACK


def project_total(current_spent: float, period: PeriodRange, reference: date) -> float:
    """Extrapolate spend to the period end at the current daily rate.

    With no elapsed days there is nothing to extrapolate from.
    """
    elapsed = period.days_elapsed(reference)
    if elapsed == 0:
        return current_spent
    return current_spent + current_spent / elapsed * period.days_remaining(reference)


def project_velocity(
    period: PeriodRange,
    reference: date,
    current_spent: float,
    budget_total: float,
    upcoming_bills: Iterable[UpcomingBill] = (),
    settings: Optional[VelocitySettings] = None,
) -> BudgetVelocity:
    """Compute pace metrics for ``period`` as of ``reference``.

    Args:
        period: The budget period
        reference: Today, for the purposes of the projection
        current_spent: Expenses recorded so far in the period
        budget_total: Total effective budget for expenses
        upcoming_bills: Scheduled bills; only those still due in the period count
        settings: Pace thresholds

    Returns:
        BudgetVelocity with monetary values rounded to cents.
    """
    settings = settings or VelocitySettings()
    days_elapsed = period.days_elapsed(reference)
    days_remaining = period.days_remaining(reference)

    daily_burn_rate = current_spent / max(1, days_elapsed) if days_elapsed > 0 else 0.0
    projected = project_total(current_spent, period, reference)
    due = bills_due(upcoming_bills, period, reference)
    bills_total = upcoming_bills_total(due, period, reference)
    truly_available = budget_total - current_spent - bills_total

    return BudgetVelocity(
        period_start=period.start,
        period_end=period.end,
        days_elapsed=days_elapsed,
        days_remaining=days_remaining,
        total_days=period.total_days,
        budget_total=round(budget_total, 2),
        current_spent=round(current_spent, 2),
        daily_burn_rate=round(daily_burn_rate, 2),
        projected_total=round(projected, 2),
        projected_variance=round(projected - budget_total, 2),
        upcoming_bills_total=bills_total,
        safe_daily_spend=round(max(0.0, truly_available / max(1, days_remaining)), 2),
        truly_available=round(truly_available, 2),
        pace_status=pace_status(projected, budget_total, settings.under_pace_ratio),
        upcoming_bills=due,
    )
