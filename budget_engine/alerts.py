"""Alert evaluation over a period's summary, velocity and patterns.

Every rule returns :class:`AlertCandidate` objects; persistence and
deduplication against existing unread alerts happen in the service.
"""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .config import AlertSettings, HealthSettings
from .formatting import format_currency, format_percent
from .health import HealthScoreResult, label_rank
from .models import AlertSeverity, AlertType, Budget, BudgetAlert, BudgetCategory, UpcomingBill
from .reports import BudgetSummary, FlexGroupStatus
from .seasonal import SeasonalAnalysis
from .velocity import BudgetVelocity, project_total

logger = logging.getLogger(__name__)

DedupKey = Tuple[Optional[str], AlertType, date, Optional[str]]


def _subject(data: Dict[str, Any]) -> Optional[str]:
    """Tells apart budget-level alerts of one type (flex group, milestone kind or bill)."""
    return data.get('flex_group') or data.get('milestone') or data.get('bill')


@dataclass
class AlertCandidate:
    alert_type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    budget_category_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def key(self, period_start: date) -> DedupKey:
        return (self.budget_category_id, self.alert_type, period_start, _subject(self.data))

    def to_alert(self, budget_id: str, period_start: date) -> BudgetAlert:
        return BudgetAlert(
            budget_id=budget_id,
            alert_type=self.alert_type,
            severity=self.severity,
            title=self.title,
            message=self.message,
            period_start=period_start,
            budget_category_id=self.budget_category_id,
            data=dict(self.data),
        )


def _category_lookup(budget: Budget) -> Dict[str, BudgetCategory]:
    return {category.id: category for category in budget.categories}


def threshold_alerts(budget: Budget, summary: BudgetSummary) -> List[AlertCandidate]:
    """One alert per category at the highest threshold it has crossed."""
    categories = _category_lookup(budget)
    money = budget.currency
    alerts = []
    for row in summary.expense_rows:
        category = categories.get(row.budget_category_id)
        if category is None or row.effective_budget <= 0:
            continue
        pct = row.percent_used
        data = {'percent_used': pct, 'spent': row.spent, 'budgeted': row.effective_budget}
        if pct > 100:
            over = round(row.spent - row.effective_budget, 2)
            alerts.append(AlertCandidate(
                AlertType.OVER_BUDGET, AlertSeverity.CRITICAL,
                f"{row.category_name} is over budget",
                f"You've spent {format_currency(row.spent, money)} of your "
                f"{format_currency(row.effective_budget, money)} budget, "
                f"{format_currency(over, money)} over.",
                row.budget_category_id, data,
            ))
        elif pct >= category.critical_percent(budget.config):
            alerts.append(AlertCandidate(
                AlertType.THRESHOLD_CRITICAL, AlertSeverity.CRITICAL,
                f"{row.category_name} is at {format_percent(pct)} of budget",
                f"Only {format_currency(row.remaining, money)} left in {row.category_name}.",
                row.budget_category_id, data,
            ))
        elif pct >= category.warn_percent(budget.config):
            alerts.append(AlertCandidate(
                AlertType.THRESHOLD_WARNING, AlertSeverity.WARNING,
                f"{row.category_name} is at {format_percent(pct)} of budget",
                f"{format_currency(row.remaining, money)} remaining in {row.category_name}.",
                row.budget_category_id, data,
            ))
    return alerts


def pace_alerts(
    budget: Budget,
    summary: BudgetSummary,
    reference: date,
    settings: AlertSettings,
) -> List[AlertCandidate]:
    """Categories still under budget whose current pace overshoots it."""
    period = summary.period
    if period.days_elapsed(reference) < settings.min_elapsed_days:
        return []
    alerts = []
    for row in summary.expense_rows:
        if row.effective_budget <= 0 or row.percent_used >= 100:
            continue
        projected = project_total(row.spent, period, reference)
        if projected <= row.effective_budget * settings.pace_tolerance:
            continue
        projected_percent = round(projected / row.effective_budget * 100, 2)
        alerts.append(AlertCandidate(
            AlertType.PACE_WARNING, AlertSeverity.WARNING,
            f"{row.category_name} is on pace to overspend",
            f"At the current rate you'll spend about {format_currency(projected, budget.currency)} "
            f"({format_percent(projected_percent)} of budget) by {period.end.strftime('%b %d')}.",
            row.budget_category_id,
            {'projected_total': round(projected, 2), 'projected_percent': projected_percent,
             'budgeted': row.effective_budget},
        ))
    return alerts


def flex_group_alerts(
    statuses: Sequence[FlexGroupStatus],
    settings: AlertSettings,
    currency: str = 'USD',
) -> List[AlertCandidate]:
    alerts = []
    for status in statuses:
        if status.total_budgeted <= 0 or status.percent_used < settings.flex_group_warn_percent:
            continue
        severity = AlertSeverity.CRITICAL if status.percent_used > 100 else AlertSeverity.WARNING
        alerts.append(AlertCandidate(
            AlertType.FLEX_GROUP_WARNING, severity,
            f"Flex group {status.group_name} is at {format_percent(status.percent_used)}",
            f"{format_currency(status.remaining, currency)} left across {len(status.categories)} categories.",
            None,
            {'flex_group': status.group_name, 'percent_used': status.percent_used,
             'total_budgeted': status.total_budgeted, 'total_spent': status.total_spent},
        ))
    return alerts


def seasonal_alerts(
    summary: BudgetSummary,
    seasonal: Optional[SeasonalAnalysis],
    reference: date,
    currency: str = 'USD',
) -> List[AlertCandidate]:
    """This month is historically high for a category and spend is already elevated."""
    if seasonal is None:
        return []
    alerts = []
    for row in summary.expense_rows:
        pattern = seasonal.pattern_for(row.budget_category_id)
        if pattern is None or reference.month not in pattern.high_months:
            continue
        if row.spent <= pattern.typical_monthly_spend:
            continue
        month_name = calendar.month_name[reference.month]
        alerts.append(AlertCandidate(
            AlertType.SEASONAL_SPIKE, AlertSeverity.INFO,
            f"{row.category_name} usually runs high in {month_name}",
            f"You've spent {format_currency(row.spent, currency)} so far; {month_name} typically averages "
            f"{format_currency(pattern.average_for(reference.month), currency)} versus "
            f"{format_currency(pattern.typical_monthly_spend, currency)} in a normal month.",
            row.budget_category_id,
            {'month': reference.month, 'historical_average': pattern.average_for(reference.month),
             'typical_monthly_spend': pattern.typical_monthly_spend, 'spent': row.spent},
        ))
    return alerts


def projected_overspend_alert(
    velocity: BudgetVelocity,
    currency: str,
    settings: AlertSettings,
) -> List[AlertCandidate]:
    if velocity.days_elapsed < settings.min_elapsed_days or velocity.projected_variance <= 0:
        return []
    return [AlertCandidate(
        AlertType.PROJECTED_OVERSPEND, AlertSeverity.WARNING,
        "Budget projected to run over",
        f"Spending {format_currency(velocity.daily_burn_rate, currency)}/day puts you "
        f"{format_currency(velocity.projected_variance, currency)} over by period end.",
        None,
        {'projected_total': velocity.projected_total, 'projected_variance': velocity.projected_variance,
         'daily_burn_rate': velocity.daily_burn_rate},
    )]


def income_shortfall_alert(
    budget: Budget,
    summary: BudgetSummary,
    reference: date,
    settings: AlertSettings,
) -> List[AlertCandidate]:
    """Income-linked budgets whose income trails the pro-rated base income."""
    if not budget.income_linked or not budget.base_income:
        return []
    progress = summary.period.progress(reference)
    if progress < settings.income_min_progress:
        return []
    expected = budget.base_income * progress
    ratio = summary.total_income / expected
    if ratio >= settings.income_shortfall_ratio:
        return []
    return [AlertCandidate(
        AlertType.INCOME_SHORTFALL, AlertSeverity.CRITICAL,
        "Income is behind expectations",
        f"Received {format_currency(summary.total_income, budget.currency)} against roughly "
        f"{format_currency(expected, budget.currency)} expected by now.",
        None,
        {'actual_income': summary.total_income, 'expected_income': round(expected, 2),
         'ratio': round(ratio, 4)},
    )]


def milestone_alerts(
    summary: BudgetSummary,
    reference: date,
    settings: AlertSettings,
    health: Optional[HealthScoreResult] = None,
    previous_label: Optional[str] = None,
    health_settings: Optional[HealthSettings] = None,
    currency: str = 'USD',
) -> List[AlertCandidate]:
    alerts = []
    period = summary.period
    progress = period.progress(reference)

    if (
        progress >= settings.milestone_min_progress
        and period.days_remaining(reference) > 0
        and summary.total_budgeted > 0
        and summary.percent_used < settings.milestone_max_percent
    ):
        alerts.append(AlertCandidate(
            AlertType.POSITIVE_MILESTONE, AlertSeverity.SUCCESS,
            "Great progress this period",
            f"{format_percent(round(progress * 100))} through the period with only "
            f"{format_percent(summary.percent_used)} of the budget used.",
            None,
            {'milestone': 'under_pace', 'percent_used': summary.percent_used},
        ))

    if health is not None and previous_label is not None:
        if label_rank(health.label, health_settings) > label_rank(previous_label, health_settings):
            alerts.append(AlertCandidate(
                AlertType.POSITIVE_MILESTONE, AlertSeverity.SUCCESS,
                f"Budget health improved to {health.label}",
                f"Your health score is {health.score}, up from {previous_label}.",
                None,
                {'milestone': 'health_band', 'score': health.score, 'previous_label': previous_label},
            ))

    if reference > period.end:
        for row in summary.expense_rows:
            if row.effective_budget > 0 and row.percent_used <= settings.finish_under_percent:
                alerts.append(AlertCandidate(
                    AlertType.POSITIVE_MILESTONE, AlertSeverity.SUCCESS,
                    f"{row.category_name} finished well under budget",
                    f"Spent {format_currency(row.spent, currency)} of {format_currency(row.effective_budget, currency)}.",
                    row.budget_category_id,
                    {'milestone': 'finished_under', 'percent_used': row.percent_used},
                ))
    return alerts


def _due_phrase(days: int) -> str:
    if days == 0:
        return "today"
    if days == 1:
        return "tomorrow"
    return f"in {days} days"


def bill_due_alerts(
    bills: Iterable[UpcomingBill],
    reference: date,
    settings: AlertSettings,
    currency: str = 'USD',
) -> List[AlertCandidate]:
    """Reminders for scheduled bills due within the horizon, soonest first.

    Bills due within ``bill_urgent_days`` are warnings; the rest are info.
    """
    horizon = reference + timedelta(days=settings.bill_horizon_days)
    alerts = []
    for bill in sorted(bills, key=lambda b: b.due_date):
        if not reference <= bill.due_date <= horizon:
            continue
        days = (bill.due_date - reference).days
        name = bill.name or bill.category_id or 'Bill'
        amount = round(abs(bill.amount), 2)
        severity = AlertSeverity.WARNING if days <= settings.bill_urgent_days else AlertSeverity.INFO
        alerts.append(AlertCandidate(
            AlertType.BILL_DUE, severity,
            f"{name} due {_due_phrase(days)}",
            f"{format_currency(amount, currency)} due on {bill.due_date.isoformat()}.",
            None,
            {'bill': f"{name}@{bill.due_date.isoformat()}", 'name': name, 'amount': amount,
             'due_date': bill.due_date.isoformat(), 'category_id': bill.category_id},
        ))
    return alerts


def evaluate_alerts(
    budget: Budget,
    summary: BudgetSummary,
    velocity: BudgetVelocity,
    reference: date,
    flex_statuses: Sequence[FlexGroupStatus] = (),
    seasonal: Optional[SeasonalAnalysis] = None,
    health: Optional[HealthScoreResult] = None,
    previous_health_label: Optional[str] = None,
    settings: Optional[AlertSettings] = None,
    health_settings: Optional[HealthSettings] = None,
    upcoming_bills: Iterable[UpcomingBill] = (),
) -> List[AlertCandidate]:
    """Run every alert rule for one budget period."""
    settings = settings or AlertSettings()
    money = budget.currency
    candidates: List[AlertCandidate] = []
    candidates.extend(threshold_alerts(budget, summary))
    candidates.extend(pace_alerts(budget, summary, reference, settings))
    candidates.extend(flex_group_alerts(flex_statuses, settings, money))
    candidates.extend(seasonal_alerts(summary, seasonal, reference, money))
    candidates.extend(projected_overspend_alert(velocity, money, settings))
    candidates.extend(income_shortfall_alert(budget, summary, reference, settings))
    candidates.extend(milestone_alerts(
        summary, reference, settings, health, previous_health_label, health_settings, money
    ))
    candidates.extend(bill_due_alerts(upcoming_bills, reference, settings, money))
    return _unique(candidates, summary.period.start)


def _unique(candidates: Iterable[AlertCandidate], period_start: date) -> List[AlertCandidate]:
    """Keep the first candidate per dedup key."""
    seen = set()
    unique = []
    for candidate in candidates:
        key = candidate.key(period_start)
        if key in seen:
            continue
        seen.add(key)
        unique.append(candidate)
    return unique


def deduplicate(
    candidates: Iterable[AlertCandidate],
    existing_unread: Iterable[BudgetAlert],
    period_start: date,
) -> List[AlertCandidate]:
    """Drop candidates that match an unread alert for the same period.

    Alerts are keyed by (category, type, period start). Budget-level alerts
    have no category and are told apart by their flex group, milestone or bill.
    """
    existing = {
        (alert.budget_category_id, alert.alert_type, alert.period_start, _subject(alert.data))
        for alert in existing_unread
    }
    fresh = []
    for candidate in candidates:
        key = candidate.key(period_start)
        if key in existing:
            logger.debug("Skipping duplicate %s alert for %s", candidate.alert_type.value, key[0])
            continue
        fresh.append(candidate)
    return fresh
