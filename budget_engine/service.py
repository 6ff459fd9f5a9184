"""Request-scoped orchestration of the budget engine.

:class:`BudgetEngine` loads a budget, fetches the period's transactions
once, runs the pure analytical components and owns the only two writes
the engine performs: closing a period and persisting alerts.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import replace
from datetime import date, timedelta
from typing import Callable, Iterable, List, Optional, Tuple

import pandas as pd

from .aggregation import CategoryActuals, aggregate_actuals, daily_outflows, transactions_to_frame
from .alerts import deduplicate, evaluate_alerts
from .config import DEFAULT_SETTINGS, EngineSettings
from .errors import (
    ConcurrentPeriodClose,
    InsufficientHistory,
    PeriodCloseOutOfOrder,
    PeriodNotEnded,
    TransientConflict,
)
from .generator import GenerateBudgetResponse, analysis_window, generate_budget
from .health import HealthScoreResult, score_health
from .interfaces import AlertRepository, BudgetRepository, Ledger
from .models import (
    AccountScope,
    Budget,
    BudgetAlert,
    BudgetPeriod,
    BudgetProfile,
    BudgetStrategy,
    CategoryTree,
    PeriodRange,
    PeriodStatus,
)
from .periods import period_for, recent_periods
from .reports import (
    BudgetSummary,
    BudgetTrendPoint,
    CategoryTrendSeries,
    DailySpendingPoint,
    DashboardBudgetSummary,
    FlexGroupStatus,
    HealthScoreHistoryPoint,
    SavingsRatePoint,
    build_summary,
    category_trends,
    daily_spending_points,
    dashboard_summary,
    flex_group_status,
    savings_rate_point,
    trend_point,
)
from .rollover import build_period_rows, carries_over, carry_forward, close_rows, compute_rollover_out
from .seasonal import SeasonalAnalysis, analyze_seasonality
from .velocity import BudgetVelocity, project_total, project_velocity

logger = logging.getLogger(__name__)


class BudgetEngine:
    """Budget tracking and projection over injected collaborators."""

    def __init__(
        self,
        budgets: BudgetRepository,
        alerts: AlertRepository,
        ledger: Ledger,
        tree: Optional[CategoryTree] = None,
        settings: Optional[EngineSettings] = None,
        clock: Optional[Callable[[], date]] = None,
    ):
        self.budgets = budgets
        self.alerts = alerts
        self.ledger = ledger
        self.tree = tree or CategoryTree()
        self.settings = settings or DEFAULT_SETTINGS
        self._clock = clock or date.today

    def _today(self, reference: Optional[date]) -> date:
        return reference if reference is not None else self._clock()

    # ------------------------------------------------------------------
    # Periods
    # ------------------------------------------------------------------
    def _fetch_frame(self, budget: Budget, date_range: PeriodRange) -> pd.DataFrame:
        transactions = self.ledger.fetch_transactions(AccountScope.for_budget(budget), date_range)
        return transactions_to_frame(transactions)

    def _period_actuals(self, budget: Budget, period: PeriodRange, frame: Optional[pd.DataFrame] = None) -> CategoryActuals:
        if frame is None:
            frame = self._fetch_frame(budget, period)
        return aggregate_actuals(period, budget.categories, frame, AccountScope.for_budget(budget))

    def get_or_create_period(self, budget_id: str, reference: Optional[date] = None) -> BudgetPeriod:
        """Return the stored period containing ``reference``, creating it OPEN if needed."""
        budget = self.budgets.get_budget(budget_id)
        period_range = period_for(budget, self._today(reference))
        existing = self.budgets.get_period(budget.id, period_range.start)
        if existing is not None:
            return existing
        try:
            with self.budgets.atomic() as repo:
                existing = repo.get_period(budget.id, period_range.start)
                if existing is not None:
                    return existing
                previous = repo.get_period(budget.id, period_for(budget, period_range.start, -1).start)
                rows = build_period_rows(budget, period_range, previous)
                period = BudgetPeriod(
                    budget_id=budget.id,
                    period_start=period_range.start,
                    period_end=period_range.end,
                    status=PeriodStatus.OPEN,
                    total_budgeted=_expense_budget(budget, rows),
                    categories=rows,
                )
                repo.save_period(period)
                logger.info("Opened period %s for budget %s", period_range.start, budget.id)
                return period
        except TransientConflict:
            existing = self.budgets.get_period(budget.id, period_range.start)
            if existing is None:
                raise
            return existing

    def project_period(self, budget_id: str, offset: int = 1, reference: Optional[date] = None) -> BudgetPeriod:
        """A PROJECTED future period; never persisted.

        The period right after the current one carries the rollover the
        current period would produce if spending continues at today's pace.
        """
        if offset < 1:
            raise ValueError("offset must point at a future period")
        reference = self._today(reference)
        budget = self.budgets.get_budget(budget_id)
        current_range = period_for(budget, reference)
        target_range = period_for(budget, reference, offset)
        summary = self._summary(budget, current_range)

        rows = build_period_rows(budget, target_range)
        if offset == 1:
            breakdown = {row.budget_category_id: row for row in summary.expense_rows}
            projected_rows = []
            for category, row in zip(budget.categories, rows):
                current = breakdown.get(category.id)
                if current is None or not carries_over(
                    category.rollover_type, current_range.start, target_range.start, budget.config.fiscal_year_start
                ):
                    projected_rows.append(row)
                    continue
                projected_spend = project_total(current.spent, current_range, reference)
                rollover_in = compute_rollover_out(
                    current.effective_budget, projected_spend, category.rollover_type, category.rollover_cap
                )
                projected_rows.append(replace(row, rollover_in=rollover_in))
            rows = projected_rows

        return BudgetPeriod(
            budget_id=budget.id,
            period_start=target_range.start,
            period_end=target_range.end,
            status=PeriodStatus.PROJECTED,
            actual_income=budget.base_income or 0.0,
            total_budgeted=_expense_budget(budget, rows),
            categories=rows,
        )

    def close_period(self, budget_id: str, period_start: date, reference: Optional[date] = None) -> BudgetPeriod:
        """Settle a finished period and open the next one with its rollover.

        Closing an already CLOSED period returns the stored rows untouched.
        A write race is retried once against the winner's result.

        Raises:
            PeriodNotEnded: If the period has not finished as of ``reference``
            PeriodCloseOutOfOrder: If the previous period is still open or the
                next one is already closed
            ConcurrentPeriodClose: If the retry also collides
        """
        reference = self._today(reference)
        budget = self.budgets.get_budget(budget_id)
        period_range = period_for(budget, period_start)
        if period_range.end >= reference:
            raise PeriodNotEnded(f"Period {period_range.start} of budget {budget.id} ends {period_range.end}")

        attempts = max(1, self.settings.persistence.close_attempts)
        attempt = 1
        while True:
            try:
                return self._close_once(budget, period_range)
            except TransientConflict as e:
                if attempt >= attempts:
                    raise ConcurrentPeriodClose(
                        f"Could not close period {period_range.start} of budget {budget.id}"
                    ) from e
                attempt += 1
                logger.warning(
                    "Close of period %s for budget %s collided with another writer; retrying",
                    period_range.start, budget.id,
                )

    def _close_once(self, budget: Budget, period_range: PeriodRange) -> BudgetPeriod:
        with self.budgets.atomic() as repo:
            existing = repo.get_period(budget.id, period_range.start)
            if existing is not None and existing.status is PeriodStatus.CLOSED:
                logger.info("Period %s for budget %s already closed", period_range.start, budget.id)
                return existing

            # Closed history is never recomputed, so periods close oldest first.
            previous = repo.get_period(budget.id, period_for(budget, period_range.start, -1).start)
            if previous is not None and previous.status is not PeriodStatus.CLOSED:
                raise PeriodCloseOutOfOrder(
                    f"Close period {previous.period_start} of budget {budget.id} before {period_range.start}"
                )
            next_range = period_for(budget, period_range.start, 1)
            upcoming = repo.get_period(budget.id, next_range.start)
            if upcoming is not None and upcoming.status is PeriodStatus.CLOSED:
                raise PeriodCloseOutOfOrder(
                    f"Period {next_range.start} of budget {budget.id} is already closed; "
                    f"closing {period_range.start} now would leave its rollover stale"
                )

            actuals = self._period_actuals(budget, period_range)
            rows = build_period_rows(budget, period_range, previous, actual_income=actuals.income)
            settled, pools = close_rows(budget, rows, actuals)
            for pool in pools:
                if pool.exhausted_ids:
                    logger.info("Flex group %s exhausted rollover for %s", pool.flex_group, pool.exhausted_ids)

            closed = BudgetPeriod(
                budget_id=budget.id,
                period_start=period_range.start,
                period_end=period_range.end,
                status=PeriodStatus.CLOSED,
                actual_income=actuals.income,
                actual_expenses=actuals.expenses,
                total_budgeted=_expense_budget(budget, settled),
                categories=settled,
                id=existing.id if existing is not None else None,
            )
            repo.save_period(closed)

            if upcoming is None:
                rows = build_period_rows(budget, next_range, closed)
                upcoming = BudgetPeriod(
                    budget_id=budget.id,
                    period_start=next_range.start,
                    period_end=next_range.end,
                    status=PeriodStatus.OPEN,
                    total_budgeted=_expense_budget(budget, rows),
                    categories=rows,
                )
                repo.save_period(upcoming)
            elif upcoming.status is PeriodStatus.OPEN:
                carried = carry_forward(budget, closed, next_range)
                known = {row.budget_category_id for row in upcoming.categories}
                upcoming.categories = [
                    replace(row, rollover_in=carried.get(row.budget_category_id, row.rollover_in))
                    for row in upcoming.categories
                ] + [row for row in build_period_rows(budget, next_range, closed) if row.budget_category_id not in known]
                upcoming.total_budgeted = _expense_budget(budget, upcoming.categories)
                repo.save_period(upcoming)

            stored = repo.get_period(budget.id, period_range.start)
        logger.info(
            "Closed period %s for budget %s: spent %.2f of %.2f",
            period_range.start, budget.id, closed.actual_expenses, closed.total_budgeted,
        )
        return stored

    def close_due_periods(self, reference: Optional[date] = None) -> List[BudgetPeriod]:
        """Close every ended OPEN period, plus the period just before ``reference``."""
        reference = self._today(reference)
        closed = []
        for budget in self.budgets.list_budgets(active_only=True):
            starts = {
                period.period_start
                for period in self.budgets.list_periods(budget.id, PeriodStatus.OPEN)
                if period.period_end < reference
            }
            previous = period_for(budget, reference, -1)
            if previous.start >= budget.period_start:
                starts.add(previous.start)
            for start in sorted(starts):
                closed.append(self.close_period(budget.id, start, reference))
        return closed

    # ------------------------------------------------------------------
    # Summaries and projections
    # ------------------------------------------------------------------
    def _summary(
        self,
        budget: Budget,
        period_range: PeriodRange,
        frame: Optional[pd.DataFrame] = None,
    ) -> BudgetSummary:
        stored = self.budgets.get_period(budget.id, period_range.start)
        if stored is not None and stored.status is PeriodStatus.CLOSED:
            actuals = CategoryActuals.from_period(budget, stored)
            return build_summary(budget, period_range, actuals, stored.categories, PeriodStatus.CLOSED, self.tree)
        if stored is not None:
            rows = stored.categories
        else:
            previous = self.budgets.get_period(budget.id, period_for(budget, period_range.start, -1).start)
            rows = build_period_rows(budget, period_range, previous)
        actuals = self._period_actuals(budget, period_range, frame)
        return build_summary(budget, period_range, actuals, rows, PeriodStatus.OPEN, self.tree)

    def _current(self, budget_id: str, reference: date) -> Tuple[Budget, BudgetSummary]:
        self.get_or_create_period(budget_id, reference)
        budget = self.budgets.get_budget(budget_id)
        return budget, self._summary(budget, period_for(budget, reference))

    def get_summary(self, budget_id: str, reference: Optional[date] = None) -> BudgetSummary:
        return self._current(budget_id, self._today(reference))[1]

    def _velocity(self, summary: BudgetSummary, reference: date) -> BudgetVelocity:
        period = summary.period
        bills = self.ledger.fetch_upcoming_bills(PeriodRange(max(reference, period.start), period.end))
        return project_velocity(
            period,
            reference,
            current_spent=summary.total_spent,
            budget_total=summary.total_budgeted,
            upcoming_bills=bills,
            settings=self.settings.velocity,
        )

    def get_velocity(self, budget_id: str, reference: Optional[date] = None) -> BudgetVelocity:
        reference = self._today(reference)
        _, summary = self._current(budget_id, reference)
        return self._velocity(summary, reference)

    def get_flex_group_status(self, budget_id: str, reference: Optional[date] = None) -> List[FlexGroupStatus]:
        budget, summary = self._current(budget_id, self._today(reference))
        return flex_group_status(budget, summary)

    def _closed_summaries(self, budget: Budget, before: Optional[date] = None) -> List[BudgetSummary]:
        summaries = []
        for period in self.budgets.list_periods(budget.id, PeriodStatus.CLOSED):
            if before is not None and period.period_start >= before:
                continue
            actuals = CategoryActuals.from_period(budget, period)
            summaries.append(build_summary(
                budget, period.range, actuals, period.categories, PeriodStatus.CLOSED, self.tree
            ))
        return summaries

    def _health_history(self, summaries: List[BudgetSummary]) -> List[HealthScoreResult]:
        """Score each summary against the usage trend of the ones before it."""
        results = []
        for i, summary in enumerate(summaries):
            trend = [s.percent_used for s in summaries[max(0, i - 2):i]]
            results.append(score_health(summary.category_breakdown, trend, self.settings.health))
        return results

    def get_health_score(self, budget_id: str, reference: Optional[date] = None) -> HealthScoreResult:
        budget, summary = self._current(budget_id, self._today(reference))
        history = self._closed_summaries(budget, before=summary.period.start)
        trend = [s.percent_used for s in history[-2:]]
        return score_health(summary.category_breakdown, trend, self.settings.health)

    def get_health_score_history(self, budget_id: str, periods: int = 6) -> List[HealthScoreHistoryPoint]:
        budget = self.budgets.get_budget(budget_id)
        summaries = self._closed_summaries(budget)
        scores = self._health_history(summaries)
        return [
            HealthScoreHistoryPoint(summary.period.label(), summary.period.start, result.score, result.label)
            for summary, result in list(zip(summaries, scores))[-periods:]
        ]

    def get_seasonal_patterns(
        self,
        budget_id: str,
        reference: Optional[date] = None,
        years: Optional[int] = None,
    ) -> SeasonalAnalysis:
        """Seasonal patterns over complete months of the last ``years`` years."""
        reference = self._today(reference)
        budget = self.budgets.get_budget(budget_id)
        years = years or self.settings.seasonal.lookback_years
        end = reference.replace(day=1) - timedelta(days=1)
        start = date(end.year - years, end.month, 1) + timedelta(days=32)
        start = start.replace(day=1)
        history = self._fetch_frame(budget, PeriodRange(start, end))
        return analyze_seasonality(history, budget.categories, self.tree, self.settings.seasonal)

    def _summaries(self, budget: Budget, reference: date, periods: int) -> List[BudgetSummary]:
        ranges = recent_periods(budget, reference, periods)
        ranges = [r for r in ranges if r.end >= budget.period_start]
        if not ranges:
            return []
        frame = self._fetch_frame(budget, PeriodRange(ranges[0].start, ranges[-1].end))
        return [self._summary(budget, r, frame) for r in ranges]

    def get_trend(self, budget_id: str, periods: int = 6, reference: Optional[date] = None) -> List[BudgetTrendPoint]:
        budget = self.budgets.get_budget(budget_id)
        return [trend_point(s) for s in self._summaries(budget, self._today(reference), periods)]

    def get_category_trend(
        self,
        budget_id: str,
        periods: int = 6,
        budget_category_ids: Optional[Iterable[str]] = None,
        reference: Optional[date] = None,
    ) -> List[CategoryTrendSeries]:
        budget = self.budgets.get_budget(budget_id)
        return category_trends(self._summaries(budget, self._today(reference), periods), budget_category_ids)

    def get_savings_rate(self, budget_id: str, periods: int = 6, reference: Optional[date] = None) -> List[SavingsRatePoint]:
        budget = self.budgets.get_budget(budget_id)
        return [savings_rate_point(s) for s in self._summaries(budget, self._today(reference), periods)]

    def get_daily_spending(self, budget_id: str, reference: Optional[date] = None) -> List[DailySpendingPoint]:
        reference = self._today(reference)
        budget = self.budgets.get_budget(budget_id)
        period = period_for(budget, reference)
        through = PeriodRange(period.start, min(max(reference, period.start), period.end))
        frame = self._fetch_frame(budget, period)
        return daily_spending_points(daily_outflows(frame, period, through))

    def get_dashboard_summary(self, reference: Optional[date] = None) -> Optional[DashboardBudgetSummary]:
        """Condensed view of the most recent active budget, if any."""
        reference = self._today(reference)
        budgets = self.budgets.list_budgets(active_only=True)
        if not budgets:
            return None
        _, summary = self._current(budgets[0].id, reference)
        return dashboard_summary(summary, self._velocity(summary, reference))

    def generate_budget(
        self,
        months: int = 6,
        strategy: BudgetStrategy = BudgetStrategy.FIXED,
        profile: BudgetProfile = BudgetProfile.ON_TRACK,
        reference: Optional[date] = None,
        account_names: Optional[dict] = None,
    ) -> GenerateBudgetResponse:
        reference = self._today(reference)
        window = analysis_window(reference, months)
        transactions = self.ledger.fetch_transactions(AccountScope(), window)
        return generate_budget(
            transactions, reference, months, strategy, profile, self.tree, account_names, self.settings
        )

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------
    def generate_alerts(self, budget_id: str, reference: Optional[date] = None) -> List[BudgetAlert]:
        """Evaluate alert rules for the current period and persist new ones.

        Candidates matching an existing unread alert for the same
        (category, type, period) are skipped.
        """
        reference = self._today(reference)
        budget, summary = self._current(budget_id, reference)
        velocity = self._velocity(summary, reference)
        with warnings.catch_warnings():
            warnings.simplefilter('ignore', InsufficientHistory)
            seasonal = self.get_seasonal_patterns(budget_id, reference)

        history = self._closed_summaries(budget, before=summary.period.start)
        health = score_health(
            summary.category_breakdown, [s.percent_used for s in history[-2:]], self.settings.health
        )
        previous_label = self._health_history(history)[-1].label if history else None
        bills = self.ledger.fetch_upcoming_bills(
            PeriodRange(reference, reference + timedelta(days=self.settings.alerts.bill_horizon_days))
        )

        candidates = evaluate_alerts(
            budget,
            summary,
            velocity,
            reference,
            flex_statuses=flex_group_status(budget, summary),
            seasonal=seasonal,
            health=health,
            previous_health_label=previous_label,
            settings=self.settings.alerts,
            health_settings=self.settings.health,
            upcoming_bills=bills,
        )

        period_start = summary.period.start
        attempts = max(1, self.settings.persistence.close_attempts)
        for attempt in range(1, attempts + 1):
            try:
                with self.alerts.atomic() as repo:
                    fresh = deduplicate(candidates, repo.find_unread(budget.id, period_start), period_start)
                    created = [repo.append(c.to_alert(budget.id, period_start)) for c in fresh]
                break
            except TransientConflict:
                if attempt >= attempts:
                    raise
                logger.warning("Alert write for budget %s collided; retrying", budget.id)
        logger.info("Generated %d new alerts for budget %s", len(created), budget.id)
        return created


def _expense_budget(budget: Budget, rows) -> float:
    income_ids = {c.id for c in budget.income_categories}
    return round(sum(row.effective_budget for row in rows if row.budget_category_id not in income_ids), 2)
