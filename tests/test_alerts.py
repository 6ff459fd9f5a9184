from __future__ import annotations

from datetime import date

from budget_engine.aggregation import CategoryActuals
from budget_engine.alerts import (
    bill_due_alerts,
    deduplicate,
    evaluate_alerts,
    flex_group_alerts,
    income_shortfall_alert,
    milestone_alerts,
    pace_alerts,
    projected_overspend_alert,
    seasonal_alerts,
    threshold_alerts,
)
from budget_engine.config import AlertSettings
from budget_engine.health import HealthScoreResult
from budget_engine.models import AlertSeverity, AlertType, Budget, BudgetCategory, PeriodRange, UpcomingBill
from budget_engine.reports import build_summary, flex_group_status
from budget_engine.seasonal import MonthlyAverage, SeasonalAnalysis, SeasonalPattern
from budget_engine.velocity import project_velocity

FEB = PeriodRange(date(2026, 2, 1), date(2026, 2, 28))
SETTINGS = AlertSettings()


def _budget(*categories: BudgetCategory, **kwargs) -> Budget:
    return Budget(id="b1", name="Household", period_start=date(2026, 1, 1), categories=list(categories), **kwargs)


def _summary(budget: Budget, spent: dict, income: float = 0.0, period: PeriodRange = FEB):
    actuals = CategoryActuals(period=period, by_category=spent, income=income)
    return build_summary(budget, period, actuals)


def test_threshold_ladder_picks_highest_crossed() -> None:
    budget = _budget(
        BudgetCategory(id="warn", amount=100, category_id="a"),
        BudgetCategory(id="critical", amount=100, category_id="b"),
        BudgetCategory(id="over", amount=100, category_id="c"),
        BudgetCategory(id="fine", amount=100, category_id="d"),
        BudgetCategory(id="custom", amount=100, category_id="e", alert_warn_percent=50),
    )
    summary = _summary(budget, {"warn": 85.0, "critical": 96.0, "over": 120.0, "fine": 10.0, "custom": 60.0})

    alerts = {a.budget_category_id: a for a in threshold_alerts(budget, summary)}

    assert set(alerts) == {"warn", "critical", "over", "custom"}
    assert alerts["warn"].alert_type is AlertType.THRESHOLD_WARNING
    assert alerts["critical"].alert_type is AlertType.THRESHOLD_CRITICAL
    assert alerts["over"].alert_type is AlertType.OVER_BUDGET
    assert alerts["over"].severity is AlertSeverity.CRITICAL
    assert alerts["custom"].alert_type is AlertType.THRESHOLD_WARNING


def test_pace_warning_before_overspend() -> None:
    budget = _budget(BudgetCategory(id="dining", amount=300, category_id="dining"))
    summary = _summary(budget, {"dining": 200.0})

    alerts = pace_alerts(budget, summary, date(2026, 2, 10), SETTINGS)
    assert [a.alert_type for a in alerts] == [AlertType.PACE_WARNING]
    assert alerts[0].data["projected_total"] == 560.0

    # Too early in the period to extrapolate
    assert pace_alerts(budget, summary, date(2026, 2, 2), SETTINGS) == []


def test_flex_group_alert_names_group() -> None:
    budget = _budget(
        BudgetCategory(id="a", amount=200, category_id="dining", flex_group="discretionary"),
        BudgetCategory(id="b", amount=100, category_id="hobbies", flex_group="discretionary"),
        BudgetCategory(id="c", amount=100, category_id="gym", flex_group="health"),
    )
    summary = _summary(budget, {"a": 250.0, "b": 30.0, "c": 10.0})

    statuses = flex_group_status(budget, summary)
    assert [s.group_name for s in statuses] == ["discretionary", "health"]

    alerts = flex_group_alerts(statuses, SETTINGS)
    assert len(alerts) == 1
    assert alerts[0].data["flex_group"] == "discretionary"
    assert alerts[0].severity is AlertSeverity.WARNING


def test_seasonal_spike_when_spend_is_elevated() -> None:
    budget = _budget(BudgetCategory(id="gifts", amount=100, category_id="gifts"))
    december = PeriodRange(date(2025, 12, 1), date(2025, 12, 31))
    summary = _summary(budget, {"gifts": 180.0}, period=december)
    pattern = SeasonalPattern(
        budget_category_id="gifts",
        category_id="gifts",
        category_name="Gifts",
        monthly_averages=[MonthlyAverage(m, "", 400.0 if m == 12 else 50.0) for m in range(1, 13)],
        high_months=[12],
        typical_monthly_spend=50.0,
    )
    alerts = seasonal_alerts(summary, SeasonalAnalysis(patterns=[pattern]), date(2025, 12, 10))
    assert [a.alert_type for a in alerts] == [AlertType.SEASONAL_SPIKE]
    assert alerts[0].data["historical_average"] == 400.0


def test_income_shortfall_for_income_linked_budget() -> None:
    budget = _budget(
        BudgetCategory(id="salary", amount=4000, category_id="salary", is_income=True),
        BudgetCategory(id="rent", amount=30, category_id="rent"),
        income_linked=True,
        base_income=4000.0,
    )
    summary = _summary(budget, {"salary": 1000.0, "rent": 0.0}, income=1000.0)

    alerts = income_shortfall_alert(budget, summary, date(2026, 2, 20), SETTINGS)
    assert [a.alert_type for a in alerts] == [AlertType.INCOME_SHORTFALL]
    # Too early to judge
    assert income_shortfall_alert(budget, summary, date(2026, 2, 5), SETTINGS) == []


def test_health_band_upgrade_is_a_milestone() -> None:
    budget = _budget(BudgetCategory(id="fun", amount=100, category_id="fun"))
    summary = _summary(budget, {"fun": 90.0})
    health = HealthScoreResult(
        score=75, label="Good", base_score=100, over_budget_deductions=25,
        under_budget_bonus=0, trend_bonus=0, essential_weight_penalty=0,
    )
    alerts = milestone_alerts(summary, date(2026, 2, 10), SETTINGS, health, "Needs Attention")
    assert [a.data["milestone"] for a in alerts] == ["health_band"]
    assert milestone_alerts(summary, date(2026, 2, 10), SETTINGS, health, "Excellent") == []


def test_regenerating_skips_unread_duplicates() -> None:
    budget = _budget(
        BudgetCategory(id="over", amount=100, category_id="c"),
        BudgetCategory(id="a", amount=200, category_id="dining", flex_group="discretionary"),
    )
    summary = _summary(budget, {"over": 150.0, "a": 195.0})
    velocity = project_velocity(FEB, date(2026, 2, 20), summary.total_spent, summary.total_budgeted)
    candidates = evaluate_alerts(
        budget, summary, velocity, date(2026, 2, 20), flex_statuses=flex_group_status(budget, summary)
    )
    assert {c.alert_type for c in candidates} >= {AlertType.OVER_BUDGET, AlertType.FLEX_GROUP_WARNING}

    existing = [c.to_alert(budget.id, FEB.start) for c in candidates]
    assert deduplicate(candidates, existing, FEB.start) == []

    # Alerts from another period do not block this one
    stale = [c.to_alert(budget.id, date(2026, 1, 1)) for c in candidates]
    assert len(deduplicate(candidates, stale, FEB.start)) == len(candidates)


def test_projected_overspend_needs_positive_variance() -> None:
    over = project_velocity(FEB, date(2026, 2, 10), current_spent=300, budget_total=700)
    alerts = projected_overspend_alert(over, "EUR", SETTINGS)
    assert [a.alert_type for a in alerts] == [AlertType.PROJECTED_OVERSPEND]
    assert alerts[0].data["projected_variance"] == 140.0
    assert "€140.00" in alerts[0].message

    on_track = project_velocity(FEB, date(2026, 2, 10), current_spent=100, budget_total=700)
    assert projected_overspend_alert(on_track, "EUR", SETTINGS) == []
    too_early = project_velocity(FEB, date(2026, 2, 2), current_spent=300, budget_total=700)
    assert projected_overspend_alert(too_early, "EUR", SETTINGS) == []


def test_under_pace_milestone_after_halfway() -> None:
    budget = _budget(BudgetCategory(id="food", amount=1000, category_id="food"))
    light = _summary(budget, {"food": 200.0})

    alerts = milestone_alerts(light, date(2026, 2, 15), SETTINGS)
    assert [a.data["milestone"] for a in alerts] == ["under_pace"]
    assert alerts[0].severity is AlertSeverity.SUCCESS

    assert milestone_alerts(light, date(2026, 2, 10), SETTINGS) == []
    heavy = _summary(budget, {"food": 700.0})
    assert milestone_alerts(heavy, date(2026, 2, 15), SETTINGS) == []


def test_finished_under_once_period_is_over() -> None:
    budget = _budget(
        BudgetCategory(id="a", amount=100, category_id="a"),
        BudgetCategory(id="b", amount=100, category_id="b"),
        currency="EUR",
    )
    summary = _summary(budget, {"a": 40.0, "b": 80.0})

    alerts = milestone_alerts(summary, date(2026, 3, 2), SETTINGS, currency=budget.currency)
    assert [(a.data["milestone"], a.budget_category_id) for a in alerts] == [("finished_under", "a")]
    assert alerts[0].message == "Spent €40.00 of €100.00."
    # Still inside the period: nothing has finished yet
    assert milestone_alerts(summary, date(2026, 2, 27), SETTINGS) == []


def test_messages_use_budget_currency() -> None:
    budget = _budget(
        BudgetCategory(id="a", amount=200, category_id="dining", flex_group="discretionary"),
        BudgetCategory(id="b", amount=100, category_id="hobbies", flex_group="discretionary"),
        currency="EUR",
    )
    summary = _summary(budget, {"a": 250.0, "b": 30.0})
    velocity = project_velocity(FEB, date(2026, 2, 5), summary.total_spent, summary.total_budgeted)

    candidates = evaluate_alerts(
        budget, summary, velocity, date(2026, 2, 5), flex_statuses=flex_group_status(budget, summary)
    )
    flex = [c for c in candidates if c.alert_type is AlertType.FLEX_GROUP_WARNING]
    assert flex[0].message == "€20.00 left across 2 categories."
    assert all("$" not in c.message for c in candidates)


def test_bill_reminders_within_a_week() -> None:
    bills = [
        UpcomingBill(date(2026, 2, 15), -60.0, "phone", "Phone"),
        UpcomingBill(date(2026, 2, 11), -1500.0, "rent", "Rent"),
        UpcomingBill(date(2026, 2, 10), -45.5, "utilities", "Water"),
        UpcomingBill(date(2026, 2, 18), -30.0, "fitness", "Gym"),
        UpcomingBill(date(2026, 2, 9), -20.0, "fitness", "Already due"),
    ]
    alerts = bill_due_alerts(bills, date(2026, 2, 10), SETTINGS)

    assert [a.title for a in alerts] == ["Water due today", "Rent due tomorrow", "Phone due in 5 days"]
    assert [a.severity for a in alerts] == [AlertSeverity.WARNING, AlertSeverity.WARNING, AlertSeverity.INFO]
    assert alerts[1].message == "$1,500.00 due on 2026-02-11."
    assert alerts[1].data["amount"] == 1500.0
    assert all(a.alert_type is AlertType.BILL_DUE for a in alerts)

    # Each bill is its own reminder
    existing = [alerts[0].to_alert("b1", FEB.start)]
    assert [c.title for c in deduplicate(alerts, existing, FEB.start)] == ["Rent due tomorrow", "Phone due in 5 days"]
    assert bill_due_alerts([], date(2026, 2, 10), SETTINGS) == []
