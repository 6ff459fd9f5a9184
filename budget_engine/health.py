"""Composite 0-100 budget health score."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

from .config import HealthSettings
from .models import CategoryGroup

if TYPE_CHECKING:
    from .reports import CategoryBreakdown


@dataclass
class CategoryScore:
    budget_category_id: Optional[str]
    category_name: str
    category_group: Optional[CategoryGroup]
    percent_used: float
    impact: float

    def to_dict(self) -> Dict[str, object]:
        return {
            'budget_category_id': self.budget_category_id,
            'category_name': self.category_name,
            'category_group': self.category_group.value if self.category_group else None,
            'percent_used': self.percent_used,
            'impact': self.impact,
        }


@dataclass
class HealthScoreResult:
    score: int
    label: str
    base_score: float
    over_budget_deductions: float
    under_budget_bonus: float
    trend_bonus: float
    essential_weight_penalty: float
    category_scores: List[CategoryScore] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {
            'score': self.score,
            'label': self.label,
            'base_score': self.base_score,
            'over_budget_deductions': self.over_budget_deductions,
            'under_budget_bonus': self.under_budget_bonus,
            'trend_bonus': self.trend_bonus,
            'essential_weight_penalty': self.essential_weight_penalty,
            'category_scores': [score.to_dict() for score in self.category_scores],
        }


def health_label(score: float, settings: Optional[HealthSettings] = None) -> str:
    settings = settings or HealthSettings()
    for floor, label in settings.labels:
        if score >= floor:
            return label
    return settings.labels[-1][1]


def label_rank(label: str, settings: Optional[HealthSettings] = None) -> int:
    """Position of ``label`` from worst (0) to best."""
    settings = settings or HealthSettings()
    labels = [name for _, name in reversed(settings.labels)]
    return labels.index(label) if label in labels else -1


def trend_bonus(trend_history: Sequence[float], settings: Optional[HealthSettings] = None) -> float:
    """Bonus when the latest period used less of its budget than the one before.

    Args:
        trend_history: Aggregate percent used of prior periods, oldest first
    """
    settings = settings or HealthSettings()
    if len(trend_history) < 2:
        return 0.0
    previous, latest = trend_history[-2], trend_history[-1]
    if latest >= previous:
        return 0.0
    return min((previous - latest) * settings.trend_rate, settings.trend_cap)


def score_health(
    breakdown: Sequence['CategoryBreakdown'],
    trend_history: Sequence[float] = (),
    settings: Optional[HealthSettings] = None,
) -> HealthScoreResult:
    """Score how closely spending tracked the budget.

    Only expense categories with a positive budget take part. NEED
    categories weigh more, and overspending one also adds an essential
    penalty. Categories nearing or passing 100% lose points, categories at or
    under the comfort line earn a small bonus.
    """
    settings = settings or HealthSettings()
    over_budget = 0.0
    under_budget = 0.0
    essential_penalty = 0.0
    category_scores: List[CategoryScore] = []

    for row in breakdown:
        if row.is_income or row.is_uncategorized or row.effective_budget <= 0:
            continue
        pct = row.percent_used
        is_need = row.category_group is CategoryGroup.NEED
        weight = settings.need_weight if is_need else 1.0
        impact = 0.0

        if pct > settings.near_limit_percent:
            deduction = (min(pct, 100.0) - settings.near_limit_percent) * settings.near_limit_rate * weight
            if pct > 100:
                deduction += min((pct - 100) * settings.over_budget_rate * weight, settings.over_budget_cap)
                if is_need:
                    penalty = min((pct - 100) * settings.essential_penalty_rate, settings.essential_penalty_cap)
                    essential_penalty += penalty
                    impact -= penalty
            over_budget += deduction
            impact -= deduction
        elif pct <= settings.under_budget_percent:
            bonus = min((100 - pct) * settings.under_budget_rate, settings.under_budget_cap)
            under_budget += bonus
            impact += bonus

        category_scores.append(CategoryScore(
            budget_category_id=row.budget_category_id,
            category_name=row.category_name,
            category_group=row.category_group,
            percent_used=pct,
            impact=round(impact, 2),
        ))

    trend = trend_bonus(trend_history, settings)
    raw = settings.base_score - over_budget + under_budget + trend - essential_penalty
    score = int(max(0, min(100, round(raw))))

    return HealthScoreResult(
        score=score,
        label=health_label(score, settings),
        base_score=settings.base_score,
        over_budget_deductions=round(over_budget, 2),
        under_budget_bonus=round(under_budget, 2),
        trend_bonus=round(trend, 2),
        essential_weight_penalty=round(essential_penalty, 2),
        category_scores=category_scores,
    )
