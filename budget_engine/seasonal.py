"""Multi-year seasonal spending patterns per category."""

from __future__ import annotations

import calendar
import logging
import warnings
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import pandas as pd

from .aggregation import TransactionInput, as_frame
from .config import SeasonalSettings
from .errors import InsufficientHistory
from .models import BudgetCategory, CategoryTree

logger = logging.getLogger(__name__)


@dataclass
class MonthlyAverage:
    month: int
    month_name: str
    average: float


@dataclass
class SeasonalPattern:
    budget_category_id: str
    category_id: str
    category_name: str
    monthly_averages: List[MonthlyAverage]
    high_months: List[int]
    typical_monthly_spend: float

    def average_for(self, month: int) -> float:
        return self.monthly_averages[month - 1].average

    def to_dict(self) -> Dict[str, object]:
        return {
            'budget_category_id': self.budget_category_id,
            'category_id': self.category_id,
            'category_name': self.category_name,
            'monthly_averages': [
                {'month': m.month, 'month_name': m.month_name, 'average': m.average}
                for m in self.monthly_averages
            ],
            'high_months': list(self.high_months),
            'typical_monthly_spend': self.typical_monthly_spend,
        }


@dataclass
class SeasonalAnalysis:
    patterns: List[SeasonalPattern] = field(default_factory=list)
    omitted_category_ids: List[str] = field(default_factory=list)

    @property
    def insufficient_history(self) -> bool:
        return bool(self.omitted_category_ids)

    def pattern_for(self, budget_category_id: str) -> Optional[SeasonalPattern]:
        for pattern in self.patterns:
            if pattern.budget_category_id == budget_category_id:
                return pattern
        return None

    def to_dict(self) -> Dict[str, object]:
        return {
            'patterns': [pattern.to_dict() for pattern in self.patterns],
            'omitted_category_ids': list(self.omitted_category_ids),
            'insufficient_history': self.insufficient_history,
        }


def _calendar_month_averages(monthly: pd.Series) -> pd.Series:
    """Average each calendar month across years; unobserved months are NaN."""
    by_month = monthly.groupby(monthly.index.month).mean()
    return by_month.reindex(range(1, 13))


def analyze_seasonality(
    history: TransactionInput,
    categories: Sequence[BudgetCategory],
    tree: Optional[CategoryTree] = None,
    settings: Optional[SeasonalSettings] = None,
) -> SeasonalAnalysis:
    """Flag historically high months for each spending category.

    Monthly totals are zero-filled across the whole history span before
    averaging, so a category that only spends in December shows as a
    December spike rather than a flat average. ``typical_monthly_spend`` is
    the median of the non-high months. Categories seen in fewer than
    ``settings.min_years`` distinct years are omitted and an
    :class:`InsufficientHistory` warning is emitted.
    """
    settings = settings or SeasonalSettings()
    tree = tree or CategoryTree()
    frame = as_frame(history)
    spending = frame[~frame['is_transfer'] & frame['category_id'].notna()]
    analysis = SeasonalAnalysis()

    if spending.empty:
        span = None
    else:
        span = pd.period_range(frame['date'].min(), frame['date'].max(), freq='M')

    for category in categories:
        if category.is_income or category.is_transfer:
            continue
        rows = spending[spending['category_id'] == category.category_id]
        if span is None or rows['date'].dt.year.nunique() < settings.min_years:
            analysis.omitted_category_ids.append(category.id)
            continue

        monthly = rows['amount'].abs().groupby(rows['date'].dt.to_period('M')).sum()
        monthly = monthly.reindex(span, fill_value=0.0)
        averages = _calendar_month_averages(monthly)
        observed = averages.dropna()

        first_pass = float(observed.median())
        non_high = observed[~(observed > first_pass * settings.spike_threshold)]
        typical = float(non_high.median()) if not non_high.empty else first_pass
        high_months = [
            int(month) for month, value in observed.items()
            if value > 0 and value > typical * settings.spike_threshold
        ]

        analysis.patterns.append(SeasonalPattern(
            budget_category_id=category.id,
            category_id=category.category_id,
            category_name=category.category_name or tree.label(category.category_id),
            monthly_averages=[
                MonthlyAverage(
                    month=month,
                    month_name=calendar.month_abbr[month],
                    average=round(float(value), 2) if pd.notna(value) else 0.0,
                )
                for month, value in averages.items()
            ],
            high_months=high_months,
            typical_monthly_spend=round(typical, 2),
        ))

    if analysis.omitted_category_ids:
        logger.info(
            "Seasonal analysis omitted %d categories with under %d years of history",
            len(analysis.omitted_category_ids), settings.min_years,
        )
        warnings.warn(
            f"{len(analysis.omitted_category_ids)} categories lack {settings.min_years} years of history",
            InsufficientHistory,
            stacklevel=2,
        )
    return analysis
