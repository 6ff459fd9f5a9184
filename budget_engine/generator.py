"""Statistical budget suggestions from recent transaction history."""

from __future__ import annotations

import logging
import warnings
from dataclasses import asdict, dataclass, field
from datetime import date, timedelta
from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from .aggregation import TransactionInput, as_frame, in_period, transfer_pairs
from .config import DEFAULT_SETTINGS, EngineSettings, GeneratorSettings
from .errors import InsufficientHistory
from .models import (
    BudgetProfile,
    BudgetStrategy,
    CategoryGroup,
    CategoryTree,
    PeriodRange,
    RolloverType,
)

logger = logging.getLogger(__name__)


@dataclass
class SeriesStats:
    average: float
    median: float
    p25: float
    p75: float
    min: float
    max: float
    std_dev: float
    monthly_amounts: List[float]
    monthly_occurrences: int
    is_fixed: bool
    seasonal_months: List[int]


@dataclass
class CategoryAnalysis:
    category_id: str
    category_name: str
    is_income: bool
    stats: SeriesStats
    suggested: float
    suggested_group: Optional[CategoryGroup] = None
    suggested_rollover: RolloverType = RolloverType.NONE

    def to_dict(self) -> Dict[str, object]:
        data = asdict(self)
        data.update(data.pop('stats'))
        data['suggested_group'] = self.suggested_group.value if self.suggested_group else None
        data['suggested_rollover'] = self.suggested_rollover.value
        return data


@dataclass
class TransferAnalysis:
    account_id: str
    account_name: str
    stats: SeriesStats
    suggested: float
    suggested_group: Optional[CategoryGroup] = None

    def to_dict(self) -> Dict[str, object]:
        data = asdict(self)
        data.update(data.pop('stats'))
        data['suggested_group'] = self.suggested_group.value if self.suggested_group else None
        return data


@dataclass
class GenerateBudgetResponse:
    categories: List[CategoryAnalysis]
    transfers: List[TransferAnalysis]
    estimated_monthly_income: float
    total_budgeted: float
    total_transfers: float
    projected_monthly_savings: float
    analysis_window: PeriodRange
    months: int
    strategy: BudgetStrategy
    profile: BudgetProfile
    omitted_category_ids: List[str] = field(default_factory=list)

    @property
    def insufficient_history(self) -> bool:
        return bool(self.omitted_category_ids)

    def to_dict(self) -> Dict[str, object]:
        return {
            'categories': [c.to_dict() for c in self.categories],
            'transfers': [t.to_dict() for t in self.transfers],
            'estimated_monthly_income': self.estimated_monthly_income,
            'total_budgeted': self.total_budgeted,
            'total_transfers': self.total_transfers,
            'projected_monthly_savings': self.projected_monthly_savings,
            'analysis_window': {
                'start_date': self.analysis_window.start.isoformat(),
                'end_date': self.analysis_window.end.isoformat(),
                'months': self.months,
            },
            'strategy': self.strategy.value,
            'profile': self.profile.value,
            'omitted_category_ids': list(self.omitted_category_ids),
            'insufficient_history': self.insufficient_history,
        }


def analysis_window(reference: date, months: int) -> PeriodRange:
    """The ``months`` complete calendar months before the month of ``reference``."""
    end = reference.replace(day=1) - timedelta(days=1)
    index = end.year * 12 + end.month - 1 - (months - 1)
    start = date(index // 12, index % 12 + 1, 1)
    return PeriodRange(start, end)


def summarize_series(
    amounts: Sequence[float],
    settings: Optional[GeneratorSettings] = None,
    month_numbers: Optional[Sequence[int]] = None,
) -> SeriesStats:
    """Descriptive statistics for one month-by-month series.

    Percentiles interpolate linearly and the standard deviation is the
    population deviation. A series is fixed when at least two active months
    vary by less than ``fixed_cv_threshold`` of their mean. Seasonal months
    are reported as calendar months when ``month_numbers`` labels the series.
    """
    settings = settings or GeneratorSettings()
    values = np.asarray(amounts, dtype=float)
    if values.size == 0:
        return SeriesStats(0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, [], 0, False, [])

    mean = float(values.mean())
    std = float(values.std())
    p25, median, p75 = (float(v) for v in np.percentile(values, [25, 50, 75]))

    active = values[values > 0]
    is_fixed = False
    if active.size >= 2 and active.mean() > 0:
        is_fixed = bool(active.std() / active.mean() < settings.fixed_cv_threshold)

    seasonal_months: List[int] = []
    if values.size >= 3 and std > 0:
        threshold = mean + settings.seasonal_sigma * std
        labels = list(month_numbers) if month_numbers is not None else list(range(1, values.size + 1))
        seasonal_months = sorted({labels[i] for i, value in enumerate(values) if value > threshold})

    return SeriesStats(
        average=round(mean, 2),
        median=round(median, 2),
        p25=round(p25, 2),
        p75=round(p75, 2),
        min=round(float(values.min()), 2),
        max=round(float(values.max()), 2),
        std_dev=round(std, 2),
        monthly_amounts=[round(float(v), 2) for v in values],
        monthly_occurrences=int(active.size),
        is_fixed=is_fixed,
        seasonal_months=seasonal_months,
    )


def suggest_amount(stats: SeriesStats, profile: BudgetProfile) -> float:
    profile = BudgetProfile(profile)
    if profile is BudgetProfile.COMFORTABLE:
        return stats.p75
    if profile is BudgetProfile.AGGRESSIVE:
        return stats.p25
    return stats.median


def infer_category_group(name: str, is_fixed: bool, settings: Optional[EngineSettings] = None) -> CategoryGroup:
    """Needs vs wants from keywords in the category name, then from stability."""
    settings = settings or DEFAULT_SETTINGS
    lowered = name.lower()
    if any(keyword in lowered for keyword in settings.needs_keywords):
        return CategoryGroup.NEED
    if any(keyword in lowered for keyword in settings.wants_keywords):
        return CategoryGroup.WANT
    return CategoryGroup.NEED if is_fixed else CategoryGroup.WANT


def _monthly_matrix(frame: pd.DataFrame, key: str, value: str, window: PeriodRange) -> pd.DataFrame:
    """Rows = window months, columns = ``key`` values, zero-filled."""
    months = pd.period_range(window.start, window.end, freq='M')
    if frame.empty:
        return pd.DataFrame(index=months)
    table = frame.assign(__month__=frame['date'].dt.to_period('M')).pivot_table(
        index='__month__',
        columns=key,
        values=value,
        aggfunc='sum',
        fill_value=0.0,
    )
    return table.reindex(months, fill_value=0.0)


def generate_budget(
    transactions: TransactionInput,
    reference: date,
    months: int = 6,
    strategy: BudgetStrategy = BudgetStrategy.FIXED,
    profile: BudgetProfile = BudgetProfile.ON_TRACK,
    tree: Optional[CategoryTree] = None,
    account_names: Optional[Dict[str, str]] = None,
    settings: Optional[EngineSettings] = None,
) -> GenerateBudgetResponse:
    """Suggest a full budget from ``months`` months of history.

    Args:
        transactions: Ledger history covering at least the analysis window
        reference: Date the suggestion is made; its month is excluded
        months: Window length, one of ``settings.generator.allowed_months``
        strategy: Target strategy; FIFTY_THIRTY_TWENTY adds group suggestions
            and ROLLOVER suggests monthly rollover for variable costs
        profile: How conservative the suggested amounts are
        tree: Category names and income flags
        account_names: Display names for transfer accounts
        settings: Engine tunables

    Raises:
        ValueError: If ``months`` is not an allowed window length
    """
    settings = settings or DEFAULT_SETTINGS
    generator_settings = settings.generator
    if months not in generator_settings.allowed_months:
        raise ValueError(f"months must be one of {generator_settings.allowed_months}, got {months}")
    strategy = BudgetStrategy(strategy)
    profile = BudgetProfile(profile)
    tree = tree or CategoryTree()
    account_names = account_names or {}

    window = analysis_window(reference, months)
    frame = in_period(as_frame(transactions), window)
    spending = frame[~frame['is_transfer'] & frame['category_id'].notna()]
    spending = spending.assign(__abs_amount__=spending['amount'].abs())

    categories: List[CategoryAnalysis] = []
    omitted: List[str] = []
    matrix = _monthly_matrix(spending, 'category_id', '__abs_amount__', window)
    month_numbers = [period.month for period in matrix.index]
    net_by_category = spending.groupby('category_id')['amount'].sum()

    for category_id in matrix.columns:
        stats = summarize_series(matrix[category_id].tolist(), generator_settings, month_numbers)
        if stats.monthly_occurrences < generator_settings.min_active_months:
            omitted.append(str(category_id))
            continue
        is_income = tree.is_income(category_id)
        if is_income is None:
            is_income = bool(net_by_category.get(category_id, 0.0) > 0)
        name = tree.label(category_id)
        analysis = CategoryAnalysis(
            category_id=str(category_id),
            category_name=name,
            is_income=is_income,
            stats=stats,
            suggested=suggest_amount(stats, profile),
        )
        if not is_income:
            if strategy is BudgetStrategy.FIFTY_THIRTY_TWENTY:
                analysis.suggested_group = infer_category_group(name, stats.is_fixed, settings)
            if strategy is BudgetStrategy.ROLLOVER and not stats.is_fixed:
                analysis.suggested_rollover = RolloverType.MONTHLY
        categories.append(analysis)

    transfers: List[TransferAnalysis] = []
    pairs = transfer_pairs(frame)
    transfer_matrix = _monthly_matrix(pairs, 'target', 'total', window)
    for account_id in transfer_matrix.columns:
        stats = summarize_series(transfer_matrix[account_id].tolist(), generator_settings, month_numbers)
        if stats.monthly_occurrences < generator_settings.min_active_months:
            omitted.append(str(account_id))
            continue
        transfers.append(TransferAnalysis(
            account_id=str(account_id),
            account_name=account_names.get(account_id, str(account_id)),
            stats=stats,
            suggested=suggest_amount(stats, profile),
            suggested_group=CategoryGroup.SAVING if strategy is BudgetStrategy.FIFTY_THIRTY_TWENTY else None,
        ))

    categories.sort(key=lambda c: c.stats.median, reverse=True)
    transfers.sort(key=lambda t: t.stats.median, reverse=True)

    income = round(sum(c.stats.median for c in categories if c.is_income), 2)
    total_budgeted = round(sum(c.suggested for c in categories if not c.is_income), 2)
    total_transfers = round(sum(t.suggested for t in transfers), 2)

    if omitted:
        logger.info("Budget generator omitted %d series with sparse history", len(omitted))
        warnings.warn(
            f"{len(omitted)} categories had fewer than {generator_settings.min_active_months} active months",
            InsufficientHistory,
            stacklevel=2,
        )

    return GenerateBudgetResponse(
        categories=categories,
        transfers=transfers,
        estimated_monthly_income=income,
        total_budgeted=total_budgeted,
        total_transfers=total_transfers,
        projected_monthly_savings=round(income - total_budgeted - total_transfers, 2),
        analysis_window=window,
        months=months,
        strategy=strategy,
        profile=profile,
        omitted_category_ids=omitted,
    )
