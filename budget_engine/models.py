"""Domain records shared by the budget engine components."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import CategoryNotFound, InconsistentCategoryReference, InvalidPeriodConfig

CONFIG_VERSION = 1


class BudgetType(str, Enum):
    MONTHLY = 'MONTHLY'
    ANNUAL = 'ANNUAL'
    PAY_PERIOD = 'PAY_PERIOD'


class BudgetStrategy(str, Enum):
    FIXED = 'FIXED'
    ROLLOVER = 'ROLLOVER'
    ZERO_BASED = 'ZERO_BASED'
    FIFTY_THIRTY_TWENTY = 'FIFTY_THIRTY_TWENTY'


class RolloverType(str, Enum):
    NONE = 'NONE'
    MONTHLY = 'MONTHLY'
    QUARTERLY = 'QUARTERLY'
    ANNUAL = 'ANNUAL'


class CategoryGroup(str, Enum):
    NEED = 'NEED'
    WANT = 'WANT'
    SAVING = 'SAVING'


class PeriodStatus(str, Enum):
    OPEN = 'OPEN'
    CLOSED = 'CLOSED'
    PROJECTED = 'PROJECTED'


class PayFrequency(str, Enum):
    WEEKLY = 'WEEKLY'
    BIWEEKLY = 'BIWEEKLY'
    SEMIMONTHLY = 'SEMIMONTHLY'
    MONTHLY = 'MONTHLY'


class BudgetProfile(str, Enum):
    COMFORTABLE = 'COMFORTABLE'
    ON_TRACK = 'ON_TRACK'
    AGGRESSIVE = 'AGGRESSIVE'


class AlertType(str, Enum):
    PACE_WARNING = 'PACE_WARNING'
    THRESHOLD_WARNING = 'THRESHOLD_WARNING'
    THRESHOLD_CRITICAL = 'THRESHOLD_CRITICAL'
    OVER_BUDGET = 'OVER_BUDGET'
    FLEX_GROUP_WARNING = 'FLEX_GROUP_WARNING'
    SEASONAL_SPIKE = 'SEASONAL_SPIKE'
    PROJECTED_OVERSPEND = 'PROJECTED_OVERSPEND'
    INCOME_SHORTFALL = 'INCOME_SHORTFALL'
    POSITIVE_MILESTONE = 'POSITIVE_MILESTONE'
    BILL_DUE = 'BILL_DUE'


class AlertSeverity(str, Enum):
    INFO = 'info'
    WARNING = 'warning'
    CRITICAL = 'critical'
    SUCCESS = 'success'


def _optional_enum(enum_cls, value):
    if value is None or value == '':
        return None
    return enum_cls(value)


@dataclass(frozen=True)
class PeriodRange:
    """A closed ``[start, end]`` date interval."""

    start: date
    end: date

    @property
    def total_days(self) -> int:
        return (self.end - self.start).days + 1

    def contains(self, value: date) -> bool:
        return self.start <= value <= self.end

    def days_elapsed(self, reference: date) -> int:
        """Days from the start through ``reference`` inclusive, clamped to the period."""
        elapsed = (reference - self.start).days + 1
        return max(0, min(elapsed, self.total_days))

    def days_remaining(self, reference: date) -> int:
        return self.total_days - self.days_elapsed(reference)

    def progress(self, reference: date) -> float:
        return self.days_elapsed(reference) / self.total_days

    def label(self) -> str:
        """Short human label, e.g. ``Feb 2026``."""
        return self.start.strftime('%b %Y')


@dataclass(frozen=True)
class BudgetConfig:
    """Versioned cadence and threshold settings attached to a budget."""

    version: int = CONFIG_VERSION
    fiscal_year_start: int = 1
    pay_frequency: Optional[PayFrequency] = None
    pay_day_of_month: Optional[int] = None
    alert_warn_percent: float = 80.0
    alert_critical_percent: float = 95.0
    include_transfers: bool = True
    excluded_account_ids: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.version != CONFIG_VERSION:
            raise InvalidPeriodConfig(f"Unsupported budget config version: {self.version}")
        if not 1 <= self.fiscal_year_start <= 12:
            raise InvalidPeriodConfig(f"fiscal_year_start must be 1-12, got {self.fiscal_year_start}")
        if self.pay_day_of_month is not None and not 1 <= self.pay_day_of_month <= 31:
            raise InvalidPeriodConfig(f"pay_day_of_month must be 1-31, got {self.pay_day_of_month}")
        if self.alert_warn_percent > self.alert_critical_percent:
            raise InvalidPeriodConfig("alert_warn_percent cannot exceed alert_critical_percent")

    @classmethod
    def from_dict(cls, raw: Optional[Dict[str, Any]]) -> 'BudgetConfig':
        raw = dict(raw or {})
        known = set(cls.__dataclass_fields__)
        unknown = set(raw) - known
        if unknown:
            raise InvalidPeriodConfig(f"Unknown budget config fields: {sorted(unknown)}")
        if 'pay_frequency' in raw:
            try:
                raw['pay_frequency'] = _optional_enum(PayFrequency, raw['pay_frequency'])
            except ValueError as e:
                raise InvalidPeriodConfig(str(e)) from e
        if 'excluded_account_ids' in raw:
            raw['excluded_account_ids'] = tuple(raw['excluded_account_ids'] or ())
        return cls(**raw)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['pay_frequency'] = self.pay_frequency.value if self.pay_frequency else None
        data['excluded_account_ids'] = list(self.excluded_account_ids)
        return data


@dataclass
class BudgetCategory:
    """A budget line referencing either a spending category or a transfer account."""

    id: str
    amount: float
    category_id: Optional[str] = None
    transfer_account_id: Optional[str] = None
    is_transfer: bool = False
    category_name: str = ''
    is_income: bool = False
    category_group: Optional[CategoryGroup] = None
    rollover_type: RolloverType = RolloverType.NONE
    rollover_cap: Optional[float] = None
    flex_group: Optional[str] = None
    alert_warn_percent: Optional[float] = None
    alert_critical_percent: Optional[float] = None
    sort_order: int = 0
    notes: Optional[str] = None

    def validate(self) -> None:
        has_category = self.category_id is not None
        has_account = self.transfer_account_id is not None
        if has_category == has_account:
            raise InconsistentCategoryReference(
                f"Budget category {self.id} must reference exactly one of category_id/transfer_account_id"
            )
        if self.is_transfer != has_account:
            raise InconsistentCategoryReference(
                f"Budget category {self.id}: is_transfer does not match the referenced target"
            )
        if self.rollover_cap is not None and self.rollover_cap < 0:
            raise ValueError(f"Budget category {self.id}: rollover_cap cannot be negative")

    def warn_percent(self, config: BudgetConfig) -> float:
        if self.alert_warn_percent is not None:
            return self.alert_warn_percent
        return config.alert_warn_percent

    def critical_percent(self, config: BudgetConfig) -> float:
        if self.alert_critical_percent is not None:
            return self.alert_critical_percent
        return config.alert_critical_percent


@dataclass
class Budget:
    id: str
    name: str
    period_start: date
    budget_type: BudgetType = BudgetType.MONTHLY
    period_end: Optional[date] = None
    base_income: Optional[float] = None
    income_linked: bool = False
    strategy: BudgetStrategy = BudgetStrategy.FIXED
    currency: str = 'USD'
    config: BudgetConfig = field(default_factory=BudgetConfig)
    is_active: bool = True
    categories: List[BudgetCategory] = field(default_factory=list)

    def validate(self) -> None:
        seen = set()
        for category in self.categories:
            category.validate()
            if category.id in seen:
                raise ValueError(f"Duplicate budget category id: {category.id}")
            seen.add(category.id)

    def category(self, budget_category_id: str) -> BudgetCategory:
        for category in self.categories:
            if category.id == budget_category_id:
                return category
        raise CategoryNotFound(budget_category_id)

    @property
    def expense_categories(self) -> List[BudgetCategory]:
        return [c for c in self.categories if not c.is_income]

    @property
    def income_categories(self) -> List[BudgetCategory]:
        return [c for c in self.categories if c.is_income]

    def budgeted_amounts(self, actual_income: Optional[float] = None) -> Dict[str, float]:
        """Resolve each category's target for a period.

        Income-linked budgets read expense amounts as a percentage of the
        period's actual income, falling back to ``base_income`` until any
        income has arrived (``actual_income`` is ``None`` or not positive).
        """
        amounts: Dict[str, float] = {}
        if actual_income is not None and actual_income > 0:
            income = actual_income
        else:
            income = self.base_income or 0.0
        for category in self.categories:
            if self.income_linked and not category.is_income:
                amounts[category.id] = round(income * category.amount / 100, 2)
            else:
                amounts[category.id] = float(category.amount)
        return amounts


@dataclass
class BudgetPeriodCategory:
    budget_category_id: str
    budgeted_amount: float = 0.0
    rollover_in: float = 0.0
    actual_amount: float = 0.0
    rollover_out: float = 0.0

    @property
    def effective_budget(self) -> float:
        return round(self.budgeted_amount + self.rollover_in, 2)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['effective_budget'] = self.effective_budget
        return data


@dataclass
class BudgetPeriod:
    budget_id: str
    period_start: date
    period_end: date
    status: PeriodStatus = PeriodStatus.OPEN
    actual_income: float = 0.0
    actual_expenses: float = 0.0
    total_budgeted: float = 0.0
    categories: List[BudgetPeriodCategory] = field(default_factory=list)
    id: Optional[str] = None

    @property
    def range(self) -> PeriodRange:
        return PeriodRange(self.period_start, self.period_end)

    def row_for(self, budget_category_id: str) -> Optional[BudgetPeriodCategory]:
        for row in self.categories:
            if row.budget_category_id == budget_category_id:
                return row
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'budget_id': self.budget_id,
            'period_start': self.period_start.isoformat(),
            'period_end': self.period_end.isoformat(),
            'status': self.status.value,
            'actual_income': self.actual_income,
            'actual_expenses': self.actual_expenses,
            'total_budgeted': self.total_budgeted,
            'categories': [row.to_dict() for row in self.categories],
        }


@dataclass
class BudgetAlert:
    budget_id: str
    alert_type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    period_start: date
    budget_category_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    is_read: bool = False
    is_email_sent: bool = False
    id: Optional[str] = None
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'budget_id': self.budget_id,
            'budget_category_id': self.budget_category_id,
            'alert_type': self.alert_type.value,
            'severity': self.severity.value,
            'title': self.title,
            'message': self.message,
            'data': self.data,
            'is_read': self.is_read,
            'is_email_sent': self.is_email_sent,
            'period_start': self.period_start.isoformat(),
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class TransactionSplit:
    amount: float
    category_id: Optional[str] = None


@dataclass
class LedgerTransaction:
    """Read-only view of a ledger transaction. Negative amounts are outflows."""

    id: str
    date: date
    amount: float
    account_id: str
    category_id: Optional[str] = None
    splits: List[TransactionSplit] = field(default_factory=list)
    is_transfer: bool = False
    counter_account_id: Optional[str] = None
    is_void: bool = False


@dataclass
class UpcomingBill:
    due_date: date
    amount: float
    category_id: Optional[str] = None
    name: str = ''


@dataclass(frozen=True)
class AccountScope:
    excluded_account_ids: Tuple[str, ...] = ()
    include_transfers: bool = True

    @classmethod
    def for_budget(cls, budget: Budget) -> 'AccountScope':
        return cls(
            excluded_account_ids=tuple(budget.config.excluded_account_ids),
            include_transfers=budget.config.include_transfers,
        )


@dataclass(frozen=True)
class CategoryNode:
    id: str
    name: str
    parent_index: Optional[int] = None
    is_income: bool = False


class CategoryTree:
    """Flat arena of categories with integer parent references."""

    def __init__(self, nodes: Sequence[CategoryNode] = ()):
        self._nodes: List[CategoryNode] = list(nodes)
        self._index: Dict[str, int] = {node.id: i for i, node in enumerate(self._nodes)}

    @classmethod
    def from_records(cls, records: Iterable[Dict[str, Any]]) -> 'CategoryTree':
        """Build a tree from ``{'id', 'name', 'parent_id', 'is_income'}`` dicts."""
        records = list(records)
        positions = {str(record['id']): i for i, record in enumerate(records)}
        nodes = []
        for record in records:
            parent_id = record.get('parent_id')
            nodes.append(CategoryNode(
                id=str(record['id']),
                name=str(record.get('name', '')),
                parent_index=positions.get(str(parent_id)) if parent_id is not None else None,
                is_income=bool(record.get('is_income', False)),
            ))
        return cls(nodes)

    def __contains__(self, category_id: object) -> bool:
        return category_id in self._index

    def __len__(self) -> int:
        return len(self._nodes)

    def node(self, category_id: str) -> Optional[CategoryNode]:
        position = self._index.get(category_id)
        return self._nodes[position] if position is not None else None

    def label(self, category_id: Optional[str], fallback: str = '') -> str:
        """Render ``"Parent: Child"`` for nested categories."""
        node = self.node(category_id) if category_id is not None else None
        if node is None:
            return fallback or (category_id or '')
        if node.parent_index is None:
            return node.name
        return f"{self._nodes[node.parent_index].name}: {node.name}"

    def is_income(self, category_id: Optional[str]) -> Optional[bool]:
        node = self.node(category_id) if category_id is not None else None
        return node.is_income if node is not None else None
