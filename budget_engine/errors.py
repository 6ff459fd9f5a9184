"""Exception types raised by the budget engine.

Structural and validation problems raise immediately with a specific
exception class. Sparse history is not an error: analyzers return a
flagged partial result and emit an ``InsufficientHistory`` warning.
"""

from __future__ import annotations


class BudgetEngineError(Exception):
    """Base class for all budget engine errors."""


class InvalidPeriodConfig(BudgetEngineError, ValueError):
    """A budget's cadence configuration is missing or out of range."""


class BudgetNotFound(BudgetEngineError, LookupError):
    def __init__(self, budget_id: str):
        super().__init__(f"Budget not found: {budget_id}")
        self.budget_id = budget_id


class CategoryNotFound(BudgetEngineError, LookupError):
    def __init__(self, category_id: str):
        super().__init__(f"Budget category not found: {category_id}")
        self.category_id = category_id


class InconsistentCategoryReference(BudgetEngineError, ValueError):
    """A budget category must reference exactly one of category or transfer account."""


class PeriodNotEnded(BudgetEngineError, ValueError):
    """Raised when closing a period whose end date has not passed yet."""


class PeriodCloseOutOfOrder(BudgetEngineError, ValueError):
    """Closing a period would skip an open predecessor or rewrite a closed successor."""


class TransientConflict(BudgetEngineError, RuntimeError):
    """A write lost a race with another writer and may be retried."""


class ConcurrentPeriodClose(TransientConflict):
    """Two close attempts for the same period collided."""


class InsufficientHistory(UserWarning):
    """Emitted when an analysis had to omit categories for lack of history."""
