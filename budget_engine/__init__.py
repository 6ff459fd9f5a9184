"""Budget tracking and projection engine.

The primary modules are:

* ``periods`` – period boundaries for every budget cadence
* ``aggregation`` – mapping ledger transactions onto budget categories
* ``rollover`` – carry-forward and flex-group reconciliation at period close
* ``velocity``, ``health``, ``seasonal`` – projections and scoring
* ``generator`` – budget suggestions from transaction history
* ``alerts`` – alert rules and de-duplication
* ``service`` – :class:`BudgetEngine`, which ties everything together

Persistence lives in ``db`` (SQLite) and the ledger adapter in ``ledger``.
"""

from .errors import (  # noqa: F401
    BudgetEngineError,
    BudgetNotFound,
    CategoryNotFound,
    ConcurrentPeriodClose,
    InconsistentCategoryReference,
    InsufficientHistory,
    InvalidPeriodConfig,
    PeriodCloseOutOfOrder,
    PeriodNotEnded,
    TransientConflict,
)
from .models import (  # noqa: F401
    Budget,
    BudgetCategory,
    BudgetConfig,
    BudgetPeriod,
    BudgetStrategy,
    BudgetType,
    PeriodStatus,
    RolloverType,
)
from .service import BudgetEngine  # noqa: F401

__version__ = "0.1.0"
