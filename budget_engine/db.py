"""SQLite implementations of the budget and alert repositories."""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

import pandas as pd

from .config import DB_PATH, ensure_data_directories
from .errors import BudgetNotFound, ConcurrentPeriodClose, TransientConflict
from .models import (
    AlertSeverity,
    AlertType,
    Budget,
    BudgetAlert,
    BudgetCategory,
    BudgetConfig,
    BudgetPeriod,
    BudgetPeriodCategory,
    BudgetStrategy,
    BudgetType,
    CategoryGroup,
    PeriodStatus,
    RolloverType,
)

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA synchronous=NORMAL;

CREATE TABLE IF NOT EXISTS budgets (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    budget_type TEXT NOT NULL,
    period_start TEXT NOT NULL,
    period_end TEXT,
    base_income REAL,
    income_linked INTEGER NOT NULL DEFAULT 0,
    strategy TEXT NOT NULL,
    currency TEXT NOT NULL DEFAULT 'USD',
    config TEXT NOT NULL DEFAULT '{}',
    is_active INTEGER NOT NULL DEFAULT 1,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS budget_categories (
    id TEXT PRIMARY KEY,
    budget_id TEXT NOT NULL REFERENCES budgets(id) ON DELETE CASCADE,
    category_id TEXT,
    transfer_account_id TEXT,
    is_transfer INTEGER NOT NULL DEFAULT 0,
    category_name TEXT,
    amount REAL NOT NULL,
    is_income INTEGER NOT NULL DEFAULT 0,
    category_group TEXT,
    rollover_type TEXT NOT NULL DEFAULT 'NONE',
    rollover_cap REAL,
    flex_group TEXT,
    alert_warn_percent REAL,
    alert_critical_percent REAL,
    sort_order INTEGER NOT NULL DEFAULT 0,
    notes TEXT,
    CHECK ((category_id IS NULL) <> (transfer_account_id IS NULL))
);

CREATE TABLE IF NOT EXISTS budget_periods (
    id TEXT PRIMARY KEY,
    budget_id TEXT NOT NULL REFERENCES budgets(id) ON DELETE CASCADE,
    period_start TEXT NOT NULL,
    period_end TEXT NOT NULL,
    actual_income REAL NOT NULL DEFAULT 0,
    actual_expenses REAL NOT NULL DEFAULT 0,
    total_budgeted REAL NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'OPEN',
    UNIQUE (budget_id, period_start)
);

CREATE TABLE IF NOT EXISTS budget_period_categories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    budget_period_id TEXT NOT NULL REFERENCES budget_periods(id) ON DELETE CASCADE,
    budget_category_id TEXT NOT NULL,
    budgeted_amount REAL NOT NULL DEFAULT 0,
    rollover_in REAL NOT NULL DEFAULT 0,
    actual_amount REAL NOT NULL DEFAULT 0,
    effective_budget REAL NOT NULL DEFAULT 0,
    rollover_out REAL NOT NULL DEFAULT 0,
    UNIQUE (budget_period_id, budget_category_id)
);

CREATE TABLE IF NOT EXISTS budget_alerts (
    id TEXT PRIMARY KEY,
    budget_id TEXT NOT NULL,
    budget_category_id TEXT,
    alert_type TEXT NOT NULL,
    severity TEXT NOT NULL,
    title TEXT NOT NULL,
    message TEXT NOT NULL,
    data TEXT NOT NULL DEFAULT '{}',
    is_read INTEGER NOT NULL DEFAULT 0,
    is_email_sent INTEGER NOT NULL DEFAULT 0,
    period_start TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS ix_budget_categories_budget ON budget_categories (budget_id);
CREATE INDEX IF NOT EXISTS ix_periods_budget_start ON budget_periods (budget_id, period_start);
CREATE INDEX IF NOT EXISTS ix_alerts_unread ON budget_alerts (budget_id, period_start, is_read);
"""

PathLike = Union[str, Path]


def _new_id() -> str:
    return uuid.uuid4().hex


def _to_iso_date(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _from_iso_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def _optional_enum(enum_cls, value):
    return enum_cls(value) if value else None


@contextmanager
def connect(db_path: Optional[PathLike] = None, timeout: float = 5.0) -> Iterator[sqlite3.Connection]:
    path = Path(db_path) if db_path is not None else DB_PATH
    if db_path is None:
        ensure_data_directories()
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        conn = sqlite3.connect(str(path), timeout=timeout)
    except sqlite3.Error as e:
        raise OSError(f"Could not open budget database at {path}: {e}") from e
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_path: Optional[PathLike] = None) -> None:
    with connect(db_path) as conn:
        conn.executescript(SCHEMA_SQL)
        conn.commit()


class _SqliteRepository:
    """Shared connection handling.

    Unbound repositories open a short-lived connection per call. ``atomic()``
    yields a copy bound to a single ``BEGIN IMMEDIATE`` transaction, which
    commits on success and rolls back on any error.
    """

    def __init__(
        self,
        db_path: Optional[PathLike] = None,
        connection: Optional[sqlite3.Connection] = None,
        timeout: float = 5.0,
    ):
        self.db_path = Path(db_path) if db_path is not None else DB_PATH
        self.timeout = timeout
        self._connection = connection
        if connection is None:
            init_db(self.db_path)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        if self._connection is not None:
            yield self._connection
            return
        with connect(self.db_path, self.timeout) as conn:
            yield conn
            conn.commit()

    @contextmanager
    def atomic(self):
        if self._connection is not None:
            yield self
            return
        with connect(self.db_path, self.timeout) as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as e:
                raise TransientConflict(f"Could not acquire write lock on {self.db_path}: {e}") from e
            bound = type(self)(self.db_path, connection=conn, timeout=self.timeout)
            try:
                yield bound
            except BaseException:
                conn.rollback()
                raise
            conn.commit()


class SqliteBudgetRepository(_SqliteRepository):
    """Budgets, categories and period snapshots."""

    def save_budget(self, budget: Budget) -> Budget:
        budget.validate()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO budgets (id, name, budget_type, period_start, period_end, base_income,
                    income_linked, strategy, currency, config, is_active, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    name = excluded.name, budget_type = excluded.budget_type,
                    period_start = excluded.period_start, period_end = excluded.period_end,
                    base_income = excluded.base_income, income_linked = excluded.income_linked,
                    strategy = excluded.strategy, currency = excluded.currency,
                    config = excluded.config, is_active = excluded.is_active,
                    updated_at = excluded.updated_at
                """,
                (
                    budget.id, budget.name, budget.budget_type.value, budget.period_start.isoformat(),
                    _to_iso_date(budget.period_end), budget.base_income, int(budget.income_linked),
                    budget.strategy.value, budget.currency, json.dumps(budget.config.to_dict()),
                    int(budget.is_active), datetime.now().isoformat(timespec='seconds'),
                ),
            )
            conn.execute("DELETE FROM budget_categories WHERE budget_id = ?", (budget.id,))
            conn.executemany(
                """
                INSERT INTO budget_categories (id, budget_id, category_id, transfer_account_id,
                    is_transfer, category_name, amount, is_income, category_group, rollover_type,
                    rollover_cap, flex_group, alert_warn_percent, alert_critical_percent,
                    sort_order, notes)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        c.id, budget.id, c.category_id, c.transfer_account_id, int(c.is_transfer),
                        c.category_name, c.amount, int(c.is_income),
                        c.category_group.value if c.category_group else None,
                        c.rollover_type.value, c.rollover_cap, c.flex_group,
                        c.alert_warn_percent, c.alert_critical_percent, c.sort_order or i, c.notes,
                    )
                    for i, c in enumerate(budget.categories)
                ],
            )
        logger.debug("Saved budget %s with %d categories", budget.id, len(budget.categories))
        return budget

    def _categories(self, conn: sqlite3.Connection, budget_id: str) -> List[BudgetCategory]:
        rows = conn.execute(
            "SELECT * FROM budget_categories WHERE budget_id = ? ORDER BY sort_order, rowid",
            (budget_id,),
        ).fetchall()
        return [
            BudgetCategory(
                id=row['id'],
                amount=row['amount'],
                category_id=row['category_id'],
                transfer_account_id=row['transfer_account_id'],
                is_transfer=bool(row['is_transfer']),
                category_name=row['category_name'] or '',
                is_income=bool(row['is_income']),
                category_group=_optional_enum(CategoryGroup, row['category_group']),
                rollover_type=RolloverType(row['rollover_type']),
                rollover_cap=row['rollover_cap'],
                flex_group=row['flex_group'],
                alert_warn_percent=row['alert_warn_percent'],
                alert_critical_percent=row['alert_critical_percent'],
                sort_order=row['sort_order'],
                notes=row['notes'],
            )
            for row in rows
        ]

    def _budget_from_row(self, conn: sqlite3.Connection, row: sqlite3.Row) -> Budget:
        return Budget(
            id=row['id'],
            name=row['name'],
            period_start=date.fromisoformat(row['period_start']),
            budget_type=BudgetType(row['budget_type']),
            period_end=_from_iso_date(row['period_end']),
            base_income=row['base_income'],
            income_linked=bool(row['income_linked']),
            strategy=BudgetStrategy(row['strategy']),
            currency=row['currency'],
            config=BudgetConfig.from_dict(json.loads(row['config'])),
            is_active=bool(row['is_active']),
            categories=self._categories(conn, row['id']),
        )

    def get_budget(self, budget_id: str) -> Budget:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM budgets WHERE id = ?", (budget_id,)).fetchone()
            if row is None:
                raise BudgetNotFound(budget_id)
            return self._budget_from_row(conn, row)

    def list_budgets(self, active_only: bool = True) -> List[Budget]:
        sql = "SELECT * FROM budgets"
        if active_only:
            sql += " WHERE is_active = 1"
        sql += " ORDER BY period_start DESC, rowid DESC"
        with self._connect() as conn:
            return [self._budget_from_row(conn, row) for row in conn.execute(sql).fetchall()]

    def _period_rows(self, conn: sqlite3.Connection, period_id: str) -> List[BudgetPeriodCategory]:
        rows = conn.execute(
            "SELECT * FROM budget_period_categories WHERE budget_period_id = ? ORDER BY id",
            (period_id,),
        ).fetchall()
        return [
            BudgetPeriodCategory(
                budget_category_id=row['budget_category_id'],
                budgeted_amount=row['budgeted_amount'],
                rollover_in=row['rollover_in'],
                actual_amount=row['actual_amount'],
                rollover_out=row['rollover_out'],
            )
            for row in rows
        ]

    def _period_from_row(self, conn: sqlite3.Connection, row: sqlite3.Row) -> BudgetPeriod:
        return BudgetPeriod(
            id=row['id'],
            budget_id=row['budget_id'],
            period_start=date.fromisoformat(row['period_start']),
            period_end=date.fromisoformat(row['period_end']),
            status=PeriodStatus(row['status']),
            actual_income=row['actual_income'],
            actual_expenses=row['actual_expenses'],
            total_budgeted=row['total_budgeted'],
            categories=self._period_rows(conn, row['id']),
        )

    def get_period(self, budget_id: str, period_start: date) -> Optional[BudgetPeriod]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM budget_periods WHERE budget_id = ? AND period_start = ?",
                (budget_id, period_start.isoformat()),
            ).fetchone()
            return self._period_from_row(conn, row) if row is not None else None

    def list_periods(self, budget_id: str, status: Optional[PeriodStatus] = None) -> List[BudgetPeriod]:
        sql = "SELECT * FROM budget_periods WHERE budget_id = ?"
        params: List[Any] = [budget_id]
        if status is not None:
            sql += " AND status = ?"
            params.append(PeriodStatus(status).value)
        sql += " ORDER BY period_start"
        with self._connect() as conn:
            return [self._period_from_row(conn, row) for row in conn.execute(sql, params).fetchall()]

    def save_period(self, period: BudgetPeriod) -> BudgetPeriod:
        """Insert or update a period and upsert its category rows.

        Inserting a period that another writer created first violates the
        (budget_id, period_start) constraint and raises ConcurrentPeriodClose.
        """
        if period.status is PeriodStatus.PROJECTED:
            raise ValueError("Projected periods are never persisted")
        values = (
            period.period_end.isoformat(), period.actual_income, period.actual_expenses,
            period.total_budgeted, period.status.value,
        )
        with self._connect() as conn:
            if period.id is None:
                period.id = _new_id()
                try:
                    conn.execute(
                        """
                        INSERT INTO budget_periods (period_end, actual_income, actual_expenses,
                            total_budgeted, status, id, budget_id, period_start)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        values + (period.id, period.budget_id, period.period_start.isoformat()),
                    )
                except sqlite3.IntegrityError as e:
                    period.id = None
                    raise ConcurrentPeriodClose(
                        f"Period {period.period_start} of budget {period.budget_id} was written concurrently"
                    ) from e
            else:
                conn.execute(
                    """
                    UPDATE budget_periods
                    SET period_end = ?, actual_income = ?, actual_expenses = ?, total_budgeted = ?, status = ?
                    WHERE id = ?
                    """,
                    values + (period.id,),
                )
            conn.executemany(
                """
                INSERT INTO budget_period_categories (budget_period_id, budget_category_id,
                    budgeted_amount, rollover_in, actual_amount, effective_budget, rollover_out)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(budget_period_id, budget_category_id) DO UPDATE SET
                    budgeted_amount = excluded.budgeted_amount,
                    rollover_in = excluded.rollover_in,
                    actual_amount = excluded.actual_amount,
                    effective_budget = excluded.effective_budget,
                    rollover_out = excluded.rollover_out
                """,
                [
                    (
                        period.id, row.budget_category_id, row.budgeted_amount, row.rollover_in,
                        row.actual_amount, row.effective_budget, row.rollover_out,
                    )
                    for row in period.categories
                ],
            )
        return period

    def period_history_frame(self, budget_id: str) -> pd.DataFrame:
        """Period rows joined to their periods, one row per period category."""
        sql = """
            SELECT p.period_start, p.period_end, p.status, c.budget_category_id,
                   c.budgeted_amount, c.rollover_in, c.actual_amount, c.effective_budget, c.rollover_out
            FROM budget_periods p
            JOIN budget_period_categories c ON c.budget_period_id = p.id
            WHERE p.budget_id = ?
            ORDER BY p.period_start, c.id
        """
        with self._connect() as conn:
            df = pd.read_sql_query(sql, conn, params=(budget_id,))
        if not df.empty:
            df['period_start'] = pd.to_datetime(df['period_start'])
            df['period_end'] = pd.to_datetime(df['period_end'])
        return df


class SqliteAlertRepository(_SqliteRepository):
    """Append-only alert log."""

    def _alert_from_row(self, row: sqlite3.Row) -> BudgetAlert:
        return BudgetAlert(
            id=row['id'],
            budget_id=row['budget_id'],
            budget_category_id=row['budget_category_id'],
            alert_type=AlertType(row['alert_type']),
            severity=AlertSeverity(row['severity']),
            title=row['title'],
            message=row['message'],
            data=json.loads(row['data']),
            is_read=bool(row['is_read']),
            is_email_sent=bool(row['is_email_sent']),
            period_start=date.fromisoformat(row['period_start']),
            created_at=datetime.fromisoformat(row['created_at']),
        )

    def append(self, alert: BudgetAlert) -> BudgetAlert:
        alert.id = alert.id or _new_id()
        alert.created_at = alert.created_at or datetime.now().replace(microsecond=0)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO budget_alerts (id, budget_id, budget_category_id, alert_type, severity,
                    title, message, data, is_read, is_email_sent, period_start, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    alert.id, alert.budget_id, alert.budget_category_id, alert.alert_type.value,
                    alert.severity.value, alert.title, alert.message, json.dumps(alert.data),
                    int(alert.is_read), int(alert.is_email_sent), alert.period_start.isoformat(),
                    alert.created_at.isoformat(),
                ),
            )
        return alert

    def find_unread(self, budget_id: str, period_start: date) -> List[BudgetAlert]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM budget_alerts WHERE budget_id = ? AND period_start = ? AND is_read = 0",
                (budget_id, period_start.isoformat()),
            ).fetchall()
        return [self._alert_from_row(row) for row in rows]

    def list_alerts(self, budget_id: str, unread_only: bool = False) -> List[BudgetAlert]:
        sql = "SELECT * FROM budget_alerts WHERE budget_id = ?"
        if unread_only:
            sql += " AND is_read = 0"
        sql += " ORDER BY created_at DESC, rowid DESC"
        with self._connect() as conn:
            rows = conn.execute(sql, (budget_id,)).fetchall()
        return [self._alert_from_row(row) for row in rows]

    def _set_flag(self, alert_id: str, column: str) -> None:
        with self._connect() as conn:
            conn.execute(f"UPDATE budget_alerts SET {column} = 1 WHERE id = ?", (alert_id,))

    def mark_read(self, alert_id: str) -> None:
        self._set_flag(alert_id, 'is_read')

    def mark_email_sent(self, alert_id: str) -> None:
        self._set_flag(alert_id, 'is_email_sent')

    def alerts_frame(self, budget_id: str) -> pd.DataFrame:
        """All alerts for a budget as a DataFrame, newest first."""
        with self._connect() as conn:
            return pd.read_sql_query(
                "SELECT * FROM budget_alerts WHERE budget_id = ? ORDER BY created_at DESC",
                conn,
                params=(budget_id,),
            )
