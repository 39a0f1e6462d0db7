"""
Repository for expenses and incomes.

Aggregation happens in SQL (``SUM ... GROUP BY``); the context builder turns
the totals into a ``FinanceContext``.
"""

from __future__ import annotations

import logging
from datetime import datetime

from farm_advisor.db.repositories.base import BaseRepository
from farm_advisor.models.farm import ExpenseRecord, IncomeRecord
from farm_advisor.utils.time_utils import to_db_timestamp

logger = logging.getLogger(__name__)


class FinanceRepository(BaseRepository):
    """Read/write access to ``expenses`` and ``incomes``."""

    def insert_expense(self, expense: ExpenseRecord) -> int:
        cursor = self.execute(
            """
            INSERT INTO expenses (user_id, farm_id, category, amount, expense_date)
            VALUES (?, ?, ?, ?, ?);
            """,
            (
                expense.user_id,
                expense.farm_id,
                expense.category,
                expense.amount,
                to_db_timestamp(expense.expense_date),
            ),
        )
        return int(cursor.lastrowid)

    def insert_income(self, income: IncomeRecord) -> int:
        cursor = self.execute(
            """
            INSERT INTO incomes (user_id, farm_id, product_type, total_amount, income_date)
            VALUES (?, ?, ?, ?, ?);
            """,
            (
                income.user_id,
                income.farm_id,
                income.product_type,
                income.total_amount,
                to_db_timestamp(income.income_date),
            ),
        )
        return int(cursor.lastrowid)

    def expenses_by_category(self, user_id: str, since: datetime) -> dict[str, float]:
        """Sum of expenses per category on or after ``since``."""
        rows = self.fetchall(
            """
            SELECT category, SUM(amount) AS total
            FROM expenses
            WHERE user_id = ? AND expense_date >= ?
            GROUP BY category
            ORDER BY category;
            """,
            (user_id, to_db_timestamp(since)),
        )
        return {r["category"]: float(r["total"]) for r in rows}

    def income_by_product(self, user_id: str, since: datetime) -> dict[str, float]:
        """Sum of income per product type on or after ``since``."""
        rows = self.fetchall(
            """
            SELECT product_type, SUM(total_amount) AS total
            FROM incomes
            WHERE user_id = ? AND income_date >= ?
            GROUP BY product_type
            ORDER BY product_type;
            """,
            (user_id, to_db_timestamp(since)),
        )
        return {r["product_type"]: float(r["total"]) for r in rows}
