"""
Expense Store Module
Validates expense payloads and keeps per-user expense records in memory or PostgreSQL
"""

import logging
import math
import os
import threading
import uuid
from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal
from numbers import Real
from typing import Any, Dict, List, Mapping, Optional

import psycopg2
from psycopg2.extras import RealDictCursor

from .models import Expense
from .outlier_detector import parse_expense_date

logger = logging.getLogger(__name__)

MAX_CATEGORY_LENGTH = 120
MAX_DESCRIPTION_LENGTH = 500


class ExpenseValidationError(ValueError):
    """Raised when an expense payload fails validation"""

    def __init__(self, errors: Dict[str, str]):
        self.errors = dict(errors)
        details = '; '.join(f"{field}: {message}" for field, message in self.errors.items())
        super().__init__(f"Invalid expense: {details}")

    def to_dict(self) -> Dict[str, Any]:
        return {'fieldErrors': {field: [message] for field, message in self.errors.items()}}


class ExpenseNotFoundError(LookupError):
    """Raised when an expense does not exist for the requesting user"""

    def __init__(self, expense_id: Any):
        self.expense_id = expense_id
        super().__init__("Expense not found")


def validate_expense_payload(payload: Mapping[str, Any], partial: bool = False) -> Dict[str, Any]:
    """
    Validate and normalise an expense payload

    Args:
        payload: Incoming fields (amount, category, description, date)
        partial: Only validate the fields that are present (updates)

    Returns:
        Dict of cleaned fields; ``date`` becomes a ``datetime.date``

    Raises:
        ExpenseValidationError: With every failing field
    """
    if not isinstance(payload, Mapping):
        raise ExpenseValidationError({'body': 'Expected a JSON object'})

    errors: Dict[str, str] = {}
    cleaned: Dict[str, Any] = {}

    if 'amount' in payload or not partial:
        amount = payload.get('amount')
        if isinstance(amount, bool) or not isinstance(amount, Real):
            errors['amount'] = 'Expected number'
        else:
            try:
                value = float(amount)
            except OverflowError:
                value = math.inf
            if not math.isfinite(value) or value <= 0:
                errors['amount'] = 'Amount must be a positive finite number'
            else:
                cleaned['amount'] = value

    if 'category' in payload or not partial:
        category = payload.get('category')
        if not isinstance(category, str):
            errors['category'] = 'Expected string'
        elif not 1 <= len(category) <= MAX_CATEGORY_LENGTH:
            errors['category'] = f'Category must be 1-{MAX_CATEGORY_LENGTH} characters'
        else:
            cleaned['category'] = category

    if 'description' in payload:
        description = payload.get('description')
        if description is not None and not isinstance(description, str):
            errors['description'] = 'Expected string'
        elif description is not None and len(description) > MAX_DESCRIPTION_LENGTH:
            errors['description'] = f'Description must be at most {MAX_DESCRIPTION_LENGTH} characters'
        else:
            cleaned['description'] = description or None

    if 'date' in payload or not partial:
        raw_date = payload.get('date')
        parsed = parse_expense_date(raw_date) if raw_date else None
        if parsed is None:
            errors['date'] = 'Invalid date'
        else:
            cleaned['date'] = parsed

    if errors:
        raise ExpenseValidationError(errors)
    return cleaned


def _sort_newest_first(expenses: List[Expense]) -> List[Expense]:
    # date desc, then created_at desc
    return sorted(
        expenses,
        key=lambda e: (parse_expense_date(e.date) or date.min, e.created_at or datetime.min),
        reverse=True,
    )


class InMemoryExpenseStore:
    """Thread-safe per-user expense store held in process memory"""

    def __init__(self):
        self._expenses: Dict[str, Expense] = {}
        self._lock = threading.Lock()

    def list_expenses(self, user_id: str) -> List[Expense]:
        with self._lock:
            owned = [e for e in self._expenses.values() if e.user_id == user_id]
        return _sort_newest_first(owned)

    def get_expense(self, user_id: str, expense_id: str) -> Expense:
        with self._lock:
            expense = self._expenses.get(expense_id)
        if expense is None or expense.user_id != user_id:
            raise ExpenseNotFoundError(expense_id)
        return expense

    def create_expense(self, user_id: str, payload: Mapping[str, Any]) -> Expense:
        data = validate_expense_payload(payload)
        expense = Expense(
            id=str(uuid.uuid4()),
            amount=data['amount'],
            category=data['category'],
            description=data.get('description'),
            date=data['date'],
            user_id=user_id,
            created_at=datetime.now(),
        )
        with self._lock:
            self._expenses[expense.id] = expense
        logger.info("Created expense %s for user %s", expense.id, user_id)
        return expense

    def update_expense(self, user_id: str, expense_id: str, payload: Mapping[str, Any]) -> Expense:
        data = validate_expense_payload(payload, partial=True)
        with self._lock:
            existing = self._expenses.get(expense_id)
            if existing is None or existing.user_id != user_id:
                raise ExpenseNotFoundError(expense_id)
            updated = replace(existing, **data)
            self._expenses[expense_id] = updated
        logger.info("Updated expense %s for user %s", expense_id, user_id)
        return updated

    def delete_expense(self, user_id: str, expense_id: str) -> None:
        with self._lock:
            existing = self._expenses.get(expense_id)
            if existing is None or existing.user_id != user_id:
                raise ExpenseNotFoundError(expense_id)
            del self._expenses[expense_id]
        logger.info("Deleted expense %s for user %s", expense_id, user_id)

    def clear_expenses(self, user_id: str) -> int:
        with self._lock:
            owned = [key for key, e in self._expenses.items() if e.user_id == user_id]
            for key in owned:
                del self._expenses[key]
        logger.info("Cleared %d expenses for user %s", len(owned), user_id)
        return len(owned)


class PostgresExpenseStore:
    """Per-user expense store backed by a PostgreSQL table"""

    COLUMNS = "id, user_id, amount, category, description, expense_date, created_at"

    def __init__(self, db_params: Optional[Dict[str, Any]] = None):
        self.db_params = db_params or {
            'host': os.getenv('DB_HOST', 'localhost'),
            'port': int(os.getenv('DB_PORT', 5432)),
            'database': os.getenv('DB_NAME', 'expense_tracker'),
            'user': os.getenv('DB_USER', 'expense_user'),
            'password': os.getenv('DB_PASSWORD', ''),
        }
        self._ensure_table()

    def _get_connection(self):
        """Get database connection"""
        return psycopg2.connect(**self.db_params)

    def _ensure_table(self):
        """Create the expenses table if it doesn't exist"""
        with self._get_connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute("""
                    CREATE TABLE IF NOT EXISTS expenses (
                        id UUID PRIMARY KEY,
                        user_id VARCHAR(255) NOT NULL,
                        amount DECIMAL(12,2) NOT NULL CHECK (amount > 0),
                        category VARCHAR(120) NOT NULL,
                        description TEXT,
                        expense_date DATE NOT NULL,
                        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                    )
                """)
                cursor.execute("""
                    CREATE INDEX IF NOT EXISTS idx_expenses_user_date
                    ON expenses(user_id, expense_date DESC)
                """)
                conn.commit()
        logger.info("Expenses table ensured")

    @staticmethod
    def _row_to_expense(row: Mapping[str, Any]) -> Expense:
        amount = row['amount']
        if isinstance(amount, Decimal):
            amount = float(amount)
        return Expense(
            id=str(row['id']),
            amount=amount,
            category=row['category'],
            description=row.get('description'),
            date=row['expense_date'],
            user_id=row['user_id'],
            created_at=row.get('created_at'),
        )

    def list_expenses(self, user_id: str) -> List[Expense]:
        with self._get_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                cursor.execute(
                    f"SELECT {self.COLUMNS} FROM expenses WHERE user_id = %s "
                    "ORDER BY expense_date DESC, created_at DESC",
                    (user_id,),
                )
                rows = cursor.fetchall()
        return [self._row_to_expense(row) for row in rows]

    def get_expense(self, user_id: str, expense_id: str) -> Expense:
        with self._get_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                cursor.execute(
                    f"SELECT {self.COLUMNS} FROM expenses WHERE id = %s AND user_id = %s",
                    (expense_id, user_id),
                )
                row = cursor.fetchone()
        if row is None:
            raise ExpenseNotFoundError(expense_id)
        return self._row_to_expense(row)

    def create_expense(self, user_id: str, payload: Mapping[str, Any]) -> Expense:
        data = validate_expense_payload(payload)
        expense_id = str(uuid.uuid4())
        with self._get_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                cursor.execute(
                    "INSERT INTO expenses (id, user_id, amount, category, description, expense_date) "
                    f"VALUES (%s, %s, %s, %s, %s, %s) RETURNING {self.COLUMNS}",
                    (expense_id, user_id, data['amount'], data['category'],
                     data.get('description'), data['date']),
                )
                row = cursor.fetchone()
                conn.commit()
        logger.info("Created expense %s for user %s", expense_id, user_id)
        return self._row_to_expense(row)

    def update_expense(self, user_id: str, expense_id: str, payload: Mapping[str, Any]) -> Expense:
        data = validate_expense_payload(payload, partial=True)
        if not data:
            return self.get_expense(user_id, expense_id)

        column_for = {'amount': 'amount', 'category': 'category',
                      'description': 'description', 'date': 'expense_date'}
        assignments = ', '.join(f"{column_for[field]} = %s" for field in data)
        with self._get_connection() as conn:
            with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                cursor.execute(
                    f"UPDATE expenses SET {assignments}, updated_at = CURRENT_TIMESTAMP "
                    f"WHERE id = %s AND user_id = %s RETURNING {self.COLUMNS}",
                    (*data.values(), expense_id, user_id),
                )
                row = cursor.fetchone()
                conn.commit()
        if row is None:
            raise ExpenseNotFoundError(expense_id)
        logger.info("Updated expense %s for user %s", expense_id, user_id)
        return self._row_to_expense(row)

    def delete_expense(self, user_id: str, expense_id: str) -> None:
        with self._get_connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute(
                    "DELETE FROM expenses WHERE id = %s AND user_id = %s",
                    (expense_id, user_id),
                )
                deleted = cursor.rowcount
                conn.commit()
        if not deleted:
            raise ExpenseNotFoundError(expense_id)
        logger.info("Deleted expense %s for user %s", expense_id, user_id)

    def clear_expenses(self, user_id: str) -> int:
        with self._get_connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute("DELETE FROM expenses WHERE user_id = %s", (user_id,))
                deleted = cursor.rowcount
                conn.commit()
        logger.info("Cleared %d expenses for user %s", deleted, user_id)
        return deleted


def create_store_from_environment():
    """Pick the store backend named by EXPENSE_STORE (memory or postgres)"""
    backend = os.getenv('EXPENSE_STORE', 'memory').lower()
    if backend == 'postgres':
        return PostgresExpenseStore()
    if backend != 'memory':
        raise ValueError(f"Unknown EXPENSE_STORE backend: {backend}")
    return InMemoryExpenseStore()
