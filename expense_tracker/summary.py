"""
Expense Summary Module
Totals, current-month spend and per-category breakdown for the dashboard
"""

from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from .models import Expense
from .outlier_detector import parse_expense_date, positive_amount

ALL_CATEGORIES = 'all'


def _amount(expense: Expense) -> float:
    return positive_amount(expense.amount) or 0.0


class ExpenseSummarizer:
    """Aggregates a user's expenses into the figures shown on the dashboard"""

    def total_expense(self, expenses: Iterable[Expense]) -> float:
        """Sum of all valid amounts"""
        return sum(_amount(expense) for expense in expenses)

    def monthly_expense(self, expenses: Iterable[Expense], today: Optional[date] = None) -> float:
        """
        Total spend for the calendar month containing ``today``

        Args:
            expenses: Expense records
            today: Reference date (default: today)

        Returns:
            Sum of amounts dated in that month and year
        """
        if today is None:
            today = date.today()

        total = 0.0
        for expense in expenses:
            expense_date = parse_expense_date(expense.date)
            if expense_date is None:
                continue
            if expense_date.year == today.year and expense_date.month == today.month:
                total += _amount(expense)
        return total

    def category_totals(self, expenses: Iterable[Expense]) -> Dict[str, float]:
        """Category -> total, in first-seen order"""
        totals: Dict[str, float] = {}
        for expense in expenses:
            totals[expense.category] = totals.get(expense.category, 0.0) + _amount(expense)
        return totals

    def filter_by_category(self, expenses: Iterable[Expense], category: Optional[str]) -> List[Expense]:
        if not category or category == ALL_CATEGORIES:
            return list(expenses)
        return [expense for expense in expenses if expense.category == category]

    def summarize(self, expenses: Iterable[Expense], today: Optional[date] = None) -> Dict[str, Any]:
        records = list(expenses)
        return {
            'total': self.total_expense(records),
            'monthly': self.monthly_expense(records, today),
            'categories': self.category_totals(records),
            'count': len(records),
        }
