"""
Outlier Detection Module
Flags unusually large expenses against each category's recent history
using robust statistics (median and median absolute deviation)
"""

import logging
import math
import statistics
from collections.abc import Mapping, Sequence
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from .models import UNCATEGORIZED, AnomalyResult, DetectionConfig, Expense
from .suggestions import SuggestionGenerator

LOGGER = logging.getLogger(__name__)

# Scales MAD to a consistent estimate of the standard deviation under normality
MAD_TO_SIGMA = 1.4826
MIN_RATIO_OVER_MEDIAN = 1.25
FLAT_HISTORY_RATIO = 2.75
MAX_RESULTS = 8


def median(values: Iterable[float]) -> float:
    """Sorted midpoint, or the mean of the two middle values for even counts"""
    values = list(values)
    if not values:
        return 0.0
    return statistics.median(values)


def median_absolute_deviation(values: Iterable[float], center: float) -> float:
    return median(abs(value - center) for value in values)


def robust_sigma(values: List[float], center: Optional[float] = None) -> float:
    if center is None:
        center = median(values)
    return MAD_TO_SIGMA * median_absolute_deviation(values, center)


def parse_expense_date(value: Any) -> Optional[date]:
    """
    Parse the calendar date an expense is attributed to

    Args:
        value: ``date``, ``datetime`` or ISO 8601 string

    Returns:
        The date, or None when it cannot be parsed
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None

    text = value.strip()
    if text.endswith(('Z', 'z')):
        text = text[:-1] + '+00:00'
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def positive_amount(value: Any) -> Optional[float]:
    """Amount as a float when it is finite and > 0, else None"""
    if isinstance(value, bool):
        return None
    try:
        amount = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    if not math.isfinite(amount) or amount <= 0:
        return None
    return amount


def category_key(expense: Expense) -> str:
    category = expense.category
    if not category:
        return UNCATEGORIZED
    if not isinstance(category, str):
        return str(category)
    return category


def window_expenses(expenses: Iterable[Expense], window_days: int, today: Optional[date] = None) -> List[Expense]:
    """Expenses dated on or after ``today - window_days``; unparseable dates are dropped"""
    if today is None:
        today = date.today()
    cutoff = today - timedelta(days=window_days)

    recent = []
    for expense in expenses:
        expense_date = parse_expense_date(expense.date)
        if expense_date is None:
            LOGGER.debug("Skipping expense %s: unparseable date %r", expense.id, expense.date)
            continue
        if expense_date >= cutoff:
            recent.append(expense)
    return recent


def group_by_category(expenses: Iterable[Expense]) -> Dict[str, List[Expense]]:
    groups: Dict[str, List[Expense]] = {}
    for expense in expenses:
        groups.setdefault(category_key(expense), []).append(expense)
    return groups


def anomalies_by_id(results: Iterable[AnomalyResult]) -> Dict[Any, AnomalyResult]:
    """Index results by expense id for inline flagging"""
    return {result.expense.id: result for result in results}


def _coerce_expenses(expenses: Any) -> List[Expense]:
    if isinstance(expenses, (str, bytes, Mapping)) or not isinstance(expenses, Sequence):
        raise TypeError(f"expenses must be a sequence of expense records, got {type(expenses).__name__}")

    records = []
    for item in expenses:
        if isinstance(item, Expense):
            records.append(item)
        elif isinstance(item, Mapping):
            records.append(Expense.from_dict(item))
        else:
            LOGGER.debug("Skipping non-expense item of type %s", type(item).__name__)
    return records


def _ranking_key(result: AnomalyResult):
    z_score = result.z_score if result.z_score is not None else 0.0
    return (-z_score, -positive_amount(result.expense.amount))


class OutlierDetector:
    """Detects unusually large expenses relative to recent same-category spending"""

    def __init__(self, config: Optional[DetectionConfig] = None,
                 suggestion_generator: Optional[SuggestionGenerator] = None,
                 max_results: int = MAX_RESULTS):
        """
        Initialize outlier detector

        Args:
            config: Window, sensitivity and minimum history (defaults apply when omitted)
            suggestion_generator: Produces hints for flagged expenses
            max_results: Number of top-ranked results kept
        """
        if config is None:
            config = DetectionConfig()
        if not isinstance(config, DetectionConfig):
            raise TypeError(f"config must be a DetectionConfig, got {type(config).__name__}")
        self.config = config
        self.suggestion_generator = suggestion_generator or SuggestionGenerator()
        self.max_results = max_results

    def detect(self, expenses: Sequence, today: Optional[date] = None) -> List[AnomalyResult]:
        """
        Detect outliers within the trailing window

        Rules:
        1. z-score (robust) >= sensitivity and amount >= 1.25 x median
        2. When the history is flat (no spread), amount >= 2.75 x median

        Args:
            expenses: Sequence of Expense records (or mappings with the same keys)
            today: Reference date for the window (default: today)

        Returns:
            Flagged expenses ranked by z-score then amount, at most ``max_results``
        """
        records = _coerce_expenses(expenses)
        if not records:
            return []

        recent = window_expenses(records, self.config.window_days, today)
        by_category = group_by_category(recent)

        results = []
        for expense in recent:
            result = self._score(expense, by_category[category_key(expense)])
            if result is not None:
                results.append(result)

        results.sort(key=_ranking_key)
        LOGGER.debug("Flagged %d of %d recent expenses", len(results), len(recent))
        return results[:self.max_results]

    def _score(self, expense: Expense, group: List[Expense]) -> Optional[AnomalyResult]:
        min_history = self.config.min_history

        history = [other for other in group if other is not expense]
        if len(history) < min_history:
            return None

        amounts = [amount for amount in (positive_amount(other.amount) for other in history) if amount is not None]
        if len(amounts) < min_history:
            return None

        center = median(amounts)
        sigma = robust_sigma(amounts, center)

        amount = positive_amount(expense.amount)
        if amount is None:
            LOGGER.debug("Skipping expense %s: invalid amount %r", expense.id, expense.amount)
            return None

        z_score = (amount - center) / sigma if sigma > 0 else None
        ratio = amount / center if center > 0 else None

        if z_score is not None:
            is_outlier = z_score >= self.config.sensitivity and amount >= center * MIN_RATIO_OVER_MEDIAN
        else:
            is_outlier = ratio is not None and ratio >= FLAT_HISTORY_RATIO
        if not is_outlier:
            return None

        return AnomalyResult(
            expense=expense,
            category_median=center,
            category_count=len(amounts),
            z_score=None if z_score is None else round(z_score, 2),
            ratio=None if ratio is None else round(ratio, 2),
            suggestions=tuple(self.suggestion_generator.suggest(expense, center, z_score)),
        )


def detect(expenses: Sequence, config: DetectionConfig, today: Optional[date] = None) -> List[AnomalyResult]:
    """Run one detection pass with ``config``"""
    if not isinstance(config, DetectionConfig):
        raise TypeError(f"config must be a DetectionConfig, got {type(config).__name__}")
    return OutlierDetector(config).detect(expenses, today=today)
