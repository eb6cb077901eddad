"""
Expense Tracker - Core Modules
"""

from .models import AnomalyResult, DetectionConfig, Expense
from .outlier_detector import OutlierDetector, anomalies_by_id, detect
from .suggestions import SuggestionGenerator, suggest
from .summary import ExpenseSummarizer
from .expense_store import InMemoryExpenseStore, PostgresExpenseStore

__all__ = [
    'AnomalyResult',
    'DetectionConfig',
    'Expense',
    'OutlierDetector',
    'anomalies_by_id',
    'detect',
    'SuggestionGenerator',
    'suggest',
    'ExpenseSummarizer',
    'InMemoryExpenseStore',
    'PostgresExpenseStore',
]

__version__ = '0.1.0'
