"""Shared pytest configuration for the project test suite."""
from __future__ import annotations

import itertools
import sys
from datetime import date, timedelta
from pathlib import Path
from typing import Callable

import pytest


# Ensure the repository root (which contains the ``expense_tracker`` package) is importable.
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from expense_tracker.models import Expense  # noqa: E402

TODAY = date(2024, 3, 31)


@pytest.fixture
def today() -> date:
    """Fixed reference date for window calculations."""
    return TODAY


@pytest.fixture
def make_expense() -> Callable[..., Expense]:
    """Factory building expenses dated ``days_ago`` before the fixed reference date."""
    counter = itertools.count(1)

    def _make(amount, category="Food & Tiffin", description=None, days_ago=1, **overrides) -> Expense:
        fields = {
            "id": f"exp-{next(counter)}",
            "amount": amount,
            "category": category,
            "description": description,
            "date": (TODAY - timedelta(days=days_ago)).isoformat(),
        }
        fields.update(overrides)
        return Expense(**fields)

    return _make
