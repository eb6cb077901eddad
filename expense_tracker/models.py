"""Core data types shared by the detector, the store and the HTTP layer."""

from __future__ import annotations

import math
import os
from dataclasses import dataclass, field
from datetime import date, datetime
from numbers import Real
from typing import Any, Dict, Mapping, Optional, Tuple

UNCATEGORIZED = "Uncategorized"

WINDOW_DAYS_RANGE = (14, 120)
SENSITIVITY_RANGE = (2.5, 6.0)
MIN_HISTORY_RANGE = (3, 12)


def _clamp(value, bounds):
    low, high = bounds
    return max(low, min(high, value))


def _isoformat(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


@dataclass
class Expense:
    """A single recorded expense.

    Fields are kept as supplied; the detector validates ``amount`` and ``date``
    itself so that one malformed record never aborts an evaluation.
    """

    id: Any
    amount: Any
    category: str = ""
    description: Optional[str] = None
    date: Any = None
    user_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Expense":
        if not isinstance(payload, Mapping):
            raise TypeError("Expense payload must be a mapping")
        return cls(
            id=payload.get("id"),
            amount=payload.get("amount"),
            category=payload.get("category") or "",
            description=payload.get("description"),
            date=payload.get("date"),
            user_id=payload.get("user_id", payload.get("userId")),
            created_at=payload.get("created_at", payload.get("createdAt")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "amount": self.amount,
            "category": self.category,
            "description": self.description,
            "date": _isoformat(self.date),
            "userId": self.user_id,
            "createdAt": _isoformat(self.created_at),
        }


@dataclass(frozen=True)
class DetectionConfig:
    """Tuning knobs for one detection pass.

    Values are expected inside the documented ranges; use :meth:`clamped`
    to bring user input into range before building a config.
    """

    window_days: int = 45
    sensitivity: float = 3.5
    min_history: int = 5

    def __post_init__(self) -> None:
        for name in ("window_days", "min_history"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise TypeError(f"{name} must be an integer, got {value!r}")
        if isinstance(self.sensitivity, bool) or not isinstance(self.sensitivity, Real):
            raise TypeError(f"sensitivity must be a number, got {self.sensitivity!r}")
        if not math.isfinite(self.sensitivity):
            raise ValueError("sensitivity must be finite")
        if self.window_days < 0:
            raise ValueError("window_days must not be negative")
        if self.min_history < 1:
            raise ValueError("min_history must be at least 1")

    @classmethod
    def clamped(
        cls,
        window_days: Optional[float] = None,
        sensitivity: Optional[float] = None,
        min_history: Optional[float] = None,
        *,
        defaults: Optional["DetectionConfig"] = None,
    ) -> "DetectionConfig":
        """Build a config with each supplied value forced into its valid range."""
        base = defaults or cls()
        if window_days is None:
            window_days = base.window_days
        if sensitivity is None:
            sensitivity = base.sensitivity
        if min_history is None:
            min_history = base.min_history
        return cls(
            window_days=int(round(_clamp(float(window_days), WINDOW_DAYS_RANGE))),
            sensitivity=float(_clamp(float(sensitivity), SENSITIVITY_RANGE)),
            min_history=int(round(_clamp(float(min_history), MIN_HISTORY_RANGE))),
        )

    @classmethod
    def from_environment(cls) -> "DetectionConfig":
        return cls.clamped(
            window_days=float(os.getenv("INSIGHTS_WINDOW_DAYS", "45")),
            sensitivity=float(os.getenv("INSIGHTS_SENSITIVITY", "3.5")),
            min_history=float(os.getenv("INSIGHTS_MIN_HISTORY", "5")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "windowDays": self.window_days,
            "sensitivity": self.sensitivity,
            "minHistory": self.min_history,
        }


@dataclass(frozen=True)
class AnomalyResult:
    """A flagged expense together with the statistics that flagged it."""

    expense: Expense
    category_median: float
    category_count: int
    z_score: Optional[float]
    ratio: Optional[float]
    suggestions: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "expense": self.expense.to_dict(),
            "categoryMedian": self.category_median,
            "categoryCount": self.category_count,
            "zScore": self.z_score,
            "ratio": self.ratio,
            "suggestions": list(self.suggestions),
        }
