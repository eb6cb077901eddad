"""
Suggestion Generator Module
Turns a flagged expense into a short list of remediation hints
"""

from typing import Any, Iterable, List, NamedTuple, Optional, Tuple

MAX_SUGGESTIONS = 4
SEVERE_ZSCORE = 6.0
BUNDLED_MULTIPLIER = 2.0

VERIFY_ENTRY_TIP = "Double-check the amount (extra zero / decimal) and confirm the date."
SOFT_LIMIT_TIP = "If this is correct, consider setting a soft limit for this category."
SPLIT_ENTRY_TIP = "If this includes multiple items, split it into separate entries for better tracking."


class KeywordRule(NamedTuple):
    """Appends ``tip`` when the category or description contains a keyword"""

    name: str
    category_keywords: Tuple[str, ...]
    description_keywords: Tuple[str, ...]
    tip: str

    def matches(self, category: str, description: str) -> bool:
        return any(keyword in category for keyword in self.category_keywords) or any(
            keyword in description for keyword in self.description_keywords
        )


class SuggestionGenerator:
    """Builds remediation hints from severity, magnitude and keyword rules"""

    KEYWORD_RULES = (
        KeywordRule(
            'food',
            ('food', 'tiffin'),
            ('swiggy', 'zomato'),
            'Try a weekly food cap or batch-cooking on weekdays to reduce spikes.',
        ),
        KeywordRule(
            'transport',
            ('transport',),
            ('uber', 'ola', 'petrol'),
            'Compare routes/vendors and track “commute vs. non-commute” rides separately.',
        ),
        KeywordRule(
            'mobile',
            ('mobile', 'internet'),
            ('recharge',),
            'Review your plan/add-ons; one-time packs can inflate the month.',
        ),
        KeywordRule(
            'utilities',
            ('electricity', 'water'),
            ('eb', 'tneb'),
            'If this is a bill jump, check meter/bill period and note it in the description.',
        ),
        KeywordRule(
            'events',
            ('festivals', 'functions'),
            ('wedding', 'function'),
            'Consider a separate “events” sinking fund so these don’t surprise you.',
        ),
        KeywordRule(
            'shopping',
            (),
            ('amazon', 'flipkart', 'myntra'),
            'Add a quick tag like "need/want" to spot impulse vs. essentials later.',
        ),
    )

    def __init__(self, keyword_rules: Optional[Iterable[KeywordRule]] = None, limit: int = MAX_SUGGESTIONS):
        self.keyword_rules = tuple(keyword_rules) if keyword_rules is not None else self.KEYWORD_RULES
        self.limit = limit

    def suggest(self, expense: Any, category_median: float, z_score: Optional[float]) -> List[str]:
        """
        Build suggestions for a flagged expense

        Args:
            expense: Expense record (``amount``, ``category``, ``description``)
            category_median: Median amount of the comparison set
            z_score: Unrounded robust z-score, ``None`` when undefined

        Returns:
            Up to ``limit`` distinct suggestions in rule order
        """
        category = _text(getattr(expense, 'category', None))
        description = _text(getattr(expense, 'description', None))
        amount = _number(getattr(expense, 'amount', None))
        severity = z_score if z_score is not None else 0.0

        suggestions = []
        if severity >= SEVERE_ZSCORE:
            suggestions.append(VERIFY_ENTRY_TIP)
        else:
            suggestions.append(SOFT_LIMIT_TIP)

        if category_median > 0 and amount >= category_median * BUNDLED_MULTIPLIER:
            suggestions.append(SPLIT_ENTRY_TIP)

        for rule in self.keyword_rules:
            if rule.matches(category, description):
                suggestions.append(rule.tip)

        # dict keeps first-seen order
        return list(dict.fromkeys(suggestions))[:self.limit]


def _text(value: Any) -> str:
    if value is None:
        return ''
    return str(value).lower()


def _number(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError, OverflowError):
        return 0.0


_DEFAULT_GENERATOR = SuggestionGenerator()


def suggest(expense: Any, category_median: float, z_score: Optional[float]) -> List[str]:
    """Suggestions from the default rule table"""
    return _DEFAULT_GENERATOR.suggest(expense, category_median, z_score)
