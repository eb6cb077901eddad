"""
Test Suite: Dashboard totals and category breakdown
"""

from datetime import date

import pytest
from freezegun import freeze_time

from expense_tracker.models import Expense
from expense_tracker.summary import ExpenseSummarizer


class TestExpenseSummary:
    """Totals, monthly spend, breakdown and filtering"""

    @pytest.fixture
    def summarizer(self):
        return ExpenseSummarizer()

    @pytest.fixture
    def expenses(self):
        return [
            Expense(id='1', amount=120.0, category='Food & Tiffin', date='2024-03-02'),
            Expense(id='2', amount=2500.0, category='Rent/Housing', date='2024-03-01'),
            Expense(id='3', amount=80.5, category='Food & Tiffin', date='2024-02-28'),
            Expense(id='4', amount=300.0, category='Transport & Petrol', date='2023-03-15'),
            Expense(id='5', amount='oops', category='Transport & Petrol', date='2024-03-03'),
            Expense(id='6', amount=45.0, category='Mobile & Internet', date='not a date'),
        ]

    def test_total_ignores_invalid_amounts(self, summarizer, expenses):
        assert summarizer.total_expense(expenses) == pytest.approx(3045.5)

    def test_monthly_total_matches_month_and_year(self, summarizer, expenses):
        assert summarizer.monthly_expense(expenses, today=date(2024, 3, 20)) == pytest.approx(2620.0)
        assert summarizer.monthly_expense(expenses, today=date(2024, 2, 1)) == pytest.approx(80.5)

    @freeze_time("2023-03-31 12:00:00")
    def test_monthly_total_defaults_to_current_month(self, summarizer, expenses):
        assert summarizer.monthly_expense(expenses) == pytest.approx(300.0)

    def test_category_totals_in_first_seen_order(self, summarizer, expenses):
        totals = summarizer.category_totals(expenses)

        assert list(totals) == ['Food & Tiffin', 'Rent/Housing', 'Transport & Petrol', 'Mobile & Internet']
        assert totals['Food & Tiffin'] == pytest.approx(200.5)
        assert totals['Transport & Petrol'] == pytest.approx(300.0)

    @pytest.mark.parametrize('category, expected_ids', [
        ('all', ['1', '2', '3', '4', '5', '6']),
        (None, ['1', '2', '3', '4', '5', '6']),
        ('Food & Tiffin', ['1', '3']),
        ('Healthcare & Medicine', []),
    ])
    def test_filter_by_category(self, summarizer, expenses, category, expected_ids):
        assert [e.id for e in summarizer.filter_by_category(expenses, category)] == expected_ids

    def test_summarize_payload(self, summarizer, expenses):
        summary = summarizer.summarize(expenses, today=date(2024, 3, 20))

        assert set(summary) == {'total', 'monthly', 'categories', 'count'}
        assert summary['count'] == 6
        assert summary['monthly'] == pytest.approx(2620.0)

    def test_empty_input(self, summarizer):
        assert summarizer.summarize([]) == {'total': 0, 'monthly': 0.0, 'categories': {}, 'count': 0}


if __name__ == "__main__":
    pytest.main([__file__, "-v", "--tb=short"])
