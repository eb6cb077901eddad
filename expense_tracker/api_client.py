"""
Expense API Client
Thin requests-based client for the expense tracker REST API
"""

import logging
import os
from datetime import date
from typing import Any, Dict, List, Optional

import requests

from .models import Expense

LOGGER = logging.getLogger(__name__)

DEFAULT_API_URL = "http://localhost:5174/api"


class ExpenseApiError(RuntimeError):
    """Raised for failed API calls"""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class ExpenseApiClient:
    """Client for the expense tracker REST API"""

    def __init__(self, base_url: str = None, token: str = None, user_id: str = None,
                 timeout: float = 10.0, session: requests.Session = None):
        """
        Initialize API client

        Args:
            base_url: API root, e.g. http://localhost:5174/api (default: EXPENSE_API_URL)
            token: Optional bearer token forwarded to a gateway in front of the API
            user_id: Optional value for the X-User-Id header
            timeout: Request timeout in seconds
            session: Preconfigured requests session
        """
        self.base_url = (base_url or os.environ.get('EXPENSE_API_URL', DEFAULT_API_URL)).rstrip('/')
        self.token = token
        self.user_id = user_id
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        headers = {'Content-Type': 'application/json'}
        if self.token:
            headers['Authorization'] = f'Bearer {self.token}'
        if self.user_id:
            headers['X-User-Id'] = self.user_id
        return headers

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, headers=self._headers(), timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            LOGGER.error("Expense API %s %s failed: %s", method, path, exc)
            raise ExpenseApiError(f"Request to {path} failed") from exc
        return self._handle_response(response)

    @staticmethod
    def _handle_response(response: requests.Response) -> Any:
        if response.status_code == 204 or not response.content:
            data = {}
        else:
            try:
                data = response.json()
            except ValueError:
                data = {}

        if not response.ok:
            error = data.get('error') if isinstance(data, dict) else None
            if isinstance(error, dict):
                message = '; '.join(
                    f"{field}: {', '.join(messages)}"
                    for field, messages in error.get('fieldErrors', {}).items()
                ) or 'Request failed'
            else:
                message = error or 'Request failed'
            raise ExpenseApiError(message, status=response.status_code)

        return data

    def health(self) -> Dict[str, Any]:
        return self._request('GET', '/health')

    def get_expenses(self, category: str = None) -> List[Expense]:
        params = {'category': category} if category else None
        data = self._request('GET', '/expenses', params=params)
        return [Expense.from_dict(item) for item in data.get('expenses', [])]

    def create_expense(self, amount: float, category: str, description: str = None,
                       expense_date: Optional[date] = None) -> Expense:
        """
        Create an expense

        Args:
            amount: Positive amount
            category: Category label
            description: Optional note
            expense_date: Date the expense belongs to (default: today)

        Returns:
            The stored expense
        """
        payload = {
            'amount': amount,
            'category': category,
            'description': description,
            'date': (expense_date or date.today()).isoformat(),
        }
        data = self._request('POST', '/expenses', json=payload)
        return Expense.from_dict(data['expense'])

    def update_expense(self, expense_id: str, **fields) -> Expense:
        if isinstance(fields.get('date'), date):
            fields['date'] = fields['date'].isoformat()
        data = self._request('PUT', f'/expenses/{expense_id}', json=fields)
        return Expense.from_dict(data['expense'])

    def delete_expense(self, expense_id: str) -> None:
        self._request('DELETE', f'/expenses/{expense_id}')

    def clear_expenses(self) -> int:
        data = self._request('DELETE', '/expenses')
        return data.get('deleted', 0)

    def get_summary(self) -> Dict[str, Any]:
        return self._request('GET', '/expenses/summary')

    def get_anomalies(self, window_days: int = None, sensitivity: float = None,
                      min_history: int = None) -> List[Dict[str, Any]]:
        params = {
            key: value
            for key, value in (('windowDays', window_days), ('sensitivity', sensitivity), ('minHistory', min_history))
            if value is not None
        }
        data = self._request('GET', '/insights/anomalies', params=params or None)
        return data.get('anomalies', [])
