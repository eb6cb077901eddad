"""REST API for the expense tracker.

The server exposes the expense store, dashboard totals and the anomaly view
over JSON:

* ``/api/expenses`` for listing, creating, updating and deleting expenses.
* ``/api/expenses/summary`` for totals, current-month spend and the
  per-category breakdown.
* ``/api/insights/anomalies`` for the ranked outlier list. Window,
  sensitivity and minimum history are read from the query string and clamped
  into their valid ranges, so a slider in the client can call this endpoint on
  every change.

Requests are scoped to a user by the ``X-User-Id`` header. There is no
authentication layer here; deploy behind whatever gateway issues identities.
"""

from __future__ import annotations

import json
import logging
import math
import os
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from aiohttp import web

from .expense_store import (
    ExpenseNotFoundError,
    ExpenseValidationError,
    create_store_from_environment,
)
from .models import DetectionConfig
from .outlier_detector import OutlierDetector
from .summary import ExpenseSummarizer

LOGGER = logging.getLogger("expense_tracker.api")

DEFAULT_CLIENT_ORIGIN = "http://localhost:5173"
USER_HEADER = "X-User-Id"
CLIENT_ORIGIN_KEY = web.AppKey("client_origin", str)


def _json_dumps(payload: Any) -> str:
    return json.dumps(payload, default=str)


def json_response(payload: Any, *, status: int = 200) -> web.Response:
    return web.json_response(payload, status=status, dumps=_json_dumps)


def error_response(error: Any, status: int) -> web.Response:
    return json_response({"error": error}, status=status)


def apply_cors_headers(response: web.StreamResponse, origin: Optional[str], allowed_origin: str) -> None:
    if origin and origin == allowed_origin:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, DELETE, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = f"Content-Type, Authorization, {USER_HEADER}"
        response.headers["Vary"] = "Origin"


@web.middleware
async def cors_middleware(
    request: web.Request,
    handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
) -> web.StreamResponse:
    allowed_origin = request.app[CLIENT_ORIGIN_KEY]
    origin = request.headers.get("Origin")
    if request.method == "OPTIONS":
        response = web.Response(status=204)
    else:
        response = await handler(request)
    if not response.prepared:
        apply_cors_headers(response, origin, allowed_origin)
    return response


@web.middleware
async def error_middleware(
    request: web.Request,
    handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
) -> web.StreamResponse:
    try:
        return await handler(request)
    except ExpenseValidationError as exc:
        return error_response(exc.to_dict(), status=400)
    except ExpenseNotFoundError:
        return error_response("Expense not found", status=404)
    except web.HTTPNotFound:
        return error_response("Not found", status=404)
    except web.HTTPException as exc:
        if exc.status >= 400:
            return error_response(exc.text or exc.reason, status=exc.status)
        raise
    except Exception:
        LOGGER.exception("Unhandled error on %s %s", request.method, request.path)
        return error_response("Server error", status=500)


class ExpenseApplication:
    """Encapsulates the aiohttp application and its handlers."""

    def __init__(self, store=None, default_config: Optional[DetectionConfig] = None) -> None:
        self.store = store if store is not None else create_store_from_environment()
        self.default_config = default_config or DetectionConfig.from_environment()
        self.summarizer = ExpenseSummarizer()
        self.default_user_id = os.getenv("DEFAULT_USER_ID", "local")

        # cors_middleware runs outermost so error responses also carry CORS headers
        self.app = web.Application(middlewares=[cors_middleware, error_middleware])
        self.app[CLIENT_ORIGIN_KEY] = os.getenv("CLIENT_ORIGIN", DEFAULT_CLIENT_ORIGIN)
        self.app.router.add_get("/health", self.handle_health)
        self.app.router.add_get("/api/health", self.handle_health)
        self.app.router.add_get("/api/expenses", self.list_expenses)
        self.app.router.add_post("/api/expenses", self.create_expense)
        self.app.router.add_delete("/api/expenses", self.clear_expenses)
        self.app.router.add_get("/api/expenses/summary", self.expense_summary)
        self.app.router.add_put("/api/expenses/{expense_id}", self.update_expense)
        self.app.router.add_delete("/api/expenses/{expense_id}", self.delete_expense)
        self.app.router.add_get("/api/insights/anomalies", self.anomalies)

    def _user_id(self, request: web.Request) -> str:
        return request.headers.get(USER_HEADER) or self.default_user_id

    @staticmethod
    async def _read_json(request: web.Request) -> Dict[str, Any]:
        try:
            payload = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise web.HTTPBadRequest(text=f"Invalid JSON payload: {exc}") from exc
        if not isinstance(payload, dict):
            raise web.HTTPBadRequest(text="Invalid JSON payload: expected object")
        return payload

    def _detection_config(self, request: web.Request) -> DetectionConfig:
        query = request.query
        values: Dict[str, Optional[float]] = {}
        for param, name in (("windowDays", "window_days"), ("sensitivity", "sensitivity"), ("minHistory", "min_history")):
            raw = query.get(param)
            if raw is None or raw == "":
                values[name] = None
                continue
            try:
                values[name] = float(raw)
            except ValueError as exc:
                raise web.HTTPBadRequest(text=f"{param} must be a number") from exc
            if not math.isfinite(values[name]):
                raise web.HTTPBadRequest(text=f"{param} must be a finite number")
        return DetectionConfig.clamped(defaults=self.default_config, **values)

    async def handle_health(self, request: web.Request) -> web.Response:
        return json_response({"ok": True, "time": datetime.now(timezone.utc).isoformat()})

    async def list_expenses(self, request: web.Request) -> web.Response:
        expenses = self.store.list_expenses(self._user_id(request))
        expenses = self.summarizer.filter_by_category(expenses, request.query.get("category"))
        return json_response({"expenses": [expense.to_dict() for expense in expenses]})

    async def create_expense(self, request: web.Request) -> web.Response:
        payload = await self._read_json(request)
        expense = self.store.create_expense(self._user_id(request), payload)
        return json_response({"expense": expense.to_dict()}, status=201)

    async def update_expense(self, request: web.Request) -> web.Response:
        payload = await self._read_json(request)
        expense = self.store.update_expense(self._user_id(request), request.match_info["expense_id"], payload)
        return json_response({"expense": expense.to_dict()})

    async def delete_expense(self, request: web.Request) -> web.Response:
        self.store.delete_expense(self._user_id(request), request.match_info["expense_id"])
        return web.Response(status=204)

    async def clear_expenses(self, request: web.Request) -> web.Response:
        deleted = self.store.clear_expenses(self._user_id(request))
        return json_response({"deleted": deleted})

    async def expense_summary(self, request: web.Request) -> web.Response:
        expenses = self.store.list_expenses(self._user_id(request))
        return json_response(self.summarizer.summarize(expenses))

    async def anomalies(self, request: web.Request) -> web.Response:
        config = self._detection_config(request)
        expenses = self.store.list_expenses(self._user_id(request))
        results = OutlierDetector(config).detect(expenses)
        return json_response(
            {
                "config": config.to_dict(),
                "count": len(results),
                "anomalies": [result.to_dict() for result in results],
            }
        )


def configure_logging() -> None:
    """Log to the console, and to $LOG_DIR/expense-tracker.log when the directory is writable."""
    log_dir = os.getenv("LOG_DIR", "/var/log/expense-tracker")
    log_file = os.path.join(log_dir, "expense-tracker.log")

    handlers = [logging.StreamHandler()]
    file_logging_error = None
    try:
        os.makedirs(log_dir, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, mode="a"))
    except OSError as exc:
        file_logging_error = exc

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )

    if file_logging_error is not None:
        LOGGER.warning("File logging disabled for %s: %s; continuing console-only", log_dir, file_logging_error)
    else:
        LOGGER.info("Logging to %s", log_file)


def create_app() -> web.Application:
    configure_logging()
    server = ExpenseApplication()
    LOGGER.info("Expense API initialised with %s", type(server.store).__name__)
    return server.app


def main() -> None:
    app = create_app()
    host = os.getenv("API_HOST", "127.0.0.1")
    port = int(os.getenv("API_PORT", "5174"))
    web.run_app(app, host=host, port=port)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    main()
