"""HTTP API over a single local QuoteService instance."""

import asyncio
import concurrent.futures
import logging
import os
import threading

from dotenv import load_dotenv
from flask import Flask, jsonify, request
from werkzeug.exceptions import GatewayTimeout

import datetime_handler
from api_errors import error_response, register_error_handlers
from kv_storage import SQLiteStorage
from quote_config import load_config_from_env
from quote_formats import quote_to_dict
from quote_service import QuoteService

logger = logging.getLogger(__name__)

MAX_BULK_COUNT = 50
REQUEST_TIMEOUT_MARGIN_SECONDS = 5


class ServiceLoop:
    """
    Runs the service on one background event loop. Every access to the
    service, sync or async, goes through this thread so its state has a
    single owner.
    """

    def __init__(self):
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._run, name="quote-service-loop", daemon=True
        )
        self._thread.start()

    def _run(self):
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def run(self, coro, timeout=None):
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        try:
            return future.result(timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise

    def call(self, fn, *args, timeout=None, **kwargs):
        async def invoke():
            return fn(*args, **kwargs)

        return self.run(invoke(), timeout)

    def close(self):
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(timeout=5)


def _truthy(value) -> bool:
    return str(value or "").strip().lower() in {"1", "true", "yes", "y"}


def default_request_timeout(service: QuoteService) -> float:
    """Worst case for one lookup: every provider times out in turn."""
    attempts = max(1, len(service.providers))
    return service.config.fetch_timeout * attempts + REQUEST_TIMEOUT_MARGIN_SECONDS


def create_app(
    service: QuoteService, runner: ServiceLoop = None, request_timeout: float = None
) -> Flask:
    app = Flask(__name__)
    runner = runner or ServiceLoop()
    if request_timeout is None:
        request_timeout = default_request_timeout(service)
    app.extensions["quote_service"] = service
    app.extensions["quote_service_loop"] = runner
    register_error_handlers(app)

    def run(coro):
        try:
            return runner.run(coro, timeout=request_timeout)
        except concurrent.futures.TimeoutError:
            logger.warning("Quote service call exceeded %ss.", request_timeout)
            raise GatewayTimeout("The quote service took too long to answer.")

    def call(fn, *args, **kwargs):
        try:
            return runner.call(fn, *args, timeout=request_timeout, **kwargs)
        except concurrent.futures.TimeoutError:
            logger.warning("Quote service call exceeded %ss.", request_timeout)
            raise GatewayTimeout("The quote service took too long to answer.")

    @app.route("/health")
    def health():
        return jsonify(status="ok")

    @app.route("/api/daily")
    def api_daily():
        force = _truthy(request.args.get("force"))
        quote = run(service.get_daily_quote_async(force=force))
        return jsonify(quote_to_dict(quote))

    @app.route("/api/day/<day>")
    def api_day(day: str):
        date_key = datetime_handler.parse_date_key(day)
        if date_key is None:
            return error_response(
                status=400,
                code="invalid_date",
                message="Day must be formatted as YYYY-MM-DD.",
                details={"day": day},
            )
        quote = run(service.get_quote_by_day(date_key))
        return jsonify(quote_to_dict(quote))

    @app.route("/api/random")
    def api_random():
        source = request.args.get("source") or None
        quote = run(service.get_random_quote(source))
        return jsonify(quote_to_dict(quote))

    @app.route("/api/search")
    def api_search():
        query = request.args.get("query", "").strip()
        source = request.args.get("source") or None
        if not query:
            return jsonify(quotes=[], query=query)
        results = run(service.search_quotes(source, query))
        return jsonify(quotes=[quote_to_dict(q) for q in results], query=query)

    def _limit_arg(default: int = 10):
        raw_limit = request.args.get("limit", str(default))
        try:
            return min(max(int(raw_limit), 0), MAX_BULK_COUNT), None
        except ValueError:
            return None, error_response(
                status=400,
                code="invalid_limit",
                message="limit must be an integer.",
                details={"limit": raw_limit},
            )

    @app.route("/api/category/<category>")
    def api_category(category: str):
        limit, error = _limit_arg()
        if error is not None:
            return error
        quotes = run(service.get_quotes_by_category(category, limit))
        return jsonify(quotes=[quote_to_dict(q) for q in quotes], category=category)

    @app.route("/api/author/<author>")
    def api_author(author: str):
        limit, error = _limit_arg()
        if error is not None:
            return error
        quotes = run(service.get_quotes_by_author(author, limit))
        return jsonify(quotes=[quote_to_dict(q) for q in quotes], author=author)

    @app.route("/api/bulk")
    def api_bulk():
        raw_count = request.args.get("count", "5")
        try:
            count = int(raw_count)
        except ValueError:
            return error_response(
                status=400,
                code="invalid_count",
                message="count must be an integer.",
                details={"count": raw_count},
            )
        count = min(count, MAX_BULK_COUNT)
        raw_sources = request.args.get("sources", "")
        sources = [s.strip() for s in raw_sources.split(",") if s.strip()] or None
        include_local = _truthy(request.args.get("include_local"))
        quotes = run(
            service.get_bulk_quotes(count, sources=sources, include_local=include_local)
        )
        return jsonify(quotes=[quote_to_dict(q) for q in quotes], count=len(quotes))

    @app.route("/api/providers/health")
    def api_provider_health():
        return jsonify(providers=call(service.get_health_status))

    @app.route("/api/analytics")
    def api_analytics():
        return jsonify(call(service.get_analytics))

    @app.route("/api/quotes/<quote_id>/events", methods=["POST"])
    def api_quote_event(quote_id: str):
        data = request.get_json(silent=True) or {}
        event = str(data.get("event") or "").strip().lower()
        if event not in {"view", "like", "save"}:
            return error_response(
                status=400,
                code="invalid_event",
                message="event must be one of: view, like, save.",
            )
        quote = call(service.find_quote, quote_id)
        if quote is None:
            return error_response(
                status=404, code="quote_not_found", message="Quote not found."
            )
        run(service.record_event(quote, event))
        logger.info("Recorded %s for quote %s", event, quote_id)
        return ("", 204)

    @app.route("/api/source-weights", methods=["GET", "PUT"])
    def api_source_weights():
        if request.method == "GET":
            return jsonify(weights=call(service.get_source_weights))
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return error_response(
                status=400,
                code="invalid_weights",
                message="Body must be a JSON object of source weights.",
            )
        weights = call(service.update_source_weights, data)
        run(service.save_state())
        return jsonify(weights=weights)

    return app


def create_default_app() -> Flask:
    storage = SQLiteStorage(os.getenv("QUOTE_DB", "quotes.db"))
    service = QuoteService(storage, load_config_from_env())
    runner = ServiceLoop()
    runner.run(service.load_state())
    return create_app(service, runner)


if __name__ == "__main__":
    load_dotenv()
    logging.basicConfig(
        level=logging.INFO, format="[%(asctime)s] %(levelname)s: %(message)s"
    )
    host = os.getenv("API_HOST", "127.0.0.1")
    port = int(os.getenv("API_PORT", "8050"))
    create_default_app().run(debug=False, host=host, port=port)
