"""JSON error payloads for the quote API."""

from __future__ import annotations

from typing import Any

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from quote_errors import QuoteServiceError


def build_error_payload(
    *,
    code: str,
    message: str,
    details: Any = None,
) -> dict[str, Any]:
    payload = {
        "code": str(code).strip() or "quote_error",
        "message": str(message).strip() or "Unknown error.",
        "details": details if details is not None else {},
    }
    # Older clients read "error" only.
    payload["error"] = payload["message"]
    return payload


def error_response(
    *,
    status: int,
    code: str,
    message: str,
    details: Any = None,
):
    body = build_error_payload(code=code, message=message, details=details)
    return jsonify(body), int(status)


def register_error_handlers(app: Flask) -> None:
    """Answer every error on the quote API with the JSON error payload."""

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        code = (e.name or "http_error").lower().replace(" ", "_")
        return error_response(status=e.code or 500, code=code, message=e.description)

    @app.errorhandler(QuoteServiceError)
    def handle_service_error(e):
        app.logger.warning("Quote service error: %s", e)
        return error_response(status=500, code="quote_service_error", message=str(e))

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        app.logger.error(
            "Unhandled exception",
            exc_info=(type(e), e, e.__traceback__),
        )
        return error_response(
            status=500,
            code="internal_error",
            message="The quote service hit an internal error.",
        )
