"""Flask error handlers rendering every failure as ``text/plain``.

:class:`~certomat.errors.GatewayError` subclasses carry their own
status; werkzeug HTTP exceptions keep theirs; anything else becomes a
500 whose body is the exception text.  Every error is logged as
``err <status> because: <detail>``.
"""

from __future__ import annotations

import logging
from http import HTTPStatus

from flask import Flask
from werkzeug.exceptions import HTTPException

from certomat.errors import GatewayError

log = logging.getLogger(__name__)


def _log_error(error: GatewayError) -> None:
    status = int(error.status)
    level = logging.ERROR if status >= HTTPStatus.INTERNAL_SERVER_ERROR else logging.WARNING
    log.log(level, "err %s because: %s", status, error.detail)


def register_error_handlers(app: Flask) -> None:
    """Attach handlers that produce plain-text responses for all errors."""

    @app.errorhandler(GatewayError)
    def _handle_gateway_error(exc: GatewayError):
        _log_error(exc)
        return exc.to_response()

    @app.errorhandler(HTTPException)
    def _handle_http_exception(exc: HTTPException):
        error = GatewayError(
            exc.description or exc.name,
            exc.code or HTTPStatus.INTERNAL_SERVER_ERROR,
        )
        _log_error(error)
        return error.to_response()

    @app.errorhandler(Exception)
    def _handle_unhandled(exc: Exception):
        # HTTPException and GatewayError are caught above
        log.exception("Unhandled exception during request")
        error = GatewayError(str(exc) or type(exc).__name__)
        _log_error(error)
        return error.to_response()
