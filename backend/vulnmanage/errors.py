# backend/vulnmanage/errors.py
from __future__ import annotations

import json
import logging
from typing import Iterable, List

from flask import jsonify, request
from flask.signals import got_request_exception
from werkzeug.exceptions import BadRequest, HTTPException, NotFound

log = logging.getLogger(__name__)

# Both app.logger and the module loggers propagate to the root logger, so once
# start_log() has run they all land in the same rotating files.


class FilterError(Exception):
    """Base class for errors raised around filter compilation."""


class UnknownResourceType(FilterError, LookupError):
    """No column tables exist for the resource type.  This is a caller bug."""

    def __init__(self, resource_type: str):
        self.resource_type = resource_type
        super().__init__(f"No column tables for resource type {resource_type!r}")


class FilterNotFound(FilterError, LookupError):
    """A stored filter referenced by UUID does not exist."""

    def __init__(self, filt_id: str):
        self.filt_id = filt_id
        super().__init__(f"Failed to find filter {filt_id!r}")


class InvalidFilterColumn(FilterError, ValueError):
    """Filter names a column that does not exist (strict mode only)."""

    def __init__(self, columns: Iterable[str]):
        self.columns: List[str] = list(columns)
        super().__init__("Invalid filter column: " + ", ".join(self.columns))


def _json_response(e: HTTPException):
    resp = e.get_response()
    payload = {
        "ok": False,
        "error": e.name,
        "code": e.code,
        "description": e.description,
        "path": request.path,
        "method": request.method,
    }
    resp.data = json.dumps(payload)
    resp.content_type = "application/json"
    return resp


def register_error_handlers(app):
    setup_signals(app)

    @app.errorhandler(HTTPException)
    def handle_http(e: HTTPException):
        app.logger.warning("HTTP %s on %s %s", e.code, request.method, request.path, exc_info=e)
        return _json_response(e)

    @app.errorhandler(UnknownResourceType)
    def handle_unknown_type(e: UnknownResourceType):
        app.logger.warning("Unknown resource type %r on %s", e.resource_type, request.path)
        return _json_response(NotFound(description=str(e)))

    @app.errorhandler(FilterNotFound)
    def handle_missing_filter(e: FilterNotFound):
        app.logger.info("Missing stored filter %r on %s", e.filt_id, request.path)
        return _json_response(NotFound(description=str(e)))

    @app.errorhandler(InvalidFilterColumn)
    def handle_invalid_column(e: InvalidFilterColumn):
        app.logger.info("Rejected filter on %s: %s", request.path, e)
        return _json_response(BadRequest(description=str(e)))

    @app.errorhandler(Exception)
    def handle_uncaught(e: Exception):
        app.logger.exception("Unhandled exception")
        return jsonify(ok=False, error="Internal Server Error"), 500

    @app.teardown_request
    def log_teardown(exc):
        if exc is not None:
            app.logger.exception("Teardown exception", exc_info=exc)
        return None


def setup_signals(app):
    def on_exc(sender, exception, **extra):
        app.logger.exception("Signal caught exception")
    got_request_exception.connect(on_exc, app)
