# Overview: JSON response envelope and app-wide error handlers.

"""
Every endpoint answers with the same envelope:

    {"success": true,  "data": ...}
    {"success": false, "error": "...", "errors": {field: [msg]}, "details": {...}}

Decimals are serialized as strings by Flask's JSON provider.
"""

from __future__ import annotations

from flask import current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from ..errors import PosError
from ..extensions import db
from ..validation import PayloadReader, page_params


def ok(data=None, status: int = 200, **extra):
    body = {"success": True, "data": data}
    body.update(extra)
    return jsonify(body), status


def fail(exc: PosError):
    return jsonify(exc.to_dict()), exc.status_code


def server_error():
    return jsonify({"success": False, "error": "Internal server error"}), 500


def read_json() -> PayloadReader:
    return PayloadReader(request.get_json(silent=True))


def actor_id(reader: PayloadReader) -> int | None:
    """Acting user id, passed explicitly by the caller."""
    return reader.integer("user_id", minimum=1)


def pagination():
    return page_params(
        request.args,
        default_size=current_app.config.get("DEFAULT_PAGE_SIZE", 20),
        max_size=current_app.config.get("MAX_PAGE_SIZE", 100),
    )


def register_error_handlers(app) -> None:
    @app.errorhandler(PosError)
    def handle_pos_error(exc: PosError):
        db.session.rollback()
        return fail(exc)

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        return jsonify({"success": False, "error": exc.description or exc.name}), exc.code

    @app.errorhandler(Exception)
    def handle_unexpected(exc: Exception):
        db.session.rollback()
        current_app.logger.exception("Unhandled error on %s %s", request.method, request.path)
        return server_error()
