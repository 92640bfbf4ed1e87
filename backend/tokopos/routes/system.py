# Overview: Flask API routes for liveness checks.

from flask import Blueprint, current_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from .responses import ok

system_bp = Blueprint("system", __name__)


@system_bp.get("/health")
def health():
    """Liveness plus a trivial database round trip."""
    try:
        db.session.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError:
        current_app.logger.exception("Health check database query failed")
        db.session.rollback()
        database = "unavailable"
    return ok({"status": "ok", "database": database}, status=200 if database == "ok" else 503)
