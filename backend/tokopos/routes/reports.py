# Overview: Flask API routes for dashboard reports; parses input and returns JSON responses.

from flask import Blueprint, current_app, request

from ..errors import PosError, ValidationError
from ..services import reporting_service
from ..time_utils import parse_date_range
from ..validation import coerce_int
from .responses import fail, ok, server_error

reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


def _date_range():
    try:
        return parse_date_range(request.args.get("start"), request.args.get("end"))
    except ValueError:
        raise ValidationError(
            "start/end must be ISO-8601 dates with end >= start",
            errors={"query": ["start/end must be ISO-8601 dates with end >= start"]},
        )


@reports_bp.get("/summary")
def summary_route():
    """Query params: start, end (ISO-8601, inclusive)."""
    try:
        start, end = _date_range()
        return ok(reporting_service.sales_summary(start, end))
    except PosError as exc:
        return fail(exc)
    except Exception:
        current_app.logger.exception("Failed to build sales summary")
        return server_error()


@reports_bp.get("/top-products")
def top_products_route():
    """Query params: start, end, limit (default 10, max 100)."""
    try:
        start, end = _date_range()
        limit = coerce_int(request.args.get("limit", "10"), "limit")
        if limit < 1 or limit > 100:
            raise ValidationError("limit must be between 1 and 100", errors={"limit": ["must be between 1 and 100"]})
        return ok(reporting_service.top_products(start, end, limit=limit))
    except PosError as exc:
        return fail(exc)
    except Exception:
        current_app.logger.exception("Failed to build top products report")
        return server_error()
