from __future__ import annotations

from decimal import Decimal
from typing import Any

from tokopos.errors import ValidationError
from tokopos.money import to_decimal
from tokopos.time_utils import parse_iso_datetime


# Upper bound for any single money or quantity input.
# This prevents Numeric(14, x) overflow and nonsensical values.
MAX_AMOUNT = Decimal("999999999.99")


class PayloadReader:
    """
    Reads and coerces a JSON payload, collecting per-field errors.

    Usage:
        reader = PayloadReader(request.get_json(silent=True))
        qty = reader.decimal("qty", required=True, positive=True)
        reader.raise_if_errors()

    Every accessor returns None when the field is invalid; the accumulated
    errors are raised together as one ValidationError ({field: [msg, ...]}).
    """

    def __init__(self, payload: Any, prefix: str = ""):
        if payload is None:
            payload = {}
        self.errors: dict[str, list[str]] = {}
        self.prefix = prefix
        if not isinstance(payload, dict):
            self._add("_payload", "Invalid JSON payload")
            payload = {}
        self.payload = payload

    def _add(self, field: str, message: str) -> None:
        self.errors.setdefault(f"{self.prefix}{field}", []).append(message)

    def _missing(self, field: str, required: bool) -> bool:
        raw = self.payload.get(field)
        if raw is None or (isinstance(raw, str) and not raw.strip()):
            if required:
                self._add(field, "is required")
            return True
        return False

    def integer(self, field: str, *, required: bool = False, minimum: int | None = None) -> int | None:
        if self._missing(field, required):
            return None
        try:
            value = coerce_int(self.payload[field], field)
        except ValidationError as exc:
            self._add(field, exc.message)
            return None
        if minimum is not None and value < minimum:
            self._add(field, f"must be >= {minimum}")
            return None
        return value

    def decimal(
        self,
        field: str,
        *,
        required: bool = False,
        positive: bool = False,
        non_negative: bool = False,
        default: Decimal | None = None,
    ) -> Decimal | None:
        if self._missing(field, required):
            return default
        try:
            value = coerce_decimal(self.payload[field], field)
        except ValidationError as exc:
            self._add(field, exc.message)
            return None
        if positive and value <= 0:
            self._add(field, "must be greater than 0")
            return None
        if non_negative and value < 0:
            self._add(field, "must be >= 0")
            return None
        return value

    def boolean(self, field: str, *, default: bool = False) -> bool:
        raw = self.payload.get(field)
        if raw is None:
            return default
        if isinstance(raw, bool):
            return raw
        if isinstance(raw, str) and raw.strip().lower() in ("true", "1", "yes"):
            return True
        if isinstance(raw, str) and raw.strip().lower() in ("false", "0", "no", ""):
            return False
        self._add(field, "must be a boolean")
        return default

    def string(self, field: str, *, required: bool = False, max_length: int | None = None) -> str | None:
        if self._missing(field, required):
            return None
        value = str(self.payload[field]).strip()
        if max_length is not None and len(value) > max_length:
            self._add(field, f"exceeds max length {max_length}")
            return None
        return value

    def choice(self, field: str, choices: tuple[str, ...], *, required: bool = False) -> str | None:
        value = self.string(field, required=required)
        if value is None:
            return None
        if value not in choices:
            self._add(field, f"must be one of: {', '.join(choices)}")
            return None
        return value

    def datetime(self, field: str):
        if self._missing(field, False):
            return None
        try:
            return parse_iso_datetime(str(self.payload[field]))
        except ValueError:
            self._add(field, "must be an ISO-8601 datetime")
            return None

    def items(self, field: str, *, required: bool = True) -> list[dict]:
        raw = self.payload.get(field)
        if raw is None:
            if required:
                self._add(field, "is required")
            return []
        if not isinstance(raw, list):
            self._add(field, "must be a list")
            return []
        if required and not raw:
            self._add(field, "must contain at least one item")
        rows = []
        for idx, row in enumerate(raw):
            if not isinstance(row, dict):
                self._add(f"{field}[{idx}]", "must be an object")
                continue
            rows.append(row)
        return rows

    def nested(self, payload: Any, prefix: str) -> "PayloadReader":
        """Reader for a nested object whose errors land in this reader."""
        child = PayloadReader(payload, prefix=f"{self.prefix}{prefix}")
        child.errors = self.errors
        return child

    def raise_if_errors(self, message: str = "Validation failed") -> None:
        if self.errors:
            raise ValidationError(message, errors=self.errors)


def coerce_int(value: Any, field: str = "value") -> int:
    """Strict int: rejects bools, floats, decimals and scientific notation."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def coerce_decimal(value: Any, field: str = "value") -> Decimal:
    """Decimal from int/str/float JSON input, bounded by MAX_AMOUNT."""
    try:
        result = to_decimal(value)
    except ValueError:
        raise ValidationError(f"{field} must be a number")
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    if abs(result) > MAX_AMOUNT:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT}")
    return result


def page_params(args, *, default_size: int, max_size: int) -> tuple[int, int]:
    """page/per_page query args, clamped to [1, max_size]."""
    try:
        page = max(1, coerce_int(args.get("page", "1"), "page"))
        per_page = coerce_int(args.get("per_page", str(default_size)), "per_page")
    except ValidationError as exc:
        raise ValidationError(exc.message, errors={"query": [exc.message]})
    per_page = min(max(1, per_page), max_size)
    return page, per_page
