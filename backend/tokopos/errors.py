# Overview: Error taxonomy shared by services and routes.
"""
Every business-rule violation is raised as a PosError subclass BEFORE the
first write of an operation, so the caller always sees an unchanged store.

Each error carries:
- message: human-readable summary
- details: structured payload (e.g. itemized stock shortfall)
- errors: per-field validation messages {field: [msg, ...]}
- status_code: HTTP status used by the JSON error handler
"""

from __future__ import annotations


class PosError(Exception):
    """Base class for typed rejections returned to the caller."""
    status_code = 400

    def __init__(
        self,
        message: str,
        details: dict | None = None,
        errors: dict[str, list[str]] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.errors = errors or {}

    def to_dict(self) -> dict:
        body = {"success": False, "error": self.message}
        if self.errors:
            body["errors"] = self.errors
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(PosError):
    """Malformed input or a business rule violated by the request itself."""


class NotFound(PosError):
    """Invoice/product/customer/etc. lookup miss."""
    status_code = 404


class ConflictError(PosError):
    """Uniqueness conflict (e.g., duplicate SKU)."""
    status_code = 409


class InsufficientStock(PosError):
    """
    One or more lines request more base units than are on hand.

    details["items"] lists every offending line:
    product_id, variant_id, variant_name, requested, available, shortfall
    """
    status_code = 409

    def __init__(self, items: list[dict], message: str = "Insufficient stock"):
        super().__init__(message, details={"items": items})
        self.items = items


class BalanceExceeded(PosError):
    """Credit balance use beyond what the customer has (or beyond the bill)."""


class ExchangeOverLimit(PosError):
    """Replacement value exceeds the value of the returned goods."""


class DebtOutstanding(PosError):
    """A return was requested against a sale that still has an active debt."""
    status_code = 409


class PersistenceFailure(PosError):
    """Storage-level abort. Always generic; the transaction was rolled back."""
    status_code = 500

    def __init__(self, message: str = "Transaction failed, nothing was saved"):
        super().__init__(message)
