# Overview: Error taxonomy shared by the billing and stock services.

"""
Billing errors carry a human message plus structured ``details`` so the API
layer can return them verbatim. ``code`` is the stable machine-readable kind.

Recoverability:
- Validation/stock errors abort before any write; the cart is untouched.
- PersistenceError before any write is fully recoverable (nothing changed).
- PartialCommit means a bill exists but stock is not fully adjusted. Do NOT
  retry the checkout; resume the bill's stock adjustments instead.
"""

from __future__ import annotations


class BillingError(Exception):
    """Base class for billing core errors."""
    code = "billing_error"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code, "details": self.details}


class ValidationError(BillingError, ValueError):
    """400-level input problem."""
    code = "validation_error"


class InvalidProductCode(ValidationError):
    code = "invalid_product_code"


class NotFound(BillingError, LookupError):
    code = "not_found"


class OutOfStock(BillingError):
    """Product has no stock and is not already in the cart."""
    code = "out_of_stock"


class InsufficientStock(BillingError):
    """Requested quantity exceeds available stock."""
    code = "insufficient_stock"


class InvalidOperation(BillingError):
    code = "invalid_operation"


class NoItemsSelected(InvalidOperation):
    code = "no_items_selected"


class PersistenceError(BillingError):
    """Store read/write failed."""
    code = "persistence_error"


class StockAdjustmentFailed(BillingError):
    """
    One stock adjustment failed. Adjustments applied before it stay applied;
    ``details`` lists ``applied`` and ``failed`` product codes.
    """
    code = "stock_adjustment_failed"


class PartialCommit(BillingError):
    """
    The financial record and the stock ledger disagree: one side was written,
    the other was not (fully). Needs reconciliation, not a blind retry.
    """
    code = "partial_commit"

    def __init__(self, message: str, bill_id: str, details: dict | None = None):
        details = dict(details or {})
        details.setdefault("bill_id", bill_id)
        super().__init__(message, details)
        self.bill_id = bill_id


class ImmutableRecordError(BillingError):
    """Attempt to modify or delete a persisted bill."""
    code = "immutable_record"
