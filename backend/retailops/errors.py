"""
Typed errors raised by the sale transaction engine.

Every error carries a human-readable message plus a ``details`` dict that the
HTTP layer returns verbatim, so callers can tell which product or sale
caused the failure.
"""

from __future__ import annotations


class SaleError(Exception):
    """Base class for sale and stock operation errors."""

    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ValidationError(SaleError):
    """Request rejected before any side effect."""


class NotFoundError(SaleError):
    status_code = 404


class SaleNotFoundError(NotFoundError):
    def __init__(self, sale_id):
        super().__init__(f"Sale {sale_id} not found", details={"sale_id": sale_id})
        self.sale_id = sale_id


class ProductNotFoundError(NotFoundError):
    def __init__(self, product_id):
        super().__init__(f"Product {product_id} not found", details={"product_id": product_id})
        self.product_id = product_id


class StoreNotFoundError(NotFoundError):
    def __init__(self, store_id):
        super().__init__(f"Store {store_id} not found", details={"store_id": store_id})
        self.store_id = store_id


class InsufficientStockError(SaleError):
    status_code = 409

    def __init__(self, product_id, available: int, requested: int):
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"available {available}, requested {requested}",
            details={
                "product_id": product_id,
                "available": available,
                "requested": requested,
            },
        )
        self.product_id = product_id
        self.available = available
        self.requested = requested


class AlreadyRefundedError(SaleError):
    status_code = 409

    def __init__(self, sale_id):
        super().__init__(f"Sale {sale_id} already refunded", details={"sale_id": sale_id})
        self.sale_id = sale_id


class InvalidSaleStateError(SaleError):
    status_code = 409


class SaleConflictError(SaleError):
    """The sale changed underneath this request; nothing was applied."""

    status_code = 409


class CompensationFailureError(SaleError):
    """
    A rollback step failed. Stock and sale records may disagree and need
    manual reconciliation.
    """

    status_code = 500

    def __init__(self, message: str, details: dict | None = None, cause: BaseException | None = None):
        super().__init__(message, details)
        self.cause = cause
