# Overview: Product ledger; the only code that writes Product.quantity.

"""
RetailOps Stock Invariants (authoritative)

- Product.quantity is a stored counter, never negative after a commit.
- Every change goes through ONE conditional statement:
      UPDATE products SET quantity = quantity + :delta
      WHERE id = :id AND quantity + :delta >= 0
  The database evaluates the predicate against the row as it is at write
  time, so two concurrent decrements can never both succeed when their
  combined quantity exceeds stock. A zero rowcount is the authoritative
  "insufficient stock" answer; any earlier read is only advisory.
- Each adjustment is committed on its own. Callers that need several
  adjustments to behave as one unit (see stock_service) must compensate
  explicitly on failure.
"""

from __future__ import annotations

import logging

from sqlalchemy import update

from ..errors import InsufficientStockError, ProductNotFoundError, ValidationError
from ..extensions import db
from ..models import Product
from ..time_utils import utcnow
from .concurrency import run_with_retry

logger = logging.getLogger(__name__)


def _load_fresh(product_id: int) -> Product | None:
    return (
        db.session.query(Product)
        .filter_by(id=product_id)
        .populate_existing()
        .first()
    )


def get_product(product_id: int) -> Product:
    product = _load_fresh(product_id)
    if product is None:
        raise ProductNotFoundError(product_id)
    return product


def get_products(product_ids) -> dict[int, Product]:
    """Bulk read keyed by id; missing ids are simply absent from the result."""
    ids = set(product_ids)
    if not ids:
        return {}
    rows = (
        db.session.query(Product)
        .filter(Product.id.in_(ids))
        .populate_existing()
        .all()
    )
    return {p.id: p for p in rows}


def adjust_quantity(product_id: int, delta: int) -> Product:
    """
    Atomically apply ``delta`` to a product's quantity and commit.

    Negative delta reserves stock, positive delta releases it.

    Raises:
        ProductNotFoundError: no such product
        InsufficientStockError: the decrement would take quantity below zero
    """
    if isinstance(delta, bool) or not isinstance(delta, int):
        raise ValidationError("delta must be an integer", details={"delta": delta})

    def _op() -> bool:
        stmt = (
            update(Product)
            .where(Product.id == product_id, Product.quantity + delta >= 0)
            .values(quantity=Product.quantity + delta, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = db.session.execute(stmt)
        if not result.rowcount:
            db.session.rollback()
            return False
        db.session.commit()
        return True

    applied = run_with_retry(_op)
    product = _load_fresh(product_id)

    if product is None:
        raise ProductNotFoundError(product_id)
    if not applied:
        raise InsufficientStockError(product_id, available=product.quantity, requested=-delta)

    logger.debug("Product %s quantity %+d -> %d", product_id, delta, product.quantity)
    return product


def receive_stock(product_id: int, quantity: int, cost_price_cents: int | None = None) -> Product:
    """
    Record incoming stock (purchase receipt).

    Increments quantity and, when given, replaces cost_price_cents with the
    new acquisition cost in the same statement. Existing sale lines keep the
    cost they captured.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer", details={"quantity": quantity})

    values = {"quantity": Product.quantity + quantity, "updated_at": utcnow()}
    if cost_price_cents is not None:
        if isinstance(cost_price_cents, bool) or not isinstance(cost_price_cents, int) or cost_price_cents < 0:
            raise ValidationError(
                "cost_price_cents must be a non-negative integer",
                details={"cost_price_cents": cost_price_cents},
            )
        values["cost_price_cents"] = cost_price_cents

    def _op() -> int:
        stmt = (
            update(Product)
            .where(Product.id == product_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = db.session.execute(stmt)
        db.session.commit()
        return result.rowcount

    if not run_with_retry(_op):
        raise ProductNotFoundError(product_id)

    product = _load_fresh(product_id)
    logger.info(
        "Received %d units of product %s (cost %s), on hand %d",
        quantity, product_id, cost_price_cents, product.quantity,
    )
    return product
