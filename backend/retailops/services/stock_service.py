# Overview: Applies and reverts the stock effect of a set of sale lines.

"""
Stock reconciliation for sale workflows.

CONTRACT:
- reserve(): all-or-nothing per call. Lines are decremented in the order
  given; if any decrement fails, every decrement already applied by this
  call is reverted before the error propagates. Callers never observe a
  partially reserved batch.
- release(): inverse of reserve. Products deleted since the sale are
  skipped with a warning (their stock no longer exists to restore).
- restore(): re-applies the stock effect of lines that were already
  captured, without re-snapshotting prices. Used by compensation paths.
- If reverting a partial batch fails, CompensationFailureError is raised:
  stock may now be wrong and needs manual reconciliation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

from ..errors import CompensationFailureError, ProductNotFoundError, ValidationError
from . import inventory_service

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StockRequest:
    """A requested line: product, quantity and optional price override."""
    product_id: int
    quantity: int
    unit_price_cents: int | None = None


@dataclass(frozen=True)
class LineSnapshot:
    """What a reserved line looked like at the moment stock was taken."""
    product_id: int
    product_name: str
    quantity: int
    unit_price_cents: int
    cost_price_cents: int


def reserve(requests: Sequence[StockRequest]) -> list[LineSnapshot]:
    """
    Take stock for every request and return the captured snapshots.

    Raises:
        ValidationError: a request has a non-positive quantity
        ProductNotFoundError: a product does not exist (nothing is touched)
        InsufficientStockError: reported by the write itself; earlier
            decrements from this call have been reverted
        CompensationFailureError: the revert itself failed
    """
    for request in requests:
        if request.quantity <= 0:
            raise ValidationError(
                "quantity must be greater than zero",
                details={"product_id": request.product_id, "quantity": request.quantity},
            )

    products = inventory_service.get_products(r.product_id for r in requests)
    snapshots = []
    for request in requests:
        product = products.get(request.product_id)
        if product is None:
            raise ProductNotFoundError(request.product_id)
        unit_price = request.unit_price_cents
        if unit_price is None:
            unit_price = product.price_cents
        snapshots.append(
            LineSnapshot(
                product_id=product.id,
                product_name=product.name,
                quantity=request.quantity,
                unit_price_cents=unit_price,
                cost_price_cents=product.cost_price_cents,
            )
        )

    _apply_batch([(s.product_id, -s.quantity) for s in snapshots], skip_missing=False)
    return snapshots


def release(lines: Iterable) -> None:
    """Give back the stock held by ``lines`` (anything with product_id and quantity)."""
    _apply_batch([(line.product_id, line.quantity) for line in lines], skip_missing=True)


def restore(lines: Iterable) -> None:
    """Take stock again for lines that were previously released."""
    _apply_batch([(line.product_id, -line.quantity) for line in lines], skip_missing=True)


def _apply_batch(deltas: list[tuple[int, int]], *, skip_missing: bool) -> None:
    applied: list[tuple[int, int]] = []
    for product_id, delta in deltas:
        try:
            inventory_service.adjust_quantity(product_id, delta)
        except ProductNotFoundError:
            if not skip_missing:
                _revert(applied)
                raise
            logger.warning(
                "Product %s no longer exists; skipping stock adjustment of %+d",
                product_id, delta,
            )
            continue
        except Exception:
            _revert(applied)
            raise
        applied.append((product_id, delta))


def _revert(applied: list[tuple[int, int]]) -> None:
    failed = []
    last_exc = None
    for product_id, delta in reversed(applied):
        try:
            inventory_service.adjust_quantity(product_id, -delta)
        except ProductNotFoundError:
            logger.warning("Product %s vanished while reverting a stock batch", product_id)
        except Exception as exc:
            failed.append({"product_id": product_id, "delta": -delta, "error": str(exc)})
            last_exc = exc

    if failed:
        logger.critical("Stock batch revert failed; manual reconciliation needed: %s", failed)
        raise CompensationFailureError(
            "Could not revert partially applied stock adjustments",
            details={"failed_adjustments": failed},
            cause=last_exc,
        ) from last_exc
