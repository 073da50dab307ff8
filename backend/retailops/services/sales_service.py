"""
Sale Transaction Orchestrator

WHY: A sale and the N products it draws from must change together, but the
ledger commits each stock adjustment on its own. This module sequences the
steps so a failed request always leaves the system either exactly as it was
before, or exactly as the completed request describes.

WORKFLOWS (every entry point checks the authorization gate first):
- create:  validate -> reserve -> totals -> number -> persist
           persist failure => release reserved lines
- update:  load -> validate -> release old -> reserve new -> persist
           reserve failure => restore old lines
           persist failure => release new lines, restore old lines
- delete:  load -> release -> hard delete
           delete failure => restore lines
- refund:  load (AlreadyRefunded?) -> release -> mark refunded
           persist failure => restore lines

CONCURRENCY:
Sale rows are versioned. Update/delete/refund capture the version they
loaded and refuse to persist over a newer one (SaleConflictError), after
undoing their own stock effect. A failed compensation raises
CompensationFailureError and is logged at CRITICAL.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from typing import Any

from flask import current_app
from sqlalchemy.orm.exc import StaleDataError

from ..constants import (
    PaymentMethod,
    PaymentStatus,
    SaleAction,
    SaleStatus,
    SaleType,
    SALES_RESOURCE,
    parse_enum,
)
from ..errors import (
    AlreadyRefundedError,
    CompensationFailureError,
    InvalidSaleStateError,
    SaleConflictError,
    SaleNotFoundError,
    StoreNotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import Sale, SaleLine, Store
from ..time_utils import parse_iso_datetime, utcnow
from . import permission_service, pricing, stock_service
from .document_service import next_document_number
from .stock_service import LineSnapshot, StockRequest

logger = logging.getLogger(__name__)


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


@dataclass
class SalePatch:
    """
    Partial update of a sale. Fields left UNSET are not touched; an explicit
    None is a real value (e.g. clearing notes).
    """
    items: Any = UNSET
    discount_cents: Any = UNSET
    tax_cents: Any = UNSET
    payment_method: Any = UNSET
    payment_status: Any = UNSET
    notes: Any = UNSET
    store_id: Any = UNSET

    @classmethod
    def from_payload(cls, payload: dict) -> "SalePatch":
        names = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in payload.items() if key in names})

    def supplied(self) -> dict:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not UNSET
        }


# =============================================================================
# INPUT VALIDATION
# =============================================================================

def _coerce_int(value, field: str, *, minimum: int | None = None) -> int:
    """Strict integer coercion: ints and plain digit strings only."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be an integer", details={"field": field})

    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped or "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{field} must be a plain integer", details={"field": field})
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", details={"field": field})
    else:
        raise ValidationError(f"{field} must be an integer", details={"field": field})

    if minimum is not None and result < minimum:
        raise ValidationError(
            f"{field} must be at least {minimum}",
            details={"field": field, "value": result},
        )
    return result


def _coerce_amount(value, field: str) -> int:
    """Discount/tax in cents; absent means zero, negatives are rejected."""
    if value is None:
        return 0
    return _coerce_int(value, field, minimum=0)


def _coerce_notes(value) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError("notes must be a string", details={"field": "notes"})
    return value.strip() or None


def _parse_items(items) -> list[StockRequest]:
    if not items:
        raise ValidationError("At least one item is required", details={"field": "items"})
    if not isinstance(items, (list, tuple)):
        raise ValidationError("items must be a list", details={"field": "items"})

    requests = []
    for index, item in enumerate(items):
        if isinstance(item, StockRequest):
            product_id, quantity, unit_price = item.product_id, item.quantity, item.unit_price_cents
        elif isinstance(item, dict):
            product_id = item.get("product_id", item.get("product"))
            quantity = item.get("quantity")
            unit_price = item.get("unit_price_cents")
        else:
            raise ValidationError(f"items[{index}] must be an object", details={"field": f"items[{index}]"})

        requests.append(StockRequest(
            product_id=_coerce_int(product_id, f"items[{index}].product_id", minimum=1),
            quantity=_coerce_int(quantity, f"items[{index}].quantity", minimum=1),
            unit_price_cents=(
                None if unit_price is None
                else _coerce_int(unit_price, f"items[{index}].unit_price_cents", minimum=0)
            ),
        ))
    return requests


def _require_store(store_id) -> int:
    if store_id is None or store_id == "":
        raise ValidationError("store_id is required", details={"field": "store_id"})
    store_id = _coerce_int(store_id, "store_id", minimum=1)
    if db.session.get(Store, store_id) is None:
        raise StoreNotFoundError(store_id)
    return store_id


# =============================================================================
# HELPERS
# =============================================================================

def _authorize(actor, action: SaleAction) -> None:
    permission_service.require_permission(actor, action.value, SALES_RESOURCE)


def _get_sale_or_404(sale_id) -> Sale:
    sale = (
        db.session.query(Sale)
        .filter_by(id=sale_id)
        .populate_existing()
        .first()
    )
    if sale is None:
        raise SaleNotFoundError(sale_id)
    return sale


def _reload_for_write(sale_id: int, expected_version: int) -> Sale:
    """Fetch the current row and insist it is the version this request loaded."""
    sale = (
        db.session.query(Sale)
        .filter_by(id=sale_id)
        .populate_existing()
        .first()
    )
    if sale is None:
        raise SaleConflictError(
            f"Sale {sale_id} was deleted by another request",
            details={"sale_id": sale_id},
        )
    if sale.version_id != expected_version:
        raise SaleConflictError(
            f"Sale {sale_id} was modified by another request",
            details={"sale_id": sale_id, "expected_version": expected_version, "version": sale.version_id},
        )
    return sale


def _snapshot_of(line: SaleLine) -> LineSnapshot:
    return LineSnapshot(
        product_id=line.product_id,
        product_name=line.product_name,
        quantity=line.quantity,
        unit_price_cents=line.unit_price_cents,
        cost_price_cents=line.cost_price_cents,
    )


def _build_lines(snapshots: list[LineSnapshot]) -> list[SaleLine]:
    lines = []
    for number, snap in enumerate(snapshots, start=1):
        priced = pricing.price_line(snap.quantity, snap.unit_price_cents, snap.cost_price_cents)
        lines.append(SaleLine(
            line_number=number,
            product_id=snap.product_id,
            product_name=snap.product_name,
            quantity=snap.quantity,
            unit_price_cents=snap.unit_price_cents,
            total_price_cents=priced.total_price_cents,
            cost_price_cents=snap.cost_price_cents,
            profit_cents=priced.profit_cents,
        ))
    return lines


def _apply_totals(sale: Sale, discount_cents: int, tax_cents: int) -> None:
    totals = pricing.sale_totals(
        (line.total_price_cents for line in sale.lines),
        discount_cents,
        tax_cents,
    )
    sale.discount_cents = discount_cents
    sale.tax_cents = tax_cents
    sale.subtotal_cents = totals.subtotal_cents
    sale.total_amount_cents = totals.total_amount_cents

    if totals.total_amount_cents < 0:
        logger.warning(
            "Sale %s total is negative (%d cents): discount %d exceeds subtotal %d + tax %d",
            sale.sale_number, totals.total_amount_cents,
            discount_cents, totals.subtotal_cents, tax_cents,
        )


def _compensate(step, *, context: dict, cause: BaseException) -> None:
    """
    Run a compensating stock step after ``cause`` broke a workflow.

    Returns normally if the step succeeded (the caller then re-raises
    ``cause``); otherwise raises CompensationFailureError.
    """
    try:
        step()
    except Exception as exc:
        details = dict(context)
        details["original_error"] = str(cause)
        details["compensation_error"] = str(exc)
        if isinstance(exc, CompensationFailureError):
            details.update(exc.details)
        logger.critical(
            "Compensation failed; stock and sales may disagree and need manual reconciliation: %s",
            details,
        )
        raise CompensationFailureError(
            "Rollback after a failed sale operation did not complete",
            details=details,
            cause=cause,
        ) from exc

    logger.info("Compensated stock after failed sale operation: %s (%s)", context, cause)


def _sale_number_prefix() -> str:
    return current_app.config.get("SALE_NUMBER_PREFIX", "SALE")


# =============================================================================
# WORKFLOWS
# =============================================================================

def create_sale(
    actor,
    *,
    store_id,
    items,
    discount_cents=0,
    tax_cents=0,
    payment_method=PaymentMethod.CASH.value,
    notes=None,
    sale_type=SaleType.RETAIL.value,
) -> Sale:
    """
    Ring up a completed, paid sale and take its stock.

    Raises:
        PermissionDeniedError, ValidationError, StoreNotFoundError,
        ProductNotFoundError, InsufficientStockError (all with no side effect)
        CompensationFailureError: persisting failed and so did the release
    """
    _authorize(actor, SaleAction.CREATE)
    actor_id = actor.id

    requests = _parse_items(items)
    discount = _coerce_amount(discount_cents, "discount_cents")
    tax = _coerce_amount(tax_cents, "tax_cents")
    method = parse_enum(PaymentMethod, payment_method, "payment_method")
    kind = parse_enum(SaleType, sale_type, "sale_type")
    notes = _coerce_notes(notes)
    store_id = _require_store(store_id)

    snapshots = stock_service.reserve(requests)

    try:
        sale = Sale(
            sale_number=next_document_number(document_type="SALE", prefix=_sale_number_prefix()),
            store_id=store_id,
            status=SaleStatus.COMPLETED.value,
            payment_status=PaymentStatus.PAID.value,
            payment_method=method.value,
            sale_type=kind.value,
            notes=notes,
            sale_date=utcnow(),
            created_by_user_id=actor_id,
        )
        sale.lines = _build_lines(snapshots)
        _apply_totals(sale, discount, tax)

        db.session.add(sale)
        db.session.commit()
    except Exception as exc:
        db.session.rollback()
        _compensate(
            lambda: stock_service.release(snapshots),
            context={"operation": "create", "store_id": store_id},
            cause=exc,
        )
        raise

    logger.info(
        "Sale %s created by user %s: %d line(s), total %d cents",
        sale.sale_number, actor_id, len(snapshots), sale.total_amount_cents,
    )
    return sale


def update_sale(actor, sale_id, patch: SalePatch | dict) -> Sale:
    """
    Edit a completed sale in place (identity and sale_number are kept).

    When items are supplied the old lines are released BEFORE the new ones
    are reserved, so a sale can be switched to a combination that would not
    fit if both were held at once.
    """
    _authorize(actor, SaleAction.UPDATE)
    if isinstance(patch, dict):
        patch = SalePatch.from_payload(patch)
    supplied = patch.supplied()

    sale = _get_sale_or_404(sale_id)
    if sale.status == SaleStatus.REFUNDED.value:
        raise InvalidSaleStateError(
            f"Sale {sale_id} is refunded and can no longer be edited",
            details={"sale_id": sale_id, "status": sale.status},
        )

    # Validate the whole patch before touching stock
    requests = _parse_items(supplied["items"]) if "items" in supplied else None
    changes: dict[str, Any] = {}
    if "discount_cents" in supplied:
        changes["discount_cents"] = _coerce_amount(supplied["discount_cents"], "discount_cents")
    if "tax_cents" in supplied:
        changes["tax_cents"] = _coerce_amount(supplied["tax_cents"], "tax_cents")
    if "payment_method" in supplied:
        changes["payment_method"] = parse_enum(PaymentMethod, supplied["payment_method"], "payment_method").value
    if "payment_status" in supplied:
        status = parse_enum(PaymentStatus, supplied["payment_status"], "payment_status")
        if status is PaymentStatus.REFUNDED:
            raise ValidationError(
                "payment_status cannot be set to refunded; refund the sale instead",
                details={"field": "payment_status"},
            )
        changes["payment_status"] = status.value
    if "notes" in supplied:
        changes["notes"] = _coerce_notes(supplied["notes"])
    if "store_id" in supplied:
        changes["store_id"] = _require_store(supplied["store_id"])

    expected_version = sale.version_id
    old_lines = [_snapshot_of(line) for line in sale.lines]
    new_snapshots = None

    if requests is not None:
        stock_service.release(old_lines)
        try:
            new_snapshots = stock_service.reserve(requests)
        except Exception as exc:
            _compensate(
                lambda: stock_service.restore(old_lines),
                context={"operation": "update", "sale_id": sale_id, "step": "restore_after_reserve"},
                cause=exc,
            )
            raise

    try:
        sale = _reload_for_write(sale_id, expected_version)
        if new_snapshots is not None:
            sale.lines = _build_lines(new_snapshots)
        for name in ("payment_method", "payment_status", "notes", "store_id"):
            if name in changes:
                setattr(sale, name, changes[name])
        _apply_totals(
            sale,
            changes.get("discount_cents", sale.discount_cents),
            changes.get("tax_cents", sale.tax_cents),
        )
        sale.updated_at = utcnow()
        db.session.commit()
    except Exception as exc:
        db.session.rollback()
        if new_snapshots is not None:
            def _undo():
                stock_service.release(new_snapshots)
                stock_service.restore(old_lines)

            _compensate(
                _undo,
                context={"operation": "update", "sale_id": sale_id, "step": "persist"},
                cause=exc,
            )
        if isinstance(exc, StaleDataError):
            raise SaleConflictError(
                f"Sale {sale_id} was modified by another request",
                details={"sale_id": sale_id},
            ) from exc
        raise

    logger.info("Sale %s updated by user %s: fields=%s", sale.sale_number, actor.id, sorted(supplied))
    return sale


def delete_sale(actor, sale_id) -> dict:
    """
    Hard-delete a sale and give back the stock on its lines.

    Stock is released whatever the sale's status, refunded sales included.
    Returns the deleted sale as a dict.
    """
    _authorize(actor, SaleAction.DELETE)

    sale = _get_sale_or_404(sale_id)
    expected_version = sale.version_id
    lines = [_snapshot_of(line) for line in sale.lines]
    deleted = sale.to_dict()

    if sale.status == SaleStatus.REFUNDED.value:
        logger.warning("Deleting refunded sale %s: its stock is released again", sale.sale_number)

    stock_service.release(lines)

    try:
        sale = _reload_for_write(sale_id, expected_version)
        db.session.delete(sale)
        db.session.commit()
    except Exception as exc:
        db.session.rollback()
        _compensate(
            lambda: stock_service.restore(lines),
            context={"operation": "delete", "sale_id": sale_id},
            cause=exc,
        )
        if isinstance(exc, StaleDataError):
            raise SaleConflictError(
                f"Sale {sale_id} was modified by another request",
                details={"sale_id": sale_id},
            ) from exc
        raise

    logger.info("Sale %s deleted by user %s", deleted["sale_number"], actor.id)
    return deleted


def refund_sale(actor, sale_id, reason: str | None = None) -> Sale:
    """
    Refund a whole sale: restore its stock and mark it refunded.

    Not idempotent: a second refund raises AlreadyRefundedError and does
    not touch stock.
    """
    _authorize(actor, SaleAction.REFUND)
    actor_id = actor.id

    if reason is not None:
        if not isinstance(reason, str):
            raise ValidationError("reason must be a string", details={"field": "reason"})
        reason = reason.strip()[:255] or None

    sale = _get_sale_or_404(sale_id)
    if sale.status == SaleStatus.REFUNDED.value:
        raise AlreadyRefundedError(sale_id)

    expected_version = sale.version_id
    lines = [_snapshot_of(line) for line in sale.lines]

    stock_service.release(lines)

    try:
        sale = _reload_for_write(sale_id, expected_version)
        now = utcnow()
        sale.status = SaleStatus.REFUNDED.value
        sale.payment_status = PaymentStatus.REFUNDED.value
        sale.refunded_at = now
        sale.refunded_by_user_id = actor_id
        sale.refund_reason = reason
        sale.refund_amount_cents = sale.total_amount_cents
        sale.updated_at = now
        db.session.commit()
    except Exception as exc:
        db.session.rollback()
        _compensate(
            lambda: stock_service.restore(lines),
            context={"operation": "refund", "sale_id": sale_id},
            cause=exc,
        )
        if isinstance(exc, (SaleConflictError, StaleDataError)):
            current = db.session.query(Sale).filter_by(id=sale_id).populate_existing().first()
            if current is not None and current.status == SaleStatus.REFUNDED.value:
                raise AlreadyRefundedError(sale_id) from exc
            if isinstance(exc, StaleDataError):
                raise SaleConflictError(
                    f"Sale {sale_id} was modified by another request",
                    details={"sale_id": sale_id},
                ) from exc
        raise

    logger.info("Sale %s refunded by user %s (%d cents)", sale.sale_number, actor_id, sale.refund_amount_cents)
    return sale


# =============================================================================
# READ SIDE
# =============================================================================

def get_sale(actor, sale_id) -> Sale:
    _authorize(actor, SaleAction.READ)
    return _get_sale_or_404(sale_id)


def list_sales(
    actor,
    *,
    status=None,
    payment_status=None,
    store_id=None,
    start=None,
    end=None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Read-only listing for reporting, newest first.

    start/end are inclusive ISO-8601 bounds on sale_date. Without ``page``
    every match is returned; otherwise per_page defaults to 20 (max 100).
    """
    _authorize(actor, SaleAction.READ)

    query = db.session.query(Sale)
    if status:
        query = query.filter(Sale.status == parse_enum(SaleStatus, status, "status").value)
    if payment_status:
        query = query.filter(
            Sale.payment_status == parse_enum(PaymentStatus, payment_status, "payment_status").value
        )
    if store_id is not None:
        query = query.filter(Sale.store_id == _coerce_int(store_id, "store_id", minimum=1))

    for bound, op in ((start, "start"), (end, "end")):
        if not bound:
            continue
        try:
            when = parse_iso_datetime(bound)
        except ValueError:
            raise ValidationError(f"{op} must be an ISO-8601 datetime", details={"field": op})
        if op == "start":
            query = query.filter(Sale.sale_date >= when)
        else:
            query = query.filter(Sale.sale_date <= when)

    query = query.order_by(Sale.sale_date.desc(), Sale.id.desc())

    if page is None:
        sales = query.all()
        return {
            "items": [s.to_dict() for s in sales],
            "count": len(sales),
        }

    page = _coerce_int(page, "page", minimum=1)
    per_page = 20 if per_page is None else min(_coerce_int(per_page, "per_page", minimum=1), 100)

    total = query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    sales = query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [s.to_dict() for s in sales],
        "count": len(sales),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }
