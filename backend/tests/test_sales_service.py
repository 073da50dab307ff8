"""
Sale transaction orchestrator.

Verifies:
- Totals are recomputed from lines (subtotal - discount + tax) on every write
- Stock moves with the sale on create/update/delete/refund
- Failed steps leave stock exactly as it was before the request
- A failed compensation surfaces as CompensationFailureError
- Concurrent modification is detected and compensated
- The authorization gate runs before anything else
"""

import logging
import re

import pytest
from sqlalchemy import text, update

from retailops.errors import (
    AlreadyRefundedError,
    CompensationFailureError,
    InsufficientStockError,
    InvalidSaleStateError,
    SaleConflictError,
    SaleError,
    SaleNotFoundError,
    StoreNotFoundError,
    ValidationError,
)
from retailops.extensions import db
from retailops.models import Sale, SaleLine
from retailops.services import inventory_service, sales_service, stock_service
from retailops.services.permission_service import PermissionDeniedError
from retailops.services.sales_service import SalePatch, UNSET


def _sell(actor, store, items, **kwargs):
    return sales_service.create_sale(actor, store_id=store.id, items=items, **kwargs)


def _sale_count():
    return db.session.query(Sale).count()


def _bump_version(sale_id, **values):
    """Simulate another request committing a change to the sale."""
    db.session.execute(
        update(Sale)
        .where(Sale.id == sale_id)
        .values(version_id=Sale.version_id + 1, **values)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()


def _assert_totals_consistent(sale):
    assert sale.subtotal_cents == sum(line.total_price_cents for line in sale.lines)
    assert sale.total_amount_cents == sale.subtotal_cents - sale.discount_cents + sale.tax_cents
    for line in sale.lines:
        assert line.total_price_cents == line.quantity * line.unit_price_cents
        assert line.profit_cents == (line.unit_price_cents - line.cost_price_cents) * line.quantity


# =============================================================================
# CREATE
# =============================================================================


class TestCreateSale:

    def test_single_line_sale(self, admin, store, product_a, stock_of):
        sale = _sell(admin, store, [{"product_id": product_a.id, "quantity": 4}])

        assert sale.subtotal_cents == 2000
        assert sale.total_amount_cents == 2000
        assert sale.total_profit_cents == 800
        assert sale.status == "completed"
        assert sale.payment_status == "paid"
        assert sale.payment_method == "cash"
        assert sale.sale_type == "retail"
        assert sale.created_by_user_id == admin.id
        assert re.fullmatch(r"SALE-\d{8}-\d{6}", sale.sale_number)

        (line,) = sale.lines
        assert line.product_name == "Product A"
        assert line.unit_price_cents == 500
        assert line.cost_price_cents == 300
        assert stock_of(product_a.id) == 6

    def test_discount_and_tax(self, admin, store, product_a, product_c):
        sale = _sell(
            admin, store,
            [
                {"product_id": product_a.id, "quantity": 2},
                {"product_id": product_c.id, "quantity": 3},
            ],
            discount_cents=150,
            tax_cents=75,
            payment_method="card",
            sale_type="wholesale",
            notes="  counter 2  ",
        )

        assert sale.subtotal_cents == 1750
        assert sale.total_amount_cents == 1675
        assert [line.line_number for line in sale.lines] == [1, 2]
        assert sale.payment_method == "card"
        assert sale.sale_type == "wholesale"
        assert sale.notes == "counter 2"
        _assert_totals_consistent(sale)

    def test_unit_price_override_below_cost(self, admin, store, product_a):
        sale = _sell(admin, store, [{"product_id": product_a.id, "quantity": 2, "unit_price_cents": 250}])

        (line,) = sale.lines
        assert line.total_price_cents == 500
        assert line.profit_cents == -100

    def test_cost_is_snapshotted(self, admin, store, product_a):
        sale = _sell(admin, store, [{"product_id": product_a.id, "quantity": 1}])
        sale_id = sale.id

        inventory_service.receive_stock(product_a.id, 5, cost_price_cents=999)

        line = db.session.query(SaleLine).filter_by(sale_id=sale_id).one()
        assert line.cost_price_cents == 300

    def test_negative_total_is_kept_and_logged(self, caplog, admin, store, product_c):
        caplog.set_level(logging.WARNING, logger="retailops.services.sales_service")

        sale = _sell(admin, store, [{"product_id": product_c.id, "quantity": 1}], discount_cents=400)

        assert sale.total_amount_cents == -150
        assert any("negative" in r.getMessage() for r in caplog.records)

    def test_sale_numbers_are_unique_and_sequential(self, admin, store, product_a):
        first = _sell(admin, store, [{"product_id": product_a.id, "quantity": 1}])
        second = _sell(admin, store, [{"product_id": product_a.id, "quantity": 1}])

        assert first.sale_number != second.sale_number
        assert first.sale_number.endswith("-000001")
        assert second.sale_number.endswith("-000002")

    def test_out_of_stock_product(self, admin, store, product_b, stock_of):
        with pytest.raises(InsufficientStockError) as exc_info:
            _sell(admin, store, [{"product_id": product_b.id, "quantity": 3}])

        assert exc_info.value.details == {"product_id": product_b.id, "available": 0, "requested": 3}
        assert stock_of(product_b.id) == 0
        assert _sale_count() == 0

    def test_multi_line_is_all_or_nothing(self, admin, store, product_a, product_b, stock_of):
        with pytest.raises(InsufficientStockError):
            _sell(admin, store, [
                {"product_id": product_a.id, "quantity": 3},
                {"product_id": product_b.id, "quantity": 1},
            ])

        assert stock_of(product_a.id) == 10
        assert _sale_count() == 0

    @pytest.mark.parametrize(
        "build",
        [
            lambda pid, sid: {"store_id": sid, "items": []},
            lambda pid, sid: {"store_id": sid, "items": None},
            lambda pid, sid: {"store_id": sid, "items": [{"product_id": pid, "quantity": 0}]},
            lambda pid, sid: {"store_id": sid, "items": [{"product_id": pid, "quantity": -2}]},
            lambda pid, sid: {"store_id": sid, "items": [{"product_id": pid, "quantity": 1.5}]},
            lambda pid, sid: {"store_id": sid, "items": [{"product_id": pid, "quantity": "2.5"}]},
            lambda pid, sid: {"store_id": sid, "items": [{"product_id": pid, "quantity": True}]},
            lambda pid, sid: {"store_id": sid, "items": [{"product_id": pid, "quantity": 1, "unit_price_cents": -1}]},
            lambda pid, sid: {"store_id": sid, "items": [{"quantity": 1}]},
            lambda pid, sid: {"store_id": sid, "items": ["not-an-object"]},
            lambda pid, sid: {"store_id": sid, "items": [{"product_id": pid, "quantity": 1}], "discount_cents": -5},
            lambda pid, sid: {"store_id": sid, "items": [{"product_id": pid, "quantity": 1}], "tax_cents": "abc"},
            lambda pid, sid: {"store_id": sid, "items": [{"product_id": pid, "quantity": 1}], "payment_method": "bitcoin"},
            lambda pid, sid: {"store_id": sid, "items": [{"product_id": pid, "quantity": 1}], "sale_type": "layaway"},
            lambda pid, sid: {"store_id": None, "items": [{"product_id": pid, "quantity": 1}]},
        ],
    )
    def test_invalid_input_has_no_side_effect(self, admin, store, product_a, stock_of, build):
        with pytest.raises(ValidationError):
            sales_service.create_sale(admin, **build(product_a.id, store.id))

        assert stock_of(product_a.id) == 10
        assert _sale_count() == 0

    def test_unknown_store(self, admin, product_a, stock_of):
        with pytest.raises(StoreNotFoundError):
            sales_service.create_sale(admin, store_id=987654, items=[{"product_id": product_a.id, "quantity": 1}])
        assert stock_of(product_a.id) == 10

    def test_digit_strings_are_accepted(self, admin, store, product_a, stock_of):
        sale = sales_service.create_sale(
            admin,
            store_id=str(store.id),
            items=[{"product_id": str(product_a.id), "quantity": "3"}],
            discount_cents="100",
        )
        assert sale.total_amount_cents == 1400
        assert stock_of(product_a.id) == 7

    def test_persist_failure_releases_stock(self, monkeypatch, admin, store, product_a, stock_of):
        def boom(**kwargs):
            raise RuntimeError("sequence table locked")

        monkeypatch.setattr(sales_service, "next_document_number", boom)

        with pytest.raises(RuntimeError, match="sequence table locked"):
            _sell(admin, store, [{"product_id": product_a.id, "quantity": 4}])

        assert stock_of(product_a.id) == 10
        assert _sale_count() == 0

    def test_failed_release_is_compensation_failure(self, monkeypatch, caplog, admin, store, product_a, stock_of):
        caplog.set_level(logging.CRITICAL, logger="retailops.services.sales_service")

        def boom(**kwargs):
            raise RuntimeError("sequence table locked")

        def release_fails(lines):
            raise RuntimeError("ledger down")

        monkeypatch.setattr(sales_service, "next_document_number", boom)
        monkeypatch.setattr(stock_service, "release", release_fails)

        with pytest.raises(CompensationFailureError) as exc_info:
            _sell(admin, store, [{"product_id": product_a.id, "quantity": 4}])

        err = exc_info.value
        assert err.status_code == 500
        assert err.details["operation"] == "create"
        assert err.details["compensation_error"] == "ledger down"
        assert isinstance(err.cause, RuntimeError)
        assert any(r.levelno == logging.CRITICAL for r in caplog.records)
        # The reservation could not be given back
        assert stock_of(product_a.id) == 6


# =============================================================================
# UPDATE
# =============================================================================


class TestUpdateSale:

    def test_reduce_quantity(self, admin, store, product_a, stock_of):
        sale = _sell(admin, store, [{"product_id": product_a.id, "quantity": 4}])
        sale_id, number, version = sale.id, sale.sale_number, sale.version_id

        updated = sales_service.update_sale(
            admin, sale_id, SalePatch(items=[{"product_id": product_a.id, "quantity": 2}])
        )

        assert updated.id == sale_id
        assert updated.sale_number == number
        assert updated.version_id > version
        assert updated.subtotal_cents == 1000
        assert updated.total_amount_cents == 1000
        assert stock_of(product_a.id) == 8
        _assert_totals_consistent(updated)

    def test_swap_product(self, admin, store, product_a, product_c, stock_of):
        sale = _sell(admin, store, [{"product_id": product_a.id, "quantity": 4}])

        updated = sales_service.update_sale(
            admin, sale.id, {"items": [{"product_id": product_c.id, "quantity": 5}]}
        )

        assert [line.product_id for line in updated.lines] == [product_c.id]
        assert updated.subtotal_cents == 1250
        assert stock_of(product_a.id) == 10
        assert stock_of(product_c.id) == 0

    def test_released_stock_is_available_to_new_lines(self, admin, store, product_a, stock_of):
        sale = _sell(admin, store, [{"product_id": product_a.id, "quantity": 10}])
        assert stock_of(product_a.id) == 0

        updated = sales_service.update_sale(
            admin, sale.id, SalePatch(items=[{"product_id": product_a.id, "quantity": 10, "unit_price_cents": 450}])
        )

        assert updated.subtotal_cents == 4500
        assert stock_of(product_a.id) == 0

    def test_insufficient_stock_restores_old_lines(self, admin, store, product_a, stock_of):
        sale = _sell(admin, store, [{"product_id": product_a.id, "quantity": 4}])
        sale_id = sale.id

        with pytest.raises(InsufficientStockError):
            sales_service.update_sale(
                admin, sale_id, SalePatch(items=[{"product_id": product_a.id, "quantity": 20}])
            )

        assert stock_of(product_a.id) == 6
        current = sales_service.get_sale(admin, sale_id)
        assert [line.quantity for line in current.lines] == [4]
        assert current.subtotal_cents == 2000

    def test_only_supplied_fields_change(self, admin, store, product_a, stock_of):
        sale = _sell(admin, store, [{"product_id": product_a.id, "quantity": 4}], notes="keep me", tax_cents=40)

        updated = sales_service.update_sale(admin, sale.id, SalePatch(discount_cents=500))

        assert updated.discount_cents == 500
        assert updated.tax_cents == 40
        assert updated.total_amount_cents == 1540
        assert updated.notes == "keep me"
        assert stock_of(product_a.id) == 6

    def test_explicit_none_clears_notes(self, admin, store, product_a):
        sale = _sell(admin, store, [{"product_id": product_a.id, "quantity": 1}], notes="temporary")

        updated = sales_service.update_sale(admin, sale.id, SalePatch(notes=None))
        assert updated.notes is None

    def test_payment_fields(self, admin, store, product_a):
        sale = _sell(admin, store, [{"product_id": product_a.id, "quantity": 1}])

        updated = sales_service.update_sale(
            admin, sale.id, SalePatch(payment_method="upi", payment_status="partial")
        )
        assert updated.payment_method == "upi"
        assert updated.payment_status == "partial"

    def test_cannot_mark_refunded_through_update(self, admin, store, product_a):
        sale = _sell(admin, store, [{"product_id": product_a.id, "quantity": 1}])
        with pytest.raises(ValidationError):
            sales_service.update_sale(admin, sale.id, SalePatch(payment_status="refunded"))

    def test_refunded_sale_cannot_be_updated(self, admin, store, product_a, stock_of):
        sale = _sell(admin, store, [{"product_id": product_a.id, "quantity": 4}])
        sales_service.refund_sale(admin, sale.id)

        with pytest.raises(InvalidSaleStateError):
            sales_service.update_sale(admin, sale.id, SalePatch(items=[{"product_id": product_a.id, "quantity": 1}]))
        assert stock_of(product_a.id) == 10

    def test_missing_sale(self, admin, db_session):
        with pytest.raises(SaleNotFoundError):
            sales_service.update_sale(admin, 31337, SalePatch(notes="x"))

    def test_persist_failure_compensates(self, monkeypatch, admin, store, product_a, product_c, stock_of):
        sale = _sell(admin, store, [{"product_id": product_a.id, "quantity": 4}])
        sale_id = sale.id

        def broken_totals(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(sales_service, "_apply_totals", broken_totals)

        with pytest.raises(RuntimeError, match="disk full"):
            sales_service.update_sale(
                admin, sale_id, SalePatch(items=[{"product_id": product_c.id, "quantity": 2}])
            )

        assert stock_of(product_a.id) == 6
        assert stock_of(product_c.id) == 5
        current = sales_service.get_sale(admin, sale_id)
        assert [line.product_id for line in current.lines] == [product_a.id]

    def test_concurrent_modification_is_a_conflict(self, monkeypatch, admin, store, product_a, stock_of):
        sale = _sell(admin, store, [{"product_id": product_a.id, "quantity": 4}])
        sale_id = sale.id
        real_reserve = stock_service.reserve

        def reserve_then_edited_elsewhere(requests):
            snapshots = real_reserve(requests)
            _bump_version(sale_id, notes="edited elsewhere")
            return snapshots

        monkeypatch.setattr(stock_service, "reserve", reserve_then_edited_elsewhere)

        with pytest.raises(SaleConflictError):
            sales_service.update_sale(
                admin, sale_id, SalePatch(items=[{"product_id": product_a.id, "quantity": 2}])
            )

        assert stock_of(product_a.id) == 6
        current = sales_service.get_sale(admin, sale_id)
        assert current.notes == "edited elsewhere"
        assert [line.quantity for line in current.lines] == [4]


class TestSalePatch:

    def test_from_payload_ignores_unknown_keys(self):
        patch = SalePatch.from_payload({"notes": None, "total_amount_cents": 1, "sale_number": "X"})
        assert patch.supplied() == {"notes": None}
        assert patch.items is UNSET

    def test_unset_is_falsy(self):
        assert not UNSET
        assert repr(UNSET) == "UNSET"


# =============================================================================
# DELETE
# =============================================================================


class TestDeleteSale:

    def test_create_then_delete_restores_stock(self, admin, store, product_a, product_c, stock_of):
        sale = _sell(admin, store, [
            {"product_id": product_a.id, "quantity": 4},
            {"product_id": product_c.id, "quantity": 5},
        ])
        sale_id = sale.id

        deleted = sales_service.delete_sale(admin, sale_id)

        assert deleted["id"] == sale_id
        assert len(deleted["items"]) == 2
        assert stock_of(product_a.id) == 10
        assert stock_of(product_c.id) == 5
        assert db.session.get(Sale, sale_id) is None
        assert db.session.query(SaleLine).filter_by(sale_id=sale_id).count() == 0

    def test_deleting_refunded_sale_releases_stock_again(self, caplog, admin, store, product_a, stock_of):
        sale = _sell(admin, store, [{"product_id": product_a.id, "quantity": 4}])
        sale_id = sale.id
        sales_service.refund_sale(admin, sale_id)
        assert stock_of(product_a.id) == 10

        caplog.set_level(logging.WARNING, logger="retailops.services.sales_service")
        sales_service.delete_sale(admin, sale_id)

        assert stock_of(product_a.id) == 14
        assert db.session.get(Sale, sale_id) is None
        assert any("refunded sale" in r.getMessage() for r in caplog.records)

    def test_delete_failure_restores_stock(self, monkeypatch, admin, store, product_a, stock_of):
        sale = _sell(admin, store, [{"product_id": product_a.id, "quantity": 4}])
        sale_id = sale.id

        def reload_fails(*args, **kwargs):
            raise RuntimeError("connection reset")

        monkeypatch.setattr(sales_service, "_reload_for_write", reload_fails)

        with pytest.raises(RuntimeError):
            sales_service.delete_sale(admin, sale_id)

        assert stock_of(product_a.id) == 6
        assert db.session.get(Sale, sale_id) is not None

    def test_deleted_product_is_skipped(self, db_session, admin, store, product_a, product_c, stock_of):
        a_id, c_id = product_a.id, product_c.id
        sale = _sell(admin, store, [
            {"product_id": a_id, "quantity": 1},
            {"product_id": c_id, "quantity": 1},
        ])
        sale_id = sale.id
        db_session.execute(text("DELETE FROM products WHERE id = :id"), {"id": c_id})
        db_session.commit()

        sales_service.delete_sale(admin, sale_id)
        assert stock_of(a_id) == 10

    def test_missing_sale(self, admin, db_session):
        with pytest.raises(SaleNotFoundError):
            sales_service.delete_sale(admin, 404)


# =============================================================================
# REFUND
# =============================================================================


class TestRefundSale:

    def test_refund_restores_stock_and_keeps_record(self, manager, store, product_a, stock_of):
        sale = _sell(manager, store, [{"product_id": product_a.id, "quantity": 4}], tax_cents=120)

        refunded = sales_service.refund_sale(manager, sale.id, reason="  damaged box  ")

        assert refunded.status == "refunded"
        assert refunded.payment_status == "refunded"
        assert refunded.refund_amount_cents == 2120
        assert refunded.refund_reason == "damaged box"
        assert refunded.refunded_by_user_id == manager.id
        assert refunded.refunded_at is not None
        assert stock_of(product_a.id) == 10
        _assert_totals_consistent(refunded)

    def test_second_refund_is_rejected(self, admin, store, product_a, stock_of):
        sale = _sell(admin, store, [{"product_id": product_a.id, "quantity": 4}])
        sales_service.refund_sale(admin, sale.id)

        with pytest.raises(AlreadyRefundedError):
            sales_service.refund_sale(admin, sale.id)
        assert stock_of(product_a.id) == 10

    def test_losing_concurrent_refund(self, monkeypatch, admin, store, product_a, stock_of):
        sale = _sell(admin, store, [{"product_id": product_a.id, "quantity": 4}])
        sale_id = sale.id
        real_release = stock_service.release

        def release_then_refunded_elsewhere(lines):
            real_release(lines)
            _bump_version(sale_id, status="refunded", payment_status="refunded")

        monkeypatch.setattr(stock_service, "release", release_then_refunded_elsewhere)

        with pytest.raises(AlreadyRefundedError):
            sales_service.refund_sale(admin, sale_id)

        # This request's release was undone; only the winner moves stock
        assert stock_of(product_a.id) == 6

    def test_persist_failure_restores_stock(self, monkeypatch, admin, store, product_a, stock_of):
        sale = _sell(admin, store, [{"product_id": product_a.id, "quantity": 4}])
        sale_id = sale.id

        def reload_fails(*args, **kwargs):
            raise RuntimeError("connection reset")

        monkeypatch.setattr(sales_service, "_reload_for_write", reload_fails)

        with pytest.raises(RuntimeError):
            sales_service.refund_sale(admin, sale_id)

        assert stock_of(product_a.id) == 6
        assert db.session.get(Sale, sale_id).status == "completed"

    def test_missing_sale(self, admin, db_session):
        with pytest.raises(SaleNotFoundError):
            sales_service.refund_sale(admin, 777)


# =============================================================================
# AUTHORIZATION
# =============================================================================


class TestAuthorization:

    def test_outsider_cannot_create(self, outsider, store, product_a, stock_of):
        with pytest.raises(PermissionDeniedError) as exc_info:
            _sell(outsider, store, [{"product_id": product_a.id, "quantity": 1}])

        assert exc_info.value.code == "sales:create"
        assert stock_of(product_a.id) == 10
        assert _sale_count() == 0

    def test_denied_before_validation(self, outsider, store):
        with pytest.raises(PermissionDeniedError):
            sales_service.create_sale(outsider, store_id=store.id, items=[])

    def test_staff_can_sell_but_not_refund(self, staff, store, product_a, stock_of):
        sale = _sell(staff, store, [{"product_id": product_a.id, "quantity": 2}])

        with pytest.raises(PermissionDeniedError):
            sales_service.refund_sale(staff, sale.id)
        with pytest.raises(PermissionDeniedError):
            sales_service.update_sale(staff, sale.id, SalePatch(notes="x"))
        assert stock_of(product_a.id) == 8

    def test_manager_cannot_delete(self, manager, store, product_a, stock_of):
        sale = _sell(manager, store, [{"product_id": product_a.id, "quantity": 2}])

        with pytest.raises(PermissionDeniedError):
            sales_service.delete_sale(manager, sale.id)
        assert stock_of(product_a.id) == 8

    def test_inactive_user_is_denied(self, db_session, admin, store, product_a):
        admin.is_active = False
        db_session.commit()

        with pytest.raises(PermissionDeniedError):
            _sell(admin, store, [{"product_id": product_a.id, "quantity": 1}])

    def test_missing_actor_is_denied(self, db_session):
        with pytest.raises(PermissionDeniedError):
            sales_service.get_sale(None, 1)


# =============================================================================
# READ SIDE
# =============================================================================


class TestReadSide:

    def test_list_filters_by_status(self, admin, store, product_a):
        kept = _sell(admin, store, [{"product_id": product_a.id, "quantity": 1}])
        refunded = _sell(admin, store, [{"product_id": product_a.id, "quantity": 1}])
        sales_service.refund_sale(admin, refunded.id)

        result = sales_service.list_sales(admin, status="completed")
        assert result["count"] == 1
        assert result["items"][0]["id"] == kept.id
        assert "pagination" not in result

        result = sales_service.list_sales(admin, payment_status="refunded")
        assert [s["id"] for s in result["items"]] == [refunded.id]

    def test_pagination_envelope(self, admin, store, product_a):
        for _ in range(3):
            _sell(admin, store, [{"product_id": product_a.id, "quantity": 1}])

        result = sales_service.list_sales(admin, page=1, per_page=2)
        assert result["count"] == 2
        assert result["pagination"] == {
            "page": 1,
            "per_page": 2,
            "total": 3,
            "total_pages": 2,
            "has_next": True,
            "has_prev": False,
        }

    def test_date_bounds(self, admin, store, product_a):
        _sell(admin, store, [{"product_id": product_a.id, "quantity": 1}])

        assert sales_service.list_sales(admin, start="2000-01-01", end="2999-12-31T23:59:59Z")["count"] == 1
        assert sales_service.list_sales(admin, start="2999-01-01")["count"] == 0

    @pytest.mark.parametrize("kwargs", [
        {"start": "yesterday"},
        {"status": "lost"},
        {"store_id": "x"},
        {"page": 1, "per_page": -5},
        {"page": 1, "per_page": 0},
        {"page": 0},
        {"page": -1, "per_page": 10},
    ])
    def test_bad_filters(self, admin, kwargs):
        with pytest.raises(SaleError):
            sales_service.list_sales(admin, **kwargs)

    def test_get_sale(self, staff, store, product_a):
        sale = _sell(staff, store, [{"product_id": product_a.id, "quantity": 3}])
        fetched = sales_service.get_sale(staff, sale.id)
        assert fetched.to_dict()["items"][0]["quantity"] == 3


# =============================================================================
# INVARIANTS OVER A MIXED SEQUENCE
# =============================================================================


def test_mixed_sequence_keeps_invariants(admin, store, product_a, product_b, product_c, stock_of):
    a, b, c = product_a.id, product_b.id, product_c.id

    s1 = _sell(admin, store, [{"product_id": a, "quantity": 3}, {"product_id": c, "quantity": 2}], discount_cents=50)
    s2 = _sell(admin, store, [{"product_id": a, "quantity": 5}], tax_cents=30)
    with pytest.raises(InsufficientStockError):
        _sell(admin, store, [{"product_id": a, "quantity": 3}])
    with pytest.raises(InsufficientStockError):
        _sell(admin, store, [{"product_id": b, "quantity": 1}])

    sales_service.update_sale(admin, s1.id, SalePatch(items=[{"product_id": c, "quantity": 5}]))
    sales_service.refund_sale(admin, s2.id)
    s3 = _sell(admin, store, [{"product_id": a, "quantity": 10}])
    with pytest.raises(InsufficientStockError):
        sales_service.update_sale(admin, s3.id, SalePatch(items=[{"product_id": a, "quantity": 11}]))
    sales_service.delete_sale(admin, s1.id)

    assert stock_of(a) == 0
    assert stock_of(b) == 0
    assert stock_of(c) == 5

    remaining = db.session.query(Sale).all()
    assert {s.status for s in remaining} == {"completed", "refunded"}
    for sale in remaining:
        _assert_totals_consistent(sale)
