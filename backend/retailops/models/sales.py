from __future__ import annotations

from ..constants import PaymentMethod, PaymentStatus, SaleStatus, SaleType
from ..extensions import db
from ..time_utils import to_utc_z


class Sale(db.Model):
    """
    A point-of-sale transaction.

    LIFECYCLE:
    - Created COMPLETED / PAID (payment is settled at the till).
    - COMPLETED -> COMPLETED on in-place update (stock re-reconciled).
    - COMPLETED -> REFUNDED via refund (record kept, stock restored).
    - Hard delete removes the row and its lines (stock restored).

    TOTALS INVARIANT (cents):
    subtotal_cents = sum(line.total_price_cents)
    total_amount_cents = subtotal_cents - discount_cents + tax_cents
    Totals are always recomputed by the service, never taken from a request.

    CONCURRENCY:
    version_id is SQLAlchemy's optimistic lock; a write whose loaded version
    is stale raises StaleDataError, which the service turns into a
    compensated conflict.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.Index("ix_sales_status_sale_date", "status", "sale_date"),
        db.Index("ix_sales_store_sale_date", "store_id", "sale_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number (e.g., "SALE-20261018-000042"), never changes
    sale_number = db.Column(db.String(64), nullable=False, unique=True)

    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_method = db.Column(db.String(32), nullable=False, default=PaymentMethod.CASH.value)
    payment_status = db.Column(db.String(16), nullable=False, default=PaymentStatus.PAID.value, index=True)
    status = db.Column(db.String(16), nullable=False, default=SaleStatus.COMPLETED.value, index=True)
    sale_type = db.Column(db.String(16), nullable=False, default=SaleType.RETAIL.value)

    notes = db.Column(db.Text, nullable=True)

    sale_date = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    # Refund audit trail
    refunded_at = db.Column(db.DateTime(timezone=True), nullable=True)
    refunded_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    refund_reason = db.Column(db.String(255), nullable=True)
    refund_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    store = db.relationship("Store", backref=db.backref("sales", lazy=True))
    lines = db.relationship(
        "SaleLine",
        back_populates="sale",
        cascade="all, delete-orphan",
        order_by="SaleLine.line_number",
        lazy="selectin",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def total_profit_cents(self) -> int:
        return sum(line.profit_cents for line in self.lines)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_number": self.sale_number,
            "store_id": self.store_id,
            "items": [line.to_dict() for line in self.lines],
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_amount_cents": self.total_amount_cents,
            "total_profit_cents": self.total_profit_cents,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "status": self.status,
            "sale_type": self.sale_type,
            "notes": self.notes,
            "sale_date": to_utc_z(self.sale_date),
            "created_by_user_id": self.created_by_user_id,
            "refunded_at": to_utc_z(self.refunded_at) if self.refunded_at else None,
            "refunded_by_user_id": self.refunded_by_user_id,
            "refund_reason": self.refund_reason,
            "refund_amount_cents": self.refund_amount_cents,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at) if self.updated_at else None,
        }


class SaleLine(db.Model):
    """
    One product/quantity/price entry of a sale, snapshotted at sale time.

    product_id is a weak reference: deleting a product leaves historical
    lines untouched, and product_name / cost_price_cents keep the values
    captured when the line was written.
    """
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    # No FK: lines must survive product deletion
    product_id = db.Column(db.Integer, nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)
    cost_price_cents = db.Column(db.Integer, nullable=False)
    profit_cents = db.Column(db.Integer, nullable=False)

    sale = db.relationship("Sale", back_populates="lines")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "line_number": self.line_number,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_price_cents": self.total_price_cents,
            "cost_price_cents": self.cost_price_cents,
            "profit_cents": self.profit_cents,
        }
