"""Enumerations shared by the sale models, services and routes.

Values are stored as their lowercase string form. Parsing goes through
``parse_enum`` so an unrecognised value is rejected at the boundary instead
of silently falling back to a default.
"""

from __future__ import annotations

from enum import Enum
from typing import Type, TypeVar

from .errors import ValidationError

E = TypeVar("E", bound=Enum)


class PaymentMethod(str, Enum):
    """How the customer settled the sale."""

    CASH = "cash"
    CARD = "card"
    UPI = "upi"
    BANK_TRANSFER = "bank_transfer"
    CREDIT = "credit"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    PARTIAL = "partial"
    FAILED = "failed"
    REFUNDED = "refunded"


class SaleStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class SaleType(str, Enum):
    RETAIL = "retail"
    WHOLESALE = "wholesale"
    ONLINE = "online"


class SaleAction(str, Enum):
    """Actions checked against the authorization gate for the sales resource."""

    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    REFUND = "refund"


SALES_RESOURCE = "sales"


def parse_enum(enum_cls: Type[E], value, field: str) -> E:
    """Coerce ``value`` into ``enum_cls`` or raise ValidationError naming the field."""
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        try:
            return enum_cls(value.strip().lower())
        except ValueError:
            pass
    allowed = ", ".join(member.value for member in enum_cls)
    raise ValidationError(
        f"{field} must be one of: {allowed}",
        details={"field": field, "value": value},
    )
