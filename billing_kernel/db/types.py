"""
Module: billing_kernel.db.types
Responsibility: Annotated column types and the single sanctioned rounding
    helper for money.  Every monetary column is a two-place fixed-point
    Numeric; floats never reach the ledger store.
Architecture position: Kernel > DB.  MUST NOT import from models/, services/
    or outer layers.
"""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated

from sqlalchemy import DateTime, Numeric, String
from sqlalchemy.types import TypeDecorator

from billing_kernel.exceptions import ValidationFailedError

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP
ZERO = Decimal("0.00")

# 14 digits, 2 decimal places: up to 999,999,999,999.99
Money = Annotated[Decimal, Numeric(14, 2)]

ShortCode = Annotated[str, String(50)]

LongText = Annotated[str, String(4000)]


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware timestamp that always round-trips as UTC.

    PostgreSQL returns aware values natively; SQLite drops the offset, so
    naive results are re-tagged as UTC on load.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, datetime) and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the ledger precision.

    Preconditions: value is a Decimal (or int / numeric str).
    Postconditions: Returns a Decimal quantized to ``decimal_places``.
    """
    quantizer = Decimal(10) ** -decimal_places
    return Decimal(value).quantize(quantizer, rounding=rounding)


def to_money(value, field: str = "amount") -> Decimal:
    """Coerce caller input (str, int, Decimal) to a rounded ledger amount.

    Floats, non-numeric strings and non-finite values raise
    ``ValidationFailedError`` naming ``field``.
    """
    if value is None:
        return ZERO
    if isinstance(value, (float, bool)):
        raise ValidationFailedError(
            f"{field} must be a str, int or Decimal, got {type(value).__name__}", field=field,
        )
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation:
        raise ValidationFailedError(f"{field} is not a number: {value!r}", field=field) from None
    if not amount.is_finite():
        raise ValidationFailedError(f"{field} must be finite, got {amount}", field=field)
    return round_money(amount)
