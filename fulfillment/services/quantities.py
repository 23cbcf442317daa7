"""
Quantity arithmetic helpers
Ledger quantities are Decimals rounded to QUANTITY_DECIMAL_PLACES
"""
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP

from fulfillment.core.config import settings

ZERO = Decimal("0")
_QUANTUM = Decimal(1).scaleb(-settings.QUANTITY_DECIMAL_PLACES)


def to_qty(value) -> Decimal:
    """Coerce ints, floats, strings and Decimals to a rounded ledger quantity"""
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(_QUANTUM, rounding=ROUND_HALF_UP)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
