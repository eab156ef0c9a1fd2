from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from tutorpay.errors import InvalidAmountError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def round2(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def to_decimal(value, *, field: str = "amount") -> Decimal:
    """Coerce user/db input to a finite Decimal or raise InvalidAmountError."""
    if isinstance(value, bool) or value is None:
        raise InvalidAmountError(f"{field} must be a number")
    if isinstance(value, Decimal):
        d = value
    else:
        try:
            # str() keeps 0.1 as 0.1 rather than its binary float expansion
            d = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise InvalidAmountError(f"{field} must be a number") from None
    if not d.is_finite():
        raise InvalidAmountError(f"{field} must be finite")
    return d


def to_money(value, *, field: str = "amount") -> Decimal:
    return round2(to_decimal(value, field=field))


def positive_money(value, *, field: str = "amount") -> Decimal:
    amt = to_money(value, field=field)
    if amt <= 0:
        raise InvalidAmountError(f"{field} must be greater than 0")
    return amt
