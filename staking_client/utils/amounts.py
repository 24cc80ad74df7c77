"""Conversion between human token amounts and integer base units."""

from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal, InvalidOperation, localcontext

from staking_client.core.exceptions import InvalidAmountError

U64_MAX = 2**64 - 1


def parse_amount(value: Decimal | int | float | str) -> Decimal:
    """Parse a user-supplied amount. Floats go through str() so 1.5 stays exactly 1.5."""
    if isinstance(value, bool):
        raise InvalidAmountError(f"invalid amount: {value!r}")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as e:
        raise InvalidAmountError(f"invalid amount: {value!r}") from e
    if not amount.is_finite():
        raise InvalidAmountError(f"invalid amount: {value!r}")
    return amount


def to_base_units(amount: Decimal | int | float | str, decimals: int) -> int:
    """
    Scale a human amount to the mint's integer base unit, rounding down.

    Rounding down never debits more than the user typed. A result that is not
    strictly positive, or does not fit in a u64, raises InvalidAmountError.
    """
    value = parse_amount(amount)
    if value <= 0:
        raise InvalidAmountError(f"amount must be positive, got {value}")
    with localcontext() as ctx:
        ctx.prec = 80
        scaled = (value * (Decimal(10) ** decimals)).to_integral_value(rounding=ROUND_FLOOR)
    raw = int(scaled)
    if raw <= 0:
        raise InvalidAmountError(
            f"amount {value} is below the smallest unit for {decimals} decimals"
        )
    if raw > U64_MAX:
        raise InvalidAmountError(f"amount {value} overflows u64")
    return raw


def from_base_units(raw: int, decimals: int) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = 80
        return Decimal(int(raw)).scaleb(-decimals)
