# PATH: core/math.py
"""
Math utilities for the borrow engine.

Integer-only amount handling (no float money). Human amounts enter as
strings and are converted to native units with Decimal.
"""

from decimal import MAX_EMAX, MIN_EMIN, Context, Decimal, InvalidOperation
from typing import Optional, Union

from core.constants import BPS_DENOMINATOR, U128_MAX, U256_MAX
from core.exceptions import ValidationError


def safe_decimal(value: Union[str, int, Decimal, None], default: Optional[Decimal] = None) -> Decimal:
    """
    Convert value to Decimal.

    Floats are rejected outright; strings that do not parse return
    `default` when one is given, otherwise raise ValidationError.
    """
    if isinstance(value, float):
        raise ValidationError(
            "Float values are not allowed for amounts",
            details={"value": repr(value)},
        )
    if value is None:
        if default is not None:
            return default
        raise ValidationError("Amount is missing")

    if isinstance(value, Decimal):
        return value

    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        if default is not None:
            return default
        raise ValidationError(f"Not a number: {value!r}", details={"value": str(value)})


def clamp_u128(value: int) -> int:
    """Clamp an integer into [0, U128_MAX]."""
    if value < 0:
        return 0
    return U128_MAX if value > U128_MAX else value


def parse_units(value: Union[str, int, Decimal], decimals: int) -> int:
    """
    Convert a human amount to native units.

    Raises ValidationError when the value is not a finite number, does
    not fit in uint256 or has more fractional digits than the token
    supports.

    Example:
        parse_units("1.5", 6) -> 1500000
    """
    amount = safe_decimal(value)
    if not amount.is_finite():
        raise ValidationError(f"Amount is not finite: {value!r}")
    # Checked before scaling; int() cost grows with the exponent.
    if amount and amount.adjusted() + decimals >= len(str(U256_MAX)):
        raise ValidationError(
            f"Amount {value} is out of range",
            details={"value": str(value), "decimals": decimals},
        )

    exact = Context(prec=len(amount.as_tuple().digits), Emax=MAX_EMAX, Emin=MIN_EMIN)
    scaled = amount.scaleb(decimals, context=exact)
    if scaled != scaled.to_integral_value():
        raise ValidationError(
            f"Amount {value} has more than {decimals} decimal places",
            details={"value": str(value), "decimals": decimals},
        )

    native = int(scaled)
    if native > U256_MAX:
        raise ValidationError(
            f"Amount {value} is out of range",
            details={"value": str(value), "decimals": decimals},
        )
    return native


def format_units(amount: int, decimals: int) -> str:
    """
    Format native units as a human amount, trimming trailing zeros.

    Example:
        format_units(1500000, 6) -> "1.5"
    """
    value = Decimal(amount).scaleb(-decimals)
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


def apply_slippage_floor(amount: int, slippage_bps: int) -> int:
    """
    Minimum acceptable output after slippage, rounded down.

    Example:
        apply_slippage_floor(1_000_000, 50) -> 995_000
    """
    if not 0 <= slippage_bps <= BPS_DENOMINATOR:
        raise ValidationError(
            f"Slippage must be within 0..{BPS_DENOMINATOR} bps",
            details={"slippage_bps": slippage_bps},
        )
    return amount * (BPS_DENOMINATOR - slippage_bps) // BPS_DENOMINATOR
