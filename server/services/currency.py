"""Conversion between decimal major-unit amounts and gateway minor units.

Everything inside the services works with ``Decimal`` major units; only the
gateway edge deals in integer minor units (paise, cents, ...).
"""

from decimal import Decimal, InvalidOperation
from typing import Union

from server.services.errors import BadRequestError

# ISO 4217 minor-unit exponents for the currencies the gateway accepts.
# Anything not listed uses two decimal places.
MINOR_UNIT_EXPONENTS = {
    "JPY": 0,
    "KRW": 0,
    "VND": 0,
    "BHD": 3,
    "KWD": 3,
    "OMR": 3,
}
DEFAULT_EXPONENT = 2

Amount = Union[Decimal, int, str]


def minor_unit_factor(currency: str) -> int:
    return 10 ** MINOR_UNIT_EXPONENTS.get(currency.upper(), DEFAULT_EXPONENT)


def to_decimal(value: Amount) -> Decimal:
    if isinstance(value, float):
        # repr keeps 499.99 as 499.99 instead of its binary expansion
        value = repr(value)
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise BadRequestError(f"Invalid amount: {value!r}", code="INVALID_AMOUNT")


def to_minor_units(amount: Amount, currency: str) -> int:
    """Convert ``amount`` to a positive integer number of minor units.

    Amounts that do not land on a whole minor unit are rejected rather than
    rounded, as are zero and negative totals.
    """
    scaled = to_decimal(amount) * minor_unit_factor(currency)
    if scaled != scaled.to_integral_value():
        raise BadRequestError(
            f"Invalid amount: {amount} {currency} is not a whole number of minor units.",
            code="INVALID_AMOUNT",
        )
    minor = int(scaled)
    if minor <= 0:
        raise BadRequestError(
            f"Invalid amount: {minor}. Amount must be a positive integer in minor units.",
            code="INVALID_AMOUNT",
        )
    return minor


def from_minor_units(minor: int, currency: str) -> Decimal:
    exponent = MINOR_UNIT_EXPONENTS.get(currency.upper(), DEFAULT_EXPONENT)
    return (Decimal(minor) / minor_unit_factor(currency)).quantize(Decimal(1).scaleb(-exponent))
