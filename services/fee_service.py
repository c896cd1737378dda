"""
Platform Fee Calculator

All amounts are integers in minor currency units (cents).

Fee policy: 5% of the amount (rounded half-up to the nearest cent) plus a
fixed 30 cents.

    compute_platform_fee(1000) == 80     # 50 + 30
    compute_net_amount(1000)   == 920
    compute_total_charge(1000) == 1080   # what a donor pays so the campaign gets 1000
"""

import math
from decimal import Decimal, ROUND_HALF_UP
from numbers import Number

from bloomfund.errors import InvalidAmount

PLATFORM_FEE_RATE = Decimal("0.05")
PLATFORM_FEE_FIXED = 30

CURRENCY_SYMBOLS = {
    "usd": "$",
    "eur": "€",
    "gbp": "£",
}


def _validate(amount) -> int:
    """Coerce an integral amount to int, rejecting anything else."""
    if isinstance(amount, bool) or not isinstance(amount, (Number, Decimal)):
        raise InvalidAmount(f"Amount must be a number, got {type(amount).__name__}")

    if isinstance(amount, float) and not math.isfinite(amount):
        raise InvalidAmount(f"Amount must be finite, got {amount}")
    if isinstance(amount, Decimal) and not amount.is_finite():
        raise InvalidAmount(f"Amount must be finite, got {amount}")

    if amount != int(amount):
        raise InvalidAmount(f"Amount must be whole minor units, got {amount}")
    if amount < 0:
        raise InvalidAmount(f"Amount must not be negative, got {amount}")

    return int(amount)


def compute_platform_fee(amount) -> int:
    """Platform fee for a gross amount: round_half_up(amount * 5%) + 30."""
    amount = _validate(amount)
    percentage_fee = (Decimal(amount) * PLATFORM_FEE_RATE).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    )
    return int(percentage_fee) + PLATFORM_FEE_FIXED


def compute_net_amount(amount) -> int:
    """Amount left for the creator after the platform fee."""
    amount = _validate(amount)
    return amount - compute_platform_fee(amount)


def compute_total_charge(amount) -> int:
    """
    Amount to charge a donor so the campaign receives ``amount`` in full.

    The platform fee is added on top of the donation rather than taken out
    of it.
    """
    amount = _validate(amount)
    return amount + compute_platform_fee(amount)


def fee_breakdown(amount) -> dict:
    amount = _validate(amount)
    fee = compute_platform_fee(amount)
    return {
        "gross_amount": amount,
        "platform_fee": fee,
        "net_amount": amount - fee,
    }


def format_amount(amount: int, currency: str = "usd") -> str:
    """Render minor units for humans, e.g. 920 -> "$9.20"."""
    symbol = CURRENCY_SYMBOLS.get(currency.lower())
    sign = "-" if amount < 0 else ""
    major = Decimal(abs(amount)) / 100
    if symbol:
        return f"{sign}{symbol}{major:,.2f}"
    return f"{sign}{major:,.2f} {currency.upper()}"
