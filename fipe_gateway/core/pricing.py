"""Resale price estimates derived from FIPE table prices."""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Dict, Union

# Multipliers applied to the FIPE price per vehicle condition
CONDITION_FACTORS: Dict[str, float] = {
    "excellent": 1.15,
    "good": 1.05,
    "regular": 0.95,
    "poor": 0.80,
}

_CENTS = Decimal("0.01")


def _amount(price: str) -> Decimal:
    cleaned = str(price).replace("R$", "").strip().replace(".", "").replace(",", ".")
    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        raise ValueError(f"Not a FIPE price: {price!r}")
    if not amount.is_finite():
        raise ValueError(f"Not a FIPE price: {price!r}")
    return amount


def parse_price(price: str) -> float:
    """Numeric value of a FIPE price string.

    Example:
        >>> parse_price("R$ 70.283,00")
        70283.0

    Raises:
        ValueError: If the string is not a Brazilian-formatted amount
    """
    return float(_amount(price))


def format_price(value: Union[float, Decimal]) -> str:
    """Format ``value`` the way FIPE prints prices: ``"R$ 70.283,00"``."""
    formatted = f"{Decimal(str(value)).quantize(_CENTS, rounding=ROUND_HALF_UP):,}"
    return "R$ " + formatted.replace(",", "_").replace(".", ",").replace("_", ".")


def estimate_price(price: str, condition: str) -> Dict[str, object]:
    """Apply the condition factor to a FIPE price.

    Args:
        price: FIPE price string, e.g. ``"R$ 70.283,00"``
        condition: One of CONDITION_FACTORS

    Returns:
        Base and estimated prices, both formatted and numeric

    Raises:
        KeyError: Unknown condition
        ValueError: Unparseable price
    """
    factor = CONDITION_FACTORS[condition]
    base = _amount(price)
    estimated = (base * Decimal(str(factor))).quantize(_CENTS, rounding=ROUND_HALF_UP)
    return {
        "base_price_fipe": price,
        "base_price_numeric": float(base),
        "condition": condition,
        "condition_factor": factor,
        "estimated_price": format_price(estimated),
        "estimated_price_numeric": float(estimated),
    }
