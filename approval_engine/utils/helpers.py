"""
Helper Utilities
Common helper functions
"""

from typing import Any, Optional
import math

from approval_engine.utils.exceptions import InvalidAmount


def format_currency(amount: Optional[float], currency: str = "ILS") -> str:
    """
    Format amount as currency

    Args:
        amount: Amount to format
        currency: Currency code

    Returns:
        str: Formatted currency string
    """
    if amount is None:
        return "-"
    if currency == "ILS":
        return f"₪{amount:,.2f}"
    return f"{currency} {amount:,.2f}"


def coerce_amount(value: Any, field: str, allow_none: bool = True) -> Optional[float]:
    """
    Convert user input to a non-negative float

    Args:
        value: Raw value (number or numeric string)
        field: Field name used in the error
        allow_none: Whether None passes through unchanged

    Returns:
        float or None

    Raises:
        InvalidAmount: negative, non-numeric or non-finite input
    """
    if value is None:
        if allow_none:
            return None
        raise InvalidAmount(field, value)
    if isinstance(value, bool):
        raise InvalidAmount(field, value)
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise InvalidAmount(field, value)
    if math.isnan(amount) or math.isinf(amount) or amount < 0:
        raise InvalidAmount(field, value)
    return amount

