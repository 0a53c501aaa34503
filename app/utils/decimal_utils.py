"""Decimal precision utilities for financial calculations."""
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Iterable, Optional, Union

from app.utils.logger import get_logger

logger = get_logger(__name__)

# Standard precision for financial amounts (2 decimal places)
FINANCIAL_PRECISION = Decimal("0.01")
ZERO = Decimal("0.00")


def parse_decimal(value: Optional[Union[str, int, Decimal]], precision: Optional[Decimal] = None) -> Optional[Decimal]:
    """
    Parse a value to Decimal with proper precision handling.

    Floats are rejected: remittance amounts arrive as EDI text and must never
    pass through binary floating point.

    Args:
        value: Value to parse (string, int, or Decimal)
        precision: Optional precision to round to

    Returns:
        Decimal value, or None if the value is empty, non-numeric or not finite

    Example:
        >>> parse_decimal("123.456")
        Decimal('123.456')
        >>> parse_decimal("123.456", precision=Decimal("0.01"))
        Decimal('123.46')
    """
    if value is None:
        return None

    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int) and not isinstance(value, bool):
        result = Decimal(value)
    elif isinstance(value, str):
        value = value.strip()
        if not value:
            return None
        try:
            result = Decimal(value)
        except (ValueError, InvalidOperation):
            logger.debug("Failed to parse decimal string", value=value)
            return None
    else:
        logger.warning("Unsupported type for decimal parsing", type=type(value).__name__)
        return None

    if not result.is_finite():
        return None

    if precision is not None:
        result = result.quantize(precision, rounding=ROUND_HALF_UP)

    return result


def parse_financial_amount(value: Optional[Union[str, int, Decimal]]) -> Optional[Decimal]:
    """
    Parse a financial amount with 2 decimal place precision.

    Example:
        >>> parse_financial_amount("1000")
        Decimal('1000.00')
    """
    return parse_decimal(value, precision=FINANCIAL_PRECISION)


def sum_amounts(values: Iterable[Optional[Decimal]]) -> Decimal:
    """Sum amounts, treating None as zero, rounded to cents."""
    total = ZERO
    for value in values:
        if value is not None:
            total += value
    return round_to_precision(total)


def round_to_precision(value: Decimal, decimal_places: int = 2) -> Decimal:
    """
    Round a Decimal value to a specific number of decimal places.

    Example:
        >>> round_to_precision(Decimal("123.455"))
        Decimal('123.46')
    """
    if value is None:
        return value

    precision = Decimal("0.1") ** decimal_places
    return value.quantize(precision, rounding=ROUND_HALF_UP)


def format_amount(value: Optional[Decimal]) -> str:
    """Render an amount for reports and messages ("1400.00")."""
    if value is None:
        return ""
    return f"{round_to_precision(value):.2f}"
