"""
Currency Amount Module

Decimal handling for loan principals and repayments. The service books a
single currency, so amounts are plain Decimals quantized to two fractional
digits. NEVER uses float for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from typing import Union
import re

# Set global decimal context for financial precision
getcontext().prec = 28

CENTS = Decimal('0.01')
ZERO = Decimal('0.00')

# Largest accepted amount. Sums of amounts this size stay exact under prec 28.
MAX_AMOUNT = Decimal('999999999999999.99')

AmountLike = Union[Decimal, str, int, float]


def quantize_amount(value: Decimal) -> Decimal:
    """Round a Decimal to two fractional digits"""
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def decimal_from_string(value: str) -> Decimal:
    """
    Safely convert string to Decimal, handling common formats

    Args:
        value: String representation of number, e.g. "1,250.50" or "฿300"

    Returns:
        Decimal value

    Raises:
        ValueError: If string cannot be converted to valid Decimal
    """
    if not value or not isinstance(value, str):
        raise ValueError("Value must be a non-empty string")

    # Plain and exponent notation ("1000.50", "1e2") parse as-is
    try:
        return Decimal(value.strip())
    except InvalidOperation:
        pass

    # Anything left with letters in it is not a formatted number
    if re.search(r'[A-Za-z]', value):
        raise ValueError(f"Cannot convert '{value}' to Decimal")

    # Remove currency symbols and whitespace
    clean_value = re.sub(r'[^\d.,\-+]', '', value.strip())

    # Both comma and dot: comma is the thousands separator
    if ',' in clean_value and '.' in clean_value:
        clean_value = clean_value.replace(',', '')
    elif ',' in clean_value and clean_value.count(',') == 1:
        parts = clean_value.split(',')
        if len(parts[1]) <= 2:  # Decimal separator
            clean_value = clean_value.replace(',', '.')
        else:  # Thousands separator
            clean_value = clean_value.replace(',', '')
    else:
        clean_value = clean_value.replace(',', '')

    try:
        return Decimal(clean_value)
    except InvalidOperation:
        raise ValueError(f"Cannot convert '{value}' to Decimal")


def to_amount(value: AmountLike) -> Decimal:
    """
    Coerce user input into a two-digit Decimal amount.

    Floats go through ``str`` so that 0.1 becomes Decimal('0.10') and not
    the binary approximation.
    """
    if isinstance(value, bool):
        raise ValueError("Amount must be a number")
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float)):
        amount = Decimal(str(value))
    elif isinstance(value, str):
        amount = decimal_from_string(value)
    else:
        raise ValueError(f"Unsupported amount type: {type(value).__name__}")

    if not amount.is_finite():
        raise ValueError("Amount must be a finite number")
    if abs(amount) > MAX_AMOUNT:
        raise ValueError(f"Amount must not exceed {MAX_AMOUNT}")
    try:
        return quantize_amount(amount)
    except InvalidOperation:
        raise ValueError(f"Cannot represent '{value}' as an amount")


def format_amount(amount: Decimal, symbol: str = "฿") -> str:
    """Format an amount for messages, e.g. ฿1,200.00"""
    return f"{symbol}{quantize_amount(amount):,.2f}"
