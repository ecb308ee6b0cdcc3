"""Exact money handling.

Amounts are plain ``int`` counts of the currency's minor unit (paise, cents).
Nothing in here goes through ``float`` or ``Decimal``: user input is split into
its whole and fractional digits and each part is read as an integer.
"""

from typing import Iterable, Optional

from config import get_settings
from errors import FormatError

MINOR_PER_MAJOR = 100
FRACTION_DIGITS = 2
DECIMAL_SEPARATOR = "."
GROUP_SEPARATOR = ","


def _strip_symbol(value: str) -> str:
    symbol = get_settings().currency_symbol
    for candidate in (symbol, "₹", "$", "€", "£"):
        if candidate and value.startswith(candidate):
            return value[len(candidate) :].strip()
    return value


def parse_amount(value: str) -> int:
    """Convert a decimal string like ``"1,234.5"`` into minor units (``123450``).

    Extra fractional digits are truncated, never rounded.
    """
    if value is None:
        raise FormatError("Amount is required")
    clean = _strip_symbol(value.strip()).replace(GROUP_SEPARATOR, "").strip()
    if not clean:
        raise FormatError("Amount is required")

    parts = clean.split(DECIMAL_SEPARATOR)
    if len(parts) > 2:
        raise FormatError(f"Invalid amount: {value!r}")

    whole = parts[0]
    fraction = parts[1] if len(parts) == 2 else ""
    if not whole and not fraction:
        raise FormatError(f"Invalid amount: {value!r}")
    # str.isdigit accepts superscripts and other unicode digits
    for part in (whole, fraction):
        if part and not (part.isascii() and part.isdigit()):
            raise FormatError(f"Invalid amount: {value!r}")

    fraction = fraction[:FRACTION_DIGITS].ljust(FRACTION_DIGITS, "0")
    return int(whole or "0") * MINOR_PER_MAJOR + int(fraction)


def is_valid_amount(value: str) -> bool:
    try:
        parse_amount(value)
    except FormatError:
        return False
    return True


def to_decimal_string(minor: int, *, grouped: bool = False) -> str:
    sign = "-" if minor < 0 else ""
    whole, fraction = divmod(abs(minor), MINOR_PER_MAJOR)
    whole_text = f"{whole:,}" if grouped else str(whole)
    return f"{sign}{whole_text}.{fraction:0{FRACTION_DIGITS}d}"


def format_amount(
    minor: int, symbol: Optional[str] = None, *, grouped: bool = False
) -> str:
    if symbol is None:
        symbol = get_settings().currency_symbol
    text = to_decimal_string(minor, grouped=grouped)
    if text.startswith("-"):
        return f"-{symbol}{text[1:]}"
    return f"{symbol}{text}"


def sum_amounts(values: Iterable[int]) -> int:
    total = 0
    for value in values:
        total += value
    return total
