"""Numeric helpers shared by calculations and exporters."""

import math
from decimal import Decimal, InvalidOperation
from typing import Any


def to_num(value: Any) -> float:
    """Convert Decimal/str/None from the database into a float (None -> 0)."""
    if value is None or value == "":
        return 0.0
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(Decimal(str(value)))
    except (InvalidOperation, ValueError):
        return 0.0


def round_money(value: float) -> float:
    return round(value + 0.0, 2)


def parse_number(value: Any) -> float | None:
    """
    Lenient number parsing for spreadsheet cells.

    Accepts numbers and strings such as "1.234,56", "1,234.56" or "12,5".
    Returns None when the value is not numeric.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
        return number if math.isfinite(number) else None
    text = str(value).strip().replace(" ", "").replace("$", "")
    if not text:
        return None
    if "," in text and "." in text:
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif "," in text:
        text = text.replace(",", ".")
    try:
        number = float(text)
    except ValueError:
        return None
    return number if math.isfinite(number) else None
