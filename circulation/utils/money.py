from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Any) -> Decimal:
    """Coerce a number/string into a two-place Decimal.

    Floats go through ``str`` first so 0.1 stays 0.10 instead of a binary
    approximation. Raises ``ValueError`` for anything non-numeric.
    """
    if isinstance(value, Decimal):
        dec = value
    else:
        try:
            dec = Decimal(str(value).strip())
        except (InvalidOperation, ValueError, TypeError) as exc:
            raise ValueError(f"not a monetary amount: {value!r}") from exc
    if not dec.is_finite():
        raise ValueError(f"not a monetary amount: {value!r}")
    return dec.quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(value: Any) -> str:
    """Render an amount as ``$1,234.50``; empty string for blank/invalid input."""
    if value is None or value == "":
        return ""
    try:
        dec = to_money(value)
    except ValueError:
        return ""
    sign = "-" if dec < 0 else ""
    return f"{sign}${dec.copy_abs():,.2f}"


def register_money_filters(env: Any) -> None:
    """Register ``format_money`` on a Jinja environment (or Flask app)."""
    env = getattr(env, "jinja_env", env)
    filters = getattr(env, "filters", None)
    if not isinstance(filters, dict):
        return
    if "format_money" not in filters:
        filters["format_money"] = format_money


__all__ = ["CENT", "ZERO", "to_money", "format_money", "register_money_filters"]
