"""Display helpers for currency, percentages and token amounts (no UI deps)."""

from __future__ import annotations

from typing import Optional


def format_currency(value: Optional[float]) -> str:
    """Format a display-currency amount, e.g. ``-$1,234.50``."""
    if value is None:
        return "—"
    try:
        v = float(value)
    except (TypeError, ValueError):
        return "—"
    sign = "-" if v < 0 else ""
    return f"{sign}${abs(v):,.2f}"


def format_percentage(value: Optional[float]) -> str:
    """Signed percentage with two decimals, e.g. ``+4.20%``."""
    if value is None:
        return "—"
    return f"{'+' if value >= 0 else ''}{value:.2f}%"


def format_token_amount(amount: float, symbol: str) -> str:
    decimals = {"ETH": 4, "BTC": 6}.get((symbol or "").upper(), 2)
    return f"{amount:.{decimals}f}"


def trend_for_value(value: Optional[float]) -> str:
    """
    Return "up", "down" or "flat" for a P&L-like value.

    Values within 1e-9 of zero (and None or non-numeric input) are flat.
    """
    if value is None:
        return "flat"
    try:
        v = float(value)
    except (TypeError, ValueError):
        return "flat"
    if abs(v) < 1e-9:
        return "flat"
    return "up" if v > 0 else "down"
