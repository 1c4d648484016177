"""Per-asset position resolution with average-cost accounting (pure functions)."""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Mapping, Optional, Tuple

from pnl_tracker.models.core import PortfolioTotals, Position, Transaction

logger = logging.getLogger(__name__)


def apply_average_cost(
    held: float, invested: float, avg_cost: float, tx: Transaction
) -> Tuple[float, float, float, float]:
    """
    Apply one transaction to a running average-cost position.

    Buys raise invested by amount * price and recompute the average. Sells
    reduce held and invested at the pre-sell average and leave the average
    untouched. Oversells are applied as-is and may drive held negative.

    Returns:
        Tuple of (held, invested, avg_cost, realized_pnl_delta).
    """
    if tx.is_buy:
        invested += tx.amount * tx.price
        held += tx.amount
        avg_cost = invested / held if held > 0 else 0.0
        return held, invested, avg_cost, 0.0

    held -= tx.amount
    invested -= tx.amount * avg_cost
    realized = (tx.price - avg_cost) * tx.amount - tx.fee
    return held, invested, avg_cost, realized


def resolve_positions(
    transactions: Iterable[Transaction],
    prices: Optional[Mapping[str, float]] = None,
) -> Dict[str, Position]:
    """
    Fold transactions into current positions, keyed by symbol.

    Transactions are applied in the order given (ledger order), not by
    timestamp. Positions whose held amount is not positive after folding are
    left out. Missing prices count as 0.
    """
    prices = prices or {}
    state: Dict[str, Dict[str, float]] = {}

    for tx in transactions:
        s = state.setdefault(tx.symbol, {"held": 0.0, "invested": 0.0, "avg": 0.0, "realized": 0.0, "count": 0})
        held, invested, avg, realized = apply_average_cost(s["held"], s["invested"], s["avg"], tx)
        s["held"], s["invested"], s["avg"] = held, invested, avg
        s["realized"] += realized
        s["count"] += 1
        if held < 0:
            logger.debug("%s oversold: held %.8f after %s", tx.symbol, held, tx.id)

    positions: Dict[str, Position] = {}
    for symbol, s in state.items():
        if s["held"] <= 0:
            continue
        price = float(prices.get(symbol) or 0.0)
        current_value = s["held"] * price
        pnl = current_value - s["invested"]
        positions[symbol] = {
            "symbol": symbol,
            "total_amount": s["held"],
            "avg_cost_basis": s["avg"],
            "total_invested": s["invested"],
            "current_price": price,
            "current_value": current_value,
            "pnl": pnl,
            "pnl_percentage": (pnl / s["invested"] * 100.0) if s["invested"] > 0 else 0.0,
            "realized_pnl": s["realized"],
            "transaction_count": int(s["count"]),
        }
    return positions


def portfolio_totals(positions: Mapping[str, Position]) -> PortfolioTotals:
    """Sum value, invested amount and P&L across resolved positions."""
    total_value = sum(p["current_value"] for p in positions.values())
    total_invested = sum(p["total_invested"] for p in positions.values())
    total_pnl = sum(p["pnl"] for p in positions.values())
    realized = sum(p.get("realized_pnl", 0.0) for p in positions.values())
    return {
        "total_value": total_value,
        "total_invested": total_invested,
        "total_pnl": total_pnl,
        "total_pnl_percentage": (total_pnl / total_invested * 100.0) if total_invested > 0 else 0.0,
        "realized_pnl": realized,
    }
