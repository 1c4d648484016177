"""Merge balances from manual entries, exchanges and the wallet into one valuation."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Mapping, Optional

from pnl_tracker.config.constants import SOURCE_MANUAL
from pnl_tracker.models.core import (
    AggregatedHolding,
    AggregationResult,
    HoldingSource,
    Position,
    SourceBalances,
)

logger = logging.getLogger(__name__)


def holdings_from_positions(
    positions: Mapping[str, Position],
    source: str = SOURCE_MANUAL,
    as_of: Optional[datetime] = None,
) -> SourceBalances:
    """Express resolved ledger positions as one source's balances."""
    as_of = as_of or datetime.now()
    return SourceBalances(
        source=source,
        holdings=[
            HoldingSource(
                source=source,
                symbol=p["symbol"],
                quantity=p["total_amount"],
                price=p["current_price"],
                updated_at=as_of,
            )
            for p in positions.values()
        ],
    )


def aggregate_sources(sources: Iterable[SourceBalances]) -> AggregationResult:
    """
    Merge same-symbol holdings across sources.

    Quantity is summed; value is the sum of each source's own quantity * price
    since sources may disagree on price. A failed source contributes nothing
    and is reported in ``failures``; the remaining sources still aggregate.
    """
    result = AggregationResult()
    for src in sources:
        if src.failed:
            logger.warning("Source %s failed, excluded from aggregation: %s", src.source, src.error)
            result.failures[src.source] = src.error or "unknown error"
            continue
        result.sources.append(src.source)
        for h in src.holdings:
            if h.quantity == 0:
                continue
            entry: AggregatedHolding = result.holdings.setdefault(
                h.symbol, {"symbol": h.symbol, "quantity": 0.0, "value": 0.0, "by_source": {}}
            )
            entry["quantity"] += h.quantity
            entry["value"] += h.value
            share = entry["by_source"].setdefault(h.source, {"quantity": 0.0, "price": h.price, "value": 0.0})
            share["quantity"] += h.quantity
            share["value"] += h.value
            share["price"] = h.price
    result.total_value = sum(e["value"] for e in result.holdings.values())
    return result
