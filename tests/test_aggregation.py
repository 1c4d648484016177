"""Tests for multi-source balance aggregation."""

from datetime import datetime

import pytest

from pnl_tracker.models.core import HoldingSource, SourceBalances
from pnl_tracker.services.aggregation import aggregate_sources, holdings_from_positions
from pnl_tracker.services.positions import resolve_positions

NOW = datetime(2024, 3, 1, 9, 30)


def _h(source, symbol, quantity, price):
    return HoldingSource(source=source, symbol=symbol, quantity=quantity, price=price, updated_at=NOW)


def test_value_uses_each_sources_price() -> None:
    """Same symbol at different prices is valued per source, not at one price."""
    result = aggregate_sources([
        SourceBalances("coinbase", [_h("coinbase", "ETH", 2.0, 3000.0)]),
        SourceBalances("wallet", [_h("wallet", "ETH", 1.0, 3100.0)]),
    ])
    eth = result.holdings["ETH"]
    assert eth["quantity"] == pytest.approx(3.0)
    assert eth["value"] == pytest.approx(2.0 * 3000.0 + 1.0 * 3100.0)
    assert eth["by_source"]["coinbase"]["value"] == pytest.approx(6000.0)
    assert eth["by_source"]["wallet"]["price"] == pytest.approx(3100.0)
    assert result.total_value == pytest.approx(9100.0)


def test_one_failed_source_of_three() -> None:
    """A failing source is reported while the other two still aggregate."""
    result = aggregate_sources([
        SourceBalances("manual", [_h("manual", "BTC", 0.5, 40000.0)]),
        SourceBalances("coinbase", error="Failed to fetch balances"),
        SourceBalances("wallet", [_h("wallet", "ETH", 1.0, 3000.0), _h("wallet", "BTC", 0.1, 41000.0)]),
    ])
    assert set(result.holdings) == {"BTC", "ETH"}
    assert set(result.holdings["BTC"]["by_source"]) == {"manual", "wallet"}
    assert result.failures == {"coinbase": "Failed to fetch balances"}
    assert result.sources == ["manual", "wallet"]
    assert result.total_value == pytest.approx(20000.0 + 3000.0 + 4100.0)


def test_zero_quantity_skipped() -> None:
    result = aggregate_sources([SourceBalances("coinbase", [_h("coinbase", "DOGE", 0.0, 0.1)])])
    assert result.holdings == {}
    assert result.total_value == 0.0


def test_symbols_merged_case_insensitively() -> None:
    result = aggregate_sources([
        SourceBalances("a", [_h("a", "usdc", 10.0, 1.0)]),
        SourceBalances("b", [_h("b", "USDC", 5.0, 1.0)]),
    ])
    assert list(result.holdings) == ["USDC"]
    assert result.holdings["USDC"]["quantity"] == pytest.approx(15.0)


def test_holdings_from_positions(tx) -> None:
    positions = resolve_positions([tx("BTC", "buy", 1.0, 100.0)], {"BTC": 120.0})
    src = holdings_from_positions(positions, as_of=NOW)
    assert src.source == "manual"
    assert not src.failed
    assert src.holdings == [_h("manual", "BTC", 1.0, 120.0)]
