"""Pytest configuration: ensure src is on path when running tests from repo root."""

import sys
from datetime import datetime
from pathlib import Path

import pytest

_root = Path(__file__).resolve().parents[1]
_src = _root / "src"
if _src.is_dir() and str(_src) not in sys.path:
    sys.path.insert(0, str(_src))

from pnl_tracker.models.core import Transaction  # noqa: E402
from pnl_tracker.services.storage import MemoryStore, PortfolioRepository  # noqa: E402


@pytest.fixture
def repository() -> PortfolioRepository:
    return PortfolioRepository(MemoryStore())


def make_tx(symbol, side, amount, price, tx_id=None, fee=0.0, source="manual", day=1) -> Transaction:
    """Transaction with a deterministic id and timestamp."""
    return Transaction(
        id=tx_id or f"{symbol}-{side}-{amount}-{price}",
        symbol=symbol,
        side=side,
        amount=amount,
        price=price,
        fee=fee,
        timestamp=datetime(2024, 1, day, 12, 0),
        source=source,
    )


@pytest.fixture
def tx():
    return make_tx
