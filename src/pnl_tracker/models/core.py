"""Typed structures for transactions, positions, holdings, snapshots and notifications."""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, TypedDict

from pnl_tracker.config.constants import (
    DEFAULT_PRICE_CHANGE_THRESHOLD,
    DEFAULT_SIGNIFICANT_CHANGE_AMOUNT,
    SIDE_BUY,
    SOURCE_MANUAL,
)


@dataclass(frozen=True)
class Transaction:
    """A single buy or sell of one asset. Never mutated once created."""

    id: str
    symbol: str
    side: str
    amount: float
    price: float
    timestamp: datetime
    fee: float = 0.0
    source: str = SOURCE_MANUAL
    notes: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "symbol", (self.symbol or "").strip().upper())
        object.__setattr__(self, "side", (self.side or "").strip().lower())

    @classmethod
    def create(
        cls,
        symbol: str,
        side: str,
        amount: float,
        price: float,
        fee: float = 0.0,
        timestamp: Optional[datetime] = None,
        source: str = SOURCE_MANUAL,
        notes: Optional[str] = None,
    ) -> "Transaction":
        """Build a transaction with a fresh id (and the current time if none given)."""
        return cls(
            id=str(uuid.uuid4()),
            symbol=symbol,
            side=side,
            amount=float(amount),
            price=float(price),
            fee=float(fee or 0.0),
            timestamp=timestamp or datetime.now(),
            source=source,
            notes=notes,
        )

    @property
    def is_buy(self) -> bool:
        return self.side == SIDE_BUY

    @property
    def total_value(self) -> float:
        return self.amount * self.price

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Transaction":
        ts = data.get("timestamp")
        if isinstance(ts, (int, float)):
            # Millisecond epoch, as written by older exports
            timestamp = datetime.fromtimestamp(ts / 1000.0)
        elif ts:
            timestamp = datetime.fromisoformat(str(ts))
        else:
            timestamp = datetime.now()
        return cls(
            id=str(data.get("id") or uuid.uuid4()),
            symbol=data.get("symbol") or data.get("tokenSymbol") or "",
            side=data.get("side") or data.get("type") or "",
            amount=float(data.get("amount") or 0.0),
            price=float(data.get("price", data.get("pricePerToken")) or 0.0),
            fee=float(data.get("fee") or 0.0),
            timestamp=timestamp,
            source=data.get("source") or SOURCE_MANUAL,
            notes=data.get("notes"),
        )


class Position(TypedDict, total=False):
    """Per-asset position as returned by resolve_positions."""

    symbol: str
    total_amount: float
    avg_cost_basis: float
    total_invested: float
    current_price: float
    current_value: float
    pnl: float
    pnl_percentage: float
    realized_pnl: float
    transaction_count: int


class PortfolioTotals(TypedDict, total=False):
    """Aggregate figures across all resolved positions."""

    total_value: float
    total_invested: float
    total_pnl: float
    total_pnl_percentage: float
    realized_pnl: float


class DailySnapshot(TypedDict):
    """One calendar day's recorded portfolio value and change versus the prior day."""

    date: str
    portfolio_value: float
    daily_change: float
    daily_change_percentage: float


@dataclass(frozen=True)
class HoldingSource:
    """Balance of one asset as reported by one provenance (manual, exchange, wallet)."""

    source: str
    symbol: str
    quantity: float
    price: float
    updated_at: datetime = field(default_factory=datetime.now)
    id: str = ""
    notes: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "symbol", (self.symbol or "").strip().upper())

    @classmethod
    def create(
        cls,
        source: str,
        symbol: str,
        quantity: float,
        price: float = 0.0,
        notes: Optional[str] = None,
    ) -> "HoldingSource":
        """A manually entered balance with a fresh id."""
        return cls(
            source=source,
            symbol=symbol,
            quantity=float(quantity),
            price=float(price or 0.0),
            id=str(uuid.uuid4()),
            notes=notes or None,
        )

    @property
    def value(self) -> float:
        return self.quantity * self.price

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "symbol": self.symbol,
            "quantity": self.quantity,
            "price": self.price,
            "updated_at": self.updated_at.isoformat(),
            "id": self.id,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HoldingSource":
        """Accepts current records and the exchangeName/tokenSymbol/amount form of older exports."""
        ts = data.get("updated_at", data.get("lastUpdated"))
        if isinstance(ts, (int, float)):
            updated_at = datetime.fromtimestamp(ts / 1000.0)
        elif ts:
            updated_at = datetime.fromisoformat(str(ts))
        else:
            updated_at = datetime.now()
        return cls(
            source=data.get("source") or data.get("exchangeName") or SOURCE_MANUAL,
            symbol=data.get("symbol") or data.get("tokenSymbol") or "",
            quantity=float(data.get("quantity", data.get("amount")) or 0.0),
            price=float(data.get("price", data.get("currentPrice")) or 0.0),
            updated_at=updated_at,
            id=str(data.get("id") or ""),
            notes=data.get("notes") or None,
        )


@dataclass
class SourceBalances:
    """Everything one source reported during a refresh, or the error it failed with."""

    source: str
    holdings: List[HoldingSource] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


class SourceShare(TypedDict):
    quantity: float
    price: float
    value: float


class AggregatedHolding(TypedDict):
    """Same-symbol holdings merged across sources, keeping per-source attribution."""

    symbol: str
    quantity: float
    value: float
    by_source: Dict[str, SourceShare]


@dataclass
class AggregationResult:
    holdings: Dict[str, AggregatedHolding] = field(default_factory=dict)
    total_value: float = 0.0
    failures: Dict[str, str] = field(default_factory=dict)
    sources: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class NotificationSettings:
    """User notification preferences. Pure configuration."""

    daily_pnl_enabled: bool = False
    price_change_enabled: bool = False
    price_change_threshold: float = DEFAULT_PRICE_CHANGE_THRESHOLD
    sync_notifications_enabled: bool = False
    significant_change_enabled: bool = False
    significant_change_amount: float = DEFAULT_SIGNIFICANT_CHANGE_AMOUNT

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "NotificationSettings":
        """Build settings from stored JSON, filling defaults for absent keys.

        Accepts both snake_case keys and the camelCase keys written by older
        versions of the settings file.
        """
        data = data or {}
        defaults = cls()

        def pick(snake: str, camel: str, default: Any) -> Any:
            if snake in data:
                return data[snake]
            return data.get(camel, default)

        return cls(
            daily_pnl_enabled=bool(pick("daily_pnl_enabled", "dailyPnLEnabled", defaults.daily_pnl_enabled)),
            price_change_enabled=bool(pick("price_change_enabled", "priceChangeEnabled", defaults.price_change_enabled)),
            price_change_threshold=float(
                pick("price_change_threshold", "priceChangeThreshold", defaults.price_change_threshold)
            ),
            sync_notifications_enabled=bool(
                pick("sync_notifications_enabled", "syncNotificationsEnabled", defaults.sync_notifications_enabled)
            ),
            significant_change_enabled=bool(
                pick("significant_change_enabled", "significantChangeEnabled", defaults.significant_change_enabled)
            ),
            significant_change_amount=float(
                pick("significant_change_amount", "significantChangeAmount", defaults.significant_change_amount)
            ),
        )


@dataclass(frozen=True)
class NotificationEvent:
    kind: str
    message: str
    timestamp: datetime
    date: str
