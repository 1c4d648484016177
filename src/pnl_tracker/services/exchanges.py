"""Exchange connectors and the multi-exchange sync service.

Connectors share one capability (validate_credentials, get_transactions,
get_balances) and are selected by exchange id from CONNECTOR_FACTORIES.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Protocol

from pnl_tracker.config.constants import MIN_CREDENTIAL_LENGTH, SIDE_BUY, SIDE_SELL
from pnl_tracker.errors import ConfigError, SourceFetchError
from pnl_tracker.models.core import HoldingSource, SourceBalances, Transaction
from pnl_tracker.services.storage import PortfolioRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExchangeCredentials:
    api_key: str
    api_secret: str = ""
    passphrase: Optional[str] = None
    sandbox: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "api_key": self.api_key,
            "api_secret": self.api_secret,
            "passphrase": self.passphrase,
            "sandbox": self.sandbox,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExchangeCredentials":
        return cls(
            api_key=data.get("api_key") or data.get("apiKey") or "",
            api_secret=data.get("api_secret") or data.get("apiSecret") or "",
            passphrase=data.get("passphrase"),
            sandbox=bool(data.get("sandbox", False)),
        )


class ExchangeConnector(Protocol):
    def validate_credentials(self) -> bool: ...

    def get_transactions(self, limit: int = 100) -> List[Transaction]: ...

    def get_balances(self) -> List[HoldingSource]: ...


def _long_enough(value: Optional[str]) -> bool:
    return bool(value) and len(value or "") > MIN_CREDENTIAL_LENGTH


class CoinbaseProConnector:
    """Coinbase Pro account.

    Returns representative fills and balances; authenticated calls to
    /fills and /accounts replace them once request signing is in place.
    """

    exchange_id = "coinbase"
    name = "Coinbase Pro"

    def __init__(self, credentials: ExchangeCredentials, now: Optional[Callable[[], datetime]] = None) -> None:
        self.credentials = credentials
        self._now = now or datetime.now

    def validate_credentials(self) -> bool:
        c = self.credentials
        return _long_enough(c.api_key) and _long_enough(c.api_secret) and bool(c.passphrase)

    def get_transactions(self, limit: int = 100) -> List[Transaction]:
        now = self._now()
        fills = [
            ("cb_1", "BTC", SIDE_BUY, 0.5, 45000.0, 112.5, 7),
            ("cb_2", "ETH", SIDE_BUY, 2.0, 3000.0, 15.0, 5),
            ("cb_3", "BTC", SIDE_SELL, 0.1, 47000.0, 23.5, 2),
        ]
        return [
            Transaction(
                id=tx_id, symbol=symbol, side=side, amount=amount, price=price, fee=fee,
                timestamp=now - timedelta(days=days_ago), source=self.exchange_id,
            )
            for tx_id, symbol, side, amount, price, fee, days_ago in fills
        ][:limit]

    def get_balances(self) -> List[HoldingSource]:
        now = self._now()
        return [
            HoldingSource(source=self.exchange_id, symbol="BTC", quantity=0.4, price=0.0, updated_at=now),
            HoldingSource(source=self.exchange_id, symbol="ETH", quantity=2.0, price=0.0, updated_at=now),
            HoldingSource(source=self.exchange_id, symbol="USD", quantity=1500.75, price=1.0, updated_at=now),
        ]


class BaseChainConnector:
    """Base chain account keyed by an indexer API key."""

    exchange_id = "base"
    name = "Base Chain"

    def __init__(self, credentials: ExchangeCredentials, now: Optional[Callable[[], datetime]] = None) -> None:
        self.credentials = credentials
        self._now = now or datetime.now

    def validate_credentials(self) -> bool:
        return _long_enough(self.credentials.api_key)

    def get_transactions(self, limit: int = 100) -> List[Transaction]:
        now = self._now()
        return [
            Transaction(
                id="base_1", symbol="ETH", side=SIDE_BUY, amount=1.0, price=3100.0, fee=0.005,
                timestamp=now - timedelta(days=3), source=self.exchange_id,
            ),
            Transaction(
                id="base_2", symbol="USDC", side=SIDE_SELL, amount=1000.0, price=1.0, fee=0.002,
                timestamp=now - timedelta(days=1), source=self.exchange_id,
            ),
        ][:limit]

    def get_balances(self) -> List[HoldingSource]:
        now = self._now()
        return [
            HoldingSource(source=self.exchange_id, symbol="ETH", quantity=1.0, price=0.0, updated_at=now),
            HoldingSource(source=self.exchange_id, symbol="USDC", quantity=500.0, price=1.0, updated_at=now),
        ]


ConnectorFactory = Callable[[ExchangeCredentials], ExchangeConnector]

CONNECTOR_FACTORIES: Dict[str, ConnectorFactory] = {
    "coinbase": CoinbaseProConnector,
    "base": BaseChainConnector,
}

EXCHANGE_NAMES = {"coinbase": CoinbaseProConnector.name, "base": BaseChainConnector.name}


@dataclass
class ExchangeData:
    transactions: List[Transaction]
    balances: List[HoldingSource]
    last_updated: datetime


@dataclass
class ExchangeSyncResult:
    data: Dict[str, ExchangeData] = field(default_factory=dict)
    failures: Dict[str, str] = field(default_factory=dict)

    def source_balances(self) -> List[SourceBalances]:
        """One SourceBalances per exchange, failed exchanges carrying their error."""
        out = [SourceBalances(source=ex_id, holdings=list(d.balances)) for ex_id, d in self.data.items()]
        out.extend(SourceBalances(source=ex_id, error=msg) for ex_id, msg in self.failures.items())
        return out

    def to_transactions(self) -> List[Transaction]:
        """All fetched transactions, exchange by exchange in sync order."""
        return [tx for d in self.data.values() for tx in d.transactions]


class ExchangeService:
    """Connects exchanges and syncs them in parallel, isolating failures per exchange."""

    def __init__(
        self,
        repository: PortfolioRepository,
        factories: Optional[Dict[str, ConnectorFactory]] = None,
        max_workers: int = 4,
        now: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.repository = repository
        self.factories = dict(factories if factories is not None else CONNECTOR_FACTORIES)
        self.max_workers = max_workers
        self._now = now or datetime.now

    def _connector(self, exchange_id: str, credentials: ExchangeCredentials) -> ExchangeConnector:
        factory = self.factories.get(exchange_id)
        if factory is None:
            raise ConfigError(exchange_id, f"Unsupported exchange: {exchange_id}")
        return factory(credentials)

    def fetch_exchange_data(self, exchange_id: str, credentials: ExchangeCredentials) -> ExchangeData:
        """
        Validate credentials, then fetch transactions and balances.

        Raises:
            ConfigError: unsupported exchange or invalid credentials.
            SourceFetchError: the connector failed while fetching.
        """
        try:
            api = self._connector(exchange_id, credentials)
            if not api.validate_credentials():
                raise ConfigError(exchange_id, "Invalid API credentials")
            transactions = api.get_transactions()
            balances = api.get_balances()
        except (ConfigError, SourceFetchError):
            raise
        except Exception as e:
            raise SourceFetchError(exchange_id, f"fetch failed: {e}") from e
        return ExchangeData(transactions=transactions, balances=balances, last_updated=self._now())

    def connect(self, exchange_id: str, credentials: ExchangeCredentials) -> Dict[str, Any]:
        """Validate and store a connection. Raises ConfigError if it cannot be made."""
        if not credentials.api_key:
            raise ConfigError(exchange_id, "Please provide valid API credentials")
        api = self._connector(exchange_id, credentials)
        try:
            valid = api.validate_credentials()
        except Exception as e:
            raise SourceFetchError(exchange_id, f"credential check failed: {e}") from e
        if not valid:
            raise ConfigError(exchange_id, "Failed to validate credentials")
        connection = {
            "id": exchange_id,
            "name": EXCHANGE_NAMES.get(exchange_id, exchange_id),
            "connected": True,
            "last_sync": self._now().isoformat(),
            "credentials": credentials.to_dict(),
        }
        others = [c for c in self.repository.load_connections() if c.get("id") != exchange_id]
        self.repository.save_connections(others + [connection])
        logger.info("Connected %s", exchange_id)
        return connection

    def disconnect(self, exchange_id: str) -> None:
        remaining = [c for c in self.repository.load_connections() if c.get("id") != exchange_id]
        self.repository.save_connections(remaining)

    def connections(self) -> List[Dict[str, Any]]:
        return self.repository.load_connections()

    def _update_sync_time(self, exchange_ids: List[str]) -> None:
        if not exchange_ids:
            return
        stamp = self._now().isoformat()
        updated = [
            dict(c, last_sync=stamp) if c.get("id") in exchange_ids else c
            for c in self.repository.load_connections()
        ]
        self.repository.save_connections(updated)

    def sync_all(self) -> ExchangeSyncResult:
        """Sync every connected exchange concurrently; one failure never blocks the others."""
        active = [c for c in self.repository.load_connections() if c.get("connected") and c.get("credentials")]
        result = ExchangeSyncResult()
        if not active:
            return result

        fetched: Dict[str, ExchangeData] = {}
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = {
                pool.submit(
                    self.fetch_exchange_data, c["id"], ExchangeCredentials.from_dict(c["credentials"])
                ): c["id"]
                for c in active
            }
            for future in as_completed(futures):
                exchange_id = futures[future]
                try:
                    fetched[exchange_id] = future.result()
                except (ConfigError, SourceFetchError) as e:
                    logger.warning("Failed to sync %s: %s", exchange_id, e.message)
                    result.failures[exchange_id] = e.message

        # Connection order, not completion order
        result.data = {c["id"]: fetched[c["id"]] for c in active if c["id"] in fetched}
        self._update_sync_time(list(result.data))
        logger.info("Synced %d exchange(s), %d failed", len(result.data), len(result.failures))
        return result
