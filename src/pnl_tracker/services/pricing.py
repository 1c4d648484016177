"""Price fetching (CoinGecko API) and last-known price book."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, Optional

import requests

from pnl_tracker.config.constants import (
    COINGECKO_API_URL,
    COINGECKO_ASSET_IDS,
    DISPLAY_CURRENCY,
    HTTP_TIMEOUT_SECONDS,
    PEGGED_ASSETS,
)
from pnl_tracker.errors import SourceFetchError

logger = logging.getLogger(__name__)

PRICE_SOURCE = "coingecko"


def coin_id_for(symbol: str) -> str:
    return COINGECKO_ASSET_IDS.get((symbol or "").upper(), (symbol or "").lower())


class CoinGeckoPriceOracle:
    """Batched spot prices from CoinGecko in the display currency."""

    def __init__(self, url: str = COINGECKO_API_URL, timeout: float = HTTP_TIMEOUT_SECONDS) -> None:
        self.url = url
        self.timeout = timeout

    def get_prices(self, symbols: Iterable[str]) -> Dict[str, float]:
        """
        Fetch current prices for the given symbols in one request.

        Symbols CoinGecko cannot resolve are omitted from the result. Pegged
        stablecoins are priced at 1.0 without a lookup.

        Raises:
            SourceFetchError: the request failed or returned an unusable body.
        """
        wanted = sorted({(s or "").upper() for s in symbols if s})
        prices: Dict[str, float] = {s: PEGGED_ASSETS[s] for s in wanted if s in PEGGED_ASSETS}
        to_fetch = [s for s in wanted if s not in PEGGED_ASSETS]
        if not to_fetch:
            return prices

        ids = {s: coin_id_for(s) for s in to_fetch}
        try:
            response = requests.get(
                self.url,
                params={"ids": ",".join(sorted(set(ids.values()))), "vs_currencies": DISPLAY_CURRENCY},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise SourceFetchError(PRICE_SOURCE, f"price request failed: {e}") from e
        if not isinstance(data, dict):
            raise SourceFetchError(PRICE_SOURCE, "unexpected response body")

        for symbol, coin_id in ids.items():
            entry = data.get(coin_id) or {}
            price = entry.get(DISPLAY_CURRENCY) if isinstance(entry, dict) else None
            if price is not None:
                prices[symbol] = float(price)
        missing = [s for s in to_fetch if s not in prices]
        if missing:
            logger.info("No price for %s", ", ".join(missing))
        return prices


class PriceBook:
    """
    Last-known prices with timestamps.

    A failed oracle call leaves existing prices in place; a partial result
    updates only the symbols it contains.
    """

    def __init__(self, cache: Optional[Dict[str, Any]] = None) -> None:
        self._cache: Dict[str, Dict[str, Any]] = dict(cache or {})

    def prices(self) -> Dict[str, float]:
        return {s: float(e["price"]) for s, e in self._cache.items() if e.get("price") is not None}

    def get(self, symbol: str) -> Optional[float]:
        entry = self._cache.get((symbol or "").upper())
        return entry.get("price") if entry else None

    def is_fresh(self, symbol: str, max_age: timedelta, now: Optional[datetime] = None) -> bool:
        entry = self._cache.get((symbol or "").upper())
        if not entry or not entry.get("timestamp"):
            return False
        try:
            ts = datetime.fromisoformat(entry["timestamp"])
        except (TypeError, ValueError):
            return False
        return (now or datetime.now()) - ts < max_age

    def update(self, prices: Dict[str, float], now: Optional[datetime] = None) -> None:
        stamp = (now or datetime.now()).isoformat()
        for symbol, price in prices.items():
            self._cache[symbol.upper()] = {"price": float(price), "timestamp": stamp}

    def refresh(self, oracle: CoinGeckoPriceOracle, symbols: Iterable[str], now: Optional[datetime] = None) -> Optional[str]:
        """
        Pull prices for symbols from the oracle into the book.

        Returns:
            None on success, or the error message when the oracle failed and
            last-known prices were kept.
        """
        try:
            fetched = oracle.get_prices(symbols)
        except SourceFetchError as e:
            logger.warning("Using last-known prices: %s", e)
            return str(e)
        self.update(fetched, now)
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {s: dict(e) for s, e in self._cache.items()}
