"""On-chain wallet balances via Alchemy JSON-RPC."""

from __future__ import annotations

import logging
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests

from pnl_tracker.config.constants import (
    ALCHEMY_API_KEY_ENV,
    ALCHEMY_RPC_URL,
    HTTP_TIMEOUT_SECONDS,
    NATIVE_DECIMALS,
    SOURCE_WALLET,
    WALLET_DUST_THRESHOLD,
    WALLET_MAX_TOKENS,
)
from pnl_tracker.errors import ConfigError, SourceFetchError
from pnl_tracker.models.core import HoldingSource

logger = logging.getLogger(__name__)


def _hex_to_int(value: Optional[str]) -> int:
    if not value:
        return 0
    try:
        return int(value, 16)
    except (TypeError, ValueError):
        return 0


class AlchemyWalletProvider:
    """Native ETH and ERC-20 balances for one address.

    Any failure surfaces as a single SourceFetchError for the wallet; there
    are no partial results. Holdings are returned unpriced (price 0).
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        source: str = SOURCE_WALLET,
    ) -> None:
        self.api_key = api_key if api_key is not None else os.environ.get(ALCHEMY_API_KEY_ENV, "")
        self.timeout = timeout
        self.source = source

    def _rpc(self, method: str, params: List[Any]) -> Any:
        response = requests.post(
            ALCHEMY_RPC_URL.format(api_key=self.api_key),
            json={"jsonrpc": "2.0", "method": method, "params": params, "id": 1},
            timeout=self.timeout,
        )
        response.raise_for_status()
        body = response.json()
        if body.get("error"):
            raise SourceFetchError(self.source, f"{method}: {body['error'].get('message', body['error'])}")
        return body.get("result")

    def get_balances(self, address: str, now: Optional[datetime] = None) -> List[HoldingSource]:
        """
        Fetch the wallet's native balance and up to WALLET_MAX_TOKENS token balances.

        Raises:
            ConfigError: no API key configured.
            SourceFetchError: any RPC call failed.
        """
        if not self.api_key:
            raise ConfigError(self.source, "Alchemy API key not configured")
        now = now or datetime.now()
        try:
            return self._fetch(address, now)
        except SourceFetchError:
            raise
        except (requests.RequestException, LookupError, ValueError, AttributeError, TypeError) as e:
            raise SourceFetchError(self.source, f"wallet balance request failed: {e}") from e

    def _fetch(self, address: str, now: datetime) -> List[HoldingSource]:
        holdings: List[HoldingSource] = []

        native = _hex_to_int(self._rpc("eth_getBalance", [address, "latest"])) / 10 ** NATIVE_DECIMALS
        if native > WALLET_DUST_THRESHOLD:
            holdings.append(HoldingSource(source=self.source, symbol="ETH", quantity=native, price=0.0, updated_at=now))

        result: Dict[str, Any] = self._rpc("alchemy_getTokenBalances", [address]) or {}
        non_zero = [t for t in result.get("tokenBalances", []) if _hex_to_int(t.get("tokenBalance")) > 0]
        for token in non_zero[:WALLET_MAX_TOKENS]:
            contract = token.get("contractAddress")
            if not contract:
                logger.debug("Skipping token balance without a contract address: %r", token)
                continue
            metadata = self._rpc("alchemy_getTokenMetadata", [contract]) or {}
            decimals = metadata.get("decimals")
            if decimals is None:
                decimals = NATIVE_DECIMALS
            symbol = (metadata.get("symbol") or "UNKNOWN").upper()
            quantity = _hex_to_int(token.get("tokenBalance")) / 10 ** int(decimals)
            if quantity > WALLET_DUST_THRESHOLD:
                holdings.append(
                    HoldingSource(source=self.source, symbol=symbol, quantity=quantity, price=0.0, updated_at=now)
                )
        logger.debug("Wallet %s: %d holdings", address, len(holdings))
        return holdings
