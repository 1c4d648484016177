"""Global configuration constants for the P&L tracker.

These values are free of any presentation concerns so they can be reused by
services, the CLI, and scripts.
"""

from __future__ import annotations

import os
from pathlib import Path

# Base directory for data files (defaults to project root, overridable per environment)
BASE_DIR = Path(os.environ.get("PNL_TRACKER_DATA_DIR") or Path(__file__).resolve().parents[3])

# API endpoints
COINGECKO_API_URL = "https://api.coingecko.com/api/v3/simple/price"
ALCHEMY_RPC_URL = "https://eth-mainnet.g.alchemy.com/v2/{api_key}"
ALCHEMY_API_KEY_ENV = "ALCHEMY_API_KEY"

HTTP_TIMEOUT_SECONDS = 10

# Single display currency
DISPLAY_CURRENCY = "usd"

# Stablecoins valued at 1.0 without a price lookup
PEGGED_ASSETS = {"USD": 1.0, "USDC": 1.0, "USDT": 1.0}

COINGECKO_ASSET_IDS = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "SOL": "solana",
    "USDC": "usd-coin",
    "USDT": "tether",
    "BNB": "binancecoin",
    "XRP": "ripple",
    "ADA": "cardano",
    "MATIC": "matic-network",
    "LINK": "chainlink",
    "DOT": "polkadot",
    "DOGE": "dogecoin",
    "AVAX": "avalanche-2",
}

# Always priced on refresh, even without transactions
POPULAR_ASSETS = ["BTC", "ETH", "SOL", "USDC", "USDT", "BNB", "XRP", "ADA"]

# --- Storage keys (one independent key per owned structure) ---
LEDGER_KEY = "pnl-transactions"
START_BALANCE_KEY = "pnl-start-balance"
SNAPSHOT_HISTORY_KEY = "pnl-daily-history"
NOTIFICATION_SETTINGS_KEY = "pnl-notification-settings"
MANUAL_BALANCES_KEY = "manual-exchange-balances"
EXCHANGE_CONNECTIONS_KEY = "exchange-connections"
PRICE_CACHE_KEY = "price-cache"
NOTIFICATION_LOG_KEY = "pnl-notification-log"

# Transaction sides and source tags
SIDE_BUY = "buy"
SIDE_SELL = "sell"
TRANSACTION_SIDES = (SIDE_BUY, SIDE_SELL)
SOURCE_MANUAL = "manual"
SOURCE_WALLET = "wallet"

# Notification defaults
DEFAULT_PRICE_CHANGE_THRESHOLD = 10.0  # percent
DEFAULT_SIGNIFICANT_CHANGE_AMOUNT = 1000.0  # display currency

NOTIFY_DAILY_PNL = "daily-pnl"
NOTIFY_PERCENTAGE_THRESHOLD = "percentage-threshold"
NOTIFY_DOLLAR_THRESHOLD = "dollar-threshold"
NOTIFY_SYNC_COMPLETE = "sync-complete"

# Sampling schedule and display
PRICE_REFRESH_INTERVAL_SECONDS = 30
HISTORY_DISPLAY_LIMIT = 30

# Wallet scanning
WALLET_DUST_THRESHOLD = 0.0001
WALLET_MAX_TOKENS = 10
NATIVE_DECIMALS = 18

# Minimum credential lengths accepted by the exchange connectors
MIN_CREDENTIAL_LENGTH = 10
