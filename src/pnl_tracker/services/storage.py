"""Data persistence: key-value stores and the portfolio repository built on them."""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Union

from pnl_tracker.config.constants import (
    BASE_DIR,
    EXCHANGE_CONNECTIONS_KEY,
    LEDGER_KEY,
    MANUAL_BALANCES_KEY,
    NOTIFICATION_LOG_KEY,
    NOTIFICATION_SETTINGS_KEY,
    PRICE_CACHE_KEY,
    SNAPSHOT_HISTORY_KEY,
    START_BALANCE_KEY,
)
from pnl_tracker.models.core import HoldingSource, NotificationSettings
from pnl_tracker.services.ledger import TransactionLedger
from pnl_tracker.services.notifications import NotificationLog
from pnl_tracker.services.pricing import PriceBook
from pnl_tracker.services.snapshots import SnapshotTracker

logger = logging.getLogger(__name__)

JSONValue = Any


class KeyValueStore(Protocol):
    def load(self, key: str) -> Optional[JSONValue]: ...

    def save(self, key: str, value: JSONValue) -> None: ...


class MemoryStore:
    """In-process store; values are JSON round-tripped so callers never share state."""

    def __init__(self) -> None:
        self._data: Dict[str, str] = {}

    def load(self, key: str) -> Optional[JSONValue]:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def save(self, key: str, value: JSONValue) -> None:
        self._data[key] = json.dumps(value)


class JsonFileStore:
    """One JSON file per key inside a directory."""

    def __init__(self, directory: Union[str, Path] = BASE_DIR) -> None:
        self.directory = Path(directory)

    def path_for(self, key: str) -> Path:
        safe = re.sub(r"[^A-Za-z0-9_.-]", "_", key)
        return self.directory / f"{safe}.json"

    def load(self, key: str) -> Optional[JSONValue]:
        """Return the stored value, or None if the file is missing or unreadable."""
        path = self.path_for(key)
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable %s: %s", path, e)
            return None

    def save(self, key: str, value: JSONValue) -> None:
        """Write the value atomically. Raises on I/O error (caller decides how to report)."""
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(key)
        tmp = path.with_suffix(".json.tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(value, f, indent=4)
        os.replace(tmp, path)


class PortfolioRepository:
    """
    Loads and saves each owned structure under its own key.

    Any key may be absent (first run) or corrupt; loaders then return an
    empty default rather than failing.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    def load_ledger(self) -> TransactionLedger:
        records = self.store.load(LEDGER_KEY)
        return TransactionLedger.from_list(records if isinstance(records, list) else [])

    def save_ledger(self, ledger: TransactionLedger) -> None:
        self.store.save(LEDGER_KEY, ledger.to_list())

    def load_start_balance(self) -> float:
        raw = self.store.load(START_BALANCE_KEY)
        try:
            return float(raw) if raw is not None else 0.0
        except (TypeError, ValueError):
            return 0.0

    def save_start_balance(self, value: float) -> None:
        self.store.save(START_BALANCE_KEY, float(value))

    def load_snapshots(self) -> SnapshotTracker:
        records = self.store.load(SNAPSHOT_HISTORY_KEY)
        return SnapshotTracker.from_list(
            records if isinstance(records, list) else [],
            start_balance=self.load_start_balance(),
        )

    def save_snapshots(self, tracker: SnapshotTracker) -> None:
        self.store.save(SNAPSHOT_HISTORY_KEY, tracker.to_list())

    def load_settings(self) -> NotificationSettings:
        raw = self.store.load(NOTIFICATION_SETTINGS_KEY)
        try:
            return NotificationSettings.from_dict(raw if isinstance(raw, dict) else None)
        except (TypeError, ValueError) as e:
            logger.warning("Invalid notification settings, using defaults: %s", e)
            return NotificationSettings()

    def save_settings(self, settings: NotificationSettings) -> None:
        self.store.save(NOTIFICATION_SETTINGS_KEY, settings.to_dict())

    def load_notification_log(self) -> NotificationLog:
        records = self.store.load(NOTIFICATION_LOG_KEY)
        return NotificationLog.from_list(records if isinstance(records, list) else [])

    def save_notification_log(self, log: NotificationLog) -> None:
        self.store.save(NOTIFICATION_LOG_KEY, log.to_list())

    def load_manual_balances(self) -> List[HoldingSource]:
        records = self.store.load(MANUAL_BALANCES_KEY)
        balances: List[HoldingSource] = []
        for r in records if isinstance(records, list) else []:
            try:
                balances.append(HoldingSource.from_dict(r))
            except (AttributeError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed manual balance %r: %s", r, e)
        return balances

    def save_manual_balances(self, balances: List[HoldingSource]) -> None:
        self.store.save(MANUAL_BALANCES_KEY, [b.to_dict() for b in balances])

    def load_connections(self) -> List[Dict[str, Any]]:
        records = self.store.load(EXCHANGE_CONNECTIONS_KEY)
        return [r for r in records if isinstance(r, dict)] if isinstance(records, list) else []

    def save_connections(self, connections: List[Dict[str, Any]]) -> None:
        self.store.save(EXCHANGE_CONNECTIONS_KEY, connections)

    def load_price_book(self) -> PriceBook:
        raw = self.store.load(PRICE_CACHE_KEY)
        return PriceBook(raw if isinstance(raw, dict) else None)

    def save_price_book(self, book: PriceBook) -> None:
        """Persist the price cache. Ignores I/O errors (non-fatal)."""
        try:
            self.store.save(PRICE_CACHE_KEY, book.to_dict())
        except OSError as e:
            logger.warning("Could not save price cache: %s", e)
