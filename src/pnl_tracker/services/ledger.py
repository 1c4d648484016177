"""Append-only transaction ledger with boundary validation."""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, Iterable, Iterator, List

from pnl_tracker.config.constants import TRANSACTION_SIDES
from pnl_tracker.errors import ValidationError
from pnl_tracker.models.core import Transaction

logger = logging.getLogger(__name__)


def validate_transaction(tx: Transaction) -> None:
    """Raise ValidationError if the transaction cannot enter the ledger."""
    if not tx.symbol:
        raise ValidationError("Transaction symbol must not be empty.")
    if tx.side not in TRANSACTION_SIDES:
        raise ValidationError(f"Unknown transaction side {tx.side!r}; expected buy or sell.")
    if not math.isfinite(tx.amount) or not tx.amount > 0:
        raise ValidationError(f"Amount must be a positive finite number, got {tx.amount}.")
    if not math.isfinite(tx.price) or tx.price < 0:
        raise ValidationError(f"Unit price must be a finite non-negative number, got {tx.price}.")
    if not math.isfinite(tx.fee) or tx.fee < 0:
        raise ValidationError(f"Fee must be a finite non-negative number, got {tx.fee}.")


class TransactionLedger:
    """Ordered log of transactions, kept in insertion order.

    Records are never resorted or de-duplicated; callers that need time order
    sort by timestamp themselves.
    """

    def __init__(self, transactions: Iterable[Transaction] = ()) -> None:
        self._transactions: List[Transaction] = []
        self.extend(transactions)

    def append(self, tx: Transaction) -> None:
        validate_transaction(tx)
        self._transactions.append(tx)

    def extend(self, transactions: Iterable[Transaction]) -> None:
        for tx in transactions:
            self.append(tx)

    def remove(self, tx_id: str) -> None:
        """Remove the transaction with the given id. Unknown ids are ignored."""
        before = len(self._transactions)
        self._transactions = [t for t in self._transactions if t.id != tx_id]
        if len(self._transactions) == before:
            logger.debug("remove(%s): no such transaction", tx_id)

    def all(self) -> List[Transaction]:
        return list(self._transactions)

    def symbols(self) -> List[str]:
        """Distinct symbols in first-seen order."""
        seen: Dict[str, None] = {}
        for tx in self._transactions:
            seen.setdefault(tx.symbol, None)
        return list(seen)

    def __len__(self) -> int:
        return len(self._transactions)

    def __iter__(self) -> Iterator[Transaction]:
        return iter(list(self._transactions))

    def to_list(self) -> List[Dict[str, Any]]:
        return [t.to_dict() for t in self._transactions]

    @classmethod
    def from_list(cls, records: Iterable[Dict[str, Any]]) -> "TransactionLedger":
        """Rebuild a ledger from stored records, skipping any that no longer validate."""
        ledger = cls()
        for record in records:
            if not isinstance(record, dict):
                logger.warning("Skipping stored transaction that is not a record: %r", record)
                continue
            try:
                ledger.append(Transaction.from_dict(record))
            except (ValidationError, ValueError, TypeError) as e:
                logger.warning("Skipping stored transaction %s: %s", record.get("id"), e)
        return ledger
