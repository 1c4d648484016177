"""Application bootstrap and core API entrypoints for the P&L tracker.

Provides a small core API (add_transaction, remove_transaction,
add_manual_balance, remove_manual_balance, current_positions, refresh) for
scripts and hosts, plus the ``pnl-tracker`` command line.
"""

from __future__ import annotations

import argparse
import logging
import math
import sys
from datetime import timedelta
from typing import Dict, Optional, Sequence

from pnl_tracker.config.constants import BASE_DIR, HISTORY_DISPLAY_LIMIT, SOURCE_MANUAL
from pnl_tracker.errors import ConfigError, PnLTrackerError, ValidationError
from pnl_tracker.formatting import format_currency, format_percentage, format_token_amount, trend_for_value
from pnl_tracker.models.core import HoldingSource, NotificationEvent, NotificationSettings, Position, Transaction
from pnl_tracker.services.exchanges import ExchangeCredentials, ExchangeService
from pnl_tracker.services.pipeline import PortfolioRefresher, RecomputeResult
from pnl_tracker.services.positions import resolve_positions
from pnl_tracker.services.pricing import CoinGeckoPriceOracle
from pnl_tracker.services.storage import JsonFileStore, PortfolioRepository
from pnl_tracker.services.wallet import AlchemyWalletProvider

logger = logging.getLogger(__name__)

PRICE_MAX_AGE = timedelta(minutes=5)

_TREND_MARKS = {"up": "+", "down": "-", "flat": " "}


def open_repository(data_dir: Optional[str] = None) -> PortfolioRepository:
    """Repository over JSON files in data_dir (defaults to BASE_DIR)."""
    return PortfolioRepository(JsonFileStore(data_dir or BASE_DIR))


def add_transaction(
    repository: PortfolioRepository,
    symbol: str,
    side: str,
    amount: float,
    price: float,
    fee: float = 0.0,
    source: str = SOURCE_MANUAL,
    notes: Optional[str] = None,
) -> Transaction:
    """Validate and append a transaction to the stored ledger.

    Raises:
        ValidationError: the transaction is malformed; nothing is saved.
    """
    ledger = repository.load_ledger()
    tx = Transaction.create(symbol, side, amount, price, fee=fee, source=source, notes=notes)
    ledger.append(tx)
    repository.save_ledger(ledger)
    return tx


def remove_transaction(repository: PortfolioRepository, tx_id: str) -> None:
    ledger = repository.load_ledger()
    ledger.remove(tx_id)
    repository.save_ledger(ledger)


def add_manual_balance(
    repository: PortfolioRepository,
    exchange: str,
    symbol: str,
    quantity: float,
    price: float = 0.0,
    notes: Optional[str] = None,
) -> HoldingSource:
    """Record a balance held on an exchange that is not connected.

    A price of 0 means the balance is valued at the current market price.

    Raises:
        ValidationError: missing exchange or symbol, or a non-positive or
            non-finite quantity, or a negative or non-finite price.
    """
    exchange = (exchange or "").strip()
    if not exchange or not (symbol or "").strip():
        raise ValidationError("Please provide exchange name, token symbol, and amount.")
    if not math.isfinite(quantity) or not quantity > 0:
        raise ValidationError(f"Amount must be a positive finite number, got {quantity}.")
    if not math.isfinite(price) or price < 0:
        raise ValidationError(f"Price must be a finite non-negative number, got {price}.")
    balance = HoldingSource.create(exchange, symbol, quantity, price, notes=notes)
    repository.save_manual_balances(repository.load_manual_balances() + [balance])
    logger.info("Added %g %s from %s", quantity, balance.symbol, exchange)
    return balance


def remove_manual_balance(repository: PortfolioRepository, balance_id: str) -> None:
    """Delete a manual balance by id. Unknown ids are ignored."""
    remaining = [b for b in repository.load_manual_balances() if b.id != balance_id]
    repository.save_manual_balances(remaining)


def current_positions(
    repository: PortfolioRepository,
    oracle: Optional[CoinGeckoPriceOracle] = None,
) -> Dict[str, Position]:
    """Resolve stored transactions against cached prices, refreshing stale ones."""
    ledger = repository.load_ledger()
    book = repository.load_price_book()
    stale = [s for s in ledger.symbols() if not book.is_fresh(s, PRICE_MAX_AGE)]
    if stale and oracle is not None:
        book.refresh(oracle, stale)
        repository.save_price_book(book)
    return resolve_positions(ledger.all(), book.prices())


def import_exchange_transactions(repository: PortfolioRepository, service: ExchangeService) -> int:
    """Sync all exchanges and append fetched transactions not already in the ledger.

    Returns the number of transactions added. Exchanges that fail are logged
    and skipped.
    """
    result = service.sync_all()
    for exchange_id, message in result.failures.items():
        logger.warning("%s not imported: %s", exchange_id, message)
    ledger = repository.load_ledger()
    known = {t.id for t in ledger}
    added = 0
    for tx in result.to_transactions():
        if tx.id in known:
            continue
        try:
            ledger.append(tx)
            added += 1
        except ValidationError as e:
            logger.warning("Skipping %s from %s: %s", tx.id, tx.source, e)
    repository.save_ledger(ledger)
    return added


def refresh(
    repository: PortfolioRepository,
    wallet_address: Optional[str] = None,
    deliver=None,
) -> Optional[RecomputeResult]:
    """Run the full pipeline once: fetch prices and sources, sample, evaluate."""
    refresher = PortfolioRefresher(
        repository,
        oracle=CoinGeckoPriceOracle(),
        exchanges=ExchangeService(repository),
        wallet=AlchemyWalletProvider() if wallet_address else None,
        wallet_address=wallet_address,
        deliver=deliver,
    )
    return refresher.run_once()


def _print_positions(positions: Dict[str, Position]) -> None:
    if not positions:
        print("No open positions.")
        return
    for p in sorted(positions.values(), key=lambda p: p["current_value"], reverse=True):
        print(
            f"{_TREND_MARKS[trend_for_value(p['pnl'])]} {p['symbol']:<6} "
            f"{format_token_amount(p['total_amount'], p['symbol']):>14}  "
            f"avg {format_currency(p['avg_cost_basis']):>12}  "
            f"value {format_currency(p['current_value']):>12}  "
            f"P&L {format_currency(p['pnl'])} ({format_percentage(p['pnl_percentage'])})"
        )


def _print_event(event: NotificationEvent) -> None:
    print(f"[{event.kind}] {event.message}")


def _parse_toggle(value: str) -> bool:
    v = value.strip().lower()
    if v in ("on", "true", "yes", "1"):
        return True
    if v in ("off", "false", "no", "0"):
        return False
    raise argparse.ArgumentTypeError(f"expected on/off, got {value!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pnl-tracker", description="Track token portfolio P&L.")
    parser.add_argument("--data-dir", help="Directory for stored data (default: %(default)s)", default=None)
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    add = sub.add_parser("add", help="Record a buy or sell")
    add.add_argument("symbol")
    add.add_argument("side", choices=["buy", "sell"])
    add.add_argument("amount", type=float)
    add.add_argument("price", type=float)
    add.add_argument("--fee", type=float, default=0.0)
    add.add_argument("--notes")

    rm = sub.add_parser("remove", help="Delete a transaction by id")
    rm.add_argument("id")

    sub.add_parser("transactions", help="List recorded transactions")
    sub.add_parser("positions", help="Show current positions")

    snap = sub.add_parser("snapshot", help="Refresh all sources and record today's snapshot")
    snap.add_argument("--wallet", help="On-chain wallet address to include")

    hist = sub.add_parser("history", help="Show daily snapshots")
    hist.add_argument("--limit", type=int, default=HISTORY_DISPLAY_LIMIT)

    start = sub.add_parser("start-balance", help="Set the starting balance for the first snapshot")
    start.add_argument("value", type=float)

    st = sub.add_parser("settings", help="Show or change notification settings")
    st.add_argument("--daily-pnl", type=_parse_toggle)
    st.add_argument("--price-change", type=_parse_toggle)
    st.add_argument("--price-threshold", type=float)
    st.add_argument("--sync", type=_parse_toggle)
    st.add_argument("--significant-change", type=_parse_toggle)
    st.add_argument("--significant-amount", type=float)

    conn = sub.add_parser("connect", help="Connect an exchange")
    conn.add_argument("exchange", choices=["coinbase", "base"])
    conn.add_argument("--api-key", required=True)
    conn.add_argument("--api-secret", default="")
    conn.add_argument("--passphrase")

    disc = sub.add_parser("disconnect", help="Disconnect an exchange")
    disc.add_argument("exchange")

    sub.add_parser("sync", help="Import transactions from connected exchanges")

    bal = sub.add_parser("balance", help="Manage balances held on unconnected exchanges")
    bal_sub = bal.add_subparsers(dest="balance_command", required=True)
    bal_add = bal_sub.add_parser("add", help="Record a balance")
    bal_add.add_argument("exchange")
    bal_add.add_argument("symbol")
    bal_add.add_argument("amount", type=float)
    bal_add.add_argument("--price", type=float, default=0.0, help="Fixed unit price (default: market price)")
    bal_add.add_argument("--notes")
    bal_rm = bal_sub.add_parser("remove", help="Delete a balance by id")
    bal_rm.add_argument("id")
    bal_sub.add_parser("list", help="List recorded balances")
    return parser


def _run_balance_command(repository: PortfolioRepository, args: argparse.Namespace) -> None:
    if args.balance_command == "add":
        b = add_manual_balance(repository, args.exchange, args.symbol, args.amount, args.price, notes=args.notes)
        print(f"Added {b.quantity:g} {b.symbol} from {b.source} ({b.id})")
    elif args.balance_command == "remove":
        remove_manual_balance(repository, args.id)
    else:
        for b in repository.load_manual_balances():
            price = format_currency(b.price) if b.price > 0 else "market"
            line = f"{b.id}  {b.source:<12} {format_token_amount(b.quantity, b.symbol):>14} {b.symbol:<6} @ {price}"
            print(f"{line}  ({b.notes})" if b.notes else line)


def _update_settings(current: NotificationSettings, args: argparse.Namespace) -> NotificationSettings:
    changes = {
        "daily_pnl_enabled": args.daily_pnl,
        "price_change_enabled": args.price_change,
        "price_change_threshold": args.price_threshold,
        "sync_notifications_enabled": args.sync,
        "significant_change_enabled": args.significant_change,
        "significant_change_amount": args.significant_amount,
    }
    data = current.to_dict()
    data.update({k: v for k, v in changes.items() if v is not None})
    return NotificationSettings.from_dict(data)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point for the ``pnl-tracker`` command."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    repository = open_repository(args.data_dir)

    try:
        if args.command == "add":
            tx = add_transaction(repository, args.symbol, args.side, args.amount, args.price,
                                 fee=args.fee, notes=args.notes)
            print(f"Added {tx.side} of {tx.amount:g} {tx.symbol} ({tx.id})")
        elif args.command == "remove":
            remove_transaction(repository, args.id)
        elif args.command == "transactions":
            for tx in repository.load_ledger():
                print(f"{tx.id}  {tx.timestamp:%Y-%m-%d %H:%M}  {tx.side:<4} {tx.amount:g} {tx.symbol} "
                      f"@ {format_currency(tx.price)}  [{tx.source}]")
        elif args.command == "positions":
            _print_positions(current_positions(repository, CoinGeckoPriceOracle()))
        elif args.command == "snapshot":
            result = refresh(repository, wallet_address=args.wallet, deliver=_print_event)
            if result is None:
                print("Refresh skipped.")
                return 1
            _print_positions(result.positions)
            for source, message in result.aggregation.failures.items():
                print(f"Source {source} failed: {message}", file=sys.stderr)
            if result.price_error:
                print(f"Using last-known prices ({result.price_error})", file=sys.stderr)
            print(f"Total value: {format_currency(result.aggregation.total_value)}")
            if result.snapshot:
                print(f"Today: {format_currency(result.snapshot['daily_change'])} "
                      f"({format_percentage(result.snapshot['daily_change_percentage'])})")
        elif args.command == "history":
            for s in repository.load_snapshots().recent(args.limit):
                print(f"{s['date']}  {format_currency(s['portfolio_value']):>14}  "
                      f"{format_currency(s['daily_change']):>12}  {format_percentage(s['daily_change_percentage'])}")
        elif args.command == "start-balance":
            repository.save_start_balance(args.value)
        elif args.command == "settings":
            settings = _update_settings(repository.load_settings(), args)
            repository.save_settings(settings)
            for key, value in settings.to_dict().items():
                print(f"{key}: {value}")
        elif args.command == "connect":
            service = ExchangeService(repository)
            creds = ExchangeCredentials(args.api_key, args.api_secret, args.passphrase)
            conn = service.connect(args.exchange, creds)
            print(f"Connected to {conn['name']}")
        elif args.command == "disconnect":
            ExchangeService(repository).disconnect(args.exchange)
        elif args.command == "sync":
            added = import_exchange_transactions(repository, ExchangeService(repository))
            print(f"Imported {added} transaction(s)")
        elif args.command == "balance":
            _run_balance_command(repository, args)
    except (ValidationError, ConfigError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except PnLTrackerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
