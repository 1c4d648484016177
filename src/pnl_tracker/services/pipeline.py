"""The recompute pipeline and the periodic refresher that drives it.

recompute() is the one explicit step that turns ledger, prices and source
balances into positions, an aggregate valuation, today's snapshot and the
notifications they warrant. PortfolioRefresher fetches the inputs and runs it
on a fixed interval, never more than one run at a time.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from pnl_tracker.config.constants import (
    HISTORY_DISPLAY_LIMIT,
    POPULAR_ASSETS,
    PRICE_REFRESH_INTERVAL_SECONDS,
    SOURCE_MANUAL,
)
from pnl_tracker.errors import ConfigError, SourceFetchError
from pnl_tracker.models.core import (
    AggregationResult,
    DailySnapshot,
    HoldingSource,
    NotificationEvent,
    NotificationSettings,
    PortfolioTotals,
    Position,
    SourceBalances,
    Transaction,
)
from pnl_tracker.services.aggregation import aggregate_sources, holdings_from_positions
from pnl_tracker.services.exchanges import ExchangeService, ExchangeSyncResult
from pnl_tracker.services.notifications import AggregationDelta, evaluate
from pnl_tracker.services.positions import portfolio_totals, resolve_positions
from pnl_tracker.services.pricing import CoinGeckoPriceOracle
from pnl_tracker.services.snapshots import SnapshotTracker
from pnl_tracker.services.storage import PortfolioRepository
from pnl_tracker.services.wallet import AlchemyWalletProvider

logger = logging.getLogger(__name__)


@dataclass
class RecomputeResult:
    positions: Dict[str, Position]
    totals: PortfolioTotals
    aggregation: AggregationResult
    snapshot: Optional[DailySnapshot]
    events: List[NotificationEvent] = field(default_factory=list)
    price_error: Optional[str] = None


def price_holdings(src: SourceBalances, prices: Mapping[str, float]) -> SourceBalances:
    """Fill in prices for holdings their source reported without one."""
    if src.failed:
        return src
    priced = [
        h if h.price > 0 else replace(h, price=float(prices.get(h.symbol) or 0.0))
        for h in src.holdings
    ]
    return SourceBalances(source=src.source, holdings=priced)


def group_manual_balances(balances: Iterable[HoldingSource]) -> List[SourceBalances]:
    """Manually entered balances, one SourceBalances per named exchange."""
    grouped: Dict[str, SourceBalances] = {}
    for b in balances:
        grouped.setdefault(b.source, SourceBalances(source=b.source)).holdings.append(b)
    return list(grouped.values())


def recompute(
    transactions: Iterable[Transaction],
    prices: Mapping[str, float],
    sources: Iterable[SourceBalances],
    tracker: SnapshotTracker,
    settings: Optional[NotificationSettings] = None,
    today: Optional[date] = None,
    delta: Optional[AggregationDelta] = None,
) -> RecomputeResult:
    """
    Resolve, aggregate, sample and evaluate in one step.

    Ledger positions count as the manual source alongside the given sources.
    Ledger transactions tagged with a source that reported balances this run
    are left out of the manual valuation, since that source's balances
    already cover them; if the source failed they stand in for it.
    A zero total is not sampled, so an empty or unpriced portfolio never
    writes a snapshot.
    """
    today = today or date.today()
    transactions = list(transactions)
    sources = list(sources)
    positions = resolve_positions(transactions, prices)

    reporting = {s.source for s in sources if not s.failed} - {SOURCE_MANUAL}
    unreported = [t for t in transactions if t.source not in reporting]
    manual = holdings_from_positions(resolve_positions(unreported, prices), source=SOURCE_MANUAL)
    aggregation = aggregate_sources([manual] + [price_holdings(s, prices) for s in sources])

    if aggregation.total_value != 0:
        snapshot = tracker.sample(aggregation.total_value, today)
    else:
        snapshot = tracker.today(today)

    events = evaluate(settings or NotificationSettings(), snapshot, delta, today)
    return RecomputeResult(
        positions=positions,
        totals=portfolio_totals(positions),
        aggregation=aggregation,
        snapshot=snapshot,
        events=events,
    )


class PortfolioRefresher:
    """
    Runs fetch -> resolve -> aggregate -> sample -> evaluate periodically.

    A trigger arriving while a run is in flight is dropped. After close(),
    results of fetches still in flight are discarded instead of applied.
    """

    def __init__(
        self,
        repository: PortfolioRepository,
        oracle: Optional[CoinGeckoPriceOracle] = None,
        exchanges: Optional[ExchangeService] = None,
        wallet: Optional[AlchemyWalletProvider] = None,
        wallet_address: Optional[str] = None,
        deliver: Optional[Callable[[NotificationEvent], None]] = None,
        interval: float = PRICE_REFRESH_INTERVAL_SECONDS,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.repository = repository
        self.oracle = oracle or CoinGeckoPriceOracle()
        self.exchanges = exchanges
        self.wallet = wallet
        self.wallet_address = wallet_address
        self.deliver = deliver
        self.interval = interval
        self.clock = clock
        self.notifications = repository.load_notification_log()
        self.last_result: Optional[RecomputeResult] = None

        self._run_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._generation = 0
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def closed(self) -> bool:
        return self._stop.is_set()

    def _fetch_wallet(self) -> SourceBalances:
        source = self.wallet.source if self.wallet else "wallet"
        try:
            return SourceBalances(source=source, holdings=self.wallet.get_balances(self.wallet_address))
        except (ConfigError, SourceFetchError) as e:
            logger.warning("Wallet refresh failed: %s", e)
            return SourceBalances(source=source, error=e.message)

    def _fetch_sources(self) -> Tuple[ExchangeSyncResult, Optional[SourceBalances]]:
        sync = ExchangeSyncResult()
        wallet_src: Optional[SourceBalances] = None
        with ThreadPoolExecutor(max_workers=2) as pool:
            sync_future = pool.submit(self.exchanges.sync_all) if self.exchanges else None
            wallet_future = (
                pool.submit(self._fetch_wallet) if self.wallet and self.wallet_address else None
            )
            if sync_future is not None:
                sync = sync_future.result()
            if wallet_future is not None:
                wallet_src = wallet_future.result()
        return sync, wallet_src

    def run_once(self) -> Optional[RecomputeResult]:
        """Run the pipeline once. Returns None if dropped, closed, or cancelled mid-run."""
        if self.closed:
            return None
        if not self._run_lock.acquire(blocking=False):
            logger.warning("Refresh already in progress; dropping trigger")
            return None
        try:
            with self._state_lock:
                generation = self._generation

            sync, wallet_src = self._fetch_sources()
            sources: List[SourceBalances] = group_manual_balances(self.repository.load_manual_balances())
            sources.extend(sync.source_balances())
            if wallet_src is not None:
                sources.append(wallet_src)

            ledger = self.repository.load_ledger()
            symbols = set(ledger.symbols()) | set(POPULAR_ASSETS)
            for src in sources:
                symbols.update(h.symbol for h in src.holdings)
            book = self.repository.load_price_book()
            price_error = book.refresh(self.oracle, symbols, now=self.clock())

            with self._state_lock:
                if self.closed or generation != self._generation:
                    logger.warning("Discarding refresh results after shutdown")
                    return None

            now = self.clock()
            synced = tuple(sync.data) + ((wallet_src.source,) if wallet_src and not wallet_src.failed else ())
            delta = AggregationDelta(sync_completed=bool(synced), synced_sources=synced, completed_at=now)

            tracker = self.repository.load_snapshots()
            result = recompute(
                ledger.all(),
                book.prices(),
                sources,
                tracker,
                settings=self.repository.load_settings(),
                today=now.date(),
                delta=delta,
            )
            result.price_error = price_error
            self.repository.save_price_book(book)
            if result.snapshot is not None:
                self.repository.save_snapshots(tracker)
            if self.deliver is not None and result.events:
                self.notifications = self.repository.load_notification_log()
                self.notifications.deliver(result.events, self.deliver)
                self.notifications.prune(now.date() - timedelta(days=HISTORY_DISPLAY_LIMIT))
                self.repository.save_notification_log(self.notifications)
            self.last_result = result
            return result
        finally:
            self._run_lock.release()

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("Portfolio refresh failed")
            if self._stop.wait(self.interval):
                break

    def start(self) -> None:
        """Start periodic refreshes on a daemon thread (first run immediately)."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="pnl-refresher", daemon=True)
        self._thread.start()

    def close(self, timeout: Optional[float] = None) -> None:
        """Stop refreshing; fetches still in flight will not be applied."""
        with self._state_lock:
            self._generation += 1
            self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        self._thread = None
