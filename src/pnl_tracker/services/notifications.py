"""Threshold-based change notifications derived from snapshots and syncs."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Any, Callable, Iterable, List, Optional, Set, Tuple, Union

from pnl_tracker.config.constants import (
    NOTIFY_DAILY_PNL,
    NOTIFY_DOLLAR_THRESHOLD,
    NOTIFY_PERCENTAGE_THRESHOLD,
    NOTIFY_SYNC_COMPLETE,
)
from pnl_tracker.formatting import format_currency, format_percentage
from pnl_tracker.models.core import DailySnapshot, NotificationEvent, NotificationSettings
from pnl_tracker.services.snapshots import date_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AggregationDelta:
    """What changed on the source side since the last evaluation."""

    sync_completed: bool = False
    synced_sources: Tuple[str, ...] = ()
    completed_at: Optional[datetime] = None


def _day_start(*keys: str) -> datetime:
    """Midnight of the first key that parses as an ISO date."""
    for key in keys:
        try:
            return datetime.combine(date.fromisoformat(key), time())
        except (TypeError, ValueError):
            logger.debug("Unparseable date key %r", key)
    return datetime.min


def evaluate(
    settings: NotificationSettings,
    latest_snapshot: Optional[DailySnapshot],
    delta: Optional[AggregationDelta],
    today: Union[date, str],
) -> List[NotificationEvent]:
    """
    Decide which notifications the latest state warrants.

    Pure: timestamps come from the snapshot day (or the sync completion time),
    never from the clock, so identical input always yields identical events.
    Each kind appears at most once per call.
    """
    today_key = date_key(today)
    delta = delta or AggregationDelta()
    events: List[NotificationEvent] = []

    if latest_snapshot is not None:
        day = latest_snapshot["date"]
        stamp = _day_start(day, today_key)
        change = latest_snapshot["daily_change"]
        pct = latest_snapshot["daily_change_percentage"]

        if settings.daily_pnl_enabled and day == today_key:
            events.append(NotificationEvent(
                kind=NOTIFY_DAILY_PNL,
                message=(
                    f"Portfolio value {format_currency(latest_snapshot['portfolio_value'])}, "
                    f"{format_currency(change)} ({format_percentage(pct)}) today"
                ),
                timestamp=stamp,
                date=day,
            ))
        if settings.price_change_enabled and abs(pct) >= settings.price_change_threshold:
            events.append(NotificationEvent(
                kind=NOTIFY_PERCENTAGE_THRESHOLD,
                message=(
                    f"Portfolio moved {format_percentage(pct)}, "
                    f"past your {settings.price_change_threshold:g}% threshold"
                ),
                timestamp=stamp,
                date=day,
            ))
        if settings.significant_change_enabled and abs(change) >= settings.significant_change_amount:
            events.append(NotificationEvent(
                kind=NOTIFY_DOLLAR_THRESHOLD,
                message=(
                    f"Portfolio moved {format_currency(change)}, "
                    f"past your {format_currency(settings.significant_change_amount)} threshold"
                ),
                timestamp=stamp,
                date=day,
            ))

    if settings.sync_notifications_enabled and delta.sync_completed:
        names = ", ".join(delta.synced_sources) if delta.synced_sources else "all sources"
        events.append(NotificationEvent(
            kind=NOTIFY_SYNC_COMPLETE,
            message=f"Sync complete: {names}",
            timestamp=delta.completed_at or _day_start(today_key),
            date=today_key,
        ))
    return events


class NotificationLog:
    """Remembers delivered (date, kind) pairs so each is delivered once.

    Sync-complete events are keyed on their timestamp as well, since every
    finished sync is worth reporting.
    """

    def __init__(self, delivered: Iterable[Tuple[str, str]] = ()) -> None:
        self._seen: Set[Tuple[str, str]] = set(delivered)

    @staticmethod
    def _key(event: NotificationEvent) -> Tuple[str, str]:
        if event.kind == NOTIFY_SYNC_COMPLETE:
            return (event.timestamp.isoformat(), event.kind)
        return (event.date, event.kind)

    def keys(self) -> List[Tuple[str, str]]:
        return sorted(self._seen)

    def prune(self, oldest: Union[date, str]) -> None:
        """Forget keys dated before oldest."""
        cutoff = date_key(oldest)
        self._seen = {k for k in self._seen if k[0][:10] >= cutoff}

    def to_list(self) -> List[List[str]]:
        return [list(k) for k in self.keys()]

    @classmethod
    def from_list(cls, records: Optional[Iterable[Any]]) -> "NotificationLog":
        """Rebuild from stored [key, kind] pairs, skipping malformed entries."""
        pairs = []
        for r in records or []:
            if isinstance(r, (list, tuple)) and len(r) == 2 and all(isinstance(v, str) for v in r):
                pairs.append((r[0], r[1]))
            else:
                logger.warning("Skipping malformed notification log entry %r", r)
        return cls(pairs)

    def filter_new(self, events: Iterable[NotificationEvent]) -> List[NotificationEvent]:
        fresh = []
        for event in events:
            key = self._key(event)
            if key in self._seen:
                continue
            self._seen.add(key)
            fresh.append(event)
        return fresh

    def deliver(self, events: Iterable[NotificationEvent], sink: Callable[[NotificationEvent], None]) -> int:
        """Pass new events to sink; a failing sink is logged and does not stop the rest."""
        sent = 0
        for event in self.filter_new(events):
            try:
                sink(event)
                sent += 1
            except Exception as e:
                logger.warning("Notification delivery failed for %s: %s", event.kind, e)
        return sent
