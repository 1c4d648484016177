"""Daily portfolio value snapshots and day-over-day change."""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Union

from pnl_tracker.config.constants import HISTORY_DISPLAY_LIMIT
from pnl_tracker.models.core import DailySnapshot

logger = logging.getLogger(__name__)


def date_key(day: Union[date, str]) -> str:
    """Normalize a date (or already-formatted key) to the YYYY-MM-DD history key."""
    if isinstance(day, str):
        return day
    return day.isoformat()


LEGACY_DATE_FORMATS = ("%a %b %d %Y",)


def normalize_date_key(raw: Any) -> str:
    """Convert a stored date (ISO, or the older "Sat Oct 18 2026" form) to an ISO key."""
    text = str(raw).strip()
    try:
        return date.fromisoformat(text[:10]).isoformat()
    except ValueError:
        pass
    for fmt in LEGACY_DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    logger.warning("Keeping unrecognised snapshot date %r", text)
    return text


def change_percentage(change: float, previous: float) -> float:
    return (change / previous * 100.0) if previous > 0 else 0.0


class SnapshotTracker:
    """Owns the daily snapshot history and is its only writer.

    At most one entry exists per calendar day. Re-sampling the same day
    overwrites that day's entry, measuring against the value recorded before
    today's entry so repeated samples never compound against themselves.
    History is never truncated here; ``recent`` only limits what is returned.
    """

    def __init__(self, history: Iterable[DailySnapshot] = (), start_balance: float = 0.0) -> None:
        self._history: List[DailySnapshot] = [dict(s) for s in history]
        self.start_balance = float(start_balance or 0.0)

    @property
    def history(self) -> List[DailySnapshot]:
        return [dict(s) for s in self._history]

    def _index_of(self, key: str) -> Optional[int]:
        for i, entry in enumerate(self._history):
            if entry["date"] == key:
                return i
        return None

    def sample(self, total_value_now: float, now_date: Union[date, str]) -> DailySnapshot:
        key = date_key(now_date)
        idx = self._index_of(key)
        if idx is not None:
            previous = self._history[idx - 1]["portfolio_value"] if idx > 0 else self.start_balance
        elif self._history:
            previous = self._history[-1]["portfolio_value"]
        else:
            previous = self.start_balance

        change = total_value_now - previous
        snapshot: DailySnapshot = {
            "date": key,
            "portfolio_value": total_value_now,
            "daily_change": change,
            "daily_change_percentage": change_percentage(change, previous),
        }
        if idx is not None:
            self._history[idx] = snapshot
            logger.debug("Updated snapshot for %s: %.2f", key, total_value_now)
        else:
            self._history.append(snapshot)
            logger.info("Recorded snapshot for %s: %.2f", key, total_value_now)
        return dict(snapshot)

    def today(self, now_date: Union[date, str]) -> Optional[DailySnapshot]:
        idx = self._index_of(date_key(now_date))
        return dict(self._history[idx]) if idx is not None else None

    def latest(self) -> Optional[DailySnapshot]:
        return dict(self._history[-1]) if self._history else None

    def recent(self, limit: int = HISTORY_DISPLAY_LIMIT) -> List[DailySnapshot]:
        return self.history[-limit:] if limit > 0 else []

    def __len__(self) -> int:
        return len(self._history)

    def to_list(self) -> List[Dict[str, Any]]:
        return [dict(s) for s in self._history]

    @classmethod
    def from_list(cls, records: Optional[Iterable[Dict[str, Any]]], start_balance: float = 0.0) -> "SnapshotTracker":
        history: List[DailySnapshot] = []
        for r in records or []:
            try:
                history.append({
                    "date": normalize_date_key(r["date"]),
                    "portfolio_value": float(r.get("portfolio_value", r.get("portfolioValue", 0.0))),
                    "daily_change": float(r.get("daily_change", r.get("dailyChange", 0.0))),
                    "daily_change_percentage": float(
                        r.get("daily_change_percentage", r.get("dailyChangePercentage", 0.0))
                    ),
                })
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed snapshot %r: %s", r, e)
        return cls(history, start_balance)
