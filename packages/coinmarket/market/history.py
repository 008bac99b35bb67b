"""Bounded per-asset price history fed from the price stream.

Consumers (list rows, detail charts) keep a rolling window of recent prices
per asset.  The window size belongs to the consumer, not the simulator.
"""

from __future__ import annotations

import threading
from collections import deque
from decimal import Decimal
from typing import Optional

from ..broadcaster import SnapshotBroadcaster
from .assets import PriceSnapshot

DEFAULT_HISTORY_CAPACITY = 200
MIN_HISTORY_CAPACITY = 2


class PriceHistory:
    """Thread-safe rolling price window per asset."""

    def __init__(self, capacity: int = DEFAULT_HISTORY_CAPACITY) -> None:
        self._capacity = max(MIN_HISTORY_CAPACITY, int(capacity))
        self._lock = threading.Lock()
        self._series: dict[str, deque[Decimal]] = {}
        self._last_seq: Optional[int] = None
        self._source: Optional[SnapshotBroadcaster[PriceSnapshot]] = None
        self._token: Optional[int] = None

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def last_seq(self) -> Optional[int]:
        with self._lock:
            return self._last_seq

    def attach(self, source: SnapshotBroadcaster[PriceSnapshot]) -> int:
        """Subscribe to *source*; detaches from any previous source first."""
        self.detach()
        token = source.subscribe(self.on_snapshot)
        self._source, self._token = source, token
        return token

    def detach(self) -> None:
        if self._source is not None and self._token is not None:
            self._source.unsubscribe(self._token)
        self._source, self._token = None, None

    def on_snapshot(self, snapshot: PriceSnapshot) -> None:
        with self._lock:
            # Ignore stale or duplicate deliveries (e.g. seeding after a tick).
            if self._last_seq is not None and snapshot.seq <= self._last_seq:
                return
            for asset in snapshot:
                series = self._series.get(asset.asset_id)
                if series is None:
                    series = deque(maxlen=self._capacity)
                    self._series[asset.asset_id] = series
                series.append(asset.price)
            self._last_seq = snapshot.seq

    def series(self, asset_id: str) -> list[Decimal]:
        with self._lock:
            return list(self._series.get(asset_id, ()))

    def latest(self, asset_id: str) -> Optional[Decimal]:
        with self._lock:
            series = self._series.get(asset_id)
            return series[-1] if series else None

    def change(self, asset_id: str) -> Optional[Decimal]:
        """Fractional change from the oldest to the newest price in the window."""
        with self._lock:
            series = self._series.get(asset_id)
            if not series or len(series) < 2:
                return None
            first, last = series[0], series[-1]
        return (last - first) / first

    def to_dict(self) -> dict[str, list[str]]:
        with self._lock:
            return {aid: [str(p) for p in s] for aid, s in self._series.items()}
