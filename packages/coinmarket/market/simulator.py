"""PriceSimulator: periodic stochastic price path per asset.

Tick algorithm
--------------
For every asset, under the price lock::

    bound    = volatility.bound_for(asset.category)
    drift    ~ Uniform[-bound, bound]
    price   := max(price_floor, price * (1 + drift))

All assets are updated and the snapshot is built before the lock is released,
so readers (``get_snapshot``) and subscribers only ever see whole ticks.
Publishing happens after the update is committed, outside the price lock but
inside the tick lock, so snapshots are delivered in tick order.

Lifecycle
---------
``start()`` spawns one daemon tick thread; a second ``start()`` while a run is
active is a no-op (atomic running flag, not a thread-liveness probe).
``stop()`` or setting the caller's cancel event ends the loop: cancellation is
checked after each tick, before the inter-tick wait, and a tick that has
begun always completes (update + publish).

Usage::

    sim = PriceSimulator(seed=7, tick_interval=0.5)
    token = sim.prices.subscribe(lambda snap: print(snap.seq))
    sim.start()
    ...
    sim.stop()
"""

from __future__ import annotations

import logging
import random
import threading
from decimal import Decimal
from typing import Iterable, Optional

from ..broadcaster import SnapshotBroadcaster
from .assets import DEFAULT_ASSETS, Asset, PriceSnapshot, build_registry
from .volatility import RandomSource, VolatilityTable, draw_drift

logger = logging.getLogger(__name__)

_ONE = Decimal("1")

DEFAULT_TICK_INTERVAL_SECONDS = 0.5
DEFAULT_PRICE_FLOOR = Decimal("0.0000001")


class PriceSimulator:
    """Owns the live price table and advances it on a fixed cadence."""

    def __init__(
        self,
        assets: Iterable[Asset] = DEFAULT_ASSETS,
        volatility: Optional[VolatilityTable] = None,
        rng: Optional[RandomSource] = None,
        seed: Optional[int] = None,
        tick_interval: float = DEFAULT_TICK_INTERVAL_SECONDS,
        price_floor: Decimal = DEFAULT_PRICE_FLOOR,
    ) -> None:
        """
        Args:
            assets:        Seed asset list (id, name, category, start price).
            volatility:    Category → bound table; defaults to the stock table.
            rng:           Random source with ``random()``.  Takes precedence
                           over *seed*.
            seed:          Seed for a private ``random.Random`` when *rng* is
                           omitted.  ``None`` seeds from system entropy.
            tick_interval: Seconds between ticks in the background loop.
            price_floor:   Smallest price a tick may produce (must be > 0).
        """
        if tick_interval <= 0:
            raise ValueError(f"tick_interval must be positive; got {tick_interval}")
        if price_floor <= 0:
            raise ValueError(f"price_floor must be positive; got {price_floor}")

        self._registry: tuple[Asset, ...] = build_registry(assets)
        self._volatility = volatility or VolatilityTable()
        self._rng: RandomSource = rng if rng is not None else random.Random(seed)
        self._tick_interval = float(tick_interval)
        self._price_floor = price_floor

        # Live state: asset_id → current price (registry order preserved).
        self._prices: dict[str, Decimal] = {a.asset_id: a.price for a in self._registry}
        self._seq = 0
        self._price_lock = threading.Lock()
        self._tick_lock = threading.RLock()

        # Run state
        self._run_lock = threading.Lock()
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

        self.prices: SnapshotBroadcaster[PriceSnapshot] = SnapshotBroadcaster("prices")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, cancel_event: Optional[threading.Event] = None) -> bool:
        """Spawn the tick loop unless one is already active.

        Args:
            cancel_event: Optional caller-owned event; setting it stops the
                          loop exactly like :meth:`stop`.

        Returns:
            True if a new loop was spawned, False if one was already running.
        """
        with self._run_lock:
            if self._running:
                logger.debug("PriceSimulator.start ignored: loop already running")
                return False
            self._running = True
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run_loop,
                args=(self._stop_event, cancel_event),
                name="price-simulator",
                daemon=True,
            )
            thread = self._thread
        thread.start()
        logger.info(
            "Price simulator started: %d assets, interval=%.3fs",
            len(self._registry), self._tick_interval,
        )
        return True

    def stop(self, timeout: Optional[float] = None) -> None:
        """Signal the loop to exit and wait for it (no-op when not running)."""
        with self._run_lock:
            thread = self._thread
            self._stop_event.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
            if thread.is_alive():
                logger.warning("Price simulator loop did not exit within %ss", timeout)

    @property
    def is_running(self) -> bool:
        with self._run_lock:
            return self._running

    @property
    def tick_interval(self) -> float:
        return self._tick_interval

    @property
    def tick_count(self) -> int:
        with self._price_lock:
            return self._seq

    def close(self) -> None:
        """Stop the loop and drop all price subscribers."""
        self.stop()
        self.prices.clear()

    def __enter__(self) -> "PriceSimulator":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Ticking
    # ------------------------------------------------------------------

    def tick(self) -> PriceSnapshot:
        """Advance every asset by one step and publish the new snapshot."""
        with self._tick_lock:
            with self._price_lock:
                for asset in self._registry:
                    bound = self._volatility.bound_for(asset.category)
                    drift = draw_drift(bound, self._rng)
                    current = self._prices[asset.asset_id]
                    self._prices[asset.asset_id] = max(
                        self._price_floor, current * (_ONE + drift)
                    )
                self._seq += 1
                snapshot = self._build_snapshot_locked()

            self.prices.publish(snapshot)
        return snapshot

    def get_snapshot(self) -> PriceSnapshot:
        """Synchronous pull of the live prices (deep copy)."""
        with self._price_lock:
            return self._build_snapshot_locked()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _build_snapshot_locked(self) -> PriceSnapshot:
        return PriceSnapshot(
            seq=self._seq,
            assets=tuple(a.with_price(self._prices[a.asset_id]) for a in self._registry),
        )

    def _run_loop(
        self,
        stop_event: threading.Event,
        cancel_event: Optional[threading.Event],
    ) -> None:
        def _cancelled() -> bool:
            return stop_event.is_set() or (cancel_event is not None and cancel_event.is_set())

        try:
            while not _cancelled():
                try:
                    self.tick()
                except Exception:  # noqa: BLE001
                    logger.exception("Price tick failed; continuing with next tick")
                if _cancelled():
                    break
                stop_event.wait(self._tick_interval)
        finally:
            with self._run_lock:
                if self._stop_event is stop_event:
                    self._running = False
                    self._thread = None
            logger.info("Price simulator stopped after %d ticks", self.tick_count)
