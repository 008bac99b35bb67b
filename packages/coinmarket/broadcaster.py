"""SnapshotBroadcaster: hot multicast channel with a pull-last-value query.

Used by the PriceSimulator (price snapshots) and the TradingLedger (wallet,
portfolio and combined ledger snapshots).

Delivery rules
--------------
1. **No replay**: a new subscriber only sees values published after it
   subscribed.  Use :meth:`SnapshotBroadcaster.last` (or the producer's own
   pull method) to seed initial state.
2. **Synchronous, ordered**: :meth:`publish` calls every handler registered
   at call time, in registration order, on the publishing thread, and returns
   once all of them have run.
3. **Fault isolation**: a handler that raises is logged and skipped; the
   remaining handlers still receive the value and the producer never sees
   the exception.
4. **Unsubscribe during dispatch**: dispatch iterates over a copy of the
   handler list taken at publish start, so removing a handler mid-publish is
   safe.  The in-flight dispatch may or may not reach it.

Values are expected to be immutable snapshots; the broadcaster stores a
reference to the last one and never copies or mutates it.
"""

from __future__ import annotations

import itertools
import logging
import threading
from typing import Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Handler = Callable[[T], None]


class SnapshotBroadcaster(Generic[T]):
    """Publish/subscribe channel for immutable snapshots.

    Thread-safety: subscribe/unsubscribe/publish may be called from any
    thread.  Publishes from different threads are not serialised here; the
    producer owns publication order.
    """

    def __init__(self, name: str = "snapshots") -> None:
        self.name = name
        self._lock = threading.Lock()
        self._handlers: dict[int, Handler] = {}
        self._tokens = itertools.count(1)
        self._last: Optional[T] = None
        self._has_value = False
        self._failure_count = 0

    # ------------------------------------------------------------------
    # Subscription management
    # ------------------------------------------------------------------

    def subscribe(self, handler: Handler) -> int:
        """Register *handler* and return its unsubscribe token."""
        if not callable(handler):
            raise TypeError(f"handler must be callable; got {type(handler).__name__}")
        with self._lock:
            token = next(self._tokens)
            self._handlers[token] = handler
        logger.debug("%s: subscriber %d added", self.name, token)
        return token

    def unsubscribe(self, token: int) -> bool:
        """Remove the handler for *token*.  Returns False if it was unknown."""
        with self._lock:
            removed = self._handlers.pop(token, None) is not None
        if removed:
            logger.debug("%s: subscriber %d removed", self.name, token)
        return removed

    def clear(self) -> None:
        """Drop every subscriber."""
        with self._lock:
            self._handlers.clear()

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def publish(self, value: T) -> int:
        """Store *value* as the last value, then deliver it to all subscribers.

        Returns:
            Number of handlers that completed without raising.
        """
        self.stage(value)
        return self.dispatch(value)

    def stage(self, value: T) -> None:
        """Make *value* visible through :meth:`last` without notifying anyone.

        Producers that publish several related streams stage all of them
        first, so a handler of one stream reads the new value of the others.
        """
        with self._lock:
            self._last = value
            self._has_value = True

    def dispatch(self, value: T) -> int:
        """Deliver *value* to the handlers registered right now."""
        with self._lock:
            targets = list(self._handlers.items())

        delivered = 0
        for token, handler in targets:
            try:
                handler(value)
            except Exception:  # noqa: BLE001
                with self._lock:
                    self._failure_count += 1
                logger.exception(
                    "%s: subscriber %d raised while handling a snapshot; skipped",
                    self.name, token,
                )
                continue
            delivered += 1
        return delivered

    # ------------------------------------------------------------------
    # Read-only accessors
    # ------------------------------------------------------------------

    def last(self) -> Optional[T]:
        """Return the most recently published value (None before the first)."""
        with self._lock:
            return self._last

    @property
    def has_value(self) -> bool:
        with self._lock:
            return self._has_value

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._handlers)

    @property
    def failure_count(self) -> int:
        """Cumulative number of handler faults caught during publish."""
        with self._lock:
            return self._failure_count
