"""TradingLedger: authoritative cash/position state for a single participant.

Design invariants
-----------------
1. **All monetary values use Decimal**: quantities from callers are coerced
   at the boundary (floats via ``str``); nothing downstream is float.
2. **Weighted-average cost basis**: each buy recomputes
   ``avg_cost = (avg_cost × qty + cost) / (qty + bought)``.
3. **No partial fills**: a buy either spends ``price × quantity`` in full or
   is rejected with ``insufficient_funds``.
4. **Flat tombstones**: a sell that closes a position leaves a row with
   ``quantity = 0`` and ``avg_cost = 0``.  Rows are never deleted; the next
   buy re-opens the row from a zero base.
5. **Business outcomes are returned, not raised**: every buy/sell/hold
   yields a :class:`TradeResult`.
6. **Commit, then publish**: wallet, portfolio, and combined snapshots are
   derived from one committed state.  All three last values are staged
   under the state lock at commit time, before any handler runs, so a
   wallet handler reading ``portfolio.last()`` sees the matching rows.
   Handlers are dispatched afterwards.  A subscriber fault never rolls a
   trade back.

Concurrency
-----------
Explicit mutual exclusion with two locks, always taken in this order:

  ``_trade_lock``: serialises whole buy/sell calls (validate → apply →
                    publish), so publications follow commit order and two
                    concurrent sells can never over-draw one position.
  ``_state_lock``: guards cash/positions; the only lock readers take, so
                    ``get_wallet_balance``/``get_portfolio`` never wait on a
                    slow subscriber.

Usage::

    ledger = TradingLedger(simulator, starting_cash=Decimal("1000"))
    ok, error = ledger.buy("LR1", Decimal("5"))
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from decimal import Decimal, InvalidOperation, Overflow, localcontext
from typing import Any, Optional, Protocol

from ..broadcaster import SnapshotBroadcaster
from ..market.assets import PriceSnapshot
from .positions import (
    JournalEntry,
    LedgerSnapshot,
    Position,
    TradeAction,
    TradeError,
    TradeResult,
)

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")

DEFAULT_STARTING_CASH = Decimal("1000")
DEFAULT_JOURNAL_CAPACITY = 1000


class PriceSource(Protocol):
    """Anything that can hand out the latest price snapshot."""

    def get_snapshot(self) -> PriceSnapshot: ...


def coerce_quantity(raw: Any) -> Optional[Decimal]:
    """Convert a caller-supplied quantity to Decimal, or None if unusable.

    Accepts Decimal, int, numeric strings, and floats (via ``str`` so that
    ``0.1`` becomes ``Decimal("0.1")``).  Booleans, NaN and infinities are
    rejected.
    """
    if raw is None or isinstance(raw, bool):
        return None
    try:
        if isinstance(raw, Decimal):
            value = raw
        elif isinstance(raw, int):
            value = Decimal(raw)
        elif isinstance(raw, (float, str)):
            value = Decimal(str(raw).strip())
        else:
            return None
    except InvalidOperation:
        return None
    if not value.is_finite():
        return None
    return value


class TradingLedger:
    """Validates and applies buy/sell orders against the latest prices."""

    def __init__(
        self,
        price_source: PriceSource,
        starting_cash: Decimal = DEFAULT_STARTING_CASH,
        journal_capacity: int = DEFAULT_JOURNAL_CAPACITY,
    ) -> None:
        """
        Args:
            price_source:     Provider of the latest PriceSnapshot (normally
                              the PriceSimulator).
            starting_cash:    Initial cash balance.
            journal_capacity: Max audit rows kept (oldest dropped first).
        """
        if not isinstance(starting_cash, Decimal):
            try:
                starting_cash = Decimal(str(starting_cash))
            except InvalidOperation as exc:
                raise ValueError(f"invalid starting_cash: {starting_cash!r}") from exc
        if not starting_cash.is_finite() or starting_cash < _ZERO:
            raise ValueError(f"starting_cash must be non-negative; got {starting_cash}")
        if journal_capacity < 1:
            raise ValueError(f"journal_capacity must be >= 1; got {journal_capacity}")

        self._price_source = price_source
        self._starting_cash = starting_cash
        self._cash = starting_cash
        self._positions: dict[str, Position] = {}
        self._realized_pnl = _ZERO
        self._version = 0

        self._journal: deque[JournalEntry] = deque(maxlen=journal_capacity)
        self._journal_seq = 0

        self._trade_lock = threading.RLock()
        self._state_lock = threading.RLock()

        self.wallet: SnapshotBroadcaster[Decimal] = SnapshotBroadcaster("wallet")
        self.portfolio: SnapshotBroadcaster[tuple[Position, ...]] = SnapshotBroadcaster("portfolio")
        self.updates: SnapshotBroadcaster[LedgerSnapshot] = SnapshotBroadcaster("ledger")

        # Seed the streams so pull-last-value works before the first trade.
        with self._state_lock:
            self._stage_locked(self._snapshot_locked())

    # ------------------------------------------------------------------
    # Trading operations
    # ------------------------------------------------------------------

    def buy(self, asset_id: str, quantity: Any) -> TradeResult:
        """Buy *quantity* of *asset_id* at the current price.

        Checks, in order: quantity > 0, asset resolvable at a positive
        price, cost ≤ cash.
        """
        qty = coerce_quantity(quantity)
        with self._trade_lock:
            with self._state_lock:
                result = self._buy_locked(asset_id, qty)
                snapshot = self._commit_locked() if result.ok else None
            if snapshot is not None:
                self._dispatch(snapshot)
        return result

    def sell(self, asset_id: str, quantity: Any) -> TradeResult:
        """Sell *quantity* of *asset_id* at the current price.

        Checks, in order: quantity > 0, an open position exists, quantity ≤
        held quantity, asset resolvable at a positive price.
        """
        qty = coerce_quantity(quantity)
        with self._trade_lock:
            with self._state_lock:
                result = self._sell_locked(asset_id, qty)
                snapshot = self._commit_locked() if result.ok else None
            if snapshot is not None:
                self._dispatch(snapshot)
        return result

    def hold(self, asset_id: Optional[str] = None) -> TradeResult:
        """Explicit no-op action: journaled, never mutates or publishes."""
        with self._state_lock:
            result = TradeResult(
                ok=True,
                error=None,
                action=TradeAction.HOLD,
                asset_id=asset_id,
                cash_after=self._cash,
            )
            self._record_locked(result)
        logger.debug("Hold recorded (asset=%s)", asset_id)
        return result

    # ------------------------------------------------------------------
    # Pull accessors (copies; safe to keep)
    # ------------------------------------------------------------------

    def get_wallet_balance(self) -> Decimal:
        with self._state_lock:
            return self._cash

    def get_portfolio(self) -> list[Position]:
        with self._state_lock:
            return list(self._positions.values())

    def get_position(self, asset_id: str) -> Optional[Position]:
        with self._state_lock:
            return self._positions.get(asset_id)

    def snapshot(self) -> LedgerSnapshot:
        with self._state_lock:
            return self._snapshot_locked()

    def journal(self) -> list[JournalEntry]:
        with self._state_lock:
            return list(self._journal)

    @property
    def starting_cash(self) -> Decimal:
        return self._starting_cash

    @property
    def realized_pnl(self) -> Decimal:
        with self._state_lock:
            return self._realized_pnl

    def close(self) -> None:
        """Drop all subscribers from the ledger streams."""
        for stream in (self.wallet, self.portfolio, self.updates):
            stream.clear()

    # ------------------------------------------------------------------
    # Internal: validate + apply (state lock held)
    # ------------------------------------------------------------------

    def _buy_locked(self, asset_id: str, qty: Optional[Decimal]) -> TradeResult:
        if qty is None or qty <= _ZERO:
            return self._reject_locked(TradeAction.BUY, TradeError.INVALID_QUANTITY, asset_id, qty)

        price = self._resolve_price(asset_id)
        if price is None:
            return self._reject_locked(TradeAction.BUY, TradeError.INVALID_ASSET, asset_id, qty)

        # An overflowing product becomes Infinity, which no balance covers.
        with localcontext() as ctx:
            ctx.traps[Overflow] = False
            cost = price * qty
        if cost > self._cash:
            return self._reject_locked(
                TradeAction.BUY, TradeError.INSUFFICIENT_FUNDS, asset_id, qty, price
            )

        pos = self._positions.get(asset_id) or Position(asset_id=asset_id)
        new_qty = pos.quantity + qty
        new_avg = (pos.avg_cost * pos.quantity + cost) / new_qty

        self._cash -= cost
        self._positions[asset_id] = Position(asset_id=asset_id, quantity=new_qty, avg_cost=new_avg)

        result = TradeResult(
            ok=True,
            error=None,
            action=TradeAction.BUY,
            asset_id=asset_id,
            quantity=qty,
            price=price,
            cash_after=self._cash,
        )
        self._record_locked(result)
        logger.info(
            "BUY %s %s @ %s (cost=%s, cash=%s)", qty, asset_id, price, cost, self._cash
        )
        return result

    def _sell_locked(self, asset_id: str, qty: Optional[Decimal]) -> TradeResult:
        if qty is None or qty <= _ZERO:
            return self._reject_locked(TradeAction.SELL, TradeError.INVALID_QUANTITY, asset_id, qty)

        pos = self._positions.get(asset_id)
        if pos is None or pos.quantity <= _ZERO:
            return self._reject_locked(TradeAction.SELL, TradeError.NO_POSITION, asset_id, qty)

        if qty > pos.quantity:
            return self._reject_locked(
                TradeAction.SELL, TradeError.INSUFFICIENT_QUANTITY, asset_id, qty
            )

        price = self._resolve_price(asset_id)
        if price is None:
            return self._reject_locked(TradeAction.SELL, TradeError.INVALID_ASSET, asset_id, qty)

        proceeds = price * qty
        remaining = pos.quantity - qty

        self._cash += proceeds
        self._realized_pnl += (price - pos.avg_cost) * qty
        if remaining == _ZERO:
            self._positions[asset_id] = Position(asset_id=asset_id)
        else:
            self._positions[asset_id] = Position(
                asset_id=asset_id, quantity=remaining, avg_cost=pos.avg_cost
            )

        result = TradeResult(
            ok=True,
            error=None,
            action=TradeAction.SELL,
            asset_id=asset_id,
            quantity=qty,
            price=price,
            cash_after=self._cash,
        )
        self._record_locked(result)
        logger.info(
            "SELL %s %s @ %s (proceeds=%s, cash=%s)",
            qty, asset_id, price, proceeds, self._cash,
        )
        return result

    def _resolve_price(self, asset_id: str) -> Optional[Decimal]:
        """Latest positive price for *asset_id*, or None if unavailable."""
        price = self._price_source.get_snapshot().price_of(asset_id)
        if price is None or price <= _ZERO:
            return None
        return price

    def _reject_locked(
        self,
        action: str,
        error: str,
        asset_id: str,
        qty: Optional[Decimal],
        price: Optional[Decimal] = None,
    ) -> TradeResult:
        result = TradeResult(
            ok=False,
            error=error,
            action=action,
            asset_id=asset_id,
            quantity=qty,
            price=price,
            cash_after=self._cash,
        )
        self._record_locked(result)
        logger.debug("%s %s rejected: %s", action.upper(), asset_id, error)
        return result

    def _record_locked(self, result: TradeResult) -> None:
        self._journal_seq += 1
        self._journal.append(
            JournalEntry(
                seq=self._journal_seq,
                ts=time.time(),
                action=result.action,
                ok=result.ok,
                error=result.error,
                asset_id=result.asset_id,
                quantity=result.quantity,
                price=result.price,
                cash_after=self._cash,
            )
        )

    def _commit_locked(self) -> LedgerSnapshot:
        self._version += 1
        snapshot = self._snapshot_locked()
        self._stage_locked(snapshot)
        return snapshot

    def _snapshot_locked(self) -> LedgerSnapshot:
        return LedgerSnapshot(
            version=self._version,
            cash=self._cash,
            positions=tuple(self._positions.values()),
            realized_pnl=self._realized_pnl,
        )

    # ------------------------------------------------------------------
    # Internal: publishing
    # ------------------------------------------------------------------

    def _stage_locked(self, snapshot: LedgerSnapshot) -> None:
        # State lock held. Wallet goes last so a reader that sees the new
        # cash also sees the matching portfolio and combined snapshot.
        self.updates.stage(snapshot)
        self.portfolio.stage(snapshot.positions)
        self.wallet.stage(snapshot.cash)

    def _dispatch(self, snapshot: LedgerSnapshot) -> None:
        # Trade lock held, state lock released.
        self.wallet.dispatch(snapshot.cash)
        self.portfolio.dispatch(snapshot.positions)
        self.updates.dispatch(snapshot)
