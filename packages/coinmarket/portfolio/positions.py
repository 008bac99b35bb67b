"""Position, ledger snapshot, and trade result types for the TradingLedger.

All monetary values and quantities are Decimal.  Every type here is frozen:
the ledger replaces positions rather than mutating them, so a snapshot handed
to a reader can never change underneath it.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterator, Optional

_ZERO = Decimal("0")


class TradeError:
    """Business-rule outcome codes (string constants).

    Validation errors are caller-correctable (``INVALID_QUANTITY``,
    ``INVALID_ASSET``); the rest depend on ledger state.
    """

    INVALID_QUANTITY = "invalid_quantity"
    INVALID_ASSET = "invalid_asset"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    NO_POSITION = "no_position"
    INSUFFICIENT_QUANTITY = "insufficient_quantity"

    MESSAGES = {
        INVALID_QUANTITY: "Quantity must be positive",
        INVALID_ASSET: "Invalid asset or price",
        INSUFFICIENT_FUNDS: "Insufficient cash",
        NO_POSITION: "No position",
        INSUFFICIENT_QUANTITY: "Not enough quantity",
    }


class TradeAction:
    BUY = "buy"
    SELL = "sell"
    HOLD = "hold"


@dataclass(frozen=True)
class Position:
    """Holding in one asset.

    A quantity of zero always carries a zero ``avg_cost`` (flat tombstone row).
    """

    asset_id: str
    quantity: Decimal = _ZERO
    avg_cost: Decimal = _ZERO

    @property
    def is_flat(self) -> bool:
        return self.quantity == _ZERO

    @property
    def cost_basis(self) -> Decimal:
        """Total amount paid for the open quantity (``avg_cost × quantity``)."""
        return self.avg_cost * self.quantity

    def to_dict(self) -> dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "quantity": str(self.quantity),
            "avg_cost": str(self.avg_cost),
        }


@dataclass(frozen=True)
class LedgerSnapshot:
    """Committed ledger state after one successful trade (or at creation).

    ``version`` increments once per committed trade, so wallet and portfolio
    values derived from the same snapshot always describe the same post-state.
    """

    version: int
    cash: Decimal
    positions: tuple[Position, ...]
    realized_pnl: Decimal = _ZERO

    def position(self, asset_id: str) -> Optional[Position]:
        for pos in self.positions:
            if pos.asset_id == asset_id:
                return pos
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "cash": str(self.cash),
            "realized_pnl": str(self.realized_pnl),
            "positions": [p.to_dict() for p in self.positions],
        }


@dataclass(frozen=True)
class TradeResult:
    """Outcome of a buy/sell/hold request.

    Unpacks as an ``(ok, error)`` pair::

        ok, error = ledger.buy("LR1", Decimal("5"))
    """

    ok: bool
    error: Optional[str]
    action: str
    asset_id: Optional[str] = None
    quantity: Optional[Decimal] = None
    price: Optional[Decimal] = None
    cash_after: Optional[Decimal] = None

    def __iter__(self) -> Iterator[Any]:
        yield self.ok
        yield self.error

    def __bool__(self) -> bool:
        return self.ok

    @property
    def message(self) -> str:
        if self.error is None:
            return ""
        return TradeError.MESSAGES.get(self.error, self.error)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "error": self.error,
            "message": self.message,
            "action": self.action,
            "asset_id": self.asset_id,
            "quantity": str(self.quantity) if self.quantity is not None else None,
            "price": str(self.price) if self.price is not None else None,
            "cash_after": str(self.cash_after) if self.cash_after is not None else None,
        }


@dataclass(frozen=True)
class JournalEntry:
    """Audit row for one ledger action, successful or rejected."""

    seq: int
    ts: float
    action: str
    ok: bool
    error: Optional[str]
    asset_id: Optional[str]
    quantity: Optional[Decimal]
    price: Optional[Decimal]
    cash_after: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "seq": self.seq,
            "ts": self.ts,
            "action": self.action,
            "ok": self.ok,
            "error": self.error,
            "asset_id": self.asset_id,
            "quantity": str(self.quantity) if self.quantity is not None else None,
            "price": str(self.price) if self.price is not None else None,
            "cash_after": str(self.cash_after),
        }
