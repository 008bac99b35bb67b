"""Mark-to-market valuation of the ledger against a price snapshot.

Positions are marked at the snapshot's current price (there is no bid/ask in
the simulated market, so "bid-side" and "midpoint" marks coincide).

  market_value   = quantity × mark_price
  unrealized_pnl = quantity × (mark_price − avg_cost)
  equity         = cash + Σ market_value

An asset missing from the snapshot is reported with ``mark_price = None`` and
contributes nothing to ``position_value`` or ``unrealized_pnl``.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from ..market.assets import PriceSnapshot
from .positions import LedgerSnapshot

_ZERO = Decimal("0")


@dataclass(frozen=True)
class PositionValuation:
    asset_id: str
    quantity: Decimal
    avg_cost: Decimal
    mark_price: Optional[Decimal]
    market_value: Decimal
    unrealized_pnl: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "quantity": str(self.quantity),
            "avg_cost": str(self.avg_cost),
            "mark_price": str(self.mark_price) if self.mark_price is not None else None,
            "market_value": str(self.market_value),
            "unrealized_pnl": str(self.unrealized_pnl),
        }


@dataclass(frozen=True)
class PortfolioValuation:
    price_seq: int
    ledger_version: int
    cash: Decimal
    position_value: Decimal
    unrealized_pnl: Decimal
    realized_pnl: Decimal
    positions: tuple[PositionValuation, ...]

    @property
    def equity(self) -> Decimal:
        return self.cash + self.position_value

    def to_dict(self) -> dict[str, Any]:
        return {
            "price_seq": self.price_seq,
            "ledger_version": self.ledger_version,
            "cash": str(self.cash),
            "position_value": str(self.position_value),
            "unrealized_pnl": str(self.unrealized_pnl),
            "realized_pnl": str(self.realized_pnl),
            "equity": str(self.equity),
            "positions": [p.to_dict() for p in self.positions],
        }


def value_portfolio(ledger: LedgerSnapshot, prices: PriceSnapshot) -> PortfolioValuation:
    """Mark every ledger row (flat rows included) at *prices*."""
    position_value = _ZERO
    unrealized = _ZERO
    rows: list[PositionValuation] = []

    for pos in ledger.positions:
        mp = prices.price_of(pos.asset_id)
        if mp is None:
            rows.append(
                PositionValuation(pos.asset_id, pos.quantity, pos.avg_cost, None, _ZERO, _ZERO)
            )
            continue
        value = pos.quantity * mp
        pnl = pos.quantity * (mp - pos.avg_cost)
        position_value += value
        unrealized += pnl
        rows.append(PositionValuation(pos.asset_id, pos.quantity, pos.avg_cost, mp, value, pnl))

    return PortfolioValuation(
        price_seq=prices.seq,
        ledger_version=ledger.version,
        cash=ledger.cash,
        position_value=position_value,
        unrealized_pnl=unrealized,
        realized_pnl=ledger.realized_pnl,
        positions=tuple(rows),
    )
