"""MarketSession: composition root for one simulated market.

Builds the PriceSimulator, TradingLedger, and PriceHistory once from a
MarketConfig and owns their lifetime.  Front-ends (CLI, Studio) hold a
session and call its methods; they never construct services themselves.

Usage::

    with MarketSession(load_market_config(config_path="market.json")) as s:
        s.start()
        s.buy("LR1", "5")
        print(s.summary())
"""

from __future__ import annotations

import logging
import threading
from decimal import Decimal
from typing import Any, Optional

from .config_loader import MarketConfig
from .market.assets import PriceSnapshot
from .market.history import PriceHistory
from .market.simulator import PriceSimulator
from .market.volatility import RandomSource, VolatilityTable
from .portfolio.ledger import TradingLedger
from .portfolio.positions import JournalEntry, Position, TradeResult
from .portfolio.valuation import PortfolioValuation, value_portfolio

logger = logging.getLogger(__name__)


class MarketSession:
    """One simulator + one ledger, wired together."""

    def __init__(
        self,
        config: Optional[MarketConfig] = None,
        rng: Optional[RandomSource] = None,
    ) -> None:
        self.config = config or MarketConfig()
        self.simulator = PriceSimulator(
            assets=self.config.assets,
            volatility=VolatilityTable(self.config.volatility),
            rng=rng,
            seed=self.config.seed,
            tick_interval=self.config.tick_interval,
        )
        self.ledger = TradingLedger(self.simulator, starting_cash=self.config.starting_cash)
        self.history = PriceHistory(self.config.history_capacity)
        self.history.attach(self.simulator.prices)
        self.history.on_snapshot(self.simulator.get_snapshot())

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, cancel_event: Optional[threading.Event] = None) -> bool:
        return self.simulator.start(cancel_event)

    def stop(self) -> None:
        self.simulator.stop()

    @property
    def is_running(self) -> bool:
        return self.simulator.is_running

    def close(self) -> None:
        self.history.detach()
        self.simulator.close()
        self.ledger.close()

    def __enter__(self) -> "MarketSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Trading
    # ------------------------------------------------------------------

    def buy(self, asset_id: str, quantity: Any) -> TradeResult:
        return self.ledger.buy(asset_id, quantity)

    def sell(self, asset_id: str, quantity: Any) -> TradeResult:
        return self.ledger.sell(asset_id, quantity)

    def hold(self, asset_id: Optional[str] = None) -> TradeResult:
        return self.ledger.hold(asset_id)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_snapshot(self) -> PriceSnapshot:
        return self.simulator.get_snapshot()

    def get_wallet_balance(self) -> Decimal:
        return self.ledger.get_wallet_balance()

    def get_portfolio(self) -> list[Position]:
        return self.ledger.get_portfolio()

    def journal(self) -> list[JournalEntry]:
        return self.ledger.journal()

    def valuation(self) -> PortfolioValuation:
        return value_portfolio(self.ledger.snapshot(), self.simulator.get_snapshot())

    def summary(self) -> dict[str, Any]:
        """JSON-safe end-of-run (or live) summary."""
        valuation = self.valuation()
        starting_cash = self.ledger.starting_cash
        return {
            "starting_cash": str(starting_cash),
            "ticks": self.simulator.tick_count,
            "running": self.is_running,
            "net_profit": str(valuation.equity - starting_cash),
            **valuation.to_dict(),
        }
