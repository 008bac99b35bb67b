"""Simulated coin market: price simulator, snapshot streams, trading ledger.

Public surface::

    from packages.coinmarket.broadcaster import SnapshotBroadcaster
    from packages.coinmarket.market.simulator import PriceSimulator
    from packages.coinmarket.portfolio.ledger import TradingLedger
    from packages.coinmarket.session import MarketSession
"""

from .broadcaster import SnapshotBroadcaster
from .config_loader import ConfigLoadError, MarketConfig, load_market_config
from .market.assets import DEFAULT_ASSETS, Asset, PriceSnapshot, RiskCategory
from .market.simulator import PriceSimulator
from .portfolio.ledger import TradingLedger
from .portfolio.positions import LedgerSnapshot, Position, TradeError, TradeResult
from .session import MarketSession

__all__ = [
    "SnapshotBroadcaster",
    "ConfigLoadError",
    "MarketConfig",
    "load_market_config",
    "DEFAULT_ASSETS",
    "Asset",
    "PriceSnapshot",
    "RiskCategory",
    "PriceSimulator",
    "TradingLedger",
    "LedgerSnapshot",
    "Position",
    "TradeError",
    "TradeResult",
    "MarketSession",
]
