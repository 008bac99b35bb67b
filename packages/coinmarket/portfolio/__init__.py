"""Portfolio side: cash, positions, weighted-average cost, valuation.

Modules:
  positions.py - Position, LedgerSnapshot, TradeResult, TradeError
  ledger.py    - TradingLedger: validates buy/sell, emits wallet/portfolio snapshots
  valuation.py - Mark-to-market equity and unrealized PnL
"""
