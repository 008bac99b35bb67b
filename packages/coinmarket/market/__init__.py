"""Market side: asset registry, volatility table, price simulator, history.

Modules:
  assets.py     - RiskCategory, Asset, PriceSnapshot, seed asset list
  volatility.py - category → drift bound table and the uniform drift draw
  simulator.py  - PriceSimulator: tick loop + price stream
  history.py    - PriceHistory: bounded per-asset price window
"""
