"""Coinsim: a simulated coin market with a single-trader ledger."""

__version__ = "0.1.0"

__all__ = ["__version__"]
