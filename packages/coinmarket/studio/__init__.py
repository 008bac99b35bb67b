"""Coinsim Studio: FastAPI surface over a MarketSession."""
