"""Coinsim Studio - local FastAPI surface over a MarketSession.

Factory function `create_app(session)` returns a FastAPI application that:
- Returns the latest price snapshot at GET /api/prices
- Returns wallet, portfolio, valuation summary and journal at GET /api/...
- Applies trades at POST /api/buy, /api/sell, /api/hold

Trade endpoints answer HTTP 200 for every business outcome (the ``ok`` and
``error`` fields carry the verdict) and 400 only for malformed bodies.

Usage
-----
    # via CLI:
    python -m coinsim market serve --port 8765
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional, Union

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, StrictFloat, StrictInt, StrictStr

from ..portfolio.positions import TradeResult
from ..session import MarketSession

logger = logging.getLogger(__name__)


# Request/Response models
class TradeRequest(BaseModel):
    """Request body for /api/buy and /api/sell."""

    asset_id: str = Field(..., min_length=1, description="Asset id from /api/prices")
    quantity: Union[StrictInt, StrictFloat, StrictStr] = Field(
        ..., description="Units to trade; decimal strings keep full precision"
    )


class HoldRequest(BaseModel):
    """Optional request body for /api/hold."""

    asset_id: Optional[str] = None


class TradeResponse(BaseModel):
    """Response body for the trade endpoints."""

    ok: bool
    error: Optional[str] = None
    message: str = ""
    result: dict


def _trade_response(result: TradeResult) -> TradeResponse:
    return TradeResponse(
        ok=result.ok,
        error=result.error,
        message=result.message,
        result=result.to_dict(),
    )


def create_app(session: Optional[MarketSession] = None, autostart: bool = True) -> FastAPI:
    """Create and return the Studio FastAPI application.

    Args:
        session:   Session to expose; a default-config session is built when
                   omitted.
        autostart: Start the price loop on application startup.  The loop is
                   always stopped on shutdown.
    """
    market = session or MarketSession()

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        if autostart:
            market.start()
        logger.info("Studio ready (price loop running=%s)", market.is_running)
        try:
            yield
        finally:
            market.stop()

    app = FastAPI(title="Coinsim Studio", version="0.1.0", lifespan=lifespan)
    app.state.session = market

    @app.exception_handler(RequestValidationError)
    async def bad_request(_request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @app.get("/api/prices")
    async def prices() -> dict[str, Any]:
        return market.get_snapshot().to_dict()

    @app.get("/api/wallet")
    async def wallet() -> dict[str, Any]:
        return {"cash": str(market.get_wallet_balance())}

    @app.get("/api/portfolio")
    async def portfolio() -> dict[str, Any]:
        return {"positions": [p.to_dict() for p in market.get_portfolio()]}

    @app.get("/api/summary")
    async def summary() -> dict[str, Any]:
        return market.summary()

    @app.get("/api/journal")
    async def journal() -> dict[str, Any]:
        return {"entries": [e.to_dict() for e in market.journal()]}

    # ------------------------------------------------------------------
    # Trades
    # ------------------------------------------------------------------

    @app.post("/api/buy", response_model=TradeResponse)
    async def buy(body: TradeRequest) -> TradeResponse:
        return _trade_response(market.buy(body.asset_id.strip(), body.quantity))

    @app.post("/api/sell", response_model=TradeResponse)
    async def sell(body: TradeRequest) -> TradeResponse:
        return _trade_response(market.sell(body.asset_id.strip(), body.quantity))

    @app.post("/api/hold", response_model=TradeResponse)
    async def hold(body: Optional[HoldRequest] = None) -> TradeResponse:
        return _trade_response(market.hold(body.asset_id if body else None))

    return app
