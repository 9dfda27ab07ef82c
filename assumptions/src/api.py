"""HTTP facade over the poller's snapshot.

Handlers only read the last completed snapshot; they never wait on an
in-flight cycle.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, AsyncIterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .MarketPoller import MarketPoller

logger = logging.getLogger(__name__)


def create_app(poller: MarketPoller, start_polling: bool = True) -> FastAPI:
    """Build the FastAPI application.

    :param poller: Poller owning the snapshot cache.
    :param start_polling: Run the poller as a background task for the
        lifetime of the app (disable in tests that drive cycles directly).
    :returns: Configured FastAPI app.
    """

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        task = asyncio.create_task(poller.run()) if start_polling else None
        try:
            yield
        finally:
            if task is not None:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

    app = FastAPI(title="SSV Assumptions Engine", version="0.1.0", lifespan=lifespan)
    app.state.poller = poller

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.debug(f"Incoming request {request.method} {request.url.path}")
        return await call_next(request)

    @app.get("/api/prices")
    async def get_prices() -> JSONResponse:
        snapshot = poller.cache.get()
        if not snapshot.has_data:
            return JSONResponse(
                status_code=503,
                content={
                    "message": "Market data not available yet.",
                    "lastFetchError": snapshot.errors,
                },
            )

        return JSONResponse(
            content={
                "data": snapshot.to_data_dict(),
                "lastUpdated": snapshot.last_updated,
                "refreshIntervalMs": int(poller.refresh_interval * 1000),
                "sources": poller.sources,
                "lastFetchError": snapshot.errors,
            }
        )

    @app.get("/health")
    async def health() -> dict[str, Any]:
        snapshot = poller.cache.get()
        return {
            "status": "ok",
            "lastUpdated": snapshot.last_updated,
            "lastFetchError": snapshot.errors,
            "symbols": poller.symbols,
            "stakingAprConfigured": poller.staking_fetcher.is_configured,
            "networkFeeConfigured": poller.network_fee_configured,
            "stakedEthAvailable": snapshot.staked_eth is not None,
            "refreshIntervalMs": int(poller.refresh_interval * 1000),
        }

    return app
