"""
Gatehouse ticketing API.

Sells finite, time-boxed ticket inventory for live events: reservation holds
on versioned tier counters, server-side pricing, idempotent checkout and
payment confirmation, a background sweeper for abandoned holds and stale
orders, single-use admission scans, and an optional virtual waiting room.
"""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from gatehouse.api.middleware import RequestLoggingMiddleware
from gatehouse.api.router import api_router
from gatehouse.core.config import get_settings
from gatehouse.core.errors import GatehouseError
from gatehouse.core.logging import get_logger, setup_logging
from gatehouse.core.metrics import metrics_endpoint
from gatehouse.db.session import AsyncSessionLocal
from gatehouse.services.cache_service import close_redis, get_cache_stats, get_redis
from gatehouse.services.cleanup_service import sweeper_loop
from gatehouse.services.gateway_factory import close_payment_gateway

settings = get_settings()
logger = get_logger(__name__)


async def _stop(task: asyncio.Task) -> None:
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    cache = await get_redis()
    logger.info(
        "gatehouse_starting",
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        payment_gateway=settings.PAYMENT_GATEWAY,
        catalog_cache="on" if cache is not None else "off",
        sweeper=settings.SWEEPER_ENABLED,
    )

    sweeper = asyncio.create_task(sweeper_loop(AsyncSessionLocal)) if settings.SWEEPER_ENABLED else None
    app.state.sweeper = sweeper
    try:
        yield
    finally:
        if sweeper is not None:
            await _stop(sweeper)
        await close_payment_gateway()
        await close_redis()
        logger.info("gatehouse_stopped")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Event ticketing API with oversell-safe reservations and single-use admission",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    expose_headers=["X-Request-ID"],
)
app.add_middleware(RequestLoggingMiddleware)
app.include_router(api_router)


@app.exception_handler(GatehouseError)
async def gatehouse_error_handler(request: Request, exc: GatehouseError) -> JSONResponse:
    logger.info("request_rejected", code=exc.code, status_code=exc.status_code, **exc.context)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """Liveness for load balancers. Cache trouble is reported, never fatal."""
    sweeper = getattr(request.app.state, "sweeper", None)
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "cache": await get_cache_stats(),
        "sweeper": "running" if sweeper is not None and not sweeper.done() else "stopped",
    }


@app.get("/metrics", tags=["Health"])
async def metrics():
    return metrics_endpoint()
