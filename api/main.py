"""VIP Pricing API — FastAPI entry point.

Registers middleware, routers, exception handlers and lifecycle hooks. The
VIP pricing vertical mounts its router under /api/vip/.
"""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.middleware import ShopMiddleware
from core.database import close_db, init_db
from core.errors import TransportError, VipPricingError
from core.logging import configure_logging, get_logger
from core.resilience.dlq import DeadLetterQueue
from verticals.vip_pricing.access_log import AccessLogger, AccessLogSink
from verticals.vip_pricing.config import config

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS", "http://localhost:3000,http://localhost:3001"
).split(",")
VERSION = "0.1.0"
CREATE_TABLES = os.getenv("DB_CREATE_TABLES", "false").lower() == "true"

logger = get_logger("vip_pricing.api")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup/shutdown hooks."""
    configure_logging(service_name="vip_pricing", log_level=config.log_level)
    if CREATE_TABLES:
        await init_db()

    sink = AccessLogSink(
        AccessLogger(),
        maxsize=config.access_log.queue_size,
        dead_letters=DeadLetterQueue(),
    )
    sink.start()
    app.state.access_sink = sink
    app.state.commerce_clients = {}

    logger.info("VIP Pricing API started", version=VERSION)
    yield
    await sink.stop()
    await close_db()
    logger.info("VIP Pricing API shutting down")


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

app = FastAPI(
    title="VIP Pricing",
    description="Tag-based tiered pricing for Shopify storefronts",
    version=VERSION,
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Shop isolation middleware
app.add_middleware(ShopMiddleware)


# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------

@app.exception_handler(VipPricingError)
async def vip_pricing_error_handler(request: Request, exc: VipPricingError):
    if isinstance(exc, TransportError):
        logger.error("Commerce platform unavailable", code=exc.code, details=exc.details)
        return JSONResponse({"error": "Server Error"}, status_code=exc.http_status)

    if exc.http_status >= 500:
        logger.error("Request failed", code=exc.code, error=exc.message)
    else:
        logger.warning("Request rejected", code=exc.code, error=exc.message)
    return JSONResponse(exc.to_response().model_dump(), status_code=exc.http_status)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error", path=request.url.path)
    return JSONResponse({"error": "Server Error"}, status_code=500)


# ---------------------------------------------------------------------------
# Routers: verticals register here
# ---------------------------------------------------------------------------

from verticals.vip_pricing.router import router as vip_router  # noqa: E402

app.include_router(vip_router, prefix="/api/vip", tags=["VIP Pricing"])


# ---------------------------------------------------------------------------
# Health & root
# ---------------------------------------------------------------------------

@app.get("/health")
async def health(request: Request):
    clients = getattr(request.app.state, "commerce_clients", {})
    sink = getattr(request.app.state, "access_sink", None)
    return {
        "status": "healthy",
        "version": VERSION,
        "integrations": {shop: c.get_health().to_dict() for shop, c in clients.items()},
        "access_log": {
            "worker_running": bool(sink and sink.running),
            "queued": sink.queue.qsize() if sink else 0,
            "dead_letters": sink.dead_letters.get_stats(AccessLogSink.QUEUE_NAME).to_dict() if sink else None,
        },
    }


@app.get("/")
async def root():
    return {
        "name": "VIP Pricing",
        "version": VERSION,
        "docs": "/docs",
        "verticals": ["vip_pricing"],
        "description": "Tag-based tiered pricing for Shopify storefronts",
    }
