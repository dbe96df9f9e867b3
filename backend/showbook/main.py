"""
Showbook Reservation API - Main Application Entry Point

Movie-ticket seat reservation service:
- Conflict-free seat holds via compare-and-swap on each show's seat map
- Durable expiry tasks that release holds nobody paid for
- Payment confirmation from provider webhooks or client polls
- Structured logging with request correlation, Prometheus metrics
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from showbook.core.config import get_settings
from showbook.core.logging import setup_logging, get_logger
from showbook.core.metrics import metrics_endpoint
from showbook.api.errors import register_exception_handlers
from showbook.api.router import api_router
from showbook.api.middleware import RequestLoggingMiddleware
from showbook.db.session import AsyncSessionLocal, engine
from showbook.services.cache_service import get_schedule_cache
from showbook.services.strategy_factory import get_payment_gateway
from showbook.workers.expiry_worker import ExpiryWorker

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        payment_provider=settings.PAYMENT_PROVIDER,
    )

    # Outbound clients are built once here and reused by every request
    get_payment_gateway()
    cache = get_schedule_cache()
    if await cache.connect():
        logger.info("redis_ready")
    else:
        logger.warning("redis_unavailable", message="Running without cache")

    worker = None
    if settings.EXPIRY_WORKER_ENABLED:
        worker = ExpiryWorker(AsyncSessionLocal)
        worker.start()

    yield

    if worker is not None:
        await worker.stop()
    await cache.close()
    await engine.dispose()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Movie seat reservation API with conflict-free holds and automatic expiry",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)
register_exception_handlers(app)

app.include_router(api_router)


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    cache_stats = await get_schedule_cache().stats()
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "cache": cache_stats,
    }


@app.get("/metrics", tags=["Health"], include_in_schema=False)
async def metrics():
    return metrics_endpoint()


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
