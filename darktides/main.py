"""
DarkTides Research storefront service.

Inventory holds, order finalization, Venmo/crypto checkout, Coinbase Commerce
webhooks and back-office endpoints in one FastAPI application.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import asyncio
import subprocess
import os

from darktides.core import ServiceHealth, setup_logging, RequestLoggingMiddleware, get_logger
from darktides.core_settings import get_settings
from darktides.infrastructure.db import engine, init_models, SessionLocal
from darktides.application.inventory import InventoryService
from darktides.api.products import router as products_router
from darktides.api.inventory import router as inventory_router
from darktides.api.discounts import router as discounts_router
from darktides.api.checkout import router as checkout_router
from darktides.api.webhooks import router as webhooks_router
from darktides.api.contact import router as contact_router
from darktides.api.admin import router as admin_router

settings = get_settings()

# Service configuration
SERVICE_NAME = "darktides-storefront"
SERVICE_VERSION = settings.SERVICE_VERSION
SERVICE_DESCRIPTION = "DarkTides Research storefront backend"

setup_logging(
    service_name=SERVICE_NAME,
    level=settings.LOG_LEVEL,
    environment=settings.ENVIRONMENT,
    version=SERVICE_VERSION,
)

logger = get_logger(__name__)

def cleanup_expired_reservations() -> int:
    db = SessionLocal()
    try:
        return InventoryService(db, settings).cleanup_expired()
    finally:
        db.close()

async def reservation_cleanup_loop(interval: float):
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(cleanup_expired_reservations)
        except Exception:
            logger.error("Reservation cleanup run failed", exc_info=True)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management"""
    logger.info(f"Starting {SERVICE_NAME} version {SERVICE_VERSION}")

    try:
        logger.info("Running database migrations")
        result = subprocess.run(
            ["alembic", "upgrade", "head"],
            cwd=os.path.join(os.path.dirname(__file__), ".."),
            capture_output=True,
            text=True,
            check=False
        )
        if result.returncode != 0:
            logger.warning(f"Migration output: {result.stderr}")
        else:
            logger.info("Database migrations completed")
    except OSError as e:
        logger.error(f"Migration error: {e}")

    try:
        init_models()
        logger.info("Database models initialized")
    except Exception as e:
        logger.error(f"Failed to initialize database models: {e}")
        raise

    cleanup_task = None
    if settings.RESERVATION_CLEANUP_ENABLED:
        cleanup_task = asyncio.create_task(
            reservation_cleanup_loop(settings.RESERVATION_CLEANUP_INTERVAL_SECONDS)
        )
        logger.info(f"Reservation cleanup every {settings.RESERVATION_CLEANUP_INTERVAL_SECONDS}s")

    logger.info(f"{SERVICE_NAME} started successfully")

    yield

    if cleanup_task:
        cleanup_task.cancel()
        try:
            await cleanup_task
        except asyncio.CancelledError:
            pass
    logger.info(f"Shutting down {SERVICE_NAME}")

app = FastAPI(
    title=SERVICE_NAME,
    description=SERVICE_DESCRIPTION,
    version=SERVICE_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)

health_service = ServiceHealth(SERVICE_NAME, engine, settings, SERVICE_VERSION)
app.include_router(health_service.create_health_router())

app.include_router(products_router)
app.include_router(inventory_router)
app.include_router(discounts_router)
app.include_router(checkout_router)
app.include_router(webhooks_router)
app.include_router(contact_router)
app.include_router(admin_router)

@app.get("/")
async def root():
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "status": "running",
        "docs": "/api/docs"
    }

@app.get("/info")
async def info():
    """Service information endpoint"""
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "description": SERVICE_DESCRIPTION,
        "environment": settings.ENVIRONMENT,
        "endpoints": {
            "health": "/health",
            "ready": "/health/ready",
            "live": "/health/live",
            "metrics": "/metrics",
            "docs": "/api/docs",
            "products": "/products",
            "checkout": "/checkout/orders",
            "webhooks": "/webhooks/coinbase",
        }
    }
