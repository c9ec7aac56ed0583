"""Tasy billing service — FastAPI app serving the Stripe webhook and billing API."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession

from tasy_billing.api.v1.billing import router as billing_router
from tasy_billing.api.v1.webhooks import router as webhooks_router
from tasy_billing.config import settings
from tasy_billing.database import engine, get_db, ping_database

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Log the webhook configuration on startup; release the pool on shutdown."""
    if not settings.webhook_secret:
        logger.warning("No Stripe webhook secret configured; webhook deliveries will be rejected")
    logger.info("%s %s starting (%s)", settings.app_name, settings.app_version, settings.environment)
    yield
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Stripe subscription and credit reconciliation for Tasy.",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# The web app calls through the Supabase client, which sends these headers
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type", "stripe-signature"],
)

app.include_router(billing_router)
app.include_router(webhooks_router)


@app.get("/health", tags=["health"])
async def health_check(response: Response, db: AsyncSession = Depends(get_db)) -> dict[str, str]:
    """Liveness plus a database round-trip; 503 when the database is down."""
    database_ok = await ping_database(db)
    if not database_ok:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return {
        "status": "healthy" if database_ok else "degraded",
        "service": settings.app_name,
        "database": "ok" if database_ok else "unavailable",
    }


@app.get("/", tags=["root"])
async def root() -> dict[str, str]:
    """Service name, version and docs link."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
    }
