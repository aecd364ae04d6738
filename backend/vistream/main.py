"""Vistream Billing — FastAPI application entry point."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from vistream.api.admin import router as admin_router
from vistream.api.payments import router as payments_router
from vistream.api.plans import router as plans_router
from vistream.api.subscriptions import router as subscriptions_router
from vistream.api.webhooks import router as webhooks_router
from vistream.billing.errors import BillingError
from vistream.billing.rate_limit import close_rate_limiter
from vistream.config import settings

# Configure root logger so all vistream.* loggers output to stderr (captured by Docker).
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler for startup and shutdown events."""
    yield
    # Shutdown: release the rate limiter and engine connections
    from vistream.database import engine

    await close_rate_limiter()
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Subscription billing and payment reconciliation for Vistream.",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BillingError)
async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
    """Render billing errors as ``{success, error, code}`` with the French message."""
    log = logger.warning if exc.status_code >= 500 else logger.info
    log("%s %s -> %s %s: %s", request.method, request.url.path, exc.status_code, exc.code, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message, "code": exc.code},
    )


# Routers
app.include_router(plans_router)
app.include_router(payments_router)
app.include_router(subscriptions_router)
app.include_router(webhooks_router)
app.include_router(admin_router)


@app.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy", "service": settings.app_name}


@app.get("/", tags=["root"])
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
    }
