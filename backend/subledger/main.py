"""Subledger — FastAPI application entry point."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from subledger.api.v1.billing import router as billing_router
from subledger.api.v1.profile import router as profile_router
from subledger.api.v1.webhooks import router as webhooks_router
from subledger.billing.errors import BillingError
from subledger.billing.stripe_client import BillingProviderClient
from subledger.config import settings
from subledger.database import engine, init_db

# Configure root logger so all subledger.* loggers output to stderr.
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler for startup and shutdown events."""
    # Startup
    if not settings.stripe_secret_key:
        logger.warning("STRIPE_SECRET_KEY is not set; billing calls will fail")
    app.state.billing_client = BillingProviderClient.from_settings()
    if settings.database_auto_create:
        await init_db()
    yield
    # Shutdown — dispose engine connections
    await engine.dispose()


async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
    """Render every billing error as ``{"detail", "error", "retryable"}``."""
    headers = None
    if exc.status_code == status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer"}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Subscription billing reconciliation and entitlement service backed by Stripe.",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_exception_handler(BillingError, billing_error_handler)

# Credentials are allowed, so CORS echoes the request origin instead of "*"
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_origin_regex=settings.cors_origin_regex,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(billing_router)
app.include_router(webhooks_router)
app.include_router(profile_router)


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


if __name__ == "__main__":
    uvicorn.run("subledger.main:app", host=settings.host, port=settings.port, reload=settings.debug)
