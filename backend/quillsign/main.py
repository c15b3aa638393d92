"""Quillsign — FastAPI application entry point."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from quillsign.api.v1.admin import router as admin_router
from quillsign.api.v1.auth import router as auth_router
from quillsign.api.v1.billing import router as billing_router
from quillsign.api.v1.entitlements import router as entitlements_router
from quillsign.api.v1.webhooks import router as webhooks_router
from quillsign.config import settings
from quillsign.middleware.subscription_gate import SubscriptionGateMiddleware

# Configure root logger so all quillsign.* loggers output to stderr (captured by Docker).
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler for startup and shutdown events."""
    # Startup
    yield
    # Shutdown — dispose engine connections
    from quillsign.database import engine

    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Contract and invoicing workspace for freelancers, billed through Stripe subscriptions.",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Middleware — added in reverse execution order (last added runs first on request).
# The gate is added BEFORE CORS so that CORS headers are present on its redirects.
app.add_middleware(SubscriptionGateMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(auth_router)
app.include_router(billing_router)
app.include_router(entitlements_router)
app.include_router(admin_router)
app.include_router(webhooks_router)


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
