"""
HireScore Credit Ledger - FastAPI Backend
Main application entry point with health check and API routing.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import settings, validate_security_settings
from database import engine, Base
import models  # noqa: F401
from routers import (
    health,
    accounts,
    billing,
    ai,
    admin,
)
from routers.errors import register_exception_handlers
from services.settings_service import SystemSettingsService

logging.basicConfig(
    level=getattr(logging, str(settings.LOG_LEVEL).upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    logger.info("Starting HireScore Credit Ledger API...")
    validate_security_settings()
    app.state.system_settings_service = SystemSettingsService()
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("Database schema verified.")
        except Exception as e:
            logger.warning("Database bootstrap skipped: %s", e)
    yield
    # Shutdown
    await engine.dispose()
    logger.info("Shutting down API...")


app = FastAPI(
    title="HireScore Credit Ledger API",
    description="Credit balances, usage charges, ad rewards, payments and template entitlements",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(accounts.router, prefix="/accounts", tags=["Accounts"])
app.include_router(billing.router, prefix="/billing", tags=["Billing"])
app.include_router(ai.router, prefix="/ai", tags=["AI"])
app.include_router(admin.router, prefix="/admin", tags=["Admin"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "HireScore Credit Ledger API",
        "version": "0.1.0",
        "status": "running"
    }
