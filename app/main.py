"""
Mealcycle - FastAPI Application
Home-chef meal subscription marketplace API
"""
from contextlib import asynccontextmanager
import logging
from datetime import datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from app.config import settings
from app.core.logger import configure_logging
from app.database import init_db
from app.services.job_scheduler import JobScheduler

from app.api.routes import (
    health,
    auth,
    public,
    customer,
    vendor,
    admin,
    payments,
    cron,
)

configure_logging(settings.log_level)
logger = logging.getLogger(__name__)
scheduler = JobScheduler(poll_seconds=settings.scheduler_poll_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    logger.info("Starting %s...", settings.app_name)

    try:
        init_db()
        logger.info("Database initialized")
    except Exception as e:
        logger.error(f"Database initialization failed: {str(e)}")

    logger.info(f"API running on {settings.app_env} environment")
    if settings.scheduler_enabled:
        scheduler.start()
        app.state.job_scheduler = scheduler
        logger.info("Job scheduler started")
    yield
    if settings.scheduler_enabled:
        await scheduler.stop()
    logger.info("Shutting down %s...", settings.app_name)


app = FastAPI(
    title=settings.app_name,
    description="Backend API for the Mealcycle meal subscription marketplace",
    version="1.0.0",
    lifespan=lifespan,
)

# Respect forwarded proto/host so redirects don't downgrade to http.
app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
async def root() -> dict:
    return {
        "name": settings.app_name,
        "environment": settings.app_env,
        "timestamp": datetime.utcnow().isoformat(),
    }


prefix = settings.api_v1_prefix
app.include_router(health.router, prefix=prefix, tags=["Health"])
app.include_router(auth.router, prefix=f"{prefix}/auth", tags=["Auth"])
app.include_router(public.router, prefix=f"{prefix}/public", tags=["Catalog"])
app.include_router(customer.router, prefix=f"{prefix}/me", tags=["Customer"])
app.include_router(vendor.router, prefix=f"{prefix}/vendor", tags=["Vendor"])
app.include_router(admin.router, prefix=f"{prefix}/admin", tags=["Admin"])
app.include_router(payments.router, prefix=f"{prefix}/payments", tags=["Payments"])
app.include_router(cron.router, prefix=f"{prefix}/cron", tags=["Cron"])
