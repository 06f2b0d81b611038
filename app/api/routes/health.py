"""
Health API Routes
"""
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.database import check_database_connection, database_health, get_db

router = APIRouter()


@router.get("/health")
async def health_check() -> JSONResponse:
    """Application and database health"""
    db = database_health()
    ok = bool(db.get("ok")) and check_database_connection()
    return JSONResponse(
        status_code=status.HTTP_200_OK if ok else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "healthy" if ok else "degraded",
            "database": db,
        },
    )


@router.get("/health/integrations")
async def check_integrations(db: Session = Depends(get_db)) -> dict:
    """Verify payment and cron configuration plus database connectivity."""
    checks = {
        "razorpay": bool(settings.razorpay_key_id and settings.razorpay_key_secret),
        "razorpay_webhook": bool(settings.razorpay_webhook_secret),
        "cron_secret": bool(settings.cron_secret),
    }
    try:
        db.execute(text("SELECT 1"))
        checks["database"] = True
    except SQLAlchemyError:
        checks["database"] = False

    return {
        "integrations": checks,
        "ready": all(checks.values()),
        "missing": [k for k, v in checks.items() if not v],
    }
