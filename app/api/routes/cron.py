"""
Cron entry points for external schedulers. Requests carry ``Authorization: Bearer $CRON_SECRET``.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.dependencies import raise_app_error, verify_cron_secret
from app.core.exceptions import AppError
from app.database import get_db
from app.integrations.razorpay import RazorpayClient, get_payment_gateway
from app.services.jobs import JOB_HANDLERS, run_job, serialize_job_run

router = APIRouter(dependencies=[Depends(verify_cron_secret)])


@router.get("/jobs")
async def list_jobs() -> dict:
    return {"jobs": sorted(JOB_HANDLERS)}


@router.post("/{job_type}")
async def trigger_job(
    job_type: str,
    db: Session = Depends(get_db),
    gateway: RazorpayClient = Depends(get_payment_gateway),
) -> dict:
    try:
        run = await run_job(db, job_type, gateway=gateway)
    except AppError as exc:
        raise_app_error(exc)
    return serialize_job_run(run)
