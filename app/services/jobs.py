"""
Scheduled maintenance jobs. Each run is recorded in ``job_runs``.
"""
from __future__ import annotations

import inspect
import logging
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Union

from sqlalchemy.orm import Session

from app.core.exceptions import ValidationError
from app.integrations.razorpay import RazorpayClient, get_payment_gateway
from app.models import JobRun, Subscription
from app.services.credits import expire_credits
from app.services.cycles import utcnow
from app.services.lifecycle import SubscriptionLifecycleManager
from app.services.payments import process_pending_refunds
from app.services.renewal import fail_overdue_invoices, renew_due_subscriptions

logger = logging.getLogger(__name__)

JobResult = Union[dict[str, Any], Awaitable[dict[str, Any]]]


def auto_cancel_paused(db: Session, now: datetime) -> dict[str, int]:
    manager = SubscriptionLifecycleManager(db, now)
    paused = db.query(Subscription).filter(Subscription.status == "paused").all()
    eligible = [s for s in paused if manager.is_auto_cancel_eligible(s)]
    cancelled = sum(1 for s in eligible if manager.force_cancel(s.id).success)
    return {"paused": len(paused), "eligible": len(eligible), "cancelled": cancelled}


def end_elapsed_pauses(db: Session, now: datetime) -> dict[str, int]:
    manager = SubscriptionLifecycleManager(db, now)
    rows = (
        db.query(Subscription)
        .filter(
            Subscription.status == "paused",
            Subscription.paused_until.isnot(None),
            Subscription.paused_until < manager.today,
        )
        .all()
    )
    resumed = sum(1 for s in rows if manager.end_pause(s.id).success)
    return {"elapsed": len(rows), "resumed": resumed}


def complete_trials(db: Session, now: datetime) -> dict[str, int]:
    manager = SubscriptionLifecycleManager(db, now)
    rows = (
        db.query(Subscription)
        .filter(
            Subscription.status == "trial",
            Subscription.expiry_date.isnot(None),
            Subscription.expiry_date < manager.today,
        )
        .all()
    )
    completed = sum(1 for s in rows if manager.complete_trial(s.id).success)
    return {"ended": len(rows), "completed": completed}


def expire_old_credits(db: Session, now: datetime) -> dict[str, int]:
    return {"expired": expire_credits(db, now)}


def daily_maintenance(db: Session, now: datetime) -> dict[str, Any]:
    return {
        "pause_expiry": end_elapsed_pauses(db, now),
        "renewals": renew_due_subscriptions(db, now),
        "payment_retry": fail_overdue_invoices(db, now),
        "auto_cancel_paused": auto_cancel_paused(db, now),
        "trial_completion": complete_trials(db, now),
        "credit_expiry": expire_old_credits(db, now),
    }


async def submit_refunds(db: Session, now: datetime, gateway: Optional[RazorpayClient] = None) -> dict[str, int]:
    return await process_pending_refunds(db, gateway or get_payment_gateway(), now)


JOB_HANDLERS: dict[str, Callable[..., JobResult]] = {
    "renewals": renew_due_subscriptions,
    "payment_retry": fail_overdue_invoices,
    "auto_cancel_paused": auto_cancel_paused,
    "pause_expiry": end_elapsed_pauses,
    "trial_completion": complete_trials,
    "credit_expiry": expire_old_credits,
    "refunds": submit_refunds,
    "daily_maintenance": daily_maintenance,
}


async def run_job(
    db: Session,
    job_type: str,
    now: Optional[datetime] = None,
    gateway: Optional[RazorpayClient] = None,
) -> JobRun:
    """Run ``job_type`` and record the outcome. Job failures are stored, not raised."""
    if job_type not in JOB_HANDLERS:
        raise ValidationError(f"Unknown job '{job_type}'. Expected one of {', '.join(JOB_HANDLERS)}")
    now = now or utcnow()
    run = JobRun(job_type=job_type, status="running", started_at=now, result={})
    db.add(run)
    db.commit()

    started = time.perf_counter()
    try:
        handler = JOB_HANDLERS[job_type]
        result = handler(db, now, gateway) if handler is submit_refunds else handler(db, now)
        if inspect.isawaitable(result):
            result = await result
        run.status = "success"
        run.result = result
    except Exception as exc:
        db.rollback()
        logger.exception("Job %s failed: %s", job_type, exc)
        run.status = "failed"
        run.error = str(exc)
    run.execution_time_ms = int((time.perf_counter() - started) * 1000)
    run.finished_at = utcnow()
    db.commit()
    db.refresh(run)
    logger.info("Job %s finished with %s in %sms", job_type, run.status, run.execution_time_ms)
    return run


def serialize_job_run(run: JobRun) -> dict[str, Any]:
    return {
        "id": str(run.id),
        "job_type": run.job_type,
        "status": run.status,
        "result": run.result or {},
        "error": run.error,
        "execution_time_ms": run.execution_time_ms,
        "started_at": run.started_at.isoformat() if run.started_at else None,
        "finished_at": run.finished_at.isoformat() if run.finished_at else None,
    }
