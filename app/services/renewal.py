"""
Cycle renewal and overdue invoice handling, driven by scheduled jobs.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.core.exceptions import AppError
from app.models import Cycle, Invoice, Subscription
from app.services import billing
from app.services.cycles import local_date, utcnow
from app.services.lifecycle import SubscriptionLifecycleManager
from app.services.platform import get_platform_settings
from app.services.pricing import quote_range

logger = logging.getLogger(__name__)


def renew_subscription(db: Session, subscription: Subscription, now: datetime) -> Invoice:
    """Open the next cycle on the renewal date and bill it, spending available credits first."""
    platform = get_platform_settings(db)
    if subscription.pending_preferences:
        subscription.preferences = subscription.pending_preferences
        subscription.pending_preferences = None
    cycle = billing.open_cycle(db, subscription, subscription.renewal_date)
    quote = quote_range(
        db,
        subscription.vendor_id,
        subscription.preferences or {},
        cycle.cycle_start,
        cycle.cycle_end,
        platform,
    )
    return billing.build_invoice(db, subscription, cycle, quote, "renewal", now)


def renew_due_subscriptions(db: Session, now: Optional[datetime] = None) -> dict[str, int]:
    now = now or utcnow()
    today = local_date(now, get_platform_settings(db).timezone)
    due = (
        db.query(Subscription)
        .filter(Subscription.status == "active", Subscription.renewal_date <= today)
        .order_by(Subscription.renewal_date.asc())
        .all()
    )
    counts = {"due": len(due), "renewed": 0, "paid_by_credits": 0, "failed": 0}
    for subscription in due:
        already = (
            db.query(Cycle.id)
            .filter(Cycle.subscription_id == subscription.id, Cycle.cycle_start == subscription.renewal_date)
            .first()
        )
        if already is not None:
            continue
        try:
            invoice = renew_subscription(db, subscription, now)
            db.commit()
        except AppError as exc:
            db.rollback()
            counts["failed"] += 1
            logger.warning("Renewal failed for subscription %s: %s", subscription.id, exc.message)
            continue
        counts["renewed"] += 1
        if invoice.status == "paid":
            counts["paid_by_credits"] += 1
    logger.info("Renewals: %s", counts)
    return counts


def fail_overdue_invoices(db: Session, now: Optional[datetime] = None) -> dict[str, int]:
    """Fail invoices left unpaid past the retry window and expire their subscriptions."""
    now = now or utcnow()
    cutoff = now - timedelta(days=settings.payment_retry_days)
    overdue = (
        db.query(Invoice)
        .filter(Invoice.status == "pending_payment", Invoice.created_at <= cutoff)
        .all()
    )
    counts = {"overdue": len(overdue), "failed": 0, "expired": 0}
    manager = SubscriptionLifecycleManager(db, now)
    for invoice in overdue:
        invoice.status = "failed"
        invoice.failed_at = now
        db.commit()
        counts["failed"] += 1
        subscription = db.get(Subscription, invoice.subscription_id) if invoice.subscription_id else None
        if subscription is not None and subscription.status == "active":
            if manager.expire(subscription.id).success:
                counts["expired"] += 1
    logger.info("Payment retry: %s", counts)
    return counts
