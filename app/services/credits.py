"""
Credit ledger: minting, FIFO application to invoices, expiry and listing.

Credits tied to a vendor (skip, pause, ops failure) can only be spent on that
vendor's invoices. Credits without a vendor (cancellation, auto-cancel) are
spendable on any invoice of the same consumer.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.core.exceptions import ValidationError
from app.models import Credit, Invoice, PlatformSetting, Subscription
from app.services.pricing import money

logger = logging.getLogger(__name__)


def mint_credit(
    db: Session,
    subscription: Subscription,
    amount: float,
    reason: str,
    platform: PlatformSetting,
    now: datetime,
    slot: Optional[str] = None,
    source_order_id: Optional[uuid.UUID] = None,
    vendor_scoped: bool = True,
) -> Credit:
    amount = money(amount)
    if amount <= 0:
        raise ValidationError("Credit amount must be positive")
    credit = Credit(
        consumer_id=subscription.consumer_id,
        subscription_id=subscription.id,
        vendor_id=subscription.vendor_id if vendor_scoped else None,
        slot=slot,
        amount=amount,
        reason=reason,
        status="available",
        source_order_id=source_order_id,
        expires_at=now + timedelta(days=int(platform.credit_expiry_days)),
    )
    db.add(credit)
    db.flush()
    logger.info(
        "Minted %s credit of %.2f for subscription %s (slot=%s)",
        reason,
        amount,
        subscription.id,
        slot,
    )
    return credit


def available_credits(
    db: Session,
    consumer_id: uuid.UUID,
    now: datetime,
    vendor_id: Optional[uuid.UUID] = None,
    subscription_id: Optional[uuid.UUID] = None,
) -> list[Credit]:
    """Unexpired available credits, oldest expiry first."""
    query = db.query(Credit).filter(
        Credit.consumer_id == consumer_id,
        Credit.status == "available",
        Credit.expires_at > now,
    )
    if vendor_id is not None:
        query = query.filter(or_(Credit.vendor_id == vendor_id, Credit.vendor_id.is_(None)))
    if subscription_id is not None:
        query = query.filter(Credit.subscription_id == subscription_id)
    return query.order_by(Credit.expires_at.asc(), Credit.created_at.asc()).all()


def total_amount(credits: Iterable[Credit]) -> float:
    return money(sum(float(c.amount) for c in credits))


def apply_credits_to_invoice(db: Session, invoice: Invoice, now: datetime) -> float:
    """
    Spend available credits against ``invoice`` in expiry order.

    A credit larger than the remaining amount is split: the spent part is
    marked used and the remainder stays available with the same expiry.
    """
    remaining = money(float(invoice.total_amount or 0))
    applied = 0.0
    for credit in available_credits(db, invoice.consumer_id, now, vendor_id=invoice.vendor_id):
        if remaining <= 0:
            break
        amount = float(credit.amount)
        if amount > remaining:
            leftover = Credit(
                consumer_id=credit.consumer_id,
                subscription_id=credit.subscription_id,
                vendor_id=credit.vendor_id,
                slot=credit.slot,
                amount=money(amount - remaining),
                reason=credit.reason,
                status="available",
                source_order_id=credit.source_order_id,
                expires_at=credit.expires_at,
            )
            db.add(leftover)
            credit.amount = remaining
            amount = remaining
        credit.status = "used"
        credit.used_at = now
        credit.used_invoice_id = invoice.id
        applied = money(applied + amount)
        remaining = money(remaining - amount)

    invoice.credits_applied = money(float(invoice.credits_applied or 0) + applied)
    invoice.total_amount = remaining
    db.flush()
    if applied:
        logger.info("Applied %.2f credits to invoice %s", applied, invoice.id)
    return applied


def reinstate_spent_credits(db: Session, invoice_ids: list[uuid.UUID], amount: float, now: datetime) -> list[Credit]:
    """
    Give back up to ``amount`` of the credits spent on ``invoice_ids``, most recently used first.

    Reinstated credits keep their original expiry. The last one is reduced to
    the amount still owed rather than split, so no ledger row is added.
    """
    remaining = money(amount)
    if remaining <= 0 or not invoice_ids:
        return []
    spent = (
        db.query(Credit)
        .filter(Credit.used_invoice_id.in_(invoice_ids), Credit.status == "used")
        .order_by(Credit.used_at.desc(), Credit.expires_at.desc())
        .all()
    )
    reinstated = []
    for credit in spent:
        if remaining <= 0:
            break
        if float(credit.amount) > remaining:
            credit.amount = remaining
        credit.status = "available" if credit.expires_at > now else "expired"
        credit.used_at = None
        credit.used_invoice_id = None
        remaining = money(remaining - float(credit.amount))
        reinstated.append(credit)
    db.flush()
    if reinstated:
        logger.info("Reinstated %d spent credits worth %.2f", len(reinstated), money(amount - remaining))
    return reinstated


def void_credits(credits: Iterable[Credit], now: datetime) -> float:
    voided = 0.0
    for credit in credits:
        credit.status = "void"
        credit.used_at = now
        voided = money(voided + float(credit.amount))
    return voided


def expire_credits(db: Session, now: datetime) -> int:
    rows = (
        db.query(Credit)
        .filter(Credit.status == "available", Credit.expires_at <= now)
        .all()
    )
    for credit in rows:
        credit.status = "expired"
    db.commit()
    if rows:
        logger.info("Expired %d credits", len(rows))
    return len(rows)


def serialize_credit(credit: Credit) -> dict[str, Any]:
    return {
        "id": str(credit.id),
        "subscription_id": str(credit.subscription_id) if credit.subscription_id else None,
        "vendor_id": str(credit.vendor_id) if credit.vendor_id else None,
        "slot": credit.slot,
        "amount": float(credit.amount),
        "reason": credit.reason,
        "status": credit.status,
        "expires_at": credit.expires_at.isoformat() if credit.expires_at else None,
        "used_at": credit.used_at.isoformat() if credit.used_at else None,
        "created_at": credit.created_at.isoformat() if credit.created_at else None,
    }


def credit_summary(db: Session, consumer_id: uuid.UUID, now: datetime) -> dict[str, Any]:
    rows = (
        db.query(Credit)
        .filter(Credit.consumer_id == consumer_id)
        .order_by(Credit.created_at.desc())
        .all()
    )
    available = [c for c in rows if c.status == "available" and c.expires_at > now]
    return {
        "available_total": total_amount(available),
        "used_total": total_amount(c for c in rows if c.status == "used"),
        "expired_total": total_amount(c for c in rows if c.status == "expired"),
        "items": [serialize_credit(c) for c in rows],
    }
