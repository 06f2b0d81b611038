"""
Cycles, invoices and settlement shared by checkout, resume and renewal.

An invoice stores its priced lines together with the service dates they
cover, so settling it later schedules exactly the meals that were charged.
"""
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.config import settings
from app.core.exceptions import InvalidTransitionError, NotFoundError
from app.models import Cycle, Invoice, Refund, Subscription
from app.services.credits import apply_credits_to_invoice
from app.services.cycles import CycleWindow, cycle_window
from app.services.orders import schedule_orders
from app.services.pricing import Quote, money

logger = logging.getLogger(__name__)


def open_cycle(
    db: Session,
    subscription: Subscription,
    start: date,
    is_first: bool = False,
    window: Optional[CycleWindow] = None,
) -> Cycle:
    window = window or cycle_window(subscription.plan.period_type, start)
    cycle = Cycle(
        subscription_id=subscription.id,
        cycle_start=window.cycle_start,
        cycle_end=window.cycle_end,
        renewal_date=window.renewal_date,
        is_first_cycle=is_first,
        skips_used={},
    )
    db.add(cycle)
    subscription.renewal_date = window.renewal_date
    db.flush()
    return cycle


def build_invoice(
    db: Session,
    subscription: Subscription,
    cycle: Cycle,
    quote: Quote,
    kind: str,
    now: datetime,
) -> Invoice:
    """Create a pending invoice for ``quote``, spend credits, settle it if nothing is left to pay."""
    lines = []
    for line in quote.lines:
        data = line.to_dict()
        data["dates"] = [d.isoformat() for d in line.dates]
        data["effective_unit_price"] = quote.unit_price_for(line.slot)
        lines.append(data)
    invoice = Invoice(
        subscription_id=subscription.id,
        cycle_id=cycle.id,
        consumer_id=subscription.consumer_id,
        vendor_id=subscription.vendor_id,
        kind=kind,
        status="pending_payment",
        currency=settings.currency,
        subtotal_vendor_base=quote.subtotal_vendor_base,
        delivery_fee_total=quote.delivery_fee_total,
        commission_total=quote.commission_total,
        discount_total=money(quote.gross_total - quote.total),
        credits_applied=0,
        total_amount=quote.total,
        lines=lines,
        attempts=0,
    )
    db.add(invoice)
    db.flush()
    subscription.price_per_cycle = quote.total
    apply_credits_to_invoice(db, invoice, now)
    if float(invoice.total_amount) <= 0:
        settle_invoice(db, invoice, now)
    logger.info(
        "Invoice %s (%s) for subscription %s: total %.2f, credits %.2f",
        invoice.id,
        kind,
        subscription.id,
        float(invoice.total_amount),
        float(invoice.credits_applied),
    )
    return invoice


def invoice_schedule(invoice: Invoice) -> list[tuple[str, list[date], float]]:
    return [
        (
            line["slot"],
            [date.fromisoformat(d) for d in line.get("dates", [])],
            float(line.get("effective_unit_price", line.get("unit_price", 0))),
        )
        for line in invoice.lines or []
    ]


def invoice_meal_value(invoice: Invoice) -> float:
    return money(sum(len(dates) * price for _, dates, price in invoice_schedule(invoice)))


def settle_invoice(
    db: Session,
    invoice: Invoice,
    now: datetime,
    payment_id: Optional[str] = None,
) -> Invoice:
    """Mark ``invoice`` paid and schedule the orders it covers. Settling twice is a no-op."""
    if invoice.status == "paid":
        return invoice
    if invoice.status != "pending_payment":
        raise InvalidTransitionError(f"Invoice is {invoice.status}")
    cycle = db.get(Cycle, invoice.cycle_id)
    subscription = db.get(Subscription, invoice.subscription_id)
    if cycle is None or subscription is None:
        raise NotFoundError("Invoice is not linked to a subscription cycle")

    invoice.status = "paid"
    invoice.paid_at = now
    if payment_id:
        invoice.razorpay_payment_id = payment_id
    subscription.prepaid_balance = invoice_meal_value(invoice)
    if subscription.status in ("trial", "active"):
        schedule_orders(db, subscription, cycle, invoice_schedule(invoice))
    db.flush()
    logger.info("Invoice %s settled for subscription %s", invoice.id, subscription.id)
    return invoice


def refunded_amount(db: Session, invoice: Invoice) -> float:
    total = (
        db.query(func.coalesce(func.sum(Refund.amount), 0))
        .filter(Refund.invoice_id == invoice.id, Refund.status != "failed")
        .scalar()
    )
    return money(float(total or 0))


def refundable_payments(db: Session, subscription_id) -> list[tuple[Invoice, float]]:
    """
    Paid invoices with a captured payment and the cash still refundable on each, newest first.

    Only the cash part of an invoice is refundable; the share settled with
    credits never goes back to the gateway.
    """
    rows = (
        db.query(Invoice)
        .filter(
            Invoice.subscription_id == subscription_id,
            Invoice.status == "paid",
            Invoice.razorpay_payment_id.isnot(None),
        )
        .order_by(Invoice.paid_at.desc())
        .all()
    )
    payments = []
    for invoice in rows:
        cash = money(float(invoice.total_amount or 0) - refunded_amount(db, invoice))
        if cash > 0:
            payments.append((invoice, cash))
    return payments


def serialize_invoice(invoice: Invoice) -> dict:
    return {
        "id": str(invoice.id),
        "subscription_id": str(invoice.subscription_id) if invoice.subscription_id else None,
        "cycle_id": str(invoice.cycle_id) if invoice.cycle_id else None,
        "kind": invoice.kind,
        "status": invoice.status,
        "currency": invoice.currency,
        "subtotal_vendor_base": float(invoice.subtotal_vendor_base or 0),
        "delivery_fee_total": float(invoice.delivery_fee_total or 0),
        "commission_total": float(invoice.commission_total or 0),
        "discount_total": float(invoice.discount_total or 0),
        "credits_applied": float(invoice.credits_applied or 0),
        "total_amount": float(invoice.total_amount or 0),
        "lines": [{k: v for k, v in line.items() if k != "dates"} for line in invoice.lines or []],
        "razorpay_order_id": invoice.razorpay_order_id,
        "paid_at": invoice.paid_at.isoformat() if invoice.paid_at else None,
        "created_at": invoice.created_at.isoformat() if invoice.created_at else None,
    }
