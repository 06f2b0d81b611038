"""
Razorpay payment collection, webhook handling and refund processing.
"""
from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.core.exceptions import (
    IntegrationError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from app.integrations.razorpay import RazorpayClient, from_paise, to_paise
from app.models import Invoice, Refund, User
from app.services import billing
from app.services.cycles import utcnow
from app.services.lifecycle import SubscriptionLifecycleManager
from app.services.vendors import as_uuid

logger = logging.getLogger(__name__)


def get_owned_invoice(db: Session, consumer: User, invoice_id: uuid.UUID | str) -> Invoice:
    invoice = db.get(Invoice, as_uuid(invoice_id))
    if invoice is None:
        raise NotFoundError("Invoice not found")
    if invoice.consumer_id != consumer.id and "admin" not in (consumer.roles or []):
        raise UnauthorizedError("Invoice belongs to another account")
    return invoice


async def begin_payment(db: Session, invoice: Invoice, gateway: RazorpayClient) -> dict[str, Any]:
    """Create (or reuse) the Razorpay order the client checkout widget pays against."""
    if invoice.status != "pending_payment":
        raise InvalidTransitionError(f"Invoice is {invoice.status}")
    if not invoice.razorpay_order_id:
        order = await gateway.create_order(
            float(invoice.total_amount),
            receipt=f"inv_{invoice.id.hex[:20]}",
            notes={"invoice_id": str(invoice.id), "subscription_id": str(invoice.subscription_id)},
        )
        invoice.razorpay_order_id = order["id"]
    invoice.attempts = int(invoice.attempts or 0) + 1
    db.commit()
    logger.info("Payment started for invoice %s (order %s)", invoice.id, invoice.razorpay_order_id)
    return {
        "invoice_id": str(invoice.id),
        "razorpay_order_id": invoice.razorpay_order_id,
        "razorpay_key_id": gateway.key_id,
        "amount": to_paise(float(invoice.total_amount)),
        "currency": invoice.currency,
    }


def _settle(db: Session, invoice: Invoice, payment_id: str, now: datetime) -> Invoice:
    billing.settle_invoice(db, invoice, now, payment_id=payment_id)
    db.commit()
    if invoice.kind == "conversion":
        result = SubscriptionLifecycleManager(db, now).activate_trial(invoice.subscription_id)
        if not result.success:
            logger.warning("Conversion invoice %s paid but trial not activated: %s", invoice.id, result.error)
    db.refresh(invoice)
    return invoice


def _refund_orphan_capture(db: Session, invoice: Invoice, payment: dict[str, Any]) -> Refund:
    """A payment captured after its invoice was voided or failed is queued for a full refund."""
    if not invoice.razorpay_payment_id:
        invoice.razorpay_payment_id = payment.get("id")
    refund = (
        db.query(Refund)
        .filter(Refund.invoice_id == invoice.id, Refund.status != "failed")
        .first()
    )
    if refund is None:
        amount = payment.get("amount")
        refund = Refund(
            subscription_id=invoice.subscription_id,
            consumer_id=invoice.consumer_id,
            invoice_id=invoice.id,
            amount=from_paise(amount) if amount else float(invoice.total_amount),
            status="pending",
        )
        db.add(refund)
    db.commit()
    logger.warning(
        "Payment %s captured for %s invoice %s, refund %s queued",
        payment.get("id"),
        invoice.status,
        invoice.id,
        refund.id,
    )
    return refund


def confirm_payment(
    db: Session,
    consumer: User,
    invoice_id: uuid.UUID | str,
    razorpay_order_id: str,
    razorpay_payment_id: str,
    razorpay_signature: str,
    gateway: RazorpayClient,
    now: Optional[datetime] = None,
) -> Invoice:
    now = now or utcnow()
    invoice = get_owned_invoice(db, consumer, invoice_id)
    if invoice.status == "paid":
        return invoice
    if invoice.razorpay_order_id != razorpay_order_id:
        raise ValidationError("Payment does not belong to this invoice")
    if not gateway.verify_payment_signature(razorpay_order_id, razorpay_payment_id, razorpay_signature):
        logger.warning("Invalid payment signature for invoice %s", invoice.id)
        raise ValidationError("Invalid payment signature")
    if invoice.status in ("void", "failed"):
        _refund_orphan_capture(db, invoice, {"id": razorpay_payment_id})
        raise InvalidTransitionError(f"Invoice is {invoice.status}, the payment will be refunded")
    logger.info("Payment %s confirmed for invoice %s", razorpay_payment_id, invoice.id)
    return _settle(db, invoice, razorpay_payment_id, now)


def handle_webhook(
    db: Session,
    body: bytes,
    signature: str,
    gateway: RazorpayClient,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    now = now or utcnow()
    if not gateway.verify_webhook_signature(body, signature):
        raise ValidationError("Invalid webhook signature")
    try:
        event = json.loads(body)
    except ValueError:
        raise ValidationError("Webhook body is not valid JSON")

    name = event.get("event", "")
    payload = event.get("payload") or {}
    if name in ("payment.captured", "payment.failed"):
        payment = (payload.get("payment") or {}).get("entity") or {}
        invoice = (
            db.query(Invoice).filter(Invoice.razorpay_order_id == payment.get("order_id")).first()
            if payment.get("order_id")
            else None
        )
        if invoice is None:
            logger.info("Webhook %s for unknown order %s ignored", name, payment.get("order_id"))
            return {"event": name, "handled": False}
        if name == "payment.captured" and invoice.status in ("void", "failed"):
            refund = _refund_orphan_capture(db, invoice, payment)
            return {"event": name, "handled": True, "invoice_id": str(invoice.id), "refund_id": str(refund.id)}
        if name == "payment.captured":
            _settle(db, invoice, payment.get("id"), now)
        else:
            logger.warning(
                "Payment failed for invoice %s: %s",
                invoice.id,
                payment.get("error_description") or payment.get("error_code"),
            )
        return {"event": name, "handled": True, "invoice_id": str(invoice.id)}

    if name == "refund.processed":
        entity = (payload.get("refund") or {}).get("entity") or {}
        refund = db.query(Refund).filter(Refund.razorpay_refund_id == entity.get("id")).first()
        if refund is None:
            return {"event": name, "handled": False}
        refund.status = "processed"
        refund.processed_at = now
        db.commit()
        logger.info("Refund %s processed", refund.id)
        return {"event": name, "handled": True, "refund_id": str(refund.id)}

    logger.info("Webhook event %s ignored", name)
    return {"event": name, "handled": False}


async def _captured_payment_id(gateway: RazorpayClient, order_id: str) -> Optional[str]:
    for payment in await gateway.fetch_order_payments(order_id):
        if payment.get("status") == "captured":
            return payment.get("id")
    return None


async def process_refund(db: Session, refund: Refund, gateway: RazorpayClient, now: Optional[datetime] = None) -> Refund:
    """Submit a pending refund to Razorpay. Failures stay pending with the error recorded."""
    now = now or utcnow()
    if refund.status != "pending" or refund.razorpay_refund_id:
        return refund
    invoice = db.get(Invoice, refund.invoice_id) if refund.invoice_id else None
    if invoice is not None and not invoice.razorpay_payment_id and invoice.razorpay_order_id:
        try:
            invoice.razorpay_payment_id = await _captured_payment_id(gateway, invoice.razorpay_order_id)
        except IntegrationError as exc:
            refund.error = exc.message
            db.commit()
            logger.warning("Refund %s could not look up payments: %s", refund.id, exc.message)
            return refund
    if invoice is None or not invoice.razorpay_payment_id:
        refund.status = "failed"
        refund.error = "No captured payment to refund against"
        db.commit()
        logger.warning("Refund %s has no captured payment", refund.id)
        return refund
    try:
        data = await gateway.refund_payment(
            invoice.razorpay_payment_id,
            float(refund.amount),
            notes={"refund_id": str(refund.id), "subscription_id": str(refund.subscription_id)},
        )
    except IntegrationError as exc:
        refund.error = exc.message
        db.commit()
        logger.warning("Refund %s failed: %s", refund.id, exc.message)
        return refund
    refund.razorpay_refund_id = data.get("id")
    refund.error = None
    if data.get("status") == "processed":
        refund.status = "processed"
        refund.processed_at = now
    db.commit()
    logger.info("Refund %s submitted as %s", refund.id, refund.razorpay_refund_id)
    return refund


async def process_pending_refunds(db: Session, gateway: RazorpayClient, now: Optional[datetime] = None) -> dict[str, int]:
    rows = (
        db.query(Refund)
        .filter(Refund.status == "pending", Refund.razorpay_refund_id.is_(None))
        .order_by(Refund.created_at.asc())
        .all()
    )
    submitted = failed = 0
    for refund in rows:
        await process_refund(db, refund, gateway, now)
        if refund.razorpay_refund_id:
            submitted += 1
        else:
            failed += 1
    return {"pending": len(rows), "submitted": submitted, "failed": failed}


def serialize_refund(refund: Refund) -> dict[str, Any]:
    return {
        "id": str(refund.id),
        "subscription_id": str(refund.subscription_id) if refund.subscription_id else None,
        "amount": float(refund.amount),
        "status": refund.status,
        "razorpay_refund_id": refund.razorpay_refund_id,
        "error": refund.error,
        "processed_at": refund.processed_at.isoformat() if refund.processed_at else None,
    }
