"""
Customer API: addresses, checkout, payments and subscription self-service.
"""
from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.dependencies import raise_app_error, require_customer, unwrap
from app.core.exceptions import AppError, NotFoundError
from app.database import get_db
from app.integrations.razorpay import RazorpayClient, get_payment_gateway
from app.models import Cycle, Invoice, Refund, Subscription, User
from app.schemas.subscription import (
    AddressCreate,
    CancelRequest,
    CheckoutRequest,
    ConfirmPaymentRequest,
    PauseRequest,
    PreferencesUpdate,
    QuoteRequest,
    ResumeRequest,
    SkipRequest,
)
from app.services import accounts, checkout, payments
from app.services.billing import serialize_invoice
from app.services.credits import credit_summary
from app.services.cycles import utcnow
from app.services.lifecycle import SubscriptionLifecycleManager, serialize_subscription
from app.services.orders import list_customer_orders, serialize_order
from app.services.vendors import as_uuid

router = APIRouter()


def _preferences(payload: QuoteRequest | PreferencesUpdate) -> dict:
    return {slot: pref.model_dump() for slot, pref in payload.preferences.items()}


def _owned_subscription(db: Session, user: User, subscription_id: str) -> Subscription:
    try:
        subscription = db.get(Subscription, as_uuid(subscription_id))
        if subscription is None or subscription.consumer_id != user.id:
            raise NotFoundError("Subscription not found")
    except AppError as exc:
        raise_app_error(exc)
    return subscription


# ----------------------------------------------------------------------
# Addresses
# ----------------------------------------------------------------------


@router.get("/addresses")
async def list_addresses(db: Session = Depends(get_db), user: User = Depends(require_customer)) -> dict:
    return {"items": [accounts.serialize_address(a) for a in accounts.list_addresses(db, user)]}


@router.post("/addresses", status_code=201)
async def add_address(
    payload: AddressCreate, db: Session = Depends(get_db), user: User = Depends(require_customer)
) -> dict:
    try:
        address = accounts.add_address(db, user, payload.model_dump())
    except AppError as exc:
        raise_app_error(exc)
    return accounts.serialize_address(address)


@router.delete("/addresses/{address_id}")
async def delete_address(
    address_id: str, db: Session = Depends(get_db), user: User = Depends(require_customer)
) -> dict:
    try:
        accounts.delete_address(db, user, address_id)
    except AppError as exc:
        raise_app_error(exc)
    return {"success": True}


# ----------------------------------------------------------------------
# Checkout and payments
# ----------------------------------------------------------------------


@router.post("/checkout/quote")
async def checkout_quote(
    payload: QuoteRequest, db: Session = Depends(get_db), user: User = Depends(require_customer)
) -> dict:
    try:
        quote = checkout.quote_checkout(
            db,
            payload.vendor_id,
            payload.plan_id,
            _preferences(payload),
            start_date=payload.start_date,
            trial_type_id=payload.trial_type_id,
        )
    except AppError as exc:
        raise_app_error(exc)
    return quote.to_dict()


@router.post("/checkout", status_code=201)
async def create_checkout(
    payload: CheckoutRequest, db: Session = Depends(get_db), user: User = Depends(require_customer)
) -> dict:
    try:
        subscription, invoice = checkout.create_subscription(
            db,
            user,
            payload.vendor_id,
            payload.plan_id,
            payload.address_id,
            _preferences(payload),
            start_date=payload.start_date,
            trial_type_id=payload.trial_type_id,
        )
    except AppError as exc:
        raise_app_error(exc)
    return {
        "subscription": serialize_subscription(subscription),
        "invoice": serialize_invoice(invoice),
        "requires_payment": invoice.status == "pending_payment",
    }


@router.get("/invoices")
async def list_invoices(db: Session = Depends(get_db), user: User = Depends(require_customer)) -> dict:
    rows = (
        db.query(Invoice)
        .filter(Invoice.consumer_id == user.id)
        .order_by(Invoice.created_at.desc())
        .all()
    )
    return {"items": [serialize_invoice(i) for i in rows]}


@router.get("/invoices/{invoice_id}")
async def get_invoice(
    invoice_id: str, db: Session = Depends(get_db), user: User = Depends(require_customer)
) -> dict:
    try:
        invoice = payments.get_owned_invoice(db, user, invoice_id)
    except AppError as exc:
        raise_app_error(exc)
    return serialize_invoice(invoice)


@router.post("/invoices/{invoice_id}/pay")
async def pay_invoice(
    invoice_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(require_customer),
    gateway: RazorpayClient = Depends(get_payment_gateway),
) -> dict:
    try:
        invoice = payments.get_owned_invoice(db, user, invoice_id)
        return await payments.begin_payment(db, invoice, gateway)
    except AppError as exc:
        raise_app_error(exc)


@router.post("/invoices/{invoice_id}/confirm")
async def confirm_invoice_payment(
    invoice_id: str,
    payload: ConfirmPaymentRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_customer),
    gateway: RazorpayClient = Depends(get_payment_gateway),
) -> dict:
    try:
        invoice = payments.confirm_payment(
            db,
            user,
            invoice_id,
            payload.razorpay_order_id,
            payload.razorpay_payment_id,
            payload.razorpay_signature,
            gateway,
        )
    except AppError as exc:
        raise_app_error(exc)
    return serialize_invoice(invoice)


# ----------------------------------------------------------------------
# Subscriptions
# ----------------------------------------------------------------------


@router.get("/subscriptions")
async def list_subscriptions(
    status: Optional[str] = None, db: Session = Depends(get_db), user: User = Depends(require_customer)
) -> dict:
    query = db.query(Subscription).filter(Subscription.consumer_id == user.id)
    if status:
        query = query.filter(Subscription.status == status)
    rows = query.order_by(Subscription.created_at.desc()).all()
    return {"items": [serialize_subscription(s) for s in rows], "total": len(rows)}


@router.get("/subscriptions/{subscription_id}")
async def subscription_detail(
    subscription_id: str, db: Session = Depends(get_db), user: User = Depends(require_customer)
) -> dict:
    subscription = _owned_subscription(db, user, subscription_id)
    manager = SubscriptionLifecycleManager(db)
    cycles = db.query(Cycle).filter(Cycle.subscription_id == subscription.id).order_by(Cycle.cycle_start.asc()).all()
    invoices = (
        db.query(Invoice)
        .filter(Invoice.subscription_id == subscription.id)
        .order_by(Invoice.created_at.desc())
        .all()
    )
    refunds = db.query(Refund).filter(Refund.subscription_id == subscription.id).all()
    upcoming = list_customer_orders(db, user.id, from_date=manager.today, subscription_id=subscription.id)
    return {
        **serialize_subscription(subscription),
        "cycles": [
            {
                "id": str(c.id),
                "cycle_start": c.cycle_start.isoformat(),
                "cycle_end": c.cycle_end.isoformat(),
                "renewal_date": c.renewal_date.isoformat(),
                "skips_used": c.skips_used or {},
            }
            for c in cycles
        ],
        "invoices": [serialize_invoice(i) for i in invoices],
        "refunds": [payments.serialize_refund(r) for r in refunds],
        "upcoming_orders": [serialize_order(o) for o in upcoming],
    }


@router.get("/subscriptions/{subscription_id}/pause/preview")
async def pause_preview(
    subscription_id: str,
    pause_from: Optional[date] = None,
    until: Optional[date] = None,
    db: Session = Depends(get_db),
    user: User = Depends(require_customer),
) -> dict:
    manager = SubscriptionLifecycleManager(db)
    return unwrap(manager.pause_preview(subscription_id, user, pause_from=pause_from, until=until))


@router.post("/subscriptions/{subscription_id}/pause")
async def pause_subscription(
    subscription_id: str,
    payload: PauseRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_customer),
) -> dict:
    manager = SubscriptionLifecycleManager(db)
    return unwrap(manager.pause(subscription_id, user, pause_from=payload.pause_from, until=payload.until))


@router.get("/subscriptions/{subscription_id}/resume/preview")
async def resume_preview(
    subscription_id: str,
    resume_on: Optional[date] = None,
    db: Session = Depends(get_db),
    user: User = Depends(require_customer),
) -> dict:
    manager = SubscriptionLifecycleManager(db)
    return unwrap(manager.resume_preview(subscription_id, user, resume_on=resume_on))


@router.post("/subscriptions/{subscription_id}/resume")
async def resume_subscription(
    subscription_id: str,
    payload: ResumeRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_customer),
) -> dict:
    manager = SubscriptionLifecycleManager(db)
    return unwrap(manager.resume(subscription_id, user, resume_on=payload.resume_on))


@router.get("/subscriptions/{subscription_id}/cancel/preview")
async def cancel_preview(
    subscription_id: str,
    effective_from: Optional[date] = None,
    db: Session = Depends(get_db),
    user: User = Depends(require_customer),
) -> dict:
    manager = SubscriptionLifecycleManager(db)
    return unwrap(manager.cancel_preview(subscription_id, user, effective_from=effective_from))


@router.post("/subscriptions/{subscription_id}/cancel")
async def cancel_subscription(
    subscription_id: str,
    payload: CancelRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_customer),
    gateway: RazorpayClient = Depends(get_payment_gateway),
) -> dict:
    manager = SubscriptionLifecycleManager(db)
    data = unwrap(
        manager.cancel(
            subscription_id,
            user,
            reason=payload.reason,
            refund_choice=payload.refund_choice,
            effective_from=payload.effective_from,
        )
    )
    if data.get("refund_ids") and gateway.configured:
        submitted = []
        for refund_id in data["refund_ids"]:
            refund = await payments.process_refund(db, db.get(Refund, as_uuid(refund_id)), gateway)
            submitted.append(payments.serialize_refund(refund))
        data["refunds"] = submitted
    return data


@router.get("/subscriptions/{subscription_id}/skip/preview")
async def skip_preview(
    subscription_id: str,
    service_date: date,
    slot: str,
    db: Session = Depends(get_db),
    user: User = Depends(require_customer),
) -> dict:
    manager = SubscriptionLifecycleManager(db)
    return unwrap(manager.skip_preview(subscription_id, user, service_date, slot))


@router.post("/subscriptions/{subscription_id}/skip")
async def skip_meal(
    subscription_id: str,
    payload: SkipRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_customer),
) -> dict:
    manager = SubscriptionLifecycleManager(db)
    return unwrap(manager.apply_skip(subscription_id, user, payload.service_date, payload.slot))


@router.put("/subscriptions/{subscription_id}/preferences")
async def update_preferences(
    subscription_id: str,
    payload: PreferencesUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_customer),
) -> dict:
    manager = SubscriptionLifecycleManager(db)
    return unwrap(manager.update_preferences(subscription_id, user, _preferences(payload)))


@router.post("/subscriptions/{subscription_id}/convert")
async def convert_trial(
    subscription_id: str, db: Session = Depends(get_db), user: User = Depends(require_customer)
) -> dict:
    try:
        invoice = checkout.convert_trial(db, user, subscription_id)
    except AppError as exc:
        raise_app_error(exc)
    return {"invoice": serialize_invoice(invoice), "requires_payment": invoice.status == "pending_payment"}


# ----------------------------------------------------------------------
# Orders and credits
# ----------------------------------------------------------------------


@router.get("/orders")
async def list_orders(
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    user: User = Depends(require_customer),
) -> dict:
    rows = list_customer_orders(db, user.id, from_date=from_date, to_date=to_date, status=status)
    return {"items": [serialize_order(o) for o in rows], "total": len(rows)}


@router.get("/credits")
async def list_credits(db: Session = Depends(get_db), user: User = Depends(require_customer)) -> dict:
    return credit_summary(db, user.id, utcnow())
