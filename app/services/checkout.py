"""
Subscription checkout and trial conversion.
"""
from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timedelta
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.core.exceptions import InvalidTransitionError, NotFoundError, UnauthorizedError, ValidationError
from app.models import Address, Invoice, Plan, Subscription, TrialType, User
from app.services import billing
from app.services.cycles import CycleWindow, cycle_window, local_date, utcnow
from app.services.lifecycle import SubscriptionLifecycleManager, validate_preferences
from app.services.platform import get_platform_settings
from app.services.pricing import Quote, quote_range, quote_trial
from app.services.vendors import as_uuid, enabled_slots, get_vendor

logger = logging.getLogger(__name__)


def trial_window(trial_type: TrialType, start: date) -> CycleWindow:
    end = start + timedelta(days=int(trial_type.duration_days) - 1)
    return CycleWindow(cycle_start=start, cycle_end=end, renewal_date=end + timedelta(days=1))


def check_trial_cooldown(db: Session, consumer_id: uuid.UUID, vendor_id: uuid.UUID, trial_type: TrialType, today: date) -> None:
    previous = (
        db.query(Subscription)
        .filter(
            Subscription.consumer_id == consumer_id,
            Subscription.vendor_id == vendor_id,
            Subscription.trial_type_id == trial_type.id,
        )
        .order_by(Subscription.start_date.desc())
        .first()
    )
    if previous is None:
        return
    if previous.status == "trial":
        raise ValidationError("You already have this trial running with this home chef")
    trial_end = previous.expiry_date or previous.start_date
    cooldown_ends = trial_end + timedelta(days=int(trial_type.cooldown_days or 0))
    if cooldown_ends > today:
        raise ValidationError(f"Trial cooldown period. You can try again after {cooldown_ends.isoformat()}")


def _owned_address(db: Session, consumer: User, address_id: uuid.UUID | str) -> Address:
    address = db.get(Address, as_uuid(address_id))
    if address is None:
        raise NotFoundError("Address not found")
    if address.user_id != consumer.id:
        raise UnauthorizedError("Address belongs to another account")
    return address


def create_subscription(
    db: Session,
    consumer: User,
    vendor_id: uuid.UUID | str,
    plan_id: uuid.UUID | str,
    address_id: uuid.UUID | str,
    preferences: dict[str, dict[str, Any]],
    start_date: Optional[date] = None,
    trial_type_id: Optional[uuid.UUID | str] = None,
    now: Optional[datetime] = None,
) -> tuple[Subscription, Invoice]:
    """Create a subscription (or trial), its first cycle and the checkout invoice."""
    now = now or utcnow()
    platform = get_platform_settings(db)
    today = local_date(now, platform.timezone)

    vendor = get_vendor(db, vendor_id)
    if vendor.status != "active":
        raise ValidationError("This home chef is not accepting subscriptions")
    plan = db.get(Plan, as_uuid(plan_id))
    if plan is None or not plan.active:
        raise NotFoundError("Plan not found")
    address = _owned_address(db, consumer, address_id)
    preferences = validate_preferences(preferences, plan.allowed_slots or [], enabled_slots(db, vendor.id))

    start = start_date or today + timedelta(days=1)
    if start < today:
        raise ValidationError("Start date cannot be in the past")

    trial_type = None
    if trial_type_id:
        trial_type = db.get(TrialType, as_uuid(trial_type_id))
        if trial_type is None or not trial_type.active:
            raise NotFoundError("Trial type not found")
        outside = set(preferences) - set(trial_type.allowed_slots or [])
        if outside:
            raise ValidationError(f"Trial does not include {', '.join(sorted(outside))}")
        check_trial_cooldown(db, consumer.id, vendor.id, trial_type, today)
        window = trial_window(trial_type, start)
        quote = quote_trial(db, vendor.id, preferences, window.cycle_start, window.cycle_end, platform, trial_type)
    else:
        window = cycle_window(plan.period_type, start)
        quote = quote_range(db, vendor.id, preferences, window.cycle_start, window.cycle_end, platform)
    if quote.meals == 0:
        raise ValidationError("No deliveries fall in the first cycle for the selected days")

    subscription = Subscription(
        consumer_id=consumer.id,
        vendor_id=vendor.id,
        plan_id=plan.id,
        delivery_address_id=address.id,
        trial_type_id=trial_type.id if trial_type else None,
        status="trial" if trial_type else "active",
        start_date=start,
        renewal_date=window.renewal_date,
        expiry_date=window.cycle_end if trial_type else None,
        preferences=preferences,
    )
    db.add(subscription)
    db.flush()
    db.refresh(subscription)
    cycle = billing.open_cycle(db, subscription, start, is_first=True, window=window)
    invoice = billing.build_invoice(db, subscription, cycle, quote, "trial" if trial_type else "checkout", now)
    db.commit()
    db.refresh(subscription)
    db.refresh(invoice)
    logger.info(
        "Subscription %s created for %s with vendor %s (%s), first cycle %s..%s",
        subscription.id,
        consumer.email,
        vendor.slug,
        subscription.status,
        window.cycle_start,
        window.cycle_end,
    )
    return subscription, invoice


def quote_checkout(
    db: Session,
    vendor_id: uuid.UUID | str,
    plan_id: uuid.UUID | str,
    preferences: dict[str, dict[str, Any]],
    start_date: Optional[date] = None,
    trial_type_id: Optional[uuid.UUID | str] = None,
    now: Optional[datetime] = None,
) -> Quote:
    """Price the first cycle without creating anything."""
    now = now or utcnow()
    platform = get_platform_settings(db)
    vendor = get_vendor(db, vendor_id)
    plan = db.get(Plan, as_uuid(plan_id))
    if plan is None or not plan.active:
        raise NotFoundError("Plan not found")
    preferences = validate_preferences(preferences, plan.allowed_slots or [], enabled_slots(db, vendor.id))
    start = start_date or local_date(now, platform.timezone) + timedelta(days=1)
    if trial_type_id:
        trial_type = db.get(TrialType, as_uuid(trial_type_id))
        if trial_type is None or not trial_type.active:
            raise NotFoundError("Trial type not found")
        window = trial_window(trial_type, start)
        return quote_trial(db, vendor.id, preferences, window.cycle_start, window.cycle_end, platform, trial_type)
    window = cycle_window(plan.period_type, start)
    return quote_range(db, vendor.id, preferences, window.cycle_start, window.cycle_end, platform)


def convert_trial(
    db: Session,
    consumer: User,
    subscription_id: uuid.UUID | str,
    now: Optional[datetime] = None,
) -> Invoice:
    """Open the first paid cycle after a trial; the trial turns active once it is paid."""
    now = now or utcnow()
    platform = get_platform_settings(db)
    subscription = db.get(Subscription, as_uuid(subscription_id))
    if subscription is None:
        raise NotFoundError("Subscription not found")
    if subscription.consumer_id != consumer.id:
        raise UnauthorizedError("You do not own this subscription")
    if subscription.status != "trial":
        raise InvalidTransitionError(f"Cannot convert a {subscription.status} subscription")
    pending = (
        db.query(Invoice)
        .filter(
            Invoice.subscription_id == subscription.id,
            Invoice.kind == "conversion",
            Invoice.status == "pending_payment",
        )
        .first()
    )
    if pending is not None:
        return pending

    today = local_date(now, platform.timezone)
    start = max(subscription.renewal_date, today + timedelta(days=1))
    if subscription.pending_preferences:
        subscription.preferences = subscription.pending_preferences
        subscription.pending_preferences = None
    window = cycle_window(subscription.plan.period_type, start)
    quote = quote_range(
        db, subscription.vendor_id, subscription.preferences or {}, window.cycle_start, window.cycle_end, platform
    )
    if quote.meals == 0:
        raise ValidationError("No deliveries fall in the first paid cycle")
    cycle = billing.open_cycle(db, subscription, start, window=window)
    invoice = billing.build_invoice(db, subscription, cycle, quote, "conversion", now)
    db.commit()
    if invoice.status == "paid":
        SubscriptionLifecycleManager(db, now).activate_trial(subscription.id)
    db.refresh(invoice)
    logger.info("Trial %s conversion invoice %s created", subscription.id, invoice.id)
    return invoice
