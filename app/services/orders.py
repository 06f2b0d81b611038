"""
Order scheduling and vendor-side order status management.
"""
from __future__ import annotations

import logging
import uuid
from datetime import date, datetime
from typing import Any, Iterable, Optional

from sqlalchemy.orm import Session

from app.core.exceptions import InvalidTransitionError, NotFoundError, UnauthorizedError, ValidationError
from app.models import SLOTS, Cycle, Order, Subscription, Vendor
from app.services.credits import mint_credit
from app.services.cycles import delivery_datetime
from app.services.platform import get_platform_settings
from app.services.vendors import as_uuid, enabled_slots

logger = logging.getLogger(__name__)

# Vendor-driven outcomes and the credit reason each one mints, if any.
VENDOR_OUTCOMES: dict[str, Optional[str]] = {
    "delivered": None,
    "no_show": None,
    "failed_ops": "ops_failure",
    "skipped_by_vendor": "vendor_skip",
}


def order_sort_key(order: Order) -> tuple[date, int]:
    return order.service_date, SLOTS.index(order.slot)


def delivery_at(order: Order, tz_name: str) -> datetime:
    return delivery_datetime(order.service_date, order.delivery_window_start, tz_name)


def schedule_orders(
    db: Session,
    subscription: Subscription,
    cycle: Cycle,
    schedule: Iterable[tuple[str, list[date], float]],
) -> list[Order]:
    """
    Create one order per meal in ``schedule`` (slot, service dates, unit price).

    Existing rows for the same subscription, date and slot are left alone, so
    scheduling the same cycle twice creates nothing new.
    """
    windows = enabled_slots(db, subscription.vendor_id)
    existing = {
        (row.service_date, row.slot)
        for row in db.query(Order.service_date, Order.slot).filter(
            Order.subscription_id == subscription.id,
            Order.service_date >= cycle.cycle_start,
            Order.service_date <= cycle.cycle_end,
        )
    }
    preferences = subscription.preferences or {}
    created: list[Order] = []
    for slot, dates, price in schedule:
        window = windows.get(slot)
        for service_date in dates:
            if (service_date, slot) in existing:
                continue
            order = Order(
                subscription_id=subscription.id,
                cycle_id=cycle.id,
                consumer_id=subscription.consumer_id,
                vendor_id=subscription.vendor_id,
                service_date=service_date,
                slot=slot,
                status="scheduled",
                delivery_window_start=window.delivery_window_start if window else None,
                delivery_window_end=window.delivery_window_end if window else None,
                unit_price=price,
                delivery_address_id=subscription.delivery_address_id,
                special_instructions=(preferences.get(slot) or {}).get("instructions"),
            )
            db.add(order)
            created.append(order)
    db.flush()
    logger.info("Scheduled %d orders for subscription %s cycle %s", len(created), subscription.id, cycle.id)
    return created


def scheduled_orders(
    db: Session,
    subscription_id: uuid.UUID,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
) -> list[Order]:
    query = db.query(Order).filter(Order.subscription_id == subscription_id, Order.status == "scheduled")
    if from_date is not None:
        query = query.filter(Order.service_date >= from_date)
    if to_date is not None:
        query = query.filter(Order.service_date <= to_date)
    return sorted(query.all(), key=order_sort_key)


def find_order(db: Session, subscription_id: uuid.UUID, service_date: date, slot: str) -> Optional[Order]:
    return (
        db.query(Order)
        .filter(
            Order.subscription_id == subscription_id,
            Order.service_date == service_date,
            Order.slot == slot,
        )
        .first()
    )


def list_customer_orders(
    db: Session,
    consumer_id: uuid.UUID,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    status: Optional[str] = None,
    subscription_id: Optional[uuid.UUID] = None,
) -> list[Order]:
    query = db.query(Order).filter(Order.consumer_id == consumer_id)
    if from_date is not None:
        query = query.filter(Order.service_date >= from_date)
    if to_date is not None:
        query = query.filter(Order.service_date <= to_date)
    if status:
        query = query.filter(Order.status == status)
    if subscription_id is not None:
        query = query.filter(Order.subscription_id == subscription_id)
    return sorted(query.all(), key=order_sort_key)


def list_vendor_orders(
    db: Session,
    vendor: Vendor,
    service_date: Optional[date] = None,
    slot: Optional[str] = None,
    status: Optional[str] = None,
) -> list[Order]:
    query = db.query(Order).filter(Order.vendor_id == vendor.id)
    if service_date is not None:
        query = query.filter(Order.service_date == service_date)
    if slot:
        query = query.filter(Order.slot == slot)
    if status:
        query = query.filter(Order.status == status)
    return sorted(query.all(), key=order_sort_key)


def update_order_status(
    db: Session,
    vendor: Vendor,
    order_id: uuid.UUID | str,
    status: str,
    now: datetime,
    reason: Optional[str] = None,
) -> Order:
    """Record a vendor outcome for a scheduled order, crediting the customer where owed."""
    if status not in VENDOR_OUTCOMES:
        raise ValidationError(f"Status must be one of {', '.join(VENDOR_OUTCOMES)}")
    order = db.get(Order, as_uuid(order_id))
    if order is None:
        raise NotFoundError("Order not found")
    if order.vendor_id != vendor.id:
        raise UnauthorizedError("Order belongs to another vendor")
    if order.status != "scheduled":
        raise InvalidTransitionError(f"Order is already {order.status}")

    order.status = status
    order.status_reason = reason
    credit_reason = VENDOR_OUTCOMES[status]
    if credit_reason and float(order.unit_price or 0) > 0:
        subscription = db.get(Subscription, order.subscription_id)
        mint_credit(
            db,
            subscription,
            float(order.unit_price),
            credit_reason,
            get_platform_settings(db),
            now,
            slot=order.slot,
            source_order_id=order.id,
        )
    db.commit()
    db.refresh(order)
    logger.info("Order %s marked %s by vendor %s", order.id, status, vendor.slug)
    return order


def serialize_order(order: Order) -> dict[str, Any]:
    return {
        "id": str(order.id),
        "subscription_id": str(order.subscription_id),
        "cycle_id": str(order.cycle_id) if order.cycle_id else None,
        "vendor_id": str(order.vendor_id),
        "service_date": order.service_date.isoformat(),
        "slot": order.slot,
        "status": order.status,
        "status_reason": order.status_reason,
        "delivery_window_start": order.delivery_window_start.strftime("%H:%M") if order.delivery_window_start else None,
        "delivery_window_end": order.delivery_window_end.strftime("%H:%M") if order.delivery_window_end else None,
        "unit_price": float(order.unit_price or 0),
        "special_instructions": order.special_instructions,
    }
