"""
Subscription lifecycle: pause, resume, cancel, skip and the auto-cancel guard.

State machine::

    trial -> active <-> paused
    {trial, active, paused} -> cancelled
    active -> expired            (renewal payment failed)

Every public operation returns an ActionResult; domain errors never escape to
the caller. Timestamps are naive UTC and delivery windows are interpreted in
the platform timezone.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.core.exceptions import (
    InvalidTransitionError,
    LimitExceededError,
    NotAuthenticatedError,
    NotFoundError,
    NoticeViolationError,
    UnauthorizedError,
    ValidationError,
)
from app.models import SLOTS, Credit, Cycle, Invoice, Order, Refund, Subscription, User
from app.services import billing
from app.services.credits import (
    available_credits,
    mint_credit,
    reinstate_spent_credits,
    total_amount,
    void_credits,
)
from app.services.cycles import cycle_window, delivery_datetime, local_date, utcnow
from app.services.notification_service import notify_subscription_event
from app.services.orders import delivery_at, find_order, order_sort_key, scheduled_orders
from app.services.platform import get_platform_settings
from app.services.pricing import money, quote_range
from app.services.results import action
from app.services.vendors import as_uuid, enabled_slots, validate_slot

logger = logging.getLogger(__name__)

CANCELLABLE = ("trial", "active", "paused")
REFUND_CHOICES = ("refund", "credit")


@dataclass
class PausePlan:
    pause_from: date
    until: Optional[date]
    starts_at: Optional[datetime]
    orders: list[Order] = field(default_factory=list)


@dataclass
class ResumePlan:
    resume_on: date
    first_delivery_at: Optional[datetime]
    orders: list[Order] = field(default_factory=list)
    credits: list[Credit] = field(default_factory=list)
    new_cycle: bool = False
    estimated_amount: float = 0.0


@dataclass
class CancelPlan:
    starts_at: Optional[datetime]
    orders: list[Order] = field(default_factory=list)
    credits: list[Credit] = field(default_factory=list)

    @property
    def remaining_meals_value(self) -> float:
        return money(sum(float(o.unit_price or 0) for o in self.orders))

    @property
    def existing_credits_value(self) -> float:
        return total_amount(self.credits)

    @property
    def balance(self) -> float:
        return money(self.remaining_meals_value + self.existing_credits_value)


def serialize_subscription(subscription: Subscription) -> dict[str, Any]:
    return {
        "id": str(subscription.id),
        "consumer_id": str(subscription.consumer_id),
        "vendor_id": str(subscription.vendor_id),
        "plan_id": str(subscription.plan_id),
        "trial_type_id": str(subscription.trial_type_id) if subscription.trial_type_id else None,
        "delivery_address_id": str(subscription.delivery_address_id),
        "status": subscription.status,
        "start_date": subscription.start_date.isoformat() if subscription.start_date else None,
        "renewal_date": subscription.renewal_date.isoformat() if subscription.renewal_date else None,
        "expiry_date": subscription.expiry_date.isoformat() if subscription.expiry_date else None,
        "price_per_cycle": float(subscription.price_per_cycle or 0),
        "prepaid_balance": float(subscription.prepaid_balance or 0),
        "preferences": subscription.preferences or {},
        "pending_preferences": subscription.pending_preferences,
        "paused_from": subscription.paused_from.isoformat() if subscription.paused_from else None,
        "paused_until": subscription.paused_until.isoformat() if subscription.paused_until else None,
        "paused_at": subscription.paused_at.isoformat() if subscription.paused_at else None,
        "cancelled_at": subscription.cancelled_at.isoformat() if subscription.cancelled_at else None,
        "cancellation_reason": subscription.cancellation_reason,
    }


class SubscriptionLifecycleManager:
    """Applies customer and scheduler driven status transitions to subscriptions."""

    def __init__(self, db: Session, now: Optional[datetime] = None):
        self.db = db
        self.now = now or utcnow()
        self._platform = None

    @property
    def platform(self):
        if self._platform is None:
            self._platform = get_platform_settings(self.db)
        return self._platform

    @property
    def tz(self) -> str:
        return self.platform.timezone

    @property
    def today(self) -> date:
        return local_date(self.now, self.tz)

    # ------------------------------------------------------------------
    # Lookups and guards
    # ------------------------------------------------------------------

    def _get(self, subscription_id: uuid.UUID | str) -> Subscription:
        subscription = self.db.get(Subscription, as_uuid(subscription_id))
        if subscription is None:
            raise NotFoundError("Subscription not found")
        return subscription

    def _load(self, subscription_id: uuid.UUID | str, actor: Optional[User]) -> Subscription:
        if actor is None:
            raise NotAuthenticatedError()
        subscription = self._get(subscription_id)
        if subscription.consumer_id != actor.id and "admin" not in (actor.roles or []):
            raise UnauthorizedError("You do not own this subscription")
        return subscription

    @staticmethod
    def _require_status(subscription: Subscription, allowed: tuple[str, ...], verb: str) -> None:
        if subscription.status not in allowed:
            raise InvalidTransitionError(f"Cannot {verb} a {subscription.status} subscription")

    def _check_notice(self, starts_at: Optional[datetime], hours: int, verb: str) -> None:
        if starts_at is None:
            return
        if self.now + timedelta(hours=hours) > starts_at:
            raise NoticeViolationError(
                f"{verb.capitalize()} needs at least {hours} hours notice before the next affected delivery"
            )

    def _notice_ok(self, starts_at: Optional[datetime], hours: int) -> bool:
        return starts_at is None or self.now + timedelta(hours=hours) <= starts_at

    def _cycle_covering(self, subscription: Subscription, on: date) -> Optional[Cycle]:
        return (
            self.db.query(Cycle)
            .filter(
                Cycle.subscription_id == subscription.id,
                Cycle.cycle_start <= on,
                Cycle.cycle_end >= on,
            )
            .first()
        )

    def _upcoming(self, subscription: Subscription, start: Optional[date], end: Optional[date] = None):
        """
        Scheduled orders affected by an action starting on ``start``.

        Without an explicit start the action begins at the next delivery that
        has not started yet.
        """
        orders = scheduled_orders(self.db, subscription.id, start or self.today, end)
        if start is None:
            orders = [o for o in orders if delivery_at(o, self.tz) > self.now]
        if orders:
            starts_at = delivery_at(orders[0], self.tz)
        elif start is not None:
            starts_at = delivery_datetime(start, None, self.tz)
        else:
            starts_at = None
        return orders, starts_at

    # ------------------------------------------------------------------
    # Pause
    # ------------------------------------------------------------------

    def _plan_pause(self, subscription: Subscription, pause_from: Optional[date], until: Optional[date]) -> PausePlan:
        self._require_status(subscription, ("active",), "pause")
        if pause_from is not None and pause_from < self.today:
            raise ValidationError("Pause start cannot be in the past")
        if until is not None and pause_from is not None and until < pause_from:
            raise ValidationError("Pause end must be on or after the pause start")
        orders, starts_at = self._upcoming(subscription, pause_from, until)
        effective_from = pause_from or (orders[0].service_date if orders else self.today)
        if until is not None and until < effective_from:
            raise ValidationError("Pause end must be on or after the pause start")
        return PausePlan(pause_from=effective_from, until=until, starts_at=starts_at, orders=orders)

    @action("pause")
    def pause(
        self,
        subscription_id: uuid.UUID | str,
        actor: Optional[User],
        pause_from: Optional[date] = None,
        until: Optional[date] = None,
    ) -> dict[str, Any]:
        subscription = self._load(subscription_id, actor)
        plan = self._plan_pause(subscription, pause_from, until)
        self._check_notice(plan.starts_at, self.platform.pause_notice_hours, "pause")

        credited = []
        for order in plan.orders:
            order.status = "cancelled"
            order.status_reason = "paused"
            if subscription.plan.skip_credit and float(order.unit_price or 0) > 0:
                credited.append(
                    mint_credit(
                        self.db,
                        subscription,
                        float(order.unit_price),
                        "pause",
                        self.platform,
                        self.now,
                        slot=order.slot,
                        source_order_id=order.id,
                    )
                )

        subscription.status = "paused"
        subscription.paused_from = plan.pause_from
        subscription.paused_until = plan.until
        subscription.paused_at = self.now
        self.db.flush()
        logger.info(
            "Subscription %s paused from %s until %s (%d orders cancelled)",
            subscription.id,
            plan.pause_from,
            plan.until or "further notice",
            len(plan.orders),
        )
        notify_subscription_event(subscription, "paused", {"paused_from": plan.pause_from.isoformat()})
        return {
            "subscription": serialize_subscription(subscription),
            "orders_cancelled": len(plan.orders),
            "credits_created": len(credited),
            "credit_amount": total_amount(credited),
        }

    @action("pause_preview", commit=False)
    def pause_preview(
        self,
        subscription_id: uuid.UUID | str,
        actor: Optional[User],
        pause_from: Optional[date] = None,
        until: Optional[date] = None,
    ) -> dict[str, Any]:
        subscription = self._load(subscription_id, actor)
        plan = self._plan_pause(subscription, pause_from, until)
        creditable = [o for o in plan.orders if float(o.unit_price or 0) > 0] if subscription.plan.skip_credit else []
        return {
            "pause_from": plan.pause_from.isoformat(),
            "until": plan.until.isoformat() if plan.until else None,
            "orders_count": len(plan.orders),
            "credits_count": len(creditable),
            "total_amount": money(sum(float(o.unit_price) for o in creditable)),
            "expires_at": (self.now + timedelta(days=int(self.platform.credit_expiry_days))).isoformat(),
            "notice_ok": self._notice_ok(plan.starts_at, self.platform.pause_notice_hours),
            "notice_hours": self.platform.pause_notice_hours,
        }

    # ------------------------------------------------------------------
    # Resume
    # ------------------------------------------------------------------

    def _pause_credit(self, order: Order) -> Optional[Credit]:
        return (
            self.db.query(Credit)
            .filter(Credit.source_order_id == order.id, Credit.reason == "pause")
            .first()
        )

    def _plan_resume(self, subscription: Subscription, resume_on: Optional[date], notice_hours: int) -> ResumePlan:
        self._require_status(subscription, ("paused",), "resume")
        if resume_on is None:
            resume_on = local_date(self.now + timedelta(hours=notice_hours), self.tz) + timedelta(days=1)
        elif resume_on < self.today:
            raise ValidationError("Resume date cannot be in the past")

        cycle = self._cycle_covering(subscription, resume_on)
        if cycle is None and resume_on >= subscription.renewal_date:
            quote = quote_range(
                self.db,
                subscription.vendor_id,
                subscription.pending_preferences or subscription.preferences or {},
                resume_on,
                cycle_window(subscription.plan.period_type, resume_on).cycle_end,
                self.platform,
            )
            windows = enabled_slots(self.db, subscription.vendor_id)
            first = min(
                (
                    delivery_datetime(d, windows[line.slot].delivery_window_start, self.tz)
                    for line in quote.lines
                    for d in line.dates
                ),
                default=None,
            )
            credits = available_credits(self.db, subscription.consumer_id, self.now, vendor_id=subscription.vendor_id)
            return ResumePlan(
                resume_on=resume_on,
                first_delivery_at=first,
                new_cycle=True,
                estimated_amount=quote.total,
                credits=credits,
            )

        paused_orders = (
            self.db.query(Order)
            .filter(
                Order.subscription_id == subscription.id,
                Order.status == "cancelled",
                Order.status_reason == "paused",
                Order.service_date >= resume_on,
            )
            .all()
        )
        orders: list[Order] = []
        credits: list[Credit] = []
        for order in sorted(paused_orders, key=order_sort_key):
            credit = self._pause_credit(order)
            if credit is not None and credit.status != "available":
                continue
            orders.append(order)
            if credit is not None:
                credits.append(credit)
        first = delivery_at(orders[0], self.tz) if orders else None
        return ResumePlan(resume_on=resume_on, first_delivery_at=first, orders=orders, credits=credits)

    def _reactivate(self, subscription: Subscription, plan: ResumePlan, kind: str) -> dict[str, Any]:
        subscription.status = "active"
        subscription.paused_from = None
        subscription.paused_until = None
        subscription.paused_at = None
        invoice = None
        if plan.new_cycle:
            if subscription.pending_preferences:
                subscription.preferences = subscription.pending_preferences
                subscription.pending_preferences = None
            cycle = billing.open_cycle(self.db, subscription, plan.resume_on)
            quote = quote_range(
                self.db,
                subscription.vendor_id,
                subscription.preferences or {},
                cycle.cycle_start,
                cycle.cycle_end,
                self.platform,
            )
            invoice = billing.build_invoice(self.db, subscription, cycle, quote, kind, self.now)
        else:
            for order in plan.orders:
                order.status = "scheduled"
                order.status_reason = None
            void_credits(plan.credits, self.now)
        self.db.flush()
        return {
            "subscription": serialize_subscription(subscription),
            "resume_on": plan.resume_on.isoformat(),
            "scenario": "new_cycle" if plan.new_cycle else "same_cycle",
            "orders_restored": len(plan.orders),
            "invoice": billing.serialize_invoice(invoice) if invoice is not None else None,
        }

    @action("resume")
    def resume(
        self,
        subscription_id: uuid.UUID | str,
        actor: Optional[User],
        resume_on: Optional[date] = None,
    ) -> dict[str, Any]:
        subscription = self._load(subscription_id, actor)
        notice = self.platform.resume_notice_hours
        plan = self._plan_resume(subscription, resume_on, notice)
        self._check_notice(plan.first_delivery_at, notice, "resume")
        result = self._reactivate(subscription, plan, "resume")
        logger.info("Subscription %s resumed on %s (%s)", subscription.id, plan.resume_on, result["scenario"])
        notify_subscription_event(subscription, "resumed", {"resume_on": plan.resume_on.isoformat()})
        return result

    @action("resume_preview", commit=False)
    def resume_preview(
        self,
        subscription_id: uuid.UUID | str,
        actor: Optional[User],
        resume_on: Optional[date] = None,
    ) -> dict[str, Any]:
        subscription = self._load(subscription_id, actor)
        notice = self.platform.resume_notice_hours
        plan = self._plan_resume(subscription, resume_on, notice)
        credits_available = total_amount(plan.credits) if plan.new_cycle else 0.0
        return {
            "resume_on": plan.resume_on.isoformat(),
            "scenario": "new_cycle" if plan.new_cycle else "same_cycle",
            "orders_to_restore": len(plan.orders),
            "requires_payment": plan.new_cycle and plan.estimated_amount > credits_available,
            "estimated_amount": plan.estimated_amount,
            "credits_available": credits_available,
            "credits_to_apply": money(min(credits_available, plan.estimated_amount)),
            "notice_ok": self._notice_ok(plan.first_delivery_at, notice),
            "notice_hours": notice,
        }

    @action("end_pause")
    def end_pause(self, subscription_id: uuid.UUID | str) -> dict[str, Any]:
        """Return a pause with an end date to active once that date has passed."""
        subscription = self._get(subscription_id)
        self._require_status(subscription, ("paused",), "end the pause of")
        if subscription.paused_until is None or subscription.paused_until >= self.today:
            raise InvalidTransitionError("Pause has no end date or has not ended yet")
        plan = self._plan_resume(subscription, self.today, 0)
        result = self._reactivate(subscription, plan, "resume")
        logger.info("Pause ended for subscription %s", subscription.id)
        notify_subscription_event(subscription, "resumed", {"resume_on": plan.resume_on.isoformat()})
        return result

    # ------------------------------------------------------------------
    # Cancel
    # ------------------------------------------------------------------

    def _plan_cancel(self, subscription: Subscription, effective_from: Optional[date]) -> CancelPlan:
        self._require_status(subscription, CANCELLABLE, "cancel")
        if effective_from is not None and effective_from < self.today:
            raise ValidationError("Cancellation date cannot be in the past")
        orders, starts_at = self._upcoming(subscription, effective_from)
        credits = available_credits(self.db, subscription.consumer_id, self.now, subscription_id=subscription.id)
        return CancelPlan(starts_at=starts_at if orders else None, orders=orders, credits=credits)

    def _refund_path(self, refund_choice: Optional[str]) -> str:
        policy = self.platform.cancel_refund_policy
        if policy == "refund_only":
            return "refund"
        if policy == "credit_only":
            return "credit"
        if refund_choice not in REFUND_CHOICES:
            raise ValidationError("Choose a refund or a credit for the remaining balance")
        return refund_choice

    def _close(self, subscription: Subscription, plan: CancelPlan, reason: str, order_reason: str) -> None:
        for order in plan.orders:
            order.status = "cancelled"
            order.status_reason = order_reason
        void_credits(plan.credits, self.now)
        for invoice in (
            self.db.query(Invoice)
            .filter(Invoice.subscription_id == subscription.id, Invoice.status == "pending_payment")
            .all()
        ):
            invoice.status = "void"
        subscription.status = "cancelled"
        subscription.cancelled_at = self.now
        subscription.cancellation_reason = reason
        subscription.paused_from = None
        subscription.paused_until = None
        subscription.paused_at = None

    @action("cancel")
    def cancel(
        self,
        subscription_id: uuid.UUID | str,
        actor: Optional[User],
        reason: Optional[str] = None,
        refund_choice: Optional[str] = None,
        effective_from: Optional[date] = None,
    ) -> dict[str, Any]:
        subscription = self._load(subscription_id, actor)
        plan = self._plan_cancel(subscription, effective_from)
        self._check_notice(plan.starts_at, self.platform.cancel_notice_hours, "cancel")
        path = self._refund_path(refund_choice)
        balance = plan.balance

        self._close(subscription, plan, (reason or "").strip() or "customer_request", "subscription_cancelled")
        refunds: list[Refund] = []
        reinstated: list[Credit] = []
        credit = None
        if balance > 0 and path == "refund":
            owed = balance
            for invoice, cash in billing.refundable_payments(self.db, subscription.id):
                if owed <= 0:
                    break
                amount = money(min(cash, owed))
                refunds.append(
                    Refund(
                        subscription_id=subscription.id,
                        consumer_id=subscription.consumer_id,
                        invoice_id=invoice.id,
                        amount=amount,
                        status="pending",
                    )
                )
                owed = money(owed - amount)
            self.db.add_all(refunds)
            # The part paid with credits is returned as those credits.
            paid_ids = [
                row.id
                for row in self.db.query(Invoice.id).filter(
                    Invoice.subscription_id == subscription.id, Invoice.status == "paid"
                )
            ]
            reinstated = reinstate_spent_credits(self.db, paid_ids, owed, self.now)
            owed = money(owed - total_amount(reinstated))
            if owed > 0:
                logger.warning(
                    "Subscription %s cancelled with %.2f not covered by payments or spent credits",
                    subscription.id,
                    owed,
                )
        elif balance > 0:
            credit = mint_credit(
                self.db,
                subscription,
                balance,
                "cancellation",
                self.platform,
                self.now,
                vendor_scoped=False,
            )
        self.db.flush()
        logger.info(
            "Subscription %s cancelled (%s), balance %.2f settled as %s",
            subscription.id,
            subscription.cancellation_reason,
            balance,
            path,
        )
        notify_subscription_event(subscription, "cancelled", {"balance": balance, "settled_as": path})
        return {
            "subscription": serialize_subscription(subscription),
            "orders_cancelled": len(plan.orders),
            "balance": balance,
            "settled_as": path,
            "credit_id": str(credit.id) if credit else None,
            "credit_amount": float(credit.amount) if credit else 0.0,
            "credits_reinstated": total_amount(reinstated),
            "refund_id": str(refunds[0].id) if refunds else None,
            "refund_ids": [str(r.id) for r in refunds],
            "refund_amount": total_amount(refunds),
        }

    @action("cancel_preview", commit=False)
    def cancel_preview(
        self,
        subscription_id: uuid.UUID | str,
        actor: Optional[User],
        effective_from: Optional[date] = None,
    ) -> dict[str, Any]:
        subscription = self._load(subscription_id, actor)
        plan = self._plan_cancel(subscription, effective_from)
        return {
            "orders_count": len(plan.orders),
            "remaining_meals_value": plan.remaining_meals_value,
            "existing_credits_value": plan.existing_credits_value,
            "total_refund_credit": plan.balance,
            "refundable_cash": min(
                plan.balance,
                money(sum(cash for _, cash in billing.refundable_payments(self.db, subscription.id))),
            ),
            "refund_policy": self.platform.cancel_refund_policy,
            "notice_ok": self._notice_ok(plan.starts_at, self.platform.cancel_notice_hours),
            "notice_hours": self.platform.cancel_notice_hours,
        }

    # ------------------------------------------------------------------
    # Skip
    # ------------------------------------------------------------------

    def _skip_context(self, subscription: Subscription, service_date: date, slot: str):
        # Orders after a bounded pause stay scheduled and can still be skipped.
        after_pause = (
            subscription.status == "paused"
            and subscription.paused_until is not None
            and service_date > subscription.paused_until
        )
        if not after_pause:
            self._require_status(subscription, ("trial", "active"), "skip a meal of")
        validate_slot(slot)
        order = find_order(self.db, subscription.id, service_date, slot)
        if order is None:
            raise NotFoundError(f"No {slot} order on {service_date.isoformat()}")
        if order.status != "scheduled":
            raise InvalidTransitionError(f"Order is already {order.status}")
        cycle = self.db.get(Cycle, order.cycle_id) if order.cycle_id else None
        cycle = cycle or self._cycle_covering(subscription, service_date)
        if cycle is None:
            raise NotFoundError("No billing cycle covers this order")
        cutoff = delivery_at(order, self.tz) - timedelta(hours=int(self.platform.skip_cutoff_hours))
        limit = int((subscription.plan.skip_limits or {}).get(slot, 0))
        used = int((cycle.skips_used or {}).get(slot, 0))
        return order, cycle, cutoff, limit, used

    @action("apply_skip")
    def apply_skip(
        self,
        subscription_id: uuid.UUID | str,
        actor: Optional[User],
        service_date: date,
        slot: str,
    ) -> dict[str, Any]:
        subscription = self._load(subscription_id, actor)
        order, cycle, cutoff, limit, used = self._skip_context(subscription, service_date, slot)
        if self.now >= cutoff:
            raise NoticeViolationError(
                f"Skips for this meal closed {self.platform.skip_cutoff_hours} hours before delivery"
            )
        if used >= limit:
            raise LimitExceededError(f"Skip limit of {limit} for {slot} reached in this cycle")

        cycle.skips_used = {**(cycle.skips_used or {}), slot: used + 1}
        order.status = "skipped_by_customer"
        order.status_reason = "customer_skip"
        credit = None
        if subscription.plan.skip_credit and float(order.unit_price or 0) > 0:
            credit = mint_credit(
                self.db,
                subscription,
                float(order.unit_price),
                "skip",
                self.platform,
                self.now,
                slot=slot,
                source_order_id=order.id,
            )
        self.db.flush()
        logger.info("Subscription %s skipped %s on %s (%d/%d)", subscription.id, slot, service_date, used + 1, limit)
        return {
            "order_id": str(order.id),
            "skips_used": used + 1,
            "skip_limit": limit,
            "credit_id": str(credit.id) if credit else None,
            "credit_amount": float(credit.amount) if credit else 0.0,
        }

    @action("skip_preview", commit=False)
    def skip_preview(
        self,
        subscription_id: uuid.UUID | str,
        actor: Optional[User],
        service_date: date,
        slot: str,
    ) -> dict[str, Any]:
        subscription = self._load(subscription_id, actor)
        order, _cycle, cutoff, limit, used = self._skip_context(subscription, service_date, slot)
        return {
            "order_id": str(order.id),
            "cutoff_at": cutoff.isoformat(),
            "skips_used": used,
            "skip_limit": limit,
            "skips_remaining": max(limit - used, 0),
            "credit_amount": float(order.unit_price or 0) if subscription.plan.skip_credit else 0.0,
            "can_skip": self.now < cutoff and used < limit,
        }

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    @action("update_preferences")
    def update_preferences(
        self,
        subscription_id: uuid.UUID | str,
        actor: Optional[User],
        preferences: dict[str, dict[str, Any]],
    ) -> dict[str, Any]:
        """Store slot preferences that take effect from the next cycle."""
        subscription = self._load(subscription_id, actor)
        self._require_status(subscription, CANCELLABLE, "edit")
        subscription.pending_preferences = validate_preferences(
            preferences,
            subscription.plan.allowed_slots or [],
            enabled_slots(self.db, subscription.vendor_id),
        )
        self.db.flush()
        logger.info("Subscription %s preferences updated for next cycle", subscription.id)
        return serialize_subscription(subscription)

    # ------------------------------------------------------------------
    # Scheduler driven transitions
    # ------------------------------------------------------------------

    def is_auto_cancel_eligible(self, subscription: Subscription) -> bool:
        if subscription.status != "paused" or subscription.paused_at is None:
            return False
        limit = timedelta(days=int(self.platform.max_pause_days))
        return subscription.paused_at < self.now - limit

    @action("force_cancel")
    def force_cancel(self, subscription_id: uuid.UUID | str) -> dict[str, Any]:
        """Cancel a subscription paused past the allowed length and bank its balance as credit."""
        subscription = self._get(subscription_id)
        if not self.is_auto_cancel_eligible(subscription):
            raise InvalidTransitionError("Subscription is not eligible for auto-cancel")
        plan = CancelPlan(
            starts_at=None,
            orders=scheduled_orders(self.db, subscription.id, self.today),
            credits=available_credits(self.db, subscription.consumer_id, self.now, subscription_id=subscription.id),
        )
        balance = plan.balance
        self._close(subscription, plan, "auto_cancelled_after_pause", "auto_cancelled")
        credit = None
        if balance > 0:
            credit = mint_credit(
                self.db,
                subscription,
                balance,
                "pause_auto_cancel",
                self.platform,
                self.now,
                vendor_scoped=False,
            )
        self.db.flush()
        logger.info("Subscription %s auto-cancelled after pause, %.2f credited", subscription.id, balance)
        notify_subscription_event(subscription, "auto_cancelled", {"credit": balance})
        return {
            "subscription": serialize_subscription(subscription),
            "balance": balance,
            "credit_id": str(credit.id) if credit else None,
        }

    @action("expire")
    def expire(self, subscription_id: uuid.UUID | str, reason: str = "renewal_payment_failed") -> dict[str, Any]:
        subscription = self._get(subscription_id)
        self._require_status(subscription, ("active",), "expire")
        subscription.status = "expired"
        subscription.expired_at = self.now
        subscription.expiry_date = self.today
        subscription.cancellation_reason = reason
        self.db.flush()
        logger.info("Subscription %s expired: %s", subscription.id, reason)
        notify_subscription_event(subscription, "expired", {"reason": reason})
        return serialize_subscription(subscription)

    @action("activate_trial")
    def activate_trial(self, subscription_id: uuid.UUID | str) -> dict[str, Any]:
        subscription = self._get(subscription_id)
        self._require_status(subscription, ("trial",), "activate")
        subscription.status = "active"
        self.db.flush()
        logger.info("Trial subscription %s converted to active", subscription.id)
        notify_subscription_event(subscription, "activated")
        return serialize_subscription(subscription)

    @action("complete_trial")
    def complete_trial(self, subscription_id: uuid.UUID | str) -> dict[str, Any]:
        """Close a trial whose window ended without conversion."""
        subscription = self._get(subscription_id)
        self._require_status(subscription, ("trial",), "complete")
        if subscription.expiry_date and subscription.expiry_date >= self.today:
            raise InvalidTransitionError("Trial has not ended yet")
        pending = (
            self.db.query(Invoice.id)
            .filter(
                Invoice.subscription_id == subscription.id,
                Invoice.kind == "conversion",
                Invoice.status == "pending_payment",
            )
            .first()
        )
        if pending is not None:
            raise InvalidTransitionError("Trial conversion payment is pending")
        plan = CancelPlan(starts_at=None, orders=scheduled_orders(self.db, subscription.id, self.today))
        self._close(subscription, plan, "trial_completed", "trial_completed")
        self.db.flush()
        logger.info("Trial subscription %s completed", subscription.id)
        notify_subscription_event(subscription, "trial_completed")
        return serialize_subscription(subscription)


def validate_preferences(
    preferences: dict[str, dict[str, Any]],
    allowed_slots: list[str],
    vendor_slots: dict[str, Any],
) -> dict[str, dict[str, Any]]:
    """Normalise ``{slot: {weekdays, instructions}}``; weekday 0 is Monday."""
    if not preferences:
        raise ValidationError("Select at least one slot")
    cleaned: dict[str, dict[str, Any]] = {}
    for slot, pref in preferences.items():
        validate_slot(slot)
        if slot not in allowed_slots:
            raise ValidationError(f"Plan does not include {slot}")
        if slot not in vendor_slots:
            raise ValidationError(f"Vendor does not serve {slot}")
        weekdays = sorted(set(int(d) for d in (pref or {}).get("weekdays") or []))
        if not weekdays:
            raise ValidationError(f"Select at least one weekday for {slot}")
        if any(d < 0 or d > 6 for d in weekdays):
            raise ValidationError("Weekdays must be between 0 (Monday) and 6 (Sunday)")
        cleaned[slot] = {"weekdays": weekdays, "instructions": (pref or {}).get("instructions")}
    return {slot: cleaned[slot] for slot in SLOTS if slot in cleaned}

