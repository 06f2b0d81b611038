"""
SQLAlchemy models for the Mealcycle marketplace.
"""
from __future__ import annotations

import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    Text,
    Time,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()

JSONType = JSON().with_variant(JSONB(), "postgresql")
Money = Numeric(10, 2, asdecimal=False)

SLOTS = ("breakfast", "lunch", "dinner")
ROLES = ("customer", "vendor", "rider", "admin")
PERIOD_TYPES = ("weekly", "monthly")
PRICING_MODES = ("per_meal", "fixed")
REFUND_POLICIES = ("refund_only", "credit_only", "customer_choice")

SUBSCRIPTION_STATUSES = ("trial", "active", "paused", "cancelled", "expired")
ORDER_STATUSES = (
    "scheduled",
    "delivered",
    "skipped_by_customer",
    "skipped_by_vendor",
    "cancelled",
    "failed_ops",
    "no_show",
)
CREDIT_STATUSES = ("available", "used", "expired", "void")
INVOICE_STATUSES = ("pending_payment", "paid", "failed", "void")
VENDOR_STATUSES = ("pending", "active", "suspended")


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(Text, nullable=False, unique=True)
    phone = Column(Text)
    full_name = Column(Text)
    password_hash = Column(Text, nullable=False)
    roles = Column(JSONType, default=lambda: ["customer"])
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class Address(Base):
    __tablename__ = "addresses"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    label = Column(Text)
    line1 = Column(Text, nullable=False)
    line2 = Column(Text)
    city = Column(Text, nullable=False)
    state = Column(Text)
    pincode = Column(Text, nullable=False)
    is_default = Column(Boolean, default=False)
    created_at = Column(DateTime, server_default=func.now())


class Zone(Base):
    __tablename__ = "zones"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False, unique=True)
    polygon = Column(JSONType)
    active = Column(Boolean, default=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class Vendor(Base):
    __tablename__ = "vendors"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id = Column(Uuid, ForeignKey("users.id", ondelete="SET NULL"))
    display_name = Column(Text, nullable=False)
    slug = Column(Text, nullable=False, unique=True)
    zone = Column(Text)
    bio = Column(Text)
    cuisine = Column(Text)
    veg_only = Column(Boolean, default=False)
    status = Column(Text, default="pending")
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    slots = relationship("VendorSlot", back_populates="vendor", cascade="all, delete-orphan")


class VendorSlot(Base):
    __tablename__ = "vendor_slots"
    __table_args__ = (UniqueConstraint("vendor_id", "slot", name="uq_vendor_slot"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    vendor_id = Column(Uuid, ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False)
    slot = Column(Text, nullable=False)
    delivery_window_start = Column(Time, nullable=False)
    delivery_window_end = Column(Time, nullable=False)
    base_price = Column(Money, nullable=False)
    capacity = Column(Integer)
    is_enabled = Column(Boolean, default=True)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    vendor = relationship("Vendor", back_populates="slots")


class VendorHoliday(Base):
    __tablename__ = "vendor_holidays"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    vendor_id = Column(Uuid, ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False)
    date = Column(Date, nullable=False)
    slot = Column(Text)
    reason = Column(Text)
    created_at = Column(DateTime, server_default=func.now())


class Meal(Base):
    __tablename__ = "meals"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    vendor_id = Column(Uuid, ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False)
    slot = Column(Text, nullable=False)
    name = Column(Text, nullable=False)
    description = Column(Text)
    is_veg = Column(Boolean, default=True)
    image_url = Column(Text)
    active = Column(Boolean, default=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class Plan(Base):
    __tablename__ = "plans"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    period_type = Column(Text, nullable=False, default="weekly")
    allowed_slots = Column(JSONType, default=lambda: list(SLOTS))
    skip_limits = Column(JSONType, default=dict)
    skip_credit = Column(Boolean, default=True)
    description = Column(Text)
    active = Column(Boolean, default=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class TrialType(Base):
    __tablename__ = "trial_types"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    duration_days = Column(Integer, nullable=False)
    max_meals = Column(Integer, nullable=False)
    allowed_slots = Column(JSONType, default=lambda: list(SLOTS))
    pricing_mode = Column(Text, nullable=False, default="per_meal")
    discount_pct = Column(Numeric(5, 4, asdecimal=False))
    fixed_price = Column(Money)
    cooldown_days = Column(Integer, default=30)
    active = Column(Boolean, default=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class PlatformSetting(Base):
    __tablename__ = "platform_settings"

    id = Column(Integer, primary_key=True, default=1)
    delivery_fee_per_meal = Column(Money, nullable=False, default=0)
    commission_pct = Column(Numeric(5, 4, asdecimal=False), nullable=False, default=0)
    skip_cutoff_hours = Column(Integer, nullable=False, default=3)
    credit_expiry_days = Column(Integer, nullable=False, default=90)
    pause_notice_hours = Column(Integer, nullable=False, default=24)
    resume_notice_hours = Column(Integer, nullable=False, default=24)
    cancel_notice_hours = Column(Integer, nullable=False, default=24)
    max_pause_days = Column(Integer, nullable=False, default=60)
    cancel_refund_policy = Column(Text, nullable=False, default="customer_choice")
    timezone = Column(Text, nullable=False, default="Asia/Kolkata")
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    consumer_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    vendor_id = Column(Uuid, ForeignKey("vendors.id"), nullable=False)
    plan_id = Column(Uuid, ForeignKey("plans.id"), nullable=False)
    delivery_address_id = Column(Uuid, ForeignKey("addresses.id"), nullable=False)
    trial_type_id = Column(Uuid, ForeignKey("trial_types.id"))
    status = Column(Text, nullable=False, default="active")
    start_date = Column(Date, nullable=False)
    renewal_date = Column(Date, nullable=False)
    expiry_date = Column(Date)
    price_per_cycle = Column(Money, default=0)
    prepaid_balance = Column(Money, default=0)
    # {"lunch": {"weekdays": [0, 1, 2, 3, 4], "instructions": "less spicy"}}, weekday 0 = Monday
    preferences = Column(JSONType, default=dict)
    pending_preferences = Column(JSONType)
    paused_from = Column(Date)
    paused_until = Column(Date)
    paused_at = Column(DateTime)
    cancelled_at = Column(DateTime)
    cancellation_reason = Column(Text)
    expired_at = Column(DateTime)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    plan = relationship("Plan")
    vendor = relationship("Vendor")
    trial_type = relationship("TrialType")
    cycles = relationship("Cycle", back_populates="subscription", order_by="Cycle.cycle_start")


class Cycle(Base):
    __tablename__ = "cycles"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    subscription_id = Column(Uuid, ForeignKey("subscriptions.id", ondelete="CASCADE"), nullable=False)
    cycle_start = Column(Date, nullable=False)
    cycle_end = Column(Date, nullable=False)
    renewal_date = Column(Date, nullable=False)
    is_first_cycle = Column(Boolean, default=False)
    skips_used = Column(JSONType, default=dict)
    created_at = Column(DateTime, server_default=func.now())

    subscription = relationship("Subscription", back_populates="cycles")


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("subscription_id", "service_date", "slot", name="uq_order_subscription_date_slot"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    subscription_id = Column(Uuid, ForeignKey("subscriptions.id", ondelete="CASCADE"), nullable=False)
    cycle_id = Column(Uuid, ForeignKey("cycles.id", ondelete="SET NULL"))
    consumer_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    vendor_id = Column(Uuid, ForeignKey("vendors.id"), nullable=False)
    service_date = Column(Date, nullable=False)
    slot = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="scheduled")
    status_reason = Column(Text)
    delivery_window_start = Column(Time)
    delivery_window_end = Column(Time)
    unit_price = Column(Money, default=0)
    delivery_address_id = Column(Uuid, ForeignKey("addresses.id"))
    special_instructions = Column(Text)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class Credit(Base):
    __tablename__ = "credits"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    consumer_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    subscription_id = Column(Uuid, ForeignKey("subscriptions.id", ondelete="SET NULL"))
    vendor_id = Column(Uuid, ForeignKey("vendors.id", ondelete="SET NULL"))
    slot = Column(Text)
    amount = Column(Money, nullable=False)
    reason = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="available")
    source_order_id = Column(Uuid, ForeignKey("orders.id", ondelete="SET NULL"))
    expires_at = Column(DateTime, nullable=False)
    used_at = Column(DateTime)
    used_invoice_id = Column(Uuid, ForeignKey("invoices.id", ondelete="SET NULL"))
    created_at = Column(DateTime, server_default=func.now())


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    subscription_id = Column(Uuid, ForeignKey("subscriptions.id", ondelete="SET NULL"))
    cycle_id = Column(Uuid, ForeignKey("cycles.id", ondelete="SET NULL"))
    consumer_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    vendor_id = Column(Uuid, ForeignKey("vendors.id"), nullable=False)
    kind = Column(Text, nullable=False, default="checkout")
    status = Column(Text, nullable=False, default="pending_payment")
    currency = Column(Text, default="INR")
    subtotal_vendor_base = Column(Money, default=0)
    delivery_fee_total = Column(Money, default=0)
    commission_total = Column(Money, default=0)
    discount_total = Column(Money, default=0)
    credits_applied = Column(Money, default=0)
    total_amount = Column(Money, default=0)
    lines = Column(JSONType, default=list)
    razorpay_order_id = Column(Text)
    razorpay_payment_id = Column(Text)
    attempts = Column(Integer, default=0)
    paid_at = Column(DateTime)
    failed_at = Column(DateTime)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class Refund(Base):
    __tablename__ = "refunds"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    subscription_id = Column(Uuid, ForeignKey("subscriptions.id", ondelete="SET NULL"))
    consumer_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    invoice_id = Column(Uuid, ForeignKey("invoices.id", ondelete="SET NULL"))
    amount = Column(Money, nullable=False)
    status = Column(Text, nullable=False, default="pending")
    razorpay_refund_id = Column(Text)
    error = Column(Text)
    created_at = Column(DateTime, server_default=func.now())
    processed_at = Column(DateTime)


class JobRun(Base):
    __tablename__ = "job_runs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    job_type = Column(Text, nullable=False)
    status = Column(Text, nullable=False, default="running")
    result = Column(JSONType, default=dict)
    error = Column(Text)
    execution_time_ms = Column(Integer)
    started_at = Column(DateTime, server_default=func.now())
    finished_at = Column(DateTime)
