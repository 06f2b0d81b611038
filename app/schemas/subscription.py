from __future__ import annotations

from datetime import date
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class SlotPreference(BaseModel):
    # 0 = Monday ... 6 = Sunday
    weekdays: List[int] = Field(default_factory=list)
    instructions: Optional[str] = None


class QuoteRequest(BaseModel):
    vendor_id: str
    plan_id: str
    preferences: Dict[str, SlotPreference]
    start_date: Optional[date] = None
    trial_type_id: Optional[str] = None


class CheckoutRequest(QuoteRequest):
    address_id: str


class PreferencesUpdate(BaseModel):
    preferences: Dict[str, SlotPreference]


class PauseRequest(BaseModel):
    pause_from: Optional[date] = None
    until: Optional[date] = None


class ResumeRequest(BaseModel):
    resume_on: Optional[date] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None
    refund_choice: Optional[Literal["refund", "credit"]] = None
    effective_from: Optional[date] = None


class SkipRequest(BaseModel):
    service_date: date
    slot: str


class ConfirmPaymentRequest(BaseModel):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


class AddressCreate(BaseModel):
    label: Optional[str] = None
    line1: str
    line2: Optional[str] = None
    city: str
    state: Optional[str] = None
    pincode: str
    is_default: bool = False
