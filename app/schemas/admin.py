from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel


class PlanIn(BaseModel):
    name: str
    period_type: Literal["weekly", "monthly"] = "weekly"
    allowed_slots: List[str]
    skip_limits: Dict[str, int]
    skip_credit: bool = True
    description: Optional[str] = None
    active: bool = True


class PlanUpdate(BaseModel):
    name: Optional[str] = None
    period_type: Optional[Literal["weekly", "monthly"]] = None
    allowed_slots: Optional[List[str]] = None
    skip_limits: Optional[Dict[str, int]] = None
    skip_credit: Optional[bool] = None
    description: Optional[str] = None
    active: Optional[bool] = None


class TrialTypeIn(BaseModel):
    name: str
    duration_days: int
    max_meals: int
    allowed_slots: List[str]
    pricing_mode: Literal["per_meal", "fixed"] = "per_meal"
    discount_pct: Optional[float] = None
    fixed_price: Optional[float] = None
    cooldown_days: Optional[int] = None
    active: bool = True


class TrialTypeUpdate(BaseModel):
    name: Optional[str] = None
    duration_days: Optional[int] = None
    max_meals: Optional[int] = None
    allowed_slots: Optional[List[str]] = None
    pricing_mode: Optional[Literal["per_meal", "fixed"]] = None
    discount_pct: Optional[float] = None
    fixed_price: Optional[float] = None
    cooldown_days: Optional[int] = None
    active: Optional[bool] = None


class PlatformSettingsUpdate(BaseModel):
    delivery_fee_per_meal: Optional[float] = None
    commission_pct: Optional[float] = None
    skip_cutoff_hours: Optional[int] = None
    credit_expiry_days: Optional[int] = None
    pause_notice_hours: Optional[int] = None
    resume_notice_hours: Optional[int] = None
    cancel_notice_hours: Optional[int] = None
    max_pause_days: Optional[int] = None
    cancel_refund_policy: Optional[str] = None
    timezone: Optional[str] = None


class VendorStatusUpdate(BaseModel):
    status: Literal["pending", "active", "suspended"]


class ZoneIn(BaseModel):
    name: str
    polygon: Optional[Dict[str, Any]] = None


class ZoneUpdate(BaseModel):
    name: Optional[str] = None
    polygon: Optional[Dict[str, Any]] = None
