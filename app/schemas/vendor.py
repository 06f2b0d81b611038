from __future__ import annotations

from datetime import date as date_type, time
from typing import Literal, Optional

from pydantic import BaseModel, Field


class VendorProfileUpdate(BaseModel):
    display_name: Optional[str] = None
    zone: Optional[str] = None
    bio: Optional[str] = None
    cuisine: Optional[str] = None
    veg_only: Optional[bool] = None


class SlotUpsert(BaseModel):
    delivery_window_start: time
    delivery_window_end: time
    base_price: float = Field(ge=0)
    capacity: Optional[int] = Field(default=None, ge=0)
    is_enabled: bool = True


class HolidayCreate(BaseModel):
    date: date_type
    slot: Optional[str] = None
    reason: Optional[str] = None


class MealCreate(BaseModel):
    slot: str
    name: str
    description: Optional[str] = None
    is_veg: bool = True
    image_url: Optional[str] = None
    active: bool = True


class MealUpdate(BaseModel):
    slot: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    is_veg: Optional[bool] = None
    image_url: Optional[str] = None
    active: Optional[bool] = None


class OrderStatusUpdate(BaseModel):
    status: Literal["delivered", "failed_ops", "no_show", "skipped_by_vendor"]
    reason: Optional[str] = None
