"""
Vendor (home chef) API: onboarding, slots, holidays, menu and daily orders.
"""
from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.dependencies import raise_app_error, require_vendor
from app.core.exceptions import AppError, ValidationError
from app.core.security import get_current_user
from app.database import get_db
from app.models import Meal, User, Vendor, VendorHoliday
from app.schemas.vendor import (
    HolidayCreate,
    MealCreate,
    MealUpdate,
    OrderStatusUpdate,
    SlotUpsert,
    VendorProfileUpdate,
)
from app.services import vendors
from app.services.cycles import utcnow
from app.services.orders import list_vendor_orders, serialize_order, update_order_status

router = APIRouter()


class VendorOnboarding(BaseModel):
    display_name: str
    zone: Optional[str] = None
    bio: Optional[str] = None
    cuisine: Optional[str] = None
    veg_only: bool = False


def _own_vendor(db: Session, user: User) -> Vendor:
    try:
        return vendors.get_vendor_for_owner(db, user)
    except AppError as exc:
        raise_app_error(exc)


@router.post("/onboarding", status_code=201)
async def onboard_vendor(
    payload: VendorOnboarding, db: Session = Depends(get_db), user: User = Depends(get_current_user)
) -> dict:
    """Create a vendor profile for the signed-in user. New vendors wait for admin approval."""
    if db.query(Vendor.id).filter(Vendor.owner_id == user.id).first():
        raise_app_error(ValidationError("This account already has a vendor profile"))
    try:
        vendor = vendors.create_vendor(db, user, **payload.model_dump())
    except AppError as exc:
        raise_app_error(exc)
    return vendors.serialize_vendor(vendor)


@router.get("/me")
async def my_vendor(db: Session = Depends(get_db), user: User = Depends(require_vendor)) -> dict:
    return vendors.serialize_vendor(_own_vendor(db, user))


@router.patch("/me")
async def update_profile(
    payload: VendorProfileUpdate, db: Session = Depends(get_db), user: User = Depends(require_vendor)
) -> dict:
    try:
        vendor = vendors.update_vendor_profile(db, _own_vendor(db, user), payload.model_dump(exclude_unset=True))
    except AppError as exc:
        raise_app_error(exc)
    return vendors.serialize_vendor(vendor)


@router.put("/slots/{slot}")
async def upsert_slot(
    slot: str, payload: SlotUpsert, db: Session = Depends(get_db), user: User = Depends(require_vendor)
) -> dict:
    try:
        row = vendors.upsert_slot(db, _own_vendor(db, user), slot, **payload.model_dump())
    except AppError as exc:
        raise_app_error(exc)
    return vendors.serialize_slot(row)


@router.get("/holidays")
async def list_holidays(db: Session = Depends(get_db), user: User = Depends(require_vendor)) -> dict:
    vendor = _own_vendor(db, user)
    rows = db.query(VendorHoliday).filter(VendorHoliday.vendor_id == vendor.id).order_by(VendorHoliday.date.asc()).all()
    return {
        "items": [
            {"id": str(h.id), "date": h.date.isoformat(), "slot": h.slot, "reason": h.reason}
            for h in rows
        ]
    }


@router.post("/holidays", status_code=201)
async def add_holiday(
    payload: HolidayCreate, db: Session = Depends(get_db), user: User = Depends(require_vendor)
) -> dict:
    try:
        row = vendors.add_holiday(db, _own_vendor(db, user), payload.date, slot=payload.slot, reason=payload.reason)
    except AppError as exc:
        raise_app_error(exc)
    return {"id": str(row.id), "date": row.date.isoformat(), "slot": row.slot, "reason": row.reason}


@router.delete("/holidays/{holiday_id}")
async def remove_holiday(
    holiday_id: str, db: Session = Depends(get_db), user: User = Depends(require_vendor)
) -> dict:
    try:
        vendors.remove_holiday(db, _own_vendor(db, user), holiday_id)
    except AppError as exc:
        raise_app_error(exc)
    return {"success": True}


@router.get("/menu")
async def list_menu(db: Session = Depends(get_db), user: User = Depends(require_vendor)) -> dict:
    vendor = _own_vendor(db, user)
    rows = db.query(Meal).filter(Meal.vendor_id == vendor.id).order_by(Meal.slot.asc(), Meal.name.asc()).all()
    return {"items": [vendors.serialize_meal(m) for m in rows]}


@router.post("/menu", status_code=201)
async def create_meal(
    payload: MealCreate, db: Session = Depends(get_db), user: User = Depends(require_vendor)
) -> dict:
    try:
        meal = vendors.create_meal(db, _own_vendor(db, user), payload.model_dump())
    except AppError as exc:
        raise_app_error(exc)
    return vendors.serialize_meal(meal)


@router.patch("/menu/{meal_id}")
async def update_meal(
    meal_id: str, payload: MealUpdate, db: Session = Depends(get_db), user: User = Depends(require_vendor)
) -> dict:
    try:
        meal = vendors.update_meal(db, _own_vendor(db, user), meal_id, payload.model_dump(exclude_unset=True))
    except AppError as exc:
        raise_app_error(exc)
    return vendors.serialize_meal(meal)


@router.delete("/menu/{meal_id}")
async def delete_meal(meal_id: str, db: Session = Depends(get_db), user: User = Depends(require_vendor)) -> dict:
    try:
        vendors.delete_meal(db, _own_vendor(db, user), meal_id)
    except AppError as exc:
        raise_app_error(exc)
    return {"success": True}


@router.get("/orders")
async def vendor_orders(
    service_date: Optional[date] = None,
    slot: Optional[str] = None,
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    user: User = Depends(require_vendor),
) -> dict:
    rows = list_vendor_orders(db, _own_vendor(db, user), service_date=service_date, slot=slot, status=status)
    return {"items": [serialize_order(o) for o in rows], "total": len(rows)}


@router.post("/orders/{order_id}/status")
async def set_order_status(
    order_id: str,
    payload: OrderStatusUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_vendor),
) -> dict:
    try:
        order = update_order_status(db, _own_vendor(db, user), order_id, payload.status, utcnow(), payload.reason)
    except AppError as exc:
        raise_app_error(exc)
    return serialize_order(order)
