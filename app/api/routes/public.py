"""
Public catalog: home chefs, their menus and prices, plans and trial offers.
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.database import get_db
from app.models import Meal, Vendor
from app.services.catalog import list_plans, list_trial_types, serialize_plan, serialize_trial_type
from app.services.platform import get_platform_settings
from app.services.pricing import slot_price_card
from app.services.vendors import browse_vendors, serialize_meal, serialize_vendor
from app.services.zones import list_zones, serialize_zone

router = APIRouter()


@router.get("/vendors")
async def list_vendors(
    zone: Optional[str] = None,
    slot: Optional[str] = None,
    veg_only: Optional[bool] = None,
    search: Optional[str] = None,
    db: Session = Depends(get_db),
) -> dict:
    platform = get_platform_settings(db)
    items = []
    for vendor in browse_vendors(db, zone=zone, slot=slot, veg_only=veg_only, search=search):
        items.append({**serialize_vendor(vendor), "prices": slot_price_card(db, vendor.id, platform)})
    return {"items": items, "total": len(items)}


@router.get("/vendors/{slug}")
async def vendor_detail(slug: str, db: Session = Depends(get_db)) -> dict:
    vendor = db.query(Vendor).filter(Vendor.slug == slug, Vendor.status == "active").first()
    if vendor is None:
        raise HTTPException(status_code=404, detail="Vendor not found")
    menu = (
        db.query(Meal)
        .filter(Meal.vendor_id == vendor.id, Meal.active.is_(True))
        .order_by(Meal.slot.asc(), Meal.name.asc())
        .all()
    )
    return {
        **serialize_vendor(vendor),
        "prices": slot_price_card(db, vendor.id, get_platform_settings(db)),
        "menu": [serialize_meal(m) for m in menu],
    }


@router.get("/plans")
async def public_plans(db: Session = Depends(get_db)) -> dict:
    return {"items": [serialize_plan(p) for p in list_plans(db, active_only=True)]}


@router.get("/trial-types")
async def public_trial_types(db: Session = Depends(get_db)) -> dict:
    return {"items": [serialize_trial_type(t) for t in list_trial_types(db, active_only=True)]}


@router.get("/zones")
async def public_zones(db: Session = Depends(get_db)) -> dict:
    return {"items": [serialize_zone(z) for z in list_zones(db, active_only=True)]}
