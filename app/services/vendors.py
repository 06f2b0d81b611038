"""
Vendor (home chef) profile, delivery slots, holidays and menu management.
"""
from __future__ import annotations

import logging
import re
import uuid
from datetime import date, time
from typing import Any, Iterable, Optional

from sqlalchemy.orm import Session

from app.core.exceptions import NotFoundError, UnauthorizedError, ValidationError
from app.models import SLOTS, VENDOR_STATUSES, Meal, User, Vendor, VendorHoliday, VendorSlot, Zone

logger = logging.getLogger(__name__)


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug or "vendor"


def unique_slug(db: Session, name: str) -> str:
    base = slugify(name)
    slug = base
    n = 2
    while db.query(Vendor.id).filter(Vendor.slug == slug).first():
        slug = f"{base}-{n}"
        n += 1
    return slug


def validate_slot(slot: str) -> str:
    if slot not in SLOTS:
        raise ValidationError(f"Unknown slot '{slot}', expected one of {', '.join(SLOTS)}")
    return slot


def check_zone(db: Session, name: Optional[str]) -> Optional[str]:
    """Return the stripped zone name if it names an active zone."""
    name = (name or "").strip()
    if not name:
        return None
    if not db.query(Zone.id).filter(Zone.name == name, Zone.active.is_(True)).first():
        raise ValidationError(f"Unknown or inactive zone '{name}'")
    return name


def get_vendor(db: Session, vendor_id: uuid.UUID | str) -> Vendor:
    vendor = db.get(Vendor, _as_uuid(vendor_id))
    if vendor is None:
        raise NotFoundError("Vendor not found")
    return vendor


def get_vendor_for_owner(db: Session, user: User) -> Vendor:
    vendor = db.query(Vendor).filter(Vendor.owner_id == user.id).first()
    if vendor is None:
        raise NotFoundError("No vendor profile for this account")
    return vendor


def create_vendor(db: Session, owner: User, display_name: str, **fields: Any) -> Vendor:
    if not display_name or not display_name.strip():
        raise ValidationError("Display name is required")
    vendor = Vendor(
        owner_id=owner.id,
        display_name=display_name.strip(),
        slug=unique_slug(db, display_name),
        zone=check_zone(db, fields.get("zone")),
        bio=fields.get("bio"),
        cuisine=fields.get("cuisine"),
        veg_only=bool(fields.get("veg_only", False)),
        status="pending",
    )
    db.add(vendor)
    roles = list(owner.roles or [])
    if "vendor" not in roles:
        owner.roles = roles + ["vendor"]
    db.commit()
    db.refresh(vendor)
    logger.info("Vendor %s created for user %s", vendor.slug, owner.email)
    return vendor


def update_vendor_profile(db: Session, vendor: Vendor, data: dict[str, Any]) -> Vendor:
    if data.get("zone") is not None:
        data = {**data, "zone": check_zone(db, data["zone"])}
    for key in ("display_name", "zone", "bio", "cuisine", "veg_only"):
        if key in data and data[key] is not None:
            setattr(vendor, key, data[key])
    db.commit()
    db.refresh(vendor)
    return vendor


def set_vendor_status(db: Session, vendor_id: uuid.UUID | str, status: str) -> Vendor:
    if status not in VENDOR_STATUSES:
        raise ValidationError(f"Unknown vendor status '{status}'")
    vendor = get_vendor(db, vendor_id)
    vendor.status = status
    db.commit()
    db.refresh(vendor)
    logger.info("Vendor %s status set to %s", vendor.slug, status)
    return vendor


def upsert_slot(
    db: Session,
    vendor: Vendor,
    slot: str,
    delivery_window_start: time,
    delivery_window_end: time,
    base_price: float,
    capacity: Optional[int] = None,
    is_enabled: bool = True,
) -> VendorSlot:
    validate_slot(slot)
    if delivery_window_end <= delivery_window_start:
        raise ValidationError("Delivery window end must be after its start")
    if base_price < 0:
        raise ValidationError("Base price must be >= 0")
    row = (
        db.query(VendorSlot)
        .filter(VendorSlot.vendor_id == vendor.id, VendorSlot.slot == slot)
        .first()
    )
    if row is None:
        row = VendorSlot(vendor_id=vendor.id, slot=slot)
        db.add(row)
    row.delivery_window_start = delivery_window_start
    row.delivery_window_end = delivery_window_end
    row.base_price = base_price
    row.capacity = capacity
    row.is_enabled = is_enabled
    db.commit()
    db.refresh(row)
    return row


def enabled_slots(db: Session, vendor_id: uuid.UUID) -> dict[str, VendorSlot]:
    rows = (
        db.query(VendorSlot)
        .filter(VendorSlot.vendor_id == vendor_id, VendorSlot.is_enabled.is_(True))
        .all()
    )
    return {row.slot: row for row in rows}


def add_holiday(
    db: Session, vendor: Vendor, holiday_date: date, slot: Optional[str] = None, reason: Optional[str] = None
) -> VendorHoliday:
    if slot is not None:
        validate_slot(slot)
    row = VendorHoliday(vendor_id=vendor.id, date=holiday_date, slot=slot, reason=reason)
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info("Holiday %s (%s) added for vendor %s", holiday_date, slot or "all slots", vendor.slug)
    return row


def remove_holiday(db: Session, vendor: Vendor, holiday_id: uuid.UUID | str) -> None:
    row = db.get(VendorHoliday, _as_uuid(holiday_id))
    if row is None:
        raise NotFoundError("Holiday not found")
    if row.vendor_id != vendor.id:
        raise UnauthorizedError("Holiday belongs to another vendor")
    db.delete(row)
    db.commit()


def holiday_dates(db: Session, vendor_id: uuid.UUID, start: date, end: date, slot: str) -> set[date]:
    rows = (
        db.query(VendorHoliday)
        .filter(
            VendorHoliday.vendor_id == vendor_id,
            VendorHoliday.date >= start,
            VendorHoliday.date <= end,
        )
        .all()
    )
    return {row.date for row in rows if row.slot is None or row.slot == slot}


def create_meal(db: Session, vendor: Vendor, data: dict[str, Any]) -> Meal:
    validate_slot(data.get("slot", ""))
    if not (data.get("name") or "").strip():
        raise ValidationError("Meal name is required")
    meal = Meal(
        vendor_id=vendor.id,
        slot=data["slot"],
        name=data["name"].strip(),
        description=data.get("description"),
        is_veg=data.get("is_veg", True),
        image_url=data.get("image_url"),
        active=data.get("active", True),
    )
    db.add(meal)
    db.commit()
    db.refresh(meal)
    return meal


def get_own_meal(db: Session, vendor: Vendor, meal_id: uuid.UUID | str) -> Meal:
    meal = db.get(Meal, _as_uuid(meal_id))
    if meal is None:
        raise NotFoundError("Meal not found")
    if meal.vendor_id != vendor.id:
        raise UnauthorizedError("Meal belongs to another vendor")
    return meal


def update_meal(db: Session, vendor: Vendor, meal_id: uuid.UUID | str, data: dict[str, Any]) -> Meal:
    meal = get_own_meal(db, vendor, meal_id)
    if data.get("slot") is not None:
        validate_slot(data["slot"])
    for key in ("slot", "name", "description", "is_veg", "image_url", "active"):
        if key in data and data[key] is not None:
            setattr(meal, key, data[key])
    db.commit()
    db.refresh(meal)
    return meal


def delete_meal(db: Session, vendor: Vendor, meal_id: uuid.UUID | str) -> None:
    meal = get_own_meal(db, vendor, meal_id)
    db.delete(meal)
    db.commit()


def browse_vendors(
    db: Session,
    zone: Optional[str] = None,
    slot: Optional[str] = None,
    veg_only: Optional[bool] = None,
    search: Optional[str] = None,
) -> list[Vendor]:
    query = db.query(Vendor).filter(Vendor.status == "active")
    if zone:
        query = query.filter(Vendor.zone == zone)
    if veg_only is not None:
        query = query.filter(Vendor.veg_only.is_(veg_only))
    if search:
        like = f"%{search}%"
        query = query.filter(Vendor.display_name.ilike(like) | Vendor.cuisine.ilike(like))
    vendors = query.order_by(Vendor.display_name.asc()).all()
    if slot:
        vendors = [v for v in vendors if any(s.slot == slot and s.is_enabled for s in v.slots)]
    return vendors


def serialize_slot(row: VendorSlot) -> dict[str, Any]:
    return {
        "slot": row.slot,
        "delivery_window_start": row.delivery_window_start.strftime("%H:%M"),
        "delivery_window_end": row.delivery_window_end.strftime("%H:%M"),
        "base_price": float(row.base_price or 0),
        "capacity": row.capacity,
        "is_enabled": row.is_enabled,
    }


def serialize_meal(meal: Meal) -> dict[str, Any]:
    return {
        "id": str(meal.id),
        "slot": meal.slot,
        "name": meal.name,
        "description": meal.description,
        "is_veg": meal.is_veg,
        "image_url": meal.image_url,
        "active": meal.active,
    }


def serialize_vendor(vendor: Vendor, include_slots: bool = True) -> dict[str, Any]:
    data = {
        "id": str(vendor.id),
        "display_name": vendor.display_name,
        "slug": vendor.slug,
        "zone": vendor.zone,
        "bio": vendor.bio,
        "cuisine": vendor.cuisine,
        "veg_only": vendor.veg_only,
        "status": vendor.status,
    }
    if include_slots:
        data["slots"] = [serialize_slot(s) for s in sorted(vendor.slots, key=lambda s: SLOTS.index(s.slot))]
    return data


def _as_uuid(value: uuid.UUID | str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise NotFoundError("Resource not found")


def as_uuid(value: uuid.UUID | str) -> uuid.UUID:
    return _as_uuid(value)


def ordered_slots(slots: Iterable[str]) -> list[str]:
    return sorted(set(slots), key=SLOTS.index)
