"""
Delivery zones. Vendors name the zone they cook for; only active zones are offered.
"""
from __future__ import annotations

import logging
import uuid
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.core.exceptions import NotFoundError, ValidationError
from app.models import Vendor, Zone
from app.services.vendors import as_uuid

logger = logging.getLogger(__name__)


def list_zones(db: Session, active_only: bool = False) -> list[Zone]:
    query = db.query(Zone)
    if active_only:
        query = query.filter(Zone.active.is_(True))
    return query.order_by(Zone.name.asc()).all()


def get_zone(db: Session, zone_id: uuid.UUID | str) -> Zone:
    zone = db.get(Zone, as_uuid(zone_id))
    if zone is None:
        raise NotFoundError("Zone not found")
    return zone


def _clean_name(db: Session, name: Optional[str], exclude_id: Optional[uuid.UUID] = None) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Zone name is required")
    query = db.query(Zone.id).filter(Zone.name == name)
    if exclude_id is not None:
        query = query.filter(Zone.id != exclude_id)
    if query.first():
        raise ValidationError("Zone with this name already exists")
    return name


def create_zone(db: Session, name: str, polygon: Optional[dict[str, Any]] = None) -> Zone:
    zone = Zone(name=_clean_name(db, name), polygon=polygon, active=True)
    db.add(zone)
    db.commit()
    db.refresh(zone)
    logger.info("Zone %s created", zone.name)
    return zone


def update_zone(db: Session, zone_id: uuid.UUID | str, data: dict[str, Any]) -> Zone:
    """Rename or reshape a zone. Vendors in a renamed zone follow the new name."""
    zone = get_zone(db, zone_id)
    if "name" in data and data["name"] is not None:
        name = _clean_name(db, data["name"], exclude_id=zone.id)
        if name != zone.name:
            db.query(Vendor).filter(Vendor.zone == zone.name).update(
                {Vendor.zone: name}, synchronize_session="fetch"
            )
            zone.name = name
    if "polygon" in data:
        zone.polygon = data["polygon"]
    db.commit()
    db.refresh(zone)
    logger.info("Zone %s updated", zone.name)
    return zone


def toggle_zone_active(db: Session, zone_id: uuid.UUID | str) -> Zone:
    zone = get_zone(db, zone_id)
    zone.active = not zone.active
    db.commit()
    db.refresh(zone)
    logger.info("Zone %s %s", zone.name, "activated" if zone.active else "deactivated")
    return zone


def active_vendor_count(db: Session, zone: Zone) -> int:
    return db.query(Vendor).filter(Vendor.zone == zone.name, Vendor.status == "active").count()


def delete_zone(db: Session, zone_id: uuid.UUID | str) -> Zone:
    """Soft delete: the zone is deactivated once no active vendor uses it."""
    zone = get_zone(db, zone_id)
    count = active_vendor_count(db, zone)
    if count:
        raise ValidationError(
            f"Cannot delete zone with {count} active vendor(s). Please reassign vendors first."
        )
    zone.active = False
    db.commit()
    db.refresh(zone)
    logger.info("Zone %s deleted", zone.name)
    return zone


def serialize_zone(zone: Zone, vendor_count: Optional[int] = None) -> dict[str, Any]:
    data = {
        "id": str(zone.id),
        "name": zone.name,
        "polygon": zone.polygon,
        "active": zone.active,
    }
    if vendor_count is not None:
        data["active_vendors"] = vendor_count
    return data
