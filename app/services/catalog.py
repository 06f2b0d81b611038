"""
Admin-managed plan and trial type templates.
"""
from __future__ import annotations

import logging
import uuid
from typing import Any

from sqlalchemy.orm import Session

from app.core.exceptions import NotFoundError, ValidationError
from app.models import PERIOD_TYPES, PRICING_MODES, SLOTS, Plan, TrialType
from app.services.vendors import as_uuid, ordered_slots

logger = logging.getLogger(__name__)

PLAN_FIELDS = ("name", "period_type", "allowed_slots", "skip_limits", "skip_credit", "description", "active")
TRIAL_TYPE_FIELDS = (
    "name",
    "duration_days",
    "max_meals",
    "allowed_slots",
    "pricing_mode",
    "discount_pct",
    "fixed_price",
    "cooldown_days",
    "active",
)


def _check_slots(slots: Any) -> list[str]:
    if not slots:
        raise ValidationError("At least one slot must be allowed")
    unknown = [s for s in slots if s not in SLOTS]
    if unknown:
        raise ValidationError(f"Unknown slots: {', '.join(unknown)}")
    return ordered_slots(slots)


def validate_plan(data: dict[str, Any]) -> dict[str, Any]:
    if not (data.get("name") or "").strip():
        raise ValidationError("Plan name is required")
    if data.get("period_type") not in PERIOD_TYPES:
        raise ValidationError(f"Period type must be one of {', '.join(PERIOD_TYPES)}")
    slots = _check_slots(data.get("allowed_slots"))
    limits = data.get("skip_limits")
    if limits is None:
        raise ValidationError("Skip limits are required")
    cleaned_limits = {}
    for slot in slots:
        value = int(limits.get(slot, 0))
        if value < 0:
            raise ValidationError(f"Skip limit for {slot} must be >= 0")
        cleaned_limits[slot] = value
    return {
        **data,
        "name": data["name"].strip(),
        "allowed_slots": slots,
        "skip_limits": cleaned_limits,
        "skip_credit": bool(data.get("skip_credit", True)),
    }


def validate_trial_type(data: dict[str, Any]) -> dict[str, Any]:
    if not (data.get("name") or "").strip():
        raise ValidationError("Trial type name is required")
    if not data.get("duration_days") or int(data["duration_days"]) <= 0:
        raise ValidationError("Duration days must be greater than 0")
    if not data.get("max_meals") or int(data["max_meals"]) <= 0:
        raise ValidationError("Max meals must be greater than 0")
    slots = _check_slots(data.get("allowed_slots"))
    mode = data.get("pricing_mode")
    if mode not in PRICING_MODES:
        raise ValidationError(f"Pricing mode must be one of {', '.join(PRICING_MODES)}")
    if mode == "per_meal":
        pct = data.get("discount_pct")
        if pct is None or not 0 <= float(pct) <= 1:
            raise ValidationError("Discount percentage between 0 and 1 is required for per-meal pricing")
    if mode == "fixed":
        price = data.get("fixed_price")
        if price is None or float(price) < 0:
            raise ValidationError("Fixed price is required for fixed pricing")
    cooldown = data.get("cooldown_days")
    if cooldown is not None and int(cooldown) < 0:
        raise ValidationError("Cooldown days must be >= 0")
    return {
        **data,
        "name": data["name"].strip(),
        "allowed_slots": slots,
        "cooldown_days": 30 if cooldown is None else int(cooldown),
    }


def list_plans(db: Session, active_only: bool = False) -> list[Plan]:
    query = db.query(Plan)
    if active_only:
        query = query.filter(Plan.active.is_(True))
    return query.order_by(Plan.name.asc()).all()


def get_plan(db: Session, plan_id: uuid.UUID | str) -> Plan:
    plan = db.get(Plan, as_uuid(plan_id))
    if plan is None:
        raise NotFoundError("Plan not found")
    return plan


def create_plan(db: Session, data: dict[str, Any]) -> Plan:
    data = validate_plan(data)
    plan = Plan(**{k: data[k] for k in PLAN_FIELDS if k in data})
    db.add(plan)
    db.commit()
    db.refresh(plan)
    logger.info("Plan %s created", plan.name)
    return plan


def update_plan(db: Session, plan_id: uuid.UUID | str, data: dict[str, Any]) -> Plan:
    plan = get_plan(db, plan_id)
    merged = {k: getattr(plan, k) for k in PLAN_FIELDS}
    merged.update({k: v for k, v in data.items() if k in PLAN_FIELDS and v is not None})
    merged = validate_plan(merged)
    for key in PLAN_FIELDS:
        setattr(plan, key, merged[key])
    db.commit()
    db.refresh(plan)
    logger.info("Plan %s updated", plan.name)
    return plan


def list_trial_types(db: Session, active_only: bool = False) -> list[TrialType]:
    query = db.query(TrialType)
    if active_only:
        query = query.filter(TrialType.active.is_(True))
    return query.order_by(TrialType.name.asc()).all()


def get_trial_type(db: Session, trial_type_id: uuid.UUID | str) -> TrialType:
    trial_type = db.get(TrialType, as_uuid(trial_type_id))
    if trial_type is None:
        raise NotFoundError("Trial type not found")
    return trial_type


def create_trial_type(db: Session, data: dict[str, Any]) -> TrialType:
    data = validate_trial_type(data)
    trial_type = TrialType(**{k: data[k] for k in TRIAL_TYPE_FIELDS if k in data})
    db.add(trial_type)
    db.commit()
    db.refresh(trial_type)
    logger.info("Trial type %s created", trial_type.name)
    return trial_type


def update_trial_type(db: Session, trial_type_id: uuid.UUID | str, data: dict[str, Any]) -> TrialType:
    trial_type = get_trial_type(db, trial_type_id)
    merged = {k: getattr(trial_type, k) for k in TRIAL_TYPE_FIELDS}
    merged.update({k: v for k, v in data.items() if k in TRIAL_TYPE_FIELDS and v is not None})
    merged = validate_trial_type(merged)
    for key in TRIAL_TYPE_FIELDS:
        setattr(trial_type, key, merged[key])
    db.commit()
    db.refresh(trial_type)
    logger.info("Trial type %s updated", trial_type.name)
    return trial_type


def serialize_plan(plan: Plan) -> dict[str, Any]:
    return {"id": str(plan.id), **{k: getattr(plan, k) for k in PLAN_FIELDS}}


def serialize_trial_type(trial_type: TrialType) -> dict[str, Any]:
    return {"id": str(trial_type.id), **{k: getattr(trial_type, k) for k in TRIAL_TYPE_FIELDS}}
