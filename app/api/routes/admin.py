"""
Admin API: vendor approval, zones, plan and trial templates, platform settings and job runs.
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.api.dependencies import raise_app_error, require_admin
from app.core.exceptions import AppError
from app.database import get_db
from app.models import Credit, Invoice, JobRun, Refund, Subscription, User, Vendor
from app.schemas.admin import (
    PlanIn,
    PlanUpdate,
    PlatformSettingsUpdate,
    TrialTypeIn,
    TrialTypeUpdate,
    VendorStatusUpdate,
    ZoneIn,
    ZoneUpdate,
)
from app.services import catalog, zones
from app.services.jobs import serialize_job_run
from app.services.lifecycle import serialize_subscription
from app.services.payments import serialize_refund
from app.services.platform import get_platform_settings, serialize_platform_settings, update_platform_settings
from app.services.vendors import serialize_vendor, set_vendor_status

router = APIRouter()


@router.get("/vendors")
async def list_vendors(
    status: Optional[str] = None, db: Session = Depends(get_db), _: User = Depends(require_admin)
) -> dict:
    query = db.query(Vendor)
    if status:
        query = query.filter(Vendor.status == status)
    rows = query.order_by(Vendor.created_at.desc()).all()
    return {"items": [serialize_vendor(v) for v in rows], "total": len(rows)}


@router.post("/vendors/{vendor_id}/status")
async def update_vendor_status(
    vendor_id: str, payload: VendorStatusUpdate, db: Session = Depends(get_db), _: User = Depends(require_admin)
) -> dict:
    try:
        vendor = set_vendor_status(db, vendor_id, payload.status)
    except AppError as exc:
        raise_app_error(exc)
    return serialize_vendor(vendor)


@router.get("/plans")
async def list_plans(db: Session = Depends(get_db), _: User = Depends(require_admin)) -> dict:
    return {"items": [catalog.serialize_plan(p) for p in catalog.list_plans(db)]}


@router.post("/plans", status_code=201)
async def create_plan(payload: PlanIn, db: Session = Depends(get_db), _: User = Depends(require_admin)) -> dict:
    try:
        plan = catalog.create_plan(db, payload.model_dump())
    except AppError as exc:
        raise_app_error(exc)
    return catalog.serialize_plan(plan)


@router.patch("/plans/{plan_id}")
async def update_plan(
    plan_id: str, payload: PlanUpdate, db: Session = Depends(get_db), _: User = Depends(require_admin)
) -> dict:
    try:
        plan = catalog.update_plan(db, plan_id, payload.model_dump(exclude_unset=True))
    except AppError as exc:
        raise_app_error(exc)
    return catalog.serialize_plan(plan)


@router.get("/trial-types")
async def list_trial_types(db: Session = Depends(get_db), _: User = Depends(require_admin)) -> dict:
    return {"items": [catalog.serialize_trial_type(t) for t in catalog.list_trial_types(db)]}


@router.post("/trial-types", status_code=201)
async def create_trial_type(
    payload: TrialTypeIn, db: Session = Depends(get_db), _: User = Depends(require_admin)
) -> dict:
    try:
        trial_type = catalog.create_trial_type(db, payload.model_dump())
    except AppError as exc:
        raise_app_error(exc)
    return catalog.serialize_trial_type(trial_type)


@router.patch("/trial-types/{trial_type_id}")
async def update_trial_type(
    trial_type_id: str, payload: TrialTypeUpdate, db: Session = Depends(get_db), _: User = Depends(require_admin)
) -> dict:
    try:
        trial_type = catalog.update_trial_type(db, trial_type_id, payload.model_dump(exclude_unset=True))
    except AppError as exc:
        raise_app_error(exc)
    return catalog.serialize_trial_type(trial_type)


@router.get("/zones")
async def list_zones(db: Session = Depends(get_db), _: User = Depends(require_admin)) -> dict:
    return {
        "items": [
            zones.serialize_zone(z, zones.active_vendor_count(db, z)) for z in zones.list_zones(db)
        ]
    }


@router.post("/zones", status_code=201)
async def create_zone(payload: ZoneIn, db: Session = Depends(get_db), _: User = Depends(require_admin)) -> dict:
    try:
        zone = zones.create_zone(db, payload.name, payload.polygon)
    except AppError as exc:
        raise_app_error(exc)
    return zones.serialize_zone(zone)


@router.patch("/zones/{zone_id}")
async def update_zone(
    zone_id: str, payload: ZoneUpdate, db: Session = Depends(get_db), _: User = Depends(require_admin)
) -> dict:
    try:
        zone = zones.update_zone(db, zone_id, payload.model_dump(exclude_unset=True))
    except AppError as exc:
        raise_app_error(exc)
    return zones.serialize_zone(zone)


@router.post("/zones/{zone_id}/toggle")
async def toggle_zone(zone_id: str, db: Session = Depends(get_db), _: User = Depends(require_admin)) -> dict:
    try:
        zone = zones.toggle_zone_active(db, zone_id)
    except AppError as exc:
        raise_app_error(exc)
    return zones.serialize_zone(zone)


@router.delete("/zones/{zone_id}")
async def delete_zone(zone_id: str, db: Session = Depends(get_db), _: User = Depends(require_admin)) -> dict:
    try:
        zone = zones.delete_zone(db, zone_id)
    except AppError as exc:
        raise_app_error(exc)
    return zones.serialize_zone(zone)


@router.get("/settings")
async def platform_settings(db: Session = Depends(get_db), _: User = Depends(require_admin)) -> dict:
    row = get_platform_settings(db)
    db.commit()
    return serialize_platform_settings(row)


@router.patch("/settings")
async def patch_platform_settings(
    payload: PlatformSettingsUpdate, db: Session = Depends(get_db), _: User = Depends(require_admin)
) -> dict:
    try:
        row = update_platform_settings(db, payload.model_dump(exclude_unset=True))
    except AppError as exc:
        raise_app_error(exc)
    return serialize_platform_settings(row)


@router.get("/subscriptions")
async def subscriptions_overview(
    status: Optional[str] = None,
    limit: int = 50,
    db: Session = Depends(get_db),
    _: User = Depends(require_admin),
) -> dict:
    counts = dict(db.query(Subscription.status, func.count(Subscription.id)).group_by(Subscription.status).all())
    query = db.query(Subscription)
    if status:
        query = query.filter(Subscription.status == status)
    rows = query.order_by(Subscription.created_at.desc()).limit(max(1, min(limit, 500))).all()
    pending_invoices = db.query(func.count(Invoice.id)).filter(Invoice.status == "pending_payment").scalar() or 0
    outstanding_credit = (
        db.query(func.coalesce(func.sum(Credit.amount), 0)).filter(Credit.status == "available").scalar() or 0
    )
    return {
        "counts": counts,
        "pending_invoices": int(pending_invoices),
        "outstanding_credit": round(float(outstanding_credit), 2),
        "items": [serialize_subscription(s) for s in rows],
    }


@router.get("/refunds")
async def list_refunds(
    status: Optional[str] = None, db: Session = Depends(get_db), _: User = Depends(require_admin)
) -> dict:
    query = db.query(Refund)
    if status:
        query = query.filter(Refund.status == status)
    rows = query.order_by(Refund.created_at.desc()).all()
    return {"items": [serialize_refund(r) for r in rows]}


@router.get("/job-runs")
async def list_job_runs(
    job_type: Optional[str] = None,
    limit: int = 50,
    db: Session = Depends(get_db),
    _: User = Depends(require_admin),
) -> dict:
    query = db.query(JobRun)
    if job_type:
        query = query.filter(JobRun.job_type == job_type)
    rows = query.order_by(JobRun.started_at.desc()).limit(max(1, min(limit, 500))).all()
    return {"items": [serialize_job_run(r) for r in rows]}
