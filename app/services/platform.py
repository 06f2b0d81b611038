from __future__ import annotations

import logging
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy.orm import Session

from app.config import settings
from app.core.exceptions import ValidationError
from app.models import REFUND_POLICIES, PlatformSetting

logger = logging.getLogger(__name__)

PLATFORM_SETTINGS_ID = 1

EDITABLE_FIELDS = (
    "delivery_fee_per_meal",
    "commission_pct",
    "skip_cutoff_hours",
    "credit_expiry_days",
    "pause_notice_hours",
    "resume_notice_hours",
    "cancel_notice_hours",
    "max_pause_days",
    "cancel_refund_policy",
    "timezone",
)


def default_platform_settings() -> PlatformSetting:
    return PlatformSetting(
        id=PLATFORM_SETTINGS_ID,
        delivery_fee_per_meal=settings.default_delivery_fee_per_meal,
        commission_pct=settings.default_commission_pct,
        skip_cutoff_hours=settings.default_skip_cutoff_hours,
        credit_expiry_days=settings.default_credit_expiry_days,
        pause_notice_hours=settings.default_pause_notice_hours,
        resume_notice_hours=settings.default_resume_notice_hours,
        cancel_notice_hours=settings.default_cancel_notice_hours,
        max_pause_days=settings.default_max_pause_days,
        cancel_refund_policy=settings.default_cancel_refund_policy,
        timezone=settings.default_timezone,
    )


def get_platform_settings(db: Session) -> PlatformSetting:
    """Return the single platform settings row, creating it from env defaults."""
    row = db.get(PlatformSetting, PLATFORM_SETTINGS_ID)
    if row is None:
        row = default_platform_settings()
        db.add(row)
        db.flush()
        logger.info("Platform settings row created from environment defaults")
    return row


def validate_platform_update(data: dict[str, Any]) -> None:
    for key in ("delivery_fee_per_meal", "skip_cutoff_hours", "credit_expiry_days",
                "pause_notice_hours", "resume_notice_hours", "cancel_notice_hours"):
        if key in data and data[key] is not None and data[key] < 0:
            raise ValidationError(f"{key.replace('_', ' ').capitalize()} must be >= 0")
    if data.get("commission_pct") is not None and not 0 <= data["commission_pct"] <= 1:
        raise ValidationError("Commission percentage must be between 0 and 1")
    if data.get("max_pause_days") is not None and data["max_pause_days"] < 1:
        raise ValidationError("Max pause days must be >= 1")
    policy = data.get("cancel_refund_policy")
    if policy is not None and policy not in REFUND_POLICIES:
        raise ValidationError(f"Cancel refund policy must be one of {', '.join(REFUND_POLICIES)}")
    tz_name = data.get("timezone")
    if tz_name is not None:
        try:
            ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValidationError(f"Unknown timezone: {tz_name}")


def update_platform_settings(db: Session, data: dict[str, Any]) -> PlatformSetting:
    data = {k: v for k, v in data.items() if k in EDITABLE_FIELDS and v is not None}
    validate_platform_update(data)
    row = get_platform_settings(db)
    for key, value in data.items():
        setattr(row, key, value)
    db.commit()
    db.refresh(row)
    logger.info("Platform settings updated: %s", sorted(data))
    return row


def serialize_platform_settings(row: PlatformSetting) -> dict[str, Any]:
    return {key: getattr(row, key) for key in EDITABLE_FIELDS} | {
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }
