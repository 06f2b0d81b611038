from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from app.config import settings
from app.core.security import hash_password
from app.models import Plan, TrialType, User
from app.services.platform import get_platform_settings

PLAN_SEED_DATA: list[dict[str, Any]] = [
    {
        "name": "Weekly",
        "period_type": "weekly",
        "allowed_slots": ["breakfast", "lunch", "dinner"],
        "skip_limits": {"breakfast": 2, "lunch": 2, "dinner": 2},
        "skip_credit": True,
        "description": "Monday to Sunday deliveries, billed every week",
    },
    {
        "name": "Monthly",
        "period_type": "monthly",
        "allowed_slots": ["breakfast", "lunch", "dinner"],
        "skip_limits": {"breakfast": 6, "lunch": 6, "dinner": 6},
        "skip_credit": True,
        "description": "Calendar month deliveries, billed on the 1st",
    },
]

TRIAL_TYPE_SEED_DATA: list[dict[str, Any]] = [
    {
        "name": "3-day taster",
        "duration_days": 3,
        "max_meals": 3,
        "allowed_slots": ["lunch", "dinner"],
        "pricing_mode": "per_meal",
        "discount_pct": 0.2,
        "cooldown_days": 30,
    },
]


def seed_defaults(db: Session) -> int:
    """Create the platform settings row, starter plans and trial types, and the bootstrap admin."""
    get_platform_settings(db)
    inserted = 0
    existing_plans = {name for (name,) in db.query(Plan.name).all()}
    for item in PLAN_SEED_DATA:
        if item["name"] not in existing_plans:
            db.add(Plan(**item))
            inserted += 1
    existing_trials = {name for (name,) in db.query(TrialType.name).all()}
    for item in TRIAL_TYPE_SEED_DATA:
        if item["name"] not in existing_trials:
            db.add(TrialType(**item))
            inserted += 1

    if settings.admin_email and settings.admin_password:
        email = settings.admin_email.strip().lower()
        admin = db.query(User).filter(User.email == email).first()
        if admin is None:
            db.add(
                User(
                    email=email,
                    full_name="Platform Admin",
                    password_hash=hash_password(settings.admin_password.get_secret_value()),
                    roles=["admin"],
                )
            )
            inserted += 1
        elif "admin" not in (admin.roles or []):
            admin.roles = list(admin.roles or []) + ["admin"]

    db.commit()
    return inserted
