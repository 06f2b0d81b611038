"""Shared API auth dependencies."""
from __future__ import annotations

from typing import Any, NoReturn

from fastapi import Header, HTTPException, status

from app.config import settings
from app.core.exceptions import AppError
from app.core.security import get_current_user, get_optional_user, require_roles
from app.services.results import ActionResult

require_customer = require_roles("customer")
require_vendor = require_roles("vendor")
require_admin = require_roles("admin")


def raise_app_error(exc: AppError) -> NoReturn:
    raise HTTPException(status_code=exc.status_code, detail={"code": exc.code, "message": exc.message})


def unwrap(result: ActionResult) -> Any:
    """Return the payload of a successful result or raise the mapped HTTP error."""
    if result.success:
        return result.data
    raise HTTPException(
        status_code=result.status_code,
        detail={"code": result.error_code, "message": result.error},
    )


def verify_cron_secret(authorization: str | None = Header(default=None)) -> None:
    secret = settings.cron_secret.get_secret_value() if settings.cron_secret else None
    if not secret:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="CRON_SECRET not configured")
    if authorization != f"Bearer {secret}":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid cron secret")


__all__ = [
    "get_current_user",
    "get_optional_user",
    "raise_app_error",
    "require_admin",
    "require_customer",
    "require_roles",
    "require_vendor",
    "unwrap",
    "verify_cron_secret",
]
