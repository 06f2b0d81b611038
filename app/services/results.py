"""Success/error result objects returned by service operations."""
from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.exceptions import AppError

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


@dataclass
class ActionResult:
    success: bool
    data: Any = None
    error: str | None = None
    error_code: str | None = None
    status_code: int = 200

    @classmethod
    def ok(cls, data: Any = None) -> "ActionResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, exc: AppError) -> "ActionResult":
        return cls(
            success=False,
            error=exc.message,
            error_code=exc.code,
            status_code=exc.status_code,
        )

    def to_dict(self) -> dict[str, Any]:
        if self.success:
            return {"success": True, "data": self.data}
        return {"success": False, "error": self.error, "error_code": self.error_code}


def action(name: str, commit: bool = True) -> Callable[[F], F]:
    """
    Wrap a service method so domain errors become a failed ActionResult.

    The wrapped object must expose ``self.db``; the session is rolled back on
    any failure so a rejected action leaves no partial writes behind. Read-only
    methods pass ``commit=False`` and are rolled back on success too.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(self, *args: Any, **kwargs: Any) -> ActionResult:
            db: Session = self.db
            try:
                data = func(self, *args, **kwargs)
                if commit:
                    db.commit()
                else:
                    db.rollback()
                return ActionResult.ok(data)
            except AppError as exc:
                db.rollback()
                logger.warning("%s rejected: %s (%s)", name, exc.message, exc.code)
                return ActionResult.fail(exc)
            except SQLAlchemyError:
                db.rollback()
                logger.exception("%s failed on a database error", name)
                return ActionResult(
                    success=False,
                    error="An unexpected error occurred",
                    error_code="InternalError",
                    status_code=500,
                )

        return wrapper  # type: ignore[return-value]

    return decorator
