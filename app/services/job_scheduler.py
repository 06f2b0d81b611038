"""
Lightweight in-process scheduler for the maintenance jobs.
Each job has a cron expression; next run times are kept in memory.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, Set
from zoneinfo import ZoneInfo

from croniter import croniter
from sqlalchemy.exc import SQLAlchemyError

from app.config import settings
from app.database import SessionLocal
from app.models import PlatformSetting
from app.services.cycles import utcnow
from app.services.jobs import run_job
from app.services.platform import PLATFORM_SETTINGS_ID

logger = logging.getLogger(__name__)

# Cron expressions are evaluated in the platform timezone.
DEFAULT_SCHEDULES: Dict[str, str] = {
    "daily_maintenance": "0 0 * * *",
    "refunds": "*/15 * * * *",
}


class JobScheduler:
    """Polls job schedules and executes due jobs."""

    def __init__(
        self,
        poll_seconds: int = 60,
        schedules: Dict[str, str] | None = None,
        tz_name: str | None = None,
    ):
        self.poll_seconds = poll_seconds
        self.schedules = dict(schedules or DEFAULT_SCHEDULES)
        self.tz_name = tz_name
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._running_jobs: Set[str] = set()
        self._next_run: Dict[str, datetime | None] = {}

    def start(self) -> None:
        """Start scheduler loop as background task."""
        if self._task and not self._task.done():
            return
        self._stop_event.clear()
        self.tz_name = self.tz_name or self._platform_timezone()
        now = utcnow()
        self._next_run = {
            job: self._compute_next_run(expr, now, self.tz_name) for job, expr in self.schedules.items()
        }
        self._task = asyncio.create_task(self._run_loop())
        logger.info("JobScheduler started with %s", sorted(self.schedules))

    async def stop(self) -> None:
        """Stop scheduler loop and wait for completion."""
        self._stop_event.set()
        if self._task:
            await self._task
        logger.info("JobScheduler stopped")

    async def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.tick()
            except Exception as exc:
                logger.exception("JobScheduler tick failed: %s", exc)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_seconds)
            except asyncio.TimeoutError:
                pass

    def due_jobs(self, now: datetime) -> list[str]:
        return [
            job
            for job, next_run in self._next_run.items()
            if next_run is not None and next_run <= now and job not in self._running_jobs
        ]

    async def tick(self, now: datetime | None = None) -> list[str]:
        now = now or utcnow()
        due = self.due_jobs(now)
        for job in due:
            # Next run is advanced before the job executes.
            self._next_run[job] = self._compute_next_run(self.schedules[job], now, self.tz_name)
            self._running_jobs.add(job)
            await self._execute_job(job)
        return due

    async def _execute_job(self, job_type: str) -> None:
        db = SessionLocal()
        try:
            run = await run_job(db, job_type)
            logger.info("Scheduled run complete for job %s: %s", job_type, run.status)
        except Exception as exc:
            db.rollback()
            logger.exception("Scheduled execution failed for job %s: %s", job_type, exc)
        finally:
            self._running_jobs.discard(job_type)
            db.close()

    @staticmethod
    def _platform_timezone() -> str:
        db = SessionLocal()
        try:
            row = db.get(PlatformSetting, PLATFORM_SETTINGS_ID)
            return row.timezone if row is not None and row.timezone else settings.default_timezone
        except SQLAlchemyError as exc:
            logger.warning("Could not read platform timezone, using %s: %s", settings.default_timezone, exc)
            return settings.default_timezone
        finally:
            db.close()

    @staticmethod
    def _compute_next_run(
        schedule_cron: str | None, from_dt: datetime, tz_name: str | None = None
    ) -> datetime | None:
        """Next run after naive UTC ``from_dt``, with the cron read in ``tz_name`` (UTC if unset)."""
        if not schedule_cron:
            return None
        tz = ZoneInfo(tz_name or "UTC")
        local = from_dt.replace(tzinfo=timezone.utc).astimezone(tz)
        try:
            next_local = croniter(schedule_cron, local).get_next(datetime)
            return next_local.astimezone(timezone.utc).replace(tzinfo=None)
        except (ValueError, KeyError) as exc:
            logger.warning("Invalid cron expression %r: %s", schedule_cron, exc)
            return None
