"""
Decay Scheduler

Drives the decay engine from APScheduler jobs:

- ``decay-full``: one full cycle per day at ``SchedulerConfig.daily_run_at``
  (a UTC cron trigger)
- ``urgent:<rule_id>``: each urgent rule on an interval trigger of
  ``urgent_interval_minutes``, first run as soon as the rule is seen

Every job keeps its own ``next_run_time`` in the APScheduler job store.
``start()`` hands the jobs to the ``AsyncIOScheduler`` and adds a poll job
that picks up newly urgent rules and resumes timed-out cycles. ``tick()``
runs whatever is due at a given instant through the same job store while
the scheduler is not started; tests and ``growthbank scheduler run --once``
use it.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from apscheduler.job import Job
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from pydantic import BaseModel

from .engine import DecayRuleEngine
from .models import CycleReport, SchedulerConfig
from .rules import DecayRuleRepository

logger = logging.getLogger(__name__)

FULL_JOB_ID = "decay-full"
POLL_JOB_ID = "decay-poll"
URGENT_JOB_PREFIX = "urgent:"

_JOB_DEFAULTS = {
    "coalesce": True,
    "max_instances": 1,
    "misfire_grace_time": None,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _after(moment: datetime) -> datetime:
    # Trigger lookups return fire times >= now; nudge past ``moment``
    return moment + timedelta(microseconds=1)


class SchedulerStatus(BaseModel):
    running: bool
    next_full_run: Optional[datetime] = None
    urgent_rules: dict[str, datetime] = {}
    pending_checkpoint: Optional[str] = None
    last_run_at: Optional[datetime] = None
    last_report: Optional[CycleReport] = None


class DecayScheduler:
    """Runs full and urgent decay cycles when they fall due."""

    def __init__(
        self,
        engine: DecayRuleEngine,
        rules: DecayRuleRepository,
        config: Optional[SchedulerConfig] = None,
    ):
        self._engine = engine
        self._rules = rules
        self.config = config or SchedulerConfig()
        self._daily_trigger = CronTrigger(
            hour=self.config.daily_run_at.hour,
            minute=self.config.daily_run_at.minute,
            timezone=timezone.utc,
        )
        self._scheduler = self._new_scheduler()
        self._checkpoint: Optional[str] = None
        self._last_run_at: Optional[datetime] = None
        self._last_report: Optional[CycleReport] = None

    @staticmethod
    def _new_scheduler() -> AsyncIOScheduler:
        return AsyncIOScheduler(timezone=timezone.utc, job_defaults=dict(_JOB_DEFAULTS))

    # -- Jobs ---------------------------------------------------------

    def next_daily_run(self, after: datetime) -> datetime:
        """First daily run time strictly after ``after``."""
        return self._daily_trigger.get_next_fire_time(None, _after(after))

    def _urgent_jobs(self) -> dict[str, Job]:
        return {
            job.id[len(URGENT_JOB_PREFIX):]: job
            for job in self._scheduler.get_jobs()
            if job.id.startswith(URGENT_JOB_PREFIX)
        }

    def _ensure_full_job(self, now: datetime) -> None:
        if self._scheduler.get_job(FULL_JOB_ID) is None:
            self._scheduler.add_job(
                self._full_job,
                self._daily_trigger,
                id=FULL_JOB_ID,
                name="Daily decay cycle",
                next_run_time=self.next_daily_run(now),
            )

    async def refresh(self, now: Optional[datetime] = None) -> None:
        """Sync the job store with the rule repository.

        Adds the daily job if missing, schedules newly urgent rules to run
        at ``now`` and removes jobs for rules that are no longer urgent.
        """
        now = now or _utcnow()
        self._ensure_full_job(now)
        urgent = {rule.rule_id for rule in await self._rules.list_urgent()}
        scheduled = self._urgent_jobs()

        for rule_id in scheduled.keys() - urgent:
            self._scheduler.remove_job(URGENT_JOB_PREFIX + rule_id)
            logger.info("Rule %s is no longer urgent; job removed", rule_id)
        for rule_id in sorted(urgent - scheduled.keys()):
            self._scheduler.add_job(
                self._urgent_job,
                IntervalTrigger(
                    minutes=self.config.urgent_interval_minutes,
                    start_date=now,
                    timezone=timezone.utc,
                ),
                args=[rule_id],
                id=URGENT_JOB_PREFIX + rule_id,
                name=f"Urgent decay for {rule_id}",
                next_run_time=now,
            )

    def _due_jobs(self, now: datetime) -> list[Job]:
        due = [
            job for job in self._scheduler.get_jobs()
            if job.id != POLL_JOB_ID
            and job.next_run_time is not None
            and job.next_run_time <= now
        ]
        for job in due:
            self._scheduler.modify_job(
                job.id, next_run_time=job.trigger.get_next_fire_time(None, _after(now))
            )
        return due

    # -- Running ------------------------------------------------------

    async def tick(self, now: Optional[datetime] = None) -> list[CycleReport]:
        """Run every cycle that is due at ``now``."""
        now = now or _utcnow()
        await self.refresh(now)
        reports: list[CycleReport] = []

        if self._checkpoint is not None:
            reports.append(await self._run_full(now, checkpoint=self._checkpoint))

        due = self._due_jobs(now)
        full_due = any(job.id == FULL_JOB_ID for job in due)
        rule_ids = {
            job.id[len(URGENT_JOB_PREFIX):] for job in due
            if job.id.startswith(URGENT_JOB_PREFIX)
        }

        if full_due:
            reports.append(await self._run_full(now))
        # A full cycle at the same instant already covered them
        if rule_ids and not full_due:
            reports.append(await self._run_urgent(now, rule_ids))
        return reports

    async def _run_full(self, now: datetime, checkpoint: Optional[str] = None) -> CycleReport:
        report = await self._engine.run_cycle(now=now, checkpoint=checkpoint)
        self._checkpoint = report.checkpoint if report.timed_out else None
        self._record(now, report)
        return report

    async def _run_urgent(self, now: datetime, rule_ids: set[str]) -> CycleReport:
        report = await self._engine.run_cycle(now=now, urgent_only=True, rule_ids=rule_ids)
        self._record(now, report)
        return report

    def _record(self, now: datetime, report: CycleReport) -> None:
        self._last_run_at = now
        self._last_report = report

    async def _full_job(self) -> None:
        try:
            await self._run_full(_utcnow())
        except Exception:
            logger.exception("Daily decay cycle failed; next run is tomorrow")

    async def _urgent_job(self, rule_id: str) -> None:
        try:
            await self._run_urgent(_utcnow(), {rule_id})
        except Exception:
            logger.exception("Urgent decay cycle for %s failed", rule_id)

    async def _poll(self) -> None:
        now = _utcnow()
        try:
            await self.refresh(now)
            if self._checkpoint is not None:
                await self._run_full(now, checkpoint=self._checkpoint)
        except Exception:
            logger.exception("Decay scheduler tick failed; retrying next poll")

    async def start(self) -> None:
        """Start running jobs on the event loop."""
        if self._scheduler.running:
            return
        now = _utcnow()
        self._ensure_full_job(now)
        self._scheduler.add_job(
            self._poll,
            IntervalTrigger(
                seconds=self.config.poll_interval_seconds,
                start_date=now,
                timezone=timezone.utc,
            ),
            id=POLL_JOB_ID,
            name="Decay rule poll",
            next_run_time=now,
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info(
            "Decay scheduler started (daily at %s UTC, urgent every %d min)",
            self.config.daily_run_at.isoformat("minutes"),
            self.config.urgent_interval_minutes,
        )

    async def stop(self) -> None:
        """Stop the scheduler, keeping pending jobs for a later start or tick."""
        if not self._scheduler.running:
            return
        jobs = [job for job in self._scheduler.get_jobs() if job.id != POLL_JOB_ID]
        self._scheduler.shutdown(wait=False)
        # A shut-down scheduler hides its job store, so carry the jobs over
        self._scheduler = self._new_scheduler()
        for job in jobs:
            self._scheduler.add_job(
                job.func,
                job.trigger,
                args=job.args,
                id=job.id,
                name=job.name,
                next_run_time=job.next_run_time,
            )
        logger.info("Decay scheduler stopped")

    def status(self) -> SchedulerStatus:
        full_job = self._scheduler.get_job(FULL_JOB_ID)
        return SchedulerStatus(
            running=self._scheduler.running,
            next_full_run=full_job.next_run_time if full_job else None,
            urgent_rules={
                rule_id: job.next_run_time
                for rule_id, job in self._urgent_jobs().items()
            },
            pending_checkpoint=self._checkpoint,
            last_run_at=self._last_run_at,
            last_report=self._last_report,
        )
