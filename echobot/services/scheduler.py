"""
Cron scheduling for echo jobs.

Wraps APScheduler's AsyncIOScheduler:
- Parses five-field (``m h dom mon dow``) and six-field (``s m h dom mon dow``)
  cron expressions into CronTriggers
- Hands out ScheduledTask handles that can be started and stopped
  independently, one APScheduler job per handle
"""
import logging
import threading
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional
from uuid import uuid4

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from echobot.core.exceptions import InvalidExpressionError


logger = logging.getLogger(__name__)

FireAction = Callable[[], Awaitable[Any]]

# Classic cron numbers weekdays from Sunday (0 and 7); APScheduler from Monday.
_WEEKDAY_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")


def _cron_day_of_week(field: str, expression: str) -> str:
    """
    Translate a crontab day-of-week field into APScheduler syntax.

    Each comma-separated part is translated on its own: numeric parts become
    weekday names, named parts (``mon``, ``mon-fri``) pass through.
    """
    if field in ("*", "?"):
        return "*"

    days: List[int] = []
    named: List[str] = []
    for part in field.split(","):
        base, _, step_str = part.partition("/")
        if step_str and not (step_str.isdigit() and int(step_str) > 0):
            raise InvalidExpressionError(
                f"Invalid day-of-week step: {part}", expression=expression
            )
        step = int(step_str) if step_str else 1

        if base == "*":
            start, end = 0, 6
        elif "-" in base:
            lo, _, hi = base.partition("-")
            if not (lo.isdigit() and hi.isdigit()):
                named.append(part.lower())
                continue
            start, end = int(lo), int(hi)
        elif base.isdigit():
            start = int(base)
            # N/step runs to the end of the week, 7 included
            end = 7 if step_str else start
        else:
            named.append(part.lower())
            continue

        if start > 7 or end > 7 or start > end:
            raise InvalidExpressionError(
                f"Invalid day-of-week value: {part}", expression=expression
            )
        days.extend(day % 7 for day in range(start, end + 1, step))

    translated = [_WEEKDAY_NAMES[day] for day in sorted(set(days))]
    return ",".join(translated + named)


def build_trigger(expression: str, timezone: str = "UTC") -> CronTrigger:
    """
    Build a CronTrigger from a crontab expression.

    Raises:
        InvalidExpressionError: wrong field count or an out-of-range field
    """
    fields = expression.split()
    if len(fields) == 5:
        second = "0"
        minute, hour, day, month, day_of_week = fields
    elif len(fields) == 6:
        second, minute, hour, day, month, day_of_week = fields
    else:
        raise InvalidExpressionError(
            f"Expected 5 or 6 fields, got {len(fields)}",
            expression=expression,
        )

    try:
        return CronTrigger(
            second=second,
            minute=minute,
            hour=hour,
            day=day,
            month=month,
            day_of_week=_cron_day_of_week(day_of_week, expression),
            timezone=timezone,
        )
    except ValueError as e:
        raise InvalidExpressionError(
            f"Invalid cron expression: {expression}",
            expression=expression,
            reason=str(e),
        ) from e


class ScheduledTask:
    """
    Handle for one cron-bound action.

    ``start`` adds a dedicated APScheduler job; ``stop`` removes it.
    Both are idempotent.
    """

    def __init__(
        self,
        owner: "EchoScheduler",
        trigger: CronTrigger,
        action: FireAction,
        name: str,
    ):
        self._owner = owner
        self.trigger = trigger
        self.action = action
        self.name = name
        self._job = None
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._job is not None

    @property
    def next_run_time(self) -> Optional[datetime]:
        job = self._job
        return getattr(job, "next_run_time", None) if job is not None else None

    def start(self) -> None:
        with self._lock:
            if self._job is not None:
                return
            scheduler = self._owner.scheduler
            if scheduler is None:
                raise RuntimeError("Scheduler not initialized")
            # Unique per handle: stopping a replaced handle must never remove its successor
            self._job = scheduler.add_job(
                self.action,
                self.trigger,
                id=f"echo:{self.name}:{uuid4().hex[:12]}",
                name=self.name,
            )
        logger.debug(f"Started task {self.name}")

    def stop(self) -> None:
        with self._lock:
            job, self._job = self._job, None
        if job is None:
            return
        try:
            job.remove()
        except JobLookupError:
            pass
        logger.debug(f"Stopped task {self.name}")


class EchoScheduler:
    """
    Process-wide cron scheduler for echo jobs.

    Owns the AsyncIOScheduler; job handles are created through ``schedule``
    and owned by the JobRegistry.
    """

    def __init__(self, timezone: str = "UTC", misfire_grace_seconds: int = 60):
        self.timezone = timezone
        self.misfire_grace_seconds = misfire_grace_seconds
        self.scheduler: Optional[AsyncIOScheduler] = None
        self.is_running = False

    def create_scheduler(self) -> AsyncIOScheduler:
        """Create and configure the scheduler."""
        jobstores = {
            'default': MemoryJobStore()
        }

        executors = {
            'default': AsyncIOExecutor()
        }

        job_defaults = {
            'coalesce': True,  # Combine missed runs into one
            'max_instances': 1,  # Only one instance of each job at a time
            'misfire_grace_time': self.misfire_grace_seconds
        }

        return AsyncIOScheduler(
            jobstores=jobstores,
            executors=executors,
            job_defaults=job_defaults,
            timezone=self.timezone
        )

    def start(self) -> None:
        """Start the scheduler. Must be called from inside the running event loop."""
        if self.is_running:
            logger.warning("Scheduler is already running")
            return

        self.scheduler = self.create_scheduler()
        self.scheduler.start()
        self.is_running = True
        logger.info("Echo scheduler started")

    def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if self.scheduler and self.is_running:
            self.scheduler.shutdown(wait=True)
            self.is_running = False
            logger.info("Echo scheduler stopped")

    def validate_expression(self, expression: str) -> CronTrigger:
        """Parse ``expression`` without scheduling anything."""
        return build_trigger(expression, self.timezone)

    def schedule(self, expression: str, action: FireAction, name: str) -> ScheduledTask:
        """
        Bind ``action`` to ``expression``. The returned task is not started.

        Raises:
            InvalidExpressionError: if the expression cannot be parsed
        """
        trigger = build_trigger(expression, self.timezone)
        return ScheduledTask(self, trigger, action, name)

    def get_jobs_status(self) -> List[Dict[str, Any]]:
        """Get status of all scheduled jobs."""
        if not self.scheduler:
            return []

        return [
            {
                "id": job.id,
                "name": job.name,
                "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
            }
            for job in self.scheduler.get_jobs()
        ]
