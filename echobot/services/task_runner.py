"""
Task Runner: the fire action of every echo job.

On each cron fire the payload is sent to the job's channel. Sends are
best-effort: a failure is logged and recorded, the schedule keeps running,
and nothing is raised back into the scheduler or the connection supervisor.
The next fire is the retry.
"""
import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List

from echobot.models.schemas import JobDefinition


logger = logging.getLogger(__name__)


class SendFailureMonitor:
    """
    Tracks failed sends per job over a rolling window.

    Observability only: it never pauses or removes a job.
    """

    def __init__(self, window_hours: int = 24):
        self.window = timedelta(hours=window_hours)
        self.failed_sends: Dict[str, List[datetime]] = defaultdict(list)
        self.last_errors: Dict[str, str] = {}

    def record_success(self, job_id: str) -> None:
        """Record a delivered payload - reset failure count."""
        if job_id in self.failed_sends:
            self.failed_sends[job_id] = []
            self.last_errors.pop(job_id, None)

    def record_failure(self, job_id: str, error: str) -> int:
        """
        Record a failed send.

        Returns the number of failures inside the window.
        """
        now = datetime.now(timezone.utc)
        self.failed_sends[job_id].append(now)

        cutoff = now - self.window
        self.failed_sends[job_id] = [
            t for t in self.failed_sends[job_id] if t > cutoff
        ]
        self.last_errors[job_id] = error
        return len(self.failed_sends[job_id])

    def get_status(self) -> Dict[str, Any]:
        """Get current failure status for all jobs."""
        return {
            job_id: {
                "failure_count": len(failures),
                "last_failure": failures[-1].isoformat() if failures else None,
                "last_error": self.last_errors.get(job_id),
            }
            for job_id, failures in self.failed_sends.items()
        }


class TaskRunner:
    """Builds the per-job fire actions handed to the scheduler."""

    def __init__(self, gateway, monitor: SendFailureMonitor):
        self.gateway = gateway
        self.monitor = monitor

    def build_action(
        self,
        guild_id: str,
        job: JobDefinition,
        channel: Any,
    ) -> Callable[[], Awaitable[bool]]:
        """Return the coroutine function run on every fire of ``job``."""
        identifier = job.identifier
        payload = job.payload

        async def fire() -> bool:
            try:
                await self.gateway.send(channel, payload)
            except Exception as e:
                failures = self.monitor.record_failure(identifier, str(e))
                logger.error(
                    f"[guild:{guild_id}] [job:{identifier}] Error in echo job "
                    f"({failures} failed send(s) in window): {e}"
                )
                return False

            self.monitor.record_success(identifier)
            logger.debug(f"[guild:{guild_id}] [job:{identifier}] Payload delivered")
            return True

        fire.__name__ = f"echo_{identifier}"
        return fire
