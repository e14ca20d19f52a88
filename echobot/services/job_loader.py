"""
Guild Job Loader.

Reads a guild's persisted echo jobs, checks each one against the live
gateway, and registers and starts the valid ones. Every failure here is
guild-scoped: it is logged, the job (or the whole guild) is skipped, and
nothing is raised to the caller.
"""
import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from echobot.core.exceptions import InvalidExpressionError, StorageError
from echobot.models.schemas import JobDefinition
from echobot.services.registry import JobRegistry
from echobot.services.scheduler import EchoScheduler
from echobot.services.task_runner import TaskRunner


logger = logging.getLogger(__name__)

JOBS_KEY = "jobs"


class GuildJobLoader:
    """Loads one guild's echo jobs into the process-wide JobRegistry."""

    def __init__(
        self,
        storage,
        gateway,
        scheduler: EchoScheduler,
        registry: JobRegistry,
        runner: TaskRunner,
    ):
        self.storage = storage
        self.gateway = gateway
        self.scheduler = scheduler
        self.registry = registry
        self.runner = runner

    async def load_jobs(self, guild_id: str) -> int:
        """
        Load and start the active jobs of ``guild_id``.

        Returns:
            Number of jobs registered
        """
        try:
            raw_jobs = await self.storage.get(guild_id, JOBS_KEY) or []
        except StorageError as e:
            logger.error(f"[guild:{guild_id}] Could not read echo jobs, skipping guild: {e.details}")
            return 0

        if not isinstance(raw_jobs, list):
            logger.error(f"[guild:{guild_id}] Stored jobs are not a list, skipping guild")
            return 0

        registered = 0
        for index, item in enumerate(raw_jobs):
            if self.activate(guild_id, item, position=index):
                registered += 1

        logger.info(f"[guild:{guild_id}] {registered}/{len(raw_jobs)} echo job(s) started")
        return registered

    def activate(self, guild_id: str, item: Any, position: int = 0) -> bool:
        """Validate one stored job and, if runnable, register and start it."""
        try:
            job = item if isinstance(item, JobDefinition) else JobDefinition.model_validate(item)
        except PydanticValidationError as e:
            logger.error(
                f"[guild:{guild_id}] Malformed job at position {position}: "
                f"{e.error_count()} validation error(s)"
            )
            return False

        if not job.active:
            # A re-load after deactivation must not leave the old timer behind
            self.registry.unregister(job.identifier)
            return False

        channel = self.gateway.get_channel(job.text_channel_id)
        if channel is None:
            logger.error(
                f"[guild:{guild_id}] [job:{job.identifier}] "
                f"TextChannel not found: {job.text_channel_id}"
            )
            return False

        try:
            task = self.scheduler.schedule(
                job.expression,
                self.runner.build_action(guild_id, job, channel),
                name=job.identifier,
            )
        except InvalidExpressionError as e:
            logger.error(
                f"[guild:{guild_id}] [job:{job.identifier}] "
                f"Invalid expression '{job.expression}': {e.details.get('reason', e.message)}"
            )
            return False

        self.registry.register(job.identifier, task)
        try:
            task.start()
        except Exception as e:
            self.registry.unregister(job.identifier)
            logger.error(f"[guild:{guild_id}] [job:{job.identifier}] Failed to start echo task: {e}")
            return False
        logger.debug(f"[guild:{guild_id}] [job:{job.identifier}] Scheduled '{job.expression}'")
        return True
