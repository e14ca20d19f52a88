"""
Echo job management.

Persists job changes in the guild store and keeps the JobRegistry in step:
- create: validate channel and expression, persist, schedule
- deactivate: persist ``active = false``, stop the task
- delete: drop from the store, stop the task
"""
import logging
from typing import Any, List, Union
from uuid import uuid4

from pydantic import ValidationError as PydanticValidationError

from echobot.core.exceptions import ChannelNotFoundError, JobNotFoundError
from echobot.models.schemas import EchoPayload, JobDefinition
from echobot.services.job_loader import JOBS_KEY, GuildJobLoader


logger = logging.getLogger(__name__)


class EchoJobService:
    """Operations behind the bot's job commands."""

    def __init__(self, storage, gateway, loader: GuildJobLoader):
        self.storage = storage
        self.gateway = gateway
        self.loader = loader

    async def _read(self, guild_id: str) -> List[dict[str, Any]]:
        return list(await self.storage.get(guild_id, JOBS_KEY) or [])

    async def list_jobs(self, guild_id: str) -> List[JobDefinition]:
        """Valid stored jobs of a guild, in persisted order."""
        jobs = []
        for item in await self._read(guild_id):
            try:
                jobs.append(JobDefinition.model_validate(item))
            except PydanticValidationError:
                logger.warning(f"[guild:{guild_id}] Ignoring malformed stored job")
        return jobs

    async def create_job(
        self,
        guild_id: str,
        channel_id: str,
        expression: str,
        payload: Union[str, EchoPayload, dict],
    ) -> JobDefinition:
        """
        Persist a new active job and start it.

        Raises:
            ChannelNotFoundError: the channel is unknown to the gateway
            InvalidExpressionError: the cron expression does not parse
            StorageError: the job list could not be read or written
        """
        channel_id = str(channel_id)
        if self.gateway.get_channel(channel_id) is None:
            raise ChannelNotFoundError(
                f"TextChannel not found: {channel_id}",
                channel_id=channel_id,
                guild_id=guild_id,
            )
        self.loader.scheduler.validate_expression(expression)

        job = JobDefinition(
            identifier=uuid4().hex,
            textChannelId=channel_id,
            expression=expression,
            payload=payload,
            active=True,
        )
        stored = await self._read(guild_id)
        stored.append(job.to_storage())
        await self.storage.set(guild_id, JOBS_KEY, stored)

        self.loader.activate(guild_id, job)
        logger.info(f"[guild:{guild_id}] [job:{job.identifier}] Created '{job.expression}'")
        return job

    async def deactivate_job(self, guild_id: str, identifier: str) -> JobDefinition:
        """
        Mark a job inactive and stop its task.

        Raises:
            JobNotFoundError: no stored job has this identifier
        """
        stored = await self._read(guild_id)
        position = self._position(stored, guild_id, identifier)

        stored[position] = {**stored[position], "active": False}
        await self.storage.set(guild_id, JOBS_KEY, stored)
        self.loader.registry.unregister(identifier)

        logger.info(f"[guild:{guild_id}] [job:{identifier}] Deactivated")
        return JobDefinition.model_validate(stored[position])

    async def delete_job(self, guild_id: str, identifier: str) -> None:
        """
        Remove a job from the store and stop its task.

        Raises:
            JobNotFoundError: no stored job has this identifier
        """
        stored = await self._read(guild_id)
        position = self._position(stored, guild_id, identifier)

        del stored[position]
        await self.storage.set(guild_id, JOBS_KEY, stored)
        self.loader.registry.unregister(identifier)

        logger.info(f"[guild:{guild_id}] [job:{identifier}] Deleted")

    @staticmethod
    def _position(stored: List[dict[str, Any]], guild_id: str, identifier: str) -> int:
        for position, item in enumerate(stored):
            if isinstance(item, dict) and item.get("identifier") == identifier:
                return position
        raise JobNotFoundError(
            f"Job not found: {identifier}",
            identifier=identifier,
            guild_id=guild_id,
        )
