# Services - Business Logic Layer
"""
Echo Bot Services Module.

This module provides the core logic for:
- Cron scheduling of echo jobs (scheduler)
- The process-wide job registry (registry)
- Payload delivery on each fire (task_runner)
- Loading persisted jobs per guild (job_loader)
- Job management operations (jobs)
- The Discord gateway adapter (gateway)
- The connection state machine (supervisor)
"""

from .registry import JobRegistry
from .scheduler import EchoScheduler, ScheduledTask, build_trigger
from .task_runner import SendFailureMonitor, TaskRunner
from .job_loader import GuildJobLoader
from .jobs import EchoJobService
from .supervisor import ConnectionStats, ConnectionSupervisor

__all__ = [
    "JobRegistry",
    "EchoScheduler",
    "ScheduledTask",
    "build_trigger",
    "SendFailureMonitor",
    "TaskRunner",
    "GuildJobLoader",
    "EchoJobService",
    "ConnectionStats",
    "ConnectionSupervisor",
]
