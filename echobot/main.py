"""
Echo Bot process entry point.

Wires the guild settings store, job registry, cron scheduler, Discord
gateway and connection supervisor together, then runs the supervisor until
it terminates:
- close code 1000 or a shutdown request -> exit 0
- failed re-authentication              -> exit 1
- invalid configuration                 -> exit 2
"""
import asyncio
import logging
import signal
import sys

from echobot.core.config import Settings, get_settings
from echobot.core.database import GuildSettingsStore, SupabaseClient
from echobot.core.exceptions import ConfigurationError
from echobot.models.enums import SignalKind
from echobot.models.schemas import LifecycleSignal
from echobot.services.gateway import DiscordGateway
from echobot.services.job_loader import GuildJobLoader
from echobot.services.registry import JobRegistry
from echobot.services.scheduler import EchoScheduler
from echobot.services.supervisor import ConnectionSupervisor
from echobot.services.task_runner import SendFailureMonitor, TaskRunner


logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(settings: Settings) -> None:
    """Configure root logging from settings."""
    logging.basicConfig(level=settings.effective_log_level, format=LOG_FORMAT)
    # APScheduler logs every fire at INFO
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def build_supervisor(settings: Settings, gateway: DiscordGateway, scheduler: EchoScheduler) -> ConnectionSupervisor:
    """Assemble the job pipeline around ``gateway`` and return its supervisor."""
    storage = GuildSettingsStore(
        SupabaseClient(settings.supabase_url, settings.supabase_anon_key),
        table=settings.guild_settings_table,
    )
    registry = JobRegistry()
    monitor = SendFailureMonitor(window_hours=settings.send_failure_window_hours)
    runner = TaskRunner(gateway, monitor)
    loader = GuildJobLoader(storage, gateway, scheduler, registry, runner)

    supervisor = ConnectionSupervisor(
        gateway=gateway,
        storage=storage,
        loader=loader,
        registry=registry,
        token=settings.discord_token,
        ready_text=settings.ready_text,
        default_prefix=settings.default_prefix,
        disconnect_alert_threshold=settings.disconnect_alert_threshold,
        normal_close_code=settings.normal_close_code,
        monitor=monitor,
    )
    gateway.bind(supervisor.dispatch)
    return supervisor


async def run_bot(settings: Settings) -> int:
    """Run the bot until the supervisor terminates. Returns the exit code."""
    scheduler = EchoScheduler(
        timezone=settings.scheduler_timezone,
        misfire_grace_seconds=settings.misfire_grace_seconds,
    )
    gateway = DiscordGateway(
        pause_on_start=settings.pause_on_start,
        enable_message_content=settings.enable_message_content,
    )
    supervisor = build_supervisor(settings, gateway, scheduler)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(
                sig, supervisor.dispatch, LifecycleSignal(SignalKind.SHUTDOWN)
            )
        except NotImplementedError:
            logger.debug(f"Signal handler for {sig.name} not supported on this platform")

    scheduler.start()
    logger.info(f"{settings.app_name} v{settings.app_version} has been started.")
    try:
        try:
            await gateway.login(settings.discord_token)
        except Exception as e:
            logger.error(f"Initial login failed: {e}")
            await supervisor.terminate(1, "initial login failed")
        return await supervisor.run()
    finally:
        scheduler.stop()
        logger.info("Shutting down...")


def main() -> None:
    try:
        settings = get_settings()
    except ConfigurationError as e:
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
        logger.critical(f"Configuration error: {e.to_dict()}")
        sys.exit(2)

    configure_logging(settings)
    sys.exit(asyncio.run(run_bot(settings)))


if __name__ == "__main__":
    main()
