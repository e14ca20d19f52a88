"""
Connection Supervisor.

A finite-state machine over gateway lifecycle signals:

    STARTING --CLIENT_READY--> ACTIVE        (load every guild's echo jobs)
    STARTING/ACTIVE --PAUSE--> PAUSED        (seed default prefix, resume)
    PAUSED --resume--> ACTIVE
    * --DISCONNECT(1000)--> TERMINATED       (normal closure, exit 0)
    * --DISCONNECT(other)--> RECONNECTING    (count, re-authenticate)
    RECONNECTING --login ok--> ACTIVE
    RECONNECTING --login failed--> TERMINATED (exit 1)
    * --SHUTDOWN--> TERMINATED               (drain tasks, exit 0)

READY, WARN, ERROR and RECONNECTING are logged without a transition.
Signals are consumed one at a time from a single queue; job loading and
reconnect attempts run as tracked tasks so the queue keeps draining.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from echobot.core.exceptions import ReconnectError, StorageError
from echobot.models.enums import ConnectionState, SignalKind
from echobot.models.schemas import LifecycleSignal
from echobot.services.job_loader import JOBS_KEY, GuildJobLoader
from echobot.services.registry import JobRegistry
from echobot.services.task_runner import SendFailureMonitor


logger = logging.getLogger(__name__)

PREFIX_KEY = "prefix"


def _running_loop() -> Optional[asyncio.AbstractEventLoop]:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


@dataclass
class ConnectionStats:
    """Disconnect bookkeeping for the lifetime of the process."""
    disconnect_count: int = 0
    last_close_code: Optional[int] = None
    last_close_reason: Optional[str] = None
    last_disconnect_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "disconnect_count": self.disconnect_count,
            "last_close_code": self.last_close_code,
            "last_close_reason": self.last_close_reason,
            "last_disconnect_at": (
                self.last_disconnect_at.isoformat() if self.last_disconnect_at else None
            ),
        }


class ConnectionSupervisor:
    """Drives the connection state machine and owns process termination."""

    def __init__(
        self,
        gateway,
        storage,
        loader: GuildJobLoader,
        registry: JobRegistry,
        token: str,
        *,
        ready_text: str = "Echo Client Ready",
        default_prefix: str = "!",
        disconnect_alert_threshold: int = 10,
        normal_close_code: int = 1000,
        monitor: Optional[SendFailureMonitor] = None,
    ):
        self.gateway = gateway
        self.storage = storage
        self.loader = loader
        self.registry = registry
        self.monitor = monitor
        self._token = token

        self.ready_text = ready_text
        self.default_prefix = default_prefix
        self.disconnect_alert_threshold = disconnect_alert_threshold
        self.normal_close_code = normal_close_code

        self.state = ConnectionState.STARTING
        self.stats = ConnectionStats()
        self.exit_code: Optional[int] = None
        self.load_results: Dict[str, Any] = {}

        self._queue: asyncio.Queue = asyncio.Queue()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stats_lock = asyncio.Lock()
        self._login_lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()
        self._jobs_loaded = False

        self._handlers: Dict[SignalKind, Callable[[LifecycleSignal], Awaitable[None]]] = {
            SignalKind.CLIENT_READY: self._on_client_ready,
            SignalKind.READY: self._on_ready,
            SignalKind.WARN: self._on_warn,
            SignalKind.PAUSE: self._on_pause,
            SignalKind.ERROR: self._on_error,
            SignalKind.DISCONNECT: self._on_disconnect,
            SignalKind.RECONNECTING: self._on_reconnecting,
            SignalKind.SHUTDOWN: self._on_shutdown,
        }

    @property
    def is_terminated(self) -> bool:
        return self.state is ConnectionState.TERMINATED

    # ==========================================
    # SIGNAL INTAKE
    # ==========================================

    def dispatch(self, signal: LifecycleSignal) -> None:
        """
        Queue a signal.

        Safe to call from any thread: discord.py logs heartbeat warnings from
        its keep-alive thread, and those reach here through the gateway.
        """
        running = _running_loop()
        if self._loop is None and running is not None:
            self._loop = running
        loop = self._loop
        if loop is None or running is loop:
            self._queue.put_nowait(signal)
            return
        try:
            loop.call_soon_threadsafe(self._queue.put_nowait, signal)
        except RuntimeError:
            # Loop already closed
            logger.debug(f"Dropping {signal.kind.value} after event loop shutdown")

    async def run(self) -> int:
        """
        Consume signals until the state machine terminates.

        Returns:
            The process exit code
        """
        self._loop = asyncio.get_running_loop()
        while not self.is_terminated:
            signal = await self._queue.get()
            try:
                await self.handle(signal)
            except Exception as e:
                logger.error(f"Unhandled error while processing {signal.kind.value}: {e}", exc_info=True)
            finally:
                self._queue.task_done()
        return self.exit_code if self.exit_code is not None else 0

    async def handle(self, signal: LifecycleSignal) -> None:
        """Apply one signal to the state machine."""
        if self.is_terminated:
            logger.debug(f"Ignoring {signal.kind.value} after termination")
            return
        await self._handlers[signal.kind](signal)

    # ==========================================
    # TRANSITIONS
    # ==========================================

    async def _on_client_ready(self, signal: LifecycleSignal) -> None:
        self.state = ConnectionState.ACTIVE
        if self._jobs_loaded:
            logger.debug("Client ready again, echo jobs already loaded")
            return
        self._jobs_loaded = True
        logger.info("Starting up echo tasks...")
        self._spawn(self._load_all_guilds(), name="load-jobs")

    async def _on_ready(self, signal: LifecycleSignal) -> None:
        logger.info(f"{self.ready_text} ({self.gateway.guild_count} guilds)")

    async def _on_warn(self, signal: LifecycleSignal) -> None:
        logger.warning(f"Discord warning: {signal.info}")

    async def _on_pause(self, signal: LifecycleSignal) -> None:
        self.state = ConnectionState.PAUSED
        try:
            await self.storage.set_default(None, PREFIX_KEY, self.default_prefix)
        except StorageError as e:
            logger.error(f"Could not store default prefix: {e.details}")

        await self.gateway.resume()
        if self.state is ConnectionState.PAUSED:
            self.state = ConnectionState.ACTIVE

    async def _on_error(self, signal: LifecycleSignal) -> None:
        context = f" in {signal.info}" if signal.info else ""
        logger.error(f"Client Error{context}: {signal.error}", exc_info=signal.error)

    async def _on_reconnecting(self, signal: LifecycleSignal) -> None:
        logger.warning("Echo client is reconnecting.")

    async def _on_shutdown(self, signal: LifecycleSignal) -> None:
        await self.terminate(0, "shutdown requested")

    async def _on_disconnect(self, signal: LifecycleSignal) -> None:
        code = signal.code
        logger.warning("Echo client has been disconnected.")

        async with self._stats_lock:
            self.stats.disconnect_count += 1
            self.stats.last_close_code = code
            self.stats.last_close_reason = signal.reason
            self.stats.last_disconnect_at = datetime.now(timezone.utc)
            attempt = self.stats.disconnect_count

        logger.warning(f"[DISCONNECT:{code}] {signal.reason}")

        if code == self.normal_close_code:
            logger.warning(f"Disconnect with event code {code}. Exiting process...")
            await self.terminate(0, f"normal closure ({code})")
            return

        self.state = ConnectionState.RECONNECTING
        if attempt >= self.disconnect_alert_threshold:
            # Alert only: reconnecting continues past the threshold
            logger.warning(
                f"{attempt} disconnects reached the alert threshold "
                f"({self.disconnect_alert_threshold}); reconnect storm suspected"
            )
        self._spawn(self._reconnect(attempt, code), name=f"reconnect:{attempt}")

    async def _reconnect(self, attempt: int, close_code: Optional[int]) -> None:
        async with self._login_lock:
            if self.is_terminated:
                return
            logger.warning(f"[ATTEMPT:{attempt}] Attempting to login again...")
            try:
                await self.gateway.login(self._token)
            except Exception as e:
                error = ReconnectError(
                    "Error when attempting to login after disconnect",
                    attempt=attempt,
                    close_code=close_code,
                    original_error=str(e),
                )
                logger.error(f"[ERROR] {error.message}: {error.details}")
                await self.terminate(1, "re-authentication failed")
                return

            if self.state is ConnectionState.RECONNECTING:
                self.state = ConnectionState.ACTIVE
            logger.info(f"[ATTEMPT:{attempt}] Logged in again")

    # ==========================================
    # JOB LOADING
    # ==========================================

    async def _load_all_guilds(self) -> None:
        try:
            guild_ids = await self.storage.guild_ids(JOBS_KEY)
        except StorageError as e:
            logger.error(f"Could not list guilds, no echo jobs loaded: {e.details}")
            return

        for guild_id in guild_ids:
            self._spawn(self._load_guild(guild_id), name=f"load-jobs:{guild_id}")

    async def _load_guild(self, guild_id: str) -> None:
        try:
            self.load_results[guild_id] = await self.loader.load_jobs(guild_id)
        except Exception as e:
            self.load_results[guild_id] = e
            logger.error(f"[guild:{guild_id}] Loading echo jobs failed: {e}", exc_info=True)

    # ==========================================
    # TASKS & TERMINATION
    # ==========================================

    def _spawn(self, coro: Awaitable[None], name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Task {task.get_name()} failed: {error}", exc_info=error)

    async def join(self) -> None:
        """Wait until every tracked task (including ones they spawn) has finished."""
        current = asyncio.current_task()
        while True:
            pending = [task for task in self._tasks if task is not current and not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def terminate(self, exit_code: int, reason: str) -> None:
        """
        Stop everything and end the run loop. Idempotent.

        Registered echo tasks are drained, outstanding loader and reconnect
        tasks are cancelled, and the gateway is closed.
        """
        if self.is_terminated:
            return
        self.state = ConnectionState.TERMINATED
        self.exit_code = exit_code
        logger.warning(f"Terminating: {reason} (exit code {exit_code})")

        self.registry.stop_all()

        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()

        try:
            await self.gateway.close()
        except Exception as e:
            logger.error(f"Error while closing gateway: {e}")

        # Wake run() if it is parked on an empty queue
        self._queue.put_nowait(LifecycleSignal(SignalKind.SHUTDOWN))

    def get_status(self) -> Dict[str, Any]:
        """Health snapshot for monitoring."""
        failures = self.monitor.get_status() if self.monitor else {}
        has_failures = any(info["failure_count"] > 0 for info in failures.values())
        return {
            "state": self.state.value,
            "status": "degraded" if has_failures or self.stats.disconnect_count else "healthy",
            "connection": self.stats.to_dict(),
            "jobs": self.registry.identifiers(),
            "send_failures": failures,
        }
