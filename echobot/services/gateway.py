"""
Discord gateway adapter.

Runs a discord.py client without its built-in reconnect loop and translates
what happens on the socket into LifecycleSignals for the supervisor:

- first ``on_ready``      -> READY, then PAUSE (or CLIENT_READY without pause)
- later ``on_ready``      -> READY
- ``resume()``            -> CLIENT_READY
- ``on_error``            -> ERROR
- WARNING on ``discord``  -> WARN
- socket closed           -> DISCONNECT(code, reason); 1000 for a deliberate
                             close, 1006 when the transport failed without a
                             close frame
- re-login                -> RECONNECTING
"""
import asyncio
import logging
import sys
from typing import Any, Callable, Optional, Protocol, Union

import discord

from echobot.models.enums import SignalKind
from echobot.models.schemas import EchoPayload, LifecycleSignal


logger = logging.getLogger(__name__)

ABNORMAL_CLOSURE = 1006
NORMAL_CLOSURE = 1000

SignalSink = Callable[[LifecycleSignal], None]


class Gateway(Protocol):
    """What the supervisor, loader and runner need from a gateway."""

    @property
    def guild_count(self) -> int: ...

    async def login(self, token: str) -> None: ...

    async def resume(self) -> None: ...

    def get_channel(self, channel_id: str) -> Optional[Any]: ...

    async def send(self, channel: Any, payload: Union[str, EchoPayload]) -> None: ...

    async def close(self) -> None: ...


class _WarningForwarder(logging.Handler):
    """Turns WARNING records of the discord.py logger into WARN signals."""

    def __init__(self, gateway: "DiscordGateway"):
        super().__init__(level=logging.WARNING)
        self.gateway = gateway

    def emit(self, record: logging.LogRecord) -> None:
        if record.levelno == logging.WARNING:
            self.gateway._emit(LifecycleSignal.warn(record.getMessage()))


class EchoDiscordClient(discord.Client):
    """discord.py client that reports its events to a DiscordGateway."""

    def __init__(self, gateway: "DiscordGateway", **options: Any):
        super().__init__(**options)
        self._gateway = gateway

    async def on_ready(self) -> None:
        self._gateway._handle_ready()

    async def on_resumed(self) -> None:
        logger.info("Gateway session resumed")

    async def on_error(self, event_method: str, /, *args: Any, **kwargs: Any) -> None:
        error = sys.exc_info()[1]
        self._gateway._emit(LifecycleSignal.failure(error, info=event_method))


class DiscordGateway:
    """Gateway implementation on top of discord.py."""

    def __init__(
        self,
        *,
        pause_on_start: bool = True,
        enable_message_content: bool = False,
        client: Optional[discord.Client] = None,
    ):
        intents = discord.Intents.default()
        intents.guilds = True
        if enable_message_content:
            intents.message_content = True

        self.client = client or EchoDiscordClient(self, intents=intents)
        self.pause_on_start = pause_on_start

        self._sink: Optional[SignalSink] = None
        self._forwarder = _WarningForwarder(self)
        self._socket_task: Optional[asyncio.Task] = None
        self._ready_seen = False
        self._logged_in = False

    def bind(self, sink: SignalSink) -> None:
        """Route lifecycle signals to ``sink`` (the supervisor's dispatch)."""
        self._sink = sink
        discord_logger = logging.getLogger("discord")
        if self._forwarder not in discord_logger.handlers:
            discord_logger.addHandler(self._forwarder)

    def _emit(self, signal: LifecycleSignal) -> None:
        if self._sink is None:
            logger.debug(f"No sink bound, dropping {signal.kind.value}")
            return
        self._sink(signal)

    def _handle_ready(self) -> None:
        self._emit(LifecycleSignal(SignalKind.READY))
        if not self._ready_seen:
            self._ready_seen = True
            first = SignalKind.PAUSE if self.pause_on_start else SignalKind.CLIENT_READY
            self._emit(LifecycleSignal(first))

    @property
    def guild_count(self) -> int:
        return len(self.client.guilds)

    async def login(self, token: str) -> None:
        """
        Authenticate and open the websocket.

        Raises whatever discord.py raises for a failed login
        (``discord.LoginFailure``, ``discord.HTTPException``, ...).
        """
        if self._logged_in:
            self._emit(LifecycleSignal(SignalKind.RECONNECTING))
        if self.client.is_closed():
            # A closed client must be reset before it can log in again
            self.client.clear()

        await self.client.login(token)
        self._logged_in = True
        self._socket_task = asyncio.create_task(self._run_socket(), name="discord-socket")

    async def _run_socket(self) -> None:
        try:
            await self.client.connect(reconnect=False)
        except discord.ConnectionClosed as e:
            self._emit(LifecycleSignal.disconnect(e.code, e.reason))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.debug(f"Gateway transport failed: {e!r}")
            self._emit(LifecycleSignal.disconnect(ABNORMAL_CLOSURE, str(e) or type(e).__name__))
        else:
            self._emit(LifecycleSignal.disconnect(NORMAL_CLOSURE, "Client closed"))

    async def resume(self) -> None:
        self._emit(LifecycleSignal(SignalKind.CLIENT_READY))

    def get_channel(self, channel_id: str) -> Optional[discord.abc.Messageable]:
        """Resolve a channel id to a channel we can post to, or None."""
        channel_id = str(channel_id).strip()
        if not channel_id.isdigit():
            return None
        channel = self.client.get_channel(int(channel_id))
        if not isinstance(channel, discord.abc.Messageable):
            return None
        return channel

    async def send(self, channel: discord.abc.Messageable, payload: Union[str, EchoPayload]) -> None:
        if isinstance(payload, EchoPayload):
            embed = discord.Embed.from_dict(payload.embed) if payload.embed else None
            await channel.send(content=payload.content, embed=embed)
        else:
            await channel.send(payload)

    async def close(self) -> None:
        logging.getLogger("discord").removeHandler(self._forwarder)
        if not self.client.is_closed():
            await self.client.close()
        if self._socket_task is not None:
            await asyncio.gather(self._socket_task, return_exceptions=True)
