"""
Enum types for the connection state machine and gateway lifecycle signals.
"""
from enum import Enum


class ConnectionState(str, Enum):
    """States of the Connection Supervisor."""
    STARTING = "starting"
    PAUSED = "paused"
    ACTIVE = "active"
    RECONNECTING = "reconnecting"
    TERMINATED = "terminated"


class SignalKind(str, Enum):
    """
    Gateway lifecycle signals.

    CLIENT_READY fires once the client has finished its startup (after any
    pause), READY on every successful gateway handshake.
    """
    CLIENT_READY = "client_ready"
    READY = "ready"
    WARN = "warn"
    PAUSE = "pause"
    ERROR = "error"
    DISCONNECT = "disconnect"
    RECONNECTING = "reconnecting"
    SHUTDOWN = "shutdown"  # Process-level, not emitted by the gateway
