# Data models - Enums, Pydantic Schemas and signal records
from .enums import ConnectionState, SignalKind
from .schemas import EchoPayload, JobDefinition, LifecycleSignal

__all__ = [
    # Enums
    "ConnectionState",
    "SignalKind",
    # Schemas
    "EchoPayload",
    "JobDefinition",
    "LifecycleSignal",
]
