# Core modules - Database, Config, Exceptions
from .database import GLOBAL_SCOPE, GuildSettingsStore, SupabaseClient
from .config import Settings, get_settings
from .exceptions import (
    EchoBotException,
    StorageError,
    ChannelNotFoundError,
    InvalidExpressionError,
    JobNotFoundError,
    ReconnectError,
    ConfigurationError,
)

__all__ = [
    "GLOBAL_SCOPE",
    "GuildSettingsStore",
    "SupabaseClient",
    "Settings",
    "get_settings",
    "EchoBotException",
    "StorageError",
    "ChannelNotFoundError",
    "InvalidExpressionError",
    "JobNotFoundError",
    "ReconnectError",
    "ConfigurationError",
]
