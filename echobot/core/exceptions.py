"""
Custom exceptions for the Echo Bot.
Provides meaningful error types for different failure scenarios.
"""
from typing import Any, Optional


class EchoBotException(Exception):
    """Base exception for all Echo Bot errors."""

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
    ):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging or command replies."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class StorageError(EchoBotException):
    """Raised when the guild settings store cannot be read or written."""

    def __init__(
        self,
        message: str,
        guild_id: Optional[str] = None,
        key: Optional[str] = None,
        operation: Optional[str] = None,
        original_error: Optional[str] = None
    ):
        details = {}
        if guild_id:
            details["guild_id"] = guild_id
        if key:
            details["key"] = key
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = original_error

        super().__init__(message, details)


class ChannelNotFoundError(EchoBotException):
    """Raised when a job targets a channel the gateway cannot resolve."""

    def __init__(self, message: str, channel_id: str, guild_id: Optional[str] = None):
        details = {"channel_id": channel_id}
        if guild_id:
            details["guild_id"] = guild_id
        super().__init__(message, details)


class InvalidExpressionError(EchoBotException):
    """Raised when a cron expression cannot be turned into a schedule."""

    def __init__(self, message: str, expression: str, reason: Optional[str] = None):
        details = {"expression": expression}
        if reason:
            details["reason"] = reason
        super().__init__(message, details)


class JobNotFoundError(EchoBotException):
    """Raised when a job identifier is not present in a guild's job list."""

    def __init__(self, message: str, identifier: str, guild_id: str):
        super().__init__(message, {"identifier": identifier, "guild_id": guild_id})


class ReconnectError(EchoBotException):
    """Raised when re-authentication after a disconnect fails."""

    def __init__(
        self,
        message: str,
        attempt: int,
        close_code: Optional[int] = None,
        original_error: Optional[str] = None
    ):
        details = {"attempt": attempt}
        if close_code is not None:
            details["close_code"] = close_code
        if original_error:
            details["original_error"] = original_error
        super().__init__(message, details)


class ConfigurationError(EchoBotException):
    """Raised when required configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        config_key: str,
        expected_type: Optional[str] = None,
        actual_value: Optional[str] = None
    ):
        details = {
            "config_key": config_key
        }
        if expected_type:
            details["expected_type"] = expected_type
        if actual_value:
            details["actual_value"] = actual_value[:50] if len(str(actual_value)) > 50 else actual_value

        super().__init__(message, details)
