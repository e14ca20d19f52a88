"""
Pydantic schemas for persisted echo jobs, plus the lifecycle signal record.
"""
from dataclasses import dataclass
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .enums import SignalKind


# ==========================================
# ECHO JOBS
# ==========================================

class EchoPayload(BaseModel):
    """Structured message body: plain content and/or a single embed."""
    model_config = ConfigDict(extra="ignore")

    content: Optional[str] = None
    embed: Optional[dict[str, Any]] = None


class JobDefinition(BaseModel):
    """
    A persisted echo job.

    Stored in camelCase (``textChannelId``) as the bot has always written
    them; snake_case is accepted too.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    identifier: str = Field(..., min_length=1)
    text_channel_id: str = Field(..., alias="textChannelId", min_length=1)
    expression: str = Field(..., min_length=1)
    payload: Union[str, EchoPayload]
    active: bool = True

    @field_validator("text_channel_id", mode="before")
    @classmethod
    def coerce_channel_id(cls, v: Any) -> Any:
        """Snowflakes sometimes come back from JSON as ints."""
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("expression")
    @classmethod
    def strip_expression(cls, v: str) -> str:
        return " ".join(v.split())

    def to_storage(self) -> dict[str, Any]:
        """Serialize the way jobs are persisted (camelCase, no empty fields)."""
        return self.model_dump(by_alias=True, exclude_none=True)


# ==========================================
# LIFECYCLE SIGNALS
# ==========================================

@dataclass(frozen=True)
class LifecycleSignal:
    """A gateway lifecycle event queued for the Connection Supervisor."""
    kind: SignalKind
    code: Optional[int] = None
    reason: Optional[str] = None
    info: Optional[str] = None
    error: Optional[BaseException] = None

    @classmethod
    def disconnect(cls, code: int, reason: Optional[str] = None) -> "LifecycleSignal":
        return cls(SignalKind.DISCONNECT, code=code, reason=reason or "")

    @classmethod
    def warn(cls, info: str) -> "LifecycleSignal":
        return cls(SignalKind.WARN, info=info)

    @classmethod
    def failure(cls, error: BaseException, info: Optional[str] = None) -> "LifecycleSignal":
        return cls(SignalKind.ERROR, error=error, info=info)
