from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from sentinel_boundary.models import MAX_SIGNAL_VALUE


class DecisionSubmission(BaseModel):
    """Inbound decision request. Caller identity travels separately (header)."""

    model_config = ConfigDict(extra="forbid")

    signal_value: int = Field(0, ge=0, le=MAX_SIGNAL_VALUE)
    reason: str = ""
    meta: Dict[str, Any] = Field(default_factory=dict)

    @field_validator('reason', mode='before')
    @classmethod
    def coerce_reason(cls, v):
        return "" if v is None else str(v)

    @field_validator('meta', mode='before')
    @classmethod
    def coerce_meta(cls, v):
        return {} if v is None else v


class ExecutorRotation(BaseModel):
    caller: str = Field(..., min_length=1)
    new_executor: str = Field(..., min_length=1)


class JournalQuery(BaseModel):
    start: Optional[int] = Field(None, ge=0)
    end: Optional[int] = Field(None, ge=0)
    limit: int = Field(100, ge=1, le=1000)
