from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ProcessStringRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    input: str = Field(min_length=1)

    @field_validator("input")
    @classmethod
    def _reject_blank(cls, value: str) -> str:
        if value.strip() == "":
            raise ValueError("Input string cannot be empty or white space")
        return value


class CancelJobRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    job_id: str = Field(alias="jobId", min_length=1)


class ApiResult(BaseModel):
    """Response envelope returned by the processor API."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    is_success: bool = Field(alias="isSuccess")
    value: Any = None
    error: Any = None

    def error_message(self, default: str) -> str:
        return describe_error(self.error) or default


def describe_error(error: Any) -> str | None:
    if error is None:
        return None
    if isinstance(error, str):
        return error.strip() or None
    if isinstance(error, dict):
        for key in ("description", "message", "detail", "title"):
            value = error.get(key)
            if isinstance(value, str) and value.strip():
                return value
        return None
    if isinstance(error, list):
        parts = [part for part in (describe_error(item) for item in error) if part]
        return "; ".join(parts) or None
    return str(error)
