"""
RunErrorSample model: one rejected row reported by the worker.
"""

from typing import Any

from pydantic import BaseModel, Field, field_validator

from .layers import Stage


class RunErrorSample(BaseModel):
    """
    Diagnostic sample of a row rejected during a stage.

    Attributes:
        sample_id: Primary key (None until stored)
        project_id: Owning project
        run_id: Run the sample belongs to
        stage: Stage that rejected the row
        reason_code: Machine-readable rejection code
        message: Human-readable explanation
        row_no: Row number in the stage input, when known
        source_values: Raw values of the rejected row
    """

    sample_id: int | None = None
    project_id: str
    run_id: int
    stage: Stage
    reason_code: str = "ERR"
    message: str = ""
    row_no: int | None = None
    source_values: Any = Field(default_factory=dict)

    @field_validator("reason_code", mode="before")
    @classmethod
    def default_reason_code(cls, v):
        return v or "ERR"

    @field_validator("message", mode="before")
    @classmethod
    def default_message(cls, v):
        return "" if v is None else str(v)
