"""
PipelineRun model: one execution attempt of a pipeline.
"""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from .layers import TERMINAL_STATES, FailureCode, RunState, Stage


class PipelineRun(BaseModel):
    """
    Execution record of a pipeline.

    Created ``running``; moves exactly once to ``succeeded`` or ``failed``.
    Metrics of every completed stage stay on the record even when a later
    stage fails.

    Attributes:
        run_id: Primary key (None until stored)
        project_id: Owning project
        pipeline_id: Pipeline being executed
        state: queued | running | succeeded | failed
        state_reason: Error text of a failed run
        failure_code: worker_error | timed_out | internal_error
        failed_stage: Stage that aborted the run
        rows_source: Rows read from the source by the silver stage
        rows_source_rejected: Rows rejected by the silver stage
        rows_silver: Rows written to silver
        rows_silver_rejected: Rows rejected by the gold stage
        rows_gold: Rows written to gold
        bronze_snapshot / silver_snapshot / gold_snapshot: Worker snapshot ids
        dq_summary: Data-quality results keyed by rule code, merged across stages
        logs: Worker log lines, in stage order
    """

    run_id: int | None = None
    project_id: str
    pipeline_id: int
    state: RunState = "running"
    state_reason: str | None = None
    failure_code: FailureCode | None = None
    failed_stage: Stage | None = None
    rows_source: int | None = None
    rows_source_rejected: int | None = None
    rows_silver: int | None = None
    rows_silver_rejected: int | None = None
    rows_gold: int | None = None
    bronze_snapshot: str | None = None
    silver_snapshot: str | None = None
    gold_snapshot: str | None = None
    dq_summary: dict[str, Any] = Field(default_factory=dict)
    logs: list[str] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES
