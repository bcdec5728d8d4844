"""
Run history persistence: pipeline runs and their rejected-row samples.

A run is written in these transactions:

- ``begin_run`` inserts it ``running``, serialised per pipeline
- ``record_stage`` stores the metrics and samples of one finished stage
- ``finish_run`` moves it to its terminal state, once
- ``fail_stale_runs`` fails runs abandoned in ``running``
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

import psycopg
from psycopg.types.json import Jsonb

from layerflow.core.models import PipelineRun, RunErrorSample
from layerflow.observability.logger import get_logger
from layerflow.utils.validation import RunConflictError

from .connection import DatabaseConnectionPool

logger = get_logger(__name__)

# Run columns written by each stage: (read, written, rejected, snapshot)
STAGE_COLUMNS = {
    "silver": ("rows_source", "rows_silver", "rows_source_rejected", "silver_snapshot"),
    "gold": (None, "rows_gold", "rows_silver_rejected", "gold_snapshot"),
}


@dataclass
class StageOutcome:
    """
    What one completed stage contributes to its run.

    Attributes:
        stage: "silver" or "gold"
        rows_read: Rows the worker read from the stage input
        rows_written: Rows written to the destination layer
        rows_rejected: Rows rejected by transforms or DQ rules
        snapshot: Destination snapshot id
        logs: Worker log lines to append
        dq_summary: DQ results merged into the run's summary
        error_samples: Rejected-row samples, already capped
    """

    stage: str
    rows_read: int | None = None
    rows_written: int | None = None
    rows_rejected: int | None = None
    snapshot: str | None = None
    logs: list[str] = field(default_factory=list)
    dq_summary: dict[str, Any] = field(default_factory=dict)
    error_samples: list[dict[str, Any]] = field(default_factory=list)


def _run(row: dict[str, Any]) -> PipelineRun:
    return PipelineRun(**{**row, "project_id": str(row["project_id"])})


def _sample(row: dict[str, Any]) -> RunErrorSample:
    return RunErrorSample(**{**row, "project_id": str(row["project_id"])})


class RunStore:
    """PostgreSQL-backed run history."""

    def __init__(self, pool: DatabaseConnectionPool):
        self.pool = pool

    def begin_run(self, project_id: str, pipeline_id: int, started_at: datetime) -> PipelineRun:
        """
        Insert a new ``running`` run for a pipeline.

        A transaction-scoped advisory lock keyed on the pipeline serialises
        concurrent starts, so at most one run per pipeline is ever running.

        Args:
            project_id: Owning project
            pipeline_id: Pipeline to run
            started_at: Start timestamp

        Returns:
            Stored PipelineRun

        Raises:
            RunConflictError: If a run of this pipeline is already running
            psycopg.DatabaseError: If the insert fails
        """
        try:
            with self.pool.transaction() as cur:
                cur.execute("SELECT pg_advisory_xact_lock(%(key)s)", {"key": pipeline_id})
                cur.execute(
                    """
                    SELECT run_id FROM pipeline_runs
                    WHERE pipeline_id = %(pipeline_id)s AND state = 'running'
                    LIMIT 1
                    """,
                    {"pipeline_id": pipeline_id},
                )
                running = cur.fetchone()
                if running:
                    raise RunConflictError(
                        f"pipeline {pipeline_id} already has run {running['run_id']} in progress",
                        "pipeline_id",
                    )

                cur.execute(
                    """
                    INSERT INTO pipeline_runs (project_id, pipeline_id, state, started_at)
                    VALUES (%(project_id)s, %(pipeline_id)s, 'running', %(started_at)s)
                    RETURNING *
                    """,
                    {
                        "project_id": UUID(project_id),
                        "pipeline_id": pipeline_id,
                        "started_at": started_at,
                    },
                )
                run = _run(cur.fetchone())
        except psycopg.DatabaseError as e:
            logger.error(f"Failed to begin run of pipeline {pipeline_id}: {e}")
            raise

        logger.info(f"Run {run.run_id} of pipeline {pipeline_id} started")
        return run

    def record_stage(self, run_id: int, project_id: str, outcome: StageOutcome) -> int:
        """
        Persist one stage's metrics, logs, DQ summary and error samples atomically.

        Logs are appended and the DQ summary is merged key by key, so a later
        stage never erases what an earlier one wrote.

        Returns:
            Number of error samples inserted
        """
        read_col, written_col, rejected_col, snapshot_col = STAGE_COLUMNS[outcome.stage]
        assignments = [
            f"{written_col} = %(written)s",
            f"{rejected_col} = %(rejected)s",
            f"{snapshot_col} = %(snapshot)s",
            "logs = logs || %(logs)s",
            "dq_summary = dq_summary || %(dq_summary)s",
        ]
        if read_col:
            assignments.insert(0, f"{read_col} = %(read)s")

        update_sql = f"""
            UPDATE pipeline_runs
            SET {", ".join(assignments)}
            WHERE run_id = %(run_id)s
        """

        insert_sql = """
            INSERT INTO run_error_samples (
                project_id, run_id, stage, reason_code, message, row_no, source_values
            ) VALUES (
                %(project_id)s, %(run_id)s, %(stage)s, %(reason_code)s,
                %(message)s, %(row_no)s, %(source_values)s
            )
        """
        samples = [
            {
                "project_id": UUID(project_id),
                "run_id": run_id,
                "stage": outcome.stage,
                "reason_code": s.get("reason_code") or "ERR",
                "message": "" if s.get("message") is None else str(s["message"]),
                "row_no": s.get("row_no"),
                "source_values": Jsonb(s.get("source_values") if s.get("source_values") is not None else {}),
            }
            for s in outcome.error_samples
        ]

        try:
            with self.pool.transaction() as cur:
                cur.execute(
                    update_sql,
                    {
                        "run_id": run_id,
                        "read": outcome.rows_read,
                        "written": outcome.rows_written,
                        "rejected": outcome.rows_rejected,
                        "snapshot": outcome.snapshot,
                        "logs": Jsonb(list(outcome.logs)),
                        "dq_summary": Jsonb(dict(outcome.dq_summary)),
                    },
                )
                if samples:
                    cur.executemany(insert_sql, samples)
        except psycopg.DatabaseError as e:
            logger.error(f"Failed to record {outcome.stage} stage of run {run_id}: {e}")
            raise

        logger.debug(f"Recorded {outcome.stage} stage of run {run_id} ({len(samples)} error samples)")
        return len(samples)

    def finish_run(
        self,
        run_id: int,
        state: str,
        finished_at: datetime,
        reason: str | None = None,
        failure_code: str | None = None,
        failed_stage: str | None = None,
    ) -> bool:
        """
        Move a running run to its terminal state.

        Only a ``running`` run is updated; a terminal run is immutable.

        Returns:
            True if the run was updated
        """
        try:
            with self.pool.transaction() as cur:
                cur.execute(
                    """
                    UPDATE pipeline_runs
                    SET state = %(state)s,
                        state_reason = %(reason)s,
                        failure_code = %(failure_code)s,
                        failed_stage = %(failed_stage)s,
                        finished_at = %(finished_at)s
                    WHERE run_id = %(run_id)s AND state = 'running'
                    """,
                    {
                        "run_id": run_id,
                        "state": state,
                        "reason": reason,
                        "failure_code": failure_code,
                        "failed_stage": failed_stage,
                        "finished_at": finished_at,
                    },
                )
                updated = cur.rowcount > 0
        except psycopg.DatabaseError as e:
            logger.error(f"Failed to finish run {run_id}: {e}")
            raise

        if not updated:
            logger.warning(f"Run {run_id} was not running; terminal state {state} ignored")
        return updated

    def fail_stale_runs(
        self,
        project_id: str,
        started_before: datetime,
        finished_at: datetime,
        pipeline_id: int | None = None,
    ) -> list[int]:
        """
        Fail runs left ``running`` by a process that never recorded their end.

        Such a run blocks every later start of its pipeline. Runs started
        before ``started_before`` are moved to ``failed`` with
        ``internal_error``.

        Returns:
            IDs of the runs that were failed
        """
        query = """
            UPDATE pipeline_runs
            SET state = 'failed',
                state_reason = %(reason)s,
                failure_code = 'internal_error',
                finished_at = %(finished_at)s
            WHERE project_id = %(project_id)s
              AND state = 'running'
              AND started_at < %(started_before)s
        """
        if pipeline_id is not None:
            query += " AND pipeline_id = %(pipeline_id)s"
        query += " RETURNING run_id"

        try:
            with self.pool.transaction() as cur:
                cur.execute(
                    query,
                    {
                        "reason": f"abandoned: still running at {finished_at.isoformat()}",
                        "finished_at": finished_at,
                        "project_id": UUID(project_id),
                        "started_before": started_before,
                        "pipeline_id": pipeline_id,
                    },
                )
                run_ids = sorted(r["run_id"] for r in cur.fetchall())
        except psycopg.DatabaseError as e:
            logger.error(f"Failed to fail stale runs of project {project_id}: {e}")
            raise

        if run_ids:
            logger.warning(f"Failed {len(run_ids)} abandoned runs: {run_ids}")
        return run_ids

    def get_run(self, run_id: int) -> PipelineRun | None:
        rows = self.pool.execute_query(
            "SELECT * FROM pipeline_runs WHERE run_id = %(run_id)s", {"run_id": run_id}
        )
        return _run(rows[0]) if rows else None

    def list_runs(
        self, project_id: str, pipeline_id: int | None = None, limit: int = 50
    ) -> list[PipelineRun]:
        """Most recent runs of a project first, optionally for one pipeline"""
        query = "SELECT * FROM pipeline_runs WHERE project_id = %(project_id)s"
        if pipeline_id is not None:
            query += " AND pipeline_id = %(pipeline_id)s"
        query += " ORDER BY created_at DESC, run_id DESC LIMIT %(limit)s"

        rows = self.pool.execute_query(
            query,
            {"project_id": UUID(project_id), "pipeline_id": pipeline_id, "limit": limit},
        )
        return [_run(r) for r in rows]

    def list_error_samples(
        self, run_id: int, stage: str | None = None, limit: int = 100
    ) -> list[RunErrorSample]:
        query = "SELECT * FROM run_error_samples WHERE run_id = %(run_id)s"
        if stage:
            query += " AND stage = %(stage)s"
        query += " ORDER BY sample_id LIMIT %(limit)s"

        rows = self.pool.execute_query(query, {"run_id": run_id, "stage": stage, "limit": limit})
        return [_sample(r) for r in rows]
