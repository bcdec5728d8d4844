"""
Run orchestration: execute a pipeline's stages through the worker and record
the outcome.

Flow:
1. Plan and validate the run (nothing is written on rejection)
2. Record the run as running
3. Silver stage, then gold stage; each stage's results are stored as soon
   as the worker returns
4. Record the terminal state: succeeded, or failed with the stage and reason
"""

from datetime import datetime, timezone

from layerflow.config import Settings
from layerflow.core.models import PipelineRun
from layerflow.observability.logger import get_logger, log_stage
from layerflow.observability.metrics import (
    active_runs,
    error_samples_recorded_total,
    record_stage_rows,
    runs_finished_total,
    runs_rejected_total,
    runs_started_total,
    stage_duration_seconds,
)
from layerflow.utils.validation import RunConflictError, ValidationError
from layerflow.warehouse.runs import StageOutcome
from layerflow.worker.client import WorkerError, WorkerTimeoutError
from layerflow.worker.payloads import RunResult, build_gold_job, build_silver_job

from .planner import RunPlan, RunPlanner, StagePlan

logger = get_logger(__name__)


class StageFailure(Exception):
    """A stage could not complete; carries the stage and failure code."""

    def __init__(self, stage: str, failure_code: str, error: Exception):
        super().__init__(f"{stage} stage failed: {error}")
        self.stage = stage
        self.failure_code = failure_code
        self.error = error


class RunOrchestrator:
    """
    Starts pipeline runs.

    Validation errors are raised to the caller before a run exists. Once the
    run is recorded, every failure is resolved into its terminal state and the
    finished run is returned.
    """

    def __init__(self, catalog_store, run_store, worker, settings: Settings | None = None):
        """
        Args:
            catalog_store: Catalog store (reads only)
            run_store: Run history store
            worker: WorkerClient implementation
            settings: Deadline and sample limit (defaults apply when None)
        """
        self.catalog_store = catalog_store
        self.run_store = run_store
        self.worker = worker
        self.settings = settings or Settings()
        self.planner = RunPlanner(catalog_store)

    def start_run(self, project_id: str, pipeline_id: int) -> PipelineRun:
        """
        Run a pipeline synchronously.

        Args:
            project_id: Project owning the pipeline
            pipeline_id: Pipeline to run

        Returns:
            The run in its terminal state

        Raises:
            NotFoundError: Project or pipeline missing
            EmptyPipelineError: Pipeline has no stage
            LayerTransitionError: A stage's mapping is invalid
            RunConflictError: The pipeline already has a running run
        """
        try:
            plan = self.planner.plan(project_id, pipeline_id)
            run = self.run_store.begin_run(
                plan.project.project_id, plan.pipeline.pipeline_id, datetime.now(timezone.utc)
            )
        except RunConflictError:
            runs_rejected_total.labels(reason="conflict").inc()
            raise
        except ValidationError as e:
            runs_rejected_total.labels(reason="invalid_pipeline").inc()
            logger.warning(f"Run of pipeline {pipeline_id} rejected: {e}", extra={"field": e.field_name})
            raise

        runs_started_total.labels(project_id=plan.project.project_id).inc()
        active_runs.inc()
        try:
            return self._execute(plan, run)
        finally:
            active_runs.dec()

    def _execute(self, plan: RunPlan, run: PipelineRun) -> PipelineRun:
        project_id = plan.project.project_id

        try:
            for stage_plan in plan.stages:
                self._run_stage(plan, stage_plan, run.run_id)
        except StageFailure as failure:
            self._fail(run, str(failure), failure.failure_code, failure.stage)
        except Exception as e:
            logger.exception(f"Unexpected error while executing run {run.run_id}")
            self._fail(run, f"run failed: {e}", "internal_error", None)
        else:
            self.run_store.finish_run(run.run_id, "succeeded", datetime.now(timezone.utc))
            runs_finished_total.labels(project_id=project_id, state="succeeded").inc()
            logger.info(f"Run {run.run_id} succeeded", extra={"run_id": run.run_id})

        return self.run_store.get_run(run.run_id)

    def _fail(self, run: PipelineRun, reason: str, failure_code: str, failed_stage: str | None) -> None:
        self.run_store.finish_run(
            run.run_id,
            "failed",
            datetime.now(timezone.utc),
            reason=reason,
            failure_code=failure_code,
            failed_stage=failed_stage,
        )
        runs_finished_total.labels(project_id=run.project_id, state="failed").inc()
        logger.error(
            f"Run {run.run_id} failed: {reason}",
            extra={"run_id": run.run_id, "failure_code": failure_code},
        )

    def _run_stage(self, plan: RunPlan, stage_plan: StagePlan, run_id: int) -> None:
        """Call the worker for one stage and store its results; raise StageFailure on error."""
        stage = stage_plan.stage
        status = "success"
        tracker = log_stage(
            logger, stage, run_id=run_id, pipeline_id=plan.pipeline.pipeline_id
        )

        try:
            with tracker:
                job = self._build_job(plan, stage_plan)
                result = self.worker.run(job, deadline=self.settings.stage_deadline_seconds)
                outcome = self._outcome(stage, result)
                recorded = self.run_store.record_stage(run_id, plan.project.project_id, outcome)
                record_stage_rows(stage, outcome.rows_read, outcome.rows_written, outcome.rows_rejected)
                if recorded:
                    error_samples_recorded_total.labels(stage=stage).inc(recorded)
        except WorkerTimeoutError as e:
            status = "error"
            raise StageFailure(stage, "timed_out", e) from e
        except WorkerError as e:
            status = "error"
            raise StageFailure(stage, "worker_error", e) from e
        except Exception as e:
            status = "error"
            logger.exception(f"Unexpected error in {stage} stage of run {run_id}")
            raise StageFailure(stage, "internal_error", e) from e
        finally:
            stage_duration_seconds.labels(stage=stage, status=status).observe(tracker.duration)

    def _build_job(self, plan: RunPlan, stage_plan: StagePlan):
        warehouse_uri = plan.project.warehouse_uri or self.settings.default_warehouse_uri
        if stage_plan.stage == "silver":
            return build_silver_job(
                plan.project,
                stage_plan.mapping,
                stage_plan.from_dataset,
                stage_plan.source,
                stage_plan.to_dataset,
                warehouse_uri=warehouse_uri,
            )
        return build_gold_job(
            plan.project,
            stage_plan.mapping,
            stage_plan.from_dataset,
            stage_plan.to_dataset,
            warehouse_uri=warehouse_uri,
        )

    def _outcome(self, stage: str, result: RunResult) -> StageOutcome:
        samples = result.error_samples[: self.settings.error_sample_limit]
        if len(result.error_samples) > len(samples):
            logger.info(
                f"Keeping {len(samples)} of {len(result.error_samples)} error samples for {stage} stage"
            )
        return StageOutcome(
            stage=stage,
            rows_read=result.ori_rows,
            rows_written=result.dest_rows,
            rows_rejected=result.rejected_rows,
            snapshot=result.snapshot,
            logs=result.logs,
            dq_summary=result.dq_summary,
            error_samples=[s.model_dump() for s in samples],
        )
