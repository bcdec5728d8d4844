"""
Unit tests for RunOrchestrator.

Stages run against StubWorker and the in-memory stores; covers stage
ordering, metric persistence, failure codes and run-start rejections.
"""

from datetime import datetime, timezone

import pytest

from doubles import seed_catalog
from layerflow.config import Settings
from layerflow.observability.metrics import REGISTRY
from layerflow.orchestration import RunOrchestrator
from layerflow.orchestration import run_orchestrator as run_orchestrator_module
from layerflow.utils.validation import (
    EmptyPipelineError,
    LayerTransitionError,
    NotFoundError,
    RunConflictError,
)
from layerflow.worker.client import WorkerError, WorkerTimeoutError

SILVER_OK = {
    "ori_rows": 100,
    "dest_rows": 95,
    "rejected_rows": 5,
    "snapshot": "snap1",
    "logs": ["read 100 rows", "wrote 95 rows"],
    "dq_summary": [{"rule_code": "amount_gt_0", "violations": 5, "checked_rows": 100}],
    "error_samples": [
        {"reason_code": "DQ_FAIL", "message": "amount <= 0", "row_no": 3, "source_values": {"amount": "-1"}},
        {"message": "unparseable amount"},
    ],
}

GOLD_OK = {
    "ori_rows": 95,
    "dest_rows": 40,
    "rejected_rows": 2,
    "snapshot": "snap2",
    "logs": ["aggregated"],
    "dq_summary": {"total_not_null": {"violations": 0}},
}


@pytest.fixture
def entities(service):
    return seed_catalog(service)


@pytest.fixture
def orchestrator(memory_store, memory_run_store, stub_worker, settings):
    return RunOrchestrator(memory_store, memory_run_store, stub_worker, settings)


def start(orchestrator, entities):
    return orchestrator.start_run(entities["project"].project_id, entities["pipeline"].pipeline_id)


class TestSuccessfulRuns:
    def test_silver_only_run_records_metrics(self, service, orchestrator, stub_worker):
        entities = seed_catalog(service, with_gold=False)
        stub_worker.responses["silver"] = SILVER_OK

        run = start(orchestrator, entities)

        assert run.state == "succeeded"
        assert run.rows_source == 100
        assert run.rows_silver == 95
        assert run.rows_source_rejected == 5
        assert run.silver_snapshot == "snap1"
        assert run.rows_gold is None
        assert run.bronze_snapshot is None
        assert run.finished_at is not None
        assert stub_worker.stages_called == ["silver"]

    def test_both_stages_in_order(self, orchestrator, entities, stub_worker):
        stub_worker.responses = {"silver": SILVER_OK, "gold": GOLD_OK}

        run = start(orchestrator, entities)

        assert stub_worker.stages_called == ["silver", "gold"]
        assert run.state == "succeeded"
        assert run.rows_silver_rejected == 2
        assert run.rows_gold == 40
        assert run.gold_snapshot == "snap2"
        assert run.logs == ["read 100 rows", "wrote 95 rows", "aggregated"]
        assert set(run.dq_summary) == {"amount_gt_0", "total_not_null"}

    def test_gold_only_pipeline(self, service, orchestrator, entities, stub_worker):
        pid = entities["project"].project_id
        pipeline = service.create_pipeline(
            pid, "gold_only", mapping_gold_id=entities["gold_mapping"].mapping_id
        )
        stub_worker.responses["gold"] = GOLD_OK

        run = orchestrator.start_run(pid, pipeline.pipeline_id)

        assert stub_worker.stages_called == ["gold"]
        assert run.rows_source is None
        assert run.rows_gold == 40

    def test_jobs_carry_deadline_and_wire_datasets(self, orchestrator, entities, stub_worker, settings):
        start(orchestrator, entities)

        silver_job, gold_job = stub_worker.calls[0][1], stub_worker.calls[1][1]
        assert all(deadline == settings.stage_deadline_seconds for _, _, deadline in stub_worker.calls)
        silver_wire = silver_job.to_wire()
        assert list(silver_wire["datasets"][0]) == ["Bronze"]
        assert silver_wire["datasets"][0]["Bronze"]["uri"] == "file:///data/sales.csv"
        assert silver_wire["datasets"][0]["Bronze"]["source"]["Csv"]["delimiter"] == ";"
        assert silver_wire["project"] == {"namespace": "dvf", "warehouse_uri": "file:///tmp/warehouse"}
        assert [list(d) for d in gold_job.to_wire()["datasets"]] == [["Silver"], ["Gold"]]

    def test_error_samples_stored_with_defaults(self, orchestrator, entities, stub_worker, memory_run_store):
        stub_worker.responses["silver"] = SILVER_OK

        run = start(orchestrator, entities)
        samples = memory_run_store.list_error_samples(run.run_id)

        assert [s.reason_code for s in samples] == ["DQ_FAIL", "ERR"]
        assert samples[1].message == "unparseable amount"
        assert all(s.stage == "silver" for s in samples)
        assert samples[0].source_values == {"amount": "-1"}

    def test_error_samples_capped(self, memory_store, memory_run_store, stub_worker, service, settings):
        entities = seed_catalog(service, with_gold=False)
        stub_worker.responses["silver"] = {
            "error_samples": [{"message": f"row {i}"} for i in range(10)]
        }
        capped = Settings(db_password="x", error_sample_limit=3)
        orchestrator = RunOrchestrator(memory_store, memory_run_store, stub_worker, capped)

        run = start(orchestrator, entities)

        assert len(memory_run_store.list_error_samples(run.run_id)) == 3

    def test_error_samples_capped_at_default_limit(self, memory_store, memory_run_store, stub_worker, entities):
        samples = [{"reason_code": "DQ_FAIL", "row_no": i} for i in range(1001)]
        stub_worker.responses = {"silver": {"error_samples": samples}, "gold": {"error_samples": samples}}
        orchestrator = RunOrchestrator(memory_store, memory_run_store, stub_worker, Settings(db_password="x"))

        run = start(orchestrator, entities)

        stored = [s for s in memory_run_store.samples if s.run_id == run.run_id]
        assert len(stored) == 2000
        assert sum(1 for s in stored if s.stage == "silver") == 1000
        assert sum(1 for s in stored if s.stage == "gold") == 1000

    def test_silver_only_run_with_rejections(self, memory_store, memory_run_store, stub_worker, service, settings):
        entities = seed_catalog(service, with_gold=False)
        stub_worker.responses["silver"] = {
            "ori_rows": 100,
            "dest_rows": 95,
            "rejected_rows": 5,
            "error_samples": [{"reason_code": "DQ_FAIL", "row_no": i} for i in range(5)],
        }
        orchestrator = RunOrchestrator(memory_store, memory_run_store, stub_worker, settings)

        run = start(orchestrator, entities)

        assert run.state == "succeeded"
        assert (run.rows_source, run.rows_silver, run.rows_source_rejected) == (100, 95, 5)
        assert run.rows_gold is None
        assert len(memory_run_store.list_error_samples(run.run_id)) == 5

    def test_succeeded_run_counted(self, orchestrator, entities):
        labels = {"project_id": entities["project"].project_id, "state": "succeeded"}
        before = REGISTRY.get_sample_value("layerflow_runs_finished_total", labels) or 0

        start(orchestrator, entities)

        assert REGISTRY.get_sample_value("layerflow_runs_finished_total", labels) == before + 1
        assert REGISTRY.get_sample_value("layerflow_active_runs") == 0


class TestFailedRuns:
    def test_gold_failure_keeps_silver_metrics(self, orchestrator, entities, stub_worker):
        stub_worker.responses = {"silver": SILVER_OK, "gold": WorkerError("engine exploded", 500)}

        run = start(orchestrator, entities)

        assert run.state == "failed"
        assert run.failed_stage == "gold"
        assert run.failure_code == "worker_error"
        assert run.state_reason == "gold stage failed: engine exploded"
        assert run.rows_silver == 95
        assert run.silver_snapshot == "snap1"
        assert run.rows_gold is None

    def test_silver_failure_skips_gold(self, orchestrator, entities, stub_worker):
        stub_worker.responses["silver"] = WorkerError("source unreadable")

        run = start(orchestrator, entities)

        assert stub_worker.stages_called == ["silver"]
        assert run.failed_stage == "silver"
        assert run.rows_source is None

    def test_timeout(self, orchestrator, entities, stub_worker):
        stub_worker.responses["gold"] = WorkerTimeoutError("no answer within 30.0s")

        run = start(orchestrator, entities)

        assert run.state == "failed"
        assert run.failure_code == "timed_out"
        assert run.failed_stage == "gold"

    def test_internal_error_while_recording(self, orchestrator, entities, memory_run_store):
        memory_run_store.fail_on_record = KeyError("run vanished")

        run = start(orchestrator, entities)

        assert run.state == "failed"
        assert run.failure_code == "internal_error"
        assert run.failed_stage == "silver"

    def test_failed_run_is_not_running(self, orchestrator, entities, stub_worker, memory_run_store):
        stub_worker.responses["silver"] = WorkerError("boom")
        run = start(orchestrator, entities)

        assert run.is_terminal
        assert not memory_run_store.finish_run(run.run_id, "succeeded", run.finished_at)
        assert memory_run_store.get_run(run.run_id).state == "failed"

    def test_pipeline_can_run_again_after_failure(self, orchestrator, entities, stub_worker):
        stub_worker.responses["silver"] = WorkerError("boom")
        first = start(orchestrator, entities)

        stub_worker.responses["silver"] = SILVER_OK
        second = start(orchestrator, entities)

        assert first.state == "failed"
        assert second.state == "succeeded"
        assert second.run_id != first.run_id

    def test_negative_row_count_fails_run(self, memory_store, memory_run_store, stub_worker, service, settings):
        entities = seed_catalog(service, with_gold=False)
        stub_worker.responses["silver"] = {"ori_rows": 10, "dest_rows": 10, "rejected_rows": -1}
        orchestrator = RunOrchestrator(memory_store, memory_run_store, stub_worker, settings)

        run = start(orchestrator, entities)

        assert run.state == "failed"
        assert run.failure_code == "worker_error"
        assert run.failed_stage == "silver"

        stub_worker.responses["silver"] = {"ori_rows": 10, "dest_rows": 10, "rejected_rows": 0}
        assert start(orchestrator, entities).state == "succeeded"

    def test_error_while_counting_rows_fails_stage(self, orchestrator, entities, stub_worker, monkeypatch):
        def broken(*args):
            raise ValueError("Counters can only be incremented by non-negative amounts.")

        monkeypatch.setattr(run_orchestrator_module, "record_stage_rows", broken)

        run = start(orchestrator, entities)

        assert run.state == "failed"
        assert run.failure_code == "internal_error"
        assert run.failed_stage == "silver"
        assert stub_worker.stages_called == ["silver"]

    def test_unexpected_error_still_finishes_run(self, orchestrator, entities, monkeypatch, memory_run_store):
        def broken(*args):
            raise RuntimeError("lost track of the plan")

        monkeypatch.setattr(orchestrator, "_run_stage", broken)

        run = start(orchestrator, entities)

        assert run.state == "failed"
        assert run.failure_code == "internal_error"
        assert run.failed_stage is None
        assert "lost track of the plan" in run.state_reason
        assert REGISTRY.get_sample_value("layerflow_active_runs") == 0
        assert [r.state for r in memory_run_store.runs.values()] == ["failed"]


class TestRejectedRuns:
    def test_empty_pipeline(self, service, orchestrator, entities, memory_run_store, stub_worker):
        pid = entities["project"].project_id
        empty = service.create_pipeline(pid, "empty")

        with pytest.raises(EmptyPipelineError):
            orchestrator.start_run(pid, empty.pipeline_id)

        assert memory_run_store.runs == {}
        assert stub_worker.calls == []

    def test_unknown_pipeline(self, orchestrator, entities):
        with pytest.raises(NotFoundError) as exc_info:
            orchestrator.start_run(entities["project"].project_id, 9999)
        assert exc_info.value.field_name == "pipeline_id"

    def test_foreign_pipeline(self, service, orchestrator, entities):
        other = seed_catalog(service, slug="other")
        with pytest.raises(NotFoundError):
            orchestrator.start_run(entities["project"].project_id, other["pipeline"].pipeline_id)

    def test_repointed_mapping(self, orchestrator, entities, memory_store, memory_run_store, stub_worker):
        memory_store.mappings[entities["gold_mapping"].mapping_id].from_dataset_id = (
            entities["bronze"].dataset_id
        )

        with pytest.raises(LayerTransitionError) as exc_info:
            start(orchestrator, entities)

        assert exc_info.value.field_name == "mapping_gold_id"
        assert memory_run_store.runs == {}
        assert stub_worker.calls == []

    def test_bronze_without_source(self, orchestrator, entities, memory_store, memory_run_store):
        memory_store.sources.clear()

        with pytest.raises(NotFoundError) as exc_info:
            start(orchestrator, entities)

        assert exc_info.value.field_name == "mapping_silver_id"
        assert memory_run_store.runs == {}

    def test_run_in_progress(self, orchestrator, entities, memory_run_store, stub_worker):
        memory_run_store.begin_run(
            entities["project"].project_id, entities["pipeline"].pipeline_id, datetime.now(timezone.utc)
        )
        before = REGISTRY.get_sample_value("layerflow_runs_rejected_total", {"reason": "conflict"}) or 0

        with pytest.raises(RunConflictError):
            start(orchestrator, entities)

        assert len(memory_run_store.runs) == 1
        assert stub_worker.calls == []
        assert (
            REGISTRY.get_sample_value("layerflow_runs_rejected_total", {"reason": "conflict"})
            == before + 1
        )
