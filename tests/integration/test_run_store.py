"""
Integration tests for the PostgreSQL run store.

Tests the run lifecycle: begin (with the per-pipeline conflict check),
per-stage recording with merged logs and DQ summary, terminal-state
immutability and the cleanup of abandoned runs.
"""

from datetime import datetime, timedelta, timezone

import pytest

from doubles import StubWorker, seed_catalog
from layerflow.catalog import CatalogService
from layerflow.utils.validation import RunConflictError
from layerflow.warehouse import StageOutcome


@pytest.fixture
def entities(catalog_store, run_store, settings):
    service = CatalogService(catalog_store, StubWorker(), settings=settings, run_store=run_store)
    return seed_catalog(service)


def begin(run_store, entities):
    return run_store.begin_run(
        entities["project"].project_id,
        entities["pipeline"].pipeline_id,
        datetime.now(timezone.utc),
    )


@pytest.mark.integration
def test_begin_run_inserts_running(run_store, entities):
    run = begin(run_store, entities)

    assert run.run_id is not None
    assert run.state == "running"
    assert run.project_id == entities["project"].project_id
    assert run.logs == []
    assert run.dq_summary == {}


@pytest.mark.integration
def test_second_begin_conflicts(run_store, entities):
    first = begin(run_store, entities)

    with pytest.raises(RunConflictError) as exc_info:
        begin(run_store, entities)

    assert str(first.run_id) in str(exc_info.value)
    assert len(run_store.list_runs(entities["project"].project_id)) == 1


@pytest.mark.integration
def test_begin_after_finish(run_store, entities):
    first = begin(run_store, entities)
    run_store.finish_run(first.run_id, "succeeded", datetime.now(timezone.utc))

    second = begin(run_store, entities)

    runs = run_store.list_runs(entities["project"].project_id)
    assert [r.run_id for r in runs] == [second.run_id, first.run_id]


@pytest.mark.integration
def test_record_stages_merge(run_store, entities):
    run = begin(run_store, entities)
    pid = entities["project"].project_id

    inserted = run_store.record_stage(
        run.run_id,
        pid,
        StageOutcome(
            stage="silver",
            rows_read=100,
            rows_written=95,
            rows_rejected=5,
            snapshot="snap1",
            logs=["silver done"],
            dq_summary={"amount_gt_0": {"violations": 5}},
            error_samples=[
                {"reason_code": "DQ_FAIL", "message": "amount <= 0", "row_no": 3, "source_values": {"amount": "-1"}},
                {"reason_code": None, "message": None, "row_no": None, "source_values": None},
            ],
        ),
    )
    run_store.record_stage(
        run.run_id,
        pid,
        StageOutcome(
            stage="gold",
            rows_read=95,
            rows_written=40,
            rows_rejected=2,
            snapshot="snap2",
            logs=["gold done"],
            dq_summary={"total_not_null": {"violations": 0}},
        ),
    )

    stored = run_store.get_run(run.run_id)
    assert inserted == 2
    assert (stored.rows_source, stored.rows_silver, stored.rows_source_rejected) == (100, 95, 5)
    assert (stored.rows_gold, stored.rows_silver_rejected) == (40, 2)
    assert (stored.silver_snapshot, stored.gold_snapshot) == ("snap1", "snap2")
    assert stored.bronze_snapshot is None
    assert stored.logs == ["silver done", "gold done"]
    assert set(stored.dq_summary) == {"amount_gt_0", "total_not_null"}
    assert stored.state == "running"

    samples = run_store.list_error_samples(run.run_id)
    assert [s.reason_code for s in samples] == ["DQ_FAIL", "ERR"]
    assert samples[1].message == ""
    assert samples[1].source_values == {}
    assert run_store.list_error_samples(run.run_id, stage="gold") == []


@pytest.mark.integration
def test_finish_run_is_final(run_store, entities):
    run = begin(run_store, entities)

    assert run_store.finish_run(
        run.run_id,
        "failed",
        datetime.now(timezone.utc),
        reason="gold stage failed: boom",
        failure_code="worker_error",
        failed_stage="gold",
    )
    assert not run_store.finish_run(run.run_id, "succeeded", datetime.now(timezone.utc))

    stored = run_store.get_run(run.run_id)
    assert stored.state == "failed"
    assert stored.failure_code == "worker_error"
    assert stored.failed_stage == "gold"
    assert stored.state_reason == "gold stage failed: boom"
    assert stored.finished_at is not None


@pytest.mark.integration
def test_list_runs_filters_by_pipeline(run_store, entities, catalog_store):
    run = begin(run_store, entities)
    pid = entities["project"].project_id

    assert [r.run_id for r in run_store.list_runs(pid, pipeline_id=run.pipeline_id)] == [run.run_id]
    assert run_store.list_runs(pid, pipeline_id=run.pipeline_id + 1000) == []
    assert run_store.get_run(run.run_id + 1000) is None


@pytest.mark.integration
def test_fail_stale_runs_frees_pipeline(run_store, entities):
    """A run abandoned in running is failed, and the pipeline can start again"""
    project_id = entities["project"].project_id
    now = datetime.now(timezone.utc)
    stale = run_store.begin_run(project_id, entities["pipeline"].pipeline_id, now - timedelta(hours=2))

    assert run_store.fail_stale_runs(project_id, now - timedelta(hours=3), now) == []
    assert run_store.fail_stale_runs(project_id, now - timedelta(hours=1), now) == [stale.run_id]

    failed = run_store.get_run(stale.run_id)
    assert failed.state == "failed"
    assert failed.failure_code == "internal_error"
    assert failed.finished_at is not None

    assert begin(run_store, entities).state == "running"


@pytest.mark.integration
def test_fail_stale_runs_leaves_recent_and_finished(run_store, entities):
    project_id = entities["project"].project_id
    now = datetime.now(timezone.utc)
    done = run_store.begin_run(project_id, entities["pipeline"].pipeline_id, now - timedelta(hours=2))
    run_store.finish_run(done.run_id, "succeeded", now - timedelta(hours=1))
    recent = begin(run_store, entities)

    assert run_store.fail_stale_runs(project_id, now - timedelta(minutes=30), now) == []
    assert run_store.get_run(done.run_id).state == "succeeded"
    assert run_store.get_run(recent.run_id).state == "running"
