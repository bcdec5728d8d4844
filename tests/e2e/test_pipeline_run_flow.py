"""
End-to-end tests for the catalog-to-run workflow.

Tests the complete flow: YAML catalog definition -> schema inference ->
pipeline run through the worker -> run history and error samples, on a real
PostgreSQL database with a stubbed worker.
"""

import pytest

from doubles import StubWorker
from layerflow.catalog import CatalogConfigLoader, CatalogService
from layerflow.orchestration import RunOrchestrator
from layerflow.utils.validation import LayerTransitionError
from layerflow.worker.client import WorkerTimeoutError

DEFINITION = """
project:
  slug: dvf
  namespace: dvf
  warehouse_uri: file:///tmp/warehouse

sources:
  - name: dvf_2024
    uri: file:///data/dvf_2024.csv
    config: {delimiter: "|"}

silver:
  primary_key: [id]
  columns:
    - {name: id, type: str}
    - {name: amount, type: f64, nullable: true}

gold:
  - name: totals
    primary_key: [id]
    columns:
      - {name: id, type: str}
      - {name: total, type: f64, nullable: true}

mappings:
  totals:
    from: silver/silver
    to: gold/totals
    transforms:
      columns:
        - {target: id, expr: {col: id}}
        - {target: total, expr: {col: amount}}
"""


@pytest.fixture
def worker():
    return StubWorker(
        silver={
            "ori_rows": 100,
            "dest_rows": 95,
            "rejected_rows": 5,
            "snapshot": "snap1",
            "logs": ["silver ok"],
            "error_samples": [{"reason_code": "DQ_FAIL", "message": "amount <= 0", "row_no": 7}],
        },
        gold={"ori_rows": 95, "dest_rows": 12, "rejected_rows": 0, "snapshot": "snap2"},
        schema=[{"name": "id", "type": "Utf8"}, {"name": "amount", "type": "Float64"}],
    )


@pytest.fixture
def flow(tmp_path, catalog_store, run_store, worker, settings):
    path = tmp_path / "catalog.yaml"
    path.write_text(DEFINITION)
    service = CatalogService(catalog_store, worker, settings=settings, run_store=run_store)
    project_id = CatalogConfigLoader(path).apply(service)["project_id"]
    orchestrator = RunOrchestrator(catalog_store, run_store, worker, settings)
    return service, orchestrator, project_id


@pytest.mark.e2e
@pytest.mark.integration
def test_define_infer_and_run(flow, worker):
    """
    Scenario:
    1. Apply the catalog definition
    2. Infer the bronze schema and wire the silver mapping
    3. Run the pipeline through both stages
    4. Read back the run and its error samples
    """
    service, orchestrator, project_id = flow

    source = service.list_sources(project_id)[0]
    bronze = service.infer_bronze_schema(project_id, source.source_id, limit=100)
    assert bronze.name == "dvf_2024"

    silver = service.get_silver(project_id)
    silver_mapping = service.create_mapping(
        project_id,
        bronze.dataset_id,
        silver.dataset_id,
        {"columns": [{"target": "id", "expr": {"col": "id"}}, {"target": "amount", "expr": {"col": "amount"}}]},
        [{"column": "amount", "op": ">", "value": 0}],
    )
    totals = service.find_dataset(project_id, "gold", "totals")
    totals_mapping = next(m for m in service.list_mappings(project_id) if m.to_dataset_id == totals.dataset_id)
    pipeline = service.create_pipeline(
        project_id,
        "daily",
        mapping_silver_id=silver_mapping.mapping_id,
        mapping_gold_id=totals_mapping.mapping_id,
    )

    run = orchestrator.start_run(project_id, pipeline.pipeline_id)

    assert worker.stages_called == ["silver", "gold"]
    assert run.state == "succeeded"
    assert (run.rows_source, run.rows_silver, run.rows_source_rejected) == (100, 95, 5)
    assert run.rows_gold == 12
    assert (run.silver_snapshot, run.gold_snapshot) == ("snap1", "snap2")

    assert [r.run_id for r in service.list_runs(project_id)] == [run.run_id]
    samples = service.list_error_samples(project_id, run.run_id)
    assert [(s.stage, s.reason_code, s.row_no) for s in samples] == [("silver", "DQ_FAIL", 7)]


@pytest.mark.e2e
@pytest.mark.integration
def test_failed_gold_stage_keeps_silver(flow, worker):
    service, orchestrator, project_id = flow
    source = service.list_sources(project_id)[0]
    bronze = service.infer_bronze_schema(project_id, source.source_id)
    silver_mapping = service.create_mapping(
        project_id,
        bronze.dataset_id,
        service.get_silver(project_id).dataset_id,
        {"columns": [{"target": "id", "expr": {"col": "id"}}]},
    )
    mappings = service.list_mappings(project_id)
    gold_mapping = next(m for m in mappings if m.mapping_id != silver_mapping.mapping_id)
    pipeline = service.create_pipeline(
        project_id, "daily", silver_mapping.mapping_id, gold_mapping.mapping_id
    )

    worker.responses["gold"] = WorkerTimeoutError("no answer within 30.0s")

    run = orchestrator.start_run(project_id, pipeline.pipeline_id)

    assert run.state == "failed"
    assert run.failure_code == "timed_out"
    assert run.failed_stage == "gold"
    assert run.rows_silver == 95
    assert run.gold_snapshot is None

    # the pipeline is free to run again
    worker.responses["gold"] = {"dest_rows": 1}
    assert orchestrator.start_run(project_id, pipeline.pipeline_id).state == "succeeded"


@pytest.mark.e2e
@pytest.mark.integration
def test_repointed_mapping_blocks_run(flow):
    service, orchestrator, project_id = flow
    source = service.list_sources(project_id)[0]
    bronze = service.infer_bronze_schema(project_id, source.source_id)
    gold_mapping = service.list_mappings(project_id)[0]
    pipeline = service.create_pipeline(project_id, "gold_only", mapping_gold_id=gold_mapping.mapping_id)

    # repoint behind the pipeline: silver->gold becomes bronze->silver
    service.update_mapping(
        project_id,
        gold_mapping.mapping_id,
        from_dataset_id=bronze.dataset_id,
        to_dataset_id=service.get_silver(project_id).dataset_id,
    )

    with pytest.raises(LayerTransitionError) as exc_info:
        orchestrator.start_run(project_id, pipeline.pipeline_id)

    assert exc_info.value.field_name == "mapping_gold_id"
    assert service.list_runs(project_id) == []
