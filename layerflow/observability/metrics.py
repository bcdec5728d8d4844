"""
Prometheus metrics for layerflow

Run lifecycle, per-stage throughput and worker request outcomes.
"""
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()


# =======================
# RUN METRICS
# =======================

runs_started_total = Counter(
    name="layerflow_runs_started_total",
    documentation="Pipeline runs started",
    labelnames=["project_id"],
    registry=REGISTRY,
)

runs_finished_total = Counter(
    name="layerflow_runs_finished_total",
    documentation="Pipeline runs reaching a terminal state",
    labelnames=["project_id", "state"],  # state: succeeded, failed
    registry=REGISTRY,
)

runs_rejected_total = Counter(
    name="layerflow_runs_rejected_total",
    documentation="Run starts rejected before a run record was written",
    labelnames=["reason"],  # reason: invalid_pipeline, conflict
    registry=REGISTRY,
)

active_runs = Gauge(
    name="layerflow_active_runs",
    documentation="Runs currently executing in this process",
    registry=REGISTRY,
)

# =======================
# STAGE METRICS
# =======================

stage_duration_seconds = Histogram(
    name="layerflow_stage_duration_seconds",
    documentation="Wall time of one pipeline stage, worker call included",
    labelnames=["stage", "status"],  # stage: silver, gold
    buckets=[0.5, 1.0, 5.0, 15.0, 60.0, 300.0, 900.0, 3600.0, 14400.0],
    registry=REGISTRY,
)

stage_rows_total = Counter(
    name="layerflow_stage_rows_total",
    documentation="Rows reported by the worker per stage",
    labelnames=["stage", "kind"],  # kind: read, written, rejected
    registry=REGISTRY,
)

error_samples_recorded_total = Counter(
    name="layerflow_error_samples_recorded_total",
    documentation="Rejected-row samples persisted",
    labelnames=["stage"],
    registry=REGISTRY,
)

# =======================
# WORKER METRICS
# =======================

worker_requests_total = Counter(
    name="layerflow_worker_requests_total",
    documentation="Requests sent to the transform worker",
    labelnames=["endpoint", "outcome"],  # outcome: ok, http_error, transport_error, timeout, malformed
    registry=REGISTRY,
)


def record_stage_rows(stage: str, read: int | None, written: int | None, rejected: int | None) -> None:
    """Add worker-reported row counts for a stage, skipping absent values"""
    for kind, value in (("read", read), ("written", written), ("rejected", rejected)):
        if value:
            stage_rows_total.labels(stage=stage, kind=kind).inc(value)


def get_metrics() -> tuple[bytes, str]:
    """
    Render the registry in Prometheus exposition format.

    Returns:
        (payload, content_type)
    """
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
