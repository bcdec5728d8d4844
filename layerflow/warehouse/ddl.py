"""
DDL for the catalog and run-history tables.

Ownership flows from projects downward with ON DELETE CASCADE; pipelines drop
their reference to a deleted mapping instead of disappearing with it.
"""

from .connection import DatabaseConnectionPool

TABLES = (
    "run_error_samples",
    "pipeline_runs",
    "pipelines",
    "mappings",
    "datasets",
    "sources",
    "projects",
)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS projects (
    project_id     UUID PRIMARY KEY,
    slug           TEXT NOT NULL UNIQUE,
    warehouse_uri  TEXT NOT NULL,
    namespace      TEXT NOT NULL,
    created_at     TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS sources (
    source_id   BIGSERIAL PRIMARY KEY,
    project_id  UUID NOT NULL REFERENCES projects (project_id) ON DELETE CASCADE,
    name        TEXT NOT NULL,
    uri         TEXT NOT NULL,
    format      TEXT NOT NULL DEFAULT 'csv' CHECK (format IN ('csv', 'parquet')),
    config      JSONB NOT NULL DEFAULT '{}'::jsonb,
    created_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at  TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CONSTRAINT unique_source_per_project_name UNIQUE (project_id, name)
);

CREATE TABLE IF NOT EXISTS datasets (
    dataset_id   BIGSERIAL PRIMARY KEY,
    project_id   UUID NOT NULL REFERENCES projects (project_id) ON DELETE CASCADE,
    source_id    BIGINT REFERENCES sources (source_id) ON DELETE CASCADE,
    name         TEXT NOT NULL,
    layer        TEXT NOT NULL CHECK (layer IN ('bronze', 'silver', 'gold')),
    columns      JSONB NOT NULL DEFAULT '[]'::jsonb,
    primary_key  JSONB NOT NULL DEFAULT '[]'::jsonb,
    created_at   TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at   TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CONSTRAINT unique_dataset_per_project_layer_name UNIQUE (project_id, layer, name)
);

CREATE TABLE IF NOT EXISTS mappings (
    mapping_id       BIGSERIAL PRIMARY KEY,
    project_id       UUID NOT NULL REFERENCES projects (project_id) ON DELETE CASCADE,
    from_dataset_id  BIGINT NOT NULL REFERENCES datasets (dataset_id) ON DELETE CASCADE,
    to_dataset_id    BIGINT NOT NULL REFERENCES datasets (dataset_id) ON DELETE CASCADE,
    transforms       JSONB NOT NULL,
    dq_rules         JSONB NOT NULL DEFAULT '[]'::jsonb,
    created_at       TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at       TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CONSTRAINT unique_mapping_per_project_from_to UNIQUE (project_id, from_dataset_id, to_dataset_id)
);

CREATE TABLE IF NOT EXISTS pipelines (
    pipeline_id        BIGSERIAL PRIMARY KEY,
    project_id         UUID NOT NULL REFERENCES projects (project_id) ON DELETE CASCADE,
    name               TEXT NOT NULL,
    mapping_silver_id  BIGINT REFERENCES mappings (mapping_id) ON DELETE SET NULL,
    mapping_gold_id    BIGINT REFERENCES mappings (mapping_id) ON DELETE SET NULL,
    created_at         TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at         TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CONSTRAINT unique_pipeline_per_project_name UNIQUE (project_id, name)
);

CREATE TABLE IF NOT EXISTS pipeline_runs (
    run_id                BIGSERIAL PRIMARY KEY,
    project_id            UUID NOT NULL REFERENCES projects (project_id) ON DELETE CASCADE,
    pipeline_id           BIGINT NOT NULL REFERENCES pipelines (pipeline_id) ON DELETE CASCADE,
    state                 TEXT NOT NULL DEFAULT 'queued'
                          CHECK (state IN ('queued', 'running', 'succeeded', 'failed')),
    state_reason          TEXT,
    failure_code          TEXT CHECK (failure_code IN ('worker_error', 'timed_out', 'internal_error')),
    failed_stage          TEXT CHECK (failed_stage IN ('silver', 'gold')),
    bronze_snapshot       TEXT,
    silver_snapshot       TEXT,
    gold_snapshot         TEXT,
    rows_source           BIGINT,
    rows_source_rejected  BIGINT,
    rows_silver           BIGINT,
    rows_silver_rejected  BIGINT,
    rows_gold             BIGINT,
    dq_summary            JSONB NOT NULL DEFAULT '{}'::jsonb,
    logs                  JSONB NOT NULL DEFAULT '[]'::jsonb,
    started_at            TIMESTAMPTZ,
    finished_at           TIMESTAMPTZ,
    created_at            TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_pipeline_run_project_created_at
    ON pipeline_runs (project_id, created_at);

CREATE INDEX IF NOT EXISTS idx_pipeline_run_pipeline_state
    ON pipeline_runs (pipeline_id, state);

CREATE TABLE IF NOT EXISTS run_error_samples (
    sample_id      BIGSERIAL PRIMARY KEY,
    project_id     UUID NOT NULL REFERENCES projects (project_id) ON DELETE CASCADE,
    run_id         BIGINT NOT NULL REFERENCES pipeline_runs (run_id) ON DELETE CASCADE,
    stage          TEXT NOT NULL CHECK (stage IN ('silver', 'gold')),
    reason_code    TEXT NOT NULL,
    message        TEXT NOT NULL,
    row_no         BIGINT,
    source_values  JSONB,
    created_at     TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_run_error_sample_run_id
    ON run_error_samples (run_id);
"""


def create_schema(pool: DatabaseConnectionPool) -> None:
    """Create every table and index that does not exist yet"""
    with pool.transaction() as cur:
        cur.execute(SCHEMA_SQL)


def drop_schema(pool: DatabaseConnectionPool) -> None:
    """Drop every layerflow table (children first)"""
    with pool.transaction() as cur:
        for table in TABLES:
            cur.execute(f"DROP TABLE IF EXISTS {table} CASCADE")
