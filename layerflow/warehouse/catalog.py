"""
Catalog persistence: projects, sources, datasets, mappings and pipelines.

Lookups by primary key are not scoped to a project; callers compare
``project_id`` themselves so a foreign entity can be reported as such.
"""

from typing import Any
from uuid import UUID

import psycopg
from psycopg import errors
from psycopg.types.json import Jsonb

from layerflow.core.models import Dataset, Mapping, Pipeline, Project, Source
from layerflow.observability.logger import get_logger
from layerflow.utils.validation import ValidationError

from .connection import DatabaseConnectionPool

logger = get_logger(__name__)

UNIQUE_FIELDS = {
    "projects_slug_key": "slug",
    "unique_source_per_project_name": "name",
    "unique_dataset_per_project_layer_name": "name",
    "unique_mapping_per_project_from_to": "to_dataset_id",
    "unique_pipeline_per_project_name": "name",
}


def _uuid(value: str) -> UUID | None:
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _project(row: dict[str, Any]) -> Project:
    return Project(**{**row, "project_id": str(row["project_id"])})


def _source(row: dict[str, Any]) -> Source:
    return Source(**{**row, "project_id": str(row["project_id"])})


def _dataset(row: dict[str, Any]) -> Dataset:
    return Dataset(**{**row, "project_id": str(row["project_id"])})


def _mapping(row: dict[str, Any]) -> Mapping:
    return Mapping(**{**row, "project_id": str(row["project_id"])})


def _pipeline(row: dict[str, Any]) -> Pipeline:
    return Pipeline(**{**row, "project_id": str(row["project_id"])})


class CatalogStore:
    """
    PostgreSQL-backed catalog.

    Unique-constraint violations surface as ValidationError naming the
    conflicting field; every other database error is logged and re-raised.
    """

    def __init__(self, pool: DatabaseConnectionPool):
        """
        Args:
            pool: Database connection pool
        """
        self.pool = pool

    # =======================
    # HELPERS
    # =======================

    def _fetch_one(self, query: str, params: dict[str, Any]) -> dict[str, Any] | None:
        try:
            with self.pool.transaction() as cur:
                cur.execute(query, params)
                return cur.fetchone()
        except psycopg.DatabaseError as e:
            logger.error(f"Catalog query failed: {e}")
            raise

    def _fetch_all(self, query: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        try:
            with self.pool.transaction() as cur:
                cur.execute(query, params)
                return cur.fetchall()
        except psycopg.DatabaseError as e:
            logger.error(f"Catalog query failed: {e}")
            raise

    def _write_one(self, query: str, params: dict[str, Any]) -> dict[str, Any] | None:
        try:
            with self.pool.transaction() as cur:
                cur.execute(query, params)
                return cur.fetchone()
        except errors.UniqueViolation as e:
            constraint = e.diag.constraint_name or ""
            field_name = UNIQUE_FIELDS.get(constraint)
            raise ValidationError(f"duplicate value violates {constraint}", field_name) from e
        except psycopg.DatabaseError as e:
            logger.error(f"Catalog write failed: {e}")
            raise

    def _delete(self, table: str, key: str, value: Any) -> bool:
        try:
            with self.pool.transaction() as cur:
                cur.execute(f"DELETE FROM {table} WHERE {key} = %(value)s", {"value": value})
                return cur.rowcount > 0
        except psycopg.DatabaseError as e:
            logger.error(f"Failed to delete from {table}: {e}")
            raise

    # =======================
    # PROJECTS
    # =======================

    def insert_project(self, project: Project) -> Project:
        row = self._write_one(
            """
            INSERT INTO projects (project_id, slug, warehouse_uri, namespace, created_at)
            VALUES (%(project_id)s, %(slug)s, %(warehouse_uri)s, %(namespace)s, %(created_at)s)
            RETURNING *
            """,
            {**project.model_dump(), "project_id": _uuid(project.project_id)},
        )
        logger.info(f"Created project {project.slug} ({project.project_id})")
        return _project(row)

    def get_project(self, project_id: str) -> Project | None:
        key = _uuid(project_id)
        if key is None:
            return None
        row = self._fetch_one("SELECT * FROM projects WHERE project_id = %(id)s", {"id": key})
        return _project(row) if row else None

    def find_project_by_slug(self, slug: str) -> Project | None:
        row = self._fetch_one("SELECT * FROM projects WHERE slug = %(slug)s", {"slug": slug})
        return _project(row) if row else None

    def delete_project(self, project_id: str) -> bool:
        key = _uuid(project_id)
        return key is not None and self._delete("projects", "project_id", key)

    # =======================
    # SOURCES
    # =======================

    def insert_source(self, source: Source) -> Source:
        row = self._write_one(
            """
            INSERT INTO sources (project_id, name, uri, format, config)
            VALUES (%(project_id)s, %(name)s, %(uri)s, %(format)s, %(config)s)
            RETURNING *
            """,
            {
                "project_id": _uuid(source.project_id),
                "name": source.name,
                "uri": source.uri,
                "format": source.format,
                "config": Jsonb(source.config),
            },
        )
        return _source(row)

    def update_source(self, source: Source) -> Source:
        row = self._write_one(
            """
            UPDATE sources
            SET name = %(name)s, uri = %(uri)s, format = %(format)s,
                config = %(config)s, updated_at = NOW()
            WHERE source_id = %(source_id)s
            RETURNING *
            """,
            {
                "source_id": source.source_id,
                "name": source.name,
                "uri": source.uri,
                "format": source.format,
                "config": Jsonb(source.config),
            },
        )
        return _source(row)

    def get_source(self, source_id: int) -> Source | None:
        row = self._fetch_one("SELECT * FROM sources WHERE source_id = %(id)s", {"id": source_id})
        return _source(row) if row else None

    def find_source_by_name(self, project_id: str, name: str) -> Source | None:
        row = self._fetch_one(
            "SELECT * FROM sources WHERE project_id = %(project_id)s AND name = %(name)s",
            {"project_id": _uuid(project_id), "name": name},
        )
        return _source(row) if row else None

    def list_sources(self, project_id: str) -> list[Source]:
        rows = self._fetch_all(
            "SELECT * FROM sources WHERE project_id = %(project_id)s ORDER BY source_id",
            {"project_id": _uuid(project_id)},
        )
        return [_source(r) for r in rows]

    def delete_source(self, source_id: int) -> bool:
        return self._delete("sources", "source_id", source_id)

    # =======================
    # DATASETS
    # =======================

    def insert_dataset(self, dataset: Dataset) -> Dataset:
        row = self._write_one(
            """
            INSERT INTO datasets (project_id, source_id, name, layer, columns, primary_key)
            VALUES (%(project_id)s, %(source_id)s, %(name)s, %(layer)s, %(columns)s, %(primary_key)s)
            RETURNING *
            """,
            self._dataset_params(dataset),
        )
        return _dataset(row)

    def update_dataset(self, dataset: Dataset) -> Dataset:
        row = self._write_one(
            """
            UPDATE datasets
            SET name = %(name)s, columns = %(columns)s, primary_key = %(primary_key)s,
                source_id = %(source_id)s, updated_at = NOW()
            WHERE dataset_id = %(dataset_id)s
            RETURNING *
            """,
            self._dataset_params(dataset),
        )
        return _dataset(row)

    @staticmethod
    def _dataset_params(dataset: Dataset) -> dict[str, Any]:
        return {
            "dataset_id": dataset.dataset_id,
            "project_id": _uuid(dataset.project_id),
            "source_id": dataset.source_id,
            "name": dataset.name,
            "layer": dataset.layer,
            "columns": Jsonb([c.model_dump() for c in dataset.columns]),
            "primary_key": Jsonb(list(dataset.primary_key)),
        }

    def get_dataset(self, dataset_id: int) -> Dataset | None:
        row = self._fetch_one("SELECT * FROM datasets WHERE dataset_id = %(id)s", {"id": dataset_id})
        return _dataset(row) if row else None

    def find_dataset(self, project_id: str, layer: str, name: str) -> Dataset | None:
        row = self._fetch_one(
            """
            SELECT * FROM datasets
            WHERE project_id = %(project_id)s AND layer = %(layer)s AND name = %(name)s
            """,
            {"project_id": _uuid(project_id), "layer": layer, "name": name},
        )
        return _dataset(row) if row else None

    def list_datasets(self, project_id: str, layer: str | None = None) -> list[Dataset]:
        query = "SELECT * FROM datasets WHERE project_id = %(project_id)s"
        if layer:
            query += " AND layer = %(layer)s"
        query += " ORDER BY dataset_id"
        rows = self._fetch_all(query, {"project_id": _uuid(project_id), "layer": layer})
        return [_dataset(r) for r in rows]

    def delete_dataset(self, dataset_id: int) -> bool:
        return self._delete("datasets", "dataset_id", dataset_id)

    # =======================
    # MAPPINGS
    # =======================

    def upsert_mapping(self, mapping: Mapping) -> Mapping:
        """
        Insert a mapping, or update transforms and DQ rules of the mapping
        already joining the same (project, from, to).
        """
        row = self._write_one(
            """
            INSERT INTO mappings (project_id, from_dataset_id, to_dataset_id, transforms, dq_rules)
            VALUES (%(project_id)s, %(from_dataset_id)s, %(to_dataset_id)s, %(transforms)s, %(dq_rules)s)
            ON CONFLICT (project_id, from_dataset_id, to_dataset_id) DO UPDATE SET
                transforms = EXCLUDED.transforms,
                dq_rules = EXCLUDED.dq_rules,
                updated_at = NOW()
            RETURNING *
            """,
            self._mapping_params(mapping),
        )
        return _mapping(row)

    def update_mapping(self, mapping: Mapping) -> Mapping:
        row = self._write_one(
            """
            UPDATE mappings
            SET from_dataset_id = %(from_dataset_id)s, to_dataset_id = %(to_dataset_id)s,
                transforms = %(transforms)s, dq_rules = %(dq_rules)s, updated_at = NOW()
            WHERE mapping_id = %(mapping_id)s
            RETURNING *
            """,
            self._mapping_params(mapping),
        )
        return _mapping(row)

    @staticmethod
    def _mapping_params(mapping: Mapping) -> dict[str, Any]:
        return {
            "mapping_id": mapping.mapping_id,
            "project_id": _uuid(mapping.project_id),
            "from_dataset_id": mapping.from_dataset_id,
            "to_dataset_id": mapping.to_dataset_id,
            "transforms": Jsonb(mapping.transforms.model_dump()),
            "dq_rules": Jsonb([r.model_dump() for r in mapping.dq_rules]),
        }

    def get_mapping(self, mapping_id: int) -> Mapping | None:
        row = self._fetch_one("SELECT * FROM mappings WHERE mapping_id = %(id)s", {"id": mapping_id})
        return _mapping(row) if row else None

    def find_mapping(self, project_id: str, from_dataset_id: int, to_dataset_id: int) -> Mapping | None:
        row = self._fetch_one(
            """
            SELECT * FROM mappings
            WHERE project_id = %(project_id)s
              AND from_dataset_id = %(from_id)s AND to_dataset_id = %(to_id)s
            """,
            {"project_id": _uuid(project_id), "from_id": from_dataset_id, "to_id": to_dataset_id},
        )
        return _mapping(row) if row else None

    def list_mappings(self, project_id: str) -> list[Mapping]:
        rows = self._fetch_all(
            "SELECT * FROM mappings WHERE project_id = %(project_id)s ORDER BY mapping_id",
            {"project_id": _uuid(project_id)},
        )
        return [_mapping(r) for r in rows]

    def delete_mapping(self, mapping_id: int) -> bool:
        return self._delete("mappings", "mapping_id", mapping_id)

    # =======================
    # PIPELINES
    # =======================

    def insert_pipeline(self, pipeline: Pipeline) -> Pipeline:
        row = self._write_one(
            """
            INSERT INTO pipelines (project_id, name, mapping_silver_id, mapping_gold_id)
            VALUES (%(project_id)s, %(name)s, %(mapping_silver_id)s, %(mapping_gold_id)s)
            RETURNING *
            """,
            {**pipeline.model_dump(), "project_id": _uuid(pipeline.project_id)},
        )
        return _pipeline(row)

    def update_pipeline(self, pipeline: Pipeline) -> Pipeline:
        row = self._write_one(
            """
            UPDATE pipelines
            SET name = %(name)s, mapping_silver_id = %(mapping_silver_id)s,
                mapping_gold_id = %(mapping_gold_id)s, updated_at = NOW()
            WHERE pipeline_id = %(pipeline_id)s
            RETURNING *
            """,
            {**pipeline.model_dump(), "project_id": _uuid(pipeline.project_id)},
        )
        return _pipeline(row)

    def get_pipeline(self, pipeline_id: int) -> Pipeline | None:
        row = self._fetch_one("SELECT * FROM pipelines WHERE pipeline_id = %(id)s", {"id": pipeline_id})
        return _pipeline(row) if row else None

    def find_pipeline_by_name(self, project_id: str, name: str) -> Pipeline | None:
        row = self._fetch_one(
            "SELECT * FROM pipelines WHERE project_id = %(project_id)s AND name = %(name)s",
            {"project_id": _uuid(project_id), "name": name},
        )
        return _pipeline(row) if row else None

    def list_pipelines(self, project_id: str) -> list[Pipeline]:
        rows = self._fetch_all(
            "SELECT * FROM pipelines WHERE project_id = %(project_id)s ORDER BY pipeline_id",
            {"project_id": _uuid(project_id)},
        )
        return [_pipeline(r) for r in rows]

    def delete_pipeline(self, pipeline_id: int) -> bool:
        return self._delete("pipelines", "pipeline_id", pipeline_id)
