"""
Catalog operations for projects, sources, datasets, mappings and pipelines.

Every command validates its whole input, including cross-entity rules such
as layer transitions and per-project uniqueness, before it writes anything.
Entities are addressed through their project: an id belonging to another
project is reported as not found.
"""

from typing import Any

from pydantic import ValidationError as PydanticValidationError

from layerflow.config import Settings
from layerflow.core.models import (
    SILVER_DATASET_NAME,
    Dataset,
    Mapping,
    MappingTransforms,
    Pipeline,
    PipelineRun,
    Project,
    RunErrorSample,
    SchemaField,
    Source,
    canonical_type,
)
from layerflow.core.validators import check_stage_mapping, check_transition
from layerflow.observability.logger import get_logger
from layerflow.utils.validation import (
    NotFoundError,
    ValidationError,
    validate_limit,
    validate_name,
    validate_slug,
    validate_uri,
)

logger = get_logger(__name__)

# Marks an update argument the caller did not pass
UNSET: Any = object()


def _model(cls, field_name: str | None = None, **data):
    """Build a pydantic model, reporting failures as ValidationError."""
    try:
        return cls(**data)
    except PydanticValidationError as e:
        first = e.errors()[0]
        loc = ".".join(str(p) for p in first.get("loc", ())) or field_name
        raise ValidationError(f"{cls.__name__}: {first['msg']}", loc or field_name) from e


def _columns(columns: list[Any], field_name: str = "columns") -> list[SchemaField]:
    fields = []
    for idx, column in enumerate(columns or []):
        if isinstance(column, SchemaField):
            fields.append(column)
        elif isinstance(column, dict):
            fields.append(_model(SchemaField, f"{field_name}.{idx}", **column))
        else:
            raise ValidationError(f"{field_name}[{idx}] must be a mapping", field_name)
    return fields


class CatalogService:
    """
    Catalog commands and queries.

    Example:
        >>> service = CatalogService(CatalogStore(pool), HttpWorkerClient(url))
        >>> project = service.create_project("dvf", "dvf", "file:///warehouse")
        >>> source = service.create_source(project.project_id, "dvf_2024", "file:///data/dvf.csv")
    """

    def __init__(self, store, worker=None, settings: Settings | None = None, run_store=None):
        """
        Args:
            store: Catalog store (CatalogStore or a compatible double)
            worker: WorkerClient used for schema inference
            settings: Application settings (defaults apply when None)
            run_store: Run history store, for the run queries
        """
        self.store = store
        self.worker = worker
        self.settings = settings or Settings()
        self.run_store = run_store

    # =======================
    # PROJECTS
    # =======================

    def create_project(self, slug: str, namespace: str, warehouse_uri: str | None = None) -> Project:
        """
        Create a project.

        Args:
            slug: Unique project key
            namespace: Worker namespace of the project's tables
            warehouse_uri: Snapshot location; defaults to the configured one

        Raises:
            ValidationError: Invalid input, slug taken, or no warehouse URI available
        """
        slug = validate_slug(slug)
        namespace = validate_name(namespace, "namespace")
        warehouse_uri = warehouse_uri or self.settings.default_warehouse_uri
        if not warehouse_uri:
            raise ValidationError(
                "warehouse_uri is required (no DEFAULT_WAREHOUSE_URI configured)", "warehouse_uri"
            )
        warehouse_uri = validate_uri(warehouse_uri, "warehouse_uri")

        if self.store.find_project_by_slug(slug) is not None:
            raise ValidationError(f"slug '{slug}' is already taken", "slug")

        project = self.store.insert_project(
            _model(Project, slug=slug, namespace=namespace, warehouse_uri=warehouse_uri)
        )
        logger.info(f"Project {slug} created", extra={"project_id": project.project_id})
        return project

    def get_project(self, project_id: str) -> Project:
        project = self.store.get_project(project_id)
        if project is None:
            raise NotFoundError(f"project {project_id} does not exist", "project_id")
        return project

    def find_project(self, slug: str) -> Project | None:
        return self.store.find_project_by_slug(slug)

    def delete_project(self, project_id: str) -> None:
        """Delete a project and, by cascade, everything it owns."""
        project = self.get_project(project_id)
        self.store.delete_project(project.project_id)
        logger.info(f"Project {project.slug} deleted", extra={"project_id": project.project_id})

    # =======================
    # SOURCES
    # =======================

    def create_source(
        self,
        project_id: str,
        name: str,
        uri: str,
        format: str = "csv",
        config: dict[str, Any] | None = None,
    ) -> Source:
        project = self.get_project(project_id)
        name = validate_name(name)
        uri = validate_uri(uri)
        source = _model(
            Source, project_id=project.project_id, name=name, uri=uri, format=format, config=config or {}
        )

        if self.store.find_source_by_name(project.project_id, name) is not None:
            raise ValidationError(f"source '{name}' already exists", "name")

        return self.store.insert_source(source)

    def get_source(self, project_id: str, source_id: int) -> Source:
        project = self.get_project(project_id)
        source = self.store.get_source(source_id)
        if source is None or source.project_id != project.project_id:
            raise NotFoundError(f"source {source_id} does not exist on this project", "source_id")
        return source

    def list_sources(self, project_id: str) -> list[Source]:
        return self.store.list_sources(self.get_project(project_id).project_id)

    def update_source(
        self,
        project_id: str,
        source_id: int,
        name: str = UNSET,
        uri: str = UNSET,
        format: str = UNSET,
        config: dict[str, Any] = UNSET,
    ) -> Source:
        """Change a source; arguments not passed keep their current value."""
        current = self.get_source(project_id, source_id)
        changes: dict[str, Any] = {}
        if name is not UNSET:
            changes["name"] = validate_name(name)
        if uri is not UNSET:
            changes["uri"] = validate_uri(uri)
        if format is not UNSET:
            changes["format"] = format
        if config is not UNSET:
            changes["config"] = config or {}

        updated = _model(Source, **{**current.model_dump(), **changes})

        if updated.name != current.name:
            clash = self.store.find_source_by_name(current.project_id, updated.name)
            if clash is not None and clash.source_id != source_id:
                raise ValidationError(f"source '{updated.name}' already exists", "name")

        return self.store.update_source(updated)

    def delete_source(self, project_id: str, source_id: int) -> None:
        """Delete a source; its bronze dataset goes with it."""
        source = self.get_source(project_id, source_id)
        self.store.delete_source(source.source_id)
        logger.info(f"Source {source.name} deleted", extra={"project_id": project_id})

    def _bronze_for(self, source: Source) -> Dataset | None:
        for dataset in self.store.list_datasets(source.project_id, "bronze"):
            if dataset.source_id == source.source_id:
                return dataset
        return None

    def infer_bronze_schema(self, project_id: str, source_id: int, limit: int | None = 200) -> Dataset | None:
        """
        Sample the source through the worker and seed or refresh its bronze dataset.

        The bronze dataset is named after the source. Nothing is written when
        the worker returns no schema.

        Args:
            project_id: Owning project
            source_id: Source to sample
            limit: Rows to sample (clamped to [1, 1000])

        Returns:
            The bronze dataset, or None when no schema was inferred

        Raises:
            NotFoundError: Source missing or foreign
            WorkerError: The worker call failed
        """
        source = self.get_source(project_id, source_id)
        if self.worker is None:
            raise RuntimeError("CatalogService has no worker client configured")

        columns = self.worker.infer_schema(source.uri, source.worker_config(), limit)
        if not columns:
            logger.warning(f"No schema inferred for source {source.name}; bronze dataset left unchanged")
            return None

        return self._save_bronze(source, columns)

    def save_bronze_schema(self, project_id: str, source_id: int, columns: list[Any]) -> Dataset:
        """Set the bronze schema of a source by hand."""
        source = self.get_source(project_id, source_id)
        fields = _columns(columns)
        if not fields:
            raise ValidationError("bronze schema needs at least one column", "columns")
        return self._save_bronze(source, fields)

    def _save_bronze(self, source: Source, columns: list[SchemaField]) -> Dataset:
        existing = self._bronze_for(source)
        if existing is not None:
            dataset = _model(
                Dataset, **{**existing.model_dump(), "name": source.name, "columns": columns}
            )
            return self.store.update_dataset(dataset)

        clash = self.store.find_dataset(source.project_id, "bronze", source.name)
        if clash is not None:
            raise ValidationError(f"bronze dataset '{source.name}' already exists", "name")

        dataset = _model(
            Dataset,
            project_id=source.project_id,
            name=source.name,
            layer="bronze",
            columns=columns,
            primary_key=[],
            source_id=source.source_id,
        )
        return self.store.insert_dataset(dataset)

    # =======================
    # DATASETS
    # =======================

    def get_dataset(self, project_id: str, dataset_id: int, layer: str | None = None) -> Dataset:
        project = self.get_project(project_id)
        dataset = self.store.get_dataset(dataset_id)
        if dataset is None or dataset.project_id != project.project_id or (layer and dataset.layer != layer):
            kind = f"{layer} dataset" if layer else "dataset"
            raise NotFoundError(f"{kind} {dataset_id} does not exist on this project", "dataset_id")
        return dataset

    def find_dataset(self, project_id: str, layer: str, name: str) -> Dataset | None:
        return self.store.find_dataset(self.get_project(project_id).project_id, layer, name)

    def list_datasets(self, project_id: str, layer: str | None = None) -> list[Dataset]:
        return self.store.list_datasets(self.get_project(project_id).project_id, layer)

    def get_silver(self, project_id: str) -> Dataset | None:
        return self.store.find_dataset(self.get_project(project_id).project_id, "silver", SILVER_DATASET_NAME)

    def save_silver_schema(self, project_id: str, columns: list[Any], primary_key: list[str]) -> Dataset:
        """
        Create or replace the project's silver dataset.

        Raises:
            ValidationError: Empty schema, empty key, or key naming an unknown column
        """
        project = self.get_project(project_id)
        fields = _columns(columns)
        if not fields:
            raise ValidationError("silver schema needs at least one column", "columns")
        if not primary_key:
            raise ValidationError("silver dataset needs a primary key", "primary_key")

        return self._put_silver(project.project_id, fields, list(primary_key))

    def seed_silver_from_source(self, project_id: str, source_id: int) -> Dataset:
        """
        Copy a source's bronze columns into the silver schema.

        Types are canonicalised and every column becomes nullable; an existing
        silver primary key is kept when its columns still exist.
        """
        source = self.get_source(project_id, source_id)
        bronze = self._bronze_for(source)
        if bronze is None:
            raise NotFoundError(f"source {source.name} has no bronze dataset", "source_id")

        fields = [
            SchemaField(name=c.name, type=canonical_type(c.type), nullable=True)
            for c in bronze.columns
        ]
        current = self.get_silver(project_id)
        names = {f.name for f in fields}
        primary_key = [k for k in (current.primary_key if current else []) if k in names]
        if current and len(primary_key) != len(current.primary_key):
            logger.warning("Silver primary key columns missing from the seeded schema were dropped")

        return self._put_silver(source.project_id, fields, primary_key)

    def _put_silver(self, project_id: str, columns: list[SchemaField], primary_key: list[str]) -> Dataset:
        current = self.get_silver(project_id)
        data = {"columns": columns, "primary_key": primary_key}
        if current is not None:
            return self.store.update_dataset(_model(Dataset, **{**current.model_dump(), **data}))
        return self.store.insert_dataset(
            _model(Dataset, project_id=project_id, name=SILVER_DATASET_NAME, layer="silver", **data)
        )

    def create_gold_dataset(
        self, project_id: str, name: str, columns: list[Any], primary_key: list[str] | None = None
    ) -> Dataset:
        project = self.get_project(project_id)
        name = validate_name(name)
        fields = _columns(columns)
        if not fields:
            raise ValidationError("gold schema needs at least one column", "columns")
        dataset = _model(
            Dataset,
            project_id=project.project_id,
            name=name,
            layer="gold",
            columns=fields,
            primary_key=list(primary_key or []),
        )

        if self.store.find_dataset(project.project_id, "gold", name) is not None:
            raise ValidationError(f"gold dataset '{name}' already exists", "name")

        return self.store.insert_dataset(dataset)

    def update_gold_dataset(
        self,
        project_id: str,
        dataset_id: int,
        name: str = UNSET,
        columns: list[Any] = UNSET,
        primary_key: list[str] = UNSET,
    ) -> Dataset:
        current = self.get_dataset(project_id, dataset_id, layer="gold")
        changes: dict[str, Any] = {}
        if name is not UNSET:
            changes["name"] = validate_name(name)
        if columns is not UNSET:
            changes["columns"] = _columns(columns)
            if not changes["columns"]:
                raise ValidationError("gold schema needs at least one column", "columns")
        if primary_key is not UNSET:
            changes["primary_key"] = list(primary_key or [])

        updated = _model(Dataset, **{**current.model_dump(), **changes})

        if updated.name != current.name:
            clash = self.store.find_dataset(current.project_id, "gold", updated.name)
            if clash is not None and clash.dataset_id != dataset_id:
                raise ValidationError(f"gold dataset '{updated.name}' already exists", "name")

        return self.store.update_dataset(updated)

    def delete_gold_dataset(self, project_id: str, dataset_id: int) -> None:
        dataset = self.get_dataset(project_id, dataset_id, layer="gold")
        self.store.delete_dataset(dataset.dataset_id)

    # =======================
    # MAPPINGS
    # =======================

    def create_mapping(
        self,
        project_id: str,
        from_dataset_id: int,
        to_dataset_id: int,
        transforms: dict[str, Any] | MappingTransforms,
        dq_rules: list[Any] | None = None,
    ) -> Mapping:
        """
        Create the mapping between two datasets, or replace the transforms and
        DQ rules of the one that already joins them.

        Raises:
            LayerTransitionError: Dataset missing, foreign, or not an allowed layer pair
            ValidationError: Malformed transforms or DQ rules
        """
        project = self.get_project(project_id)
        check_transition(
            project.project_id,
            self.store.get_dataset(from_dataset_id),
            self.store.get_dataset(to_dataset_id),
        )
        mapping = _model(
            Mapping,
            "transforms",
            project_id=project.project_id,
            from_dataset_id=from_dataset_id,
            to_dataset_id=to_dataset_id,
            transforms=transforms,
            dq_rules=dq_rules or [],
        )

        saved = self.store.upsert_mapping(mapping)
        logger.info(
            f"Mapping {saved.mapping_id} saved ({from_dataset_id} -> {to_dataset_id})",
            extra={"project_id": project.project_id},
        )
        return saved

    def get_mapping(self, project_id: str, mapping_id: int) -> Mapping:
        project = self.get_project(project_id)
        mapping = self.store.get_mapping(mapping_id)
        if mapping is None or mapping.project_id != project.project_id:
            raise NotFoundError(f"mapping {mapping_id} does not exist on this project", "mapping_id")
        return mapping

    def list_mappings(self, project_id: str) -> list[Mapping]:
        return self.store.list_mappings(self.get_project(project_id).project_id)

    def update_mapping(
        self,
        project_id: str,
        mapping_id: int,
        from_dataset_id: int = UNSET,
        to_dataset_id: int = UNSET,
        transforms: dict[str, Any] | MappingTransforms = UNSET,
        dq_rules: list[Any] = UNSET,
    ) -> Mapping:
        """
        Change a mapping; arguments not passed keep their current value.

        The resulting endpoints are re-validated, and may not collide with the
        pair of another mapping.
        """
        current = self.get_mapping(project_id, mapping_id)
        changes: dict[str, Any] = {}
        if from_dataset_id is not UNSET:
            changes["from_dataset_id"] = from_dataset_id
        if to_dataset_id is not UNSET:
            changes["to_dataset_id"] = to_dataset_id
        if transforms is not UNSET:
            changes["transforms"] = transforms
        if dq_rules is not UNSET:
            changes["dq_rules"] = dq_rules or []

        updated = _model(Mapping, **{**current.model_dump(), **changes})
        check_transition(
            current.project_id,
            self.store.get_dataset(updated.from_dataset_id),
            self.store.get_dataset(updated.to_dataset_id),
        )

        other = self.store.find_mapping(current.project_id, updated.from_dataset_id, updated.to_dataset_id)
        if other is not None and other.mapping_id != mapping_id:
            raise ValidationError(
                f"mapping {other.mapping_id} already joins these datasets", "to_dataset_id"
            )

        return self.store.update_mapping(updated)

    def delete_mapping(self, project_id: str, mapping_id: int) -> None:
        """Delete a mapping; pipelines referencing it lose that stage."""
        mapping = self.get_mapping(project_id, mapping_id)
        self.store.delete_mapping(mapping.mapping_id)

    # =======================
    # PIPELINES
    # =======================

    def _check_stages(self, project_id: str, mapping_silver_id: int | None, mapping_gold_id: int | None) -> None:
        for stage, mapping_id in (("silver", mapping_silver_id), ("gold", mapping_gold_id)):
            if mapping_id is None:
                continue
            mapping = self.store.get_mapping(mapping_id)
            from_dataset = to_dataset = None
            if mapping is not None:
                from_dataset = self.store.get_dataset(mapping.from_dataset_id)
                to_dataset = self.store.get_dataset(mapping.to_dataset_id)
            check_stage_mapping(stage, project_id, mapping, from_dataset, to_dataset)

    def create_pipeline(
        self,
        project_id: str,
        name: str,
        mapping_silver_id: int | None = None,
        mapping_gold_id: int | None = None,
    ) -> Pipeline:
        """
        Create a pipeline from a silver-stage and a gold-stage mapping.

        Raises:
            ValidationError: Name empty or taken
            LayerTransitionError: A mapping does not fit its stage
        """
        project = self.get_project(project_id)
        name = validate_name(name)
        if self.store.find_pipeline_by_name(project.project_id, name) is not None:
            raise ValidationError(f"pipeline '{name}' already exists", "name")

        self._check_stages(project.project_id, mapping_silver_id, mapping_gold_id)

        pipeline = _model(
            Pipeline,
            project_id=project.project_id,
            name=name,
            mapping_silver_id=mapping_silver_id,
            mapping_gold_id=mapping_gold_id,
        )
        return self.store.insert_pipeline(pipeline)

    def get_pipeline(self, project_id: str, pipeline_id: int) -> Pipeline:
        project = self.get_project(project_id)
        pipeline = self.store.get_pipeline(pipeline_id)
        if pipeline is None or pipeline.project_id != project.project_id:
            raise NotFoundError(f"pipeline {pipeline_id} does not exist on this project", "pipeline_id")
        return pipeline

    def find_pipeline(self, project_id: str, name: str) -> Pipeline | None:
        return self.store.find_pipeline_by_name(self.get_project(project_id).project_id, name)

    def list_pipelines(self, project_id: str) -> list[Pipeline]:
        return self.store.list_pipelines(self.get_project(project_id).project_id)

    def update_pipeline(
        self,
        project_id: str,
        pipeline_id: int,
        name: str = UNSET,
        mapping_silver_id: int | None = UNSET,
        mapping_gold_id: int | None = UNSET,
    ) -> Pipeline:
        """
        Change a pipeline; arguments not passed keep their current value.

        Both stages are re-checked against their mappings' current endpoints,
        and nothing is written if either fails.
        """
        current = self.get_pipeline(project_id, pipeline_id)
        changes: dict[str, Any] = {}
        if name is not UNSET:
            changes["name"] = validate_name(name)
            clash = self.store.find_pipeline_by_name(current.project_id, changes["name"])
            if clash is not None and clash.pipeline_id != pipeline_id:
                raise ValidationError(f"pipeline '{changes['name']}' already exists", "name")
        if mapping_silver_id is not UNSET:
            changes["mapping_silver_id"] = mapping_silver_id
        if mapping_gold_id is not UNSET:
            changes["mapping_gold_id"] = mapping_gold_id

        updated = _model(Pipeline, **{**current.model_dump(), **changes})
        self._check_stages(current.project_id, updated.mapping_silver_id, updated.mapping_gold_id)

        return self.store.update_pipeline(updated)

    def delete_pipeline(self, project_id: str, pipeline_id: int) -> None:
        pipeline = self.get_pipeline(project_id, pipeline_id)
        self.store.delete_pipeline(pipeline.pipeline_id)

    # =======================
    # RUNS (READ-ONLY)
    # =======================

    def _runs(self):
        if self.run_store is None:
            raise RuntimeError("CatalogService has no run store configured")
        return self.run_store

    def list_runs(self, project_id: str, pipeline_id: int | None = None, limit: int = 50) -> list[PipelineRun]:
        project = self.get_project(project_id)
        limit = validate_limit(limit, max_limit=1000)
        return self._runs().list_runs(project.project_id, pipeline_id=pipeline_id, limit=limit)

    def get_run(self, project_id: str, run_id: int) -> PipelineRun:
        project = self.get_project(project_id)
        run = self._runs().get_run(run_id)
        if run is None or run.project_id != project.project_id:
            raise NotFoundError(f"run {run_id} does not exist on this project", "run_id")
        return run

    def list_error_samples(
        self, project_id: str, run_id: int, stage: str | None = None, limit: int = 100
    ) -> list[RunErrorSample]:
        run = self.get_run(project_id, run_id)
        limit = validate_limit(limit, max_limit=1000)
        return self._runs().list_error_samples(run.run_id, stage=stage, limit=limit)
