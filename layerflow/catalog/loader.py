"""
Declarative catalog definitions.

Applies a YAML description of one project (sources, schemas, mappings and
pipelines) through CatalogService. Applying the same file twice leaves the
catalog unchanged.
"""

from pathlib import Path
from typing import Any

import yaml

from layerflow.core.models import LAYERS, Dataset, Project
from layerflow.observability.logger import get_logger

from .service import CatalogService

logger = get_logger(__name__)


class CatalogConfigLoader:
    """
    Loads a project definition from a YAML file.

    Expected YAML format:
    ```yaml
    project:
      slug: dvf
      namespace: dvf
      warehouse_uri: file:///warehouse

    sources:
      - name: dvf_2024
        uri: file:///data/dvf_2024.csv
        format: csv
        config:
          delimiter: "|"
        schema:                       # optional bronze schema
          - {name: id, type: utf8}
          - {name: amount, type: float64}

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

    mappings:
      clean_sales:
        from: bronze/dvf_2024
        to: silver/silver
        transforms:
          columns:
            - {target: id, expr: {col: id}}
        dq_rules:
          - {column: amount, op: ">", value: 0}

    pipelines:
      - name: daily
        silver: clean_sales
        gold: null
    ```
    """

    def __init__(self, config_path: str | Path):
        """
        Args:
            config_path: Path to the YAML definition
        """
        self.config_path = Path(config_path)
        if not self.config_path.exists():
            raise FileNotFoundError(f"Catalog definition not found: {config_path}")

    def load(self) -> dict[str, Any]:
        """
        Parse the definition file.

        Raises:
            ValueError: If the YAML is empty or lacks a project section
        """
        with open(self.config_path) as f:
            config = yaml.safe_load(f)

        if not config or not isinstance(config, dict) or "project" not in config:
            raise ValueError("Catalog definition must contain a 'project' section")

        for section in ("sources", "gold", "pipelines"):
            if not isinstance(config.get(section) or [], list):
                raise ValueError(f"'{section}' must be a list")
        if not isinstance(config.get("mappings") or {}, dict):
            raise ValueError("'mappings' must be a mapping of key -> mapping definition")

        return config

    def apply(self, service: CatalogService) -> dict[str, Any]:
        """
        Create or update every entity of the definition, in dependency order.

        Returns:
            Summary with the project id and the number of entities applied per kind
        """
        config = self.load()
        summary: dict[str, Any] = {"sources": 0, "datasets": 0, "mappings": 0, "pipelines": 0}

        project = self._apply_project(service, config["project"])
        project_id = project.project_id
        summary["project_id"] = project_id

        for source_def in config.get("sources") or []:
            source = self._apply_source(service, project_id, source_def)
            summary["sources"] += 1
            if source_def.get("schema"):
                service.save_bronze_schema(project_id, source.source_id, source_def["schema"])
                summary["datasets"] += 1

        silver_def = config.get("silver")
        if silver_def:
            service.save_silver_schema(
                project_id, silver_def.get("columns") or [], silver_def.get("primary_key") or []
            )
            summary["datasets"] += 1

        for gold_def in config.get("gold") or []:
            self._apply_gold(service, project_id, gold_def)
            summary["datasets"] += 1

        mapping_ids: dict[str, int] = {}
        for key, mapping_def in (config.get("mappings") or {}).items():
            from_ds = self._resolve_dataset(service, project_id, mapping_def.get("from"), key)
            to_ds = self._resolve_dataset(service, project_id, mapping_def.get("to"), key)
            mapping = service.create_mapping(
                project_id,
                from_ds.dataset_id,
                to_ds.dataset_id,
                mapping_def.get("transforms") or {},
                mapping_def.get("dq_rules") or [],
            )
            mapping_ids[key] = mapping.mapping_id
            summary["mappings"] += 1

        for pipeline_def in config.get("pipelines") or []:
            self._apply_pipeline(service, project_id, pipeline_def, mapping_ids)
            summary["pipelines"] += 1

        logger.info(f"Applied catalog definition {self.config_path}", extra=summary)
        return summary

    def _apply_project(self, service: CatalogService, project_def: dict[str, Any]) -> Project:
        slug = project_def.get("slug")
        existing = service.find_project(slug) if slug else None
        if existing is not None:
            if project_def.get("namespace") not in (None, existing.namespace):
                logger.warning(f"Project {slug} exists; namespace is not changed by apply")
            return existing
        return service.create_project(
            slug, project_def.get("namespace") or slug, project_def.get("warehouse_uri")
        )

    def _apply_source(self, service: CatalogService, project_id: str, source_def: dict[str, Any]):
        name = source_def.get("name")
        fields = {
            "uri": source_def.get("uri"),
            "format": source_def.get("format", "csv"),
            "config": source_def.get("config") or {},
        }
        existing = next((s for s in service.list_sources(project_id) if s.name == name), None)
        if existing is None:
            return service.create_source(project_id, name, **fields)
        return service.update_source(project_id, existing.source_id, **fields)

    def _apply_gold(self, service: CatalogService, project_id: str, gold_def: dict[str, Any]) -> Dataset:
        name = gold_def.get("name")
        columns = gold_def.get("columns") or []
        primary_key = gold_def.get("primary_key") or []
        existing = service.find_dataset(project_id, "gold", name) if name else None
        if existing is None:
            return service.create_gold_dataset(project_id, name, columns, primary_key)
        return service.update_gold_dataset(
            project_id, existing.dataset_id, columns=columns, primary_key=primary_key
        )

    def _resolve_dataset(self, service: CatalogService, project_id: str, ref: str | None, key: str) -> Dataset:
        """Resolve a ``layer/name`` reference."""
        if not ref or "/" not in ref:
            raise ValueError(f"Mapping '{key}': dataset reference must be 'layer/name', got {ref!r}")
        layer, name = ref.split("/", 1)
        if layer not in LAYERS:
            raise ValueError(f"Mapping '{key}': unknown layer '{layer}'")
        dataset = service.find_dataset(project_id, layer, name)
        if dataset is None:
            raise ValueError(f"Mapping '{key}': dataset {ref} is not defined")
        return dataset

    def _apply_pipeline(
        self,
        service: CatalogService,
        project_id: str,
        pipeline_def: dict[str, Any],
        mapping_ids: dict[str, int],
    ) -> None:
        stages = {}
        for stage in ("silver", "gold"):
            key = pipeline_def.get(stage)
            if key is None:
                stages[f"mapping_{stage}_id"] = None
            elif key in mapping_ids:
                stages[f"mapping_{stage}_id"] = mapping_ids[key]
            else:
                raise ValueError(
                    f"Pipeline '{pipeline_def.get('name')}': unknown {stage} mapping '{key}'"
                )

        name = pipeline_def.get("name")
        existing = service.find_pipeline(project_id, name) if name else None
        if existing is None:
            service.create_pipeline(project_id, name, **stages)
        else:
            service.update_pipeline(project_id, existing.pipeline_id, **stages)
