"""
Request and response shapes of the transform worker.

A run request names two datasets. Each is a tagged descriptor whose variant
matches its layer:

    {"Bronze": {"uri": ..., "source": {"Csv": {...}}, "inner": {...}}}
    {"Silver": {"name": ..., "primary_key": [...], "schema": {"fields": [...]}}}
    {"Gold":   {"name": ..., "primary_key": [...], "schema": {"fields": [...]}}}

Worker responses are parsed leniently: every field is optional and absent
values fall back to null or empty.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, field_validator

from layerflow.core.models import Dataset, Mapping, Project, SchemaField, Source


# =======================
# REQUEST
# =======================

class InnerDataset(BaseModel):
    """Name, key and schema of a dataset as the worker sees it."""

    name: str
    primary_key: list[str] = Field(default_factory=list)
    columns: list[SchemaField] = Field(default_factory=list)

    @classmethod
    def from_dataset(cls, dataset: Dataset, primary_key: list[str] | None = None) -> "InnerDataset":
        return cls(
            name=dataset.name,
            primary_key=list(dataset.primary_key if primary_key is None else primary_key),
            columns=dataset.columns,
        )

    def to_wire(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "primary_key": self.primary_key,
            "schema": {"fields": [c.model_dump() for c in self.columns]},
        }


class BronzeDescriptor(BaseModel):
    """Bronze input: raw source location and reader configuration."""

    layer: Literal["bronze"] = "bronze"
    uri: str
    source: Any
    inner: InnerDataset

    def to_wire(self) -> dict[str, Any]:
        return {"Bronze": {"uri": self.uri, "source": self.source, "inner": self.inner.to_wire()}}


class SilverDescriptor(BaseModel):
    layer: Literal["silver"] = "silver"
    inner: InnerDataset

    def to_wire(self) -> dict[str, Any]:
        return {"Silver": self.inner.to_wire()}


class GoldDescriptor(BaseModel):
    layer: Literal["gold"] = "gold"
    inner: InnerDataset

    def to_wire(self) -> dict[str, Any]:
        return {"Gold": self.inner.to_wire()}


DatasetDescriptor = Annotated[
    Union[BronzeDescriptor, SilverDescriptor, GoldDescriptor],
    Field(discriminator="layer"),
]


class ProjectSpec(BaseModel):
    namespace: str
    warehouse_uri: str


class RunJob(BaseModel):
    """
    Job description for one stage: project, (from, to) datasets, mapping.
    """

    project: ProjectSpec
    datasets: tuple[DatasetDescriptor, DatasetDescriptor]
    mapping: dict[str, Any]

    def to_wire(self) -> dict[str, Any]:
        return {
            "project": self.project.model_dump(),
            "datasets": [d.to_wire() for d in self.datasets],
            "mapping": self.mapping,
        }


def _project_spec(project: Project, warehouse_uri: str | None) -> ProjectSpec:
    return ProjectSpec(
        namespace=project.namespace,
        warehouse_uri=warehouse_uri or project.warehouse_uri,
    )


def build_silver_job(
    project: Project,
    mapping: Mapping,
    bronze: Dataset,
    source: Source,
    silver: Dataset,
    warehouse_uri: str | None = None,
) -> RunJob:
    """
    Build the bronze -> silver job.

    Args:
        project: Owning project
        mapping: bronze->silver mapping
        bronze: Mapping's source dataset
        source: Source behind the bronze dataset
        silver: Mapping's destination dataset
        warehouse_uri: Overrides the project's warehouse URI

    Returns:
        RunJob ready to send
    """
    return RunJob(
        project=_project_spec(project, warehouse_uri),
        datasets=(
            BronzeDescriptor(
                uri=source.uri,
                source=source.worker_config(),
                inner=InnerDataset.from_dataset(bronze, primary_key=[]),
            ),
            SilverDescriptor(inner=InnerDataset.from_dataset(silver)),
        ),
        mapping=mapping.worker_payload(),
    )


def build_gold_job(
    project: Project,
    mapping: Mapping,
    silver: Dataset,
    gold: Dataset,
    warehouse_uri: str | None = None,
) -> RunJob:
    """Build the silver -> gold job."""
    return RunJob(
        project=_project_spec(project, warehouse_uri),
        datasets=(
            SilverDescriptor(inner=InnerDataset.from_dataset(silver)),
            GoldDescriptor(inner=InnerDataset.from_dataset(gold)),
        ),
        mapping=mapping.worker_payload(),
    )


# =======================
# RESPONSES
# =======================

class ErrorSampleResult(BaseModel):
    reason_code: str | None = None
    message: str | None = None
    row_no: int | None = None
    source_values: Any = None


class RunResult(BaseModel):
    """
    Outcome of one stage as reported by the worker.

    Attributes:
        logs: Worker log lines
        ori_rows: Rows read from the stage input
        dest_rows: Rows written to the destination layer
        rejected_rows: Rows rejected by transforms or DQ rules
        snapshot: Identifier of the destination snapshot produced
        dq_summary: DQ results keyed by rule code
        error_samples: Truncated subset of the rejected rows
    """

    logs: list[str] = Field(default_factory=list)
    ori_rows: int | None = Field(default=None, ge=0)
    dest_rows: int | None = Field(default=None, ge=0)
    rejected_rows: int | None = Field(default=None, ge=0)
    snapshot: str | None = None
    dq_summary: dict[str, Any] = Field(default_factory=dict)
    error_samples: list[ErrorSampleResult] = Field(default_factory=list)

    @field_validator("logs", mode="before")
    @classmethod
    def coerce_logs(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return [str(line) for line in v]

    @field_validator("error_samples", mode="before")
    @classmethod
    def default_samples(cls, v):
        return [] if v is None else v

    @field_validator("dq_summary", mode="before")
    @classmethod
    def normalise_dq_summary(cls, v):
        """
        Accept a dict, or the worker's list of
        ``{"rule_code", "violations", "checked_rows"}`` items keyed by rule code.
        """
        if v is None:
            return {}
        if isinstance(v, list):
            summary = {}
            for idx, item in enumerate(v):
                if isinstance(item, dict):
                    code = item.get("rule_code") or f"rule_{idx}"
                    summary[code] = {k: val for k, val in item.items() if k != "rule_code"}
                else:
                    summary[f"rule_{idx}"] = item
            return summary
        return v


class InferSchemaResult(BaseModel):
    """Schema sampled from a live source; columns is None when the worker sent none."""

    columns: list[SchemaField] | None = None

    @classmethod
    def from_response(cls, data: dict[str, Any] | None) -> "InferSchemaResult":
        schema = (data or {}).get("schema")
        if not schema:
            return cls()
        fields = schema.get("fields") if isinstance(schema, dict) else schema
        if not fields:
            return cls()
        return cls(columns=fields)
