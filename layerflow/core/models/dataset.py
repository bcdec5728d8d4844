"""
Dataset model: a schema bound to one layer of a project.
"""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .layers import Layer

# Canonical logical types understood by the worker
CANONICAL_TYPES: dict[str, tuple[str, ...]] = {
    "str": ("utf8", "str", "string"),
    "f64": ("f64", "double", "f32", "float", "float32", "float64"),
    "i64": ("i64", "int64", "i32", "int32"),
    "bool": ("bool", "boolean"),
    "date": ("date", "date32"),
    "datetime": ("datetime", "timestamp"),
}


def canonical_type(type_name: str | None) -> str:
    """
    Map a worker-reported type name onto the canonical type set.

    Unknown names fall back to "str".

    Examples:
        >>> canonical_type("Float64")
        'f64'
        >>> canonical_type("decimal(10,2)")
        'str'
    """
    lowered = (type_name or "str").lower()
    for canonical, aliases in CANONICAL_TYPES.items():
        if lowered in aliases:
            return canonical
    return "str"


class SchemaField(BaseModel):
    """One column of a dataset schema."""

    name: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    nullable: bool = False


class Dataset(BaseModel):
    """
    Schema bound to exactly one layer.

    Attributes:
        dataset_id: Primary key (None until stored)
        project_id: Owning project
        name: Unique per (project, layer)
        layer: "bronze", "silver" or "gold"
        columns: Ordered schema fields
        primary_key: Deduplication key; always empty for bronze
        source_id: Originating source (bronze only)
    """

    dataset_id: int | None = None
    project_id: str
    name: str = Field(..., min_length=1, max_length=255)
    layer: Layer
    columns: list[SchemaField] = Field(default_factory=list)
    primary_key: list[str] = Field(default_factory=list)
    source_id: int | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "project_id": "6f1c2c7e-6a53-4a55-9b3e-1f0e0a3c2d11",
                "name": "silver",
                "layer": "silver",
                "columns": [
                    {"name": "id", "type": "str", "nullable": False},
                    {"name": "amount", "type": "f64", "nullable": True},
                ],
                "primary_key": ["id"],
            }
        }
    )

    @field_validator("columns")
    @classmethod
    def check_unique_column_names(cls, v):
        """Column names must be unique within a schema."""
        seen = set()
        for field in v:
            if field.name in seen:
                raise ValueError(f"duplicate column name '{field.name}'")
            seen.add(field.name)
        return v

    @model_validator(mode="after")
    def check_layer_rules(self):
        """Bronze has no key, only bronze points at a source, keys name declared columns."""
        if self.layer == "bronze" and self.primary_key:
            raise ValueError("bronze datasets do not carry a primary key")
        if self.layer != "bronze" and self.source_id is not None:
            raise ValueError(f"{self.layer} datasets cannot reference a source")

        column_names = {c.name for c in self.columns}
        missing = [k for k in self.primary_key if k not in column_names]
        if missing:
            raise ValueError(f"primary key columns not in schema: {missing}")
        return self
