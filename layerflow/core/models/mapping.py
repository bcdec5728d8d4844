"""
Mapping model: transform and data-quality contract between two datasets.
"""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TargetColumn(BaseModel):
    """
    One destination column and the expression producing it.

    Expressions are the worker's expression tree (``{"col": ...}``,
    ``{"lit": ...}``, ``{"fn_": ..., "args": [...]}``) and are passed through
    untouched.
    """

    target: str = Field(..., min_length=1)
    expr: dict[str, Any]


class MappingTransforms(BaseModel):
    """Ordered column expressions plus row filters."""

    columns: list[TargetColumn] = Field(..., min_length=1)
    filters: list[dict[str, Any]] = Field(default_factory=list)


class DqRule(BaseModel):
    """
    Data-quality rule evaluated by the worker.

    Attributes:
        column: Column the rule checks
        op: Comparison (">", ">=", "==", "is_not_null", ...)
        value: Operand, absent for unary checks
    """

    column: str = Field(..., min_length=1)
    op: str = Field(..., min_length=1)
    value: Any = None


class Mapping(BaseModel):
    """
    Transformation contract between two datasets of one project.

    The (from, to) layer pair must be bronze->silver or silver->gold; that rule
    needs the datasets themselves and lives in the layer transition validator.
    """

    mapping_id: int | None = None
    project_id: str
    from_dataset_id: int
    to_dataset_id: int
    transforms: MappingTransforms
    dq_rules: list[DqRule] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "project_id": "6f1c2c7e-6a53-4a55-9b3e-1f0e0a3c2d11",
                "from_dataset_id": 1,
                "to_dataset_id": 2,
                "transforms": {
                    "columns": [
                        {"target": "id", "expr": {"col": "id"}},
                        {"target": "amount", "expr": {"fn_": "cast", "args": [{"col": "amount"}], "to": "f64"}},
                    ],
                    "filters": [],
                },
                "dq_rules": [{"column": "amount", "op": ">", "value": 0}],
            }
        }
    )

    def worker_payload(self) -> dict[str, Any]:
        """Mapping section of a worker run request"""
        return {
            "transforms": self.transforms.model_dump(),
            "dq_rules": [r.model_dump() for r in self.dq_rules],
        }
