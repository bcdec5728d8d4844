"""
Pipeline model: a named silver stage plus gold stage.
"""

from datetime import datetime, timezone

from pydantic import BaseModel, Field


class Pipeline(BaseModel):
    """
    Ordered composition of at most two mappings.

    Attributes:
        pipeline_id: Primary key (None until stored)
        project_id: Owning project
        name: Unique within the project
        mapping_silver_id: bronze->silver mapping run first, if any
        mapping_gold_id: silver->gold mapping run second, if any
    """

    pipeline_id: int | None = None
    project_id: str
    name: str = Field(..., min_length=1, max_length=255)
    mapping_silver_id: int | None = None
    mapping_gold_id: int | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_empty(self) -> bool:
        return self.mapping_silver_id is None and self.mapping_gold_id is None
