"""
Project model: the workspace boundary owning every other entity.
"""

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class Project(BaseModel):
    """
    Tenant/workspace boundary.

    Attributes:
        project_id: Globally unique identifier (UUID string)
        slug: Unique human-readable key
        warehouse_uri: Location the worker writes layer snapshots to
        namespace: Namespace the worker uses for this project's tables
        created_at: When the project was set up
    """

    project_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    slug: str = Field(..., min_length=1, max_length=255)
    warehouse_uri: str = Field(..., min_length=1)
    namespace: str = Field(..., min_length=1, max_length=255)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "slug": "dvf",
                "warehouse_uri": "file:///warehouse",
                "namespace": "dvf",
            }
        }
    )
