"""
Source model: a named external origin feeding one bronze dataset.
"""

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

SourceFormat = Literal["csv", "parquet"]

DEFAULT_CSV_CONFIG: dict[str, Any] = {
    "delimiter": ",",
    "has_header": True,
    "encoding": "utf-8",
}


class Source(BaseModel):
    """
    Named external data origin.

    Attributes:
        source_id: Primary key (None until stored)
        project_id: Owning project
        name: Unique within the project; also names the bronze dataset
        uri: Connection URI handed to the worker
        format: Reader the worker uses ("csv" or "parquet")
        config: Format-specific options (delimiter, has_header, encoding for CSV)
    """

    source_id: int | None = None
    project_id: str
    name: str = Field(..., min_length=1, max_length=255)
    uri: str = Field(..., min_length=1)
    format: SourceFormat = "csv"
    config: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "project_id": "6f1c2c7e-6a53-4a55-9b3e-1f0e0a3c2d11",
                "name": "dvf_2024",
                "uri": "file:///data/dvf_2024.csv",
                "format": "csv",
                "config": {"delimiter": "|", "has_header": True, "encoding": "utf-8"},
            }
        }
    )

    def worker_config(self) -> Any:
        """
        Source configuration in the worker's tagged form.

        CSV options are completed with their defaults; parquet takes none.
        """
        if self.format == "parquet":
            return "Parquet"
        return {"Csv": {**DEFAULT_CSV_CONFIG, **self.config}}
