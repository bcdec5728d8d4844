"""
Core entity models for the layered pipeline catalog.

All models use Pydantic for runtime validation and type safety.
"""

from .dataset import Dataset, SchemaField, canonical_type
from .layers import (
    LAYERS,
    SILVER_DATASET_NAME,
    STAGE_TRANSITIONS,
    TERMINAL_STATES,
    FailureCode,
    Layer,
    RunState,
    Stage,
)
from .mapping import DqRule, Mapping, MappingTransforms, TargetColumn
from .pipeline import Pipeline
from .pipeline_run import PipelineRun
from .project import Project
from .run_error_sample import RunErrorSample
from .source import Source

__all__ = [
    "Project",
    "Source",
    "Dataset",
    "SchemaField",
    "canonical_type",
    "Mapping",
    "MappingTransforms",
    "TargetColumn",
    "DqRule",
    "Pipeline",
    "PipelineRun",
    "RunErrorSample",
    "Layer",
    "Stage",
    "RunState",
    "FailureCode",
    "LAYERS",
    "SILVER_DATASET_NAME",
    "STAGE_TRANSITIONS",
    "TERMINAL_STATES",
]
