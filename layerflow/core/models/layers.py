"""
Layer, stage and run-state vocabulary shared by every model.
"""

from typing import Literal

Layer = Literal["bronze", "silver", "gold"]
Stage = Literal["silver", "gold"]
RunState = Literal["queued", "running", "succeeded", "failed"]
FailureCode = Literal["worker_error", "timed_out", "internal_error"]

LAYERS: tuple[str, ...] = ("bronze", "silver", "gold")
TERMINAL_STATES: frozenset[str] = frozenset({"succeeded", "failed"})

# Name of the single project-wide silver dataset
SILVER_DATASET_NAME = "silver"

# Layer transition each pipeline stage performs
STAGE_TRANSITIONS: dict[str, tuple[str, str]] = {
    "silver": ("bronze", "silver"),
    "gold": ("silver", "gold"),
}
