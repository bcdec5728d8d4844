"""
Validation rules applied before catalog writes.
"""

from .layer_transition import (
    ALLOWED_TRANSITIONS,
    check_stage_mapping,
    check_transition,
    is_allowed_transition,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "is_allowed_transition",
    "check_transition",
    "check_stage_mapping",
]
