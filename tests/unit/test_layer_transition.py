"""
Unit tests for layer transition rules.

Includes property-based testing with hypothesis for the allowed layer pairs.
"""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from layerflow.core.models import LAYERS, Dataset, Mapping
from layerflow.core.validators import (
    check_stage_mapping,
    check_transition,
    is_allowed_transition,
)
from layerflow.utils.validation import LayerTransitionError, ValidationError

PROJECT = "p-1"
OTHER = "p-2"


def dataset(dataset_id, layer, project_id=PROJECT):
    return Dataset(dataset_id=dataset_id, project_id=project_id, name=f"{layer}_{dataset_id}", layer=layer)


def mapping(from_id, to_id, project_id=PROJECT):
    return Mapping(
        mapping_id=9,
        project_id=project_id,
        from_dataset_id=from_id,
        to_dataset_id=to_id,
        transforms={"columns": [{"target": "id", "expr": {"col": "id"}}]},
    )


@given(st.sampled_from(LAYERS), st.sampled_from(LAYERS))
def test_only_adjacent_forward_pairs_are_allowed(from_layer, to_layer):
    """Exactly bronze->silver and silver->gold pass"""
    expected = (from_layer, to_layer) in {("bronze", "silver"), ("silver", "gold")}
    assert is_allowed_transition(from_layer, to_layer) is expected


@given(st.sampled_from(LAYERS), st.sampled_from(LAYERS))
def test_check_transition_agrees_with_predicate(from_layer, to_layer):
    from_ds, to_ds = dataset(1, from_layer), dataset(2, to_layer)
    if is_allowed_transition(from_layer, to_layer):
        check_transition(PROJECT, from_ds, to_ds)
    else:
        with pytest.raises(LayerTransitionError):
            check_transition(PROJECT, from_ds, to_ds)


class TestCheckTransition:
    def test_bronze_to_gold_rejected(self):
        with pytest.raises(LayerTransitionError) as exc_info:
            check_transition(PROJECT, dataset(1, "bronze"), dataset(2, "gold"))
        assert exc_info.value.field_name == "to_dataset_id"
        assert "bronze -> gold" in str(exc_info.value)

    def test_missing_source_dataset(self):
        with pytest.raises(LayerTransitionError) as exc_info:
            check_transition(PROJECT, None, dataset(2, "silver"))
        assert exc_info.value.field_name == "from_dataset_id"

    def test_foreign_dataset(self):
        with pytest.raises(LayerTransitionError) as exc_info:
            check_transition(PROJECT, dataset(1, "bronze", OTHER), dataset(2, "silver"))
        assert "another project" in str(exc_info.value)

    def test_is_a_validation_error(self):
        with pytest.raises(ValidationError):
            check_transition(PROJECT, dataset(1, "gold"), dataset(2, "silver"))


class TestCheckStageMapping:
    def test_valid_silver_stage(self):
        check_stage_mapping("silver", PROJECT, mapping(1, 2), dataset(1, "bronze"), dataset(2, "silver"))

    def test_gold_mapping_in_silver_slot(self):
        with pytest.raises(LayerTransitionError) as exc_info:
            check_stage_mapping(
                "silver", PROJECT, mapping(2, 3), dataset(2, "silver"), dataset(3, "gold")
            )
        assert exc_info.value.field_name == "mapping_silver_id"
        assert "Bronze -> Silver" in str(exc_info.value)

    def test_missing_mapping(self):
        with pytest.raises(LayerTransitionError) as exc_info:
            check_stage_mapping("gold", PROJECT, None, None, None)
        assert exc_info.value.field_name == "mapping_gold_id"

    def test_foreign_mapping(self):
        with pytest.raises(LayerTransitionError):
            check_stage_mapping(
                "gold", PROJECT, mapping(2, 3, OTHER), dataset(2, "silver"), dataset(3, "gold")
            )

    def test_dataset_removed_since_assignment(self):
        with pytest.raises(LayerTransitionError) as exc_info:
            check_stage_mapping("gold", PROJECT, mapping(2, 3), dataset(2, "silver"), None)
        assert "missing dataset" in str(exc_info.value)
