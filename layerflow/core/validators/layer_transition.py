"""
Layer transition rules for mappings and pipeline stages.

A mapping may only join two datasets of its own project, and only in the
directions bronze->silver or silver->gold. Pipeline stages narrow this
further: the silver stage must be bronze->silver, the gold stage silver->gold.
"""

from layerflow.core.models import STAGE_TRANSITIONS, Dataset, Mapping
from layerflow.utils.validation import LayerTransitionError

ALLOWED_TRANSITIONS: frozenset[tuple[str, str]] = frozenset(STAGE_TRANSITIONS.values())

STAGE_FIELDS = {
    "silver": "mapping_silver_id",
    "gold": "mapping_gold_id",
}


def is_allowed_transition(from_layer: str, to_layer: str) -> bool:
    """
    Check a layer pair against the allowed transitions.

    Examples:
        >>> is_allowed_transition("bronze", "silver")
        True
        >>> is_allowed_transition("bronze", "gold")
        False
    """
    return (from_layer, to_layer) in ALLOWED_TRANSITIONS


def check_transition(
    project_id: str,
    from_dataset: Dataset | None,
    to_dataset: Dataset | None,
    field_name: str = "to_dataset_id",
) -> None:
    """
    Validate the endpoints of a new or updated mapping.

    Args:
        project_id: Project the mapping belongs to
        from_dataset: Resolved source dataset (None if it does not exist)
        to_dataset: Resolved destination dataset (None if it does not exist)
        field_name: Field reported on failure

    Raises:
        LayerTransitionError: If a dataset is missing, foreign to the project,
            or the layer pair is not an allowed transition
    """
    if from_dataset is None:
        raise LayerTransitionError("source dataset does not exist", "from_dataset_id")
    if to_dataset is None:
        raise LayerTransitionError("destination dataset does not exist", "to_dataset_id")

    if from_dataset.project_id != project_id:
        raise LayerTransitionError(
            f"dataset {from_dataset.dataset_id} belongs to another project", "from_dataset_id"
        )
    if to_dataset.project_id != project_id:
        raise LayerTransitionError(
            f"dataset {to_dataset.dataset_id} belongs to another project", "to_dataset_id"
        )

    if not is_allowed_transition(from_dataset.layer, to_dataset.layer):
        raise LayerTransitionError(
            f"{from_dataset.layer} -> {to_dataset.layer} is not an allowed transition "
            "(expected bronze -> silver or silver -> gold)",
            field_name,
        )


def check_stage_mapping(
    stage: str,
    project_id: str,
    mapping: Mapping | None,
    from_dataset: Dataset | None,
    to_dataset: Dataset | None,
) -> None:
    """
    Validate the mapping assigned to one pipeline stage.

    Checked against the mapping's current endpoints, so a mapping repointed
    since it was assigned is caught here.

    Args:
        stage: "silver" or "gold"
        project_id: Project of the pipeline
        mapping: Resolved mapping (None if it does not exist)
        from_dataset: Mapping's current source dataset
        to_dataset: Mapping's current destination dataset

    Raises:
        LayerTransitionError: Naming the stage's field and the reason
    """
    field_name = STAGE_FIELDS[stage]
    expected_from, expected_to = STAGE_TRANSITIONS[stage]
    expected = f"{expected_from.capitalize()} -> {expected_to.capitalize()}"

    if mapping is None or mapping.project_id != project_id:
        raise LayerTransitionError(
            f"{stage} stage: mapping does not exist on this project", field_name
        )
    if from_dataset is None or to_dataset is None:
        raise LayerTransitionError(
            f"{stage} stage: mapping {mapping.mapping_id} references a missing dataset",
            field_name,
        )
    if from_dataset.project_id != project_id or to_dataset.project_id != project_id:
        raise LayerTransitionError(
            f"{stage} stage: mapping {mapping.mapping_id} references a dataset of another project",
            field_name,
        )
    if (from_dataset.layer, to_dataset.layer) != (expected_from, expected_to):
        raise LayerTransitionError(
            f"{stage} stage: mapping must be {expected} on this project, "
            f"got {from_dataset.layer} -> {to_dataset.layer}",
            field_name,
        )
