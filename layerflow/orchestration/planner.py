"""
Run planning: resolve a pipeline into the stages a run will execute.

Each configured stage is re-validated against its mapping's current endpoints,
so a pipeline whose mapping was repointed or whose datasets were removed since
it was saved is rejected before any run is recorded.
"""

from dataclasses import dataclass, field

from layerflow.core.models import Dataset, Mapping, Pipeline, Project, Source
from layerflow.core.validators import check_stage_mapping
from layerflow.core.validators.layer_transition import STAGE_FIELDS
from layerflow.observability.logger import get_logger
from layerflow.utils.validation import EmptyPipelineError, NotFoundError

logger = get_logger(__name__)


@dataclass
class StagePlan:
    """One validated stage: its mapping, endpoints and (silver only) source."""

    stage: str
    mapping: Mapping
    from_dataset: Dataset
    to_dataset: Dataset
    source: Source | None = None


@dataclass
class RunPlan:
    project: Project
    pipeline: Pipeline
    stages: list[StagePlan] = field(default_factory=list)

    @property
    def stage_names(self) -> list[str]:
        return [s.stage for s in self.stages]


class RunPlanner:
    """
    Builds a RunPlan from catalog state.

    Stages are planned in pipeline order: silver first, then gold.
    """

    def __init__(self, store):
        """
        Args:
            store: Catalog store (CatalogStore or a compatible double)
        """
        self.store = store

    def plan(self, project_id: str, pipeline_id: int) -> RunPlan:
        """
        Resolve and validate everything a run of the pipeline needs.

        Raises:
            NotFoundError: Project or pipeline missing, or pipeline foreign to the project
            EmptyPipelineError: Pipeline has neither a silver nor a gold mapping
            LayerTransitionError: A stage's mapping no longer joins the right layers
        """
        project = self.store.get_project(project_id)
        if project is None:
            raise NotFoundError(f"project {project_id} does not exist", "project_id")

        pipeline = self.store.get_pipeline(pipeline_id)
        if pipeline is None or pipeline.project_id != project.project_id:
            raise NotFoundError(
                f"pipeline {pipeline_id} does not exist on project {project.slug}", "pipeline_id"
            )

        if pipeline.is_empty:
            raise EmptyPipelineError(
                f"pipeline {pipeline.name} has no silver or gold mapping", "pipeline_id"
            )

        plan = RunPlan(project=project, pipeline=pipeline)
        for stage, field_name in STAGE_FIELDS.items():
            mapping_id = getattr(pipeline, field_name)
            if mapping_id is not None:
                plan.stages.append(self._plan_stage(stage, project, mapping_id))

        logger.debug(f"Planned run of pipeline {pipeline.pipeline_id}: stages={plan.stage_names}")
        return plan

    def _plan_stage(self, stage: str, project: Project, mapping_id: int) -> StagePlan:
        mapping = self.store.get_mapping(mapping_id)
        from_dataset = to_dataset = None
        if mapping is not None:
            from_dataset = self.store.get_dataset(mapping.from_dataset_id)
            to_dataset = self.store.get_dataset(mapping.to_dataset_id)

        check_stage_mapping(stage, project.project_id, mapping, from_dataset, to_dataset)

        source = None
        if stage == "silver":
            source = self.store.get_source(from_dataset.source_id) if from_dataset.source_id else None
            if source is None or source.project_id != project.project_id:
                raise NotFoundError(
                    f"silver stage: bronze dataset {from_dataset.name} has no source",
                    STAGE_FIELDS[stage],
                )

        return StagePlan(
            stage=stage,
            mapping=mapping,
            from_dataset=from_dataset,
            to_dataset=to_dataset,
            source=source,
        )
