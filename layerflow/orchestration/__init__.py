"""
Pipeline run planning and execution.
"""

from .planner import RunPlan, RunPlanner, StagePlan
from .run_orchestrator import RunOrchestrator

__all__ = ["RunPlanner", "RunPlan", "StagePlan", "RunOrchestrator"]
