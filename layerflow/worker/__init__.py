"""
Boundary to the external transform worker.
"""

from .client import HttpWorkerClient, WorkerClient, WorkerError, WorkerTimeoutError
from .payloads import RunJob, RunResult, build_gold_job, build_silver_job

__all__ = [
    "WorkerClient",
    "HttpWorkerClient",
    "WorkerError",
    "WorkerTimeoutError",
    "RunJob",
    "RunResult",
    "build_silver_job",
    "build_gold_job",
]
