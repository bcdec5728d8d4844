"""
HTTP client for the external transform worker.

Two synchronous calls: ``POST /infer_schema`` and ``POST /run``. Transport
failures, non-2xx replies and unparseable bodies all raise WorkerError; the
caller decides what a failure means.
"""

from typing import Any, Protocol

import requests
from pydantic import ValidationError as PydanticValidationError

from layerflow.core.models import SchemaField
from layerflow.observability.logger import get_logger
from layerflow.observability.metrics import worker_requests_total
from layerflow.utils.validation import clamp_sample_limit

from .payloads import InferSchemaResult, RunJob, RunResult

logger = get_logger(__name__)


class WorkerError(RuntimeError):
    """The worker was unreachable, failed, or answered with something unusable."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class WorkerTimeoutError(WorkerError):
    """The worker did not answer within the request deadline."""


class WorkerClient(Protocol):
    """Capability the catalog and the run orchestrator depend on."""

    def infer_schema(
        self, uri: str, source_config: Any, limit: int | None = None
    ) -> list[SchemaField] | None: ...

    def run(self, job: RunJob, deadline: float | None = None) -> RunResult: ...


class HttpWorkerClient:
    """
    WorkerClient over HTTP/JSON.

    No retry is attempted: a failed call is reported as-is.
    """

    def __init__(
        self,
        base_url: str,
        connect_timeout: float = 10.0,
        infer_timeout: float = 120.0,
        session: requests.Session | None = None,
    ) -> None:
        """
        Args:
            base_url: Worker root URL, e.g. http://worker:8080
            connect_timeout: Seconds to establish a connection
            infer_timeout: Read timeout of schema inference calls
            session: Session to reuse (a new one is created otherwise)
        """
        self.base_url = base_url.rstrip("/")
        self.connect_timeout = connect_timeout
        self.infer_timeout = infer_timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})

    @classmethod
    def from_settings(cls, settings) -> "HttpWorkerClient":
        return cls(settings.worker_url, connect_timeout=settings.worker_connect_timeout)

    def infer_schema(
        self, uri: str, source_config: Any, limit: int | None = None
    ) -> list[SchemaField] | None:
        """
        Sample a live source and return its inferred columns.

        Args:
            uri: Source URI
            source_config: Reader configuration in the worker's tagged form
            limit: Rows to sample, clamped to [1, 1000] (default 200)

        Returns:
            Inferred columns, or None when the worker returned no schema

        Raises:
            WorkerError: On transport, HTTP or decoding failure
        """
        payload = {
            "uri": uri,
            "source_config": source_config,
            "limit": clamp_sample_limit(limit),
        }
        data = self._post("infer_schema", payload, read_timeout=self.infer_timeout)

        try:
            result = InferSchemaResult.from_response(data if isinstance(data, dict) else None)
        except PydanticValidationError as e:
            worker_requests_total.labels(endpoint="infer_schema", outcome="malformed").inc()
            raise WorkerError(f"Malformed infer_schema response: {e}") from e

        if result.columns is None:
            logger.warning(f"Worker returned no schema for {uri}")
        return result.columns

    def run(self, job: RunJob, deadline: float | None = None) -> RunResult:
        """
        Execute one stage end to end.

        The deadline is the requests read timeout: it bounds each wait for
        bytes from the worker, not the whole call. A worker that keeps
        sending data slowly can take longer than ``deadline`` in total.

        Args:
            job: Stage job description
            deadline: Seconds to wait for the reply; None waits indefinitely

        Returns:
            Parsed RunResult

        Raises:
            WorkerTimeoutError: If the deadline passes
            WorkerError: On transport, HTTP or decoding failure
        """
        data = self._post("run", job.to_wire(), read_timeout=deadline)

        if data is None:
            data = {}
        if not isinstance(data, dict):
            worker_requests_total.labels(endpoint="run", outcome="malformed").inc()
            raise WorkerError(f"Malformed run response: expected an object, got {type(data).__name__}")

        try:
            return RunResult.model_validate(data)
        except PydanticValidationError as e:
            worker_requests_total.labels(endpoint="run", outcome="malformed").inc()
            raise WorkerError(f"Malformed run response: {e}") from e

    def _post(self, endpoint: str, payload: dict[str, Any], read_timeout: float | None) -> Any:
        url = f"{self.base_url}/{endpoint}"
        try:
            response = self.session.post(
                url, json=payload, timeout=(self.connect_timeout, read_timeout)
            )
            response.raise_for_status()
        except requests.Timeout as e:
            worker_requests_total.labels(endpoint=endpoint, outcome="timeout").inc()
            raise WorkerTimeoutError(f"Worker {endpoint} timed out after {read_timeout}s") from e
        except requests.HTTPError as e:
            worker_requests_total.labels(endpoint=endpoint, outcome="http_error").inc()
            status = e.response.status_code if e.response is not None else None
            body = e.response.text[:500] if e.response is not None else ""
            raise WorkerError(
                f"Worker {endpoint} failed with HTTP {status}: {body}".rstrip(": "),
                status_code=status,
            ) from e
        except requests.RequestException as e:
            worker_requests_total.labels(endpoint=endpoint, outcome="transport_error").inc()
            raise WorkerError(f"Worker {endpoint} request failed: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            worker_requests_total.labels(endpoint=endpoint, outcome="malformed").inc()
            raise WorkerError(f"Worker {endpoint} returned invalid JSON: {e}") from e

        worker_requests_total.labels(endpoint=endpoint, outcome="ok").inc()
        return data
