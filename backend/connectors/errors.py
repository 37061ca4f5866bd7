"""
Error taxonomy for upstream platform access.

Transient errors are retried by the fetcher's RetryPolicy; permanent errors
move the fetcher on to the next candidate endpoint. Exhaustion errors are
raised (critical resources) or logged and degraded to an empty collection
(auxiliary resources).
"""
from __future__ import annotations


class UpstreamError(RuntimeError):
    """A request to an upstream platform API did not produce a usable response."""

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class TransientUpstreamError(UpstreamError):
    """No response, connection failure, timeout, or HTTP 5xx."""


class PermanentUpstreamError(UpstreamError):
    """HTTP 4xx. Retrying the same endpoint will not help."""


class DataShapeError(ValueError):
    """A response body could not be decoded into any known shape."""


class FetchExhaustedError(RuntimeError):
    """Every candidate endpoint for a resource failed or came back empty."""

    def __init__(self, resource: str, project_id: str, failures: list[str]) -> None:
        self.resource = resource
        self.project_id = project_id
        self.failures = failures
        detail = "; ".join(failures) if failures else "no candidate endpoints"
        super().__init__(
            f"Unable to fetch {resource} for project {project_id}: {detail}"
        )


class CriticalFetchExhausted(FetchExhaustedError):
    """The primary project record could not be fetched. Fails the job."""


class AuxiliaryFetchExhausted(FetchExhaustedError):
    """An optional resource (team, sprints, backlog) could not be fetched."""
