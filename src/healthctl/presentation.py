"""Transport-agnostic rendering of composite health check results.

A host (an HTTP handler, a gRPC servicer, a cron wrapper) wraps a
:class:`~healthctl.checks.HealthCheckService` in a :class:`HealthEndpoint` and
sends the resulting :class:`HealthResponse` however it likes.
"""
from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from .checks.engine import CheckPredicate, HealthCheckService
from .checks.errors import HealthCheckConfigurationError
from .checks.models import (
    CancellationToken,
    CompositeHealthCheckResult,
    HealthStatus,
)
from .serialization import sanitize_payload

ResponseWriter = Callable[[CompositeHealthCheckResult], str]

DEFAULT_STATUS_CODES: Mapping[HealthStatus, int] = MappingProxyType(
    {
        HealthStatus.HEALTHY: 200,
        HealthStatus.DEGRADED: 200,
        HealthStatus.UNHEALTHY: 503,
        HealthStatus.FAILED: 500,
    }
)

PLAIN_TEXT = "text/plain"
APPLICATION_JSON = "application/json"


def serialize_composite(result: CompositeHealthCheckResult) -> dict[str, object]:
    """Convert a composite result into a JSON-serialisable mapping."""
    entries: dict[str, object] = {}
    for name, entry in result.entries.items():
        payload: dict[str, object] = {"status": entry.status.value}
        if entry.description:
            payload["description"] = entry.description
        if entry.duration_ms is not None:
            payload["duration_ms"] = entry.duration_ms
        if entry.data:
            payload["data"] = sanitize_payload(entry.data)
        if entry.error is not None:
            payload["error"] = f"{type(entry.error).__name__}: {entry.error}"
        entries[name] = payload
    return {
        "status": result.status.value,
        "totals": {status.value: count for status, count in result.totals.items()},
        "entries": entries,
        "metadata": sanitize_payload(result.metadata) if result.metadata else {},
    }


def write_plain_text(result: CompositeHealthCheckResult) -> str:
    """Render the overall status as text (``"Healthy"``, ``"Unhealthy"`` ...)."""
    return result.status.label


def write_json(result: CompositeHealthCheckResult) -> str:
    """Render the full composite result as a JSON document."""
    return json.dumps(serialize_composite(result), indent=2)


_CONTENT_TYPES: dict[ResponseWriter, str] = {
    write_plain_text: PLAIN_TEXT,
    write_json: APPLICATION_JSON,
}


@dataclass(frozen=True)
class ResponseOptions:
    """How a composite result is turned into a response."""

    status_codes: Mapping[HealthStatus, int] = field(default_factory=lambda: DEFAULT_STATUS_CODES)
    predicate: CheckPredicate | None = None
    response_writer: ResponseWriter | None = write_plain_text
    content_type: str | None = None

    def with_status_codes(self, overrides: Mapping[HealthStatus, int]) -> ResponseOptions:
        """Return options whose status-code table has *overrides* applied."""
        merged = dict(self.status_codes)
        merged.update(overrides)
        return ResponseOptions(
            status_codes=MappingProxyType(merged),
            predicate=self.predicate,
            response_writer=self.response_writer,
            content_type=self.content_type,
        )


@dataclass(frozen=True)
class HealthResponse:
    """Rendered outcome of a health check run."""

    status_code: int
    content_type: str | None
    body: str
    result: CompositeHealthCheckResult


def build_response(
    result: CompositeHealthCheckResult,
    options: ResponseOptions | None = None,
) -> HealthResponse:
    """Map *result* onto a status code and body according to *options*."""
    effective = options or ResponseOptions()
    code = effective.status_codes.get(result.status)
    if code is None:
        raise HealthCheckConfigurationError(
            f"No status code mapping found for health status '{result.status.label}'. "
            "Provide one through ResponseOptions.status_codes."
        )
    writer = effective.response_writer
    if writer is None:
        return HealthResponse(status_code=code, content_type=None, body="", result=result)
    content_type = effective.content_type or _CONTENT_TYPES.get(writer, PLAIN_TEXT)
    return HealthResponse(
        status_code=code,
        content_type=content_type,
        body=writer(result),
        result=result,
    )


class HealthEndpoint:
    """Couples a health check service with response options."""

    def __init__(
        self,
        service: HealthCheckService,
        options: ResponseOptions | None = None,
    ) -> None:
        """Store the service and the rendering options."""
        self._service = service
        self._options = options or ResponseOptions()

    @property
    def options(self) -> ResponseOptions:
        """Return the rendering options."""
        return self._options

    def handle(self, cancellation: CancellationToken | None = None) -> HealthResponse:
        """Run the checks selected by the options and render the response."""
        result = self._service.check_health(self._options.predicate, cancellation)
        return build_response(result, self._options)


__all__ = [
    "APPLICATION_JSON",
    "DEFAULT_STATUS_CODES",
    "HealthEndpoint",
    "HealthResponse",
    "PLAIN_TEXT",
    "ResponseOptions",
    "ResponseWriter",
    "build_response",
    "serialize_composite",
    "write_json",
    "write_plain_text",
]
