"""Tests for rendering composite results as responses."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from healthctl.checks import (
    CheckContext,
    CompositeHealthCheckResult,
    HealthCheckConfigurationError,
    HealthCheckDefinition,
    HealthCheckResult,
    HealthCheckService,
    HealthStatus,
    build_composite,
)
from healthctl.presentation import (
    APPLICATION_JSON,
    DEFAULT_STATUS_CODES,
    PLAIN_TEXT,
    HealthEndpoint,
    ResponseOptions,
    build_response,
    serialize_composite,
    write_json,
)


def _endpoint(
    *statuses: tuple[str, HealthStatus],
    options: ResponseOptions | None = None,
) -> HealthEndpoint:
    checks = tuple(
        HealthCheckDefinition(
            name=name,
            run=lambda ctx, status=status: HealthCheckResult(status, description="detail"),
        )
        for name, status in statuses
    )
    return HealthEndpoint(HealthCheckService(lambda: checks), options)


def test_no_checks_returns_200_healthy() -> None:
    """An empty registry renders as healthy with the success code."""
    response = _endpoint().handle()
    assert response.status_code == 200
    assert response.body == "Healthy"
    assert response.content_type == PLAIN_TEXT


@pytest.mark.parametrize(
    ("status", "code", "body"),
    [
        (HealthStatus.HEALTHY, 200, "Healthy"),
        (HealthStatus.DEGRADED, 200, "Degraded"),
        (HealthStatus.UNHEALTHY, 503, "Unhealthy"),
        (HealthStatus.FAILED, 500, "Failed"),
    ],
)
def test_default_status_codes(status: HealthStatus, code: int, body: str) -> None:
    """Default codes map healthy/degraded to 200, unhealthy to 503, failed to 500."""
    response = _endpoint(("Foo", HealthStatus.HEALTHY), ("Bar", status)).handle()
    assert response.status_code == code
    assert response.body == body


def test_custom_status_codes_override_defaults() -> None:
    """Each status code can be overridden independently."""
    options = ResponseOptions().with_status_codes({HealthStatus.DEGRADED: 418})
    response = _endpoint(("Foo", HealthStatus.DEGRADED), options=options).handle()
    assert response.status_code == 418
    assert options.status_codes[HealthStatus.UNHEALTHY] == 503
    assert DEFAULT_STATUS_CODES[HealthStatus.DEGRADED] == 200


def test_missing_status_code_is_configuration_error() -> None:
    """A status without a code mapping cannot be rendered."""
    options = ResponseOptions(status_codes={HealthStatus.HEALTHY: 200})
    with pytest.raises(HealthCheckConfigurationError, match="Failed"):
        _endpoint(("Foo", HealthStatus.FAILED), options=options).handle()


def test_custom_writer_receives_composite() -> None:
    """A custom writer controls the body."""
    seen: list[CompositeHealthCheckResult] = []

    def writer(result: CompositeHealthCheckResult) -> str:
        seen.append(result)
        return "custom:" + ",".join(sorted(result.entries))

    options = ResponseOptions(response_writer=writer, content_type="text/x-custom")
    response = _endpoint(
        ("Foo", HealthStatus.HEALTHY),
        ("Bar", HealthStatus.DEGRADED),
        options=options,
    ).handle()

    assert response.body == "custom:Bar,Foo"
    assert response.content_type == "text/x-custom"
    assert seen[0] is response.result


def test_no_writer_returns_empty_body() -> None:
    """Without a writer only the status code is produced."""
    options = ResponseOptions(response_writer=None)
    response = _endpoint(("Foo", HealthStatus.UNHEALTHY), options=options).handle()
    assert response.status_code == 503
    assert response.body == ""
    assert response.content_type is None


def test_predicate_filters_checks() -> None:
    """The endpoint predicate selects which checks run."""
    options = ResponseOptions(predicate=lambda check: check.name != "Bar")
    response = _endpoint(
        ("Foo", HealthStatus.HEALTHY),
        ("Bar", HealthStatus.UNHEALTHY),
        ("Baz", HealthStatus.HEALTHY),
        options=options,
    ).handle()
    assert response.status_code == 200
    assert sorted(response.result.entries) == ["Baz", "Foo"]


def test_write_json_includes_entries() -> None:
    """The JSON writer carries status, description, data and errors."""
    result = build_composite(
        {
            "db": HealthCheckResult.healthy("ping ok", data={"latency_ms": 3}),
            "cache": HealthCheckResult.failed("boom", error=RuntimeError("boom")),
        }
    )
    response = build_response(result, ResponseOptions(response_writer=write_json))
    payload = json.loads(response.body)

    assert response.content_type == APPLICATION_JSON
    assert response.status_code == 500
    assert payload["status"] == "failed"
    assert payload["entries"]["db"] == {
        "status": "healthy",
        "description": "ping ok",
        "data": {"latency_ms": 3},
    }
    assert payload["entries"]["cache"]["error"] == "RuntimeError: boom"
    assert payload["totals"]["failed"] == 1


def test_serialize_composite_includes_metadata() -> None:
    """Run metadata is preserved in the serialised form."""

    def ping(ctx: CheckContext) -> HealthCheckResult:
        return HealthCheckResult.healthy()

    service = HealthCheckService(lambda: [HealthCheckDefinition(name="p", run=ping)])
    payload = serialize_composite(service.check_health(metadata={"origin": Path("/srv")}))
    assert payload["metadata"]["origin"] == "/srv"
    assert payload["metadata"]["matched_checks"] == 1
