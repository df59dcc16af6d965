"""Tests for the health check execution engine."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

import pytest

from healthctl.checks import (
    CancellationToken,
    CheckContext,
    CheckExecutorOptions,
    DuplicateHealthCheckError,
    HealthCheckCancelledError,
    HealthCheckConfigurationError,
    HealthCheckContractError,
    HealthCheckDefinition,
    HealthCheckResult,
    HealthCheckService,
    HealthStatus,
    ensure_no_duplicates,
    run_checks,
)
from healthctl.logging import ProbeContextFilter, current_probe_name


def _static(
    name: str,
    status: HealthStatus,
    *,
    tags: frozenset[str] = frozenset(),
) -> HealthCheckDefinition:
    return HealthCheckDefinition(
        name=name,
        run=lambda ctx: HealthCheckResult(status, description=f"{name} is {status.value}"),
        tags=tags,
    )


def _service(
    *checks: HealthCheckDefinition,
    max_concurrency: int = 1,
) -> HealthCheckService:
    return HealthCheckService(
        lambda: checks,
        options=CheckExecutorOptions(max_concurrency=max_concurrency),
    )


def test_ensure_no_duplicates_lists_every_name() -> None:
    """Names differing only in case are reported together."""
    checks = [
        _static("Foo", HealthStatus.HEALTHY),
        _static("foo", HealthStatus.HEALTHY),
        _static("Bar", HealthStatus.HEALTHY),
        _static("BAR", HealthStatus.HEALTHY),
    ]
    with pytest.raises(DuplicateHealthCheckError) as excinfo:
        ensure_no_duplicates(checks)
    assert excinfo.value.names == ("Foo", "foo", "Bar", "BAR")
    assert str(excinfo.value).endswith("name(s): Foo, foo, Bar, BAR")


def test_service_construction_names_both_spellings() -> None:
    """A pair differing only in case is rejected naming both members."""
    with pytest.raises(DuplicateHealthCheckError) as excinfo:
        _service(
            _static("Foo", HealthStatus.HEALTHY),
            _static("Unique", HealthStatus.HEALTHY),
            _static("foo", HealthStatus.HEALTHY),
        )
    assert excinfo.value.names == ("Foo", "foo")


def test_service_construction_rejects_duplicates() -> None:
    """Duplicate names fail construction, before any check runs."""
    calls: list[str] = []

    def record(ctx: CheckContext) -> HealthCheckResult:
        calls.append("ran")
        return HealthCheckResult.healthy()

    with pytest.raises(HealthCheckConfigurationError, match="Duplicate health checks"):
        _service(
            HealthCheckDefinition(name="Disk", run=record),
            HealthCheckDefinition(name="DISK", run=record),
        )
    assert calls == []


def test_check_health_without_checks_is_healthy() -> None:
    """An empty registry yields a healthy composite with no entries."""
    result = _service().check_health()
    assert result.status is HealthStatus.HEALTHY
    assert dict(result.entries) == {}


@pytest.mark.parametrize(
    ("bar_status", "expected"),
    [
        (HealthStatus.HEALTHY, HealthStatus.HEALTHY),
        (HealthStatus.DEGRADED, HealthStatus.DEGRADED),
        (HealthStatus.UNHEALTHY, HealthStatus.UNHEALTHY),
        (HealthStatus.FAILED, HealthStatus.FAILED),
    ],
)
def test_check_health_reports_worst_status(
    bar_status: HealthStatus,
    expected: HealthStatus,
) -> None:
    """The composite status follows the worst individual status."""
    service = _service(
        _static("Foo", HealthStatus.HEALTHY),
        _static("Bar", bar_status),
        _static("Baz", HealthStatus.HEALTHY),
    )
    result = service.check_health()
    assert result.status is expected
    assert set(result.entries) == {"Foo", "Bar", "Baz"}
    assert result.entries["bar"].status is bar_status


def test_check_health_applies_predicate() -> None:
    """Filtered-out checks neither run nor appear in the result."""
    ran: list[str] = []

    def tracked(name: str, status: HealthStatus) -> HealthCheckDefinition:
        def _run(ctx: CheckContext) -> HealthCheckResult:
            ran.append(name)
            return HealthCheckResult(status)

        return HealthCheckDefinition(name=name, run=_run)

    service = _service(
        tracked("Foo", HealthStatus.HEALTHY),
        tracked("Bar", HealthStatus.UNHEALTHY),
        tracked("Baz", HealthStatus.HEALTHY),
    )
    result = service.check_health(lambda check: check.name != "Bar")

    assert result.status is HealthStatus.HEALTHY
    assert list(result.entries) == ["Foo", "Baz"]
    assert ran == ["Foo", "Baz"]
    assert result.metadata["discovered_checks"] == 3
    assert result.metadata["matched_checks"] == 2


def test_check_health_converts_exceptions_to_failed() -> None:
    """A raising check becomes a failed entry and the others still run."""
    boom = RuntimeError("kaboom")

    def explode(ctx: CheckContext) -> HealthCheckResult:
        raise boom

    service = _service(
        _static("before", HealthStatus.HEALTHY),
        HealthCheckDefinition(name="broken", run=explode),
        _static("after", HealthStatus.DEGRADED),
    )
    result = service.check_health()

    failed = result.entries["broken"]
    assert failed.status is HealthStatus.FAILED
    assert failed.error is boom
    assert failed.description == "kaboom"
    assert failed.data["check"] == "broken"
    assert failed.data["exception"] == "RuntimeError('kaboom')"
    assert "kaboom" in str(failed.data["traceback"])
    assert failed.duration_ms is not None
    assert result.entries["after"].status is HealthStatus.DEGRADED
    assert result.status is HealthStatus.FAILED


def test_check_health_rejects_unknown_status() -> None:
    """Returning the unknown sentinel aborts the run naming the check."""
    later_ran: list[bool] = []

    def later(ctx: CheckContext) -> HealthCheckResult:
        later_ran.append(True)
        return HealthCheckResult.healthy()

    service = _service(
        _static("fine", HealthStatus.HEALTHY),
        _static("Sloppy", HealthStatus.UNKNOWN),
        HealthCheckDefinition(name="later", run=later),
    )
    with pytest.raises(HealthCheckContractError) as excinfo:
        service.check_health()

    assert excinfo.value.check_name == "Sloppy"
    assert "Sloppy" in str(excinfo.value)
    assert "Unknown" in str(excinfo.value)
    assert later_ran == []


def test_check_health_rejects_non_result_return() -> None:
    """Returning something other than a result is a contract violation."""
    service = _service(HealthCheckDefinition(name="lazy", run=lambda ctx: None))  # type: ignore[arg-type,return-value]
    with pytest.raises(HealthCheckContractError, match="lazy"):
        service.check_health()


def test_check_health_cancelled_before_start() -> None:
    """A pre-cancelled token prevents every check from running."""
    ran: list[str] = []

    def record(ctx: CheckContext) -> HealthCheckResult:
        ran.append("ran")
        return HealthCheckResult.healthy()

    token = CancellationToken()
    token.cancel()
    service = _service(HealthCheckDefinition(name="one", run=record))

    with pytest.raises(HealthCheckCancelledError):
        service.check_health(cancellation=token)
    assert ran == []


def test_check_health_cancellation_stops_remaining_checks() -> None:
    """Cancelling during one check prevents the next from starting."""
    token = CancellationToken()
    ran: list[str] = []

    def first(ctx: CheckContext) -> HealthCheckResult:
        ran.append("first")
        token.cancel()
        return HealthCheckResult.healthy()

    def second(ctx: CheckContext) -> HealthCheckResult:
        ran.append("second")
        return HealthCheckResult.healthy()

    service = _service(
        HealthCheckDefinition(name="first", run=first),
        HealthCheckDefinition(name="second", run=second),
    )
    with pytest.raises(HealthCheckCancelledError):
        service.check_health(cancellation=token)
    assert ran == ["first"]


def test_check_honouring_cancellation_propagates() -> None:
    """A check that raises on the shared token propagates cancellation."""
    token = CancellationToken()

    def cooperative(ctx: CheckContext) -> HealthCheckResult:
        assert ctx.cancellation is token
        token.cancel()
        ctx.cancellation.raise_if_cancelled()
        return HealthCheckResult.healthy()

    service = _service(HealthCheckDefinition(name="cooperative", run=cooperative))
    with pytest.raises(HealthCheckCancelledError):
        service.check_health(cancellation=token)


def test_stray_cancellation_error_is_a_failure() -> None:
    """A cancellation error unrelated to the run token is treated as a failure."""

    def stray(ctx: CheckContext) -> HealthCheckResult:
        CancellationToken().cancel()
        raise HealthCheckCancelledError("inner operation cancelled")

    result = _service(HealthCheckDefinition(name="stray", run=stray)).check_health()
    assert result.entries["stray"].status is HealthStatus.FAILED


def test_check_health_resolves_checks_every_run() -> None:
    """The check source is consulted on every run."""
    registry: list[HealthCheckDefinition] = [_static("a", HealthStatus.HEALTHY)]
    service = HealthCheckService(lambda: list(registry))

    assert list(service.check_health().entries) == ["a"]
    registry.append(_static("b", HealthStatus.DEGRADED))
    second = service.check_health()
    assert list(second.entries) == ["a", "b"]
    assert second.status is HealthStatus.DEGRADED


def test_check_context_carries_resources_and_name() -> None:
    """Checks receive the per-run resources and their own name."""
    seen: dict[str, object] = {}

    def inspect(ctx: CheckContext) -> HealthCheckResult:
        seen["connection"] = ctx.resources["connection"]
        seen["name"] = ctx.check_name
        seen["logger"] = ctx.logger.name
        return HealthCheckResult.healthy()

    service = _service(HealthCheckDefinition(name="inspect", run=inspect))
    service.check_health(resources={"connection": "conn-1"})

    assert seen == {
        "connection": "conn-1",
        "name": "inspect",
        "logger": "healthctl.probe.inspect",
    }


def test_duration_filled_when_missing_and_kept_when_given() -> None:
    """The engine records durations without overriding a check's own value."""
    service = _service(
        _static("measured", HealthStatus.HEALTHY),
        HealthCheckDefinition(
            name="self-timed",
            run=lambda ctx: HealthCheckResult(HealthStatus.HEALTHY, duration_ms=1234),
        ),
    )
    result = service.check_health(metadata={"caller": "test"})
    assert result.entries["measured"].duration_ms is not None
    assert result.entries["self-timed"].duration_ms == 1234
    assert result.metadata["caller"] == "test"
    assert result.metadata["concurrency"] == 1


def test_log_records_carry_probe_name(caplog: pytest.LogCaptureFixture) -> None:
    """Records emitted while a check runs are tagged with its name."""
    caplog.handler.addFilter(ProbeContextFilter())
    observed: list[str | None] = []

    def chatty(ctx: CheckContext) -> HealthCheckResult:
        observed.append(current_probe_name())
        ctx.logger.warning("pinging backend")
        logging.getLogger("some.driver").warning("driver noise")
        return HealthCheckResult.healthy()

    with caplog.at_level(logging.DEBUG):
        _service(HealthCheckDefinition(name="chatty", run=chatty)).check_health()

    assert observed == ["chatty"]
    assert current_probe_name() is None
    tagged = {
        record.getMessage(): getattr(record, "probe_name", None)
        for record in caplog.records
    }
    assert tagged["pinging backend"] == "chatty"
    assert tagged["driver noise"] == "chatty"
    assert tagged["Running health check: chatty"] == "chatty"


def test_failures_are_logged_with_traceback(caplog: pytest.LogCaptureFixture) -> None:
    """Converted failures are logged at error level."""

    def explode(ctx: CheckContext) -> HealthCheckResult:
        raise ValueError("bad config")

    with caplog.at_level(logging.ERROR, logger="healthctl.checks.engine"):
        _service(HealthCheckDefinition(name="explode", run=explode)).check_health()

    errors = [record for record in caplog.records if record.levelno == logging.ERROR]
    assert errors
    assert "explode" in errors[0].getMessage()
    assert errors[0].exc_info is not None


def _sleeper(name: str, delay: float, status: HealthStatus) -> HealthCheckDefinition:
    def _run(ctx: CheckContext) -> HealthCheckResult:
        time.sleep(delay)
        return HealthCheckResult(status)

    return HealthCheckDefinition(name=name, run=_run)


def test_run_checks_parallel_preserves_order() -> None:
    """Concurrent execution still records results in registration order."""
    context = CheckContext(
        cancellation=CancellationToken(),
        options=CheckExecutorOptions(max_concurrency=4),
    )
    checks = [
        _sleeper("slow", 0.05, HealthStatus.HEALTHY),
        _sleeper("fast", 0.0, HealthStatus.DEGRADED),
    ]
    results = run_checks(context, checks)
    assert [name for name, _ in results] == ["slow", "fast"]
    assert results[1][1].status is HealthStatus.DEGRADED


def test_parallel_checks_run_concurrently() -> None:
    """Checks overlap when more than one worker is allowed."""
    barrier = threading.Barrier(2, timeout=5)

    def meet(ctx: CheckContext) -> HealthCheckResult:
        barrier.wait()
        return HealthCheckResult.healthy()

    service = _service(
        HealthCheckDefinition(name="left", run=meet),
        HealthCheckDefinition(name="right", run=meet),
        max_concurrency=2,
    )
    result = service.check_health()
    assert result.status is HealthStatus.HEALTHY
    assert result.metadata["concurrency"] == 2


def test_parallel_isolates_failures() -> None:
    """A raising check does not prevent concurrent siblings from recording."""

    def explode(ctx: CheckContext) -> HealthCheckResult:
        raise RuntimeError("boom")

    service = _service(
        HealthCheckDefinition(name="broken", run=explode),
        _sleeper("ok", 0.01, HealthStatus.HEALTHY),
        max_concurrency=3,
    )
    result = service.check_health()
    assert result.entries["broken"].status is HealthStatus.FAILED
    assert result.entries["ok"].status is HealthStatus.HEALTHY


def test_parallel_contract_violation_propagates() -> None:
    """Contract violations abort concurrent runs too."""
    service = _service(
        _sleeper("ok", 0.0, HealthStatus.HEALTHY),
        _static("bad", HealthStatus.UNKNOWN),
        max_concurrency=2,
    )
    with pytest.raises(HealthCheckContractError, match="bad"):
        service.check_health()


def test_parallel_cancellation_skips_pending_checks() -> None:
    """Checks queued behind a cancelled run never start."""
    token = CancellationToken()
    ran: list[str] = []

    def make(name: str, action: Callable[[], object] | None = None) -> HealthCheckDefinition:
        def _run(ctx: CheckContext) -> HealthCheckResult:
            ran.append(name)
            if action is not None:
                action()
            return HealthCheckResult.healthy()

        return HealthCheckDefinition(name=name, run=_run)

    service = _service(
        make("first", token.cancel),
        make("second", lambda: token.wait(5)),
        make("third"),
        max_concurrency=2,
    )
    with pytest.raises(HealthCheckCancelledError):
        service.check_health(cancellation=token)
    assert "third" not in ran
