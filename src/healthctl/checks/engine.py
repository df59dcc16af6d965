"""Health check execution engine."""

from __future__ import annotations

import concurrent.futures
import logging
import time
import traceback
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import replace
from types import MappingProxyType
from typing import Any

from ..logging import probe_log_scope
from .errors import (
    DuplicateHealthCheckError,
    HealthCheckCancelledError,
    HealthCheckContractError,
)
from .models import (
    CancellationToken,
    CheckContext,
    CheckExecutorOptions,
    CompositeHealthCheckResult,
    HealthCheck,
    HealthCheckResult,
    HealthStatus,
    build_composite,
)

LOGGER = logging.getLogger(__name__)

CheckSource = Callable[[], Iterable[HealthCheck]]
CheckPredicate = Callable[[HealthCheck], bool]


def _duration_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def ensure_no_duplicates(checks: Iterable[HealthCheck]) -> None:
    """Raise :class:`DuplicateHealthCheckError` listing every clashing name.

    Names are grouped by their case-folded form; every spelling in a group of
    two or more is reported, in registration order.
    """
    groups: dict[str, list[str]] = {}
    for check in checks:
        groups.setdefault(check.name.casefold(), []).append(check.name)
    duplicates = [name for names in groups.values() if len(names) > 1 for name in names]
    if duplicates:
        raise DuplicateHealthCheckError(duplicates)


def _unexpected_failure(
    check: HealthCheck,
    exc: Exception,
    duration_ms: int,
) -> HealthCheckResult:
    return HealthCheckResult(
        status=HealthStatus.FAILED,
        description=str(exc),
        error=exc,
        data={
            "check": check.name,
            "exception": repr(exc),
            "traceback": traceback.format_exc(),
        },
        duration_ms=duration_ms,
    )


def _validate_result(check: HealthCheck, result: object, duration_ms: int) -> HealthCheckResult:
    if not isinstance(result, HealthCheckResult):
        exc = HealthCheckContractError(
            check.name,
            f"Health check '{check.name}' returned {type(result).__name__} "
            "instead of a HealthCheckResult",
        )
        LOGGER.error("%s", exc)
        raise exc
    if result.status is HealthStatus.UNKNOWN:
        exc = HealthCheckContractError(
            check.name,
            f"Health check '{check.name}' returned a result with a status of Unknown",
        )
        LOGGER.error("%s", exc)
        raise exc
    if result.duration_ms is None:
        return replace(result, duration_ms=duration_ms)
    return result


def _run_single_check(check: HealthCheck, context: CheckContext) -> HealthCheckResult:
    context.cancellation.raise_if_cancelled()
    with probe_log_scope(check.name):
        LOGGER.debug("Running health check: %s", check.name)
        start = time.perf_counter()
        try:
            result = check.run(replace(context, check_name=check.name))
        except Exception as exc:
            if isinstance(exc, HealthCheckCancelledError) and context.cancellation.cancelled:
                raise
            LOGGER.exception("Health check '%s' raised an unexpected exception", check.name)
            return _unexpected_failure(check, exc, _duration_ms(start))
        validated = _validate_result(check, result, _duration_ms(start))
        LOGGER.debug(
            "Health check '%s' completed with status '%s'",
            check.name,
            validated.status.value,
        )
        return validated


def run_checks(
    context: CheckContext,
    checks: Sequence[HealthCheck],
) -> list[tuple[str, HealthCheckResult]]:
    """Execute checks in order, optionally with bounded concurrency."""
    if not checks:
        context.cancellation.raise_if_cancelled()
        return []

    max_workers = max(1, context.options.max_concurrency)
    if max_workers == 1:
        return [(check.name, _run_single_check(check, context)) for check in checks]

    results: list[HealthCheckResult | None] = [None] * len(checks)
    with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers) as executor:
        future_to_index: dict[concurrent.futures.Future[HealthCheckResult], int] = {}
        for index, check in enumerate(checks):
            future = executor.submit(_run_single_check, check, context)
            future_to_index[future] = index

        try:
            for future in concurrent.futures.as_completed(future_to_index):
                results[future_to_index[future]] = future.result()
        except BaseException:
            for pending in future_to_index:
                pending.cancel()
            raise

    return [
        (check.name, result)
        for check, result in zip(checks, results, strict=True)
        if result is not None
    ]


class HealthCheckService:
    """Resolve, run and aggregate the registered health checks."""

    def __init__(
        self,
        check_source: CheckSource,
        *,
        options: CheckExecutorOptions | None = None,
    ) -> None:
        """Store the check source and reject duplicate check names up front."""
        self._check_source = check_source
        self._options = options or CheckExecutorOptions()
        ensure_no_duplicates(list(check_source()))

    @property
    def options(self) -> CheckExecutorOptions:
        """Return the execution options associated with this service."""
        return self._options

    def check_health(
        self,
        predicate: CheckPredicate | None = None,
        cancellation: CancellationToken | None = None,
        *,
        resources: Mapping[str, Any] | None = None,
        metadata: Mapping[str, object] | None = None,
    ) -> CompositeHealthCheckResult:
        """Run the current checks and return the composite result.

        Raises :class:`HealthCheckCancelledError` when *cancellation* fires
        before every check has run and :class:`HealthCheckContractError` when a
        check returns an ``UNKNOWN`` status. No partial result is returned in
        either case.
        """
        start = time.perf_counter()
        discovered = list(self._check_source())
        selected = [check for check in discovered if predicate is None or predicate(check)]
        context = CheckContext(
            cancellation=cancellation or CancellationToken(),
            resources=MappingProxyType(dict(resources or {})),
            options=self._options,
        )
        entries = run_checks(context, selected)
        run_metadata: dict[str, object] = {
            "duration_ms": _duration_ms(start),
            "discovered_checks": len(discovered),
            "matched_checks": len(selected),
            "concurrency": self._options.max_concurrency,
        }
        if metadata:
            run_metadata.update(metadata)
        return build_composite(entries, metadata=run_metadata)
