"""Health check execution and aggregation."""

from __future__ import annotations

from .builtin import CHECK_KINDS, build_check, build_checks
from .engine import HealthCheckService, ensure_no_duplicates, run_checks
from .errors import (
    DuplicateHealthCheckError,
    HealthCheckCancelledError,
    HealthCheckConfigurationError,
    HealthCheckContractError,
    HealthCheckError,
)
from .models import (
    STATUS_ORDER,
    CancellationToken,
    CaseInsensitiveDict,
    CheckContext,
    CheckExecutorOptions,
    CompositeHealthCheckResult,
    HealthCheck,
    HealthCheckDefinition,
    HealthCheckResult,
    HealthStatus,
    aggregate_status,
    build_composite,
)

__all__ = [
    "CHECK_KINDS",
    "STATUS_ORDER",
    "CancellationToken",
    "CaseInsensitiveDict",
    "CheckContext",
    "CheckExecutorOptions",
    "CompositeHealthCheckResult",
    "DuplicateHealthCheckError",
    "HealthCheck",
    "HealthCheckCancelledError",
    "HealthCheckConfigurationError",
    "HealthCheckContractError",
    "HealthCheckDefinition",
    "HealthCheckError",
    "HealthCheckResult",
    "HealthCheckService",
    "HealthStatus",
    "aggregate_status",
    "build_check",
    "build_checks",
    "build_composite",
    "ensure_no_duplicates",
    "run_checks",
]
