"""Data models and the aggregation rule for health checks."""

from __future__ import annotations

import logging
import threading
from collections import Counter
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Protocol, TypeVar

from .errors import HealthCheckCancelledError

PROBE_LOGGER_NAME = "healthctl.probe"

_EMPTY_DATA: Mapping[str, Any] = MappingProxyType({})

_V = TypeVar("_V")


class HealthStatus(str, Enum):
    """Outcome reported by a health check.

    Members are ordered by severity (see :data:`STATUS_ORDER`). ``UNKNOWN`` is a
    sentinel meaning no verdict was produced; a check must never return it.
    """

    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    FAILED = "failed"

    @property
    def severity(self) -> int:
        """Return the position of this status in the severity order."""
        return STATUS_ORDER[self]

    @property
    def label(self) -> str:
        """Return the display form of the status (``"Healthy"``)."""
        return self.value.capitalize()

    @classmethod
    def parse(cls, raw: str) -> HealthStatus:
        """Resolve a status from its name or value, ignoring case."""
        text = raw.strip().lower()
        for status in cls:
            if status.value == text:
                return status
        raise ValueError(f"Unknown health status: {raw!r}")


STATUS_ORDER: Mapping[HealthStatus, int] = {
    HealthStatus.UNKNOWN: 0,
    HealthStatus.HEALTHY: 1,
    HealthStatus.DEGRADED: 2,
    HealthStatus.UNHEALTHY: 3,
    HealthStatus.FAILED: 4,
}


class CaseInsensitiveDict(Mapping[str, _V]):
    """Read-only mapping whose string keys compare case-insensitively.

    Iteration yields keys in insertion order using the spelling they were
    first stored with.
    """

    __slots__ = ("_store",)

    def __init__(self, items: Mapping[str, _V] | Iterable[tuple[str, _V]] = ()) -> None:
        self._store: dict[str, tuple[str, _V]] = {}
        pairs = items.items() if isinstance(items, Mapping) else items
        for key, value in pairs:
            folded = key.casefold()
            original = self._store[folded][0] if folded in self._store else key
            self._store[folded] = (original, value)

    def __getitem__(self, key: str) -> _V:
        return self._store[key.casefold()][1]

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key.casefold() in self._store

    def __iter__(self) -> Iterator[str]:
        return (original for original, _ in self._store.values())

    def __len__(self) -> int:
        return len(self._store)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({dict(self.items())!r})"


class CancellationToken:
    """Cooperative cancellation signal shared by every check in a run."""

    __slots__ = ("_event",)

    def __init__(self) -> None:
        self._event = threading.Event()

    @property
    def cancelled(self) -> bool:
        """Return ``True`` once cancellation has been requested."""
        return self._event.is_set()

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until cancellation is requested or *timeout* elapses."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        """Raise :class:`HealthCheckCancelledError` if cancellation was requested."""
        if self._event.is_set():
            raise HealthCheckCancelledError("Health check run was cancelled.")


@dataclass(slots=True, frozen=True)
class CheckExecutorOptions:
    """Runtime tunables for executing health checks."""

    max_concurrency: int = 1


@dataclass(slots=True, frozen=True)
class CheckContext:
    """Execution context handed to every health check in a run."""

    cancellation: CancellationToken
    resources: Mapping[str, Any] = field(default_factory=lambda: _EMPTY_DATA)
    options: CheckExecutorOptions = field(default_factory=CheckExecutorOptions)
    check_name: str | None = None

    @property
    def logger(self) -> logging.Logger:
        """Return a logger named after the running check."""
        if self.check_name is None:
            return logging.getLogger(PROBE_LOGGER_NAME)
        return logging.getLogger(f"{PROBE_LOGGER_NAME}.{self.check_name}")


@dataclass(slots=True, frozen=True)
class HealthCheckResult:
    """Outcome of running a single health check."""

    status: HealthStatus
    description: str | None = None
    error: BaseException | None = None
    data: Mapping[str, Any] = field(default_factory=lambda: _EMPTY_DATA)
    duration_ms: int | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.status, HealthStatus):
            raise TypeError(f"status must be a HealthStatus, got {self.status!r}")
        frozen = MappingProxyType(dict(self.data)) if self.data else _EMPTY_DATA
        object.__setattr__(self, "data", frozen)

    @classmethod
    def healthy(
        cls,
        description: str | None = None,
        *,
        data: Mapping[str, Any] | None = None,
    ) -> HealthCheckResult:
        """Return a healthy result."""
        return cls(HealthStatus.HEALTHY, description, data=data or _EMPTY_DATA)

    @classmethod
    def degraded(
        cls,
        description: str | None = None,
        *,
        data: Mapping[str, Any] | None = None,
    ) -> HealthCheckResult:
        """Return a degraded result."""
        return cls(HealthStatus.DEGRADED, description, data=data or _EMPTY_DATA)

    @classmethod
    def unhealthy(
        cls,
        description: str | None = None,
        *,
        error: BaseException | None = None,
        data: Mapping[str, Any] | None = None,
    ) -> HealthCheckResult:
        """Return an unhealthy result."""
        return cls(HealthStatus.UNHEALTHY, description, error, data or _EMPTY_DATA)

    @classmethod
    def failed(
        cls,
        description: str | None = None,
        *,
        error: BaseException | None = None,
        data: Mapping[str, Any] | None = None,
    ) -> HealthCheckResult:
        """Return a failed result."""
        return cls(HealthStatus.FAILED, description, error, data or _EMPTY_DATA)


class HealthCheck(Protocol):
    """Capability the engine requires from a registered health check."""

    @property
    def name(self) -> str:  # pragma: no cover - protocol
        ...

    def run(self, context: CheckContext) -> HealthCheckResult:  # pragma: no cover - protocol
        ...


@dataclass(slots=True, frozen=True)
class HealthCheckDefinition:
    """Name + callable for a health check."""

    name: str
    run: Callable[[CheckContext], HealthCheckResult]
    tags: frozenset[str] = frozenset()
    kind: str = "callable"


@dataclass(slots=True, frozen=True)
class CompositeHealthCheckResult:
    """Aggregated verdict plus the per-check breakdown for one run."""

    status: HealthStatus
    entries: Mapping[str, HealthCheckResult]
    metadata: Mapping[str, Any] = field(default_factory=lambda: _EMPTY_DATA)

    @property
    def totals(self) -> Mapping[HealthStatus, int]:
        """Return the number of results per status."""
        counts = Counter(result.status for result in self.entries.values())
        return {status: counts.get(status, 0) for status in HealthStatus}


def aggregate_status(results: Iterable[HealthCheckResult]) -> HealthStatus:
    """Return the worst status among *results*, or healthy when there are none."""
    worst: HealthStatus | None = None
    for result in results:
        if worst is None or STATUS_ORDER[result.status] > STATUS_ORDER[worst]:
            worst = result.status
    return worst if worst is not None else HealthStatus.HEALTHY


def build_composite(
    entries: Mapping[str, HealthCheckResult] | Iterable[tuple[str, HealthCheckResult]],
    metadata: Mapping[str, Any] | None = None,
) -> CompositeHealthCheckResult:
    """Create a composite result from named check results."""
    frozen_entries: CaseInsensitiveDict[HealthCheckResult] = CaseInsensitiveDict(entries)
    return CompositeHealthCheckResult(
        status=aggregate_status(frozen_entries.values()),
        entries=frozen_entries,
        metadata=MappingProxyType(dict(metadata)) if metadata else _EMPTY_DATA,
    )
