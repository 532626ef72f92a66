"""Environment-based configuration loading.

Every setting is read from a ``SIDECAR_TERMINATOR_*`` environment variable.
Integer settings are clamped into their allowed range; malformed numbers and
unknown log levels raise ValueError naming the offending variable.
"""

from __future__ import annotations

import os

from sidecar_terminator.models.config import (
    ControllerConfig,
    LogConfig,
    MetricsConfig,
    QueueConfig,
)

_PREFIX = "SIDECAR_TERMINATOR_"

_TRUTHY: frozenset[str] = frozenset({"1", "true", "yes", "on"})
_VALID_LOG_LEVELS: frozenset[str] = frozenset({"debug", "info", "warning", "error", "critical"})


def load_config() -> ControllerConfig:
    """Build a :class:`ControllerConfig` from the environment."""
    base_delay = _float("QUEUE_BASE_DELAY", 0.005)
    if base_delay <= 0:
        raise ValueError(f"{_PREFIX}QUEUE_BASE_DELAY must be positive, got {base_delay}")
    max_delay = _float("QUEUE_MAX_DELAY", 1000.0)
    if max_delay < base_delay:
        raise ValueError(f"{_PREFIX}QUEUE_MAX_DELAY ({max_delay}) must not be below QUEUE_BASE_DELAY ({base_delay})")
    qps = _float("QUEUE_QPS", 10.0)
    if qps <= 0:
        raise ValueError(f"{_PREFIX}QUEUE_QPS must be positive, got {qps}")

    workload_kind = _str("WORKLOAD_KIND", "Job")
    if not workload_kind:
        raise ValueError(f"{_PREFIX}WORKLOAD_KIND must not be empty")

    return ControllerConfig(
        sidecars=_sidecars(),
        workload_kind=workload_kind,
        namespace=_str("NAMESPACE", ""),
        workers=_int("WORKERS", 2, lo=1, hi=32),
        exec_timeout_seconds=_int("EXEC_TIMEOUT", 30, lo=5, hi=300),
        cache_sync_timeout_seconds=_int("CACHE_SYNC_TIMEOUT", 60, lo=5, hi=600),
        events_enabled=_bool("EVENTS_ENABLED", True),
        queue=QueueConfig(
            base_delay_seconds=base_delay,
            max_delay_seconds=max_delay,
            max_retries=_int("QUEUE_MAX_RETRIES", 15, lo=0, hi=100),
            qps=qps,
            burst=_int("QUEUE_BURST", 100, lo=1, hi=10_000),
        ),
        metrics=MetricsConfig(
            enabled=_bool("METRICS_ENABLED", True),
            port=_int("METRICS_PORT", 9090, lo=1024, hi=65535),
        ),
        log=LogConfig(level=_log_level()),
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _raw(name: str) -> str | None:
    value = os.environ.get(_PREFIX + name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def _str(name: str, default: str) -> str:
    value = _raw(name)
    return default if value is None else value


def _bool(name: str, default: bool) -> bool:
    value = _raw(name)
    if value is None:
        return default
    return value.lower() in _TRUTHY


def _int(name: str, default: int, *, lo: int, hi: int) -> int:
    value = _raw(name)
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError as exc:
        raise ValueError(f"{_PREFIX}{name} must be an integer, got {value!r}") from exc
    return max(lo, min(hi, parsed))


def _float(name: str, default: float) -> float:
    value = _raw(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"{_PREFIX}{name} must be a number, got {value!r}") from exc


def _sidecars() -> frozenset[str]:
    value = _raw("SIDECARS")
    if value is None:
        return ControllerConfig().sidecars
    return frozenset(part.strip() for part in value.split(",") if part.strip())


def _log_level() -> str:
    level = _str("LOG_LEVEL", "info").lower()
    if level not in _VALID_LOG_LEVELS:
        raise ValueError(f"Invalid log level {level!r}; expected one of {', '.join(sorted(_VALID_LOG_LEVELS))}")
    return level
