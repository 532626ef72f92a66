"""Configuration data structures.

Populated by :func:`sidecar_terminator.config.load_config`; immutable for the
controller's lifetime.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from sidecar_terminator.models.pods import DEFAULT_SIDECARS


@dataclass(frozen=True)
class QueueConfig:
    """Retry behaviour of the reconcile queue."""

    base_delay_seconds: float = 0.005
    max_delay_seconds: float = 1000.0
    max_retries: int = 15
    qps: float = 10.0
    burst: int = 100


@dataclass(frozen=True)
class MetricsConfig:
    enabled: bool = True
    port: int = 9090


@dataclass(frozen=True)
class LogConfig:
    level: str = "info"


@dataclass(frozen=True)
class ControllerConfig:
    """Top-level configuration."""

    sidecars: frozenset[str] = DEFAULT_SIDECARS
    workload_kind: str = "Job"
    namespace: str = ""
    workers: int = 2
    exec_timeout_seconds: int = 30
    cache_sync_timeout_seconds: int = 60
    events_enabled: bool = True
    queue: QueueConfig = field(default_factory=QueueConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    log: LogConfig = field(default_factory=LogConfig)
