"""Tests for sidecar_terminator.config: environment variable loading and validation.

Covers:
  - Default values when no SIDECAR_TERMINATOR_* env vars are set
  - Each config field read from its corresponding env var
  - Numeric clamping (min/max bounds for int fields)
  - Invalid values raise ValueError naming the variable
  - Boolean parsing for various truthy/falsy strings
"""

from __future__ import annotations

import os

import pytest

from sidecar_terminator.config import load_config
from sidecar_terminator.models.config import ControllerConfig


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("SIDECAR_TERMINATOR_"):
            monkeypatch.delenv(name)


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


class TestConfigDefaults:
    def test_returns_controller_config_type(self) -> None:
        assert isinstance(load_config(), ControllerConfig)

    def test_default_sidecar_is_istio_proxy(self) -> None:
        assert load_config().sidecars == frozenset({"istio-proxy"})

    def test_default_workload_kind(self) -> None:
        assert load_config().workload_kind == "Job"

    def test_watches_all_namespaces_by_default(self) -> None:
        assert load_config().namespace == ""

    def test_default_workers(self) -> None:
        assert load_config().workers == 2

    def test_default_timeouts(self) -> None:
        config = load_config()
        assert config.exec_timeout_seconds == 30
        assert config.cache_sync_timeout_seconds == 60

    def test_default_queue_settings(self) -> None:
        queue = load_config().queue
        assert queue.base_delay_seconds == 0.005
        assert queue.max_delay_seconds == 1000.0
        assert queue.max_retries == 15
        assert queue.qps == 10.0
        assert queue.burst == 100

    def test_events_and_metrics_enabled_by_default(self) -> None:
        config = load_config()
        assert config.events_enabled is True
        assert config.metrics.enabled is True
        assert config.metrics.port == 9090

    def test_default_log_level(self) -> None:
        assert load_config().log.level == "info"


# ---------------------------------------------------------------------------
# Env var overrides
# ---------------------------------------------------------------------------


class TestConfigFromEnv:
    def test_sidecars_comma_separated(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SIDECAR_TERMINATOR_SIDECARS", "istio-proxy, cloud-sql-proxy ,,vault-agent")
        assert load_config().sidecars == frozenset({"istio-proxy", "cloud-sql-proxy", "vault-agent"})

    def test_sidecars_blank_falls_back_to_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SIDECAR_TERMINATOR_SIDECARS", "   ")
        assert load_config().sidecars == frozenset({"istio-proxy"})

    def test_sidecars_only_commas_is_empty_set(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SIDECAR_TERMINATOR_SIDECARS", ",")
        assert load_config().sidecars == frozenset()

    def test_namespace(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SIDECAR_TERMINATOR_NAMESPACE", "batch")
        assert load_config().namespace == "batch"

    def test_workload_kind(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SIDECAR_TERMINATOR_WORKLOAD_KIND", "Workflow")
        assert load_config().workload_kind == "Workflow"

    def test_queue_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SIDECAR_TERMINATOR_QUEUE_BASE_DELAY", "0.1")
        monkeypatch.setenv("SIDECAR_TERMINATOR_QUEUE_MAX_DELAY", "30")
        monkeypatch.setenv("SIDECAR_TERMINATOR_QUEUE_MAX_RETRIES", "5")
        monkeypatch.setenv("SIDECAR_TERMINATOR_QUEUE_QPS", "2.5")
        monkeypatch.setenv("SIDECAR_TERMINATOR_QUEUE_BURST", "20")
        queue = load_config().queue
        assert queue.base_delay_seconds == 0.1
        assert queue.max_delay_seconds == 30.0
        assert queue.max_retries == 5
        assert queue.qps == 2.5
        assert queue.burst == 20

    def test_log_level_is_case_insensitive(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SIDECAR_TERMINATOR_LOG_LEVEL", "DEBUG")
        assert load_config().log.level == "debug"

    def test_metrics_port(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SIDECAR_TERMINATOR_METRICS_PORT", "8081")
        assert load_config().metrics.port == 8081


# ---------------------------------------------------------------------------
# Clamping
# ---------------------------------------------------------------------------


class TestConfigClamping:
    @pytest.mark.parametrize(("raw", "expected"), [("0", 1), ("-4", 1), ("8", 8), ("99", 32)])
    def test_workers_clamped(self, monkeypatch: pytest.MonkeyPatch, raw: str, expected: int) -> None:
        monkeypatch.setenv("SIDECAR_TERMINATOR_WORKERS", raw)
        assert load_config().workers == expected

    def test_exec_timeout_clamped(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SIDECAR_TERMINATOR_EXEC_TIMEOUT", "1")
        assert load_config().exec_timeout_seconds == 5
        monkeypatch.setenv("SIDECAR_TERMINATOR_EXEC_TIMEOUT", "9999")
        assert load_config().exec_timeout_seconds == 300

    def test_cache_sync_timeout_clamped(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SIDECAR_TERMINATOR_CACHE_SYNC_TIMEOUT", "10000")
        assert load_config().cache_sync_timeout_seconds == 600

    def test_max_retries_clamped(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SIDECAR_TERMINATOR_QUEUE_MAX_RETRIES", "-1")
        assert load_config().queue.max_retries == 0

    def test_metrics_port_clamped(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SIDECAR_TERMINATOR_METRICS_PORT", "80")
        assert load_config().metrics.port == 1024


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestConfigValidation:
    def test_non_integer_workers_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SIDECAR_TERMINATOR_WORKERS", "two")
        with pytest.raises(ValueError, match="SIDECAR_TERMINATOR_WORKERS must be an integer"):
            load_config()

    def test_non_numeric_delay_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SIDECAR_TERMINATOR_QUEUE_BASE_DELAY", "fast")
        with pytest.raises(ValueError, match="must be a number"):
            load_config()

    def test_invalid_log_level_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SIDECAR_TERMINATOR_LOG_LEVEL", "verbose")
        with pytest.raises(ValueError, match="Invalid log level"):
            load_config()

    def test_non_positive_base_delay_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SIDECAR_TERMINATOR_QUEUE_BASE_DELAY", "0")
        with pytest.raises(ValueError, match="QUEUE_BASE_DELAY"):
            load_config()

    def test_max_delay_below_base_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SIDECAR_TERMINATOR_QUEUE_BASE_DELAY", "5")
        monkeypatch.setenv("SIDECAR_TERMINATOR_QUEUE_MAX_DELAY", "1")
        with pytest.raises(ValueError, match="QUEUE_MAX_DELAY"):
            load_config()

    def test_non_positive_qps_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SIDECAR_TERMINATOR_QUEUE_QPS", "0")
        with pytest.raises(ValueError, match="QUEUE_QPS"):
            load_config()


# ---------------------------------------------------------------------------
# Booleans
# ---------------------------------------------------------------------------


class TestConfigBooleans:
    @pytest.mark.parametrize("raw", ["1", "true", "TRUE", "yes", "on"])
    def test_truthy(self, monkeypatch: pytest.MonkeyPatch, raw: str) -> None:
        monkeypatch.setenv("SIDECAR_TERMINATOR_EVENTS_ENABLED", raw)
        assert load_config().events_enabled is True

    @pytest.mark.parametrize("raw", ["0", "false", "no", "off", "nope"])
    def test_falsy(self, monkeypatch: pytest.MonkeyPatch, raw: str) -> None:
        monkeypatch.setenv("SIDECAR_TERMINATOR_METRICS_ENABLED", raw)
        assert load_config().metrics.enabled is False
